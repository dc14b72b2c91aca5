from __future__ import annotations

import re
import unicodedata
from typing import Any, Iterable

from listing_intel.core.geo import haversine_distance_meters
from listing_intel.core.models import PhotoAsset, PhotoMatch
from listing_intel.core.normalize import normalize_url
from listing_intel.core.phash import hamming_hex


def listing_signature(url: str | None, price_eur: int | None, area_m2: float | None) -> str | None:
    """
    Fast key for the same source listing re-scraped: normalized URL + price + area.
    """
    normalized = normalize_url(url)
    if not normalized:
        return None
    price = str(int(price_eur)) if price_eur is not None else "-"
    area = str(int(round(area_m2))) if area_m2 is not None else "-"
    return f"{normalized}|{price}|{area}".casefold()


def geo_signature(
    lat: float | None,
    lng: float | None,
    area_m2: float | None,
    price_eur: int | None,
    floor: int | None = None,
    year_built: int | None = None,
) -> str | None:
    # Cross-source key: ~11 m coordinate precision, price in thousands.
    if lat is None or lng is None or area_m2 is None or price_eur is None:
        return None
    return (
        f"geo:{round(lat, 4):.4f},{round(lng, 4):.4f}"
        f"|m2:{int(round(area_m2))}"
        f"|k:{int(round(price_eur / 1000))}"
        f"|L:{floor if floor is not None else '-'}"
        f"|Y:{year_built if year_built is not None else '-'}"
    )


def find_photo_matches(
    listing_id: str,
    mine: Iterable[PhotoAsset | dict[str, Any]],
    candidates: Iterable[PhotoAsset | dict[str, Any]],
    max_hamming: int = 6,
) -> list[PhotoMatch]:
    own = [asset for asset in (_as_asset(x) for x in mine) if asset.phash]
    if not own:
        return []
    pool = [
        asset
        for asset in (_as_asset(x) for x in candidates)
        if asset.phash and asset.listing_id != listing_id
    ]

    hits: list[PhotoMatch] = []
    for photo in own:
        for other in pool:
            distance = hamming_hex(photo.phash, other.phash)  # type: ignore[arg-type]
            if distance <= max_hamming:
                hits.append(
                    PhotoMatch(
                        listing_id=listing_id,
                        other_listing_id=other.listing_id,
                        src=photo.src,
                        other_src=other.src,
                        distance=distance,
                    )
                )
    return hits


def summarize_matches(matches: list[PhotoMatch]) -> dict[str, Any]:
    """Minimal distance per matched listing, closest first."""
    best: dict[str, int] = {}
    for match in matches:
        current = best.get(match.other_listing_id)
        if current is None or match.distance < current:
            best[match.other_listing_id] = match.distance
    ordered = sorted(best.items(), key=lambda item: (item[1], item[0]))
    return {
        "min_distance": ordered[0][1] if ordered else None,
        "matched_listing_ids": [listing_id for listing_id, _ in ordered],
        "by_listing": [{"listing_id": lid, "distance": dist} for lid, dist in ordered],
    }


def _as_asset(value: PhotoAsset | dict[str, Any]) -> PhotoAsset:
    if isinstance(value, PhotoAsset):
        return value
    return PhotoAsset(
        listing_id=str(value.get("listing_id")),
        src=str(value.get("src") or ""),
        phash=value.get("phash") or None,
        created_at=value.get("created_at"),
    )


FUZZY_WEIGHTS = {"title": 0.25, "geo": 0.25, "photo": 0.2, "contact": 0.15, "area": 0.1, "price": 0.05}
_CONTACT_NOISE = re.compile(r"[\s\-()]")


def trigrams(text: str) -> set[str]:
    folded = unicodedata.normalize("NFKD", text.lower())
    cleaned = "".join(ch for ch in folded if ch.isalnum() or ch.isspace())
    padded = f"  {cleaned}  "
    return {padded[i : i + 3] for i in range(len(padded) - 2)}


def jaccard(a: str | None, b: str | None) -> float:
    if not a or not b:
        return 0.0
    left, right = trigrams(a), trigrams(b)
    inter = len(left & right)
    return inter / ((len(left) + len(right) - inter) or 1)


def fuzzy_score(
    mine: dict[str, Any],
    other: dict[str, Any],
    my_hashes: Iterable[str] = (),
    other_hashes: Iterable[str] = (),
) -> tuple[float, dict[str, Any]]:
    """
    Weighted likelihood that two feature dicts describe the same property,
    with the per-signal reasons behind it. Signals with missing inputs add 0.
    """
    score = 0.0
    reasons: dict[str, Any] = {}

    text = jaccard(mine.get("title") or mine.get("address_raw"), other.get("title") or other.get("address_raw"))
    if text > 0:
        score += text * FUZZY_WEIGHTS["title"]
        reasons["title"] = round(text, 3)

    if None not in (mine.get("lat"), mine.get("lng"), other.get("lat"), other.get("lng")):
        meters = haversine_distance_meters(mine["lat"], mine["lng"], other["lat"], other["lng"])
        geo = 1.0 if meters <= 60 else 0.6 if meters <= 120 else 0.3 if meters <= 250 else 0.0
        score += geo * FUZZY_WEIGHTS["geo"]
        reasons["geo"] = {"meters": round(meters), "score": geo}

    mine_set = [h for h in my_hashes if h]
    other_set = {h for h in other_hashes if h}
    if mine_set and other_set:
        shared = sum(1 for h in mine_set if h in other_set)
        total = min(len(mine_set), len(other_set))
        photo = shared / total
        score += photo * FUZZY_WEIGHTS["photo"]
        reasons["photo"] = {"matches": shared, "total": total, "score": photo}

    contact_a = _CONTACT_NOISE.sub("", mine.get("contact") or "").lower()
    contact_b = _CONTACT_NOISE.sub("", other.get("contact") or "").lower()
    if contact_a and contact_b:
        if contact_a == contact_b:
            score += FUZZY_WEIGHTS["contact"]
            reasons["contact"] = {"match": True, "score": 1.0}
        elif contact_a in contact_b or contact_b in contact_a:
            score += 0.5 * FUZZY_WEIGHTS["contact"]
            reasons["contact"] = {"match": "partial", "score": 0.5}

    area = _relative_band(mine.get("area_m2"), other.get("area_m2"), 0.05, 0.10)
    if area is not None:
        score += area[1] * FUZZY_WEIGHTS["area"]
        reasons["area"] = {"rel": round(area[0], 4), "score": area[1]}

    price = _relative_band(mine.get("price_eur"), other.get("price_eur"), 0.07, 0.12)
    if price is not None:
        score += price[1] * FUZZY_WEIGHTS["price"]
        reasons["price"] = {"rel": round(price[0], 4), "score": price[1]}

    return round(score, 4), reasons


def _relative_band(a: float | None, b: float | None, full: float, half: float) -> tuple[float, float] | None:
    if not a or not b:
        return None
    rel = abs(a - b) / max(a, b)
    return rel, 1.0 if rel <= full else 0.5 if rel <= half else 0.0
