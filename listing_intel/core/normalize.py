from __future__ import annotations

import logging
import math
import re
from datetime import datetime, timezone
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from listing_intel.core.config import NormalizerConfig
from listing_intel.core.geo import grid_slug, nearest_station, slugify
from listing_intel.core.geocode import Geocoder
from listing_intel.core.models import (
    Missing,
    NormalizedFeatures,
    Parsed,
    ParseOutcome,
    RawListing,
    Unparsable,
    outcome_value,
)


LOGGER = logging.getLogger(__name__)

# First number-like run; spaces only count when a digit follows (thousand groups).
_NUMBER_RE = re.compile(r"-?[0-9](?:[0-9.,]|[ \u00a0\u202f](?=[0-9]))*")
_RON_RE = re.compile(r"\b(?:lei|ron)\b", re.IGNORECASE)
_EUR_RE = re.compile(r"€|\beur(?:o|os)?\b", re.IGNORECASE)
_STREET_PREFIXES = (
    "str",
    "strada",
    "bd",
    "blvd",
    "bulevardul",
    "calea",
    "sos",
    "soseaua",
    "aleea",
    "intrarea",
    "splaiul",
    "piata",
)
_TRACKING_PARAMS = {"fbclid", "gclid", "reason", "ref", "tracking"}
_MIN_YEAR = 1800


def parse_number(value: Any) -> ParseOutcome:
    if value is None:
        return Missing()
    if isinstance(value, bool):
        return Unparsable(str(value))
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return Unparsable(str(value))
        return Parsed(float(value))

    text = str(value).strip()
    if not text:
        return Missing()
    match = _NUMBER_RE.search(text)
    if not match:
        return Unparsable(text)

    token = re.sub(r"[ \u00a0\u202f]", "", match.group(0)).rstrip(".,")
    if "." in token and "," in token:
        decimal_mark = "." if token.rfind(".") > token.rfind(",") else ","
        grouping = "," if decimal_mark == "." else "."
        token = token.replace(grouping, "").replace(decimal_mark, ".")
    elif "." in token or "," in token:
        mark = "." if "." in token else ","
        head, _, tail = token.rpartition(mark)
        if token.count(mark) > 1 or len(tail) == 3:
            token = token.replace(mark, "")
        else:
            token = f"{head.replace(mark, '')}.{tail}"

    try:
        number = float(token)
    except ValueError:
        return Unparsable(text)
    if not math.isfinite(number):
        return Unparsable(text)
    return Parsed(number)


def parse_decimal(value: Any) -> ParseOutcome:
    # Coordinates and ratios: a lone separator is always the decimal mark.
    if value is None:
        return Missing()
    if isinstance(value, bool):
        return Unparsable(str(value))
    if isinstance(value, (int, float)):
        return Parsed(float(value)) if math.isfinite(value) else Unparsable(str(value))
    text = str(value).strip()
    if not text:
        return Missing()
    try:
        number = float(text.replace(",", "."))
    except ValueError:
        return Unparsable(text)
    return Parsed(number) if math.isfinite(number) else Unparsable(text)


def parse_int(value: Any) -> ParseOutcome:
    outcome = parse_number(value)
    if isinstance(outcome, Parsed):
        return Parsed(int(round(outcome.value)))
    return outcome


def parse_floor(value: Any) -> ParseOutcome:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if not lowered:
            return Missing()
        if "demisol" in lowered or "subsol" in lowered:
            return Parsed(-1)
        if "parter" in lowered or "mezanin" in lowered:
            return Parsed(0)
    return parse_int(value)


def detect_currency(currency: Any, price_text: Any = None) -> str:
    for candidate in (currency, price_text):
        if not isinstance(candidate, str) or not candidate.strip():
            continue
        if _RON_RE.search(candidate):
            return "RON"
        if _EUR_RE.search(candidate):
            return "EUR"
    # Unknown currency tokens are treated as EUR.
    return "EUR"


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def convert_currency(amount: float, currency: str, rate: float) -> tuple[int, int]:
    """
    Return (price_eur, price_ron). The side named by `currency` is authoritative
    and kept as given; the other side is derived at `rate` RON per EUR.
    """
    if rate <= 0:
        raise ValueError("Exchange rate must be positive.")
    if currency == "RON":
        price_ron = round_half_up(amount)
        return round_half_up(amount / rate), price_ron
    price_eur = round_half_up(amount)
    return price_eur, round_half_up(amount * rate)


def normalize_url(url: str | None) -> str | None:
    if not isinstance(url, str) or not url.strip():
        return None
    parsed = urlparse(url.strip())
    host = (parsed.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    if parsed.port:
        host = f"{host}:{parsed.port}"
    query = [
        (key, val)
        for key, val in parse_qsl(parsed.query, keep_blank_values=False)
        if not key.lower().startswith("utm_") and key.lower() not in _TRACKING_PARAMS
    ]
    path = parsed.path.rstrip("/") or "/"
    return urlunparse(((parsed.scheme or "https").lower(), host, path, "", urlencode(sorted(query)), ""))


def area_slug_from_address(address: str | None) -> str | None:
    if not isinstance(address, str):
        return None
    parts = [part.strip() for part in address.split(",") if part.strip()]
    if not parts:
        return None
    if len(parts) == 1:
        return slugify(parts[0])

    city = parts[-1]
    neighborhood = None
    for part in reversed(parts[:-1]):
        if not _looks_like_street(part):
            neighborhood = part
            break
    if neighborhood:
        return slugify(f"{city}-{neighborhood}")
    return slugify(city)


def normalize(
    raw: RawListing | dict[str, Any],
    config: NormalizerConfig | None = None,
    geocoder: Geocoder | None = None,
) -> NormalizedFeatures:
    """
    Turn a scraped listing into a fully typed feature record.
    Never raises for bad input: malformed fields become None.
    """
    config = config or NormalizerConfig()
    if isinstance(raw, dict):
        raw = RawListing.from_payload(raw)

    features = NormalizedFeatures(
        address_raw=(raw.address or "").strip(),
        title=(raw.title or "").strip() or None,
        contact=(raw.contact or "").strip() or None,
        listing_type=_normalize_listing_type(raw.listing_type),
        photos=_dedupe_photos(raw.photos),
    )

    price = outcome_value(parse_number(raw.price))
    if price is not None and price > 0:
        currency = detect_currency(raw.currency, raw.price if isinstance(raw.price, str) else None)
        features.currency = currency
        features.price_eur, features.price_ron = convert_currency(
            price, currency, config.exchange_rate_ron_per_eur
        )

    area = outcome_value(parse_number(raw.area))
    features.area_m2 = float(area) if area is not None and area > 0 else None
    rooms = outcome_value(parse_int(raw.rooms))
    features.rooms = rooms if rooms is not None and rooms > 0 else None
    features.floor = outcome_value(parse_floor(raw.floor))
    features.year_built = _valid_year(outcome_value(parse_int(raw.year_built)))
    features.lat = _valid_coord(outcome_value(parse_decimal(raw.lat)), 90.0)
    features.lng = _valid_coord(outcome_value(parse_decimal(raw.lng)), 180.0)
    features.demand_score = _unit_interval(outcome_value(parse_decimal(raw.demand_score)))
    rent_m2 = outcome_value(parse_decimal(raw.estimated_rent_m2))
    features.estimated_rent_m2 = rent_m2 if rent_m2 is not None and rent_m2 > 0 else None

    _resolve_location(features, geocoder)

    if features.lat is not None and features.lng is not None:
        station = nearest_station(features.lat, features.lng)
        if station is not None:
            features.dist_metro_m = round_half_up(station[1])
            features.time_to_metro_min = math.ceil(station[1] / config.walking_m_per_min)
    return features


def features_to_version_record(listing_id: str, version: int, features: NormalizedFeatures) -> dict[str, Any]:
    return {
        "listing_id": listing_id,
        "version": version,
        "features": features.to_record(),
        "created_at": datetime.now(timezone.utc).isoformat(),
    }


def _resolve_location(features: NormalizedFeatures, geocoder: Geocoder | None) -> None:
    geocoded = None
    if geocoder is not None and features.address_raw:
        try:
            geocoded = geocoder.resolve(features.address_raw)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Geocoder raised for address=%r: %s", features.address_raw, exc)
            geocoded = None

    if geocoded is not None:
        if features.lat is None or features.lng is None:
            features.lat = _valid_coord(geocoded.lat, 90.0)
            features.lng = _valid_coord(geocoded.lng, 180.0)
        features.city = geocoded.city
        if geocoded.city and geocoded.neighborhood:
            features.area_slug = slugify(f"{geocoded.city}-{geocoded.neighborhood}")
        elif geocoded.neighborhood or geocoded.city:
            features.area_slug = slugify(geocoded.neighborhood or geocoded.city)

    if features.area_slug is None:
        features.area_slug = area_slug_from_address(features.address_raw)
    if features.city is None and features.address_raw:
        parts = [part.strip() for part in features.address_raw.split(",") if part.strip()]
        if len(parts) >= 2:
            features.city = parts[-1]
    if features.area_slug is None:
        features.area_slug = grid_slug(features.lat, features.lng)


def _looks_like_street(part: str) -> bool:
    if any(ch.isdigit() for ch in part):
        return True
    first = part.lower().replace(".", " ").split()
    return bool(first) and first[0] in _STREET_PREFIXES


def _dedupe_photos(photos: list[Any]) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()
    for item in photos or []:
        if isinstance(item, dict):
            item = item.get("url") or item.get("src")
        if not isinstance(item, str):
            continue
        url = item.strip()
        if not url or url in seen:
            continue
        seen.add(url)
        out.append(url)
    return out


def _normalize_listing_type(value: str | None) -> str:
    if isinstance(value, str) and value.strip().lower() in {"rent", "inchiriere", "închiriere", "chirie"}:
        return "rent"
    return "sale"


def _valid_year(year: int | None) -> int | None:
    if year is None:
        return None
    if _MIN_YEAR <= year <= datetime.now(timezone.utc).year + 5:
        return year
    return None


def _valid_coord(value: float | None, limit: float) -> float | None:
    if value is None or not -limit <= value <= limit:
        return None
    return float(value)


def _unit_interval(value: float | None) -> float | None:
    if value is None:
        return None
    return max(0.0, min(1.0, float(value)))
