from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from listing_intel.core.models import DedupGroup, NormalizedFeatures, PhotoMatch, ScoreResult, TrustSnapshot
from listing_intel.core.provenance import build_events, is_price_drop, price_swings
from listing_intel.core.similarity import summarize_matches


BASE_SCORE = 100
PHOTO_REUSE_PENALTY = 15
PHOTO_REUSE_STEP = 5
PHOTO_REUSE_CAP = 40
SWING_PENALTY = 10
SWING_CAP = 20


def compute_trust(
    listing_id: str,
    features: NormalizedFeatures,
    score: ScoreResult,
    photo_matches: list[PhotoMatch],
    group: DedupGroup | None = None,
    sights: list[dict[str, Any]] | None = None,
    regroup_count: int = 0,
) -> TrustSnapshot:
    """
    Provenance trust score in [0, 100] with an itemized flag list.

    Signals:
    - photo reuse across other listings (outside the listing's own group)
    - group size and canonical stability
    - price consistency between crawl revisits
    - completeness, AVM confidence, coordinates, construction year
    """
    sights = sights or []
    flags: list[dict[str, Any]] = []
    total = BASE_SCORE
    confidence = 0.5

    def flag(code: str, impact: int, detail: str, **extra: Any) -> None:
        nonlocal total
        total += impact
        flags.append({"code": code, "impact": impact, "detail": detail, **extra})

    group_members = set(group.member_ids) if group else set()
    foreign = [m for m in photo_matches if m.other_listing_id not in group_members]
    if foreign:
        summary = summarize_matches(foreign)
        reused_in = len(summary["matched_listing_ids"])
        penalty = min(PHOTO_REUSE_CAP, PHOTO_REUSE_PENALTY + PHOTO_REUSE_STEP * (reused_in - 1))
        flag(
            "photo_reuse",
            -penalty,
            f"photos reused in {reused_in} other listings",
            matches=summary["by_listing"],
            min_distance=summary["min_distance"],
        )

    if group is not None:
        size = len(group.member_ids)
        if size > 1:
            confidence += 0.1
            flags.append(
                {"code": "group_size", "impact": 0, "detail": f"seen as {size} listings of the same unit"}
            )
        if group.canonical_changes > 0:
            confidence -= min(0.2, 0.05 * group.canonical_changes)
            flags.append(
                {
                    "code": "canonical_changes",
                    "impact": 0,
                    "detail": f"canonical listing changed {group.canonical_changes} times",
                }
            )
    if regroup_count > 0:
        confidence -= min(0.3, 0.1 * regroup_count)
        flags.append({"code": "regrouped", "impact": 0, "detail": f"re-grouped {regroup_count} times"})

    events = build_events(sights)
    revisits = max(0, len(sights) - 1)
    swings = price_swings(events)
    if swings:
        flag(
            "price_swings",
            -min(SWING_CAP, SWING_PENALTY * len(swings)),
            f"{len(swings)} large price swings between revisits",
            swings=swings,
        )
    elif revisits >= 1:
        flag("price_consistent", 2, f"revisited {revisits} times with consistent price")
    drops = [
        e for e in events
        if e["kind"] == "PRICE_CHANGE" and is_price_drop(e["payload"]["from"], e["payload"]["to"])
    ]
    if len(drops) >= 2:
        flag("repeated_price_drops", -5, f"{len(drops)} price drops")
    if any(e["kind"] == "CONTACT_CHANGED" for e in events):
        flag("contact_changed", -10, "contact changed between revisits")
    confidence += min(0.3, 0.1 * revisits)

    if features.price_eur and features.area_m2 and features.rooms and features.dist_metro_m is not None:
        flag("complete", 5, "all key fields present")
    if score.avm_conf >= 0.6:
        flag("avm_confident", 3, "AVM confidence ok")
    if features.lat is None or features.lng is None:
        flag("missing_coordinates", -10, "missing coordinates")
    if features.year_built is None:
        flag("uncertain_year", -3, "construction year unknown")

    bounded = max(0, min(100, total))
    return TrustSnapshot(
        listing_id=listing_id,
        score=bounded,
        badge="High" if bounded >= 80 else "Medium" if bounded >= 60 else "Low",
        confidence=round(max(0.0, min(1.0, confidence)), 2),
        flags=flags,
        computed_at=datetime.now(timezone.utc).isoformat(),
    )
