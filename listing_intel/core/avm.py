from __future__ import annotations

from dataclasses import dataclass, field
from math import log10
from typing import Any

from listing_intel.core.config import ValuationConfig
from listing_intel.core.geo import slugify
from listing_intel.core.models import NormalizedFeatures

MIN_AREA_M2 = 8.0
MAX_AREA_M2 = 1000.0
MIN_SPREAD = 0.06
MAX_SPREAD = 0.18


@dataclass(slots=True)
class AvmResult:
    low: int | None
    mid: int | None
    high: int | None
    conf: float
    explain: dict[str, Any] = field(default_factory=dict)


def baseline_eur_per_m2(
    area_slug: str | None,
    city: str | None,
    area_stats: dict[str, Any] | None,
    config: ValuationConfig,
) -> tuple[float, str, int]:
    """
    Returns (eur_per_m2, source, comparable_count).
    """
    if area_slug and area_stats and area_stats.get("median_eur_m2"):
        return float(area_stats["median_eur_m2"]), "area_stats", int(area_stats.get("sale_count") or 0)
    city_key = slugify(city)
    if city_key and city_key in config.city_eur_per_m2:
        return float(config.city_eur_per_m2[city_key]), "city_fallback", 0
    return float(config.default_eur_per_m2), "default", 0


def adjust_rooms(rooms: int | None, area_m2: float) -> float:
    if rooms is None:
        return 1.0
    per_room = area_m2 / rooms
    if rooms == 1:
        return 1.03
    if per_room < 18:
        return 0.97
    if rooms >= 4:
        return 0.98
    return 1.0


def adjust_floor(floor: int | None) -> float:
    if floor is None:
        return 1.0
    if floor <= 0:
        return 0.97
    if floor <= 3:
        return 1.02
    return 0.99


def adjust_year(year_built: int | None) -> float:
    if not year_built:
        return 1.0
    if year_built >= 2015:
        return 1.05
    if year_built >= 2000:
        return 1.03
    if year_built >= 1980:
        return 1.0
    if year_built >= 1960:
        return 0.98
    return 0.95


def adjust_metro(dist_metro_m: int | None) -> float:
    if dist_metro_m is None:
        return 1.0
    if dist_metro_m <= 300:
        return 1.05
    if dist_metro_m <= 600:
        return 1.02
    if dist_metro_m <= 1000:
        return 1.0
    return 0.97


def adjust_condition(condition_score: float | None) -> float:
    if condition_score is None:
        return 1.0
    return 0.95 + max(0.0, min(1.0, condition_score)) * 0.1


def comparable_confidence(comparable_count: int) -> float:
    if comparable_count <= 0:
        return 0.2
    return min(0.98, 0.2 + log10(comparable_count) * 0.18)


def estimate_avm(
    features: NormalizedFeatures,
    area_stats: dict[str, Any] | None,
    config: ValuationConfig,
    condition_score: float | None = None,
) -> AvmResult:
    area_m2 = features.area_m2
    if area_m2 is None or not MIN_AREA_M2 <= area_m2 <= MAX_AREA_M2:
        return AvmResult(None, None, None, 0.0, {"reason": "invalid_area", "area_m2": area_m2})

    base, source, comps = baseline_eur_per_m2(features.area_slug, features.city, area_stats, config)
    adjustments = {
        "rooms": adjust_rooms(features.rooms, area_m2),
        "floor": adjust_floor(features.floor),
        "year": adjust_year(features.year_built),
        "metro": adjust_metro(features.dist_metro_m),
        "condition": adjust_condition(condition_score),
    }
    eur_m2 = base
    for factor in adjustments.values():
        eur_m2 *= factor
    mid = round(eur_m2 * area_m2)

    # Band narrows with richer features and denser comparables.
    spread = 0.12
    if features.area_slug:
        spread -= 0.03
    if features.dist_metro_m is not None:
        spread -= 0.02
    if condition_score is not None:
        spread -= 0.02
    if 35 <= area_m2 <= 80:
        spread -= 0.02
    if comps < 10:
        spread += 0.04 * (1 - comps / 10)
    spread = max(MIN_SPREAD, min(MAX_SPREAD, spread))

    feature_conf = 1 - (spread - MIN_SPREAD) / (MAX_SPREAD - MIN_SPREAD)
    conf = round(max(0.0, min(1.0, 0.5 * feature_conf + 0.5 * comparable_confidence(comps))), 4)

    explain = {
        "baseline_eur_m2": base,
        "baseline_source": source,
        "comparables": comps,
        "adjustments": adjustments,
        "eur_m2": round(eur_m2, 2),
        "spread": round(spread, 4),
        "asking_vs_mid": (
            round((features.price_eur - mid) / mid, 4) if features.price_eur is not None and mid else None
        ),
    }
    return AvmResult(
        low=round(mid * (1 - spread)),
        mid=mid,
        high=round(mid * (1 + spread)),
        conf=conf,
        explain=explain,
    )


def compute_price_badge(
    asking: float | None,
    low: float | None,
    mid: float | None,
    high: float | None,
) -> str | None:
    """
    None when any input is missing; bounds themselves count as Fair.
    """
    if asking is None or low is None or mid is None or high is None:
        return None
    if asking < low:
        return "Underpriced"
    if asking > high:
        return "Overpriced"
    return "Fair"
