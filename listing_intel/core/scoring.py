from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from statistics import median
from typing import Any

from listing_intel.core.avm import compute_price_badge, estimate_avm
from listing_intel.core.condition import ConditionScorer
from listing_intel.core.config import ValuationConfig
from listing_intel.core.models import NormalizedFeatures, ScoreResult
from listing_intel.core.rental_yield import compute_yield, estimate_annual_costs, estimate_rent
from listing_intel.core.seismic import assess_seismic
from listing_intel.core.tts import estimate_tts, season_for_month


MIN_SAMPLE = 30
MAX_RENT_COMPS = 200
# Fields a group snapshot may fill in when the listing itself lacks them.
_GROUP_FILL_FIELDS = ("area_m2", "rooms", "floor", "year_built", "lat", "lng", "area_slug", "city", "dist_metro_m")


@dataclass(slots=True)
class AreaStats:
    area_slug: str
    sale_count: int
    rent_count: int
    median_eur_m2: float | None
    p10_eur_m2: float | None
    p90_eur_m2: float | None
    rent_comps_eur_m2: list[float]
    min_sample_used: bool
    computed_at: str

    def to_record(self) -> dict[str, Any]:
        return {
            "area_slug": self.area_slug,
            "sale_count": self.sale_count,
            "rent_count": self.rent_count,
            "median_eur_m2": self.median_eur_m2,
            "p10_eur_m2": self.p10_eur_m2,
            "p90_eur_m2": self.p90_eur_m2,
            "rent_comps_eur_m2": self.rent_comps_eur_m2,
            "min_sample_used": self.min_sample_used,
            "computed_at": self.computed_at,
        }


@dataclass(slots=True)
class ScoringContext:
    area_stats: dict[str, Any] | None = None
    rent_comps: list[float] = field(default_factory=list)
    group_snapshot: dict[str, Any] | None = None
    condition_scorer: ConditionScorer | None = None
    season: str | None = None


def percentile(sorted_values: list[float], p: float) -> float | None:
    if not sorted_values:
        return None
    if len(sorted_values) == 1:
        return sorted_values[0]
    k = (len(sorted_values) - 1) * p
    floor_k = int(k)
    ceil_k = min(floor_k + 1, len(sorted_values) - 1)
    if floor_k == ceil_k:
        return sorted_values[floor_k]
    fraction = k - floor_k
    return sorted_values[floor_k] + (sorted_values[ceil_k] - sorted_values[floor_k]) * fraction


def build_area_stats(area_slug: str, features_rows: list[dict[str, Any]]) -> AreaStats:
    sale_values: list[float] = []
    rent_values: list[float] = []
    for features in features_rows:
        price = features.get("price_eur")
        area = features.get("area_m2")
        if price is None or area in (None, 0):
            continue
        per_m2 = float(price) / float(area)
        if features.get("listing_type") == "rent":
            rent_values.append(per_m2)
        else:
            sale_values.append(per_m2)

    sorted_sales = sorted(sale_values)
    return AreaStats(
        area_slug=area_slug,
        sale_count=len(sorted_sales),
        rent_count=len(rent_values),
        median_eur_m2=round(float(median(sorted_sales)), 2) if sorted_sales else None,
        p10_eur_m2=percentile(sorted_sales, 0.10),
        p90_eur_m2=percentile(sorted_sales, 0.90),
        rent_comps_eur_m2=[round(x, 2) for x in rent_values[:MAX_RENT_COMPS]],
        min_sample_used=len(sorted_sales) < MIN_SAMPLE,
        computed_at=datetime.now(timezone.utc).isoformat(),
    )


def score_listing(
    listing_id: str,
    features: NormalizedFeatures,
    config: ValuationConfig,
    context: ScoringContext | None = None,
) -> ScoreResult:
    """
    Run the five valuation models and merge them into one ScoreResult.
    A model whose inputs are missing degrades to None/"unknown" on its own;
    its explain fragment is still recorded.
    """
    context = context or ScoringContext()
    features, filled = _with_group_context(features, context.group_snapshot)
    explain: dict[str, Any] = {"group_filled_fields": filled}
    result = ScoreResult(listing_id=listing_id)

    if context.condition_scorer is not None:
        photos = features.photos or list((context.group_snapshot or {}).get("photos") or [])
        result.condition, result.condition_score, explain["condition"] = context.condition_scorer.assess(photos)
    else:
        explain["condition"] = {"reason": "no_vision_scorer"}

    avm = estimate_avm(features, context.area_stats, config, condition_score=result.condition_score)
    result.avm_low, result.avm_mid, result.avm_high, result.avm_conf = avm.low, avm.mid, avm.high, avm.conf
    explain["avm"] = avm.explain

    result.price_badge = compute_price_badge(features.price_eur, avm.low, avm.mid, avm.high)
    explain["price_badge"] = {
        "asking_eur": features.price_eur,
        "low": avm.low,
        "high": avm.high,
        "badge": result.price_badge,
    }

    price_delta = None
    if features.price_eur is not None and avm.mid:
        price_delta = features.price_eur / avm.mid - 1
    season = context.season or season_for_month(datetime.now(timezone.utc).month)
    result.tts_bucket, explain["tts"] = estimate_tts(price_delta, features.demand_score, season)

    explain["yield"] = _score_yield(result, features, context, config)

    result.risk_score, result.risk_class, explain["seismic"] = assess_seismic(
        features.lat, features.lng, features.year_built, config
    )

    result.explain = explain
    result.computed_at = datetime.now(timezone.utc).isoformat()
    return result


def _score_yield(
    result: ScoreResult,
    features: NormalizedFeatures,
    context: ScoringContext,
    config: ValuationConfig,
) -> dict[str, Any]:
    if features.listing_type == "rent":
        return {"reason": "rental_listing"}
    rent_m2 = estimate_rent(features, context.rent_comps)
    if rent_m2 is None or features.area_m2 is None or not features.price_eur:
        return {
            "reason": "missing_inputs",
            "rent_m2": rent_m2,
            "area_m2": features.area_m2,
            "price_eur": features.price_eur,
        }
    rent_per_month = rent_m2 * features.area_m2
    annual_costs, cost_parts = estimate_annual_costs(
        rent_per_month, result.condition_score, features.demand_score, config
    )
    outcome = compute_yield(features.price_eur, rent_per_month, annual_costs, config.yield_ok_threshold)
    result.yield_gross = round(outcome.yield_gross, 4)
    result.yield_net = round(outcome.yield_net, 4)
    result.yield_verdict = outcome.verdict
    return {
        "rent_m2": round(rent_m2, 2),
        "rent_source": "comps" if context.rent_comps else "listing_estimate",
        "comps": len(context.rent_comps),
        "rent_per_month": round(rent_per_month, 2),
        "annual_costs": {key: round(value, 2) for key, value in cost_parts.items()},
        "threshold": config.yield_ok_threshold,
    }


def _with_group_context(
    features: NormalizedFeatures,
    snapshot: dict[str, Any] | None,
) -> tuple[NormalizedFeatures, list[str]]:
    merged = (snapshot or {}).get("features") or {}
    if not merged:
        return features, []
    updates = {
        name: merged[name]
        for name in _GROUP_FILL_FIELDS
        if getattr(features, name) is None and merged.get(name) is not None
    }
    if not updates:
        return features, []
    return replace(features, **updates), sorted(updates)
