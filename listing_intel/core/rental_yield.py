from __future__ import annotations

from dataclasses import dataclass
from statistics import median
from typing import Any

from listing_intel.core.config import ValuationConfig


@dataclass(slots=True)
class YieldResult:
    yield_gross: float
    yield_net: float
    verdict: str  # ok | slab


def estimate_rent(features: Any, comps: list[float] | None) -> float | None:
    """
    Rent per m2 per month: median of comparables, else the listing's own estimate.
    """
    values = [float(x) for x in comps or [] if x is not None]
    if values:
        return float(median(values))
    if isinstance(features, dict):
        fallback = features.get("estimated_rent_m2", features.get("rent_m2"))
    else:
        fallback = getattr(features, "estimated_rent_m2", None)
    if isinstance(fallback, (int, float)) and not isinstance(fallback, bool):
        return float(fallback)
    return None


def estimate_annual_costs(
    rent_per_month: float,
    condition_score: float | None,
    demand_score: float | None,
    config: ValuationConfig,
) -> tuple[float, dict[str, float]]:
    rent_annual = rent_per_month * 12
    if condition_score is None:
        capex = config.capex_med
    elif condition_score <= config.condition_low:
        capex = config.capex_high
    elif condition_score >= config.condition_high:
        capex = config.capex_low
    else:
        capex = config.capex_med
    vacancy_rate = config.vacancy_base
    if demand_score is not None:
        # Weak demand stretches vacancy up to 1.5x the base rate.
        vacancy_rate = max(0.02, config.vacancy_base * (1 + 0.5 * (1.0 - demand_score)))
    parts = {
        "opex": rent_annual * config.opex_rate,
        "vacancy": rent_annual * vacancy_rate,
        "capex": capex,
        "hoa": config.hoa_fee_month * 12,
    }
    return sum(parts.values()), parts


def compute_yield(
    price_eur: float,
    rent_per_month: float,
    annual_costs: float = 0.0,
    ok_threshold: float = 0.05,
) -> YieldResult:
    rent_annual = rent_per_month * 12
    gross = rent_annual / price_eur if price_eur > 0 else 0.0
    net = (rent_annual - annual_costs) / price_eur if price_eur > 0 else 0.0
    return YieldResult(yield_gross=gross, yield_net=net, verdict="ok" if net >= ok_threshold else "slab")
