from __future__ import annotations

from math import log10, tanh
from typing import Any

TTS_BUCKETS = ("<30", "30-60", "60-90", "90+")
HIGH_SEASON_MONTHS = {3, 4, 5, 6, 9, 10}
BASE_DAYS = 60.0
DEFAULT_DEMAND = 0.5


def season_for_month(month: int) -> str:
    return "high" if month in HIGH_SEASON_MONTHS else "low"


def bucket_for_days(days: float) -> str:
    if days < 30:
        return "<30"
    if days < 60:
        return "30-60"
    if days < 90:
        return "60-90"
    return "90+"


def estimate_tts(
    price_delta: float | None,
    demand_score: float | None,
    season: str = "low",
) -> tuple[str | None, dict[str, Any]]:
    """
    Time-to-sell bucket from asking-vs-AVM delta, demand and season.

    - price_delta: asking / avm_mid - 1 (positive means overpriced)
    - demand_score: 0..1, missing demand uses a neutral 0.5
    - season: "high" speeds up, "low" slows down

    Only the bucket is exposed; the day estimate stays in the explain payload.
    """
    if price_delta is None:
        return None, {"reason": "missing_price_delta"}

    demand = DEFAULT_DEMAND if demand_score is None else max(0.0, min(1.0, demand_score))
    days = BASE_DAYS * (1 + tanh(price_delta * 3) * 0.6)
    days *= 1 - min(0.9, log10(1 + demand * 9) * 0.2)
    days *= 0.9 if season == "high" else 1.15
    days = max(7.0, min(365.0, days))

    explain = {
        "price_delta": round(price_delta, 4),
        "demand_score": demand,
        "demand_defaulted": demand_score is None,
        "season": season,
        "days_estimate": round(days),
    }
    return bucket_for_days(days), explain
