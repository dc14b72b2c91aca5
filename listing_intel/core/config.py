from __future__ import annotations

import os
from dataclasses import dataclass, field


@dataclass(slots=True, frozen=True)
class NormalizerConfig:
    exchange_rate_ron_per_eur: float = 4.95
    walking_m_per_min: float = 80.0


@dataclass(slots=True, frozen=True)
class SimilarityConfig:
    max_hamming: int = 6
    candidate_pool: int = 2000
    max_photos_per_listing: int = 6
    fuzzy_threshold: float = 0.7
    fuzzy_lookback_days: int = 45
    fuzzy_candidates: int = 80


@dataclass(slots=True, frozen=True)
class ValuationConfig:
    default_eur_per_m2: float = 1800.0
    city_eur_per_m2: dict[str, float] = field(default_factory=lambda: {"bucuresti": 1800.0})
    condition_low: float = 0.35
    condition_high: float = 0.75
    # (lat_min, lat_max, lng_min, lng_max)
    seismic_central_box: tuple[float, float, float, float] = (44.42, 44.45, 26.08, 26.12)
    seismic_central_base: float = 0.5
    seismic_outer_base: float = 0.3
    seismic_unknown_year_penalty: float = 0.15
    rs1_threshold: float = 0.75
    rs2_threshold: float = 0.6
    seismic_dataset_path: str | None = None
    yield_ok_threshold: float = 0.05
    opex_rate: float = 0.15
    vacancy_base: float = 0.06
    hoa_fee_month: float = 40.0
    capex_high: float = 3000.0
    capex_med: float = 1200.0
    capex_low: float = 400.0


@dataclass(slots=True, frozen=True)
class RateLimitConfig:
    capacity: int = 30
    window_seconds: float = 60.0


@dataclass(slots=True, frozen=True)
class BatchConfig:
    batch_size: int = 30
    max_workers: int = 4
    lookback_days: int = 45


@dataclass(slots=True, frozen=True)
class AppConfig:
    normalizer: NormalizerConfig = field(default_factory=NormalizerConfig)
    similarity: SimilarityConfig = field(default_factory=SimilarityConfig)
    valuation: ValuationConfig = field(default_factory=ValuationConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)


def load_config() -> AppConfig:
    """
    Build the full configuration from environment variables.
    Malformed values fall back to defaults instead of failing the run.
    """
    return AppConfig(
        normalizer=NormalizerConfig(
            exchange_rate_ron_per_eur=_env_float("EXCHANGE_RATE_EUR_TO_RON", 4.95),
        ),
        similarity=SimilarityConfig(
            max_hamming=_env_int("PHASH_MAX_HAMMING", 6),
            candidate_pool=_env_int("PHASH_CANDIDATE_POOL", 2000),
            max_photos_per_listing=_env_int("PHASH_MAX_PHOTOS", 6),
            fuzzy_threshold=_env_float("DEDUP_FUZZY_THRESHOLD", 0.7),
            fuzzy_lookback_days=_env_int("DEDUP_FUZZY_LOOKBACK_DAYS", 45),
            fuzzy_candidates=_env_int("DEDUP_FUZZY_CANDIDATES", 80),
        ),
        valuation=ValuationConfig(
            default_eur_per_m2=_env_float("AVM_DEFAULT_EUR_M2", 1800.0),
            yield_ok_threshold=_env_float("YIELD_OK_THRESHOLD", 0.05),
            opex_rate=_env_float("OPEX_RATE", 0.15),
            vacancy_base=_env_float("VACANCY_BASE", 0.06),
            hoa_fee_month=_env_float("HOA_FEE", 40.0),
            capex_high=_env_float("CAPEX_HIGH", 3000.0),
            capex_med=_env_float("CAPEX_MED", 1200.0),
            capex_low=_env_float("CAPEX_LOW", 400.0),
            seismic_dataset_path=os.environ.get("SEISMIC_DATASET_PATH") or None,
        ),
        rate_limit=RateLimitConfig(
            capacity=_env_int("GEOCODE_RATE_MAX", 30),
            window_seconds=_env_float("GEOCODE_RATE_WINDOW_SECONDS", 60.0),
        ),
        batch=BatchConfig(
            batch_size=_env_int("BATCH_SIZE", 30),
            max_workers=max(1, _env_int("BATCH_MAX_WORKERS", 4)),
            lookback_days=_env_int("BATCH_LOOKBACK_DAYS", 45),
        ),
    )


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except (TypeError, ValueError):
        return default
