from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import Any

from listing_intel.core.config import ValuationConfig
from listing_intel.core.geo import haversine_distance_meters, in_box

LOGGER = logging.getLogger(__name__)

DATASET_MATCH_METERS = 40.0
_DATASET_CLASSES = {"RS1", "RS2"}


def year_penalty(year_built: int | None, config: ValuationConfig) -> float:
    if not year_built:
        return config.seismic_unknown_year_penalty
    if year_built < 1940:
        return 0.3
    if year_built < 1977:
        return 0.25
    if year_built < 2000:
        return 0.1
    if year_built < 2010:
        return 0.05
    return 0.0


def seismic_score(
    lat: float | None,
    lng: float | None,
    year_built: int | None,
    config: ValuationConfig,
) -> float | None:
    if lat is None or lng is None:
        return None
    base = config.seismic_central_base if in_box(lat, lng, config.seismic_central_box) else config.seismic_outer_base
    return max(0.0, min(1.0, base + year_penalty(year_built, config)))


def risk_class(score: float | None, config: ValuationConfig) -> str:
    if score is None:
        return "unknown"
    if score >= config.rs1_threshold:
        return "RS1"
    if score >= config.rs2_threshold:
        return "RS2"
    return "none"


@lru_cache(maxsize=4)
def load_seismic_dataset(path: str) -> tuple[dict[str, Any], ...]:
    """
    Published list of classified buildings: [{lat, lng, rs_class, address, source_url}].
    A missing or malformed file yields an empty dataset.
    """
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, ValueError) as exc:
        LOGGER.warning("Seismic dataset unavailable path=%s error=%s", path, exc)
        return ()
    rows: list[dict[str, Any]] = []
    for item in data if isinstance(data, list) else []:
        if not isinstance(item, dict):
            continue
        try:
            lat = float(item.get("lat", item.get("latitude")))
            lng = float(item.get("lng", item.get("longitude")))
        except (TypeError, ValueError):
            continue
        level = str(item.get("rs_class") or item.get("level") or "").upper()
        rows.append(
            {
                "lat": lat,
                "lng": lng,
                "level": level if level in _DATASET_CLASSES else "none",
                "source_url": item.get("source_url") or item.get("url"),
            }
        )
    return tuple(rows)


def match_seismic_dataset(
    lat: float | None,
    lng: float | None,
    dataset: tuple[dict[str, Any], ...],
) -> dict[str, Any] | None:
    if lat is None or lng is None or not dataset:
        return None
    best: tuple[dict[str, Any], float] | None = None
    for row in dataset:
        distance = haversine_distance_meters(lat, lng, row["lat"], row["lng"])
        if best is None or distance < best[1]:
            best = (row, distance)
    if best is None or best[1] > DATASET_MATCH_METERS:
        return None
    return {"level": best[0]["level"], "source_url": best[0]["source_url"], "distance_m": round(best[1])}


def assess_seismic(
    lat: float | None,
    lng: float | None,
    year_built: int | None,
    config: ValuationConfig,
) -> tuple[float | None, str, dict[str, Any]]:
    score = seismic_score(lat, lng, year_built, config)
    if score is None:
        return None, "unknown", {"reason": "missing_coordinates"}

    explain: dict[str, Any] = {
        "central": in_box(lat, lng, config.seismic_central_box),  # type: ignore[arg-type]
        "year_built": year_built,
        "year_penalty": year_penalty(year_built, config),
        "score": round(score, 4),
        "method": "heuristic",
    }
    klass = risk_class(score, config)
    if config.seismic_dataset_path:
        hit = match_seismic_dataset(lat, lng, load_seismic_dataset(config.seismic_dataset_path))
        if hit is not None:
            klass = hit["level"]
            explain.update({"method": "dataset", "dataset_match": hit})
    return score, klass, explain
