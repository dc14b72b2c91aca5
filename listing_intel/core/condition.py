from __future__ import annotations

import hashlib
import logging
import os
import threading
from typing import Any, Protocol

import httpx

from listing_intel.core.config import ValuationConfig


LOGGER = logging.getLogger(__name__)

CONDITION_BUCKETS = ("needs_renovation", "decent", "modern")


class VisionScorer(Protocol):
    def score(self, photo_urls: list[str]) -> float | None:
        ...


class ConditionCacheStore(Protocol):
    def get_condition_cache(self, key: str) -> float | None:
        ...

    def put_condition_cache(self, key: str, score: float) -> None:
        ...


def map_score_to_condition(score: float, config: ValuationConfig | None = None) -> tuple[str, float]:
    config = config or ValuationConfig()
    clamped = max(0.0, min(1.0, float(score)))
    if clamped < config.condition_low:
        return "needs_renovation", clamped
    if clamped < config.condition_high:
        return "decent", clamped
    return "modern", clamped


def photo_set_key(photo_urls: list[str]) -> str:
    # Order matters: the same photos in another order are a different set.
    return hashlib.sha1("|".join(photo_urls).encode("utf-8")).hexdigest()


class HttpVisionScorer:
    def __init__(
        self,
        endpoint: str | None = None,
        timeout_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.endpoint = endpoint if endpoint is not None else os.environ.get("VISION_ENDPOINT", "")
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def score(self, photo_urls: list[str]) -> float | None:
        if not self.endpoint or not photo_urls:
            return None
        try:
            with httpx.Client(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = client.post(self.endpoint, json={"photos": photo_urls})
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            LOGGER.warning("Vision scorer failed photos=%s error=%s", len(photo_urls), exc)
            return None
        value = payload.get("score") if isinstance(payload, dict) else None
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        return None


class ConditionScorer:
    """
    Maps externally supplied vision scores to condition buckets and reuses the
    score of an identical photo set instead of asking the scorer again.
    """

    def __init__(
        self,
        vision: VisionScorer | None = None,
        store: ConditionCacheStore | None = None,
        config: ValuationConfig | None = None,
    ) -> None:
        self.vision = vision
        self.store = store
        self.config = config or ValuationConfig()
        self._memory: dict[str, float] = {}
        self._lock = threading.Lock()

    def assess(self, photo_urls: list[str]) -> tuple[str | None, float | None, dict[str, Any]]:
        if not photo_urls:
            return None, None, {"reason": "no_photos"}
        key = photo_set_key(photo_urls)
        score, source = self._cached(key)
        if score is None and self.vision is not None:
            try:
                score = self.vision.score(photo_urls)
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Vision scorer raised key=%s: %s", key, exc)
                score = None
            if score is not None:
                source = "vision"
                self._remember(key, score)
        if score is None:
            return None, None, {"reason": "vision_unavailable", "photo_set_key": key}
        bucket, clamped = map_score_to_condition(score, self.config)
        return bucket, clamped, {"photo_set_key": key, "raw_score": score, "source": source}

    def _cached(self, key: str) -> tuple[float | None, str | None]:
        with self._lock:
            if key in self._memory:
                return self._memory[key], "cache"
        if self.store is not None:
            try:
                stored = self.store.get_condition_cache(key)
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Condition cache read failed key=%s: %s", key, exc)
                stored = None
            if stored is not None:
                with self._lock:
                    self._memory[key] = stored
                return stored, "cache"
        return None, None

    def _remember(self, key: str, score: float) -> None:
        with self._lock:
            self._memory[key] = score
        if self.store is not None:
            try:
                self.store.put_condition_cache(key, score)
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Condition cache write failed key=%s: %s", key, exc)
