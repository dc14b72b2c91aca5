from __future__ import annotations

import logging
import os
import urllib.parse
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from listing_intel.core.rate_limit import TokenBucket


LOGGER = logging.getLogger(__name__)

MAPBOX_BASE_URL = "https://api.mapbox.com/geocoding/v5/mapbox.places"


@dataclass(slots=True)
class GeocodeResult:
    lat: float
    lng: float
    city: str | None = None
    neighborhood: str | None = None


class Geocoder(Protocol):
    def resolve(self, address: str) -> GeocodeResult | None:
        ...


class MapboxGeocoder:
    def __init__(
        self,
        token: str | None = None,
        bucket: TokenBucket | None = None,
        timeout_seconds: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.token = token if token is not None else (
            os.environ.get("MAPBOX_API_TOKEN") or os.environ.get("MAPBOX_TOKEN") or ""
        )
        self.bucket = bucket or TokenBucket()
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def resolve(self, address: str) -> GeocodeResult | None:
        if not self.token or not address or not address.strip():
            return None
        if not self.bucket.try_acquire():
            LOGGER.warning("Geocoding rate limit reached; skipping address=%r", address)
            return None

        quoted = urllib.parse.quote(address.strip(), safe="")
        params = {
            "access_token": self.token,
            "language": "ro",
            "limit": 1,
            "types": "address,place,locality,neighborhood,poi",
        }
        try:
            with httpx.Client(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = client.get(f"{MAPBOX_BASE_URL}/{quoted}.json", params=params)
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            LOGGER.warning("Geocoding failed address=%r error=%s", address, exc)
            return None
        return _parse_feature(payload)


def _parse_feature(payload: Any) -> GeocodeResult | None:
    if not isinstance(payload, dict):
        return None
    features = payload.get("features") or []
    if not features or not isinstance(features[0], dict):
        return None
    feature = features[0]
    center = feature.get("center")
    if not isinstance(center, (list, tuple)) or len(center) < 2:
        return None
    try:
        lng, lat = float(center[0]), float(center[1])
    except (TypeError, ValueError):
        return None

    city: str | None = None
    neighborhood: str | None = None
    for ctx in feature.get("context") or []:
        ctx_id = ctx.get("id") if isinstance(ctx, dict) else None
        text = ctx.get("text") if isinstance(ctx, dict) else None
        if not isinstance(ctx_id, str) or not text:
            continue
        if ctx_id.startswith(("place", "locality")):
            city = city or text
        elif ctx_id.startswith("neighborhood"):
            neighborhood = neighborhood or text
    return GeocodeResult(lat=lat, lng=lng, city=city, neighborhood=neighborhood)
