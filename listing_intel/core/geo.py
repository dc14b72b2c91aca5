from __future__ import annotations

import unicodedata
from math import asin, cos, radians, sin, sqrt

# Approximate Bucharest metro station coordinates (lat, lng).
METRO_STATIONS: list[tuple[str, float, float]] = [
    ("Piata Unirii", 44.4275, 26.1030),
    ("Universitate", 44.4355, 26.1014),
    ("Piata Romana", 44.4467, 26.0978),
    ("Piata Victoriei", 44.4522, 26.0861),
    ("Aviatorilor", 44.4652, 26.0857),
    ("Pipera", 44.5043, 26.1387),
    ("Gara de Nord", 44.4463, 26.0723),
    ("Basarab", 44.4520, 26.0709),
    ("Eroilor", 44.4351, 26.0764),
    ("Izvor", 44.4330, 26.0884),
    ("Grozavesti", 44.4431, 26.0618),
    ("Politehnica", 44.4443, 26.0529),
    ("Crangasi", 44.4523, 26.0463),
    ("Obor", 44.4500, 26.1256),
    ("Piata Iancului", 44.4393, 26.1303),
    ("Dristor", 44.4197, 26.1397),
    ("Titan", 44.4258, 26.1705),
    ("Tineretului", 44.4128, 26.1052),
    ("Eroii Revolutiei", 44.4043, 26.0993),
    ("Piata Sudului", 44.3898, 26.1209),
    ("Berceni", 44.3688, 26.1296),
]


def haversine_distance_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    r = 6_371_000.0
    dlat = radians(lat2 - lat1)
    dlng = radians(lng2 - lng1)
    a = sin(dlat / 2) ** 2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(dlng / 2) ** 2
    return 2 * r * asin(sqrt(a))


def nearest_station(lat: float, lng: float) -> tuple[str, float] | None:
    best: tuple[str, float] | None = None
    for name, s_lat, s_lng in METRO_STATIONS:
        distance = haversine_distance_meters(lat, lng, s_lat, s_lng)
        if best is None or distance < best[1]:
            best = (name, distance)
    return best


def in_box(lat: float, lng: float, box: tuple[float, float, float, float]) -> bool:
    lat_min, lat_max, lng_min, lng_max = box
    return lat_min <= lat <= lat_max and lng_min <= lng <= lng_max


def slugify(value: str | None) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = unicodedata.normalize("NFKD", value.strip().lower())
    ascii_text = "".join(ch for ch in normalized if not unicodedata.combining(ch))
    out: list[str] = []
    for ch in ascii_text:
        if ch.isascii() and ch.isalnum():
            out.append(ch)
        elif out and out[-1] != "-":
            out.append("-")
    slug = "".join(out).strip("-")
    return slug or None


def grid_slug(lat: float | None, lng: float | None, precision: int = 2) -> str | None:
    if lat is None or lng is None:
        return None
    return f"g-{lat:.{precision}f}-{lng:.{precision}f}"
