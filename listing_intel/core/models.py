from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Union


@dataclass(slots=True, frozen=True)
class Parsed:
    value: Any


@dataclass(slots=True, frozen=True)
class Missing:
    pass


@dataclass(slots=True, frozen=True)
class Unparsable:
    raw_text: str


ParseOutcome = Union[Parsed, Missing, Unparsable]


def outcome_value(outcome: ParseOutcome) -> Any:
    if isinstance(outcome, Parsed):
        return outcome.value
    return None


@dataclass(slots=True)
class RawListing:
    source_url: str | None
    price: Any = None
    currency: str | None = None
    area: Any = None
    rooms: Any = None
    floor: Any = None
    year_built: Any = None
    address: str | None = None
    photos: list[Any] = field(default_factory=list)
    lat: Any = None
    lng: Any = None
    title: str | None = None
    listing_type: str | None = None  # sale | rent
    demand_score: Any = None
    estimated_rent_m2: Any = None
    contact: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "RawListing":
        photos = payload.get("photos")
        return cls(
            source_url=payload.get("source_url") or payload.get("url"),
            price=payload.get("price"),
            currency=payload.get("currency"),
            area=payload.get("area") if payload.get("area") is not None else payload.get("area_m2"),
            rooms=payload.get("rooms"),
            floor=payload.get("floor"),
            year_built=payload.get("year_built"),
            address=payload.get("address") or payload.get("address_raw"),
            photos=list(photos) if isinstance(photos, (list, tuple)) else [],
            lat=payload.get("lat"),
            lng=payload.get("lng"),
            title=payload.get("title"),
            listing_type=payload.get("listing_type"),
            demand_score=payload.get("demand_score"),
            estimated_rent_m2=payload.get("estimated_rent_m2"),
            contact=payload.get("contact"),
        )


@dataclass(slots=True)
class NormalizedFeatures:
    currency: str | None = None  # EUR | RON, the authoritative side
    price_eur: int | None = None
    price_ron: int | None = None
    area_m2: float | None = None
    rooms: int | None = None
    floor: int | None = None
    year_built: int | None = None
    address_raw: str = ""
    area_slug: str | None = None
    city: str | None = None
    lat: float | None = None
    lng: float | None = None
    photos: list[str] = field(default_factory=list)
    dist_metro_m: int | None = None
    time_to_metro_min: int | None = None
    listing_type: str = "sale"
    title: str | None = None
    demand_score: float | None = None
    estimated_rent_m2: float | None = None
    contact: str | None = None

    def to_record(self) -> dict[str, Any]:
        record = asdict(self)
        record["photos"] = list(self.photos)
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any] | None) -> "NormalizedFeatures":
        record = record or {}
        known = {name: record.get(name) for name in cls.__dataclass_fields__ if name in record}
        if known.get("photos") is None:
            known["photos"] = []
        if known.get("address_raw") is None:
            known["address_raw"] = ""
        if not known.get("listing_type"):
            known["listing_type"] = "sale"
        return cls(**known)


@dataclass(slots=True)
class PhotoAsset:
    listing_id: str
    src: str
    phash: str | None
    created_at: datetime | None = None


@dataclass(slots=True, frozen=True)
class PhotoMatch:
    listing_id: str
    other_listing_id: str
    src: str
    other_src: str
    distance: int


@dataclass(slots=True)
class GroupSnapshot:
    group_id: str
    canonical_url: str | None
    features: dict[str, Any]
    photos: list[str]
    price_history: list[dict[str, Any]]
    price_min: int | None
    price_max: int | None
    domains: list[str]
    member_count: int
    built_at: str

    def to_record(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class DedupGroup:
    id: str
    canonical_url: str | None
    member_ids: list[str]
    updated_at: str | None = None
    canonical_changes: int = 0
    snapshot_stale: bool = False
    snapshot: dict[str, Any] | None = None

    @classmethod
    def from_record(cls, row: dict[str, Any]) -> "DedupGroup":
        return cls(
            id=str(row["id"]),
            canonical_url=row.get("canonical_url"),
            member_ids=[str(x) for x in (row.get("member_ids") or [])],
            updated_at=row.get("updated_at"),
            canonical_changes=int(row.get("canonical_changes") or 0),
            snapshot_stale=bool(row.get("snapshot_stale")),
            snapshot=row.get("snapshot"),
        )


@dataclass(slots=True)
class ScoreResult:
    listing_id: str
    avm_low: int | None = None
    avm_mid: int | None = None
    avm_high: int | None = None
    avm_conf: float = 0.0
    price_badge: str | None = None  # Underpriced | Fair | Overpriced
    tts_bucket: str | None = None  # <30 | 30-60 | 60-90 | 90+
    yield_gross: float | None = None
    yield_net: float | None = None
    yield_verdict: str | None = None  # ok | slab
    risk_score: float | None = None
    risk_class: str = "unknown"  # RS1 | RS2 | none | unknown
    condition: str | None = None  # needs_renovation | decent | modern
    condition_score: float | None = None
    explain: dict[str, Any] = field(default_factory=dict)
    computed_at: str | None = None

    def to_record(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class TrustSnapshot:
    listing_id: str
    score: int
    badge: str  # High | Medium | Low
    confidence: float
    flags: list[dict[str, Any]] = field(default_factory=list)
    computed_at: str | None = None

    def to_record(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class BatchResult:
    job: str
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    failures: list[str] = field(default_factory=list)
    cancelled: bool = False
