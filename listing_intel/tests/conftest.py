from __future__ import annotations

import copy
from typing import Any

import pytest


class InMemoryRepo:
    """Dict-backed stand-in for SupabaseRepo with the same method surface."""

    def __init__(self) -> None:
        self.raw: list[dict[str, Any]] = []
        self.listings: dict[str, dict[str, Any]] = {}
        self.feature_versions: list[dict[str, Any]] = []
        self.photos: dict[str, list[dict[str, Any]]] = {}
        self.groups: dict[str, dict[str, Any]] = {}
        self.sights: list[dict[str, Any]] = []
        self.scores: dict[str, dict[str, Any]] = {}
        self.trust: dict[str, dict[str, Any]] = {}
        self.area_stats: dict[str, dict[str, Any]] = {}
        self.condition_cache: dict[str, float] = {}
        self.fail_group_updates_with: set[str] = set()
        self.fail_listing_updates_with: set[str] = set()

    # raw listings
    def fetch_pending_raw(self, since: str, limit: int) -> list[dict[str, Any]]:
        rows = [row for row in self.raw if row.get("status", "pending") == "pending"]
        return copy.deepcopy(rows[:limit])

    def mark_raw_status(self, raw_id: Any, status: str, error: str | None = None) -> None:
        for row in self.raw:
            if row.get("id") == raw_id:
                row["status"] = status
                row["error"] = error

    # listings
    def get_listing(self, listing_id: str) -> dict[str, Any] | None:
        row = self.listings.get(str(listing_id))
        return copy.deepcopy(row) if row else None

    def get_listing_by_url_key(self, url_key: str) -> dict[str, Any] | None:
        for row in self.listings.values():
            if row.get("url_key") == url_key:
                return copy.deepcopy(row)
        return None

    def upsert_listing(self, row: dict[str, Any]) -> dict[str, Any]:
        current = self.listings.setdefault(str(row["id"]), {})
        current.update(copy.deepcopy(row))
        return copy.deepcopy(current)

    def update_listing(self, listing_id: str, fields: dict[str, Any]) -> None:
        if self.fail_listing_updates_with & set(fields):
            raise RuntimeError("simulated storage failure")
        if str(listing_id) in self.listings:
            self.listings[str(listing_id)].update(copy.deepcopy(fields))

    def update_listings(self, listing_ids: list[str], fields: dict[str, Any]) -> None:
        for listing_id in listing_ids:
            self.update_listing(listing_id, fields)

    def insert_feature_version(self, row: dict[str, Any]) -> None:
        self.feature_versions.append(copy.deepcopy(row))

    def find_listings_by_geo_signature(self, geo_signature: str | None, exclude_id: str) -> list[dict[str, Any]]:
        if not geo_signature:
            return []
        return [
            copy.deepcopy(row)
            for row in self.listings.values()
            if row["id"] != exclude_id and row.get("geo_signature") == geo_signature
        ]

    def list_recent_grouped_listings(self, exclude_id: str, since: str, limit: int) -> list[dict[str, Any]]:
        rows = [
            row
            for row in self.listings.values()
            if row["id"] != exclude_id and row.get("group_id") and str(row.get("created_at") or "") >= since
        ]
        rows.sort(key=lambda row: str(row.get("created_at") or ""), reverse=True)
        return copy.deepcopy(rows[:limit])

    def list_ungrouped_listings(self, since: str, limit: int) -> list[dict[str, Any]]:
        rows = [row for row in self.listings.values() if not row.get("group_id")]
        return [{"id": row["id"]} for row in rows[:limit]]

    def list_listings_needing_score(self, limit: int) -> list[dict[str, Any]]:
        rows = [row for row in self.listings.values() if row.get("needs_rescore")]
        return [{"id": row["id"]} for row in rows[:limit]]

    def list_listings_without_trust(self, limit: int) -> list[dict[str, Any]]:
        rows = [row for row in self.listings.values() if not row.get("trust_computed_at")]
        return [{"id": row["id"]} for row in rows[:limit]]

    def list_recent_listings(self, since: str, limit: int) -> list[dict[str, Any]]:
        rows = list(self.listings.values())[:limit]
        return [{"id": row["id"], "features": copy.deepcopy(row.get("features"))} for row in rows]

    # photos
    def replace_photo_assets(self, listing_id: str, rows: list[dict[str, Any]]) -> None:
        self.photos[str(listing_id)] = copy.deepcopy(rows)

    def get_photo_assets(self, listing_id: str) -> list[dict[str, Any]]:
        return copy.deepcopy(self.photos.get(str(listing_id), []))

    def get_recent_photo_assets(self, exclude_listing_id: str, limit: int) -> list[dict[str, Any]]:
        out = [
            asset
            for listing_id, assets in self.photos.items()
            if listing_id != exclude_listing_id
            for asset in assets
            if asset.get("phash")
        ]
        return copy.deepcopy(out[:limit])

    # groups
    def create_group(self, row: dict[str, Any]) -> dict[str, Any]:
        self.groups[str(row["id"])] = copy.deepcopy(row)
        return copy.deepcopy(row)

    def get_group(self, group_id: str) -> dict[str, Any] | None:
        row = self.groups.get(str(group_id))
        return copy.deepcopy(row) if row else None

    def get_groups(self, group_ids: list[str]) -> list[dict[str, Any]]:
        return [copy.deepcopy(self.groups[gid]) for gid in group_ids if gid in self.groups]

    def find_groups_with_member(self, listing_id: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(row) for row in self.groups.values() if listing_id in (row.get("member_ids") or [])]

    def update_group(self, group_id: str, fields: dict[str, Any]) -> None:
        if self.fail_group_updates_with & set(fields):
            raise RuntimeError("simulated storage failure")
        self.groups[str(group_id)].update(copy.deepcopy(fields))

    def list_group_members(self, group_id: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(row) for row in self.listings.values() if row.get("group_id") == group_id]

    # sights, scores, trust
    def insert_sight(self, row: dict[str, Any]) -> None:
        self.sights.append(copy.deepcopy(row))

    def list_sights(self, listing_id: str) -> list[dict[str, Any]]:
        rows = [row for row in self.sights if row["listing_id"] == listing_id]
        return copy.deepcopy(sorted(rows, key=lambda row: row["seen_at"]))

    def upsert_score(self, row: dict[str, Any]) -> None:
        self.scores[str(row["listing_id"])] = copy.deepcopy(row)

    def get_score(self, listing_id: str) -> dict[str, Any] | None:
        row = self.scores.get(str(listing_id))
        return copy.deepcopy(row) if row else None

    def upsert_trust(self, row: dict[str, Any]) -> None:
        self.trust[str(row["listing_id"])] = copy.deepcopy(row)

    # area stats, condition cache
    def upsert_area_stats(self, row: dict[str, Any]) -> None:
        self.area_stats[str(row["area_slug"])] = copy.deepcopy(row)

    def get_area_stats(self, area_slug: str) -> dict[str, Any] | None:
        row = self.area_stats.get(area_slug)
        return copy.deepcopy(row) if row else None

    def get_condition_cache(self, key: str) -> float | None:
        return self.condition_cache.get(key)

    def put_condition_cache(self, key: str, score: float) -> None:
        self.condition_cache[key] = score


def make_listing(
    listing_id: str,
    source_url: str,
    created_at: str = "2026-01-01T00:00:00+00:00",
    **features: Any,
) -> dict[str, Any]:
    return {
        "id": listing_id,
        "url_key": source_url,
        "source_url": source_url,
        "features": {"photos": [], "listing_type": "sale", **features},
        "signature": None,
        "geo_signature": None,
        "group_id": None,
        "regroup_count": 0,
        "needs_rescore": False,
        "created_at": created_at,
        "normalized_at": created_at,
        "updated_at": created_at,
    }


@pytest.fixture
def repo() -> InMemoryRepo:
    return InMemoryRepo()
