from __future__ import annotations

import os
from typing import Any

from supabase import Client, create_client


class SupabaseRepo:
    def __init__(self, url: str | None = None, service_role_key: str | None = None) -> None:
        supabase_url = url or os.environ.get("SUPABASE_URL")
        supabase_key = service_role_key or os.environ.get("SUPABASE_SERVICE_ROLE_KEY")
        if not supabase_url or not supabase_key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required.")
        self.client: Client = create_client(supabase_url, supabase_key)

    # -- raw listings -----------------------------------------------------

    def fetch_pending_raw(self, since: str, limit: int) -> list[dict[str, Any]]:
        return (
            self.client.table("listings_raw")
            .select("*")
            .eq("status", "pending")
            .gte("fetched_at", since)
            .order("fetched_at")
            .limit(limit)
            .execute()
            .data
            or []
        )

    def mark_raw_status(self, raw_id: Any, status: str, error: str | None = None) -> None:
        self.client.table("listings_raw").update({"status": status, "error": error}).eq("id", raw_id).execute()

    # -- listings ---------------------------------------------------------

    def get_listing(self, listing_id: str) -> dict[str, Any] | None:
        rows = self.client.table("listings").select("*").eq("id", listing_id).limit(1).execute().data or []
        return rows[0] if rows else None

    def get_listing_by_url_key(self, url_key: str) -> dict[str, Any] | None:
        rows = self.client.table("listings").select("*").eq("url_key", url_key).limit(1).execute().data or []
        return rows[0] if rows else None

    def upsert_listing(self, row: dict[str, Any]) -> dict[str, Any]:
        response = self.client.table("listings").upsert(row, on_conflict="url_key").execute()
        return (response.data or [{}])[0]

    def update_listing(self, listing_id: str, fields: dict[str, Any]) -> None:
        self.client.table("listings").update(fields).eq("id", listing_id).execute()

    def update_listings(self, listing_ids: list[str], fields: dict[str, Any]) -> None:
        if listing_ids:
            self.client.table("listings").update(fields).in_("id", listing_ids).execute()

    def insert_feature_version(self, row: dict[str, Any]) -> None:
        self.client.table("listing_feature_versions").insert(row).execute()

    def find_listings_by_geo_signature(self, geo_signature: str | None, exclude_id: str) -> list[dict[str, Any]]:
        if not geo_signature:
            return []
        return (
            self.client.table("listings")
            .select("id, group_id, geo_signature, updated_at")
            .eq("geo_signature", geo_signature)
            .neq("id", exclude_id)
            .execute()
            .data
            or []
        )

    def list_recent_grouped_listings(self, exclude_id: str, since: str, limit: int) -> list[dict[str, Any]]:
        return (
            self.client.table("listings")
            .select("id, group_id, features, created_at")
            .neq("id", exclude_id)
            .not_.is_("group_id", "null")
            .gte("created_at", since)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
            .data
            or []
        )

    def list_ungrouped_listings(self, since: str, limit: int) -> list[dict[str, Any]]:
        return (
            self.client.table("listings")
            .select("id")
            .is_("group_id", "null")
            .gte("updated_at", since)
            .order("updated_at")
            .limit(limit)
            .execute()
            .data
            or []
        )

    def list_listings_needing_score(self, limit: int) -> list[dict[str, Any]]:
        return (
            self.client.table("listings")
            .select("id")
            .eq("needs_rescore", True)
            .order("updated_at")
            .limit(limit)
            .execute()
            .data
            or []
        )

    def list_listings_without_trust(self, limit: int) -> list[dict[str, Any]]:
        return (
            self.client.table("listings")
            .select("id")
            .is_("trust_computed_at", "null")
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
            .data
            or []
        )

    def list_recent_listings(self, since: str, limit: int) -> list[dict[str, Any]]:
        return (
            self.client.table("listings")
            .select("id, features, updated_at")
            .gte("updated_at", since)
            .order("updated_at", desc=True)
            .limit(limit)
            .execute()
            .data
            or []
        )

    # -- photos -----------------------------------------------------------

    def replace_photo_assets(self, listing_id: str, rows: list[dict[str, Any]]) -> None:
        self.client.table("photo_assets").delete().eq("listing_id", listing_id).execute()
        if rows:
            self.client.table("photo_assets").insert(rows).execute()

    def get_photo_assets(self, listing_id: str) -> list[dict[str, Any]]:
        return (
            self.client.table("photo_assets")
            .select("listing_id, src, phash, created_at")
            .eq("listing_id", listing_id)
            .execute()
            .data
            or []
        )

    def get_recent_photo_assets(self, exclude_listing_id: str, limit: int) -> list[dict[str, Any]]:
        return (
            self.client.table("photo_assets")
            .select("listing_id, src, phash, created_at")
            .neq("listing_id", exclude_listing_id)
            .not_.is_("phash", "null")
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
            .data
            or []
        )

    # -- dedup groups -----------------------------------------------------

    def create_group(self, row: dict[str, Any]) -> dict[str, Any]:
        response = self.client.table("dedup_groups").insert(row).execute()
        return (response.data or [row])[0]

    def get_group(self, group_id: str) -> dict[str, Any] | None:
        rows = self.client.table("dedup_groups").select("*").eq("id", group_id).limit(1).execute().data or []
        return rows[0] if rows else None

    def get_groups(self, group_ids: list[str]) -> list[dict[str, Any]]:
        if not group_ids:
            return []
        return self.client.table("dedup_groups").select("*").in_("id", group_ids).execute().data or []

    def find_groups_with_member(self, listing_id: str) -> list[dict[str, Any]]:
        return (
            self.client.table("dedup_groups").select("*").contains("member_ids", [listing_id]).execute().data or []
        )

    def update_group(self, group_id: str, fields: dict[str, Any]) -> None:
        self.client.table("dedup_groups").update(fields).eq("id", group_id).execute()

    def list_group_members(self, group_id: str) -> list[dict[str, Any]]:
        return self.client.table("listings").select("*").eq("group_id", group_id).execute().data or []

    # -- sights, scores, trust --------------------------------------------

    def insert_sight(self, row: dict[str, Any]) -> None:
        self.client.table("listing_sights").insert(row).execute()

    def list_sights(self, listing_id: str) -> list[dict[str, Any]]:
        return (
            self.client.table("listing_sights")
            .select("*")
            .eq("listing_id", listing_id)
            .order("seen_at")
            .execute()
            .data
            or []
        )

    def upsert_score(self, row: dict[str, Any]) -> None:
        self.client.table("listing_scores").upsert(row, on_conflict="listing_id").execute()

    def get_score(self, listing_id: str) -> dict[str, Any] | None:
        rows = (
            self.client.table("listing_scores").select("*").eq("listing_id", listing_id).limit(1).execute().data
            or []
        )
        return rows[0] if rows else None

    def upsert_trust(self, row: dict[str, Any]) -> None:
        self.client.table("trust_snapshots").upsert(row, on_conflict="listing_id").execute()

    # -- area stats, condition cache --------------------------------------

    def upsert_area_stats(self, row: dict[str, Any]) -> None:
        self.client.table("area_stats").upsert(row, on_conflict="area_slug").execute()

    def get_area_stats(self, area_slug: str) -> dict[str, Any] | None:
        rows = self.client.table("area_stats").select("*").eq("area_slug", area_slug).limit(1).execute().data or []
        return rows[0] if rows else None

    def get_condition_cache(self, key: str) -> float | None:
        rows = (
            self.client.table("condition_cache").select("score").eq("photo_set_key", key).limit(1).execute().data
            or []
        )
        if not rows or rows[0].get("score") is None:
            return None
        return float(rows[0]["score"])

    def put_condition_cache(self, key: str, score: float) -> None:
        self.client.table("condition_cache").upsert(
            {"photo_set_key": key, "score": score}, on_conflict="photo_set_key"
        ).execute()
