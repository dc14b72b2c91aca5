from __future__ import annotations

import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator
from urllib.parse import urlparse

from listing_intel.core.config import SimilarityConfig
from listing_intel.core.errors import CanonicalUrlError, GroupNotFoundError, ListingNotFoundError
from listing_intel.core.models import DedupGroup, GroupSnapshot, NormalizedFeatures
from listing_intel.core.normalize import normalize_url
from listing_intel.core.similarity import find_photo_matches, fuzzy_score
from listing_intel.core.supabase_repo import SupabaseRepo


LOGGER = logging.getLogger(__name__)

_SNAPSHOT_FIELDS = [name for name in NormalizedFeatures.__dataclass_fields__ if name != "photos"]


class GroupLocks:
    """One lock per group id; groups never wait on each other."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    @contextmanager
    def hold(self, group_id: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(group_id, threading.Lock())
        with lock:
            yield


def choose_group(candidates: list[dict[str, Any]]) -> dict[str, Any] | None:
    """
    Most recently updated group among equally ranked candidates.
    """
    if not candidates:
        return None
    return max(candidates, key=lambda row: (str(row.get("updated_at") or ""), str(row.get("id"))))


def build_group_snapshot(group: DedupGroup, members: list[dict[str, Any]]) -> GroupSnapshot:
    """
    Merged best-known view of a group, always rebuilt from every member.
    """
    if not members:
        raise ValueError(f"Group {group.id} has no members to snapshot.")

    newest_first = sorted(
        members,
        key=lambda row: str(row.get("normalized_at") or row.get("created_at") or ""),
        reverse=True,
    )
    merged: dict[str, Any] = {name: None for name in _SNAPSHOT_FIELDS}
    for row in newest_first:
        features = row.get("features") or {}
        for name in _SNAPSHOT_FIELDS:
            value = features.get(name)
            if merged[name] is None and value not in (None, ""):
                merged[name] = value

    oldest_first = sorted(members, key=lambda row: str(row.get("created_at") or ""))
    canonical_key = normalize_url(group.canonical_url)
    ordered = sorted(
        oldest_first,
        key=lambda row: 0 if normalize_url(row.get("source_url")) == canonical_key else 1,
    )
    photos: list[str] = []
    seen: set[str] = set()
    for row in ordered:
        for url in (row.get("features") or {}).get("photos") or []:
            if url not in seen:
                seen.add(url)
                photos.append(url)

    price_history = [
        {
            "listing_id": str(row.get("id")),
            "source_url": row.get("source_url"),
            "price_eur": (row.get("features") or {}).get("price_eur"),
            "created_at": row.get("created_at"),
        }
        for row in oldest_first
    ]
    prices = [entry["price_eur"] for entry in price_history if entry["price_eur"] is not None]
    domains = sorted({_domain(row.get("source_url")) for row in members if row.get("source_url")})

    return GroupSnapshot(
        group_id=group.id,
        canonical_url=group.canonical_url,
        features=merged,
        photos=photos,
        price_history=price_history,
        price_min=min(prices) if prices else None,
        price_max=max(prices) if prices else None,
        domains=domains,
        member_count=len(members),
        built_at=_now(),
    )


class DedupGrouper:
    def __init__(
        self,
        repo: SupabaseRepo,
        config: SimilarityConfig | None = None,
        locks: GroupLocks | None = None,
    ) -> None:
        self.repo = repo
        self.config = config or SimilarityConfig()
        self.locks = locks or GroupLocks()

    def attach_to_group(self, listing_id: str) -> str:
        """
        Put a listing into exactly one group, joining a matching group when a
        signature, photo or fuzzy match exists and opening a singleton otherwise.
        """
        listing = self.repo.get_listing(listing_id)
        if listing is None:
            raise ListingNotFoundError(listing_id)

        settled = self._settled_group(listing)
        if settled is not None:
            return settled

        target, reason = self._find_matching_group(listing)
        if target is None:
            return self._create_group(listing)

        group_id = str(target["id"])
        member_ids = self._join(listing, group_id, reason)
        LOGGER.info(
            "Attached listing=%s to group=%s channel=%s members=%s",
            listing_id,
            group_id,
            reason["channel"],
            len(member_ids),
        )
        return group_id

    def set_canonical(self, group_id: str, source_url: str) -> DedupGroup:
        """
        Operator override of the group representative. Rejects URLs that are
        not a current member without touching the group.
        """
        with self.locks.hold(group_id):
            row = self.repo.get_group(group_id)
            if row is None:
                raise GroupNotFoundError(group_id)
            members = self.repo.list_group_members(group_id)
            wanted = normalize_url(source_url)
            member = next(
                (m for m in members if wanted and normalize_url(m.get("source_url")) == wanted),
                None,
            )
            if member is None:
                raise CanonicalUrlError(group_id, source_url)

            if normalize_url(row.get("canonical_url")) != wanted:
                changes = int(row.get("canonical_changes") or 0) + 1
                self.repo.update_group(
                    group_id,
                    {"canonical_url": member["source_url"], "canonical_changes": changes, "updated_at": _now()},
                )
                self.repo.update_listings([str(m["id"]) for m in members], {"needs_rescore": True})
                LOGGER.info("Canonical changed group=%s url=%s", group_id, member["source_url"])
            self._rebuild_locked(group_id)
            refreshed = self.repo.get_group(group_id) or row
        return DedupGroup.from_record(refreshed)

    def rebuild_snapshot(self, group_id: str) -> bool:
        with self.locks.hold(group_id):
            return self._rebuild_locked(group_id)

    def _settled_group(self, listing: dict[str, Any]) -> str | None:
        # Membership is stored on the listing row and on the group row. A crash
        # between the two writes leaves one side set; finish that attach instead
        # of matching again.
        listing_id = str(listing["id"])
        holding = self.repo.find_groups_with_member(listing_id)
        current_id = str(listing.get("group_id") or "")
        if current_id:
            if any(str(row["id"]) == current_id for row in holding):
                return current_id
            if self.repo.get_group(current_id) is not None:
                LOGGER.warning("Completing membership listing=%s group=%s", listing_id, current_id)
                self._join(listing, current_id)
                return current_id

        chosen = choose_group(holding)
        if chosen is None:
            return None
        group_id = str(chosen["id"])
        LOGGER.warning("Completing membership listing=%s group=%s", listing_id, group_id)
        self._join(listing, group_id)
        return group_id

    def _find_matching_group(
        self, listing: dict[str, Any]
    ) -> tuple[dict[str, Any] | None, dict[str, Any] | None]:
        listing_id = str(listing["id"])
        signature_hits = self.repo.find_listings_by_geo_signature(listing.get("geo_signature"), exclude_id=listing_id)
        group_ids = {str(row["group_id"]) for row in signature_hits if row.get("group_id")}
        if group_ids:
            chosen = choose_group(self.repo.get_groups(sorted(group_ids)))
            if chosen is not None:
                return chosen, {"channel": "signature"}

        my_assets = self.repo.get_photo_assets(listing_id)
        matches = find_photo_matches(
            listing_id,
            my_assets,
            self.repo.get_recent_photo_assets(listing_id, self.config.candidate_pool),
            max_hamming=self.config.max_hamming,
        )
        photo_group_ids: set[str] = set()
        for other_id in {match.other_listing_id for match in matches}:
            other = self.repo.get_listing(other_id)
            if other and other.get("group_id"):
                photo_group_ids.add(str(other["group_id"]))
        if photo_group_ids:
            chosen = choose_group(self.repo.get_groups(sorted(photo_group_ids)))
            if chosen is not None:
                return chosen, {"channel": "photo", "min_distance": min(match.distance for match in matches)}

        return self._fuzzy_match(listing, [asset.get("phash") for asset in my_assets])

    def _fuzzy_match(
        self, listing: dict[str, Any], my_hashes: list[str | None]
    ) -> tuple[dict[str, Any] | None, dict[str, Any] | None]:
        listing_id = str(listing["id"])
        since = (datetime.now(timezone.utc) - timedelta(days=self.config.fuzzy_lookback_days)).isoformat()
        candidates = self.repo.list_recent_grouped_listings(listing_id, since, self.config.fuzzy_candidates)
        features = listing.get("features") or {}

        scored: list[tuple[float, dict[str, Any], str]] = []
        for row in candidates:
            other_hashes = [asset.get("phash") for asset in self.repo.get_photo_assets(str(row["id"]))]
            value, reasons = fuzzy_score(features, row.get("features") or {}, my_hashes, other_hashes)
            scored.append((value, reasons, str(row["group_id"])))
        if not scored:
            return None, None
        best = max(value for value, _, _ in scored)
        if best < self.config.fuzzy_threshold:
            return None, None

        top = {group_id: reasons for value, reasons, group_id in scored if value == best}
        chosen = choose_group(self.repo.get_groups(sorted(top)))
        if chosen is None:
            return None, None
        return chosen, {"channel": "fuzzy", "score": best, "reasons": top[str(chosen["id"])]}

    def _create_group(self, listing: dict[str, Any]) -> str:
        listing_id = str(listing["id"])
        group_id = str(uuid.uuid4())
        now = _now()
        # The group row must exist before the listing can point at it.
        self.repo.create_group(
            {
                "id": group_id,
                "canonical_url": listing.get("source_url"),
                "member_ids": [listing_id],
                "canonical_changes": 0,
                "snapshot_stale": True,
                "snapshot": None,
                "created_at": now,
                "updated_at": now,
            }
        )
        self._join(listing, group_id, {"channel": "new"})
        LOGGER.info("Created singleton group=%s for listing=%s", group_id, listing_id)
        return group_id

    def _join(self, listing: dict[str, Any], group_id: str, reason: dict[str, Any] | None = None) -> list[str]:
        """
        Listing side first, group side last. Either half on its own is picked up
        by `_settled_group` on the next attach.
        """
        listing_id = str(listing["id"])
        with self.locks.hold(group_id):
            row = self.repo.get_group(group_id)
            if row is None:
                raise GroupNotFoundError(group_id)
            now = _now()
            previous_id = str(listing.get("group_id") or "")
            if previous_id != group_id:
                fields: dict[str, Any] = {
                    "group_id": group_id,
                    "regroup_count": int(listing.get("regroup_count") or 0) + (1 if previous_id else 0),
                    "updated_at": now,
                }
                if reason is not None:
                    fields["group_match"] = reason
                self.repo.update_listing(listing_id, fields)

            member_ids = [str(x) for x in row.get("member_ids") or []]
            if listing_id not in member_ids:
                member_ids.append(listing_id)
                self.repo.update_group(group_id, {"member_ids": member_ids, "updated_at": now})
            self.repo.update_listings(member_ids, {"needs_rescore": True})
            self._rebuild_locked(group_id)
        return member_ids

    def _rebuild_locked(self, group_id: str) -> bool:
        # A stale snapshot is an accepted transient state; the next mutation retries.
        try:
            row = self.repo.get_group(group_id)
            if row is None:
                raise GroupNotFoundError(group_id)
            group = DedupGroup.from_record(row)
            members = self.repo.list_group_members(group_id)
            snapshot = build_group_snapshot(group, members)
            self.repo.update_group(group_id, {"snapshot": snapshot.to_record(), "snapshot_stale": False})
            return True
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Snapshot rebuild failed group=%s: %s", group_id, exc)
            try:
                self.repo.update_group(group_id, {"snapshot_stale": True})
            except Exception:  # noqa: BLE001
                LOGGER.exception("Could not flag stale snapshot group=%s", group_id)
            return False


def _domain(url: str | None) -> str:
    host = (urlparse(url or "").hostname or "unknown").lower()
    return host[4:] if host.startswith("www.") else host


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
