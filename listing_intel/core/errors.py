from __future__ import annotations


class ListingIntelError(Exception):
    """Base error for the valuation pipeline."""


class ListingNotFoundError(ListingIntelError):
    def __init__(self, listing_id: str) -> None:
        super().__init__(f"Listing not found: {listing_id}")
        self.listing_id = listing_id


class GroupNotFoundError(ListingIntelError):
    def __init__(self, group_id: str) -> None:
        super().__init__(f"Dedup group not found: {group_id}")
        self.group_id = group_id


class CanonicalUrlError(ListingIntelError):
    """Requested canonical URL does not belong to a current group member."""

    def __init__(self, group_id: str, source_url: str) -> None:
        super().__init__(f"URL {source_url!r} is not a member of group {group_id}")
        self.group_id = group_id
        self.source_url = source_url
