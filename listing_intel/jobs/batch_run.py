from __future__ import annotations

import argparse
import logging
import threading
import time
import uuid
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import httpx

from listing_intel.core.condition import ConditionScorer, HttpVisionScorer
from listing_intel.core.config import AppConfig, load_config
from listing_intel.core.dedupe import DedupGrouper
from listing_intel.core.errors import ListingNotFoundError
from listing_intel.core.geocode import Geocoder, MapboxGeocoder
from listing_intel.core.models import (
    BatchResult,
    DedupGroup,
    NormalizedFeatures,
    RawListing,
    ScoreResult,
    TrustSnapshot,
)
from listing_intel.core.normalize import features_to_version_record, normalize, normalize_url
from listing_intel.core.phash import fetch_phash
from listing_intel.core.rate_limit import TokenBucket
from listing_intel.core.scoring import ScoringContext, build_area_stats, score_listing
from listing_intel.core.similarity import find_photo_matches, geo_signature, listing_signature
from listing_intel.core.supabase_repo import SupabaseRepo
from listing_intel.core.trust import compute_trust


logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
LOGGER = logging.getLogger(__name__)

JOB_NAMES = ("ingest", "dedup-attach", "score", "trust-rebuild", "area-refresh")
_SKIPPED = object()


def run_ingest(
    repo: SupabaseRepo,
    config: AppConfig,
    geocoder: Geocoder | None = None,
    http_client: httpx.Client | None = None,
    grouper: DedupGrouper | None = None,
    stop_event: threading.Event | None = None,
) -> BatchResult:
    """
    Normalize pending raw listings into `listings`, one upsert per normalized URL.
    """
    grouper = grouper or DedupGrouper(repo, config.similarity)
    pending = repo.fetch_pending_raw(_since(config), config.batch.batch_size)
    owns_client = http_client is None
    client = http_client or httpx.Client(timeout=15.0, follow_redirects=True)
    try:
        return _run_batch(
            "ingest",
            pending,
            lambda raw_row: _ingest_with_status(repo, raw_row, config, geocoder, client, grouper),
            key=lambda raw_row: str(raw_row.get("id")),
            stop_event=stop_event,
        )
    finally:
        if owns_client:
            client.close()


def run_dedup_attach(
    repo: SupabaseRepo,
    config: AppConfig,
    grouper: DedupGrouper | None = None,
    stop_event: threading.Event | None = None,
) -> BatchResult:
    # Sequential: two new listings that match each other must not both open a group.
    grouper = grouper or DedupGrouper(repo, config.similarity)
    rows = repo.list_ungrouped_listings(_since(config), config.batch.batch_size)
    return _run_batch(
        "dedup-attach",
        rows,
        lambda row: grouper.attach_to_group(str(row["id"])),
        key=lambda row: str(row.get("id")),
        stop_event=stop_event,
    )


def run_scoring(
    repo: SupabaseRepo,
    config: AppConfig,
    condition_scorer: ConditionScorer | None = None,
    season: str | None = None,
    stop_event: threading.Event | None = None,
) -> BatchResult:
    condition_scorer = condition_scorer or ConditionScorer(HttpVisionScorer(), store=repo, config=config.valuation)
    rows = repo.list_listings_needing_score(config.batch.batch_size)
    return _run_batch(
        "score",
        rows,
        lambda row: score_and_trust(repo, str(row["id"]), config, condition_scorer, season),
        key=lambda row: str(row.get("id")),
        max_workers=config.batch.max_workers,
        stop_event=stop_event,
    )


def run_trust_rebuild(
    repo: SupabaseRepo,
    config: AppConfig,
    condition_scorer: ConditionScorer | None = None,
    season: str | None = None,
    stop_event: threading.Event | None = None,
) -> BatchResult:
    """
    Listings that never got a trust snapshot. Trust only follows a fresh score,
    so each one goes through a full scoring pass.
    """
    condition_scorer = condition_scorer or ConditionScorer(HttpVisionScorer(), store=repo, config=config.valuation)
    rows = repo.list_listings_without_trust(config.batch.batch_size)
    return _run_batch(
        "trust-rebuild",
        rows,
        lambda row: score_and_trust(repo, str(row["id"]), config, condition_scorer, season),
        key=lambda row: str(row.get("id")),
        max_workers=config.batch.max_workers,
        stop_event=stop_event,
    )


def run_area_refresh(
    repo: SupabaseRepo,
    config: AppConfig,
    stop_event: threading.Event | None = None,
    limit: int = 5000,
) -> BatchResult:
    rows = repo.list_recent_listings(_since(config), limit)
    features_by_area: dict[str, list[dict[str, Any]]] = defaultdict(list)
    for row in rows:
        features = row.get("features") or {}
        if features.get("area_slug"):
            features_by_area[str(features["area_slug"])].append(features)

    def refresh(area_slug: str) -> None:
        stats = build_area_stats(area_slug, features_by_area[area_slug])
        repo.upsert_area_stats(stats.to_record())
        LOGGER.info(
            "Area=%s sale_count=%s rent_count=%s median_eur_m2=%s min_sample_used=%s",
            area_slug,
            stats.sale_count,
            stats.rent_count,
            stats.median_eur_m2,
            stats.min_sample_used,
        )

    return _run_batch("area-refresh", sorted(features_by_area), refresh, key=str, stop_event=stop_event)


def ingest_raw(
    repo: SupabaseRepo,
    raw_row: dict[str, Any],
    config: AppConfig,
    geocoder: Geocoder | None,
    http_client: httpx.Client,
    grouper: DedupGrouper,
) -> str:
    payload = dict(raw_row.get("raw_payload") or {})
    if raw_row.get("source_url") and not payload.get("source_url"):
        payload["source_url"] = raw_row["source_url"]
    raw = RawListing.from_payload(payload)
    url_key = normalize_url(raw.source_url)
    if not url_key:
        raise ValueError("Raw listing has no usable source URL.")

    features = normalize(raw, config.normalizer, geocoder)
    existing = repo.get_listing_by_url_key(url_key)
    now = _now()
    listing_id = str(existing["id"]) if existing else str(uuid.uuid4())
    version = int(existing.get("feature_version") or 0) + 1 if existing else 1
    record: dict[str, Any] = {
        "id": listing_id,
        "url_key": url_key,
        "source_url": raw.source_url,
        "features": features.to_record(),
        "feature_version": version,
        "signature": listing_signature(raw.source_url, features.price_eur, features.area_m2),
        "geo_signature": geo_signature(
            features.lat, features.lng, features.area_m2, features.price_eur, features.floor, features.year_built
        ),
        "normalized_at": now,
        "updated_at": now,
        "needs_rescore": True,
    }
    if not existing:
        record.update({"created_at": now, "group_id": None, "regroup_count": 0, "trust_computed_at": None})
    repo.upsert_listing(record)
    repo.insert_feature_version(features_to_version_record(listing_id, version, features))
    repo.insert_sight(
        {
            "listing_id": listing_id,
            "seen_at": now,
            "source_url": raw.source_url,
            "price_eur": features.price_eur,
            "title": features.title,
            "contact": features.contact,
        }
    )
    repo.replace_photo_assets(listing_id, _hash_photos(listing_id, features.photos, http_client, config))

    if existing and existing.get("group_id"):
        grouper.rebuild_snapshot(str(existing["group_id"]))
    LOGGER.info("Ingested listing=%s version=%s url=%s", listing_id, version, url_key)
    return listing_id


def score_and_trust(
    repo: SupabaseRepo,
    listing_id: str,
    config: AppConfig,
    condition_scorer: ConditionScorer | None = None,
    season: str | None = None,
) -> tuple[ScoreResult, TrustSnapshot]:
    listing = repo.get_listing(listing_id)
    if listing is None:
        raise ListingNotFoundError(listing_id)
    features = NormalizedFeatures.from_record(listing.get("features"))
    group = _load_group(repo, listing)
    snapshot = group.snapshot if group else None

    area_slug = features.area_slug or ((snapshot or {}).get("features") or {}).get("area_slug")
    area_stats = repo.get_area_stats(area_slug) if area_slug else None
    context = ScoringContext(
        area_stats=area_stats,
        rent_comps=list((area_stats or {}).get("rent_comps_eur_m2") or []),
        group_snapshot=snapshot,
        condition_scorer=condition_scorer,
        season=season,
    )
    score = score_listing(listing_id, features, config.valuation, context)
    repo.upsert_score(score.to_record())

    trust = _compute_listing_trust(repo, listing, features, score, group, config)
    repo.upsert_trust(trust.to_record())
    now = _now()
    repo.update_listing(listing_id, {"needs_rescore": False, "scored_at": now, "trust_computed_at": now})
    LOGGER.info(
        "Scored listing=%s badge=%s tts=%s yield=%s risk=%s trust=%s",
        listing_id,
        score.price_badge,
        score.tts_bucket,
        score.yield_verdict,
        score.risk_class,
        trust.score,
    )
    return score, trust


def process_listing(
    repo: SupabaseRepo,
    listing_id: str,
    config: AppConfig | None = None,
    grouper: DedupGrouper | None = None,
    condition_scorer: ConditionScorer | None = None,
) -> tuple[ScoreResult, TrustSnapshot]:
    """
    Group, score and trust one already-normalized listing in a single pass.
    """
    config = config or load_config()
    grouper = grouper or DedupGrouper(repo, config.similarity)
    grouper.attach_to_group(listing_id)
    return score_and_trust(repo, listing_id, config, condition_scorer)


def run_job(
    job: str,
    repo: SupabaseRepo,
    config: AppConfig,
    stop_event: threading.Event | None = None,
) -> BatchResult:
    if job == "ingest":
        geocoder = MapboxGeocoder(
            bucket=TokenBucket(config.rate_limit.capacity, config.rate_limit.window_seconds)
        )
        return run_ingest(repo, config, geocoder=geocoder, stop_event=stop_event)
    if job == "dedup-attach":
        return run_dedup_attach(repo, config, stop_event=stop_event)
    if job == "score":
        return run_scoring(repo, config, stop_event=stop_event)
    if job == "trust-rebuild":
        return run_trust_rebuild(repo, config, stop_event=stop_event)
    if job == "area-refresh":
        return run_area_refresh(repo, config, stop_event=stop_event)
    raise ValueError(f"Unknown job: {job}")


def _ingest_with_status(
    repo: SupabaseRepo,
    raw_row: dict[str, Any],
    config: AppConfig,
    geocoder: Geocoder | None,
    http_client: httpx.Client,
    grouper: DedupGrouper,
) -> str:
    try:
        listing_id = ingest_raw(repo, raw_row, config, geocoder, http_client, grouper)
    except Exception as exc:  # noqa: BLE001
        repo.mark_raw_status(raw_row.get("id"), "failed", str(exc)[:500])
        raise
    repo.mark_raw_status(raw_row.get("id"), "processed")
    return listing_id


def _compute_listing_trust(
    repo: SupabaseRepo,
    listing: dict[str, Any],
    features: NormalizedFeatures,
    score: ScoreResult,
    group: DedupGroup | None,
    config: AppConfig,
) -> TrustSnapshot:
    listing_id = str(listing["id"])
    matches = find_photo_matches(
        listing_id,
        repo.get_photo_assets(listing_id),
        repo.get_recent_photo_assets(listing_id, config.similarity.candidate_pool),
        max_hamming=config.similarity.max_hamming,
    )
    return compute_trust(
        listing_id,
        features,
        score,
        matches,
        group=group,
        sights=repo.list_sights(listing_id),
        regroup_count=int(listing.get("regroup_count") or 0),
    )


def _load_group(repo: SupabaseRepo, listing: dict[str, Any]) -> DedupGroup | None:
    group_id = listing.get("group_id")
    if not group_id:
        return None
    row = repo.get_group(str(group_id))
    return DedupGroup.from_record(row) if row else None


def _hash_photos(
    listing_id: str,
    photos: list[str],
    http_client: httpx.Client,
    config: AppConfig,
) -> list[dict[str, Any]]:
    now = _now()
    return [
        {"listing_id": listing_id, "src": src, "phash": fetch_phash(src, http_client), "created_at": now}
        for src in photos[: config.similarity.max_photos_per_listing]
    ]


def _run_batch(
    job: str,
    records: list[Any],
    handler: Callable[[Any], Any],
    key: Callable[[Any], str],
    max_workers: int = 1,
    stop_event: threading.Event | None = None,
) -> BatchResult:
    result = BatchResult(job=job)
    started = time.monotonic()

    def guarded(record: Any) -> Any:
        if stop_event is not None and stop_event.is_set():
            return _SKIPPED
        return handler(record)

    def tally(record: Any, call: Callable[[], Any]) -> None:
        try:
            outcome = call()
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Job=%s record=%s failed: %s", job, key(record), exc)
            result.failed += 1
            result.failures.append(key(record))
            return
        if outcome is _SKIPPED:
            result.skipped += 1
            result.cancelled = True
        else:
            result.processed += 1

    if max_workers > 1 and len(records) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures = {pool.submit(guarded, record): record for record in records}
            for future in as_completed(futures):
                tally(futures[future], future.result)
    else:
        for record in records:
            tally(record, lambda record=record: guarded(record))

    LOGGER.info(
        "Job=%s processed=%s failed=%s skipped=%s cancelled=%s elapsed=%.1fs",
        job,
        result.processed,
        result.failed,
        result.skipped,
        result.cancelled,
        time.monotonic() - started,
    )
    return result


def _since(config: AppConfig) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=config.batch.lookback_days)).isoformat()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run listing ingestion, grouping and valuation batches.")
    parser.add_argument("--job", choices=[*JOB_NAMES, "all"], default="all", help="Batch job to run.")
    args = parser.parse_args()

    app_config = load_config()
    supabase_repo = SupabaseRepo()
    jobs = JOB_NAMES if args.job == "all" else (args.job,)
    for job_name in jobs:
        run_job(job_name, supabase_repo, app_config)
