from listing_intel.core.models import DedupGroup, NormalizedFeatures, PhotoMatch, ScoreResult
from listing_intel.core.provenance import build_events, is_price_drop, price_swings
from listing_intel.core.trust import compute_trust


def _complete_features():
    return NormalizedFeatures(
        price_eur=100000,
        area_m2=55.0,
        rooms=2,
        lat=44.43,
        lng=26.10,
        year_built=1985,
        dist_metro_m=400,
    )


def _sight(day, price, title="Apartament 2 camere", contact="0722000000"):
    return {"seen_at": f"2026-02-{day:02d}T08:00:00+00:00", "price_eur": price, "title": title, "contact": contact}


def _codes(snapshot):
    return [flag["code"] for flag in snapshot.flags]


def test_clean_complete_listing_is_high_trust():
    snapshot = compute_trust("a", _complete_features(), ScoreResult("a", avm_conf=0.7), [])

    assert snapshot.score == 100
    assert snapshot.badge == "High"
    assert set(_codes(snapshot)) == {"complete", "avm_confident"}
    assert 0.0 <= snapshot.confidence <= 1.0


def test_photo_reuse_records_other_listing_and_distance():
    matches = [
        PhotoMatch("a", "x", "https://img/a1.jpg", "https://img/x1.jpg", 2),
        PhotoMatch("a", "x", "https://img/a2.jpg", "https://img/x7.jpg", 5),
        PhotoMatch("a", "y", "https://img/a1.jpg", "https://img/y1.jpg", 4),
        PhotoMatch("a", "z", "https://img/a1.jpg", "https://img/z1.jpg", 6),
    ]

    snapshot = compute_trust("a", NormalizedFeatures(), ScoreResult("a"), matches)

    reuse = next(flag for flag in snapshot.flags if flag["code"] == "photo_reuse")
    assert reuse["impact"] == -25
    assert reuse["matches"][0] == {"listing_id": "x", "distance": 2}
    assert {entry["listing_id"] for entry in reuse["matches"]} == {"x", "y", "z"}
    assert snapshot.score == 100 - 25 - 10 - 3
    assert snapshot.badge == "Medium"


def test_matches_inside_own_group_are_not_reuse():
    group = DedupGroup(id="g", canonical_url="https://a", member_ids=["a", "x"])
    matches = [PhotoMatch("a", "x", "https://img/a1.jpg", "https://img/x1.jpg", 1)]

    snapshot = compute_trust("a", _complete_features(), ScoreResult("a"), matches, group=group)

    assert "photo_reuse" not in _codes(snapshot)
    assert "group_size" in _codes(snapshot)


def test_large_price_swings_cost_trust():
    sights = [_sight(1, 100000), _sight(5, 80000), _sight(9, 100000)]

    snapshot = compute_trust("a", _complete_features(), ScoreResult("a"), [], sights=sights)

    swing = next(flag for flag in snapshot.flags if flag["code"] == "price_swings")
    assert swing["impact"] == -20
    assert len(swing["swings"]) == 2
    assert "price_consistent" not in _codes(snapshot)


def test_consistent_revisits_add_a_small_bonus():
    sights = [_sight(1, 100000), _sight(3, 100000), _sight(6, 100000)]

    snapshot = compute_trust("a", _complete_features(), ScoreResult("a"), [], sights=sights)

    consistent = next(flag for flag in snapshot.flags if flag["code"] == "price_consistent")
    assert consistent["detail"] == "revisited 2 times with consistent price"
    assert consistent["impact"] == 2


def test_regrouping_lowers_confidence():
    stable = compute_trust("a", _complete_features(), ScoreResult("a"), [])
    churned = compute_trust("a", _complete_features(), ScoreResult("a"), [], regroup_count=3)

    assert churned.confidence < stable.confidence
    assert "regrouped" in _codes(churned)


def test_score_is_clamped_to_zero():
    matches = [PhotoMatch("a", f"o{i}", "s", f"o{i}.jpg", 0) for i in range(10)]
    sights = [_sight(1, 100000, contact="1"), _sight(2, 50000, contact="2"), _sight(3, 120000, contact="3")]

    snapshot = compute_trust("a", NormalizedFeatures(), ScoreResult("a"), matches, sights=sights)

    assert 0 <= snapshot.score <= 100
    assert snapshot.badge == "Low"


def test_build_events_orders_sights_and_detects_changes():
    events = build_events([_sight(4, 95000, title="Apartament renovat"), _sight(1, 100000)])

    assert [event["kind"] for event in events] == ["LISTED", "PRICE_CHANGE", "RELABEL"]
    assert events[1]["payload"]["pct"] == -5.0
    assert price_swings(events) == []


def test_is_price_drop_threshold():
    assert is_price_drop(100000, 95000) is True
    assert is_price_drop(100000, 96000) is False
    assert is_price_drop(0, 10) is False
