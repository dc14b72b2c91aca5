from listing_intel.core.config import ValuationConfig
from listing_intel.core.models import NormalizedFeatures
from listing_intel.core.normalize import normalize
from listing_intel.core.scoring import ScoringContext, build_area_stats, percentile, score_listing


class _FixedCondition:
    def assess(self, photo_urls):
        return "decent", 0.5, {"source": "test"}


def test_percentile_basic():
    values = [1.0, 2.0, 3.0, 4.0]
    assert percentile(values, 0.5) == 2.5


def test_build_area_stats_marks_min_sample_used():
    stats = build_area_stats(
        "bucuresti-titan",
        [
            {"price_eur": 100000, "area_m2": 50, "listing_type": "sale"},
            {"price_eur": 120000, "area_m2": 60, "listing_type": "sale"},
            {"price_eur": 500, "area_m2": 50, "listing_type": "rent"},
            {"price_eur": None, "area_m2": 50},
        ],
    )
    assert stats.sale_count == 2
    assert stats.rent_count == 1
    assert stats.median_eur_m2 == 2000.0
    assert stats.rent_comps_eur_m2 == [10.0]
    assert stats.min_sample_used is True


def test_badge_stays_undefined_until_an_avm_band_exists():
    features = normalize({"source_url": "https://imobiliare.ro/oferta/77", "price": "123.456 lei"})

    result = score_listing("l1", features, ValuationConfig())

    assert features.price_ron == 123456
    assert features.price_eur > 0
    assert result.avm_mid is None
    assert result.price_badge is None
    assert result.tts_bucket is None
    assert result.risk_class == "unknown"
    assert "avm" in result.explain


def test_comparable_rich_band_marks_low_asking_price_underpriced():
    features = NormalizedFeatures(price_eur=90000, area_m2=60.0, area_slug="bucuresti-titan")
    context = ScoringContext(
        area_stats={"median_eur_m2": 2000.0, "sale_count": 60},
        season="high",
    )

    result = score_listing("l2", features, ValuationConfig(), context)

    assert result.avm_mid == 120000
    assert result.avm_low <= 120000 <= result.avm_high
    assert result.price_badge == "Underpriced"
    assert result.tts_bucket == "<30"


def test_missing_inputs_degrade_only_their_own_model():
    features = NormalizedFeatures(
        price_eur=150000,
        area_m2=70.0,
        area_slug="bucuresti-universitate",
        lat=44.4355,
        lng=26.1014,
        year_built=1938,
        photos=["https://img/1.jpg"],
    )
    context = ScoringContext(
        area_stats={"median_eur_m2": 2100.0, "sale_count": 45},
        condition_scorer=_FixedCondition(),
        season="low",
    )

    result = score_listing("l3", features, ValuationConfig(), context)

    assert result.condition == "decent"
    assert result.risk_class == "RS1"
    assert result.avm_mid is not None
    assert result.yield_verdict is None
    assert result.explain["yield"]["reason"] == "missing_inputs"


def test_yield_uses_area_rent_comparables():
    features = NormalizedFeatures(price_eur=50000, area_m2=40.0, area_slug="bucuresti-berceni")
    context = ScoringContext(rent_comps=[8.0, 10.0, 9.0, 11.0])

    result = score_listing("l4", features, ValuationConfig(), context)

    assert result.explain["yield"]["rent_m2"] == 9.5
    assert result.yield_gross == round(9.5 * 40 * 12 / 50000, 4)
    assert result.yield_verdict in {"ok", "slab"}


def test_rental_listing_has_no_yield():
    features = NormalizedFeatures(price_eur=450, area_m2=40.0, listing_type="rent")

    result = score_listing("l5", features, ValuationConfig(), ScoringContext(rent_comps=[10.0]))

    assert result.yield_gross is None
    assert result.explain["yield"]["reason"] == "rental_listing"


def test_group_snapshot_fills_missing_fields():
    features = NormalizedFeatures(price_eur=100000, area_slug="bucuresti-titan")
    snapshot = {"features": {"area_m2": 55.0, "lat": 44.4258, "lng": 26.1705, "year_built": 1985}}

    result = score_listing(
        "l6",
        features,
        ValuationConfig(),
        ScoringContext(area_stats={"median_eur_m2": 1900.0, "sale_count": 35}, group_snapshot=snapshot),
    )

    assert result.explain["group_filled_fields"] == ["area_m2", "lat", "lng", "year_built"]
    assert result.avm_mid is not None
    assert result.risk_class != "unknown"
