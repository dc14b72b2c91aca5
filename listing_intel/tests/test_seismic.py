import json

from listing_intel.core.config import ValuationConfig
from listing_intel.core.seismic import assess_seismic, risk_class, seismic_score, year_penalty


def test_central_old_building_is_rs1():
    config = ValuationConfig()
    score = seismic_score(44.435, 26.10, 1935, config)

    assert score == 0.8
    assert risk_class(score, config) == "RS1"


def test_outer_new_building_is_low_risk():
    config = ValuationConfig()
    score = seismic_score(44.38, 26.17, 2015, config)

    assert score == 0.3
    assert risk_class(score, config) == "none"


def test_unknown_year_uses_default_penalty():
    config = ValuationConfig()

    assert year_penalty(None, config) == 0.15
    assert seismic_score(44.435, 26.10, None, config) == 0.65
    assert risk_class(0.65, config) == "RS2"


def test_missing_coordinates_is_unknown():
    score, klass, explain = assess_seismic(None, 26.1, 1960, ValuationConfig())

    assert score is None
    assert klass == "unknown"
    assert explain["reason"] == "missing_coordinates"


def test_dataset_match_overrides_heuristic_class(tmp_path):
    dataset = tmp_path / "rs.json"
    dataset.write_text(
        json.dumps([{"lat": 44.3801, "lng": 26.1701, "rs_class": "rs1", "source_url": "https://amccrs.pmb.ro/x"}]),
        encoding="utf-8",
    )
    config = ValuationConfig(seismic_dataset_path=str(dataset))

    score, klass, explain = assess_seismic(44.3800, 26.1700, 2015, config)

    assert score == 0.3
    assert klass == "RS1"
    assert explain["method"] == "dataset"
    assert explain["dataset_match"]["distance_m"] <= 40


def test_missing_dataset_file_falls_back_to_heuristic(tmp_path):
    config = ValuationConfig(seismic_dataset_path=str(tmp_path / "absent.json"))

    _, klass, explain = assess_seismic(44.38, 26.17, 2015, config)

    assert klass == "none"
    assert explain["method"] == "heuristic"
