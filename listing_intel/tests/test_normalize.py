import math

from listing_intel.core.config import NormalizerConfig
from listing_intel.core.geocode import GeocodeResult
from listing_intel.core.models import Missing, Parsed, Unparsable
from listing_intel.core.normalize import (
    area_slug_from_address,
    convert_currency,
    detect_currency,
    normalize,
    normalize_url,
    parse_floor,
    parse_number,
)


class _StaticGeocoder:
    def __init__(self, result):
        self.result = result
        self.calls = []

    def resolve(self, address):
        self.calls.append(address)
        return self.result


class _BrokenGeocoder:
    def resolve(self, address):
        raise TimeoutError("geocoder timed out")


def test_parse_number_handles_ro_and_en_separators():
    assert parse_number("123.456 lei") == Parsed(123456.0)
    assert parse_number("1.234,56") == Parsed(1234.56)
    assert parse_number("1,234.56") == Parsed(1234.56)
    assert parse_number("85,5 mp") == Parsed(85.5)
    assert parse_number("120 000 €") == Parsed(120000.0)


def test_parse_number_missing_and_unparsable():
    assert parse_number(None) == Missing()
    assert parse_number("   ") == Missing()
    assert parse_number("la cerere") == Unparsable("la cerere")


def test_parse_floor_maps_words():
    assert parse_floor("Parter") == Parsed(0)
    assert parse_floor("demisol") == Parsed(-1)
    assert parse_floor("etaj 3") == Parsed(3)


def test_detect_currency_defaults_to_eur():
    assert detect_currency("lei") == "RON"
    assert detect_currency(None, "95.000 €") == "EUR"
    assert detect_currency("USD") == "EUR"


def test_ron_price_is_authoritative_and_eur_is_derived():
    features = normalize({"source_url": "https://example.ro/a/1", "price": "123.456 lei"})

    assert features.currency == "RON"
    assert features.price_ron == 123456
    assert features.price_eur is not None and features.price_eur > 0
    assert features.price_eur == round(123456 / NormalizerConfig().exchange_rate_ron_per_eur)


def test_currency_round_trip_stays_within_one_unit():
    rate = 4.97
    for price in (1, 999, 54321, 123456, 987654):
        eur, ron = convert_currency(price, "EUR", rate)
        back_eur, _ = convert_currency(ron, "RON", rate)
        assert eur == price
        assert abs(back_eur - price) <= 1


def test_ron_round_trip_settles_after_one_pass():
    rate = 4.95
    for price in (1, 999, 54321, 123456, 987654):
        eur, ron = convert_currency(price, "RON", rate)
        _, back_ron = convert_currency(eur, "EUR", rate)
        again_eur, _ = convert_currency(back_ron, "RON", rate)
        assert ron == price
        assert abs(back_ron - price) <= math.ceil(rate / 2)
        assert again_eur == eur
        assert convert_currency(again_eur, "EUR", rate)[1] == back_ron


def test_unparsable_fields_become_none_without_raising():
    features = normalize(
        {
            "source_url": "https://example.ro/a/2",
            "price": "pret la cerere",
            "area": "n/a",
            "rooms": "multe",
            "year_built": "vechi",
            "lat": "abc",
        }
    )

    assert features.price_eur is None
    assert features.price_ron is None
    assert features.area_m2 is None
    assert features.rooms is None
    assert features.year_built is None
    assert features.lat is None
    assert features.dist_metro_m is None


def test_area_slug_falls_back_to_address_without_geocoder():
    features = normalize(
        {"source_url": "https://example.ro/a/3", "address": "Str. Lipscani 10, Centrul Vechi, Bucuresti"}
    )

    assert features.area_slug == "bucuresti-centrul-vechi"
    assert features.city == "Bucuresti"


def test_area_slug_uses_grid_when_only_coordinates_exist():
    features = normalize({"source_url": "https://example.ro/a/4", "lat": "44.4312", "lng": "26.1021"})

    assert features.area_slug == "g-44.43-26.10"
    assert features.dist_metro_m is not None
    assert features.time_to_metro_min is not None


def test_geocoder_result_takes_precedence_for_area_and_coordinates():
    geocoder = _StaticGeocoder(GeocodeResult(lat=44.4355, lng=26.1014, city="București", neighborhood="Universitate"))

    features = normalize(
        {"source_url": "https://example.ro/a/5", "address": "Bd. Regina Elisabeta 5, Bucuresti"},
        geocoder=geocoder,
    )

    assert geocoder.calls == ["Bd. Regina Elisabeta 5, Bucuresti"]
    assert features.area_slug == "bucuresti-universitate"
    assert features.lat == 44.4355
    assert features.dist_metro_m is not None and features.dist_metro_m < 50


def test_geocoder_failure_falls_back_to_local_derivation():
    features = normalize(
        {"source_url": "https://example.ro/a/6", "address": "Aleea Barajul Uzului 3, Titan, Bucuresti"},
        geocoder=_BrokenGeocoder(),
    )

    assert features.lat is None
    assert features.area_slug == "bucuresti-titan"


def test_normalize_url_strips_tracking_and_www():
    assert normalize_url("https://www.Imobiliare.ro/oferta/123/?utm_source=x&b=2&a=1#photos") == (
        "https://imobiliare.ro/oferta/123?a=1&b=2"
    )
    assert normalize_url("") is None


def test_area_slug_from_address_single_part():
    assert area_slug_from_address("Cluj-Napoca") == "cluj-napoca"
    assert area_slug_from_address(None) is None


def test_photos_are_deduplicated_in_order():
    features = normalize(
        {
            "source_url": "https://example.ro/a/7",
            "photos": ["https://img/1.jpg", {"url": "https://img/2.jpg"}, "https://img/1.jpg"],
        }
    )

    assert features.photos == ["https://img/1.jpg", "https://img/2.jpg"]
