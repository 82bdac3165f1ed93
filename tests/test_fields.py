import pytest

from backend.zoopla.fields import (
    clean_text,
    dedupe,
    ensure_absolute_url,
    extract_listing_id,
    extract_property_type,
    extract_uk_postcode,
    first_present,
    get_path,
    parse_int,
    parse_price_value,
)


@pytest.mark.parametrize("text,expected", [
    ("Shoreditch, London E1 6AN", "E1 6AN"),
    ("SW1A1AA", "SW1A 1AA"),
    ("flat 3, 10 high street, sw1a 1aa", "SW1A 1AA"),
    ("Camden, London NW1", "NW1"),
    ("Somewhere in London", None),
    ("", None),
    (None, None),
])
def test_extract_uk_postcode(text, expected):
    assert extract_uk_postcode(text) == expected


@pytest.mark.parametrize("value,expected", [
    ("£325,000", 325000),
    ("Offers over £1,250,000", 1250000),
    ("£1.2m", 1200000),
    ("£950 pcm", 950),
    (425000, 425000),
    ("POA", None),
    ("", None),
    (None, None),
    (True, None),
])
def test_parse_price_value(value, expected):
    assert parse_price_value(value) == expected


def test_clean_text_collapses_whitespace():
    assert clean_text("  2 bed\n\n  flat \t for sale ") == "2 bed flat for sale"
    assert clean_text("   ") is None


def test_ensure_absolute_url():
    assert ensure_absolute_url("/for-sale/details/123/") == "https://www.zoopla.co.uk/for-sale/details/123/"
    assert ensure_absolute_url("//lid.zoocdn.com/a.jpg") == "https://lid.zoocdn.com/a.jpg"
    assert ensure_absolute_url("https://example.com/x") == "https://example.com/x"
    assert ensure_absolute_url("data:image/png;base64,xx") == "data:image/png;base64,xx"
    assert ensure_absolute_url(None) is None


def test_extract_listing_id():
    assert extract_listing_id("https://www.zoopla.co.uk/for-sale/details/66412345/?search=1") == "66412345"
    assert extract_listing_id("listing_66412345") == "66412345"
    assert extract_listing_id("https://www.zoopla.co.uk/new-homes/details/12345678/") == "12345678"
    assert extract_listing_id("https://www.zoopla.co.uk/about/") is None


def test_extract_property_type_prefers_compound_types():
    assert extract_property_type("3 bed semi-detached house for sale") == "Semi-detached"
    assert extract_property_type("A lovely Flat near the park") == "Flat"
    assert extract_property_type("nothing useful") is None


def test_parse_int():
    assert parse_int("3 bedrooms") == 3
    assert parse_int(2.0) == 2
    assert parse_int("none") is None


def test_first_present_takes_first_non_empty_path():
    node = {"a": {"b": ""}, "c": [{"d": "x"}], "e": "y"}
    assert first_present(node, [("a", "b"), ("c", 0, "d"), ("e",)]) == "x"
    assert first_present(node, [("missing",), ("e",)]) == "y"
    assert first_present(node, [("missing",)]) is None


def test_first_present_skips_values_rejected_by_coercer():
    node = {"price": {"amount": 1}, "displayPrice": "£200,000"}
    assert first_present(node, [("price",), ("displayPrice",)], parse_price_value) == 200000


def test_get_path_handles_indexes_and_wrong_types():
    assert get_path({"a": [1, 2]}, ("a", 1)) == 2
    assert get_path({"a": [1, 2]}, ("a", 5)) is None
    assert get_path({"a": "text"}, ("a", "b")) is None


def test_dedupe_keeps_order():
    assert dedupe(["b", "a", "b", None, "", "c"]) == ["b", "a", "c"]
