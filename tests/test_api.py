from backend.py_models.property import ListingSource
from backend.zoopla.api import (
    extract_api_listings,
    find_candidates,
    looks_like_listing,
    parse_json_payload,
    stub_from_candidate,
)

ZOOPLA_LIKE = {
    "props": {
        "pageProps": {
            "regularListingsFormatted": [
                {
                    "listingId": "66412345",
                    "listingUris": {"detail": "/for-sale/details/66412345/"},
                    "title": "2 bed flat for sale",
                    "address": "Shoreditch, London E1 6AN",
                    "price": "£325,000",
                    "features": [
                        {"iconId": "bed", "content": 2},
                        {"iconId": "bath", "content": 1},
                        {"iconId": "chair", "content": 1},
                    ],
                    "location": {"coordinates": {"latitude": 51.52, "longitude": -0.08}},
                    "image": {"src": "//lid.zoocdn.com/645/430/abc.jpg"},
                    "branch": {"name": "Foxtons - Shoreditch"},
                },
                {
                    "listingId": 66412346,
                    "listingUris": {"detail": "/for-sale/details/66412346/"},
                    "title": "3 bed terraced house for sale",
                    "address": "Hackney, London E8",
                    "priceUnformatted": 650000,
                },
            ]
        }
    }
}


def test_finds_listing_arrays_at_any_depth():
    found = find_candidates(ZOOPLA_LIKE)
    ids = [str(c["listingId"]) for c in found if "listingId" in c]
    assert ids == ["66412345", "66412346"]


def test_traversal_survives_reference_cycles():
    a = {"items": []}
    b = {"parent": a, "items": [{"id": "1", "url": "/for-sale/details/1/", "price": "£1"}]}
    a["items"].append(b)
    a["self"] = a
    found = find_candidates(a)
    assert any(c.get("id") == "1" for c in found)


def test_iteration_cap_is_a_circuit_breaker():
    deep = {"listings": [{"id": str(i), "url": f"/for-sale/details/{i}/"} for i in range(50)]}
    assert len(find_candidates(deep, max_iterations=1)) == 0
    assert len(find_candidates(deep)) == 50


def test_predicate_needs_id_or_url():
    assert looks_like_listing({"listingId": "1"})
    assert looks_like_listing({"detailUrl": "/for-sale/details/1/"})
    assert not looks_like_listing({"title": "no identity"})
    assert not looks_like_listing(["not", "a", "dict"])


def test_stub_normalizes_synonyms():
    node = ZOOPLA_LIKE["props"]["pageProps"]["regularListingsFormatted"][0]
    stub = stub_from_candidate(node)
    assert stub.listing_id == "66412345"
    assert stub.url == "https://www.zoopla.co.uk/for-sale/details/66412345/"
    assert stub.price_value == 325000
    assert stub.price_currency == "GBP"
    assert (stub.beds, stub.baths, stub.receptions) == (2, 1, 1)
    assert stub.latitude == 51.52 and stub.longitude == -0.08
    assert stub.image == "https://lid.zoocdn.com/645/430/abc.jpg"
    assert stub.agent_name == "Foxtons - Shoreditch"
    assert stub.property_type == "Flat"
    assert stub.source is ListingSource.API


def test_numeric_ids_become_strings():
    node = ZOOPLA_LIKE["props"]["pageProps"]["regularListingsFormatted"][1]
    stub = stub_from_candidate(node)
    assert stub.listing_id == "66412346"
    assert stub.price_value == 650000


def test_non_listing_objects_with_ids_are_rejected():
    payload = {
        "results": [
            {
                "listingId": "1",
                "detailUrl": "/for-sale/details/1/",
                "price": "£100,000",
                "images": [{"id": 9, "url": "https://lid.zoocdn.com/a.jpg"}, {"id": 10, "url": "https://lid.zoocdn.com/b.jpg"}],
            }
        ]
    }
    stubs = extract_api_listings(payload)
    assert [s.listing_id for s in stubs] == ["1"]


def test_local_dedup_by_identity():
    payload = {
        "a": [{"listingId": "7", "title": "first", "price": "£1"}],
        "b": [{"listingId": "7", "title": "second", "price": "£1"}],
    }
    stubs = extract_api_listings(payload)
    assert len(stubs) == 1
    assert stubs[0].title == "first"


def test_id_is_derived_from_url_when_missing():
    stubs = extract_api_listings([{"url": "/for-sale/details/123456/", "title": "Flat"}])
    assert stubs[0].listing_id == "123456"


def test_parse_json_payload_tolerates_shields_and_rejects_html():
    assert parse_json_payload(")]}'\n{\"a\": 1}") == {"a": 1}
    assert parse_json_payload("for(;;);[1]") == [1]
    assert parse_json_payload("<!DOCTYPE html><html></html>") is None
    assert parse_json_payload("not json") is None
    assert extract_api_listings("<html>blocked</html>") == []


def test_navigation_arrays_are_not_listings():
    state = {"header": {"nav": [
        {"id": "buy", "title": "Buy", "url": "/for-sale/"},
        {"id": "rent", "title": "Rent", "url": "/to-rent/"},
    ]}}
    assert extract_api_listings(state) == []
