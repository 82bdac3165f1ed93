# backend/zoopla/api.py
"""
Best-effort listing extraction from arbitrary JSON payloads.

The private search API (and the hydration state embedded in search pages) changes
field names and nesting between deployments, so nothing here assumes a schema.
`find_candidates` walks the whole tree looking for arrays of listing-shaped objects
and `stub_from_candidate` normalizes each one through a table of field synonyms.
This is a heuristic: it can over-match objects that merely carry an `id`, and it
misses listings whose fields use names not in the tables below.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from backend.py_models.property import ListingSource, ListingStub
from backend.zoopla.fields import (
    as_text,
    ensure_absolute_url,
    extract_listing_id,
    extract_property_type,
    first_present,
    parse_float,
    parse_int,
    parse_price_value,
)

__all__ = [
    "find_candidates",
    "looks_like_listing",
    "stub_from_candidate",
    "extract_api_listings",
    "parse_json_payload",
]

log = logging.getLogger("zoopla.api")

MAX_ITERATIONS = 20_000
MAX_DEPTH = 64

ID_KEYS = ("listingId", "listing_id", "propertyId", "id")
URL_KEYS = ("listingUris", "detailUrl", "listingUrl", "url", "uri", "href")

_JSON_SHIELDS = ("for(;;);", ")]}',", ")]}'", "while(1);")


def parse_json_payload(text: Optional[str]) -> Any:
    """Decode a JSON body, tolerating anti-JSON shields. Returns None for HTML / junk."""
    if not text:
        return None
    t = text.strip()
    low = t[:512].lower()
    if "<html" in low or "<!doctype" in low:
        return None
    for prefix in _JSON_SHIELDS:
        if t.startswith(prefix):
            t = t[len(prefix):].lstrip()
            break
    try:
        return json.loads(t)
    except ValueError:
        return None


# --- traversal ----------------------------------------------------------------

def looks_like_listing(node: Any) -> bool:
    if not isinstance(node, dict):
        return False
    if any(node.get(k) not in (None, "") for k in ID_KEYS):
        return True
    return any(node.get(k) for k in URL_KEYS)


def find_candidates(root: Any, max_iterations: int = MAX_ITERATIONS, max_depth: int = MAX_DEPTH) -> List[dict]:
    """
    Iterative worklist walk over a JSON tree. Every element of an array that
    `looks_like_listing` is collected, and its children are still visited since
    listing arrays can sit at any depth. Containers are visited once (by identity)
    so self-referencing structures terminate; `max_iterations` is a circuit breaker.
    """
    found: List[dict] = []
    collected = set()
    visited = set()
    stack = [(root, 0)]
    iterations = 0
    while stack:
        iterations += 1
        if iterations > max_iterations:
            log.warning("API WALK | iteration cap %d hit; returning %d candidates", max_iterations, len(found))
            break
        node, depth = stack.pop()
        if not isinstance(node, (dict, list)):
            continue
        if id(node) in visited:
            continue
        visited.add(id(node))
        if depth >= max_depth:
            continue
        if isinstance(node, list):
            for item in node:
                if looks_like_listing(item) and id(item) not in collected:
                    collected.add(id(item))
                    found.append(item)
            children = node
        else:
            children = list(node.values())
        # reversed so items pop in document order
        for child in reversed(children):
            if isinstance(child, (dict, list)):
                stack.append((child, depth + 1))
    return found


# --- normalization ------------------------------------------------------------
# Ordered alternatives per logical field; the first present one wins.
API_FIELD_PATHS = {
    "listing_id": (("listingId",), ("listing_id",), ("propertyId",), ("id",)),
    "url": (
        ("listingUris", "detail"), ("detailUrl",), ("listingUrl",), ("url",),
        ("uri",), ("href",), ("link",),
    ),
    "title": (("title",), ("heading",), ("displayTitle",), ("propertyTitle",), ("name",)),
    "address": (
        ("address",), ("displayAddress",), ("addressFull",), ("address", "displayAddress"),
        ("address", "full"), ("address", "streetAddress"), ("location", "address"),
        ("location", "displayAddress"),
    ),
    "locality": (
        ("location", "town"), ("town",), ("locality",), ("city",),
        ("address", "addressLocality"), ("address", "town"), ("location", "locality"),
    ),
    "postal_code": (
        ("location", "postalCode"), ("location", "postcode"), ("postalCode",),
        ("postcode",), ("address", "postalCode"), ("outcode",),
    ),
    "price": (("price",), ("priceFormatted",), ("displayPrice",), ("pricing", "label"), ("priceLabel",)),
    "price_value": (
        ("priceUnformatted",), ("priceValue",), ("pricing", "value"), ("price", "amount"),
        ("price", "value"), ("price",), ("displayPrice",),
    ),
    "price_currency": (("priceCurrency",), ("currency",), ("pricing", "currency"), ("price", "currency")),
    "beds": (("numBedrooms",), ("bedrooms",), ("beds",), ("attributes", "bedrooms"), ("counts", "numBedrooms")),
    "baths": (("numBathrooms",), ("bathrooms",), ("baths",), ("attributes", "bathrooms"), ("counts", "numBathrooms")),
    "receptions": (("numLivingRooms",), ("receptions",), ("livingRooms",), ("counts", "numLivingRooms")),
    "property_type": (("propertyType",), ("property_type",), ("attributes", "propertyType")),
    "latitude": (
        ("location", "coordinates", "latitude"), ("location", "latitude"), ("coordinates", "latitude"),
        ("geo", "latitude"), ("latitude",), ("lat",),
    ),
    "longitude": (
        ("location", "coordinates", "longitude"), ("location", "longitude"), ("coordinates", "longitude"),
        ("geo", "longitude"), ("longitude",), ("lng",), ("lon",),
    ),
    "image": (
        ("image", "src"), ("image", "url"), ("imageUris", 0), ("images", 0, "src"),
        ("images", 0, "url"), ("images", 0), ("image",), ("mainImage",),
    ),
    "agent_name": (("branch", "name"), ("agent", "name"), ("agentName",), ("branchName",)),
    "description": (("summaryDescription",), ("description",), ("summary",)),
}

# Zoopla-style icon feature lists: [{"iconId": "bed", "content": 2}, ...]
_ICON_FIELDS = {"bed": "beds", "bath": "baths", "chair": "receptions"}


def _as_id(value) -> Optional[str]:
    if isinstance(value, bool) or isinstance(value, (dict, list)):
        return None
    return as_text(value)


def _icon_counts(node: dict) -> dict:
    out = {}
    for key in ("features", "attributes"):
        items = node.get(key)
        if not isinstance(items, list):
            continue
        for it in items:
            if not isinstance(it, dict):
                continue
            field = _ICON_FIELDS.get(str(it.get("iconId") or "").lower())
            if field and field not in out:
                out[field] = parse_int(it.get("content"))
    return out


def _has_listing_signal(stub: ListingStub) -> bool:
    # a title alone is not enough: navigation and promo arrays carry id + url + title
    if stub.price or stub.price_value is not None or stub.address or stub.beds is not None:
        return True
    return bool(stub.url and "/details/" in stub.url)


def stub_from_candidate(node: dict, source: ListingSource = ListingSource.API) -> Optional[ListingStub]:
    """Normalize one listing-shaped object; None when it has no identity or no listing signal."""
    if not isinstance(node, dict):
        return None
    p = API_FIELD_PATHS
    url = ensure_absolute_url(first_present(node, p["url"], as_text))
    listing_id = first_present(node, p["listing_id"], _as_id) or extract_listing_id(url)
    icons = _icon_counts(node)

    beds = first_present(node, p["beds"], parse_int)
    baths = first_present(node, p["baths"], parse_int)
    receptions = first_present(node, p["receptions"], parse_int)
    title = first_present(node, p["title"], as_text)
    price = first_present(node, p["price"], as_text)
    price_value = first_present(node, p["price_value"], parse_price_value)
    property_type = first_present(node, p["property_type"], as_text) or extract_property_type(title)

    stub = ListingStub(
        listing_id=listing_id,
        url=url,
        title=title,
        address=first_present(node, p["address"], as_text),
        locality=first_present(node, p["locality"], as_text),
        postal_code=first_present(node, p["postal_code"], as_text),
        price=price,
        price_value=price_value,
        price_currency=first_present(node, p["price_currency"], as_text)
        or ("GBP" if price or price_value is not None else None),
        beds=beds if beds is not None else icons.get("beds"),
        baths=baths if baths is not None else icons.get("baths"),
        receptions=receptions if receptions is not None else icons.get("receptions"),
        property_type=property_type,
        latitude=first_present(node, p["latitude"], parse_float),
        longitude=first_present(node, p["longitude"], parse_float),
        image=ensure_absolute_url(first_present(node, p["image"], as_text)),
        agent_name=first_present(node, p["agent_name"], as_text),
        description=first_present(node, p["description"], as_text),
        source=source,
    )
    if not stub.identity or not _has_listing_signal(stub):
        return None
    return stub


@dataclass
class ExtractionStats:
    candidates: int = 0
    accepted: int = 0
    rejected: int = 0
    duplicates: int = 0


def extract_api_listings(payload: Any, source: ListingSource = ListingSource.API) -> List[ListingStub]:
    """
    Candidates -> stubs, de-duplicated by identity within this payload only.
    `payload` may be decoded JSON or raw response text.
    """
    if isinstance(payload, str):
        payload = parse_json_payload(payload)
    if payload is None:
        return []
    stats = ExtractionStats()
    out: List[ListingStub] = []
    seen = set()
    for node in find_candidates(payload):
        stats.candidates += 1
        stub = stub_from_candidate(node, source)
        if stub is None:
            stats.rejected += 1
            continue
        if stub.identity in seen:
            stats.duplicates += 1
            continue
        seen.add(stub.identity)
        stats.accepted += 1
        out.append(stub)
    log.debug(
        "API EXTRACT | source=%s candidates=%d accepted=%d rejected=%d duplicates=%d",
        source.value, stats.candidates, stats.accepted, stats.rejected, stats.duplicates,
    )
    return out
