# backend/zoopla/merge.py
from datetime import datetime
from typing import Optional

from backend.py_models.property import DetailRecord, ListingSource, ListingStub, Property
from backend.zoopla.fields import extract_listing_id, extract_uk_postcode, parse_price_value

__all__ = ["merge"]

# Fields that follow the plain rule: detail value if present, else stub value.
_SIMPLE_FIELDS = [
    "url", "title", "price", "address", "locality", "property_type", "beds", "baths",
    "receptions", "latitude", "longitude", "description", "agent_name",
]
_DETAIL_ONLY = ["street_address", "region", "country", "floor_area", "tenure", "agent_url", "features"]


def _prefer(detail_value, stub_value):
    if detail_value is not None and detail_value != []:
        return detail_value
    return stub_value


def _merged_price_value(stub: ListingStub, detail: Optional[DetailRecord]) -> Optional[float]:
    candidates = []
    if detail is not None:
        candidates += [detail.price_value, detail.price]
    candidates += [stub.price_value, stub.price]
    for c in candidates:
        value = parse_price_value(c)
        if value is not None:
            return value
    return None


def merge(
    stub: ListingStub,
    detail: Optional[DetailRecord] = None,
    source: Optional[ListingSource] = None,
    scraped_at: Optional[datetime] = None,
) -> Property:
    """
    Combine a search stub with its detail record. Per field the detail value wins
    when present; price, postcode, identity and images have their own cascades.
    """
    d = detail or DetailRecord()
    data = {name: _prefer(getattr(d, name), getattr(stub, name)) for name in _SIMPLE_FIELDS}
    data.update({name: getattr(d, name) for name in _DETAIL_ONLY})

    data["price_value"] = _merged_price_value(stub, detail)
    data["price_currency"] = _prefer(d.price_currency, stub.price_currency)
    if data["price_currency"] is None and (data["price_value"] is not None or data["price"]):
        data["price_currency"] = "GBP"

    data["postal_code"] = (
        d.postal_code
        or stub.postal_code
        or extract_uk_postcode(data["address"])
        or extract_uk_postcode(data["street_address"])
    )

    url = data["url"]
    data["listing_id"] = stub.listing_id or d.listing_id or extract_listing_id(url) or url

    images = list(d.images)
    if not images and stub.image:
        images = [stub.image]
    data["images"] = images

    data["source"] = source or stub.source
    if scraped_at is not None:
        data["scraped_at"] = scraped_at
    return Property(**data)
