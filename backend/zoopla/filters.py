import os
from typing import Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from backend.zoopla.fields import BASE_URL

API_SEARCH_URL = os.getenv("ZOOPLA_API_URL", f"{BASE_URL}/api/search/listings/")
SECTIONS = {"for-sale", "to-rent", "new-homes"}


def _slug(s: str) -> str:
    """Convert a location like 'Kingston upon Thames' → 'kingston-upon-thames'."""
    return "-".join(s.strip().lower().split())


def _with_params(url: str, updates: Dict[str, Optional[str]]) -> str:
    parsed = urlparse(url)
    params = dict(parse_qsl(parsed.query, keep_blank_values=True))
    for k, v in updates.items():
        if v is None:
            params.pop(k, None)
        else:
            params[k] = v
    return urlunparse(parsed._replace(query=urlencode(params)))


def build_search_page_url(start_url: str, page: int) -> str:
    """Search results page `page` (1-based); page 1 carries no `pn` parameter."""
    return _with_params(start_url, {"pn": str(page) if page > 1 else None})


def build_api_url(search_url: str, page: int, api_url: str = API_SEARCH_URL) -> str:
    """
    JSON search endpoint for the same search: the search path and its filters are
    forwarded as query parameters, plus the page number.
    """
    parsed = urlparse(search_url)
    params = dict(parse_qsl(parsed.query, keep_blank_values=True))
    params.pop("pn", None)
    params["path"] = parsed.path or "/"
    params["pn"] = str(page)
    return f"{api_url}?{urlencode(params)}"


def build_search_url(
    location: str,
    section: str = "for-sale",
    property_type: str = "property",
    min_price: Optional[int] = None,
    max_price: Optional[int] = None,
    min_beds: Optional[int] = None,
    max_beds: Optional[int] = None,
    radius: Optional[float] = None,
    sort: Optional[str] = None,
) -> str:
    """
    Build a Zoopla search URL for a location (e.g. "London", "Manchester").
    Optional filters map onto Zoopla's query parameters.
    """
    if not location or not location.strip():
        raise ValueError("location must not be empty")
    if section not in SECTIONS:
        raise ValueError(f"Unknown section {section!r}; expected one of {sorted(SECTIONS)}")
    base = f"{BASE_URL}/{section}/{_slug(property_type)}/{_slug(location)}/"
    params: Dict[str, str | int | float] = {"q": location.strip(), "search_source": section}
    if min_price:
        params["price_min"] = min_price
    if max_price:
        params["price_max"] = max_price
    if min_beds:
        params["beds_min"] = min_beds
    if max_beds:
        params["beds_max"] = max_beds
    if radius:
        params["radius"] = radius
    if sort:
        params["results_sort"] = sort
    return base + "?" + urlencode(params)
