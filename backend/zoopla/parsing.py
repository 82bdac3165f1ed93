# backend/zoopla/parsing.py
import json
import logging
import re
from typing import Iterable, List, Optional

from bs4 import BeautifulSoup, Tag

from backend.py_models.property import DetailRecord, ListingSource, ListingStub
from backend.zoopla.api import extract_api_listings, parse_json_payload
from backend.zoopla.fields import (
    BASE_URL,
    clean_text,
    dedupe,
    ensure_absolute_url,
    extract_listing_id,
    extract_property_type,
    extract_uk_postcode,
    parse_float,
    parse_int,
    parse_price_value,
)

__all__ = ["extract_search_listings", "extract_detail", "parse_card", "select_cards"]

log = logging.getLogger("zoopla.parsing")

# --- tiny utils -------------------------------------------------------------

def _soup(html) -> BeautifulSoup:
    if isinstance(html, BeautifulSoup):
        return html
    return BeautifulSoup(html or "", "lxml")


def _text(el) -> Optional[str]:
    if el is None:
        return None
    if getattr(el, "name", "") == "meta":
        return clean_text(el.get("content"))
    return clean_text(el.get_text(" ", strip=True))


def _pick_text(root, selectors: Iterable[str]) -> Optional[str]:
    """First non-empty text among an ordered list of selectors."""
    for sel in selectors:
        for el in root.select(sel):
            txt = _text(el)
            if txt:
                return txt
    return None


def _qv_value(x) -> Optional[float]:
    """Numeric value from a QuantitativeValue-ish dict or raw."""
    if isinstance(x, dict):
        x = x.get("value")
    return parse_price_value(x)


def _as_list(x) -> list:
    if x is None:
        return []
    return x if isinstance(x, list) else [x]


def _type_names(obj: dict) -> set:
    return {str(t).lower() for t in _as_list(obj.get("@type"))}


# --- JSON-LD ----------------------------------------------------------------

def _jsonld_objects(soup: BeautifulSoup) -> List[dict]:
    """Every JSON-LD object on the page, with lists and one level of @graph unwrapped."""
    out: List[dict] = []
    for script in soup.select("script[type='application/ld+json']"):
        raw = script.string or script.get_text(strip=True)
        data = parse_json_payload(raw)
        for obj in _as_list(data):
            if not isinstance(obj, dict):
                continue
            graph = obj.get("@graph")
            if isinstance(graph, list):
                out.extend(o for o in graph if isinstance(o, dict))
            else:
                out.append(obj)
    return out


def _image_urls(value) -> List[str]:
    urls = []
    for it in _as_list(value):
        if isinstance(it, dict):
            it = it.get("contentUrl") or it.get("url")
        if isinstance(it, str):
            urls.append(ensure_absolute_url(it))
    return dedupe(urls)


def _entity_fields(entity: dict) -> dict:
    """
    Flatten a schema.org listing-ish entity (RealEstateListing / Product / Residence ...)
    into DetailRecord field names. Nested offer / offered-item objects are merged in
    without overriding keys already on the entity.
    """
    ent = dict(entity)
    item = ent.get("item")
    if isinstance(item, dict):
        ent = dict(item)
    elif isinstance(item, str) and not ent.get("url"):
        # ListItem pointing at its listing by URL only
        ent["url"] = item
    for key in ("itemOffered", "mainEntity", "about"):
        inner = ent.get(key)
        if isinstance(inner, list):
            inner = next((i for i in inner if isinstance(i, dict)), None)
        if isinstance(inner, dict):
            for k, v in inner.items():
                ent.setdefault(k, v)

    offers = ent.get("offers")
    if isinstance(offers, list):
        offers = next((o for o in offers if isinstance(o, dict)), None)
    offers = offers if isinstance(offers, dict) else {}
    if isinstance(offers.get("itemOffered"), dict):
        for k, v in offers["itemOffered"].items():
            ent.setdefault(k, v)

    out: dict = {}
    url = ent.get("url") or (ent.get("@id") if str(ent.get("@id", "")).startswith(("http", "/")) else None)
    out["url"] = ensure_absolute_url(url) if isinstance(url, str) else None
    out["listing_id"] = clean_text(ent.get("productID") or ent.get("sku")) or extract_listing_id(out["url"])
    out["title"] = clean_text(ent.get("name"))
    out["description"] = clean_text(ent.get("description"))

    price = offers.get("price", ent.get("price"))
    out["price_currency"] = clean_text(offers.get("priceCurrency") or ent.get("priceCurrency"))
    out["price_value"] = _qv_value(price)
    if out["price_value"] is not None:
        if out["price_currency"] in (None, "GBP"):
            out["price"] = f"£{out['price_value']:,.0f}"
        else:
            out["price"] = f"{out['price_currency']} {out['price_value']:,.0f}"

    addr = ent.get("address")
    if isinstance(addr, dict):
        country = addr.get("addressCountry")
        if isinstance(country, dict):
            country = country.get("name")
        out["street_address"] = clean_text(addr.get("streetAddress"))
        out["locality"] = clean_text(addr.get("addressLocality"))
        out["region"] = clean_text(addr.get("addressRegion"))
        out["postal_code"] = clean_text(addr.get("postalCode"))
        out["country"] = clean_text(country)
        parts = [out["street_address"], out["locality"], out["postal_code"]]
        out["address"] = ", ".join(p for p in parts if p) or None
    elif isinstance(addr, str):
        out["address"] = clean_text(addr)

    geo = ent.get("geo")
    if isinstance(geo, dict):
        out["latitude"] = parse_float(geo.get("latitude"))
        out["longitude"] = parse_float(geo.get("longitude"))

    out["beds"] = parse_int(_qv_value(ent.get("numberOfBedrooms")) or _qv_value(ent.get("numberOfRooms")))
    out["baths"] = parse_int(
        _qv_value(ent.get("numberOfBathroomsTotal")) or _qv_value(ent.get("numberOfFullBathrooms"))
    )
    floor = ent.get("floorSize")
    if isinstance(floor, dict) and floor.get("value") is not None:
        unit = clean_text(floor.get("unitText") or floor.get("unitCode")) or "sq. ft"
        out["floor_area"] = f"{clean_text(floor.get('value'))} {unit}"
    elif floor:
        out["floor_area"] = clean_text(floor)

    types = _type_names(ent) - {"product", "offer", "realestatelisting", "place"}
    type_hint = next(iter(sorted(types)), None)
    out["property_type"] = extract_property_type(type_hint) or extract_property_type(out.get("title"))

    out["images"] = _image_urls(ent.get("image")) + _image_urls(ent.get("photo"))
    seller = offers.get("seller") or offers.get("offeredBy") or ent.get("seller") or ent.get("provider")
    if isinstance(seller, dict):
        out["agent_name"] = clean_text(seller.get("name"))
        agent_url = seller.get("url")
        out["agent_url"] = ensure_absolute_url(agent_url) if isinstance(agent_url, str) else None
    features = []
    for f in _as_list(ent.get("amenityFeature")):
        if isinstance(f, dict):
            f = f.get("name") or f.get("value")
        features.append(clean_text(f))
    out["features"] = dedupe(features)
    return {k: v for k, v in out.items() if v not in (None, [], "")}


_STUB_FIELDS = set(ListingStub.model_fields)


def _stub_from_fields(fields: dict, source: ListingSource) -> Optional[ListingStub]:
    data = {k: v for k, v in fields.items() if k in _STUB_FIELDS}
    images = fields.get("images") or []
    if images:
        data["image"] = images[0]
    if data.get("price_value") is not None or data.get("price"):
        data.setdefault("price_currency", "GBP")
    stub = ListingStub(source=source, **data)
    return stub if stub.identity else None


_LIST_TYPES = {"itemlist", "searchresultspage", "collectionpage"}


def _list_elements(obj: dict) -> List[dict]:
    types = _type_names(obj)
    if not types & _LIST_TYPES:
        return []
    elements = []
    if "itemlist" in types:
        elements.extend(_as_list(obj.get("itemListElement")))
    main = obj.get("mainEntity")
    for m in _as_list(main):
        if isinstance(m, dict):
            elements.extend(_as_list(m.get("itemListElement")))
    return [e for e in elements if isinstance(e, dict)]


def _stubs_from_jsonld(soup: BeautifulSoup) -> List[ListingStub]:
    out = []
    for obj in _jsonld_objects(soup):
        for element in _list_elements(obj):
            stub = _stub_from_fields(_entity_fields(element), ListingSource.MARKUP)
            if stub:
                out.append(stub)
    return out


# --- embedded application state ---------------------------------------------
_STATE_ASSIGN = re.compile(r"window\.__(?:PRELOADED_STATE|INITIAL_STATE|APOLLO_STATE)__\s*=\s*")


def _embedded_state(soup: BeautifulSoup):
    script = soup.select_one("script#__NEXT_DATA__")
    if script is not None:
        data = parse_json_payload(script.string or script.get_text())
        if data is not None:
            return data
    for script in soup.find_all("script"):
        txt = script.string or ""
        m = _STATE_ASSIGN.search(txt)
        if not m:
            continue
        candidate = txt[m.end():].strip().rstrip(";")
        try:
            return json.JSONDecoder().raw_decode(candidate)[0]
        except ValueError:
            continue
    return None


def _stubs_from_embedded_state(soup: BeautifulSoup) -> List[ListingStub]:
    state = _embedded_state(soup)
    if state is None:
        return []
    return extract_api_listings(state, ListingSource.MARKUP)


# --- DOM cards --------------------------------------------------------------
_beds_re = re.compile(r"(\d+)\s*bed", re.I)
_baths_re = re.compile(r"(\d+)\s*bath", re.I)
_receptions_re = re.compile(r"(\d+)\s*reception", re.I)
_pound_amount = re.compile(r"£[\d,]+(?:\.\d+)?[kKmM]?")


def select_cards(root) -> List[Tag]:
    """Search-result cards: `div#listing_<id>` or `search-result_listing_<id>` test ids."""
    cards = root.select("div[id^='listing_'], [data-testid^='search-result_listing_']")
    seen = set()
    out = []
    for el in cards:
        if id(el) in seen:
            continue
        seen.add(id(el))
        out.append(el)
    return out


def _card_id(card: Tag) -> Optional[str]:
    return extract_listing_id(card.get("id")) or extract_listing_id(
        (card.get("data-testid") or "").replace("search-result_", "")
    )


def parse_card(card: Tag) -> Optional[ListingStub]:
    """Scrape one search-result card. Returns None for cards without a listing id."""
    listing_id = _card_id(card)
    link = card.select_one("a[href*='/details/']")
    url = ensure_absolute_url(link.get("href")) if link else None
    if not listing_id:
        listing_id = extract_listing_id(url)
    if not listing_id:
        return None
    url = url or f"{BASE_URL}/for-sale/details/{listing_id}/"

    price_text = _pick_text(card, ["p[class*='price_priceText']", "[data-testid='listing-price']"])
    if not price_text:
        for p in card.select("p"):
            m = _pound_amount.search(p.get_text(" ", strip=True))
            if m:
                price_text = m.group(0)
                break

    address = _pick_text(card, ["address[class*='summary_address']", "address"])
    description = _pick_text(card, ["p[class*='summary_summary']"])
    amenities = _pick_text(card, ["p[class*='amenities_amenityList']", "p[class*='amenities']"])
    card_text = clean_text(card.get_text(" ", strip=True)) or ""

    m = _beds_re.search(card_text)
    beds = int(m.group(1)) if m else None
    m = _baths_re.search(card_text)
    baths = int(m.group(1)) if m else None
    m = _receptions_re.search(card_text)
    receptions = int(m.group(1)) if m else None

    property_type = (
        extract_property_type(description)
        or extract_property_type(amenities)
        or extract_property_type(card_text)
    )
    if beds and property_type:
        title = f"{beds} bed {property_type} for sale"
    elif beds:
        title = f"{beds} bedroom property for sale"
    else:
        title = address

    image = None
    img = card.select_one("img")
    if img is not None:
        src = img.get("src") or img.get("data-src")
        if src:
            image = ensure_absolute_url(src.split("?")[0])

    agent_name = None
    logo = card.select_one("img[alt*='Estate Agent'], img[alt*='logo']")
    if logo is not None:
        alt = re.sub(r"\s*logo\s*", " ", logo.get("alt") or "", flags=re.I)
        agent_name = clean_text(re.sub(r"Estate Agents?", "", alt, flags=re.I))

    price_value = parse_price_value(price_text)
    return ListingStub(
        listing_id=listing_id,
        url=url,
        title=title,
        address=address,
        postal_code=extract_uk_postcode(address),
        price=price_text,
        price_value=price_value,
        price_currency="GBP",
        beds=beds,
        baths=baths,
        receptions=receptions,
        property_type=property_type,
        description=description,
        image=image,
        agent_name=agent_name,
        source=ListingSource.DOM,
    )


def _stubs_from_cards(soup: BeautifulSoup) -> List[ListingStub]:
    out = []
    for card in select_cards(soup):
        stub = parse_card(card)
        if stub:
            out.append(stub)
    return out


# --- search-result mode -----------------------------------------------------

def extract_search_listings(html) -> List[ListingStub]:
    """
    Listing stubs from a search-results page. Sub-sources are de-duplicated by
    identity with fixed precedence: JSON-LD, then embedded state, then DOM cards.
    """
    soup = _soup(html)
    groups = (
        ("jsonld", _stubs_from_jsonld(soup)),
        ("state", _stubs_from_embedded_state(soup)),
        ("dom", _stubs_from_cards(soup)),
    )
    out: List[ListingStub] = []
    seen = set()
    for name, stubs in groups:
        added = 0
        for stub in stubs:
            if stub.identity in seen:
                continue
            seen.add(stub.identity)
            out.append(stub)
            added += 1
        log.debug("SEARCH PARSE | source=%s found=%d added=%d", name, len(stubs), added)
    return out


# --- detail mode ------------------------------------------------------------
_DETAIL_TYPES = {
    "realestatelisting", "product", "offer", "residence", "singlefamilyresidence",
    "house", "apartment", "accommodation", "place",
}

DETAIL_SELECTORS = {
    "title": ["h1[data-testid='title-label']", "h1", "meta[property='og:title']"],
    "price": ["[data-testid='price']", "p[class*='Price']", "[class*='price_priceText']", "meta[property='product:price:amount']"],
    "address": ["address[data-testid='address-label']", "[data-testid='address-label']", "address"],
    "description": [
        "[data-testid='listing_description']",
        "section[aria-labelledby='about'] p",
        "div[class*='Description']",
        "meta[name='description']",
    ],
    "agent_name": ["[data-testid='agent-name']", "[class*='AgentName']", "a[href*='/find-agents/branch/'] p"],
    "tenure": ["[data-testid='tenure']", "[class*='Tenure']"],
    "facts": ["[data-testid='listing-summary-details']", "[class*='Features']", "ul[class*='amenities']"],
}
FEATURE_SELECTORS = ["ul[data-testid='listing_features'] li", "[class*='KeyFeatures'] li", "[class*='Features'] li"]
IMAGE_SELECTORS = ["[data-testid='gallery'] img", "picture img", "img[src*='zoocdn']"]
META_IMAGE_SELECTORS = ["meta[property='og:image']", "meta[name='twitter:image']"]

_tenure_re = re.compile(r"\b(share of freehold|freehold|leasehold|commonhold)\b", re.I)
_area_re = re.compile(r"([\d,]+(?:\.\d+)?)\s*(sq\.?\s*ft|sqft|square feet|sq\.?\s*m|m²)", re.I)


def _detail_entity(soup: BeautifulSoup) -> dict:
    for obj in _jsonld_objects(soup):
        if _type_names(obj) & _DETAIL_TYPES:
            return obj
    return {}


def _find_dict_with_key(data, key: str, max_depth: int = 12) -> Optional[dict]:
    stack = [(data, 0)]
    while stack:
        node, depth = stack.pop()
        if depth > max_depth:
            continue
        if isinstance(node, dict):
            if key in node:
                return node
            stack.extend((v, depth + 1) for v in node.values() if isinstance(v, (dict, list)))
        elif isinstance(node, list):
            stack.extend((v, depth + 1) for v in node if isinstance(v, (dict, list)))
    return None


def _state_listing(soup: BeautifulSoup) -> dict:
    script = soup.select_one("script#__NEXT_DATA__")
    if script is None:
        return {}
    data = parse_json_payload(script.string or script.get_text())
    return _find_dict_with_key(data, "detailedDescription") or _find_dict_with_key(data, "keyFeatures") or {}


def extract_detail(html, url: Optional[str] = None) -> DetailRecord:
    """
    Parse a listing page. JSON-LD first, then each field falls back on its own to
    DOM selectors, embedded state, and meta tags. Missing data leaves the field None.
    """
    soup = _soup(html)
    fields = _entity_fields(_detail_entity(soup))
    state = _state_listing(soup)

    canonical = soup.select_one("link[rel='canonical']")
    page_url = url or (ensure_absolute_url(canonical.get("href")) if canonical else None)
    fields.setdefault("url", page_url)
    fields.setdefault("listing_id", extract_listing_id(fields.get("url")) or extract_listing_id(page_url))

    for name in ("title", "price", "address", "description", "agent_name"):
        if not fields.get(name):
            fields[name] = _pick_text(soup, DETAIL_SELECTORS[name])
    if not fields.get("description"):
        fields["description"] = clean_text(state.get("detailedDescription"))

    if fields.get("price_value") is None:
        fields["price_value"] = parse_price_value(fields.get("price"))
    if fields.get("price_value") is not None:
        fields.setdefault("price_currency", "GBP")

    if not fields.get("features"):
        features = [_text(li) for li in soup.select(", ".join(FEATURE_SELECTORS))]
        if not any(features):
            features = [clean_text(f) for f in _as_list(state.get("keyFeatures")) if isinstance(f, str)]
        fields["features"] = dedupe(features)

    if not fields.get("images"):
        imgs = []
        for img in soup.select(", ".join(IMAGE_SELECTORS)):
            src = img.get("src") or img.get("data-src")
            if src and not src.startswith("data:"):
                imgs.append(ensure_absolute_url(src))
        if not imgs:
            imgs = [ensure_absolute_url(_text(m)) for m in soup.select(", ".join(META_IMAGE_SELECTORS))]
        fields["images"] = dedupe(imgs)

    if not fields.get("agent_url"):
        agent_link = soup.select_one("a[href*='/find-agents/branch/']")
        if agent_link is not None:
            fields["agent_url"] = ensure_absolute_url(agent_link.get("href"))

    facts = _pick_text(soup, DETAIL_SELECTORS["facts"]) or ""
    if fields.get("beds") is None:
        m = _beds_re.search(facts) or _beds_re.search(fields.get("title") or "")
        fields["beds"] = int(m.group(1)) if m else None
    if fields.get("baths") is None:
        m = _baths_re.search(facts)
        fields["baths"] = int(m.group(1)) if m else None
    if fields.get("receptions") is None:
        m = _receptions_re.search(facts)
        fields["receptions"] = int(m.group(1)) if m else None

    if not fields.get("tenure"):
        tenure_text = _pick_text(soup, DETAIL_SELECTORS["tenure"]) or facts
        m = _tenure_re.search(tenure_text)
        fields["tenure"] = m.group(1).capitalize() if m else None
    if not fields.get("floor_area"):
        m = _area_re.search(facts)
        fields["floor_area"] = f"{m.group(1)} {m.group(2)}" if m else None

    if not fields.get("property_type"):
        fields["property_type"] = extract_property_type(fields.get("title"))
    if not fields.get("postal_code"):
        fields["postal_code"] = extract_uk_postcode(fields.get("address"))

    return DetailRecord(**{k: v for k, v in fields.items() if k in DetailRecord.model_fields})
