# backend/zoopla/fields.py
import re
from typing import Any, Callable, Iterable, Optional, Sequence
from urllib.parse import urljoin, urlparse

__all__ = [
    "BASE_URL",
    "clean_text",
    "ensure_absolute_url",
    "parse_price_value",
    "parse_int",
    "parse_float",
    "extract_uk_postcode",
    "extract_listing_id",
    "extract_property_type",
    "get_path",
    "first_present",
    "dedupe",
]

BASE_URL = "https://www.zoopla.co.uk"

PROPERTY_TYPES = [
    "semi-detached", "detached", "terraced", "flat", "apartment", "house",
    "maisonette", "bungalow", "studio", "duplex", "penthouse", "townhouse",
    "land", "cottage",
]

# --- text / url -------------------------------------------------------------

_ws = re.compile(r"\s+")


def clean_text(value) -> Optional[str]:
    if value is None:
        return None
    text = _ws.sub(" ", str(value)).strip()
    return text or None


def ensure_absolute_url(url, base: str = BASE_URL) -> Optional[str]:
    if not url or not isinstance(url, str):
        return None
    url = url.strip()
    if not url:
        return None
    if url.startswith("data:"):
        return url
    if url.startswith("//"):
        return f"https:{url}"
    if url.startswith(("http://", "https://")):
        return url
    return urljoin(base.rstrip("/") + "/", url.lstrip("/"))


# --- number helpers ---------------------------------------------------------
# "£325,000" -> 325000  •  "£1.2m" -> 1200000  •  "£950 pcm" -> 950 (first number wins)
_currency = re.compile(r"[£$€]|GBP|EUR|USD", re.I)
_price_num = re.compile(r"(\d+(?:\.\d+)?)(?:\s*([kKmM])\b)?")
_int_num = re.compile(r"\d+")


def parse_price_value(value) -> Optional[float]:
    if value is None or isinstance(value, (bool, dict, list)):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = _currency.sub("", str(value))
    # thousands separators, but keep decimal points
    text = re.sub(r"(?<=\d)[,\s](?=\d{3}\b)", "", text)
    m = _price_num.search(text)
    if not m:
        return None
    val = float(m.group(1))
    suffix = (m.group(2) or "").lower()
    if suffix == "k":
        val *= 1_000
    elif suffix == "m":
        val *= 1_000_000
    return val


def parse_int(value) -> Optional[int]:
    if value is None or isinstance(value, (bool, dict, list)):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    m = _int_num.search(str(value))
    return int(m.group(0)) if m else None


def parse_float(value) -> Optional[float]:
    if value is None or isinstance(value, (bool, dict, list)):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except ValueError:
        return None


# --- postcodes / ids --------------------------------------------------------
_POSTCODE_PATTERNS = (
    re.compile(r"\b([A-Z]{1,2}\d{1,2}[A-Z]?\s+\d[A-Z]{2})\b", re.I),
    re.compile(r"\b([A-Z]{1,2}\d{1,2}[A-Z]?\d[A-Z]{2})\b", re.I),
    re.compile(r"\b([A-Z]{1,2}\d{1,2}[A-Z]?)\s*$", re.I),
)
_full_postcode = re.compile(r"^([A-Z]{1,2}\d{1,2}[A-Z]?)\s*(\d[A-Z]{2})$")


def extract_uk_postcode(value) -> Optional[str]:
    """Best-effort UK postcode (or trailing outcode) from free text."""
    if not value:
        return None
    text = str(value)
    for pattern in _POSTCODE_PATTERNS:
        m = pattern.search(text)
        if m:
            code = _ws.sub(" ", m.group(1).upper())
            full = _full_postcode.match(code)
            if full:
                return f"{full.group(1)} {full.group(2)}"
            return code
    return None


_details_id = re.compile(r"/details/(?:[a-z-]+/)?(\d+)", re.I)
_div_id = re.compile(r"listing_(\d+)")
_trailing_id = re.compile(r"/(\d{5,})/?$")


def extract_listing_id(value) -> Optional[str]:
    """Numeric listing id from a details URL or a `listing_<id>` element id."""
    if not value:
        return None
    text = str(value)
    for pattern in (_details_id, _div_id):
        m = pattern.search(text)
        if m:
            return m.group(1)
    path = urlparse(text).path if "://" in text else text
    m = _trailing_id.search(path)
    return m.group(1) if m else None


def extract_property_type(text) -> Optional[str]:
    if not text:
        return None
    lower = str(text).lower()
    for ptype in PROPERTY_TYPES:
        if re.search(rf"\b{re.escape(ptype)}\b", lower):
            return ptype[0].upper() + ptype[1:]
    return None


# --- accessor paths ---------------------------------------------------------
# A path is a tuple of dict keys / list indexes, e.g. ("location", "coordinates", "latitude").

def get_path(obj: Any, path: Sequence) -> Any:
    cur = obj
    for key in path:
        if isinstance(key, int):
            if not isinstance(cur, list) or not -len(cur) <= key < len(cur):
                return None
            cur = cur[key]
        elif isinstance(cur, dict):
            cur = cur.get(key)
        else:
            return None
        if cur is None:
            return None
    return cur


def _is_empty(value) -> bool:
    return value is None or (isinstance(value, (str, list, dict)) and not value)


def first_present(obj: Any, paths: Iterable[Sequence], coerce: Optional[Callable[[Any], Any]] = None):
    """Evaluate accessor paths in order; return the first non-empty (coerced) value."""
    for path in paths:
        value = get_path(obj, path)
        if _is_empty(value):
            continue
        if coerce is not None:
            value = coerce(value)
            if _is_empty(value):
                continue
        return value
    return None


def as_text(value) -> Optional[str]:
    """Coercer for first_present: scalars to cleaned text, containers rejected."""
    if isinstance(value, (dict, list, bool)):
        return None
    return clean_text(value)


def dedupe(values: Iterable) -> list:
    seen = set()
    out = []
    for v in values:
        if _is_empty(v) or v in seen:
            continue
        seen.add(v)
        out.append(v)
    return out
