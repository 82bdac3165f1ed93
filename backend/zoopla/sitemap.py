# backend/zoopla/sitemap.py
import logging
import re
from typing import Awaitable, Callable, List, Optional

from bs4 import BeautifulSoup

from backend.py_models.property import ListingSource, ListingStub
from backend.zoopla.fields import BASE_URL, clean_text, extract_listing_id

__all__ = ["SITEMAP_URLS", "collect_sitemap_urls", "parse_sitemap", "stubs_from_urls"]

log = logging.getLogger("zoopla.sitemap")

SITEMAP_URLS = [
    f"{BASE_URL}/sitemap.xml",
    f"{BASE_URL}/sitemaps/sitemap-index.xml",
    f"{BASE_URL}/sitemap_index.xml",
]
LISTING_PATH = re.compile(r"/for-sale/details/(?:[a-z-]+/)?\d+")
MAX_SITEMAP_DEPTH = 3

# body text, or None when the document could not be fetched / was blocked
SitemapFetch = Callable[[str], Awaitable[Optional[str]]]


def parse_sitemap(xml: str):
    """Return ("index", [sitemap urls]) or ("urlset", [page urls])."""
    soup = BeautifulSoup(xml or "", "xml")
    if soup.find("sitemapindex") is not None:
        kind, entry = "index", "sitemap"
    else:
        kind, entry = "urlset", "url"
    locs = []
    for el in soup.find_all(entry):
        loc = el.find("loc")
        if loc is not None:
            locs.append(clean_text(loc.get_text()))
    return kind, [u for u in locs if u]


async def collect_sitemap_urls(
    fetch: SitemapFetch,
    start_urls: Optional[List[str]] = None,
    limit: Optional[int] = None,
    max_depth: int = MAX_SITEMAP_DEPTH,
    pattern: re.Pattern = LISTING_PATH,
) -> List[str]:
    """
    Depth-first walk of sitemap indexes, collecting listing URLs until `limit` is reached.
    Each sitemap document is fetched at most once; documents deeper than `max_depth`
    are not followed.
    """
    collected: List[str] = []
    seen_urls = set()
    fetched = set()

    def _full() -> bool:
        return limit is not None and len(collected) >= limit

    async def _walk(url: str, depth: int) -> None:
        if _full() or url in fetched:
            return
        if depth > max_depth:
            log.debug("SITEMAP | depth cap reached at %s", url)
            return
        fetched.add(url)
        body = await fetch(url)
        if not body:
            return
        kind, locs = parse_sitemap(body)
        log.debug("SITEMAP | %s kind=%s entries=%d depth=%d", url, kind, len(locs), depth)
        if kind == "index":
            for child in locs:
                if _full():
                    return
                await _walk(child, depth + 1)
            return
        for loc in locs:
            if _full():
                return
            if loc in seen_urls or not pattern.search(loc):
                continue
            seen_urls.add(loc)
            collected.append(loc)

    for start in start_urls or SITEMAP_URLS:
        if _full():
            break
        await _walk(start, 0)
    log.info("SITEMAP | collected=%d limit=%s", len(collected), limit)
    return collected


def stubs_from_urls(urls: List[str]) -> List[ListingStub]:
    return [
        ListingStub(listing_id=extract_listing_id(u), url=u, source=ListingSource.SITEMAP)
        for u in urls
    ]
