# backend/zoopla/strategies.py
import asyncio
import logging
import os
import random
from typing import Awaitable, Callable, List, Optional, Tuple

from backend.py_models.property import ListingSource, ListingStub
from backend.zoopla.api import extract_api_listings
from backend.zoopla.blocking import BlockLog, classify
from backend.zoopla.client import FetchResponse, Transport
from backend.zoopla.config import LISTINGS_PER_PAGE, RunConfig
from backend.zoopla.errors import FetchError
from backend.zoopla.filters import build_api_url, build_search_page_url
from backend.zoopla.parsing import extract_search_listings
from backend.zoopla.sitemap import SITEMAP_URLS, collect_sitemap_urls, stubs_from_urls

log = logging.getLogger("zoopla.strategies")

ZOOPLA_DEBUG = os.getenv("ZOOPLA_DEBUG", "").lower() in {"1", "true", "yes"}

JSON_HEADERS = {"Accept": "application/json, text/plain, */*"}
XML_HEADERS = {"Accept": "application/xml, text/xml;q=0.9, */*;q=0.8"}


class PageFetcher:
    """
    Shared fetch step for every strategy: pacing delay, per-fetch timeout, and
    block classification. Returns None for blocked responses (recorded in the
    run's BlockLog) and raises FetchError for other HTTP errors and transport failures.
    """

    def __init__(
        self,
        transport: Transport,
        block_log: BlockLog,
        timeout: float = 60.0,
        delay: Tuple[float, float] = (0.0, 0.0),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.transport = transport
        self.block_log = block_log
        self.timeout = timeout
        self.delay = delay
        self._sleep = sleep

    async def _pace(self) -> None:
        lo, hi = self.delay
        if hi > 0:
            await self._sleep(random.uniform(lo, hi))

    def _dump(self, url: str, body: str) -> None:
        h = abs(hash(f"{url}|{len(body)}"))
        fname = f"/tmp/zoopla_http_{h}.html"
        try:
            with open(fname, "w", encoding="utf-8", errors="ignore") as f:
                f.write(body)
            log.debug("saved HTTP → %s :: %s", fname, url)
        except OSError as e:
            log.debug("debug save failed: %s", e)

    async def get(self, url: str, headers: Optional[dict] = None) -> Optional[FetchResponse]:
        await self._pace()
        try:
            resp = await asyncio.wait_for(
                self.transport.fetch(url, headers=headers, timeout=self.timeout), self.timeout
            )
        except asyncio.TimeoutError as e:
            raise FetchError(url, f"timed out after {self.timeout:g}s") from e
        if ZOOPLA_DEBUG and resp.body:
            self._dump(url, resp.body)
        reason = classify(resp)
        if reason:
            self.block_log.record(url, resp.status_code, reason)
            return None
        if resp.status_code >= 400:
            raise FetchError(url, f"HTTP {resp.status_code}", resp.status_code)
        return resp


class Strategy:
    """One retrieval surface in the fallback chain."""

    name: str = ""
    source: ListingSource

    def __init__(self, fetcher: PageFetcher):
        self.fetcher = fetcher

    async def fetch_page(self, target: str, page: int) -> List[ListingStub]:
        raise NotImplementedError


class ApiStrategy(Strategy):
    name = "api"
    source = ListingSource.API

    async def fetch_page(self, target: str, page: int) -> List[ListingStub]:
        resp = await self.fetcher.get(build_api_url(target, page), headers=JSON_HEADERS)
        if resp is None:
            return []
        return extract_api_listings(resp.body, self.source)


class MarkupStrategy(Strategy):
    name = "markup"
    source = ListingSource.MARKUP

    async def fetch_page(self, target: str, page: int) -> List[ListingStub]:
        resp = await self.fetcher.get(build_search_page_url(target, page))
        if resp is None:
            return []
        return extract_search_listings(resp.body)


class SitemapStrategy(Strategy):
    """
    Walks the site's sitemaps once per run, then serves the collected listing URLs
    in pages of LISTINGS_PER_PAGE. The sitemap is site-wide, so every target gets
    the same pages; already-seen listings are filtered downstream.
    """

    name = "sitemap"
    source = ListingSource.SITEMAP

    def __init__(self, fetcher: PageFetcher, start_urls: Optional[List[str]] = None, limit: Optional[int] = None):
        super().__init__(fetcher)
        self.start_urls = start_urls or SITEMAP_URLS
        self.limit = limit
        self._urls: Optional[List[str]] = None

    async def _fetch_document(self, url: str) -> Optional[str]:
        try:
            resp = await self.fetcher.get(url, headers=XML_HEADERS)
        except FetchError as e:
            log.warning("SITEMAP | skip %s: %s", url, e)
            return None
        return resp.body if resp is not None else None

    async def fetch_page(self, target: str, page: int) -> List[ListingStub]:
        if self._urls is None:
            self._urls = await collect_sitemap_urls(self._fetch_document, self.start_urls, limit=self.limit)
        start = (page - 1) * LISTINGS_PER_PAGE
        return stubs_from_urls(self._urls[start:start + LISTINGS_PER_PAGE])


def build_strategies(config: RunConfig, fetcher: PageFetcher) -> List[Strategy]:
    available = {
        "api": lambda: ApiStrategy(fetcher),
        "markup": lambda: MarkupStrategy(fetcher),
        "sitemap": lambda: SitemapStrategy(
            fetcher, config.sitemap_urls, limit=config.max_pages * LISTINGS_PER_PAGE
        ),
    }
    return [available[name]() for name in config.strategies]
