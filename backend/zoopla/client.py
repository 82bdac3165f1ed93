import logging
import os
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from backend.zoopla.errors import FetchError

ZOOPLA_PROXY = os.getenv("ZOOPLA_PROXY", "").strip()
HTTP_DEBUG = os.getenv("HTTP_DEBUG", "").lower() in {"1", "true", "yes"}

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept-Language": "en-GB,en;q=0.9",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Cache-Control": "no-cache",
}


@dataclass(frozen=True)
class FetchResponse:
    url: str
    status_code: int
    body: str
    content_type: str = ""


class Transport(Protocol):
    async def fetch(self, url: str, headers: Optional[dict] = None, timeout: Optional[float] = None) -> FetchResponse:
        ...


def new_client(timeout: float = 30.0, proxy: Optional[str] = None) -> httpx.AsyncClient:
    """
    Create a configured AsyncClient with optional proxy and debug logging.
    Uses a small connection pool and transport-level retries for transient network errors.
    """
    if HTTP_DEBUG:
        logging.getLogger("httpx").setLevel(logging.DEBUG)

    limits = httpx.Limits(max_keepalive_connections=5, max_connections=10)
    transport = httpx.AsyncHTTPTransport(retries=2, proxy=(proxy or ZOOPLA_PROXY or None))
    return httpx.AsyncClient(
        timeout=timeout,
        headers=DEFAULT_HEADERS,
        follow_redirects=True,
        http2=False,
        limits=limits,
        transport=transport,
    )


class HttpxTransport:
    """Plain HTTP transport. Use as an async context manager."""

    def __init__(self, timeout: float = 30.0, proxy: Optional[str] = None):
        self.timeout = timeout
        self.proxy = proxy
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._client = new_client(self.timeout, self.proxy)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch(self, url: str, headers: Optional[dict] = None, timeout: Optional[float] = None) -> FetchResponse:
        if self._client is None:
            self._client = new_client(self.timeout, self.proxy)
        try:
            r = await self._client.get(url, headers=headers, timeout=timeout or self.timeout)
        except httpx.HTTPError as e:
            raise FetchError(url, f"{type(e).__name__}: {e}") from e
        return FetchResponse(
            url=str(r.url),
            status_code=r.status_code,
            body=r.text,
            content_type=r.headers.get("content-type", ""),
        )


class PlaywrightTransport:
    """
    Headless Chromium transport for pages that need client-side rendering.
    JSON/XML responses return the raw body; HTML returns the rendered DOM.
    """

    def __init__(self, timeout: float = 60.0, proxy: Optional[str] = None, headless: bool = True):
        self.timeout = timeout
        self.proxy = proxy or ZOOPLA_PROXY or None
        self.headless = headless
        self._playwright = None
        self._browser = None
        self._context = None

    async def __aenter__(self):
        from playwright.async_api import async_playwright

        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self.headless)
        self._context = await self._browser.new_context(
            user_agent=DEFAULT_HEADERS["User-Agent"],
            locale="en-GB",
            proxy={"server": self.proxy} if self.proxy else None,
        )
        return self

    async def __aexit__(self, exc_type, exc, tb):
        try:
            if self._browser is not None:
                await self._browser.close()
        finally:
            if self._playwright is not None:
                await self._playwright.stop()
            self._browser = self._context = self._playwright = None

    async def fetch(self, url: str, headers: Optional[dict] = None, timeout: Optional[float] = None) -> FetchResponse:
        from playwright.async_api import Error as PWError

        if self._context is None:
            raise FetchError(url, "PlaywrightTransport used outside its context manager")
        page = await self._context.new_page()
        try:
            if headers:
                await page.set_extra_http_headers(headers)
            resp = await page.goto(url, wait_until="domcontentloaded", timeout=(timeout or self.timeout) * 1000)
            if resp is None:
                raise FetchError(url, "navigation returned no response")
            ctype = resp.headers.get("content-type", "")
            if "json" in ctype or "xml" in ctype:
                body = await resp.text()
            else:
                body = await page.content()
            return FetchResponse(url=page.url, status_code=resp.status, body=body, content_type=ctype)
        except PWError as e:
            raise FetchError(url, f"{type(e).__name__}: {e}") from e
        finally:
            await page.close()
