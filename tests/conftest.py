import asyncio
import json

import pytest

from backend.zoopla.client import FetchResponse
from backend.zoopla.errors import FetchError


class FakeTransport:
    """Serves canned bodies by exact URL, optionally after a per-route delay; unknown URLs return 404."""

    def __init__(self, routes=None, delay: float = 0.0):
        self.routes = dict(routes or {})
        self.calls = []
        self.delay = delay

    def add(self, url, body, status=200, delay=0.0):
        if not isinstance(body, str):
            body = json.dumps(body)
        self.routes[url] = (status, body, delay)

    async def fetch(self, url, headers=None, timeout=None):
        self.calls.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)
        route = self.routes.get(url)
        if route is None:
            return FetchResponse(url=url, status_code=404, body="not found")
        if isinstance(route, Exception):
            raise route
        status, body, delay = route
        if delay:
            await asyncio.sleep(delay)
        return FetchResponse(url=url, status_code=status, body=body)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def fetch_error():
    return lambda url: FetchError(url, "ConnectError: connection refused")
