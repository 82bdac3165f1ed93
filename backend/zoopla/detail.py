# backend/zoopla/detail.py
import logging
from typing import Optional

from backend.py_models.property import DetailRecord
from backend.zoopla.parsing import extract_detail

log = logging.getLogger("zoopla.detail")


class DetailFetcher:
    """Fetch a listing page and parse it into a DetailRecord."""

    def __init__(self, fetcher):
        self.fetcher = fetcher

    async def fetch(self, url: str) -> Optional[DetailRecord]:
        """
        None when the page was blocked. Transport and HTTP failures propagate as
        FetchError so the caller can record them against the listing.
        """
        resp = await self.fetcher.get(url)
        if resp is None:
            log.debug("DETAIL | blocked %s", url)
            return None
        record = extract_detail(resp.body, url)
        log.debug(
            "DETAIL | %s title=%r price=%s images=%d features=%d",
            url, record.title, record.price_value, len(record.images), len(record.features),
        )
        return record
