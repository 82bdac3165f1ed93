# backend/zoopla/blocking.py
import logging
from typing import List, Optional

from backend.py_models.property import BlockEvent

log = logging.getLogger("zoopla.blocking")

BLOCK_STATUS_CODES = {403, 429, 503}
MAX_BLOCK_EVENTS = 50

# (lowercased phrase, reason)
CHALLENGE_PHRASES = [
    ("just a moment...", "cloudflare_challenge"),
    ("verify you are human", "human_verification"),
    ("attention required! | cloudflare", "cloudflare_block"),
    ("pardon our interruption", "bot_interstitial"),
    ("px-captcha", "perimeterx_captcha"),
    ("<title>access denied</title>", "access_denied"),
]


def classify(response) -> Optional[str]:
    """
    Return a block reason for a fetch response, or None when it looks usable.
    `response` needs `status_code` and `body` attributes (see client.FetchResponse).
    """
    status = getattr(response, "status_code", None)
    if status in BLOCK_STATUS_CODES:
        return f"http_{status}"
    if status is None or not 200 <= status < 300:
        return None
    body = getattr(response, "body", None)
    if not isinstance(body, str) or not body:
        return None
    low = body.lower()
    for phrase, reason in CHALLENGE_PHRASES:
        if phrase in low:
            return reason
    return None


class BlockLog:
    """Bounded collector of block events for one run.

    Keeps the first `max_events` events and drops the rest; `total` keeps counting.
    """

    def __init__(self, max_events: int = MAX_BLOCK_EVENTS):
        self.max_events = max_events
        self._events: List[BlockEvent] = []
        self.total = 0

    def record(self, url: str, status_code: Optional[int], reason: str) -> None:
        self.total += 1
        if len(self._events) >= self.max_events:
            return
        self._events.append(BlockEvent(url=url, status_code=status_code, reason=reason))
        log.warning("BLOCKED | reason=%s status=%s url=%s", reason, status_code, url)

    @property
    def events(self) -> List[BlockEvent]:
        return list(self._events)

    def __len__(self) -> int:
        return len(self._events)
