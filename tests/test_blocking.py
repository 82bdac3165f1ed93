import pytest

from backend.zoopla.blocking import MAX_BLOCK_EVENTS, BlockLog, classify
from backend.zoopla.client import FetchResponse


def _resp(status, body="<html><body>ok</body></html>"):
    return FetchResponse(url="https://www.zoopla.co.uk/for-sale/", status_code=status, body=body)


@pytest.mark.parametrize("status", [403, 429, 503])
def test_block_status_codes_are_unconditional(status):
    assert classify(_resp(status, "")) == f"http_{status}"


@pytest.mark.parametrize("body,reason", [
    ("<html><title>Just a moment...</title></html>", "cloudflare_challenge"),
    ("<p>Please verify you are human by completing the action below.</p>", "human_verification"),
    ("<title>Attention Required! | Cloudflare</title>", "cloudflare_block"),
    ("<div id='px-captcha'></div>", "perimeterx_captcha"),
])
def test_challenge_phrases_on_success_pages(body, reason):
    assert classify(_resp(200, body)) == reason


def test_normal_pages_are_usable():
    assert classify(_resp(200)) is None
    assert classify(_resp(404, "Just a moment...")) is None


def test_block_log_is_bounded():
    blocks = BlockLog()
    for i in range(100):
        blocks.record(f"https://www.zoopla.co.uk/p/{i}", 403, "http_403")
    assert len(blocks) == MAX_BLOCK_EVENTS == 50
    assert len(blocks.events) == 50
    assert blocks.total == 100
    # the first events are kept, later ones dropped
    assert blocks.events[0].url.endswith("/p/0")
    assert blocks.events[-1].url.endswith("/p/49")


def test_block_logs_do_not_share_state():
    a, b = BlockLog(max_events=2), BlockLog(max_events=2)
    a.record("u", 429, "http_429")
    assert len(a) == 1 and len(b) == 0
