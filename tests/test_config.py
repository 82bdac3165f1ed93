import pytest

from backend.zoopla.config import RunConfig, load_config
from backend.zoopla.errors import ConfigError

START = "https://www.zoopla.co.uk/for-sale/property/london/"


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "ZOOPLA_START_URLS", "ZOOPLA_RESULTS_WANTED", "ZOOPLA_MAX_PAGES", "ZOOPLA_MAX_CONCURRENCY",
        "ZOOPLA_REQUEST_TIMEOUT", "ZOOPLA_COLLECT_DETAILS", "ZOOPLA_PROXY", "ZOOPLA_STRATEGIES",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    cfg = load_config(start_urls=[START])
    assert cfg.results_wanted == 50
    assert cfg.max_pages == 2
    assert cfg.collect_details is True
    assert cfg.max_concurrency == 3
    assert cfg.strategies == ["api", "markup", "sitemap"]


def test_max_pages_follows_results_wanted():
    assert load_config(start_urls=[START], results_wanted=10).max_pages == 1
    assert load_config(start_urls=[START], results_wanted=100).max_pages == 4
    assert load_config(start_urls=[START], results_wanted=100, max_pages=7).max_pages == 7


def test_missing_start_url_is_fatal():
    with pytest.raises(ConfigError, match="start URL"):
        load_config()
    with pytest.raises(ConfigError):
        load_config(start_urls=["   "])
    with pytest.raises(ConfigError):
        load_config(start_urls=["/for-sale/property/london/"])


def test_config_error_is_a_value_error():
    with pytest.raises(ValueError):
        load_config(start_urls=[START], max_concurrency=0)


def test_strategies_keep_fixed_order():
    cfg = load_config(start_urls=[START], strategies=["sitemap", "api"])
    assert cfg.strategies == ["api", "sitemap"]
    with pytest.raises(ConfigError):
        load_config(start_urls=[START], strategies=["rss"])


def test_from_env(monkeypatch):
    monkeypatch.setenv("ZOOPLA_START_URLS", f"{START}, https://www.zoopla.co.uk/for-sale/property/leeds/")
    monkeypatch.setenv("ZOOPLA_RESULTS_WANTED", "30")
    monkeypatch.setenv("ZOOPLA_COLLECT_DETAILS", "false")
    monkeypatch.setenv("ZOOPLA_STRATEGIES", "markup")
    cfg = RunConfig.from_env()
    assert len(cfg.start_urls) == 2
    assert cfg.results_wanted == 30
    assert cfg.max_pages == 2
    assert cfg.collect_details is False
    assert cfg.strategies == ["markup"]


def test_from_env_overrides_win_and_none_is_ignored(monkeypatch):
    monkeypatch.setenv("ZOOPLA_START_URLS", START)
    monkeypatch.setenv("ZOOPLA_RESULTS_WANTED", "30")
    cfg = RunConfig.from_env(results_wanted=5, max_pages=None)
    assert cfg.results_wanted == 5
    assert cfg.max_pages == 1
