import math
import os
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from backend.zoopla.errors import ConfigError

LISTINGS_PER_PAGE = 28
STRATEGY_ORDER = ("api", "markup", "sitemap")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class RunConfig(BaseModel):
    start_urls: List[str]
    results_wanted: int = Field(50, ge=1)
    max_pages: Optional[int] = Field(None, ge=1)
    collect_details: bool = True
    max_concurrency: int = Field(3, ge=1, le=16)
    request_timeout: float = Field(60.0, gt=0)
    request_delay: Tuple[float, float] = (1.5, 2.5)
    proxy_url: Optional[str] = None
    strategies: List[str] = Field(default_factory=lambda: list(STRATEGY_ORDER))
    sitemap_urls: Optional[List[str]] = None

    @field_validator("start_urls")
    @classmethod
    def _check_urls(cls, urls: List[str]) -> List[str]:
        cleaned = [u.strip() for u in urls if u and u.strip()]
        if not cleaned:
            raise ValueError("at least one start URL is required")
        for u in cleaned:
            if not u.startswith(("http://", "https://")):
                raise ValueError(f"start URL must be absolute: {u!r}")
        return cleaned

    @field_validator("strategies")
    @classmethod
    def _check_strategies(cls, names: List[str]) -> List[str]:
        unknown = [n for n in names if n not in STRATEGY_ORDER]
        if unknown:
            raise ValueError(f"unknown strategies {unknown}; expected a subset of {list(STRATEGY_ORDER)}")
        if not names:
            raise ValueError("at least one strategy is required")
        # the fallback chain always runs in its fixed order
        return [n for n in STRATEGY_ORDER if n in names]

    @field_validator("request_delay")
    @classmethod
    def _check_delay(cls, delay: Tuple[float, float]) -> Tuple[float, float]:
        lo, hi = delay
        if lo < 0 or hi < lo:
            raise ValueError("request_delay must be (min, max) with 0 <= min <= max")
        return delay

    @model_validator(mode="after")
    def _default_pages(self):
        if self.max_pages is None:
            self.max_pages = max(1, math.ceil(self.results_wanted / LISTINGS_PER_PAGE))
        return self

    @classmethod
    def from_env(cls, **overrides) -> "RunConfig":
        """Build a config from ZOOPLA_* environment variables; keyword overrides win."""
        values = {}
        urls = os.getenv("ZOOPLA_START_URLS", "")
        if urls.strip():
            values["start_urls"] = [u for u in urls.replace("\n", ",").split(",") if u.strip()]
        for env, key in (
            ("ZOOPLA_RESULTS_WANTED", "results_wanted"),
            ("ZOOPLA_MAX_PAGES", "max_pages"),
            ("ZOOPLA_MAX_CONCURRENCY", "max_concurrency"),
            ("ZOOPLA_REQUEST_TIMEOUT", "request_timeout"),
        ):
            raw = os.getenv(env, "").strip()
            if raw:
                values[key] = raw
        values["collect_details"] = _env_bool("ZOOPLA_COLLECT_DETAILS", True)
        proxy = os.getenv("ZOOPLA_PROXY", "").strip()
        if proxy:
            values["proxy_url"] = proxy
        strategies = os.getenv("ZOOPLA_STRATEGIES", "").strip()
        if strategies:
            values["strategies"] = [s.strip() for s in strategies.split(",") if s.strip()]
        values.update({k: v for k, v in overrides.items() if v is not None})
        return load_config(**values)


def load_config(**values) -> RunConfig:
    """Validate run settings; any problem is surfaced as ConfigError."""
    if not values.get("start_urls"):
        raise ConfigError("Missing start URL: supply at least one Zoopla search URL")
    try:
        return RunConfig(**values)
    except ValidationError as e:
        raise ConfigError(f"Invalid run configuration: {e}") from e
