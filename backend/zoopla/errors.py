class ZooplaError(Exception):
    """Base class for scraper errors."""


class ConfigError(ZooplaError, ValueError):
    """Invalid or missing run configuration. Fatal before any work starts."""


class FetchError(ZooplaError):
    """A fetch failed at the transport level or returned an HTTP error status."""

    def __init__(self, url: str, message: str, status_code: int | None = None):
        super().__init__(f"{message} ({url})")
        self.url = url
        self.status_code = status_code
