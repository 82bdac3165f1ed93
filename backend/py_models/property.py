from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ListingSource(str, Enum):
    API = "api"
    MARKUP = "markup"
    DOM = "dom"
    SITEMAP = "sitemap"


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _ListingFields(_Record):
    """Fields shared by search-result stubs and detail-page records."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    listing_id: Optional[str] = None
    url: Optional[str] = None
    title: Optional[str] = None
    address: Optional[str] = None
    locality: Optional[str] = None
    postal_code: Optional[str] = None
    price: Optional[str] = Field(None, description="Display price text, e.g. '£325,000'")
    price_value: Optional[float] = None
    price_currency: Optional[str] = None
    beds: Optional[int] = None
    baths: Optional[int] = None
    receptions: Optional[int] = None
    property_type: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    description: Optional[str] = None
    agent_name: Optional[str] = None

    @property
    def identity(self) -> Optional[str]:
        return self.listing_id or self.url


class ListingStub(_ListingFields):
    """Partial record from one search-result surface, before enrichment."""

    source: ListingSource
    image: Optional[str] = None


class DetailRecord(_ListingFields):
    """Record parsed from an individual listing page. Every field is optional."""

    features: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)
    agent_url: Optional[str] = None
    tenure: Optional[str] = None
    floor_area: Optional[str] = None
    street_address: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None


class Property(_Record):
    """Canonical emitted listing: stub merged with its (optional) detail record."""

    listing_id: Optional[str] = None
    url: Optional[str] = None
    title: Optional[str] = None
    price: Optional[str] = None
    price_value: Optional[float] = None
    price_currency: Optional[str] = None
    address: Optional[str] = None
    street_address: Optional[str] = None
    locality: Optional[str] = None
    region: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    property_type: Optional[str] = None
    beds: Optional[int] = None
    baths: Optional[int] = None
    receptions: Optional[int] = None
    floor_area: Optional[str] = None
    tenure: Optional[str] = None
    description: Optional[str] = None
    features: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)
    agent_name: Optional[str] = None
    agent_url: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    source: ListingSource
    scraped_at: datetime = Field(default_factory=_now)

    def to_record(self) -> dict:
        """Flattened, JSON-safe dict keyed by the published camelCase names."""
        return self.model_dump(mode="json", by_alias=True)


class BlockEvent(_Record):
    url: str
    status_code: Optional[int] = None
    reason: str
    timestamp: datetime = Field(default_factory=_now)


class RunError(_Record):
    strategy: Optional[str] = None
    target: Optional[str] = None
    page: Optional[int] = None
    error: str
    timestamp: datetime = Field(default_factory=_now)


class RunStats(_Record):
    pages_processed: int = 0
    listings_saved: int = 0
    methods_used: Set[str] = Field(default_factory=set)


class RunSummary(_Record):
    listings_saved: int
    pages_processed: int
    methods_used: List[str]
    blocked_count: int = 0
    error_count: int = 0

    @property
    def likely_blocked(self) -> bool:
        return self.listings_saved == 0 and self.blocked_count > 0

    def describe(self) -> str:
        if self.likely_blocked:
            return (
                f"zero saved, {self.blocked_count} blocked - the site is likely "
                "serving anti-bot challenges; try a different proxy"
            )
        if self.listings_saved == 0:
            return f"zero saved, no listings found ({self.pages_processed} pages processed)"
        methods = ", ".join(self.methods_used) or "none"
        return (
            f"saved {self.listings_saved} listings from {self.pages_processed} pages "
            f"(methods: {methods}, blocked: {self.blocked_count}, errors: {self.error_count})"
        )
