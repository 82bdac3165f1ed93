import logging
from enum import Enum
from functools import partial
from typing import List, Optional, Union

from backend.py_models.property import ListingStub, Property, RunError, RunStats, RunSummary
from backend.zoopla.blocking import BlockLog
from backend.zoopla.client import HttpxTransport, Transport
from backend.zoopla.config import RunConfig, load_config
from backend.zoopla.detail import DetailFetcher
from backend.zoopla.merge import merge
from backend.zoopla.scheduling import ConcurrencyLimiter, IdentityRegistry
from backend.zoopla.sinks import MemorySink, Sink
from backend.zoopla.strategies import PageFetcher, Strategy, build_strategies

log = logging.getLogger("zoopla")


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"


class ZooplaScraper:
    """
    Drives the fallback chain (api → markup → sitemap) over each target search URL.

    Pages are requested one at a time; the stubs of a page go through the identity
    registry and are processed as one batch of limiter tasks, awaited before the
    next page. A strategy stops for a target on its first empty page or error.
    All diagnostics (blocks, errors, counters) live on the instance, one per run.
    """

    def __init__(
        self,
        config: RunConfig,
        transport: Transport,
        sink: Optional[Sink] = None,
        strategies: Optional[List[Strategy]] = None,
        fetcher: Optional[PageFetcher] = None,
    ):
        self.config = config
        self.transport = transport
        self.sink = sink if sink is not None else MemorySink()
        self.block_log = BlockLog()
        self.errors: List[RunError] = []
        self.stats = RunStats()
        self.registry = IdentityRegistry()
        self.fetcher = fetcher or PageFetcher(
            transport, self.block_log, timeout=config.request_timeout, delay=config.request_delay
        )
        self.details = DetailFetcher(self.fetcher)
        self.strategies = strategies if strategies is not None else build_strategies(config, self.fetcher)
        self.state = RunState.IDLE
        self.position: Optional[tuple] = None  # (strategy, target, page) while RUNNING

    @property
    def quota_reached(self) -> bool:
        return self.stats.listings_saved >= self.config.results_wanted

    def _record_error(self, error: BaseException, strategy=None, target=None, page=None) -> None:
        self.errors.append(
            RunError(strategy=strategy, target=target, page=page, error=f"{type(error).__name__}: {error}")
        )
        log.error("ERROR | strategy=%s target=%s page=%s | %s", strategy, target, page, error)

    async def run(self) -> RunSummary:
        limiter = ConcurrencyLimiter(self.config.max_concurrency)
        self.state = RunState.RUNNING
        log.info(
            "START | targets=%d results_wanted=%d max_pages=%d details=%s strategies=%s",
            len(self.config.start_urls), self.config.results_wanted, self.config.max_pages,
            self.config.collect_details, ",".join(s.name for s in self.strategies),
        )
        try:
            for target in self.config.start_urls:
                for strategy in self.strategies:
                    if self.quota_reached:
                        break
                    await self._run_strategy(strategy, target, limiter)
                if self.quota_reached:
                    break
        finally:
            self.state = RunState.DONE
            self.position = None
        summary = self.summary()
        log.info("DONE | %s", summary.describe())
        return summary

    async def _run_strategy(self, strategy: Strategy, target: str, limiter: ConcurrencyLimiter) -> None:
        for page in range(1, self.config.max_pages + 1):
            if self.quota_reached:
                return
            self.position = (strategy.name, target, page)
            try:
                stubs = await strategy.fetch_page(target, page)
            except Exception as e:
                self._record_error(e, strategy.name, target, page)
                return
            self.stats.pages_processed += 1
            log.info("PAGE | strategy=%s page=%d/%d stubs=%d", strategy.name, page, self.config.max_pages, len(stubs))
            if not stubs:
                return
            self.stats.methods_used.add(strategy.name)
            await self._process_batch(stubs, limiter)

    async def _process_batch(self, stubs: List[ListingStub], limiter: ConcurrencyLimiter) -> None:
        factories = []
        for stub in stubs:
            if self.quota_reached:
                break
            # check-and-insert without a suspension point in between
            if not self.registry.admit(stub.identity):
                continue
            factories.append(partial(self._process_listing, stub))
        if factories:
            await limiter.run_all(factories)

    async def _process_listing(self, stub: ListingStub) -> Optional[Property]:
        if self.quota_reached:
            return None
        detail = None
        if self.config.collect_details and stub.url:
            try:
                detail = await self.details.fetch(stub.url)
            except Exception as e:
                self._record_error(e, stub.source.value, stub.url)
        if self.quota_reached:
            return None
        prop = merge(stub, detail, stub.source)
        # the detail page can supply an id the stub lacked; that id must be unique too
        if prop.listing_id != stub.identity and not self.registry.admit(prop.listing_id):
            log.info("DUPLICATE | id=%s via %s", prop.listing_id, stub.identity)
            return None
        # reserve the slot before the sink await so concurrent tasks cannot overshoot
        self.stats.listings_saved += 1
        try:
            await self.sink.emit(prop)
        except Exception as e:
            self.stats.listings_saved -= 1
            self._record_error(e, stub.source.value, stub.url)
            return None
        log.info("SAVED | %d/%d id=%s source=%s", self.stats.listings_saved,
                 self.config.results_wanted, prop.listing_id, prop.source.value)
        return prop

    def summary(self) -> RunSummary:
        return RunSummary(
            listings_saved=self.stats.listings_saved,
            pages_processed=self.stats.pages_processed,
            methods_used=sorted(self.stats.methods_used),
            blocked_count=self.block_log.total,
            error_count=len(self.errors),
        )


async def collect_zoopla(
    config: Union[RunConfig, dict],
    transport: Optional[Transport] = None,
    sink: Optional[Sink] = None,
) -> RunSummary:
    """Run one scrape. Raises ConfigError before any work when the config is invalid."""
    if not isinstance(config, RunConfig):
        config = load_config(**config)
    if transport is not None:
        return await ZooplaScraper(config, transport, sink).run()
    async with HttpxTransport(timeout=config.request_timeout, proxy=config.proxy_url) as http:
        return await ZooplaScraper(config, http, sink).run()
