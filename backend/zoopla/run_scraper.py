import asyncio
import logging
import sys

from backend.zoopla.client import HttpxTransport, PlaywrightTransport
from backend.zoopla.config import STRATEGY_ORDER, RunConfig
from backend.zoopla.errors import ConfigError
from backend.zoopla.filters import build_search_url
from backend.zoopla.scraper import ZooplaScraper
from backend.zoopla.sinks import FileSink, MemorySink, MongoSink, MultiSink


def parse_args(argv=None):
    import argparse
    p = argparse.ArgumentParser(description="Collect Zoopla listings via API, search pages and sitemaps.")
    p.add_argument("urls", nargs="*", help="Zoopla search URL(s). Defaults to ZOOPLA_START_URLS.")
    p.add_argument("--location", help='Build the search URL from a location instead, e.g. "London"')
    p.add_argument("--min-price", type=int)
    p.add_argument("--max-price", type=int)
    p.add_argument("--min-beds", type=int)
    p.add_argument("--results", type=int, help="Total listings wanted (default 50)")
    p.add_argument("--pages", type=int, help="Max pages per target and strategy")
    p.add_argument("--no-details", action="store_true", help="Skip detail-page enrichment")
    p.add_argument("--concurrency", type=int, help="Concurrent listing tasks (default 3)")
    p.add_argument("--strategies", help=f"Comma-separated subset of {','.join(STRATEGY_ORDER)}")
    p.add_argument("--no-delay", action="store_true", help="Disable the pacing delay between requests")
    p.add_argument("--browser", action="store_true", help="Fetch with headless Chromium (Playwright)")
    p.add_argument("--output", help="Optional path to save results as .json or .csv")
    p.add_argument("--mongo", action="store_true", help="Insert results into MongoDB (MONGO_URI)")
    p.add_argument("--print-details", action="store_true", help="Print each property row to stdout")
    p.add_argument("--verbose", action="store_true", help="Enable verbose logging for the zoopla scraper")
    return p.parse_args(argv)


def build_config(args) -> RunConfig:
    urls = list(args.urls)
    if args.location:
        urls.append(build_search_url(
            args.location, min_price=args.min_price, max_price=args.max_price, min_beds=args.min_beds,
        ))
    overrides = {
        "start_urls": urls or None,
        "results_wanted": args.results,
        "max_pages": args.pages,
        "max_concurrency": args.concurrency,
        "strategies": [s.strip() for s in args.strategies.split(",")] if args.strategies else None,
        "collect_details": False if args.no_details else None,
        "request_delay": (0.0, 0.0) if args.no_delay else None,
    }
    return RunConfig.from_env(**overrides)


def _print_row(p) -> None:
    price = f"£{int(p.price_value):,}" if p.price_value is not None else (p.price or "N/A")
    beds = f"{p.beds} bd" if p.beds is not None else "--"
    baths = f"{p.baths} ba" if p.baths is not None else "--"
    print(f"- {p.address or p.title or ''} | {price} | {beds} / {baths} | {p.source.value} | {p.url or ''}")


async def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(message)s"
    )
    if args.verbose:
        logging.getLogger("zoopla").setLevel(logging.DEBUG)
    log = logging.getLogger("zoopla")

    try:
        config = build_config(args)
        sink = FileSink(args.output) if args.output else MemorySink()
    except (ConfigError, ValueError) as e:
        log.error("%s", e)
        return 1

    mongo = MongoSink() if args.mongo else None
    out = MultiSink(sink, mongo)

    transport_cls = PlaywrightTransport if args.browser else HttpxTransport
    try:
        async with transport_cls(timeout=config.request_timeout, proxy=config.proxy_url) as transport:
            scraper = ZooplaScraper(config, transport, out)
            summary = await scraper.run()
    finally:
        await out.close()

    if args.print_details:
        for p in sink.items:
            _print_row(p)

    for ev in scraper.block_log.events:
        log.debug("BLOCK EVENT | %s %s %s", ev.status_code, ev.reason, ev.url)
    print(f"\n{summary.describe()}")
    return 0


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
