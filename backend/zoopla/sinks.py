import asyncio
import csv
import json
import logging
import os
from pathlib import Path
from typing import List, Optional, Protocol

from backend.py_models.property import Property

log = logging.getLogger("zoopla.sinks")

CSV_FIELDS = [
    "listingId", "url", "title", "price", "priceValue", "priceCurrency", "address",
    "streetAddress", "locality", "region", "postalCode", "country", "propertyType",
    "beds", "baths", "receptions", "floorArea", "tenure", "description", "features",
    "images", "agentName", "agentUrl", "latitude", "longitude", "source", "scrapedAt",
]


class Sink(Protocol):
    async def emit(self, prop: Property) -> None:
        ...


class MemorySink:
    """Keeps emitted properties in a list."""

    def __init__(self):
        self.items: List[Property] = []

    async def emit(self, prop: Property) -> None:
        self.items.append(prop)

    async def close(self) -> None:
        return None


class FileSink(MemorySink):
    """Collects properties and writes them as .json or .csv on close."""

    def __init__(self, path: str):
        super().__init__()
        if not path.lower().endswith((".json", ".csv")):
            raise ValueError(f"Unknown output format for {path!r}. Use .json or .csv")
        self.path = Path(path)

    async def close(self) -> None:
        rows = [p.to_record() for p in self.items]
        if self.path.suffix.lower() == ".json":
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(rows, f, indent=2, ensure_ascii=False, default=str)
        else:
            with open(self.path, "w", newline="", encoding="utf-8") as f:
                writer = csv.DictWriter(f, fieldnames=CSV_FIELDS)
                writer.writeheader()
                for r in rows:
                    r = dict(r)
                    r["features"] = " | ".join(r.get("features") or [])
                    r["images"] = " ".join(r.get("images") or [])
                    writer.writerow({k: r.get(k) for k in CSV_FIELDS})
        log.info("Saved %d properties to %s", len(rows), self.path)


class MongoSink:
    """Append-only MongoDB sink; inserts run in a worker thread."""

    def __init__(self, uri: Optional[str] = None, database: str = "zoopla", collection: str = "properties"):
        from pymongo import MongoClient

        self.uri = uri or os.getenv("MONGO_URI", "mongodb://localhost:27017")
        self._client = MongoClient(self.uri)
        self._col = self._client[database][collection]
        self.inserted = 0

    async def emit(self, prop: Property) -> None:
        await asyncio.to_thread(self._col.insert_one, prop.to_record())
        self.inserted += 1

    async def close(self) -> None:
        log.info("DB INSERT | inserted=%d", self.inserted)
        self._client.close()


class MultiSink:
    """
    Fan out each property to several sinks, in order.

    Every sink is tried. A property counts as emitted once any sink stored it, so
    emit only raises when all of them failed; partial failures are logged and kept
    in `failures` instead of releasing a result slot for an item already written.
    """

    def __init__(self, *sinks):
        self.sinks = [s for s in sinks if s is not None]
        self.failures: List[BaseException] = []

    async def emit(self, prop: Property) -> None:
        errors = []
        for s in self.sinks:
            try:
                await s.emit(prop)
            except Exception as e:
                log.error("SINK FAILED | %s id=%s: %s", type(s).__name__, prop.listing_id, e)
                errors.append(e)
        if errors and len(errors) == len(self.sinks):
            raise errors[0]
        self.failures.extend(errors)

    async def close(self) -> None:
        for s in self.sinks:
            await s.close()
