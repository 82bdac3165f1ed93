import asyncio
import csv
import json

import pytest

from backend.py_models.property import ListingSource, Property
from backend.zoopla.sinks import FileSink, MemorySink, MultiSink


def _prop(i):
    return Property(
        listing_id=str(i),
        url=f"https://www.zoopla.co.uk/for-sale/details/{i}/",
        price_value=250000,
        features=["Garden", "Garage"],
        source=ListingSource.API,
    )


def _emit_all(sink, props):
    async def go():
        for p in props:
            await sink.emit(p)
        await sink.close()

    asyncio.run(go())


def test_json_output(tmp_path):
    path = tmp_path / "out.json"
    _emit_all(FileSink(str(path)), [_prop(1), _prop(2)])
    rows = json.loads(path.read_text(encoding="utf-8"))
    assert [r["listingId"] for r in rows] == ["1", "2"]
    assert rows[0]["source"] == "api"
    assert rows[0]["features"] == ["Garden", "Garage"]


def test_csv_output(tmp_path):
    path = tmp_path / "out.csv"
    _emit_all(FileSink(str(path)), [_prop(3)])
    with open(path, newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert rows[0]["listingId"] == "3"
    assert rows[0]["features"] == "Garden | Garage"


def test_unknown_extension_rejected():
    with pytest.raises(ValueError):
        FileSink("out.xlsx")


def test_multi_sink_fans_out_and_skips_none():
    a, b = MemorySink(), MemorySink()
    _emit_all(MultiSink(a, None, b), [_prop(4)])
    assert [p.listing_id for p in a.items] == ["4"]
    assert [p.listing_id for p in b.items] == ["4"]


class _BrokenSink(MemorySink):
    async def emit(self, prop):
        raise ConnectionError("db down")


def test_multi_sink_partial_failure_still_counts_as_emitted():
    good = MemorySink()
    multi = MultiSink(good, _BrokenSink())
    _emit_all(multi, [_prop(5)])
    assert [p.listing_id for p in good.items] == ["5"]
    assert len(multi.failures) == 1


def test_multi_sink_raises_when_every_sink_fails():
    multi = MultiSink(_BrokenSink(), _BrokenSink())
    with pytest.raises(ConnectionError):
        asyncio.run(multi.emit(_prop(6)))
