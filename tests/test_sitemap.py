import asyncio

from backend.py_models.property import ListingSource
from backend.zoopla.sitemap import collect_sitemap_urls, parse_sitemap, stubs_from_urls

ROOT = "https://www.zoopla.co.uk/sitemap.xml"
LEAF_A = "https://www.zoopla.co.uk/sitemaps/listings-1.xml"
LEAF_B = "https://www.zoopla.co.uk/sitemaps/listings-2.xml"


def _index(*locs):
    body = "".join(f"<sitemap><loc>{u}</loc></sitemap>" for u in locs)
    return f'<?xml version="1.0" encoding="UTF-8"?><sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{body}</sitemapindex>'


def _urlset(*locs):
    body = "".join(f"<url><loc>{u}</loc></url>" for u in locs)
    return f'<?xml version="1.0" encoding="UTF-8"?><urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{body}</urlset>'


def _details(n):
    return f"https://www.zoopla.co.uk/for-sale/details/{n}/"


DOCS = {
    ROOT: _index(LEAF_A, LEAF_B),
    LEAF_A: _urlset(_details(1), _details(2), "https://www.zoopla.co.uk/to-rent/", _details(3)),
    LEAF_B: _urlset(_details(4), "https://www.zoopla.co.uk/discover/", _details(5), _details(6)),
}


class DocFetcher:
    def __init__(self, docs):
        self.docs = docs
        self.calls = []

    async def __call__(self, url):
        self.calls.append(url)
        return self.docs.get(url)


def test_parse_sitemap_kinds():
    assert parse_sitemap(DOCS[ROOT]) == ("index", [LEAF_A, LEAF_B])
    kind, locs = parse_sitemap(DOCS[LEAF_A])
    assert kind == "urlset" and len(locs) == 4
    assert parse_sitemap("") == ("urlset", [])


def test_index_walk_collects_only_listing_urls():
    fetch = DocFetcher(DOCS)
    urls = asyncio.run(collect_sitemap_urls(fetch, [ROOT]))
    assert urls == [_details(i) for i in range(1, 7)]
    assert fetch.calls == [ROOT, LEAF_A, LEAF_B]


def test_limit_stops_the_walk_early():
    fetch = DocFetcher(DOCS)
    urls = asyncio.run(collect_sitemap_urls(fetch, [ROOT], limit=2))
    assert urls == [_details(1), _details(2)]
    assert LEAF_B not in fetch.calls


def test_each_document_fetched_once():
    docs = dict(DOCS)
    docs[ROOT] = _index(LEAF_A, LEAF_A, ROOT)
    fetch = DocFetcher(docs)
    urls = asyncio.run(collect_sitemap_urls(fetch, [ROOT]))
    assert urls == [_details(1), _details(2), _details(3)]
    assert fetch.calls == [ROOT, LEAF_A]


def test_depth_cap():
    docs = {
        ROOT: _index("https://www.zoopla.co.uk/s1.xml"),
        "https://www.zoopla.co.uk/s1.xml": _index("https://www.zoopla.co.uk/s2.xml"),
        "https://www.zoopla.co.uk/s2.xml": _urlset(_details(9)),
    }
    assert asyncio.run(collect_sitemap_urls(DocFetcher(docs), [ROOT], max_depth=1)) == []
    assert asyncio.run(collect_sitemap_urls(DocFetcher(docs), [ROOT], max_depth=2)) == [_details(9)]


def test_unavailable_documents_are_skipped():
    docs = {ROOT: _index(LEAF_A, LEAF_B), LEAF_B: DOCS[LEAF_B]}
    urls = asyncio.run(collect_sitemap_urls(DocFetcher(docs), [ROOT, "https://www.zoopla.co.uk/missing.xml"]))
    assert urls == [_details(4), _details(5), _details(6)]


def test_stubs_from_urls():
    stubs = stubs_from_urls([_details(42)])
    assert stubs[0].listing_id == "42"
    assert stubs[0].url == _details(42)
    assert stubs[0].source is ListingSource.SITEMAP
