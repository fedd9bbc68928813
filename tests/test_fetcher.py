"""Tests for feed download and XML parsing."""

import pytest
import requests

from conftest import vendor_feed_xml
from feed_orchestrator.errors import FetchError, ParseError
from feed_orchestrator.feeds.fetcher import FeedFetcher


RSS_FEED = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss xmlns:g="http://base.google.com/ns/1.0" version="2.0">
  <channel>
    <title>Shop</title>
    <item>
      <g:id>A1</g:id>
      <title>Minge fotbal</title>
      <description>Minge marimea 5</description>
      <link>https://shop.example/a1</link>
      <g:price>49.99 RON</g:price>
      <g:brand>Acme</g:brand>
      <g:quantity>4</g:quantity>
      <category>Sport</category>
      <category>Mingi</category>
    </item>
    <item>
      <title>No identifier</title>
    </item>
  </channel>
</rss>"""


class FakeResponse:
    def __init__(self, status_code=200, content=b""):
        self.status_code = status_code
        self.content = content


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append((url, timeout))
        if self.error is not None:
            raise self.error
        return self.response


class TestFetch:

    def test_returns_body(self):
        session = FakeSession(FakeResponse(200, b"<products/>"))
        fetcher = FeedFetcher(timeout_seconds=7, session=session)

        assert fetcher.fetch("https://feeds.example/a.xml") == b"<products/>"
        assert session.calls == [("https://feeds.example/a.xml", 7)]

    def test_http_error_status(self):
        fetcher = FeedFetcher(session=FakeSession(FakeResponse(500)))

        with pytest.raises(FetchError) as exc_info:
            fetcher.fetch("https://feeds.example/a.xml")
        assert exc_info.value.status_code == 500
        assert exc_info.value.code == "FETCH_FAILED"

    def test_network_error(self):
        fetcher = FeedFetcher(session=FakeSession(error=requests.ConnectionError("refused")))

        with pytest.raises(FetchError, match="refused"):
            fetcher.fetch("https://feeds.example/a.xml")

    def test_missing_url(self):
        with pytest.raises(FetchError):
            FeedFetcher(session=FakeSession()).fetch("")


class TestParse:

    def test_vendor_feed(self):
        products = FeedFetcher(session=FakeSession()).parse(vendor_feed_xml(2), feed_id="feed-1")

        assert [p.sku for p in products] == ["SKU-0", "SKU-1"]
        first = products[0]
        assert first.id == "feed-1_SKU-0"
        assert first.title == "Product 0"
        assert first.price == "10.99"
        assert first.brand == "Acme"
        assert first.original_categories == ["Jucarii", "Seturi LEGO"]
        assert first.extra["availability"] == "out of stock"
        assert products[1].extra["availability"] == "in stock"
        assert products[1].extra["stockQuantity"] == 1
        assert not first.category_processed

    def test_rss_feed_with_google_namespace(self):
        products = FeedFetcher(session=FakeSession()).parse(RSS_FEED, feed_id="feed-9")

        assert len(products) == 1
        product = products[0]
        assert product.sku == "A1"
        assert product.title == "Minge fotbal"
        assert product.price == "49.99 RON"
        assert product.brand == "Acme"
        assert product.original_categories == ["Sport", "Mingi"]
        assert product.extra["link"] == "https://shop.example/a1"
        assert product.extra["g:condition"] == "new"
        assert product.extra["stockQuantity"] == 4

    def test_unknown_fields_are_kept(self):
        raw = (b"<products><product><id>X</id><name>N</name><color>red</color>"
               b"<tag>a</tag><tag>b</tag></product></products>")
        product = FeedFetcher(session=FakeSession()).parse(raw)[0]

        assert product.extra["color"] == "red"
        assert product.extra["tag"] == ["a", "b"]

    def test_malformed_xml(self):
        with pytest.raises(ParseError):
            FeedFetcher(session=FakeSession()).parse(b"<products><product>")

    def test_unsupported_root(self):
        with pytest.raises(ParseError, match="catalog"):
            FeedFetcher(session=FakeSession()).parse(b"<catalog/>")

    def test_rss_without_channel(self):
        with pytest.raises(ParseError):
            FeedFetcher(session=FakeSession()).parse(b"<rss/>")

    def test_fetch_products(self):
        fetcher = FeedFetcher(session=FakeSession(FakeResponse(200, vendor_feed_xml(3))))
        products = fetcher.fetch_products("https://feeds.example/a.xml", feed_id="feed-1")
        assert len(products) == 3
        assert all(p.feed_id == "feed-1" for p in products)
