"""
Feed Fetcher - Download and parse XML product feeds.

Supported layouts:
- Vendor feeds: <products><product>...</product></products>
- RSS / Google Shopping: <rss><channel><item> with g: namespaced fields

Network and HTTP failures raise FetchError; malformed content raises
ParseError. Both are job-fatal.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Optional

import requests

from feed_orchestrator.config import FETCH_TIMEOUT_SECS
from feed_orchestrator.errors import FetchError, ParseError
from feed_orchestrator.feeds.models import Product

logger = logging.getLogger(__name__)

GOOGLE_NS = "http://base.google.com/ns/1.0"

# Fields lifted into the core product record; everything else goes to extra.
_VENDOR_CORE = {"id", "name", "description", "price_b2c", "brand", "categories"}
_RSS_CORE = {"title", "description", "g:id", "guid", "g:price", "g:brand", "category"}


class FeedFetcher:
    """Fetches raw feed bytes and parses them into Product records."""

    def __init__(self, timeout_seconds: int = FETCH_TIMEOUT_SECS, session: Optional[requests.Session] = None):
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    def fetch(self, url: str) -> bytes:
        """
        Fetch raw feed content.

        Raises:
            FetchError: On network failure or non-2xx status
        """
        if not url:
            raise FetchError(url, "feed has no URL")

        try:
            resp = self.session.get(url, timeout=self.timeout_seconds)
        except requests.RequestException as e:
            raise FetchError(url, str(e)) from e

        if resp.status_code >= 400:
            raise FetchError(url, f"HTTP {resp.status_code}", status_code=resp.status_code)

        logger.info("Fetched feed %s (%d bytes)", url, len(resp.content))
        return resp.content

    def parse(self, raw: bytes, feed_id: Optional[str] = None) -> List[Product]:
        """
        Parse feed XML into products.

        Raises:
            ParseError: If the XML is malformed or the layout is unknown
        """
        try:
            root = ET.fromstring(raw)
        except ET.ParseError as e:
            raise ParseError(f"Malformed feed XML: {e}") from e

        root_name = _local_name(root.tag)
        if root_name == "products":
            items = [_vendor_product(el, feed_id) for el in root if _local_name(el.tag) == "product"]
        elif root_name == "rss":
            channel = next((el for el in root if _local_name(el.tag) == "channel"), None)
            if channel is None:
                raise ParseError("RSS feed has no <channel>")
            items = [_rss_product(el, feed_id) for el in channel if _local_name(el.tag) == "item"]
        else:
            raise ParseError(f"Unsupported feed root element <{root_name}>")

        products = [p for p in items if p is not None]
        skipped = len(items) - len(products)
        if skipped:
            logger.warning("Skipped %d feed items without an id", skipped)
        logger.info("Parsed %d products from feed %s", len(products), feed_id)
        return products

    def fetch_products(self, url: str, feed_id: Optional[str] = None) -> List[Product]:
        return self.parse(self.fetch(url), feed_id=feed_id)


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _field_name(tag: str) -> str:
    if tag.startswith("{" + GOOGLE_NS + "}"):
        return "g:" + _local_name(tag)
    return _local_name(tag)


def _children(el: ET.Element) -> Dict[str, List[ET.Element]]:
    fields: Dict[str, List[ET.Element]] = {}
    for child in el:
        fields.setdefault(_field_name(child.tag), []).append(child)
    return fields


def _text(fields: Dict[str, List[ET.Element]], name: str) -> str:
    nodes = fields.get(name)
    if not nodes or nodes[0].text is None:
        return ""
    return nodes[0].text.strip()


def _to_int(value: str) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _extra(fields: Dict[str, List[ET.Element]], core: set) -> Dict[str, Any]:
    extra: Dict[str, Any] = {}
    for name, nodes in fields.items():
        if name in core:
            continue
        values = [(n.text or "").strip() for n in nodes]
        extra[name] = values[0] if len(values) == 1 else values
    return extra


def _vendor_product(el: ET.Element, feed_id: Optional[str]) -> Optional[Product]:
    fields = _children(el)
    sku = _text(fields, "id")
    if not sku:
        return None

    categories: List[str] = []
    for container in fields.get("categories", []):
        categories.extend((c.text or "").strip() for c in container if _local_name(c.tag) == "category")

    quantity = _to_int(_text(fields, "quantity"))
    extra = _extra(fields, _VENDOR_CORE)
    extra.update({
        "link": _text(fields, "url"),
        "image": _text(fields, "avatar"),
        "mpn": _text(fields, "model"),
        "availability": "in stock" if quantity > 0 else "out of stock",
        "condition": "new",
        "stockQuantity": quantity,
    })

    return Product(
        sku=sku,
        title=_text(fields, "name"),
        feed_id=feed_id,
        description=_text(fields, "description"),
        brand=_text(fields, "brand"),
        price=_text(fields, "price_b2c"),
        original_categories=[c for c in categories if c],
        extra=extra,
    )


def _rss_product(el: ET.Element, feed_id: Optional[str]) -> Optional[Product]:
    fields = _children(el)
    sku = _text(fields, "g:id") or _text(fields, "guid")
    if not sku:
        return None

    categories = [(c.text or "").strip() for c in fields.get("category", [])]
    extra = _extra(fields, _RSS_CORE)
    extra.setdefault("g:condition", "new")
    extra["stockQuantity"] = _to_int(_text(fields, "g:quantity"))

    return Product(
        sku=sku,
        title=_text(fields, "title"),
        feed_id=feed_id,
        description=_text(fields, "description"),
        brand=_text(fields, "g:brand"),
        price=_text(fields, "g:price"),
        original_categories=[c for c in categories if c],
        extra=extra,
    )


__all__ = ["FeedFetcher", "GOOGLE_NS"]
