"""Sitemap XML parsing with lxml."""

import gzip
from typing import Optional

from lxml import etree

from .types import ParsedSitemap, SitemapFetchError, SitemapRecord

GZIP_MAGIC = b"\x1f\x8b"


def _parser() -> etree.XMLParser:
    # Sitemaps come from arbitrary sites: no entity expansion, no network
    return etree.XMLParser(
        recover=False,
        resolve_entities=False,
        no_network=True,
        remove_blank_text=True,
    )


def _text(element, name: str) -> Optional[str]:
    child = element.find(f"{{*}}{name}")
    if child is None or child.text is None:
        return None
    value = child.text.strip()
    return value or None


def decode_body(content: bytes, url: str = "") -> bytes:
    """Return the XML bytes, inflating gzip-compressed sitemaps."""
    if content[:2] == GZIP_MAGIC:
        try:
            return gzip.decompress(content)
        except (OSError, EOFError) as e:
            raise SitemapFetchError(url, f"invalid gzip body: {e}") from e
    return content


def parse_sitemap(content: bytes, url: str = "") -> ParsedSitemap:
    """Parse a <urlset> or <sitemapindex> document.

    Entries without a <loc> are skipped. ``changefreq`` is lower-cased; all
    other values are kept exactly as written, whitespace stripped.
    """
    content = decode_body(content, url)
    if not content.strip():
        raise SitemapFetchError(url, "empty sitemap document")

    try:
        root = etree.fromstring(content, parser=_parser())
    except etree.XMLSyntaxError as e:
        raise SitemapFetchError(url, f"XML syntax error: {e}") from e

    tag = etree.QName(root).localname
    if tag == "sitemapindex":
        children = []
        for sitemap_elem in root.findall("{*}sitemap"):
            loc = _text(sitemap_elem, "loc")
            if loc:
                children.append(loc)
        return ParsedSitemap(kind="sitemapindex", children=children)

    if tag == "urlset":
        records = []
        for url_elem in root.findall("{*}url"):
            loc = _text(url_elem, "loc")
            if not loc:
                continue
            changefreq = _text(url_elem, "changefreq")
            records.append(
                SitemapRecord(
                    loc=loc,
                    changefreq=changefreq.lower() if changefreq else None,
                    priority=_text(url_elem, "priority"),
                    lastmod=_text(url_elem, "lastmod"),
                )
            )
        return ParsedSitemap(kind="urlset", records=records)

    raise SitemapFetchError(url, f"unexpected root element <{tag}>")


def parse_robots_sitemaps(robots_txt: str) -> list[str]:
    """Collect the ``Sitemap:`` directives of a robots.txt body, in order."""
    sitemaps = []
    for line in robots_txt.splitlines():
        line = line.split("#", 1)[0].strip()
        if not line:
            continue
        key, sep, value = line.partition(":")
        if sep and key.strip().lower() == "sitemap":
            value = value.strip()
            if value and value not in sitemaps:
                sitemaps.append(value)
    return sitemaps
