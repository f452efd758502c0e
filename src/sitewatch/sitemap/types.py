"""Type definitions for sitemap fetching."""

from dataclasses import dataclass, field
from typing import Optional

from ..utils.types import SitewatchError


class SitemapFetchError(SitewatchError):
    """A sitemap could not be retrieved or parsed."""

    def __init__(self, url: str, message: str):
        self.url = url
        self.message = message
        super().__init__(f"{url}: {message}")


@dataclass(frozen=True)
class SitemapRecord:
    """One <url> entry of a sitemap, values as written by the site."""

    loc: str
    changefreq: Optional[str] = None
    priority: Optional[str] = None
    lastmod: Optional[str] = None


@dataclass
class ParsedSitemap:
    """Result of parsing a single sitemap document."""

    kind: str  # "urlset" or "sitemapindex"
    records: list[SitemapRecord] = field(default_factory=list)
    children: list[str] = field(default_factory=list)

    @property
    def is_index(self) -> bool:
        return self.kind == "sitemapindex"


@dataclass
class FetchResult:
    """Flattened URL set of a site plus fetch statistics."""

    records: list[SitemapRecord]
    sitemaps_fetched: int = 0

    @property
    def url_count(self) -> int:
        return len(self.records)
