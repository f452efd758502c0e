"""Sitemap fetching, parsing and site discovery."""

from .discovery import DiscoveryResult, SiteDiscovery
from .fetcher import SitemapFetcher
from .parser import parse_robots_sitemaps, parse_sitemap
from .types import FetchResult, ParsedSitemap, SitemapFetchError, SitemapRecord

__all__ = [
    "SitemapFetcher",
    "SiteDiscovery",
    "DiscoveryResult",
    "parse_sitemap",
    "parse_robots_sitemaps",
    "FetchResult",
    "ParsedSitemap",
    "SitemapRecord",
    "SitemapFetchError",
]
