"""Service layer for siteharvest.

This module provides the core services:
- HttpPageFetcher / BrowserPageFetcher: Page fetch strategies
- BrowserManager: Playwright browser lifecycle management
- CrawlService: Sitemap-first, link-following site crawl
- extract_links: On-site link extraction from HTML
"""

from siteharvest.services.browser import BrowserManager, BrowserPageFetcher
from siteharvest.services.crawl import CrawlService
from siteharvest.services.fetcher import HttpPageFetcher, PageFetcher
from siteharvest.services.links import extract_links

__all__ = [
    "BrowserManager",
    "BrowserPageFetcher",
    "CrawlService",
    "HttpPageFetcher",
    "PageFetcher",
    "extract_links",
]
