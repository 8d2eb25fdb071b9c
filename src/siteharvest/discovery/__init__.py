"""Site discovery utilities.

This package provides URL discovery from sitemaps and robots.txt.
"""

from siteharvest.discovery.robots import (
    RobotsRules,
    fetch_robots,
    parse_robots_txt,
)
from siteharvest.discovery.sitemap import (
    COMMON_SITEMAP_PATHS,
    SitemapDocument,
    SitemapResolver,
    discover_sitemap,
    parse_sitemap,
    parse_sitemap_document,
)

__all__ = [
    # Robots
    "RobotsRules",
    "fetch_robots",
    "parse_robots_txt",
    # Sitemap
    "COMMON_SITEMAP_PATHS",
    "SitemapDocument",
    "SitemapResolver",
    "discover_sitemap",
    "parse_sitemap",
    "parse_sitemap_document",
]
