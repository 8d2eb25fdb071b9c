"""Command-line interface for siteharvest.

Commands are organized into modules by functionality:

- crawl: Whole-site discovery and retrieval
- sitemap: Sitemap discovery and expansion
"""

# Import all command modules to register them with the app
from siteharvest.cli import (
    crawl,  # noqa: F401
    sitemap,  # noqa: F401
)
from siteharvest.cli._common import app

__all__ = ["app"]
