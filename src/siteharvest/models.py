"""Data models for siteharvest."""

from enum import Enum
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from siteharvest.config import CrawlSettings


class DiscoverySource(str, Enum):
    """How a URL entered the crawl."""

    ROOT = "root"
    SITEMAP = "sitemap"
    HTML_LINK = "html-link"


class ContentKind(str, Enum):
    """Content classification of a fetched page."""

    HTML = "html"
    XHTML = "xhtml"


class CrawlTarget(BaseModel):
    """A canonical URL waiting to be fetched."""

    model_config = ConfigDict(frozen=True)

    url: str
    source: DiscoverySource


class FetchedPage(BaseModel):
    """A successfully retrieved HTML document.

    ``url`` is the canonical identity used for deduplication; ``final_url`` is
    the raw address the fetch ended at after redirects.
    """

    model_config = ConfigDict(frozen=True)

    url: str
    requested_url: str
    final_url: str
    html: str
    status_code: int = 200
    content_type: str = "text/html"
    kind: ContentKind = ContentKind.HTML
    source: DiscoverySource = DiscoverySource.ROOT


class CrawlStatistics(BaseModel):
    """Counters and diagnostics for one crawl."""

    sitemap_found: bool = False
    sitemap_url: str | None = None
    sitemap_url_count: int = 0
    html_discovered_count: int = 0
    total_discovered: int = 0
    total_fetched: int = 0
    errors: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)  # Non-HTML or off-site, not failures
    robots_disallowed: int = 0
    discarded: int = 0  # Refused because the queue was full
    duplicates: int = 0  # Redirects that landed on an already-visited page


class CrawlOptions(BaseModel):
    """Options for a single crawl.

    Usage:
        options = CrawlOptions(max_pages=50)

        # Defaults from SITEHARVEST_* environment variables
        options = CrawlOptions.from_settings(CrawlSettings())
    """

    model_config = ConfigDict(extra="forbid")

    max_pages: int = Field(default=200, ge=1)
    per_page_timeout: float = Field(default=15.0, gt=0)
    max_concurrent_fetches: int = Field(default=5, ge=1)
    use_sitemap: bool = True
    follow_links: bool = True
    force_https: bool = True
    respect_robots: bool = False

    @classmethod
    def from_settings(cls, settings: "CrawlSettings", **overrides: Any) -> "CrawlOptions":
        """Build options from settings, letting explicit values win.

        Args:
            settings: Loaded settings.
            **overrides: Option values that take precedence (None is ignored).

        Returns:
            CrawlOptions instance.
        """
        values: dict[str, Any] = {
            "max_pages": settings.max_pages,
            "per_page_timeout": settings.per_page_timeout,
            "max_concurrent_fetches": settings.max_concurrent_fetches,
            "respect_robots": settings.respect_robots,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)


class CrawlEvent(BaseModel):
    """Event emitted during crawl."""

    type: Literal["sitemap", "page", "error", "complete"]
    url: str | None = None
    completed: int = 0
    total: int = 0  # Pages discovered so far
    error: str | None = None
    message: str | None = None


class CrawlResult(BaseModel):
    """Result of a crawl."""

    root_url: str
    pages: list[FetchedPage] = Field(default_factory=list)
    statistics: CrawlStatistics = Field(default_factory=CrawlStatistics)
    reports: dict[str, Any] = Field(default_factory=dict)  # Analyzer output keyed by canonical URL
