"""Sitemap discovery and parsing utilities.

This module finds a site's sitemap (common locations first, then robots.txt
Sitemap directives) and expands it into the flat list of page URLs it
declares, following sitemap indexes recursively.
"""

import asyncio
import gzip
import logging
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Literal
from urllib.parse import urljoin, urlsplit
from xml.etree import ElementTree

import httpx
from bs4 import BeautifulSoup

from siteharvest.discovery.robots import fetch_robots
from siteharvest.exceptions import FetchError
from siteharvest.http import RetryPolicy, build_client, request_following_redirects, request_with_retry
from siteharvest.ssrf import HostGuard

LOGGER = logging.getLogger(__name__)

# Common sitemap locations to check, in priority order
COMMON_SITEMAP_PATHS = [
    "/sitemap.xml",
    "/sitemap_index.xml",
    "/sitemap-index.xml",
    "/sitemap1.xml",
    "/sitemap_1.xml",
    "/sitemaps.xml",
    "/sitemap/sitemap.xml",
    "/sitemaps/sitemap.xml",
]

MAX_SITEMAP_DEPTH = 10

# Statuses for which a HEAD probe is retried as GET
HEAD_REFUSED_STATUSES = frozenset({403, 405, 501})

# Matches "<prefix:" and "</prefix:" so prefixed elements parse without their declarations
_NAMESPACE_PREFIX = re.compile(rb"<(/?)[\w.-]+:")

_GZIP_MAGIC = b"\x1f\x8b"


@dataclass
class SitemapDocument:
    """
    One parsed sitemap file.

    Attributes:
        kind: ``index`` for <sitemapindex>, ``urlset`` for <urlset>.
        locs: <loc> values of the entries, in document order.
    """

    kind: Literal["index", "urlset"]
    locs: list[str] = field(default_factory=list)


def parse_sitemap_document(content: bytes) -> SitemapDocument | None:
    """
    Parse sitemap XML strictly.

    Args:
        content: Raw (decompressed) sitemap bytes.

    Returns:
        SitemapDocument, or None if the XML is malformed or is neither a
        sitemap index nor a url set.
    """
    try:
        root = ElementTree.fromstring(_NAMESPACE_PREFIX.sub(rb"<\1", content))
    except ElementTree.ParseError as e:
        LOGGER.debug("Malformed sitemap XML: %s", e)
        return None

    for element in root.iter():
        if isinstance(element.tag, str):
            element.tag = _strip_namespace(element.tag)

    if root.tag == "sitemapindex":
        document = SitemapDocument(kind="index")
        entry_tag = "sitemap"
    elif root.tag == "urlset":
        document = SitemapDocument(kind="urlset")
        entry_tag = "url"
    else:
        LOGGER.debug("Unknown sitemap root element: %s", root.tag)
        return None

    for entry in root.findall(entry_tag):
        loc = entry.find("loc")
        if loc is not None and loc.text and loc.text.strip():
            document.locs.append(loc.text.strip())
    return document


def extract_locs_leniently(content: bytes) -> list[str]:
    """
    Collect every <loc> whose text is an http(s) URL, wherever it appears.

    Used when strict parsing fails or finds nothing.
    """
    soup = BeautifulSoup(content, "xml")
    locs: list[str] = []
    for tag in soup.find_all("loc"):
        text = tag.get_text(strip=True)
        if text.lower().startswith(("http://", "https://")):
            locs.append(text)
    return locs


def _strip_namespace(tag: str) -> str:
    """Remove XML namespace from tag name."""
    if tag.startswith("{"):
        return tag.split("}", 1)[1]
    return tag


def _decompress(url: str, content: bytes) -> bytes:
    if url.lower().endswith(".gz") or content.startswith(_GZIP_MAGIC):
        try:
            return gzip.decompress(content)
        except (OSError, EOFError):
            # Not actually gzipped, use as-is
            LOGGER.debug("Sitemap %s is not valid gzip, parsing as plain XML", url)
    return content


class SitemapResolver:
    """Discovers and expands the sitemap of one site.

    Usage:
        async with build_client() as client:
            resolver = SitemapResolver(client, guard=HostGuard())
            sitemap_url = await resolver.discover("https://example.com/")
            if sitemap_url:
                urls = await resolver.resolve(sitemap_url)
            print(resolver.errors)

    Failures of individual child sitemaps never abort a resolution; they are
    logged and appended to ``errors``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        guard: HostGuard | None = None,
        policy: RetryPolicy | None = None,
        timeout: float | None = None,
        max_depth: int = MAX_SITEMAP_DEPTH,
    ):
        """
        Initialise the resolver.

        Args:
            client: Shared HTTP client (not closed by the resolver).
            guard: SSRF guard consulted for every request and redirect hop.
            policy: Retry policy for sitemap fetches.
            timeout: Per-request timeout, or None for the client default.
            max_depth: Maximum nesting of sitemap indexes.
        """
        self._client = client
        self._guard = guard
        self._policy = policy or RetryPolicy()
        self._timeout = timeout
        self._max_depth = max_depth
        self._visited: set[str] = set()
        self.errors: list[str] = []

    async def discover(self, root_url: str) -> str | None:
        """
        Find the sitemap URL for a site.

        Probes the common locations concurrently and takes the first one (in
        priority order) that exists, then falls back to robots.txt.

        Args:
            root_url: The site's root URL.

        Returns:
            Sitemap URL, or None if the site has none.
        """
        parsed = urlsplit(root_url)
        origin = f"{parsed.scheme}://{parsed.netloc}"

        candidates = [f"{origin}{path}" for path in COMMON_SITEMAP_PATHS]
        results = await asyncio.gather(*(self._exists(url) for url in candidates), return_exceptions=True)
        for url, found in zip(candidates, results):
            if isinstance(found, BaseException):
                LOGGER.debug("Sitemap probe %s failed: %s", url, found)
                continue
            if found:
                LOGGER.info("Found sitemap at %s", url)
                return url

        robots = await fetch_robots(self._client, origin, guard=self._guard, policy=self._policy)
        for url in robots.sitemaps:
            if urlsplit(url).scheme not in ("http", "https"):
                continue
            if await self._exists(url):
                LOGGER.info("Found sitemap via robots.txt at %s", url)
                return url

        LOGGER.info("No sitemap found for %s", origin)
        return None

    async def resolve(self, sitemap_url: str) -> list[str]:
        """
        Expand a sitemap (or sitemap index) into page URLs.

        Args:
            sitemap_url: URL of the sitemap.

        Returns:
            Page URLs in document order without duplicates. Empty on failure.
        """
        self._visited = set()
        try:
            urls = await self._resolve(sitemap_url, depth=0)
        except FetchError as e:
            self._record_error(f"Failed to load sitemap {sitemap_url}: {e.message}")
            return []

        unique = list(dict.fromkeys(urls))
        LOGGER.info("Sitemap %s lists %d URL(s)", sitemap_url, len(unique))
        return unique

    async def _resolve(self, sitemap_url: str, depth: int) -> list[str]:
        if depth >= self._max_depth:
            LOGGER.warning("Max sitemap depth reached at %s", sitemap_url)
            return []
        if sitemap_url in self._visited:
            LOGGER.debug("Skipping already visited sitemap %s", sitemap_url)
            return []
        self._visited.add(sitemap_url)

        content = await self._fetch(sitemap_url)
        document = parse_sitemap_document(content)

        if document is None or not document.locs:
            locs = extract_locs_leniently(content)
            if locs:
                LOGGER.debug("Lenient parse of %s found %d <loc> entries", sitemap_url, len(locs))
            elif document is None:
                LOGGER.warning("Sitemap %s is not valid XML and lists no URLs", sitemap_url)
            return locs

        if document.kind == "urlset":
            return document.locs

        children = [urljoin(sitemap_url, loc) for loc in document.locs]
        LOGGER.debug("Sitemap index %s lists %d child sitemap(s)", sitemap_url, len(children))
        results = await asyncio.gather(
            *(self._resolve(child, depth + 1) for child in children),
            return_exceptions=True,
        )

        urls: list[str] = []
        for child, result in zip(children, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                reason = result.message if isinstance(result, FetchError) else str(result)
                self._record_error(f"Failed to load sitemap {child}: {reason}")
                continue
            urls.extend(result)
        return urls

    async def _fetch(self, url: str) -> bytes:
        response = await request_with_retry(
            self._client,
            "GET",
            url,
            guard=self._guard,
            policy=self._policy,
            timeout=self._timeout,
        )
        return _decompress(url, response.content)

    async def _exists(self, url: str) -> bool:
        """HEAD the URL, falling back to GET when HEAD is refused."""
        try:
            response = await request_following_redirects(
                self._client, "HEAD", url, guard=self._guard, timeout=self._timeout
            )
            if response.status_code == 200:
                return True
            if response.status_code not in HEAD_REFUSED_STATUSES:
                return False
        except FetchError as e:
            LOGGER.debug("HEAD %s failed: %s", url, e.message)

        try:
            response = await request_following_redirects(
                self._client, "GET", url, guard=self._guard, timeout=self._timeout
            )
        except FetchError as e:
            LOGGER.debug("GET %s failed: %s", url, e.message)
            return False
        return response.status_code == 200

    def _record_error(self, message: str) -> None:
        LOGGER.warning(message)
        self.errors.append(message)


@asynccontextmanager
async def _client_scope(client: httpx.AsyncClient | None) -> AsyncIterator[httpx.AsyncClient]:
    if client is not None:
        yield client
        return
    async with build_client() as owned:
        yield owned


async def discover_sitemap(
    root_url: str,
    client: httpx.AsyncClient | None = None,
    guard: HostGuard | None = None,
) -> str | None:
    """
    Discover the sitemap URL for a site.

    Args:
        root_url: The site's root URL.
        client: Optional shared client; a temporary one is created otherwise.
        guard: Optional SSRF guard.

    Returns:
        Sitemap URL or None.
    """
    async with _client_scope(client) as active:
        return await SitemapResolver(active, guard=guard).discover(root_url)


async def parse_sitemap(
    sitemap_url: str,
    client: httpx.AsyncClient | None = None,
    guard: HostGuard | None = None,
) -> list[str]:
    """
    Parse a sitemap, handling sitemap indexes recursively.

    Args:
        sitemap_url: URL of the sitemap to parse.
        client: Optional shared client; a temporary one is created otherwise.
        guard: Optional SSRF guard.

    Returns:
        Page URLs declared by the sitemap.
    """
    async with _client_scope(client) as active:
        return await SitemapResolver(active, guard=guard).resolve(sitemap_url)
