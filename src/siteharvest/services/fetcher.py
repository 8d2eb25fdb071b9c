"""Page fetch strategies.

A crawl talks to pages only through the PageFetcher protocol, so the direct
HTTP strategy here and the rendering browser strategy in
``siteharvest.services.browser`` are interchangeable.
"""

import logging
from typing import Protocol, runtime_checkable

import httpx

from siteharvest.exceptions import FetchError
from siteharvest.http import DEFAULT_USER_AGENT, RetryPolicy, build_client, request_with_retry
from siteharvest.models import ContentKind, FetchedPage
from siteharvest.ssrf import HostGuard

LOGGER = logging.getLogger(__name__)

HTML_CONTENT_TYPES: dict[str, ContentKind] = {
    "text/html": ContentKind.HTML,
    "application/xhtml+xml": ContentKind.XHTML,
}

_HTML_SNIFF_PREFIXES = ("<!doctype html", "<html")


@runtime_checkable
class PageFetcher(Protocol):
    """Strategy for retrieving one page.

    ``fetch`` returns None for documents that are not HTML, raises FetchError
    for failures, and reports the post-redirect URL in ``final_url``.
    ``renders_scripts`` is True when returned HTML is the rendered DOM.
    """

    renders_scripts: bool

    async def fetch(self, url: str, timeout: float) -> FetchedPage | None: ...

    async def close(self) -> None: ...


def classify_content(content_type: str | None, body: str = "") -> ContentKind | None:
    """
    Decide whether a response is an HTML page.

    Args:
        content_type: Content-Type header value (may be None).
        body: Start of the body, sniffed when the header is missing.

    Returns:
        ContentKind for HTML-like content, None otherwise.
    """
    if content_type:
        mime = content_type.split(";", 1)[0].strip().lower()
        return HTML_CONTENT_TYPES.get(mime)

    head = body.lstrip()[:64].lower()
    if head.startswith(_HTML_SNIFF_PREFIXES):
        return ContentKind.HTML
    return None


class HttpPageFetcher:
    """Fetches pages with a plain HTTP GET.

    Usage:
        async with HttpPageFetcher(guard=HostGuard()) as fetcher:
            page = await fetcher.fetch("https://example.com/", timeout=15)
    """

    renders_scripts = False

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        guard: HostGuard | None = None,
        policy: RetryPolicy | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        """
        Initialise HTTP fetcher.

        Args:
            client: Optional shared client (not closed by this fetcher).
            guard: SSRF guard consulted on every redirect hop.
            policy: Retry policy for transient failures.
            user_agent: User-Agent for the client this fetcher creates.
        """
        self._client = client
        self._owns_client = client is None
        self._guard = guard
        self._policy = policy or RetryPolicy()
        self._user_agent = user_agent

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = build_client(user_agent=self._user_agent)
        return self._client

    async def fetch(self, url: str, timeout: float) -> FetchedPage | None:
        """
        GET a page, following redirects and retrying transient failures.

        Args:
            url: Absolute URL to fetch.
            timeout: Per-attempt timeout in seconds.

        Returns:
            FetchedPage, or None when the document is not HTML.

        Raises:
            FetchError: On 4xx, exhausted retries or a blocked redirect.
        """
        client = await self._get_client()
        response = await request_with_retry(
            client,
            "GET",
            url,
            guard=self._guard,
            policy=self._policy,
            timeout=timeout,
        )
        if response.status_code >= 300:
            raise FetchError(
                f"Unexpected HTTP {response.status_code} fetching {url}",
                url=url,
                status_code=response.status_code,
            )

        content_type = response.headers.get("content-type")
        kind = classify_content(content_type, response.text if not content_type else "")
        if kind is None:
            LOGGER.debug("Skipping non-HTML response from %s (%s)", url, content_type)
            return None

        return FetchedPage(
            url=url,
            requested_url=url,
            final_url=str(response.url),
            html=response.text,
            status_code=response.status_code,
            content_type=content_type or "text/html",
            kind=kind,
        )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None if self._owns_client else self._client

    async def __aenter__(self) -> "HttpPageFetcher":
        """Enter async context manager."""
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: BaseException | None, exc_tb: object) -> bool:
        """Exit async context manager, ensuring cleanup."""
        await self.close()
        return False
