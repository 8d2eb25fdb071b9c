"""Browser manager for Playwright-based page fetching.

Pages are loaded in Chromium so that client-rendered navigation ends up in
the DOM before links are extracted. Every navigation request (including
redirects and frames) passes the SSRF guard through route interception.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from siteharvest.exceptions import FetchError
from siteharvest.http import is_transient_status
from siteharvest.models import FetchedPage
from siteharvest.services.fetcher import classify_content
from siteharvest.ssrf import HostGuard

if TYPE_CHECKING:
    from playwright.async_api import Browser, BrowserContext, Page, Route

LOGGER = logging.getLogger(__name__)

type WaitUntil = Literal["commit", "domcontentloaded", "load", "networkidle"]

# Extra time after network idle for late client-side rendering
DEFAULT_SETTLE_DELAY = 2.0


@dataclass
class PageContent:
    """Result of loading a page in the browser."""

    url: str
    final_url: str
    html: str
    status_code: int
    content_type: str | None = None


class BrowserManager:
    """Manages Playwright browser for page fetching.

    Usage:
        async with BrowserManager() as browser:
            content = await browser.fetch_page("https://example.com")

        # With navigation guard
        async with BrowserManager(guard=HostGuard()) as browser:
            content = await browser.fetch_page("https://example.com")
    """

    def __init__(
        self,
        headless: bool | None = None,
        user_agent: str | None = None,
        guard: HostGuard | None = None,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
    ):
        """Initialize browser manager.

        Args:
            headless: Run headless (default from SITEHARVEST_HEADLESS env, or True).
            user_agent: User agent string (default: the browser's own).
            guard: SSRF guard for navigation requests.
            settle_delay: Seconds to wait after network idle.
        """
        self.headless = headless if headless is not None else self._env_bool("SITEHARVEST_HEADLESS", True)
        self.user_agent = user_agent
        self.guard = guard
        self.settle_delay = settle_delay
        self._browser: Browser | None = None
        self._playwright: Any = None

    @staticmethod
    def _env_bool(key: str, default: bool) -> bool:
        """Get boolean from environment variable."""
        val = os.getenv(key)
        if val is None:
            return default
        return val.strip().lower() in {"1", "true", "yes", "on"}

    def _build_context_options(self) -> dict[str, Any]:
        """Build browser context options.

        Returns:
            Dictionary of options for browser.new_context()
        """
        options: dict[str, Any] = {}
        if self.user_agent:
            options["user_agent"] = self.user_agent
        return options

    async def __aenter__(self) -> BrowserManager:
        """Start browser (async context manager entry)."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Close browser (async context manager exit)."""
        await self.stop()

    async def start(self) -> None:
        """Start the browser.

        Can be called directly for manual lifecycle management, or implicitly
        via async context manager (async with BrowserManager() as browser).
        """
        if self._browser is not None:
            return  # Already started

        from playwright.async_api import async_playwright

        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self.headless)
        LOGGER.debug("Browser started (headless=%s)", self.headless)

    async def stop(self) -> None:
        """Stop the browser and cleanup resources.

        Safe to call multiple times.
        """
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
        LOGGER.debug("Browser stopped")

    async def _guard_navigation(self, route: Route) -> None:
        """Abort navigation requests aimed at unsafe hosts."""
        request = route.request
        if self.guard is not None and request.is_navigation_request():
            if not await self.guard.is_allowed(request.url):
                LOGGER.warning("Blocked browser navigation to %s", request.url)
                await route.abort("blockedbyclient")
                return
        await route.continue_()

    async def fetch_page(
        self,
        url: str,
        timeout: float = 15.0,
        wait_until: WaitUntil = "networkidle",
    ) -> PageContent:
        """Fetch a page with browser rendering.

        Args:
            url: URL to fetch
            timeout: Navigation timeout in seconds
            wait_until: Page load strategy (default: networkidle)

        Returns:
            PageContent with rendered HTML and the post-redirect URL

        Raises:
            RuntimeError: If browser not initialized
            playwright.async_api.Error: If navigation fails
        """
        if not self._browser:
            raise RuntimeError("Browser not initialized. Use 'async with BrowserManager()' context manager.")

        context: BrowserContext | None = None
        page: Page | None = None

        try:
            # Fresh context per page for isolation
            context = await self._browser.new_context(**self._build_context_options())
            await context.route("**/*", self._guard_navigation)

            page = await context.new_page()
            response = await page.goto(url, wait_until=wait_until, timeout=timeout * 1000)

            if self.settle_delay > 0:
                await asyncio.sleep(self.settle_delay)

            html = await page.content()
            content_type = await response.header_value("content-type") if response else None

            return PageContent(
                url=url,
                final_url=page.url or url,
                html=html,
                status_code=response.status if response else 200,
                content_type=content_type,
            )

        finally:
            if page:
                try:
                    await page.close()
                except Exception as e:
                    LOGGER.debug("Error closing page for %s: %s", url, e)
            if context:
                try:
                    await context.close()
                except Exception as e:
                    LOGGER.debug("Error closing browser context for %s: %s", url, e)


class BrowserPageFetcher:
    """Page fetcher that renders pages in Chromium.

    Usage:
        fetcher = BrowserPageFetcher(guard=HostGuard())
        try:
            page = await fetcher.fetch("https://example.com/", timeout=15)
        finally:
            await fetcher.close()

    The browser starts lazily on the first fetch and is shared by all
    concurrent fetches; each fetch gets its own context.
    """

    renders_scripts = True

    def __init__(
        self,
        browser: BrowserManager | None = None,
        guard: HostGuard | None = None,
        headless: bool | None = None,
        user_agent: str | None = None,
    ):
        """Initialize browser fetcher.

        Args:
            browser: Optional BrowserManager (created if not provided)
            guard: SSRF guard for navigation requests
            headless: Headless mode for a created browser
            user_agent: User agent for a created browser
        """
        self._browser = browser or BrowserManager(headless=headless, user_agent=user_agent, guard=guard)
        self._owns_browser = browser is None
        self._start_lock = asyncio.Lock()

    async def _ensure_started(self) -> BrowserManager:
        async with self._start_lock:
            await self._browser.start()
        return self._browser

    async def fetch(self, url: str, timeout: float) -> FetchedPage | None:
        """
        Render a page and return its DOM.

        Args:
            url: Absolute URL to fetch.
            timeout: Navigation timeout in seconds.

        Returns:
            FetchedPage, or None when the document is not HTML.

        Raises:
            FetchError: On navigation failure or an error status.
        """
        from playwright.async_api import Error as PlaywrightError
        from playwright.async_api import TimeoutError as PlaywrightTimeoutError

        browser = await self._ensure_started()
        try:
            content = await browser.fetch_page(url, timeout=timeout)
        except PlaywrightTimeoutError as e:
            raise FetchError(f"Timed out rendering {url}", url=url, transient=True) from e
        except PlaywrightError as e:
            raise FetchError(f"Browser failed to load {url}: {e.message}", url=url) from e

        if content.status_code >= 400:
            raise FetchError(
                f"HTTP {content.status_code} fetching {url}",
                url=url,
                status_code=content.status_code,
                transient=is_transient_status(content.status_code),
            )

        kind = classify_content(content.content_type, content.html)
        if kind is None:
            LOGGER.debug("Skipping non-HTML response from %s (%s)", url, content.content_type)
            return None

        return FetchedPage(
            url=url,
            requested_url=url,
            final_url=content.final_url,
            html=content.html,
            status_code=content.status_code,
            content_type=content.content_type or "text/html",
            kind=kind,
        )

    async def close(self) -> None:
        """Stop the browser if this fetcher started it."""
        if self._owns_browser:
            await self._browser.stop()
