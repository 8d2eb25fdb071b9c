"""Tests for the browser fetch strategy."""

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from siteharvest.exceptions import FetchError
from siteharvest.models import ContentKind
from siteharvest.services.browser import BrowserManager, BrowserPageFetcher, PageContent
from siteharvest.services.fetcher import PageFetcher
from siteharvest.ssrf import HostGuard


class ScriptedBrowser(BrowserManager):
    """BrowserManager that returns canned content instead of launching Chromium."""

    def __init__(self, content: PageContent | None = None, error: Exception | None = None):
        super().__init__(headless=True)
        self.content = content
        self.error = error
        self.started = 0
        self.stopped = 0

    async def start(self) -> None:
        self.started += 1

    async def stop(self) -> None:
        self.stopped += 1

    async def fetch_page(self, url, timeout=15.0, wait_until="networkidle") -> PageContent:
        if self.error is not None:
            raise self.error
        return self.content


class FakeRequest:
    def __init__(self, url: str, navigation: bool = True):
        self.url = url
        self._navigation = navigation

    def is_navigation_request(self) -> bool:
        return self._navigation


class FakeRoute:
    def __init__(self, url: str, navigation: bool = True):
        self.request = FakeRequest(url, navigation)
        self.aborted: str | None = None
        self.continued = False

    async def abort(self, error_code: str | None = None) -> None:
        self.aborted = error_code

    async def continue_(self) -> None:
        self.continued = True


def content(status: int = 200, content_type: str | None = "text/html", final_url: str = "https://example.com/") -> PageContent:
    return PageContent(
        url="https://example.com/",
        final_url=final_url,
        html="<html><body><a href='/a'>A</a></body></html>",
        status_code=status,
        content_type=content_type,
    )


class TestBrowserPageFetcher:
    """Tests for BrowserPageFetcher with a scripted browser."""

    def test_satisfies_protocol(self):
        """Test that the browser fetcher is a rendering PageFetcher."""
        fetcher = BrowserPageFetcher(browser=ScriptedBrowser())
        assert isinstance(fetcher, PageFetcher)
        assert fetcher.renders_scripts is True

    @pytest.mark.asyncio
    async def test_returns_rendered_page(self):
        """Test a successful render."""
        browser = ScriptedBrowser(content(final_url="https://example.com/home"))
        fetcher = BrowserPageFetcher(browser=browser)

        page = await fetcher.fetch("https://example.com/", timeout=5)

        assert page is not None
        assert page.final_url == "https://example.com/home"
        assert page.kind == ContentKind.HTML
        assert browser.started == 1

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        """Test that 4xx and 5xx renders fail."""
        fetcher = BrowserPageFetcher(browser=ScriptedBrowser(content(status=503)))

        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch("https://example.com/", timeout=5)

        assert exc_info.value.status_code == 503
        assert exc_info.value.transient

    @pytest.mark.asyncio
    async def test_non_html_returns_none(self):
        """Test that non-HTML documents are skipped."""
        fetcher = BrowserPageFetcher(browser=ScriptedBrowser(content(content_type="application/pdf")))
        assert await fetcher.fetch("https://example.com/", timeout=5) is None

    @pytest.mark.asyncio
    async def test_playwright_timeout_is_transient(self):
        """Test mapping of navigation timeouts."""
        fetcher = BrowserPageFetcher(browser=ScriptedBrowser(error=PlaywrightTimeoutError("Timeout 5000ms exceeded")))

        with pytest.raises(FetchError, match="Timed out") as exc_info:
            await fetcher.fetch("https://example.com/", timeout=5)

        assert exc_info.value.transient

    @pytest.mark.asyncio
    async def test_playwright_error_is_permanent(self):
        """Test mapping of other navigation failures."""
        fetcher = BrowserPageFetcher(browser=ScriptedBrowser(error=PlaywrightError("net::ERR_BLOCKED_BY_CLIENT")))

        with pytest.raises(FetchError, match="ERR_BLOCKED_BY_CLIENT") as exc_info:
            await fetcher.fetch("https://example.com/", timeout=5)

        assert not exc_info.value.transient

    @pytest.mark.asyncio
    async def test_close_leaves_supplied_browser_running(self):
        """Test browser ownership."""
        browser = ScriptedBrowser(content())
        await BrowserPageFetcher(browser=browser).close()
        assert browser.stopped == 0


class TestNavigationGuard:
    """Tests for BrowserManager route interception."""

    @pytest.mark.asyncio
    async def test_blocks_private_navigation(self):
        """Test that navigation to private hosts is aborted."""
        manager = BrowserManager(headless=True, guard=HostGuard(resolver=None))
        route = FakeRoute("http://169.254.169.254/latest/meta-data")

        await manager._guard_navigation(route)

        assert route.aborted == "blockedbyclient"
        assert not route.continued

    @pytest.mark.asyncio
    async def test_allows_public_navigation(self):
        """Test that public navigation continues."""
        manager = BrowserManager(headless=True, guard=HostGuard(resolver=None))
        route = FakeRoute("https://example.com/next")

        await manager._guard_navigation(route)

        assert route.continued
        assert route.aborted is None

    @pytest.mark.asyncio
    async def test_subresources_not_checked(self):
        """Test that non-navigation requests pass through."""
        manager = BrowserManager(headless=True, guard=HostGuard(resolver=None))
        route = FakeRoute("http://10.0.0.5/pixel.gif", navigation=False)

        await manager._guard_navigation(route)

        assert route.continued

    def test_headless_from_environment(self, monkeypatch: pytest.MonkeyPatch):
        """Test SITEHARVEST_HEADLESS."""
        monkeypatch.setenv("SITEHARVEST_HEADLESS", "false")
        assert BrowserManager().headless is False
        assert BrowserManager(headless=True).headless is True


@pytest.mark.e2e
class TestBrowserLive:
    """Live rendering with Chromium (requires `playwright install chromium` and network)."""

    @pytest.mark.asyncio
    async def test_renders_example_domain(self):
        """Test a real render of example.com."""
        fetcher = BrowserPageFetcher(guard=HostGuard())
        try:
            page = await fetcher.fetch("https://example.com/", timeout=30)
        finally:
            await fetcher.close()

        assert page is not None
        assert "Example Domain" in page.html
