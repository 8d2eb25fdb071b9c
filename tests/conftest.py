"""Pytest configuration and shared fixtures for siteharvest tests."""

from collections.abc import Callable

import httpx
import pytest

from siteharvest.config import CrawlSettings
from siteharvest.http import RetryPolicy

PUBLIC_ADDRESS = "93.184.216.34"


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Pure logic tests with no I/O, network, or browser")
    config.addinivalue_line("markers", "integration: Tests against simulated HTTP sites (httpx.MockTransport)")
    config.addinivalue_line(
        "markers",
        "e2e: End-to-end tests with live network or Playwright",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """
    Apply default markers to tests without explicit markers.

    Tests should use explicit markers (@pytest.mark.unit, @pytest.mark.e2e).
    Unmarked tests default to unit.
    """
    for item in items:
        # Skip if already has a category marker
        markers = list(item.iter_markers())
        marker_names = [m.name for m in markers]
        if any(m in marker_names for m in ("unit", "integration", "e2e")):
            continue

        # Default unmarked tests to unit
        item.add_marker(pytest.mark.unit)


class SiteStub:
    """In-memory website served through httpx.MockTransport.

    Routes are keyed by ``scheme://host/path`` (query ignored). Unknown
    URLs answer 404. Every request is recorded in ``requests``.
    """

    def __init__(self) -> None:
        self.routes: dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []
        self.transport = httpx.MockTransport(self._handle)

    def add(
        self,
        url: str,
        body: str | bytes = "",
        status: int = 200,
        content_type: str = "text/html; charset=utf-8",
        headers: dict[str, str] | None = None,
    ) -> None:
        content = body.encode("utf-8") if isinstance(body, str) else body

        def respond(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, content=content, headers={"content-type": content_type, **(headers or {})})

        self.routes[url] = respond

    def add_page(self, url: str, *links: str) -> None:
        """Serve an HTML page linking to ``links``."""
        anchors = "".join(f'<a href="{link}">{link}</a>' for link in links)
        self.add(url, f"<!DOCTYPE html><html><body>{anchors}</body></html>")

    def redirect(self, url: str, location: str, status: int = 301) -> None:
        self.add(url, status=status, headers={"location": location})

    def add_handler(self, url: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.routes[url] = handler

    def hits(self, url: str, method: str | None = None) -> int:
        return sum(
            1
            for request in self.requests
            if self._key(request) == url and (method is None or request.method == method)
        )

    @staticmethod
    def _key(request: httpx.Request) -> str:
        return f"{request.url.scheme}://{request.url.host}{request.url.path or '/'}"

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(self._key(request))
        if handler is None:
            return httpx.Response(404, text="not found", headers={"content-type": "text/plain"})
        return handler(request)


@pytest.fixture
def site() -> SiteStub:
    """Empty simulated website; add routes per test."""
    return SiteStub()


@pytest.fixture
def public_resolver() -> Callable:
    """DNS resolver that maps every name to a public address."""

    async def resolve(host: str) -> list[str]:
        return [PUBLIC_ADDRESS]

    return resolve


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Retry policy without backoff delays."""
    return RetryPolicy(attempts=3, base_delay=0, jitter=0, max_delay=0)


@pytest.fixture
def settings() -> CrawlSettings:
    """Settings with defaults only (no environment or .env)."""
    return CrawlSettings(_env_file=None)
