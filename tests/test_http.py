"""Tests for the shared HTTP transport helpers."""

import httpx
import pytest

from siteharvest.exceptions import FetchError
from siteharvest.http import (
    RetryPolicy,
    build_client,
    is_transient_status,
    request_following_redirects,
    request_with_retry,
)
from siteharvest.ssrf import HostGuard


class TestRetryPolicy:
    """Tests for RetryPolicy backoff."""

    def test_exponential_without_jitter(self):
        """Test doubling delays capped at max_delay."""
        policy = RetryPolicy(base_delay=1.0, jitter=0, max_delay=5.0)
        assert [policy.delay(n) for n in range(4)] == [1.0, 2.0, 4.0, 5.0]

    def test_jitter_bounds(self):
        """Test that jitter stays within its bound."""
        policy = RetryPolicy(base_delay=1.0, jitter=1.0, max_delay=5.0)
        for _ in range(20):
            assert 1.0 <= policy.delay(0) <= 2.0

    def test_deadline_covers_all_attempts(self):
        """Test the overall deadline for one request."""
        assert RetryPolicy().deadline(15.0) == 15.0 * 3 + 5.0 * 2
        assert RetryPolicy(attempts=1).deadline(10.0) == 10.0


class TestIsTransientStatus:
    """Tests for is_transient_status."""

    @pytest.mark.parametrize("status", [500, 502, 503, 504, 408, 429])
    def test_transient(self, status: int):
        """Test retryable statuses."""
        assert is_transient_status(status)

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 410])
    def test_permanent(self, status: int):
        """Test permanent statuses."""
        assert not is_transient_status(status)


class TestRedirects:
    """Tests for manual redirect handling."""

    @pytest.mark.asyncio
    async def test_follows_chain_to_final_url(self, site, public_resolver):
        """Test that relative and absolute redirects are followed."""
        site.redirect("https://example.com/a", "/b")
        site.redirect("https://example.com/b", "https://example.com/c", status=302)
        site.add("https://example.com/c", "<html>c</html>")

        async with build_client(transport=site.transport) as client:
            response = await request_following_redirects(
                client, "GET", "https://example.com/a", guard=HostGuard(resolver=public_resolver)
            )

        assert response.status_code == 200
        assert str(response.url) == "https://example.com/c"

    @pytest.mark.asyncio
    async def test_redirect_to_private_host_blocked(self, site, public_resolver):
        """Test that the guard is consulted on every hop."""
        site.redirect("https://example.com/a", "http://169.254.169.254/latest/meta-data")

        async with build_client(transport=site.transport) as client:
            with pytest.raises(FetchError) as exc_info:
                await request_following_redirects(
                    client, "GET", "https://example.com/a", guard=HostGuard(resolver=public_resolver)
                )

        assert not exc_info.value.transient
        assert site.hits("http://169.254.169.254/latest/meta-data") == 0

    @pytest.mark.asyncio
    async def test_redirect_loop_fails(self, site):
        """Test that redirect loops end in a permanent error."""
        site.redirect("https://example.com/a", "/b")
        site.redirect("https://example.com/b", "/a")

        async with build_client(transport=site.transport) as client:
            with pytest.raises(FetchError, match="Too many redirects"):
                await request_following_redirects(client, "GET", "https://example.com/a", max_redirects=3)

        assert len(site.requests) == 4

    @pytest.mark.asyncio
    async def test_redirect_to_other_scheme_fails(self, site):
        """Test that redirects to non-http schemes are refused."""
        site.redirect("https://example.com/a", "ftp://example.com/file")

        async with build_client(transport=site.transport) as client:
            with pytest.raises(FetchError, match="unsupported scheme"):
                await request_following_redirects(client, "GET", "https://example.com/a")

    @pytest.mark.asyncio
    async def test_undecodable_body_is_fetch_error(self, site):
        """Test that a corrupt gzip body surfaces as a permanent FetchError."""
        site.add("https://example.com/a", b"plainly not gzip", headers={"content-encoding": "gzip"})

        async with build_client(transport=site.transport) as client:
            with pytest.raises(FetchError, match="failed") as exc_info:
                await request_following_redirects(client, "GET", "https://example.com/a")

        assert not exc_info.value.transient


class TestRequestWithRetry:
    """Tests for request_with_retry."""

    @pytest.mark.asyncio
    async def test_retries_transient_status(self, site, fast_policy):
        """Test that 503 is retried until success."""
        statuses = iter([503, 503, 200])

        def flaky(request: httpx.Request) -> httpx.Response:
            return httpx.Response(next(statuses), text="ok")

        site.add_handler("https://example.com/", flaky)

        async with build_client(transport=site.transport) as client:
            response = await request_with_retry(client, "GET", "https://example.com/", policy=fast_policy)

        assert response.status_code == 200
        assert site.hits("https://example.com/") == 3

    @pytest.mark.asyncio
    async def test_permanent_status_not_retried(self, site, fast_policy):
        """Test that 404 fails immediately."""
        async with build_client(transport=site.transport) as client:
            with pytest.raises(FetchError) as exc_info:
                await request_with_retry(client, "GET", "https://example.com/missing", policy=fast_policy)

        assert exc_info.value.status_code == 404
        assert not exc_info.value.transient
        assert site.hits("https://example.com/missing") == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_attempts(self, site, fast_policy):
        """Test that persistent 500 exhausts the attempts."""
        site.add("https://example.com/broken", "error", status=500)

        async with build_client(transport=site.transport) as client:
            with pytest.raises(FetchError) as exc_info:
                await request_with_retry(client, "GET", "https://example.com/broken", policy=fast_policy)

        assert exc_info.value.status_code == 500
        assert exc_info.value.transient
        assert site.hits("https://example.com/broken") == 3

    @pytest.mark.asyncio
    async def test_timeouts_retried(self, site, fast_policy):
        """Test that transport timeouts are transient and retried."""

        def timeout(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        site.add_handler("https://example.com/slow", timeout)

        async with build_client(transport=site.transport) as client:
            with pytest.raises(FetchError, match="Timed out") as exc_info:
                await request_with_retry(client, "GET", "https://example.com/slow", policy=fast_policy)

        assert exc_info.value.transient
        assert site.hits("https://example.com/slow") == 3

    @pytest.mark.asyncio
    async def test_sends_user_agent(self, site, fast_policy):
        """Test the configured User-Agent header."""
        site.add("https://example.com/", "ok")

        async with build_client(user_agent="TestAgent/2.0", transport=site.transport) as client:
            await request_with_retry(client, "GET", "https://example.com/", policy=fast_policy)

        assert site.requests[0].headers["user-agent"] == "TestAgent/2.0"
