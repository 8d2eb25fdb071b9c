"""Shared HTTP transport for sitemap, robots.txt and page requests.

All crawler traffic goes through one httpx.AsyncClient with automatic
redirects disabled: redirects are followed here, hop by hop, so the SSRF
guard sees every intermediate host. Transient failures are retried with
exponential backoff and jitter.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from urllib.parse import urljoin, urlsplit

import httpx

from siteharvest.exceptions import FetchError, UnsafeUrlError
from siteharvest.ssrf import HostGuard

LOGGER = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; SiteHarvest/1.0)"
DEFAULT_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"

MAX_REDIRECTS = 10
REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})

# 4xx statuses that are worth another attempt
RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff settings.

    The delay before retry ``n`` (0-based) is
    ``min(base_delay * 2**n + uniform(0, jitter), max_delay)``.

    Attributes:
        attempts: Total attempts including the first one.
        base_delay: Initial delay in seconds.
        jitter: Upper bound of the random component in seconds.
        max_delay: Ceiling for a single delay in seconds.
    """

    attempts: int = 3
    base_delay: float = 1.0
    jitter: float = 1.0
    max_delay: float = 5.0

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt ``attempt``."""
        delay = self.base_delay * (2**attempt)
        if self.jitter > 0:
            delay += random.uniform(0, self.jitter)
        return min(delay, self.max_delay)

    def deadline(self, timeout: float) -> float:
        """Upper bound for all attempts of one request, given a per-attempt timeout."""
        return timeout * self.attempts + self.max_delay * max(self.attempts - 1, 0)


def is_transient_status(status_code: int) -> bool:
    """Whether an HTTP status is worth retrying (5xx, 408, 429)."""
    return status_code >= 500 or status_code in RETRYABLE_CLIENT_STATUSES


def build_client(
    timeout: float = 15.0,
    user_agent: str = DEFAULT_USER_AGENT,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """
    Create the AsyncClient used for one crawl.

    Args:
        timeout: Default per-request timeout in seconds.
        user_agent: User-Agent header sent with every request.
        transport: Optional transport (tests pass httpx.MockTransport).

    Returns:
        Configured client with automatic redirects disabled.
    """
    return httpx.AsyncClient(
        timeout=timeout,
        headers={"User-Agent": user_agent, "Accept": DEFAULT_ACCEPT},
        follow_redirects=False,
        transport=transport,
    )


async def request_following_redirects(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    guard: HostGuard | None = None,
    timeout: float | None = None,
    max_redirects: int = MAX_REDIRECTS,
) -> httpx.Response:
    """
    Send a request and follow redirects manually.

    Args:
        client: Client to send with.
        method: HTTP method (GET or HEAD).
        url: Absolute URL to request.
        guard: SSRF guard consulted before every hop.
        timeout: Per-hop timeout, or None for the client default.
        max_redirects: Maximum number of hops to follow.

    Returns:
        The first non-redirect response. Its ``url`` is the final URL.

    Raises:
        FetchError: On network failure, timeout, undecodable body, blocked hop
            or redirect loop.
    """
    current = url
    request_timeout = timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT

    for _ in range(max_redirects + 1):
        if guard is not None:
            try:
                await guard.check(current)
            except UnsafeUrlError as e:
                raise FetchError(f"Blocked request to {current}", url=url) from e

        try:
            response = await client.request(method, current, timeout=request_timeout)
        except httpx.TimeoutException as e:
            raise FetchError(f"Timed out requesting {current}", url=url, transient=True) from e
        except httpx.TransportError as e:
            raise FetchError(f"Network error requesting {current}: {e}", url=url, transient=True) from e
        except httpx.InvalidURL as e:
            raise FetchError(f"Invalid URL {current}: {e}", url=url) from e
        except httpx.RequestError as e:
            raise FetchError(f"Request to {current} failed: {e}", url=url) from e

        location = response.headers.get("location")
        if response.status_code not in REDIRECT_STATUSES or not location:
            return response

        next_url = urljoin(str(response.url), location.strip())
        if urlsplit(next_url).scheme not in ("http", "https"):
            raise FetchError(f"Redirect to unsupported scheme: {next_url}", url=url)
        if response.status_code == 303 and method != "HEAD":
            method = "GET"

        LOGGER.debug("Redirect %d: %s -> %s", response.status_code, current, next_url)
        current = next_url

    raise FetchError(f"Too many redirects fetching {url}", url=url)


def check_status(response: httpx.Response, url: str) -> None:
    """Raise FetchError for 4xx/5xx responses, flagging transient ones."""
    status = response.status_code
    if status >= 400:
        raise FetchError(
            f"HTTP {status} fetching {url}",
            url=url,
            status_code=status,
            transient=is_transient_status(status),
        )


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    guard: HostGuard | None = None,
    policy: RetryPolicy | None = None,
    timeout: float | None = None,
) -> httpx.Response:
    """
    Request a URL, retrying transient failures.

    Args:
        client: Client to send with.
        method: HTTP method.
        url: Absolute URL.
        guard: SSRF guard for every redirect hop.
        policy: Backoff policy (default 3 attempts, 1s base, 5s ceiling).
        timeout: Per-attempt timeout in seconds.

    Returns:
        Successful (< 400) response.

    Raises:
        FetchError: On permanent failure or when attempts are exhausted.
    """
    policy = policy or RetryPolicy()

    for attempt in range(policy.attempts):
        try:
            response = await request_following_redirects(client, method, url, guard=guard, timeout=timeout)
            check_status(response, url)
            return response
        except FetchError as e:
            if not e.transient or attempt + 1 >= policy.attempts:
                raise
            delay = policy.delay(attempt)
            LOGGER.debug(
                "Attempt %d/%d for %s failed (%s), retrying in %.1fs",
                attempt + 1,
                policy.attempts,
                url,
                e.message,
                delay,
            )
            await asyncio.sleep(delay)

    raise FetchError(f"No attempts made for {url}", url=url)
