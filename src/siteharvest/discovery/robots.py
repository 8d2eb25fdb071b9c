"""robots.txt parsing and compliance utilities.

Used for two things: collecting ``Sitemap:`` directives during sitemap
discovery, and (optionally) skipping URLs the site disallows.
"""

import logging
import re
from dataclasses import dataclass, field
from urllib.parse import urljoin, urlsplit

import httpx

from siteharvest.exceptions import FetchError
from siteharvest.http import RetryPolicy, request_with_retry
from siteharvest.ssrf import HostGuard

LOGGER = logging.getLogger(__name__)

# Product token matched against User-agent lines
ROBOTS_AGENT = "siteharvest"


@dataclass
class RobotsRules:
    """
    Parsed robots.txt rules for one user agent.

    Attributes:
        sitemaps: Sitemap URLs from Sitemap directives, resolved to absolute form.
        rules: (allowed, pattern) pairs from the matching group(s).
        crawl_delay: Crawl-delay in seconds, if declared.
    """

    sitemaps: list[str] = field(default_factory=list)
    rules: list[tuple[bool, str]] = field(default_factory=list)
    crawl_delay: float | None = None

    def allows(self, url: str) -> bool:
        """
        Check a URL against the rules.

        The longest matching pattern wins; on a tie Allow beats Disallow.
        URLs matching no rule are allowed.

        Args:
            url: Absolute URL.

        Returns:
            True if the URL may be fetched.
        """
        parts = urlsplit(url)
        path = parts.path or "/"
        if parts.query:
            path = f"{path}?{parts.query}"

        allowed = True
        best_length = -1
        for is_allow, pattern in self.rules:
            if not _matches_pattern(path, pattern):
                continue
            if len(pattern) > best_length or (len(pattern) == best_length and is_allow):
                best_length = len(pattern)
                allowed = is_allow
        return allowed


@dataclass
class _Group:
    agents: list[str] = field(default_factory=list)
    rules: list[tuple[bool, str]] = field(default_factory=list)
    crawl_delay: float | None = None
    closed: bool = False


def parse_robots_txt(content: str, user_agent: str = ROBOTS_AGENT, base_url: str | None = None) -> RobotsRules:
    """
    Parse robots.txt content.

    Args:
        content: Raw robots.txt content.
        user_agent: Product token to select rules for; falls back to ``*``.
        base_url: URL relative Sitemap values are resolved against.

    Returns:
        RobotsRules for the user agent.
    """
    sitemaps: list[str] = []
    groups: list[_Group] = []
    current: _Group | None = None

    for raw_line in content.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line or ":" not in line:
            continue

        directive, value = line.split(":", 1)
        directive = directive.strip().lower()
        value = value.strip()

        if directive == "sitemap":
            # Sitemap directives are global
            if value:
                sitemap_url = urljoin(base_url, value) if base_url else value
                if sitemap_url not in sitemaps:
                    sitemaps.append(sitemap_url)
            continue

        if directive == "user-agent":
            # Consecutive User-agent lines share one group
            if current is None or current.closed:
                current = _Group()
                groups.append(current)
            current.agents.append(value.lower())
            continue

        if current is None:
            continue
        current.closed = True

        if directive in ("allow", "disallow"):
            # An empty Disallow allows everything and adds no rule
            if value:
                current.rules.append((directive == "allow", value))
        elif directive == "crawl-delay":
            try:
                current.crawl_delay = float(value)
            except ValueError:
                LOGGER.debug("Ignoring invalid Crawl-delay: %s", value)

    token = user_agent.lower()
    selected = [group for group in groups if token in group.agents]
    if not selected:
        selected = [group for group in groups if "*" in group.agents]

    rules = RobotsRules(sitemaps=sitemaps)
    for group in selected:
        rules.rules.extend(group.rules)
        if group.crawl_delay is not None:
            rules.crawl_delay = group.crawl_delay
    return rules


def _matches_pattern(path: str, pattern: str) -> bool:
    """
    Check if path matches a robots.txt pattern.

    Handles prefix matching, ``*`` wildcards and the ``$`` end anchor.
    """
    if not pattern:
        return False

    has_end_anchor = pattern.endswith("$")
    if has_end_anchor:
        pattern = pattern[:-1]

    if "*" not in pattern:
        return path == pattern if has_end_anchor else path.startswith(pattern)

    regex = re.escape(pattern).replace(r"\*", ".*")
    if has_end_anchor:
        regex += "$"
    return re.match(regex, path) is not None


async def fetch_robots(
    client: httpx.AsyncClient,
    root_url: str,
    guard: HostGuard | None = None,
    policy: RetryPolicy | None = None,
    user_agent: str = ROBOTS_AGENT,
) -> RobotsRules:
    """
    Fetch and parse robots.txt for a site.

    A missing or unreadable robots.txt means everything is allowed.

    Args:
        client: Shared HTTP client.
        root_url: Any URL on the site.
        guard: SSRF guard for the request and its redirects.
        policy: Retry policy.
        user_agent: Product token to select rules for.

    Returns:
        RobotsRules (empty when robots.txt is unavailable).
    """
    parsed = urlsplit(root_url)
    origin = f"{parsed.scheme}://{parsed.netloc}"
    robots_url = f"{origin}/robots.txt"

    try:
        response = await request_with_retry(client, "GET", robots_url, guard=guard, policy=policy)
    except FetchError as e:
        if e.status_code is not None and 400 <= e.status_code < 500:
            LOGGER.debug("No robots.txt at %s (%d)", robots_url, e.status_code)
        else:
            LOGGER.warning("Failed to fetch robots.txt from %s, assuming allow all: %s", robots_url, e.message)
        return RobotsRules()

    rules = parse_robots_txt(response.text, user_agent=user_agent, base_url=f"{origin}/")
    LOGGER.debug(
        "robots.txt for %s: %d rule(s), %d sitemap(s)",
        origin,
        len(rules.rules),
        len(rules.sitemaps),
    )
    return rules
