"""Server-side request forgery guard.

Blocks requests aimed at the crawler's own network: loopback names and
addresses, the RFC 1918 private ranges, link-local (cloud metadata) and the
IPv6 equivalents. Literal hosts are checked without any I/O; names are also
resolved once per host and rejected when they point at loopback or link-local
addresses.
"""

import asyncio
import logging
import socket
from collections.abc import Awaitable, Callable
from ipaddress import IPv4Address, IPv6Address, ip_address, ip_network
from urllib.parse import urlsplit

from siteharvest.exceptions import UnsafeUrlError

LOGGER = logging.getLogger(__name__)

BLOCKED_NETWORKS = tuple(
    ip_network(cidr)
    for cidr in (
        "0.0.0.0/8",
        "10.0.0.0/8",
        "127.0.0.0/8",
        "169.254.0.0/16",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "::/128",
        "::1/128",
        "fc00::/7",
        "fe80::/10",
    )
)

LOOPBACK_NAMES = frozenset(
    {
        "localhost",
        "localhost.localdomain",
        "ip6-localhost",
        "ip6-loopback",
    }
)

type Resolver = Callable[[str], Awaitable[list[str]]]


def _parse_address(value: str) -> IPv4Address | IPv6Address | None:
    try:
        address = ip_address(value.split("%", 1)[0])
    except ValueError:
        return None
    if isinstance(address, IPv6Address) and address.ipv4_mapped is not None:
        return address.ipv4_mapped
    return address


def is_blocked_address(value: str) -> bool:
    """Return True when an IP literal falls inside a blocked network."""
    address = _parse_address(value)
    if address is None:
        return False
    return any(address in network for network in BLOCKED_NETWORKS if network.version == address.version)


def is_blocked_host(host: str) -> bool:
    """
    Check a hostname or IP literal without touching the network.

    Args:
        host: Hostname as it appears in a URL (brackets allowed for IPv6).

    Returns:
        True if the host is a loopback name or a private/link-local literal.
    """
    host = host.strip().strip("[]").rstrip(".").lower()
    if not host:
        return True
    if host in LOOPBACK_NAMES or host.endswith(".localhost"):
        return True
    return is_blocked_address(host)


def _is_loopback_resolution(value: str) -> bool:
    address = _parse_address(value)
    if address is None:
        return False
    return address.is_loopback or address.is_link_local or address.is_unspecified


async def system_resolver(host: str) -> list[str]:
    """Resolve a hostname with the event loop's getaddrinfo."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    return [str(info[4][0]) for info in infos]


class HostGuard:
    """Decides whether a URL may be requested.

    Usage:
        guard = HostGuard()
        await guard.check("https://example.com/")  # raises UnsafeUrlError

        # Offline (literal checks only)
        guard = HostGuard(resolver=None)

    Resolution results are cached per host for the lifetime of the guard,
    so one guard should be scoped to one crawl.
    """

    def __init__(self, resolver: Resolver | None = system_resolver):
        """Initialize host guard.

        Args:
            resolver: Async callable returning the addresses for a hostname.
                None disables DNS checks and keeps literal checks only.
        """
        self._resolver = resolver
        self._resolved: dict[str, bool] = {}

    async def check(self, url: str) -> None:
        """Raise UnsafeUrlError if the URL's host must not be contacted.

        Args:
            url: Absolute URL about to be requested

        Raises:
            UnsafeUrlError: If the host is blocked
        """
        host = urlsplit(url).hostname
        if not host:
            raise UnsafeUrlError("URL has no host", url=url)
        if is_blocked_host(host):
            raise UnsafeUrlError(f"Refusing to request private or loopback host {host}", url=url, host=host)
        if not await self._resolves_safely(host):
            raise UnsafeUrlError(f"Host {host} resolves to a loopback or link-local address", url=url, host=host)

    async def is_allowed(self, url: str) -> bool:
        """Boolean form of check()."""
        try:
            await self.check(url)
        except UnsafeUrlError:
            return False
        return True

    async def _resolves_safely(self, host: str) -> bool:
        if self._resolver is None or _parse_address(host) is not None:
            return True
        if host in self._resolved:
            return self._resolved[host]

        try:
            addresses = await self._resolver(host)
        except (OSError, UnicodeError) as e:
            # Unresolvable hosts fail on their own at request time
            LOGGER.debug("Could not resolve %s: %s", host, e)
            return True

        safe = not any(_is_loopback_resolution(address) for address in addresses)
        if not safe:
            LOGGER.warning("Host %s resolves to %s, blocking", host, ", ".join(addresses))
        self._resolved[host] = safe
        return safe
