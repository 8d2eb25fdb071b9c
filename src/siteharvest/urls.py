"""URL canonicalization for crawl deduplication.

Every URL that enters a crawl is reduced to one canonical string so that the
many spellings of the same page (http vs https, www vs bare host, trailing
slashes, index documents, tracking queries, fragments) collapse to a single
identity. The ``www`` policy is taken from the site's root URL and applied to
every host that equals the root host once ``www.`` is ignored; other
subdomains are separate sites and are left alone.
"""

import logging
import re
from dataclasses import dataclass
from functools import cached_property
from urllib.parse import SplitResult, quote, unquote, urljoin, urlsplit

from siteharvest.ssrf import is_blocked_host

LOGGER = logging.getLogger(__name__)

# Schemes that never denote a crawlable page
INVALID_SCHEME_PREFIXES = ("mailto:", "tel:", "javascript:", "data:", "ftp:", "file:")

DEFAULT_PORTS = {"http": 80, "https": 443}

INDEX_DOCUMENT_PATTERN = re.compile(
    r"/(?:index\.(?:html?|php|aspx?|jsp|cgi)|default\.(?:html?|php|aspx?))$",
    re.IGNORECASE,
)

# Paths ending in these are assets, not pages
SKIP_EXTENSIONS = (
    # Documents and archives
    ".pdf",
    ".zip",
    ".gz",
    ".tar",
    ".rar",
    ".7z",
    ".exe",
    ".dmg",
    # Images
    ".jpg",
    ".jpeg",
    ".png",
    ".gif",
    ".svg",
    ".webp",
    ".ico",
    # Stylesheets, scripts and data
    ".css",
    ".js",
    ".mjs",
    ".json",
    ".xml",
    ".txt",
    ".csv",
    # Media
    ".mp4",
    ".mp3",
    ".avi",
    ".mov",
    ".wmv",
    ".flv",
    ".webm",
    # Fonts
    ".woff",
    ".woff2",
    ".ttf",
    ".eot",
    ".otf",
)

_EXTRA_SCHEME_SLASHES = re.compile(r"^([a-z][a-z0-9+.\-]*:)//+", re.IGNORECASE)
_DUPLICATE_SLASHES = re.compile(r"/{2,}")
_BAD_HOST_CHARS = re.compile(r"[%\s<>\"{}|\\^`]")
_PATH_SAFE_CHARS = "/%:@!$&'()*+,;=-._~"


@dataclass(frozen=True)
class CanonicalOptions:
    """
    Site-wide settings for canonicalization.

    Attributes:
        base_url: Root URL of the site; decides the www policy and resolves
            relative references.
        force_https: Rewrite http URLs to https.
    """

    base_url: str
    force_https: bool = True

    @cached_property
    def _base(self) -> SplitResult:
        return urlsplit(self.base_url)

    @property
    def base_host(self) -> str:
        """Lower-cased hostname of the base URL."""
        return (self._base.hostname or "").lower()

    @property
    def base_scheme(self) -> str:
        """Scheme used for protocol-relative references."""
        if self.force_https:
            return "https"
        return self._base.scheme.lower() or "https"

    @property
    def prefers_www(self) -> bool:
        """Whether canonical hosts carry the www. prefix."""
        return self.base_host.startswith("www.")


def strip_www(host: str) -> str:
    """Remove a single leading ``www.`` from a hostname."""
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


def canonicalize(url: str, options: CanonicalOptions) -> str | None:
    """
    Reduce a URL reference to its canonical form.

    Args:
        url: Absolute, protocol-relative, root-relative or relative reference.
        options: Site canonicalization options.

    Returns:
        Canonical URL string, or None when the reference is not a usable
        http(s) URL. Never raises.
    """
    try:
        return _canonicalize(url, options)
    except Exception as e:
        LOGGER.debug("Discarding unusable URL %r: %s", url, e)
        return None


def is_crawlable(url: str, site_host: str, options: CanonicalOptions) -> bool:
    """
    Check whether a URL is an on-site page worth fetching.

    Args:
        url: Candidate URL (any form canonicalize accepts).
        site_host: Hostname of the site being crawled.
        options: Site canonicalization options.

    Returns:
        True if the URL canonicalizes, belongs to the site (ignoring www.),
        is not a private/loopback literal and does not end in an asset
        extension.
    """
    canonical = canonicalize(url, options)
    if canonical is None:
        return False

    parts = urlsplit(canonical)
    host = parts.hostname or ""
    if strip_www(host) != strip_www(site_host):
        return False

    if is_blocked_host(host):
        return False

    if parts.path.lower().endswith(SKIP_EXTENSIONS):
        return False

    return True


def _canonicalize(url: str, options: CanonicalOptions) -> str | None:
    if not isinstance(url, str):
        return None

    # Fragments never change the document, drop them before anything else
    candidate = url.strip().split("#", 1)[0].strip()
    if not candidate:
        return None
    if candidate.lower().startswith(INVALID_SCHEME_PREFIXES):
        return None

    candidate = _EXTRA_SCHEME_SLASHES.sub(r"\1//", candidate)

    if candidate.lower().startswith(("http://", "https://")):
        try:
            parts = _split_absolute(candidate)
        except ValueError:
            parts = _split_absolute(unquote(candidate))
    elif candidate.startswith("//"):
        parts = _split_absolute(f"{options.base_scheme}:{candidate}")
    else:
        parts = _split_absolute(urljoin(options.base_url, candidate))

    scheme = parts.scheme.lower()
    if scheme not in DEFAULT_PORTS:
        return None

    host = (parts.hostname or "").lower().rstrip(".")
    if not host:
        return None

    original_scheme = scheme
    if options.force_https and scheme == "http":
        scheme = "https"

    port = parts.port
    if port in (DEFAULT_PORTS[original_scheme], DEFAULT_PORTS[scheme]):
        port = None

    host = _apply_www_policy(host, options)
    netloc = f"[{host}]" if ":" in host else host
    if port is not None:
        netloc = f"{netloc}:{port}"

    return f"{scheme}://{netloc}{_normalise_path(parts.path)}"


def _split_absolute(url: str) -> SplitResult:
    """Split an absolute URL, raising ValueError when it is not usable."""
    parts = urlsplit(url)
    hostname = parts.hostname
    if not hostname or _BAD_HOST_CHARS.search(hostname):
        raise ValueError(f"Invalid host in {url!r}")
    # Accessing port validates it
    parts.port
    return parts


def _apply_www_policy(host: str, options: CanonicalOptions) -> str:
    base_host = options.base_host
    if not base_host or strip_www(host) != strip_www(base_host):
        return host
    bare = strip_www(host)
    return f"www.{bare}" if options.prefers_www else bare


def _normalise_path(path: str) -> str:
    path = quote(path or "/", safe=_PATH_SAFE_CHARS)
    if not path.startswith("/"):
        path = f"/{path}"
    path = _DUPLICATE_SLASHES.sub("/", path)

    if "/." in path:
        # Resolve ./ and ../ segments
        path = urlsplit(urljoin("http://placeholder/", path)).path or "/"

    path = _strip_trailing_slash(path)
    while INDEX_DOCUMENT_PATTERN.search(path):
        path = _strip_trailing_slash(INDEX_DOCUMENT_PATTERN.sub("/", path, count=1))
    return path


def _strip_trailing_slash(path: str) -> str:
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/") or "/"
    return path
