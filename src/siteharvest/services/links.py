"""Link extraction from fetched HTML.

Collects every on-site page reference a document exposes: anchors, image
maps, forms, navigation <link> tags, meta refresh targets, framework data
attributes and (for unrendered HTML) route literals inside inline scripts.
"""

import logging
import re
from collections.abc import Iterator
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from siteharvest.urls import CanonicalOptions, canonicalize, is_crawlable

LOGGER = logging.getLogger(__name__)

NAVIGATION_LINK_RELS = frozenset({"canonical", "alternate", "next", "prev"})

# Checked in order, first non-empty value wins
DATA_URL_ATTRIBUTES = (
    "data-url",
    "data-href",
    "data-link",
    "data-path",
    "data-route",
    "data-to",
    "data-navigate",
    "data-page-url",
    "data-page-path",
)

META_REFRESH_URL = re.compile(r"url\s*=\s*['\"]?([^'\";,\s]+)", re.IGNORECASE)

_QUOTED = r"[\"'`]([^\"'`\s]+)[\"'`]"

# Best-effort route literals in inline scripts
SCRIPT_URL_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        # router.push("/x"), this.$router.replace('/x'), history.push("/x")
        rf"(?:router|history)\.(?:push|replace)\s*\(\s*{_QUOTED}",
        rf"(?:router|history)\.(?:push|replace)\s*\(\s*\{{[^}}]*?(?:path|pathname)\s*:\s*{_QUOTED}",
        # navigate("/x"), navigate({ to: "/x" })
        rf"\bnavigate\s*\(\s*{_QUOTED}",
        rf"\bnavigate\s*\(\s*\{{[^}}]*?\bto\s*:\s*{_QUOTED}",
        # location.href = "/x", window.location = "/x", location.assign("/x")
        rf"location(?:\.href|\.pathname)?\s*=\s*{_QUOTED}",
        rf"location\.(?:assign|replace)\s*\(\s*{_QUOTED}",
        # JSON / object route tables: {"path": "/x"}, {url: '/x'}
        rf"[\"']?\b(?:path|pathname|route|href|url|link|to)\b[\"']?\s*:\s*{_QUOTED}",
    )
)


def extract_links(
    html: str,
    page_url: str,
    site_host: str,
    options: CanonicalOptions,
    scan_scripts: bool = True,
) -> list[str]:
    """
    Extract crawlable, canonical on-site links from a page.

    Args:
        html: Page HTML.
        page_url: URL the HTML was served from (post-redirect).
        site_host: Hostname of the site being crawled.
        options: Site canonicalization options.
        scan_scripts: Sweep inline scripts for route literals. Off for
            rendered HTML, where the DOM already holds the links.

    Returns:
        Canonical URLs in document order, without duplicates.
    """
    soup = BeautifulSoup(html, "html.parser")
    base_url = _effective_base(soup, page_url)

    candidates: Iterator[str] = _iter_dom_references(soup)
    links: dict[str, None] = {}
    for reference in candidates:
        _admit(reference, base_url, site_host, options, links)

    if scan_scripts:
        for reference in _iter_script_references(soup):
            _admit(reference, base_url, site_host, options, links)

    LOGGER.debug("Extracted %d link(s) from %s", len(links), page_url)
    return list(links)


def _effective_base(soup: BeautifulSoup, page_url: str) -> str:
    """Resolve relative references against <base href> when present."""
    base = soup.find("base", href=True)
    if base is None:
        return page_url
    href = str(base.get("href", "")).strip()
    if not href:
        return page_url
    return urljoin(page_url, href)


def _iter_dom_references(soup: BeautifulSoup) -> Iterator[str]:
    for tag in soup.find_all(["a", "area", "link", "form", "meta"]):
        if tag.name in ("a", "area"):
            href = tag.get("href")
            if href:
                yield str(href)
        elif tag.name == "link":
            rels = tag.get("rel") or []
            if isinstance(rels, str):
                rels = rels.split()
            href = tag.get("href")
            if href and any(rel.lower() in NAVIGATION_LINK_RELS for rel in rels):
                yield str(href)
        elif tag.name == "form":
            action = tag.get("action")
            if action and str(action).strip():
                yield str(action)
        elif str(tag.get("http-equiv", "")).lower() == "refresh":
            match = META_REFRESH_URL.search(str(tag.get("content", "")))
            if match:
                yield match.group(1)

    for tag in soup.find_all(lambda element: any(attr in element.attrs for attr in DATA_URL_ATTRIBUTES)):
        for attr in DATA_URL_ATTRIBUTES:
            value = tag.get(attr)
            if value and str(value).strip():
                yield str(value)
                break


def _iter_script_references(soup: BeautifulSoup) -> Iterator[str]:
    for script in soup.find_all("script"):
        if script.get("src"):
            continue
        text = script.string or script.get_text()
        if not text:
            continue
        for pattern in SCRIPT_URL_PATTERNS:
            for match in pattern.finditer(text):
                value = match.group(1)
                # Only path-like or absolute literals, not arbitrary strings
                if value.startswith("/") or value.lower().startswith(("http://", "https://")):
                    yield value


def _admit(
    reference: str,
    base_url: str,
    site_host: str,
    options: CanonicalOptions,
    links: dict[str, None],
) -> None:
    reference = reference.strip()
    if not reference or reference.startswith("#"):
        return
    try:
        resolved = urljoin(base_url, reference)
    except ValueError:
        return
    if not is_crawlable(resolved, site_host, options):
        return
    canonical = canonicalize(resolved, options)
    if canonical is not None:
        links.setdefault(canonical, None)
