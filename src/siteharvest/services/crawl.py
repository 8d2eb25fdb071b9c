"""Crawl service for whole-site discovery and retrieval.

A crawl runs through four phases:

1. Init: the root URL is validated, canonicalized and checked by the SSRF
   guard. This is the only phase that raises to the caller.
2. Discovery: the sitemap (if any) is found and expanded.
3. Seeding: the root, then sitemap URLs, are admitted to the queue.
4. Draining: a pool of worker tasks fetches queued pages, collapses
   redirects onto already-visited pages and feeds extracted links back
   into the queue until it is empty, the page cap is hit or stop() is
   called.

All mutable state lives in a per-invocation ``_CrawlRun``; the service itself
can run any number of crawls.
"""

import asyncio
import inspect
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

import httpx

from siteharvest.config import CrawlSettings, FetchStrategy, get_settings
from siteharvest.discovery.robots import RobotsRules, fetch_robots
from siteharvest.discovery.sitemap import SitemapResolver
from siteharvest.exceptions import FetchError, InvalidUrlError
from siteharvest.http import RetryPolicy, build_client
from siteharvest.models import (
    CrawlEvent,
    CrawlOptions,
    CrawlResult,
    CrawlStatistics,
    CrawlTarget,
    DiscoverySource,
    FetchedPage,
)
from siteharvest.services.browser import BrowserPageFetcher
from siteharvest.services.fetcher import HttpPageFetcher, PageFetcher
from siteharvest.services.links import extract_links
from siteharvest.ssrf import HostGuard, Resolver, system_resolver
from siteharvest.urls import CanonicalOptions, canonicalize, is_crawlable, strip_www

LOGGER = logging.getLogger(__name__)

# Queue admissions are refused beyond max_pages * QUEUE_LIMIT_FACTOR entries
QUEUE_LIMIT_FACTOR = 2

# Upper bound on a robots.txt Crawl-delay, in seconds
MAX_CRAWL_DELAY = 10.0

# Scheduling priority, highest first
SOURCE_PRIORITY = (DiscoverySource.ROOT, DiscoverySource.SITEMAP, DiscoverySource.HTML_LINK)

type Analyzer = Callable[[str, str], Any]
type EventCallback = Callable[[CrawlEvent], Any]


@dataclass(eq=False)
class _CrawlRun:
    """Mutable state of one crawl invocation.

    ``visited``, the queues, ``pages``, ``reports`` and ``statistics`` are only
    touched while holding ``condition``.
    """

    root_url: str
    site_host: str
    options: CrawlOptions
    canonical: CanonicalOptions
    robots: RobotsRules | None = None
    visited: set[str] = field(default_factory=set)
    discarded: set[str] = field(default_factory=set)
    queues: dict[DiscoverySource, deque[CrawlTarget]] = field(
        default_factory=lambda: {source: deque() for source in SOURCE_PRIORITY}
    )
    pages: list[FetchedPage] = field(default_factory=list)
    reports: dict[str, Any] = field(default_factory=dict)
    statistics: CrawlStatistics = field(default_factory=CrawlStatistics)
    condition: asyncio.Condition = field(default_factory=asyncio.Condition)
    in_flight: int = 0
    stopped: bool = False
    pace_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    next_fetch_at: float = 0.0

    @property
    def queued(self) -> int:
        return sum(len(queue) for queue in self.queues.values())

    @property
    def finished(self) -> bool:
        return self.stopped or len(self.pages) >= self.options.max_pages

    def next_target(self) -> CrawlTarget | None:
        for source in SOURCE_PRIORITY:
            queue = self.queues[source]
            if queue:
                return queue.popleft()
        return None

    def admit(self, url: str, source: DiscoverySource) -> bool:
        """Queue a canonical URL unless it was seen, is disallowed or the queue is full."""
        if url in self.visited:
            return False
        if self.robots is not None and not self.robots.allows(url):
            self.visited.add(url)
            self.statistics.robots_disallowed += 1
            LOGGER.debug("Disallowed by robots.txt: %s", url)
            return False
        if self.queued >= self.options.max_pages * QUEUE_LIMIT_FACTOR:
            if url not in self.discarded:
                self.discarded.add(url)
                self.statistics.discarded += 1
            return False

        self.visited.add(url)
        self.queues[source].append(CrawlTarget(url=url, source=source))
        self.statistics.total_discovered += 1
        return True


class CrawlService:
    """Crawl a single website, sitemap first, following on-site links.

    Usage:
        service = CrawlService()
        result = await service.crawl("https://example.com", CrawlOptions(max_pages=50))
        for page in result.pages:
            print(page.url, page.status_code)

        # Rendering strategy with progress events
        service = CrawlService(strategy="browser")
        result = await service.crawl("https://example.com", on_event=print)

        # Custom fetcher and per-page analysis
        service = CrawlService(fetcher=my_fetcher, analyzer=lambda html, url: len(html))
    """

    def __init__(
        self,
        fetcher: PageFetcher | None = None,
        strategy: FetchStrategy | None = None,
        settings: CrawlSettings | None = None,
        analyzer: Analyzer | None = None,
        resolver: Resolver | None = system_resolver,
        policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize crawl service.

        Args:
            fetcher: Page fetch strategy. When None, one is created per crawl
                from ``strategy``.
            strategy: "http" or "browser" (default from settings).
            settings: Settings for defaults (loaded from the environment if None).
            analyzer: Optional ``(html, url) -> report`` callable, sync or async.
            resolver: DNS resolver for the SSRF guard; None keeps literal checks only.
            policy: Retry policy for all HTTP requests.
            transport: Optional httpx transport (tests pass httpx.MockTransport).
        """
        self._settings = settings or get_settings()
        self._fetcher = fetcher
        self._strategy: FetchStrategy = strategy or self._settings.strategy
        self._analyzer = analyzer
        self._resolver = resolver
        self._policy = policy or RetryPolicy()
        self._transport = transport
        self._runs: list[_CrawlRun] = []
        self._stop_requested = False

    def stop(self) -> None:
        """Ask running crawls to stop. In-flight fetches finish; no new ones start."""
        self._stop_requested = True
        for run in self._runs:
            run.stopped = True
        LOGGER.info("Crawl stop requested")

    async def crawl(
        self,
        root_url: str,
        options: CrawlOptions | None = None,
        on_event: EventCallback | None = None,
    ) -> CrawlResult:
        """Crawl a website.

        Args:
            root_url: Site root. A missing scheme defaults to https.
            options: Crawl options (defaults from settings).
            on_event: Optional callback (sync or async) receiving CrawlEvents.

        Returns:
            CrawlResult with deduplicated pages and statistics.

        Raises:
            InvalidUrlError: If the root URL cannot be parsed.
            UnsafeUrlError: If the root URL points at a private or loopback host.
        """
        options = options or CrawlOptions.from_settings(self._settings)
        self._stop_requested = False

        root, canonical = self._prepare_root(root_url, options)
        guard = HostGuard(resolver=self._resolver)
        await guard.check(root)

        site_host = urlsplit(root).hostname or ""
        run = _CrawlRun(root_url=root, site_host=site_host, options=options, canonical=canonical)
        run.stopped = self._stop_requested
        self._runs.append(run)
        LOGGER.info(f"Starting crawl of {root} (max_pages={options.max_pages})")

        client = build_client(
            timeout=options.per_page_timeout,
            user_agent=self._settings.user_agent,
            transport=self._transport,
        )
        fetcher = self._fetcher
        owns_fetcher = fetcher is None
        try:
            if fetcher is None:
                fetcher = self._create_fetcher(client, guard)

            sitemap_urls = await self._discover(run, client, guard, on_event)
            if options.respect_robots:
                await self._load_robots(run, client, guard)

            await self._seed(run, sitemap_urls)
            await self._drain(run, fetcher, on_event)

            if not run.pages and not run.stopped:
                await self._fetch_root_directly(run, client, guard)
        finally:
            self._runs.remove(run)
            if owns_fetcher and fetcher is not None:
                await fetcher.close()
            await client.aclose()

        stats = run.statistics
        stats.total_fetched = len(run.pages)
        LOGGER.info(
            f"Crawl of {root} complete: {stats.total_fetched} page(s), "
            f"{stats.total_discovered} discovered, {len(stats.errors)} error(s)"
        )
        await self._emit(
            on_event,
            CrawlEvent(
                type="complete",
                completed=stats.total_fetched,
                total=stats.total_discovered,
                message=f"Fetched {stats.total_fetched} page(s)",
            ),
        )
        return CrawlResult(root_url=root, pages=run.pages, statistics=stats, reports=run.reports)

    def _prepare_root(self, root_url: str, options: CrawlOptions) -> tuple[str, CanonicalOptions]:
        """Validate and canonicalize the root URL."""
        raw = (root_url or "").strip()
        if not raw:
            raise InvalidUrlError("Root URL is empty", url=root_url)
        if raw.startswith("//"):
            raw = f"https:{raw}"
        elif "://" not in raw:
            raw = f"https://{raw}"

        scheme = raw.split("://", 1)[0].lower()
        if scheme not in ("http", "https"):
            raise InvalidUrlError(f"Unsupported URL scheme: {scheme}", url=root_url)
        if options.force_https and scheme == "http":
            raw = f"https://{raw.split('://', 1)[1]}"

        canonical = CanonicalOptions(base_url=raw, force_https=options.force_https)
        root = canonicalize(raw, canonical)
        if root is None:
            raise InvalidUrlError(f"Invalid root URL: {root_url}", url=root_url)
        return root, canonical

    def _create_fetcher(self, client: httpx.AsyncClient, guard: HostGuard) -> PageFetcher:
        if self._strategy == "browser":
            return BrowserPageFetcher(
                guard=guard,
                headless=self._settings.headless,
                user_agent=self._settings.user_agent,
            )
        return HttpPageFetcher(client=client, guard=guard, policy=self._policy)

    async def _discover(
        self,
        run: _CrawlRun,
        client: httpx.AsyncClient,
        guard: HostGuard,
        on_event: EventCallback | None,
    ) -> list[str]:
        """Find and expand the sitemap. Never raises."""
        if not run.options.use_sitemap or run.stopped:
            return []

        stats = run.statistics
        resolver = SitemapResolver(client, guard=guard, policy=self._policy, timeout=run.options.per_page_timeout)
        urls: list[str] = []
        try:
            sitemap_url = await resolver.discover(run.root_url)
            if sitemap_url is not None:
                stats.sitemap_found = True
                stats.sitemap_url = sitemap_url
                urls = await resolver.resolve(sitemap_url)
                stats.sitemap_url_count = len(urls)
        except Exception as e:
            LOGGER.warning(f"Sitemap discovery failed for {run.root_url}: {e}", exc_info=True)
            stats.errors.append(f"Sitemap discovery failed: {e}")

        stats.errors.extend(resolver.errors)
        if stats.sitemap_found:
            await self._emit(
                on_event,
                CrawlEvent(
                    type="sitemap",
                    url=stats.sitemap_url,
                    total=len(urls),
                    message=f"Sitemap lists {len(urls)} URL(s)",
                ),
            )
        return urls

    async def _load_robots(self, run: _CrawlRun, client: httpx.AsyncClient, guard: HostGuard) -> None:
        """Load robots.txt rules for the run. Never raises; failures allow everything."""
        try:
            run.robots = await fetch_robots(client, run.root_url, guard=guard, policy=self._policy)
        except Exception as e:
            LOGGER.warning(f"Failed to load robots.txt for {run.root_url}: {e}", exc_info=True)
            run.statistics.errors.append(f"robots.txt could not be loaded: {e}")
            return

        if run.robots.crawl_delay:
            LOGGER.info(f"Honouring Crawl-delay of {min(run.robots.crawl_delay, MAX_CRAWL_DELAY)}s")

    async def _pace(self, run: _CrawlRun) -> None:
        """Space fetch starts by the robots.txt Crawl-delay, if one applies."""
        if run.robots is None or not run.robots.crawl_delay:
            return
        delay = min(run.robots.crawl_delay, MAX_CRAWL_DELAY)
        loop = asyncio.get_running_loop()
        async with run.pace_lock:
            wait = run.next_fetch_at - loop.time()
            if wait > 0:
                await asyncio.sleep(wait)
            run.next_fetch_at = loop.time() + delay

    async def _seed(self, run: _CrawlRun, sitemap_urls: list[str]) -> None:
        """Admit the root, then sitemap URLs, up to max_pages targets."""
        async with run.condition:
            run.visited.add(run.root_url)
            run.queues[DiscoverySource.ROOT].append(CrawlTarget(url=run.root_url, source=DiscoverySource.ROOT))
            run.statistics.total_discovered += 1

            admitted = 1
            for url in sitemap_urls:
                if admitted >= run.options.max_pages:
                    break
                if not is_crawlable(url, run.site_host, run.canonical):
                    continue
                canonical = canonicalize(url, run.canonical)
                if canonical is not None and run.admit(canonical, DiscoverySource.SITEMAP):
                    admitted += 1

        LOGGER.info(f"Seeded {admitted} target(s) for {run.root_url}")

    async def _drain(self, run: _CrawlRun, fetcher: PageFetcher, on_event: EventCallback | None) -> None:
        workers = [
            asyncio.create_task(self._worker(run, fetcher, on_event), name=f"crawl-worker-{i}")
            for i in range(run.options.max_concurrent_fetches)
        ]
        await asyncio.gather(*workers)

    async def _worker(self, run: _CrawlRun, fetcher: PageFetcher, on_event: EventCallback | None) -> None:
        while True:
            async with run.condition:
                target = await self._next_target(run)
                if target is None:
                    return
                run.in_flight += 1

            try:
                await self._process(run, fetcher, target, on_event)
            except Exception as e:
                LOGGER.warning(f"Unexpected error processing {target.url}: {e}", exc_info=True)
                await self._record_error(run, target.url, str(e) or type(e).__name__, on_event)
            finally:
                async with run.condition:
                    run.in_flight -= 1
                    run.condition.notify_all()

    async def _next_target(self, run: _CrawlRun) -> CrawlTarget | None:
        """Wait for work. Returns None once the crawl is quiescent or finished.

        Must be called with ``run.condition`` held.
        """
        while True:
            if run.finished:
                run.condition.notify_all()
                return None

            # Slots reserved by in-flight fetches count against the cap
            if len(run.pages) + run.in_flight < run.options.max_pages:
                target = run.next_target()
                if target is not None:
                    return target

            if run.in_flight == 0:
                run.condition.notify_all()
                return None
            await run.condition.wait()

    async def _process(
        self,
        run: _CrawlRun,
        fetcher: PageFetcher,
        target: CrawlTarget,
        on_event: EventCallback | None,
    ) -> None:
        """Fetch one target and record the outcome. Never raises on fetch failure."""
        timeout = run.options.per_page_timeout
        deadline = self._policy.deadline(timeout)

        await self._pace(run)
        if run.stopped:
            return

        try:
            page = await asyncio.wait_for(fetcher.fetch(target.url, timeout), timeout=deadline)
        except FetchError as e:
            await self._record_error(run, target.url, e.message, on_event)
            return
        except TimeoutError:
            await self._record_error(run, target.url, f"Timed out after {deadline:.0f}s", on_event)
            return
        except Exception as e:
            LOGGER.warning(f"Unexpected error fetching {target.url}: {e}", exc_info=True)
            await self._record_error(run, target.url, str(e) or type(e).__name__, on_event)
            return

        if page is None:
            async with run.condition:
                run.statistics.skipped.append(f"{target.url}: not an HTML document")
            return

        final_url = canonicalize(page.final_url, run.canonical) or target.url
        final_host = urlsplit(final_url).hostname or ""

        async with run.condition:
            if strip_www(final_host) != strip_www(run.site_host):
                run.statistics.skipped.append(f"{target.url}: redirected off-site to {page.final_url}")
                return
            if final_url != target.url:
                if final_url in run.visited:
                    run.statistics.duplicates += 1
                    LOGGER.debug("Redirect %s -> %s lands on a visited page", target.url, final_url)
                    return
                run.visited.add(final_url)
            if len(run.pages) >= run.options.max_pages:
                return

            page = page.model_copy(update={"url": final_url, "requested_url": target.url, "source": target.source})
            run.pages.append(page)
            completed = len(run.pages)
            discovered = run.statistics.total_discovered
            cap_reached = run.finished

        LOGGER.debug("Fetched [%d/%d] %s", completed, run.options.max_pages, final_url)
        await self._emit(on_event, CrawlEvent(type="page", url=final_url, completed=completed, total=discovered))

        await self._analyze(run, page)

        if run.options.follow_links and not cap_reached:
            try:
                links = extract_links(
                    page.html,
                    page.final_url,
                    run.site_host,
                    run.canonical,
                    scan_scripts=not fetcher.renders_scripts,
                )
            except Exception as e:
                LOGGER.warning(f"Link extraction failed for {final_url}: {e}")
                async with run.condition:
                    run.statistics.errors.append(f"{final_url}: link extraction failed: {e}")
                return

            async with run.condition:
                for link in links:
                    if run.admit(link, DiscoverySource.HTML_LINK):
                        run.statistics.html_discovered_count += 1
                run.condition.notify_all()

    async def _analyze(self, run: _CrawlRun, page: FetchedPage) -> None:
        analyzer = self._analyzer
        if analyzer is None:
            return
        try:
            report = analyzer(page.html, page.url)
            if inspect.isawaitable(report):
                report = await report
        except Exception as e:
            LOGGER.warning(f"Analyzer failed for {page.url}: {e}")
            async with run.condition:
                run.statistics.errors.append(f"{page.url}: analyzer failed: {e}")
            return

        async with run.condition:
            run.reports[page.url] = report

    async def _fetch_root_directly(self, run: _CrawlRun, client: httpx.AsyncClient, guard: HostGuard) -> None:
        """Last resort when nothing was collected: one plain HTTP fetch of the root."""
        LOGGER.info(f"No pages collected, trying {run.root_url} directly")
        fetcher = HttpPageFetcher(client=client, guard=guard, policy=self._policy)
        try:
            page = await fetcher.fetch(run.root_url, run.options.per_page_timeout)
        except FetchError as e:
            run.statistics.errors.append(f"{run.root_url}: direct fetch failed: {e.message}")
            return
        except Exception as e:
            LOGGER.warning(f"Direct fetch of {run.root_url} failed: {e}", exc_info=True)
            run.statistics.errors.append(f"{run.root_url}: direct fetch failed: {e}")
            return
        if page is None:
            return

        final_host = urlsplit(page.final_url).hostname or ""
        if strip_www(final_host) != strip_www(run.site_host):
            run.statistics.skipped.append(f"{run.root_url}: redirected off-site to {page.final_url}")
            return

        page = page.model_copy(update={"url": run.root_url, "source": DiscoverySource.ROOT})
        run.pages.append(page)
        await self._analyze(run, page)

    async def _record_error(
        self,
        run: _CrawlRun,
        url: str,
        message: str,
        on_event: EventCallback | None,
    ) -> None:
        LOGGER.warning(f"Failed to fetch {url}: {message}")
        async with run.condition:
            run.statistics.errors.append(f"{url}: {message}")
        await self._emit(on_event, CrawlEvent(type="error", url=url, error=message))

    async def _emit(self, on_event: EventCallback | None, event: CrawlEvent) -> None:
        if on_event is None:
            return
        try:
            result = on_event(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            LOGGER.warning(f"Event callback failed for {event.type} event: {e}")
