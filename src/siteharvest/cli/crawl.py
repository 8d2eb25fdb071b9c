"""Crawl command for whole-site retrieval."""

from pathlib import Path

import click

from siteharvest.cli._common import app, apply_log_level


@app.command("crawl", help="Crawl a website from its root URL.")
@click.argument("url")
@click.option(
    "--max-pages",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum pages to collect. Default: 200 (SITEHARVEST_MAX_PAGES).",
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Per-attempt fetch timeout in seconds. Default: 15 (SITEHARVEST_PER_PAGE_TIMEOUT).",
)
@click.option(
    "--concurrency",
    "-c",
    type=click.IntRange(min=1),
    default=None,
    help="Concurrent page fetches. Default: 5 (SITEHARVEST_MAX_CONCURRENT_FETCHES).",
)
@click.option(
    "--strategy",
    type=click.Choice(["http", "browser"], case_sensitive=False),
    default=None,
    help="Page fetch strategy. 'browser' renders pages in Chromium. Default: http (SITEHARVEST_STRATEGY).",
)
@click.option(
    "--sitemap/--no-sitemap",
    default=True,
    show_default=True,
    help="Seed the crawl from the site's sitemap.",
)
@click.option(
    "--links/--no-links",
    default=True,
    show_default=True,
    help="Follow on-site links found in fetched pages.",
)
@click.option(
    "--respect-robots/--ignore-robots",
    default=None,
    help="Skip URLs disallowed by robots.txt. Default: ignore (SITEHARVEST_RESPECT_ROBOTS).",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(file_okay=True, dir_okay=False, path_type=Path),
    default=None,
    help="Output file path. If omitted, prints to stdout.",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["json", "text"], case_sensitive=False),
    default="text",
    show_default=True,
    help="Output format: json (full result) or text (page URLs only).",
)
@click.option(
    "--include-html",
    is_flag=True,
    default=False,
    help="Include page HTML in JSON output.",
)
def crawl_cmd(
    url: str,
    max_pages: int | None,
    timeout: float | None,
    concurrency: int | None,
    strategy: str | None,
    sitemap: bool,
    links: bool,
    respect_robots: bool | None,
    output: Path | None,
    output_format: str,
    include_html: bool,
) -> None:
    """Crawl a website and list the pages retrieved.

    Examples:
        siteharvest crawl https://example.com
        siteharvest crawl example.com --max-pages 50 --format json -o pages.json
        siteharvest crawl https://spa.example.com --strategy browser
        siteharvest crawl https://example.com --no-sitemap --respect-robots
    """
    import asyncio
    import json
    import sys
    from urllib.parse import urlsplit

    from siteharvest.config import load_settings
    from siteharvest.exceptions import SiteHarvestError
    from siteharvest.models import CrawlEvent, CrawlOptions
    from siteharvest.services.crawl import CrawlService

    def show_progress(event: CrawlEvent) -> None:
        if event.type == "sitemap":
            click.echo(f"Sitemap: {event.url} ({event.total} URLs)", err=True)
        elif event.type == "page":
            path = urlsplit(event.url or "").path or "/"
            click.echo(f"  + [{event.completed}] {path}", err=True)
        elif event.type == "error":
            path = urlsplit(event.url).path if event.url else "unknown"
            click.echo(f"  x {path} ({event.error or 'unknown error'})", err=True)

    async def run():
        settings = load_settings()
        apply_log_level(settings.log_level)
        options = CrawlOptions.from_settings(
            settings,
            max_pages=max_pages,
            per_page_timeout=timeout,
            max_concurrent_fetches=concurrency,
            use_sitemap=sitemap,
            follow_links=links,
            respect_robots=respect_robots,
        )
        service = CrawlService(settings=settings, strategy=strategy.lower() if strategy else None)  # type: ignore[arg-type]
        click.echo(f"Crawling {url}...", err=True)
        return await service.crawl(url, options, on_event=show_progress if sys.stderr.isatty() else None)

    try:
        result = asyncio.run(run())
    except SiteHarvestError as e:
        click.echo(f"Error: {e.message}", err=True)
        raise SystemExit(1) from e

    stats = result.statistics
    click.echo(
        f"Complete: {stats.total_fetched} page(s) fetched, {stats.total_discovered} discovered, "
        f"{len(stats.errors)} error(s)",
        err=True,
    )

    if output_format == "json":
        exclude = None if include_html else {"pages": {"__all__": {"html"}}}
        content = json.dumps(result.model_dump(mode="json", exclude=exclude), indent=2)
    else:
        content = "\n".join(page.url for page in result.pages)

    if output:
        with open(output, "w") as f:
            f.write(content)
            if not content.endswith("\n"):
                f.write("\n")
        click.echo(f"Wrote {len(result.pages)} pages to {output}", err=True)
    else:
        click.echo(content)
