"""Sitemap discovery command."""

import click

from siteharvest.cli._common import app, apply_log_level


@app.command("sitemap", help="Find a site's sitemap and list the URLs it declares.")
@click.argument("url")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["json", "text"], case_sensitive=False),
    default="text",
    show_default=True,
    help="Output format: json (sitemap URL, URLs and errors) or text (URLs only).",
)
def sitemap_cmd(url: str, output_format: str) -> None:
    """Discover and expand a sitemap.

    Examples:
        siteharvest sitemap https://example.com
        siteharvest sitemap https://example.com --format json
    """
    import asyncio
    import json

    from siteharvest.config import load_settings
    from siteharvest.discovery.sitemap import SitemapResolver
    from siteharvest.exceptions import SiteHarvestError
    from siteharvest.http import build_client
    from siteharvest.ssrf import HostGuard

    if "://" not in url:
        url = f"https://{url}"

    async def run() -> tuple[str | None, list[str], list[str]]:
        settings = load_settings()
        apply_log_level(settings.log_level)
        guard = HostGuard()
        await guard.check(url)
        async with build_client(timeout=settings.per_page_timeout, user_agent=settings.user_agent) as client:
            resolver = SitemapResolver(client, guard=guard)
            sitemap_url = await resolver.discover(url)
            urls = await resolver.resolve(sitemap_url) if sitemap_url else []
            return sitemap_url, urls, resolver.errors

    try:
        sitemap_url, urls, errors = asyncio.run(run())
    except SiteHarvestError as e:
        click.echo(f"Error: {e.message}", err=True)
        raise SystemExit(1) from e

    if output_format == "json":
        click.echo(json.dumps({"sitemap_url": sitemap_url, "urls": urls, "errors": errors}, indent=2))
        return

    if sitemap_url is None:
        click.echo(f"No sitemap found for {url}", err=True)
        raise SystemExit(1)

    click.echo(f"Sitemap: {sitemap_url} ({len(urls)} URLs)", err=True)
    for error in errors:
        click.echo(f"  x {error}", err=True)
    if urls:
        click.echo("\n".join(urls))
