"""Common CLI utilities and the main app group."""

import logging

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

console = Console(stderr=True)
_configured = False
_verbose = False

# Load .env file when CLI module is imported (existing environment wins)
load_dotenv()


def configure_logging(*, verbose: bool = False) -> None:
    """Configure logging with Rich handler. Call once at startup."""
    global _configured, _verbose
    if _configured:
        return
    _verbose = verbose

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=console,
                rich_tracebacks=True,
                tracebacks_show_locals=verbose,
            )
        ],
        force=True,
    )

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    _configured = True


def apply_log_level(level: str) -> None:
    """Apply the configured log level unless --verbose already asked for DEBUG."""
    if not _verbose:
        logging.getLogger().setLevel(level)


@click.group(help="Discover and retrieve every crawlable page of a website.")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def app(verbose: bool) -> None:
    """
    Entry point for the siteharvest CLI.

    Provides commands for crawling a site and expanding its sitemap.
    """
    configure_logging(verbose=verbose)
