"""siteharvest: discover and retrieve every crawlable page of a website."""

__version__ = "0.1.0"
