"""Australian transport news scraping, deduplication and ranking pipeline."""

__version__ = "0.1.0"
