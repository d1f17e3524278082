"""Repository crawling."""

from .crawler import CrawlObserver, Crawler, CrawlStats, CrawlStream

__all__ = ["CrawlObserver", "CrawlStats", "CrawlStream", "Crawler"]
