"""
Page fetcher exports.
"""

from harvester.scraping.fetcher.base import FetcherFactory, PageFetcher

__all__ = ["FetcherFactory", "PageFetcher"]
