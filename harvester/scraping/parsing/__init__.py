"""
Parsing layer exports.
"""

from harvester.scraping.parsing.html_parsers import HTMLParsingLayer

__all__ = ["HTMLParsingLayer"]
