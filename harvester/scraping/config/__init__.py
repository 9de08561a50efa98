"""
Harvest target configuration.
"""

from harvester.scraping.config.loader import load_targets

__all__ = ["load_targets"]
