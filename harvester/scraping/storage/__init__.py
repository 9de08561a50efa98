"""
Storage layer exports.
"""

from harvester.scraping.storage.base import DocumentStore, parse_lookup
from harvester.scraping.storage.sqlalchemy_storage import SQLAlchemyDocumentStore

__all__ = ["DocumentStore", "SQLAlchemyDocumentStore", "parse_lookup"]
