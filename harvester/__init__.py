"""
Listing harvester: paginated discovery, concurrent extraction and contact enrichment.
"""
