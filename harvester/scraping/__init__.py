"""
Harvesting pipeline stages and the adapters they run on.
"""
