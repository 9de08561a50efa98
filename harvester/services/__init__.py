"""
Service layer for harvest runs.
"""
