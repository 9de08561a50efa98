"""
Pydantic schemas for the harvest API.
"""
