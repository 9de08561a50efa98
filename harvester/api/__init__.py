"""
HTTP API for triggering and inspecting harvest runs.
"""
