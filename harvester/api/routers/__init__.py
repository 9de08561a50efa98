"""
harvester/api/routers package marker.
"""

from harvester.api.routers.harvest import router as harvest_router

__all__ = ["harvest_router"]
