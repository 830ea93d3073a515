"""
API Routers
===========
"""

from .codetainers import router as codetainers_router
from .images import router as images_router

__all__ = ["codetainers_router", "images_router"]
