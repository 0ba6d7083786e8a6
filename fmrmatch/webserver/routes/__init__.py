"""Routes package - API endpoint modules"""

from .match_routes import router as match_router

__all__ = ['match_router']
