"""
app/api/routers package marker.
"""

from app.api.routers.analysis_router import router as analysis_router

__all__ = [
    "analysis_router",
]
