"""
app/schemas package marker.
"""

from app.schemas.analysis import (
    InvestigationResponse,
    QueryResponse,
    SegmentationResponse,
)

__all__ = [
    "InvestigationResponse",
    "QueryResponse",
    "SegmentationResponse",
]
