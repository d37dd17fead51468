"""
app/domain package marker.
"""

from app.domain.market_data import (
    Column,
    DatasetSnapshot,
    DimensionDescriptor,
    DimensionType,
    MarketRecord,
    Segment,
    Segmentation,
)

__all__ = [
    "Column",
    "DatasetSnapshot",
    "DimensionDescriptor",
    "DimensionType",
    "MarketRecord",
    "Segment",
    "Segmentation",
]
