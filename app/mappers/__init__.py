"""
app/mappers package marker.
"""

from app.mappers.dimension_mapper import DimensionMapper, HeaderClassification

__all__ = [
    "DimensionMapper",
    "HeaderClassification",
]
