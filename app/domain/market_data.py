"""
app/domain/market_data.py

Domain models for the tabular store and the share segmentation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

TRANSLATION_SUFFIXES: tuple[str, ...] = ("_英文", "_English")
PROVINCE_FIELD = "province"


class DimensionType(str, Enum):
    """
    Semantic type inferred from a dimension column label.
    """

    CHANNEL = "channel"
    DEPARTMENT = "department"
    BRAND = "brand"
    PROVINCE = "province"
    MOLECULE = "molecule"
    CLASS = "class"
    PRICE_BAND = "price_band"
    DOSAGE = "dosage"
    PACKAGE = "package"
    PERIOD = "period"


def clean_category(value: Any) -> str | None:
    """
    Return the trimmed category, or ``None`` when it is not a valid category.

    Empty values and values carrying a translation suffix are treated as absent.
    """

    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if text.endswith(TRANSLATION_SUFFIXES):
        return None
    return text


@dataclass(frozen=True)
class DimensionDescriptor:
    """
    One categorical column of a loaded dataset.
    """

    key: str
    label: str
    inferred_type: DimensionType

    def to_dict(self) -> dict[str, str]:
        return {
            "key": self.key,
            "label": self.label,
            "inferred_type": self.inferred_type.value,
        }


@dataclass(frozen=True)
class MarketRecord:
    """
    One data row: a primary measure, its categories and any extra metrics.
    """

    id: str
    measure: float
    dimension_values: dict[str, str] = field(default_factory=dict)
    province: str | None = None
    metrics: dict[str, float] = field(default_factory=dict)

    def category(self, key: str) -> str | None:
        """
        Return the valid category for a dimension key, or ``None``.
        """

        if key == PROVINCE_FIELD:
            return clean_category(self.province)
        return clean_category(self.dimension_values.get(key))

    def measure_value(self, measure: str | None = None) -> float:
        """
        Return the primary measure, or the named metric when ``measure`` is given.
        """

        if measure is None:
            return self.measure
        return self.metrics.get(measure, 0.0)


@dataclass(frozen=True)
class DatasetSnapshot:
    """
    Immutable result of one successful store load.
    """

    source_id: str
    records: tuple[MarketRecord, ...]
    dimensions: tuple[DimensionDescriptor, ...]
    measure_label: str | None = None
    metric_labels: tuple[str, ...] = ()

    def dimension(self, key: str) -> DimensionDescriptor | None:
        for descriptor in self.dimensions:
            if descriptor.key == key:
                return descriptor
        return None

    def label_for(self, key: str, default: str) -> str:
        descriptor = self.dimension(key)
        return descriptor.label if descriptor is not None else default


@dataclass(frozen=True)
class Segment:
    """
    One Y category inside a column.
    """

    category_y: str
    measure: float
    share_pct: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "category_y": self.category_y,
            "measure": self.measure,
            "share_pct": self.share_pct,
        }


@dataclass(frozen=True)
class Column:
    """
    One X category with its share of the whole and its Y breakdown.
    """

    category_x: str
    total_measure: float
    total_share_pct: float
    segments: tuple[Segment, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "category_x": self.category_x,
            "total_measure": self.total_measure,
            "total_share_pct": self.total_share_pct,
            "segments": [segment.to_dict() for segment in self.segments],
        }


@dataclass(frozen=True)
class Segmentation:
    """
    Hierarchical share breakdown across two dimensions.
    """

    x_key: str
    y_key: str
    columns: tuple[Column, ...] = ()
    global_total: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not self.columns

    def to_dict(self) -> dict[str, Any]:
        return {
            "x_key": self.x_key,
            "y_key": self.y_key,
            "global_total": self.global_total,
            "columns": [column.to_dict() for column in self.columns],
        }
