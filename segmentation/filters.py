"""
Record filters applied before share aggregation.

Each filter is a small frozen value with a single ``matches(record)`` method;
``apply_filters`` keeps the records that satisfy every filter.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from app.domain.market_data import MarketRecord


@dataclass(frozen=True)
class ValueRangeFilter:
    """
    Keep records whose measure lies in ``[min_value, max_value]``.

    Either bound may be omitted. ``measure`` selects a named metric instead
    of the primary measure.
    """

    min_value: Optional[float] = None
    max_value: Optional[float] = None
    measure: Optional[str] = None

    def matches(self, record: MarketRecord) -> bool:
        value = record.measure_value(self.measure)
        if self.min_value is not None and value < self.min_value:
            return False
        if self.max_value is not None and value > self.max_value:
            return False
        return True


@dataclass(frozen=True)
class CategoryFilter:
    """
    Keep records whose category for ``key`` is one of ``values``.

    A single value is plain equality; an empty tuple matches nothing.
    """

    key: str
    values: Tuple[str, ...]

    def matches(self, record: MarketRecord) -> bool:
        category = record.category(self.key)
        if category is None:
            return False
        return category in {value.strip() for value in self.values}


@dataclass(frozen=True)
class PeriodFilter:
    """
    Keep records whose period label for ``key`` falls within ``[start, end]``.

    Period labels (``2023Q1``, ``2024-03``, ``2022``) are compared as strings,
    which orders correctly for zero-padded, same-format labels.
    """

    key: str
    start: Optional[str] = None
    end: Optional[str] = None

    def matches(self, record: MarketRecord) -> bool:
        period = record.category(self.key)
        if period is None:
            return False
        if self.start is not None and period < self.start:
            return False
        if self.end is not None and period > self.end:
            return False
        return True


RecordFilter = ValueRangeFilter | CategoryFilter | PeriodFilter


def apply_filters(
    records: Iterable[MarketRecord],
    filters: Optional[Sequence[RecordFilter]] = None,
) -> List[MarketRecord]:
    """
    Return the records matching every filter, preserving input order.
    """
    active = list(filters or [])
    return [record for record in records if all(f.matches(record) for f in active)]
