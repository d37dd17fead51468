"""
Share aggregation module.

Turns flat market records into a two-level share breakdown: columns per X
category sized by their share of the whole, each split into segments per Y
category sized by their share of the column.

Guarantees on every non-empty result:
    - segment shares within a column sum to 100 (± SHARE_TOLERANCE)
    - column shares across the segmentation sum to 100 (± SHARE_TOLERANCE)
    - columns and segments are sorted by share, descending
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from app.domain.market_data import Column, MarketRecord, Segment, Segmentation
from segmentation.filters import RecordFilter, apply_filters

logger = logging.getLogger(__name__)

SHARE_TOLERANCE = 0.01
OTHER_SEGMENT = "other"


def aggregate(
    records: Iterable[MarketRecord],
    filters: Optional[Sequence[RecordFilter]],
    x_key: str,
    y_key: str,
    measure: Optional[str] = None,
) -> Segmentation:
    """
    Aggregate records into a Segmentation over ``x_key`` × ``y_key``.

    Args:
        records: Records from one dataset snapshot.
        filters: Filters applied before aggregation; ``None`` for none.
        x_key:   Dimension key that defines the columns.
        y_key:   Dimension key that defines the segments inside a column.
        measure: Optional metric label to aggregate instead of the
                 primary measure.

    Returns:
        A new Segmentation. Empty when nothing survives filtering or the
        global total is zero.
    """
    frame = _to_frame(apply_filters(records, filters), x_key, y_key, measure)
    if frame.empty:
        logger.debug("Aggregation empty x_key=%s y_key=%s", x_key, y_key)
        return Segmentation(x_key=x_key, y_key=y_key)

    column_totals = frame.groupby("x", sort=False)["measure"].sum()
    global_total = float(column_totals.sum())
    if global_total <= 0:
        return Segmentation(x_key=x_key, y_key=y_key)

    segment_totals = (
        frame.dropna(subset=["y"])
        .groupby(["x", "y"], sort=False)["measure"]
        .sum()
    )
    groups_by_column: Dict[str, List[Tuple[str, float]]] = {}
    for (category_x, category_y), value in segment_totals.items():
        groups_by_column.setdefault(category_x, []).append((category_y, float(value)))

    column_shares = _rescale(
        [float(total) / global_total * 100 for total in column_totals.values]
    )

    columns = []
    for (category_x, total), total_share in zip(column_totals.items(), column_shares):
        columns.append(
            Column(
                category_x=category_x,
                total_measure=float(total),
                total_share_pct=total_share,
                segments=_build_segments(groups_by_column.get(category_x, []), float(total)),
            )
        )

    columns.sort(key=lambda column: column.total_share_pct, reverse=True)
    logger.debug(
        "Aggregated x_key=%s y_key=%s columns=%d global_total=%.4f",
        x_key,
        y_key,
        len(columns),
        global_total,
    )
    return Segmentation(
        x_key=x_key,
        y_key=y_key,
        columns=tuple(columns),
        global_total=global_total,
    )


def _to_frame(
    records: Iterable[MarketRecord],
    x_key: str,
    y_key: str,
    measure: Optional[str],
) -> pd.DataFrame:
    """
    Project records onto (x, y, measure), dropping rows with no valid X
    category or a non-positive measure. Rows with no valid Y category are
    kept with ``y=None``: they still size their column.
    """
    rows = []
    for record in records:
        category_x = record.category(x_key)
        value = record.measure_value(measure)
        if category_x is None or not value > 0:
            continue
        rows.append((category_x, record.category(y_key), value))
    return pd.DataFrame(rows, columns=["x", "y", "measure"])


def _build_segments(groups: List[Tuple[str, float]], column_total: float) -> Tuple[Segment, ...]:
    if not groups:
        return (Segment(category_y=OTHER_SEGMENT, measure=column_total, share_pct=100.0),)

    shares = _rescale([value / column_total * 100 for _, value in groups])
    segments = [
        Segment(category_y=category_y, measure=value, share_pct=share)
        for (category_y, value), share in zip(groups, shares)
    ]
    segments.sort(key=lambda segment: segment.share_pct, reverse=True)
    return tuple(segments)


def _rescale(shares: List[float]) -> List[float]:
    """
    Scale shares uniformly to sum to 100 when they drift past the tolerance.
    """
    total = sum(shares)
    if total <= 0 or abs(total - 100.0) <= SHARE_TOLERANCE:
        return shares
    return [share * 100.0 / total for share in shares]
