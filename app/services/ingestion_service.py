"""
app/services/ingestion_service.py

Tabular store: loads a source once, classifies its columns and serves cached
snapshots.

The spreadsheet/CSV reading itself sits behind ``BaseTabularSource`` so the
store only depends on "a header row followed by data rows". Load failures are
raised as typed store errors and always propagate to the caller:

    SourceUnavailableError – source cannot be fetched or parsed
    MalformedHeaderError   – no header row, or every header cell is blank
    EmptySourceError       – header row present but no data rows
"""

from __future__ import annotations

import logging
import math
import time
from abc import ABC, abstractmethod
from functools import lru_cache
from pathlib import PurePosixPath
from typing import Any, Callable, Sequence
from urllib.parse import urlparse

import pandas as pd

from app.config import get_dataset_cache_settings
from app.domain.market_data import DatasetSnapshot, MarketRecord
from app.mappers.dimension_mapper import DimensionMapper, HeaderClassification
from app.repositories.dataset_cache import DatasetCache
from app.repositories.errors import EmptySourceError, MalformedHeaderError, SourceUnavailableError

logger = logging.getLogger(__name__)

_EXCEL_SUFFIXES = frozenset({".xlsx", ".xlsm", ".xls"})


# ---------------------------------------------------------------------------
# Ingestion boundary
# ---------------------------------------------------------------------------


class BaseTabularSource(ABC):
    """Abstract provider of raw rows for a source identity."""

    @abstractmethod
    def read_rows(self, source_id: str) -> list[list[Any]]:
        """Return every row of the source, header row first.

        Raises:
            SourceUnavailableError: If the source cannot be fetched.
        """


class PandasTabularSource(BaseTabularSource):
    """
    Reads CSV and Excel sources (local paths or URLs) with pandas.

    The first sheet of a workbook is used. Cells are read as raw objects so
    that category labels such as ``"10mg"`` or ``"2023Q1"`` are not coerced.
    """

    def read_rows(self, source_id: str) -> list[list[Any]]:
        suffix = PurePosixPath(urlparse(source_id).path).suffix.lower()
        try:
            if suffix in _EXCEL_SUFFIXES:
                frame = pd.read_excel(source_id, header=None, dtype=object, sheet_name=0)
            else:
                frame = pd.read_csv(
                    source_id,
                    header=None,
                    dtype=object,
                    skip_blank_lines=True,
                    encoding="utf-8-sig",
                )
        except pd.errors.EmptyDataError:
            return []
        except (OSError, ValueError) as exc:
            raise SourceUnavailableError(
                source_id,
                f"Could not read tabular source: {exc}",
            ) from exc

        frame = frame.astype(object).where(pd.notna(frame), None)
        return frame.values.tolist()


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------


def parse_number(value: Any) -> float:
    """
    Coerce a cell to float; thousands separators and a trailing ``%`` are ignored.

    Missing or unparsable cells are ``0.0``.
    """

    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip().replace(",", "").rstrip("%").strip()
        if not text:
            return 0.0
        try:
            number = float(text)
        except ValueError:
            return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def _cell_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, float):
        if math.isnan(value):
            return None
        if value.is_integer():
            return str(int(value))
    text = str(value).strip()
    return text or None


def _is_blank_row(row: Sequence[Any]) -> bool:
    return all(_cell_text(cell) is None for cell in row)


class TabularLoader:
    """
    Converts raw rows into an immutable ``DatasetSnapshot``.

    Parameters
    ----------
    source:
        Provider of raw rows.
    mapper:
        Header classifier.
    keep_zero_measure:
        Keep rows whose primary measure is ``<= 0``. The investigation
        database keeps them because they may still carry rate metrics.
    """

    def __init__(
        self,
        *,
        source: BaseTabularSource | None = None,
        mapper: DimensionMapper | None = None,
        keep_zero_measure: bool = False,
    ) -> None:
        self._source = source or PandasTabularSource()
        self._mapper = mapper or DimensionMapper()
        self._keep_zero_measure = keep_zero_measure

    def load(self, source_id: str) -> DatasetSnapshot:
        started = time.perf_counter()
        rows = self._source.read_rows(source_id)
        snapshot = self.build_snapshot(source_id, rows)
        logger.info(
            "Loaded source=%r records=%d dimensions=%d in %.3fs",
            source_id,
            len(snapshot.records),
            len(snapshot.dimensions),
            time.perf_counter() - started,
            extra={"source_id": source_id},
        )
        return snapshot

    def build_snapshot(self, source_id: str, rows: Sequence[Sequence[Any]]) -> DatasetSnapshot:
        if not rows:
            raise MalformedHeaderError(source_id, "Source has no header row.")

        raw_headers = list(rows[0])
        if not raw_headers or _is_blank_row(raw_headers):
            raise MalformedHeaderError(source_id, "Header row is empty.")

        data_rows = [row for row in rows[1:] if row and not _is_blank_row(row)]
        if not data_rows:
            raise EmptySourceError(source_id, "Source contains a header row but no data rows.")

        headers = self._mapper.clean_headers(raw_headers)
        classification = self._mapper.classify_headers(headers)
        if classification.dropped_labels:
            logger.debug(
                "Dropped translation columns source=%r labels=%s",
                source_id,
                list(classification.dropped_labels),
            )

        records: list[MarketRecord] = []
        for row_number, row in enumerate(data_rows, start=1):
            record = self._to_record(row_number, row, classification)
            if self._keep_zero_measure or record.measure > 0:
                records.append(record)

        return DatasetSnapshot(
            source_id=source_id,
            records=tuple(records),
            dimensions=classification.dimensions,
            measure_label=classification.primary_measure_label,
            metric_labels=tuple(label for _, label in classification.measure_columns),
        )

    @staticmethod
    def _to_record(
        row_number: int,
        row: Sequence[Any],
        classification: HeaderClassification,
    ) -> MarketRecord:
        def cell(index: int | None) -> Any:
            if index is None or index >= len(row):
                return None
            return row[index]

        record_id = _cell_text(cell(classification.identifier_index)) or f"row-{row_number}"

        dimension_values: dict[str, str] = {}
        for column in classification.dimension_columns:
            text = _cell_text(cell(column.index))
            if text is not None:
                dimension_values[column.descriptor.key] = text

        metrics = {
            label: parse_number(cell(index))
            for index, label in classification.measure_columns
        }

        return MarketRecord(
            id=record_id,
            measure=parse_number(cell(classification.primary_measure_index)),
            dimension_values=dimension_values,
            province=_cell_text(cell(classification.province_index)),
            metrics=metrics,
        )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class TabularStore:
    """
    Cached tabular store.

    ``load`` is safe to call concurrently: callers racing on the same source
    share one in-flight load, and calls within the TTL return the identical
    cached snapshot without touching the source again.
    """

    def __init__(
        self,
        *,
        loader: TabularLoader | None = None,
        ttl_seconds: float = 1800.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader or TabularLoader()
        self._cache: DatasetCache[DatasetSnapshot] = DatasetCache(
            self._loader.load,
            ttl_seconds=ttl_seconds,
            clock=clock,
        )

    @property
    def cache(self) -> DatasetCache[DatasetSnapshot]:
        return self._cache

    def load(self, source_id: str) -> DatasetSnapshot:
        """
        Return the snapshot for *source_id*.

        Raises:
            SourceUnavailableError, EmptySourceError, MalformedHeaderError
        """

        return self._cache.get(source_id)

    def invalidate(self, source_id: str | None = None) -> None:
        self._cache.invalidate(source_id)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def get_dashboard_store() -> TabularStore:
    """
    Store for segmentation sources; zero-measure rows are dropped at load.
    """

    settings = get_dataset_cache_settings()
    return TabularStore(
        loader=TabularLoader(keep_zero_measure=False),
        ttl_seconds=settings.ttl_seconds,
    )


@lru_cache(maxsize=1)
def get_investigation_store() -> TabularStore:
    """
    Store for the investigation database queried by deep-dive tools.
    """

    settings = get_dataset_cache_settings()
    return TabularStore(
        loader=TabularLoader(keep_zero_measure=settings.keep_zero_measure),
        ttl_seconds=settings.ttl_seconds,
    )
