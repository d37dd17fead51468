"""
app/mappers/dimension_mapper.py

Header classification for loaded tabular sources.

Every header is classified once, when a dataset is loaded:

    measure     – label contains a measure or rate synonym
    identifier  – label is an id / sequence column
    dropped     – label ends in a translation marker (duplicate-language column)
    dimension   – everything else; gets a ``dimensionN`` key and an inferred type
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Sequence

from app.domain.market_data import TRANSLATION_SUFFIXES, DimensionDescriptor, DimensionType

MEASURE_SYNONYMS: tuple[str, ...] = (
    "金额",
    "盒",
    "片",
    "pdot",
    "value",
    "市场份额",
    "销售额",
    "sales",
    "market share",
    "销量",
    "数量",
    "amount",
    "quantity",
    "share",
    "份额",
    "growthrate",
    "growth",
    "增长率",
    "增速",
)

RATE_SYNONYMS: tuple[str, ...] = (
    "分销",
    "分销率",
    "加权铺货率",
    "distribution rate",
)

# Short Latin rate terms only count as whole words ("WD", "Rate %"), never
# inside words such as "powder" or "corporate".
RATE_TOKEN_PATTERN = re.compile(r"(?<![a-z])(?:wd|rate)(?![a-z])")

IDENTIFIER_LABELS: frozenset[str] = frozenset({"id", "序号", "编号", "sku"})

PROVINCE_KEYWORDS: tuple[str, ...] = ("province", "省份", "地区", "区域")

PRIMARY_MEASURE_LABEL = "pdot"
FALLBACK_MEASURE_KEYWORDS: tuple[str, ...] = ("金额", "amount", "value")

# Checked in order; the first keyword hit wins.
DIMENSION_TYPE_KEYWORDS: tuple[tuple[DimensionType, tuple[str, ...]], ...] = (
    (DimensionType.CHANNEL, ("渠道", "channel", "医院", "零售", "电商", "店铺", "平台")),
    (DimensionType.DEPARTMENT, ("科室", "department", "科")),
    (DimensionType.BRAND, ("品牌", "brand")),
    (DimensionType.PROVINCE, PROVINCE_KEYWORDS),
    (DimensionType.MOLECULE, ("分子", "molecule", "活性成分", "通用名")),
    (DimensionType.CLASS, ("类别", "class", "类型")),
    (DimensionType.PRICE_BAND, ("价格", "price")),
    (DimensionType.DOSAGE, ("剂量", "dosage", "strength")),
    (DimensionType.PACKAGE, ("包装", "package", "规格", "pack")),
    (DimensionType.PERIOD, ("季度", "quarter", "period", "年份", "year", "月份", "month")),
)


def normalize_label(header: str) -> str:
    """
    Normalize a column label for keyword matching.
    """

    return " ".join(header.strip().lower().split())


def infer_dimension_type(label: str) -> DimensionType:
    """
    Infer the semantic type of a dimension from its label.

    Labels that match no keyword default to ``channel``.
    """

    lowered = normalize_label(label)
    for dimension_type, keywords in DIMENSION_TYPE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return dimension_type
    return DimensionType.CHANNEL


def is_translation_label(label: str) -> bool:
    return label.strip().endswith(TRANSLATION_SUFFIXES)


def is_measure_label(label: str) -> bool:
    lowered = normalize_label(label)
    compact = lowered.replace(" ", "")
    if any(term in lowered or term in compact for term in MEASURE_SYNONYMS):
        return True
    return is_rate_label(label)


def is_rate_label(label: str) -> bool:
    lowered = normalize_label(label)
    if any(term in lowered for term in RATE_SYNONYMS):
        return True
    return RATE_TOKEN_PATTERN.search(lowered) is not None


def is_identifier_label(label: str) -> bool:
    return normalize_label(label) in IDENTIFIER_LABELS


def is_province_label(label: str) -> bool:
    lowered = normalize_label(label)
    return any(keyword in lowered for keyword in PROVINCE_KEYWORDS)


@dataclass(frozen=True)
class DimensionColumn:
    """
    A source column index paired with its dimension descriptor.
    """

    index: int
    descriptor: DimensionDescriptor


@dataclass(frozen=True)
class HeaderClassification:
    """
    Final classification of a header row.
    """

    headers: tuple[str, ...]
    dimension_columns: tuple[DimensionColumn, ...]
    measure_columns: tuple[tuple[int, str], ...]
    identifier_index: int | None
    province_index: int | None
    primary_measure_index: int | None
    dropped_labels: tuple[str, ...]

    @property
    def dimensions(self) -> tuple[DimensionDescriptor, ...]:
        return tuple(column.descriptor for column in self.dimension_columns)

    @property
    def primary_measure_label(self) -> str | None:
        if self.primary_measure_index is None:
            return None
        return self.headers[self.primary_measure_index]


class DimensionMapper:
    """
    Classifies source headers into dimensions, measures and identifiers.
    """

    def clean_headers(self, raw_headers: Sequence[object]) -> tuple[str, ...]:
        """
        Trim header cells; blank cells get a positional ``column_N`` name.
        """

        cleaned: list[str] = []
        for index, header in enumerate(raw_headers):
            text = "" if header is None else str(header).strip()
            if not text or text.lower() == "nan":
                text = f"column_{index + 1}"
            cleaned.append(text)
        return tuple(cleaned)

    def classify_headers(self, headers: Sequence[str]) -> HeaderClassification:
        """
        Classify every header and assign ``dimensionN`` keys in source order.
        """

        dimension_columns: list[DimensionColumn] = []
        measure_columns: list[tuple[int, str]] = []
        dropped: list[str] = []
        identifier_index: int | None = None
        province_index: int | None = None

        for index, label in enumerate(headers):
            if is_translation_label(label):
                dropped.append(label)
                continue
            if is_identifier_label(label):
                if identifier_index is None:
                    identifier_index = index
                continue
            if is_measure_label(label):
                measure_columns.append((index, label))
                continue

            if province_index is None and is_province_label(label):
                province_index = index
            descriptor = DimensionDescriptor(
                key=f"dimension{len(dimension_columns) + 1}",
                label=label,
                inferred_type=infer_dimension_type(label),
            )
            dimension_columns.append(DimensionColumn(index=index, descriptor=descriptor))

        return HeaderClassification(
            headers=tuple(headers),
            dimension_columns=tuple(dimension_columns),
            measure_columns=tuple(measure_columns),
            identifier_index=identifier_index,
            province_index=province_index,
            primary_measure_index=self._select_primary_measure(headers, measure_columns),
            dropped_labels=tuple(dropped),
        )

    @staticmethod
    def _select_primary_measure(
        headers: Sequence[str],
        measure_columns: Sequence[tuple[int, str]],
    ) -> int | None:
        for index, label in enumerate(headers):
            if normalize_label(label) == PRIMARY_MEASURE_LABEL:
                return index

        for index, label in enumerate(headers):
            lowered = normalize_label(label)
            if is_translation_label(label):
                continue
            if any(keyword in lowered for keyword in FALLBACK_MEASURE_KEYWORDS):
                return index

        for index, label in measure_columns:
            if not is_rate_label(label):
                return index
        return None
