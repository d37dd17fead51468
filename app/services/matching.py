"""
app/services/matching.py

Tolerant matching used by the query dispatcher.

Two rules, picked by the shape of the requested value:

    unit-qualified ("10mg", "0.5 ml") – magnitudes and unit must agree, or one
                                        value must literally contain the other
    anything else ("BrandX", "浙江")  – either value contains the other

The split keeps "10mg" from matching "20mg" while letting brand aliases such
as "BrandX(FormA)" and province suffixes such as "浙江省" match their short form.
"""

from __future__ import annotations

import re
from typing import Iterable

from app.domain.market_data import DimensionDescriptor

UNIT_TOKENS: tuple[str, ...] = ("mcg", "μg", "ug", "mg", "ml", "iu", "g")

# Longer tokens first so "mcg" is not read as "g".
_UNIT_QUANTITY = re.compile(
    r"(\d+(?:\.\d+)?)\s*(" + "|".join(re.escape(token) for token in UNIT_TOKENS) + r")"
)


def _normalize(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip().casefold()


def _first_quantity(text: str) -> tuple[float, str] | None:
    found = _UNIT_QUANTITY.search(text)
    if found is None:
        return None
    return float(found.group(1)), found.group(2)


def fuzzy_match(data_value: object, target: object) -> bool:
    """
    Return ``True`` when a stored category matches a requested value.
    """

    data_text = _normalize(data_value)
    target_text = _normalize(target)
    if not data_text or not target_text:
        return False
    if data_text == target_text:
        return True

    contains = data_text in target_text or target_text in data_text

    target_quantity = _first_quantity(target_text)
    if target_quantity is None:
        return contains

    data_quantity = _first_quantity(data_text)
    if data_quantity is not None and data_quantity == target_quantity:
        return True
    return contains


def resolve_dimension(
    dimensions: Iterable[DimensionDescriptor],
    keywords: Iterable[str],
) -> str | None:
    """
    Return the key of the first dimension whose label contains any keyword.

    Matching is case-insensitive. ``None`` means the dataset has no such
    dimension; it is never an error.
    """

    lowered = [keyword.casefold() for keyword in keywords if keyword and keyword.strip()]
    for descriptor in dimensions:
        label = descriptor.label.casefold()
        if any(keyword in label for keyword in lowered):
            return descriptor.key
    return None


def resolve_label(labels: Iterable[str], keywords: Iterable[str]) -> str | None:
    """
    Same rule as ``resolve_dimension`` applied to bare labels (metric columns).
    """

    lowered = [keyword.casefold() for keyword in keywords if keyword and keyword.strip()]
    for label in labels:
        folded = label.casefold()
        if any(keyword in folded for keyword in lowered):
            return label
    return None
