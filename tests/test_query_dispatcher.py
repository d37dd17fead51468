"""
tests/test_query_dispatcher.py

Unit tests for the fuzzy query dispatcher.

Coverage
--------
- Grouped totals: all groups, one group, brand filter, missing dimension
- Distribution rate: filters, positive-rate rule, missing rate column,
  ignored filters, province matching
- Tool routing: JSON arguments, malformed arguments, aliases, unknown
  names, contained exceptions
"""

from __future__ import annotations

import dataclasses

import pytest

from app.failure_codes import DIMENSION_NOT_FOUND, NO_MATCHING_ROWS, QUERY_ERROR, UNKNOWN_QUERY
from app.services.query_dispatcher import (
    QUERY_DISTRIBUTION_RATE,
    QUERY_GROUPED_TOTALS,
    TOOL_DEFINITIONS,
    QueryDispatcher,
    brand_totals,
)


@pytest.fixture()
def dispatcher(pharma_snapshot) -> QueryDispatcher:
    return QueryDispatcher.for_snapshot(pharma_snapshot, "BrandX")


class TestGroupedTotals:
    def test_all_groups_with_focus_brand_share(self, dispatcher: QueryDispatcher) -> None:
        result = dispatcher.query_grouped_totals("dosage", "all")

        assert result.ok
        assert result.matched_rows == 5
        lines = result.text.splitlines()
        assert lines[0] == "## Grouped totals by 剂量"
        assert lines[2] == "- 20mg: total 700.00, BrandX 300.00, share 42.86%, rows 2"
        assert lines[3] == "- 10mg: total 300.00, BrandX 100.00, share 33.33%, rows 3"

    def test_single_value_for_focus_brand(self, dispatcher: QueryDispatcher) -> None:
        result = dispatcher.query_grouped_totals("dosage", "10 MG")

        assert result.ok
        assert result.matched_rows == 2
        assert "Total measure: 100.00" in result.text
        assert "Average per row: 50.00" in result.text

    def test_explicit_brand_overrides_focus(self, dispatcher: QueryDispatcher) -> None:
        result = dispatcher.query_grouped_totals("province", "安徽", brand="BrandY")
        assert result.matched_rows == 2
        assert "Total measure: 600.00" in result.text

    def test_no_matching_rows(self, dispatcher: QueryDispatcher) -> None:
        result = dispatcher.query_grouped_totals("dosage", "40mg")
        assert result.status == NO_MATCHING_ROWS
        assert "no matching data" in result.text

    def test_missing_dimension_lists_available(self, dispatcher: QueryDispatcher) -> None:
        result = dispatcher.query_grouped_totals("channel")
        assert result.status == DIMENSION_NOT_FOUND
        assert "品牌" in result.text

    def test_raw_label_as_dimension(self, dispatcher: QueryDispatcher) -> None:
        result = dispatcher.query_grouped_totals("包装规格", "20mgx28s")
        assert result.ok
        assert result.matched_rows == 1
        assert "Total measure: 300.00" in result.text


class TestDistributionRate:
    def test_average_over_positive_rates(self, dispatcher: QueryDispatcher) -> None:
        result = dispatcher.query_distribution_rate(dosage="10mg")

        assert result.ok
        assert result.matched_rows == 2
        assert "Average rate: 30.00" in result.text
        assert "Total measure: 100.00" in result.text

    def test_zero_rates_are_ignored(self, dispatcher: QueryDispatcher) -> None:
        result = dispatcher.query_distribution_rate(brand="BrandY", dosage="20mg")
        assert result.status == NO_MATCHING_ROWS

    def test_province_filter(self, dispatcher: QueryDispatcher) -> None:
        result = dispatcher.query_distribution_rate(province="浙江")
        assert "Average rate: 45.00" in result.text

    def test_missing_rate_column(self, pharma_snapshot) -> None:
        snapshot = dataclasses.replace(pharma_snapshot, metric_labels=("pdot",))
        result = QueryDispatcher.for_snapshot(snapshot, "BrandX").query_distribution_rate()
        assert result.status == DIMENSION_NOT_FOUND

    def test_filter_on_missing_dimension_is_ignored(self, pharma_snapshot) -> None:
        snapshot = dataclasses.replace(
            pharma_snapshot,
            dimensions=tuple(d for d in pharma_snapshot.dimensions if d.key != "dimension3"),
        )
        result = QueryDispatcher.for_snapshot(snapshot, "BrandX").query_distribution_rate(
            package_size="10mgx14s",
        )
        assert result.ok
        assert "package filter ignored" in result.text
        assert result.matched_rows == 3


class TestExecute:
    def test_json_string_arguments(self, dispatcher: QueryDispatcher) -> None:
        result = dispatcher.execute(QUERY_GROUPED_TOTALS, '{"dimension": "brand", "value": "all"}')
        assert result.ok
        assert result.name == QUERY_GROUPED_TOTALS

    def test_malformed_arguments_become_empty(self, dispatcher: QueryDispatcher) -> None:
        result = dispatcher.execute(QUERY_GROUPED_TOTALS, '{"dimension": ')
        assert result.status == DIMENSION_NOT_FOUND

    def test_dosage_alias(self, dispatcher: QueryDispatcher) -> None:
        result = dispatcher.execute("queryByDosage", {"dosage": "20mg"})
        assert result.ok
        assert "Total measure: 300.00" in result.text

    def test_rate_alias_with_camel_case_package(self, dispatcher: QueryDispatcher) -> None:
        result = dispatcher.execute("queryWD", {"packageSize": "20mgx28s"})
        assert "Average rate: 50.00" in result.text

    def test_unknown_query(self, dispatcher: QueryDispatcher) -> None:
        result = dispatcher.execute("drop_tables", {})
        assert result.status == UNKNOWN_QUERY
        assert QUERY_DISTRIBUTION_RATE in result.text

    def test_exceptions_are_contained(self) -> None:
        def broken_loader():
            raise RuntimeError("store offline")

        result = QueryDispatcher(broken_loader, "BrandX").execute(QUERY_DISTRIBUTION_RATE, {})
        assert result.status == QUERY_ERROR
        assert "store offline" in result.text


class TestCatalog:
    def test_tool_definitions_name_both_queries(self) -> None:
        names = [tool["function"]["name"] for tool in TOOL_DEFINITIONS]
        assert names == [QUERY_GROUPED_TOTALS, QUERY_DISTRIBUTION_RATE]

    def test_brand_totals(self, pharma_snapshot) -> None:
        assert brand_totals(pharma_snapshot) == [("BrandY", 600.0), ("BrandX(FormA)", 400.0)]
