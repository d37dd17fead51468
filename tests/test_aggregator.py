"""
tests/test_aggregator.py

Unit tests for share aggregation, record filters and opportunity extraction.

Coverage
--------
- Worked two-by-two example (shares and ordering)
- Share sums per column and across columns
- "other" segment for columns without a valid Y category
- Invalid X categories, non-positive measures, translation-suffixed values
- Empty input and zero global total
- Named metric as measure
- Value range / category / period filters
- Opportunity threshold
"""

from __future__ import annotations

import pytest

from segmentation.aggregator import OTHER_SEGMENT, aggregate
from segmentation.filters import CategoryFilter, PeriodFilter, ValueRangeFilter, apply_filters
from segmentation.opportunities import find_opportunities


@pytest.fixture()
def two_by_two(make_record):
    return [
        make_record("1", 10, x="A", y="p"),
        make_record("2", 20, x="A", y="q"),
        make_record("3", 30, x="B", y="p"),
        make_record("4", 40, x="B", y="q"),
    ]


class TestWorkedExample:
    def test_columns_sorted_by_share(self, two_by_two) -> None:
        result = aggregate(two_by_two, None, "x", "y")
        assert [c.category_x for c in result.columns] == ["B", "A"]
        assert result.columns[0].total_share_pct == pytest.approx(70.0)
        assert result.columns[1].total_share_pct == pytest.approx(30.0)
        assert result.global_total == pytest.approx(100.0)

    def test_segments_sorted_and_shared(self, two_by_two) -> None:
        result = aggregate(two_by_two, None, "x", "y")
        b, a = result.columns
        assert [(s.category_y, round(s.share_pct, 2)) for s in b.segments] == [("q", 57.14), ("p", 42.86)]
        assert [(s.category_y, round(s.share_pct, 2)) for s in a.segments] == [("q", 66.67), ("p", 33.33)]
        assert b.total_measure == pytest.approx(70.0)

    def test_returns_new_objects_each_time(self, two_by_two) -> None:
        first = aggregate(two_by_two, None, "x", "y")
        second = aggregate(two_by_two, None, "x", "y")
        assert first == second
        assert first is not second


class TestShareInvariants:
    def test_shares_sum_to_100(self, make_record) -> None:
        records = [
            make_record(str(i), value, x=f"x{i % 3}", y=f"y{i % 4}")
            for i, value in enumerate([3.3, 7.1, 11.9, 0.4, 5.5, 9.0, 13.7, 2.2, 1.1, 8.8])
        ]
        result = aggregate(records, None, "x", "y")
        assert sum(c.total_share_pct for c in result.columns) == pytest.approx(100.0, abs=0.01)
        for column in result.columns:
            assert sum(s.share_pct for s in column.segments) == pytest.approx(100.0, abs=0.01)

    def test_column_without_valid_y_gets_other(self, make_record) -> None:
        records = [
            make_record("1", 10, x="A"),
            make_record("2", 5, x="A", y="  "),
            make_record("3", 20, x="B", y="p"),
        ]
        result = aggregate(records, None, "x", "y")
        column_a = next(c for c in result.columns if c.category_x == "A")
        assert len(column_a.segments) == 1
        assert column_a.segments[0].category_y == OTHER_SEGMENT
        assert column_a.segments[0].share_pct == pytest.approx(100.0)
        assert column_a.total_measure == pytest.approx(15.0)

    def test_partial_y_is_rescaled(self, make_record) -> None:
        records = [
            make_record("1", 10, x="A", y="p"),
            make_record("2", 30, x="A", y="q"),
            make_record("3", 60, x="A"),
        ]
        column = aggregate(records, None, "x", "y").columns[0]
        assert column.total_measure == pytest.approx(100.0)
        assert sum(s.share_pct for s in column.segments) == pytest.approx(100.0, abs=0.01)
        assert [s.category_y for s in column.segments] == ["q", "p"]
        assert column.segments[0].share_pct == pytest.approx(75.0)


class TestRecordExclusion:
    def test_invalid_x_and_non_positive_measure_dropped(self, make_record) -> None:
        records = [
            make_record("1", 10, x="A", y="p"),
            make_record("2", 50, y="p"),
            make_record("3", 0, x="B", y="p"),
            make_record("4", -5, x="B", y="p"),
            make_record("5", 40, x="Retail_English", y="p"),
        ]
        result = aggregate(records, None, "x", "y")
        assert [c.category_x for c in result.columns] == ["A"]
        assert result.global_total == pytest.approx(10.0)

    def test_empty_input_gives_empty_segmentation(self) -> None:
        result = aggregate([], None, "x", "y")
        assert result.is_empty
        assert result.global_total == 0.0

    def test_all_zero_measures_give_empty_segmentation(self, make_record) -> None:
        result = aggregate([make_record("1", 0, x="A", y="p")], None, "x", "y")
        assert result.is_empty

    def test_named_metric_as_measure(self, make_record) -> None:
        records = [
            make_record("1", 1, metrics={"units": 30}, x="A", y="p"),
            make_record("2", 99, metrics={"units": 10}, x="B", y="p"),
        ]
        result = aggregate(records, None, "x", "y", measure="units")
        assert result.columns[0].category_x == "A"
        assert result.columns[0].total_share_pct == pytest.approx(75.0)

    def test_province_key_reads_record_province(self, make_record) -> None:
        records = [
            make_record("1", 10, province="浙江", y="p"),
            make_record("2", 30, province="安徽", y="p"),
        ]
        result = aggregate(records, None, "province", "y")
        assert [c.category_x for c in result.columns] == ["安徽", "浙江"]


class TestFilters:
    def test_value_range(self, two_by_two) -> None:
        kept = apply_filters(two_by_two, [ValueRangeFilter(min_value=15, max_value=35)])
        assert [r.id for r in kept] == ["2", "3"]

    def test_category_membership(self, two_by_two) -> None:
        kept = apply_filters(two_by_two, [CategoryFilter(key="y", values=("q",))])
        assert [r.id for r in kept] == ["2", "4"]

    def test_empty_category_values_match_nothing(self, two_by_two) -> None:
        assert apply_filters(two_by_two, [CategoryFilter(key="y", values=())]) == []

    def test_period_range_inclusive(self, make_record) -> None:
        records = [
            make_record("1", 1, period="2023Q1"),
            make_record("2", 1, period="2023Q3"),
            make_record("3", 1, period="2024Q1"),
            make_record("4", 1),
        ]
        kept = apply_filters(records, [PeriodFilter(key="period", start="2023Q2", end="2024Q1")])
        assert [r.id for r in kept] == ["2", "3"]

    def test_filters_combine_before_aggregation(self, two_by_two) -> None:
        result = aggregate(two_by_two, [CategoryFilter(key="x", values=("A",))], "x", "y")
        assert len(result.columns) == 1
        assert result.columns[0].total_share_pct == pytest.approx(100.0)


class TestOpportunities:
    def test_threshold_and_order(self, two_by_two) -> None:
        found = find_opportunities(aggregate(two_by_two, None, "x", "y"))
        assert [(o.category_x, o.category_y) for o in found] == [
            ("B", "q"),
            ("B", "p"),
            ("A", "q"),
            ("A", "p"),
        ]
        assert found[0].market_share_pct == pytest.approx(40.0)

    def test_small_cells_excluded(self, make_record) -> None:
        records = [make_record("1", 96, x="A", y="p"), make_record("2", 4, x="A", y="q")]
        found = find_opportunities(aggregate(records, None, "x", "y"))
        assert [o.category_y for o in found] == ["p"]
