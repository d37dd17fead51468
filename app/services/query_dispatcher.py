"""
app/services/query_dispatcher.py

Fuzzy query dispatcher: a closed set of analytical queries answered against a
tabular store snapshot.

Queries
-------
    query_grouped_totals     – total measure per value of one dimension, with
                               the focus brand's measure and share per group
    query_distribution_rate  – average distribution rate ("WD") over rows
                               matching brand / dosage / package / province

Every query returns a ``QueryResult`` value. Missing dimensions, empty matches,
unknown query names and unexpected exceptions are all reported through
``QueryResult.status`` so one bad tool call never aborts an investigation.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from app.domain.market_data import DatasetSnapshot, MarketRecord
from app.failure_codes import DIMENSION_NOT_FOUND, NO_MATCHING_ROWS, QUERY_ERROR, UNKNOWN_QUERY
from app.mappers.dimension_mapper import PROVINCE_KEYWORDS
from app.services.matching import fuzzy_match, resolve_dimension, resolve_label

logger = logging.getLogger(__name__)

STATUS_OK = "ok"
NO_MATCHING_DATA = "no matching data"
MAX_GROUPS = 20
UNKNOWN_GROUP = "unknown"

BRAND_KEYWORDS: tuple[str, ...] = ("品牌", "brand")
DOSAGE_KEYWORDS: tuple[str, ...] = ("剂量", "dosage", "mg")
PACKAGE_KEYWORDS: tuple[str, ...] = ("包装", "package", "规格")
RATE_KEYWORDS: tuple[str, ...] = ("wd", "分销", "分销率", "加权铺货率", "distribution rate")

# Friendly dimension names accepted from the model; anything else is used as
# a label keyword directly.
DIMENSION_KEYWORDS: dict[str, tuple[str, ...]] = {
    "brand": BRAND_KEYWORDS,
    "dosage": DOSAGE_KEYWORDS,
    "package": PACKAGE_KEYWORDS,
    "province": PROVINCE_KEYWORDS,
    "channel": ("渠道", "channel"),
    "molecule": ("分子", "molecule", "通用名"),
    "price": ("价格", "price"),
}

QUERY_GROUPED_TOTALS = "query_grouped_totals"
QUERY_DISTRIBUTION_RATE = "query_distribution_rate"

TOOL_DEFINITIONS: list[dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": QUERY_GROUPED_TOTALS,
            "description": (
                "Total measure grouped by the values of one dimension. Pass value='all' "
                "to compare every group (total, focus brand measure, focus brand share, "
                "row count); pass a specific value such as '10mg' to get that group's "
                "totals. Start with 'all' to see the overall distribution."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "dimension": {
                        "type": "string",
                        "description": (
                            "Dimension to group by: dosage, brand, package, province, "
                            "channel, molecule, price, or any column label."
                        ),
                    },
                    "value": {
                        "type": "string",
                        "description": "Group value to inspect, or 'all'. Fuzzy matched.",
                    },
                    "brand": {
                        "type": "string",
                        "description": "Optional brand; defaults to the brand under analysis. Fuzzy matched.",
                    },
                },
                "required": ["dimension"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": QUERY_DISTRIBUTION_RATE,
            "description": (
                "Average distribution rate (WD) over rows matching the given filters, "
                "with total measure and matched rows. Compare the same brand across "
                "dosages or package sizes to find distribution gaps."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "brand": {
                        "type": "string",
                        "description": "Optional brand; defaults to the brand under analysis.",
                    },
                    "dosage": {"type": "string", "description": "Optional dosage, e.g. '10mg'."},
                    "package_size": {
                        "type": "string",
                        "description": "Optional package size, e.g. '20mgx28s'.",
                    },
                    "province": {"type": "string", "description": "Optional province."},
                },
            },
        },
    },
]


@dataclass(frozen=True)
class QueryResult:
    """
    Outcome of one dispatcher query.

    ``status`` is ``"ok"`` or one of the contained failure codes.
    """

    name: str
    status: str
    text: str
    matched_rows: int = 0

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "text": self.text,
            "matched_rows": self.matched_rows,
        }


def _fmt(value: float) -> str:
    return f"{value:,.2f}"


def brand_totals(snapshot: DatasetSnapshot, limit: int = 10) -> list[tuple[str, float]]:
    """
    Total measure per brand, largest first. Empty when there is no brand dimension.
    """

    brand_key = resolve_dimension(snapshot.dimensions, BRAND_KEYWORDS)
    if brand_key is None:
        return []

    totals: dict[str, float] = {}
    for record in snapshot.records:
        brand = record.category(brand_key)
        if brand is not None:
            totals[brand] = totals.get(brand, 0.0) + record.measure
    ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)
    return ranked[: max(0, limit)]


class QueryDispatcher:
    """
    Answers analytical queries against the snapshot returned by ``load_snapshot``.

    The snapshot is fetched per query so the store's cache decides when the
    data is reloaded.

    Parameters
    ----------
    load_snapshot:
        Zero-argument callable returning the current snapshot.
    focus_brand:
        Brand under investigation; used whenever a query omits ``brand``.
    """

    def __init__(self, load_snapshot: Callable[[], DatasetSnapshot], focus_brand: str = "") -> None:
        self._load_snapshot = load_snapshot
        self._focus_brand = focus_brand.strip()

    @classmethod
    def for_snapshot(cls, snapshot: DatasetSnapshot, focus_brand: str = "") -> "QueryDispatcher":
        return cls(lambda: snapshot, focus_brand)

    @property
    def focus_brand(self) -> str:
        return self._focus_brand

    # ------------------------------------------------------------------
    # Tool routing
    # ------------------------------------------------------------------

    def execute(self, name: str, arguments: Mapping[str, Any] | str | None) -> QueryResult:
        """
        Route a model tool call to its query.

        String arguments are parsed as JSON; anything unparsable is treated
        as an empty argument object.
        """

        args = _coerce_arguments(arguments)
        logger.debug("Dispatching query name=%s args=%s", name, args)

        try:
            if name in (QUERY_GROUPED_TOTALS, "queryByDosage"):
                if name == "queryByDosage":
                    args = {"dimension": "dosage", "value": args.get("dosage", "all"), "brand": args.get("brand")}
                return self.query_grouped_totals(
                    dimension=_str_arg(args, "dimension") or "",
                    value=_str_arg(args, "value") or "all",
                    brand=_str_arg(args, "brand"),
                )
            if name in (QUERY_DISTRIBUTION_RATE, "queryWD"):
                return self.query_distribution_rate(
                    brand=_str_arg(args, "brand"),
                    dosage=_str_arg(args, "dosage"),
                    package_size=_str_arg(args, "package_size") or _str_arg(args, "packageSize"),
                    province=_str_arg(args, "province"),
                )
        except Exception as exc:
            logger.warning("Query failed name=%s error=%s", name, exc, exc_info=True)
            return QueryResult(name=name, status=QUERY_ERROR, text=f"query error: {exc}")

        logger.warning("Unknown query requested name=%s", name)
        return QueryResult(
            name=name,
            status=UNKNOWN_QUERY,
            text=(
                f"unknown query '{name}'; available: "
                f"{QUERY_GROUPED_TOTALS}, {QUERY_DISTRIBUTION_RATE}"
            ),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query_grouped_totals(
        self,
        dimension: str,
        value: str = "all",
        brand: str | None = None,
    ) -> QueryResult:
        """
        Grouped totals for one dimension.

        ``value="all"`` lists every group (capped at ``MAX_GROUPS``); a specific
        value filters to the matching rows of the entity and reports the total
        and the average per row.
        """

        name = QUERY_GROUPED_TOTALS
        snapshot = self._load_snapshot()
        keywords = DIMENSION_KEYWORDS.get(dimension.strip().lower(), (dimension,))
        dimension_key = resolve_dimension(snapshot.dimensions, keywords)
        if dimension_key is None:
            return self._dimension_not_found(name, dimension, snapshot)

        label = snapshot.label_for(dimension_key, dimension)
        entity = (brand or "").strip() or self._focus_brand
        brand_key = resolve_dimension(snapshot.dimensions, BRAND_KEYWORDS)

        if value.strip().lower() == "all":
            return self._all_groups(snapshot, dimension_key, label, brand_key, entity)

        rows = [
            record
            for record in snapshot.records
            if fuzzy_match(record.category(dimension_key), value)
        ]
        if brand_key is not None and entity:
            rows = [record for record in rows if fuzzy_match(record.category(brand_key), entity)]

        header = f"## Grouped totals: {label} = {value}"
        conditions = f"Filters: {label}={value}" + (f", brand={entity}" if entity else "")
        if not rows:
            return QueryResult(
                name=name,
                status=NO_MATCHING_ROWS,
                text="\n".join([header, conditions, "Matched rows: 0", f"Result: {NO_MATCHING_DATA}"]),
            )

        total = sum(record.measure for record in rows)
        lines = [
            header,
            conditions,
            f"Matched rows: {len(rows)}",
            f"Total measure: {_fmt(total)}",
            f"Average per row: {_fmt(total / len(rows))}",
        ]
        return QueryResult(name=name, status=STATUS_OK, text="\n".join(lines), matched_rows=len(rows))

    def query_distribution_rate(
        self,
        brand: str | None = None,
        dosage: str | None = None,
        package_size: str | None = None,
        province: str | None = None,
    ) -> QueryResult:
        """
        Average distribution rate over the matching rows that carry a positive rate.
        """

        name = QUERY_DISTRIBUTION_RATE
        snapshot = self._load_snapshot()
        rate_label = resolve_label(snapshot.metric_labels, RATE_KEYWORDS)
        if rate_label is None:
            return QueryResult(
                name=name,
                status=DIMENSION_NOT_FOUND,
                text=(
                    "no distribution-rate column in this dataset (expected a label "
                    f"containing one of: {', '.join(RATE_KEYWORDS)})"
                ),
            )

        entity = (brand or "").strip() or self._focus_brand
        notes: list[str] = []
        rows: list[MarketRecord] = list(snapshot.records)

        filters = [
            ("brand", BRAND_KEYWORDS, entity),
            ("dosage", DOSAGE_KEYWORDS, dosage),
            ("package", PACKAGE_KEYWORDS, package_size),
        ]
        conditions: list[str] = []
        for filter_name, keywords, target in filters:
            if not target:
                continue
            conditions.append(f"{filter_name}={target}")
            key = resolve_dimension(snapshot.dimensions, keywords)
            if key is None:
                notes.append(f"no {filter_name} dimension; {filter_name} filter ignored")
                continue
            rows = [record for record in rows if fuzzy_match(record.category(key), target)]

        if province:
            conditions.append(f"province={province}")
            province_key = resolve_dimension(snapshot.dimensions, PROVINCE_KEYWORDS)
            rows = [
                record
                for record in rows
                if fuzzy_match(
                    record.category(province_key) if province_key else record.province,
                    province,
                )
            ]

        rated = [
            (record.measure, record.measure_value(rate_label))
            for record in rows
            if record.measure_value(rate_label) > 0
        ]

        lines = [f"## Distribution rate ({rate_label}): {entity or 'all brands'}"]
        if conditions:
            lines.append("Filters: " + ", ".join(conditions))
        lines.extend(f"Note: {note}" for note in notes)

        if not rated:
            lines.append(f"Matched rows: {len(rows)} (none with a positive rate)")
            lines.append(f"Result: {NO_MATCHING_DATA}")
            return QueryResult(name=name, status=NO_MATCHING_ROWS, text="\n".join(lines))

        average = sum(rate for _, rate in rated) / len(rated)
        lines.extend(
            [
                f"Average rate: {average:.2f}",
                f"Total measure: {_fmt(sum(value for value, _ in rated))}",
                f"Matched rows: {len(rated)}",
            ]
        )
        return QueryResult(name=name, status=STATUS_OK, text="\n".join(lines), matched_rows=len(rated))

    def brand_totals(self, limit: int = 10) -> list[tuple[str, float]]:
        return brand_totals(self._load_snapshot(), limit)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _all_groups(
        self,
        snapshot: DatasetSnapshot,
        dimension_key: str,
        label: str,
        brand_key: str | None,
        entity: str,
    ) -> QueryResult:
        name = QUERY_GROUPED_TOTALS
        groups: dict[str, dict[str, float]] = {}
        for record in snapshot.records:
            group = record.category(dimension_key) or UNKNOWN_GROUP
            stats = groups.setdefault(group, {"total": 0.0, "entity": 0.0, "count": 0})
            stats["total"] += record.measure
            stats["count"] += 1
            if brand_key is not None and entity and fuzzy_match(record.category(brand_key), entity):
                stats["entity"] += record.measure

        header = f"## Grouped totals by {label}"
        if not groups:
            return QueryResult(
                name=name,
                status=NO_MATCHING_ROWS,
                text="\n".join([header, "Matched rows: 0", f"Result: {NO_MATCHING_DATA}"]),
            )

        ranked = sorted(groups.items(), key=lambda item: item[1]["total"], reverse=True)
        matched = sum(int(stats["count"]) for _, stats in ranked)
        lines = [header, f"Groups: {len(ranked)}, matched rows: {matched}"]
        for group, stats in ranked[:MAX_GROUPS]:
            line = f"- {group}: total {_fmt(stats['total'])}"
            if brand_key is not None and entity:
                share = (
                    f"{stats['entity'] / stats['total'] * 100:.2f}%"
                    if stats["total"] > 0
                    else NO_MATCHING_DATA
                )
                line += f", {entity} {_fmt(stats['entity'])}, share {share}"
            line += f", rows {int(stats['count'])}"
            lines.append(line)
        if len(ranked) > MAX_GROUPS:
            lines.append(f"... {len(ranked) - MAX_GROUPS} more groups omitted")

        return QueryResult(name=name, status=STATUS_OK, text="\n".join(lines), matched_rows=matched)

    @staticmethod
    def _dimension_not_found(name: str, requested: str, snapshot: DatasetSnapshot) -> QueryResult:
        available = ", ".join(descriptor.label for descriptor in snapshot.dimensions) or "none"
        return QueryResult(
            name=name,
            status=DIMENSION_NOT_FOUND,
            text=f"no dimension matching '{requested}' in this dataset (available: {available})",
        )


def _coerce_arguments(arguments: Mapping[str, Any] | str | None) -> dict[str, Any]:
    if arguments is None:
        return {}
    if isinstance(arguments, Mapping):
        return dict(arguments)
    try:
        parsed = json.loads(arguments)
    except (TypeError, ValueError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _str_arg(args: Mapping[str, Any], key: str) -> str | None:
    value = args.get(key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None
