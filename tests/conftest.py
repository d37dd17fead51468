"""
Shared fixtures: in-memory records, snapshots and a scripted completion adapter.
"""

from __future__ import annotations

from typing import Callable, List, Optional, Sequence, Union

import pytest

from app.domain.market_data import DatasetSnapshot, DimensionDescriptor, DimensionType, MarketRecord
from llm_synthesis.adapter import BaseLLMAdapter
from llm_synthesis.schema import CompletionMessage, ToolCall

Reply = Union[CompletionMessage, Exception]


class ScriptedAdapter(BaseLLMAdapter):
    """Replays a fixed list of replies (or raises scripted exceptions).

    When the script runs out, the last entry repeats. Every call's
    transcript and tools are recorded.
    """

    def __init__(self, replies: Sequence[Reply], *, live: bool = True) -> None:
        self._replies = list(replies)
        self.is_live = live
        self.calls: List[dict] = []

    def complete(self, messages: List[dict], tools: Optional[List[dict]] = None) -> CompletionMessage:
        self.calls.append({"messages": [dict(m) for m in messages], "tools": tools})
        index = min(len(self.calls) - 1, len(self._replies) - 1)
        reply = self._replies[index]
        if isinstance(reply, Exception):
            raise reply
        return reply


def text_reply(content: str) -> CompletionMessage:
    return CompletionMessage(content=content)


def tool_reply(*calls: tuple) -> CompletionMessage:
    return CompletionMessage(
        content=None,
        tool_calls=tuple(
            ToolCall(id=f"call_{index}", name=name, arguments=arguments)
            for index, (name, arguments) in enumerate(calls)
        ),
    )


@pytest.fixture()
def make_adapter() -> Callable[..., ScriptedAdapter]:
    return ScriptedAdapter


@pytest.fixture()
def make_record() -> Callable[..., MarketRecord]:
    def _make(
        record_id: str,
        measure: float,
        province: Optional[str] = None,
        metrics: Optional[dict] = None,
        **dimension_values: str,
    ) -> MarketRecord:
        return MarketRecord(
            id=record_id,
            measure=measure,
            dimension_values=dict(dimension_values),
            province=province,
            metrics=dict(metrics or {}),
        )

    return _make


@pytest.fixture()
def pharma_snapshot(make_record) -> DatasetSnapshot:
    """Small investigation dataset: brand × dosage × package × province with a WD rate."""
    dimensions = (
        DimensionDescriptor("dimension1", "品牌", DimensionType.BRAND),
        DimensionDescriptor("dimension2", "剂量", DimensionType.DOSAGE),
        DimensionDescriptor("dimension3", "包装规格", DimensionType.PACKAGE),
        DimensionDescriptor("dimension4", "省份", DimensionType.PROVINCE),
    )
    rows = [
        ("1", 100.0, "BrandX(FormA)", "10mg", "10mgx14s", "浙江省", 40.0),
        ("2", 300.0, "BrandX(FormA)", "20mg", "20mgx28s", "浙江省", 50.0),
        ("3", 200.0, "BrandY", "10mg", "10mgx14s", "安徽省", 60.0),
        ("4", 400.0, "BrandY", "20mg", "20mgx28s", "安徽省", 0.0),
        ("5", 0.0, "BrandX(FormA)", "10mg", "10mgx7s", "安徽省", 20.0),
    ]
    records = tuple(
        make_record(
            record_id,
            measure,
            province=province,
            metrics={"pdot": measure, "WD": wd},
            dimension1=brand,
            dimension2=dosage,
            dimension3=package,
            dimension4=province,
        )
        for record_id, measure, brand, dosage, package, province, wd in rows
    )
    return DatasetSnapshot(
        source_id="memory://pharma",
        records=records,
        dimensions=dimensions,
        measure_label="pdot",
        metric_labels=("pdot", "WD"),
    )


@pytest.fixture(name="text_reply")
def text_reply_fixture() -> Callable[[str], CompletionMessage]:
    return text_reply


@pytest.fixture(name="tool_reply")
def tool_reply_fixture() -> Callable[..., CompletionMessage]:
    return tool_reply
