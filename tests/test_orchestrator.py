"""
tests/test_orchestrator.py

Unit tests for the investigation state machine: scan, confirmation and the
per-finding deep-dive batch.
"""

from __future__ import annotations

import json
import threading

import pytest

from agent.orchestrator import (
    InvestigationContext,
    InvestigationOrchestrator,
    InvestigationStage,
    InvestigationStateError,
)
from app.config import InvestigationSettings
from app.failure_codes import ANALYSIS_FAILED_MARKER
from app.services.query_dispatcher import QUERY_GROUPED_TOTALS, QueryDispatcher
from llm_synthesis.adapter import PLACEHOLDER_FINDING, LLMTransportError, MockLLMAdapter
from llm_synthesis.schema import Finding
from segmentation.aggregator import aggregate


def _scan_json(*titles: str) -> str:
    return json.dumps(
        {"findings": [{"title": title, "phenomenon": f"{title} phenomenon"} for title in titles]}
    )


def _cause_json(statement: str) -> str:
    return json.dumps({"causes": [{"problem": "p", "statement": statement}]})


@pytest.fixture()
def settings() -> InvestigationSettings:
    return InvestigationSettings(max_turns=4, max_findings=3, max_deep_dive_findings=5, scan_retries=1)


@pytest.fixture()
def dispatcher(pharma_snapshot) -> QueryDispatcher:
    return QueryDispatcher.for_snapshot(pharma_snapshot, "BrandX")


@pytest.fixture()
def segmentation(pharma_snapshot):
    return aggregate(pharma_snapshot.records, None, "dimension1", "dimension2")


@pytest.fixture()
def context() -> InvestigationContext:
    return InvestigationContext(brand="BrandX", x_label="品牌", y_label="剂量", record_count=5)


@pytest.fixture()
def findings() -> list[Finding]:
    return [Finding(title=f"gap {i}", phenomenon=f"phenomenon {i}") for i in range(3)]


class TestScan:
    def test_findings_are_deduplicated_and_truncated(
        self, make_adapter, text_reply, dispatcher, settings, segmentation, context
    ) -> None:
        reply = _scan_json("A", "a ", "B", "C", "D")
        orchestrator = InvestigationOrchestrator(make_adapter([text_reply(reply)]), dispatcher, settings=settings)

        result = orchestrator.scan(segmentation, context)

        assert [f.title for f in result] == ["A", "B", "C"]
        assert orchestrator.stage is InvestigationStage.AWAITING_CONFIRMATION
        assert all(f.cause is None for f in result)

    def test_scan_prompt_carries_segmentation(
        self, make_adapter, text_reply, dispatcher, settings, segmentation, context
    ) -> None:
        adapter = make_adapter([text_reply(_scan_json("A"))])
        InvestigationOrchestrator(adapter, dispatcher, settings=settings).scan(segmentation, context, max_findings=2)

        system, user = adapter.calls[0]["messages"]
        assert "at most 2 findings" in system["content"]
        assert "### 品牌: BrandY" in user["content"]
        assert adapter.calls[0]["tools"] is None

    def test_placeholder_without_live_endpoint(self, dispatcher, settings, segmentation, context) -> None:
        orchestrator = InvestigationOrchestrator(MockLLMAdapter(), dispatcher, settings=settings)
        result = orchestrator.scan(segmentation, context)
        assert [f.title for f in result] == [PLACEHOLDER_FINDING["title"]]

    def test_placeholder_on_transport_error(self, make_adapter, dispatcher, settings, segmentation, context) -> None:
        adapter = make_adapter([LLMTransportError("refused")])
        result = InvestigationOrchestrator(adapter, dispatcher, settings=settings).scan(segmentation, context)
        assert [f.title for f in result] == [PLACEHOLDER_FINDING["title"]]

    def test_unusable_output_gives_no_findings(
        self, make_adapter, text_reply, dispatcher, settings, segmentation, context
    ) -> None:
        adapter = make_adapter([text_reply("nothing useful")])
        orchestrator = InvestigationOrchestrator(adapter, dispatcher, settings=settings)

        assert orchestrator.scan(segmentation, context) == []
        assert len(adapter.calls) == 2
        assert orchestrator.stage is InvestigationStage.AWAITING_CONFIRMATION

    def test_empty_segmentation_skips_endpoint(self, make_adapter, text_reply, dispatcher, settings, context) -> None:
        adapter = make_adapter([text_reply(_scan_json("A"))])
        empty = aggregate([], None, "dimension1", "dimension2")
        assert InvestigationOrchestrator(adapter, dispatcher, settings=settings).scan(empty, context) == []
        assert adapter.calls == []


class TestConfirmation:
    @pytest.fixture()
    def scanned(self, make_adapter, text_reply, dispatcher, settings, segmentation, context):
        orchestrator = InvestigationOrchestrator(
            make_adapter([text_reply(_scan_json("A", "B"))]), dispatcher, settings=settings
        )
        orchestrator.scan(segmentation, context)
        return orchestrator

    def test_confirm_before_scan_is_rejected(self, make_adapter, dispatcher, settings) -> None:
        orchestrator = InvestigationOrchestrator(make_adapter([]), dispatcher, settings=settings)
        with pytest.raises(InvestigationStateError):
            orchestrator.confirm()

    def test_edit_then_confirm(self, scanned) -> None:
        scanned.remove_finding(0)
        scanned.add_finding(Finding(title="manual", phenomenon="added by analyst", cause="drop me"))
        confirmed = scanned.confirm()

        assert [f.title for f in confirmed] == ["B", "manual"]
        assert confirmed[1].cause is None

    def test_remove_bad_index(self, scanned) -> None:
        with pytest.raises(IndexError):
            scanned.remove_finding(5)

    def test_edits_rejected_after_confirm(self, scanned) -> None:
        scanned.confirm()
        with pytest.raises(InvestigationStateError):
            scanned.add_finding(Finding(title="late", phenomenon="too late"))

    def test_empty_confirmation_rejected(self, scanned) -> None:
        with pytest.raises(InvestigationStateError):
            scanned.confirm([])

    def test_deep_dive_limit_applies_to_confirmation(
        self, make_adapter, text_reply, dispatcher, segmentation, context
    ) -> None:
        settings = InvestigationSettings(max_turns=2, max_findings=3, max_deep_dive_findings=2)
        orchestrator = InvestigationOrchestrator(
            make_adapter([text_reply(_scan_json("A", "B", "C"))]), dispatcher, settings=settings
        )
        pending = orchestrator.scan(segmentation, context)

        with pytest.raises(InvestigationStateError, match="limit of 2"):
            orchestrator.confirm()
        with pytest.raises(InvestigationStateError, match="limit of 2"):
            orchestrator.confirm(pending)

        orchestrator.remove_finding(2)
        with pytest.raises(InvestigationStateError, match="limit of 2"):
            orchestrator.add_finding(Finding(title="manual", phenomenon="one too many"))

        assert [f.title for f in orchestrator.confirm()] == ["A", "B"]

    def test_deep_dive_requires_confirmation(self, scanned) -> None:
        with pytest.raises(InvestigationStateError):
            scanned.deep_dive()


class TestDeepDive:
    def test_one_result_per_finding_in_order(
        self, make_adapter, text_reply, dispatcher, settings, findings
    ) -> None:
        adapter = make_adapter(
            [
                text_reply(_cause_json("cause 0")),
                LLMTransportError("flaky"),
                text_reply(_cause_json("cause 2")),
            ]
        )
        progress = []
        orchestrator = InvestigationOrchestrator(adapter, dispatcher, settings=settings)

        results = orchestrator.deep_dive(findings, on_progress=progress.append)

        assert [f.title for f in results] == ["gap 0", "gap 1", "gap 2"]
        assert [f.cause for f in results] == ["cause 0", ANALYSIS_FAILED_MARKER, "cause 2"]
        assert [p.failed for p in progress] == [False, True, False]
        assert orchestrator.stage is InvestigationStage.SUMMARIZED

    def test_sessions_do_not_share_transcripts(
        self, make_adapter, tool_reply, text_reply, dispatcher, settings, findings
    ) -> None:
        adapter = make_adapter(
            [
                tool_reply((QUERY_GROUPED_TOTALS, '{"dimension": "dosage"}')),
                text_reply(_cause_json("first")),
                text_reply(_cause_json("second")),
            ]
        )
        InvestigationOrchestrator(adapter, dispatcher, settings=settings).deep_dive(findings[:2])

        second_session_opening = adapter.calls[2]["messages"]
        assert len(second_session_opening) == 2
        assert "gap 1" in second_session_opening[1]["content"]

    def test_budget_exhaustion_gives_marker(self, make_adapter, tool_reply, dispatcher, settings, findings) -> None:
        adapter = make_adapter([tool_reply((QUERY_GROUPED_TOTALS, '{"dimension": "brand"}'))])
        results = InvestigationOrchestrator(adapter, dispatcher, settings=settings).deep_dive(findings[:1])

        assert results[0].cause == ANALYSIS_FAILED_MARKER
        assert len(adapter.calls) == settings.max_turns

    def test_oversized_batch_is_rejected(self, make_adapter, text_reply, dispatcher, findings) -> None:
        settings = InvestigationSettings(max_turns=2, max_deep_dive_findings=2)
        adapter = make_adapter([text_reply(_cause_json("ok"))])
        orchestrator = InvestigationOrchestrator(adapter, dispatcher, settings=settings)

        with pytest.raises(InvestigationStateError, match="limit of 2"):
            orchestrator.deep_dive(findings)

        assert adapter.calls == []
        assert orchestrator.stage is InvestigationStage.IDLE
        assert len(orchestrator.deep_dive(findings[:2])) == 2

    def test_progress_callback_failure_resets_stage(
        self, make_adapter, text_reply, dispatcher, settings, findings
    ) -> None:
        adapter = make_adapter([text_reply(_cause_json("ok"))])
        orchestrator = InvestigationOrchestrator(adapter, dispatcher, settings=settings)

        def broken_listener(progress) -> None:
            raise RuntimeError("listener down")

        with pytest.raises(RuntimeError, match="listener down"):
            orchestrator.deep_dive(findings, on_progress=broken_listener)
        assert orchestrator.stage is InvestigationStage.IDLE

        results = orchestrator.deep_dive(findings)
        assert [f.cause for f in results] == ["ok", "ok", "ok"]
        assert orchestrator.stage is InvestigationStage.SUMMARIZED

    def test_failure_after_confirmation_keeps_confirmed_findings(
        self, make_adapter, text_reply, dispatcher, settings, segmentation, context
    ) -> None:
        adapter = make_adapter([text_reply(_scan_json("A", "B")), text_reply(_cause_json("ok"))])
        orchestrator = InvestigationOrchestrator(adapter, dispatcher, settings=settings)
        orchestrator.scan(segmentation, context)
        orchestrator.confirm()

        def broken_listener(progress) -> None:
            raise RuntimeError("listener down")

        with pytest.raises(RuntimeError):
            orchestrator.deep_dive(on_progress=broken_listener)
        assert orchestrator.stage is InvestigationStage.AWAITING_CONFIRMATION

        assert [f.title for f in orchestrator.deep_dive()] == ["A", "B"]

    def test_cancel_leaves_remaining_without_cause(
        self, make_adapter, text_reply, dispatcher, settings, findings
    ) -> None:
        cancel = threading.Event()
        adapter = make_adapter([text_reply(_cause_json("done"))])
        orchestrator = InvestigationOrchestrator(adapter, dispatcher, settings=settings)

        def stop_after_first(progress) -> None:
            cancel.set()

        results = orchestrator.deep_dive(findings, on_progress=stop_after_first, cancel_event=cancel)

        assert [f.cause for f in results] == ["done", None, None]
        assert orchestrator.stage is InvestigationStage.CANCELLED
        assert len(adapter.calls) == 1

    def test_mock_adapter_gives_placeholder_causes(self, dispatcher, settings, findings) -> None:
        results = InvestigationOrchestrator(MockLLMAdapter(), dispatcher, settings=settings).deep_dive(findings[:2])
        assert all(f.cause.startswith("Placeholder cause") for f in results)
