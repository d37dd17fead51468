"""
agent/orchestrator.py

Investigation state machine.

    idle → scanning → deduplicating → awaiting_confirmation → deep_diving → summarized
                                                                        └→ cancelled

Failures inside the scan degrade to a placeholder (endpoint unavailable) or
to no findings (unusable output). Failures inside a deep-dive are contained
to that finding, which gets ``ANALYSIS_FAILED_MARKER`` as its cause; the
batch always returns one result per finding, in input order.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

from langgraph.errors import GraphRecursionError

from agent.graph import build_deep_dive_graph, recursion_limit_for
from agent.state import initial_state
from app.config import InvestigationSettings, get_investigation_settings
from app.domain.market_data import Segmentation
from app.failure_codes import ANALYSIS_FAILED_MARKER, ENDPOINT_UNAVAILABLE
from app.services.query_dispatcher import QueryDispatcher
from llm_synthesis.adapter import PLACEHOLDER_FINDING, BaseLLMAdapter, LLMTransportError
from llm_synthesis.prompt_builder import InvestigationPromptBuilder
from llm_synthesis.retry import LLMRetryExhaustedError, generate_with_retry
from llm_synthesis.schema import Finding
from llm_synthesis.validator import LLMOutputValidationError
from segmentation.opportunities import find_opportunities

logger = logging.getLogger(__name__)


class InvestigationStage(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    DEDUPLICATING = "deduplicating"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    DEEP_DIVING = "deep_diving"
    SUMMARIZED = "summarized"
    CANCELLED = "cancelled"


_BUSY_STAGES = frozenset(
    {InvestigationStage.SCANNING, InvestigationStage.DEDUPLICATING, InvestigationStage.DEEP_DIVING}
)


class InvestigationStateError(Exception):
    """Raised when an operation is not allowed in the current stage."""

    def __init__(self, stage: InvestigationStage, message: str) -> None:
        super().__init__(message)
        self.stage = stage
        self.message = message


@dataclass(frozen=True)
class InvestigationContext:
    """
    What the scan needs to know besides the segmentation itself.
    """

    brand: str
    x_label: str
    y_label: str
    record_count: int = 0
    brand_totals: tuple[tuple[str, float], ...] = ()
    user_feedback: Optional[str] = None


@dataclass(frozen=True)
class DeepDiveProgress:
    """
    Reported once per finding after its session ends.
    """

    index: int
    total: int
    finding: Finding
    failed: bool


ProgressCallback = Callable[[DeepDiveProgress], None]


def placeholder_finding() -> Finding:
    return Finding.model_validate(PLACEHOLDER_FINDING)


def _dedupe_key(finding: Finding) -> tuple[str, str]:
    return (
        " ".join(finding.title.casefold().split()),
        " ".join(finding.phenomenon.casefold().split()),
    )


class InvestigationOrchestrator:
    """
    Drives one investigation through scan, confirmation and deep-dive.

    Parameters
    ----------
    adapter:
        Completion endpoint adapter; the turn executor for every step.
    dispatcher:
        Query dispatcher consulted by deep-dive tool calls.
    settings:
        Scan and deep-dive bounds; defaults to environment settings.
    prompt_builder:
        Prompt builder; injectable for tests.
    """

    def __init__(
        self,
        adapter: BaseLLMAdapter,
        dispatcher: QueryDispatcher,
        *,
        settings: InvestigationSettings | None = None,
        prompt_builder: InvestigationPromptBuilder | None = None,
    ) -> None:
        self._adapter = adapter
        self._dispatcher = dispatcher
        self._settings = settings or get_investigation_settings()
        self._prompt_builder = prompt_builder or InvestigationPromptBuilder()
        self._lock = threading.Lock()
        self._stage = InvestigationStage.IDLE
        self._pending: list[Finding] = []
        self._confirmed: list[Finding] | None = None
        self._results: list[Finding] = []

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def stage(self) -> InvestigationStage:
        return self._stage

    @property
    def pending_findings(self) -> list[Finding]:
        return list(self._pending)

    @property
    def confirmed_findings(self) -> list[Finding]:
        return list(self._confirmed or [])

    @property
    def results(self) -> list[Finding]:
        return list(self._results)

    # ------------------------------------------------------------------
    # Scan
    # ------------------------------------------------------------------

    def scan(
        self,
        segmentation: Segmentation,
        context: InvestigationContext,
        max_findings: int | None = None,
    ) -> list[Finding]:
        """
        Ask the endpoint for candidate findings in the segmentation.

        Returns at most ``max_findings`` findings without causes and moves
        the investigation to ``awaiting_confirmation``.
        """
        limit = max_findings if max_findings is not None else self._settings.max_findings
        self._enter(InvestigationStage.SCANNING, not_in=_BUSY_STAGES, action="scan")
        try:
            candidates = self._scan_candidates(segmentation, context, limit)
            self._stage = InvestigationStage.DEDUPLICATING
            findings = self._deduplicate(candidates)[: max(0, limit)]
        except BaseException:
            self._stage = InvestigationStage.IDLE
            raise

        self._pending = findings
        self._confirmed = None
        self._results = []
        self._stage = InvestigationStage.AWAITING_CONFIRMATION
        logger.info("Scan produced %d finding(s) for brand=%r", len(findings), context.brand)
        return list(findings)

    def _scan_candidates(
        self,
        segmentation: Segmentation,
        context: InvestigationContext,
        limit: int,
    ) -> list[Finding]:
        if not self._adapter.is_live:
            logger.warning("No live completion endpoint; returning placeholder finding")
            return [placeholder_finding()]

        if segmentation.is_empty:
            logger.warning("Scan skipped: segmentation is empty")
            return []

        system, prompt = self._prompt_builder.build_scan_prompt(
            segmentation,
            brand=context.brand,
            x_label=context.x_label,
            y_label=context.y_label,
            record_count=context.record_count,
            brand_totals=context.brand_totals,
            opportunities=find_opportunities(segmentation),
            max_findings=limit,
            user_feedback=context.user_feedback,
        )
        try:
            output = generate_with_retry(
                self._adapter,
                prompt,
                system=system,
                max_retries=self._settings.scan_retries,
            )
        except LLMTransportError as exc:
            logger.warning(
                "Scan endpoint unavailable; returning placeholder finding: %s",
                exc,
                extra={"failure_code": ENDPOINT_UNAVAILABLE},
            )
            return [placeholder_finding()]
        except (LLMRetryExhaustedError, LLMOutputValidationError) as exc:
            logger.warning("Scan output unusable; no findings produced: %s", exc)
            return []

        return [finding.without_cause() for finding in output.findings]

    @staticmethod
    def _deduplicate(findings: Sequence[Finding]) -> list[Finding]:
        """
        Drop verbatim repeats. Semantic merging is requested of the endpoint
        in the scan prompt; this only guards against literal duplicates.
        """
        seen: set[tuple[str, str]] = set()
        unique: list[Finding] = []
        for finding in findings:
            key = _dedupe_key(finding)
            if key in seen:
                continue
            seen.add(key)
            unique.append(finding)
        return unique

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    def add_finding(self, finding: Finding) -> list[Finding]:
        self._require_editable("add a finding")
        self._check_batch_size(len(self._pending) + 1, action="add a finding")
        self._pending.append(finding.without_cause())
        return list(self._pending)

    def remove_finding(self, index: int) -> list[Finding]:
        self._require_editable("remove a finding")
        if not 0 <= index < len(self._pending):
            raise IndexError(f"No pending finding at index {index}.")
        del self._pending[index]
        return list(self._pending)

    def confirm(self, findings: Sequence[Finding] | None = None) -> list[Finding]:
        """
        Store the human-approved findings; ``None`` confirms the pending list.
        """
        if self._stage is not InvestigationStage.AWAITING_CONFIRMATION:
            raise InvestigationStateError(
                self._stage,
                f"Cannot confirm findings in stage '{self._stage.value}'; run a scan first.",
            )
        chosen = list(self._pending if findings is None else findings)
        if not chosen:
            raise InvestigationStateError(self._stage, "At least one finding must be confirmed.")
        self._check_batch_size(len(chosen), action="confirm findings")

        self._confirmed = [finding.without_cause() for finding in chosen]
        logger.info("Confirmed %d finding(s)", len(self._confirmed))
        return list(self._confirmed)

    def _require_editable(self, action: str) -> None:
        if self._stage is not InvestigationStage.AWAITING_CONFIRMATION:
            raise InvestigationStateError(
                self._stage,
                f"Cannot {action} in stage '{self._stage.value}'.",
            )
        if self._confirmed is not None:
            raise InvestigationStateError(
                self._stage,
                f"Cannot {action} after the findings were confirmed.",
            )

    def _check_batch_size(self, size: int, *, action: str) -> None:
        cap = self._settings.max_deep_dive_findings
        if size > cap:
            raise InvestigationStateError(
                self._stage,
                f"Cannot {action}: {size} finding(s) exceed the deep-dive limit of {cap}.",
            )

    # ------------------------------------------------------------------
    # Deep-dive
    # ------------------------------------------------------------------

    def deep_dive(
        self,
        findings: Sequence[Finding] | None = None,
        user_feedback: str | None = None,
        on_progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> list[Finding]:
        """
        Explain each finding in its own bounded tool-calling session.

        Uses the confirmed findings unless ``findings`` is given. Returns one
        finding per input, in order, each carrying its cause or the failure
        marker. After cancellation, findings whose session never started are
        returned without a cause.
        """
        if findings is None:
            if self._confirmed is None:
                raise InvestigationStateError(
                    self._stage,
                    "No confirmed findings; confirm findings before the deep-dive.",
                )
            batch = list(self._confirmed)
        else:
            batch = [finding.without_cause() for finding in findings]
        if not batch:
            raise InvestigationStateError(self._stage, "No findings to deep-dive.")
        self._check_batch_size(len(batch), action="deep-dive")

        self._enter(InvestigationStage.DEEP_DIVING, not_in=_BUSY_STAGES, action="deep-dive")
        try:
            results, cancelled = self._deep_dive_batch(batch, user_feedback, on_progress, cancel_event)
        except BaseException:
            self._stage = (
                InvestigationStage.AWAITING_CONFIRMATION
                if self._confirmed is not None or self._pending
                else InvestigationStage.IDLE
            )
            raise

        self._results = results
        self._stage = InvestigationStage.CANCELLED if cancelled else InvestigationStage.SUMMARIZED
        failed = sum(1 for finding in results if finding.cause == ANALYSIS_FAILED_MARKER)
        logger.info(
            "Deep-dive finished stage=%s findings=%d failed=%d",
            self._stage.value,
            len(results),
            failed,
        )
        return list(results)

    def _deep_dive_batch(
        self,
        batch: list[Finding],
        user_feedback: str | None,
        on_progress: ProgressCallback | None,
        cancel_event: threading.Event | None,
    ) -> tuple[list[Finding], bool]:
        graph = build_deep_dive_graph(
            self._adapter,
            self._dispatcher,
            max_turns=self._settings.max_turns,
            tool_summary_chars=self._settings.tool_summary_chars,
            prompt_builder=self._prompt_builder,
            cancel_event=cancel_event,
        )

        results: list[Finding] = []
        cancelled = False
        for index, finding in enumerate(batch):
            if cancelled or (cancel_event is not None and cancel_event.is_set()):
                cancelled = True
                results.append(finding)
                continue

            logger.info("Deep-dive %d/%d: %s", index + 1, len(batch), finding.title)
            cause, session_cancelled = self._run_session(graph, finding, user_feedback)
            cancelled = session_cancelled
            result = finding.with_cause(cause)
            results.append(result)

            if on_progress is not None and not session_cancelled:
                on_progress(
                    DeepDiveProgress(
                        index=index,
                        total=len(batch),
                        finding=result,
                        failed=cause == ANALYSIS_FAILED_MARKER,
                    )
                )
        return results, cancelled

    def _run_session(
        self,
        graph,
        finding: Finding,
        user_feedback: str | None,
    ) -> tuple[str | None, bool]:
        """
        Run one finding's session; returns ``(cause, cancelled)``.
        """
        messages = self._prompt_builder.build_deep_dive_messages(
            finding,
            brand=self._dispatcher.focus_brand,
            user_feedback=user_feedback,
        )
        try:
            final_state = graph.invoke(
                initial_state(finding, messages),
                config={"recursion_limit": recursion_limit_for(self._settings.max_turns)},
            )
        except GraphRecursionError:
            logger.warning("Deep-dive step limit reached finding=%r", finding.title)
            return ANALYSIS_FAILED_MARKER, False
        except Exception:
            logger.exception("Deep-dive session crashed finding=%r", finding.title)
            return ANALYSIS_FAILED_MARKER, False

        if final_state.get("cancelled"):
            return None, True
        cause = final_state.get("cause")
        if cause:
            return cause, False

        logger.warning(
            "Deep-dive produced no cause finding=%r failure_code=%s",
            finding.title,
            final_state.get("failure_code"),
        )
        return ANALYSIS_FAILED_MARKER, False

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _enter(
        self,
        stage: InvestigationStage,
        *,
        not_in: frozenset,
        action: str,
    ) -> None:
        with self._lock:
            if self._stage in not_in:
                raise InvestigationStateError(
                    self._stage,
                    f"Cannot {action} while the investigation is {self._stage.value}.",
                )
            self._stage = stage
