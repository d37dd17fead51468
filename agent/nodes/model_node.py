"""Model node: one completion round-trip per turn.

Enforces the turn budget before calling the endpoint, so a session makes at
most ``max_turns`` completion calls no matter how many tools it requests.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

from agent.state import DeepDiveState
from app.failure_codes import ENDPOINT_UNAVAILABLE, ITERATION_BUDGET_EXCEEDED
from app.services.query_dispatcher import TOOL_DEFINITIONS
from llm_synthesis.adapter import BaseLLMAdapter, LLMTransportError

logger = logging.getLogger(__name__)


def make_model_node(
    adapter: BaseLLMAdapter,
    *,
    max_turns: int,
    cancel_event: threading.Event | None = None,
) -> Callable[[DeepDiveState], dict]:
    """Build the model node bound to an adapter and a turn budget."""

    def model_node(state: DeepDiveState) -> dict:
        if cancel_event is not None and cancel_event.is_set():
            logger.info("Deep-dive cancelled before turn %d", state["turns"] + 1)
            return {"cancelled": True}

        if state["turns"] >= max_turns:
            logger.warning(
                "Deep-dive turn budget exhausted turns=%d finding=%r",
                state["turns"],
                state["finding"].title,
            )
            return {"failure_code": ITERATION_BUDGET_EXCEEDED}

        turn = state["turns"] + 1
        try:
            reply = adapter.complete(state["messages"], tools=TOOL_DEFINITIONS)
        except LLMTransportError as exc:
            logger.warning(
                "Deep-dive endpoint failure turn=%d finding=%r error=%s",
                turn,
                state["finding"].title,
                exc,
            )
            return {"turns": turn, "failure_code": ENDPOINT_UNAVAILABLE}

        logger.debug(
            "Deep-dive turn=%d tool_calls=%d has_text=%s",
            turn,
            len(reply.tool_calls),
            bool(reply.content),
        )
        return {
            "turns": turn,
            "messages": [*state["messages"], reply.to_message()],
            "pending_tool_calls": list(reply.tool_calls),
            "last_reply": reply.content,
        }

    return model_node


def route_after_model(state: DeepDiveState) -> str:
    """Conditional edge: stop, run tools, or extract the answer."""
    if state.get("cancelled") or state.get("failure_code"):
        return "end"
    if state.get("pending_tool_calls"):
        return "tools"
    return "extract"
