"""Extraction node: turns the model's final text into a cause.

A reply with no JSON candidate gets one reminder turn while budget remains;
any other extraction or validation failure ends the session with
``extraction_failed``.
"""

from __future__ import annotations

import logging
from typing import Callable

from agent.state import DeepDiveState
from app.failure_codes import EXTRACTION_FAILED
from llm_synthesis.prompt_builder import InvestigationPromptBuilder
from llm_synthesis.validator import LLMOutputValidationError, validate_cause_output

logger = logging.getLogger(__name__)


def make_extraction_node(
    *,
    prompt_builder: InvestigationPromptBuilder,
    max_turns: int,
) -> Callable[[DeepDiveState], dict]:
    """Build the extraction node."""

    def extraction_node(state: DeepDiveState) -> dict:
        try:
            output = validate_cause_output(state["last_reply"])
        except LLMOutputValidationError as exc:
            can_remind = (
                exc.stage == "extraction"
                and not state["reminded"]
                and state["turns"] < max_turns
            )
            if can_remind:
                logger.info("No JSON in reply; sending reminder turn=%d", state["turns"])
                return {
                    "reminded": True,
                    "messages": [
                        *state["messages"],
                        {"role": "user", "content": prompt_builder.build_json_reminder()},
                    ],
                }
            logger.warning(
                "Deep-dive extraction failed finding=%r stage=%s errors=%s",
                state["finding"].title,
                exc.stage,
                "; ".join(exc.errors),
            )
            return {"failure_code": EXTRACTION_FAILED}

        return {"cause": output.statement}

    return extraction_node


def route_after_extraction(state: DeepDiveState) -> str:
    if state.get("cause") is not None or state.get("failure_code"):
        return "end"
    return "model"
