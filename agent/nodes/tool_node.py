"""Tool node: executes a turn's tool calls against the query dispatcher.

Calls run sequentially in the order the model sent them. Each result is
appended as a tool message, followed by one user message that restates the
results (truncated) and asks the model to continue.
"""

from __future__ import annotations

import logging
from typing import Callable

from agent.state import DeepDiveState
from app.services.query_dispatcher import QueryDispatcher
from llm_synthesis.prompt_builder import InvestigationPromptBuilder

logger = logging.getLogger(__name__)


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "\n... (truncated)"


def make_tool_node(
    dispatcher: QueryDispatcher,
    *,
    prompt_builder: InvestigationPromptBuilder,
    summary_chars: int,
) -> Callable[[DeepDiveState], dict]:
    """Build the tool node bound to a dispatcher."""

    def tool_node(state: DeepDiveState) -> dict:
        messages = list(state["messages"])
        summaries: list[str] = []

        for call in state["pending_tool_calls"]:
            result = dispatcher.execute(call.name, call.arguments)
            logger.debug(
                "Tool call name=%s status=%s matched_rows=%d",
                call.name,
                result.status,
                result.matched_rows,
            )
            messages.append(
                {
                    "role": "tool",
                    "tool_call_id": call.id,
                    "name": call.name,
                    "content": result.text,
                }
            )
            summaries.append(result.text)

        followup = prompt_builder.build_tool_followup(
            state["finding"],
            _truncate("\n\n".join(summaries), summary_chars),
        )
        messages.append({"role": "user", "content": followup})
        return {"messages": messages, "pending_tool_calls": []}

    return tool_node
