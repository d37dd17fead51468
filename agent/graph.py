"""
agent/graph.py

LangGraph workflow for a single finding's deep-dive session.

    START → model ─┬─ tools ──→ model
                   ├─ extract ─┬─ model   (one reminder when no JSON was sent)
                   │           └─ END
                   └─ END      (budget exhausted, endpoint failure, cancelled)
"""

from __future__ import annotations

import logging
import threading

from langgraph.graph import END, START, StateGraph

from agent.nodes.extraction_node import make_extraction_node, route_after_extraction
from agent.nodes.model_node import make_model_node, route_after_model
from agent.nodes.tool_node import make_tool_node
from agent.state import DeepDiveState
from app.services.query_dispatcher import QueryDispatcher
from llm_synthesis.adapter import BaseLLMAdapter
from llm_synthesis.prompt_builder import InvestigationPromptBuilder

logger = logging.getLogger(__name__)


def recursion_limit_for(max_turns: int) -> int:
    """
    Node-step limit for a session: each turn runs the model node plus one
    tool or extraction node, and the final budget check adds one more step.
    """
    return 2 * max_turns + 5


def build_deep_dive_graph(
    adapter: BaseLLMAdapter,
    dispatcher: QueryDispatcher,
    *,
    max_turns: int = 15,
    tool_summary_chars: int = 2000,
    prompt_builder: InvestigationPromptBuilder | None = None,
    cancel_event: threading.Event | None = None,
):
    """
    Build and compile the deep-dive LangGraph workflow.
    """
    builder = prompt_builder or InvestigationPromptBuilder()
    graph = StateGraph(DeepDiveState)

    graph.add_node(
        "model",
        make_model_node(adapter, max_turns=max_turns, cancel_event=cancel_event),
    )
    graph.add_node(
        "tools",
        make_tool_node(dispatcher, prompt_builder=builder, summary_chars=tool_summary_chars),
    )
    graph.add_node(
        "extract",
        make_extraction_node(prompt_builder=builder, max_turns=max_turns),
    )

    graph.add_edge(START, "model")
    graph.add_conditional_edges(
        "model",
        route_after_model,
        {"tools": "tools", "extract": "extract", "end": END},
    )
    graph.add_edge("tools", "model")
    graph.add_conditional_edges(
        "extract",
        route_after_extraction,
        {"model": "model", "end": END},
    )

    return graph.compile()
