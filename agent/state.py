"""
agent/state.py

LangGraph state schema for one finding's deep-dive session.
"""

from typing import List, Optional
from typing_extensions import TypedDict

from llm_synthesis.schema import Finding, ToolCall


class DeepDiveState(TypedDict):
    """State carried between the model, tool and extraction nodes.

    One state object per finding; sessions never share a transcript.
    """

    finding: Finding
    messages: List[dict]
    turns: int
    pending_tool_calls: List[ToolCall]
    last_reply: Optional[str]
    reminded: bool
    cause: Optional[str]
    failure_code: Optional[str]
    cancelled: bool


def initial_state(finding: Finding, messages: List[dict]) -> DeepDiveState:
    return {
        "finding": finding,
        "messages": list(messages),
        "turns": 0,
        "pending_tool_calls": [],
        "last_reply": None,
        "reminded": False,
        "cause": None,
        "failure_code": None,
        "cancelled": False,
    }
