"""Structured contracts exchanged with the completion endpoint."""

from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class Finding(BaseModel):
    """One anomalous competitive gap ("scissors gap").

    Created by the scan without a cause; a cause is attached only by a
    deep-dive (a real explanation or the failure marker).
    """

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        str_strip_whitespace=True,
    )

    title: str = Field(min_length=1)
    phenomenon: str = Field(min_length=1)
    cause: Optional[str] = None

    def with_cause(self, cause: Optional[str]) -> "Finding":
        return self.model_copy(update={"cause": cause})

    def without_cause(self) -> "Finding":
        return self.model_copy(update={"cause": None})


class ScanOutput(BaseModel):
    """Validated scan response: findings only, no causes."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    findings: List[Finding]


class CauseOutput(BaseModel):
    """Validated deep-dive response for a single finding."""

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        str_strip_whitespace=True,
    )

    problem: Optional[str] = None
    statement: str = Field(min_length=1)


class ToolCall(BaseModel):
    """A tool invocation requested by the model.

    ``arguments`` is the raw JSON text sent by the endpoint; it is parsed
    only when the call is executed.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments: str = ""


class CompletionMessage(BaseModel):
    """One assistant reply: free text, tool invocations, or both."""

    model_config = ConfigDict(frozen=True)

    content: Optional[str] = None
    tool_calls: Tuple[ToolCall, ...] = ()

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_message(self) -> dict:
        """Render as an OpenAI-style assistant message for the transcript."""
        message: dict = {"role": "assistant", "content": self.content or ""}
        if self.tool_calls:
            message["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.arguments},
                }
                for call in self.tool_calls
            ]
        return message
