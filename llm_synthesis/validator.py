"""Validation layer for raw completion output.

Locates the JSON object in a model reply and validates it against the
scan or deep-dive schema.
"""

import json
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from llm_synthesis.schema import CauseOutput, ScanOutput

_JSON_FENCE = re.compile(r"```json\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)
_ANY_FENCE = re.compile(r"```[A-Za-z0-9_-]*\s*(.*?)\s*```", re.DOTALL)

# Keys accepted as the finding list; the second is the legacy name.
_FINDING_LIST_KEYS = ("findings", "scissorsGaps")


class LLMOutputValidationError(Exception):
    """Raised when model output fails extraction, parsing or schema validation.

    Attributes:
        stage: Which validation step failed ("extraction", "json_parse" or "schema").
        errors: List of human-readable error descriptions.
        raw_response: The original string that failed validation.
    """

    def __init__(
        self,
        stage: str,
        errors: List[str],
        raw_response: str,
    ) -> None:
        self.stage = stage
        self.errors = errors
        self.raw_response = raw_response
        message = (
            f"LLM output validation failed at stage '{stage}': "
            + "; ".join(errors)
        )
        super().__init__(message)


def extract_json_candidate(text: Optional[str]) -> Optional[str]:
    """Return the most likely JSON object text in a reply, or ``None``.

    Tried in order: a ```json fenced block, any fenced block whose body
    starts with ``{``, then the span from the first ``{`` to the last ``}``.
    """
    if not text:
        return None

    fenced = _JSON_FENCE.search(text)
    if fenced:
        return fenced.group(1).strip()

    for block in _ANY_FENCE.finditer(text):
        body = block.group(1).strip()
        if body.startswith("{"):
            return body

    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        return text[start : end + 1]
    return None


def parse_json_object(raw_response: Optional[str]) -> Dict[str, Any]:
    """Extract and parse the JSON object from a reply.

    Raises:
        LLMOutputValidationError: stage "extraction" when no candidate exists,
            "json_parse" when it does not parse, "schema" when it is not an object.
    """
    raw = raw_response or ""
    candidate = extract_json_candidate(raw)
    if candidate is None:
        raise LLMOutputValidationError(
            stage="extraction",
            errors=["no JSON object found in response"],
            raw_response=raw,
        )

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as exc:
        data = _decode_leading_object(candidate)
        if data is None:
            raise LLMOutputValidationError(
                stage="json_parse",
                errors=[str(exc)],
                raw_response=raw,
            ) from exc

    if not isinstance(data, dict):
        raise LLMOutputValidationError(
            stage="schema",
            errors=["top-level JSON must be an object"],
            raw_response=raw,
        )
    return data


def _decode_leading_object(text: str) -> Optional[Any]:
    """Decode the first complete JSON value starting at the first ``{``.

    Handles replies such as ``{...} and then {...}`` where the greedy span
    covers more than one object.
    """
    start = text.find("{")
    if start == -1:
        return None
    try:
        value, _ = json.JSONDecoder().raw_decode(text, start)
    except json.JSONDecodeError:
        return None
    return value


def _schema_errors(exc: ValidationError) -> List[str]:
    return [
        f"{'.'.join(str(loc) for loc in e['loc'])}: {e['msg']}"
        for e in exc.errors()
    ]


def validate_scan_output(raw_response: Optional[str]) -> ScanOutput:
    """Parse and validate a scan reply.

    Steps:
        1. Extract and parse the JSON object.
        2. Locate the finding list (``findings`` or ``scissorsGaps``).
        3. Project each item onto title and phenomenon; causes are dropped.
        4. Validate against ScanOutput.

    Raises:
        LLMOutputValidationError: If any step fails.
    """
    data = parse_json_object(raw_response)

    items = None
    for key in _FINDING_LIST_KEYS:
        if key in data:
            items = data[key]
            break
    if not isinstance(items, list):
        raise LLMOutputValidationError(
            stage="schema",
            errors=["response must contain a 'findings' list"],
            raw_response=raw_response or "",
        )

    projected = [
        {"title": item.get("title"), "phenomenon": item.get("phenomenon")}
        if isinstance(item, dict)
        else item
        for item in items
    ]
    try:
        return ScanOutput.model_validate({"findings": projected})
    except ValidationError as exc:
        raise LLMOutputValidationError(
            stage="schema",
            errors=_schema_errors(exc),
            raw_response=raw_response or "",
        ) from exc


def validate_cause_output(raw_response: Optional[str]) -> CauseOutput:
    """Parse and validate a deep-dive reply.

    Accepts ``{"causes": [{"problem", "statement"}]}`` (first entry used)
    or a bare ``{"statement": ...}`` object.

    Raises:
        LLMOutputValidationError: If any step fails.
    """
    data = parse_json_object(raw_response)

    entry: Any = data
    causes = data.get("causes")
    if isinstance(causes, list) and causes:
        entry = causes[0]
    if not isinstance(entry, dict):
        raise LLMOutputValidationError(
            stage="schema",
            errors=["cause entry must be an object"],
            raw_response=raw_response or "",
        )

    problem = entry.get("problem")
    try:
        return CauseOutput.model_validate(
            {
                "problem": problem if isinstance(problem, str) else None,
                "statement": entry.get("statement"),
            }
        )
    except ValidationError as exc:
        raise LLMOutputValidationError(
            stage="schema",
            errors=_schema_errors(exc),
            raw_response=raw_response or "",
        ) from exc
