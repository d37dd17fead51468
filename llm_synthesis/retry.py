"""Retry wrapper for single-turn requests whose reply must be JSON.

A reply that fails extraction, parsing or schema validation is retried with
a correction note listing what was wrong. Transport errors are not retried.
"""

import logging
from typing import Callable, List, Optional, TypeVar

from llm_synthesis.adapter import BaseLLMAdapter
from llm_synthesis.validator import LLMOutputValidationError, validate_scan_output

logger = logging.getLogger(__name__)

_RETRYABLE_STAGES = frozenset({"extraction", "json_parse", "schema"})
_MAX_NOTE_ERRORS = 5

T = TypeVar("T")


class LLMRetryExhaustedError(Exception):
    """Every attempt produced an unusable reply.

    Attributes:
        attempts: Number of requests sent.
        last_error: Validation error of the final attempt.
        history: Validation errors of all attempts, oldest first.
    """

    def __init__(
        self,
        attempts: int,
        last_error: LLMOutputValidationError,
        history: List[LLMOutputValidationError],
    ) -> None:
        self.attempts = attempts
        self.last_error = last_error
        self.history = history
        super().__init__(
            f"No valid reply after {attempts} attempt(s); "
            f"last failure at stage '{last_error.stage}'"
        )


def correction_note(error: LLMOutputValidationError) -> str:
    """Text appended to the prompt after a rejected reply."""
    details = "\n".join(f"- {item}" for item in error.errors[:_MAX_NOTE_ERRORS])
    return (
        "\n\n## Previous reply rejected\n"
        f"Your previous reply could not be used ({error.stage}):\n"
        f"{details}\n"
        "Reply again with only the JSON object in the requested format."
    )


def generate_with_retry(
    adapter: BaseLLMAdapter,
    prompt: str,
    system: Optional[str] = None,
    max_retries: int = 2,
    validate: Callable[[str], T] = validate_scan_output,
) -> T:
    """Send ``prompt`` and validate the reply, retrying on format errors.

    Args:
        adapter: Completion adapter.
        prompt: User prompt.
        system: Optional system instruction.
        max_retries: Extra attempts after the first; total is ``1 + max_retries``.
        validate: Reply parser; defaults to the scan schema.

    Raises:
        LLMTransportError: From the adapter, on the first occurrence.
        LLMOutputValidationError: For a non-retryable validation stage.
        LLMRetryExhaustedError: When every attempt was rejected.
    """
    history: List[LLMOutputValidationError] = []
    total_attempts = 1 + max(0, max_retries)
    current_prompt = prompt

    for attempt in range(1, total_attempts + 1):
        raw = adapter.generate(current_prompt, system=system)
        try:
            result = validate(raw)
        except LLMOutputValidationError as exc:
            if exc.stage not in _RETRYABLE_STAGES:
                raise
            history.append(exc)
            logger.warning(
                "Reply rejected attempt=%d/%d stage=%s errors=%s",
                attempt,
                total_attempts,
                exc.stage,
                "; ".join(exc.errors),
            )
            current_prompt = prompt + correction_note(exc)
            continue

        if attempt > 1:
            logger.info("Reply accepted on attempt %d/%d", attempt, total_attempts)
        return result

    raise LLMRetryExhaustedError(
        attempts=total_attempts,
        last_error=history[-1],
        history=history,
    )
