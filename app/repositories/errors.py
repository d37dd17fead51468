"""
Tabular store exceptions for load and cache flows.
"""

from __future__ import annotations

from app.failure_codes import EMPTY_SOURCE, MALFORMED_HEADER, SOURCE_UNAVAILABLE


class TabularStoreError(Exception):
    """Base exception for tabular store failures."""

    code = "store_error"

    def __init__(self, source_id: str, message: str) -> None:
        super().__init__(message)
        self.source_id = source_id
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {
            "code": self.code,
            "source_id": self.source_id,
            "message": self.message,
        }


class SourceUnavailableError(TabularStoreError):
    """Raised when the source cannot be fetched or read."""

    code = SOURCE_UNAVAILABLE


class EmptySourceError(TabularStoreError):
    """Raised when the source has a header row but no data rows."""

    code = EMPTY_SOURCE


class MalformedHeaderError(TabularStoreError):
    """Raised when the header row is missing or empty."""

    code = MALFORMED_HEADER
