"""
app/api/dependencies.py

Shared FastAPI dependencies: stores, the completion adapter and the
in-process investigation registry.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from functools import lru_cache

from fastapi import HTTPException, status

from agent.orchestrator import InvestigationOrchestrator
from app.config import get_investigation_settings
from app.repositories.errors import (
    EmptySourceError,
    MalformedHeaderError,
    SourceUnavailableError,
    TabularStoreError,
)
from app.services.ingestion_service import TabularStore, get_dashboard_store, get_investigation_store
from llm_synthesis.adapter import BaseLLMAdapter, build_adapter

logger = logging.getLogger(__name__)


@dataclass
class InvestigationRecord:
    """
    One registered investigation and the sources it reads.
    """

    id: str
    brand: str
    source: str
    investigation_source: str
    orchestrator: InvestigationOrchestrator


class InvestigationRegistry:
    """
    Thread-safe in-memory registry of running investigations.

    Holds at most ``max_records`` investigations; registering past the
    bound evicts the oldest ones first.
    """

    def __init__(self, max_records: int = 200) -> None:
        self._records: dict[str, InvestigationRecord] = {}
        self._max_records = max(1, max_records)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def register(
        self,
        *,
        brand: str,
        source: str,
        investigation_source: str,
        orchestrator: InvestigationOrchestrator,
    ) -> InvestigationRecord:
        record = InvestigationRecord(
            id=uuid.uuid4().hex,
            brand=brand,
            source=source,
            investigation_source=investigation_source,
            orchestrator=orchestrator,
        )
        with self._lock:
            self._records[record.id] = record
            evicted = []
            while len(self._records) > self._max_records:
                oldest = next(iter(self._records))
                evicted.append(self._records.pop(oldest).id)
        if evicted:
            logger.info("Investigation registry full; evicted %d oldest: %s", len(evicted), evicted)
        return record

    def get(self, investigation_id: str) -> InvestigationRecord:
        with self._lock:
            record = self._records.get(investigation_id)
        if record is None:
            raise _not_found(investigation_id)
        return record

    def remove(self, investigation_id: str) -> InvestigationRecord:
        with self._lock:
            record = self._records.pop(investigation_id, None)
        if record is None:
            raise _not_found(investigation_id)
        return record


def _not_found(investigation_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Investigation '{investigation_id}' not found.",
    )


@lru_cache(maxsize=1)
def get_registry() -> InvestigationRegistry:
    return InvestigationRegistry(max_records=get_investigation_settings().max_registered)


@lru_cache(maxsize=1)
def get_adapter() -> BaseLLMAdapter:
    return build_adapter()


def get_store() -> TabularStore:
    return get_dashboard_store()


def get_query_store() -> TabularStore:
    return get_investigation_store()


def store_error_to_http(exc: TabularStoreError) -> HTTPException:
    """
    Map a store load failure to an HTTP error.
    """

    if isinstance(exc, SourceUnavailableError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, (EmptySourceError, MalformedHeaderError)):
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=status_code, detail=exc.to_dict())
