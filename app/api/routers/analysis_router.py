"""
app/api/routers/analysis_router.py

Segmentation, query and investigation endpoints.

    POST /segmentation                          load + aggregate
    GET  /tools                                 tool definitions offered to the model
    POST /query                                 run one dispatcher query
    POST /investigations                        load + aggregate + scan
    PUT  /investigations/{id}/findings          confirm findings
    POST /investigations/{id}/deep-dive         explain confirmed findings
    GET  /investigations/{id}                   current state
    DELETE /investigations/{id}                 discard an investigation

Store load failures map to 404 / 422; orchestrator misuse maps to 409.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status

from agent.orchestrator import InvestigationContext, InvestigationOrchestrator, InvestigationStateError
from app.api.dependencies import (
    InvestigationRecord,
    InvestigationRegistry,
    get_adapter,
    get_query_store,
    get_registry,
    get_store,
    store_error_to_http,
)
from app.config import get_dataset_cache_settings
from app.domain.market_data import PROVINCE_FIELD, DatasetSnapshot, Segmentation
from app.repositories.errors import TabularStoreError
from app.schemas.analysis import (
    ConfirmFindingsRequest,
    DeepDiveRequest,
    InvestigationCreateRequest,
    InvestigationResponse,
    QueryRequest,
    QueryResponse,
    SegmentationRequest,
    SegmentationResponse,
    ToolsResponse,
)
from app.services.ingestion_service import TabularStore
from app.services.query_dispatcher import TOOL_DEFINITIONS, QueryDispatcher, brand_totals
from llm_synthesis.adapter import BaseLLMAdapter
from segmentation.aggregator import aggregate
from segmentation.opportunities import find_opportunities

logger = logging.getLogger(__name__)

router = APIRouter(tags=["analysis"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load(store: TabularStore, source: str) -> DatasetSnapshot:
    try:
        return store.load(source)
    except TabularStoreError as exc:
        logger.error(
            "Store load failed source=%r code=%s message=%s",
            source,
            exc.code,
            exc.message,
        )
        raise store_error_to_http(exc) from exc


def _segment(snapshot: DatasetSnapshot, body: SegmentationRequest) -> Segmentation:
    known = {descriptor.key for descriptor in snapshot.dimensions} | {PROVINCE_FIELD}
    unknown = [key for key in (body.x_key, body.y_key) if key not in known]
    if unknown:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unknown dimension key(s): {', '.join(unknown)}.",
        )
    if body.measure is not None and body.measure not in snapshot.metric_labels:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unknown measure '{body.measure}'.",
        )
    try:
        filters = [item.to_filter() for item in body.filters]
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc
    return aggregate(snapshot.records, filters, body.x_key, body.y_key, measure=body.measure)


def _investigation_response(record: InvestigationRecord) -> InvestigationResponse:
    orchestrator = record.orchestrator
    return InvestigationResponse(
        id=record.id,
        stage=orchestrator.stage.value,
        brand=record.brand,
        source=record.source,
        investigation_source=record.investigation_source,
        pending_findings=orchestrator.pending_findings,
        confirmed_findings=orchestrator.confirmed_findings,
        results=orchestrator.results,
    )


def _state_conflict(exc: InvestigationStateError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/tools", response_model=ToolsResponse)
def list_tools() -> ToolsResponse:
    return ToolsResponse(tools=TOOL_DEFINITIONS)


@router.post("/segmentation", response_model=SegmentationResponse)
def create_segmentation(
    body: SegmentationRequest,
    store: TabularStore = Depends(get_store),
) -> SegmentationResponse:
    """
    Load the source (cached) and return its share breakdown.
    """
    snapshot = _load(store, body.source)
    segmentation = _segment(snapshot, body)
    payload = segmentation.to_dict()
    return SegmentationResponse(
        source=body.source,
        x_key=body.x_key,
        y_key=body.y_key,
        x_label=snapshot.label_for(body.x_key, body.x_key),
        y_label=snapshot.label_for(body.y_key, body.y_key),
        measure_label=body.measure or snapshot.measure_label,
        record_count=len(snapshot.records),
        global_total=segmentation.global_total,
        dimensions=[descriptor.to_dict() for descriptor in snapshot.dimensions],
        columns=payload["columns"],
        opportunities=[item.to_dict() for item in find_opportunities(segmentation)],
    )


@router.post("/query", response_model=QueryResponse)
def run_query(
    body: QueryRequest,
    store: TabularStore = Depends(get_query_store),
) -> QueryResponse:
    """
    Run one dispatcher query. Query-level failures are reported in ``status``.
    """
    source = body.source or get_dataset_cache_settings().investigation_source
    if not source:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="No query source given and INVESTIGATION_SOURCE is not set.",
        )
    snapshot = _load(store, source)
    result = QueryDispatcher.for_snapshot(snapshot, body.brand).execute(body.name, body.arguments)
    return QueryResponse(**result.to_dict())


@router.post(
    "/investigations",
    response_model=InvestigationResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_investigation(
    body: InvestigationCreateRequest,
    store: TabularStore = Depends(get_store),
    query_store: TabularStore = Depends(get_query_store),
    adapter: BaseLLMAdapter = Depends(get_adapter),
    registry: InvestigationRegistry = Depends(get_registry),
) -> InvestigationResponse:
    """
    Segment the source and scan it for findings awaiting confirmation.
    """
    snapshot = _load(store, body.source)
    segmentation = _segment(snapshot, body)

    investigation_source = (
        body.investigation_source
        or get_dataset_cache_settings().investigation_source
        or body.source
    )
    _load(query_store, investigation_source)

    dispatcher = QueryDispatcher(lambda: query_store.load(investigation_source), body.brand)
    orchestrator = InvestigationOrchestrator(adapter, dispatcher)
    context = InvestigationContext(
        brand=body.brand,
        x_label=snapshot.label_for(body.x_key, body.x_key),
        y_label=snapshot.label_for(body.y_key, body.y_key),
        record_count=len(snapshot.records),
        brand_totals=tuple(brand_totals(snapshot)),
        user_feedback=body.user_feedback,
    )
    orchestrator.scan(segmentation, context, max_findings=body.max_findings)

    record = registry.register(
        brand=body.brand,
        source=body.source,
        investigation_source=investigation_source,
        orchestrator=orchestrator,
    )
    logger.info("Investigation created id=%s brand=%r", record.id, body.brand)
    return _investigation_response(record)


@router.get("/investigations/{investigation_id}", response_model=InvestigationResponse)
def get_investigation(
    investigation_id: str,
    registry: InvestigationRegistry = Depends(get_registry),
) -> InvestigationResponse:
    return _investigation_response(registry.get(investigation_id))


@router.delete(
    "/investigations/{investigation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_investigation(
    investigation_id: str,
    registry: InvestigationRegistry = Depends(get_registry),
) -> Response:
    registry.remove(investigation_id)
    logger.info("Investigation deleted id=%s", investigation_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/investigations/{investigation_id}/findings", response_model=InvestigationResponse)
def confirm_findings(
    investigation_id: str,
    body: ConfirmFindingsRequest,
    registry: InvestigationRegistry = Depends(get_registry),
) -> InvestigationResponse:
    """
    Confirm the findings to deep-dive; omit ``findings`` to keep the scan's list.
    """
    record = registry.get(investigation_id)
    try:
        record.orchestrator.confirm(body.findings)
    except InvestigationStateError as exc:
        raise _state_conflict(exc) from exc
    return _investigation_response(record)


@router.post(
    "/investigations/{investigation_id}/deep-dive",
    response_model=InvestigationResponse,
)
def deep_dive(
    investigation_id: str,
    body: DeepDiveRequest,
    registry: InvestigationRegistry = Depends(get_registry),
) -> InvestigationResponse:
    """
    Explain every confirmed finding; failed findings carry the failure marker.
    """
    record = registry.get(investigation_id)
    try:
        record.orchestrator.deep_dive(user_feedback=body.user_feedback)
    except InvestigationStateError as exc:
        raise _state_conflict(exc) from exc
    return _investigation_response(record)
