"""
app/schemas/analysis.py

Request and response schemas for the segmentation and investigation endpoints.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from llm_synthesis.schema import Finding
from segmentation.filters import CategoryFilter, PeriodFilter, RecordFilter, ValueRangeFilter


class FilterRequest(BaseModel):
    """
    One record filter.

    ``value_range`` uses min_value / max_value (and optional measure),
    ``category`` uses key / values, ``period`` uses key / start / end.
    """

    kind: Literal["value_range", "category", "period"]
    key: str | None = None
    values: list[str] = Field(default_factory=list)
    min_value: float | None = None
    max_value: float | None = None
    measure: str | None = None
    start: str | None = None
    end: str | None = None

    def to_filter(self) -> RecordFilter:
        if self.kind == "value_range":
            return ValueRangeFilter(
                min_value=self.min_value,
                max_value=self.max_value,
                measure=self.measure,
            )
        if not self.key:
            raise ValueError(f"'{self.kind}' filter requires a dimension key.")
        if self.kind == "category":
            return CategoryFilter(key=self.key, values=tuple(self.values))
        return PeriodFilter(key=self.key, start=self.start, end=self.end)


class SegmentationRequest(BaseModel):
    source: str = Field(..., min_length=1)
    x_key: str = Field(..., min_length=1)
    y_key: str = Field(..., min_length=1)
    measure: str | None = None
    filters: list[FilterRequest] = Field(default_factory=list)


class DimensionResponse(BaseModel):
    key: str
    label: str
    inferred_type: str


class SegmentResponse(BaseModel):
    category_y: str
    measure: float
    share_pct: float


class ColumnResponse(BaseModel):
    category_x: str
    total_measure: float
    total_share_pct: float
    segments: list[SegmentResponse]


class OpportunityResponse(BaseModel):
    category_x: str
    category_y: str
    measure: float
    market_share_pct: float


class SegmentationResponse(BaseModel):
    source: str
    x_key: str
    y_key: str
    x_label: str
    y_label: str
    measure_label: str | None = None
    record_count: int = Field(..., ge=0)
    global_total: float
    dimensions: list[DimensionResponse]
    columns: list[ColumnResponse]
    opportunities: list[OpportunityResponse] = Field(default_factory=list)


class QueryRequest(BaseModel):
    name: str = Field(..., min_length=1)
    arguments: dict[str, Any] = Field(default_factory=dict)
    brand: str = ""
    source: str | None = None


class QueryResponse(BaseModel):
    name: str
    status: str
    text: str
    matched_rows: int = Field(..., ge=0)


class ToolsResponse(BaseModel):
    tools: list[dict[str, Any]]


class InvestigationCreateRequest(SegmentationRequest):
    brand: str = Field(..., min_length=1)
    investigation_source: str | None = None
    max_findings: int | None = Field(default=None, ge=1)
    user_feedback: str | None = None


class ConfirmFindingsRequest(BaseModel):
    findings: list[Finding] | None = None


class DeepDiveRequest(BaseModel):
    user_feedback: str | None = None


class InvestigationResponse(BaseModel):
    id: str
    stage: str
    brand: str
    source: str
    investigation_source: str
    pending_findings: list[Finding] = Field(default_factory=list)
    confirmed_findings: list[Finding] = Field(default_factory=list)
    results: list[Finding] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: Literal["ok"]
    adapter: str
    live_endpoint: bool
