"""Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ============================================================================
# Payroll Run schemas
# ============================================================================


class LineItemCreate(BaseModel):
    """One line item of a new payroll run."""

    employee_id: UUID
    component: str = Field(min_length=1)
    amount: Decimal
    previous_amount: Decimal = Decimal("0")


class PayrollRunCreate(BaseModel):
    """Schema for creating a payroll run with its line items."""

    period: str = Field(min_length=1, examples=["2026-01"])
    line_items: list[LineItemCreate]


class PayrollRunResponse(BaseModel):
    """Schema for payroll run response."""

    model_config = ConfigDict(from_attributes=True)

    payroll_run_id: UUID
    tenant_id: UUID
    period: str
    status: str
    employee_count: int
    total_gross: Decimal
    total_net: Decimal
    detection_generation: int
    created_at: datetime
    updated_at: datetime


class PayrollRunListItem(PayrollRunResponse):
    """Payroll run with its counts."""

    anomaly_count: int
    line_item_count: int


class Pagination(BaseModel):
    """Pagination block of a list response."""

    page: int
    limit: int
    total: int
    total_pages: int


class PayrollRunListResponse(BaseModel):
    """Schema for listing payroll runs."""

    items: list[PayrollRunListItem]
    pagination: Pagination


# ============================================================================
# Detection schemas
# ============================================================================


class DetectionConfigOverrides(BaseModel):
    """Optional overrides of the detection thresholds.

    Keys may be snake_case or camelCase (``maxDeductionPct``); unknown keys
    are rejected.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    max_deduction_pct: float | None = Field(default=None, ge=0)
    spike_threshold_pct: float | None = Field(default=None, ge=0)
    drop_threshold_pct: float | None = Field(default=None, ge=0)
    baseline_periods: int | None = Field(default=None, ge=1)
    min_baseline_periods: int | None = Field(default=None, ge=1)
    outlier_std_devs: float | None = Field(default=None, gt=0)
    batch_size: int | None = Field(default=None, ge=1)
    mandatory_components: list[str] | None = None
    deduction_prefixes: list[str] | None = None
    component_thresholds: dict[str, Decimal] | None = None
    carry_over_resolutions: bool | None = None


class DetectedAnomalyResponse(BaseModel):
    """A finding of a detection pass."""

    employee_id: UUID
    anomaly_type: str
    severity: str
    fingerprint: str
    details: dict[str, Any]


class AnomalyReportResponse(BaseModel):
    """Run-level result of a detection pass."""

    payroll_run_id: UUID
    generation: int
    total_line_items: int
    total_employees: int
    total_anomalies: int
    critical_count: int
    high_count: int
    medium_count: int
    low_count: int
    has_blockers: bool
    summary: str
    notes: list[str]
    anomalies: list[DetectedAnomalyResponse]


class CheckResponse(BaseModel):
    """Result of starting a reconciliation check."""

    model_config = ConfigDict(populate_by_name=True)

    payroll_run_id: UUID
    status: str
    is_async: bool = Field(serialization_alias="async")
    message: str | None = None
    job_id: str | None = None
    anomaly_report: AnomalyReportResponse | None = None


# ============================================================================
# Anomaly schemas
# ============================================================================


class AnomalyResponse(BaseModel):
    """Schema for a persisted anomaly."""

    model_config = ConfigDict(from_attributes=True)

    payroll_anomaly_id: UUID
    payroll_run_id: UUID
    employee_id: UUID
    anomaly_type: str
    severity: str
    details: dict[str, Any]
    fingerprint: str
    generation: int
    resolved: bool
    resolved_by: UUID | None = None
    resolved_at: datetime | None = None
    created_at: datetime


class AnomalyListResponse(BaseModel):
    """Schema for listing anomalies."""

    items: list[AnomalyResponse]
    pagination: Pagination


class ResolveAnomalyRequest(BaseModel):
    """Schema for resolving an anomaly."""

    resolution_notes: str = Field(min_length=1)


class ExplanationResponse(BaseModel):
    """Narrative explanation of one anomaly."""

    anomaly_id: UUID
    explanation: str
    root_cause: str
    contributing_factors: list[str]
    recommended_action: str
    confidence: float
    reasoning: str
    fallback: bool


# ============================================================================
# Report and trace schemas
# ============================================================================


class TraceStepResponse(BaseModel):
    """One step of a trace."""

    model_config = ConfigDict(from_attributes=True)

    order: int
    type: str
    timestamp: datetime
    actor: str | None = None
    action: str
    details: dict[str, Any]
    before_value: str | None = None
    after_value: str | None = None
    explanation: str


class TraceReportResponse(BaseModel):
    """Trace of one employee in one payroll run."""

    model_config = ConfigDict(from_attributes=True)

    payroll_run_id: UUID
    employee_id: UUID
    employee_name: str
    period: str
    component: str | None = None
    generated_at: datetime
    steps: list[TraceStepResponse]
    summary: str
    is_complete: bool
    warnings: list[str]


class ReconciliationSummaryResponse(BaseModel):
    """Run-level numbers of a reconciliation report."""

    model_config = ConfigDict(from_attributes=True)

    payroll_run_id: UUID
    period: str
    status: str
    detection_generation: int
    total_employees: int
    total_line_items: int
    total_gross: Decimal
    total_net: Decimal
    total_anomalies: int
    anomalies_by_severity: dict[str, int]
    anomalies_by_type: dict[str, int]
    resolved_count: int
    unresolved_count: int
    total_amount_at_risk: Decimal
    has_blockers: bool


class ReconciliationReportResponse(BaseModel):
    """Schema for a reconciliation report."""

    model_config = ConfigDict(from_attributes=True)

    summary: ReconciliationSummaryResponse
    anomalies: list[AnomalyResponse]
    traces: list[TraceReportResponse]
    generated_at: datetime


ExportFormat = Literal["csv", "pdf"]


# ============================================================================
# Error schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None
    context: dict[str, Any] | None = None
