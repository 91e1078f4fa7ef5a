"""Payroll run reconciliation API endpoints."""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, Response, status

from payroll_recon.api.dependencies import (
    DbSession,
    Explainer,
    OptionalUserId,
    Reconciliation,
    TenantId,
    UserId,
)
from payroll_recon.api.schemas import (
    AnomalyListResponse,
    AnomalyReportResponse,
    AnomalyResponse,
    CheckResponse,
    DetectionConfigOverrides,
    ErrorResponse,
    ExplanationResponse,
    ExportFormat,
    Pagination,
    PayrollRunCreate,
    PayrollRunListItem,
    PayrollRunListResponse,
    PayrollRunResponse,
    ReconciliationReportResponse,
    ReconciliationSummaryResponse,
    ResolveAnomalyRequest,
    TraceReportResponse,
)
from payroll_recon.exceptions import InvalidStateError
from payroll_recon.explanations import AnomalyData
from payroll_recon.reconciliation.service import CheckOutcome, LineItemInput, Page
from payroll_recon.services.state_machine import PayrollRunStateMachine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payroll-runs", tags=["payroll-runs"])


def _pagination(page: Page) -> Pagination:
    return Pagination(
        page=page.page,
        limit=page.limit,
        total=page.total,
        total_pages=page.total_pages,
    )


def _check_response(outcome: CheckOutcome) -> CheckResponse:
    report = outcome.anomaly_report
    return CheckResponse(
        payroll_run_id=outcome.payroll_run_id,
        status=outcome.status,
        is_async=outcome.is_async,
        message=outcome.message,
        job_id=outcome.job_id,
        anomaly_report=AnomalyReportResponse.model_validate(report.to_dict()) if report else None,
    )


# ============================================================================
# Payroll Runs
# ============================================================================


@router.post(
    "",
    response_model=PayrollRunResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
)
async def create_payroll_run(
    db: DbSession,
    tenant_id: TenantId,
    service: Reconciliation,
    payload: PayrollRunCreate,
) -> PayrollRunResponse:
    """Import a payroll run and its line items in DRAFT status."""
    run = await service.create_payroll_run(
        tenant_id,
        payload.period,
        [LineItemInput(**item.model_dump()) for item in payload.line_items],
    )
    await db.commit()
    await db.refresh(run)
    return PayrollRunResponse.model_validate(run)


@router.get(
    "",
    response_model=PayrollRunListResponse,
    responses={400: {"model": ErrorResponse}},
)
async def list_payroll_runs(
    tenant_id: TenantId,
    service: Reconciliation,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
) -> PayrollRunListResponse:
    """List payroll runs for a tenant, newest first."""
    result = await service.list_runs(tenant_id, page=page, limit=limit, status=status_filter)
    return PayrollRunListResponse(
        items=[
            PayrollRunListItem(
                **PayrollRunResponse.model_validate(listing.run).model_dump(),
                anomaly_count=listing.anomaly_count,
                line_item_count=listing.line_item_count,
            )
            for listing in result.items
        ],
        pagination=_pagination(result),
    )


@router.get(
    "/{payroll_run_id}",
    response_model=PayrollRunResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_payroll_run(
    tenant_id: TenantId,
    service: Reconciliation,
    payroll_run_id: Annotated[UUID, Path()],
) -> PayrollRunResponse:
    """Get a specific payroll run by ID."""
    run = await service.get_run(payroll_run_id, tenant_id)
    return PayrollRunResponse.model_validate(run)


# ============================================================================
# Checks
# ============================================================================


@router.post(
    "/{payroll_run_id}/check",
    response_model=CheckResponse,
    response_model_by_alias=True,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def check_payroll_run(
    db: DbSession,
    tenant_id: TenantId,
    service: Reconciliation,
    payroll_run_id: Annotated[UUID, Path()],
    payload: DetectionConfigOverrides | None = None,
) -> CheckResponse:
    """Reconcile a run now, or queue it when it is large."""
    overrides = payload.model_dump(exclude_none=True) if payload else None
    outcome = await service.run_check(payroll_run_id, tenant_id, overrides)
    await db.commit()
    # The worker must see the committed PROCESSING status
    outcome = service.enqueue_deferred(outcome, tenant_id)
    return _check_response(outcome)


@router.post(
    "/{payroll_run_id}/detect",
    response_model=AnomalyReportResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def detect_anomalies(
    db: DbSession,
    tenant_id: TenantId,
    service: Reconciliation,
    payroll_run_id: Annotated[UUID, Path()],
    payload: DetectionConfigOverrides | None = None,
) -> AnomalyReportResponse:
    """Run a detection pass without changing the run status."""
    run = await service.get_run(payroll_run_id, tenant_id)
    if not PayrollRunStateMachine.can_check(run.status):
        raise InvalidStateError(
            f"Payroll run {payroll_run_id} cannot be checked in status {run.status}"
        )

    overrides = payload.model_dump(exclude_none=True) if payload else None
    report = await service.detection_engine.detect_anomalies(payroll_run_id, tenant_id, overrides)
    await db.commit()
    return AnomalyReportResponse.model_validate(report.to_dict())


# ============================================================================
# Reports
# ============================================================================


@router.get(
    "/{payroll_run_id}/report",
    response_model=ReconciliationReportResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_report(
    tenant_id: TenantId,
    service: Reconciliation,
    payroll_run_id: Annotated[UUID, Path()],
) -> ReconciliationReportResponse:
    """Reconciliation report of the run's current anomalies."""
    report = await service.get_report(payroll_run_id, tenant_id)
    return ReconciliationReportResponse(
        summary=ReconciliationSummaryResponse.model_validate(report.summary),
        anomalies=[AnomalyResponse.model_validate(a) for a in report.anomalies],
        traces=[TraceReportResponse.model_validate(t.to_dict()) for t in report.traces],
        generated_at=report.generated_at,
    )


@router.get(
    "/{payroll_run_id}/export",
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def export_report(
    tenant_id: TenantId,
    service: Reconciliation,
    payroll_run_id: Annotated[UUID, Path()],
    fmt: Annotated[ExportFormat, Query(alias="format")] = "csv",
) -> Response:
    """Download the report as CSV or as a plain-text document."""
    exported = await service.export_report(payroll_run_id, tenant_id, fmt)
    return Response(
        content=exported.content,
        media_type=exported.content_type,
        headers={"Content-Disposition": f'attachment; filename="{exported.filename}"'},
    )


@router.get(
    "/{payroll_run_id}/employees/{employee_id}/trace",
    response_model=TraceReportResponse,
    responses={404: {"model": ErrorResponse}},
)
async def trace_employee(
    tenant_id: TenantId,
    service: Reconciliation,
    payroll_run_id: Annotated[UUID, Path()],
    employee_id: Annotated[UUID, Path()],
    component: str | None = None,
) -> TraceReportResponse:
    """Trace how an employee's pay in this run came to be."""
    trace = await service.traceability.trace_employee(
        tenant_id, payroll_run_id, employee_id, component
    )
    return TraceReportResponse.model_validate(trace.to_dict())


# ============================================================================
# Anomalies
# ============================================================================


@router.get(
    "/{payroll_run_id}/anomalies",
    response_model=AnomalyListResponse,
    responses={404: {"model": ErrorResponse}},
)
async def list_anomalies(
    tenant_id: TenantId,
    service: Reconciliation,
    payroll_run_id: Annotated[UUID, Path()],
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    anomaly_type: Annotated[str | None, Query(alias="type")] = None,
    severity: str | None = None,
    resolved: bool | None = None,
) -> AnomalyListResponse:
    """Page through the run's current anomalies, most severe first."""
    result = await service.list_anomalies(
        payroll_run_id,
        tenant_id,
        page=page,
        limit=limit,
        anomaly_type=anomaly_type,
        severity=severity,
        resolved=resolved,
    )
    return AnomalyListResponse(
        items=[AnomalyResponse.model_validate(a) for a in result.items],
        pagination=_pagination(result),
    )


@router.post(
    "/{payroll_run_id}/anomalies/{anomaly_id}/resolve",
    response_model=AnomalyResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def resolve_anomaly(
    db: DbSession,
    tenant_id: TenantId,
    user_id: UserId,
    service: Reconciliation,
    payroll_run_id: Annotated[UUID, Path()],
    anomaly_id: Annotated[UUID, Path()],
    payload: ResolveAnomalyRequest,
) -> AnomalyResponse:
    """Mark an anomaly resolved with notes."""
    anomaly = await service.resolve_anomaly(
        payroll_run_id, anomaly_id, tenant_id, user_id, payload.resolution_notes
    )
    await db.commit()
    return AnomalyResponse.model_validate(anomaly)


@router.get(
    "/{payroll_run_id}/anomalies/{anomaly_id}/explanation",
    response_model=ExplanationResponse,
    responses={404: {"model": ErrorResponse}},
)
async def explain_anomaly(
    tenant_id: TenantId,
    service: Reconciliation,
    explainer: Explainer,
    payroll_run_id: Annotated[UUID, Path()],
    anomaly_id: Annotated[UUID, Path()],
) -> ExplanationResponse:
    """Narrative explanation of one anomaly."""
    anomaly = await service.get_anomaly(payroll_run_id, anomaly_id, tenant_id)
    explanation = await explainer.explain(
        AnomalyData(
            anomaly_id=anomaly.payroll_anomaly_id,
            payroll_run_id=anomaly.payroll_run_id,
            employee_id=anomaly.employee_id,
            anomaly_type=anomaly.anomaly_type,
            severity=anomaly.severity,
            details=dict(anomaly.details or {}),
        )
    )
    return ExplanationResponse.model_validate(explanation.to_dict())


# ============================================================================
# Lifecycle
# ============================================================================


@router.post(
    "/{payroll_run_id}/approve",
    response_model=PayrollRunResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def approve_payroll_run(
    db: DbSession,
    tenant_id: TenantId,
    user_id: OptionalUserId,
    service: Reconciliation,
    payroll_run_id: Annotated[UUID, Path()],
) -> PayrollRunResponse:
    """Approve a reviewed run. Rejected while CRITICAL anomalies are unresolved."""
    run = await service.approve_run(payroll_run_id, tenant_id, user_id)
    await db.commit()
    await db.refresh(run)
    logger.info("Payroll run %s approved", payroll_run_id)
    return PayrollRunResponse.model_validate(run)


@router.post(
    "/{payroll_run_id}/finalize",
    response_model=PayrollRunResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def finalize_payroll_run(
    db: DbSession,
    tenant_id: TenantId,
    user_id: OptionalUserId,
    service: Reconciliation,
    payroll_run_id: Annotated[UUID, Path()],
) -> PayrollRunResponse:
    """Finalize an approved run."""
    run = await service.finalize_run(payroll_run_id, tenant_id, user_id)
    await db.commit()
    await db.refresh(run)
    logger.info("Payroll run %s finalized", payroll_run_id)
    return PayrollRunResponse.model_validate(run)
