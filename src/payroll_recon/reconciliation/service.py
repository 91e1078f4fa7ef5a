"""Reconciliation service - orchestrates payroll run checks and reviews."""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Generic, Iterable, Mapping, Protocol, Sequence, TypeVar
from uuid import UUID, uuid4

from sqlalchemy import case, func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_recon.config import Settings, get_settings
from payroll_recon.detection.baseline import chunk
from payroll_recon.detection.classification import ComponentClassifier
from payroll_recon.detection.config import DetectionConfig
from payroll_recon.detection.engine import AnomalyDetectionEngine
from payroll_recon.detection.types import SEVERITY_RANK, AnomalyReport, AnomalySeverity
from payroll_recon.exceptions import InvalidStateError, InvalidTransitionError, NotFoundError
from payroll_recon.models import (
    AnomalyResolution,
    AuditEvent,
    PayrollAnomaly,
    PayrollLineItem,
    PayrollRun,
)
from payroll_recon.models.base import utcnow
from payroll_recon.reconciliation.export import ExportedReport, render_csv, render_text
from payroll_recon.services.state_machine import PayrollRunStateMachine, PayrollRunStatus
from payroll_recon.traceability.service import TraceabilityService, TraceReport

logger = logging.getLogger(__name__)

T = TypeVar("T")

EXPORT_FORMATS = ("csv", "pdf")


class JobQueue(Protocol):
    """Anything that can defer a reconciliation job."""

    def enqueue(self, payroll_run_id: UUID, tenant_id: UUID) -> str | None: ...


@dataclass(frozen=True)
class LineItemInput:
    """One line item to import into a new run."""

    employee_id: UUID
    component: str
    amount: Decimal
    previous_amount: Decimal = Decimal("0")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> LineItemInput:
        """Build from snake_case or camelCase keys."""
        previous = data.get("previous_amount", data.get("previousAmount"))
        employee_id = data.get("employee_id", data.get("employeeId"))
        return cls(
            employee_id=employee_id if isinstance(employee_id, UUID) else UUID(str(employee_id)),
            component=str(data["component"]),
            amount=Decimal(str(data["amount"])),
            previous_amount=Decimal(str(previous)) if previous is not None else Decimal("0"),
        )

    @property
    def delta(self) -> Decimal:
        return self.amount - self.previous_amount


@dataclass
class CheckOutcome:
    """Result of a reconciliation check, synchronous or deferred."""

    payroll_run_id: UUID
    status: str
    is_async: bool
    message: str | None = None
    anomaly_report: AnomalyReport | None = None
    job_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "payroll_run_id": str(self.payroll_run_id),
            "status": self.status,
            "async": self.is_async,
            "message": self.message,
            "job_id": self.job_id,
            "anomaly_report": self.anomaly_report.to_dict() if self.anomaly_report else None,
        }


@dataclass
class ReconciliationSummary:
    """Run-level numbers of a reconciliation report."""

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


@dataclass
class ReconciliationReport:
    """Summary, current anomalies and traces for the worst-affected employees."""

    summary: ReconciliationSummary
    anomalies: list[PayrollAnomaly]
    traces: list[TraceReport]
    generated_at: datetime = field(default_factory=utcnow)


@dataclass
class Page(Generic[T]):
    """One page of a listing."""

    items: list[T]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass
class RunListing:
    """A payroll run with its anomaly and line item counts."""

    run: PayrollRun
    anomaly_count: int
    line_item_count: int


def severity_order():
    """SQL ordering expression: CRITICAL first, LOW last."""
    return case(SEVERITY_RANK, value=PayrollAnomaly.severity, else_=len(SEVERITY_RANK))


def amount_at_risk(details: Mapping[str, Any] | None) -> Decimal:
    """Absolute ``amount`` of an anomaly, 0 when it carries none."""
    if not details:
        return Decimal("0")
    amount = details.get("amount")
    if isinstance(amount, bool) or not isinstance(amount, (int, float, Decimal)):
        return Decimal("0")
    return abs(Decimal(str(amount)))


class ReconciliationService:
    """Service for the payroll run reconciliation lifecycle.

    Operations:
    - create_payroll_run: Import a run and its line items in DRAFT
    - run_check: Detect synchronously, or defer large runs to the queue
    - enqueue_deferred: Publish a deferred check once it is committed
    - execute_reconciliation: Detection pass, then REVIEW
    - get_report / list_anomalies / list_runs: Read current results
    - resolve_anomaly: Record a human resolution
    - approve_run / finalize_run: Review sign-off and finalization
    - export_report: CSV or plain-text report

    The service never commits; callers own the transaction.
    """

    def __init__(
        self,
        session: AsyncSession,
        queue: JobQueue | None = None,
        settings: Settings | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self._queue = queue
        self.detection_engine = AnomalyDetectionEngine(session, self.settings.insert_batch_size)
        self.traceability = TraceabilityService(session)

    @property
    def queue(self) -> JobQueue:
        if self._queue is None:
            from payroll_recon.reconciliation.queue import ReconciliationQueue

            self._queue = ReconciliationQueue(self.settings.reconciliation_queue)
        return self._queue

    # ===== Runs =====

    async def create_payroll_run(
        self,
        tenant_id: UUID,
        period: str,
        line_items: Iterable[LineItemInput | Mapping[str, Any]],
    ) -> PayrollRun:
        """Create a DRAFT run and bulk-insert its line items."""
        items = [
            item if isinstance(item, LineItemInput) else LineItemInput.from_mapping(item)
            for item in line_items
        ]
        classifier = await ComponentClassifier.for_tenant(self.session, tenant_id)
        gross, net = classifier.totals((item.component, item.amount) for item in items)

        run = PayrollRun(
            payroll_run_id=uuid4(),
            tenant_id=tenant_id,
            period=period,
            status=PayrollRunStatus.DRAFT.value,
            employee_count=len({item.employee_id for item in items}),
            total_gross=gross,
            total_net=net,
            detection_generation=0,
        )
        self.session.add(run)
        await self.session.flush()

        created_at = utcnow()
        for batch in chunk(items, self.settings.insert_batch_size):
            await self.session.execute(
                insert(PayrollLineItem),
                [
                    {
                        "payroll_line_item_id": uuid4(),
                        "payroll_run_id": run.payroll_run_id,
                        "employee_id": item.employee_id,
                        "component": item.component,
                        "amount": item.amount,
                        "previous_amount": item.previous_amount,
                        "delta": item.delta,
                        "created_at": created_at,
                    }
                    for item in batch
                ],
            )

        logger.info("Created payroll run %s with %d line items", run.payroll_run_id, len(items))
        return run

    async def get_run(self, payroll_run_id: UUID, tenant_id: UUID) -> PayrollRun:
        """Load a run of the tenant, raising NotFoundError otherwise."""
        result = await self.session.execute(
            select(PayrollRun).where(
                PayrollRun.payroll_run_id == payroll_run_id,
                PayrollRun.tenant_id == tenant_id,
            )
        )
        run = result.scalar_one_or_none()
        if run is None:
            raise NotFoundError("PayrollRun", payroll_run_id)
        return run

    async def list_runs(
        self,
        tenant_id: UUID,
        page: int = 1,
        limit: int = 20,
        status: str | None = None,
    ) -> Page[RunListing]:
        """List the tenant's runs, newest first, with counts."""
        filters = [PayrollRun.tenant_id == tenant_id]
        if status:
            filters.append(PayrollRun.status == status)

        anomaly_count = (
            select(func.count(PayrollAnomaly.payroll_anomaly_id))
            .where(
                PayrollAnomaly.payroll_run_id == PayrollRun.payroll_run_id,
                PayrollAnomaly.generation == PayrollRun.detection_generation,
            )
            .correlate(PayrollRun)
            .scalar_subquery()
        )
        line_item_count = (
            select(func.count(PayrollLineItem.payroll_line_item_id))
            .where(PayrollLineItem.payroll_run_id == PayrollRun.payroll_run_id)
            .correlate(PayrollRun)
            .scalar_subquery()
        )

        total = await self.session.scalar(
            select(func.count(PayrollRun.payroll_run_id)).where(*filters)
        )
        result = await self.session.execute(
            select(PayrollRun, anomaly_count, line_item_count)
            .where(*filters)
            .order_by(PayrollRun.created_at.desc(), PayrollRun.period.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        listings = [
            RunListing(run=run, anomaly_count=anomalies or 0, line_item_count=items or 0)
            for run, anomalies, items in result.all()
        ]
        return Page(items=listings, page=page, limit=limit, total=total or 0)

    # ===== Checks =====

    async def run_check(
        self,
        payroll_run_id: UUID,
        tenant_id: UUID,
        config: DetectionConfig | Mapping[str, Any] | None = None,
    ) -> CheckOutcome:
        """Start a reconciliation check.

        Runs with at least ``async_threshold`` line items are marked
        PROCESSING and deferred; smaller runs are reconciled immediately.
        A deferred outcome is not queued yet: the caller commits, then
        passes it to ``enqueue_deferred``.
        """
        run = await self.get_run(payroll_run_id, tenant_id)
        if not PayrollRunStateMachine.can_check(run.status):
            raise InvalidStateError(
                f"Payroll run {payroll_run_id} cannot be checked in status {run.status}"
            )

        item_count = await self._count_line_items(payroll_run_id)
        if item_count >= self.settings.async_threshold:
            await self._transition(run, PayrollRunStatus.PROCESSING)
            await self.session.flush()
            logger.info(
                "Deferring reconciliation of run %s (%d items)", payroll_run_id, item_count
            )
            return CheckOutcome(
                payroll_run_id=payroll_run_id,
                status=PayrollRunStatus.PROCESSING.value,
                is_async=True,
                message=f"Large payroll ({item_count} items) queued for async processing",
            )

        return await self.execute_reconciliation(payroll_run_id, tenant_id, config)

    def enqueue_deferred(self, outcome: CheckOutcome, tenant_id: UUID) -> CheckOutcome:
        """Publish the job of a deferred check. Call only after the commit.

        Synchronous outcomes and outcomes that already have a job are
        returned unchanged.
        """
        if not outcome.is_async or outcome.job_id is not None:
            return outcome
        outcome.job_id = self.queue.enqueue(outcome.payroll_run_id, tenant_id)
        logger.info(
            "Queued async reconciliation for run %s as job %s",
            outcome.payroll_run_id,
            outcome.job_id,
        )
        return outcome

    async def execute_reconciliation(
        self,
        payroll_run_id: UUID,
        tenant_id: UUID,
        config: DetectionConfig | Mapping[str, Any] | None = None,
    ) -> CheckOutcome:
        """Run detection, then move the run to REVIEW.

        The run goes to REVIEW whatever the findings; CRITICAL findings
        block the later REVIEW → APPROVED transition instead.
        """
        report = await self.detection_engine.detect_anomalies(payroll_run_id, tenant_id, config)
        run = await self.get_run(payroll_run_id, tenant_id)
        await self._transition(run, PayrollRunStatus.REVIEW)
        await self.session.flush()

        logger.info(
            "Reconciliation complete for %s: %d anomalies", payroll_run_id, report.total_anomalies
        )
        return CheckOutcome(
            payroll_run_id=payroll_run_id,
            status=PayrollRunStatus.REVIEW.value,
            is_async=False,
            anomaly_report=report,
        )

    async def mark_failed(self, payroll_run_id: UUID, tenant_id: UUID, reason: str) -> PayrollRun:
        """Move a deferred run that could not be reconciled to ERROR."""
        run = await self.get_run(payroll_run_id, tenant_id)
        await self._transition(run, PayrollRunStatus.ERROR, reason=reason)
        return run

    # ===== Reports =====

    async def get_report(self, payroll_run_id: UUID, tenant_id: UUID) -> ReconciliationReport:
        """Assemble the reconciliation report of the run's current generation."""
        run = await self.get_run(payroll_run_id, tenant_id)

        result = await self.session.execute(
            select(PayrollAnomaly)
            .where(
                PayrollAnomaly.payroll_run_id == payroll_run_id,
                PayrollAnomaly.generation == run.detection_generation,
            )
            .order_by(severity_order(), PayrollAnomaly.created_at.desc())
        )
        anomalies = list(result.scalars().all())
        line_item_count = await self._count_line_items(payroll_run_id)

        traces = await self._trace_worst_affected(tenant_id, payroll_run_id, anomalies)

        by_severity = Counter(a.severity for a in anomalies)
        by_type = Counter(a.anomaly_type for a in anomalies)
        resolved_count = sum(1 for a in anomalies if a.resolved)

        summary = ReconciliationSummary(
            payroll_run_id=payroll_run_id,
            period=run.period,
            status=run.status,
            detection_generation=run.detection_generation,
            total_employees=run.employee_count,
            total_line_items=line_item_count,
            total_gross=Decimal(run.total_gross or 0),
            total_net=Decimal(run.total_net or 0),
            total_anomalies=len(anomalies),
            anomalies_by_severity=dict(by_severity),
            anomalies_by_type=dict(by_type),
            resolved_count=resolved_count,
            unresolved_count=len(anomalies) - resolved_count,
            total_amount_at_risk=sum(
                (amount_at_risk(a.details) for a in anomalies), Decimal("0")
            ),
            has_blockers=by_severity.get(AnomalySeverity.CRITICAL.value, 0) > 0,
        )
        return ReconciliationReport(summary=summary, anomalies=anomalies, traces=traces)

    async def _trace_worst_affected(
        self, tenant_id: UUID, payroll_run_id: UUID, anomalies: Sequence[PayrollAnomaly]
    ) -> list[TraceReport]:
        """Traces for the first distinct employees with CRITICAL or HIGH anomalies."""
        worst = (AnomalySeverity.CRITICAL.value, AnomalySeverity.HIGH.value)
        employee_ids = list(dict.fromkeys(a.employee_id for a in anomalies if a.severity in worst))
        traces: list[TraceReport] = []
        for employee_id in employee_ids[: self.settings.trace_limit]:
            try:
                traces.append(
                    await self.traceability.trace_employee(tenant_id, payroll_run_id, employee_id)
                )
            except NotFoundError as e:
                logger.warning("Failed to trace employee %s: %s", employee_id, e)
        return traces

    async def list_anomalies(
        self,
        payroll_run_id: UUID,
        tenant_id: UUID,
        page: int = 1,
        limit: int = 20,
        anomaly_type: str | None = None,
        severity: str | None = None,
        resolved: bool | None = None,
    ) -> Page[PayrollAnomaly]:
        """Page through the run's current anomalies, most severe first."""
        run = await self.get_run(payroll_run_id, tenant_id)

        filters = [
            PayrollAnomaly.payroll_run_id == payroll_run_id,
            PayrollAnomaly.generation == run.detection_generation,
        ]
        if anomaly_type:
            filters.append(PayrollAnomaly.anomaly_type == anomaly_type)
        if severity:
            filters.append(PayrollAnomaly.severity == severity)
        if resolved is not None:
            filters.append(PayrollAnomaly.resolved == resolved)

        total = await self.session.scalar(
            select(func.count(PayrollAnomaly.payroll_anomaly_id)).where(*filters)
        )
        result = await self.session.execute(
            select(PayrollAnomaly)
            .where(*filters)
            .order_by(severity_order(), PayrollAnomaly.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return Page(items=list(result.scalars().all()), page=page, limit=limit, total=total or 0)

    async def get_anomaly(
        self, payroll_run_id: UUID, anomaly_id: UUID, tenant_id: UUID
    ) -> PayrollAnomaly:
        """Load one anomaly of the run's current generation."""
        run = await self.get_run(payroll_run_id, tenant_id)
        result = await self.session.execute(
            select(PayrollAnomaly).where(
                PayrollAnomaly.payroll_anomaly_id == anomaly_id,
                PayrollAnomaly.payroll_run_id == payroll_run_id,
                PayrollAnomaly.generation == run.detection_generation,
            )
        )
        anomaly = result.scalar_one_or_none()
        if anomaly is None:
            raise NotFoundError("Anomaly", anomaly_id, f"not in run {payroll_run_id}")
        return anomaly

    # ===== Resolution =====

    async def resolve_anomaly(
        self,
        payroll_run_id: UUID,
        anomaly_id: UUID,
        tenant_id: UUID,
        user_id: UUID,
        resolution_notes: str,
    ) -> PayrollAnomaly:
        """Mark an anomaly resolved.

        The notes are merged into the anomaly details and the resolution is
        recorded against the anomaly fingerprint so it survives re-scans.

        Raises:
            NotFoundError: the anomaly is not part of the run.
            InvalidStateError: the anomaly is already resolved.
        """
        anomaly = await self.get_anomaly(payroll_run_id, anomaly_id, tenant_id)
        if anomaly.resolved:
            raise InvalidStateError(f"Anomaly {anomaly_id} is already resolved")

        resolved_at = utcnow()
        anomaly.details = {
            **(anomaly.details or {}),
            "resolutionNotes": resolution_notes,
            "resolvedByUserId": str(user_id),
        }
        anomaly.resolved = True
        anomaly.resolved_by = user_id
        anomaly.resolved_at = resolved_at

        result = await self.session.execute(
            select(AnomalyResolution).where(
                AnomalyResolution.payroll_run_id == payroll_run_id,
                AnomalyResolution.fingerprint == anomaly.fingerprint,
            )
        )
        resolution = result.scalar_one_or_none()
        if resolution is None:
            self.session.add(
                AnomalyResolution(
                    payroll_run_id=payroll_run_id,
                    fingerprint=anomaly.fingerprint,
                    resolved_by=user_id,
                    resolved_at=resolved_at,
                    resolution_notes=resolution_notes,
                )
            )
        else:
            resolution.resolved_by = user_id
            resolution.resolved_at = resolved_at
            resolution.resolution_notes = resolution_notes

        await self.session.flush()
        logger.info("Anomaly %s of run %s resolved by %s", anomaly_id, payroll_run_id, user_id)
        return anomaly

    # ===== Lifecycle =====

    async def approve_run(
        self, payroll_run_id: UUID, tenant_id: UUID, actor_user_id: UUID | None = None
    ) -> PayrollRun:
        """REVIEW → APPROVED, rejected while unresolved CRITICAL anomalies exist."""
        run = await self.get_run(payroll_run_id, tenant_id)
        unresolved_critical = await self.session.scalar(
            select(func.count(PayrollAnomaly.payroll_anomaly_id)).where(
                PayrollAnomaly.payroll_run_id == payroll_run_id,
                PayrollAnomaly.generation == run.detection_generation,
                PayrollAnomaly.severity == AnomalySeverity.CRITICAL.value,
                PayrollAnomaly.resolved.is_(False),
            )
        )
        await self._transition(
            run,
            PayrollRunStatus.APPROVED,
            actor_user_id=actor_user_id,
            unresolved_critical_count=unresolved_critical or 0,
        )
        await self.session.flush()
        return run

    async def finalize_run(
        self, payroll_run_id: UUID, tenant_id: UUID, actor_user_id: UUID | None = None
    ) -> PayrollRun:
        """APPROVED → FINALIZED. Finalized runs feed future baselines."""
        run = await self.get_run(payroll_run_id, tenant_id)
        await self._transition(run, PayrollRunStatus.FINALIZED, actor_user_id=actor_user_id)
        await self.session.flush()
        return run

    async def _transition(
        self,
        run: PayrollRun,
        to_status: PayrollRunStatus,
        actor_user_id: UUID | None = None,
        reason: str | None = None,
        unresolved_critical_count: int = 0,
    ) -> None:
        from_status = run.status
        errors = PayrollRunStateMachine.validate_run_for_transition(
            from_status, to_status.value, unresolved_critical_count
        )
        if errors:
            raise InvalidTransitionError(from_status, to_status.value, "; ".join(errors))

        run.status = to_status.value
        if from_status == to_status.value:
            return

        self.session.add(
            AuditEvent(
                tenant_id=run.tenant_id,
                actor_user_id=actor_user_id,
                entity_type="PayrollRun",
                entity_id=run.payroll_run_id,
                action=f"status_change:{from_status}:{to_status.value}",
                changes_json={
                    "status": {"before": from_status, "after": to_status.value},
                    **({"reason": reason} if reason else {}),
                },
            )
        )

    # ===== Export =====

    async def export_report(
        self, payroll_run_id: UUID, tenant_id: UUID, fmt: str = "csv"
    ) -> ExportedReport:
        """Export the report as ``csv`` or ``pdf`` (a structured plain-text report)."""
        if fmt not in EXPORT_FORMATS:
            raise ValueError(f"Unsupported export format: {fmt}")
        report = await self.get_report(payroll_run_id, tenant_id)
        if fmt == "pdf":
            return render_text(report)
        return render_csv(report)

    # ===== Helpers =====

    async def _count_line_items(self, payroll_run_id: UUID) -> int:
        count = await self.session.scalar(
            select(func.count(PayrollLineItem.payroll_line_item_id)).where(
                PayrollLineItem.payroll_run_id == payroll_run_id
            )
        )
        return count or 0
