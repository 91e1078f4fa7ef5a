"""Anomaly detection engine.

One detection pass over a payroll run:

1. Load line items in pages of ``batch_size``, ordered by employee.
2. Fold them into one aggregate per employee.
3. Build baselines from the tenant's recent APPROVED/FINALIZED runs.
4. Run every detector for every employee, then the run-wide currency check.
5. Persist the findings as a new detection generation.

Persistence is generation based. The pass claims generation ``g + 1``
with a conditional UPDATE on ``payroll_run.detection_generation``; a
concurrent pass that read the same ``g`` loses the swap and raises
ConcurrentDetectionError. The new generation is inserted and older
generations are deleted in the same transaction, so readers that filter
on the run's current generation never see a half-written set.

Human resolutions are stored per anomaly fingerprint and re-applied to
the regenerated anomalies unless ``carry_over_resolutions`` is off.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping
from uuid import UUID, uuid4

from sqlalchemy import delete, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_recon.config import get_settings
from payroll_recon.detection.baseline import EMPLOYEE_CHUNK_SIZE, BaselineBuilder, chunk
from payroll_recon.detection.classification import ComponentClassifier
from payroll_recon.detection.config import DetectionConfig
from payroll_recon.detection.detectors import (
    MIN_STATISTICAL_PERIODS,
    detect_currency_mismatches,
    detect_employee,
)
from payroll_recon.detection.types import (
    AnomalyReport,
    AnomalySeverity,
    DetectedAnomaly,
    EmployeeAggregate,
    LineItemRecord,
    number_occurrences,
)
from payroll_recon.exceptions import ConcurrentDetectionError, NotFoundError
from payroll_recon.models import (
    AnomalyResolution,
    Employee,
    PayrollAnomaly,
    PayrollLineItem,
    PayrollRun,
)
from payroll_recon.models.base import utcnow

logger = logging.getLogger(__name__)


class AnomalyDetectionEngine:
    """Runs detection passes and persists their findings."""

    def __init__(self, session: AsyncSession, insert_batch_size: int | None = None):
        self.session = session
        self.insert_batch_size = insert_batch_size or get_settings().insert_batch_size

    async def detect_anomalies(
        self,
        payroll_run_id: UUID,
        tenant_id: UUID,
        config: DetectionConfig | Mapping[str, Any] | None = None,
    ) -> AnomalyReport:
        """Run a full detection pass on a payroll run.

        ``config`` is either a complete DetectionConfig or a mapping that
        overrides any subset of the defaults.

        Raises:
            NotFoundError: the run does not exist for the tenant.
            ConcurrentDetectionError: another pass claimed the generation first.
        """
        if isinstance(config, DetectionConfig):
            cfg = config
        else:
            cfg = DetectionConfig().with_overrides(config)
        started = time.perf_counter()
        logger.info("Starting anomaly detection for payroll run %s", payroll_run_id)

        run = await self._get_run(payroll_run_id, tenant_id)
        generation = run.detection_generation
        notes: list[str] = []

        classifier = await ComponentClassifier.for_tenant(
            self.session, tenant_id, cfg.deduction_prefixes
        )

        items = await self._load_line_items(payroll_run_id, cfg.batch_size)
        logger.info("Loaded %d line items", len(items))

        groups = self._group_by_employee(items, classifier)
        employee_ids = list(groups)

        baseline_result = await BaselineBuilder(self.session, classifier).build(
            tenant_id,
            payroll_run_id,
            employee_ids,
            cfg.baseline_periods,
            cfg.min_baseline_periods,
        )
        baselines = baseline_result.baselines
        if baseline_result.skipped_reason and employee_ids:
            notes.append(f"Statistical baseline check skipped: {baseline_result.skipped_reason}.")

        anomalies: list[DetectedAnomaly] = []
        zero_gross = 0
        without_baseline = 0
        without_previous = 0
        for employee_id, group in groups.items():
            baseline = baselines.get(employee_id)
            if group.gross_pay <= 0:
                zero_gross += 1
            if baseline is None or baseline.period_count < MIN_STATISTICAL_PERIODS:
                without_baseline += 1
            without_previous += sum(1 for item in group.items if item.previous_amount == 0)
            anomalies.extend(detect_employee(group, baseline, cfg))

        if zero_gross:
            notes.append(
                f"Deduction ratio check skipped for {zero_gross} employee(s) with zero gross pay."
            )
        if without_previous:
            notes.append(
                f"Month-over-month check skipped for {without_previous} line item(s) "
                "with no previous amount."
            )
        if not baseline_result.skipped_reason and without_baseline:
            notes.append(
                f"Statistical baseline check skipped for {without_baseline} employee(s) with "
                f"fewer than {cfg.min_baseline_periods} historical periods."
            )
        if not cfg.component_thresholds and employee_ids:
            notes.append("Component threshold check skipped: no thresholds configured.")

        currencies = await self._load_currencies(tenant_id, employee_ids)
        missing_currency = len(employee_ids) - len(currencies)
        if missing_currency:
            notes.append(
                f"Currency check skipped for {missing_currency} employee(s) "
                "without an employee record."
            )
        anomalies.extend(detect_currency_mismatches(currencies))
        anomalies = number_occurrences(anomalies)

        new_generation = await self._persist(run, generation, anomalies, cfg)

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "Anomaly detection complete: %d anomalies found in %.0fms (run %s, generation %d)",
            len(anomalies),
            elapsed_ms,
            payroll_run_id,
            new_generation,
        )

        return AnomalyReport(
            payroll_run_id=payroll_run_id,
            generation=new_generation,
            total_line_items=len(items),
            total_employees=len(groups),
            anomalies=anomalies,
            summary=build_summary(anomalies, len(items), len(groups)),
            notes=notes,
        )

    # ===== Loading =====

    async def _get_run(self, payroll_run_id: UUID, tenant_id: UUID) -> PayrollRun:
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

    async def _load_line_items(self, payroll_run_id: UUID, batch_size: int) -> list[LineItemRecord]:
        """Page through the run's line items, ordered by employee."""
        items: list[LineItemRecord] = []
        offset = 0
        while True:
            result = await self.session.execute(
                select(
                    PayrollLineItem.employee_id,
                    PayrollLineItem.component,
                    PayrollLineItem.amount,
                    PayrollLineItem.previous_amount,
                )
                .where(PayrollLineItem.payroll_run_id == payroll_run_id)
                .order_by(PayrollLineItem.employee_id, PayrollLineItem.payroll_line_item_id)
                .offset(offset)
                .limit(batch_size)
            )
            batch = result.all()
            for employee_id, component, amount, previous_amount in batch:
                items.append(
                    LineItemRecord(
                        employee_id=employee_id,
                        component=component,
                        amount=Decimal(amount or 0),
                        previous_amount=Decimal(previous_amount or 0),
                        payroll_run_id=payroll_run_id,
                    )
                )
            if len(batch) < batch_size:
                break
            offset += batch_size
        return items

    @staticmethod
    def _group_by_employee(
        items: list[LineItemRecord], classifier: ComponentClassifier
    ) -> dict[UUID, EmployeeAggregate]:
        groups: dict[UUID, EmployeeAggregate] = {}
        for item in items:
            group = groups.get(item.employee_id)
            if group is None:
                group = groups[item.employee_id] = EmployeeAggregate(employee_id=item.employee_id)
            classifier.fold(group, item)
        return groups

    async def _load_currencies(self, tenant_id: UUID, employee_ids: list[UUID]) -> dict[UUID, str]:
        """Home currency of each run employee that resolves under the tenant."""
        currencies: dict[UUID, str] = {}
        for employee_chunk in chunk(employee_ids, EMPLOYEE_CHUNK_SIZE):
            result = await self.session.execute(
                select(Employee.employee_id, Employee.currency).where(
                    Employee.employee_id.in_(employee_chunk),
                    Employee.tenant_id == tenant_id,
                )
            )
            for employee_id, currency in result.all():
                currencies[employee_id] = currency
        return currencies

    # ===== Persistence =====

    async def _persist(
        self,
        run: PayrollRun,
        generation: int,
        anomalies: list[DetectedAnomaly],
        cfg: DetectionConfig,
    ) -> int:
        """Write ``anomalies`` as the run's next generation and return its number."""
        payroll_run_id = run.payroll_run_id
        new_generation = generation + 1

        claimed = await self.session.execute(
            update(PayrollRun)
            .where(
                PayrollRun.payroll_run_id == payroll_run_id,
                PayrollRun.detection_generation == generation,
            )
            .values(detection_generation=new_generation)
        )
        if claimed.rowcount == 0:
            raise ConcurrentDetectionError(payroll_run_id, generation)

        resolutions: dict[str, AnomalyResolution] = {}
        if cfg.carry_over_resolutions:
            result = await self.session.execute(
                select(AnomalyResolution).where(AnomalyResolution.payroll_run_id == payroll_run_id)
            )
            resolutions = {r.fingerprint: r for r in result.scalars().all()}
        else:
            await self.session.execute(
                delete(AnomalyResolution).where(AnomalyResolution.payroll_run_id == payroll_run_id)
            )

        created_at = utcnow()
        rows = [
            self._row(
                payroll_run_id,
                new_generation,
                anomaly,
                resolutions.get(anomaly.fingerprint),
                created_at,
            )
            for anomaly in anomalies
        ]
        for batch in chunk(rows, self.insert_batch_size):
            await self.session.execute(insert(PayrollAnomaly), list(batch))

        await self.session.execute(
            delete(PayrollAnomaly).where(
                PayrollAnomaly.payroll_run_id == payroll_run_id,
                PayrollAnomaly.generation < new_generation,
            )
        )

        carried = sum(1 for row in rows if row["resolved"])
        logger.info(
            "Persisted %d anomalies for run %s (%d resolution(s) carried over)",
            len(rows),
            payroll_run_id,
            carried,
        )
        return new_generation

    @staticmethod
    def _row(
        payroll_run_id: UUID,
        generation: int,
        anomaly: DetectedAnomaly,
        resolution: AnomalyResolution | None,
        created_at: datetime,
    ) -> dict[str, Any]:
        details = anomaly.details
        row: dict[str, Any] = {
            "payroll_anomaly_id": uuid4(),
            "payroll_run_id": payroll_run_id,
            "employee_id": anomaly.employee_id,
            "anomaly_type": anomaly.anomaly_type.value,
            "severity": anomaly.severity.value,
            "fingerprint": anomaly.fingerprint,
            "generation": generation,
            "resolved": False,
            "resolved_by": None,
            "resolved_at": None,
            "created_at": created_at,
        }
        if resolution is not None:
            details["resolutionNotes"] = resolution.resolution_notes
            details["resolvedByUserId"] = str(resolution.resolved_by)
            row.update(
                resolved=True,
                resolved_by=resolution.resolved_by,
                resolved_at=resolution.resolved_at,
            )
        row["details"] = details
        return row


def build_summary(
    anomalies: list[DetectedAnomaly], total_line_items: int, total_employees: int
) -> str:
    """Short natural-language summary of a detection pass."""
    if not anomalies:
        return (
            f"No anomalies detected across {total_line_items} line items "
            f"for {total_employees} employees."
        )

    critical = sum(1 for a in anomalies if a.severity == AnomalySeverity.CRITICAL)
    high = sum(1 for a in anomalies if a.severity == AnomalySeverity.HIGH)
    affected = len({a.employee_id for a in anomalies})

    parts = [
        f"Found {len(anomalies)} anomalies affecting {affected} of {total_employees} employees."
    ]
    if critical:
        parts.append(f"{critical} CRITICAL issue(s) blocking payroll.")
    if high:
        parts.append(f"{high} HIGH severity issue(s) requiring review.")
    return " ".join(parts)
