"""Historical baselines from prior finalized payroll runs."""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_recon.detection.classification import ComponentClassifier
from payroll_recon.detection.types import EmployeeBaseline, LineItemRecord
from payroll_recon.models import PayrollLineItem, PayrollRun
from payroll_recon.services.state_machine import PayrollRunStateMachine

logger = logging.getLogger(__name__)

# Employees per historical line item query
EMPLOYEE_CHUNK_SIZE = 500


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean, 0 for an empty sequence."""
    if not values:
        return 0.0
    return math.fsum(values) / len(values)


def sample_std_dev(values: Sequence[float]) -> float:
    """Sample standard deviation (N−1 denominator), 0 for fewer than 2 values."""
    if len(values) < 2:
        return 0.0
    avg = mean(values)
    squared = math.fsum((v - avg) ** 2 for v in values)
    return math.sqrt(squared / (len(values) - 1))


def chunk(values: Sequence, size: int) -> Iterable[Sequence]:
    """Yield consecutive slices of at most ``size`` elements."""
    for start in range(0, len(values), size):
        yield values[start : start + size]


def compute_baseline(
    employee_id: UUID,
    runs: Iterable[Sequence[LineItemRecord]],
    classifier: ComponentClassifier,
) -> EmployeeBaseline:
    """Compute an employee baseline from their line items, one sequence per run."""
    gross_values: list[float] = []
    net_values: list[float] = []
    component_values: dict[str, list[float]] = defaultdict(list)

    for items in runs:
        gross = Decimal("0")
        net = Decimal("0")
        for item in items:
            if classifier.is_deduction(item.component):
                net -= abs(item.amount)
            else:
                gross += item.amount
                net += item.amount
            component_values[item.component_key].append(float(item.amount))
        gross_values.append(float(gross))
        net_values.append(float(net))

    return EmployeeBaseline(
        employee_id=employee_id,
        avg_gross=mean(gross_values),
        avg_net=mean(net_values),
        std_dev_gross=sample_std_dev(gross_values),
        std_dev_net=sample_std_dev(net_values),
        component_averages={k: mean(v) for k, v in component_values.items()},
        component_std_devs={k: sample_std_dev(v) for k, v in component_values.items()},
        period_count=len(gross_values),
    )


@dataclass
class BaselineResult:
    """Baselines for a detection pass, with the history that produced them."""

    baselines: dict[UUID, EmployeeBaseline] = field(default_factory=dict)
    history_run_ids: list[UUID] = field(default_factory=list)
    skipped_reason: str | None = None


class BaselineBuilder:
    """Builds per-employee baselines from a tenant's finalized payroll runs."""

    def __init__(self, session: AsyncSession, classifier: ComponentClassifier):
        self.session = session
        self.classifier = classifier

    async def build(
        self,
        tenant_id: UUID,
        current_run_id: UUID,
        employee_ids: Sequence[UUID],
        periods: int,
        min_periods: int,
    ) -> BaselineResult:
        """Build baselines for the given employees.

        Uses up to ``periods`` most recent APPROVED/FINALIZED runs of the
        tenant, excluding the current run. Returns no baselines (with a
        ``skipped_reason``) when fewer than ``min_periods`` runs exist.
        Employees seen in fewer than ``min_periods`` of those runs get no
        baseline.
        """
        result = BaselineResult()
        if not employee_ids:
            result.skipped_reason = "no employees in run"
            return result

        history = await self.session.execute(
            select(PayrollRun.payroll_run_id)
            .where(
                PayrollRun.tenant_id == tenant_id,
                PayrollRun.payroll_run_id != current_run_id,
                PayrollRun.status.in_(
                    [s.value for s in PayrollRunStateMachine.BASELINE_ELIGIBLE]
                ),
            )
            .order_by(PayrollRun.created_at.desc(), PayrollRun.period.desc())
            .limit(periods)
        )
        run_ids = list(history.scalars().all())
        result.history_run_ids = run_ids

        if len(run_ids) < min_periods:
            result.skipped_reason = (
                f"only {len(run_ids)} historical period(s) found (need {min_periods})"
            )
            logger.info("Skipping baseline for run %s: %s", current_run_id, result.skipped_reason)
            return result

        for employee_chunk in chunk(list(employee_ids), EMPLOYEE_CHUNK_SIZE):
            rows = await self.session.execute(
                select(
                    PayrollLineItem.payroll_run_id,
                    PayrollLineItem.employee_id,
                    PayrollLineItem.component,
                    PayrollLineItem.amount,
                )
                .where(
                    PayrollLineItem.payroll_run_id.in_(run_ids),
                    PayrollLineItem.employee_id.in_(employee_chunk),
                )
                .order_by(PayrollLineItem.employee_id, PayrollLineItem.payroll_run_id)
            )

            # employee -> run -> items
            grouped: dict[UUID, dict[UUID, list[LineItemRecord]]] = defaultdict(
                lambda: defaultdict(list)
            )
            for run_id, employee_id, component, amount in rows.all():
                grouped[employee_id][run_id].append(
                    LineItemRecord(
                        employee_id=employee_id,
                        component=component,
                        amount=Decimal(amount or 0),
                        payroll_run_id=run_id,
                    )
                )

            for employee_id, run_map in grouped.items():
                if len(run_map) < min_periods:
                    continue
                result.baselines[employee_id] = compute_baseline(
                    employee_id, run_map.values(), self.classifier
                )

        logger.info(
            "Built baselines for %d employees from %d historical runs",
            len(result.baselines),
            len(run_ids),
        )
        return result
