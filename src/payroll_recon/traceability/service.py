"""Traceability: why an employee's pay is what it is.

A trace merges four independent sources into one chronological story:

- DATA_CHANGE: audit events on the employee record
- RULE_APPLIED and RECOMMENDATION: compensation recommendations
- APPROVAL: approved recommendations with a known approver
- PAYROLL_IMPACT: the employee's line items in the run
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from payroll_recon.exceptions import NotFoundError
from payroll_recon.models import (
    AuditEvent,
    CompRecommendation,
    Employee,
    PayrollLineItem,
    PayrollRun,
)
from payroll_recon.models.base import utcnow
from payroll_recon.traceability.formatters import (
    explain_approval,
    explain_data_change,
    explain_payroll_impact,
    explain_recommendation,
    explain_recommendation_status,
    extract_change_value,
    format_currency,
    rec_type_label,
    to_decimal,
)
from payroll_recon.traceability.mapping import RecommendationComponentMap

logger = logging.getLogger(__name__)

EMPLOYEE_ENTITY = "Employee"


class TraceStepType(str, Enum):
    """Kinds of trace step."""

    DATA_CHANGE = "DATA_CHANGE"
    RULE_APPLIED = "RULE_APPLIED"
    RECOMMENDATION = "RECOMMENDATION"
    APPROVAL = "APPROVAL"
    PAYROLL_IMPACT = "PAYROLL_IMPACT"


# Step types that must all be present for a complete trace, with their labels
REQUIRED_STEP_TYPES: dict[TraceStepType, str] = {
    TraceStepType.DATA_CHANGE: "data changes",
    TraceStepType.RECOMMENDATION: "recommendations",
    TraceStepType.APPROVAL: "approvals",
    TraceStepType.PAYROLL_IMPACT: "payroll impact",
}


@dataclass
class TraceStep:
    """One event in a trace."""

    order: int
    type: TraceStepType
    timestamp: datetime
    actor: str | None
    action: str
    details: dict[str, Any]
    before_value: str | None
    after_value: str | None
    explanation: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "order": self.order,
            "type": self.type.value,
            "timestamp": self.timestamp.isoformat(),
            "actor": self.actor,
            "action": self.action,
            "details": self.details,
            "before_value": self.before_value,
            "after_value": self.after_value,
            "explanation": self.explanation,
        }


@dataclass
class TraceReport:
    """Full trace for one employee in one payroll run."""

    payroll_run_id: UUID
    employee_id: UUID
    employee_name: str
    period: str
    component: str | None
    generated_at: datetime
    steps: list[TraceStep]
    summary: str
    is_complete: bool
    warnings: list[str] = field(default_factory=list)

    def steps_of(self, step_type: TraceStepType) -> list[TraceStep]:
        return [s for s in self.steps if s.type == step_type]

    def to_dict(self) -> dict[str, Any]:
        return {
            "payroll_run_id": str(self.payroll_run_id),
            "employee_id": str(self.employee_id),
            "employee_name": self.employee_name,
            "period": self.period,
            "component": self.component,
            "generated_at": self.generated_at.isoformat(),
            "steps": [s.to_dict() for s in self.steps],
            "summary": self.summary,
            "is_complete": self.is_complete,
            "warnings": list(self.warnings),
        }


def _as_utc(value: datetime) -> datetime:
    """SQLite returns naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TraceabilityService:
    """Builds trace reports from audit, compensation and payroll data."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def trace_employee(
        self,
        tenant_id: UUID,
        payroll_run_id: UUID,
        employee_id: UUID,
        component: str | None = None,
    ) -> TraceReport:
        """Trace an employee's pay in a run, optionally for one component.

        Raises NotFoundError if the run or the employee does not exist for
        the tenant.
        """
        run = await self._get_run(tenant_id, payroll_run_id)
        employee = await self._get_employee(tenant_id, employee_id)
        employee_name = employee.full_name

        warnings: list[str] = []
        steps: list[TraceStep] = []

        # Data changes
        audit_events = await self._load_audit_events(tenant_id, employee_id)
        steps.extend(self._data_change_step(event) for event in audit_events)
        if not audit_events:
            warnings.append("No audit log entries found for this employee")

        # Recommendations and approvals
        recommendations = await self._load_recommendations(tenant_id, employee_id)
        if component:
            component_map = await RecommendationComponentMap.for_tenant(self.session, tenant_id)
            recommendations = [
                rec for rec in recommendations if component_map.matches(rec.rec_type, component)
            ]
        for rec in recommendations:
            steps.extend(self._recommendation_steps(rec, warnings))
        if not recommendations:
            warnings.append("No compensation recommendations found for this employee")

        # Payroll impact
        line_items = await self._load_line_items(payroll_run_id, employee_id, component)
        steps.extend(self._payroll_impact_step(item, employee_name) for item in line_items)
        if not line_items:
            warnings.append("No payroll line items found for this employee in this run")

        # Merge into one chronological sequence; sort is stable for equal timestamps
        steps.sort(key=lambda s: _as_utc(s.timestamp))
        for order, step in enumerate(steps):
            step.order = order

        present = {s.type for s in steps}
        missing = [label for t, label in REQUIRED_STEP_TYPES.items() if t not in present]
        is_complete = not missing
        if missing:
            warnings.append(f"Incomplete trace chain, missing: {', '.join(missing)}")

        logger.debug(
            "Traced employee %s in run %s: %d steps, complete=%s",
            employee_id,
            payroll_run_id,
            len(steps),
            is_complete,
        )

        return TraceReport(
            payroll_run_id=payroll_run_id,
            employee_id=employee_id,
            employee_name=employee_name,
            period=run.period,
            component=component,
            generated_at=utcnow(),
            steps=steps,
            summary=build_trace_summary(steps, employee_name, run.period, component),
            is_complete=is_complete,
            warnings=warnings,
        )

    # ===== Loading =====

    async def _get_run(self, tenant_id: UUID, payroll_run_id: UUID) -> PayrollRun:
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

    async def _get_employee(self, tenant_id: UUID, employee_id: UUID) -> Employee:
        result = await self.session.execute(
            select(Employee).where(
                Employee.employee_id == employee_id,
                Employee.tenant_id == tenant_id,
            )
        )
        employee = result.scalar_one_or_none()
        if employee is None:
            raise NotFoundError("Employee", employee_id)
        return employee

    async def _load_audit_events(self, tenant_id: UUID, employee_id: UUID) -> list[AuditEvent]:
        result = await self.session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.tenant_id == tenant_id,
                AuditEvent.entity_type == EMPLOYEE_ENTITY,
                AuditEvent.entity_id == employee_id,
            )
            .options(selectinload(AuditEvent.actor))
            .order_by(AuditEvent.created_at)
        )
        return list(result.scalars().all())

    async def _load_recommendations(
        self, tenant_id: UUID, employee_id: UUID
    ) -> list[CompRecommendation]:
        result = await self.session.execute(
            select(CompRecommendation)
            .where(
                CompRecommendation.tenant_id == tenant_id,
                CompRecommendation.employee_id == employee_id,
            )
            .options(
                selectinload(CompRecommendation.cycle),
                selectinload(CompRecommendation.approver),
            )
            .order_by(CompRecommendation.created_at)
        )
        return list(result.scalars().all())

    async def _load_line_items(
        self, payroll_run_id: UUID, employee_id: UUID, component: str | None
    ) -> list[PayrollLineItem]:
        stmt = select(PayrollLineItem).where(
            PayrollLineItem.payroll_run_id == payroll_run_id,
            PayrollLineItem.employee_id == employee_id,
        )
        if component:
            stmt = stmt.where(func.upper(PayrollLineItem.component) == component.upper())
        result = await self.session.execute(
            stmt.order_by(PayrollLineItem.created_at, PayrollLineItem.component)
        )
        return list(result.scalars().all())

    # ===== Step builders =====

    @staticmethod
    def _data_change_step(event: AuditEvent) -> TraceStep:
        changes = event.changes_json if isinstance(event.changes_json, dict) else {}
        actor = event.actor.name if event.actor is not None else "System"
        return TraceStep(
            order=0,
            type=TraceStepType.DATA_CHANGE,
            timestamp=event.created_at,
            actor=actor,
            action=event.action,
            details=changes,
            before_value=extract_change_value(changes, "before"),
            after_value=extract_change_value(changes, "after"),
            explanation=explain_data_change(actor, event.action, changes, event.created_at),
        )

    @staticmethod
    def _recommendation_steps(rec: CompRecommendation, warnings: list[str]) -> list[TraceStep]:
        cycle_name = rec.cycle.name if rec.cycle is not None else "Unknown cycle"
        type_label = rec_type_label(rec.rec_type)
        before = format_currency(rec.current_value)
        after = format_currency(rec.proposed_value)

        steps = [
            TraceStep(
                order=0,
                type=TraceStepType.RULE_APPLIED,
                timestamp=rec.created_at,
                actor=None,
                action=f"{type_label} recommendation created",
                details={
                    "cycle_id": str(rec.cycle_id),
                    "cycle_name": cycle_name,
                    "rec_type": rec.rec_type,
                    "current_value": float(rec.current_value),
                    "proposed_value": float(rec.proposed_value),
                    "justification": rec.justification,
                },
                before_value=before,
                after_value=after,
                explanation=explain_recommendation(
                    type_label,
                    rec.current_value,
                    rec.proposed_value,
                    cycle_name,
                    rec.justification,
                ),
            ),
            TraceStep(
                order=0,
                type=TraceStepType.RECOMMENDATION,
                timestamp=rec.updated_at or rec.created_at,
                actor=None,
                action=f"Recommendation status: {rec.status}",
                details={
                    "status": rec.status,
                    "rec_type": rec.rec_type,
                    "justification": rec.justification,
                },
                before_value=before,
                after_value=after,
                explanation=explain_recommendation_status(type_label, rec.status),
            ),
        ]

        if rec.approved_at is not None and rec.approver is not None:
            steps.append(
                TraceStep(
                    order=0,
                    type=TraceStepType.APPROVAL,
                    timestamp=rec.approved_at,
                    actor=rec.approver.name,
                    action=f"{type_label} approved",
                    details={
                        "approver_user_id": str(rec.approver_user_id),
                        "approver_name": rec.approver.name,
                        "approved_at": rec.approved_at.isoformat(),
                    },
                    before_value=before,
                    after_value=after,
                    explanation=explain_approval(
                        type_label,
                        rec.current_value,
                        rec.proposed_value,
                        rec.approver.name,
                        rec.approved_at,
                        cycle_name,
                    ),
                )
            )
        elif rec.status == "APPROVED" and rec.approver is None:
            warnings.append(
                f"Recommendation {rec.comp_recommendation_id} is approved "
                "but approver details are missing"
            )

        return steps

    @staticmethod
    def _payroll_impact_step(item: PayrollLineItem, employee_name: str) -> TraceStep:
        return TraceStep(
            order=0,
            type=TraceStepType.PAYROLL_IMPACT,
            timestamp=item.created_at,
            actor=None,
            action=f"Payroll component: {item.component}",
            details={
                "component": item.component,
                "amount": float(item.amount),
                "previous_amount": float(item.previous_amount),
                "delta": float(item.delta),
            },
            before_value=format_currency(item.previous_amount),
            after_value=format_currency(item.amount),
            explanation=explain_payroll_impact(
                employee_name, item.component, item.amount, item.previous_amount, item.delta
            ),
        )


def build_trace_summary(
    steps: list[TraceStep], employee_name: str, period: str, component: str | None
) -> str:
    """One-line summary: counts per step type plus the largest payroll impact."""
    if not steps:
        return f"No trace data available for {employee_name} in period {period}"

    component_str = f' for component "{component}"' if component else ""
    parts = [f"Trace report for {employee_name} in period {period}{component_str}:"]

    counts = {t: sum(1 for s in steps if s.type == t) for t in TraceStepType}
    for step_type, noun in (
        (TraceStepType.DATA_CHANGE, "data change(s)"),
        (TraceStepType.RECOMMENDATION, "recommendation(s)"),
        (TraceStepType.APPROVAL, "approval(s)"),
        (TraceStepType.PAYROLL_IMPACT, "payroll impact(s)"),
    ):
        if counts[step_type]:
            parts.append(f"{counts[step_type]} {noun}")

    impacts = [s for s in steps if s.type == TraceStepType.PAYROLL_IMPACT]
    if impacts:
        # First of the largest wins on ties
        biggest = max(impacts, key=lambda s: abs(to_decimal(s.details.get("delta")) or 0))
        parts.append(f"Largest impact: {biggest.explanation}")

    return " | ".join(parts)
