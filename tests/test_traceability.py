"""Tests for pay traceability."""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from payroll_recon.exceptions import NotFoundError
from payroll_recon.models import (
    AppUser,
    AuditEvent,
    CompCycle,
    CompRecommendation,
    ComponentRecommendationMapping,
)
from payroll_recon.traceability import (
    RecommendationComponentMap,
    TraceabilityService,
    TraceStepType,
)
from payroll_recon.traceability.service import build_trace_summary

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
T1 = datetime(2026, 2, 1, 9, 0, tzinfo=timezone.utc)
T2 = datetime(2026, 2, 15, 9, 0, tzinfo=timezone.utc)
T3 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
T4 = datetime(2026, 3, 31, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def tracer(session):
    return TraceabilityService(session)


@pytest.fixture
async def approver(session, tenant_id):
    user = AppUser(tenant_id=tenant_id, name="Grace Hopper", email="grace@example.com")
    session.add(user)
    await session.flush()
    return user


@pytest.fixture
async def cycle(session, tenant_id):
    cycle = CompCycle(tenant_id=tenant_id, name="2026 Merit")
    session.add(cycle)
    await session.flush()
    return cycle


@pytest.fixture
def add_recommendation(session, tenant_id, cycle):
    async def _add(employee, rec_type="MERIT_INCREASE", status="APPROVED", approver=None):
        rec = CompRecommendation(
            tenant_id=tenant_id,
            cycle_id=cycle.comp_cycle_id,
            employee_id=employee.employee_id,
            rec_type=rec_type,
            current_value=Decimal("1000"),
            proposed_value=Decimal("1100"),
            justification="Exceeded targets",
            status=status,
            approver_user_id=approver.user_id if approver else None,
            approved_at=T3 if approver else None,
            created_at=T1,
            updated_at=T2,
        )
        session.add(rec)
        await session.flush()
        return rec

    return _add


@pytest.fixture
def add_audit_event(session, tenant_id):
    async def _add(employee, actor=None):
        event = AuditEvent(
            tenant_id=tenant_id,
            actor_user_id=actor.user_id if actor else None,
            entity_type="Employee",
            entity_id=employee.employee_id,
            action="UPDATE",
            changes_json={"salary": {"before": 1000, "after": 1100}},
            created_at=T0,
        )
        session.add(event)
        await session.flush()
        return event

    return _add


class TestFullChain:
    @pytest.fixture
    async def traced(
        self,
        tracer,
        tenant_id,
        make_employee,
        make_run,
        approver,
        add_audit_event,
        add_recommendation,
    ):
        employee = await make_employee()
        await add_audit_event(employee, actor=approver)
        await add_recommendation(employee, approver=approver)
        run = await make_run(
            [(employee.employee_id, "BASE_SALARY", 1100, 1000)], items_created_at=T4
        )
        return await tracer.trace_employee(tenant_id, run.payroll_run_id, employee.employee_id)

    async def test_steps_in_chronological_order(self, traced):
        assert [s.type for s in traced.steps] == [
            TraceStepType.DATA_CHANGE,
            TraceStepType.RULE_APPLIED,
            TraceStepType.RECOMMENDATION,
            TraceStepType.APPROVAL,
            TraceStepType.PAYROLL_IMPACT,
        ]
        assert [s.order for s in traced.steps] == [0, 1, 2, 3, 4]
        assert traced.is_complete is True
        assert traced.warnings == []

    async def test_data_change_step(self, traced):
        step = traced.steps_of(TraceStepType.DATA_CHANGE)[0]

        assert step.actor == "Grace Hopper"
        assert step.before_value == "1000"
        assert step.after_value == "1100"
        assert step.explanation == (
            "Grace Hopper made changes on January 5, 2026: salary changed from 1000 to 1100"
        )

    async def test_approval_step(self, traced):
        step = traced.steps_of(TraceStepType.APPROVAL)[0]

        assert step.actor == "Grace Hopper"
        assert step.explanation == (
            "merit increase of $1,000.00 → $1,100.00 approved by Grace Hopper "
            'on March 1, 2026, per cycle "2026 Merit"'
        )

    async def test_payroll_impact_and_summary(self, traced):
        step = traced.steps_of(TraceStepType.PAYROLL_IMPACT)[0]

        assert step.before_value == "$1,000.00"
        assert step.after_value == "$1,100.00"
        assert step.explanation == (
            "Ada Lovelace's BASE_SALARY increased from $1,000.00 to $1,100.00 "
            "(+10.0%, delta: $100.00)"
        )
        assert traced.summary.startswith("Trace report for Ada Lovelace in period 2026-01:")
        assert "1 approval(s)" in traced.summary
        assert f"Largest impact: {step.explanation}" in traced.summary

    async def test_to_dict(self, traced):
        data = traced.to_dict()

        assert data["employee_name"] == "Ada Lovelace"
        assert data["steps"][0]["type"] == "DATA_CHANGE"
        assert data["steps"][-1]["details"]["delta"] == 100.0


class TestIncompleteChains:
    async def test_missing_recommendations(
        self, tracer, tenant_id, make_employee, make_run, add_audit_event
    ):
        employee = await make_employee()
        await add_audit_event(employee)
        run = await make_run([(employee.employee_id, "BASE_SALARY", 1000)])

        report = await tracer.trace_employee(tenant_id, run.payroll_run_id, employee.employee_id)

        assert report.is_complete is False
        assert report.steps_of(TraceStepType.DATA_CHANGE)[0].actor == "System"
        assert "No compensation recommendations found for this employee" in report.warnings
        assert "Incomplete trace chain, missing: recommendations, approvals" in report.warnings

    async def test_approved_without_approver(
        self, tracer, tenant_id, make_employee, make_run, add_recommendation
    ):
        employee = await make_employee()
        rec = await add_recommendation(employee)
        run = await make_run([(employee.employee_id, "BASE_SALARY", 1100, 1000)])

        report = await tracer.trace_employee(tenant_id, run.payroll_run_id, employee.employee_id)

        assert report.steps_of(TraceStepType.APPROVAL) == []
        assert (
            f"Recommendation {rec.comp_recommendation_id} is approved "
            "but approver details are missing" in report.warnings
        )

    async def test_nothing_to_trace(self, tracer, tenant_id, make_employee, make_run):
        employee = await make_employee()
        run = await make_run([])

        report = await tracer.trace_employee(tenant_id, run.payroll_run_id, employee.employee_id)

        assert report.steps == []
        assert report.summary == "No trace data available for Ada Lovelace in period 2026-01"
        assert "No payroll line items found for this employee in this run" in report.warnings


class TestComponentFilter:
    @pytest.fixture
    async def setup(self, make_employee, make_run, approver, add_recommendation):
        employee = await make_employee()
        await add_recommendation(employee, "MERIT_INCREASE", approver=approver)
        await add_recommendation(employee, "BONUS", approver=approver)
        run = await make_run(
            [
                (employee.employee_id, "BASE_SALARY", 1100, 1000),
                (employee.employee_id, "BONUS", 500),
            ]
        )
        return employee, run

    async def test_keyword_fallback(self, tracer, tenant_id, setup):
        employee, run = setup

        report = await tracer.trace_employee(
            tenant_id, run.payroll_run_id, employee.employee_id, component="bonus"
        )

        assert [s.details["rec_type"] for s in report.steps_of(TraceStepType.RULE_APPLIED)] == [
            "BONUS"
        ]
        impacts = report.steps_of(TraceStepType.PAYROLL_IMPACT)
        assert [s.details["component"] for s in impacts] == ["BONUS"]
        assert report.component == "bonus"
        assert 'for component "bonus"' in report.summary

    async def test_tenant_mapping_overrides_keywords(self, session, tracer, tenant_id, setup):
        employee, run = setup
        session.add(
            ComponentRecommendationMapping(
                tenant_id=tenant_id, component="BONUS", rec_type="MERIT_INCREASE"
            )
        )
        await session.flush()

        report = await tracer.trace_employee(
            tenant_id, run.payroll_run_id, employee.employee_id, component="BONUS"
        )

        assert [s.details["rec_type"] for s in report.steps_of(TraceStepType.RULE_APPLIED)] == [
            "MERIT_INCREASE"
        ]


class TestNotFound:
    async def test_unknown_employee(self, tracer, tenant_id, make_run):
        run = await make_run([])

        with pytest.raises(NotFoundError) as exc_info:
            await tracer.trace_employee(tenant_id, run.payroll_run_id, uuid4())

        assert exc_info.value.entity == "Employee"

    async def test_unknown_run(self, tracer, tenant_id, make_employee):
        employee = await make_employee()

        with pytest.raises(NotFoundError):
            await tracer.trace_employee(tenant_id, uuid4(), employee.employee_id)


class TestRecommendationComponentMap:
    def test_keywords(self):
        component_map = RecommendationComponentMap()

        assert component_map.rec_types_for("BASE_SALARY") == {
            "MERIT_INCREASE",
            "PROMOTION",
            "ADJUSTMENT",
        }
        assert component_map.rec_types_for("Stock_RSU") == {"LTI_GRANT"}
        assert component_map.rec_types_for("OVERTIME") == frozenset()

    def test_configured_component_ignores_keywords(self):
        component_map = RecommendationComponentMap({"bonus": ["ADJUSTMENT"]})

        assert component_map.is_configured("BONUS")
        assert component_map.matches("ADJUSTMENT", "Bonus")
        assert not component_map.matches("BONUS", "BONUS")


def test_summary_of_no_steps():
    assert build_trace_summary([], "Ada Lovelace", "2026-01", None) == (
        "No trace data available for Ada Lovelace in period 2026-01"
    )
