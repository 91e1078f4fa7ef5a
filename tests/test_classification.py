"""Tests for pay component classification."""

from decimal import Decimal
from uuid import uuid4

from payroll_recon.detection.classification import ComponentClassifier
from payroll_recon.detection.types import ComponentKind, EmployeeAggregate, LineItemRecord
from payroll_recon.models import ComponentClassification


class TestPrefixFallback:
    """Components not in the table are classified by prefix."""

    def test_deduction_prefixes(self):
        classifier = ComponentClassifier()

        assert classifier.classify("TAX_FEDERAL") is ComponentKind.DEDUCTION
        assert classifier.classify("insurance_health") is ComponentKind.DEDUCTION
        assert classifier.classify("PENSION") is ComponentKind.DEDUCTION
        assert classifier.classify("Contribution_401k") is ComponentKind.DEDUCTION

    def test_earnings(self):
        classifier = ComponentClassifier()

        assert classifier.classify("BASE_SALARY") is ComponentKind.EARNING
        assert classifier.classify("BONUS") is ComponentKind.EARNING
        # Prefix, not substring
        assert classifier.classify("PRE_TAX_BONUS") is ComponentKind.EARNING


class TestExplicitTable:
    """Listed components are classified exactly as listed."""

    def test_table_overrides_prefix_rule(self):
        classifier = ComponentClassifier(
            {"tax_refund": ComponentKind.EARNING, "UNION_DUES": "DEDUCTION"}
        )

        assert classifier.classify("TAX_REFUND") is ComponentKind.EARNING
        assert classifier.classify("union_dues") is ComponentKind.DEDUCTION
        assert classifier.classify("TAX_STATE") is ComponentKind.DEDUCTION

    async def test_for_tenant_reads_rows(self, session, tenant_id):
        session.add_all(
            [
                ComponentClassification(
                    tenant_id=tenant_id, component="TAX_REFUND", kind="EARNING"
                ),
                ComponentClassification(tenant_id=uuid4(), component="BONUS", kind="DEDUCTION"),
            ]
        )
        await session.flush()

        classifier = await ComponentClassifier.for_tenant(session, tenant_id)

        assert classifier.is_deduction("TAX_REFUND") is False
        # Other tenants' rows do not apply
        assert classifier.is_deduction("BONUS") is False


class TestTotals:
    def test_totals(self):
        classifier = ComponentClassifier()

        gross, net = classifier.totals(
            [
                ("BASE_SALARY", Decimal("5000")),
                ("BONUS", Decimal("500")),
                ("TAX_FEDERAL", Decimal("-1000")),
                ("INSURANCE", Decimal("200")),
            ]
        )

        assert gross == Decimal("5500")
        # Deductions count by absolute value
        assert net == Decimal("4300")

    def test_fold(self):
        classifier = ComponentClassifier()
        employee_id = uuid4()
        group = EmployeeAggregate(employee_id=employee_id)

        classifier.fold(group, LineItemRecord(employee_id, "BASE_SALARY", Decimal("1000")))
        classifier.fold(group, LineItemRecord(employee_id, "TAX", Decimal("1050")))

        assert group.gross_pay == Decimal("1000")
        assert group.deductions == Decimal("1050")
        assert group.net_pay == Decimal("-50")
        assert len(group.items) == 2
