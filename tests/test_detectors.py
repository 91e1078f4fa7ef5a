"""Tests for the individual anomaly detectors."""

from decimal import Decimal
from uuid import uuid4

import pytest

from payroll_recon.detection.classification import ComponentClassifier
from payroll_recon.detection.config import DetectionConfig
from payroll_recon.detection.detectors import (
    detect_baseline_deviations,
    detect_currency_mismatches,
    detect_duplicates,
    detect_employee,
    detect_missing_components,
    detect_month_over_month,
    detect_negative_net,
    detect_threshold_exceedances,
    detect_unusual_deductions,
    dominant_currency,
)
from payroll_recon.detection.types import (
    AnomalySeverity,
    AnomalyType,
    EmployeeAggregate,
    EmployeeBaseline,
    LineItemRecord,
    number_occurrences,
    parse_detail,
)


def aggregate(*items, employee_id=None) -> EmployeeAggregate:
    """Fold ``(component, amount[, previous_amount])`` tuples into an aggregate."""
    employee_id = employee_id or uuid4()
    group = EmployeeAggregate(employee_id=employee_id)
    classifier = ComponentClassifier()
    for component, amount, *rest in items:
        previous = Decimal(str(rest[0])) if rest else Decimal("0")
        classifier.fold(
            group, LineItemRecord(employee_id, component, Decimal(str(amount)), previous)
        )
    return group


def baseline_for(group, avg, std, periods=3, component_std=None) -> EmployeeBaseline:
    return EmployeeBaseline(
        employee_id=group.employee_id,
        avg_gross=avg,
        avg_net=avg,
        std_dev_gross=std,
        std_dev_net=std,
        component_averages={"BASE_SALARY": avg},
        component_std_devs={"BASE_SALARY": std if component_std is None else component_std},
        period_count=periods,
    )


class TestNegativeNet:
    def test_negative_net_is_critical(self):
        group = aggregate(("BASE_SALARY", 1000), ("TAX_INCOME", 1050))

        anomalies = detect_negative_net(group)

        assert len(anomalies) == 1
        anomaly = anomalies[0]
        assert anomaly.anomaly_type is AnomalyType.NEGATIVE_NET
        assert anomaly.severity is AnomalySeverity.CRITICAL
        assert anomaly.details["message"] == (
            "Negative net pay: -50.00. Gross: 1000.00, Deductions: 1050.00"
        )
        assert anomaly.details["amount"] == -50.0

    def test_zero_net_is_fine(self):
        group = aggregate(("BASE_SALARY", 1000), ("TAX_INCOME", 1000))

        assert detect_negative_net(group) == []

    def test_exactly_one_per_employee(self):
        group = aggregate(
            ("BASE_SALARY", 1000),
            ("TAX_INCOME", 900),
            ("INSURANCE", 300),
            ("PENSION", 200),
        )

        findings = detect_employee(group, None, DetectionConfig())

        negative = [a for a in findings if a.anomaly_type is AnomalyType.NEGATIVE_NET]
        assert len(negative) == 1


class TestUnusualDeductions:
    def test_ratio_at_threshold_not_flagged(self):
        group = aggregate(("BASE_SALARY", 1000), ("TAX_INCOME", 600))

        assert detect_unusual_deductions(group, DetectionConfig()) == []

    def test_ratio_above_threshold_is_medium(self):
        group = aggregate(("BASE_SALARY", 1000), ("TAX_INCOME", 601))

        anomalies = detect_unusual_deductions(group, DetectionConfig())

        assert len(anomalies) == 1
        assert anomalies[0].severity is AnomalySeverity.MEDIUM
        assert anomalies[0].details["message"] == (
            "Deductions are 60.1% of gross pay (threshold: 60.0%)"
        )

    def test_ratio_above_eighty_percent_is_high(self):
        group = aggregate(("BASE_SALARY", 1000), ("TAX_INCOME", 801))

        anomalies = detect_unusual_deductions(group, DetectionConfig())

        assert anomalies[0].severity is AnomalySeverity.HIGH

    def test_zero_gross_skipped(self):
        group = aggregate(("TAX_INCOME", 100))

        assert detect_unusual_deductions(group, DetectionConfig()) == []

    def test_threshold_is_configurable(self):
        group = aggregate(("BASE_SALARY", 1000), ("TAX_INCOME", 450))
        config = DetectionConfig(max_deduction_pct=0.4)

        assert len(detect_unusual_deductions(group, config)) == 1


class TestMissingComponents:
    def test_no_base_pay(self):
        group = aggregate(("BONUS", 500))

        anomalies = detect_missing_components(group, DetectionConfig())

        assert len(anomalies) == 1
        assert anomalies[0].anomaly_type is AnomalyType.MISSING_COMPONENT
        assert anomalies[0].severity is AnomalySeverity.HIGH
        assert anomalies[0].details["expected"] == [
            "BASE_PAY",
            "BASIC_SALARY",
            "BASE_SALARY",
            "SALARY",
        ]

    def test_substring_match_counts(self):
        group = aggregate(("MONTHLY_SALARY_GROSS", 5000))

        assert detect_missing_components(group, DetectionConfig()) == []

    def test_zero_amount_base_pay(self):
        group = aggregate(("BASE_SALARY", 0), ("BONUS", 100))

        anomalies = detect_missing_components(group, DetectionConfig())

        assert len(anomalies) == 1
        assert anomalies[0].details["component"] == "BASE_SALARY"
        assert anomalies[0].details["message"] == 'Base pay component "BASE_SALARY" has zero amount'


class TestDuplicates:
    def test_duplicate_component(self):
        group = aggregate(("BASE_SALARY", 3000), ("BONUS", 100), ("BONUS", 150))

        anomalies = detect_duplicates(group)

        assert len(anomalies) == 1
        assert anomalies[0].severity is AnomalySeverity.HIGH
        assert anomalies[0].details["message"] == (
            'Duplicate component "BONUS" for employee. Amounts: 100.00 and 150.00'
        )

    def test_case_insensitive_and_compared_to_first(self):
        group = aggregate(("bonus", 100), ("BONUS", 150), ("Bonus", 175))

        anomalies = detect_duplicates(group)

        assert len(anomalies) == 2
        assert [a.details["previousAmount"] for a in anomalies] == [100.0, 100.0]


class TestMonthOverMonth:
    @pytest.mark.parametrize(
        "amount,previous,expected",
        [
            (1600, 1000, (AnomalyType.SPIKE, AnomalySeverity.MEDIUM)),
            (2500, 1000, (AnomalyType.SPIKE, AnomalySeverity.HIGH)),
            (600, 1000, (AnomalyType.DROP, AnomalySeverity.MEDIUM)),
            (100, 1000, (AnomalyType.DROP, AnomalySeverity.HIGH)),
        ],
    )
    def test_changes(self, amount, previous, expected):
        group = aggregate(("BASE_SALARY", amount, previous))

        anomalies = detect_month_over_month(group, DetectionConfig())

        assert len(anomalies) == 1
        assert (anomalies[0].anomaly_type, anomalies[0].severity) == expected

    def test_change_at_threshold_not_flagged(self):
        group = aggregate(("BASE_SALARY", 1500, 1000), ("BONUS", 700, 1000))

        assert detect_month_over_month(group, DetectionConfig()) == []

    def test_no_previous_amount_skipped(self):
        group = aggregate(("BONUS", 10000))

        assert detect_month_over_month(group, DetectionConfig()) == []


class TestBaselineDeviations:
    def test_zero_std_dev_skipped(self):
        group = aggregate(("BASE_SALARY", 50000))

        anomalies = detect_baseline_deviations(
            group, baseline_for(group, 5000.0, 0.0), DetectionConfig()
        )

        assert anomalies == []

    def test_fewer_than_three_periods_skipped(self):
        group = aggregate(("BASE_SALARY", 50000))

        anomalies = detect_baseline_deviations(
            group, baseline_for(group, 5000.0, 100.0, periods=2), DetectionConfig()
        )

        assert anomalies == []

    def test_missing_baseline_skipped(self):
        group = aggregate(("BASE_SALARY", 50000))

        assert detect_baseline_deviations(group, None, DetectionConfig()) == []

    def test_large_gross_deviation_is_high(self):
        group = aggregate(("BASE_SALARY", 6000))

        anomalies = detect_baseline_deviations(
            group, baseline_for(group, 5000.0, 100.0), DetectionConfig()
        )

        gross, component = anomalies
        assert gross.anomaly_type is AnomalyType.SPIKE
        assert gross.severity is AnomalySeverity.HIGH
        assert gross.details["zScore"] == pytest.approx(10.0)
        assert "component" not in gross.details
        # Component-level deviations are always LOW
        assert component.severity is AnomalySeverity.LOW
        assert component.details["component"] == "BASE_SALARY"

    def test_moderate_drop_is_medium(self):
        group = aggregate(("BASE_SALARY", 4700))

        anomalies = detect_baseline_deviations(
            group, baseline_for(group, 5000.0, 100.0, component_std=0.0), DetectionConfig()
        )

        assert len(anomalies) == 1
        assert anomalies[0].anomaly_type is AnomalyType.DROP
        assert anomalies[0].severity is AnomalySeverity.MEDIUM


class TestThresholds:
    def test_component_above_cap(self):
        group = aggregate(("BASE_SALARY", 5000), ("bonus", 1500))
        config = DetectionConfig(component_thresholds={"BONUS": 1000})

        anomalies = detect_threshold_exceedances(group, config)

        assert len(anomalies) == 1
        assert anomalies[0].anomaly_type is AnomalyType.CUSTOM
        assert anomalies[0].severity is AnomalySeverity.HIGH

    def test_component_at_cap(self):
        group = aggregate(("BONUS", 1000))
        config = DetectionConfig(component_thresholds={"BONUS": 1000})

        assert detect_threshold_exceedances(group, config) == []


class TestCurrency:
    def test_minority_currency_flagged(self):
        a, b, c = uuid4(), uuid4(), uuid4()

        anomalies = detect_currency_mismatches({a: "USD", b: "USD", c: "EUR"})

        assert len(anomalies) == 1
        assert anomalies[0].employee_id == c
        assert anomalies[0].severity is AnomalySeverity.MEDIUM
        assert anomalies[0].details["dominantCurrency"] == "USD"

    def test_homogeneous_run(self):
        assert detect_currency_mismatches({uuid4(): "USD", uuid4(): "USD"}) == []

    def test_tie_goes_to_first_code(self):
        assert dominant_currency({uuid4(): "USD", uuid4(): "EUR"}) == "EUR"
        assert dominant_currency({}) is None


class TestDetails:
    def test_fingerprint_is_stable_across_passes(self):
        employee_id = uuid4()
        first = detect_duplicates(aggregate(("BONUS", 1), ("BONUS", 2), employee_id=employee_id))
        second = detect_duplicates(
            aggregate(("BONUS", 5), ("bonus", 9), employee_id=employee_id)
        )

        assert first[0].fingerprint == second[0].fingerprint

    def test_repeated_findings_get_distinct_fingerprints(self):
        group = aggregate(("BONUS", 100), ("BONUS", 150), ("BONUS", 900))

        first, second = number_occurrences(detect_duplicates(group))

        assert (first.occurrence, second.occurrence) == (0, 1)
        assert first.identity == second.identity
        assert first.fingerprint != second.fingerprint
        # The first finding keeps the fingerprint it had before numbering
        assert first.fingerprint == detect_duplicates(group)[0].fingerprint

    def test_detail_round_trip(self):
        group = aggregate(("BASE_SALARY", 1000), ("TAX_INCOME", 1050))
        anomaly = detect_negative_net(group)[0]

        detail = parse_detail(anomaly.details)

        assert detail == anomaly.detail

    def test_unknown_kind(self):
        assert parse_detail({"message": "legacy"}) is None
