"""Anomaly detectors.

Each detector is a pure function over one employee aggregate (and, for the
statistical check, that employee's baseline). Detectors never raise and
never short-circuit each other: the engine runs all of them and keeps every
finding.
"""

from __future__ import annotations

from collections import Counter
from decimal import Decimal
from typing import Mapping
from uuid import UUID

from payroll_recon.detection.config import DetectionConfig
from payroll_recon.detection.types import (
    AnomalySeverity,
    AnomalyType,
    BaselineDeviationDetail,
    ComponentThresholdDetail,
    CurrencyMismatchDetail,
    DeductionRatioDetail,
    DetectedAnomaly,
    DuplicateDetail,
    EmployeeAggregate,
    EmployeeBaseline,
    MissingComponentDetail,
    MonthOverMonthDetail,
    NegativeNetDetail,
)

# Severity escalation points
DEDUCTION_RATIO_HIGH = 0.80
SPIKE_HIGH_PCT = 1.0
DROP_HIGH_PCT = 0.80
GROSS_Z_SCORE_HIGH = 4.0

# Statistical checks need at least this many historical periods
MIN_STATISTICAL_PERIODS = 3

ZERO = Decimal("0")


def detect_negative_net(group: EmployeeAggregate) -> list[DetectedAnomaly]:
    """Negative net pay is always CRITICAL."""
    if group.net_pay >= 0:
        return []
    return [
        DetectedAnomaly(
            employee_id=group.employee_id,
            anomaly_type=AnomalyType.NEGATIVE_NET,
            severity=AnomalySeverity.CRITICAL,
            detail=NegativeNetDetail(
                message=(
                    f"Negative net pay: {group.net_pay:.2f}. Gross: {group.gross_pay:.2f}, "
                    f"Deductions: {group.deductions:.2f}"
                ),
                suggested_action=(
                    "Review deductions: total deductions exceed gross pay. "
                    "Block payroll for this employee until resolved."
                ),
                amount=group.net_pay,
                gross_pay=group.gross_pay,
                deductions=group.deductions,
            ),
        )
    ]


def detect_unusual_deductions(
    group: EmployeeAggregate, config: DetectionConfig
) -> list[DetectedAnomaly]:
    """Deductions above ``max_deduction_pct`` of gross pay (strictly greater).

    Skipped when gross pay is zero or negative.
    """
    if group.gross_pay <= 0:
        return []

    ratio = float(group.deductions / group.gross_pay)
    if not ratio > config.max_deduction_pct:
        return []

    severity = AnomalySeverity.HIGH if ratio > DEDUCTION_RATIO_HIGH else AnomalySeverity.MEDIUM
    return [
        DetectedAnomaly(
            employee_id=group.employee_id,
            anomaly_type=AnomalyType.UNUSUAL_DEDUCTION,
            severity=severity,
            detail=DeductionRatioDetail(
                message=(
                    f"Deductions are {ratio * 100:.1f}% of gross pay "
                    f"(threshold: {config.max_deduction_pct * 100:.1f}%)"
                ),
                suggested_action=(
                    "Verify deduction amounts are correct. "
                    "Check for duplicate or erroneous deduction entries."
                ),
                amount=group.deductions,
                gross_pay=group.gross_pay,
                ratio=ratio,
                threshold=config.max_deduction_pct,
            ),
        )
    ]


def _is_mandatory(component_key: str, config: DetectionConfig) -> bool:
    return any(mandatory in component_key for mandatory in config.mandatory_components)


def detect_missing_components(
    group: EmployeeAggregate, config: DetectionConfig
) -> list[DetectedAnomaly]:
    """No mandatory base pay component, or a mandatory component paid at zero."""
    anomalies: list[DetectedAnomaly] = []

    if not any(_is_mandatory(item.component_key, config) for item in group.items):
        anomalies.append(
            DetectedAnomaly(
                employee_id=group.employee_id,
                anomaly_type=AnomalyType.MISSING_COMPONENT,
                severity=AnomalySeverity.HIGH,
                detail=MissingComponentDetail(
                    message=(
                        "No mandatory base pay component found. Expected one of: "
                        + ", ".join(config.mandatory_components)
                    ),
                    suggested_action=(
                        "Add base pay component for this employee "
                        "or verify they are on leave/terminated."
                    ),
                    expected=config.mandatory_components,
                ),
            )
        )

    for item in group.items:
        if _is_mandatory(item.component_key, config) and item.amount == 0:
            anomalies.append(
                DetectedAnomaly(
                    employee_id=group.employee_id,
                    anomaly_type=AnomalyType.MISSING_COMPONENT,
                    severity=AnomalySeverity.HIGH,
                    detail=MissingComponentDetail(
                        message=f'Base pay component "{item.component}" has zero amount',
                        suggested_action=(
                            "Verify base salary is correct. "
                            "Zero base pay may indicate a data entry error."
                        ),
                        expected=config.mandatory_components,
                        component_name=item.component,
                        amount=ZERO,
                    ),
                )
            )

    return anomalies


def detect_duplicates(group: EmployeeAggregate) -> list[DetectedAnomaly]:
    """Repeated component names (case-insensitive), compared to the first occurrence."""
    anomalies: list[DetectedAnomaly] = []
    seen = {}

    for item in group.items:
        first = seen.get(item.component_key)
        if first is None:
            seen[item.component_key] = item
            continue
        anomalies.append(
            DetectedAnomaly(
                employee_id=group.employee_id,
                anomaly_type=AnomalyType.DUPLICATE,
                severity=AnomalySeverity.HIGH,
                detail=DuplicateDetail(
                    message=(
                        f'Duplicate component "{item.component}" for employee. '
                        f"Amounts: {first.amount:.2f} and {item.amount:.2f}"
                    ),
                    suggested_action=(
                        "Remove duplicate entry or verify both entries are "
                        "intentional (e.g., split payments)."
                    ),
                    component_name=item.component,
                    amount=item.amount,
                    previous_amount=first.amount,
                ),
            )
        )

    return anomalies


def detect_month_over_month(
    group: EmployeeAggregate, config: DetectionConfig
) -> list[DetectedAnomaly]:
    """Per line item change against its own previous amount.

    Items without a previous amount are skipped.
    """
    anomalies: list[DetectedAnomaly] = []

    for item in group.items:
        current = item.amount
        previous = item.previous_amount
        if previous == 0:
            continue

        change_pct = float(abs(current - previous) / abs(previous))

        if current > previous and change_pct > config.spike_threshold_pct:
            anomalies.append(
                DetectedAnomaly(
                    employee_id=group.employee_id,
                    anomaly_type=AnomalyType.SPIKE,
                    severity=(
                        AnomalySeverity.HIGH
                        if change_pct > SPIKE_HIGH_PCT
                        else AnomalySeverity.MEDIUM
                    ),
                    detail=MonthOverMonthDetail(
                        message=(
                            f"{item.component} spiked {change_pct * 100:.1f}% "
                            f"from {previous:.2f} to {current:.2f}"
                        ),
                        suggested_action=(
                            "Verify the increase is expected (promotion, raise, bonus). "
                            "Review approval records."
                        ),
                        component_name=item.component,
                        amount=current,
                        previous_amount=previous,
                        change_pct=change_pct,
                        threshold=config.spike_threshold_pct,
                    ),
                )
            )
        elif current < previous and change_pct > config.drop_threshold_pct:
            anomalies.append(
                DetectedAnomaly(
                    employee_id=group.employee_id,
                    anomaly_type=AnomalyType.DROP,
                    severity=(
                        AnomalySeverity.HIGH
                        if change_pct > DROP_HIGH_PCT
                        else AnomalySeverity.MEDIUM
                    ),
                    detail=MonthOverMonthDetail(
                        message=(
                            f"{item.component} dropped {change_pct * 100:.1f}% "
                            f"from {previous:.2f} to {current:.2f}"
                        ),
                        suggested_action=(
                            "Verify the decrease is expected "
                            "(demotion, part-time change, correction)."
                        ),
                        component_name=item.component,
                        amount=current,
                        previous_amount=previous,
                        change_pct=change_pct,
                        threshold=config.drop_threshold_pct,
                    ),
                )
            )

    return anomalies


def detect_baseline_deviations(
    group: EmployeeAggregate,
    baseline: EmployeeBaseline | None,
    config: DetectionConfig,
) -> list[DetectedAnomaly]:
    """z-score of gross pay and of each component against the employee baseline.

    Needs a baseline of at least three periods. A zero standard deviation
    skips the corresponding check.
    """
    if baseline is None or baseline.period_count < MIN_STATISTICAL_PERIODS:
        return []

    anomalies: list[DetectedAnomaly] = []
    gross = float(group.gross_pay)

    if baseline.std_dev_gross > 0:
        z_score = abs(gross - baseline.avg_gross) / baseline.std_dev_gross
        if z_score > config.outlier_std_devs:
            above = gross > baseline.avg_gross
            direction = "above" if above else "below"
            anomalies.append(
                DetectedAnomaly(
                    employee_id=group.employee_id,
                    anomaly_type=AnomalyType.SPIKE if above else AnomalyType.DROP,
                    severity=(
                        AnomalySeverity.HIGH
                        if z_score > GROSS_Z_SCORE_HIGH
                        else AnomalySeverity.MEDIUM
                    ),
                    detail=BaselineDeviationDetail(
                        message=(
                            f"Gross pay {gross:.2f} is {z_score:.1f} std devs {direction} "
                            f"baseline avg {baseline.avg_gross:.2f} "
                            f"(σ={baseline.std_dev_gross:.2f}, {baseline.period_count} periods)"
                        ),
                        suggested_action=(
                            "Review gross pay: statistically unusual compared to last "
                            f"{baseline.period_count} periods."
                        ),
                        amount=group.gross_pay,
                        previous_amount=baseline.avg_gross,
                        std_dev=baseline.std_dev_gross,
                        z_score=z_score,
                        threshold=config.outlier_std_devs,
                        period_count=baseline.period_count,
                    ),
                )
            )

    for item in group.items:
        key = item.component_key
        avg = baseline.component_averages.get(key)
        std_dev = baseline.component_std_devs.get(key)
        if avg is None or std_dev is None or std_dev <= 0:
            continue

        amount = float(item.amount)
        z_score = abs(amount - avg) / std_dev
        if not z_score > config.outlier_std_devs:
            continue

        above = amount > avg
        direction = "above" if above else "below"
        anomalies.append(
            DetectedAnomaly(
                employee_id=group.employee_id,
                anomaly_type=AnomalyType.SPIKE if above else AnomalyType.DROP,
                severity=AnomalySeverity.LOW,
                detail=BaselineDeviationDetail(
                    message=(
                        f"{item.component} amount {amount:.2f} is {z_score:.1f} std devs "
                        f"{direction} baseline avg {avg:.2f}"
                    ),
                    suggested_action=f"Review {item.component}: statistically unusual.",
                    amount=item.amount,
                    previous_amount=avg,
                    std_dev=std_dev,
                    z_score=z_score,
                    threshold=config.outlier_std_devs,
                    period_count=baseline.period_count,
                    component_name=item.component,
                ),
            )
        )

    return anomalies


def detect_threshold_exceedances(
    group: EmployeeAggregate, config: DetectionConfig
) -> list[DetectedAnomaly]:
    """Components whose absolute amount exceeds a configured cap."""
    if not config.component_thresholds:
        return []

    anomalies: list[DetectedAnomaly] = []
    for item in group.items:
        threshold = config.component_thresholds.get(item.component_key)
        if threshold is None or not abs(item.amount) > threshold:
            continue
        anomalies.append(
            DetectedAnomaly(
                employee_id=group.employee_id,
                anomaly_type=AnomalyType.CUSTOM,
                severity=AnomalySeverity.HIGH,
                detail=ComponentThresholdDetail(
                    message=(
                        f"{item.component} amount {item.amount:.2f} exceeds "
                        f"configured threshold {threshold:.2f}"
                    ),
                    suggested_action=f"Review {item.component}: exceeds maximum allowed amount.",
                    component_name=item.component,
                    amount=item.amount,
                    threshold=float(threshold),
                ),
            )
        )
    return anomalies


def detect_employee(
    group: EmployeeAggregate,
    baseline: EmployeeBaseline | None,
    config: DetectionConfig,
) -> list[DetectedAnomaly]:
    """Run every per-employee detector, in a fixed order."""
    return [
        *detect_negative_net(group),
        *detect_unusual_deductions(group, config),
        *detect_missing_components(group, config),
        *detect_duplicates(group),
        *detect_month_over_month(group, config),
        *detect_baseline_deviations(group, baseline, config),
        *detect_threshold_exceedances(group, config),
    ]


def dominant_currency(currencies: Mapping[UUID, str]) -> str | None:
    """Most common currency; ties go to the alphabetically first code."""
    if not currencies:
        return None
    counts = Counter(currencies.values())
    return min(counts, key=lambda code: (-counts[code], code))


def detect_currency_mismatches(currencies: Mapping[UUID, str]) -> list[DetectedAnomaly]:
    """Flag each employee paid in a currency other than the run's dominant one.

    ``currencies`` maps employee id to home currency for the employees of
    one run. Homogeneous runs produce nothing.
    """
    if len(set(currencies.values())) < 2:
        return []

    dominant = dominant_currency(currencies)
    anomalies: list[DetectedAnomaly] = []
    for employee_id in sorted(currencies, key=str):
        currency = currencies[employee_id]
        if currency == dominant:
            continue
        anomalies.append(
            DetectedAnomaly(
                employee_id=employee_id,
                anomaly_type=AnomalyType.CUSTOM,
                severity=AnomalySeverity.MEDIUM,
                detail=CurrencyMismatchDetail(
                    message=(
                        f"Employee currency ({currency}) differs from payroll run "
                        f"dominant currency ({dominant})"
                    ),
                    suggested_action=(
                        "Verify currency conversion has been applied "
                        "or process in separate payroll run."
                    ),
                    currency=currency,
                    dominant_currency=dominant or "",
                ),
            )
        )
    return anomalies
