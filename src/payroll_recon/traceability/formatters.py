"""Human-readable formatting for trace steps."""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

NOT_AVAILABLE = "N/A"

REC_TYPE_LABELS: dict[str, str] = {
    "MERIT_INCREASE": "merit increase",
    "BONUS": "bonus",
    "LTI_GRANT": "LTI grant",
    "PROMOTION": "promotion",
    "ADJUSTMENT": "adjustment",
}

RECOMMENDATION_STATUS_LABELS: dict[str, str] = {
    "DRAFT": "is in draft",
    "SUBMITTED": "has been submitted for review",
    "APPROVED": "has been approved",
    "REJECTED": "was rejected",
    "ESCALATED": "was escalated for further review",
}


def to_decimal(value: Any) -> Decimal | None:
    """Coerce a number-like value; None when it is not a number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not result.is_finite():
        return None
    return result


def format_currency(value: Any) -> str:
    """Format as dollars with thousands separators, e.g. ``$1,234.56``."""
    amount = to_decimal(value)
    if amount is None:
        return NOT_AVAILABLE
    return f"${amount:,.2f}"


def format_date(value: date | datetime | None) -> str:
    """Long-form date, e.g. ``January 5, 2026``."""
    if value is None:
        return "unknown date"
    return f"{value:%B} {value.day}, {value.year}"


def pct_change(before: Any, after: Any) -> str:
    """Signed percentage change, e.g. ``+10.0%``.

    From zero, no change is ``0%`` and any change is ``N/A``.
    """
    b = to_decimal(before) or Decimal("0")
    a = to_decimal(after) or Decimal("0")
    if b == 0:
        return "0%" if a == 0 else NOT_AVAILABLE
    pct = float((a - b) / b * 100)
    sign = "+" if pct >= 0 else ""
    return f"{sign}{pct:.1f}%"


def rec_type_label(rec_type: str) -> str:
    """Readable recommendation type."""
    return REC_TYPE_LABELS.get(rec_type, rec_type.lower().replace("_", " "))


def status_label(status: str) -> str:
    """Readable recommendation status, phrased as a predicate."""
    return RECOMMENDATION_STATUS_LABELS.get(status, f'has status "{status}"')


def _render(value: Any) -> str:
    return json.dumps(value, default=str)


def _is_diff(value: Any) -> bool:
    return isinstance(value, Mapping) and "before" in value and "after" in value


def extract_change_value(changes: Mapping[str, Any], side: str) -> str | None:
    """First ``before``/``after`` value found in a change payload."""
    for value in changes.values():
        if isinstance(value, Mapping) and side in value:
            found = value[side]
            return found if isinstance(found, str) else _render(found)
    return None


def explain_data_change(
    actor: str, action: str, changes: Mapping[str, Any], timestamp: datetime | None
) -> str:
    field_changes = []
    for key, value in changes.items():
        if key == "updatedAt":
            continue
        if _is_diff(value):
            field_changes.append(
                f"{key} changed from {_render(value['before'])} to {_render(value['after'])}"
            )
        else:
            field_changes.append(f"{key} updated")

    date_str = format_date(timestamp)
    if not field_changes:
        return f'{actor} performed "{action}" on {date_str}'
    return f"{actor} made changes on {date_str}: {'; '.join(field_changes)}"


def explain_recommendation(
    type_label: str,
    current_value: Any,
    proposed_value: Any,
    cycle_name: str,
    justification: str | None,
) -> str:
    change = pct_change(current_value, proposed_value)
    based_on = f', based on: "{justification}"' if justification else ""
    return (
        f"A {type_label} of {change} ({format_currency(current_value)} → "
        f"{format_currency(proposed_value)}) was recommended in cycle "
        f'"{cycle_name}"{based_on}'
    )


def explain_recommendation_status(type_label: str, status: str) -> str:
    return f"The {type_label} recommendation {status_label(status)}"


def explain_approval(
    type_label: str,
    current_value: Any,
    proposed_value: Any,
    approver_name: str,
    approved_at: datetime | None,
    cycle_name: str,
) -> str:
    return (
        f"{type_label} of {format_currency(current_value)} → {format_currency(proposed_value)} "
        f'approved by {approver_name} on {format_date(approved_at)}, per cycle "{cycle_name}"'
    )


def explain_payroll_impact(
    employee_name: str, component: str, amount: Any, previous_amount: Any, delta: Any
) -> str:
    change = to_decimal(delta) or Decimal("0")
    if change == 0:
        return (
            f"{employee_name}'s {component} remains at {format_currency(amount)} (no change)"
        )
    direction = "increased" if change > 0 else "decreased"
    return (
        f"{employee_name}'s {component} {direction} from {format_currency(previous_amount)} "
        f"to {format_currency(amount)} ({pct_change(previous_amount, amount)}, "
        f"delta: {format_currency(abs(change))})"
    )
