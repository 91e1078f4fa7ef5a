"""Types for anomaly detection.

Detail payloads are a tagged union: each detector emits its own detail
dataclass, and every variant serializes to the same open JSON shape
(``message``, ``suggestedAction``, optional ``component``/``amount``/
``previousAmount``/``threshold``) plus a ``kind`` tag and its own extras.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field, fields, replace
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar
from uuid import UUID


class AnomalyType(str, Enum):
    """Anomaly categories."""

    NEGATIVE_NET = "NEGATIVE_NET"
    SPIKE = "SPIKE"
    DROP = "DROP"
    UNUSUAL_DEDUCTION = "UNUSUAL_DEDUCTION"
    MISSING_COMPONENT = "MISSING_COMPONENT"
    DUPLICATE = "DUPLICATE"
    CUSTOM = "CUSTOM"


class AnomalySeverity(str, Enum):
    """Anomaly severity, most severe first."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


SEVERITY_RANK: dict[str, int] = {
    AnomalySeverity.CRITICAL.value: 0,
    AnomalySeverity.HIGH.value: 1,
    AnomalySeverity.MEDIUM.value: 2,
    AnomalySeverity.LOW.value: 3,
}


class ComponentKind(str, Enum):
    """How a pay component affects net pay."""

    EARNING = "EARNING"
    DEDUCTION = "DEDUCTION"


# ===== Inputs =====


@dataclass(frozen=True)
class LineItemRecord:
    """Read-only view of a persisted line item."""

    employee_id: UUID
    component: str
    amount: Decimal
    previous_amount: Decimal = Decimal("0")
    payroll_run_id: UUID | None = None

    @property
    def component_key(self) -> str:
        """Case-insensitive component key."""
        return self.component.upper()


@dataclass
class EmployeeAggregate:
    """All line items of one employee in one run, folded into pay totals."""

    employee_id: UUID
    items: list[LineItemRecord] = field(default_factory=list)
    gross_pay: Decimal = Decimal("0")
    net_pay: Decimal = Decimal("0")
    deductions: Decimal = Decimal("0")


@dataclass(frozen=True)
class EmployeeBaseline:
    """Historical pay statistics of one employee across finalized runs."""

    employee_id: UUID
    avg_gross: float
    avg_net: float
    std_dev_gross: float
    std_dev_net: float
    component_averages: dict[str, float]
    component_std_devs: dict[str, float]
    period_count: int


# ===== Detail variants =====


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _json_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, tuple):
        return [_json_value(v) for v in value]
    return value


@dataclass(frozen=True)
class AnomalyDetail:
    """Common detail fields carried by every anomaly."""

    kind: ClassVar[str] = "generic"

    message: str
    suggested_action: str

    @property
    def component(self) -> str | None:
        return getattr(self, "component_name", None)

    def to_json(self) -> dict[str, Any]:
        """Serialize to the persisted open JSON shape."""
        payload: dict[str, Any] = {"kind": self.kind}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            key = "component" if f.name == "component_name" else _camel(f.name)
            payload[key] = _json_value(value)
        return payload


@dataclass(frozen=True)
class NegativeNetDetail(AnomalyDetail):
    kind: ClassVar[str] = "negative_net"

    amount: Decimal = Decimal("0")
    gross_pay: Decimal = Decimal("0")
    deductions: Decimal = Decimal("0")


@dataclass(frozen=True)
class DeductionRatioDetail(AnomalyDetail):
    kind: ClassVar[str] = "deduction_ratio"

    amount: Decimal = Decimal("0")
    gross_pay: Decimal = Decimal("0")
    ratio: float = 0.0
    threshold: float = 0.0


@dataclass(frozen=True)
class MissingComponentDetail(AnomalyDetail):
    kind: ClassVar[str] = "missing_component"

    expected: tuple[str, ...] = ()
    component_name: str | None = None
    amount: Decimal | None = None


@dataclass(frozen=True)
class DuplicateDetail(AnomalyDetail):
    kind: ClassVar[str] = "duplicate"

    component_name: str = ""
    amount: Decimal = Decimal("0")
    previous_amount: Decimal = Decimal("0")


@dataclass(frozen=True)
class MonthOverMonthDetail(AnomalyDetail):
    kind: ClassVar[str] = "month_over_month"

    component_name: str = ""
    amount: Decimal = Decimal("0")
    previous_amount: Decimal = Decimal("0")
    change_pct: float = 0.0
    threshold: float = 0.0


@dataclass(frozen=True)
class BaselineDeviationDetail(AnomalyDetail):
    """Statistical deviation; ``component_name`` is None for gross pay."""

    kind: ClassVar[str] = "baseline_deviation"

    amount: Decimal = Decimal("0")
    previous_amount: float = 0.0
    std_dev: float = 0.0
    z_score: float = 0.0
    threshold: float = 0.0
    period_count: int = 0
    component_name: str | None = None


@dataclass(frozen=True)
class ComponentThresholdDetail(AnomalyDetail):
    kind: ClassVar[str] = "component_threshold"

    component_name: str = ""
    amount: Decimal = Decimal("0")
    threshold: float = 0.0


@dataclass(frozen=True)
class CurrencyMismatchDetail(AnomalyDetail):
    kind: ClassVar[str] = "currency_mismatch"

    currency: str = ""
    dominant_currency: str = ""


DETAIL_KINDS: dict[str, type[AnomalyDetail]] = {
    cls.kind: cls
    for cls in (
        NegativeNetDetail,
        DeductionRatioDetail,
        MissingComponentDetail,
        DuplicateDetail,
        MonthOverMonthDetail,
        BaselineDeviationDetail,
        ComponentThresholdDetail,
        CurrencyMismatchDetail,
    )
}


def parse_detail(payload: dict[str, Any]) -> AnomalyDetail | None:
    """Rebuild a typed detail from its JSON form.

    Returns None for payloads without a known ``kind``. Unknown keys (for
    example resolution notes merged in later) are ignored.
    """
    detail_cls = DETAIL_KINDS.get(str(payload.get("kind")))
    if detail_cls is None:
        return None

    kwargs: dict[str, Any] = {}
    for f in fields(detail_cls):
        key = "component" if f.name == "component_name" else _camel(f.name)
        if key not in payload:
            continue
        value = payload[key]
        if f.name in ("amount", "gross_pay", "deductions") and value is not None:
            value = Decimal(str(value))
        elif f.name == "previous_amount" and detail_cls is not BaselineDeviationDetail:
            value = Decimal(str(value))
        elif f.name == "expected":
            value = tuple(value)
        kwargs[f.name] = value
    kwargs.setdefault("message", "")
    kwargs.setdefault("suggested_action", "")
    return detail_cls(**kwargs)


# ===== Outputs =====


@dataclass(frozen=True)
class DetectedAnomaly:
    """A single finding produced by a detector."""

    employee_id: UUID
    anomaly_type: AnomalyType
    severity: AnomalySeverity
    detail: AnomalyDetail
    # Position among findings of the same pass that share ``identity``
    occurrence: int = 0

    @property
    def identity(self) -> str:
        """Employee + type + kind + component."""
        component = (self.detail.component or "").upper()
        return f"{self.employee_id}|{self.anomaly_type.value}|{self.detail.kind}|{component}"

    @property
    def fingerprint(self) -> str:
        """Stable identity across detection passes, unique within one pass."""
        raw = self.identity
        if self.occurrence:
            raw += f"|{self.occurrence}"
        return hashlib.sha256(raw.encode()).hexdigest()[:32]

    @property
    def details(self) -> dict[str, Any]:
        return self.detail.to_json()

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "employee_id": str(self.employee_id),
            "anomaly_type": self.anomaly_type.value,
            "severity": self.severity.value,
            "fingerprint": self.fingerprint,
            "details": self.details,
        }


def number_occurrences(anomalies: list[DetectedAnomaly]) -> list[DetectedAnomaly]:
    """Number findings that share an identity, in detector order.

    Three lines of one component yield two duplicate findings; the second
    gets occurrence 1 so each keeps its own fingerprint and resolution.
    """
    seen: dict[str, int] = {}
    numbered = []
    for anomaly in anomalies:
        occurrence = seen.get(anomaly.identity, 0)
        seen[anomaly.identity] = occurrence + 1
        numbered.append(replace(anomaly, occurrence=occurrence) if occurrence else anomaly)
    return numbered


@dataclass
class AnomalyReport:
    """Run-level result of a detection pass."""

    payroll_run_id: UUID
    generation: int
    total_line_items: int
    total_employees: int
    anomalies: list[DetectedAnomaly]
    summary: str
    notes: list[str] = field(default_factory=list)

    def _count(self, severity: AnomalySeverity) -> int:
        return sum(1 for a in self.anomalies if a.severity == severity)

    @property
    def total_anomalies(self) -> int:
        return len(self.anomalies)

    @property
    def critical_count(self) -> int:
        return self._count(AnomalySeverity.CRITICAL)

    @property
    def high_count(self) -> int:
        return self._count(AnomalySeverity.HIGH)

    @property
    def medium_count(self) -> int:
        return self._count(AnomalySeverity.MEDIUM)

    @property
    def low_count(self) -> int:
        return self._count(AnomalySeverity.LOW)

    @property
    def has_blockers(self) -> bool:
        return self.critical_count > 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "payroll_run_id": str(self.payroll_run_id),
            "generation": self.generation,
            "total_line_items": self.total_line_items,
            "total_employees": self.total_employees,
            "total_anomalies": self.total_anomalies,
            "critical_count": self.critical_count,
            "high_count": self.high_count,
            "medium_count": self.medium_count,
            "low_count": self.low_count,
            "has_blockers": self.has_blockers,
            "summary": self.summary,
            "notes": list(self.notes),
            "anomalies": [a.to_dict() for a in self.anomalies],
        }
