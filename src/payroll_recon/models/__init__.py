"""ORM models."""

from payroll_recon.models.audit import AuditEvent
from payroll_recon.models.base import Base, TimestampMixin, UpdatedAtMixin
from payroll_recon.models.compensation import (
    CompCycle,
    ComponentRecommendationMapping,
    CompRecommendation,
)
from payroll_recon.models.employee import AppUser, Employee
from payroll_recon.models.payroll import (
    AnomalyResolution,
    ComponentClassification,
    PayrollAnomaly,
    PayrollLineItem,
    PayrollRun,
)

__all__ = [
    "AnomalyResolution",
    "AppUser",
    "AuditEvent",
    "Base",
    "CompCycle",
    "ComponentClassification",
    "ComponentRecommendationMapping",
    "CompRecommendation",
    "Employee",
    "PayrollAnomaly",
    "PayrollLineItem",
    "PayrollRun",
    "TimestampMixin",
    "UpdatedAtMixin",
]
