"""Pay traceability: data edit to payslip."""

from payroll_recon.traceability.mapping import RecommendationComponentMap
from payroll_recon.traceability.service import (
    TraceabilityService,
    TraceReport,
    TraceStep,
    TraceStepType,
)

__all__ = [
    "RecommendationComponentMap",
    "TraceabilityService",
    "TraceReport",
    "TraceStep",
    "TraceStepType",
]
