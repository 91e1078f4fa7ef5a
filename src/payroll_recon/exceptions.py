"""Exception taxonomy for the reconciliation core."""

from __future__ import annotations


class ReconciliationError(Exception):
    """Base class for reconciliation errors."""


class NotFoundError(ReconciliationError):
    """Raised when a run, employee or anomaly does not resolve under the tenant."""

    def __init__(self, entity: str, entity_id: object, detail: str | None = None):
        self.entity = entity
        self.entity_id = entity_id
        msg = f"{entity} {entity_id} not found"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class InvalidStateError(ReconciliationError):
    """Raised when an operation is not valid for the current state."""


class InvalidTransitionError(InvalidStateError):
    """Raised when an invalid run status transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ConcurrentDetectionError(ReconciliationError):
    """Raised when another detection pass replaced the run's anomalies first."""

    def __init__(self, payroll_run_id: object, expected_generation: int):
        self.payroll_run_id = payroll_run_id
        self.expected_generation = expected_generation
        super().__init__(
            f"Detection generation {expected_generation} of payroll run "
            f"{payroll_run_id} was superseded by a concurrent pass"
        )
