"""Payroll run state machine with transition validation."""

from __future__ import annotations

from enum import Enum

from payroll_recon.exceptions import InvalidTransitionError


class PayrollRunStatus(str, Enum):
    """Payroll run status values."""

    DRAFT = "DRAFT"
    PROCESSING = "PROCESSING"
    REVIEW = "REVIEW"
    APPROVED = "APPROVED"
    FINALIZED = "FINALIZED"
    ERROR = "ERROR"


class PayrollRunStateMachine:
    """State machine for payroll run status transitions.

    Allowed transitions:
    - draft → processing (deferred check) | review (synchronous check) | error
    - processing → review | error | processing (re-queued check)
    - review → processing | review (re-check) | approved
    - approved → finalized
    - error → processing | review
    - finalized is terminal
    """

    # Define valid transitions: {from_status: [allowed_to_statuses]}
    VALID_TRANSITIONS: dict[str, list[str]] = {
        PayrollRunStatus.DRAFT: [
            PayrollRunStatus.PROCESSING,
            PayrollRunStatus.REVIEW,
            PayrollRunStatus.ERROR,
        ],
        PayrollRunStatus.PROCESSING: [
            PayrollRunStatus.PROCESSING,
            PayrollRunStatus.REVIEW,
            PayrollRunStatus.ERROR,
        ],
        PayrollRunStatus.REVIEW: [
            PayrollRunStatus.PROCESSING,
            PayrollRunStatus.REVIEW,
            PayrollRunStatus.APPROVED,
        ],
        PayrollRunStatus.APPROVED: [PayrollRunStatus.FINALIZED],
        PayrollRunStatus.ERROR: [PayrollRunStatus.PROCESSING, PayrollRunStatus.REVIEW],
        PayrollRunStatus.FINALIZED: [],  # Terminal state
    }

    # Statuses where a reconciliation check may be started
    CHECK_ALLOWED = {
        PayrollRunStatus.DRAFT,
        PayrollRunStatus.PROCESSING,
        PayrollRunStatus.REVIEW,
        PayrollRunStatus.ERROR,
    }

    # Statuses whose line items count as clean baseline history
    BASELINE_ELIGIBLE = {
        PayrollRunStatus.APPROVED,
        PayrollRunStatus.FINALIZED,
    }

    # Statuses where anomaly results are not yet consistent for readers
    RESULTS_PENDING = {
        PayrollRunStatus.DRAFT,
        PayrollRunStatus.PROCESSING,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def can_check(cls, status: str) -> bool:
        """Check if a reconciliation check may run in this status."""
        return status in cls.CHECK_ALLOWED

    @classmethod
    def is_baseline_eligible(cls, status: str) -> bool:
        """Check if a run in this status contributes to baselines."""
        return status in cls.BASELINE_ELIGIBLE

    @classmethod
    def are_results_pending(cls, status: str) -> bool:
        """Check if anomaly results may still be inconsistent."""
        return status in cls.RESULTS_PENDING

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])

    @classmethod
    def validate_run_for_transition(
        cls,
        from_status: str,
        to_status: str,
        unresolved_critical_count: int = 0,
    ) -> list[str]:
        """Validate a run for a specific transition, returning any errors.

        Returns list of error messages (empty if valid).
        """
        errors: list[str] = []

        # Basic transition check
        if not cls.can_transition(from_status, to_status):
            errors.append(f"Cannot transition from '{from_status}' to '{to_status}'")
            return errors

        # Transition-specific validations
        if to_status == PayrollRunStatus.APPROVED:
            if unresolved_critical_count > 0:
                errors.append(
                    f"{unresolved_critical_count} unresolved CRITICAL anomaly(ies) block approval"
                )

        return errors
