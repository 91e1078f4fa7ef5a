"""Payroll reconciliation services."""

from payroll_recon.services.state_machine import PayrollRunStateMachine, PayrollRunStatus

__all__ = [
    "PayrollRunStateMachine",
    "PayrollRunStatus",
]
