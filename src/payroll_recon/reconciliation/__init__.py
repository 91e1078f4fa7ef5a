"""Payroll run reconciliation."""

from payroll_recon.reconciliation.export import ExportedReport
from payroll_recon.reconciliation.queue import ReconciliationQueue
from payroll_recon.reconciliation.service import (
    CheckOutcome,
    LineItemInput,
    Page,
    ReconciliationReport,
    ReconciliationService,
    ReconciliationSummary,
    RunListing,
)

__all__ = [
    "CheckOutcome",
    "ExportedReport",
    "LineItemInput",
    "Page",
    "ReconciliationQueue",
    "ReconciliationReport",
    "ReconciliationService",
    "ReconciliationSummary",
    "RunListing",
]
