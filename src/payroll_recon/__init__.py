"""Payroll reconciliation: anomaly detection, run orchestration and traceability."""

__version__ = "0.1.0"
