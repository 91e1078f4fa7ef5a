"""HTTP API for payroll reconciliation."""
