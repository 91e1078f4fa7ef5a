"""Report exports: a flat CSV anomaly table and a structured text report."""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from typing import TYPE_CHECKING

from payroll_recon.traceability.formatters import format_currency

if TYPE_CHECKING:
    from payroll_recon.reconciliation.service import ReconciliationReport

CSV_HEADER = ["Anomaly ID", "Employee ID", "Type", "Severity", "Resolved", "Details", "Created At"]


@dataclass(frozen=True)
class ExportedReport:
    """Rendered export, ready to be served as a download."""

    content: str
    content_type: str
    filename: str


def _filename(report: ReconciliationReport, extension: str) -> str:
    s = report.summary
    return f"reconciliation-{s.payroll_run_id}-{s.period}.{extension}"


def render_csv(report: ReconciliationReport) -> ExportedReport:
    """One row per anomaly; every field is quoted."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for anomaly in report.anomalies:
        details = anomaly.details or {}
        writer.writerow(
            [
                anomaly.payroll_anomaly_id,
                anomaly.employee_id,
                anomaly.anomaly_type,
                anomaly.severity,
                "Yes" if anomaly.resolved else "No",
                details.get("message", ""),
                anomaly.created_at.isoformat() if anomaly.created_at else "",
            ]
        )
    return ExportedReport(
        content=buffer.getvalue(),
        content_type="text/csv",
        filename=_filename(report, "csv"),
    )


def render_text(report: ReconciliationReport) -> ExportedReport:
    """Plain-text report: summary, counts, anomaly listing and trace steps."""
    s = report.summary
    lines = [
        "RECONCILIATION REPORT",
        "=" * 60,
        f"Payroll Run: {s.payroll_run_id}",
        f"Period: {s.period}",
        f"Status: {s.status}",
        f"Generated: {report.generated_at.isoformat()}",
        "",
        "SUMMARY",
        "-" * 40,
        f"Total Employees: {s.total_employees}",
        f"Total Line Items: {s.total_line_items}",
        f"Total Gross: {format_currency(s.total_gross)}",
        f"Total Net: {format_currency(s.total_net)}",
        f"Total Anomalies: {s.total_anomalies}",
        f"Resolved: {s.resolved_count}",
        f"Unresolved: {s.unresolved_count}",
        f"Amount at Risk: {format_currency(s.total_amount_at_risk)}",
        f"Has Blockers: {'YES' if s.has_blockers else 'NO'}",
        "",
        "ANOMALIES BY SEVERITY",
        "-" * 40,
    ]
    lines.extend(f"  {severity}: {count}" for severity, count in s.anomalies_by_severity.items())
    lines += ["", "ANOMALIES BY TYPE", "-" * 40]
    lines.extend(f"  {kind}: {count}" for kind, count in s.anomalies_by_type.items())
    lines += ["", "ANOMALY DETAILS", "-" * 40]

    for anomaly in report.anomalies:
        details = anomaly.details or {}
        lines.append(
            f"[{anomaly.severity}] {anomaly.anomaly_type} - Employee: {anomaly.employee_id}"
        )
        lines.append(f"  {details.get('message') or 'No details'}")
        if details.get("suggestedAction"):
            lines.append(f"  Action: {details['suggestedAction']}")
        if anomaly.resolved:
            resolved_by = details.get("resolvedByUserId") or anomaly.resolved_by
            lines.append(f"  Resolved by {resolved_by}")
            if details.get("resolutionNotes"):
                lines.append(f"  Notes: {details['resolutionNotes']}")
        lines.append("")

    if report.traces:
        lines += ["TRACE REPORTS", "=" * 60]
        for trace in report.traces:
            lines.append(f"Employee: {trace.employee_name} ({trace.employee_id})")
            lines.append(f"Period: {trace.period}")
            lines.append(f"Summary: {trace.summary}")
            lines.append(f"Steps: {len(trace.steps)}")
            lines.extend(
                f"  [{step.order}] {step.type.value}: {step.explanation}" for step in trace.steps
            )
            lines.append("")

    return ExportedReport(
        content="\n".join(lines),
        content_type="text/plain",
        filename=_filename(report, "txt"),
    )
