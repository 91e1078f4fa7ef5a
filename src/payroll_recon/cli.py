"""Reconciliation Command Line Interface.

Provides operational tools for:
- Running a reconciliation check
- Re-running detection with threshold overrides
- Printing and exporting reports
- Tracing an employee's pay
- Listing payroll runs

Usage:
    payroll-recon check --tenant-id X --run-id Y
    payroll-recon detect --tenant-id X --run-id Y --config '{"maxDeductionPct": 0.5}'
    payroll-recon export --tenant-id X --run-id Y --format pdf --output report.txt
    payroll-recon trace --tenant-id X --run-id Y --employee-id Z
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from contextlib import AbstractAsyncContextManager
from dataclasses import asdict
from typing import Any, Awaitable, Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from payroll_recon.config import get_settings
from payroll_recon.database import dispose_db, get_session
from payroll_recon.exceptions import ReconciliationError
from payroll_recon.reconciliation.service import ReconciliationService

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def parse_config(s: str) -> dict[str, Any]:
    """Parse a JSON object of detection overrides."""
    try:
        value = json.loads(s)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"invalid JSON: {e}") from e
    if not isinstance(value, dict):
        raise argparse.ArgumentTypeError("config must be a JSON object")
    return value


def _dump(payload: Any) -> str:
    return json.dumps(payload, indent=2, default=str)


class ReconCli:
    """Reconciliation Command Line Interface."""

    def __init__(self, session_scope: SessionScope | None = None) -> None:
        self.session_scope = session_scope or get_session
        self._owns_engine = session_scope is None
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="payroll-recon",
            description="Payroll reconciliation operational tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        def run_command(name: str, help_text: str) -> argparse.ArgumentParser:
            sub = subparsers.add_parser(name, help=help_text)
            sub.add_argument(
                "--tenant-id",
                type=parse_uuid,
                required=True,
                help="Tenant owning the payroll run",
            )
            sub.add_argument(
                "--run-id",
                type=parse_uuid,
                required=True,
                help="Payroll run ID",
            )
            return sub

        # check command
        check = run_command("check", "Reconcile a run, or queue it when it is large")
        check.add_argument(
            "--config",
            type=parse_config,
            help="Detection overrides as a JSON object",
        )

        # detect command
        detect = run_command("detect", "Run a detection pass without changing run status")
        detect.add_argument(
            "--config",
            type=parse_config,
            help="Detection overrides as a JSON object",
        )

        # report command
        run_command("report", "Print the reconciliation report as JSON")

        # export command
        export = run_command("export", "Export the reconciliation report")
        export.add_argument(
            "--format",
            type=str,
            choices=["csv", "pdf"],
            default="csv",
            help="Export format (pdf is a structured plain-text report)",
        )
        export.add_argument(
            "--output",
            type=str,
            help="Output file path (default: stdout)",
        )

        # trace command
        trace = run_command("trace", "Trace an employee's pay in a run")
        trace.add_argument(
            "--employee-id",
            type=parse_uuid,
            required=True,
            help="Employee to trace",
        )
        trace.add_argument(
            "--component",
            type=str,
            help="Limit the trace to one pay component",
        )

        # list-runs command
        list_runs = subparsers.add_parser("list-runs", help="List payroll runs")
        list_runs.add_argument(
            "--tenant-id",
            type=parse_uuid,
            required=True,
            help="Tenant ID",
        )
        list_runs.add_argument(
            "--status",
            type=str,
            choices=["DRAFT", "PROCESSING", "REVIEW", "APPROVED", "FINALIZED", "ERROR"],
            help="Only runs in this status",
        )
        list_runs.add_argument("--page", type=int, default=1, help="Page number (default: 1)")
        list_runs.add_argument(
            "--limit",
            type=int,
            default=20,
            help="Runs per page (default: 20)",
        )

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        # Dispatch to command handler
        handlers: dict[str, Callable[[argparse.Namespace], Awaitable[int]]] = {
            "check": self._cmd_check,
            "detect": self._cmd_detect,
            "report": self._cmd_report,
            "export": self._cmd_export,
            "trace": self._cmd_trace,
            "list-runs": self._cmd_list_runs,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        try:
            return asyncio.run(self._dispatch(handler, parsed))
        except ReconciliationError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1
        except ValueError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 2

    async def _dispatch(
        self,
        handler: Callable[[argparse.Namespace], Awaitable[int]],
        args: argparse.Namespace,
    ) -> int:
        try:
            return await handler(args)
        finally:
            if self._owns_engine:
                await dispose_db()

    async def _cmd_check(self, args: argparse.Namespace) -> int:
        """Reconcile a run."""
        async with self.session_scope() as session:
            service = ReconciliationService(session)
            outcome = await service.run_check(args.run_id, args.tenant_id, args.config)
        # Committed on leaving the session scope
        outcome = service.enqueue_deferred(outcome, args.tenant_id)
        print(_dump(outcome.to_dict()))
        report = outcome.anomaly_report
        return 1 if report is not None and report.has_blockers else 0

    async def _cmd_detect(self, args: argparse.Namespace) -> int:
        """Run a detection pass."""
        async with self.session_scope() as session:
            report = await ReconciliationService(session).detection_engine.detect_anomalies(
                args.run_id, args.tenant_id, args.config
            )
        print(_dump(report.to_dict()))
        return 1 if report.has_blockers else 0

    async def _cmd_report(self, args: argparse.Namespace) -> int:
        """Print the reconciliation report."""
        async with self.session_scope() as session:
            report = await ReconciliationService(session).get_report(args.run_id, args.tenant_id)
            payload = {
                "summary": asdict(report.summary),
                "anomalies": [a.to_dict() for a in report.anomalies],
                "traces": [t.to_dict() for t in report.traces],
                "generated_at": report.generated_at.isoformat(),
            }
        print(_dump(payload))
        return 0

    async def _cmd_export(self, args: argparse.Namespace) -> int:
        """Export the reconciliation report."""
        async with self.session_scope() as session:
            exported = await ReconciliationService(session).export_report(
                args.run_id, args.tenant_id, args.format
            )

        if args.output:
            with open(args.output, "w", encoding="utf-8") as f:
                f.write(exported.content)
            print(f"Wrote {exported.filename} to {args.output}")
        else:
            sys.stdout.write(exported.content)
        return 0

    async def _cmd_trace(self, args: argparse.Namespace) -> int:
        """Trace an employee."""
        async with self.session_scope() as session:
            trace = await ReconciliationService(session).traceability.trace_employee(
                args.tenant_id, args.run_id, args.employee_id, args.component
            )
        print(_dump(trace.to_dict()))
        return 0

    async def _cmd_list_runs(self, args: argparse.Namespace) -> int:
        """List payroll runs."""
        async with self.session_scope() as session:
            page = await ReconciliationService(session).list_runs(
                args.tenant_id, page=args.page, limit=args.limit, status=args.status
            )

        pages = max(page.total_pages, 1)
        print(f"Payroll runs for tenant {args.tenant_id} (page {page.page}/{pages})")
        print("=" * 60)
        for listing in page.items:
            run = listing.run
            print(
                f"  {run.payroll_run_id}  {run.period:<10} {run.status:<10} "
                f"items={listing.line_item_count} anomalies={listing.anomaly_count}"
            )
        print(f"\n{page.total} run(s)")
        return 0


def main() -> int:
    """CLI entry point."""
    logging.basicConfig(level=get_settings().log_level)
    cli = ReconCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
