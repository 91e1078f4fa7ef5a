"""Tests for the reconciliation CLI."""

import argparse
import asyncio
import json
from contextlib import asynccontextmanager
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from payroll_recon.cli import ReconCli, parse_config
from payroll_recon.models import Base
from payroll_recon.reconciliation.service import LineItemInput, ReconciliationService


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'recon.db'}"


@pytest.fixture
def session_scope(database_url):
    """Session scope that owns its engine; every CLI call runs in a new event loop."""

    @asynccontextmanager
    async def _scope():
        engine = create_async_engine(database_url)
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            async with factory() as session:
                try:
                    yield session
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise
        finally:
            await engine.dispose()

    return _scope


@pytest.fixture
def cli(session_scope):
    return ReconCli(session_scope=session_scope)


@pytest.fixture
def seeded(session_scope):
    """Create a DRAFT run with one negative-net employee."""
    tenant_id = uuid4()
    employee_id = uuid4()

    async def seed():
        async with session_scope() as session:
            run = await ReconciliationService(session).create_payroll_run(
                tenant_id,
                "2026-01",
                [
                    LineItemInput(employee_id, "BASE_SALARY", Decimal("1000")),
                    LineItemInput(employee_id, "TAX_INCOME", Decimal("1050")),
                ],
            )
            return run.payroll_run_id

    run_id = asyncio.run(seed())
    return tenant_id, run_id


class TestParser:
    def test_check_requires_run(self, cli):
        with pytest.raises(SystemExit):
            cli.parser.parse_args(["check", "--tenant-id", str(uuid4())])

    def test_detect_config(self, cli):
        args = cli.parser.parse_args(
            [
                "detect",
                "--tenant-id",
                str(uuid4()),
                "--run-id",
                str(uuid4()),
                "--config",
                '{"maxDeductionPct": 0.5}',
            ]
        )

        assert args.config == {"maxDeductionPct": 0.5}

    def test_export_format_choices(self, cli):
        with pytest.raises(SystemExit):
            cli.parser.parse_args(
                ["export", "--tenant-id", str(uuid4()), "--run-id", str(uuid4()), "--format", "xls"]
            )

    def test_parse_config_rejects_non_objects(self):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_config("[1, 2]")
        with pytest.raises(argparse.ArgumentTypeError):
            parse_config("{not json")

    def test_no_command_prints_help(self, cli, capsys):
        assert cli.run([]) == 1
        assert "usage: payroll-recon" in capsys.readouterr().out


class TestCommands:
    def test_check_with_blockers_exits_one(self, cli, seeded, capsys):
        tenant_id, run_id = seeded

        code = cli.run(["check", "--tenant-id", str(tenant_id), "--run-id", str(run_id)])

        assert code == 1
        payload = json.loads(capsys.readouterr().out)
        assert payload["status"] == "REVIEW"
        assert payload["async"] is False
        assert payload["anomaly_report"]["critical_count"] == 1

    def test_list_runs(self, cli, seeded, capsys):
        tenant_id, run_id = seeded

        code = cli.run(["list-runs", "--tenant-id", str(tenant_id)])

        assert code == 0
        out = capsys.readouterr().out
        assert f"Payroll runs for tenant {tenant_id} (page 1/1)" in out
        assert str(run_id) in out
        assert "items=2 anomalies=0" in out
        assert "1 run(s)" in out

    def test_list_runs_for_empty_tenant(self, cli, capsys):
        tenant_id = uuid4()

        code = cli.run(["list-runs", "--tenant-id", str(tenant_id)])

        assert code == 0
        out = capsys.readouterr().out
        assert f"Payroll runs for tenant {tenant_id} (page 1/1)" in out
        assert "0 run(s)" in out

    def test_export_to_file(self, cli, seeded, tmp_path, capsys):
        tenant_id, run_id = seeded
        cli.run(["check", "--tenant-id", str(tenant_id), "--run-id", str(run_id)])
        output = tmp_path / "report.csv"

        code = cli.run(
            [
                "export",
                "--tenant-id",
                str(tenant_id),
                "--run-id",
                str(run_id),
                "--output",
                str(output),
            ]
        )

        assert code == 0
        assert "NEGATIVE_NET" in output.read_text(encoding="utf-8")
        assert f"to {output}" in capsys.readouterr().out

    def test_unknown_run_is_an_error(self, cli, capsys):
        code = cli.run(["report", "--tenant-id", str(uuid4()), "--run-id", str(uuid4())])

        assert code == 1
        assert "ERROR: PayrollRun" in capsys.readouterr().err
