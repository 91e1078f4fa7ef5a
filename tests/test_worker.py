"""Tests for the deferred reconciliation task."""

from dataclasses import replace
from uuid import uuid4

import pytest

from payroll_recon import worker
from payroll_recon.config import get_settings
from payroll_recon.exceptions import NotFoundError


@pytest.fixture
def job():
    return {"payroll_run_id": str(uuid4()), "tenant_id": str(uuid4())}


def test_success(monkeypatch, job):
    async def fake_reconcile(payroll_run_id, tenant_id):
        return {"success": True, "payroll_run_id": str(payroll_run_id), "anomalies": 3}

    monkeypatch.setattr(worker, "_reconcile", fake_reconcile)

    result = worker.reconcile_payroll_run.apply(kwargs=job)

    assert result.successful()
    assert result.get() == {
        "success": True,
        "payroll_run_id": job["payroll_run_id"],
        "anomalies": 3,
    }


def test_missing_run_is_not_retried(monkeypatch, job):
    async def fake_reconcile(payroll_run_id, tenant_id):
        raise NotFoundError("PayrollRun", payroll_run_id)

    monkeypatch.setattr(worker, "_reconcile", fake_reconcile)

    result = worker.reconcile_payroll_run.apply(kwargs=job)

    payload = result.get()
    assert payload["success"] is False
    assert payload["error"] == f"PayrollRun {job['payroll_run_id']} not found"


def test_exhausted_retries_mark_run_failed(monkeypatch, job):
    failed = []

    async def fake_reconcile(payroll_run_id, tenant_id):
        raise RuntimeError("database went away")

    async def fake_mark_failed(payroll_run_id, tenant_id, reason):
        failed.append((str(payroll_run_id), reason))

    monkeypatch.setattr(worker, "_reconcile", fake_reconcile)
    monkeypatch.setattr(worker, "_mark_failed", fake_mark_failed)
    monkeypatch.setattr(
        worker, "get_settings", lambda: replace(get_settings(), job_max_retries=0)
    )

    result = worker.reconcile_payroll_run.apply(kwargs=job)

    assert result.failed()
    assert failed == [(job["payroll_run_id"], "database went away")]


def test_run_async():
    async def answer():
        return 42

    assert worker.run_async(answer()) == 42
