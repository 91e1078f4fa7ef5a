"""Celery tasks for deferred reconciliation.

Start a worker with:

    celery -A payroll_recon.worker worker -Q reconciliation
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from uuid import UUID

from celery import shared_task

from payroll_recon.celery_app import RECONCILE_TASK, celery_app
from payroll_recon.config import get_settings
from payroll_recon.database import dispose_db, get_session
from payroll_recon.exceptions import InvalidStateError, NotFoundError
from payroll_recon.reconciliation.service import ReconciliationService

logger = logging.getLogger(__name__)

__all__ = ["celery_app", "reconcile_payroll_run", "run_async"]


def run_async(coro):
    """Helper to run async functions in Celery tasks."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@shared_task(bind=True, name=RECONCILE_TASK)
def reconcile_payroll_run(self, payroll_run_id: str, tenant_id: str) -> dict[str, Any]:
    """Reconcile a payroll run that was too large to check inline.

    Missing runs and runs in a state that cannot be checked are not
    retried. Other failures are retried with exponential backoff; once
    retries are exhausted the run is moved to ERROR.
    """
    settings = get_settings()
    logger.info("Processing reconciliation job for run %s", payroll_run_id)

    try:
        return run_async(_reconcile(UUID(payroll_run_id), UUID(tenant_id)))
    except (NotFoundError, InvalidStateError) as e:
        logger.error("Reconciliation for run %s will not be retried: %s", payroll_run_id, e)
        return {"success": False, "payroll_run_id": payroll_run_id, "error": str(e)}
    except Exception as exc:
        logger.exception("Reconciliation failed for run %s", payroll_run_id)
        if self.request.retries >= settings.job_max_retries:
            run_async(_mark_failed(UUID(payroll_run_id), UUID(tenant_id), str(exc)))
            raise
        countdown = settings.job_retry_backoff_seconds * (2 ** self.request.retries)
        raise self.retry(exc=exc, countdown=countdown, max_retries=settings.job_max_retries)


async def _reconcile(payroll_run_id: UUID, tenant_id: UUID) -> dict[str, Any]:
    """Async implementation of the reconciliation job."""
    try:
        async with get_session() as session:
            outcome = await ReconciliationService(session).execute_reconciliation(
                payroll_run_id, tenant_id
            )
    finally:
        # Each task gets a fresh event loop; pooled connections must not outlive it
        await dispose_db()

    report = outcome.anomaly_report
    total = report.total_anomalies if report else 0
    logger.info("Reconciliation complete for run %s: %d anomalies", payroll_run_id, total)
    return {"success": True, "payroll_run_id": str(payroll_run_id), "anomalies": total}


async def _mark_failed(payroll_run_id: UUID, tenant_id: UUID, reason: str) -> None:
    try:
        async with get_session() as session:
            await ReconciliationService(session).mark_failed(payroll_run_id, tenant_id, reason)
    finally:
        await dispose_db()
