"""Deferred reconciliation queue."""

from __future__ import annotations

import logging
from uuid import UUID

from payroll_recon.config import get_settings

logger = logging.getLogger(__name__)


class ReconciliationQueue:
    """Publishes ``{payroll_run_id, tenant_id}`` jobs to the reconciliation queue."""

    def __init__(self, queue_name: str | None = None):
        self.queue_name = queue_name or get_settings().reconciliation_queue

    def enqueue(self, payroll_run_id: UUID, tenant_id: UUID) -> str:
        """Queue a reconciliation job and return its task id."""
        from payroll_recon.celery_app import RECONCILE_TASK, celery_app

        result = celery_app.send_task(
            RECONCILE_TASK,
            kwargs={"payroll_run_id": str(payroll_run_id), "tenant_id": str(tenant_id)},
            queue=self.queue_name,
        )
        logger.info(
            "Queued reconciliation job %s for run %s on %s",
            result.id,
            payroll_run_id,
            self.queue_name,
        )
        return result.id
