"""Celery configuration for deferred reconciliation.

Redis is both the broker and the result backend. Reconciliation tasks are
routed to their own queue so large runs never wait behind other work.
"""

from celery import Celery

from payroll_recon.config import get_settings

RECONCILE_TASK = "payroll_recon.worker.reconcile_payroll_run"

settings = get_settings()

celery_app = Celery(
    "payroll_recon",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["payroll_recon.worker"],
)

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # A full pass over a large run is the slowest thing we do
    task_time_limit=1800,
    task_soft_time_limit=1500,
    # Worker settings
    worker_prefetch_multiplier=1,
    # Result backend settings
    result_expires=86400,
    # Retry settings
    task_default_retry_delay=settings.job_retry_backoff_seconds,
    task_max_retries=settings.job_max_retries,
)

celery_app.conf.task_routes = {
    RECONCILE_TASK: {"queue": settings.reconciliation_queue},
}
