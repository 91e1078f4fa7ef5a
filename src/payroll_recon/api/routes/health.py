"""Health check endpoints."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, status
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from payroll_recon.api.dependencies import DbSession
from payroll_recon.config import get_settings
from payroll_recon.models import PayrollRun
from payroll_recon.services.state_machine import PayrollRunStatus

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response.

    ``pending_reconciliations`` counts runs waiting on a deferred check;
    it is ``None`` when the database cannot be read.
    """

    status: str
    timestamp: datetime
    database: str
    reconciliation_queue: str
    pending_reconciliations: int | None = None


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
)
async def health_check(db: DbSession) -> HealthResponse:
    """Check the run store and report the deferred reconciliation backlog."""
    db_status = "unhealthy"
    pending = None
    try:
        pending = await db.scalar(
            select(func.count())
            .select_from(PayrollRun)
            .where(PayrollRun.status == PayrollRunStatus.PROCESSING.value)
        )
        db_status = "healthy"
    except (SQLAlchemyError, OSError):
        logger.exception("Database health check failed")

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        timestamp=datetime.now(timezone.utc),
        database=db_status,
        reconciliation_queue=get_settings().reconciliation_queue,
        pending_reconciliations=pending,
    )


@router.get("/ready", status_code=status.HTTP_200_OK)
async def readiness_check() -> dict[str, str]:
    """Readiness check for container orchestration."""
    return {"status": "ready"}


@router.get("/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> dict[str, str]:
    """Liveness check for container orchestration."""
    return {"status": "alive"}
