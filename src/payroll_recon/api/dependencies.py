"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_recon.database import get_session_factory
from payroll_recon.explanations import AnomalyExplainer
from payroll_recon.reconciliation.service import ReconciliationService


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with get_session_factory()() as session:
        try:
            yield session
        finally:
            await session.close()


def _parse_uuid_header(value: str | None, header: str) -> UUID:
    if not value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{header} header is required",
        )
    try:
        return UUID(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header} format",
        )


async def get_tenant_id(
    x_tenant_id: Annotated[str | None, Header()] = None
) -> UUID:
    """Extract tenant ID from header."""
    return _parse_uuid_header(x_tenant_id, "X-Tenant-ID")


async def get_user_id(
    x_user_id: Annotated[str | None, Header()] = None
) -> UUID:
    """Extract the acting user ID from header."""
    return _parse_uuid_header(x_user_id, "X-User-ID")


async def get_optional_user_id(
    x_user_id: Annotated[str | None, Header()] = None
) -> UUID | None:
    """Acting user ID when given; lifecycle actions may be system-initiated."""
    if not x_user_id:
        return None
    return _parse_uuid_header(x_user_id, "X-User-ID")


async def get_reconciliation_service(
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ReconciliationService:
    """Reconciliation service bound to the request session."""
    return ReconciliationService(db)


def get_explainer() -> AnomalyExplainer:
    """Anomaly explainer; override to plug in a narrator."""
    return AnomalyExplainer()


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
TenantId = Annotated[UUID, Depends(get_tenant_id)]
UserId = Annotated[UUID, Depends(get_user_id)]
OptionalUserId = Annotated[UUID | None, Depends(get_optional_user_id)]
Reconciliation = Annotated[ReconciliationService, Depends(get_reconciliation_service)]
Explainer = Annotated[AnomalyExplainer, Depends(get_explainer)]
