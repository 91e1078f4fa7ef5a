"""Audit trail model."""

from __future__ import annotations

from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_recon.models.base import Base, TimestampMixin
from payroll_recon.models.employee import AppUser


class AuditEvent(Base, TimestampMixin):
    """Audit trail entry.

    ``changes_json`` maps a field name to ``{"before": ..., "after": ...}``
    when the edit recorded a diff; other payload shapes are kept verbatim.
    """

    __tablename__ = "audit_event"

    audit_event_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    actor_user_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("app_user.user_id"),
        nullable=True,
    )
    entity_type: Mapped[str] = mapped_column(String, nullable=False)
    entity_id: Mapped[UUID] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
    changes_json: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)

    __table_args__ = (
        Index("ix_audit_event_tenant_entity", "tenant_id", "entity_type", "entity_id"),
    )

    # Relationships
    actor: Mapped[AppUser | None] = relationship()
