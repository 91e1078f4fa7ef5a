"""Compensation cycle and recommendation models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_recon.models.base import Base, TimestampMixin, UpdatedAtMixin
from payroll_recon.models.employee import AppUser


class CompCycle(Base, TimestampMixin):
    """Compensation review cycle."""

    __tablename__ = "comp_cycle"

    comp_cycle_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)


class CompRecommendation(Base, TimestampMixin, UpdatedAtMixin):
    """Compensation recommendation for one employee within a cycle."""

    __tablename__ = "comp_recommendation"

    comp_recommendation_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    cycle_id: Mapped[UUID] = mapped_column(
        ForeignKey("comp_cycle.comp_cycle_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    rec_type: Mapped[str] = mapped_column(String, nullable=False)
    current_value: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    proposed_value: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    justification: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="DRAFT")
    approver_user_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("app_user.user_id"),
        nullable=True,
    )
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "rec_type IN ('MERIT_INCREASE', 'BONUS', 'LTI_GRANT', 'PROMOTION', 'ADJUSTMENT')",
            name="comp_recommendation_type_check",
        ),
        CheckConstraint(
            "status IN ('DRAFT', 'SUBMITTED', 'APPROVED', 'REJECTED', 'ESCALATED')",
            name="comp_recommendation_status_check",
        ),
    )

    # Relationships
    cycle: Mapped[CompCycle] = relationship()
    approver: Mapped[AppUser | None] = relationship()


class ComponentRecommendationMapping(Base, TimestampMixin):
    """Tenant-owned link between a pay component and a recommendation type."""

    __tablename__ = "component_recommendation_mapping"

    component_recommendation_mapping_id: Mapped[UUID] = mapped_column(
        primary_key=True, default=uuid4
    )
    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    component: Mapped[str] = mapped_column(String, nullable=False)
    rec_type: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "component", "rec_type", name="component_recommendation_mapping_unique"
        ),
    )
