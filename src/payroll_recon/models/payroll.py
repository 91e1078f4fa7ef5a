"""Payroll run, line item, and anomaly models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_recon.models.base import Base, TimestampMixin, UpdatedAtMixin


# ===== Payroll Run =====


class PayrollRun(Base, TimestampMixin, UpdatedAtMixin):
    """Payroll run container for one tenant period."""

    __tablename__ = "payroll_run"

    payroll_run_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    period: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="DRAFT")
    employee_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_gross: Mapped[Decimal] = mapped_column(
        Numeric(16, 4), nullable=False, default=Decimal("0")
    )
    total_net: Mapped[Decimal] = mapped_column(
        Numeric(16, 4), nullable=False, default=Decimal("0")
    )
    # Bumped by every detection pass; anomalies of older generations are stale
    detection_generation: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint(
            "status IN ('DRAFT', 'PROCESSING', 'REVIEW', 'APPROVED', 'FINALIZED', 'ERROR')",
            name="payroll_run_status_check",
        ),
        Index("ix_payroll_run_tenant_status", "tenant_id", "status"),
    )

    # Relationships
    line_items: Mapped[list[PayrollLineItem]] = relationship(
        back_populates="payroll_run", cascade="all, delete-orphan", passive_deletes=True
    )
    anomalies: Mapped[list[PayrollAnomaly]] = relationship(
        back_populates="payroll_run", cascade="all, delete-orphan", passive_deletes=True
    )


# ===== Line Items =====


class PayrollLineItem(Base, TimestampMixin):
    """Immutable payroll component amount for one employee in one run."""

    __tablename__ = "payroll_line_item"

    payroll_line_item_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payroll_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_run.payroll_run_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(nullable=False)
    component: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    previous_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 4), nullable=False, default=Decimal("0")
    )
    delta: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False, default=Decimal("0"))

    __table_args__ = (
        Index("ix_payroll_line_item_run_employee", "payroll_run_id", "employee_id"),
    )

    # Relationships
    payroll_run: Mapped[PayrollRun] = relationship(back_populates="line_items")


# ===== Anomalies =====


class PayrollAnomaly(Base, TimestampMixin):
    """Detected anomaly, scoped to one detection generation of a run."""

    __tablename__ = "payroll_anomaly"

    payroll_anomaly_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payroll_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_run.payroll_run_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(nullable=False)
    anomaly_type: Mapped[str] = mapped_column(String, nullable=False)
    severity: Mapped[str] = mapped_column(String, nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    generation: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_by: Mapped[UUID | None] = mapped_column(nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "anomaly_type IN ('NEGATIVE_NET', 'SPIKE', 'DROP', 'UNUSUAL_DEDUCTION', "
            "'MISSING_COMPONENT', 'DUPLICATE', 'CUSTOM')",
            name="payroll_anomaly_type_check",
        ),
        CheckConstraint(
            "severity IN ('CRITICAL', 'HIGH', 'MEDIUM', 'LOW')",
            name="payroll_anomaly_severity_check",
        ),
        Index("ix_payroll_anomaly_run_generation", "payroll_run_id", "generation"),
    )

    # Relationships
    payroll_run: Mapped[PayrollRun] = relationship(back_populates="anomalies")


class AnomalyResolution(Base, TimestampMixin):
    """Human resolution of an anomaly, keyed by its stable fingerprint.

    Survives detection re-runs: a regenerated anomaly with the same
    fingerprint is re-marked as resolved.
    """

    __tablename__ = "anomaly_resolution"

    anomaly_resolution_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payroll_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_run.payroll_run_id", ondelete="CASCADE"),
        nullable=False,
    )
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    resolved_by: Mapped[UUID] = mapped_column(nullable=False)
    resolved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolution_notes: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint("payroll_run_id", "fingerprint", name="anomaly_resolution_unique"),
    )


# ===== Tenant Configuration =====


class ComponentClassification(Base, TimestampMixin):
    """Tenant-owned classification of a pay component as earning or deduction."""

    __tablename__ = "component_classification"

    component_classification_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    component: Mapped[str] = mapped_column(String, nullable=False)
    kind: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "component", name="component_classification_unique"),
        CheckConstraint(
            "kind IN ('EARNING', 'DEDUCTION')",
            name="component_classification_kind_check",
        ),
    )
