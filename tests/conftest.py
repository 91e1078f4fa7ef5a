"""Pytest fixtures for payroll reconciliation tests."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from payroll_recon.config import Settings, get_settings
from payroll_recon.models import (
    Base,
    Employee,
    PayrollLineItem,
    PayrollRun,
)

# In-memory SQLite shared by every session of one test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class RecordingQueue:
    """Job queue that records what would have been published."""

    def __init__(self) -> None:
        self.jobs: list[tuple[UUID, UUID]] = []

    def enqueue(self, payroll_run_id: UUID, tenant_id: UUID) -> str:
        self.jobs.append((payroll_run_id, tenant_id))
        return f"job-{len(self.jobs)}"


@pytest.fixture
async def engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def tenant_id() -> UUID:
    return uuid4()


@pytest.fixture
def test_settings() -> Settings:
    """Settings with a small insert batch so batching is exercised."""
    return replace(get_settings(), insert_batch_size=50, trace_limit=10)


@pytest.fixture
def queue() -> RecordingQueue:
    return RecordingQueue()


@pytest.fixture
def make_employee(session, tenant_id):
    """Factory for employee records."""

    async def _make(
        first_name: str = "Ada",
        last_name: str = "Lovelace",
        currency: str = "USD",
        employee_id: UUID | None = None,
    ) -> Employee:
        employee = Employee(
            employee_id=employee_id or uuid4(),
            tenant_id=tenant_id,
            first_name=first_name,
            last_name=last_name,
            currency=currency,
        )
        session.add(employee)
        await session.flush()
        return employee

    return _make


@pytest.fixture
def make_run(session, tenant_id):
    """Factory for payroll runs.

    ``items`` are ``(employee_id, component, amount)`` or
    ``(employee_id, component, amount, previous_amount)`` tuples.
    """

    async def _make(
        items: list[tuple],
        period: str = "2026-01",
        status: str = "DRAFT",
        created_at: datetime | None = None,
        items_created_at: datetime | None = None,
    ) -> PayrollRun:
        run = PayrollRun(
            payroll_run_id=uuid4(),
            tenant_id=tenant_id,
            period=period,
            status=status,
            employee_count=len({item[0] for item in items}),
            detection_generation=0,
        )
        if created_at is not None:
            run.created_at = created_at
        session.add(run)
        await session.flush()

        for employee_id, component, amount, *rest in items:
            amount = Decimal(str(amount))
            previous = Decimal(str(rest[0])) if rest else Decimal("0")
            item = PayrollLineItem(
                payroll_run_id=run.payroll_run_id,
                employee_id=employee_id,
                component=component,
                amount=amount,
                previous_amount=previous,
                delta=amount - previous,
            )
            if items_created_at is not None:
                item.created_at = items_created_at
            session.add(item)
        await session.flush()
        return run

    return _make


@pytest.fixture
def make_history(make_run):
    """Factory for FINALIZED history runs of base salary only.

    ``salaries`` maps employee id to one amount per historical run,
    oldest first.
    """

    async def _make(salaries: dict[UUID, list]) -> list[PayrollRun]:
        count = max(len(amounts) for amounts in salaries.values())
        start = datetime.now(timezone.utc) - timedelta(days=31 * (count + 1))
        runs = []
        for i in range(count):
            items = [
                (employee_id, "BASE_SALARY", amounts[i])
                for employee_id, amounts in salaries.items()
                if i < len(amounts)
            ]
            runs.append(
                await make_run(
                    items,
                    period=f"2025-{i + 1:02d}",
                    status="FINALIZED",
                    created_at=start + timedelta(days=31 * i),
                )
            )
        return runs

    return _make
