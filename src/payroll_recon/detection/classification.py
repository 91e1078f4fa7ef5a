"""Pay component classification (earning vs. deduction)."""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_recon.detection.config import DEFAULT_DEDUCTION_PREFIXES
from payroll_recon.detection.types import ComponentKind, EmployeeAggregate, LineItemRecord
from payroll_recon.models import ComponentClassification


class ComponentClassifier:
    """Explicit component → kind lookup table.

    Components listed in the table are classified exactly as listed.
    Anything else falls back to the prefix rule: a component whose
    upper-cased name starts with a deduction prefix is a deduction.
    Lookups are memoized, so each distinct component is resolved once.
    """

    def __init__(
        self,
        table: Mapping[str, ComponentKind] | None = None,
        deduction_prefixes: Iterable[str] = DEFAULT_DEDUCTION_PREFIXES,
    ):
        self._table: dict[str, ComponentKind] = {
            k.upper(): ComponentKind(v) for k, v in (table or {}).items()
        }
        self.deduction_prefixes = tuple(p.upper() for p in deduction_prefixes)
        self._resolved: dict[str, ComponentKind] = dict(self._table)

    @classmethod
    async def for_tenant(
        cls,
        session: AsyncSession,
        tenant_id: UUID,
        deduction_prefixes: Iterable[str] = DEFAULT_DEDUCTION_PREFIXES,
    ) -> ComponentClassifier:
        """Build a classifier from the tenant's classification rows."""
        result = await session.execute(
            select(ComponentClassification.component, ComponentClassification.kind).where(
                ComponentClassification.tenant_id == tenant_id
            )
        )
        table = {component: ComponentKind(kind) for component, kind in result.all()}
        return cls(table, deduction_prefixes)

    def classify(self, component: str) -> ComponentKind:
        """Classify a component name (case-insensitive)."""
        key = component.upper()
        kind = self._resolved.get(key)
        if kind is None:
            if any(key.startswith(prefix) for prefix in self.deduction_prefixes):
                kind = ComponentKind.DEDUCTION
            else:
                kind = ComponentKind.EARNING
            self._resolved[key] = kind
        return kind

    def is_deduction(self, component: str) -> bool:
        return self.classify(component) is ComponentKind.DEDUCTION

    def fold(self, aggregate: EmployeeAggregate, item: LineItemRecord) -> None:
        """Add one line item to an employee aggregate."""
        aggregate.items.append(item)
        amount = item.amount
        if self.is_deduction(item.component):
            aggregate.deductions += abs(amount)
            aggregate.net_pay -= abs(amount)
        else:
            aggregate.gross_pay += amount
            aggregate.net_pay += amount

    def totals(self, items: Iterable[tuple[str, Decimal]]) -> tuple[Decimal, Decimal]:
        """Compute (gross, net) over ``(component, amount)`` pairs."""
        gross = Decimal("0")
        deductions = Decimal("0")
        for component, amount in items:
            if self.is_deduction(component):
                deductions += abs(amount)
            else:
                gross += amount
        return gross, gross - deductions
