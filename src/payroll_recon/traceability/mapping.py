"""Pay component to recommendation type mapping.

Tenants map components to recommendation types explicitly with
ComponentRecommendationMapping rows. A component the tenant has not
mapped falls back to the default keyword data below.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable, Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_recon.models import ComponentRecommendationMapping

_BASE_SALARY = ("base_salary", "base salary", "basesalary")

DEFAULT_REC_TYPE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "MERIT_INCREASE": (*_BASE_SALARY, "merit", "salary"),
    "BONUS": ("bonus", "variable", "incentive"),
    "LTI_GRANT": ("lti", "equity", "stock", "rsu", "options"),
    "PROMOTION": (*_BASE_SALARY, "promotion", "salary"),
    "ADJUSTMENT": ("adjustment", *_BASE_SALARY, "salary"),
}


class RecommendationComponentMap:
    """Decides which recommendation types explain a pay component."""

    def __init__(
        self,
        table: Mapping[str, Iterable[str]] | None = None,
        keywords: Mapping[str, Iterable[str]] = DEFAULT_REC_TYPE_KEYWORDS,
    ):
        self._table: dict[str, frozenset[str]] = {
            component.upper(): frozenset(rec_types)
            for component, rec_types in (table or {}).items()
        }
        self._keywords = {rec_type: tuple(words) for rec_type, words in keywords.items()}

    @classmethod
    async def for_tenant(
        cls, session: AsyncSession, tenant_id: UUID
    ) -> RecommendationComponentMap:
        """Build the map from the tenant's mapping rows."""
        result = await session.execute(
            select(
                ComponentRecommendationMapping.component,
                ComponentRecommendationMapping.rec_type,
            ).where(ComponentRecommendationMapping.tenant_id == tenant_id)
        )
        table: dict[str, set[str]] = defaultdict(set)
        for component, rec_type in result.all():
            table[component.upper()].add(rec_type)
        return cls(table)

    def is_configured(self, component: str) -> bool:
        return component.upper() in self._table

    def rec_types_for(self, component: str) -> frozenset[str]:
        """Recommendation types mapped to ``component``."""
        configured = self._table.get(component.upper())
        if configured is not None:
            return configured
        normalized = component.lower()
        return frozenset(
            rec_type
            for rec_type, words in self._keywords.items()
            if any(word in normalized for word in words)
        )

    def matches(self, rec_type: str, component: str) -> bool:
        return rec_type in self.rec_types_for(component)
