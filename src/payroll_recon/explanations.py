"""Narrative explanations for individual anomalies.

An external narrator (for example a language model client) can be plugged
in as an async callable. Without one, or when it fails, a templated
explanation is built from the anomaly's own details.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable
from uuid import UUID

from payroll_recon.detection.types import AnomalyType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnomalyData:
    """What a narrator gets to see about one anomaly."""

    anomaly_id: UUID
    payroll_run_id: UUID
    employee_id: UUID
    anomaly_type: str
    severity: str
    details: dict[str, Any]


@dataclass(frozen=True)
class Explanation:
    """Narrative explanation of one anomaly."""

    anomaly_id: UUID
    explanation: str
    root_cause: str
    recommended_action: str
    confidence: float
    reasoning: str
    contributing_factors: list[str] = field(default_factory=list)
    fallback: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "anomaly_id": str(self.anomaly_id),
            "explanation": self.explanation,
            "root_cause": self.root_cause,
            "contributing_factors": list(self.contributing_factors),
            "recommended_action": self.recommended_action,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "fallback": self.fallback,
        }


Narrator = Callable[[AnomalyData], Awaitable[Explanation]]

# Likely root cause per anomaly type, used when no narrator is available
ROOT_CAUSE_TEMPLATES: dict[str, str] = {
    AnomalyType.NEGATIVE_NET.value: "Deductions exceed gross pay for the period.",
    AnomalyType.SPIKE.value: "Pay increased well beyond its usual level.",
    AnomalyType.DROP.value: "Pay decreased well below its usual level.",
    AnomalyType.UNUSUAL_DEDUCTION.value: "Deductions are an unusually large share of gross pay.",
    AnomalyType.MISSING_COMPONENT.value: "A mandatory base pay component is absent or zero.",
    AnomalyType.DUPLICATE.value: "The same pay component was entered more than once.",
    AnomalyType.CUSTOM.value: "A tenant-specific rule flagged this employee.",
}


class AnomalyExplainer:
    """Explains anomalies with an optional narrator and a templated fallback."""

    def __init__(self, narrator: Narrator | None = None):
        self.narrator = narrator

    async def explain(self, anomaly: AnomalyData) -> Explanation:
        """Explain one anomaly. Never fails because of the narrator."""
        if self.narrator is None:
            return self.fallback(anomaly, "No narrator configured.")

        try:
            return await self.narrator(anomaly)
        except Exception:
            logger.exception("Narrated explanation failed for anomaly %s", anomaly.anomaly_id)
            return self.fallback(anomaly, "Fallback due to narrator error.")

    @staticmethod
    def fallback(anomaly: AnomalyData, reasoning: str) -> Explanation:
        """Templated explanation built from the anomaly details."""
        message = anomaly.details.get("message")
        explanation = (
            f"Anomaly detected: {anomaly.anomaly_type} with {anomaly.severity} severity."
        )
        if message:
            explanation += f" {message}"

        factors = [
            f"{key}: {anomaly.details[key]}"
            for key in ("component", "amount", "previousAmount", "threshold")
            if anomaly.details.get(key) is not None
        ]
        return Explanation(
            anomaly_id=anomaly.anomaly_id,
            explanation=explanation,
            root_cause=ROOT_CAUSE_TEMPLATES.get(
                anomaly.anomaly_type, "Unable to determine root cause."
            ),
            contributing_factors=factors,
            recommended_action=str(anomaly.details.get("suggestedAction") or "flag"),
            confidence=0.0,
            reasoning=reasoning,
            fallback=True,
        )
