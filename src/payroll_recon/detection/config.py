"""Anomaly detection configuration.

Pattern:
    config = DetectionConfig()
    strict = config.with_overrides({"maxDeductionPct": 0.5, "batchSize": 1000})

Rules:
    1. Immutable after creation (frozen dataclass).
    2. Validated on construction.
    3. Overrides accept any subset of fields, by snake_case or camelCase name.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from decimal import Decimal
from typing import Any, Mapping

DEFAULT_MANDATORY_COMPONENTS: tuple[str, ...] = (
    "BASE_PAY",
    "BASIC_SALARY",
    "BASE_SALARY",
    "SALARY",
)

DEFAULT_DEDUCTION_PREFIXES: tuple[str, ...] = (
    "TAX",
    "DEDUCTION",
    "INSURANCE",
    "PENSION",
    "CONTRIBUTION",
)


@dataclass(frozen=True)
class DetectionConfig:
    """
    Thresholds and limits for a detection pass.

    Attributes:
        max_deduction_pct: Deductions above this share of gross pay are
            flagged. Default 0.60.
        spike_threshold_pct: Month-over-month increase that counts as a
            spike. Default 0.50.
        drop_threshold_pct: Month-over-month decrease that counts as a
            drop. Default 0.30.
        baseline_periods: Most recent finalized runs used for baselines.
            Default 6.
        min_baseline_periods: Fewer finalized runs than this disables the
            statistical detectors entirely. Default 3.
        outlier_std_devs: z-score above which a value is an outlier.
            Default 2.5.
        batch_size: Page size for loading line items. Default 5000.
        mandatory_components: At least one component name must contain one
            of these.
        deduction_prefixes: Components starting with one of these reduce
            net pay, unless the tenant classifies them explicitly.
        component_thresholds: Per-component caps on absolute amount.
        carry_over_resolutions: Re-apply human resolutions to regenerated
            anomalies with the same fingerprint. Default True.
    """

    max_deduction_pct: float = 0.60
    spike_threshold_pct: float = 0.50
    drop_threshold_pct: float = 0.30
    baseline_periods: int = 6
    min_baseline_periods: int = 3
    outlier_std_devs: float = 2.5
    batch_size: int = 5000
    mandatory_components: tuple[str, ...] = DEFAULT_MANDATORY_COMPONENTS
    deduction_prefixes: tuple[str, ...] = DEFAULT_DEDUCTION_PREFIXES
    component_thresholds: Mapping[str, Decimal] = field(default_factory=dict)
    carry_over_resolutions: bool = True

    def __post_init__(self) -> None:
        """Normalize and validate configuration."""
        object.__setattr__(
            self,
            "mandatory_components",
            tuple(c.upper() for c in self.mandatory_components),
        )
        object.__setattr__(
            self,
            "deduction_prefixes",
            tuple(p.upper() for p in self.deduction_prefixes),
        )
        object.__setattr__(
            self,
            "component_thresholds",
            {k.upper(): Decimal(str(v)) for k, v in self.component_thresholds.items()},
        )

        for name in ("max_deduction_pct", "spike_threshold_pct", "drop_threshold_pct"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        if self.outlier_std_devs <= 0:
            raise ValueError("outlier_std_devs must be positive")
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.min_baseline_periods < 1:
            raise ValueError("min_baseline_periods must be at least 1")
        if self.baseline_periods < self.min_baseline_periods:
            raise ValueError("baseline_periods cannot be less than min_baseline_periods")

    def with_overrides(self, overrides: Mapping[str, Any] | None) -> DetectionConfig:
        """Return a copy with any subset of fields replaced."""
        if not overrides:
            return self

        by_name = {f.name: f.name for f in fields(self)}
        by_name.update({_camel(f.name): f.name for f in fields(self)})

        changes: dict[str, Any] = {}
        for key, value in overrides.items():
            if value is None:
                continue
            name = by_name.get(key)
            if name is None:
                raise ValueError(f"Unknown detection setting: {key}")
            if name in ("mandatory_components", "deduction_prefixes"):
                value = tuple(value)
            changes[name] = value
        return replace(self, **changes)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)
