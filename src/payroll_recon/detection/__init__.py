"""Anomaly detection engine."""

from payroll_recon.detection.classification import ComponentClassifier
from payroll_recon.detection.config import DetectionConfig
from payroll_recon.detection.engine import AnomalyDetectionEngine
from payroll_recon.detection.types import (
    AnomalyReport,
    AnomalySeverity,
    AnomalyType,
    ComponentKind,
    DetectedAnomaly,
)

__all__ = [
    "AnomalyDetectionEngine",
    "AnomalyReport",
    "AnomalySeverity",
    "AnomalyType",
    "ComponentClassifier",
    "ComponentKind",
    "DetectedAnomaly",
    "DetectionConfig",
]
