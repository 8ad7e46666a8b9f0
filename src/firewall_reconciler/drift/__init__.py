"""Drift Detector - live configuration vs recorded baseline."""

from .detector import DriftDetector, DriftReport, DriftSeverity

__all__ = [
    "DriftDetector",
    "DriftReport",
    "DriftSeverity",
]
