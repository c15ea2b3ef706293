"""Frame statistics, rolling metrics and their Prometheus exposure."""

from .metrics import Metrics
from .monitor import PerformanceMonitor, PerformanceReport, PerformanceSample, Suggestion

__all__ = [
    "Metrics",
    "PerformanceMonitor",
    "PerformanceReport",
    "PerformanceSample",
    "Suggestion",
]
