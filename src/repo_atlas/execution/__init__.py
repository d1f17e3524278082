"""Execution layer: retried remote calls and their bookkeeping."""

from .metrics import (
    MetricsSink,
    OperationMetricsStore,
    OperationRecord,
    PerformanceMonitor,
    operation_group,
    operation_target,
)
from .retry import RetryExecutor

__all__ = [
    "MetricsSink",
    "OperationMetricsStore",
    "OperationRecord",
    "PerformanceMonitor",
    "RetryExecutor",
    "operation_group",
    "operation_target",
]
