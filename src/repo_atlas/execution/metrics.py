"""Operation bookkeeping for remote calls.

``OperationMetricsStore`` keeps one ``OperationRecord`` per attempt made by
the retry executor. It is shared process-wide and written only by the
executor; readers get copies.

``PerformanceMonitor`` is the metrics sink: it receives stage durations and
network calls and reports totals and bottlenecks for an analysis run.
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Protocol

# Bottleneck thresholds
SLOW_STAGE_SECONDS = 5.0
SLOW_NETWORK_SECONDS = 1.0
MAX_ERROR_RATE = 0.1


def operation_group(operation_id: str) -> str:
    """Group key for summaries: ``list:owner/repo:src#1`` -> ``list``."""
    return operation_id.split(":", 1)[0]


def operation_target(operation_id: str) -> str:
    """Repository an operation ran against: ``list:owner/repo:src#1`` -> ``owner/repo``."""
    parts = operation_id.split(":", 2)
    return parts[1] if len(parts) > 1 else ""


@dataclass
class OperationRecord:
    """One attempt of one remote operation."""

    operation_id: str
    attempt: int
    started_at: float
    status: str = "pending"  # "pending" | "success" | "error"
    duration: Optional[float] = None
    retries: int = 0
    error: Optional[str] = None


class OperationMetricsStore:
    """Thread-safe record of every operation attempt in this process."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: list[OperationRecord] = []

    def record(self, record: OperationRecord) -> None:
        with self._lock:
            self._records.append(record)

    def records(self, operation_id: Optional[str] = None) -> list[OperationRecord]:
        """Return copies of the records, optionally filtered by operation id."""
        with self._lock:
            selected = [
                r for r in self._records if operation_id is None or r.operation_id == operation_id
            ]
            return [replace(r) for r in selected]

    def mark(self) -> int:
        """Position to pass to :meth:`records_since`."""
        with self._lock:
            return len(self._records)

    def records_since(self, mark: int) -> list[OperationRecord]:
        with self._lock:
            return [replace(r) for r in self._records[mark:]]

    def latest(self, operation_id: str) -> Optional[OperationRecord]:
        with self._lock:
            for record in reversed(self._records):
                if record.operation_id == operation_id:
                    return replace(record)
        return None

    def attempt_count(self) -> int:
        with self._lock:
            return len(self._records)

    def retry_count(self) -> int:
        with self._lock:
            return sum(1 for r in self._records if r.attempt > 1)

    def average_duration(self, operation_id: str) -> float:
        durations = [
            r.duration for r in self.records(operation_id) if r.duration is not None
        ]
        if not durations:
            return 0.0
        return sum(durations) / len(durations)

    def success_rate(self, operation_id: str) -> float:
        """Percentage of attempts of ``operation_id`` that succeeded."""
        records = self.records(operation_id)
        if not records:
            return 0.0
        ok = sum(1 for r in records if r.status == "success")
        return 100.0 * ok / len(records)

    def summary(self) -> dict[str, dict[str, float]]:
        """Per operation group: attempts, average duration, success rate."""
        groups: dict[str, list[OperationRecord]] = defaultdict(list)
        for record in self.records():
            groups[operation_group(record.operation_id)].append(record)

        result: dict[str, dict[str, float]] = {}
        for name, records in sorted(groups.items()):
            durations = [r.duration for r in records if r.duration is not None]
            ok = sum(1 for r in records if r.status == "success")
            result[name] = {
                "attempts": len(records),
                "average_duration": sum(durations) / len(durations) if durations else 0.0,
                "success_rate": 100.0 * ok / len(records),
            }
        return result

    def clear(self) -> None:
        with self._lock:
            self._records.clear()


class MetricsSink(Protocol):
    """Receives stage timings from the retry executor."""

    def record_stage(self, name: str, duration: float, status: str = "success") -> None: ...

    def record_network_call(self, endpoint: str, duration: float, status: int) -> None: ...


@dataclass
class _NetworkCall:
    endpoint: str
    duration: float
    status: int
    timestamp: str


@dataclass
class _Stage:
    name: str
    duration: float
    status: str
    timestamp: str


class PerformanceMonitor:
    """Collects stage and network timings for one monitoring window."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self.clock = clock
        self._lock = threading.Lock()
        self._stages: dict[str, _Stage] = {}
        self._calls: list[_NetworkCall] = []
        self._started = clock()

    def start_monitoring(self) -> None:
        with self._lock:
            self._started = self.clock()
            self._stages.clear()
            self._calls.clear()

    def record_stage(self, name: str, duration: float, status: str = "success") -> None:
        with self._lock:
            self._stages[name] = _Stage(name, duration, status, _now_iso())

    def record_network_call(self, endpoint: str, duration: float, status: int) -> None:
        with self._lock:
            self._calls.append(_NetworkCall(endpoint, duration, status, _now_iso()))

    def get_metrics(self) -> dict[str, Any]:
        with self._lock:
            stages = list(self._stages.values())
            calls = list(self._calls)
            total = self.clock() - self._started
        return {
            "total_duration": total,
            "stages": [s.__dict__ for s in stages],
            "network_calls": [c.__dict__ for c in calls],
            "api_calls": len(calls),
            "bottlenecks": self._identify_bottlenecks(stages, calls),
        }

    @staticmethod
    def _identify_bottlenecks(stages: list[_Stage], calls: list[_NetworkCall]) -> list[str]:
        bottlenecks: list[str] = []
        for stage in stages:
            if stage.duration > SLOW_STAGE_SECONDS:
                bottlenecks.append(f"Slow stage: {stage.name} ({stage.duration:.2f}s)")

        slow = [c for c in calls if c.duration > SLOW_NETWORK_SECONDS]
        if slow:
            bottlenecks.append(f"{len(slow)} slow network calls detected")

        if calls:
            failed = sum(1 for c in calls if c.status >= 400)
            error_rate = failed / len(calls)
            if error_rate > MAX_ERROR_RATE:
                bottlenecks.append(f"High error rate: {error_rate * 100:.1f}%")
        return bottlenecks


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
