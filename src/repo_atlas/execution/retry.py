"""Retry-with-backoff-and-timeout wrapper for remote operations."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from ..exceptions import FetchTimeoutError, RepoAtlasError
from ..logging_config import get_logger
from .metrics import MetricsSink, OperationMetricsStore, OperationRecord

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_BASE = 1.0


class RetryExecutor:
    """Runs async operations with a per-attempt timeout and exponential backoff.

    Every attempt is recorded in the shared :class:`OperationMetricsStore`
    and reported to the optional metrics sink.

    Exceptions listed in ``non_retryable`` propagate on the first attempt.
    The default is empty: which errors are fatal is the caller's policy.
    """

    def __init__(
        self,
        metrics_store: Optional[OperationMetricsStore] = None,
        sink: Optional[MetricsSink] = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
        non_retryable: Tuple[Type[BaseException], ...] = (),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        self.metrics = metrics_store if metrics_store is not None else OperationMetricsStore()
        self.sink = sink
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.non_retryable = tuple(non_retryable)
        self._sleep = sleep
        self._clock = clock

    async def execute_with_retry(
        self,
        operation_id: str,
        operation: Callable[[], Awaitable[T]],
        *,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_base: Optional[float] = None,
        non_retryable: Optional[Tuple[Type[BaseException], ...]] = None,
    ) -> T:
        """Run ``operation()`` until it succeeds or retries are exhausted.

        ``operation`` is called afresh for every attempt. The delay before
        retry ``n`` is ``backoff_base * 2 ** (n - 1)`` seconds.

        Raises:
            The last error observed, or :class:`FetchTimeoutError` when the
            final attempt timed out. Non-retryable errors are raised as-is
            without further attempts.
        """
        timeout = self.timeout if timeout is None else timeout
        max_retries = self.max_retries if max_retries is None else max_retries
        backoff_base = self.backoff_base if backoff_base is None else backoff_base
        fatal = self.non_retryable if non_retryable is None else tuple(non_retryable)

        last_error: Optional[BaseException] = None

        for attempt in range(1, max_retries + 2):
            record = OperationRecord(
                operation_id=operation_id,
                attempt=attempt,
                started_at=self._clock(),
                retries=attempt - 1,
            )
            logger.debug("Starting operation %s (attempt %d)", operation_id, attempt)

            try:
                result = await asyncio.wait_for(operation(), timeout=timeout)
            except Exception as exc:
                error: BaseException = exc
                if isinstance(exc, asyncio.TimeoutError) and not isinstance(exc, RepoAtlasError):
                    error = FetchTimeoutError(operation_id, timeout)
                self._finish(record, "error", error)

                if isinstance(error, fatal):
                    logger.debug("Operation %s failed with non-retryable %s", operation_id, error)
                    if error is exc:
                        raise
                    raise error from exc

                last_error = error
                logger.warning(
                    "Operation %s failed (attempt %d/%d): %s",
                    operation_id,
                    attempt,
                    max_retries + 1,
                    error,
                )
            else:
                self._finish(record, "success")
                return result

            if attempt <= max_retries:
                delay = backoff_base * (2 ** (attempt - 1))
                logger.debug("Retrying %s in %.2fs", operation_id, delay)
                await self._sleep(delay)

        assert last_error is not None
        raise last_error

    def _finish(
        self, record: OperationRecord, status: str, error: Optional[BaseException] = None
    ) -> None:
        record.duration = self._clock() - record.started_at
        record.status = status
        record.error = str(error) if error is not None else None
        self.metrics.record(record)
        logger.debug(
            "Completed operation %s: %s (%.3fs)", record.operation_id, status, record.duration
        )
        if self.sink is not None:
            self.sink.record_stage(record.operation_id, record.duration, status)
