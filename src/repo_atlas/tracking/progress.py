"""Canonical progress state shared by the pull and push transports."""

from __future__ import annotations

import asyncio
import threading
from collections import OrderedDict
from dataclasses import replace
from typing import Any, Optional

from ..logging_config import get_logger
from ..snapshot.models import AnalysisStatus, Progress

logger = get_logger(__name__)

PROGRESS_EVENT = "progress"
COMPLETE_EVENT = "complete"
ERROR_EVENT = "error"
TERMINAL_EVENTS = frozenset({COMPLETE_EVENT, ERROR_EVENT})

DEFAULT_QUEUE_SIZE = 100

# Finished analyses kept for replay; older ones are read back from the snapshot store
DEFAULT_MAX_FINISHED = 256


def event_for(progress: Progress) -> str:
    if progress.status is AnalysisStatus.COMPLETE:
        return COMPLETE_EVENT
    if progress.status is AnalysisStatus.ERROR:
        return ERROR_EVENT
    return PROGRESS_EVENT


class ProgressStore:
    """Holds the latest Progress of every analysis and fans events out to listeners.

    Thread-safe: the tracker writes via :meth:`publish`, pollers read via
    :meth:`get` and stream relays consume the asyncio queues handed out by
    :meth:`subscribe`.

    Only the latest ``max_finished`` terminal states are retained; older
    ones are forgotten once a newer analysis finishes.
    """

    def __init__(
        self, queue_size: int = DEFAULT_QUEUE_SIZE, max_finished: int = DEFAULT_MAX_FINISHED
    ) -> None:
        if max_finished < 1:
            raise ValueError(f"max_finished must be >= 1, got {max_finished}")
        self.queue_size = queue_size
        self.max_finished = max_finished
        self._lock = threading.RLock()
        self._progress: dict[str, Progress] = {}
        self._listeners: dict[str, list[asyncio.Queue]] = {}
        self._finished: OrderedDict[str, None] = OrderedDict()

    def publish(self, analysis_id: str, progress: Progress, event: Optional[str] = None) -> None:
        """Record ``progress`` as the latest state and notify listeners."""
        latest = replace(progress)
        event = event or event_for(latest)
        with self._lock:
            self._progress[analysis_id] = latest
            listeners = list(self._listeners.get(analysis_id, []))
            if event in TERMINAL_EVENTS:
                self._finished[analysis_id] = None
                self._finished.move_to_end(analysis_id)
                self._evict_finished(keep=analysis_id)
            else:
                self._finished.pop(analysis_id, None)

        msg = _message(analysis_id, event, latest)
        for queue in listeners:
            self._send_to_queue(queue, msg, is_terminal=event in TERMINAL_EVENTS)

    def get(self, analysis_id: str) -> Optional[Progress]:
        with self._lock:
            progress = self._progress.get(analysis_id)
            return replace(progress) if progress is not None else None

    def subscribe(self, analysis_id: str, replay: bool = True) -> asyncio.Queue:
        """Register a listener queue; with ``replay`` it starts with the latest state."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        with self._lock:
            self._listeners.setdefault(analysis_id, []).append(queue)
            latest = self._progress.get(analysis_id)
            if replay and latest is not None:
                queue.put_nowait(_message(analysis_id, event_for(latest), replace(latest)))
        return queue

    def unsubscribe(self, analysis_id: str, queue: asyncio.Queue) -> None:
        with self._lock:
            listeners = self._listeners.get(analysis_id, [])
            if queue in listeners:
                listeners.remove(queue)
            if not listeners:
                self._listeners.pop(analysis_id, None)

    def listener_count(self, analysis_id: str) -> int:
        with self._lock:
            return len(self._listeners.get(analysis_id, []))

    def tracked_count(self) -> int:
        with self._lock:
            return len(self._progress)

    def forget(self, analysis_id: str) -> None:
        with self._lock:
            self._progress.pop(analysis_id, None)
            self._finished.pop(analysis_id, None)

    def _evict_finished(self, keep: str) -> None:
        # Caller holds the lock; analyses with live listeners stay
        for analysis_id in list(self._finished):
            if len(self._finished) <= self.max_finished:
                return
            if analysis_id == keep or self._listeners.get(analysis_id):
                continue
            logger.debug("Forgetting finished progress of %s", analysis_id)
            self.forget(analysis_id)

    def _send_to_queue(self, queue: asyncio.Queue, msg: dict[str, Any], is_terminal: bool) -> bool:
        """Send message to queue with smart overflow handling.

        Terminal events drain stale messages to make room; progress events
        are dropped when the queue is full.
        """
        if queue.maxsize and queue.qsize() >= queue.maxsize:
            if not is_terminal:
                logger.debug("Listener queue full, dropping progress message")
                return False
            drained = 0
            while not queue.empty():
                queue.get_nowait()
                drained += 1
            logger.debug("Drained %d stale messages from listener queue", drained)
        queue.put_nowait(msg)
        return True


def _message(analysis_id: str, event: str, progress: Progress) -> dict[str, Any]:
    return {"type": event, "analysis_id": analysis_id, "progress": progress.to_dict()}
