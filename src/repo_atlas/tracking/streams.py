"""Push transport for progress events: sinks and the relay feeding them."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Optional, Protocol

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from ..logging_config import get_logger
from .progress import COMPLETE_EVENT, ERROR_EVENT, TERMINAL_EVENTS, ProgressStore

logger = get_logger(__name__)


class StreamingSink(Protocol):
    """Receives progress events for one analysis until closed."""

    async def push(self, event: str, payload: dict[str, Any]) -> None: ...

    async def close(self) -> None: ...


class QueueStream:
    """Sink backed by an asyncio queue, for servers and tests.

    Iterate with ``async for event, payload in stream.events()`` until the
    stream is closed.
    """

    _CLOSED = object()

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def push(self, event: str, payload: dict[str, Any]) -> None:
        if self.closed:
            raise RuntimeError("stream is closed")
        await self._queue.put((event, payload))

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            await self._queue.put(self._CLOSED)

    async def events(self) -> AsyncIterator[tuple[str, dict[str, Any]]]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item

    def drain(self) -> list[tuple[str, dict[str, Any]]]:
        """Everything pushed so far, without waiting."""
        items = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is not self._CLOSED:
                items.append(item)
        return items


class ConsoleStream:
    """Sink rendering progress events as a rich progress bar."""

    def __init__(self, console: Optional[Console] = None, title: str = "Analyzing") -> None:
        self.console = console or Console(stderr=True)
        self.title = title
        self.last_event: Optional[str] = None
        self.last_payload: Optional[dict[str, Any]] = None
        self._progress: Optional[Progress] = None
        self._task_id: Optional[TaskID] = None

    def _start(self) -> None:
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description}"),
            BarColumn(bar_width=40, complete_style="cyan", finished_style="green"),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=self.console,
            transient=False,
        )
        self._progress.start()
        self._task_id = self._progress.add_task(self.title, total=None)

    async def push(self, event: str, payload: dict[str, Any]) -> None:
        if self._progress is None:
            self._start()
        assert self._progress is not None and self._task_id is not None

        self.last_event = event
        self.last_payload = payload
        progress = payload.get("progress", {})
        total = progress.get("total") or None
        message = progress.get("message") or self.title
        if len(message) > 60:
            message = message[:57] + "..."

        if event == COMPLETE_EVENT:
            done = total or 1
            self._progress.update(
                self._task_id, total=done, completed=done, description=f"[green]{message}[/]"
            )
        elif event == ERROR_EVENT:
            self._progress.update(self._task_id, description=f"[red]{message}[/]")
        else:
            self._progress.update(
                self._task_id,
                total=total,
                completed=progress.get("current", 0),
                description=message,
            )

    async def close(self) -> None:
        if self._progress is not None:
            self._progress.stop()
            self._progress = None


class StreamRelay:
    """Relays progress events from the canonical store to a streaming sink."""

    def __init__(self, progress: ProgressStore) -> None:
        self.progress = progress

    async def relay(
        self,
        analysis_id: str,
        sink: StreamingSink,
        queue: Optional[asyncio.Queue] = None,
    ) -> Optional[str]:
        """Forward events until a terminal one, then close the sink.

        ``queue`` may be a listener queue subscribed earlier; otherwise one is
        subscribed now. Returns the terminal event type, or ``None`` when the
        sink failed and was detached.
        """
        if queue is None:
            queue = self.progress.subscribe(analysis_id)
        try:
            while True:
                msg = await queue.get()
                event = msg["type"]
                try:
                    await sink.push(event, msg)
                except Exception as exc:
                    logger.warning("Detaching stream for %s: %s", analysis_id, exc)
                    return None
                if event in TERMINAL_EVENTS:
                    return event
        finally:
            self.progress.unsubscribe(analysis_id, queue)
            await _close_sink(analysis_id, sink)


async def _close_sink(analysis_id: str, sink: StreamingSink) -> None:
    try:
        await sink.close()
    except Exception as exc:
        logger.debug("Closing stream for %s failed: %s", analysis_id, exc)
