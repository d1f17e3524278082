"""Analysis lifecycle and progress reporting."""

from .poller import ProgressPoller
from .progress import (
    COMPLETE_EVENT,
    ERROR_EVENT,
    PROGRESS_EVENT,
    TERMINAL_EVENTS,
    ProgressStore,
)
from .streams import ConsoleStream, QueueStream, StreamingSink, StreamRelay
from .tracker import ProgressTracker

__all__ = [
    "COMPLETE_EVENT",
    "ConsoleStream",
    "ERROR_EVENT",
    "PROGRESS_EVENT",
    "ProgressPoller",
    "ProgressStore",
    "ProgressTracker",
    "QueueStream",
    "StreamRelay",
    "StreamingSink",
    "TERMINAL_EVENTS",
]
