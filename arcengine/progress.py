"""
arcengine/progress.py -- Best-effort progress reporting for long operations.

Backup and restore publish ``{percent, processedBytes, totalBytes}``
events while they run.  Progress is purely advisory: a slow or absent
consumer never blocks the operation and never changes its result.

A *progress sink* is anything callable with one dict argument, so a Qt
``Signal.emit`` plugs in directly.  ``ProgressChannel`` is a sink backed
by a bounded queue for consumers that poll; when the queue is full the
oldest event is dropped to make room for the newest.

Usage::

    channel = ProgressChannel(maxsize=32)
    builder.create_backup(..., progress=channel)
    while (event := channel.get_nowait()) is not None:
        print(event["percent"])
"""

from __future__ import annotations

import logging
import queue
from typing import Callable, Optional

logger = logging.getLogger(__name__)

ProgressSink = Callable[[dict], None]


class ProgressChannel:
    """Bounded, lossy queue of progress events."""

    def __init__(self, maxsize: int = 64):
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self.dropped = 0

    def __call__(self, event: dict) -> None:
        self.publish(event)

    def publish(self, event: dict) -> None:
        """Enqueue *event*, discarding the oldest one if the queue is full."""
        while True:
            try:
                self._queue.put_nowait(event)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass

    def get_nowait(self) -> Optional[dict]:
        """Return the oldest pending event, or ``None`` if there is none."""
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    def drain(self) -> list[dict]:
        """Return and remove every pending event, oldest first."""
        events = []
        while (event := self.get_nowait()) is not None:
            events.append(event)
        return events


def progress_event(processed: int, total: int) -> dict:
    """Build a progress payload.  An empty job reports 100%."""
    percent = 100 if total <= 0 else min(100, int(processed * 100 / total))
    return {"percent": percent, "processedBytes": processed, "totalBytes": total}


def publish(sink: Optional[ProgressSink], event: dict) -> None:
    """Deliver *event* to *sink*; a failing sink is logged and ignored."""
    if sink is None:
        return
    try:
        sink(event)
    except Exception:
        logger.debug("Progress sink raised; event dropped", exc_info=True)
