"""Background threads for periodic flushes and retention sweeps."""

from __future__ import annotations

import logging
import queue
from dataclasses import dataclass, field
from threading import Event, Thread
from typing import Callable, Optional

from services.flush import FlushEngine, FlushResult

logger = logging.getLogger(__name__)


class RecurringTask:
    """Run ``action`` repeatedly on a daemon thread.

    ``next_delay`` is consulted before every run, which lets a task follow a
    fixed period or a calendar anchor such as the next local midnight.
    Exceptions from ``action`` are logged and the schedule continues.
    """

    def __init__(self, name: str, action: Callable[[], object], next_delay: Callable[[], float]) -> None:
        self.name = name
        self._action = action
        self._next_delay = next_delay
        self._stop = Event()
        self._thread: Optional[Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(max(self._next_delay(), 0.0)):
            try:
                self._action()
            except Exception:  # noqa: BLE001 - keep the schedule alive
                logger.exception("Recurring task %s failed", self.name)


@dataclass
class FlushRequest:
    reason: str
    done: Event = field(default_factory=Event)
    result: Optional[FlushResult] = None


_STOP = object()


class FlushWorker:
    """Single consumer of flush requests.

    Size-triggered, timer-triggered and manual flushes all go through
    :meth:`request`, so the buffer is only ever drained from this worker's
    thread. While the worker is not running, requests flush inline on the
    caller's thread instead.
    """

    def __init__(self, engine: FlushEngine) -> None:
        self.engine = engine
        self._requests: "queue.Queue[object]" = queue.Queue()
        self._thread: Optional[Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._thread = Thread(target=self._run, name="flush-worker", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = 10.0) -> None:
        if self._thread is None:
            return
        self._requests.put(_STOP)
        self._thread.join(timeout)
        self._thread = None

    def request(self, reason: str, wait: bool = False, timeout: Optional[float] = None) -> Optional[FlushResult]:
        """Ask for a flush; with ``wait`` block until it finishes or ``timeout`` elapses."""
        if not self.running:
            return self.engine.flush()
        pending = FlushRequest(reason=reason)
        self._requests.put(pending)
        if not wait:
            return None
        if not pending.done.wait(timeout):
            logger.warning("Timed out waiting for flush", extra={"reason": reason})
            return None
        return pending.result

    def _run(self) -> None:
        while True:
            item = self._requests.get()
            if item is _STOP:
                return
            assert isinstance(item, FlushRequest)
            try:
                item.result = self.engine.flush()
            except Exception:  # noqa: BLE001 - worker must outlive a bad flush
                logger.exception("Flush failed", extra={"reason": item.reason})
            finally:
                item.done.set()
