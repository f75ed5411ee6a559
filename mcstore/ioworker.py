"""Background workers that run IO requests and maintenance passes."""

from __future__ import annotations

import threading
from collections import deque
from typing import Callable, Iterable

from mcstore.storetypes import ObjIO


class IOWorker:
    """Runs queued IO requests through ``handler`` in batches of ``io_depth``."""

    def __init__(self, handler: Callable[[ObjIO], object], io_depth: int = 1) -> None:
        self._handler = handler
        self.io_depth = io_depth
        self._queue: deque[ObjIO] = deque()
        self._cond = threading.Condition()
        self._running = False
        self._thread: threading.Thread | None = None

    @property
    def pending(self) -> int:
        """Number of requests waiting in the queue."""
        with self._cond:
            return len(self._queue)

    def submit(self, io: ObjIO | Iterable[ObjIO]) -> None:
        """Queue one request, or several in order, and wake the worker."""
        with self._cond:
            if isinstance(io, ObjIO):
                self._queue.append(io)
            else:
                self._queue.extend(io)
            self._cond.notify()

    def _pop_batch(self) -> list[ObjIO]:
        count = min(len(self._queue), max(1, self.io_depth))
        return [self._queue.popleft() for _ in range(count)]

    def take_batch(self) -> list[ObjIO]:
        """Remove and return up to ``io_depth`` requests from the queue."""
        with self._cond:
            return self._pop_batch()

    def run(self) -> None:
        """Process requests until stopped and the queue is empty.

        Called without ``start`` it drains the queue and returns.
        """
        while True:
            with self._cond:
                self._cond.wait_for(lambda: self._queue or not self._running)
                if not self._queue:
                    return
                batch = self._pop_batch()
            for io in batch:
                self._handler(io)

    def start(self) -> None:
        """Run the worker in a background thread."""
        with self._cond:
            if self._running:
                raise RuntimeError("IO worker already running")
            self._running = True
        self._thread = threading.Thread(target=self.run, name="extstore-io", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Finish queued requests, then stop the background thread."""
        with self._cond:
            self._running = False
            self._cond.notify_all()
        if self._thread is not None:
            self._thread.join()
            self._thread = None


class MaintenanceWorker:
    """Runs ``task`` once after each burst of ``signal`` calls."""

    def __init__(self, task: Callable[[], object]) -> None:
        self._task = task
        self._cond = threading.Condition()
        self._pending = False
        self._running = False
        self._thread: threading.Thread | None = None

    def signal(self) -> None:
        """Ask for one more maintenance pass."""
        with self._cond:
            self._pending = True
            self._cond.notify()

    def run(self) -> None:
        """Run requested passes until stopped.

        Called without ``start`` it runs any requested pass and returns.
        """
        while True:
            with self._cond:
                self._cond.wait_for(lambda: self._pending or not self._running)
                if not self._pending:
                    return
                self._pending = False
            self._task()

    def start(self) -> None:
        """Run the worker in a background thread."""
        with self._cond:
            if self._running:
                raise RuntimeError("maintenance worker already running")
            self._running = True
        self._thread = threading.Thread(
            target=self.run, name="extstore-maint", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop the background thread and wait for it."""
        with self._cond:
            self._running = False
            self._cond.notify_all()
        if self._thread is not None:
            self._thread.join()
            self._thread = None