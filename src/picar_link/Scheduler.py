"""
Scheduler hands out cancellable one-shot and periodic timers.

Every timer runs its callback on its own daemon thread. Exceptions raised by
a callback are logged and swallowed so a broken callback can not take a
timer thread (or the periodic task it belongs to) down with it.

All timers handed out by a scheduler can be cancelled at once with
cancel_all(), after which the scheduler only hands out cancelled handles.
That way no callback fires after teardown.
"""
import logging
import threading
import time
from typing import Callable, Optional, Set


class TimerHandle:
    def __init__(self, name: str, periodic: bool = False) -> None:
        self.name = name
        self.periodic = periodic

        self._cancelled = threading.Event()
        self._done = threading.Event()
        self._timer: Optional[threading.Timer] = None

    def cancel(self) -> None:
        self._cancelled.set()
        if self._timer:
            self._timer.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def active(self) -> bool:
        return not self._cancelled.is_set() and not self._done.is_set()

    def __repr__(self) -> str:
        return f"TimerHandle({self.name!r}, active={self.active})"


class PeriodicTask(threading.Thread):
    def __init__(
        self,
        handle: TimerHandle,
        interval: float,
        callback: Callable[[], None]
    ) -> None:
        super().__init__(daemon=True, name=handle.name)
        self.handle = handle
        self.interval = interval
        self.callback = callback

    def run(self) -> None:
        # wait() returns True as soon as the handle is cancelled
        while not self.handle._cancelled.wait(self.interval):
            try:
                self.callback()
            except Exception as e:
                logging.exception(f"Periodic task '{self.handle.name}' failed: {e}")

        self.handle._done.set()


class Scheduler:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handles: Set[TimerHandle] = set()
        self._closed = False

    def now(self) -> float:
        return time.monotonic()

    def call_later(
        self,
        delay: float,
        callback: Callable[[], None],
        name: str = "timer"
    ) -> TimerHandle:
        handle = TimerHandle(name)

        with self._lock:
            if self._closed:
                handle.cancel()
                return handle

            timer = threading.Timer(delay, self._fire, args=(handle, callback))
            timer.daemon = True
            timer.name = name
            handle._timer = timer

            self._prune()
            self._handles.add(handle)

        timer.start()

        return handle

    def call_soon(
        self,
        callback: Callable[[], None],
        name: str = "task"
    ) -> TimerHandle:
        return self.call_later(0, callback, name)

    def call_every(
        self,
        interval: float,
        callback: Callable[[], None],
        name: str = "periodic"
    ) -> TimerHandle:
        handle = TimerHandle(name, periodic=True)

        with self._lock:
            if self._closed:
                handle.cancel()
                return handle

            self._prune()
            self._handles.add(handle)

        PeriodicTask(handle, interval, callback).start()

        return handle

    def cancel_all(self) -> None:
        with self._lock:
            self._closed = True
            handles = list(self._handles)
            self._handles.clear()

        for handle in handles:
            handle.cancel()

        logging.debug(f"Cancelled {len(handles)} timers")

    @property
    def pending(self) -> int:
        with self._lock:
            return sum(1 for handle in self._handles if handle.active)

    def _fire(self, handle: TimerHandle, callback: Callable[[], None]) -> None:
        if handle.cancelled:
            return

        handle._done.set()
        try:
            callback()
        except Exception as e:
            logging.exception(f"Timer '{handle.name}' failed: {e}")

    def _prune(self) -> None:
        """Forget finished handles, caller must hold the lock."""
        self._handles = {handle for handle in self._handles if handle.active}
