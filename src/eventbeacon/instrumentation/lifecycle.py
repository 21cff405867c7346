"""
Lifecycle signals and the teardown strategies that react to them.

The host application reports when it is hidden (``notify_hidden``) and the
signal source reports process exit through ``atexit``. The pipeline picks
exactly one strategy at initialization:

- ``AsyncFlushStrategy`` for runtimes that cannot make a blocking request
  while tearing down: flush asynchronously whenever the app is hidden.
- ``KeepaliveFlushStrategy`` everywhere else: the same hidden-flush, plus a
  blocking best-effort send when the process is about to terminate.
"""

from __future__ import annotations

import atexit
import threading
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from ..helpers.logging_config import get_logger

if TYPE_CHECKING:
    from ..helpers.dispatcher import Dispatcher

logger = get_logger()

Unsubscribe = Callable[[], None]


class LifecycleSignal(Enum):
    HIDDEN = "hidden"
    ABOUT_TO_TERMINATE = "about_to_terminate"


class LifecycleSignals:
    """
    Minimal publish/subscribe hub for host lifecycle signals.

    Subscriber errors are logged and never reach the emitter.
    """

    def __init__(self, *, install_atexit: bool = True) -> None:
        self._subscribers: dict[LifecycleSignal, list[Callable[[], None]]] = {
            signal: [] for signal in LifecycleSignal
        }
        self._lock = threading.Lock()
        self._atexit_installed = False
        if install_atexit:
            atexit.register(self._on_exit)
            self._atexit_installed = True

    def subscribe(self, signal: LifecycleSignal, callback: Callable[[], None]) -> Unsubscribe:
        with self._lock:
            self._subscribers[signal].append(callback)

        def unsubscribe() -> None:
            with self._lock:
                try:
                    self._subscribers[signal].remove(callback)
                except ValueError:
                    pass

        return unsubscribe

    def subscriber_count(self, signal: LifecycleSignal) -> int:
        with self._lock:
            return len(self._subscribers[signal])

    def emit(self, signal: LifecycleSignal) -> None:
        with self._lock:
            callbacks = list(self._subscribers[signal])
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.debug(f"Lifecycle callback for {signal.value} failed (ignored): {type(e).__name__}: {e}")

    def notify_hidden(self) -> None:
        self.emit(LifecycleSignal.HIDDEN)

    def notify_about_to_terminate(self) -> None:
        self.emit(LifecycleSignal.ABOUT_TO_TERMINATE)

    def _on_exit(self) -> None:
        self.emit(LifecycleSignal.ABOUT_TO_TERMINATE)

    def close(self) -> None:
        if self._atexit_installed:
            atexit.unregister(self._on_exit)
            self._atexit_installed = False


class TeardownStrategy(Protocol):
    name: str

    def install(self, signals: LifecycleSignals, dispatcher: Dispatcher) -> None: ...

    def uninstall(self) -> None: ...

    async def final_flush(self, dispatcher: Dispatcher) -> None: ...


class AsyncFlushStrategy:
    """Flush asynchronously when the application is hidden."""

    name = "async"

    def __init__(self) -> None:
        self._unsubscribers: list[Unsubscribe] = []

    def install(self, signals: LifecycleSignals, dispatcher: Dispatcher) -> None:
        self._unsubscribers.append(signals.subscribe(LifecycleSignal.HIDDEN, dispatcher.request_flush))

    def uninstall(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    async def final_flush(self, dispatcher: Dispatcher) -> None:
        await dispatcher.flush()


class KeepaliveFlushStrategy(AsyncFlushStrategy):
    """Hidden-flush plus a blocking best-effort send right before exit."""

    name = "keepalive"

    def install(self, signals: LifecycleSignals, dispatcher: Dispatcher) -> None:
        super().install(signals, dispatcher)
        self._unsubscribers.append(
            signals.subscribe(LifecycleSignal.ABOUT_TO_TERMINATE, dispatcher.flush_sync)
        )

    async def final_flush(self, dispatcher: Dispatcher) -> None:
        await dispatcher.flush_keepalive()


def select_teardown_strategy(sandboxed: bool) -> TeardownStrategy:
    if sandboxed:
        return AsyncFlushStrategy()
    return KeepaliveFlushStrategy()
