"""
Process-wide tracker used by the module-level API (``eventbeacon.track`` etc.).
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..core.tracker import Tracker

_tracker: Tracker | None = None
_initialized = False
_state_lock = threading.Lock()


def peek_tracker() -> Tracker | None:
    """Return the global tracker without creating one."""
    return _tracker


def get_tracker() -> Tracker:
    """
    Return the global tracker.

    When none exists, one is built from the
    environment. It works without ``init_analytics`` but has no lifecycle
    hooks and falls back to lazily resolved identity values.
    """
    global _tracker
    with _state_lock:
        if _tracker is None:
            from ..core.tracker import Tracker

            _tracker = Tracker()
        return _tracker


def set_tracker(tracker: Tracker | None) -> None:
    global _tracker, _initialized
    with _state_lock:
        _tracker = tracker
        _initialized = False


def is_initialized() -> bool:
    return _initialized


def mark_initialized() -> None:
    global _initialized
    with _state_lock:
        _initialized = True


def reset_global_state() -> Tracker | None:
    """Forget the global tracker and return it (the caller shuts it down)."""
    global _tracker, _initialized
    with _state_lock:
        tracker = _tracker
        _tracker = None
        _initialized = False
        return tracker
