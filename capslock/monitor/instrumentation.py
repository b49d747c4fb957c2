"""Entry points called by instrumented code.

Each thread gets its own :class:`ReferenceMonitor`, created on first touch and
kept for the thread's lifetime. Monitors are never shared between threads.
"""

from __future__ import annotations

import threading

from ..constants import DEFAULT_MODE
from .core import Permission
from .reference import ReferenceMonitor

_STATE = threading.local()


def current_monitor() -> ReferenceMonitor:
    monitor = getattr(_STATE, "monitor", None)
    if monitor is None:
        monitor = ReferenceMonitor(getattr(_STATE, "mode", DEFAULT_MODE))
        _STATE.monitor = monitor
    return monitor


def reset_monitor(mode: str | None = None, **kwargs) -> ReferenceMonitor:
    """Replace this thread's monitor with a fresh one."""

    if mode is not None:
        _STATE.mode = mode
    _STATE.monitor = ReferenceMonitor(getattr(_STATE, "mode", DEFAULT_MODE), **kwargs)
    return _STATE.monitor


def track_alloc(addr: int, size: int | None = None) -> int:
    return current_monitor().on_alloc(addr, size)


def track_borrow(parent: int, derived: int, perm: Permission | str = Permission.SHARED) -> int:
    return current_monitor().on_reborrow(parent, derived, perm)


def check_access(addr: int) -> bool:
    return current_monitor().on_access(addr)


def track_free(addr: int) -> bool:
    return current_monitor().on_free(addr)


__all__ = [
    "check_access",
    "current_monitor",
    "reset_monitor",
    "track_alloc",
    "track_borrow",
    "track_free",
]
