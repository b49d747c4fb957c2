"""Tagged-allocation monitor for memory handed across the foreign boundary.

Foreign code cannot take part in the borrow-tree protocol, so each
allocation it may touch carries a single active tag instead. A foreign write
calls :func:`capslock_revoke`, which overwrites the tag with
:data:`REVOKED_TAG`; any managed handle still holding the old tag then fails
:func:`capslock_check`.
"""

from dataclasses import dataclass
import ctypes
import itertools
import sys
import threading

from .constants import REVOKED_TAG, TAG_MASK
from .monitor.violations import SecurityViolation, TagMismatchViolation, format_address


@dataclass
class TaggedAllocation:
    """Metadata tracked for one foreign-visible allocation."""

    base_address: int
    size: int
    active_tag: int

    @property
    def revoked(self):
        return self.active_tag == REVOKED_TAG

    def to_dict(self):
        return {
            "base_address": self.base_address,
            "size": self.size,
            "active_tag": self.active_tag,
            "revoked": self.revoked,
        }


class TaggedAllocationMap:
    """Base address -> :class:`TaggedAllocation`, guarded by one coarse lock."""

    def __init__(self, *, verbose=False, stream=None):
        self._records = {}
        self._lock = threading.RLock()
        self._tags = itertools.count(1)
        self.verbose = verbose
        self.stream = stream
        self.warnings = []
        self.last_violation = None

    def _log(self, message):
        if self.verbose:
            print(f"[Runtime] {message}", file=self.stream or sys.stdout)

    def _fresh_tag(self):
        while True:
            tag = next(self._tags) & TAG_MASK
            if tag not in (0, REVOKED_TAG):
                return tag

    def register(self, base, size):
        with self._lock:
            tag = self._fresh_tag()
            self._records[base] = TaggedAllocation(base, size, tag)
        self._log(f"ALLOC: Registered {format_address(base)} (Size: {size}) with Tag {tag:#x}")
        return tag

    def check(self, base, expected_tag):
        """Return ``True`` if *expected_tag* is current, ``False`` if untracked."""

        with self._lock:
            record = self._records.get(base)
            actual = None if record is None else record.active_tag
        if record is None:
            message = f"Accessing untracked memory at {format_address(base)}"
            self.warnings.append(message)
            print(f"[Runtime] WARNING: {message}", file=self.stream or sys.stderr)
            return False
        if actual == REVOKED_TAG or actual != expected_tag:
            raise TagMismatchViolation(base, expected_tag, actual)
        return True

    def revoke(self, base):
        with self._lock:
            record = self._records.get(base)
            if record is None:
                return False
            record.active_tag = REVOKED_TAG
        self._log(
            f"REVOKE: Foreign write detected at {format_address(base)}. "
            f"Tag rotated to {REVOKED_TAG:#x}"
        )
        return True

    def get(self, base):
        with self._lock:
            return self._records.get(base)

    def clear(self):
        with self._lock:
            self._records.clear()

    def __contains__(self, base):
        with self._lock:
            return base in self._records

    def __len__(self):
        with self._lock:
            return len(self._records)


TAGGED_ALLOCATIONS = TaggedAllocationMap()


def capslock_register(base, size):
    """Register *base* in the process-wide map and return its tag."""

    return TAGGED_ALLOCATIONS.register(base, size)


def capslock_check(base, expected_tag):
    return TAGGED_ALLOCATIONS.check(base, expected_tag)


def capslock_revoke(base):
    """Called on behalf of foreign code after it writes through *base*."""

    TAGGED_ALLOCATIONS.revoke(base)


def clear_tagged_allocations():
    TAGGED_ALLOCATIONS.clear()


REGISTER_CALLBACK = ctypes.CFUNCTYPE(ctypes.c_uint64, ctypes.c_size_t, ctypes.c_size_t)
CHECK_CALLBACK = ctypes.CFUNCTYPE(ctypes.c_int, ctypes.c_size_t, ctypes.c_uint64)
REVOKE_CALLBACK = ctypes.CFUNCTYPE(None, ctypes.c_size_t)


def foreign_callbacks(tagged=None, stream=None):
    """Build C-callable entry points over *tagged* (default: the global map).

    Exceptions cannot unwind through foreign frames, so the check callback
    returns a status instead: ``0`` valid, ``1`` untracked, ``-1`` violation.
    On ``-1`` the report has been written and the violation is kept on
    ``tagged.last_violation``. Callers must keep the returned objects alive
    for as long as foreign code may call them.
    """

    tagged = TAGGED_ALLOCATIONS if tagged is None else tagged

    def _register(base, size):
        return tagged.register(base, size)

    def _check(base, expected_tag):
        try:
            ok = tagged.check(base, expected_tag)
        except SecurityViolation as exc:
            tagged.last_violation = exc
            (stream or sys.stderr).write(exc.report())
            return -1
        return 0 if ok else 1

    def _revoke(base):
        tagged.revoke(base)

    return {
        "register": REGISTER_CALLBACK(_register),
        "check": CHECK_CALLBACK(_check),
        "revoke": REVOKE_CALLBACK(_revoke),
    }


__all__ = [
    "CHECK_CALLBACK",
    "REGISTER_CALLBACK",
    "REVOKE_CALLBACK",
    "TAGGED_ALLOCATIONS",
    "TaggedAllocation",
    "TaggedAllocationMap",
    "capslock_check",
    "capslock_register",
    "capslock_revoke",
    "clear_tagged_allocations",
    "foreign_callbacks",
]
