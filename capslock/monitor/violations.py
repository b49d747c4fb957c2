"""Security violations raised by the reference monitor and tagged allocations."""

from __future__ import annotations

from contextlib import contextmanager
import sys
from typing import Any, Callable, Iterator


def format_address(addr: int | None) -> str:
    if addr is None:
        return "?"
    return f"{addr:#x}"


class SecurityViolation(RuntimeError):
    """Fatal monitor failure. Unwinds like any exception so drivers can trap it."""

    kind = "violation"

    def __init__(self, address: int | None, reason: str):
        self.address = address
        self.reason = reason
        super().__init__(f"{reason} at {format_address(address)}")

    def details(self) -> list[str]:
        return [
            f"Address: {format_address(self.address)}",
            f"Reason: {self.reason}",
        ]

    def report(self) -> str:
        lines = ["", "[Runtime] *** SECURITY VIOLATION ***"]
        lines.extend(f"    {line}" for line in self.details())
        return "\n".join(lines) + "\n"


class ProvenanceViolation(SecurityViolation):
    kind = "provenance"

    def __init__(self, address: int | None, reason: str = "use after revocation"):
        super().__init__(address, reason)


class UntrackedParentViolation(SecurityViolation):
    kind = "untracked-parent"

    def __init__(self, address: int | None, reason: str = "reborrow from untracked address"):
        super().__init__(address, reason)


class InvalidatedParentViolation(SecurityViolation):
    kind = "invalidated-parent"

    def __init__(self, address: int | None, reason: str = "parent invalidated"):
        super().__init__(address, reason)


class TagMismatchViolation(SecurityViolation):
    """A foreign-boundary check presented a tag other than the active one."""

    kind = "tag-mismatch"

    def __init__(
        self,
        address: int | None,
        expected_tag: int,
        actual_tag: int,
        reason: str = "memory was revoked/modified by foreign code",
    ):
        self.expected_tag = expected_tag
        self.actual_tag = actual_tag
        super().__init__(address, reason)

    def details(self) -> list[str]:
        return [
            f"Address: {format_address(self.address)}",
            f"Expected Tag: {self.expected_tag:#x}",
            f"Actual Tag:   {self.actual_tag:#x}",
            f"Reason: {self.reason}",
        ]


def report_violation(exc: SecurityViolation, stream=None) -> str:
    """Write the multi-line diagnostic for *exc* and return it."""

    text = exc.report()
    stream = sys.stderr if stream is None else stream
    stream.write(text)
    stream.flush()
    return text


class ViolationTrap:
    """Result holder filled by :func:`violation_barrier`."""

    def __init__(self):
        self.violation: SecurityViolation | None = None

    @property
    def caught(self) -> bool:
        return self.violation is not None

    @property
    def verdict(self) -> str:
        return "SUCCESS" if self.caught else "FAILURE"


@contextmanager
def violation_barrier(report: bool = False, stream=None) -> Iterator[ViolationTrap]:
    """Stop a :class:`SecurityViolation` from unwinding past this block."""

    trap = ViolationTrap()
    try:
        yield trap
    except SecurityViolation as exc:
        trap.violation = exc
        if report:
            report_violation(exc, stream)


def expect_violation(fn: Callable[..., Any], *args, **kwargs) -> str:
    """Run *fn* and return ``"SUCCESS"`` if it raised a violation, else ``"FAILURE"``."""

    with violation_barrier() as trap:
        fn(*args, **kwargs)
    return trap.verdict


__all__ = [
    "InvalidatedParentViolation",
    "ProvenanceViolation",
    "SecurityViolation",
    "TagMismatchViolation",
    "UntrackedParentViolation",
    "ViolationTrap",
    "expect_violation",
    "format_address",
    "report_violation",
    "violation_barrier",
]
