"""Built-in event scripts that demonstrate the monitor's verdicts."""

from __future__ import annotations

from dataclasses import dataclass
import ctypes
from typing import Callable, Optional

from ..ffi import TaggedAllocationMap, foreign_callbacks
from .events import replay_events
from .violations import TagMismatchViolation, violation_barrier


@dataclass(frozen=True)
class Scenario:
    name: str
    title: str
    script: str
    expect: str
    violation_kind: Optional[str] = None
    runner: Optional[Callable[..., tuple]] = None
    # Index of the event expected to raise; None means the last one.
    fails_at: Optional[int] = None


@dataclass
class ScenarioOutcome:
    scenario: Scenario
    observed: str
    violation: object = None
    log: tuple = ()
    failed_index: Optional[int] = None
    event_count: int = 0

    @property
    def expected_index(self) -> Optional[int]:
        if self.scenario.expect != "violation":
            return None
        if self.scenario.fails_at is not None:
            return self.scenario.fails_at
        return self.event_count - 1

    @property
    def verdict(self) -> str:
        if self.observed != self.scenario.expect:
            return "FAILURE"
        if self.failed_index != self.expected_index:
            return "FAILURE"
        if self.violation is not None and self.scenario.violation_kind:
            if self.violation.kind != self.scenario.violation_kind:
                return "FAILURE"
        return "SUCCESS"


def _foreign_write(verbose=False, stream=None):
    """Hand a ``ctypes`` buffer to a native-callable writer that revokes its tag."""

    tagged = TaggedAllocationMap(verbose=verbose, stream=stream)
    callbacks = foreign_callbacks(tagged, stream=stream)
    data = ctypes.c_int(42)
    base = ctypes.addressof(data)
    log = []

    tag = tagged.register(base, ctypes.sizeof(data))
    log.append(f"register {base:#x} -> tag {tag:#x}")
    tagged.check(base, tag)
    log.append(f"check {base:#x} -> ok")

    # What a foreign writer does: store through the raw pointer, then revoke.
    ctypes.cast(base, ctypes.POINTER(ctypes.c_int))[0] = 9999
    callbacks["revoke"](base)
    log.append(f"foreign write {base:#x} = {data.value} -> revoked")

    with violation_barrier() as trap:
        tagged.check(base, tag)
    if trap.violation is not None:
        log.append(f"check {base:#x} -> VIOLATION ({trap.violation.kind})")
    return trap.violation, log


SCENARIOS = {
    scenario.name: scenario
    for scenario in (
        Scenario(
            "sibling",
            "Sibling revocation by a writer",
            "alloc 0x100; reborrow 0x100 0x101 shared; reborrow 0x100 0x102 shared;"
            "access 0x101; access 0x102; reborrow 0x100 0x103 mutable;"
            "access 0x103; access 0x101",
            "violation",
            "provenance",
        ),
        Scenario(
            "lazy",
            "Lazy revocation: a reader kills the dormant writer",
            "alloc 0x200; reborrow 0x200 0x201 shared; reborrow 0x200 0x202 mutable;"
            "access 0x201; access 0x202",
            "violation",
            "provenance",
        ),
        Scenario(
            "lazy-swapped",
            "Lazy revocation: the first writer wins",
            "alloc 0x200; reborrow 0x200 0x201 shared; reborrow 0x200 0x202 mutable;"
            "access 0x202; access 0x201",
            "violation",
            "provenance",
        ),
        Scenario(
            "readers",
            "Shared readers coexist",
            "alloc 0x300; reborrow 0x300 0x301 shared; reborrow 0x300 0x302 shared;"
            "access 0x301; access 0x302; access 0x301",
            "ok",
        ),
        Scenario(
            "freeze",
            "A write through a parent freezes its children",
            "alloc 0x400; reborrow 0x400 0x401 mutable; reborrow 0x401 0x402 shared;"
            "access 0x401; access 0x402",
            "violation",
            "provenance",
        ),
        Scenario(
            "untracked",
            "Reborrow from an untracked address",
            "reborrow 0xDEAD 0xBEEF shared",
            "violation",
            "untracked-parent",
        ),
        Scenario(
            "tag-rotation",
            "Tagged allocation rotation",
            "register 0x500 4; check 0x500; revoke 0x500; check 0x500",
            "violation",
            TagMismatchViolation.kind,
        ),
        Scenario(
            "demo",
            "Two mutable reborrows; writing the second kills the first",
            "alloc 0x1000 4; reborrow 0x1000 0x1001 mutable;"
            "reborrow 0x1000 0x1002 mutable; access 0x1002; access 0x1001",
            "violation",
            "provenance",
        ),
        Scenario(
            "foreign-write",
            "Foreign write through a native callback rotates the tag",
            "",
            "violation",
            TagMismatchViolation.kind,
            runner=_foreign_write,
        ),
    )
}


def get_scenario(name: str) -> Scenario:
    try:
        return SCENARIOS[name]
    except KeyError:
        known = ", ".join(sorted(SCENARIOS))
        raise KeyError(f"Unknown scenario {name!r} (known: {known})") from None


def run_scenario(name, mode=None, *, verbose=False, stream=None) -> ScenarioOutcome:
    """Run a scenario behind the unwind barrier and compare with its expectation."""

    scenario = get_scenario(name)
    if scenario.runner is not None:
        violation, log = scenario.runner(verbose=verbose, stream=stream)
        # Runners stop at the violating step, which is always their last line.
        failed_index = len(log) - 1 if violation is not None else None
        event_count = len(log)
    else:
        result = replay_events(scenario.script, mode, verbose=verbose, stream=stream)
        violation, log = result.violation, result.log
        failed_index, event_count = result.failed_index, len(result.events)
    observed = "violation" if violation is not None else "ok"
    return ScenarioOutcome(
        scenario, observed, violation, tuple(log), failed_index, event_count
    )


def list_scenarios():
    return {name: scenario.title for name, scenario in SCENARIOS.items()}


__all__ = [
    "SCENARIOS",
    "Scenario",
    "ScenarioOutcome",
    "get_scenario",
    "list_scenarios",
    "run_scenario",
]
