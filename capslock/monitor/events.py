"""Instrumentation event traces: parsing, replay, hashing and the verdict logbook."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import hashlib
import json
import re
import sys
from typing import Any, Optional

from ..constants import (
    DEFAULT_MODE,
    LOGBOOK_FILE,
    LOGBOOK_LIMIT,
    MONITOR_EVENTS,
    TAGGED_EVENTS,
    TRACE_VERSION,
)
from ..ffi import TaggedAllocationMap
from . import crypto as _crypto
from .core import Permission
from .reference import ReferenceMonitor
from .violations import SecurityViolation, format_address

EVENT_KINDS = MONITOR_EVENTS + TAGGED_EVENTS


def parse_address(value: Any) -> int:
    """Accept ints and ``0x``/decimal strings."""

    if isinstance(value, bool):
        raise TypeError("Address must be an integer, not a bool")
    if isinstance(value, int):
        addr = value
    elif isinstance(value, str):
        try:
            addr = int(value.strip(), 0)
        except ValueError:
            raise ValueError(f"Invalid address: {value!r}") from None
    else:
        raise TypeError(f"Unsupported address type: {type(value)!r}")
    if addr < 0:
        raise ValueError(f"Address must be non-negative: {value!r}")
    return addr


@dataclass
class Event:
    """One instrumentation event."""

    op: str
    addr: int
    parent: Optional[int] = None
    perm: Optional[Permission] = None
    size: Optional[int] = None

    def __post_init__(self):
        self.op = (self.op or "").strip().lower()
        if self.op not in EVENT_KINDS:
            raise ValueError(f"Unknown event kind: {self.op!r}")
        self.addr = parse_address(self.addr)
        if self.op == "reborrow":
            if self.parent is None:
                raise ValueError("reborrow event requires a parent address")
            self.parent = parse_address(self.parent)
            self.perm = Permission.coerce(self.perm or Permission.SHARED)
        elif self.parent is not None or self.perm is not None:
            raise ValueError(f"{self.op} event does not take a parent or permission")
        if self.size is not None:
            self.size = int(self.size)

    def to_dict(self):
        data: dict[str, Any] = {"op": self.op, "addr": format_address(self.addr)}
        if self.parent is not None:
            data["parent"] = format_address(self.parent)
        if self.perm is not None:
            data["perm"] = self.perm.value
        if self.size is not None:
            data["size"] = self.size
        return data

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise TypeError("Event must be built from a mapping")
        op = data.get("op") or data.get("event")
        addr = data.get("addr")
        if addr is None:
            addr = data.get("address", data.get("base"))
        if addr is None:
            raise ValueError(f"Event {op!r} is missing an address")
        parent = data.get("parent")
        if parent is None:
            parent = data.get("parent_addr")
        return cls(
            op,
            addr,
            parent=parent,
            perm=data.get("perm") or data.get("permission"),
            size=data.get("size"),
        )

    def __str__(self) -> str:
        if self.op == "reborrow":
            return (
                f"reborrow {format_address(self.parent)} {format_address(self.addr)} "
                f"{self.perm.value}"
            )
        if self.size is not None:
            return f"{self.op} {format_address(self.addr)} {self.size}"
        return f"{self.op} {format_address(self.addr)}"


INLINE_EVENT_PATTERN = re.compile(
    r"^\s*(?P<op>[A-Za-z]+)\s+(?P<first>[^\s>-]+)"
    r"(?:\s*(?:->)?\s*(?P<second>[^\s>]+))?"
    r"(?:\s+(?P<third>\S+))?\s*$"
)


def parse_inline_trace(script: str) -> list[Event]:
    """Parse a line- or ``;``-separated event script.

    ``reborrow 0x100 0x101 shared`` (or ``reborrow 0x100 -> 0x101 mut``),
    ``alloc 0x100 [size]``, ``register 0x500 4`` and one-address events.
    """

    if not script:
        return []

    events = []
    for raw in re.split(r"[;\n]", script):
        entry = raw.split("#", 1)[0].strip()
        if not entry:
            continue
        match = INLINE_EVENT_PATTERN.match(entry)
        if not match:
            raise ValueError(f"Invalid trace event: {entry}")
        op = match.group("op").lower()
        first, second, third = match.group("first", "second", "third")
        if op == "reborrow":
            if second is None:
                raise ValueError(f"reborrow needs a parent and a new address: {entry}")
            events.append(Event(op, second, parent=first, perm=third or "shared"))
            continue
        if third is not None:
            raise ValueError(f"Too many operands for {op}: {entry}")
        size = None
        if second is not None:
            if op not in ("alloc", "register"):
                raise ValueError(f"{op} takes a single address: {entry}")
            size = parse_address(second)
        events.append(Event(op, first, size=size))
    return events


def normalize_events(spec) -> list[Event]:
    """Turn any supported trace shape into a list of :class:`Event`."""

    if spec is None:
        return []
    if isinstance(spec, Event):
        return [spec]
    if isinstance(spec, str):
        trimmed = spec.strip()
        if not trimmed:
            return []
        if trimmed[0] in "[{":
            return normalize_events(json.loads(trimmed))
        return parse_inline_trace(trimmed)
    if isinstance(spec, dict):
        if "events" in spec and isinstance(spec["events"], (list, str)):
            return normalize_events(spec["events"])
        return [Event.from_dict(spec)]
    if isinstance(spec, (list, tuple)):
        events = []
        for item in spec:
            events.extend(normalize_events(item))
        return events
    raise TypeError(f"Unsupported trace type: {type(spec)!r}")


def build_trace_document(events, *, mode=DEFAULT_MODE, expect=None, name=None):
    doc = {
        "capslock_trace": TRACE_VERSION,
        "mode": mode,
        "events": [event.to_dict() for event in normalize_events(events)],
    }
    if expect is not None:
        doc["expect"] = expect
    if name is not None:
        doc["name"] = name
    return doc


def write_trace_document(doc, filename):
    with open(filename, "w", encoding="utf-8") as f:
        json.dump(doc, f, indent=2)
    print(f"  ✓ Trace written → {filename}")
    return doc


def load_trace_document(filename):
    """Load a JSON trace document, or an inline script from any other file."""

    with open(filename, "r", encoding="utf-8") as f:
        text = f.read()
    stripped = text.strip()
    if stripped.startswith("{"):
        doc = json.loads(stripped)
    elif stripped.startswith("["):
        doc = {"events": json.loads(stripped)}
    else:
        doc = {"events": text}
    doc.setdefault("capslock_trace", TRACE_VERSION)
    doc.setdefault("mode", DEFAULT_MODE)
    doc["events"] = [event.to_dict() for event in normalize_events(doc["events"])]
    return doc


@dataclass
class ReplayResult:
    monitor: ReferenceMonitor
    tagged: TaggedAllocationMap
    events: list[Event]
    log: list[str] = field(default_factory=list)
    violation: Optional[SecurityViolation] = None
    failed_index: Optional[int] = None

    @property
    def verdict(self) -> str:
        return "violation" if self.violation is not None else "ok"

    @property
    def applied(self) -> int:
        if self.failed_index is not None:
            return self.failed_index
        return len(self.events)


def apply_event(monitor, tagged, held_tags, event):
    """Feed one event to the monitor or the tagged map; return a log line."""

    if event.op == "alloc":
        node_id = monitor.on_alloc(event.addr, event.size)
        return f"{event} -> node {node_id}"
    if event.op == "reborrow":
        node_id = monitor.on_reborrow(event.parent, event.addr, event.perm)
        return f"{event} -> node {node_id}"
    if event.op == "access":
        tracked = monitor.on_access(event.addr)
        return f"{event} -> {'ok' if tracked else 'untracked'}"
    if event.op == "free":
        tracked = monitor.on_free(event.addr)
        return f"{event} -> {'freed' if tracked else 'untracked'}"
    if event.op == "register":
        tag = tagged.register(event.addr, event.size or 0)
        held_tags[event.addr] = tag
        return f"{event} -> tag {tag:#x}"
    if event.op == "check":
        # The managed side presents whatever tag it was last handed.
        tracked = tagged.check(event.addr, held_tags.get(event.addr, 0))
        return f"{event} -> {'ok' if tracked else 'untracked'}"
    if event.op == "revoke":
        tagged.revoke(event.addr)
        return f"{event} -> revoked"
    raise ValueError(f"Unknown event kind: {event.op!r}")  # pragma: no cover


def replay_events(spec, mode=None, *, verbose=False, stream=None) -> ReplayResult:
    """Replay a trace against a fresh monitor, stopping at the first violation."""

    if isinstance(spec, dict) and mode is None:
        mode = spec.get("mode")
    events = normalize_events(spec)
    monitor = ReferenceMonitor(mode or DEFAULT_MODE, verbose=verbose, stream=stream)
    tagged = TaggedAllocationMap(verbose=verbose, stream=stream)
    result = ReplayResult(monitor, tagged, events)
    held_tags: dict[int, int] = {}

    for index, event in enumerate(events):
        try:
            result.log.append(apply_event(monitor, tagged, held_tags, event))
        except SecurityViolation as exc:
            result.violation = exc
            result.failed_index = index
            result.log.append(f"{event} -> VIOLATION ({exc.kind}): {exc.reason}")
            break
    return result


def canonicalize_trace(doc):
    """Normalize a trace document so equivalent traces hash identically."""

    canon = {
        "mode": doc.get("mode", DEFAULT_MODE),
        "events": [event.to_dict() for event in normalize_events(doc.get("events"))],
    }
    if doc.get("expect") is not None:
        canon["expect"] = doc["expect"]
    return canon


def hash_trace_document(doc):
    canon = canonicalize_trace(doc)
    data = json.dumps(canon, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def hash_trace_file(filename):
    doc = load_trace_document(filename)
    h = hash_trace_document(doc)
    print(f"SHA256({filename}) = {h}")
    return h


def record_verdict(doc, result, source=None, logbook_path=None):
    """Append a signed entry for this replay's verdict to the logbook."""

    sha = hash_trace_document(doc)
    runtime_mod = sys.modules.get("capslock.monitor")
    signer = getattr(runtime_mod, "sign_hash", getattr(_crypto, "sign_hash", None))
    sig = signer(sha)

    violation = result.violation
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "source": source,
        "hash": sha,
        "signature": sig,
        "mode": result.monitor.mode,
        "verdict": result.verdict,
        "events": len(result.events),
        "applied": result.applied,
        "violation": None
        if violation is None
        else {
            "kind": violation.kind,
            "address": format_address(violation.address),
            "reason": violation.reason,
        },
    }

    if logbook_path is None:
        logbook_path = getattr(runtime_mod, "LOGBOOK_FILE", LOGBOOK_FILE)
    with open(logbook_path, "a", encoding="utf-8") as f:
        f.write(json.dumps(entry) + "\n")

    print(f"  📜 Recorded and signed verdict → {logbook_path}")
    return entry


def show_logbook(limit=LOGBOOK_LIMIT, logbook_path=None):
    if logbook_path is None:
        logbook_path = getattr(
            sys.modules.get("capslock.monitor"), "LOGBOOK_FILE", LOGBOOK_FILE
        )

    try:
        with open(logbook_path, "r", encoding="utf-8") as f:
            lines = f.readlines()
    except FileNotFoundError:
        print("No logbook yet.")
        return []

    entries = [json.loads(line) for line in lines[-limit:] if line.strip()]
    print(f"\nCapsLock Logbook — last {len(entries)} entries:")
    for e in reversed(entries):
        print(
            f"• {e['timestamp']}  {e.get('source') or '<inline>'}  "
            f"[{e['mode']}:{e['verdict']}]  {e['hash'][:12]}…"
        )
        if e.get("violation"):
            v = e["violation"]
            print(f"    {v['kind']} at {v['address']}: {v['reason']}")
    return entries


__all__ = [
    "EVENT_KINDS",
    "Event",
    "ReplayResult",
    "apply_event",
    "build_trace_document",
    "canonicalize_trace",
    "hash_trace_document",
    "hash_trace_file",
    "load_trace_document",
    "normalize_events",
    "parse_address",
    "parse_inline_trace",
    "record_verdict",
    "replay_events",
    "show_logbook",
    "write_trace_document",
]
