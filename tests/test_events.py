import json

import pytest

import capslock.monitor as monitor_pkg
from capslock.monitor import (
    Event,
    Permission,
    build_trace_document,
    canonicalize_trace,
    hash_trace_document,
    hash_trace_file,
    load_trace_document,
    normalize_events,
    parse_address,
    parse_inline_trace,
    record_verdict,
    replay_events,
    show_logbook,
    write_trace_document,
)


def test_parse_inline_trace_supports_every_event_kind():
    events = parse_inline_trace(
        """
        # allocation and derivations
        alloc 0x100 4
        reborrow 0x100 0x101 shared; reborrow 0x100 -> 0x102 mut
        access 0x101
        free 0x100
        register 0x500 4; check 0x500; revoke 0x500
        """
    )

    assert [e.op for e in events] == [
        "alloc",
        "reborrow",
        "reborrow",
        "access",
        "free",
        "register",
        "check",
        "revoke",
    ]
    assert events[0].size == 4
    assert events[1].parent == 0x100 and events[1].addr == 0x101
    assert events[1].perm is Permission.SHARED
    assert events[2].perm is Permission.MUTABLE
    assert events[5].size == 4


def test_parse_inline_trace_accepts_arrow_without_spaces():
    (event,) = parse_inline_trace("reborrow 0x100->0x101 mut")

    assert event.parent == 0x100 and event.addr == 0x101
    assert event.perm is Permission.MUTABLE


def test_parse_inline_trace_defaults_to_shared_reborrow():
    (event,) = parse_inline_trace("reborrow 0x1 0x2")
    assert event.perm is Permission.SHARED


@pytest.mark.parametrize(
    "script, message",
    [
        ("bogus", "Invalid trace event"),
        ("reborrow 0x1", "needs a parent"),
        ("access 0x1 0x2", "single address"),
        ("alloc 0x1 4 extra", "Too many operands"),
        ("poke 0x1", "Unknown event kind"),
        ("access nowhere", "Invalid address"),
    ],
)
def test_parse_inline_trace_rejects_malformed_events(script, message):
    with pytest.raises(ValueError, match=message):
        parse_inline_trace(script)


def test_parse_address_accepts_ints_and_strings():
    assert parse_address(16) == 16
    assert parse_address("0x10") == 16
    assert parse_address("0o20") == 16
    assert parse_address(" 42 ") == 42

    with pytest.raises(ValueError):
        parse_address(-1)
    with pytest.raises(TypeError):
        parse_address(True)
    with pytest.raises(TypeError):
        parse_address(1.5)


def test_event_validation():
    with pytest.raises(ValueError, match="requires a parent"):
        Event("reborrow", 0x2)
    with pytest.raises(ValueError, match="does not take a parent"):
        Event("access", 0x2, parent=0x1)
    with pytest.raises(TypeError):
        Event.from_dict(["access", 1])
    with pytest.raises(ValueError, match="missing an address"):
        Event.from_dict({"op": "access"})


def test_event_from_dict_supports_alias_keys_and_round_trips():
    event = Event.from_dict(
        {"event": "REBORROW", "address": "0x101", "parent_addr": 256, "permission": "m"}
    )

    assert event.op == "reborrow"
    assert event.to_dict() == {
        "op": "reborrow",
        "addr": "0x101",
        "parent": "0x100",
        "perm": "mutable",
    }
    assert str(event) == "reborrow 0x100 0x101 mutable"
    assert Event.from_dict(event.to_dict()) == event


def test_normalize_events_supports_various_spec_shapes():
    inline = "alloc 0x10"
    json_blob = json.dumps([{"op": "access", "addr": "0x10"}])
    wrapper = {"events": "free 0x10"}
    single = {"op": "register", "base": 32, "size": 8}
    obj = Event("revoke", 32)

    events = normalize_events([inline, json_blob, wrapper, single, obj, None, "  "])

    assert [e.op for e in events] == ["alloc", "access", "free", "register", "revoke"]
    assert normalize_events(None) == []
    with pytest.raises(TypeError):
        normalize_events(42)


def test_replay_stops_at_first_violation():
    result = replay_events(
        "alloc 0x200; reborrow 0x200 0x201 shared; reborrow 0x200 0x202 mutable;"
        "access 0x201; access 0x202; access 0x201"
    )

    assert result.verdict == "violation"
    assert result.violation.kind == "provenance"
    assert result.failed_index == 4
    assert result.applied == 4
    assert len(result.log) == 5
    assert result.log[-1].startswith("access 0x202 -> VIOLATION (provenance)")


def test_replay_clean_trace():
    result = replay_events(
        "alloc 0x300; reborrow 0x300 0x301; reborrow 0x300 0x302;"
        "access 0x301; access 0x302; access 0x999"
    )

    assert result.verdict == "ok"
    assert result.applied == 6
    assert result.log[-1] == "access 0x999 -> untracked"
    assert result.monitor.warnings == ["Accessing untracked memory at 0x999"]


def test_replay_tagged_events_present_the_held_tag():
    result = replay_events("register 0x500 4; check 0x500; revoke 0x500; check 0x500")

    assert result.verdict == "violation"
    assert result.violation.kind == "tag-mismatch"
    assert result.failed_index == 3
    assert result.tagged.get(0x500).revoked


def test_replay_uses_mode_from_document():
    doc = build_trace_document(
        "alloc 0x1; reborrow 0x1 0x2 shared; reborrow 0x1 0x3 mutable; access 0x2",
        mode="eager",
    )

    assert replay_events(doc).verdict == "violation"
    assert replay_events(doc, "lazy").verdict == "ok"


def test_trace_documents_round_trip_through_files(tmp_path, capsys):
    doc = build_trace_document("alloc 0x1; access 0x1", expect="ok", name="tiny")
    path = tmp_path / "tiny.capslock.json"
    write_trace_document(doc, path)

    loaded = load_trace_document(path)
    assert loaded["events"] == doc["events"]
    assert loaded["expect"] == "ok"
    assert "Trace written" in capsys.readouterr().out

    inline = tmp_path / "tiny.trace"
    inline.write_text("alloc 0x1\naccess 0x1\n", encoding="utf-8")
    bare = tmp_path / "bare.json"
    bare.write_text(json.dumps(doc["events"]), encoding="utf-8")

    assert hash_trace_document(load_trace_document(inline)) == hash_trace_document(
        load_trace_document(bare)
    )


def test_hash_ignores_formatting_but_not_semantics(tmp_path, capsys):
    a = {"mode": "lazy", "events": "alloc 0x10; access 16"}
    b = {"events": [{"op": "alloc", "addr": 16}, {"op": "access", "addr": "0x10"}]}
    c = {"mode": "eager", "events": "alloc 0x10; access 16"}

    assert canonicalize_trace(a) == canonicalize_trace(b)
    assert hash_trace_document(a) == hash_trace_document(b)
    assert hash_trace_document(a) != hash_trace_document(c)

    path = tmp_path / "a.json"
    path.write_text(json.dumps(a), encoding="utf-8")
    assert hash_trace_file(path) == hash_trace_document(a)
    assert "SHA256(" in capsys.readouterr().out


def test_record_verdict_and_show_logbook(tmp_path, monkeypatch, capsys):
    logbook = tmp_path / "capslock.logbook.jsonl"
    monkeypatch.setattr(monitor_pkg, "LOGBOOK_FILE", str(logbook))
    monkeypatch.setattr(monitor_pkg, "sign_hash", lambda digest: f"sig:{digest[:8]}")

    doc = build_trace_document("reborrow 0xDEAD 0xBEEF shared", expect="violation")
    result = replay_events(doc)
    entry = record_verdict(doc, result, source="untracked.json")

    assert entry["verdict"] == "violation"
    assert entry["violation"] == {
        "kind": "untracked-parent",
        "address": "0xdead",
        "reason": "reborrow from untracked address",
    }
    assert entry["signature"] == f"sig:{entry['hash'][:8]}"
    assert json.loads(logbook.read_text(encoding="utf-8").strip()) == entry

    record_verdict(build_trace_document("alloc 0x1"), replay_events("alloc 0x1"))
    capsys.readouterr()

    entries = show_logbook()
    out = capsys.readouterr().out
    assert len(entries) == 2
    assert "untracked.json" in out and "<inline>" in out
    assert "untracked-parent at 0xdead" in out


def test_show_logbook_without_file(tmp_path, monkeypatch, capsys):
    monkeypatch.setattr(monitor_pkg, "LOGBOOK_FILE", str(tmp_path / "missing.jsonl"))

    assert show_logbook() == []
    assert "No logbook yet." in capsys.readouterr().out
