"""Command-line interface for the CapsLock monitor."""
from __future__ import annotations

import argparse
import sys

from ..constants import CAPSLOCK_VERSION, DEFAULT_MODE, REVOCATION_MODES
from .analysis import (
    check_tree_invariants,
    explain_address,
    export_graphviz,
    print_tree,
    visualize_tree,
)
from .crypto import verify_signature
from .events import (
    build_trace_document,
    hash_trace_file,
    load_trace_document,
    parse_address,
    record_verdict,
    replay_events,
    show_logbook,
)
from .scenarios import SCENARIOS, list_scenarios, run_scenario
from .violations import report_violation


def _runtime_callable(name, fallback):
    runtime_mod = sys.modules.get("capslock.monitor")
    if runtime_mod and hasattr(runtime_mod, name):
        return getattr(runtime_mod, name)
    return fallback


def parse_args(args):
    argp = argparse.ArgumentParser(description="CapsLock-lite reference monitor")
    argp.add_argument(
        "--version", action="version", version=f"capslock {CAPSLOCK_VERSION}"
    )

    source = argp.add_mutually_exclusive_group()
    source.add_argument("--trace", help="Replay a trace file (JSON or inline script)")
    source.add_argument("--src", help="Replay an inline event script")
    source.add_argument(
        "--scenario",
        metavar="NAME",
        help="Run a built-in scenario behind an unwind barrier ('all' runs every one)",
    )
    source.add_argument(
        "--list-scenarios", action="store_true", help="List built-in scenarios"
    )
    source.add_argument("--hash", metavar="FILE", help="Compute the hash of a trace file")
    source.add_argument(
        "--logbook", action="store_true", help="Show the CapsLock verdict logbook"
    )
    source.add_argument("--verify", metavar="HASH", help="Verify a logbook signature")

    argp.add_argument(
        "--mode",
        choices=REVOCATION_MODES,
        default=None,
        help=f"Revocation mode (default: trace's own, else {DEFAULT_MODE})",
    )
    argp.add_argument("--verbose", action="store_true", help="Print every monitor event")
    argp.add_argument("--tree", action="store_true", help="Print the borrow forest")
    argp.add_argument(
        "--why", metavar="ADDR", help="Explain the provenance chain behind an address"
    )
    argp.add_argument("--viz", metavar="OUTPUT", help="Export a Graphviz SVG")
    argp.add_argument(
        "--visualize",
        nargs="?",
        const="",
        metavar="OUTPUT",
        help="Render the borrow forest with matplotlib (optionally to a file)",
    )
    argp.add_argument(
        "--record", action="store_true", help="Record a signed verdict in the logbook"
    )

    return argp.parse_args(args)


def _run_scenarios(params):
    names = sorted(SCENARIOS) if params.scenario == "all" else [params.scenario]
    failures = 0
    for name in names:
        try:
            outcome = _runtime_callable("run_scenario", run_scenario)(
                name, params.mode, verbose=params.verbose
            )
        except KeyError as exc:
            print(f"  ✗ {exc.args[0]}", file=sys.stderr)
            return 2
        scenario = outcome.scenario
        print(f"=== {scenario.name}: {scenario.title} ===")
        for line in outcome.log:
            print(f"    {line}")
        if outcome.violation is not None and params.verbose:
            report_violation(outcome.violation, sys.stdout)
        print(f"  → expected {scenario.expect}, observed {outcome.observed}: {outcome.verdict}")
        if outcome.verdict != "SUCCESS":
            failures += 1
    return 1 if failures else 0


def _replay(params):
    if params.trace:
        doc = _runtime_callable("load_trace_document", load_trace_document)(params.trace)
        source = params.trace
    else:
        doc = build_trace_document(params.src, mode=params.mode or DEFAULT_MODE)
        source = None
    mode = params.mode or doc.get("mode", DEFAULT_MODE)

    result = _runtime_callable("replay_events", replay_events)(
        doc, mode, verbose=params.verbose
    )
    print(f"Replaying {len(result.events)} events ({mode} mode):")
    for line in result.log:
        print("   ", line)

    if params.tree:
        print("\nBorrow forest:")
        print_tree(result.monitor)
        for error in check_tree_invariants(result.monitor):
            print(f"  ✗ {error}")
    if params.why:
        addr = parse_address(params.why)
        print(f"\nProvenance of {params.why}:")
        info = explain_address(result.monitor, addr)
        if not info["found"]:
            print("  ✗ Address is not tracked.")
        for line in info["lines"]:
            print("  " + line)
    if params.viz:
        _runtime_callable("export_graphviz", export_graphviz)(result.monitor, params.viz)
    if params.visualize is not None:
        _runtime_callable("visualize_tree", visualize_tree)(
            result.monitor, params.visualize or None
        )
    if params.record:
        _runtime_callable("record_verdict", record_verdict)(doc, result, source)

    expect = doc.get("expect")
    if expect is not None:
        matched = expect == result.verdict
        print(f"\n  → expected {expect}, observed {result.verdict}: "
              f"{'SUCCESS' if matched else 'FAILURE'}")
        return 0 if matched else 1

    if result.violation is not None:
        report_violation(result.violation)
        return 1
    print("\n  ✓ No violations")
    return 0


def main(args=None):
    params = parse_args(sys.argv[1:] if args is None else args)

    if params.list_scenarios:
        for name, title in list_scenarios().items():
            print(f"{name:14} {title}")
        return 0
    if params.hash:
        _runtime_callable("hash_trace_file", hash_trace_file)(params.hash)
        return 0
    if params.logbook:
        _runtime_callable("show_logbook", show_logbook)()
        return 0
    if params.verify:
        ok = _runtime_callable("verify_signature", verify_signature)(
            params.verify,
            input("Signature hex: ").strip(),
        )
        print("✓ Signature valid" if ok else "✗ Invalid signature")
        return 0 if ok else 1
    if params.scenario:
        return _run_scenarios(params)
    if params.trace or params.src:
        return _replay(params)

    params.scenario = "all"
    return _run_scenarios(params)


__all__ = [
    "main",
    "parse_args",
]


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main(sys.argv[1:]))
