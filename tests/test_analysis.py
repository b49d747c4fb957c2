"""Tests for :mod:`capslock.monitor.analysis`."""

from capslock.monitor import (
    ReferenceMonitor,
    build_graph,
    build_graphviz,
    check_tree_invariants,
    explain_address,
    expect_violation,
    print_tree,
    tree_to_dict,
)


def _sample_monitor():
    m = ReferenceMonitor()
    m.on_alloc(0x100)
    m.on_reborrow(0x100, 0x101, "shared")
    m.on_reborrow(0x101, 0x102, "shared")
    m.on_reborrow(0x100, 0x103, "mutable")
    m.on_access(0x103)
    return m


def test_invariants_hold_for_monitor_driven_trees():
    assert check_tree_invariants(_sample_monitor()) == []


def test_invariant_checker_reports_broken_structures():
    m = _sample_monitor()
    m.tree.node(0).permission = m.tree.node(1).permission  # shared root
    m.tree.node(2).active = True  # live under a revoked parent
    m.tree.node(3).children.append(1)
    m.shadow.insert(0xBAD, 77)

    errors = check_tree_invariants(m)

    assert "Root node 0 is not mutable" in errors
    assert "Node 2 is live but its parent 1 was revoked" in errors
    assert "Node 3 lists 1 as a child it did not derive" in errors
    assert "Address 0xbad maps to unknown node 77" in errors


def test_explain_address_marks_first_revoked_ancestor():
    m = _sample_monitor()

    info = explain_address(m, 0x102)
    assert info["found"] and not info["valid"]
    assert info["revoked_at"] == 2
    assert info["lines"][0].startswith("node 2 [shared] REVOKED @ 0x102")
    assert "derived from node 0 [mutable] live @ 0x100" in info["lines"][2]
    assert info["lines"][-1] == "⇒ invalid: revoked at node 2"

    live = explain_address(m, 0x103)
    assert live["valid"]
    assert live["lines"][-1] == "⇒ valid: every ancestor is live"

    assert explain_address(m, 0x999) == {
        "found": False,
        "valid": False,
        "lines": [],
        "revoked_at": None,
    }


def test_tree_to_dict_snapshot():
    snapshot = tree_to_dict(_sample_monitor())

    assert snapshot["mode"] == "lazy"
    assert snapshot["shadow"] == {"0x100": 0, "0x101": 1, "0x102": 2, "0x103": 3}
    assert snapshot["nodes"][0]["children"] == [3]
    assert [n["active"] for n in snapshot["nodes"]] == [True, False, False, True]
    assert snapshot["nodes"][3]["permission"] == "mutable"


def test_print_tree_shows_every_node_even_after_pruning(capsys):
    print_tree(_sample_monitor())

    lines = capsys.readouterr().out.splitlines()
    assert lines == [
        "✓ node 0 [mutable] @ 0x100",
        "  ✗ node 1 [shared] @ 0x101",
        "    ✗ node 2 [shared] @ 0x102",
        "  ✓ node 3 [mutable] @ 0x103",
    ]


def test_build_graph_uses_parent_links():
    m = _sample_monitor()
    m.on_alloc(0x200)
    graph = build_graph(m)

    assert set(graph.edges) == {(0, 1), (1, 2), (0, 3)}
    assert graph.nodes[2]["valid"] is False
    assert graph.nodes[3]["valid"] is True
    assert graph.nodes[4]["addresses"] == [0x200]
    assert graph.nodes[1]["permission"] == "shared"


def test_build_graphviz_clusters_per_allocation():
    m = _sample_monitor()
    m.on_alloc(0x200)
    expect_violation(m.on_access, 0x101)

    dot = build_graphviz(m).to_string()

    assert "cluster_alloc_0" in dot
    assert "cluster_alloc_4" in dot
    assert "n0 -> n3" in dot
    assert "dashed" in dot
