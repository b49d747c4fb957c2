"""Inspection and rendering of a monitor's borrow forest."""
from __future__ import annotations

from pathlib import Path

import networkx as nx
import pydot

from ..constants import PERMISSION_COLORS, STATUS_COLORS
from .core import Permission
from .violations import format_address


def _labels(monitor):
    """node id -> list of addresses currently bound to it."""

    labels: dict[int, list[int]] = {}
    for addr, node_id in monitor.shadow.items():
        labels.setdefault(node_id, []).append(addr)
    for addrs in labels.values():
        addrs.sort()
    return labels


def _address_text(addrs):
    if not addrs:
        return "-"
    return ",".join(format_address(a) for a in addrs)


def check_tree_invariants(monitor, errors=None):
    """Append a message to *errors* for every structural invariant that fails."""

    if errors is None:
        errors = []
    tree = monitor.tree

    for node in tree.nodes:
        if node.parent is None:
            if node.permission is not Permission.MUTABLE:
                errors.append(f"Root node {node.id} is not mutable")
            continue
        if node.parent not in tree:
            errors.append(f"Node {node.id} has unknown parent {node.parent}")
            continue
        if node.parent >= node.id:
            errors.append(f"Node {node.id} was derived from later node {node.parent}")
        parent = tree.nodes[node.parent]
        if not parent.active and node.active:
            errors.append(
                f"Node {node.id} is live but its parent {parent.id} was revoked"
            )

    for node in tree.nodes:
        for child_id in node.children:
            if child_id not in tree or tree.nodes[child_id].parent != node.id:
                errors.append(f"Node {node.id} lists {child_id} as a child it did not derive")

    for addr, node_id in monitor.shadow.items():
        if node_id not in tree:
            errors.append(f"Address {format_address(addr)} maps to unknown node {node_id}")

    return errors


def explain_address(monitor, addr):
    """Describe the provenance chain behind *addr*, root last."""

    node_id = monitor.shadow.get(addr)
    if node_id is None:
        return {"found": False, "valid": False, "lines": [], "revoked_at": None}

    tree = monitor.tree
    labels = _labels(monitor)
    lines = []
    revoked_at = None
    for depth, current in enumerate(tree.path_to_root(node_id)):
        node = tree.nodes[current]
        state = "live" if node.active else "REVOKED"
        if not node.active and revoked_at is None:
            revoked_at = current
        arrow = "" if depth == 0 else "derived from "
        lines.append(
            f"{'  ' * depth}{arrow}node {current} [{node.permission.value}] {state} "
            f"@ {_address_text(labels.get(current))}"
        )

    valid = tree.is_valid(node_id)
    if valid:
        lines.append("⇒ valid: every ancestor is live")
    else:
        lines.append(f"⇒ invalid: revoked at node {revoked_at}")
    return {"found": True, "valid": valid, "lines": lines, "revoked_at": revoked_at}


def tree_to_dict(monitor):
    tree = monitor.tree
    labels = _labels(monitor)
    return {
        "mode": monitor.mode,
        "nodes": [
            {
                "id": node.id,
                "parent": node.parent,
                "children": list(node.children),
                "permission": node.permission.value,
                "active": node.active,
                "addresses": [format_address(a) for a in labels.get(node.id, [])],
            }
            for node in tree.nodes
        ],
        "shadow": {
            format_address(addr): node_id for addr, node_id in sorted(monitor.shadow.items())
        },
    }


def print_tree(monitor):
    tree = monitor.tree
    labels = _labels(monitor)
    by_parent: dict[int, list[int]] = {}
    for node in tree.nodes:
        if node.parent is not None:
            by_parent.setdefault(node.parent, []).append(node.id)

    for root in tree.roots():
        stack = [(root.id, 0)]
        while stack:
            current, depth = stack.pop()
            node = tree.nodes[current]
            mark = "✓" if node.active else "✗"
            print(
                f"{'  ' * depth}{mark} node {current} [{node.permission.value}] "
                f"@ {_address_text(labels.get(current))}"
            )
            for child in reversed(by_parent.get(current, [])):
                stack.append((child, depth + 1))


def build_graph(monitor):
    """Return the borrow forest as a networkx ``DiGraph`` (parent -> child)."""

    graph = nx.DiGraph()
    labels = _labels(monitor)
    for node in monitor.tree.nodes:
        graph.add_node(
            node.id,
            permission=node.permission.value,
            active=node.active,
            valid=monitor.tree.is_valid(node.id),
            addresses=labels.get(node.id, []),
            label=f"{node.id}\n{node.permission.value}\n{_address_text(labels.get(node.id))}",
        )
    for node in monitor.tree.nodes:
        if node.parent is not None:
            graph.add_edge(node.parent, node.id)
    return graph


def _layered_positions(graph):
    positions = {}
    depth_counts: dict[int, int] = {}
    for component in nx.weakly_connected_components(graph):
        root = min(component)
        for nid, depth in nx.single_source_shortest_path_length(graph, root).items():
            column = depth_counts.get(depth, 0)
            depth_counts[depth] = column + 1
            positions[nid] = (column, -depth)
    return positions


def visualize_tree(monitor, output_path=None):  # pragma: no cover
    """Draw the borrow forest with matplotlib; save to *output_path* if given."""

    import matplotlib.pyplot as plt

    graph = build_graph(monitor)
    positions = _layered_positions(graph)
    fill = [PERMISSION_COLORS[graph.nodes[n]["permission"]] for n in graph.nodes]
    edge = [
        STATUS_COLORS["active" if graph.nodes[n]["active"] else "revoked"]
        for n in graph.nodes
    ]
    labels = {n: graph.nodes[n]["label"] for n in graph.nodes}

    fig, ax = plt.subplots(figsize=(8, 6))
    nx.draw_networkx(
        graph,
        pos=positions,
        ax=ax,
        labels=labels,
        node_color=fill,
        edgecolors=edge,
        node_size=1400,
        font_size=7,
        arrows=True,
    )
    ax.set_title(f"CapsLock borrow forest ({monitor.mode})")
    ax.axis("off")
    if output_path:
        fig.savefig(output_path, bbox_inches="tight")
        print(f"  ✓ Borrow forest rendered → {output_path}")
    else:
        plt.show()
    plt.close(fig)


def build_graphviz(monitor):
    """Build a pydot graph: one cluster per allocation root, revoked nodes greyed."""

    graph = pydot.Dot(
        "capslock_borrows",
        graph_type="digraph",
        rankdir="TB",
        fontname="Helvetica",
    )
    labels = _labels(monitor)
    tree = monitor.tree

    root_of = {}
    for node in tree.nodes:
        root_of[node.id] = node.id if node.parent is None else root_of[node.parent]

    clusters = {}
    for root in tree.roots():
        cluster = pydot.Cluster(
            f"alloc_{root.id}",
            label=f"alloc {_address_text(labels.get(root.id))}",
            color="#7f8c8d",
            fontname="Helvetica",
            fontsize="10",
            style="rounded",
        )
        clusters[root.id] = cluster
        graph.add_subgraph(cluster)

    for node in tree.nodes:
        status = "active" if node.active else "revoked"
        clusters[root_of[node.id]].add_node(
            pydot.Node(
                f"n{node.id}",
                label=f"{node.id} [{node.permission.value}]\\n{_address_text(labels.get(node.id))}",
                shape="box",
                style="filled" if node.active else "filled,dashed",
                fillcolor=PERMISSION_COLORS[node.permission.value]
                if node.active
                else STATUS_COLORS["revoked"],
                color=STATUS_COLORS[status],
                fontname="Helvetica",
            )
        )

    for node in tree.nodes:
        if node.parent is not None:
            graph.add_edge(
                pydot.Edge(
                    f"n{node.parent}",
                    f"n{node.id}",
                    style="solid" if node.active else "dashed",
                    color="#7f8c8d",
                )
            )
    return graph


def export_graphviz(monitor, output_path):  # pragma: no cover
    """Export the borrow forest as an SVG through Graphviz."""

    graph = build_graphviz(monitor)
    output_path = Path(output_path)
    if output_path.parent and not output_path.parent.exists():
        output_path.parent.mkdir(parents=True, exist_ok=True)
    graph.write_svg(str(output_path))
    print(f"  ✓ Graphviz visualization exported → {output_path}")


__all__ = [
    "build_graph",
    "build_graphviz",
    "check_tree_invariants",
    "explain_address",
    "export_graphviz",
    "print_tree",
    "tree_to_dict",
    "visualize_tree",
]
