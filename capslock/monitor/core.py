"""Core borrow-tree data structures for the CapsLock monitor."""

from __future__ import annotations

from enum import Enum
from typing import Iterator, Optional


class Permission(str, Enum):
    SHARED = "shared"
    MUTABLE = "mutable"

    @classmethod
    def coerce(cls, value: "Permission | str") -> "Permission":
        """Accept a Permission or its (case-insensitive) name."""

        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise TypeError(f"Permission must be a string, got {type(value)!r}")
        text = value.strip().lower()
        aliases = {"s": "shared", "ro": "shared", "m": "mutable", "mut": "mutable"}
        text = aliases.get(text, text)
        try:
            return cls(text)
        except ValueError:
            raise ValueError(f"Unknown permission: {value!r}") from None

    def __str__(self) -> str:
        return self.value


class BorrowNode:
    """One pointer derivation. Only ``active`` and ``children`` ever change."""

    __slots__ = ("id", "parent", "children", "permission", "active")

    def __init__(self, node_id: int, parent: Optional[int], permission: Permission):
        self.id = node_id
        self.parent = parent
        self.children: list[int] = []
        self.permission = permission
        self.active = True

    @property
    def is_root(self) -> bool:
        return self.parent is None

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        state = "live" if self.active else "dead"
        return f"<Node {self.id} {self.permission.value} {state} parent={self.parent}>"


class BorrowTree:
    """Append-only arena of :class:`BorrowNode` forming a forest."""

    def __init__(self):
        self.nodes: list[BorrowNode] = []

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, node_id) -> bool:
        return isinstance(node_id, int) and 0 <= node_id < len(self.nodes)

    def node(self, node_id: int) -> BorrowNode:
        if node_id not in self:
            raise KeyError(f"Unknown borrow node {node_id}")
        return self.nodes[node_id]

    def _append(self, parent: Optional[int], permission: Permission) -> int:
        node_id = len(self.nodes)
        self.nodes.append(BorrowNode(node_id, parent, permission))
        return node_id

    def spawn_root(self) -> int:
        return self._append(None, Permission.MUTABLE)

    def spawn_child(self, parent_id: int, permission: Permission | str) -> Optional[int]:
        """Derive a child of *parent_id*; ``None`` means the derivation was rejected."""

        permission = Permission.coerce(permission)
        if parent_id not in self:
            return None
        parent = self.nodes[parent_id]
        if not parent.active:
            return None
        child_id = self._append(parent_id, permission)
        parent.children.append(child_id)
        return child_id

    def deep_revoke(self, node_id: int) -> int:
        """Deactivate *node_id* and its whole subtree; return how many nodes died."""

        self.node(node_id)
        revoked = 0
        stack = [node_id]
        while stack:
            current = self.nodes[stack.pop()]
            if not current.active:
                continue
            current.active = False
            revoked += 1
            stack.extend(current.children)
        return revoked

    def revoke_siblings_except(self, parent_id: int, survivor_id: int) -> int:
        parent = self.node(parent_id)
        revoked = 0
        for child_id in list(parent.children):
            if child_id != survivor_id:
                revoked += self.deep_revoke(child_id)
        parent.children = [c for c in parent.children if c == survivor_id]
        return revoked

    def revoke_mutable_siblings(self, parent_id: int, survivor_id: int) -> int:
        parent = self.node(parent_id)
        revoked = 0
        for child_id in list(parent.children):
            if child_id == survivor_id:
                continue
            if self.nodes[child_id].permission is Permission.MUTABLE:
                revoked += self.deep_revoke(child_id)
        parent.children = [c for c in parent.children if self.nodes[c].active]
        return revoked

    def revoke_all_children(self, node_id: int) -> int:
        node = self.node(node_id)
        revoked = 0
        for child_id in list(node.children):
            revoked += self.deep_revoke(child_id)
        node.children = []
        return revoked

    def is_valid(self, node_id: int) -> bool:
        current: Optional[int] = node_id
        while current is not None:
            if current not in self:
                return False
            node = self.nodes[current]
            if not node.active:
                return False
            current = node.parent
        return True

    def get_perm(self, node_id: int) -> Permission:
        return self.node(node_id).permission

    def get_parent(self, node_id: int) -> Optional[int]:
        return self.node(node_id).parent

    def path_to_root(self, node_id: int) -> list[int]:
        """Return ids from *node_id* up to its root, inclusive."""

        path = []
        current: Optional[int] = node_id
        while current is not None and current in self:
            path.append(current)
            current = self.nodes[current].parent
        return path

    def roots(self) -> Iterator[BorrowNode]:
        return (node for node in self.nodes if node.parent is None)


__all__ = [
    "BorrowNode",
    "BorrowTree",
    "Permission",
]
