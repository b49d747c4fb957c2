"""Reference monitor applying the revocation algebra to instrumentation events."""

from __future__ import annotations

import sys
from typing import Optional

from ..constants import DEFAULT_MODE, REVOCATION_MODES
from .core import BorrowTree, Permission
from .shadow import ShadowMap
from .violations import (
    InvalidatedParentViolation,
    ProvenanceViolation,
    UntrackedParentViolation,
    format_address,
)


class ReferenceMonitor:
    """Aliasing-XOR-mutability monitor over a borrow tree and a shadow map.

    ``mode="lazy"`` (the default) never revokes at reborrow time: the first
    actual use of a pointer claims exclusivity. ``mode="eager"`` additionally
    lets a mutable reborrow kill its siblings as soon as it is created.
    """

    def __init__(self, mode: str = DEFAULT_MODE, *, verbose: bool = False, stream=None):
        if mode not in REVOCATION_MODES:
            raise ValueError(f"Unknown revocation mode: {mode!r}")
        self.mode = mode
        self.verbose = verbose
        self.stream = stream
        self.tree = BorrowTree()
        self.shadow = ShadowMap()
        self.warnings: list[str] = []
        self.events_seen = 0

    def __repr__(self) -> str:
        return (
            f"ReferenceMonitor(mode={self.mode!r}, nodes={len(self.tree)}, "
            f"addresses={len(self.shadow)}, events={self.events_seen})"
        )

    def _log(self, message: str) -> None:
        if self.verbose:
            print(f"[Runtime] {message}", file=self.stream or sys.stdout)

    def _warn(self, message: str) -> None:
        self.warnings.append(message)
        print(f"[Runtime] WARNING: {message}", file=self.stream or sys.stderr)

    def node_for(self, addr: int) -> Optional[int]:
        return self.shadow.get(addr)

    def is_live(self, addr: int) -> bool:
        node_id = self.shadow.get(addr)
        return node_id is not None and self.tree.is_valid(node_id)

    def on_alloc(self, addr: int, size: int | None = None) -> int:
        self.events_seen += 1
        if addr in self.shadow:
            raise ValueError(f"Address {format_address(addr)} is already tracked")
        root_id = self.tree.spawn_root()
        self.shadow.insert(addr, root_id)
        suffix = f" (Size: {size})" if size is not None else ""
        self._log(f"ALLOC: {format_address(addr)}{suffix} -> root node {root_id}")
        return root_id

    def on_reborrow(
        self, parent_addr: int, new_addr: int, permission: Permission | str
    ) -> int:
        self.events_seen += 1
        permission = Permission.coerce(permission)
        parent_id = self.shadow.get(parent_addr)
        if parent_id is None:
            raise UntrackedParentViolation(parent_addr)
        child_id = self.tree.spawn_child(parent_id, permission)
        if child_id is None:
            raise InvalidatedParentViolation(parent_addr)
        self.shadow.insert(new_addr, child_id)
        if self.mode == "eager" and permission is Permission.MUTABLE:
            self.tree.revoke_siblings_except(parent_id, child_id)
        self._log(
            f"REBORROW: {format_address(parent_addr)} -> {format_address(new_addr)} "
            f"[{permission.value}] node {parent_id} -> {child_id}"
        )
        return child_id

    def on_access(self, addr: int) -> bool:
        """Validate a use of *addr*. Returns ``False`` for untracked memory."""

        self.events_seen += 1
        node_id = self.shadow.get(addr)
        if node_id is None:
            self._warn(f"Accessing untracked memory at {format_address(addr)}")
            return False

        if not self.tree.is_valid(node_id):
            raise ProvenanceViolation(addr)

        permission = self.tree.get_perm(node_id)
        if permission is Permission.MUTABLE:
            self.tree.revoke_all_children(node_id)

        parent_id = self.tree.get_parent(node_id)
        if parent_id is not None:
            if permission is Permission.MUTABLE:
                self.tree.revoke_siblings_except(parent_id, node_id)
            else:
                self.tree.revoke_mutable_siblings(parent_id, node_id)

        self._log(f"ACCESS: {format_address(addr)} [{permission.value}] node {node_id}")
        return True

    def on_free(self, addr: int) -> bool:
        self.events_seen += 1
        node_id = self.shadow.remove(addr)
        if node_id is None:
            self._warn(f"Freeing untracked memory at {format_address(addr)}")
            return False
        self.tree.deep_revoke(node_id)
        self._log(f"FREE: {format_address(addr)} node {node_id}")
        return True


__all__ = ["ReferenceMonitor"]
