"""Address to borrow-node index."""

from __future__ import annotations

from typing import Iterator, Optional


class ShadowMap:
    """Maps observed pointer addresses to borrow-tree node ids.

    Addresses are opaque integer keys and are never dereferenced.
    """

    def __init__(self):
        self._entries: dict[int, int] = {}

    def insert(self, addr: int, node_id: int) -> Optional[int]:
        """Bind *addr* to *node_id*, returning the id it replaced, if any."""

        previous = self._entries.get(addr)
        self._entries[addr] = node_id
        return previous

    def get(self, addr: int) -> Optional[int]:
        return self._entries.get(addr)

    def remove(self, addr: int) -> Optional[int]:
        return self._entries.pop(addr, None)

    def items(self):
        return self._entries.items()

    def __contains__(self, addr) -> bool:
        return addr in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[int]:
        return iter(self._entries)

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return f"ShadowMap({len(self._entries)} entries)"


__all__ = ["ShadowMap"]
