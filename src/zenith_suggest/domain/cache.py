from collections import OrderedDict
from collections.abc import Hashable
from time import monotonic
from typing import Generic, TypeVar

V = TypeVar("V")


class LRUCache(Generic[V]):
    """Bounded mapping that evicts the least recently used entry.

    ``ttl`` (seconds) of ``None`` or ``0`` disables expiry.
    """

    def __init__(self, max_size: int, ttl: float | None = None) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl = ttl if ttl and ttl > 0 else None
        self._entries: OrderedDict[Hashable, tuple[float, V]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self._lookup(key) is not None

    def _lookup(self, key: Hashable) -> tuple[float, V] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self.ttl is not None and monotonic() >= entry[0]:
            del self._entries[key]
            return None
        return entry

    def get(self, key: Hashable) -> V | None:
        entry = self._lookup(key)
        if entry is None:
            return None
        self._entries.move_to_end(key)
        return entry[1]

    def set(self, key: Hashable, value: V) -> None:
        expires_at = monotonic() + self.ttl if self.ttl is not None else 0.0
        self._entries[key] = (expires_at, value)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def clear(self) -> int:
        cleared = len(self._entries)
        self._entries.clear()
        return cleared
