"""文档状态 LRU 缓存 -- 撤销/重做导航使用

基于 OrderedDict：每次访问 move_to_end，最久未使用的条目始终在头部，
淘汰为 O(1) popitem(last=False)。
写入和读取都做深拷贝，缓存内的状态不会被外部引用修改。
"""

from collections import OrderedDict
from typing import Any

from .models.document import DocumentState


class StateLRUCache:
    """序号 -> DocumentState 的有界 LRU 缓存"""

    def __init__(self, capacity: int = 10) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._store: OrderedDict[int, DocumentState] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, sequence: int) -> bool:
        return sequence in self._store

    def get(self, sequence: int) -> DocumentState | None:
        state = self._store.get(sequence)
        if state is None:
            self._misses += 1
            return None
        self._store.move_to_end(sequence)
        self._hits += 1
        return state.model_copy(deep=True)

    def put(self, sequence: int, state: DocumentState) -> None:
        if sequence in self._store:
            self._store.move_to_end(sequence)
        self._store[sequence] = state.model_copy(deep=True)
        while len(self._store) > self._capacity:
            self._store.popitem(last=False)  # evict LRU
            self._evictions += 1

    def invalidate_after(self, sequence: int) -> int:
        """移除序号大于 sequence 的条目，返回移除数量"""
        stale = [seq for seq in self._store if seq > sequence]
        for seq in stale:
            del self._store[seq]
        return len(stale)

    def clear(self) -> None:
        self._store.clear()

    def sequences(self) -> list[int]:
        """按最近使用顺序（旧 -> 新）返回缓存的序号"""
        return list(self._store)

    @property
    def stats(self) -> dict[str, Any]:
        total = self._hits + self._misses
        hit_rate = self._hits / total if total > 0 else 0.0
        return {
            "size": len(self._store),
            "capacity": self._capacity,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "hit_rate": round(hit_rate, 4),
        }
