"""Undo/Redo Navigator -- 在事件时间线上移动当前位置

undo()/redo() 以操作为单位移动：目标序号取操作时间线上
相邻的停靠点（end_group 标记、组外的单个事件、序号 0）。
navigate_to_sequence() 可定位到任意序号，先查 LRU 缓存，
未命中时交给 Replayer 并写回缓存。

重做分支截断：撤销后录入新操作时，Recorder 先追加 history_rewound，
时间线据此丢弃被放弃分支上的停靠点，之后无法再重做到该分支。
"""

import bisect
import time

import structlog

from .config import NAVIGATION_LATENCY_TARGET_MS, NAVIGATOR_CACHE_CAPACITY
from .exceptions import IllegalStateError, InvalidSequenceError
from .lru_cache import StateLRUCache
from .models.document import DocumentState
from .models.enums import MARKER_TYPES
from .models.event import Event
from .models.payloads import EndGroupPayload, HistoryRewoundPayload, StartGroupPayload
from .replayer import EventReplayer
from .store import StoreGroup

log = structlog.get_logger()


class OperationTimeline:
    """操作停靠点序列（递增）

    停靠点处的状态是一个完整操作结束后的状态，
    撤销/重做总是在停靠点之间跳转。
    """

    def __init__(self) -> None:
        self._stops: list[int] = []
        self._labels: dict[int, str] = {}
        self._in_group = False
        self._last_fed = -1

    @property
    def last_fed_sequence(self) -> int:
        return self._last_fed

    @property
    def stops(self) -> list[int]:
        return list(self._stops)

    def feed(self, event: Event) -> None:
        """按序号顺序喂入事件"""
        seq = event.sequence
        payload = event.payload
        self._last_fed = seq

        if seq == 0:
            self._add_stop(0, self._label_of(event))

        if isinstance(payload, StartGroupPayload):
            self._in_group = True
        elif isinstance(payload, EndGroupPayload):
            self._in_group = False
            self._add_stop(seq, payload.label)
        elif isinstance(payload, HistoryRewoundPayload):
            self._in_group = False
            cut = bisect.bisect_right(self._stops, payload.to_sequence)
            for dropped in self._stops[cut:]:
                self._labels.pop(dropped, None)
            del self._stops[cut:]
            # 回退目标不是停靠点时，标记本身成为停靠点（其状态等于目标处状态）
            if not self._stops or self._stops[-1] != payload.to_sequence:
                self._add_stop(seq, "History")
        elif not self._in_group:
            self._add_stop(seq, self._label_of(event))

    def previous_stop(self, current: int) -> int | None:
        """小于 current 的最近停靠点"""
        idx = bisect.bisect_left(self._stops, current)
        return self._stops[idx - 1] if idx > 0 else None

    def next_stop(self, current: int) -> int | None:
        """大于 current 的最近停靠点"""
        idx = bisect.bisect_right(self._stops, current)
        return self._stops[idx] if idx < len(self._stops) else None

    def label_at(self, stop: int) -> str | None:
        return self._labels.get(stop)

    def _add_stop(self, seq: int, label: str) -> None:
        if self._stops and self._stops[-1] >= seq:
            return
        self._stops.append(seq)
        self._labels[seq] = label

    @staticmethod
    def _label_of(event: Event) -> str:
        if event.type in MARKER_TYPES:
            return getattr(event.payload, "label", "Operation")
        return event.type.value.replace("_", " ").capitalize()


class UndoNavigator:
    """撤销/重做导航器

    current_sequence 只由本类修改，始终满足 -1 <= current <= max；
    -1 表示空文档。
    """

    def __init__(
        self,
        document_id: str,
        stores: StoreGroup,
        replayer: EventReplayer | None = None,
        cache_capacity: int = NAVIGATOR_CACHE_CAPACITY,
    ) -> None:
        self.document_id = document_id
        self._stores = stores
        self._replayer = replayer or EventReplayer(stores)
        self._cache = StateLRUCache(cache_capacity)
        self._timeline = OperationTimeline()
        self._current_sequence = -1
        self._max_sequence = -1

    @property
    def current_sequence(self) -> int:
        return self._current_sequence

    @property
    def max_sequence(self) -> int:
        return self._max_sequence

    @property
    def timeline(self) -> OperationTimeline:
        return self._timeline

    async def initialize(self) -> None:
        """加载最大序号并把当前位置放在最新状态"""
        await self._refresh()
        self._current_sequence = self._max_sequence
        await log.ainfo(
            "navigator_initialized",
            document_id=self.document_id,
            max_sequence=self._max_sequence,
        )

    def can_undo(self) -> bool:
        return self._current_sequence > 0

    async def can_redo(self) -> bool:
        """刷新最大序号后判断（期间可能有新事件追加）"""
        await self._refresh()
        return self._current_sequence < self._max_sequence

    async def undo(self) -> DocumentState:
        """回到上一个操作之前的状态

        Raises:
            IllegalStateError: 已在最早状态
        """
        if not self.can_undo():
            raise IllegalStateError("already at oldest state")
        await self._refresh()
        target = self._timeline.previous_stop(self._current_sequence)
        return await self.navigate_to_sequence(0 if target is None else target)

    async def redo(self) -> DocumentState:
        """重做下一个操作

        Raises:
            IllegalStateError: 已在最新状态
        """
        if not await self.can_redo():
            raise IllegalStateError("already at newest state")
        target = self._timeline.next_stop(self._current_sequence)
        return await self.navigate_to_sequence(self._max_sequence if target is None else target)

    async def navigate_to_sequence(self, target: int) -> DocumentState:
        """物化 target 处的状态并移动当前位置

        Raises:
            InvalidSequenceError: target 不在 [0, max_sequence] 内
        """
        if target > self._max_sequence:
            await self._refresh()
        if target < 0 or target > self._max_sequence:
            raise InvalidSequenceError(target, self._max_sequence)

        start_time = time.monotonic()
        state = self._cache.get(target)
        cache_hit = state is not None
        if state is None:
            result = await self._replayer.replay(self.document_id, target)
            self._cache.put(target, result.state)
            state = result.state.model_copy(deep=True)

        self._current_sequence = target
        elapsed_ms = round((time.monotonic() - start_time) * 1000, 3)
        if elapsed_ms > NAVIGATION_LATENCY_TARGET_MS:
            await log.awarning(
                "navigation_slow",
                document_id=self.document_id,
                target=target,
                cache_hit=cache_hit,
                elapsed_ms=elapsed_ms,
            )
        else:
            await log.adebug(
                "navigation_completed",
                document_id=self.document_id,
                target=target,
                cache_hit=cache_hit,
                elapsed_ms=elapsed_ms,
            )
        return state

    async def current_position(self) -> tuple[int, DocumentState]:
        """当前序号与该处的状态（自动保存的状态来源）"""
        return self._current_sequence, await self.navigate_to_sequence(self._current_sequence)

    async def on_events_recorded(self, last_sequence: int, state: DocumentState | None = None) -> None:
        """新事件追加后把当前位置移到最新序号

        Args:
            last_sequence: 本次追加的最后一个事件序号
            state: 调用方已持有的最新状态，传入时直接写入缓存
        """
        await self._refresh()
        self._current_sequence = min(last_sequence, self._max_sequence)
        if state is not None:
            self._cache.put(self._current_sequence, state)

    def undo_label(self) -> str | None:
        """撤销菜单标签：当前位置所在操作的名称"""
        if not self.can_undo():
            return None
        stop = self._current_sequence
        label = self._timeline.label_at(stop)
        if label is not None:
            return label
        nxt = self._timeline.next_stop(stop)
        return self._timeline.label_at(nxt) if nxt is not None else None

    def redo_label(self) -> str | None:
        """重做菜单标签：下一个操作的名称（基于最近一次刷新的最大序号）"""
        if self._current_sequence >= self._max_sequence:
            return None
        nxt = self._timeline.next_stop(self._current_sequence)
        return self._timeline.label_at(nxt) if nxt is not None else None

    def cache_stats(self) -> dict:
        return self._cache.stats

    async def _refresh(self) -> None:
        """刷新最大序号，并把新事件喂入操作时间线"""
        self._max_sequence = await self._stores.event_store.max_sequence(self.document_id)
        start = self._timeline.last_fed_sequence + 1
        if start <= self._max_sequence:
            events = await self._stores.event_store.range(
                self.document_id, start, self._max_sequence
            )
            for event in events:
                self._timeline.feed(event)
