"""Event Recorder -- 工具事件的录入入口

工具/UI 产生的 payload 先经 EventSampler 节流（可选），再由
OperationGroupingService 包上分组标记，在文档写锁内原子追加到事件日志，
然后通知 Navigator 移动到最新位置。
撤销后录入新操作时，先追加 history_rewound 截断重做分支。

分组状态的变更（开启、关闭分组）与对应标记的追加在同一把写锁内完成，
持久化日志中的分组标记因此总是成对且互不重叠。
"""

import asyncio
import contextlib
from collections.abc import Callable

import structlog
from pydantic import BaseModel

from .grouping import OperationGroupingService
from .models.event import Event
from .models.payloads import EndGroupPayload, HistoryRewoundPayload, StartGroupPayload
from .navigator import UndoNavigator
from .sampling import EventSampler
from .snapshot_manager import EditingRateTracker
from .store import StoreGroup, append_events

log = structlog.get_logger()


class EventRecorder:
    """单文档事件录入器"""

    def __init__(
        self,
        document_id: str,
        stores: StoreGroup,
        grouping: OperationGroupingService,
        navigator: UndoNavigator | None = None,
        lock: asyncio.Lock | None = None,
        rate_tracker: EditingRateTracker | None = None,
        sampler: EventSampler | None = None,
    ) -> None:
        self.document_id = document_id
        self._stores = stores
        self._grouping = grouping
        self._navigator = navigator
        self._lock = lock or asyncio.Lock()
        self._rate_tracker = rate_tracker
        self._sampler = sampler
        self._group_starts: dict[str, int] = {}
        self._idle_task: asyncio.Task[None] | None = None
        self._listeners: list[Callable[[list[Event]], None]] = []

    def add_listener(self, listener: Callable[[list[Event]], None]) -> None:
        """每次追加成功后以本次追加的事件回调（自动保存等订阅）"""
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[list[Event]], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def record(
        self,
        payload: BaseModel,
        label: str | None = None,
        tool_id: str | None = None,
    ) -> list[Event]:
        """录入一个实质事件（连同必要的分组/截断标记）

        启用采样时，节流期内的连续样本被合并缓冲，此时返回空列表。

        Returns:
            本次追加的全部事件（含标记）
        """
        async with self._lock:
            samples = (
                self._sampler.sample(self.document_id, payload)
                if self._sampler is not None
                else [payload]
            )
            if not samples:
                return []
            payloads, rewind = await self._compose(samples, label, tool_id)
            events = await self._append(payloads)
            await self._after_append(events)

        await self._log_rewind(rewind, events)
        self._notify(events)
        return events

    async def start_operation(self, label: str, tool_id: str | None = None) -> Event | None:
        """工具开始一个带标签的操作；关闭的旧分组结束标记会被追加"""
        return await self._append_marker(
            lambda: self._grouping.start_undo_group(self.document_id, label, tool_id)
        )

    async def end_operation(self, label: str | None = None) -> Event | None:
        """工具显式结束当前操作（如指针抬起结束拖拽），缓冲的最后样本先落盘"""
        return await self._append_marker(
            lambda: self._grouping.end_undo_group(self.document_id, label)
        )

    async def cancel_operation(self) -> Event | None:
        return await self._append_marker(
            lambda: self._grouping.cancel_operation(self.document_id)
        )

    async def flush_idle(self) -> Event | None:
        """空闲超时后结束活跃分组"""
        return await self._append_marker(lambda: self._grouping.flush_idle(self.document_id))

    async def prepare_navigation(self) -> Event | None:
        """撤销/重做前调用：立即结束未完成的操作"""
        return await self._append_marker(
            lambda: self._grouping.force_boundary(self.document_id, reason="navigation")
        )

    async def start(self) -> None:
        """启动空闲分组检测后台任务"""
        if self._idle_task is not None:
            return
        self._idle_task = asyncio.create_task(self._idle_loop())
        await log.ainfo("recorder_started", document_id=self.document_id)

    async def stop(self) -> None:
        """停止后台任务并结束未完成的操作"""
        if self._idle_task is not None:
            self._idle_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._idle_task
            self._idle_task = None
        await self.prepare_navigation()
        await log.ainfo("recorder_stopped", document_id=self.document_id)

    async def _idle_loop(self) -> None:
        threshold_s = self._grouping.idle_threshold_ms / 1000
        while True:
            wait = self._grouping.seconds_until_idle(self.document_id)
            await asyncio.sleep(threshold_s if wait is None else wait + 0.001)
            try:
                await self.flush_idle()
            except Exception as e:
                await log.aerror("idle_flush_failed", document_id=self.document_id, error=str(e))
                raise

    async def _pending_rewind(self) -> HistoryRewoundPayload | None:
        """当前位置落后于最新序号时，返回重做分支截断标记"""
        if self._navigator is None:
            return None
        max_sequence = await self._stores.event_store.max_sequence(self.document_id)
        current = self._navigator.current_sequence
        if current < max_sequence:
            return HistoryRewoundPayload(to_sequence=current)
        return None

    async def _compose(
        self,
        samples: list[BaseModel],
        label: str | None = None,
        tool_id: str | None = None,
    ) -> tuple[list[BaseModel], HistoryRewoundPayload | None]:
        """为待录入的 payload 加上截断与分组标记（调用方持有写锁）"""
        payloads: list[BaseModel] = []
        if not samples:
            return payloads, None
        rewind = await self._pending_rewind()
        if rewind is not None:
            end_marker = self._grouping.force_boundary(self.document_id, reason="history_rewound")
            if end_marker is not None:
                payloads.append(end_marker)
            payloads.append(rewind)
        for sample in samples:
            payloads.extend(self._grouping.wrap(self.document_id, sample, label, tool_id))
        return payloads, rewind

    async def _append_marker(self, close: Callable[[], EndGroupPayload | None]) -> Event | None:
        """在写锁内落盘缓冲样本并关闭分组，返回结束标记事件"""
        async with self._lock:
            pending = self._sampler.flush(self.document_id) if self._sampler is not None else []
            payloads, rewind = await self._compose(pending)
            marker = close()
            if marker is not None:
                payloads.append(marker)
            if not payloads:
                return None
            events = await self._append(payloads)
            await self._after_append(events)

        await self._log_rewind(rewind, events)
        self._notify(events)
        return events[-1] if marker is not None else None

    async def _append(self, payloads: list[BaseModel]) -> list[Event]:
        return await append_events(
            self._stores.conn,
            self._stores.metadata_store,
            self._stores.event_store,
            self.document_id,
            payloads,
        )

    async def _after_append(self, events: list[Event]) -> None:
        for event in events:
            if isinstance(event.payload, StartGroupPayload):
                self._group_starts[event.payload.group_id] = event.sequence
            elif isinstance(event.payload, EndGroupPayload):
                start = self._group_starts.pop(event.payload.group_id, event.sequence)
                self._grouping.assign_sequences(
                    self.document_id, event.payload.group_id, start, event.sequence
                )
        if self._rate_tracker is not None:
            self._rate_tracker.record(len(events))
        if self._navigator is not None and events:
            await self._navigator.on_events_recorded(events[-1].sequence)

    async def _log_rewind(self, rewind: HistoryRewoundPayload | None, events: list[Event]) -> None:
        if rewind is None:
            return
        await log.ainfo(
            "redo_branch_truncated",
            document_id=self.document_id,
            to_sequence=rewind.to_sequence,
            marker_sequence=next(
                e.sequence for e in events if isinstance(e.payload, HistoryRewoundPayload)
            ),
        )

    def _notify(self, events: list[Event]) -> None:
        for listener in self._listeners:
            listener(events)
