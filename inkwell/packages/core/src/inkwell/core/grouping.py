"""Operation Grouping Service -- 按空闲时间把细粒度事件归并为操作

规则：
- 同一文档同时最多一个活跃分组
- 距上一事件超过空闲阈值（默认 200ms）时，先关闭旧分组再开启新分组
- 标记对只在第一个实质事件到达时才发出，不产生空分组
- 工具可通过 force_boundary / end_undo_group 立即结束分组
- 标签优先级：显式标签 > start_undo_group 设置的待定标签 > 工具标签 > "Operation"
"""

import itertools
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Protocol

import structlog
from pydantic import BaseModel

from .config import OPERATION_IDLE_THRESHOLD_MS
from .exceptions import IllegalStateError
from .models.operation import OperationGroup
from .models.payloads import EndGroupPayload, StartGroupPayload

log = structlog.get_logger()

DEFAULT_LABEL = "Operation"


class Clock(Protocol):
    """时钟接口（测试注入可控时钟）"""

    def now(self) -> datetime:
        """当前 UTC 时间"""
        ...


class SystemClock:
    """系统时钟"""

    def now(self) -> datetime:
        return datetime.now(UTC)


class _ActiveGroup:
    __slots__ = ("group_id", "label", "tool_id", "started_at", "last_event_at", "event_count")

    def __init__(self, group_id: str, label: str | None, tool_id: str | None, now: datetime):
        self.group_id = group_id
        self.label = label
        self.tool_id = tool_id
        self.started_at = now
        self.last_event_at = now
        self.event_count = 0


class _DocumentGrouping:
    """单文档分组状态"""

    def __init__(self) -> None:
        self.active: _ActiveGroup | None = None
        self.pending_label: str | None = None
        self.pending_tool_id: str | None = None


class OperationGroupingService:
    """操作分组服务

    wrap() 返回需要按顺序追加到事件日志的 payload 列表；
    已完成分组通过监听器与 completed_groups() 暴露给 UI。
    """

    def __init__(
        self,
        clock: Clock | None = None,
        idle_threshold_ms: int = OPERATION_IDLE_THRESHOLD_MS,
        history_limit: int = 100,
    ) -> None:
        self._clock = clock or SystemClock()
        self._idle_threshold = timedelta(milliseconds=idle_threshold_ms)
        self._documents: dict[str, _DocumentGrouping] = {}
        self._completed: dict[str, deque[OperationGroup]] = {}
        self._history_limit = history_limit
        self._group_counter = itertools.count(1)
        self._listeners: list[Callable[[OperationGroup], None]] = []

    @property
    def idle_threshold_ms(self) -> int:
        return int(self._idle_threshold.total_seconds() * 1000)

    def add_listener(self, listener: Callable[[OperationGroup], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[OperationGroup], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def has_active_group(self, document_id: str) -> bool:
        doc = self._documents.get(document_id)
        return doc is not None and doc.active is not None

    def active_group_id(self, document_id: str) -> str | None:
        doc = self._documents.get(document_id)
        if doc is None or doc.active is None:
            return None
        return doc.active.group_id

    def wrap(
        self,
        document_id: str,
        payload: BaseModel,
        label: str | None = None,
        tool_id: str | None = None,
    ) -> list[BaseModel]:
        """为一个实质事件决定分组边界

        Args:
            document_id: 文档 ID
            payload: 工具产生的事件 payload（不能是分组标记）
            label: 新分组的显式标签
            tool_id: 工具标识，作为标签兜底

        Returns:
            需要按顺序追加的 payload：[end_group?, start_group?, payload]
        """
        if isinstance(payload, (StartGroupPayload, EndGroupPayload)):
            raise ValueError("group markers are emitted by the grouping service only")

        doc = self._documents.setdefault(document_id, _DocumentGrouping())
        now = self._clock.now()
        out: list[BaseModel] = []

        active = doc.active
        if active is not None and now - active.last_event_at > self._idle_threshold:
            out.append(self._complete(document_id, doc, reason="idle"))
            active = None

        if active is None:
            active = _ActiveGroup(
                group_id=f"group_{next(self._group_counter)}",
                label=label or doc.pending_label,
                tool_id=tool_id or doc.pending_tool_id,
                now=now,
            )
            doc.active = active
            doc.pending_label = None
            doc.pending_tool_id = None
            out.append(StartGroupPayload(group_id=active.group_id, label=self._label_for(active)))

        active.last_event_at = now
        active.event_count += 1
        out.append(payload)
        return out

    def start_undo_group(
        self,
        document_id: str,
        label: str,
        tool_id: str | None = None,
    ) -> EndGroupPayload | None:
        """开始一个带标签的操作

        关闭当前活跃分组（返回其结束标记），新分组在下一个事件到达时才开启。
        """
        doc = self._documents.setdefault(document_id, _DocumentGrouping())
        end_marker = None
        if doc.active is not None:
            end_marker = self._complete(document_id, doc, reason="new_group")
        doc.pending_label = label
        doc.pending_tool_id = tool_id
        log.debug("undo_group_started", document_id=document_id, label=label, tool_id=tool_id)
        return end_marker

    def end_undo_group(self, document_id: str, label: str | None = None) -> EndGroupPayload | None:
        """工具显式结束当前操作"""
        return self.force_boundary(document_id, label=label, reason="tool_finished")

    def force_boundary(
        self,
        document_id: str,
        label: str | None = None,
        reason: str = "forced",
    ) -> EndGroupPayload | None:
        """立即结束活跃分组，无活跃分组时返回 None"""
        doc = self._documents.get(document_id)
        if doc is None or doc.active is None:
            return None
        return self._complete(document_id, doc, reason=reason, label=label)

    def cancel_operation(self, document_id: str) -> EndGroupPayload | None:
        """取消当前操作（如绘制路径时按 Esc）

        已发出的开始标记必须配对，因此仍返回带 cancelled 标志的结束标记。
        """
        doc = self._documents.get(document_id)
        if doc is None:
            return None
        doc.pending_label = None
        doc.pending_tool_id = None
        if doc.active is None:
            log.debug("cancel_without_active_group", document_id=document_id)
            return None
        return self._complete(document_id, doc, reason="cancelled", cancelled=True)

    def flush_idle(self, document_id: str) -> EndGroupPayload | None:
        """空闲超时检查：超过阈值时结束活跃分组"""
        doc = self._documents.get(document_id)
        if doc is None or doc.active is None:
            return None
        if self._clock.now() - doc.active.last_event_at <= self._idle_threshold:
            return None
        return self._complete(document_id, doc, reason="idle")

    def seconds_until_idle(self, document_id: str) -> float | None:
        """距离活跃分组空闲超时的秒数，无活跃分组时为 None"""
        doc = self._documents.get(document_id)
        if doc is None or doc.active is None:
            return None
        deadline = doc.active.last_event_at + self._idle_threshold
        return max((deadline - self._clock.now()).total_seconds(), 0.0)

    def completed_groups(self, document_id: str) -> list[OperationGroup]:
        return list(self._completed.get(document_id, ()))

    def assign_sequences(self, document_id: str, group_id: str, start: int, end: int) -> None:
        """事件持久化后回填分组的起止序号"""
        for group in self._completed.get(document_id, ()):
            if group.group_id == group_id:
                group.start_sequence = start
                group.end_sequence = end
                return

    def forget(self, document_id: str) -> None:
        """文档关闭时清理状态"""
        self._documents.pop(document_id, None)
        self._completed.pop(document_id, None)

    def _label_for(self, group: _ActiveGroup, explicit: str | None = None) -> str:
        return explicit or group.label or group.tool_id or DEFAULT_LABEL

    def _complete(
        self,
        document_id: str,
        doc: _DocumentGrouping,
        reason: str,
        label: str | None = None,
        cancelled: bool = False,
    ) -> EndGroupPayload:
        active = doc.active
        if active is None:
            raise IllegalStateError(f"no active group for document {document_id}")
        doc.active = None
        final_label = self._label_for(active, label)

        group = OperationGroup(
            document_id=document_id,
            group_id=active.group_id,
            label=final_label,
            started_at=active.started_at,
            ended_at=active.last_event_at,
            event_count=active.event_count,
            cancelled=cancelled,
            tool_id=active.tool_id,
        )
        completed = self._completed.setdefault(document_id, deque(maxlen=self._history_limit))
        completed.append(group)

        log.debug(
            "operation_completed",
            document_id=document_id,
            group_id=group.group_id,
            label=final_label,
            event_count=group.event_count,
            duration_ms=group.duration_ms,
            reason=reason,
        )
        for listener in list(self._listeners):
            listener(group)

        return EndGroupPayload(group_id=active.group_id, label=final_label, cancelled=cancelled)
