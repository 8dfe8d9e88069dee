"""Event Replayer -- 快照 + 增量事件重建任意序号的文档状态

流程：
1. 取序号 <= target 的最新快照；校验失败则逐个回退到更早的快照，
   全部损坏时从空文档冷回放（慢但总是正确）
2. 按序号升序应用 (base, target] 区间事件
3. 单个事件无法解析/应用时记入 skipped_sequences 并继续
4. history_rewound 事件把状态重置为 to_sequence 处的状态

回放是持久化数据的纯函数：相同输入总是产出相同状态。
"""

import time

import structlog

from .config import REPLAY_LATENCY_TARGET_MS
from .exceptions import EventApplyError, InvalidSequenceError, SnapshotCorruptedError
from .models.document import DocumentState
from .models.event import Event
from .models.enums import ReplayWarningKind
from .models.payloads import HistoryRewoundPayload
from .models.replay import ReplayResult, ReplayWarning
from .projection import apply_event
from .snapshot_manager import SnapshotSerializer
from .store import StoreGroup

log = structlog.get_logger()

_RESAVE_HINT = "Re-save the document to rebuild snapshots."


class EventReplayer:
    """事件回放器"""

    def __init__(
        self,
        stores: StoreGroup,
        serializer: SnapshotSerializer | None = None,
    ) -> None:
        self._stores = stores
        self._serializer = serializer or SnapshotSerializer()

    async def replay(self, document_id: str, target_sequence: int) -> ReplayResult:
        """重建 target_sequence 处的文档状态

        Args:
            document_id: 文档 ID
            target_sequence: 目标序号（超过最大序号时裁剪到最大序号）

        Raises:
            InvalidSequenceError: target_sequence 为负数
        """
        if target_sequence < 0:
            raise InvalidSequenceError(target_sequence, await self._max_sequence(document_id))

        start_time = time.monotonic()
        result = await self._replay(document_id, target_sequence)
        result.duration_ms = round((time.monotonic() - start_time) * 1000, 3)

        slow = result.duration_ms > REPLAY_LATENCY_TARGET_MS
        await (log.awarning if slow else log.adebug)(
            "replay_slow" if slow else "replay_completed",
            document_id=document_id,
            target_sequence=result.sequence,
            base_sequence=result.base_sequence,
            events_applied=result.events_applied,
            skipped=len(result.skipped_sequences),
            duration_ms=result.duration_ms,
        )
        return result

    async def replay_from_snapshot(
        self,
        document_id: str,
        base_state: DocumentState,
        base_sequence: int,
        target_sequence: int,
    ) -> ReplayResult:
        """从已物化的状态继续回放到 target_sequence（检查点缓存使用）"""
        result = ReplayResult(
            document_id=document_id,
            sequence=target_sequence,
            state=base_state,
            base_sequence=base_sequence,
        )
        await self._apply_range(result, base_sequence, target_sequence)
        return result

    async def _replay(self, document_id: str, target_sequence: int) -> ReplayResult:
        max_sequence = await self._max_sequence(document_id)
        warnings: list[ReplayWarning] = []

        if max_sequence < 0:
            return ReplayResult(document_id=document_id, sequence=-1, state=DocumentState())

        if target_sequence > max_sequence:
            warnings.append(
                ReplayWarning(
                    kind=ReplayWarningKind.TARGET_CLAMPED,
                    message=f"target {target_sequence} beyond last event {max_sequence}",
                    sequence=max_sequence,
                )
            )
            target_sequence = max_sequence

        base_state, base_sequence = await self._load_base(
            document_id, target_sequence, warnings
        )
        result = ReplayResult(
            document_id=document_id,
            sequence=target_sequence,
            state=base_state,
            base_sequence=base_sequence,
            warnings=warnings,
        )
        await self._apply_range(result, base_sequence, target_sequence)
        return result

    async def _load_base(
        self,
        document_id: str,
        target_sequence: int,
        warnings: list[ReplayWarning],
    ) -> tuple[DocumentState, int]:
        """选择起始状态：最新可用快照，全部损坏时为空文档"""
        snapshots = await self._stores.snapshot_store.list_at_or_before(
            document_id, target_sequence
        )
        for snapshot in snapshots:
            try:
                return self._serializer.deserialize(snapshot), snapshot.sequence
            except SnapshotCorruptedError as exc:
                await log.awarning(
                    "snapshot_fallback",
                    document_id=document_id,
                    snapshot_sequence=snapshot.sequence,
                    reason=exc.reason,
                )
                warnings.append(
                    ReplayWarning(
                        kind=ReplayWarningKind.SNAPSHOT_CORRUPTED,
                        message=f"Snapshot at sequence {snapshot.sequence} is corrupted "
                        f"({exc.reason}); recovered from older history.",
                        sequence=snapshot.sequence,
                        recommendation=_RESAVE_HINT,
                    )
                )
        return DocumentState(), -1

    async def _apply_range(
        self,
        result: ReplayResult,
        base_sequence: int,
        target_sequence: int,
    ) -> None:
        """把 (base_sequence, target_sequence] 区间事件应用到 result.state

        区间内只解析最后一个有效的 history_rewound：它之前的事件都会被
        重置覆盖，无需应用。嵌套回放的目标严格小于该标记，因此每层
        最多递归一次。
        """
        if target_sequence <= base_sequence:
            return
        events = await self._stores.event_store.range(
            result.document_id, base_sequence + 1, target_sequence
        )
        state = result.state
        start = _last_rewind_index(events)
        if start >= 0:
            marker = events[start]
            state = await self._rewind(result, marker.payload.to_sequence)
            result.events_applied += 1
            start += 1
        else:
            start = 0

        for event in events[start:]:
            try:
                if isinstance(event.payload, HistoryRewoundPayload):
                    raise EventApplyError(
                        event.sequence,
                        f"rewind target {event.payload.to_sequence} not in the past",
                    )
                state = apply_event(state, event)
                result.events_applied += 1
            except EventApplyError as exc:
                result.skipped_sequences.append(event.sequence)
                result.warnings.append(
                    ReplayWarning(
                        kind=ReplayWarningKind.EVENT_SKIPPED,
                        message=f"Event {event.sequence} was skipped: {exc.reason}",
                        sequence=event.sequence,
                        recommendation=_RESAVE_HINT,
                    )
                )
                await log.awarning(
                    "event_skipped",
                    document_id=result.document_id,
                    sequence=event.sequence,
                    reason=exc.reason,
                )
        result.skipped_sequences.sort()
        result.state = state

    async def _rewind(self, result: ReplayResult, to_sequence: int) -> DocumentState:
        """history_rewound：状态回到 to_sequence 处"""
        if to_sequence < 0:
            return DocumentState()
        nested = await self._replay(result.document_id, to_sequence)
        result.skipped_sequences.extend(
            s for s in nested.skipped_sequences if s not in result.skipped_sequences
        )
        result.warnings.extend(w for w in nested.warnings if w not in result.warnings)
        return nested.state

    async def _max_sequence(self, document_id: str) -> int:
        return await self._stores.event_store.max_sequence(document_id)


def _last_rewind_index(events: list[Event]) -> int:
    """最后一个有效 history_rewound 的下标（to_sequence 必须早于标记），没有则为 -1"""
    for index in range(len(events) - 1, -1, -1):
        payload = events[index].payload
        if (
            isinstance(payload, HistoryRewoundPayload)
            and payload.to_sequence < events[index].sequence
        ):
            return index
    return -1
