"""Event Sampler -- 连续拖拽采样的节流

拖拽锚点（modify_anchor）与移动对象（move_object）会以指针事件频率产生，
同一目标的样本在间隔（默认 50ms）内合并为一个缓冲样本：
- modify_anchor 携带绝对位置，后到的字段覆盖先到的字段
- move_object 携带相对位移，缓冲期间的位移累加，不丢失移动量

缓冲样本在下一次到期、目标变化、非采样事件到来或 flush() 时输出。
"""

from datetime import datetime, timedelta

import structlog
from pydantic import BaseModel

from .config import EVENT_SAMPLING_INTERVAL_MS
from .grouping import Clock, SystemClock
from .models.payloads import ModifyAnchorPayload, MoveObjectPayload

log = structlog.get_logger()

SampleKey = tuple[str, ...]


def sample_key(payload: BaseModel) -> SampleKey | None:
    """可采样 payload 的目标键（类型 + 目标），不可采样时返回 None"""
    if isinstance(payload, ModifyAnchorPayload):
        return ("modify_anchor", payload.path_id, str(payload.anchor_index))
    if isinstance(payload, MoveObjectPayload):
        return ("move_object", *payload.object_ids)
    return None


def merge_samples(buffered: BaseModel, incoming: BaseModel) -> BaseModel:
    """合并同一目标的两个样本"""
    if isinstance(buffered, MoveObjectPayload) and isinstance(incoming, MoveObjectPayload):
        return incoming.model_copy(update={"delta": buffered.delta.translate(incoming.delta)})
    if isinstance(buffered, ModifyAnchorPayload) and isinstance(incoming, ModifyAnchorPayload):
        return buffered.model_copy(
            update={name: value for name, value in incoming if value is not None}
        )
    raise ValueError(f"cannot merge {type(buffered).__name__} with {type(incoming).__name__}")


class _Pending:
    __slots__ = ("key", "payload", "merged")

    def __init__(self, key: SampleKey, payload: BaseModel) -> None:
        self.key = key
        self.payload = payload
        self.merged = 1


class EventSampler:
    """按文档节流连续样本

    sample() 返回需要立即录入的 payload（可能为空）；
    工具结束拖拽时调用 flush() 取出最后的缓冲样本。
    """

    def __init__(
        self,
        clock: Clock | None = None,
        interval_ms: int = EVENT_SAMPLING_INTERVAL_MS,
    ) -> None:
        if interval_ms < 0:
            raise ValueError("interval_ms must not be negative")
        self._clock = clock or SystemClock()
        self._interval = timedelta(milliseconds=interval_ms)
        self._pending: dict[str, _Pending] = {}
        self._last_emitted: dict[str, tuple[SampleKey, datetime]] = {}
        self._dropped = 0

    @property
    def interval_ms(self) -> int:
        return int(self._interval.total_seconds() * 1000)

    @property
    def dropped_count(self) -> int:
        """被合并掉（未单独录入）的样本数"""
        return self._dropped

    def has_pending(self, document_id: str) -> bool:
        return document_id in self._pending

    def sample(self, document_id: str, payload: BaseModel) -> list[BaseModel]:
        """提交一个 payload，返回按顺序需要录入的 payload"""
        key = sample_key(payload)
        if key is None or not self._interval:
            return [*self.flush(document_id), payload]

        out: list[BaseModel] = []
        pending = self._pending.get(document_id)
        if pending is not None and pending.key != key:
            out.extend(self.flush(document_id))
            pending = None

        now = self._clock.now()
        if pending is not None:
            pending.payload = merge_samples(pending.payload, payload)
            pending.merged += 1
            self._dropped += 1
            candidate = pending.payload
        else:
            candidate = payload

        if self._due(document_id, key, now):
            self._pending.pop(document_id, None)
            self._last_emitted[document_id] = (key, now)
            out.append(candidate)
        elif pending is None:
            self._pending[document_id] = _Pending(key, payload)
        return out

    def flush(self, document_id: str) -> list[BaseModel]:
        """取出缓冲样本（没有时为空列表）"""
        pending = self._pending.pop(document_id, None)
        if pending is None:
            return []
        self._last_emitted[document_id] = (pending.key, self._clock.now())
        log.debug(
            "sample_flushed",
            document_id=document_id,
            target=list(pending.key),
            merged=pending.merged,
        )
        return [pending.payload]

    def forget(self, document_id: str) -> None:
        self._pending.pop(document_id, None)
        self._last_emitted.pop(document_id, None)

    def _due(self, document_id: str, key: SampleKey, now: datetime) -> bool:
        last = self._last_emitted.get(document_id)
        if last is None or last[0] != key:
            return True
        return now - last[1] >= self._interval
