"""History Scrubber -- 历史拖动回放的检查点缓存

按固定间隔（默认每 1000 个事件）预计算 gzip 压缩的检查点，
任意目标序号距最近检查点不超过一个间隔；缓存按压缩后字节数
做 LRU 淘汰，内存预算默认 100MB。
"""

import bisect
import gzip
import statistics
import time
from collections import OrderedDict
from datetime import UTC, datetime
from typing import Any

import structlog
from pydantic import BaseModel, Field

from .config import CHECKPOINT_INTERVAL, CHECKPOINT_MEMORY_BYTES, SEEK_LATENCY_TARGET_MS
from .models.document import DocumentState
from .replayer import EventReplayer
from .store import StoreGroup

log = structlog.get_logger()


class Checkpoint(BaseModel):
    """检查点：某序号处的压缩文档状态"""

    sequence: int
    compressed_data: bytes
    uncompressed_bytes: int
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def compressed_bytes(self) -> int:
        return len(self.compressed_data)

    def restore(self) -> DocumentState:
        return DocumentState.model_validate_json(gzip.decompress(self.compressed_data))

    @classmethod
    def capture(cls, sequence: int, state: DocumentState) -> "Checkpoint":
        raw = state.model_dump_json().encode("utf-8")
        return cls(
            sequence=sequence,
            compressed_data=gzip.compress(raw, mtime=0),
            uncompressed_bytes=len(raw),
        )


class SeekResult(BaseModel):
    """单次 seek 的结果与性能数据"""

    target_sequence: int
    state: DocumentState
    checkpoint_sequence: int | None = Field(default=None, description="使用的检查点，None 表示冷回放")
    events_replayed: int = 0
    latency_ms: float = 0.0
    skipped_sequences: list[int] = Field(default_factory=list)

    @property
    def meets_target(self) -> bool:
        return self.latency_ms < SEEK_LATENCY_TARGET_MS


class CheckpointCache:
    """检查点缓存（按内存预算 LRU 淘汰）"""

    def __init__(
        self,
        checkpoint_interval: int = CHECKPOINT_INTERVAL,
        max_memory_bytes: int = CHECKPOINT_MEMORY_BYTES,
    ) -> None:
        if checkpoint_interval <= 0:
            raise ValueError("checkpoint_interval must be positive")
        self.checkpoint_interval = checkpoint_interval
        self.max_memory_bytes = max_memory_bytes
        # OrderedDict 维护最近使用顺序；_sorted 维护序号有序列表供二分查找
        self._checkpoints: OrderedDict[int, Checkpoint] = OrderedDict()
        self._sorted: list[int] = []
        self._memory_bytes = 0
        self._evictions = 0

    @property
    def count(self) -> int:
        return len(self._checkpoints)

    @property
    def memory_usage(self) -> int:
        return self._memory_bytes

    @property
    def is_empty(self) -> bool:
        return not self._checkpoints

    def add(self, sequence: int, state: DocumentState) -> Checkpoint:
        """写入检查点（同序号替换），超出预算时淘汰最久未使用的检查点"""
        checkpoint = Checkpoint.capture(sequence, state)
        self._remove(sequence)
        self._checkpoints[sequence] = checkpoint
        bisect.insort(self._sorted, sequence)
        self._memory_bytes += checkpoint.compressed_bytes
        self._evict_over_budget(keep=sequence)
        return checkpoint

    def find_nearest(self, target_sequence: int) -> Checkpoint | None:
        """序号 <= target 的最近检查点（命中时刷新 LRU 顺序）"""
        idx = bisect.bisect_right(self._sorted, target_sequence)
        if idx == 0:
            return None
        sequence = self._sorted[idx - 1]
        self._checkpoints.move_to_end(sequence)
        return self._checkpoints[sequence]

    def sequences(self) -> list[int]:
        """全部检查点序号（UI 时间轴标记用）"""
        return list(self._sorted)

    def invalidate_after(self, sequence: int) -> None:
        for seq in [s for s in self._sorted if s > sequence]:
            self._remove(seq)

    def clear(self) -> None:
        self._checkpoints.clear()
        self._sorted.clear()
        self._memory_bytes = 0
        log.debug("checkpoint_cache_cleared")

    def _remove(self, sequence: int) -> None:
        checkpoint = self._checkpoints.pop(sequence, None)
        if checkpoint is None:
            return
        self._sorted.remove(sequence)
        self._memory_bytes -= checkpoint.compressed_bytes

    def _evict_over_budget(self, keep: int) -> None:
        while self._memory_bytes > self.max_memory_bytes and len(self._checkpoints) > 1:
            lru_sequence = next(iter(self._checkpoints))
            if lru_sequence == keep:
                break
            self._remove(lru_sequence)
            self._evictions += 1
            log.debug(
                "checkpoint_evicted",
                sequence=lru_sequence,
                memory_bytes=self._memory_bytes,
            )

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "memory_bytes": self._memory_bytes,
            "max_memory_bytes": self.max_memory_bytes,
            "interval": self.checkpoint_interval,
            "evictions": self._evictions,
        }


class HistoryScrubber:
    """历史拖动回放服务

    与 Navigator 的 LRU 缓存互不共享，专为高速任意定位设计。
    """

    def __init__(
        self,
        document_id: str,
        stores: StoreGroup,
        replayer: EventReplayer | None = None,
        cache: CheckpointCache | None = None,
        history_limit: int = 1000,
    ) -> None:
        self.document_id = document_id
        self._stores = stores
        self._replayer = replayer or EventReplayer(stores)
        self.cache = cache or CheckpointCache()
        self._current_sequence = -1
        self._max_sequence = -1
        self._seek_history: list[SeekResult] = []
        self._history_limit = history_limit

    @property
    def current_sequence(self) -> int:
        return self._current_sequence

    @property
    def max_sequence(self) -> int:
        return self._max_sequence

    async def initialize(self) -> int:
        """按间隔预计算检查点

        Returns:
            生成的检查点数量
        """
        start_time = time.monotonic()
        self._max_sequence = await self._stores.event_store.max_sequence(self.document_id)
        self.cache.clear()
        interval = self.cache.checkpoint_interval
        generated = 0

        state = DocumentState()
        previous = -1
        for seq in range(0, self._max_sequence + 1, interval):
            # 逐段增量推进，每段只回放上一个检查点之后的事件
            result = await self._replayer.replay_from_snapshot(
                self.document_id, state, previous, seq
            )
            state, previous = result.state, seq
            self.cache.add(seq, state)
            generated += 1

        self._current_sequence = self._max_sequence
        await log.ainfo(
            "checkpoints_generated",
            document_id=self.document_id,
            count=generated,
            max_sequence=self._max_sequence,
            memory_bytes=self.cache.memory_usage,
            elapsed_ms=int((time.monotonic() - start_time) * 1000),
        )
        return generated

    async def seek(self, target_sequence: int) -> SeekResult:
        """定位到任意序号（越界时裁剪到 [0, max]）"""
        start_time = time.monotonic()
        if target_sequence > self._max_sequence:
            self._max_sequence = await self._stores.event_store.max_sequence(self.document_id)
        target = max(0, min(target_sequence, self._max_sequence))

        checkpoint = self.cache.find_nearest(target)
        if checkpoint is not None:
            replay = await self._replayer.replay_from_snapshot(
                self.document_id, checkpoint.restore(), checkpoint.sequence, target
            )
        else:
            replay = await self._replayer.replay(self.document_id, target)

        latency_ms = round((time.monotonic() - start_time) * 1000, 3)
        result = SeekResult(
            target_sequence=target,
            state=replay.state,
            checkpoint_sequence=checkpoint.sequence if checkpoint else None,
            events_replayed=replay.events_applied,
            latency_ms=latency_ms,
            skipped_sequences=replay.skipped_sequences,
        )
        self._current_sequence = target
        self._seek_history.append(result.model_copy(update={"state": DocumentState()}))
        if len(self._seek_history) > self._history_limit:
            del self._seek_history[0]

        if not result.meets_target:
            await log.awarning(
                "seek_slow",
                document_id=self.document_id,
                target=target,
                checkpoint=result.checkpoint_sequence,
                events_replayed=result.events_replayed,
                latency_ms=latency_ms,
            )
        return result

    async def step_forward(self) -> SeekResult:
        return await self.seek(min(self._current_sequence + 1, self._max_sequence))

    async def step_backward(self) -> SeekResult:
        return await self.seek(max(self._current_sequence - 1, 0))

    def seek_metrics(self) -> dict[str, Any]:
        """seek 延迟统计：平均、中位数、p95、p99、达标率"""
        if not self._seek_history:
            return {"count": 0}
        latencies = sorted(r.latency_ms for r in self._seek_history)
        count = len(latencies)
        met = sum(1 for r in self._seek_history if r.meets_target)
        return {
            "count": count,
            "avg_latency_ms": round(statistics.fmean(latencies), 3),
            "median_latency_ms": statistics.median(latencies),
            "p95_latency_ms": latencies[min(int(count * 0.95), count - 1)],
            "p99_latency_ms": latencies[min(int(count * 0.99), count - 1)],
            "target_met_rate": round(met / count, 4),
        }
