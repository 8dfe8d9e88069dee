"""Snapshot 管理 -- 自适应快照间隔、序列化/压缩、遥测

间隔决策（见 effective_interval）：
    interval = base * 活跃度倍率 * 文档规模倍率，裁剪到 [1, max_interval]
    - 活跃度倍率：窗口内事件速率 >= burst_threshold 取 burst_multiplier，
      <= idle_threshold 取 idle_multiplier，否则 1.0
    - 文档规模倍率：对象数低于 large_document_objects 为 1，
      之后每翻一倍，倍率翻一倍（2 ** floor(log2(objects / threshold)))
"""

import gzip
import hashlib
import json
import math
import time
import zlib
from collections import deque
from datetime import UTC, datetime

import structlog

from .config import (
    SNAPSHOT_COMPRESSION_THRESHOLD,
    SnapshotTuningConfig,
    load_snapshot_tuning_config,
)
from .exceptions import SnapshotCorruptedError
from .models.document import DocumentState
from .models.enums import CompressionType, EditingActivity
from .models.snapshot import Snapshot, SnapshotTelemetry
from .store.protocols import SnapshotStore

log = structlog.get_logger()

_GZIP_MAGIC = b"\x1f\x8b"


class SnapshotSerializer:
    """DocumentState <-> 快照 payload 字节

    payload 为 JSON（超过阈值时 gzip 压缩），checksum 取未压缩 JSON 的 sha256。
    """

    def __init__(self, compression_threshold: int = SNAPSHOT_COMPRESSION_THRESHOLD) -> None:
        self._compression_threshold = compression_threshold

    def serialize(self, state: DocumentState) -> tuple[bytes, CompressionType, str, int]:
        """序列化文档状态

        Returns:
            (payload, compression, checksum, uncompressed_bytes)
        """
        raw = json.dumps(
            state.model_dump(mode="json"),
            ensure_ascii=False,
            sort_keys=True,
            separators=(",", ":"),
        ).encode("utf-8")
        checksum = hashlib.sha256(raw).hexdigest()
        if len(raw) > self._compression_threshold:
            return gzip.compress(raw, mtime=0), CompressionType.GZIP, checksum, len(raw)
        return raw, CompressionType.NONE, checksum, len(raw)

    def deserialize(self, snapshot: Snapshot) -> DocumentState:
        """反序列化快照

        按 gzip magic bytes 判定是否解压（容忍压缩标记缺失），
        再校验 checksum 与 JSON 结构。

        Raises:
            SnapshotCorruptedError: 解压、校验或解析任一步失败
        """
        data = snapshot.payload
        is_gzip = data[:2] == _GZIP_MAGIC
        if snapshot.compression == CompressionType.GZIP and not is_gzip:
            raise SnapshotCorruptedError(
                snapshot.document_id, snapshot.sequence, "missing gzip header"
            )
        try:
            raw = gzip.decompress(data) if is_gzip else data
        except (OSError, EOFError, zlib.error) as exc:
            raise SnapshotCorruptedError(
                snapshot.document_id, snapshot.sequence, f"decompression failed: {exc}"
            ) from exc

        if snapshot.checksum and hashlib.sha256(raw).hexdigest() != snapshot.checksum:
            raise SnapshotCorruptedError(
                snapshot.document_id, snapshot.sequence, "checksum mismatch"
            )

        try:
            return DocumentState.model_validate_json(raw)
        except ValueError as exc:
            raise SnapshotCorruptedError(
                snapshot.document_id, snapshot.sequence, f"invalid state payload: {exc}"
            ) from exc


class EditingRateTracker:
    """滑动窗口内的编辑速率（事件/秒）"""

    def __init__(self, window_seconds: int = 60, clock=time.monotonic) -> None:
        self._window = window_seconds
        self._clock = clock
        self._samples: deque[tuple[float, int]] = deque()

    def record(self, event_count: int = 1) -> None:
        now = self._clock()
        self._samples.append((now, event_count))
        self._evict(now)

    def events_per_second(self) -> float:
        now = self._clock()
        self._evict(now)
        total = sum(count for _, count in self._samples)
        return total / self._window

    def _evict(self, now: float) -> None:
        while self._samples and now - self._samples[0][0] > self._window:
            self._samples.popleft()


class SnapshotManager:
    """快照管理器

    决定何时创建快照，并负责构建、压缩、持久化（不提交事务）。
    """

    def __init__(
        self,
        tuning: SnapshotTuningConfig | None = None,
        serializer: SnapshotSerializer | None = None,
    ) -> None:
        self.tuning = tuning or load_snapshot_tuning_config()
        self.serializer = serializer or SnapshotSerializer()
        self.rate_tracker = EditingRateTracker(self.tuning.window_seconds)
        self._telemetry: list[SnapshotTelemetry] = []

    def classify_activity(self, events_per_second: float) -> EditingActivity:
        if events_per_second >= self.tuning.burst_threshold:
            return EditingActivity.BURST
        if events_per_second <= self.tuning.idle_threshold:
            return EditingActivity.IDLE
        return EditingActivity.NORMAL

    def effective_interval(
        self,
        object_count: int = 0,
        events_per_second: float | None = None,
    ) -> int:
        """计算当前快照间隔（事件数）

        events_per_second 为 None 时不做活跃度调整。
        """
        tuning = self.tuning
        multiplier = 1.0
        if events_per_second is not None:
            activity = self.classify_activity(events_per_second)
            if activity == EditingActivity.BURST:
                multiplier = tuning.burst_multiplier
            elif activity == EditingActivity.IDLE:
                multiplier = tuning.idle_multiplier

        size_factor = 1
        if object_count >= tuning.large_document_objects:
            size_factor = 2 ** int(math.log2(object_count / tuning.large_document_objects))

        interval = round(tuning.base_interval * multiplier * size_factor)
        return max(1, min(interval, tuning.max_interval))

    def should_snapshot(
        self,
        current_max_sequence: int,
        *,
        last_snapshot_sequence: int = -1,
        object_count: int = 0,
        events_per_second: float | None = None,
    ) -> bool:
        """判断是否到达快照时机

        自上次快照以来的事件数达到当前间隔即需要快照；
        无快照时以 -1 为起点（第 base 个事件处首次快照）。
        """
        if current_max_sequence < 0 or current_max_sequence <= last_snapshot_sequence:
            return False
        interval = self.effective_interval(object_count, events_per_second)
        return current_max_sequence - last_snapshot_sequence >= interval

    def build_snapshot(
        self,
        document_id: str,
        sequence: int,
        state: DocumentState,
    ) -> tuple[Snapshot, SnapshotTelemetry]:
        """构建快照记录与遥测（纯内存操作）"""
        start = time.perf_counter()
        payload, compression, checksum, uncompressed = self.serializer.serialize(state)
        snapshot = Snapshot(
            document_id=document_id,
            sequence=sequence,
            payload=payload,
            compression=compression,
            checksum=checksum,
            created_at=datetime.now(UTC),
        )
        telemetry = SnapshotTelemetry(
            document_id=document_id,
            sequence=sequence,
            uncompressed_bytes=uncompressed,
            compressed_bytes=len(payload),
            compression=compression,
            duration_ms=round((time.perf_counter() - start) * 1000, 3),
        )
        return snapshot, telemetry

    async def create_snapshot(
        self,
        snapshot_store: SnapshotStore,
        document_id: str,
        sequence: int,
        state: DocumentState,
    ) -> Snapshot:
        """构建并写入快照（同一序号覆盖；不提交事务）"""
        snapshot, telemetry = self.build_snapshot(document_id, sequence, state)
        await snapshot_store.put(snapshot)
        self._telemetry.append(telemetry)
        await log.ainfo(
            "snapshot_created",
            document_id=document_id,
            sequence=sequence,
            uncompressed_bytes=telemetry.uncompressed_bytes,
            compressed_bytes=telemetry.compressed_bytes,
            compression=telemetry.compression.value,
            compression_ratio=telemetry.compression_ratio,
            duration_ms=telemetry.duration_ms,
        )
        return snapshot

    def telemetry(self) -> list[SnapshotTelemetry]:
        return list(self._telemetry)
