"""Snapshot 数据模型

快照按 (document_id, sequence) 唯一，同一序号重复创建时覆盖而非重复插入。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import CompressionType


class Snapshot(BaseModel):
    """持久化快照记录"""

    document_id: str = Field(description="所属文档 ID")
    sequence: int = Field(ge=0, description="捕获时的事件序号")
    payload: bytes = Field(description="序列化（可能已压缩）的文档状态")
    compression: CompressionType = Field(default=CompressionType.NONE)
    checksum: str = Field(description="未压缩 JSON 的 sha256 十六进制摘要")
    created_at: datetime = Field(description="创建时间（UTC）")

    @property
    def size_bytes(self) -> int:
        return len(self.payload)


class SnapshotTelemetry(BaseModel):
    """单次快照创建的遥测数据

    compression_ratio = uncompressed_bytes / compressed_bytes，
    未压缩时恒为 1.0。
    """

    document_id: str
    sequence: int
    uncompressed_bytes: int
    compressed_bytes: int
    compression: CompressionType
    duration_ms: float

    @property
    def compression_ratio(self) -> float:
        if self.compressed_bytes == 0:
            return 1.0
        return round(self.uncompressed_bytes / self.compressed_bytes, 2)
