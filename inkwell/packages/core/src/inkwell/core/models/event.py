"""Event Domain Model

事件表 append-only，不允许更新或删除。
event_id 使用 ULID 格式，时间有序。
sequence 同一文档内从 0 开始严格连续递增，在持久化时分配。
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .enums import MARKER_TYPES, EventType
from .payloads import EventPayload, UnknownPayload


class Event(BaseModel):
    """Event 数据模型

    事件一经持久化即不可变。
    """

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(description="唯一标识，ULID 格式，时间有序")
    document_id: str = Field(description="所属文档 ID")
    sequence: int = Field(ge=0, description="文档内序号，从 0 开始连续递增")
    ts: datetime = Field(description="事件时间戳（UTC）")
    type: EventType = Field(description="事件类型")
    payload: EventPayload = Field(description="按 kind 区分的结构化 payload")

    @property
    def is_marker(self) -> bool:
        """是否为分组/历史标记事件"""
        return self.type in MARKER_TYPES

    @property
    def is_decodable(self) -> bool:
        return not isinstance(self.payload, UnknownPayload)
