"""OperationGroup 模型 -- 撤销/重做的最小单元"""

from datetime import datetime

from pydantic import BaseModel, Field


class OperationGroup(BaseModel):
    """已完成的操作分组

    start/end 标记共享 group_id；序号在事件持久化后回填。
    """

    document_id: str
    group_id: str = Field(description="分组 ID，格式 group_<n>")
    label: str = Field(default="Operation", description="撤销菜单显示的操作名")
    started_at: datetime
    ended_at: datetime
    event_count: int = Field(default=0, ge=0, description="组内实质事件数")
    start_sequence: int | None = None
    end_sequence: int | None = None
    cancelled: bool = False
    tool_id: str | None = None

    @property
    def duration_ms(self) -> int:
        return int((self.ended_at - self.started_at).total_seconds() * 1000)
