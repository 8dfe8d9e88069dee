"""ReplayResult 模型 -- 回放结果 + 非致命告警"""

from pydantic import BaseModel, Field

from .document import DocumentState
from .enums import ReplayWarningKind


class ReplayWarning(BaseModel):
    """回放过程中的非致命告警（面向 UI 的提示）"""

    kind: ReplayWarningKind
    message: str
    sequence: int | None = Field(default=None, description="相关的事件/快照序号")
    recommendation: str = Field(default="", description="建议的修复动作")


class ReplayResult(BaseModel):
    """回放结果"""

    document_id: str
    sequence: int = Field(description="实际回放到的序号（-1 表示空文档）")
    state: DocumentState
    base_sequence: int = Field(
        default=-1,
        description="起始快照序号，-1 表示从空文档冷回放",
    )
    events_applied: int = Field(default=0)
    skipped_sequences: list[int] = Field(default_factory=list)
    warnings: list[ReplayWarning] = Field(default_factory=list)
    duration_ms: float = Field(default=0.0)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)
