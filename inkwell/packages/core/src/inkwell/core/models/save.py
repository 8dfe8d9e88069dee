"""保存结果模型 -- SaveSuccess / SaveFailure

保存失败以值的形式返回（不抛异常），携带面向用户的操作建议
与用于日志的技术细节。
"""

from typing import Literal

from pydantic import BaseModel, Field

from .enums import SaveErrorType


class SaveSuccess(BaseModel):
    """保存成功"""

    ok: Literal[True] = True
    file_path: str
    sequence: int = Field(description="本次持久化到的事件序号")
    event_count: int = Field(default=0, description="本次写入的事件数")
    file_size_bytes: int = Field(default=0)
    duration_ms: int = Field(default=0)
    snapshot_created: bool = False


class SaveFailure(BaseModel):
    """保存失败"""

    ok: Literal[False] = False
    error_type: SaveErrorType
    user_message: str = Field(description="可直接展示给用户的信息（含修复建议）")
    technical_details: str = Field(default="", description="底层错误原文")
    file_path: str | None = None


SaveResult = SaveSuccess | SaveFailure
