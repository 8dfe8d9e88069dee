"""DocumentMetadata 模型 -- metadata 表的一行"""

from datetime import datetime

from pydantic import BaseModel, Field


class DocumentMetadata(BaseModel):
    """文档元数据"""

    document_id: str
    title: str = Field(default="Untitled")
    format_version: int = Field(default=1)
    created_at: datetime
    modified_at: datetime
