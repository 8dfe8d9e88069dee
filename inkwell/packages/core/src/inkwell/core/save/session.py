"""文档会话 -- 每个打开的文档一个会话

会话持有文档绑定的数据库连接、写锁、保存标志与最近持久化序号。
尚未保存的新文档使用内存数据库，首次另存为时切换到文件。
"""

import asyncio
from pathlib import Path

import structlog

from ..config import DOCUMENT_EXTENSION
from ..models.enums import DirtyState
from ..store import MEMORY_DB_PATH, StoreGroup, check_format_version, create_store_group

log = structlog.get_logger()


class DocumentSession:
    """单文档会话状态"""

    def __init__(self, document_id: str, stores: StoreGroup, path: Path | None = None) -> None:
        self.document_id = document_id
        self.stores = stores
        self.path = path
        self.last_persisted_sequence = -1
        self.saving = False
        # 写锁：Recorder 追加事件与保存事务共用
        self.lock = asyncio.Lock()

    def dirty_state(self, current_sequence: int) -> DirtyState:
        if self.path is None:
            return DirtyState.UNSAVED
        if current_sequence > self.last_persisted_sequence:
            return DirtyState.DIRTY
        return DirtyState.CLEAN


def normalize_path(path: str | Path) -> Path:
    """展开 ~，补全文档扩展名，返回绝对路径（不创建目录）

    Raises:
        ValueError: 路径为空或指向目录
    """
    raw = str(path).strip()
    if not raw:
        raise ValueError("empty document path")
    resolved = Path(raw).expanduser()
    if resolved.is_dir():
        raise ValueError(f"document path is a directory: {resolved}")
    if resolved.suffix != DOCUMENT_EXTENSION:
        resolved = resolved.with_name(resolved.name + DOCUMENT_EXTENSION)
    return resolved.absolute()


class DocumentSessionRegistry:
    """已打开文档的会话注册表"""

    def __init__(self) -> None:
        self._sessions: dict[str, DocumentSession] = {}

    def get(self, document_id: str) -> DocumentSession | None:
        return self._sessions.get(document_id)

    def document_ids(self) -> list[str]:
        return list(self._sessions)

    async def get_or_open(
        self,
        document_id: str,
        path: str | Path | None = None,
    ) -> DocumentSession:
        """返回已有会话，或打开新会话

        path 为 None 时使用内存数据库（未保存的新文档）；
        打开已有文件时先校验格式版本，last_persisted_sequence 取文件内的最大序号。

        Raises:
            UnsupportedFormatError: 文件格式版本比当前支持的更新
        """
        session = self._sessions.get(document_id)
        if session is not None:
            return session

        file_path = normalize_path(path) if path is not None else None
        stores = await create_store_group(file_path or MEMORY_DB_PATH)
        session = DocumentSession(document_id, stores, file_path)
        if file_path is not None:
            try:
                await check_format_version(stores.conn, stores.metadata_store, document_id)
            except Exception:
                await stores.close()
                raise
            session.last_persisted_sequence = await stores.event_store.max_sequence(document_id)
        self._sessions[document_id] = session
        await log.ainfo(
            "document_session_opened",
            document_id=document_id,
            path=str(file_path) if file_path else MEMORY_DB_PATH,
            last_persisted_sequence=session.last_persisted_sequence,
        )
        return session

    async def close(self, document_id: str) -> bool:
        """关闭会话连接并移除，会话不存在时返回 False"""
        session = self._sessions.pop(document_id, None)
        if session is None:
            return False
        await session.stores.close()
        await log.ainfo("document_session_closed", document_id=document_id)
        return True

    async def close_all(self) -> None:
        for document_id in list(self._sessions):
            await self.close(document_id)
