"""Inkwell Core Store -- SQLite 持久化实现

提供工厂函数创建共享数据库连接的 Store 实例组。
"""

from pathlib import Path

import aiosqlite

from .event_store import SqliteEventStore
from .format_version import FORMAT_MIGRATIONS, check_format_version
from .metadata_store import SqliteMetadataStore
from .snapshot_store import SqliteSnapshotStore
from .sqlite_init import init_db, verify_wal_mode, wal_checkpoint
from .transaction import append_events, append_events_with_snapshot

MEMORY_DB_PATH = ":memory:"


class StoreGroup:
    """Store 实例组 -- 共享同一个数据库连接

    连接归属于一个文档会话；另存为切换文件时通过 reopen()
    先关闭旧连接再打开新连接，持有 StoreGroup 引用的组件无需重建。
    """

    def __init__(self, conn: aiosqlite.Connection, db_path: str) -> None:
        self._bind(conn, db_path)

    def _bind(self, conn: aiosqlite.Connection, db_path: str) -> None:
        self.conn = conn
        self.db_path = db_path
        self.closed = False
        self.metadata_store = SqliteMetadataStore(conn)
        self.event_store = SqliteEventStore(conn)
        self.snapshot_store = SqliteSnapshotStore(conn)

    @property
    def is_memory(self) -> bool:
        return self.db_path == MEMORY_DB_PATH

    async def reopen(self, db_path: str) -> None:
        """关闭当前连接后打开 db_path 对应的新连接

        新连接打开失败时旧连接保持关闭，调用方负责恢复。
        """
        await self.close()
        conn = await _connect(db_path)
        self._bind(conn, db_path)

    async def close(self) -> None:
        if self.closed:
            return
        await self.conn.close()
        self.closed = True


async def _connect(db_path: str) -> aiosqlite.Connection:
    if db_path != MEMORY_DB_PATH:
        # 确保数据库目录存在
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    await init_db(conn)
    return conn


async def create_store_group(db_path: str | Path = MEMORY_DB_PATH) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径，默认使用内存数据库（尚未保存的新文档）

    Returns:
        StoreGroup 实例
    """
    db_path = str(db_path)
    conn = await _connect(db_path)
    return StoreGroup(conn=conn, db_path=db_path)


__all__ = [
    "MEMORY_DB_PATH",
    "StoreGroup",
    "create_store_group",
    "SqliteEventStore",
    "SqliteMetadataStore",
    "SqliteSnapshotStore",
    "init_db",
    "verify_wal_mode",
    "wal_checkpoint",
    "append_events",
    "append_events_with_snapshot",
    "FORMAT_MIGRATIONS",
    "check_format_version",
]
