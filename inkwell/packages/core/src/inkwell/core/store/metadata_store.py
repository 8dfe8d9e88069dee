"""MetadataStore SQLite 实现

每个文档一行。events / snapshots 通过外键引用该行，
写入事件前必须先 upsert 元数据。
"""

from datetime import UTC, datetime

import aiosqlite

from ..models.metadata import DocumentMetadata
from .sqlite_init import FORMAT_VERSION


class SqliteMetadataStore:
    """MetadataStore 的 SQLite 实现

    注意：所有写方法均不自动提交事务，需由调用方管理事务。
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def upsert(self, document_id: str, title: str) -> None:
        """插入或更新文档元数据（created_at 只在首次插入时写入）"""
        now = datetime.now(UTC).isoformat()
        await self._conn.execute(
            """
            INSERT INTO metadata (document_id, title, format_version, created_at, modified_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(document_id) DO UPDATE SET
                title = excluded.title,
                modified_at = excluded.modified_at
            """,
            (document_id, title, FORMAT_VERSION, now, now),
        )

    async def ensure(self, document_id: str, title: str = "Untitled") -> None:
        """确保元数据行存在，已存在时不做修改"""
        now = datetime.now(UTC).isoformat()
        await self._conn.execute(
            """
            INSERT OR IGNORE INTO metadata
                (document_id, title, format_version, created_at, modified_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (document_id, title, FORMAT_VERSION, now, now),
        )

    async def touch(self, document_id: str) -> None:
        """更新 modified_at"""
        await self._conn.execute(
            "UPDATE metadata SET modified_at = ? WHERE document_id = ?",
            (datetime.now(UTC).isoformat(), document_id),
        )

    async def get(self, document_id: str) -> DocumentMetadata | None:
        """根据 document_id 查询元数据"""
        cursor = await self._conn.execute(
            """
            SELECT document_id, title, format_version, created_at, modified_at
            FROM metadata WHERE document_id = ?
            """,
            (document_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return DocumentMetadata(
            document_id=row[0],
            title=row[1],
            format_version=row[2],
            created_at=datetime.fromisoformat(row[3]),
            modified_at=datetime.fromisoformat(row[4]),
        )

    async def list_document_ids(self) -> list[str]:
        cursor = await self._conn.execute(
            "SELECT document_id FROM metadata ORDER BY created_at ASC"
        )
        rows = await cursor.fetchall()
        return [row[0] for row in rows]
