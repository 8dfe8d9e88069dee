"""SnapshotStore SQLite 实现

同一 (document_id, event_sequence) 只保留一行：重复写入走覆盖。
payload 的解压与校验由 SnapshotSerializer 负责，此处只做存取。
"""

from datetime import datetime

import aiosqlite

from ..models.enums import CompressionType
from ..models.snapshot import Snapshot


class SqliteSnapshotStore:
    """SnapshotStore 的 SQLite 实现

    注意：写方法不自动提交事务，需由调用方管理事务。
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def put(self, snapshot: Snapshot) -> None:
        """写入快照，同一序号已存在时覆盖"""
        await self._conn.execute(
            """
            INSERT INTO snapshots (document_id, event_sequence, snapshot_data,
                                   compression, checksum, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(document_id, event_sequence) DO UPDATE SET
                snapshot_data = excluded.snapshot_data,
                compression = excluded.compression,
                checksum = excluded.checksum,
                created_at = excluded.created_at
            """,
            (
                snapshot.document_id,
                snapshot.sequence,
                snapshot.payload,
                snapshot.compression.value,
                snapshot.checksum,
                snapshot.created_at.isoformat(),
            ),
        )

    async def get(self, document_id: str, sequence: int) -> Snapshot | None:
        cursor = await self._conn.execute(
            """
            SELECT document_id, event_sequence, snapshot_data, compression,
                   checksum, created_at
            FROM snapshots WHERE document_id = ? AND event_sequence = ?
            """,
            (document_id, sequence),
        )
        row = await cursor.fetchone()
        return self._row_to_snapshot(row) if row else None

    async def list_at_or_before(self, document_id: str, sequence: int) -> list[Snapshot]:
        """查询序号 <= sequence 的所有快照，按序号倒序（回退链顺序）"""
        cursor = await self._conn.execute(
            """
            SELECT document_id, event_sequence, snapshot_data, compression,
                   checksum, created_at
            FROM snapshots
            WHERE document_id = ? AND event_sequence <= ?
            ORDER BY event_sequence DESC
            """,
            (document_id, sequence),
        )
        rows = await cursor.fetchall()
        return [self._row_to_snapshot(row) for row in rows]

    async def latest_sequence(self, document_id: str) -> int:
        """最新快照序号，无快照返回 -1"""
        cursor = await self._conn.execute(
            "SELECT COALESCE(MAX(event_sequence), -1) FROM snapshots WHERE document_id = ?",
            (document_id,),
        )
        row = await cursor.fetchone()
        return row[0] if row else -1

    async def list_sequences(self, document_id: str) -> list[int]:
        cursor = await self._conn.execute(
            "SELECT event_sequence FROM snapshots WHERE document_id = ? ORDER BY event_sequence",
            (document_id,),
        )
        rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def prune(self, document_id: str, keep_count: int) -> int:
        """只保留最新的 keep_count 个快照

        Returns:
            删除的快照数
        """
        cursor = await self._conn.execute(
            """
            DELETE FROM snapshots
            WHERE document_id = ? AND event_sequence NOT IN (
                SELECT event_sequence FROM snapshots
                WHERE document_id = ?
                ORDER BY event_sequence DESC
                LIMIT ?
            )
            """,
            (document_id, document_id, max(keep_count, 0)),
        )
        return cursor.rowcount

    @staticmethod
    def _row_to_snapshot(row: aiosqlite.Row) -> Snapshot:
        """将数据库行转换为 Snapshot 模型"""
        try:
            compression = CompressionType(row[3])
        except ValueError:
            # 未知压缩标记交给反序列化阶段按 magic bytes 判定
            compression = CompressionType.NONE
        data = row[2]
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        return Snapshot(
            document_id=row[0],
            sequence=row[1],
            payload=payload,
            compression=compression,
            checksum=row[4],
            created_at=datetime.fromisoformat(row[5]),
        )
