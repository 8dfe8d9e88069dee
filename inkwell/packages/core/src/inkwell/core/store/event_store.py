"""EventStore SQLite 实现

事件表 append-only：只允许插入，不允许更新或删除。
event_sequence 同一文档内从 0 开始连续递增，空文档的最大序号为 -1。
"""

from collections.abc import Iterable, Sequence
from datetime import UTC, datetime

import aiosqlite
from pydantic import BaseModel
from ulid import ULID

from ..exceptions import SequenceConflictError, SequenceGapError
from ..models.enums import EventType
from ..models.event import Event
from ..models.payloads import decode_payload, encode_payload, payload_type


def is_sequence_conflict(error: Exception) -> bool:
    """判断 IntegrityError 是否为文档序号唯一约束冲突"""
    if not isinstance(error, aiosqlite.IntegrityError):
        return False
    text = str(error)
    return (
        "idx_events_document_sequence" in text
        or "events.document_id, events.event_sequence" in text
    )


class SqliteEventStore:
    """EventStore 的 SQLite 实现

    注意：写方法不自动提交事务，需由调用方管理事务。
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def append(
        self,
        document_id: str,
        payloads: Sequence[BaseModel],
    ) -> list[Event]:
        """追加事件并分配连续序号（append-only）

        调用方需持有文档写锁，保证 max_sequence 读取与插入之间无并发写入。

        Returns:
            已分配序号的事件列表，顺序与 payloads 一致
        """
        next_seq = await self.max_sequence(document_id) + 1
        now = datetime.now(UTC)
        events = [
            Event(
                event_id=str(ULID()),
                document_id=document_id,
                sequence=next_seq + offset,
                ts=now,
                type=payload_type(payload),
                payload=payload,
            )
            for offset, payload in enumerate(payloads)
        ]
        await self._insert(document_id, events)
        return events

    async def insert_events(self, document_id: str, events: Sequence[Event]) -> None:
        """批量写入已分配序号的事件（保存/另存为时使用）

        Raises:
            SequenceGapError: 首个事件序号不紧接已持久化的最大序号
        """
        if not events:
            return
        expected = await self.max_sequence(document_id) + 1
        for offset, event in enumerate(events):
            if event.sequence != expected + offset:
                raise SequenceGapError(document_id, expected + offset, event.sequence)
        await self._insert(document_id, events)

    async def _insert(self, document_id: str, events: Iterable[Event]) -> None:
        try:
            await self._conn.executemany(
                """
                INSERT INTO events (event_id, document_id, event_sequence,
                                    event_type, event_payload, timestamp)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        event.event_id,
                        event.document_id,
                        event.sequence,
                        event.type.value,
                        encode_payload(event.payload),
                        event.ts.isoformat(),
                    )
                    for event in events
                ],
            )
        except aiosqlite.IntegrityError as e:
            if is_sequence_conflict(e):
                raise SequenceConflictError(document_id, e) from e
            raise

    async def range(
        self,
        document_id: str,
        from_seq: int = 0,
        to_seq: int | None = None,
    ) -> list[Event]:
        """按序号正序查询 [from_seq, to_seq] 区间事件（闭区间）

        无法解析的 payload 逐条解码为 UnknownPayload，不影响整个区间。
        """
        if to_seq is None:
            cursor = await self._conn.execute(
                """
                SELECT event_id, document_id, event_sequence, event_type,
                       event_payload, timestamp
                FROM events
                WHERE document_id = ? AND event_sequence >= ?
                ORDER BY event_sequence ASC
                """,
                (document_id, from_seq),
            )
        else:
            cursor = await self._conn.execute(
                """
                SELECT event_id, document_id, event_sequence, event_type,
                       event_payload, timestamp
                FROM events
                WHERE document_id = ? AND event_sequence BETWEEN ? AND ?
                ORDER BY event_sequence ASC
                """,
                (document_id, from_seq, to_seq),
            )
        rows = await cursor.fetchall()
        return [self._row_to_event(row) for row in rows]

    async def max_sequence(self, document_id: str) -> int:
        """获取文档最大序号，空文档返回 -1"""
        cursor = await self._conn.execute(
            "SELECT COALESCE(MAX(event_sequence), -1) FROM events WHERE document_id = ?",
            (document_id,),
        )
        row = await cursor.fetchone()
        return row[0] if row else -1

    async def count(self, document_id: str) -> int:
        cursor = await self._conn.execute(
            "SELECT COUNT(*) FROM events WHERE document_id = ?",
            (document_id,),
        )
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def find_sequence_gaps(self, document_id: str) -> list[int]:
        """返回 [0, max] 内缺失的序号（完整性检查用）"""
        cursor = await self._conn.execute(
            "SELECT event_sequence FROM events WHERE document_id = ? ORDER BY event_sequence",
            (document_id,),
        )
        rows = await cursor.fetchall()
        present = {row[0] for row in rows}
        if not present:
            return []
        return [seq for seq in range(max(present) + 1) if seq not in present]

    @staticmethod
    def _row_to_event(row: aiosqlite.Row) -> Event:
        """将数据库行转换为 Event 模型"""
        payload = decode_payload(row[3], row[4])
        try:
            event_type = EventType(row[3])
        except ValueError:
            event_type = EventType.UNKNOWN
        return Event(
            event_id=row[0],
            document_id=row[1],
            sequence=row[2],
            ts=datetime.fromisoformat(row[5]),
            type=event_type,
            payload=payload,
        )
