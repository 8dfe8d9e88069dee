"""事件追加 + 快照原子事务封装

在同一 SQLite 事务内原子提交新事件与（可选的）快照，
失败时整体回滚，不留下半写入的序号区间。
"""

from collections.abc import Sequence

import aiosqlite
import structlog
from pydantic import BaseModel

from ..models.event import Event
from ..models.snapshot import Snapshot
from .event_store import SqliteEventStore
from .metadata_store import SqliteMetadataStore
from .snapshot_store import SqliteSnapshotStore

log = structlog.get_logger()


async def append_events(
    conn: aiosqlite.Connection,
    metadata_store: SqliteMetadataStore,
    event_store: SqliteEventStore,
    document_id: str,
    payloads: Sequence[BaseModel],
) -> list[Event]:
    """在同一事务内确保元数据行存在并追加事件

    Args:
        conn: 数据库连接（需在同一连接上操作以保证事务性）
        metadata_store: MetadataStore 实例
        event_store: EventStore 实例
        document_id: 文档 ID
        payloads: 待追加的 payload 列表

    Returns:
        已分配序号的事件

    Raises:
        Exception: 如果事务提交失败，自动回滚
    """
    try:
        await metadata_store.ensure(document_id)
        events = await event_store.append(document_id, payloads)
        await conn.commit()
    except Exception:
        await conn.rollback()
        raise
    if events:
        await log.adebug(
            "events_appended",
            document_id=document_id,
            first_sequence=events[0].sequence,
            last_sequence=events[-1].sequence,
        )
    return events


async def append_events_with_snapshot(
    conn: aiosqlite.Connection,
    metadata_store: SqliteMetadataStore,
    event_store: SqliteEventStore,
    snapshot_store: SqliteSnapshotStore,
    document_id: str,
    payloads: Sequence[BaseModel],
    snapshot: Snapshot | None,
) -> list[Event]:
    """原子追加事件，并在同一事务内写入快照

    snapshot.sequence 必须等于本次追加后的最大序号，否则快照与事件不一致。
    """
    try:
        await metadata_store.ensure(document_id)
        events = await event_store.append(document_id, payloads)
        if snapshot is not None:
            last_sequence = events[-1].sequence if events else await event_store.max_sequence(
                document_id
            )
            if snapshot.sequence != last_sequence:
                raise ValueError(
                    f"snapshot sequence {snapshot.sequence} != appended max {last_sequence}"
                )
            await snapshot_store.put(snapshot)
        await conn.commit()
    except Exception:
        await conn.rollback()
        raise
    return events
