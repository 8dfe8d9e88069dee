"""进程重启持久性测试

测试内容：
1. 追加事件 → 关闭连接 → 重新打开 → 事件与元数据完整
2. WAL 模式验证与 WAL 检查点
"""

from pathlib import Path

from inkwell.core.models import ClearSelectionPayload, EventType
from inkwell.core.replayer import EventReplayer
from inkwell.core.store import (
    append_events,
    create_store_group,
    verify_wal_mode,
    wal_checkpoint,
)

DOC_ID = "doc1"


class TestDurability:
    """关闭后重新打开，数据不丢失"""

    async def test_data_survives_reopen(self, core_db_path: Path, append_shapes, stores):
        await append_shapes(25)
        expected = (await EventReplayer(stores).replay(DOC_ID, 24)).state
        await stores.close()

        reopened = await create_store_group(core_db_path)
        try:
            assert await reopened.event_store.max_sequence(DOC_ID) == 24
            events = await reopened.event_store.range(DOC_ID)
            assert [e.sequence for e in events] == list(range(25))
            assert events[0].type == EventType.CREATE_SHAPE
            assert await reopened.metadata_store.get(DOC_ID) is not None

            state = (await EventReplayer(reopened).replay(DOC_ID, 24)).state
            assert state == expected
        finally:
            await reopened.close()

    async def test_memory_store_is_not_shared(self):
        first = await create_store_group()
        await append_events(
            first.conn,
            first.metadata_store,
            first.event_store,
            DOC_ID,
            [ClearSelectionPayload()],
        )
        await first.close()

        second = await create_store_group()
        try:
            assert await second.event_store.max_sequence(DOC_ID) == -1
        finally:
            await second.close()

    async def test_close_is_idempotent(self, stores):
        await stores.close()
        await stores.close()
        assert stores.closed


class TestWalMode:
    """WAL 模式"""

    async def test_file_database_uses_wal(self, stores):
        assert await verify_wal_mode(stores.conn) is True

    async def test_memory_database_has_no_wal(self):
        group = await create_store_group()
        try:
            assert group.is_memory
            assert await verify_wal_mode(group.conn) is False
        finally:
            await group.close()

    async def test_checkpoint_truncates_wal(self, core_db_path: Path, stores, append_shapes):
        await append_shapes(50)
        result = await wal_checkpoint(stores.conn)
        assert result is not None
        busy, _, _ = result
        assert busy == 0
        wal = Path(str(core_db_path) + "-wal")
        assert not wal.exists() or wal.stat().st_size == 0
