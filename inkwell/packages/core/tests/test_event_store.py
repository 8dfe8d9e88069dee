"""EventStore 测试

测试内容：
1. 序号从 0 开始连续分配，空文档最大序号为 -1
2. 区间查询为闭区间且按序号升序
3. 重复序号触发 SequenceConflictError，批量写入检查连续性
4. 损坏的 payload / 未知事件类型逐条降级为 UnknownPayload
"""

from datetime import UTC, datetime

import pytest
from inkwell.core.exceptions import SequenceConflictError, SequenceGapError
from inkwell.core.models import (
    ClearSelectionPayload,
    Event,
    EventType,
    UnknownPayload,
)
from inkwell.core.store import append_events

DOC_ID = "doc1"


def _event(sequence: int, document_id: str = DOC_ID) -> Event:
    return Event(
        event_id=f"01JEVT_STORE_{sequence:012d}",
        document_id=document_id,
        sequence=sequence,
        ts=datetime.now(UTC),
        type=EventType.CLEAR_SELECTION,
        payload=ClearSelectionPayload(),
    )


class TestEventSequence:
    """序号分配"""

    async def test_empty_document_max_sequence(self, stores):
        assert await stores.event_store.max_sequence(DOC_ID) == -1
        assert await stores.event_store.range(DOC_ID) == []

    async def test_sequences_start_at_zero(self, stores, append_shapes):
        events = await append_shapes(3)
        assert [e.sequence for e in events] == [0, 1, 2]
        assert await stores.event_store.max_sequence(DOC_ID) == 2
        assert await stores.event_store.count(DOC_ID) == 3

    async def test_sequences_continue_across_appends(self, stores, append_shapes):
        await append_shapes(2)
        events = await append_shapes(2)
        assert [e.sequence for e in events] == [2, 3]

    async def test_documents_have_independent_sequences(self, stores, append_shapes):
        await append_shapes(4, "doc-a")
        events = await append_shapes(1, "doc-b")
        assert events[0].sequence == 0

    async def test_event_ids_are_unique(self, append_shapes):
        events = await append_shapes(5)
        assert len({e.event_id for e in events}) == 5


class TestEventRange:
    """区间查询"""

    async def test_range_is_inclusive(self, stores, append_shapes):
        await append_shapes(10)
        events = await stores.event_store.range(DOC_ID, 3, 6)
        assert [e.sequence for e in events] == [3, 4, 5, 6]

    async def test_range_open_end(self, stores, append_shapes):
        await append_shapes(5)
        events = await stores.event_store.range(DOC_ID, 2)
        assert [e.sequence for e in events] == [2, 3, 4]

    async def test_round_trip_preserves_payload(self, stores, append_shapes):
        written = await append_shapes(2)
        read = await stores.event_store.range(DOC_ID, 0, 1)
        assert read[0].payload == written[0].payload
        assert read[1].type == EventType.MOVE_OBJECT


class TestEventIntegrity:
    """写入约束与降级读取"""

    async def test_duplicate_sequence_raises_conflict(self, stores, append_shapes):
        await append_shapes(1)
        with pytest.raises(SequenceConflictError):
            await stores.event_store._insert(DOC_ID, [_event(0)])
        await stores.conn.rollback()

    async def test_insert_events_requires_contiguous_sequences(self, stores, append_shapes):
        await append_shapes(2)
        with pytest.raises(SequenceGapError) as exc_info:
            await stores.event_store.insert_events(DOC_ID, [_event(3)])
        assert exc_info.value.expected == 2
        assert exc_info.value.actual == 3

    async def test_insert_events_appends_batch(self, stores):
        await stores.metadata_store.ensure(DOC_ID)
        await stores.event_store.insert_events(DOC_ID, [_event(0), _event(1)])
        await stores.conn.commit()
        assert await stores.event_store.max_sequence(DOC_ID) == 1

    async def test_failed_append_rolls_back(self, stores, append_shapes, monkeypatch):
        """事务内失败不留下半写入的事件"""
        await append_shapes(1)
        original_append = stores.event_store.append

        async def failing_append(document_id, payloads):
            await original_append(document_id, payloads)
            raise RuntimeError("simulated failure after insert")

        monkeypatch.setattr(stores.event_store, "append", failing_append)
        with pytest.raises(RuntimeError):
            await append_events(
                stores.conn,
                stores.metadata_store,
                stores.event_store,
                DOC_ID,
                [ClearSelectionPayload(), ClearSelectionPayload()],
            )
        monkeypatch.undo()
        assert await stores.event_store.max_sequence(DOC_ID) == 0

    async def test_corrupted_payload_decodes_as_unknown(self, stores, append_shapes):
        await append_shapes(3)
        await stores.conn.execute(
            "UPDATE events SET event_payload = ? WHERE document_id = ? AND event_sequence = ?",
            ("{broken", DOC_ID, 1),
        )
        await stores.conn.commit()

        events = await stores.event_store.range(DOC_ID)
        assert len(events) == 3
        assert isinstance(events[1].payload, UnknownPayload)
        assert events[0].is_decodable and events[2].is_decodable

    async def test_unknown_event_type_maps_to_unknown(self, stores, append_shapes):
        await append_shapes(1)
        await stores.conn.execute(
            "UPDATE events SET event_type = 'rotate_object' WHERE document_id = ?",
            (DOC_ID,),
        )
        await stores.conn.commit()
        (event,) = await stores.event_store.range(DOC_ID)
        assert event.type == EventType.UNKNOWN
        assert isinstance(event.payload, UnknownPayload)

    async def test_find_sequence_gaps(self, stores, append_shapes):
        await append_shapes(5)
        assert await stores.event_store.find_sequence_gaps(DOC_ID) == []
        await stores.conn.execute(
            "DELETE FROM events WHERE document_id = ? AND event_sequence IN (1, 3)",
            (DOC_ID,),
        )
        await stores.conn.commit()
        assert await stores.event_store.find_sequence_gaps(DOC_ID) == [1, 3]
