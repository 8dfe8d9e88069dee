"""Event Replayer 测试

测试内容：
1. 快照 + 增量回放与全量冷回放结果一致（确定性）
2. 快照损坏时回退到更早快照 / 冷回放并给出告警
3. 单事件损坏跳过并告警，目标越界裁剪
4. history_rewound 把状态重置到目标序号
"""

from datetime import UTC, datetime

import pytest
from inkwell.core.exceptions import InvalidSequenceError
from inkwell.core.models import (
    CompressionType,
    HistoryRewoundPayload,
    MoveObjectPayload,
    Point,
    ReplayWarningKind,
    Snapshot,
)
from inkwell.core.projection import rebuild_state
from inkwell.core.replayer import EventReplayer
from inkwell.core.snapshot_manager import SnapshotManager
from inkwell.core.store import append_events

DOC_ID = "doc1"


async def _snapshot_at(stores, sequence: int) -> None:
    """用冷回放的结果在 sequence 处写入快照"""
    state = (await EventReplayer(stores).replay(DOC_ID, sequence)).state
    await SnapshotManager().create_snapshot(stores.snapshot_store, DOC_ID, sequence, state)
    await stores.conn.commit()


async def _corrupt_snapshot_at(stores, sequence: int) -> None:
    await stores.snapshot_store.put(
        Snapshot(
            document_id=DOC_ID,
            sequence=sequence,
            payload=b"garbage",
            compression=CompressionType.NONE,
            checksum="deadbeef",
            created_at=datetime.now(UTC),
        )
    )
    await stores.conn.commit()


def _x(result) -> float:
    return result.state.shapes["shape-0"].position.x


class TestReplayBasics:
    """基础回放"""

    async def test_empty_document(self, stores):
        result = await EventReplayer(stores).replay(DOC_ID, 0)
        assert result.sequence == -1
        assert result.state.object_count == 0
        assert result.events_applied == 0

    async def test_replay_to_sequence(self, stores, append_shapes):
        await append_shapes(20)
        result = await EventReplayer(stores).replay(DOC_ID, 12)
        assert result.sequence == 12
        assert result.base_sequence == -1
        assert result.events_applied == 13
        assert _x(result) == 12
        assert not result.has_warnings

    async def test_negative_target_raises(self, stores, append_shapes):
        await append_shapes(3)
        with pytest.raises(InvalidSequenceError):
            await EventReplayer(stores).replay(DOC_ID, -1)

    async def test_target_beyond_max_is_clamped(self, stores, append_shapes):
        await append_shapes(5)
        result = await EventReplayer(stores).replay(DOC_ID, 100)
        assert result.sequence == 4
        assert [w.kind for w in result.warnings] == [ReplayWarningKind.TARGET_CLAMPED]


class TestReplayDeterminism:
    """确定性：快照路径与冷回放一致"""

    async def test_snapshot_replay_equals_full_replay(self, stores, append_shapes):
        await append_shapes(60)
        cold = await EventReplayer(stores).replay(DOC_ID, 59)

        await _snapshot_at(stores, 30)
        warm = await EventReplayer(stores).replay(DOC_ID, 59)

        assert warm.base_sequence == 30
        assert warm.events_applied == 29
        assert warm.state == cold.state
        assert warm.state == rebuild_state(await stores.event_store.range(DOC_ID))

    async def test_repeated_replay_is_identical(self, stores, append_shapes):
        await append_shapes(25)
        first = await EventReplayer(stores).replay(DOC_ID, 24)
        second = await EventReplayer(stores).replay(DOC_ID, 24)
        assert first.state.model_dump() == second.state.model_dump()

    async def test_seek_cost_bounded_by_snapshot(self, stores, append_shapes):
        """1000 个事件、900 处快照，定位到 950 只回放 50 个事件"""
        await append_shapes(1000)
        await _snapshot_at(stores, 900)

        result = await EventReplayer(stores).replay(DOC_ID, 950)
        assert result.base_sequence == 900
        assert result.events_applied == 50
        assert _x(result) == 950

    async def test_replay_from_snapshot_state(self, stores, append_shapes):
        await append_shapes(10)
        replayer = EventReplayer(stores)
        base = await replayer.replay(DOC_ID, 4)
        result = await replayer.replay_from_snapshot(DOC_ID, base.state, 4, 9)
        assert result.events_applied == 5
        assert _x(result) == 9


class TestReplayDegradation:
    """损坏数据的降级处理"""

    async def test_corrupted_snapshot_falls_back_to_cold_replay(self, stores, append_shapes):
        """doc1 事件 0..49，序号 10 的快照损坏"""
        await append_shapes(50)
        expected = await EventReplayer(stores).replay(DOC_ID, 49)
        await _corrupt_snapshot_at(stores, 10)

        result = await EventReplayer(stores).replay(DOC_ID, 49)

        assert result.state == expected.state
        assert result.base_sequence == -1
        (warning,) = result.warnings
        assert warning.kind == ReplayWarningKind.SNAPSHOT_CORRUPTED
        assert warning.sequence == 10
        assert warning.recommendation

    async def test_corrupted_snapshot_falls_back_to_older_snapshot(
        self, stores, append_shapes
    ):
        await append_shapes(30)
        await _snapshot_at(stores, 10)
        await _corrupt_snapshot_at(stores, 20)

        result = await EventReplayer(stores).replay(DOC_ID, 25)
        assert result.base_sequence == 10
        assert _x(result) == 25
        assert [w.sequence for w in result.warnings] == [20]

    async def test_undecodable_event_is_skipped(self, stores, append_shapes):
        await append_shapes(10)
        await stores.conn.execute(
            "UPDATE events SET event_payload = '{oops' "
            "WHERE document_id = ? AND event_sequence = 5",
            (DOC_ID,),
        )
        await stores.conn.commit()

        result = await EventReplayer(stores).replay(DOC_ID, 9)
        assert result.skipped_sequences == [5]
        assert result.events_applied == 9
        assert _x(result) == 8
        assert result.warnings[0].kind == ReplayWarningKind.EVENT_SKIPPED

    async def test_inapplicable_event_is_skipped(self, stores, append_shapes):
        """引用不存在对象的事件跳过，其余事件照常应用"""
        await append_shapes(3)
        await append_events(
            stores.conn,
            stores.metadata_store,
            stores.event_store,
            DOC_ID,
            [
                MoveObjectPayload(object_ids=["missing"], delta=Point(x=1, y=1)),
                MoveObjectPayload(object_ids=["shape-0"], delta=Point(x=1, y=0)),
            ],
        )
        result = await EventReplayer(stores).replay(DOC_ID, 4)
        assert result.skipped_sequences == [3]
        assert _x(result) == 3


class TestHistoryRewound:
    """重做分支截断标记"""

    async def test_rewind_resets_state(self, stores, append_shapes):
        await append_shapes(5)  # x: 0..4
        await append_events(
            stores.conn,
            stores.metadata_store,
            stores.event_store,
            DOC_ID,
            [
                HistoryRewoundPayload(to_sequence=2),
                MoveObjectPayload(object_ids=["shape-0"], delta=Point(x=10, y=0)),
            ],
        )
        replayer = EventReplayer(stores)
        assert _x(await replayer.replay(DOC_ID, 4)) == 4
        assert _x(await replayer.replay(DOC_ID, 5)) == 2
        assert _x(await replayer.replay(DOC_ID, 6)) == 12

    async def test_rewind_to_empty_document(self, stores, append_shapes):
        await append_shapes(3)
        await append_events(
            stores.conn,
            stores.metadata_store,
            stores.event_store,
            DOC_ID,
            [HistoryRewoundPayload(to_sequence=-1)],
        )
        result = await EventReplayer(stores).replay(DOC_ID, 3)
        assert result.state.object_count == 0

    async def test_rewind_matches_cold_rebuild(self, stores, append_shapes):
        await append_shapes(8)
        await append_events(
            stores.conn,
            stores.metadata_store,
            stores.event_store,
            DOC_ID,
            [
                HistoryRewoundPayload(to_sequence=3),
                MoveObjectPayload(object_ids=["shape-0"], delta=Point(x=0, y=7)),
            ],
        )
        await _snapshot_at(stores, 9)
        await append_shapes(4)

        events = await stores.event_store.range(DOC_ID)
        result = await EventReplayer(stores).replay(DOC_ID, 13)
        assert result.base_sequence == 9
        assert result.state == rebuild_state(events)

    async def test_many_rewinds_replay_linearly(self, stores, append_shapes, monkeypatch):
        """多次撤销后再编辑：每个截断标记只嵌套回放一次"""
        await append_shapes(1)
        cycles = 24
        for _ in range(cycles):
            start = await stores.event_store.max_sequence(DOC_ID) + 1
            await append_events(
                stores.conn,
                stores.metadata_store,
                stores.event_store,
                DOC_ID,
                [
                    MoveObjectPayload(object_ids=["shape-0"], delta=Point(x=1, y=0)),
                    HistoryRewoundPayload(to_sequence=start - 1),
                    MoveObjectPayload(object_ids=["shape-0"], delta=Point(x=5, y=0)),
                ],
            )

        calls = 0
        original = EventReplayer._replay

        async def counting_replay(self, document_id, target_sequence):
            nonlocal calls
            calls += 1
            return await original(self, document_id, target_sequence)

        monkeypatch.setattr(EventReplayer, "_replay", counting_replay)
        max_sequence = await stores.event_store.max_sequence(DOC_ID)
        result = await EventReplayer(stores).replay(DOC_ID, max_sequence)

        assert _x(result) == cycles * 5
        assert calls <= cycles + 1
        assert result.skipped_sequences == []
        assert result.state == rebuild_state(await stores.event_store.range(DOC_ID))

    async def test_invalid_rewind_after_valid_one_is_skipped(self, stores, append_shapes):
        await append_shapes(4)  # x: 0..3
        await append_events(
            stores.conn,
            stores.metadata_store,
            stores.event_store,
            DOC_ID,
            [
                HistoryRewoundPayload(to_sequence=1),
                HistoryRewoundPayload(to_sequence=9),
            ],
        )
        result = await EventReplayer(stores).replay(DOC_ID, 5)
        assert _x(result) == 1
        assert result.skipped_sequences == [5]
