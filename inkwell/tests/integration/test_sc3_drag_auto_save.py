"""端到端：采样拖拽 → 自动保存 → 重新打开后状态一致"""

import asyncio
from pathlib import Path

from inkwell.core.models import (
    CreateShapePayload,
    DirtyState,
    EventType,
    MoveObjectPayload,
    Point,
    ShapeType,
)
from inkwell.core.replayer import EventReplayer
from inkwell.core.sampling import EventSampler
from inkwell.core.store import create_store_group

DOC_ID = "sketch"


class TestDragAutoSave:
    async def test_sampled_drag_is_auto_saved(self, orchestrator, open_editor, tmp_path: Path):
        editor = await open_editor(
            DOC_ID,
            tmp_path / "sketch",
            sampler=EventSampler(interval_ms=60_000),
            auto_save_idle_ms=30,
        )
        await editor.operation(
            "Draw Rectangle",
            CreateShapePayload(shape_id="rect", shape_type=ShapeType.RECTANGLE),
        )

        # 节流间隔很长：首个样本立即录入，其余样本合并到结束操作时落盘
        await editor.recorder.start_operation("Drag")
        for _ in range(30):
            await editor.recorder.record(
                MoveObjectPayload(object_ids=["rect"], delta=Point(x=1, y=2))
            )
        await editor.recorder.end_operation()

        events = await editor.session.stores.event_store.range(DOC_ID)
        moves = [e for e in events if e.type == EventType.MOVE_OBJECT]
        assert len(moves) == 2
        current = editor.navigator.current_sequence

        for _ in range(200):
            if orchestrator.check_dirty_state(DOC_ID, current) == DirtyState.CLEAN:
                break
            await asyncio.sleep(0.01)
        assert orchestrator.check_dirty_state(DOC_ID, current) == DirtyState.CLEAN
        assert editor.auto_save.last_saved_sequence == current

        await editor.auto_save.stop()
        await orchestrator.close_document(DOC_ID)
        stores = await create_store_group(tmp_path / "sketch.inkwell")
        try:
            state = (await EventReplayer(stores).replay(DOC_ID, current)).state
            assert state.shapes["rect"].position == Point(x=30, y=60)
        finally:
            await stores.close()

    async def test_manual_save_flushes_pending_auto_save(
        self, orchestrator, open_editor, tmp_path: Path
    ):
        editor = await open_editor(DOC_ID, tmp_path / "sketch", auto_save_idle_ms=60_000)
        await editor.operation(
            "Draw Ellipse",
            CreateShapePayload(shape_id="oval", shape_type=ShapeType.ELLIPSE),
        )
        assert editor.auto_save.has_pending_changes

        result = await editor.auto_save.flush()
        assert result.ok
        assert result.sequence == editor.navigator.current_sequence
        assert orchestrator.check_dirty_state(DOC_ID, result.sequence) == DirtyState.CLEAN
