"""集成测试共享 fixture"""

from collections.abc import AsyncGenerator

import pytest_asyncio
from inkwell.core.config import SnapshotTuningConfig
from inkwell.core.grouping import OperationGroupingService
from inkwell.core.navigator import UndoNavigator
from inkwell.core.recorder import EventRecorder
from inkwell.core.sampling import EventSampler
from inkwell.core.save import (
    AutoSaveManager,
    DocumentSession,
    DocumentSessionRegistry,
    SaveOrchestrator,
)
from inkwell.core.snapshot_manager import SnapshotManager


class Editor:
    """把一个文档会话上的 Recorder / Navigator（以及可选的自动保存）组装在一起"""

    def __init__(
        self,
        session: DocumentSession,
        orchestrator: SaveOrchestrator,
        sampler: EventSampler | None = None,
        auto_save_idle_ms: int | None = None,
    ) -> None:
        self.session = session
        self.navigator = UndoNavigator(session.document_id, session.stores)
        self.recorder = EventRecorder(
            session.document_id,
            session.stores,
            OperationGroupingService(idle_threshold_ms=60_000),
            navigator=self.navigator,
            lock=session.lock,
            sampler=sampler,
        )
        self.auto_save: AutoSaveManager | None = None
        if auto_save_idle_ms is not None:
            self.auto_save = AutoSaveManager(
                orchestrator,
                session.document_id,
                self.navigator.current_position,
                idle_ms=auto_save_idle_ms,
            )
            self.recorder.add_listener(self.auto_save.on_events_recorded)

    async def operation(self, label: str, *payloads) -> None:
        await self.recorder.start_operation(label)
        for payload in payloads:
            await self.recorder.record(payload)
        await self.recorder.end_operation()


@pytest_asyncio.fixture
async def orchestrator() -> AsyncGenerator[SaveOrchestrator, None]:
    registry = DocumentSessionRegistry()
    yield SaveOrchestrator(
        registry,
        SnapshotManager(SnapshotTuningConfig(base_interval=25)),
        snapshot_keep_count=3,
    )
    await registry.close_all()


@pytest_asyncio.fixture
async def open_editor(orchestrator):
    """打开（或新建）文档并返回已初始化的 Editor"""
    editors: list[Editor] = []

    async def _open(document_id: str, path=None, **options) -> Editor:
        session = await orchestrator.open_document(document_id, path)
        editor = Editor(session, orchestrator, **options)
        await editor.navigator.initialize()
        editors.append(editor)
        return editor

    yield _open
    for editor in editors:
        if editor.auto_save is not None:
            await editor.auto_save.stop()
