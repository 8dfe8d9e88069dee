"""Auto Save -- 编辑空闲后的防抖自动保存

每次录入事件都会重置计时器，最后一次编辑后空闲 AUTO_SAVE_IDLE_MS 才保存；
手动保存前调用 flush()，取消计时器、等待进行中的自动保存并立即保存。
尚未绑定文件路径的文档（需要另存为）不会自动保存。
"""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable

import structlog

from ..config import AUTO_SAVE_IDLE_MS
from ..models.document import DocumentState
from ..models.enums import DirtyState
from ..models.event import Event
from ..models.save import SaveResult
from .orchestrator import SaveOrchestrator

log = structlog.get_logger()

# 返回当前导航位置及该处的文档状态
StateProvider = Callable[[], Awaitable[tuple[int, DocumentState]]]


class AutoSaveManager:
    """单文档自动保存"""

    def __init__(
        self,
        orchestrator: SaveOrchestrator,
        document_id: str,
        state_provider: StateProvider,
        idle_ms: int = AUTO_SAVE_IDLE_MS,
        title: str = "Untitled",
    ) -> None:
        self._orchestrator = orchestrator
        self.document_id = document_id
        self._state_provider = state_provider
        self._idle_s = idle_ms / 1000
        self.title = title
        self._timer: asyncio.Task[None] | None = None
        self._running: set[asyncio.Task[None]] = set()
        self._save_lock = asyncio.Lock()
        self._pending = False
        self._last_saved_sequence = -1

    @property
    def has_pending_changes(self) -> bool:
        return self._pending

    @property
    def last_saved_sequence(self) -> int:
        return self._last_saved_sequence

    def on_events_recorded(self, events: list[Event] | None = None) -> None:
        """录入事件后调用（可直接注册为 EventRecorder 监听器），重置防抖计时器"""
        self._pending = True
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.create_task(self._debounce())
        self._running.add(self._timer)
        self._timer.add_done_callback(self._running.discard)

    async def flush(self) -> SaveResult | None:
        """立即执行挂起的保存（手动保存前调用）

        Returns:
            本次保存结果；没有需要保存的变更时为 None
        """
        await self._cancel_timer()
        return await self._perform()

    async def stop(self) -> None:
        """取消计时器并等待进行中的保存结束"""
        await self._cancel_timer()
        async with self._save_lock:
            self._pending = False

    async def _debounce(self) -> None:
        await asyncio.sleep(self._idle_s)
        # 计时结束后不再响应取消，保存事务完整执行
        self._timer = None
        await self._perform()

    async def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is None:
            return
        timer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await timer

    async def _perform(self) -> SaveResult | None:
        async with self._save_lock:
            if not self._pending:
                return None
            session = self._orchestrator.sessions.get(self.document_id)
            if session is None or session.path is None:
                await log.adebug(
                    "auto_save_skipped", document_id=self.document_id, reason="no_file_path"
                )
                return None

            try:
                sequence, state = await self._state_provider()
            except Exception as e:
                await log.aerror(
                    "auto_save_failed", document_id=self.document_id, error=str(e)
                )
                raise

            if self._orchestrator.check_dirty_state(self.document_id, sequence) == (
                DirtyState.CLEAN
            ):
                self._pending = False
                return None

            result = await self._orchestrator.save(self.document_id, sequence, state, self.title)
            if result.ok:
                self._pending = False
                self._last_saved_sequence = sequence
                await log.ainfo(
                    "auto_save_completed", document_id=self.document_id, sequence=sequence
                )
            else:
                await log.awarning(
                    "auto_save_failed",
                    document_id=self.document_id,
                    error_type=result.error_type,
                )
            return result
