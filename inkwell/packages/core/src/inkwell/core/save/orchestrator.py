"""Save Orchestrator -- 事务化保存与检查点

保存流程：
1. 同一文档已有保存进行中时直接拒绝（在任何 await 之前判断）
2. 设置保存标志，获取文档写锁
3. 单事务内：upsert 元数据 -> 写入待持久化事件 -> 按节奏创建快照 -> 更新 modified_at
4. 提交（失败回滚）后执行 PRAGMA wal_checkpoint(TRUNCATE)
5. 记录 last_persisted_sequence，返回 SaveSuccess

失败不抛异常，统一转换为 SaveFailure。
"""

import time
from collections.abc import Sequence
from pathlib import Path

import structlog

from ..config import SNAPSHOT_KEEP_COUNT
from ..exceptions import IllegalStateError, InvalidSequenceError
from ..models.document import DocumentState
from ..models.enums import DirtyState, SaveErrorType
from ..models.event import Event
from ..models.save import SaveFailure, SaveResult, SaveSuccess
from ..snapshot_manager import SnapshotManager
from ..store import wal_checkpoint
from .errors import map_storage_error, save_failure
from .session import DocumentSession, DocumentSessionRegistry, normalize_path

log = structlog.get_logger()

_SAVE_IN_PROGRESS = (
    "A save operation is already in progress for this document. "
    "Wait for it to finish and try again."
)


class SaveOrchestrator:
    """保存编排服务"""

    def __init__(
        self,
        sessions: DocumentSessionRegistry,
        snapshot_manager: SnapshotManager | None = None,
        snapshot_keep_count: int = SNAPSHOT_KEEP_COUNT,
    ) -> None:
        self._sessions = sessions
        self._snapshots = snapshot_manager or SnapshotManager()
        self._snapshot_keep_count = snapshot_keep_count

    @property
    def sessions(self) -> DocumentSessionRegistry:
        return self._sessions

    async def open_document(
        self,
        document_id: str,
        path: str | Path | None = None,
    ) -> DocumentSession:
        return await self._sessions.get_or_open(document_id, path)

    async def save(
        self,
        document_id: str,
        current_sequence: int,
        state: DocumentState,
        title: str = "Untitled",
        events: Sequence[Event] = (),
    ) -> SaveResult:
        """保存到文档已绑定的路径

        Args:
            document_id: 文档 ID
            current_sequence: 当前导航位置（保存后即为持久化序号）
            state: current_sequence 处的文档状态（快照使用）
            title: 文档标题
            events: 尚未写入文档数据库的事件（已存在的序号会被忽略）
        """
        session = self._sessions.get(document_id)
        if session is None or session.path is None:
            failure = save_failure(
                SaveErrorType.PATH_RESOLUTION,
                technical_details=f"document {document_id} has no file path",
            )
            await self._log_failure(document_id, failure)
            return failure

        rejected = self._reject_if_saving(session)
        if rejected is not None:
            return rejected

        session.saving = True
        try:
            async with session.lock:
                try:
                    return await self._commit(session, current_sequence, state, title, events)
                except Exception as exc:
                    failure = map_storage_error(exc, str(session.path))
                    await self._log_failure(document_id, failure)
                    return failure
        finally:
            session.saving = False

    async def save_as(
        self,
        document_id: str,
        path: str | Path,
        current_sequence: int,
        state: DocumentState,
        title: str = "Untitled",
        events: Sequence[Event] = (),
    ) -> SaveResult:
        """另存为：切换文档文件并携带完整历史

        路径变化时先从旧连接读出全部事件，关闭旧连接，再打开新文件批量写入。
        新文件写入失败时恢复到旧文件（内存文档则用携带的事件重建内存库）。
        """
        session = self._sessions.get(document_id)
        if session is None:
            failure = save_failure(
                SaveErrorType.PATH_RESOLUTION,
                technical_details=f"document {document_id} is not open",
            )
            await self._log_failure(document_id, failure)
            return failure

        rejected = self._reject_if_saving(session)
        if rejected is not None:
            return rejected

        session.saving = True
        try:
            async with session.lock:
                try:
                    target = normalize_path(path)
                except (ValueError, OSError) as exc:
                    failure = save_failure(
                        SaveErrorType.PATH_RESOLUTION,
                        technical_details=f"{type(exc).__name__}: {exc}",
                        file_path=str(path),
                    )
                    await self._log_failure(document_id, failure)
                    return failure

                previous_db_path = session.stores.db_path
                previous_path = session.path
                carried: list[Event] = []
                switched = False
                try:
                    target.parent.mkdir(parents=True, exist_ok=True)
                    if target != session.path:
                        carried = await session.stores.event_store.range(document_id, 0)
                        switched = True
                        await session.stores.reopen(str(target))
                        session.path = target
                        await log.ainfo(
                            "document_file_switched",
                            document_id=document_id,
                            from_path=previous_db_path,
                            to_path=str(target),
                            carried_events=len(carried),
                        )
                    return await self._commit(
                        session, current_sequence, state, title, [*carried, *events]
                    )
                except Exception as exc:
                    failure = map_storage_error(exc, str(target))
                    await self._log_failure(document_id, failure)
                    if switched:
                        await self._restore(session, previous_db_path, previous_path, carried)
                    return failure
        finally:
            session.saving = False

    def check_dirty_state(self, document_id: str, current_sequence: int) -> DirtyState:
        """脏状态判断（不访问存储）"""
        session = self._sessions.get(document_id)
        if session is None:
            return DirtyState.UNSAVED
        return session.dirty_state(current_sequence)

    def current_path(self, document_id: str) -> Path | None:
        session = self._sessions.get(document_id)
        return session.path if session is not None else None

    async def close_document(self, document_id: str) -> bool:
        """关闭文档连接并移除会话"""
        return await self._sessions.close(document_id)

    def _reject_if_saving(self, session: DocumentSession) -> SaveFailure | None:
        if not session.saving:
            return None
        log.warning("save_rejected", document_id=session.document_id, reason="in_progress")
        return save_failure(
            SaveErrorType.TRANSACTION_FAILED,
            technical_details="concurrent save rejected",
            file_path=str(session.path) if session.path else None,
            user_message=_SAVE_IN_PROGRESS,
        )

    async def _commit(
        self,
        session: DocumentSession,
        current_sequence: int,
        state: DocumentState,
        title: str,
        events: Sequence[Event],
    ) -> SaveSuccess:
        """单事务写入元数据、事件与快照，提交后强制 WAL 检查点"""
        start_time = time.monotonic()
        document_id = session.document_id
        stores = session.stores
        path = session.path
        if path is None:
            raise IllegalStateError(f"document {document_id} has no file path")
        snapshot_created = False

        try:
            await stores.metadata_store.upsert(document_id, title)
            max_sequence = await stores.event_store.max_sequence(document_id)
            pending = [e for e in events if e.sequence > max_sequence]
            await stores.event_store.insert_events(document_id, pending)
            if pending:
                max_sequence = pending[-1].sequence
            if current_sequence > max_sequence:
                raise InvalidSequenceError(current_sequence, max_sequence)

            if current_sequence >= 0:
                last_snapshot = await stores.snapshot_store.latest_sequence(document_id)
                if self._snapshots.should_snapshot(
                    current_sequence,
                    last_snapshot_sequence=last_snapshot,
                    object_count=state.object_count,
                    events_per_second=self._snapshots.rate_tracker.events_per_second(),
                ):
                    await self._snapshots.create_snapshot(
                        stores.snapshot_store, document_id, current_sequence, state
                    )
                    snapshot_created = True
            if self._snapshot_keep_count > 0:
                await stores.snapshot_store.prune(document_id, self._snapshot_keep_count)

            await stores.metadata_store.touch(document_id)
            await stores.conn.commit()
        except Exception:
            await stores.conn.rollback()
            raise

        await wal_checkpoint(stores.conn)
        session.last_persisted_sequence = current_sequence

        result = SaveSuccess(
            file_path=str(path),
            sequence=current_sequence,
            event_count=len(pending),
            file_size_bytes=path.stat().st_size,
            duration_ms=int((time.monotonic() - start_time) * 1000),
            snapshot_created=snapshot_created,
        )
        await log.ainfo(
            "save_completed",
            document_id=document_id,
            file_path=result.file_path,
            sequence=result.sequence,
            event_count=result.event_count,
            file_size_bytes=result.file_size_bytes,
            duration_ms=result.duration_ms,
            snapshot_created=snapshot_created,
        )
        return result

    async def _restore(
        self,
        session: DocumentSession,
        db_path: str,
        path: Path | None,
        carried: list[Event],
    ) -> None:
        """另存为失败后回到原文件；原为内存文档时用携带的事件重建"""
        document_id = session.document_id
        try:
            await session.stores.reopen(db_path)
            if session.stores.is_memory and carried:
                await session.stores.metadata_store.ensure(document_id)
                await session.stores.event_store.insert_events(document_id, carried)
                await session.stores.conn.commit()
        except Exception as exc:
            await log.aerror(
                "save_as_restore_failed",
                document_id=document_id,
                db_path=db_path,
                error=str(exc),
            )
            raise
        session.path = path
        await log.ainfo(
            "save_as_restored",
            document_id=document_id,
            db_path=db_path,
            restored_events=len(carried),
        )

    async def _log_failure(self, document_id: str, failure: SaveFailure) -> None:
        await log.aerror(
            "save_failed",
            document_id=document_id,
            error_type=failure.error_type.value,
            file_path=failure.file_path,
            technical_details=failure.technical_details,
        )
