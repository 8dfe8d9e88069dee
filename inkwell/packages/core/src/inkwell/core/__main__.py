"""CLI 入口模块 -- python -m inkwell.core [--db <path>] <command>

支持的命令：
  replay <document_id> [sequence]       回放到指定序号并打印状态摘要
  check-integrity                       检查序号连续性、快照与数据库完整性
  prune-snapshots <document_id> [keep]  仅保留最新的 keep 个快照

未指定 --db 时使用 get_db_path()（INKWELL_DB_PATH 环境变量）。
"""

import asyncio
import sys

from .config import SNAPSHOT_KEEP_COUNT, get_db_path
from .logging_config import bind_document_context, clear_document_context, setup_logging

_USAGE = """用法: python -m inkwell.core [--db <path>] <command>
命令:
  replay <document_id> [sequence]       回放到指定序号（默认最新）
  check-integrity                       检查文档完整性
  prune-snapshots <document_id> [keep]  裁剪旧快照（默认保留 3 个）"""


def main() -> None:
    """CLI 主入口"""
    argv = sys.argv[1:]
    db_path = None
    if len(argv) >= 2 and argv[0] == "--db":
        db_path, argv = argv[1], argv[2:]
    if not argv:
        print(_USAGE)
        sys.exit(1)

    setup_logging()
    command, args = argv[0], argv[1:]

    if command == "replay" and args:
        sequence = int(args[1]) if len(args) > 1 else None
        exit_code = asyncio.run(replay_document(args[0], sequence, db_path))
    elif command == "check-integrity":
        exit_code = asyncio.run(check_integrity(db_path))
    elif command == "prune-snapshots" and args:
        keep = int(args[1]) if len(args) > 1 else (SNAPSHOT_KEEP_COUNT or 3)
        exit_code = asyncio.run(prune_snapshots(args[0], keep, db_path))
    else:
        print(f"未知命令或参数不足: {command}")
        print(_USAGE)
        exit_code = 1
    sys.exit(exit_code)


async def replay_document(
    document_id: str, sequence: int | None, db_path: str | None = None
) -> int:
    """回放并打印状态摘要与告警"""
    from .replayer import EventReplayer
    from .store import create_store_group

    db_path = db_path or get_db_path()
    print(f"数据库路径: {db_path}")
    store_group = await create_store_group(db_path)
    bind_document_context(document_id)
    try:
        max_sequence = await store_group.event_store.max_sequence(document_id)
        if max_sequence < 0:
            print(f"文档 {document_id} 没有事件")
            return 1
        target = max_sequence if sequence is None else sequence
        result = await EventReplayer(store_group).replay(document_id, target)

        print(f"文档: {document_id}")
        print(f"序号: {result.sequence} / {max_sequence}")
        print(f"起始快照: {result.base_sequence if result.base_sequence >= 0 else '无'}")
        print(f"应用事件: {result.events_applied}，耗时 {result.duration_ms}ms")
        print(f"路径: {len(result.state.paths)}，形状: {len(result.state.shapes)}")
        print(f"选中: {', '.join(result.state.selection) or '无'}")
        for warning in result.warnings:
            print(f"[{warning.kind.value}] {warning.message}")
        return 0
    finally:
        clear_document_context()
        await store_group.close()


async def check_integrity(db_path: str | None = None) -> int:
    """检查全部文档，发现问题时返回非零退出码

    每个可解码的快照都与从空文档冷回放到同一序号的状态比对。
    """
    from .exceptions import SnapshotCorruptedError
    from .projection import rebuild_state
    from .snapshot_manager import SnapshotSerializer
    from .store import create_store_group

    db_path = db_path or get_db_path()
    print(f"数据库路径: {db_path}")
    store_group = await create_store_group(db_path)
    serializer = SnapshotSerializer()
    problems = 0
    try:
        cursor = await store_group.conn.execute("PRAGMA integrity_check;")
        row = await cursor.fetchone()
        sqlite_status = row[0] if row else "unknown"
        print(f"SQLite integrity_check: {sqlite_status}")
        if sqlite_status != "ok":
            problems += 1

        for document_id in await store_group.metadata_store.list_document_ids():
            bind_document_context(document_id)
            gaps = await store_group.event_store.find_sequence_gaps(document_id)
            if gaps:
                problems += 1
                print(f"{document_id}: 序号缺失 {gaps[:10]}{' ...' if len(gaps) > 10 else ''}")

            events = await store_group.event_store.range(document_id)
            for seq in await store_group.snapshot_store.list_sequences(document_id):
                snapshot = await store_group.snapshot_store.get(document_id, seq)
                if snapshot is None:
                    continue
                try:
                    saved_state = serializer.deserialize(snapshot)
                except SnapshotCorruptedError as exc:
                    problems += 1
                    print(f"{document_id}: 快照 {seq} 损坏 ({exc.reason})")
                    continue
                if saved_state != rebuild_state([e for e in events if e.sequence <= seq]):
                    problems += 1
                    print(f"{document_id}: 快照 {seq} 与事件回放结果不一致")

            count = await store_group.event_store.count(document_id)
            print(f"{document_id}: {count} 条事件检查完成")
            clear_document_context()

        print("完整性检查通过" if problems == 0 else f"发现 {problems} 个问题")
        return 0 if problems == 0 else 2
    finally:
        clear_document_context()
        await store_group.close()


async def prune_snapshots(document_id: str, keep: int, db_path: str | None = None) -> int:
    """裁剪旧快照"""
    from .store import create_store_group, wal_checkpoint

    db_path = db_path or get_db_path()
    store_group = await create_store_group(db_path)
    bind_document_context(document_id)
    try:
        try:
            removed = await store_group.snapshot_store.prune(document_id, keep)
            await store_group.conn.commit()
        except Exception:
            await store_group.conn.rollback()
            raise
        await wal_checkpoint(store_group.conn)
        print(f"已删除 {removed} 个快照，保留最新 {keep} 个")
        return 0
    finally:
        clear_document_context()
        await store_group.close()


if __name__ == "__main__":
    main()
