"""CLI 命令测试（直接调用命令协程；main 仅验证参数解析）"""

import sys
from datetime import UTC, datetime
from pathlib import Path

import inkwell.core.__main__ as cli
import pytest
from inkwell.core.__main__ import check_integrity, main, prune_snapshots, replay_document
from inkwell.core.models import DocumentState, Snapshot
from inkwell.core.replayer import EventReplayer
from inkwell.core.snapshot_manager import SnapshotManager

DOC_ID = "doc1"


async def _snapshots(stores, append_shapes, sequences: list[int]) -> None:
    await append_shapes(max(sequences) + 1)
    manager = SnapshotManager()
    for seq in sequences:
        state = (await EventReplayer(stores).replay(DOC_ID, seq)).state
        await manager.create_snapshot(stores.snapshot_store, DOC_ID, seq, state)
    await stores.conn.commit()


class TestReplayCommand:
    async def test_replay_prints_summary(self, core_db_path: Path, append_shapes, capsys):
        await append_shapes(5)
        assert await replay_document(DOC_ID, 3, str(core_db_path)) == 0
        out = capsys.readouterr().out
        assert "序号: 3 / 4" in out
        assert "形状: 1" in out

    async def test_replay_empty_document(self, core_db_path: Path, stores, capsys):
        assert await replay_document("missing", None, str(core_db_path)) == 1
        assert "没有事件" in capsys.readouterr().out

    async def test_default_db_path_from_env(
        self, core_db_path: Path, append_shapes, monkeypatch, capsys
    ):
        await append_shapes(2)
        monkeypatch.setenv("INKWELL_DB_PATH", str(core_db_path))
        assert await replay_document(DOC_ID, None) == 0
        out = capsys.readouterr().out
        assert f"数据库路径: {core_db_path}" in out
        assert "序号: 1 / 1" in out


class TestCheckIntegrity:
    async def test_clean_document(self, core_db_path: Path, stores, append_shapes, capsys):
        await _snapshots(stores, append_shapes, [4, 9])
        assert await check_integrity(str(core_db_path)) == 0
        out = capsys.readouterr().out
        assert "完整性检查通过" in out
        assert f"{DOC_ID}: 10 条事件检查完成" in out

    async def test_corrupted_snapshot_is_reported(
        self, core_db_path: Path, stores, append_shapes, capsys
    ):
        await append_shapes(3)
        await stores.snapshot_store.put(
            Snapshot(
                document_id=DOC_ID,
                sequence=2,
                payload=b'{"paths": {}}',
                checksum="0" * 64,
                created_at=datetime.now(UTC),
            )
        )
        await stores.conn.commit()

        assert await check_integrity(str(core_db_path)) == 2
        out = capsys.readouterr().out
        assert "快照 2 损坏 (checksum mismatch)" in out

    async def test_snapshot_diverging_from_events_is_reported(
        self, core_db_path: Path, stores, append_shapes, capsys
    ):
        """校验和正确但内容与事件冷回放不一致的快照"""
        await append_shapes(4)
        await SnapshotManager().create_snapshot(
            stores.snapshot_store, DOC_ID, 3, DocumentState()
        )
        await stores.conn.commit()

        assert await check_integrity(str(core_db_path)) == 2
        assert "快照 3 与事件回放结果不一致" in capsys.readouterr().out


class TestPruneSnapshots:
    async def test_keeps_latest(self, core_db_path: Path, stores, append_shapes, capsys):
        await _snapshots(stores, append_shapes, [2, 5, 8, 11])
        assert await prune_snapshots(DOC_ID, 2, str(core_db_path)) == 0
        assert "已删除 2 个快照" in capsys.readouterr().out
        assert await stores.snapshot_store.list_sequences(DOC_ID) == [8, 11]


class TestMain:
    """参数解析与默认数据库路径"""

    @pytest.fixture(autouse=True)
    def _quiet_logging(self, monkeypatch):
        monkeypatch.setattr(cli, "setup_logging", lambda: None)

    def test_usage_without_command(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["inkwell.core"])
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 1
        assert "用法" in capsys.readouterr().out

    def test_check_integrity_uses_env_db_path(self, tmp_path, monkeypatch, capsys):
        db_path = tmp_path / "env" / "default.inkwell"
        monkeypatch.setenv("INKWELL_DB_PATH", str(db_path))
        monkeypatch.setattr(sys, "argv", ["inkwell.core", "check-integrity"])
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 0
        assert f"数据库路径: {db_path}" in capsys.readouterr().out
        assert db_path.exists()

    def test_db_option_overrides_env(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setenv("INKWELL_DB_PATH", str(tmp_path / "unused.inkwell"))
        explicit = tmp_path / "explicit.inkwell"
        monkeypatch.setattr(
            sys, "argv", ["inkwell.core", "--db", str(explicit), "check-integrity"]
        )
        with pytest.raises(SystemExit):
            main()
        assert f"数据库路径: {explicit}" in capsys.readouterr().out
        assert not (tmp_path / "unused.inkwell").exists()
