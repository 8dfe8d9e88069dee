"""配置加载测试"""

import pytest
from inkwell.core.config import (
    SnapshotTuningConfig,
    get_data_dir,
    get_db_path,
    load_snapshot_tuning_config,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "INKWELL_DATA_DIR",
        "INKWELL_DB_PATH",
        "INKWELL_SNAPSHOT_BASE_INTERVAL",
        "INKWELL_SNAPSHOT_BURST_MULTIPLIER",
        "INKWELL_SNAPSHOT_BURST_THRESHOLD",
        "INKWELL_SNAPSHOT_IDLE_THRESHOLD",
    ):
        monkeypatch.delenv(name, raising=False)


class TestPaths:
    def test_default_db_path(self):
        assert get_db_path() == "data/documents/untitled.inkwell"

    def test_data_dir_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("INKWELL_DATA_DIR", str(tmp_path))
        assert get_data_dir() == tmp_path
        assert get_db_path() == str(tmp_path / "documents" / "untitled.inkwell")

    def test_db_path_override(self, monkeypatch):
        monkeypatch.setenv("INKWELL_DB_PATH", "/tmp/custom.inkwell")
        assert get_db_path() == "/tmp/custom.inkwell"


class TestSnapshotTuningConfig:
    def test_defaults(self):
        config = load_snapshot_tuning_config()
        assert config == SnapshotTuningConfig()
        assert config.base_interval == 1000
        assert config.max_interval == 16000

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("INKWELL_SNAPSHOT_BASE_INTERVAL", "250")
        monkeypatch.setenv("INKWELL_SNAPSHOT_BURST_MULTIPLIER", "0.25")
        config = load_snapshot_tuning_config()
        assert config.base_interval == 250
        assert config.burst_multiplier == 0.25

    @pytest.mark.parametrize("value", ["abc", "0", "-10", "1.5"])
    def test_invalid_value_falls_back(self, monkeypatch, value):
        monkeypatch.setenv("INKWELL_SNAPSHOT_BASE_INTERVAL", value)
        assert load_snapshot_tuning_config().base_interval == 1000

    def test_inverted_thresholds_fall_back_to_defaults(self, monkeypatch):
        monkeypatch.setenv("INKWELL_SNAPSHOT_BASE_INTERVAL", "500")
        monkeypatch.setenv("INKWELL_SNAPSHOT_BURST_THRESHOLD", "1")
        monkeypatch.setenv("INKWELL_SNAPSHOT_IDLE_THRESHOLD", "5")
        assert load_snapshot_tuning_config() == SnapshotTuningConfig()

    def test_model_rejects_inverted_thresholds(self):
        with pytest.raises(ValueError, match="burst_threshold"):
            SnapshotTuningConfig(burst_threshold=1.0, idle_threshold=2.0)
