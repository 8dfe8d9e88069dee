"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、文档扩展名、操作分组阈值、缓存容量、延迟目标
以及快照自适应间隔（SnapshotTuningConfig）等可配置项。
"""

import os
from pathlib import Path

import structlog
from pydantic import BaseModel, Field, model_validator

log = structlog.get_logger()


def get_data_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("INKWELL_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取默认 SQLite 数据库路径（CLI 未指定时使用）"""
    return os.environ.get(
        "INKWELL_DB_PATH",
        str(get_data_dir() / "documents" / f"untitled{DOCUMENT_EXTENSION}"),
    )


# 文档文件扩展名
DOCUMENT_EXTENSION: str = ".inkwell"

# 操作分组空闲阈值（毫秒）
OPERATION_IDLE_THRESHOLD_MS: int = int(
    os.environ.get("INKWELL_OPERATION_IDLE_MS", "200")
)

# 连续拖拽采样间隔（毫秒，0 表示不采样）
EVENT_SAMPLING_INTERVAL_MS: int = int(
    os.environ.get("INKWELL_EVENT_SAMPLING_MS", "50")
)

# 自动保存防抖：最后一次编辑后空闲多久触发保存（毫秒）
AUTO_SAVE_IDLE_MS: int = int(os.environ.get("INKWELL_AUTO_SAVE_IDLE_MS", "200"))

# 撤销/重做导航 LRU 缓存容量
NAVIGATOR_CACHE_CAPACITY: int = int(
    os.environ.get("INKWELL_NAVIGATOR_CACHE_SIZE", "10")
)

# 历史拖动检查点间隔（事件数）
CHECKPOINT_INTERVAL: int = int(os.environ.get("INKWELL_CHECKPOINT_INTERVAL", "1000"))

# 历史拖动检查点内存预算（字节）
CHECKPOINT_MEMORY_BYTES: int = (
    int(os.environ.get("INKWELL_CHECKPOINT_MEMORY_MB", "100")) * 1024 * 1024
)

# 快照保留数量（0 表示不裁剪）
SNAPSHOT_KEEP_COUNT: int = int(os.environ.get("INKWELL_SNAPSHOT_KEEP_COUNT", "0"))

# 快照 payload 超过该字节数才启用 gzip
SNAPSHOT_COMPRESSION_THRESHOLD: int = 1024

# 延迟目标（毫秒）
REPLAY_LATENCY_TARGET_MS: float = 100.0
NAVIGATION_LATENCY_TARGET_MS: float = 80.0
SEEK_LATENCY_TARGET_MS: float = 50.0


class SnapshotTuningConfig(BaseModel):
    """快照自适应间隔配置 -- 从环境变量加载

    环境变量:
        INKWELL_SNAPSHOT_BASE_INTERVAL: 基础间隔（事件数，默认 1000）
        INKWELL_SNAPSHOT_BURST_MULTIPLIER: 高频编辑倍率（默认 0.5）
        INKWELL_SNAPSHOT_IDLE_MULTIPLIER: 低频编辑倍率（默认 2.0）
        INKWELL_SNAPSHOT_WINDOW_SECONDS: 编辑速率统计窗口（秒，默认 60）
        INKWELL_SNAPSHOT_BURST_THRESHOLD: 高频阈值（事件/秒，默认 20）
        INKWELL_SNAPSHOT_IDLE_THRESHOLD: 低频阈值（事件/秒，默认 2）
        INKWELL_SNAPSHOT_LARGE_DOCUMENT_OBJECTS: 大文档对象数阈值（默认 1000）
        INKWELL_SNAPSHOT_MAX_INTERVAL: 间隔上限（默认 16000）
    """

    base_interval: int = Field(default=1000, gt=0, description="基础快照间隔（事件数）")
    burst_multiplier: float = Field(default=0.5, gt=0)
    idle_multiplier: float = Field(default=2.0, gt=0)
    window_seconds: int = Field(default=60, gt=0)
    burst_threshold: float = Field(default=20.0, gt=0, description="事件/秒")
    idle_threshold: float = Field(default=2.0, gt=0, description="事件/秒")
    large_document_objects: int = Field(
        default=1000,
        gt=0,
        description="对象数达到该值后，每翻一倍间隔翻一倍",
    )
    max_interval: int = Field(default=16000, gt=0)

    @model_validator(mode="after")
    def _check_thresholds(self) -> "SnapshotTuningConfig":
        if self.burst_threshold <= self.idle_threshold:
            raise ValueError("burst_threshold must be greater than idle_threshold")
        return self


_TUNING_ENV: dict[str, tuple[str, type]] = {
    "INKWELL_SNAPSHOT_BASE_INTERVAL": ("base_interval", int),
    "INKWELL_SNAPSHOT_BURST_MULTIPLIER": ("burst_multiplier", float),
    "INKWELL_SNAPSHOT_IDLE_MULTIPLIER": ("idle_multiplier", float),
    "INKWELL_SNAPSHOT_WINDOW_SECONDS": ("window_seconds", int),
    "INKWELL_SNAPSHOT_BURST_THRESHOLD": ("burst_threshold", float),
    "INKWELL_SNAPSHOT_IDLE_THRESHOLD": ("idle_threshold", float),
    "INKWELL_SNAPSHOT_LARGE_DOCUMENT_OBJECTS": ("large_document_objects", int),
    "INKWELL_SNAPSHOT_MAX_INTERVAL": ("max_interval", int),
}


def load_snapshot_tuning_config() -> SnapshotTuningConfig:
    """从环境变量加载快照调优配置

    单项非法（非数字、非正数）时记录告警并使用该项默认值；
    阈值顺序非法时整体回退为默认配置，不阻塞启动。
    """
    defaults = SnapshotTuningConfig()
    kwargs: dict = {}

    for env_var, (field_name, cast) in _TUNING_ENV.items():
        val = os.environ.get(env_var)
        if val is None:
            continue
        try:
            parsed = cast(val)
            if parsed <= 0:
                raise ValueError(val)
            kwargs[field_name] = parsed
        except ValueError:
            log.warning(
                "invalid_snapshot_tuning_config",
                env_var=env_var,
                value=val,
                fallback=getattr(defaults, field_name),
            )

    try:
        return SnapshotTuningConfig(**kwargs)
    except ValueError as exc:
        log.warning(
            "invalid_snapshot_tuning_config",
            error=str(exc),
            fallback="defaults",
        )
        return defaults
