"""枚举定义 -- 事件类型、快照压缩、保存错误分类、脏状态

EventType 与 payload 的 kind 一一对应；
SaveErrorType 是保存失败的封闭分类集合。
"""

from enum import StrEnum


class EventType(StrEnum):
    """事件类型 -- 与 payload.kind 取值一致"""

    # 路径
    CREATE_PATH = "create_path"
    ADD_ANCHOR = "add_anchor"
    FINISH_PATH = "finish_path"
    MODIFY_ANCHOR = "modify_anchor"

    # 对象
    CREATE_SHAPE = "create_shape"
    MOVE_OBJECT = "move_object"
    DELETE_OBJECT = "delete_object"
    MODIFY_STYLE = "modify_style"

    # 选择
    SELECT_OBJECTS = "select_objects"
    DESELECT_OBJECTS = "deselect_objects"
    CLEAR_SELECTION = "clear_selection"

    # 操作分组标记
    START_GROUP = "start_group"
    END_GROUP = "end_group"

    # 重做分支截断标记
    HISTORY_REWOUND = "history_rewound"

    # 无法解析的持久化 payload
    UNKNOWN = "unknown"


# 不属于用户可见编辑的事件类型（分组与历史标记）
MARKER_TYPES: set[EventType] = {
    EventType.START_GROUP,
    EventType.END_GROUP,
    EventType.HISTORY_REWOUND,
}


class ShapeType(StrEnum):
    """参数化图形类型"""

    RECTANGLE = "rectangle"
    ELLIPSE = "ellipse"
    POLYGON = "polygon"
    STAR = "star"


class CompressionType(StrEnum):
    """快照 payload 压缩标记"""

    NONE = "none"
    GZIP = "gzip"


class EditingActivity(StrEnum):
    """编辑活跃度分类（用于自适应快照间隔）"""

    BURST = "burst"
    NORMAL = "normal"
    IDLE = "idle"


class ReplayWarningKind(StrEnum):
    """回放非致命告警类型"""

    SNAPSHOT_CORRUPTED = "snapshot_corrupted"
    EVENT_SKIPPED = "event_skipped"
    TARGET_CLAMPED = "target_clamped"


class DirtyState(StrEnum):
    """文档脏状态 -- 供 UI 保存提示使用"""

    CLEAN = "clean"
    DIRTY = "dirty"
    UNSAVED = "unsaved"


class SaveErrorType(StrEnum):
    """保存失败分类（封闭集合）"""

    DISK_FULL = "disk_full"
    PERMISSION_DENIED = "permission_denied"
    CORRUPTION = "corruption"
    LOCK_TIMEOUT = "lock_timeout"
    PATH_RESOLUTION = "path_resolution"
    METADATA_MISSING = "metadata_missing"
    TRANSACTION_FAILED = "transaction_failed"
    UNKNOWN = "unknown"
