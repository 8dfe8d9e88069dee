"""Inkwell Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .document import AnchorPoint, DocumentState, Point, Shape, Style, VectorPath
from .enums import (
    MARKER_TYPES,
    CompressionType,
    DirtyState,
    EditingActivity,
    EventType,
    ReplayWarningKind,
    SaveErrorType,
    ShapeType,
)
from .event import Event
from .metadata import DocumentMetadata
from .operation import OperationGroup
from .payloads import (
    AddAnchorPayload,
    ClearSelectionPayload,
    CreatePathPayload,
    CreateShapePayload,
    DeleteObjectPayload,
    DeselectObjectsPayload,
    EndGroupPayload,
    EventPayload,
    FinishPathPayload,
    HistoryRewoundPayload,
    ModifyAnchorPayload,
    ModifyStylePayload,
    MoveObjectPayload,
    SelectObjectsPayload,
    StartGroupPayload,
    UnknownPayload,
    decode_payload,
    encode_payload,
    payload_type,
)
from .replay import ReplayResult, ReplayWarning
from .save import SaveFailure, SaveResult, SaveSuccess
from .snapshot import Snapshot, SnapshotTelemetry

__all__ = [
    # 枚举
    "EventType",
    "MARKER_TYPES",
    "ShapeType",
    "CompressionType",
    "EditingActivity",
    "ReplayWarningKind",
    "DirtyState",
    "SaveErrorType",
    # 文档状态
    "Point",
    "Style",
    "AnchorPoint",
    "VectorPath",
    "Shape",
    "DocumentState",
    "DocumentMetadata",
    # Event
    "Event",
    "EventPayload",
    "decode_payload",
    "encode_payload",
    "payload_type",
    # Payloads
    "CreatePathPayload",
    "AddAnchorPayload",
    "FinishPathPayload",
    "ModifyAnchorPayload",
    "CreateShapePayload",
    "MoveObjectPayload",
    "DeleteObjectPayload",
    "ModifyStylePayload",
    "SelectObjectsPayload",
    "DeselectObjectsPayload",
    "ClearSelectionPayload",
    "StartGroupPayload",
    "EndGroupPayload",
    "HistoryRewoundPayload",
    "UnknownPayload",
    # 回放 / 操作 / 快照 / 保存
    "ReplayResult",
    "ReplayWarning",
    "OperationGroup",
    "Snapshot",
    "SnapshotTelemetry",
    "SaveSuccess",
    "SaveFailure",
    "SaveResult",
]
