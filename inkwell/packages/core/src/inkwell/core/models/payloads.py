"""Event Payload 子类型 -- 以 kind 字段区分的封闭标签联合

持久化 payload 无法解析时不抛异常，统一解码为 UnknownPayload，
由 Replayer 按单事件粒度跳过并告警。
"""

import json
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from .document import Point, Style
from .enums import EventType, ShapeType


class CreatePathPayload(BaseModel):
    """create_path 事件 payload"""

    kind: Literal["create_path"] = "create_path"
    path_id: str
    start_anchor: Point
    style: Style = Field(default_factory=Style)


class AddAnchorPayload(BaseModel):
    """add_anchor 事件 payload"""

    kind: Literal["add_anchor"] = "add_anchor"
    path_id: str
    position: Point
    handle_in: Point | None = None
    handle_out: Point | None = None


class FinishPathPayload(BaseModel):
    """finish_path 事件 payload"""

    kind: Literal["finish_path"] = "finish_path"
    path_id: str
    closed: bool = False


class ModifyAnchorPayload(BaseModel):
    """modify_anchor 事件 payload（拖拽锚点/控制柄的采样）"""

    kind: Literal["modify_anchor"] = "modify_anchor"
    path_id: str
    anchor_index: int = Field(ge=0)
    position: Point | None = None
    handle_in: Point | None = None
    handle_out: Point | None = None


class CreateShapePayload(BaseModel):
    """create_shape 事件 payload"""

    kind: Literal["create_shape"] = "create_shape"
    shape_id: str
    shape_type: ShapeType
    position: Point = Field(default_factory=Point)
    parameters: dict[str, float] = Field(default_factory=dict)
    style: Style = Field(default_factory=Style)


class MoveObjectPayload(BaseModel):
    """move_object 事件 payload"""

    kind: Literal["move_object"] = "move_object"
    object_ids: list[str]
    delta: Point


class DeleteObjectPayload(BaseModel):
    """delete_object 事件 payload"""

    kind: Literal["delete_object"] = "delete_object"
    object_ids: list[str]


class ModifyStylePayload(BaseModel):
    """modify_style 事件 payload -- 仅覆盖非 None 字段"""

    kind: Literal["modify_style"] = "modify_style"
    object_id: str
    fill: str | None = None
    stroke: str | None = None
    stroke_width: float | None = Field(default=None, ge=0)
    opacity: float | None = Field(default=None, ge=0, le=1)


class SelectObjectsPayload(BaseModel):
    """select_objects 事件 payload"""

    kind: Literal["select_objects"] = "select_objects"
    object_ids: list[str]
    additive: bool = False


class DeselectObjectsPayload(BaseModel):
    """deselect_objects 事件 payload"""

    kind: Literal["deselect_objects"] = "deselect_objects"
    object_ids: list[str]


class ClearSelectionPayload(BaseModel):
    """clear_selection 事件 payload"""

    kind: Literal["clear_selection"] = "clear_selection"


class StartGroupPayload(BaseModel):
    """start_group 标记 payload"""

    kind: Literal["start_group"] = "start_group"
    group_id: str
    label: str = Field(default="Operation", description="撤销菜单显示的操作名")


class EndGroupPayload(BaseModel):
    """end_group 标记 payload"""

    kind: Literal["end_group"] = "end_group"
    group_id: str
    label: str = Field(default="Operation")
    cancelled: bool = Field(default=False, description="操作是否被用户取消")


class HistoryRewoundPayload(BaseModel):
    """history_rewound 标记 payload

    撤销后录入新操作时写入：其后的状态以 to_sequence 处的状态为基础，
    被放弃的重做分支仍保留在 append-only 日志中。
    """

    kind: Literal["history_rewound"] = "history_rewound"
    to_sequence: int = Field(ge=-1)


class UnknownPayload(BaseModel):
    """无法解析的持久化 payload"""

    kind: Literal["unknown"] = "unknown"
    raw: str = Field(default="", description="原始 JSON 文本")
    error: str = Field(default="", description="解码错误信息")


EventPayload = Annotated[
    Union[
        CreatePathPayload,
        AddAnchorPayload,
        FinishPathPayload,
        ModifyAnchorPayload,
        CreateShapePayload,
        MoveObjectPayload,
        DeleteObjectPayload,
        ModifyStylePayload,
        SelectObjectsPayload,
        DeselectObjectsPayload,
        ClearSelectionPayload,
        StartGroupPayload,
        EndGroupPayload,
        HistoryRewoundPayload,
        UnknownPayload,
    ],
    Field(discriminator="kind"),
]

_payload_adapter: TypeAdapter[EventPayload] = TypeAdapter(EventPayload)


def payload_type(payload: BaseModel) -> EventType:
    """返回 payload 对应的 EventType"""
    return EventType(payload.kind)  # type: ignore[attr-defined]


def encode_payload(payload: BaseModel) -> str:
    """序列化 payload 为 JSON 文本（含 kind 字段）"""
    return json.dumps(payload.model_dump(mode="json"), ensure_ascii=False, sort_keys=True)


def decode_payload(event_type: str, raw: str) -> EventPayload:
    """解码持久化 payload

    任何解析/校验失败都返回 UnknownPayload，不向上抛出。

    Args:
        event_type: events 表中的 event_type 列
        raw: events 表中的 event_payload 列（JSON 文本）
    """
    try:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError(f"payload 不是 JSON 对象: {type(data).__name__}")
        if data.get("kind", event_type) != event_type:
            raise ValueError(
                f"payload kind {data.get('kind')!r} 与事件类型 {event_type!r} 不一致"
            )
        data["kind"] = event_type
        return _payload_adapter.validate_python(data)
    except (ValueError, TypeError) as exc:
        return UnknownPayload(raw=raw if isinstance(raw, str) else repr(raw), error=str(exc))
