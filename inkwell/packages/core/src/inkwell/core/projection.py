"""Projection 模块 -- 事件到文档状态的纯函数投影

apply_event 不修改入参状态，总是返回新的 DocumentState；
相同的事件序列必然产出相同的状态，这是确定性回放的基础。
"""

import time

import structlog

from .exceptions import EventApplyError
from .models.document import AnchorPoint, DocumentState, Shape, Style, VectorPath
from .models.event import Event
from .models.payloads import (
    AddAnchorPayload,
    ClearSelectionPayload,
    CreatePathPayload,
    CreateShapePayload,
    DeleteObjectPayload,
    DeselectObjectsPayload,
    FinishPathPayload,
    HistoryRewoundPayload,
    ModifyAnchorPayload,
    ModifyStylePayload,
    MoveObjectPayload,
    SelectObjectsPayload,
    UnknownPayload,
)

log = structlog.get_logger()


def apply_event(state: DocumentState, event: Event) -> DocumentState:
    """将单个事件应用到文档状态（内存中操作，不修改入参）

    分组标记与 history_rewound 不改变状态；history_rewound 的
    状态重置由 Replayer 处理。

    Args:
        state: 当前文档状态
        event: 要应用的事件

    Returns:
        新的文档状态

    Raises:
        EventApplyError: payload 无法解析或引用了不存在的对象
    """
    payload = event.payload
    seq = event.sequence

    if isinstance(payload, UnknownPayload):
        raise EventApplyError(seq, f"undecodable payload: {payload.error}")

    if isinstance(payload, CreatePathPayload):
        if state.has_object(payload.path_id):
            raise EventApplyError(seq, f"object {payload.path_id} already exists")
        path = VectorPath(
            path_id=payload.path_id,
            anchors=[AnchorPoint(position=payload.start_anchor)],
            style=payload.style,
        )
        return state.model_copy(update={"paths": {**state.paths, path.path_id: path}})

    if isinstance(payload, AddAnchorPayload):
        path = _require_path(state, payload.path_id, seq)
        if path.finished:
            raise EventApplyError(seq, f"path {path.path_id} is already finished")
        anchor = AnchorPoint(
            position=payload.position,
            handle_in=payload.handle_in,
            handle_out=payload.handle_out,
        )
        return _replace_path(state, path.model_copy(update={"anchors": [*path.anchors, anchor]}))

    if isinstance(payload, FinishPathPayload):
        path = _require_path(state, payload.path_id, seq)
        return _replace_path(
            state, path.model_copy(update={"finished": True, "closed": payload.closed})
        )

    if isinstance(payload, ModifyAnchorPayload):
        path = _require_path(state, payload.path_id, seq)
        if payload.anchor_index >= len(path.anchors):
            raise EventApplyError(
                seq,
                f"anchor {payload.anchor_index} out of range for path {path.path_id}",
            )
        anchor = path.anchors[payload.anchor_index]
        changes = {
            name: value
            for name, value in (
                ("position", payload.position),
                ("handle_in", payload.handle_in),
                ("handle_out", payload.handle_out),
            )
            if value is not None
        }
        anchors = list(path.anchors)
        anchors[payload.anchor_index] = anchor.model_copy(update=changes)
        return _replace_path(state, path.model_copy(update={"anchors": anchors}))

    if isinstance(payload, CreateShapePayload):
        if state.has_object(payload.shape_id):
            raise EventApplyError(seq, f"object {payload.shape_id} already exists")
        shape = Shape(
            shape_id=payload.shape_id,
            shape_type=payload.shape_type,
            position=payload.position,
            parameters=dict(payload.parameters),
            style=payload.style,
        )
        return state.model_copy(update={"shapes": {**state.shapes, shape.shape_id: shape}})

    if isinstance(payload, MoveObjectPayload):
        _require_objects(state, payload.object_ids, seq)
        paths = dict(state.paths)
        shapes = dict(state.shapes)
        for object_id in payload.object_ids:
            if object_id in paths:
                path = paths[object_id]
                paths[object_id] = path.model_copy(
                    update={
                        "anchors": [
                            a.model_copy(update={"position": a.position.translate(payload.delta)})
                            for a in path.anchors
                        ]
                    }
                )
            else:
                shape = shapes[object_id]
                shapes[object_id] = shape.model_copy(
                    update={"position": shape.position.translate(payload.delta)}
                )
        return state.model_copy(update={"paths": paths, "shapes": shapes})

    if isinstance(payload, DeleteObjectPayload):
        _require_objects(state, payload.object_ids, seq)
        removed = set(payload.object_ids)
        return state.model_copy(
            update={
                "paths": {k: v for k, v in state.paths.items() if k not in removed},
                "shapes": {k: v for k, v in state.shapes.items() if k not in removed},
                "selection": [s for s in state.selection if s not in removed],
            }
        )

    if isinstance(payload, ModifyStylePayload):
        _require_objects(state, [payload.object_id], seq)
        changes = {
            name: getattr(payload, name)
            for name in ("fill", "stroke", "stroke_width", "opacity")
            if getattr(payload, name) is not None
        }
        if payload.object_id in state.paths:
            path = state.paths[payload.object_id]
            return _replace_path(
                state, path.model_copy(update={"style": _restyle(path.style, changes)})
            )
        shape = state.shapes[payload.object_id]
        new_shape = shape.model_copy(update={"style": _restyle(shape.style, changes)})
        return state.model_copy(update={"shapes": {**state.shapes, shape.shape_id: new_shape}})

    if isinstance(payload, SelectObjectsPayload):
        _require_objects(state, payload.object_ids, seq)
        base = set(state.selection) if payload.additive else set()
        return state.model_copy(update={"selection": sorted(base | set(payload.object_ids))})

    if isinstance(payload, DeselectObjectsPayload):
        removed = set(payload.object_ids)
        return state.model_copy(
            update={"selection": [s for s in state.selection if s not in removed]}
        )

    if isinstance(payload, ClearSelectionPayload):
        return state.model_copy(update={"selection": []})

    # 分组标记 / history_rewound：不改变文档内容
    return state


def rebuild_state(events: list[Event]) -> DocumentState:
    """从空文档冷回放全部事件（不读快照），跳过无法应用的事件

    用于完整性校验，与快照中保存的状态比对。
    history_rewound 在此按已回放的中间状态重置。
    """
    start_time = time.monotonic()
    history: dict[int, DocumentState] = {}
    state = DocumentState()
    skipped = 0

    for event in events:
        payload = event.payload
        if isinstance(payload, HistoryRewoundPayload):
            if payload.to_sequence < 0:
                state = DocumentState()
            elif payload.to_sequence in history and payload.to_sequence < event.sequence:
                state = history[payload.to_sequence]
            else:
                skipped += 1
        else:
            try:
                state = apply_event(state, event)
            except EventApplyError:
                skipped += 1
        history[event.sequence] = state

    log.info(
        "state_rebuild_completed",
        event_count=len(events),
        skipped=skipped,
        elapsed_ms=int((time.monotonic() - start_time) * 1000),
    )
    return state


def _require_path(state: DocumentState, path_id: str, seq: int) -> VectorPath:
    path = state.paths.get(path_id)
    if path is None:
        raise EventApplyError(seq, f"path {path_id} not found")
    return path


def _require_objects(state: DocumentState, object_ids: list[str], seq: int) -> None:
    missing = [oid for oid in object_ids if not state.has_object(oid)]
    if missing:
        raise EventApplyError(seq, f"objects not found: {', '.join(missing)}")


def _replace_path(state: DocumentState, path: VectorPath) -> DocumentState:
    return state.model_copy(update={"paths": {**state.paths, path.path_id: path}})


def _restyle(style: Style, changes: dict) -> Style:
    return style.model_copy(update=changes)
