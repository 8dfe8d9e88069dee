"""Document 领域模型 -- 回放产出的物化文档状态

DocumentState 是纯值对象：投影函数只通过 model_copy 生成新状态，
缓存层通过 model_copy(deep=True) 做深拷贝。
"""

from pydantic import BaseModel, Field

from .enums import ShapeType


class Point(BaseModel):
    """二维坐标"""

    x: float = 0.0
    y: float = 0.0

    def translate(self, delta: "Point") -> "Point":
        return Point(x=self.x + delta.x, y=self.y + delta.y)


class Style(BaseModel):
    """填充/描边样式"""

    fill: str | None = Field(default=None, description="填充色，#RRGGBB 或 None")
    stroke: str | None = Field(default="#000000", description="描边色")
    stroke_width: float = Field(default=1.0, ge=0)
    opacity: float = Field(default=1.0, ge=0, le=1)


class AnchorPoint(BaseModel):
    """路径锚点（含可选贝塞尔控制柄，坐标为相对锚点的偏移）"""

    position: Point
    handle_in: Point | None = None
    handle_out: Point | None = None


class VectorPath(BaseModel):
    """钢笔工具生成的矢量路径"""

    path_id: str
    anchors: list[AnchorPoint] = Field(default_factory=list)
    closed: bool = False
    finished: bool = False
    style: Style = Field(default_factory=Style)


class Shape(BaseModel):
    """参数化图形（矩形、椭圆、多边形、星形）"""

    shape_id: str
    shape_type: ShapeType
    position: Point = Field(default_factory=Point, description="图形原点")
    parameters: dict[str, float] = Field(default_factory=dict)
    style: Style = Field(default_factory=Style)


class DocumentState(BaseModel):
    """物化文档状态

    selection 始终保持排序，保证相同事件序列产出逐字段相同的状态。
    """

    paths: dict[str, VectorPath] = Field(default_factory=dict)
    shapes: dict[str, Shape] = Field(default_factory=dict)
    selection: list[str] = Field(default_factory=list)

    @property
    def object_count(self) -> int:
        return len(self.paths) + len(self.shapes)

    def has_object(self, object_id: str) -> bool:
        return object_id in self.paths or object_id in self.shapes
