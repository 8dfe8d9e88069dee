"""packages/core 测试配置 -- 核心层 fixture"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio
from inkwell.core.models import CreateShapePayload, Event, MoveObjectPayload, Point, ShapeType
from inkwell.core.store import StoreGroup, append_events, create_store_group

DOC_ID = "doc1"


class FakeClock:
    """可控时钟（毫秒级推进）"""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2026, 1, 1, tzinfo=UTC)

    def now(self) -> datetime:
        return self._now

    def advance(self, ms: float) -> None:
        self._now += timedelta(milliseconds=ms)


def shape_payload(index: int) -> CreateShapePayload:
    return CreateShapePayload(
        shape_id=f"shape-{index}",
        shape_type=ShapeType.RECTANGLE,
        position=Point(x=index, y=0),
        parameters={"width": 10.0, "height": 5.0},
    )


@pytest_asyncio.fixture
async def core_db_path(tmp_path: Path) -> Path:
    """核心层临时文档路径"""
    return tmp_path / "core_test.inkwell"


@pytest_asyncio.fixture
async def stores(core_db_path: Path) -> AsyncGenerator[StoreGroup, None]:
    """绑定临时文档文件的 StoreGroup"""
    group = await create_store_group(core_db_path)
    yield group
    await group.close()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def append_shapes(stores: StoreGroup) -> Callable[..., Awaitable[list[Event]]]:
    """追加 count 个事件：第一个创建 shape-0，其余依次移动它（状态随序号变化）"""

    async def _append(count: int, document_id: str = DOC_ID) -> list[Event]:
        start = await stores.event_store.max_sequence(document_id) + 1
        payloads = [
            shape_payload(0) if start + i == 0 else MoveObjectPayload(
                object_ids=["shape-0"], delta=Point(x=1, y=0)
            )
            for i in range(count)
        ]
        return await append_events(
            stores.conn,
            stores.metadata_store,
            stores.event_store,
            document_id,
            payloads,
        )

    return _append
