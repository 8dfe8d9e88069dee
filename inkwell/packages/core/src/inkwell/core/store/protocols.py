"""Store Protocol 接口定义

SnapshotStore 的抽象接口（结构化子类型），SnapshotManager 只依赖此接口。
"""

from typing import Protocol

from ..models.snapshot import Snapshot


class SnapshotStore(Protocol):
    """Snapshot 存储接口"""

    async def put(self, snapshot: Snapshot) -> None:
        """写入快照，同一序号覆盖"""
        ...

    async def list_at_or_before(self, document_id: str, sequence: int) -> list[Snapshot]:
        """序号 <= sequence 的快照，按序号倒序"""
        ...

    async def latest_sequence(self, document_id: str) -> int:
        """最新快照序号，无快照为 -1"""
        ...

    async def prune(self, document_id: str, keep_count: int) -> int:
        """只保留最新的 keep_count 个快照"""
        ...
