"""SQLite 数据库初始化

PRAGMA 配置 + 三张表 DDL（metadata / events / snapshots）+ 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# 当前文件格式版本
FORMAT_VERSION = 1

# metadata 表 DDL
_METADATA_DDL = """
CREATE TABLE IF NOT EXISTS metadata (
    document_id     TEXT PRIMARY KEY,
    title           TEXT NOT NULL DEFAULT 'Untitled',
    format_version  INTEGER NOT NULL DEFAULT 1,
    created_at      TEXT NOT NULL,
    modified_at     TEXT NOT NULL
);
"""

# events 表 DDL（append-only）
_EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS events (
    event_id        TEXT PRIMARY KEY,
    document_id     TEXT NOT NULL,
    event_sequence  INTEGER NOT NULL,
    event_type      TEXT NOT NULL,
    event_payload   TEXT NOT NULL DEFAULT '{}',
    timestamp       TEXT NOT NULL,

    FOREIGN KEY (document_id) REFERENCES metadata(document_id)
);
"""

_EVENTS_INDEXES = [
    # 文档内事件序号唯一约束（并发写入时触发冲突）
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_events_document_sequence "
        "ON events(document_id, event_sequence);"
    ),
    "CREATE INDEX IF NOT EXISTS idx_events_document_type ON events(document_id, event_type);",
]

# snapshots 表 DDL
_SNAPSHOTS_DDL = """
CREATE TABLE IF NOT EXISTS snapshots (
    snapshot_id     INTEGER PRIMARY KEY AUTOINCREMENT,
    document_id     TEXT NOT NULL,
    event_sequence  INTEGER NOT NULL,
    snapshot_data   BLOB NOT NULL,
    compression     TEXT NOT NULL DEFAULT 'none',
    checksum        TEXT NOT NULL DEFAULT '',
    created_at      TEXT NOT NULL,

    FOREIGN KEY (document_id) REFERENCES metadata(document_id)
);
"""

_SNAPSHOTS_INDEXES = [
    # 同一 (文档, 序号) 只保留一个快照，重复创建走覆盖
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_snapshots_document_sequence "
        "ON snapshots(document_id, event_sequence);"
    ),
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    # 设置 PRAGMA
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")
    await conn.execute("PRAGMA synchronous = NORMAL;")

    # 创建表
    await conn.execute(_METADATA_DDL)
    await conn.execute(_EVENTS_DDL)
    await conn.execute(_SNAPSHOTS_DDL)

    # 创建索引
    for idx_sql in _EVENTS_INDEXES + _SNAPSHOTS_INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效（内存数据库恒为 memory 模式）

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"


async def wal_checkpoint(conn: aiosqlite.Connection) -> tuple[int, int, int] | None:
    """强制 WAL 检查点，把已提交的写入刷回主数据库文件

    Returns:
        (busy, wal_frames, checkpointed_frames)，内存数据库时返回 None
    """
    cursor = await conn.execute("PRAGMA wal_checkpoint(TRUNCATE);")
    row = await cursor.fetchone()
    if row is None:
        return None
    return int(row[0]), int(row[1]), int(row[2])
