"""文档格式版本检查与逐级迁移

打开文件时读取 metadata.format_version：
- 比 FORMAT_VERSION 新：拒绝打开（UnsupportedFormatError）
- 比 FORMAT_VERSION 旧：按 FORMAT_MIGRATIONS 逐级迁移，每一级一个事务
"""

import time
from collections.abc import Awaitable, Callable

import aiosqlite
import structlog

from ..exceptions import UnsupportedFormatError
from .metadata_store import SqliteMetadataStore
from .sqlite_init import FORMAT_VERSION

log = structlog.get_logger()

# 源版本 -> 迁移到下一版本的步骤（只做 DDL/数据变换，不提交）
FORMAT_MIGRATIONS: dict[int, Callable[[aiosqlite.Connection], Awaitable[None]]] = {}


async def check_format_version(
    conn: aiosqlite.Connection,
    metadata_store: SqliteMetadataStore,
    document_id: str,
) -> int:
    """校验并在需要时迁移文档格式版本

    Returns:
        检查后的格式版本（文档尚无元数据时为当前版本）

    Raises:
        UnsupportedFormatError: 文件版本更新，或缺少某一级迁移
    """
    metadata = await metadata_store.get(document_id)
    if metadata is None:
        return FORMAT_VERSION

    version = metadata.format_version
    if version > FORMAT_VERSION:
        await log.awarning(
            "document_format_unsupported",
            document_id=document_id,
            file_version=version,
            supported_version=FORMAT_VERSION,
        )
        raise UnsupportedFormatError(document_id, version, FORMAT_VERSION)

    if version == FORMAT_VERSION:
        await log.adebug("document_format_checked", document_id=document_id, version=version)
        return version

    for from_version in range(version, FORMAT_VERSION):
        await _migrate_step(conn, document_id, from_version)
    return FORMAT_VERSION


async def _migrate_step(conn: aiosqlite.Connection, document_id: str, from_version: int) -> None:
    step = FORMAT_MIGRATIONS.get(from_version)
    if step is None:
        raise UnsupportedFormatError(document_id, from_version, FORMAT_VERSION)

    start_time = time.monotonic()
    try:
        await step(conn)
        await conn.execute(
            "UPDATE metadata SET format_version = ? WHERE document_id = ?",
            (from_version + 1, document_id),
        )
        await conn.commit()
    except Exception:
        await conn.rollback()
        raise
    await log.ainfo(
        "document_format_migrated",
        document_id=document_id,
        from_version=from_version,
        to_version=from_version + 1,
        elapsed_ms=int((time.monotonic() - start_time) * 1000),
    )
