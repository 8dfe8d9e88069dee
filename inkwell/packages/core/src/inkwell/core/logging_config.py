"""structlog 配置模块

dev 模式：终端彩色输出（CLI、开发调试）
json 模式：每行一个 JSON 对象，嵌入编辑器时通常配合 INKWELL_LOG_FILE 写入文件

日志统一写 stderr（或文件），stdout 留给 CLI 的命令输出。
"""

import logging
import os
import sys
from pathlib import Path

import structlog


def _build_handler(log_file: str | None) -> logging.Handler:
    if not log_file:
        return logging.StreamHandler(sys.stderr)
    path = Path(log_file).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(path, encoding="utf-8")


def setup_logging(
    log_format: str | None = None,
    log_level: str | None = None,
    log_file: str | None = None,
) -> None:
    """初始化 structlog 配置

    参数优先于环境变量：
    - INKWELL_LOG_FORMAT: "json" | "dev"（默认）
    - INKWELL_LOG_LEVEL: 默认 INFO
    - INKWELL_LOG_FILE: 设置后写入该文件而不是 stderr
    """
    log_format = log_format or os.environ.get("INKWELL_LOG_FORMAT", "dev")
    log_level = log_level or os.environ.get("INKWELL_LOG_LEVEL", "INFO")
    log_file = log_file or os.environ.get("INKWELL_LOG_FILE")

    # document_id 等上下文通过 contextvars 合并进每条日志
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    renderer: structlog.types.Processor
    if log_format == "json":
        renderer = structlog.processors.JSONRenderer(ensure_ascii=False)
        shared_processors.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=log_file is None)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = _build_handler(log_file)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=shared_processors,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def bind_document_context(document_id: str) -> None:
    """将 document_id 绑定到当前上下文，后续日志自动携带"""
    structlog.contextvars.bind_contextvars(document_id=document_id)


def clear_document_context() -> None:
    structlog.contextvars.unbind_contextvars("document_id")
