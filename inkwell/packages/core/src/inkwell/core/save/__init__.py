"""Inkwell Core Save -- 文档会话、事务化保存与自动保存"""

from .auto_save import AutoSaveManager
from .errors import classify_storage_error, map_storage_error
from .orchestrator import SaveOrchestrator
from .session import DocumentSession, DocumentSessionRegistry, normalize_path

__all__ = [
    "AutoSaveManager",
    "SaveOrchestrator",
    "DocumentSession",
    "DocumentSessionRegistry",
    "normalize_path",
    "classify_storage_error",
    "map_storage_error",
]
