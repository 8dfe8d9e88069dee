"""存储错误分类 -- 底层异常 -> SaveFailure

SQLite 驱动错误没有稳定的错误码，按小写错误文本匹配关键字，
匹配顺序固定（先磁盘，后权限、损坏、锁、外键）。
"""

import errno

from ..exceptions import SequenceConflictError, SequenceGapError
from ..models.enums import SaveErrorType
from ..models.save import SaveFailure

# (关键字, 错误类型)，按顺序匹配
_PATTERNS: list[tuple[tuple[str, ...], SaveErrorType]] = [
    (("disk is full", "disk full", "sqlite_full", "no space left"), SaveErrorType.DISK_FULL),
    (("permission", "access", "readonly"), SaveErrorType.PERMISSION_DENIED),
    (("corrupt", "malformed", "not a database"), SaveErrorType.CORRUPTION),
    (("lock", "busy"), SaveErrorType.LOCK_TIMEOUT),
    (("foreign key",), SaveErrorType.METADATA_MISSING),
]

_ERRNO_TYPES: dict[int, SaveErrorType] = {
    errno.ENOSPC: SaveErrorType.DISK_FULL,
    errno.EACCES: SaveErrorType.PERMISSION_DENIED,
    errno.EPERM: SaveErrorType.PERMISSION_DENIED,
    errno.EROFS: SaveErrorType.PERMISSION_DENIED,
}

USER_MESSAGES: dict[SaveErrorType, str] = {
    SaveErrorType.DISK_FULL: "The disk is full. Free up disk space and try again.",
    SaveErrorType.PERMISSION_DENIED: (
        "The document could not be written. "
        "Check file permissions and ensure the directory is writable."
    ),
    SaveErrorType.CORRUPTION: (
        "The document file appears to be damaged. "
        "Use Save As to write a fresh copy to a new location."
    ),
    SaveErrorType.LOCK_TIMEOUT: (
        "The document file is busy. "
        "Close other programs using the file and try again."
    ),
    SaveErrorType.PATH_RESOLUTION: (
        "The document has no valid location yet. Use Save As to choose where to save it."
    ),
    SaveErrorType.METADATA_MISSING: (
        "Document information is missing from the file. "
        "Use Save As to write a fresh copy."
    ),
    SaveErrorType.TRANSACTION_FAILED: (
        "The save could not be completed and no changes were written. Try saving again."
    ),
    SaveErrorType.UNKNOWN: (
        "An unexpected error occurred while saving. "
        "Try again, or use Save As to choose another location."
    ),
}


def classify_storage_error(error: BaseException) -> SaveErrorType:
    """判定底层异常对应的保存错误类型"""
    if isinstance(error, (SequenceConflictError, SequenceGapError)):
        return SaveErrorType.TRANSACTION_FAILED
    if isinstance(error, OSError) and error.errno in _ERRNO_TYPES:
        return _ERRNO_TYPES[error.errno]

    text = str(error).lower()
    for keywords, error_type in _PATTERNS:
        if any(keyword in text for keyword in keywords):
            return error_type
    return SaveErrorType.UNKNOWN


def map_storage_error(error: BaseException, file_path: str | None = None) -> SaveFailure:
    """把底层异常转换为带修复建议的 SaveFailure"""
    error_type = classify_storage_error(error)
    return SaveFailure(
        error_type=error_type,
        user_message=USER_MESSAGES[error_type],
        technical_details=f"{type(error).__name__}: {error}",
        file_path=file_path,
    )


def save_failure(
    error_type: SaveErrorType,
    technical_details: str = "",
    file_path: str | None = None,
    user_message: str | None = None,
) -> SaveFailure:
    """构造非异常来源的保存失败（如路径缺失、并发保存）"""
    return SaveFailure(
        error_type=error_type,
        user_message=user_message or USER_MESSAGES[error_type],
        technical_details=technical_details,
        file_path=file_path,
    )
