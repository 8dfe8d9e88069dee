"""History 引擎异常体系

单事件损坏、快照损坏属于可恢复错误，由 Replayer 就地降级处理；
保存失败不走异常，见 models.save.SaveFailure。
"""


class HistoryError(Exception):
    """History 引擎基础异常"""

    def __init__(self, message: str, recoverable: bool = False) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过降级（回退快照、跳过事件）恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class IllegalStateError(HistoryError):
    """当前状态不允许该操作（如已在最早状态时撤销）"""


class InvalidSequenceError(HistoryError, ValueError):
    """目标序号越界"""

    def __init__(self, target: int, max_sequence: int) -> None:
        super().__init__(
            f"sequence {target} out of range [0, {max_sequence}]",
            recoverable=False,
        )
        self.target = target
        self.max_sequence = max_sequence


class SnapshotCorruptedError(HistoryError):
    """快照 payload 校验或反序列化失败

    此异常触发 Replayer 回退到更早的快照或冷回放。
    """

    def __init__(self, document_id: str, sequence: int, reason: str) -> None:
        super().__init__(
            f"snapshot {document_id}@{sequence} corrupted: {reason}",
            recoverable=True,
        )
        self.document_id = document_id
        self.sequence = sequence
        self.reason = reason


class EventApplyError(HistoryError):
    """单个事件无法应用到当前状态（引用了不存在的对象等）"""

    def __init__(self, sequence: int, reason: str) -> None:
        super().__init__(f"event {sequence} not applicable: {reason}", recoverable=True)
        self.sequence = sequence
        self.reason = reason


class SequenceConflictError(HistoryError):
    """并发写入导致同一文档序号冲突（UNIQUE 约束）"""

    def __init__(self, document_id: str, original_error: Exception) -> None:
        super().__init__(
            f"sequence conflict for document {document_id}: {original_error}",
            recoverable=True,
        )
        self.document_id = document_id
        self.original_error = original_error


class SequenceGapError(HistoryError):
    """批量写入的事件序号与已持久化序号不连续"""

    def __init__(self, document_id: str, expected: int, actual: int) -> None:
        super().__init__(
            f"document {document_id}: expected sequence {expected}, got {actual}",
        )
        self.document_id = document_id
        self.expected = expected
        self.actual = actual


class UnsupportedFormatError(HistoryError):
    """文档文件格式版本无法打开：比当前版本新，或缺少迁移步骤"""

    def __init__(self, document_id: str, file_version: int, supported_version: int) -> None:
        super().__init__(
            f"document {document_id} uses format v{file_version}, "
            f"this build supports up to v{supported_version}",
            recoverable=False,
        )
        self.document_id = document_id
        self.file_version = file_version
        self.supported_version = supported_version
