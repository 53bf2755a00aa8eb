"""
投票引擎错误类型
"""

from typing import Any, Dict


class VoteEngineError(Exception):
    """投票引擎错误基类，携带错误类别和可展示给用户的消息"""

    kind = "vote_engine_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": self.message}


class ConflictError(VoteEngineError):
    """已存在活跃投票会话"""
    kind = "conflict"
    status_code = 409


class NotFoundError(VoteEngineError):
    """会话、投票或结果不存在"""
    kind = "not_found"
    status_code = 404


class InvalidStateError(VoteEngineError):
    """当前会话生命周期状态下不允许该操作"""
    kind = "invalid_state"
    status_code = 409


class SessionNotActiveError(InvalidStateError):
    """会话未处于投票中"""
    kind = "session_not_active"


class InvalidDayError(VoteEngineError):
    """选择了被禁用或超出周一至周五范围的日期"""
    kind = "invalid_day"
    status_code = 422


class SessionNotCompletedError(VoteEngineError):
    """会话尚未结束，不能推导日程"""
    kind = "session_not_completed"
    status_code = 409


class StorageTimeoutError(VoteEngineError):
    """存储层超时（临时错误，调用方可重试）"""
    kind = "storage_timeout"
    status_code = 503
    retryable = True
