"""
事件订阅中心

投票提交、会话状态变化、日程变化等事件通过这里通知订阅者（例如WebSocket推送、
统计刷新），替代前端的全局事件总线。
"""

import threading
from typing import Any, Callable, Dict, List

from loguru import logger

Listener = Callable[[str, Dict[str, Any]], None]

VOTE_SUBMITTED = "vote_submitted"
VOTE_RETRACTED = "vote_retracted"
VOTES_CLEARED = "votes_cleared"
SESSION_CREATED = "session_created"
SESSION_CLOSED = "session_closed"
SESSION_REOPENED = "session_reopened"
SESSION_DELETED = "session_deleted"
DISABLED_DAYS_CHANGED = "disabled_days_changed"
RESULTS_SAVED = "results_saved"
SCHEDULE_DERIVED = "schedule_derived"
SCHEDULE_CHANGED = "schedule_changed"

ALL_EVENTS = "*"


class EventHub:
    """简单的同步发布/订阅"""

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: str, listener: Listener) -> Callable[[], None]:
        """订阅事件，返回取消订阅函数。event_type 为 "*" 时接收全部事件"""
        with self._lock:
            self._listeners.setdefault(event_type, []).append(listener)

        def unsubscribe():
            with self._lock:
                listeners = self._listeners.get(event_type, [])
                if listener in listeners:
                    listeners.remove(listener)

        return unsubscribe

    def publish(self, event_type: str, payload: Dict[str, Any]) -> int:
        """发布事件，返回成功通知的订阅者数量；订阅者出错只记录日志"""
        with self._lock:
            listeners = list(self._listeners.get(event_type, [])) + list(self._listeners.get(ALL_EVENTS, []))

        delivered = 0
        for listener in listeners:
            try:
                listener(event_type, payload)
                delivered += 1
            except Exception:
                logger.exception(f"❌ 事件订阅者处理 {event_type} 失败")
        return delivered

    def clear(self) -> None:
        with self._lock:
            self._listeners.clear()


# 全局事件中心
event_hub = EventHub()
