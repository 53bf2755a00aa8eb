"""
时钟提供者

业务代码只通过 Clock 获取当前时间，测试时替换为 FixedClock。
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock:
    """当前时间提供者（返回带时区的UTC时间）"""

    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    """系统时钟"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """固定时钟，可手动拨动"""

    def __init__(self, current: Optional[datetime] = None):
        self._current = _as_utc(current or datetime(2025, 1, 1, tzinfo=timezone.utc))

    def now(self) -> datetime:
        return self._current

    def set(self, current: datetime) -> None:
        self._current = _as_utc(current)

    def advance(self, **kwargs) -> datetime:
        self._current = self._current + timedelta(**kwargs)
        return self._current


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# 全局时钟实例
system_clock = SystemClock()

def get_clock() -> Clock:
    """获取时钟（FastAPI依赖，测试中可覆盖）"""
    return system_clock
