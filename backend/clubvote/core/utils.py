"""
工具函数模块
"""

from datetime import datetime, time, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional


def format_timestamp_with_timezone(timestamp: Optional[datetime]) -> Optional[str]:
    """格式化时间戳，确保包含UTC时区标识符"""
    if not timestamp:
        return None
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone(timezone.utc).replace(tzinfo=None)
    # 确保发送给前端的时间戳包含'Z'后缀，表示这是UTC时间
    return timestamp.isoformat() + 'Z'


def parse_clock_time(value: str) -> time:
    """解析 "HH:MM" 格式的时间"""
    hour, minute = value.strip().split(":")
    return time(int(hour), int(minute))


def attendance_rate(participated: int, total: int) -> int:
    """参与率百分比（四舍五入到整数，total为0时返回0）"""
    if total <= 0:
        return 0
    ratio = Decimal(participated) * 100 / Decimal(total)
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
