"""
周时间窗口计算

纯函数：不读取系统时钟、不访问数据库。所有"本周/下周"的日期计算都集中在这里，
其他服务不要自己推算周一。
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Optional, Tuple, Union
from zoneinfo import ZoneInfo

from clubvote.core.config import settings
from clubvote.core.utils import parse_clock_time
from clubvote.core.weekdays import Weekday, WEEKDAYS


class TimeWindowResolver:
    """以俱乐部时区为准的周窗口计算器"""

    def __init__(
        self,
        tz: Union[str, ZoneInfo, None] = None,
        window_start: Optional[time] = None,
        window_end: Optional[time] = None,
    ):
        tz = tz or settings.TIMEZONE
        self.tz = ZoneInfo(tz) if isinstance(tz, str) else tz
        self.window_start = window_start or parse_clock_time(settings.VOTE_WINDOW_START)
        self.window_end = window_end or parse_clock_time(settings.VOTE_WINDOW_END)

    def local(self, moment: datetime) -> datetime:
        """转换为俱乐部本地时间；无时区的时间视为本地墙钟时间"""
        if moment.tzinfo is None:
            return moment.replace(tzinfo=self.tz)
        return moment.astimezone(self.tz)

    def local_date(self, moment: datetime) -> date:
        return self.local(moment).date()

    @staticmethod
    def monday_of(day: date) -> date:
        """任意日期所在周的周一（周日向前回退6天）"""
        return day - timedelta(days=day.weekday())

    def this_week_monday(self, moment: datetime) -> date:
        return self.monday_of(self.local_date(moment))

    def next_week_monday(self, moment: datetime) -> date:
        return self.this_week_monday(moment) + timedelta(days=7)

    def week_start(self, moment: datetime) -> date:
        """[周一00:00, 下周一00:00) 内的任意时刻都对应同一个周一"""
        return self.this_week_monday(moment)

    @staticmethod
    def week_dates(week_start: date) -> Dict[Weekday, date]:
        """周一至周五对应的日期"""
        monday = TimeWindowResolver.monday_of(week_start)
        return {day: monday + timedelta(days=day.offset) for day in WEEKDAYS}

    @staticmethod
    def week_friday(week_start: date) -> date:
        return TimeWindowResolver.monday_of(week_start) + timedelta(days=4)

    def at_local(self, day: date, at: time) -> datetime:
        """本地日期+墙钟时间 → 带时区的UTC时间（夏令时由zoneinfo处理）"""
        return datetime.combine(day, at, tzinfo=self.tz).astimezone(timezone.utc)

    def default_vote_window(self, moment: datetime) -> Tuple[datetime, datetime]:
        """默认收集窗口：本周一 00:01 至 下周五 17:00（本地时间）"""
        start = self.at_local(self.this_week_monday(moment), self.window_start)
        end = self.at_local(self.week_friday(self.next_week_monday(moment)), self.window_end)
        return start, end

    def to_utc(self, moment: datetime) -> datetime:
        return self.local(moment).astimezone(timezone.utc)

    def to_storage(self, moment: datetime) -> datetime:
        """数据库中统一保存不带时区的UTC时间"""
        return self.to_utc(moment).replace(tzinfo=None)

    @staticmethod
    def from_storage(value: datetime) -> datetime:
        return value.replace(tzinfo=timezone.utc)
