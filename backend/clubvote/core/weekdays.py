"""
工作日定义与投票日期解析
"""

import enum
import json
from typing import Iterable, List, Union

from clubvote.core.exceptions import InvalidDayError


class Weekday(str, enum.Enum):
    """可投票的工作日（周一至周五）"""
    MON = "MON"
    TUE = "TUE"
    WED = "WED"
    THU = "THU"
    FRI = "FRI"

    @property
    def offset(self) -> int:
        """距离周一的天数"""
        return WEEKDAYS.index(self)


WEEKDAYS: List[Weekday] = [Weekday.MON, Weekday.TUE, Weekday.WED, Weekday.THU, Weekday.FRI]

# 旧版前端提交的是 "10월 20일(월)" 这样的韩文日期标签
KOREAN_DAY_LABELS = {
    "월": Weekday.MON,
    "화": Weekday.TUE,
    "수": Weekday.WED,
    "목": Weekday.THU,
    "금": Weekday.FRI,
}


def to_weekday(value: Union[str, Weekday]) -> Weekday:
    """把单个日期值转换为 Weekday，无法识别时抛出 InvalidDayError"""
    if isinstance(value, Weekday):
        return value
    if not isinstance(value, str):
        raise InvalidDayError(f"无效的日期: {value!r}")

    text = value.strip()
    code = text.upper()
    if code in Weekday.__members__:
        return Weekday(code)

    for label, weekday in KOREAN_DAY_LABELS.items():
        if f"{label})" in text:
            return weekday

    raise InvalidDayError(f"只能选择周一至周五: {value!r}")


def sort_weekdays(days: Iterable[Weekday]) -> List[Weekday]:
    """去重并按周一到周五排序"""
    return sorted(set(days), key=lambda d: d.offset)


def parse_vote_days(selected_days) -> List[Weekday]:
    """解析投票日期：支持代码列表、韩文标签或JSON字符串"""
    if selected_days is None:
        return []

    if isinstance(selected_days, str):
        text = selected_days.strip()
        if not text:
            return []
        if text.startswith("["):
            try:
                selected_days = json.loads(text)
            except json.JSONDecodeError as e:
                raise InvalidDayError(f"投票数据格式错误: {e.msg}") from e
        else:
            selected_days = [text]

    if not isinstance(selected_days, (list, tuple, set, frozenset)):
        raise InvalidDayError("投票数据必须是日期列表")

    return sort_weekdays(to_weekday(day) for day in selected_days)
