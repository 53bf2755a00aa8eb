"""
投票相关的数据模式
"""

from pydantic import BaseModel, Field, field_serializer
from typing import Optional, List, Dict
from datetime import date, datetime

from clubvote.core.utils import format_timestamp_with_timezone
from clubvote.core.weekdays import Weekday

class DisabledDayItem(BaseModel):
    """被禁用的工作日"""
    day: Weekday
    reason: str = Field(default="", max_length=200, description="禁用原因")

class SessionCreate(BaseModel):
    """创建投票会话的请求模式"""
    week_start_date: date = Field(description="投票针对的那一周的周一")
    start_time: Optional[datetime] = Field(default=None, description="默认本周一 00:01")
    end_time: Optional[datetime] = Field(default=None, description="默认下周五 17:00")
    disabled_days: Optional[List[DisabledDayItem]] = None

class DisabledDaysUpdate(BaseModel):
    """设置禁用日期"""
    disabled_days: List[DisabledDayItem] = Field(default_factory=list)

class SessionReopen(BaseModel):
    """重新开启会话（可同时延长截止时间）"""
    end_time: Optional[datetime] = None

class BulkDeleteRequest(BaseModel):
    """批量删除会话"""
    exclude_ids: List[int] = Field(default_factory=list, description="保留的会话ID")

class SessionResponse(BaseModel):
    """投票会话响应模式"""
    id: int
    week_start_date: date
    week_end_date: date
    start_time: datetime
    end_time: datetime
    is_active: bool
    is_completed: bool
    status: str
    disabled_days: List[DisabledDayItem]
    participant_count: int

    @field_serializer('start_time', 'end_time')
    def serialize_dt(self, dt: Optional[datetime]) -> Optional[str]:
        return format_timestamp_with_timezone(dt)

class VoteSubmit(BaseModel):
    """提交投票（每次提交覆盖之前的全部选择）"""
    selected_days: List[str] = Field(default_factory=list, alias="selectedDays", description='例如 ["MON", "WED"]')

    class Config:
        populate_by_name = True

class VoteResponse(BaseModel):
    """投票响应模式"""
    session_id: int
    user_id: str
    user_name: str
    selected_days: List[str]
    voted_at: datetime

    @field_serializer('voted_at')
    def serialize_dt(self, dt: Optional[datetime]) -> Optional[str]:
        return format_timestamp_with_timezone(dt)

    class Config:
        from_attributes = True

class MyVoteResponse(BaseModel):
    """当前成员的投票状态"""
    session_id: int
    voted: bool
    selected_days: List[str] = Field(default_factory=list)
    voted_at: Optional[datetime] = None

    @field_serializer('voted_at')
    def serialize_dt(self, dt: Optional[datetime]) -> Optional[str]:
        return format_timestamp_with_timezone(dt)

class ParticipantInfo(BaseModel):
    """某一天的投票参与者"""
    user_id: str = Field(alias="userId")
    user_name: str = Field(alias="userName")
    voted_at: Optional[str] = Field(default=None, alias="votedAt")

    class Config:
        populate_by_name = True

class DayResult(BaseModel):
    """单日统计"""
    count: int
    participants: List[ParticipantInfo]

class ResultResponse(BaseModel):
    """投票统计结果（实时或已保存）"""
    session_id: int
    week_start_date: Optional[str] = None
    days: Dict[str, DayResult]
    total_participants: int
    total_votes: int
    computed_at: Optional[str] = None
