"""
日程与参与率相关的数据模式
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Literal
import datetime

from clubvote.core.weekdays import Weekday

class WeekdayDefault(BaseModel):
    """某个工作日生成日程时使用的默认值"""
    time: Optional[str] = Field(default=None, description="例如 19:00")
    location: Optional[str] = None
    event_type: Optional[Literal["MATCH", "SELF", "TRAINING", "MEETING", "OTHER"]] = None
    description: Optional[str] = None
    mercenary_count: Optional[int] = Field(default=None, ge=0)

class DeriveRequest(BaseModel):
    """从投票结果推导日程的请求"""
    weekday_defaults: Dict[Weekday, WeekdayDefault] = Field(default_factory=dict)
    default: Optional[WeekdayDefault] = None
    policy: Optional[Literal["max_count", "threshold"]] = Field(default=None, description="不填时使用服务配置")
    min_votes: Optional[int] = Field(default=None, ge=1, description="threshold 策略的最少票数")

class RosterMemberInfo(BaseModel):
    """日程参与成员"""
    user_id: str
    user_name: str

    class Config:
        from_attributes = True

class ScheduleEntryResponse(BaseModel):
    """日程响应模式"""
    id: int
    source_session_id: Optional[int] = None
    weekday: str
    date: datetime.date
    time: str
    location: str
    event_type: str
    description: Optional[str] = None
    mercenary_count: int
    auto_generated: bool
    confirmed: bool
    roster: List[RosterMemberInfo]
    total_participant_count: int

    class Config:
        from_attributes = True

class SessionParticipation(BaseModel):
    """单个会话的参与情况"""
    id: int
    week_start_date: datetime.date
    status: str
    participated: bool

class VoteParticipation(BaseModel):
    total: int
    participated: int
    missed: int
    sessions: List[SessionParticipation]

class GameParticipation(BaseModel):
    total: int
    participated: int
    missed: int

class MemberStatsResponse(BaseModel):
    """成员参与率"""
    user_id: str
    vote_attendance: int
    game_attendance: int
    vote_details: VoteParticipation
    game_details: GameParticipation
