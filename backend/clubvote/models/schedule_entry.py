"""
日程数据模型
"""

from sqlalchemy import (
    Column, Integer, String, ForeignKey, DateTime, Date, Text, Boolean, UniqueConstraint,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from clubvote.core.database import Base

EVENT_TYPES = ("MATCH", "SELF", "TRAINING", "MEETING", "OTHER")

class ScheduleEntry(Base):
    """比赛日程表"""
    __tablename__ = "schedule_entries"

    id = Column(Integer, primary_key=True, index=True)
    source_session_id = Column(Integer, ForeignKey("vote_sessions.id", ondelete="SET NULL"), nullable=True, index=True)
    weekday = Column(String(3), nullable=False)            # MON ~ FRI
    date = Column(Date, nullable=False, index=True)
    time = Column(String(20), nullable=False)              # "19:00" 或 "待定"
    location = Column(String(200), nullable=False)
    event_type = Column(String(20), nullable=False, default="MATCH")  # MATCH, SELF, TRAINING, MEETING, OTHER
    description = Column(Text, nullable=True)
    mercenary_count = Column(Integer, nullable=False, default=0)      # 外援人数
    auto_generated = Column(Boolean, nullable=False, default=False)  # 由投票结果推导生成
    confirmed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # 关系
    roster = relationship(
        "RosterMember", back_populates="entry",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="RosterMember.id",
    )

    @property
    def total_participant_count(self) -> int:
        return len(self.roster) + (self.mercenary_count or 0)

class RosterMember(Base):
    """日程参与成员"""
    __tablename__ = "schedule_roster"

    id = Column(Integer, primary_key=True, index=True)
    entry_id = Column(Integer, ForeignKey("schedule_entries.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    user_name = Column(String(100), nullable=False)

    # 关系
    entry = relationship("ScheduleEntry", back_populates="roster")

    __table_args__ = (
        UniqueConstraint("entry_id", "user_id", name="uq_roster_entry_user"),
    )
