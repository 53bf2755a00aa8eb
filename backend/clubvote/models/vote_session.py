"""
投票会话数据模型
"""

from sqlalchemy import (
    Column, Integer, String, ForeignKey, DateTime, Date, Boolean,
    Index, UniqueConstraint, text,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from clubvote.core.database import Base

class VoteSession(Base):
    """每周投票会话表"""
    __tablename__ = "vote_sessions"

    id = Column(Integer, primary_key=True, index=True)
    week_start_date = Column(Date, nullable=False, index=True)  # 投票针对的那一周的周一
    start_time = Column(DateTime, nullable=False)               # 意见收集开始（UTC）
    end_time = Column(DateTime, nullable=False)                 # 意见收集截止（UTC）
    is_active = Column(Boolean, nullable=False, default=False)
    is_completed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # 关系
    disabled_days = relationship(
        "DisabledDay", back_populates="session",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="DisabledDay.id",
    )
    votes = relationship(
        "Vote", back_populates="session",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    result = relationship(
        "VoteResult", back_populates="session", uselist=False,
        cascade="all, delete-orphan", passive_deletes=True,
    )

    __table_args__ = (
        # 同一时间最多一个活跃会话
        Index(
            "uq_vote_sessions_single_active", "is_active", unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active IS TRUE"),
        ),
        # 删除后ID不复用（结果缓存按会话ID存储）
        {"sqlite_autoincrement": True},
    )

    @property
    def status(self) -> str:
        """pending, active, closed"""
        if self.is_active:
            return "active"
        if self.is_completed:
            return "closed"
        return "pending"

    @property
    def disabled_weekdays(self) -> set:
        return {d.weekday for d in self.disabled_days}

class DisabledDay(Base):
    """会话中被管理员禁用的工作日"""
    __tablename__ = "vote_session_disabled_days"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("vote_sessions.id", ondelete="CASCADE"), nullable=False)
    weekday = Column(String(3), nullable=False)   # MON ~ FRI
    reason = Column(String(200), nullable=False, default="")

    # 关系
    session = relationship("VoteSession", back_populates="disabled_days")

    __table_args__ = (
        UniqueConstraint("session_id", "weekday", name="uq_disabled_day_session_weekday"),
    )
