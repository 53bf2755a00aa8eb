"""
投票数据模型
"""

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from clubvote.core.database import Base

class Vote(Base):
    """投票表（每个会话每个成员一行，重复提交覆盖）"""
    __tablename__ = "votes"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("vote_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)   # 上游认证后的用户ID
    user_name = Column(String(100), nullable=False)            # 投票时的显示名称
    selected_days = Column(JSON, nullable=False, default=list)  # ["MON", "WED"]，按周一到周五排序
    voted_at = Column(DateTime, nullable=False)                 # 服务器时间（UTC）

    # 关系
    session = relationship("VoteSession", back_populates="votes")

    __table_args__ = (
        UniqueConstraint("session_id", "user_id", name="uq_vote_session_user"),
    )
