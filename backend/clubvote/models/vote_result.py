"""
投票结果快照数据模型
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, JSON
from sqlalchemy.orm import relationship
from clubvote.core.database import Base

class VoteResult(Base):
    """已保存的投票结果（可随时从投票表重新计算）"""
    __tablename__ = "vote_results"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("vote_sessions.id", ondelete="CASCADE"), nullable=False, unique=True)
    days = Column(JSON, nullable=False)            # {"MON": {"count": 2, "participants": [...]}, ...}
    total_participants = Column(Integer, nullable=False, default=0)
    total_votes = Column(Integer, nullable=False, default=0)
    computed_at = Column(DateTime, nullable=False)

    # 关系
    session = relationship("VoteSession", back_populates="result")
