"""
API依赖项
"""

from dataclasses import dataclass
from urllib.parse import unquote

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from clubvote.core.clock import Clock, get_clock
from clubvote.core.database import get_db
from clubvote.core.exceptions import VoteEngineError
from clubvote.services.aggregation_engine import AggregationEngine
from clubvote.services.schedule_deriver import ScheduleDeriver
from clubvote.services.session_manager import SessionManager
from clubvote.services.vote_ledger import VoteLedger


@dataclass
class CurrentMember:
    """上游认证层已验证的成员身份"""
    user_id: str
    user_name: str


def get_current_member(
    x_user_id: str = Header(..., description="已认证的用户ID"),
    x_user_name: str = Header(..., description="显示名称（非ASCII字符需URL编码）"),
) -> CurrentMember:
    """从请求头读取成员身份"""
    user_id = x_user_id.strip()
    user_name = unquote(x_user_name).strip()
    if not user_id or not user_name:
        raise HTTPException(status_code=401, detail={"error": "unauthenticated", "message": "缺少用户身份信息"})
    return CurrentMember(user_id=user_id, user_name=user_name)


def to_http_exception(e: VoteEngineError) -> HTTPException:
    """把投票引擎错误转换为HTTP错误"""
    return HTTPException(status_code=e.status_code, detail=e.to_dict())


def get_session_manager(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)) -> SessionManager:
    return SessionManager(db, clock=clock)


def get_vote_ledger(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)) -> VoteLedger:
    return VoteLedger(db, clock=clock)


def get_aggregation_engine(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)) -> AggregationEngine:
    return AggregationEngine(db, clock=clock)


def get_schedule_deriver(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)) -> ScheduleDeriver:
    return ScheduleDeriver(db, clock=clock)
