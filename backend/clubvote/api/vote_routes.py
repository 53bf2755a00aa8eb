"""
成员投票API路由
"""

from fastapi import APIRouter, Depends, HTTPException

from clubvote.api.deps import (
    CurrentMember, get_current_member, get_session_manager, get_vote_ledger,
    get_aggregation_engine, to_http_exception,
)
from clubvote.core.exceptions import VoteEngineError
from clubvote.schemas.vote_schemas import (
    MyVoteResponse, ResultResponse, SessionResponse, VoteResponse, VoteSubmit,
)
from clubvote.services.aggregation_engine import AggregationEngine
from clubvote.services.session_manager import SessionManager
from clubvote.services.vote_ledger import VoteLedger

router = APIRouter()

@router.get("/active", response_model=SessionResponse)
async def get_active_session(manager: SessionManager = Depends(get_session_manager)):
    """获取当前进行中的投票会话摘要"""
    try:
        session = manager.get_active_session()
        if not session:
            raise HTTPException(status_code=404, detail={"error": "not_found", "message": "当前没有进行中的投票会话"})
        return manager.session_summary(session)
    except VoteEngineError as e:
        raise to_http_exception(e)

@router.post("", response_model=VoteResponse)
async def submit_vote(
    vote_data: VoteSubmit,
    member: CurrentMember = Depends(get_current_member),
    ledger: VoteLedger = Depends(get_vote_ledger),
):
    """向进行中的会话提交投票（覆盖之前的选择）"""
    try:
        return ledger.submit_active_vote(member.user_id, member.user_name, vote_data.selected_days)
    except VoteEngineError as e:
        raise to_http_exception(e)

@router.get("/me", response_model=MyVoteResponse)
async def get_my_vote(
    member: CurrentMember = Depends(get_current_member),
    manager: SessionManager = Depends(get_session_manager),
    ledger: VoteLedger = Depends(get_vote_ledger),
):
    """获取我在进行中会话的投票"""
    try:
        session = manager.require_active_session()
        vote = ledger.get_vote(session.id, member.user_id)
    except VoteEngineError as e:
        raise to_http_exception(e)
    if vote is None:
        return MyVoteResponse(session_id=session.id, voted=False)
    return MyVoteResponse(
        session_id=session.id,
        voted=True,
        selected_days=vote.selected_days,
        voted_at=vote.voted_at,
    )

@router.delete("/me")
async def retract_my_vote(
    member: CurrentMember = Depends(get_current_member),
    ledger: VoteLedger = Depends(get_vote_ledger),
):
    """撤回我在进行中会话的投票"""
    try:
        session_id = ledger.retract_active_vote(member.user_id)
        return {"message": "投票已撤回", "session_id": session_id}
    except VoteEngineError as e:
        raise to_http_exception(e)

@router.get("/sessions/{session_id}/live", response_model=ResultResponse)
async def get_live_results(
    session_id: int,
    engine: AggregationEngine = Depends(get_aggregation_engine),
):
    """实时统计结果"""
    try:
        return engine.compute_live(session_id)
    except VoteEngineError as e:
        raise to_http_exception(e)

@router.get("/sessions/{session_id}/results", response_model=ResultResponse)
async def get_saved_results(
    session_id: int,
    engine: AggregationEngine = Depends(get_aggregation_engine),
):
    """已保存的统计结果"""
    try:
        return engine.get_snapshot(session_id)
    except VoteEngineError as e:
        raise to_http_exception(e)
