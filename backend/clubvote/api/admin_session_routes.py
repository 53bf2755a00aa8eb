"""
投票会话管理API路由（管理员）
"""

from typing import List, Optional

from fastapi import APIRouter, Depends

from clubvote.api.deps import (
    get_aggregation_engine, get_schedule_deriver, get_session_manager, get_vote_ledger, to_http_exception,
)
from clubvote.core.config import settings
from clubvote.core.exceptions import VoteEngineError
from clubvote.schemas.schedule_schemas import DeriveRequest, ScheduleEntryResponse
from clubvote.schemas.vote_schemas import (
    BulkDeleteRequest, DisabledDaysUpdate, ResultResponse, SessionCreate, SessionReopen, SessionResponse,
)
from clubvote.services.aggregation_engine import AggregationEngine
from clubvote.services.schedule_deriver import ScheduleDeriver, max_count_policy, threshold_policy
from clubvote.services.session_manager import SessionManager
from clubvote.services.vote_ledger import VoteLedger

router = APIRouter()

@router.post("/create", response_model=SessionResponse)
async def create_session(
    session_data: SessionCreate,
    manager: SessionManager = Depends(get_session_manager),
):
    """创建投票会话"""
    try:
        session = manager.create_session(
            session_data.week_start_date,
            start_time=session_data.start_time,
            end_time=session_data.end_time,
            disabled_days=session_data.disabled_days,
        )
        return manager.session_summary(session)
    except VoteEngineError as e:
        raise to_http_exception(e)

@router.get("/", response_model=List[SessionResponse])
async def list_sessions(
    skip: int = 0,
    limit: int = 20,
    manager: SessionManager = Depends(get_session_manager),
):
    """获取会话列表"""
    try:
        return [manager.session_summary(s) for s in manager.list_sessions(skip=skip, limit=limit)]
    except VoteEngineError as e:
        raise to_http_exception(e)

@router.put("/active/disabled-days", response_model=SessionResponse)
async def set_active_disabled_days(
    update: DisabledDaysUpdate,
    manager: SessionManager = Depends(get_session_manager),
):
    """设置进行中会话的禁用日期"""
    try:
        session = manager.set_active_disabled_days(update.disabled_days)
        return manager.session_summary(session)
    except VoteEngineError as e:
        raise to_http_exception(e)

@router.post("/bulk-delete")
async def bulk_delete_sessions(
    request: BulkDeleteRequest,
    manager: SessionManager = Depends(get_session_manager),
):
    """批量删除会话（保留 exclude_ids）"""
    try:
        deleted = manager.bulk_delete(request.exclude_ids)
        return {"message": "会话已删除", "deleted_ids": deleted, "deleted_count": len(deleted)}
    except VoteEngineError as e:
        raise to_http_exception(e)

@router.post("/maintenance")
async def fix_session_state(manager: SessionManager = Depends(get_session_manager)):
    """结束过期会话并修复重复的活跃会话"""
    try:
        return manager.validate_and_fix_session_state()
    except VoteEngineError as e:
        raise to_http_exception(e)

@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: int,
    manager: SessionManager = Depends(get_session_manager),
):
    """获取会话信息"""
    try:
        return manager.session_summary(manager.get_session(session_id))
    except VoteEngineError as e:
        raise to_http_exception(e)

@router.post("/{session_id}/open", response_model=SessionResponse)
async def open_session(
    session_id: int,
    manager: SessionManager = Depends(get_session_manager),
):
    """开启待开始的会话"""
    try:
        return manager.session_summary(manager.open_session(session_id))
    except VoteEngineError as e:
        raise to_http_exception(e)

@router.post("/{session_id}/close", response_model=SessionResponse)
async def close_session(
    session_id: int,
    manager: SessionManager = Depends(get_session_manager),
):
    """结束会话"""
    try:
        return manager.session_summary(manager.close_session(session_id))
    except VoteEngineError as e:
        raise to_http_exception(e)

@router.post("/{session_id}/reopen", response_model=SessionResponse)
async def reopen_session(
    session_id: int,
    request: SessionReopen = SessionReopen(),
    manager: SessionManager = Depends(get_session_manager),
):
    """重新开启已结束的会话"""
    try:
        return manager.session_summary(manager.reopen_session(session_id, end_time=request.end_time))
    except VoteEngineError as e:
        raise to_http_exception(e)

@router.put("/{session_id}/disabled-days", response_model=SessionResponse)
async def set_disabled_days(
    session_id: int,
    update: DisabledDaysUpdate,
    manager: SessionManager = Depends(get_session_manager),
):
    """设置会话的禁用日期"""
    try:
        return manager.session_summary(manager.set_disabled_days(session_id, update.disabled_days))
    except VoteEngineError as e:
        raise to_http_exception(e)

@router.delete("/{session_id}")
async def delete_session(
    session_id: int,
    manager: SessionManager = Depends(get_session_manager),
):
    """删除会话（同时删除投票和结果）"""
    try:
        manager.delete_session(session_id)
        return {"message": "会话已删除", "session_id": session_id}
    except VoteEngineError as e:
        raise to_http_exception(e)

@router.delete("/{session_id}/votes")
async def clear_votes(
    session_id: int,
    user_id: Optional[str] = None,
    ledger: VoteLedger = Depends(get_vote_ledger),
):
    """清理会话的投票数据（指定 user_id 时只删除该成员的投票）"""
    try:
        deleted = ledger.clear_votes(session_id, user_id=user_id)
        return {"message": "投票已清理", "session_id": session_id, "deleted_count": deleted}
    except VoteEngineError as e:
        raise to_http_exception(e)

@router.post("/{session_id}/aggregate", response_model=ResultResponse)
async def aggregate_session(
    session_id: int,
    engine: AggregationEngine = Depends(get_aggregation_engine),
):
    """重新统计并保存结果"""
    try:
        return engine.recompute(session_id)
    except VoteEngineError as e:
        raise to_http_exception(e)

@router.post("/{session_id}/schedule", response_model=List[ScheduleEntryResponse])
async def derive_schedule(
    session_id: int,
    request: DeriveRequest = DeriveRequest(),
    deriver: ScheduleDeriver = Depends(get_schedule_deriver),
):
    """根据投票结果生成下周日程"""
    policy = None
    if request.policy == "threshold":
        policy = threshold_policy(request.min_votes or settings.SCHEDULE_MIN_VOTES)
    elif request.policy == "max_count":
        policy = max_count_policy()
    try:
        return deriver.derive_next_week_schedule(
            session_id,
            weekday_defaults=request.weekday_defaults,
            policy=policy,
            default=request.default.model_dump(exclude_none=True) if request.default else None,
        )
    except VoteEngineError as e:
        raise to_http_exception(e)
