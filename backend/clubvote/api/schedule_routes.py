"""
比赛日程与参与率API路由
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from clubvote.api.deps import CurrentMember, get_current_member, get_schedule_deriver, to_http_exception
from clubvote.core.exceptions import VoteEngineError
from clubvote.schemas.schedule_schemas import MemberStatsResponse, ScheduleEntryResponse
from clubvote.services.schedule_deriver import ScheduleDeriver

router = APIRouter()

@router.get("", response_model=List[ScheduleEntryResponse])
async def list_schedule(
    week_start: Optional[date] = Query(default=None, description="只返回该日期所在周的日程"),
    deriver: ScheduleDeriver = Depends(get_schedule_deriver),
):
    """获取比赛日程"""
    try:
        return deriver.list_entries(week_start)
    except VoteEngineError as e:
        raise to_http_exception(e)

@router.post("/{entry_id}/confirm", response_model=ScheduleEntryResponse)
async def confirm_schedule_entry(
    entry_id: int,
    deriver: ScheduleDeriver = Depends(get_schedule_deriver),
):
    """确认日程（确认后不再被自动推导覆盖）"""
    try:
        return deriver.confirm_entry(entry_id)
    except VoteEngineError as e:
        raise to_http_exception(e)

@router.get("/stats/me", response_model=MemberStatsResponse)
async def get_my_stats(
    member_since: Optional[date] = None,
    member: CurrentMember = Depends(get_current_member),
    deriver: ScheduleDeriver = Depends(get_schedule_deriver),
):
    """我的投票参与率和比赛参与率"""
    try:
        return deriver.member_stats(member.user_id, member_since)
    except VoteEngineError as e:
        raise to_http_exception(e)

@router.get("/stats/{user_id}", response_model=MemberStatsResponse)
async def get_member_stats(
    user_id: str,
    member_since: Optional[date] = None,
    deriver: ScheduleDeriver = Depends(get_schedule_deriver),
):
    """成员的投票参与率和比赛参与率"""
    try:
        return deriver.member_stats(user_id, member_since)
    except VoteEngineError as e:
        raise to_http_exception(e)
