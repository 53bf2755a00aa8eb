"""
投票会话管理服务

负责会话的创建、开启、关闭、重新开启、禁用日期设置和删除，并保证同一时间最多
只有一个活跃会话（数据库部分唯一索引 + 事务内检查）。
"""

from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from loguru import logger
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clubvote.core.clock import Clock, system_clock
from clubvote.core.database import storage_guard
from clubvote.core.exceptions import ConflictError, InvalidStateError, NotFoundError, SessionNotActiveError
from clubvote.core.weekdays import Weekday, sort_weekdays, to_weekday
from clubvote.models.schedule_entry import ScheduleEntry
from clubvote.models.vote import Vote
from clubvote.models.vote_result import VoteResult
from clubvote.models.vote_session import DisabledDay, VoteSession
from clubvote.services import events
from clubvote.services.aggregation_engine import ResultCache, result_cache
from clubvote.services.events import EventHub, event_hub
from clubvote.services.time_window import TimeWindowResolver


def normalize_disabled_days(days: Optional[Iterable[Any]]) -> Dict[Weekday, str]:
    """把 [{"day": "FRI", "reason": "节假日"}, ...] 规范化为 {Weekday: reason}"""
    result: Dict[Weekday, str] = {}
    for item in days or []:
        if isinstance(item, dict):
            day, reason = item.get("day"), item.get("reason")
        elif isinstance(item, (tuple, list)):
            day, reason = item[0], item[1] if len(item) > 1 else None
        elif isinstance(item, (str, Weekday)):
            day, reason = item, None
        else:
            day, reason = getattr(item, "day", None), getattr(item, "reason", None)
        weekday = to_weekday(day)
        result[weekday] = (reason or "").strip() or f"{weekday.value} 停止投票"
    return {day: result[day] for day in sort_weekdays(result)}


class SessionManager:
    """投票会话管理服务"""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        resolver: Optional[TimeWindowResolver] = None,
        hub: Optional[EventHub] = None,
        cache: Optional[ResultCache] = None,
    ):
        self.db = db
        self.clock = clock or system_clock
        self.resolver = resolver or TimeWindowResolver()
        self.hub = hub or event_hub
        self.cache = cache or result_cache

    def _now(self) -> datetime:
        return self.resolver.to_storage(self.clock.now())

    # ---------- 查询 ----------

    def get_session(self, session_id: int) -> VoteSession:
        """根据ID获取会话，不存在时抛出 NotFoundError"""
        with storage_guard(self.db):
            session = self.db.query(VoteSession).filter(VoteSession.id == session_id).first()
        if not session:
            raise NotFoundError(f"投票会话 {session_id} 不存在")
        return session

    def get_active_session(self) -> Optional[VoteSession]:
        with storage_guard(self.db):
            return self.db.query(VoteSession).filter(
                VoteSession.is_active.is_(True)
            ).order_by(VoteSession.id.desc()).first()

    def require_active_session(self) -> VoteSession:
        session = self.get_active_session()
        if not session:
            raise NotFoundError("当前没有进行中的投票会话")
        return session

    def list_sessions(self, skip: int = 0, limit: int = 20) -> List[VoteSession]:
        """会话列表（按周倒序）"""
        with storage_guard(self.db):
            return self.db.query(VoteSession).order_by(
                VoteSession.week_start_date.desc(), VoteSession.id.desc()
            ).offset(skip).limit(limit).all()

    def participant_count(self, session_id: int) -> int:
        with storage_guard(self.db):
            return self.db.query(func.count(Vote.id)).filter(Vote.session_id == session_id).scalar() or 0

    def session_summary(self, session: VoteSession) -> Dict[str, Any]:
        """供日历/界面使用的会话摘要"""
        return {
            "id": session.id,
            "week_start_date": session.week_start_date,
            "week_end_date": self.resolver.week_friday(session.week_start_date),
            "start_time": session.start_time,
            "end_time": session.end_time,
            "is_active": session.is_active,
            "is_completed": session.is_completed,
            "status": session.status,
            "disabled_days": [
                {"day": d.weekday, "reason": d.reason} for d in session.disabled_days
            ],
            "participant_count": self.participant_count(session.id),
        }

    # ---------- 生命周期 ----------

    def create_session(
        self,
        week_start_date: date,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        disabled_days: Optional[Iterable[Any]] = None,
        activate: bool = True,
    ) -> VoteSession:
        """创建投票会话；已有活跃会话时抛出 ConflictError"""
        now = self.clock.now()
        default_start, default_end = self.resolver.default_vote_window(now)
        start = self.resolver.to_storage(start_time) if start_time else self.resolver.to_storage(default_start)
        end = self.resolver.to_storage(end_time) if end_time else self.resolver.to_storage(default_end)
        if end <= start:
            raise InvalidStateError("截止时间必须晚于开始时间")

        disabled = normalize_disabled_days(disabled_days)
        week_start = self.resolver.monday_of(week_start_date)

        if activate:
            self.deactivate_expired_sessions()
            active = self.get_active_session()
            if active:
                raise ConflictError(f"已存在进行中的投票会话 {active.id}，请先结束该会话")

        stamp = self._now()
        session = VoteSession(
            week_start_date=week_start,
            start_time=start,
            end_time=end,
            is_active=activate,
            is_completed=False,
            created_at=stamp,
            updated_at=stamp,
        )
        for day, reason in disabled.items():
            session.disabled_days.append(DisabledDay(weekday=day.value, reason=reason))

        self.db.add(session)
        self._commit_activation("创建投票会话失败：已存在进行中的投票会话")
        self.db.refresh(session)

        logger.info(f"🎉 新的投票会话创建完成: {session.id} (周一 {week_start.isoformat()}, 状态 {session.status})")
        self.hub.publish(events.SESSION_CREATED, {"session_id": session.id, "week_start_date": week_start.isoformat()})
        return session

    def open_session(self, session_id: int) -> VoteSession:
        """开启待开始的会话（pending → active）"""
        session = self.get_session(session_id)
        if session.status != "pending":
            raise InvalidStateError(f"投票会话 {session_id} 当前状态为 {session.status}，无法开启")
        return self._activate(session, end_time=None, event_type=events.SESSION_CREATED)

    def close_session(self, session_id: int) -> VoteSession:
        """结束投票会话（active → closed）"""
        session = self.get_session(session_id)
        if session.status == "pending":
            raise InvalidStateError(f"投票会话 {session_id} 尚未开启，请先使用开启操作")
        if session.status == "closed":
            raise InvalidStateError(f"投票会话 {session_id} 已经结束")

        session.is_active = False
        session.is_completed = True
        session.updated_at = self._now()
        with storage_guard(self.db):
            self.db.commit()
            self.db.refresh(session)

        logger.info(f"✅ 投票会话已结束: {session_id}")
        self.hub.publish(events.SESSION_CLOSED, {"session_id": session_id})
        return session

    def reopen_session(self, session_id: int, end_time: Optional[datetime] = None) -> VoteSession:
        """重新开启已结束的会话（同一ID）；其他会话活跃时抛出 ConflictError"""
        session = self.get_session(session_id)
        if session.status == "pending":
            raise InvalidStateError(f"投票会话 {session_id} 尚未开启，请使用开启操作")
        if session.is_active:
            raise InvalidStateError(f"投票会话 {session_id} 正在进行中")
        return self._activate(session, end_time=end_time, event_type=events.SESSION_REOPENED)

    def _activate(self, session: VoteSession, end_time: Optional[datetime], event_type: str) -> VoteSession:
        self.deactivate_expired_sessions()
        active = self.get_active_session()
        if active and active.id != session.id:
            raise ConflictError(f"已存在进行中的投票会话 {active.id}，无法开启会话 {session.id}")

        now = self._now()
        new_end = self.resolver.to_storage(end_time) if end_time else session.end_time
        if new_end <= now:
            raise InvalidStateError(f"投票会话 {session.id} 已过截止时间，请指定新的截止时间")
        if new_end <= session.start_time:
            raise InvalidStateError("截止时间必须晚于开始时间")

        session.end_time = new_end
        session.is_active = True
        session.is_completed = False
        session.updated_at = now
        self._commit_activation(f"无法开启会话 {session.id}：已存在进行中的投票会话")
        self.db.refresh(session)

        logger.info(f"🔄 投票会话已开启: {session.id}")
        self.hub.publish(event_type, {"session_id": session.id})
        return session

    def _commit_activation(self, conflict_message: str) -> None:
        """提交事务；并发请求抢先激活会话时唯一索引冲突转换为 ConflictError"""
        with storage_guard(self.db):
            try:
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                logger.warning(f"⚠️ {conflict_message}")
                raise ConflictError(conflict_message) from e

    def set_disabled_days(self, session_id: int, days: Optional[Iterable[Any]]) -> VoteSession:
        """替换活跃会话的禁用日期。已有投票不受影响，只限制之后的新提交"""
        session = self.get_session(session_id)
        if not session.is_active:
            raise SessionNotActiveError(f"只能修改进行中会话的禁用日期（会话 {session_id} 状态为 {session.status}）")

        disabled = normalize_disabled_days(days)
        with storage_guard(self.db):
            session.disabled_days.clear()
            self.db.flush()
            for day, reason in disabled.items():
                session.disabled_days.append(DisabledDay(weekday=day.value, reason=reason))
            session.updated_at = self._now()
            self.db.commit()
            self.db.refresh(session)

        logger.info(f"📅 会话 {session_id} 禁用日期更新: {[d.value for d in disabled] or '无'}")
        self.hub.publish(events.DISABLED_DAYS_CHANGED, {
            "session_id": session_id,
            "disabled_days": [{"day": d.value, "reason": r} for d, r in disabled.items()],
        })
        return session

    def set_active_disabled_days(self, days: Optional[Iterable[Any]]) -> VoteSession:
        return self.set_disabled_days(self.require_active_session().id, days)

    # ---------- 删除 ----------

    def delete_session(self, session_id: int) -> None:
        """删除会话及其投票、结果快照（不可恢复）"""
        session = self.get_session(session_id)
        with storage_guard(self.db):
            self._delete(session)
            self.db.commit()

        self.cache.invalidate(session_id)
        logger.info(f"🗑️ 投票会话已删除: {session_id}")
        self.hub.publish(events.SESSION_DELETED, {"session_ids": [session_id]})

    def bulk_delete(self, exclude_ids: Optional[Iterable[int]] = None) -> List[int]:
        """删除除 exclude_ids 以外的所有会话，返回被删除的会话ID"""
        keep = set(exclude_ids or [])
        with storage_guard(self.db):
            query = self.db.query(VoteSession)
            if keep:
                query = query.filter(VoteSession.id.notin_(keep))
            sessions = query.all()
            deleted = [s.id for s in sessions]
            for session in sessions:
                self._delete(session)
            self.db.commit()

        for session_id in deleted:
            self.cache.invalidate(session_id)
        logger.info(f"🧹 批量删除投票会话 {len(deleted)} 个（保留 {sorted(keep)}）")
        if deleted:
            self.hub.publish(events.SESSION_DELETED, {"session_ids": deleted})
        return deleted

    def _delete(self, session: VoteSession) -> None:
        self.db.query(Vote).filter(Vote.session_id == session.id).delete(synchronize_session=False)
        self.db.query(VoteResult).filter(VoteResult.session_id == session.id).delete(synchronize_session=False)
        self.db.query(DisabledDay).filter(DisabledDay.session_id == session.id).delete(synchronize_session=False)
        # 已推导的日程保留，只解除与会话的关联
        self.db.query(ScheduleEntry).filter(
            ScheduleEntry.source_session_id == session.id
        ).update({ScheduleEntry.source_session_id: None}, synchronize_session=False)
        self.db.expire(session)
        self.db.delete(session)

    # ---------- 维护 ----------

    def deactivate_expired_sessions(self) -> int:
        """结束所有已过截止时间的活跃会话"""
        now = self._now()
        with storage_guard(self.db):
            expired = self.db.query(VoteSession).filter(
                VoteSession.is_active.is_(True),
                VoteSession.end_time < now,
            ).all()
            for session in expired:
                session.is_active = False
                session.is_completed = True
                session.updated_at = now
            if expired:
                self.db.commit()

        for session in expired:
            logger.info(f"✅ 已过期的会话自动结束: {session.id}")
            self.hub.publish(events.SESSION_CLOSED, {"session_id": session.id, "reason": "expired"})
        return len(expired)

    def ensure_single_active_session(self) -> int:
        """存在多个活跃会话时只保留最新的一个"""
        with storage_guard(self.db):
            active = self.db.query(VoteSession).filter(
                VoteSession.is_active.is_(True)
            ).order_by(VoteSession.id.desc()).all()
            duplicates = active[1:]
            now = self._now()
            for session in duplicates:
                session.is_active = False
                session.is_completed = True
                session.updated_at = now
            if duplicates:
                self.db.commit()

        for session in duplicates:
            logger.warning(f"⚠️ 重复的活跃会话已结束: {session.id}")
        return len(duplicates)

    def validate_and_fix_session_state(self) -> Dict[str, int]:
        """启动时检查并修复会话状态"""
        expired = self.deactivate_expired_sessions()
        duplicates = self.ensure_single_active_session()
        logger.info(f"✅ 会话状态检查完成（过期 {expired}，重复 {duplicates}）")
        return {"expired": expired, "duplicates": duplicates}

    def create_next_week_session(self) -> VoteSession:
        """定时任务：为下周创建（或激活）投票会话"""
        self.deactivate_expired_sessions()
        active = self.get_active_session()
        if active:
            logger.info(f"⚠️ 已有进行中的投票会话: {active.id}，不再创建新会话")
            return active

        now = self.clock.now()
        next_monday = self.resolver.next_week_monday(now)
        with storage_guard(self.db):
            pending = self.db.query(VoteSession).filter(
                VoteSession.is_active.is_(False),
                VoteSession.is_completed.is_(False),
                VoteSession.week_start_date == next_monday,
            ).order_by(VoteSession.id.desc()).first()

        if pending:
            start, end = self.resolver.default_vote_window(now)
            pending.start_time = self.resolver.to_storage(start)
            logger.info(f"✅ 激活已有的待开始会话 {pending.id}")
            return self._activate(pending, end_time=end, event_type=events.SESSION_CREATED)

        return self.create_session(next_monday)
