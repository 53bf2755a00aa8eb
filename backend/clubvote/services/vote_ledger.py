"""
投票记录服务

投票表的写入都经过本服务：submit_vote 每次提交覆盖该成员在会话中的全部选择，
retract_vote / clear_votes 负责成员撤回和管理员清理。
"""

from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy import func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from clubvote.core.clock import Clock, system_clock
from clubvote.core.database import storage_guard
from clubvote.core.exceptions import InvalidDayError, NotFoundError, SessionNotActiveError
from clubvote.core.weekdays import parse_vote_days
from clubvote.models.vote import Vote
from clubvote.models.vote_session import VoteSession
from clubvote.services import events
from clubvote.services.events import EventHub, event_hub

UPSERT_DIALECTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


class VoteLedger:
    """投票记录服务"""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        hub: Optional[EventHub] = None,
    ):
        self.db = db
        self.clock = clock or system_clock
        self.hub = hub or event_hub

    def _get_session(self, session_id: int) -> VoteSession:
        with storage_guard(self.db):
            session = self.db.query(VoteSession).filter(VoteSession.id == session_id).first()
        if not session:
            raise NotFoundError(f"投票会话 {session_id} 不存在")
        return session

    def _require_open(self, session: VoteSession, now) -> None:
        if not session.is_active:
            raise SessionNotActiveError(f"投票会话 {session.id} 未在进行中（状态: {session.status}）")
        if session.end_time < now:
            raise SessionNotActiveError(f"投票会话 {session.id} 已过截止时间")

    def _active_session_id(self) -> int:
        with storage_guard(self.db):
            session = self.db.query(VoteSession).filter(
                VoteSession.is_active.is_(True)
            ).order_by(VoteSession.id.desc()).first()
        if not session:
            raise NotFoundError("当前没有进行中的投票会话")
        return session.id

    def submit_vote(self, session_id: int, user_id: str, user_name: str, selected_days: Any) -> Vote:
        """提交或覆盖投票"""
        session = self._get_session(session_id)
        now = self.clock.now().replace(tzinfo=None)
        self._require_open(session, now)

        days = parse_vote_days(selected_days)
        blocked = sorted(d.value for d in days if d.value in session.disabled_weekdays)
        if blocked:
            reasons = {d.weekday: d.reason for d in session.disabled_days}
            detail = ", ".join(f"{day}({reasons[day]})" for day in blocked)
            logger.warning(f"⚠️ 用户 {user_id} 选择了被禁用的日期: {detail}")
            raise InvalidDayError(f"以下日期已被禁用，不能投票: {detail}")

        codes = [d.value for d in days]
        values = {
            "session_id": session_id,
            "user_id": str(user_id),
            "user_name": user_name,
            "selected_days": codes,
            "voted_at": now,
        }

        with storage_guard(self.db):
            self._upsert(values)
            self.db.commit()
            vote = self.db.query(Vote).filter(
                Vote.session_id == session_id, Vote.user_id == str(user_id)
            ).one()

        logger.info(f"🗳️ 用户 {user_name}({user_id}) 在会话 {session_id} 投票: {codes or '无'}")
        self.hub.publish(events.VOTE_SUBMITTED, {
            "session_id": session_id,
            "user_id": str(user_id),
            "selected_days": codes,
        })
        return vote

    def _upsert(self, values: Dict[str, Any]) -> None:
        """以 (session_id, user_id) 为键插入或覆盖"""
        dialect = self.db.get_bind().dialect.name
        insert = UPSERT_DIALECTS.get(dialect)
        if insert is None:
            # 其他数据库：先查后写（依赖唯一约束防止重复行）
            vote = self.db.query(Vote).filter(
                Vote.session_id == values["session_id"], Vote.user_id == values["user_id"]
            ).with_for_update().first()
            if vote is None:
                self.db.add(Vote(**values))
            else:
                vote.user_name = values["user_name"]
                vote.selected_days = values["selected_days"]
                vote.voted_at = values["voted_at"]
            return

        stmt = insert(Vote).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Vote.session_id, Vote.user_id],
            set_={
                "user_name": stmt.excluded.user_name,
                "selected_days": stmt.excluded.selected_days,
                "voted_at": stmt.excluded.voted_at,
            },
        )
        self.db.execute(stmt)

    def submit_active_vote(self, user_id: str, user_name: str, selected_days: Any) -> Vote:
        """向当前活跃会话投票"""
        return self.submit_vote(self._active_session_id(), user_id, user_name, selected_days)

    def retract_vote(self, session_id: int, user_id: str) -> None:
        """成员撤回自己的投票，只允许在投票进行中"""
        session = self._get_session(session_id)
        self._require_open(session, self.clock.now().replace(tzinfo=None))

        with storage_guard(self.db):
            deleted = self.db.query(Vote).filter(
                Vote.session_id == session_id, Vote.user_id == str(user_id)
            ).delete(synchronize_session=False)
            self.db.commit()
        if not deleted:
            raise NotFoundError(f"用户 {user_id} 在会话 {session_id} 中没有投票")

        logger.info(f"↩️ 用户 {user_id} 撤回了会话 {session_id} 的投票")
        self.hub.publish(events.VOTE_RETRACTED, {"session_id": session_id, "user_id": str(user_id)})

    def retract_active_vote(self, user_id: str) -> int:
        """撤回在当前活跃会话中的投票，返回会话ID"""
        session_id = self._active_session_id()
        self.retract_vote(session_id, user_id)
        return session_id

    def clear_votes(self, session_id: int, user_id: Optional[str] = None) -> int:
        """管理员清理投票数据：指定 user_id 时只删除该成员的投票，返回删除数量"""
        self._get_session(session_id)
        with storage_guard(self.db):
            query = self.db.query(Vote).filter(Vote.session_id == session_id)
            if user_id is not None:
                query = query.filter(Vote.user_id == str(user_id))
            deleted = query.delete(synchronize_session=False)
            self.db.commit()

        logger.info(f"🧹 会话 {session_id} 清理投票 {deleted} 条（用户: {user_id or '全部'}）")
        if deleted:
            self.hub.publish(events.VOTES_CLEARED, {
                "session_id": session_id,
                "user_id": str(user_id) if user_id is not None else None,
                "count": deleted,
            })
        return deleted

    def get_vote(self, session_id: int, user_id: str) -> Optional[Vote]:
        """获取成员的投票，未投票时返回None"""
        self._get_session(session_id)
        with storage_guard(self.db):
            return self.db.query(Vote).filter(
                Vote.session_id == session_id, Vote.user_id == str(user_id)
            ).first()

    def list_votes(self, session_id: int) -> List[Vote]:
        self._get_session(session_id)
        with storage_guard(self.db):
            return self.db.query(Vote).filter(Vote.session_id == session_id).order_by(Vote.id).all()

    def count_votes(self, session_id: int) -> int:
        with storage_guard(self.db):
            return self.db.query(func.count(Vote.id)).filter(Vote.session_id == session_id).scalar() or 0
