"""
投票结果统计服务

computeLive 从投票表实时统计；save_snapshot 把统计结果保存为快照。快照只是缓存，
任何时候都可以从投票表重新得到完全相同的内容。
"""

import copy
import threading
import unicodedata
from typing import Any, Callable, Dict, Optional

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clubvote.core.clock import Clock, system_clock
from clubvote.core.database import storage_guard
from clubvote.core.exceptions import NotFoundError
from clubvote.core.utils import format_timestamp_with_timezone
from clubvote.core.weekdays import WEEKDAYS
from clubvote.models.vote import Vote
from clubvote.models.vote_result import VoteResult
from clubvote.models.vote_session import VoteSession
from clubvote.services import events
from clubvote.services.events import EventHub, event_hub


class ResultCache:
    """按会话ID缓存已保存的结果，需显式失效"""

    def __init__(self):
        self._items: Dict[int, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get_or_load(self, session_id: int, loader: Callable[[], Optional[Dict[str, Any]]]) -> Optional[Dict[str, Any]]:
        with self._lock:
            cached = self._items.get(session_id)
        if cached is not None:
            return copy.deepcopy(cached)

        value = loader()
        if value is not None:
            with self._lock:
                self._items[session_id] = copy.deepcopy(value)
        return value

    def invalidate(self, session_id: int) -> None:
        with self._lock:
            self._items.pop(session_id, None)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __contains__(self, session_id: int) -> bool:
        with self._lock:
            return session_id in self._items


# 全局结果缓存
result_cache = ResultCache()


def participant_sort_key(participant: Dict[str, Any]):
    """参与者排序：名称（Unicode规范化、忽略大小写）→ 原名 → 用户ID"""
    name = participant["userName"] or ""
    return (unicodedata.normalize("NFKC", name).casefold(), name, participant["userId"])


class AggregationEngine:
    """投票结果统计服务"""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        hub: Optional[EventHub] = None,
        cache: Optional[ResultCache] = None,
    ):
        self.db = db
        self.clock = clock or system_clock
        self.hub = hub or event_hub
        self.cache = cache or result_cache

    def _get_session(self, session_id: int) -> VoteSession:
        with storage_guard(self.db):
            session = self.db.query(VoteSession).filter(VoteSession.id == session_id).first()
        if not session:
            raise NotFoundError(f"投票会话 {session_id} 不存在")
        return session

    def compute_live(self, session_id: int) -> Dict[str, Any]:
        """实时统计每个工作日的票数和参与者"""
        session = self._get_session(session_id)
        with storage_guard(self.db):
            votes = self.db.query(Vote).filter(Vote.session_id == session_id).order_by(Vote.id).all()

        days: Dict[str, Dict[str, Any]] = {
            day.value: {"count": 0, "participants": []} for day in WEEKDAYS
        }
        total_votes = 0
        for vote in votes:
            participant = {
                "userId": vote.user_id,
                "userName": vote.user_name,
                "votedAt": format_timestamp_with_timezone(vote.voted_at),
            }
            for day in vote.selected_days or []:
                if day not in days:
                    # 不应出现，写入时已校验
                    logger.warning(f"⚠️ 会话 {session_id} 中存在无效日期 {day!r}（用户 {vote.user_id}）")
                    continue
                days[day]["participants"].append(dict(participant))
                total_votes += 1

        for result in days.values():
            result["participants"].sort(key=participant_sort_key)
            result["count"] = len(result["participants"])

        return {
            "session_id": session.id,
            "week_start_date": session.week_start_date.isoformat(),
            "days": days,
            "total_participants": len(votes),
            "total_votes": total_votes,
        }

    def save_snapshot(self, session_id: int) -> Dict[str, Any]:
        """保存统计快照（整体覆盖；内容未变化时保持原快照不动）"""
        live = self.compute_live(session_id)

        with storage_guard(self.db):
            existing = self.db.query(VoteResult).filter(VoteResult.session_id == session_id).first()
            if existing is not None and self._same(existing, live):
                logger.info(f"📊 会话 {session_id} 的结果未变化，快照保持不变")
                return self._to_snapshot(existing, live["week_start_date"])

            computed_at = self.clock.now().replace(tzinfo=None)
            row = existing or VoteResult(session_id=session_id)
            row.days = live["days"]
            row.total_participants = live["total_participants"]
            row.total_votes = live["total_votes"]
            row.computed_at = computed_at
            if existing is None:
                self.db.add(row)
            try:
                self.db.commit()
            except IntegrityError:
                # 并发保存：另一请求已插入，改为覆盖
                self.db.rollback()
                row = self.db.query(VoteResult).filter(VoteResult.session_id == session_id).one()
                row.days = live["days"]
                row.total_participants = live["total_participants"]
                row.total_votes = live["total_votes"]
                row.computed_at = computed_at
                self.db.commit()
            self.db.refresh(row)

        self.cache.invalidate(session_id)
        logger.info(f"💾 会话 {session_id} 结果快照已保存（参与 {live['total_participants']} 人）")
        self.hub.publish(events.RESULTS_SAVED, {"session_id": session_id})
        return self._to_snapshot(row, live["week_start_date"])

    def recompute(self, session_id: int) -> Dict[str, Any]:
        """手动重新统计并保存"""
        self.cache.invalidate(session_id)
        return self.save_snapshot(session_id)

    def get_snapshot(self, session_id: int) -> Dict[str, Any]:
        """获取已保存的结果，未统计过时抛出 NotFoundError"""
        snapshot = self.cache.get_or_load(session_id, lambda: self._load_snapshot(session_id))
        if snapshot is None:
            raise NotFoundError(f"投票会话 {session_id} 还没有保存的结果")
        return snapshot

    def invalidate(self, session_id: Optional[int] = None) -> None:
        if session_id is None:
            self.cache.clear()
        else:
            self.cache.invalidate(session_id)

    def _load_snapshot(self, session_id: int) -> Optional[Dict[str, Any]]:
        with storage_guard(self.db):
            row = self.db.query(VoteResult).filter(VoteResult.session_id == session_id).first()
            if row is None:
                return None
            session = self.db.query(VoteSession).filter(VoteSession.id == session_id).first()
        week_start = session.week_start_date.isoformat() if session else None
        return self._to_snapshot(row, week_start)

    @staticmethod
    def _same(row: VoteResult, live: Dict[str, Any]) -> bool:
        return (
            row.days == live["days"]
            and row.total_participants == live["total_participants"]
            and row.total_votes == live["total_votes"]
        )

    @staticmethod
    def _to_snapshot(row: VoteResult, week_start_date: Optional[str]) -> Dict[str, Any]:
        return {
            "session_id": row.session_id,
            "week_start_date": week_start_date,
            "days": copy.deepcopy(row.days),
            "total_participants": row.total_participants,
            "total_votes": row.total_votes,
            "computed_at": format_timestamp_with_timezone(row.computed_at),
        }

    @staticmethod
    def day_counts(result: Dict[str, Any]) -> Dict[str, int]:
        """{"MON": 2, ...}"""
        return {day: info["count"] for day, info in result["days"].items()}
