"""
日程推导与参与率统计服务

已结束的投票会话 → 统计快照 → 按选择策略决定比赛日 → 生成下周的比赛日程。
"""

from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from loguru import logger
from sqlalchemy.orm import Session

from clubvote.core.clock import Clock, system_clock
from clubvote.core.config import settings
from clubvote.core.database import storage_guard
from clubvote.core.exceptions import NotFoundError, SessionNotCompletedError
from clubvote.core.utils import attendance_rate
from clubvote.core.weekdays import Weekday, WEEKDAYS, to_weekday
from clubvote.models.schedule_entry import EVENT_TYPES, RosterMember, ScheduleEntry
from clubvote.models.vote import Vote
from clubvote.models.vote_session import VoteSession
from clubvote.services import events
from clubvote.services.aggregation_engine import AggregationEngine, ResultCache
from clubvote.services.events import EventHub, event_hub
from clubvote.services.time_window import TimeWindowResolver

SelectionPolicy = Callable[[Dict[Weekday, int]], List[Weekday]]


def max_count_policy() -> SelectionPolicy:
    """票数最高的工作日成为比赛日（并列时全部选中，最高票为0时不安排）"""
    def select(counts: Dict[Weekday, int]) -> List[Weekday]:
        top = max(counts.values(), default=0)
        if top <= 0:
            return []
        return [day for day in WEEKDAYS if counts.get(day, 0) == top]

    select.rule = "max_count"
    return select


def threshold_policy(min_votes: int) -> SelectionPolicy:
    """票数达到 min_votes 的工作日都成为比赛日"""
    if min_votes < 1:
        raise ValueError("min_votes 必须大于等于1")

    def select(counts: Dict[Weekday, int]) -> List[Weekday]:
        return [day for day in WEEKDAYS if counts.get(day, 0) >= min_votes]

    select.rule = f"threshold>={min_votes}"
    return select


def policy_from_settings() -> SelectionPolicy:
    if settings.SCHEDULE_POLICY == "threshold":
        return threshold_policy(settings.SCHEDULE_MIN_VOTES)
    if settings.SCHEDULE_POLICY == "max_count":
        return max_count_policy()
    raise ValueError(f"未知的日程选择策略: {settings.SCHEDULE_POLICY}")


class ScheduleDeriver:
    """日程推导与参与率统计服务"""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        resolver: Optional[TimeWindowResolver] = None,
        hub: Optional[EventHub] = None,
        cache: Optional[ResultCache] = None,
        policy: Optional[SelectionPolicy] = None,
    ):
        self.db = db
        self.clock = clock or system_clock
        self.resolver = resolver or TimeWindowResolver()
        self.hub = hub or event_hub
        self.aggregation = AggregationEngine(db, clock=self.clock, hub=self.hub, cache=cache)
        self.policy = policy

    # ---------- 日程推导 ----------

    def derive_next_week_schedule(
        self,
        session_id: int,
        weekday_defaults: Optional[Mapping[Union[str, Weekday], Mapping[str, Any]]] = None,
        policy: Optional[SelectionPolicy] = None,
        default: Optional[Mapping[str, Any]] = None,
    ) -> List[ScheduleEntry]:
        """根据已结束会话的投票结果生成比赛日程（整体替换未确认的自动日程）

        日程日期落在会话 week_start_date 所在的那一周（周一至周五），即投票时的"下周"。
        """
        with storage_guard(self.db):
            session = self.db.query(VoteSession).filter(VoteSession.id == session_id).first()
        if not session:
            raise NotFoundError(f"投票会话 {session_id} 不存在")
        if session.is_active or not session.is_completed:
            raise SessionNotCompletedError(f"投票会话 {session_id} 尚未结束，不能生成日程")

        select = policy or self.policy or policy_from_settings()
        result = self.aggregation.save_snapshot(session_id)
        counts = {Weekday(day): info["count"] for day, info in result["days"].items()}
        chosen = select(counts)
        defaults = self._normalize_defaults(weekday_defaults)
        week_dates = self.resolver.week_dates(session.week_start_date)

        with storage_guard(self.db):
            existing = self.db.query(ScheduleEntry).filter(
                ScheduleEntry.source_session_id == session_id
            ).all()
            confirmed_days = {e.weekday for e in existing if e.confirmed}
            stale = [e for e in existing if e.auto_generated and not e.confirmed]
            if stale:
                self.db.query(RosterMember).filter(
                    RosterMember.entry_id.in_([e.id for e in stale])
                ).delete(synchronize_session=False)
            for entry in stale:
                self.db.expire(entry)
                self.db.delete(entry)
            self.db.flush()

            now = self.clock.now().replace(tzinfo=None)
            for day in chosen:
                if day.value in confirmed_days:
                    logger.info(f"ℹ️ {day.value} 的日程已确认，跳过重新生成")
                    continue
                values = self._defaults_for(day, defaults, default)
                entry = ScheduleEntry(
                    source_session_id=session_id,
                    weekday=day.value,
                    date=week_dates[day],
                    time=values["time"],
                    location=values["location"],
                    event_type=values["event_type"],
                    description=values.get("description"),
                    mercenary_count=values.get("mercenary_count", 0),
                    auto_generated=True,
                    confirmed=False,
                    created_at=now,
                    updated_at=now,
                )
                for participant in result["days"][day.value]["participants"]:
                    entry.roster.append(RosterMember(
                        user_id=participant["userId"],
                        user_name=participant["userName"],
                    ))
                self.db.add(entry)
            self.db.commit()

            entries = self.db.query(ScheduleEntry).filter(
                ScheduleEntry.source_session_id == session_id
            ).order_by(ScheduleEntry.date, ScheduleEntry.id).all()

        rule = getattr(select, "rule", getattr(select, "__name__", "custom"))
        logger.info(
            f"✅ 会话 {session_id} 日程推导完成（策略 {rule}）: "
            f"{[d.value for d in chosen] or '无比赛日'}，删除旧自动日程 {len(stale)} 个"
        )
        self.hub.publish(events.SCHEDULE_DERIVED, {
            "session_id": session_id,
            "rule": rule,
            "weekdays": [d.value for d in chosen],
            "entry_ids": [e.id for e in entries],
        })
        return entries

    @staticmethod
    def _normalize_defaults(weekday_defaults) -> Dict[Weekday, Dict[str, Any]]:
        normalized: Dict[Weekday, Dict[str, Any]] = {}
        for key, value in (weekday_defaults or {}).items():
            if value is None:
                continue
            if hasattr(value, "model_dump"):
                value = value.model_dump(exclude_none=True)
            normalized[to_weekday(key)] = {k: v for k, v in dict(value).items() if v is not None}
        return normalized

    @staticmethod
    def _defaults_for(day: Weekday, defaults: Dict[Weekday, Dict[str, Any]], default: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        values = {
            "time": settings.DEFAULT_GAME_TIME,
            "location": settings.DEFAULT_GAME_LOCATION,
            "event_type": settings.DEFAULT_EVENT_TYPE,
            "mercenary_count": 0,
        }
        values.update({k: v for k, v in dict(default or {}).items() if v is not None})
        values.update(defaults.get(day, {}))
        values["event_type"] = str(values["event_type"]).upper()
        if values["event_type"] not in EVENT_TYPES:
            values["event_type"] = "OTHER"
        return values

    def confirm_entry(self, entry_id: int) -> ScheduleEntry:
        """确认日程，确认后的日程不会被重新推导覆盖"""
        with storage_guard(self.db):
            entry = self.db.query(ScheduleEntry).filter(ScheduleEntry.id == entry_id).first()
            if not entry:
                raise NotFoundError(f"日程 {entry_id} 不存在")
            entry.confirmed = True
            entry.updated_at = self.clock.now().replace(tzinfo=None)
            self.db.commit()
            self.db.refresh(entry)

        logger.info(f"📌 日程已确认: {entry_id} ({entry.date.isoformat()} {entry.weekday})")
        self.hub.publish(events.SCHEDULE_CHANGED, {"entry_id": entry_id, "confirmed": True})
        return entry

    def list_entries(self, week_start: Optional[date] = None) -> List[ScheduleEntry]:
        """日程列表；指定周时只返回该周周一至周日的日程"""
        with storage_guard(self.db):
            query = self.db.query(ScheduleEntry)
            if week_start is not None:
                monday = self.resolver.monday_of(week_start)
                query = query.filter(
                    ScheduleEntry.date >= monday,
                    ScheduleEntry.date < monday + timedelta(days=7),
                )
            return query.order_by(ScheduleEntry.date, ScheduleEntry.id).all()

    # ---------- 参与率 ----------

    def _eligible_sessions(self, member_since: Optional[date]):
        query = self.db.query(VoteSession)
        if member_since is not None:
            query = query.filter(VoteSession.week_start_date >= self.resolver.monday_of(member_since))
        return query.order_by(VoteSession.week_start_date.desc(), VoteSession.id.desc())

    def _confirmed_entries(self, member_since: Optional[date]):
        query = self.db.query(ScheduleEntry).filter(ScheduleEntry.confirmed.is_(True))
        if member_since is not None:
            query = query.filter(ScheduleEntry.date >= member_since)
        return query

    def vote_participation(self, user_id: str, member_since: Optional[date] = None) -> Dict[str, Any]:
        """投票参与情况：参与的会话数 / 有资格参与的会话数"""
        with storage_guard(self.db):
            sessions = self._eligible_sessions(member_since).all()
            voted = {
                row[0] for row in self.db.query(Vote.session_id).filter(Vote.user_id == str(user_id)).all()
            }
        participated = sum(1 for s in sessions if s.id in voted)
        return {
            "total": len(sessions),
            "participated": participated,
            "missed": max(0, len(sessions) - participated),
            "sessions": [
                {
                    "id": s.id,
                    "week_start_date": s.week_start_date,
                    "status": s.status,
                    "participated": s.id in voted,
                }
                for s in sessions
            ],
        }

    def game_participation(self, user_id: str, member_since: Optional[date] = None) -> Dict[str, int]:
        """比赛参与情况：名单中包含该成员的已确认日程 / 全部已确认日程"""
        with storage_guard(self.db):
            total = self._confirmed_entries(member_since).count()
            participated = self._confirmed_entries(member_since).join(RosterMember).filter(
                RosterMember.user_id == str(user_id)
            ).count()
        return {
            "total": total,
            "participated": participated,
            "missed": max(0, total - participated),
        }

    def compute_attendance_rate(self, user_id: str, basis: str = "vote", member_since: Optional[date] = None) -> int:
        """参与率百分比：basis 为 vote（投票会话）或 game（已确认比赛）"""
        if basis == "vote":
            details = self.vote_participation(user_id, member_since)
        elif basis == "game":
            details = self.game_participation(user_id, member_since)
        else:
            raise ValueError(f"未知的统计口径: {basis}")
        return attendance_rate(details["participated"], details["total"])

    def member_stats(self, user_id: str, member_since: Optional[date] = None) -> Dict[str, Any]:
        """成员的投票参与率和比赛参与率"""
        vote_details = self.vote_participation(user_id, member_since)
        game_details = self.game_participation(user_id, member_since)
        return {
            "user_id": str(user_id),
            "vote_attendance": attendance_rate(vote_details["participated"], vote_details["total"]),
            "game_attendance": attendance_rate(game_details["participated"], game_details["total"]),
            "vote_details": vote_details,
            "game_details": game_details,
        }
