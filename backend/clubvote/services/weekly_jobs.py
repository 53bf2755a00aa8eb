"""
每周定时任务

- 每周一 00:01（俱乐部时区）：推导本周比赛日程，并开启下周的投票会话
- 每10分钟：结束已过截止时间的会话
"""

from typing import Any, Callable, Dict, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger
from sqlalchemy.orm import Session

from clubvote.core.clock import Clock, system_clock
from clubvote.core.config import settings
from clubvote.core.exceptions import VoteEngineError
from clubvote.models.schedule_entry import ScheduleEntry
from clubvote.models.vote_session import VoteSession
from clubvote.services.events import EventHub, event_hub
from clubvote.services.schedule_deriver import ScheduleDeriver
from clubvote.services.session_manager import SessionManager
from clubvote.services.time_window import TimeWindowResolver


def run_weekly_rollover(db: Session, clock: Optional[Clock] = None, hub: Optional[EventHub] = None) -> Dict[str, Any]:
    """周一任务：结束过期或目标周已开始的会话 → 为本周生成日程 → 开启下周投票"""
    clock = clock or system_clock
    hub = hub or event_hub
    resolver = TimeWindowResolver()
    manager = SessionManager(db, clock=clock, resolver=resolver, hub=hub)
    deriver = ScheduleDeriver(db, clock=clock, resolver=resolver, hub=hub)

    expired = manager.deactivate_expired_sessions()

    this_monday = resolver.this_week_monday(clock.now())
    superseded = None
    active = manager.get_active_session()
    if active and active.week_start_date <= this_monday:
        # 目标周已经开始，投票结束，由下周会话接替
        logger.info(f"🔒 会话 {active.id} 的目标周已开始，结束投票")
        manager.close_session(active.id)
        superseded = active.id

    completed = db.query(VoteSession).filter(
        VoteSession.is_completed.is_(True),
        VoteSession.is_active.is_(False),
        VoteSession.week_start_date == this_monday,
    ).order_by(VoteSession.id.desc()).all()

    derived = []
    for session in completed:
        has_entries = db.query(ScheduleEntry.id).filter(
            ScheduleEntry.source_session_id == session.id
        ).first() is not None
        if has_entries:
            logger.info(f"ℹ️ 会话 {session.id} 已生成过日程，跳过")
            continue
        entries = deriver.derive_next_week_schedule(session.id)
        derived.append({"session_id": session.id, "entries": len(entries)})

    if not completed:
        logger.info(f"ℹ️ 本周（{this_monday.isoformat()}）没有已结束的投票会话")

    next_session = manager.create_next_week_session()
    logger.info(f"✅ 每周一自动任务完成：下周会话 {next_session.id}")
    return {
        "expired": expired,
        "superseded": superseded,
        "derived": derived,
        "next_session_id": next_session.id,
    }


def run_expiry_sweep(db: Session, clock: Optional[Clock] = None, hub: Optional[EventHub] = None) -> int:
    """结束已过截止时间的会话"""
    return SessionManager(db, clock=clock, hub=hub).deactivate_expired_sessions()


def _on_job_error(event):
    logger.error(f"❌ 定时任务失败: job_id={event.job_id} error={event.exception}")
    if event.traceback:
        logger.error(f"定时任务 {event.job_id} 调用栈:\n{event.traceback}")


def _on_job_missed(event):
    logger.warning(f"⚠️ 定时任务错过执行时间: job_id={event.job_id} scheduled_run_time={event.scheduled_run_time}")


class WeeklyVoteScheduler:
    """投票会话定时任务调度器"""

    def __init__(self, session_factory: Callable[[], Session], clock: Optional[Clock] = None, hub: Optional[EventHub] = None):
        self.session_factory = session_factory
        self.clock = clock or system_clock
        self.hub = hub or event_hub
        self.scheduler = BackgroundScheduler(timezone=settings.TIMEZONE)
        self._configured = False

    def setup(self):
        """注册定时任务"""
        self.scheduler.add_job(
            self.weekly_rollover,
            CronTrigger(
                day_of_week="mon",
                hour=settings.WEEKLY_JOB_HOUR,
                minute=settings.WEEKLY_JOB_MINUTE,
                timezone=settings.TIMEZONE,
            ),
            id="weekly_vote_rollover",
            name="Weekly Vote Rollover",
            replace_existing=True,
            misfire_grace_time=3600,
        )
        logger.info(f"每周一 {settings.WEEKLY_JOB_HOUR:02d}:{settings.WEEKLY_JOB_MINUTE:02d} 投票会话任务已注册")

        self.scheduler.add_job(
            self.expiry_sweep,
            IntervalTrigger(minutes=10),
            id="vote_session_expiry_sweep",
            name="Vote Session Expiry Sweep",
            replace_existing=True,
        )
        self.scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
        self.scheduler.add_listener(_on_job_missed, EVENT_JOB_MISSED)
        self._configured = True

    def start(self):
        if not self._configured:
            self.setup()
        self.scheduler.start()
        logger.info("⏰ 定时任务调度器已启动")

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("定时任务调度器已停止")

    def weekly_rollover(self) -> Optional[Dict[str, Any]]:
        db = self.session_factory()
        try:
            return run_weekly_rollover(db, clock=self.clock, hub=self.hub)
        except VoteEngineError as e:
            logger.error(f"❌ 每周一自动任务失败: {e.kind} {e.message}")
            raise
        finally:
            db.close()

    def expiry_sweep(self) -> int:
        db = self.session_factory()
        try:
            return run_expiry_sweep(db, clock=self.clock, hub=self.hub)
        finally:
            db.close()
