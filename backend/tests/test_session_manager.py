import threading
from datetime import date, datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from clubvote.core.database import build_engine, init_db
from clubvote.core.exceptions import (
    ConflictError, InvalidStateError, NotFoundError, SessionNotActiveError, StorageTimeoutError,
    VoteEngineError,
)
from clubvote.models.schedule_entry import ScheduleEntry
from clubvote.models.vote import Vote
from clubvote.models.vote_result import VoteResult
from clubvote.models.vote_session import DisabledDay, VoteSession
from clubvote.services import events
from clubvote.services.aggregation_engine import ResultCache
from clubvote.services.events import EventHub
from clubvote.services.session_manager import SessionManager, normalize_disabled_days
from clubvote.core.weekdays import Weekday


def test_create_session_uses_default_window(manager, next_monday, published):
    session = manager.create_session(next_monday)

    assert session.week_start_date == date(2025, 10, 27)
    assert session.start_time == datetime(2025, 10, 19, 15, 1)
    assert session.end_time == datetime(2025, 10, 31, 8, 0)
    assert session.status == "active"
    assert published[-1][0] == events.SESSION_CREATED


def test_create_session_snaps_week_start_to_monday(manager):
    session = manager.create_session(date(2025, 10, 29))
    assert session.week_start_date == date(2025, 10, 27)


def test_second_active_session_conflicts(manager, active_session):
    with pytest.raises(ConflictError):
        manager.create_session(date(2025, 11, 3))

    assert manager.get_active_session().id == active_session.id


def test_pending_session_does_not_conflict(manager, active_session):
    pending = manager.create_session(date(2025, 11, 3), activate=False)
    assert pending.status == "pending"
    with pytest.raises(ConflictError):
        manager.open_session(pending.id)


def test_end_time_must_follow_start_time(manager, next_monday):
    with pytest.raises(InvalidStateError):
        manager.create_session(
            next_monday,
            start_time=datetime(2025, 10, 22, 0, 0, tzinfo=timezone.utc),
            end_time=datetime(2025, 10, 21, 0, 0, tzinfo=timezone.utc),
        )


def test_close_and_reopen_keep_session_id(manager, active_session, published):
    closed = manager.close_session(active_session.id)
    assert closed.status == "closed"
    assert manager.get_active_session() is None

    with pytest.raises(InvalidStateError):
        manager.close_session(active_session.id)

    reopened = manager.reopen_session(active_session.id)
    assert reopened.id == active_session.id
    assert reopened.status == "active"
    assert published[-1][0] == events.SESSION_REOPENED


def test_reopen_conflicts_with_other_active_session(manager, active_session):
    manager.close_session(active_session.id)
    other = manager.create_session(date(2025, 11, 3))

    with pytest.raises(ConflictError):
        manager.reopen_session(active_session.id)
    assert manager.get_active_session().id == other.id


def test_reopen_after_deadline_requires_new_end_time(manager, active_session, clock):
    manager.close_session(active_session.id)
    clock.set(datetime(2025, 11, 1, 0, 0, tzinfo=timezone.utc))

    with pytest.raises(InvalidStateError):
        manager.reopen_session(active_session.id)

    reopened = manager.reopen_session(
        active_session.id, end_time=datetime(2025, 11, 2, 0, 0, tzinfo=timezone.utc)
    )
    assert reopened.is_active
    assert reopened.end_time == datetime(2025, 11, 2, 0, 0)


def test_open_only_pending_sessions(manager, active_session):
    with pytest.raises(InvalidStateError):
        manager.open_session(active_session.id)


def test_unknown_session(manager):
    with pytest.raises(NotFoundError):
        manager.get_session(999)
    with pytest.raises(NotFoundError):
        manager.close_session(999)


def test_disabled_days_replace_previous_set(manager, active_session, published):
    manager.set_disabled_days(active_session.id, [{"day": "FRI", "reason": "场地维修"}, "TUE"])
    session = manager.set_disabled_days(active_session.id, [{"day": "WED", "reason": ""}])

    assert session.disabled_weekdays == {"WED"}
    assert session.disabled_days[0].reason == "WED 停止投票"
    assert published[-1][0] == events.DISABLED_DAYS_CHANGED


def test_disabled_days_require_active_session(manager, active_session):
    manager.close_session(active_session.id)
    with pytest.raises(SessionNotActiveError):
        manager.set_disabled_days(active_session.id, ["MON"])


def test_set_active_disabled_days_without_active_session(manager):
    with pytest.raises(NotFoundError):
        manager.set_active_disabled_days(["MON"])


def test_normalize_disabled_days_sorts_and_keeps_reasons():
    normalized = normalize_disabled_days([("FRI", "节假日"), {"day": "mon", "reason": " 雨天 "}])
    assert list(normalized) == [Weekday.MON, Weekday.FRI]
    assert normalized[Weekday.MON] == "雨天"


def test_delete_removes_votes_and_results_but_keeps_schedule(
    db, manager, ledger, deriver, active_session, cache
):
    ledger.submit_vote(active_session.id, "u1", "Alice", ["MON"])
    manager.close_session(active_session.id)
    entries = deriver.derive_next_week_schedule(active_session.id)
    assert entries
    deriver.aggregation.get_snapshot(active_session.id)
    assert active_session.id in cache

    manager.delete_session(active_session.id)
    db.expire_all()

    assert db.query(VoteSession).count() == 0
    assert db.query(Vote).count() == 0
    assert db.query(VoteResult).count() == 0
    assert db.query(DisabledDay).count() == 0
    remaining = db.query(ScheduleEntry).all()
    assert len(remaining) == len(entries)
    assert all(e.source_session_id is None for e in remaining)
    assert active_session.id not in cache


def test_bulk_delete_keeps_excluded_sessions(manager, active_session):
    manager.close_session(active_session.id)
    second = manager.create_session(date(2025, 11, 3))
    manager.close_session(second.id)
    third = manager.create_session(date(2025, 11, 10))

    deleted = manager.bulk_delete(exclude_ids=[third.id])

    assert sorted(deleted) == sorted([active_session.id, second.id])
    assert [s.id for s in manager.list_sessions()] == [third.id]


def test_expired_sessions_are_swept(manager, active_session, clock, published):
    assert manager.deactivate_expired_sessions() == 0

    clock.set(datetime(2025, 10, 31, 8, 30, tzinfo=timezone.utc))
    assert manager.deactivate_expired_sessions() == 1

    session = manager.get_session(active_session.id)
    assert session.status == "closed"
    assert published[-1] == (events.SESSION_CLOSED, {"session_id": active_session.id, "reason": "expired"})


def test_creating_after_deadline_sweeps_expired_session(manager, active_session, clock):
    clock.set(datetime(2025, 11, 3, 0, 0, tzinfo=timezone.utc))
    session = manager.create_session(date(2025, 11, 10))

    assert session.is_active
    assert manager.get_session(active_session.id).status == "closed"


def test_validate_and_fix_session_state(manager, active_session, clock):
    assert manager.validate_and_fix_session_state() == {"expired": 0, "duplicates": 0}
    clock.set(datetime(2025, 11, 1, tzinfo=timezone.utc))
    assert manager.validate_and_fix_session_state() == {"expired": 1, "duplicates": 0}
    assert manager.get_active_session() is None


def test_create_next_week_session_returns_existing_active(manager, active_session):
    assert manager.create_next_week_session().id == active_session.id


def test_create_next_week_session_activates_pending(manager, next_monday):
    pending = manager.create_session(next_monday, activate=False)

    session = manager.create_next_week_session()

    assert session.id == pending.id
    assert session.status == "active"
    assert session.end_time == datetime(2025, 10, 31, 8, 0)


def test_create_next_week_session_creates_new(manager):
    session = manager.create_next_week_session()
    assert session.week_start_date == date(2025, 10, 27)
    assert session.is_active


def test_session_summary(manager, ledger, active_session):
    ledger.submit_vote(active_session.id, "u1", "Alice", ["MON"])
    ledger.submit_vote(active_session.id, "u2", "Bob", [])
    summary = manager.session_summary(active_session)

    assert summary["week_end_date"] == date(2025, 10, 31)
    assert summary["participant_count"] == 2
    assert summary["status"] == "active"


def test_concurrent_create_has_single_winner(tmp_path, clock, resolver):
    engine = build_engine(f"sqlite:///{tmp_path / 'race.db'}")
    init_db(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    workers = 3
    barrier = threading.Barrier(workers)
    outcomes = []
    lock = threading.Lock()

    def attempt():
        db = factory()
        manager = SessionManager(db, clock=clock, resolver=resolver, hub=EventHub(), cache=ResultCache())
        try:
            barrier.wait()
            manager.create_session(date(2025, 10, 27))
            outcome = "created"
        except VoteEngineError as e:
            outcome = e.kind
        finally:
            db.close()
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=attempt) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert outcomes.count("created") == 1
    assert outcomes.count("conflict") == workers - 1

    db = factory()
    try:
        assert db.query(VoteSession).filter(VoteSession.is_active.is_(True)).count() == 1
    finally:
        db.close()
        engine.dispose()


def test_deleted_session_id_is_not_reused(manager, active_session):
    old_id = active_session.id
    manager.delete_session(old_id)

    session = manager.create_session(date(2025, 11, 3))

    assert session.id > old_id


def test_pending_session_cannot_be_closed_or_reopened(manager):
    pending = manager.create_session(date(2025, 11, 3), activate=False)

    with pytest.raises(InvalidStateError):
        manager.close_session(pending.id)
    with pytest.raises(InvalidStateError):
        manager.reopen_session(pending.id)

    assert manager.get_session(pending.id).status == "pending"
    assert manager.open_session(pending.id).status == "active"


def test_storage_error_becomes_timeout_and_rolls_back(db, manager, monkeypatch):
    rollbacks = []
    original_rollback = db.rollback

    def locked_query(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    def tracking_rollback():
        rollbacks.append(True)
        original_rollback()

    monkeypatch.setattr(db, "query", locked_query)
    monkeypatch.setattr(db, "rollback", tracking_rollback)

    with pytest.raises(StorageTimeoutError) as exc_info:
        manager.get_session(1)

    assert exc_info.value.kind == "storage_timeout"
    assert exc_info.value.status_code == 503
    assert rollbacks == [True]
