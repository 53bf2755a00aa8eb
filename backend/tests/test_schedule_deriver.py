from datetime import date

import pytest

from clubvote.core.exceptions import NotFoundError, SessionNotCompletedError
from clubvote.services import events
from clubvote.services.schedule_deriver import max_count_policy, threshold_policy


@pytest.fixture
def closed_session(manager, ledger, active_session):
    ledger.submit_vote(active_session.id, "u1", "Alice", ["MON", "WED"])
    ledger.submit_vote(active_session.id, "u2", "Bob", ["MON"])
    ledger.submit_vote(active_session.id, "u3", "Carol", ["WED", "FRI"])
    manager.close_session(active_session.id)
    return active_session


def roster_names(entry):
    return [m.user_name for m in entry.roster]


def test_threshold_of_two_schedules_monday_and_wednesday(deriver, closed_session, published):
    entries = deriver.derive_next_week_schedule(closed_session.id, policy=threshold_policy(2))

    assert [(e.weekday, e.date) for e in entries] == [
        ("MON", date(2025, 10, 27)),
        ("WED", date(2025, 10, 29)),
    ]
    assert roster_names(entries[0]) == ["Alice", "Bob"]
    assert roster_names(entries[1]) == ["Alice", "Carol"]
    assert all(e.auto_generated and not e.confirmed for e in entries)
    assert all(e.time == "待定" and e.location == "待定" for e in entries)
    assert published[-1][0] == events.SCHEDULE_DERIVED
    assert published[-1][1]["rule"] == "threshold>=2"


def test_max_count_policy_picks_all_top_days(deriver, closed_session):
    entries = deriver.derive_next_week_schedule(closed_session.id, policy=max_count_policy())
    assert [e.weekday for e in entries] == ["MON", "WED"]


def test_max_count_policy_single_winner(manager, ledger, deriver, active_session):
    ledger.submit_vote(active_session.id, "u1", "Alice", ["TUE", "THU"])
    ledger.submit_vote(active_session.id, "u2", "Bob", ["THU"])
    manager.close_session(active_session.id)

    entries = deriver.derive_next_week_schedule(active_session.id, policy=max_count_policy())
    assert [(e.weekday, e.date) for e in entries] == [("THU", date(2025, 10, 30))]


def test_no_votes_means_no_games(manager, deriver, active_session):
    manager.close_session(active_session.id)
    assert deriver.derive_next_week_schedule(active_session.id, policy=max_count_policy()) == []


def test_active_session_cannot_be_derived(deriver, active_session):
    with pytest.raises(SessionNotCompletedError):
        deriver.derive_next_week_schedule(active_session.id)


def test_pending_session_cannot_be_derived(manager, deriver):
    pending = manager.create_session(date(2025, 11, 3), activate=False)
    with pytest.raises(SessionNotCompletedError):
        deriver.derive_next_week_schedule(pending.id)


def test_unknown_session(deriver):
    with pytest.raises(NotFoundError):
        deriver.derive_next_week_schedule(123)


def test_weekday_defaults_are_applied(deriver, closed_session):
    entries = deriver.derive_next_week_schedule(
        closed_session.id,
        policy=threshold_policy(2),
        weekday_defaults={
            "MON": {"time": "19:00", "location": "A구장", "event_type": "self", "mercenary_count": 3},
            "WED": {"event_type": "party"},
        },
        default={"location": "B구장"},
    )
    monday, wednesday = entries

    assert (monday.time, monday.location, monday.event_type) == ("19:00", "A구장", "SELF")
    assert monday.total_participant_count == 5
    assert (wednesday.time, wednesday.location, wednesday.event_type) == ("待定", "B구장", "OTHER")
    assert wednesday.total_participant_count == 2


def test_rederive_replaces_only_unconfirmed_entries(db, deriver, closed_session):
    first = deriver.derive_next_week_schedule(closed_session.id, policy=threshold_policy(2))
    monday_id = first[0].id
    deriver.confirm_entry(monday_id)

    again = deriver.derive_next_week_schedule(closed_session.id, policy=threshold_policy(1))

    assert [e.weekday for e in again] == ["MON", "WED", "FRI"]
    assert again[0].id == monday_id
    assert again[0].confirmed

    repeat = deriver.derive_next_week_schedule(closed_session.id, policy=threshold_policy(1))
    assert [e.weekday for e in repeat] == ["MON", "WED", "FRI"]


def test_confirm_unknown_entry(deriver):
    with pytest.raises(NotFoundError):
        deriver.confirm_entry(999)


def test_list_entries_by_week(deriver, closed_session):
    deriver.derive_next_week_schedule(closed_session.id, policy=threshold_policy(2))

    assert len(deriver.list_entries()) == 2
    assert [e.weekday for e in deriver.list_entries(date(2025, 11, 2))] == ["MON", "WED"]
    assert deriver.list_entries(date(2025, 11, 3)) == []


def test_threshold_policy_requires_positive_minimum():
    with pytest.raises(ValueError):
        threshold_policy(0)


def test_vote_attendance_rate(manager, ledger, deriver, active_session):
    ledger.submit_vote(active_session.id, "u1", "Alice", ["MON"])
    manager.close_session(active_session.id)
    second = manager.create_session(date(2025, 11, 3))
    manager.close_session(second.id)
    manager.create_session(date(2025, 11, 10))

    assert deriver.compute_attendance_rate("u1") == 33
    assert deriver.compute_attendance_rate("u1", member_since=date(2025, 11, 5)) == 0

    details = deriver.vote_participation("u1")
    assert (details["total"], details["participated"], details["missed"]) == (3, 1, 2)
    assert [s["participated"] for s in details["sessions"]] == [False, False, True]


def test_attendance_rate_without_sessions_is_zero(deriver):
    assert deriver.compute_attendance_rate("u1") == 0
    assert deriver.compute_attendance_rate("u1", basis="game") == 0


def test_game_attendance_counts_confirmed_entries_only(deriver, closed_session):
    entries = deriver.derive_next_week_schedule(closed_session.id, policy=threshold_policy(2))
    assert deriver.compute_attendance_rate("u1", basis="game") == 0

    for entry in entries:
        deriver.confirm_entry(entry.id)

    assert deriver.compute_attendance_rate("u1", basis="game") == 100
    assert deriver.compute_attendance_rate("u2", basis="game") == 50
    assert deriver.compute_attendance_rate("u9", basis="game") == 0


def test_unknown_attendance_basis(deriver):
    with pytest.raises(ValueError):
        deriver.compute_attendance_rate("u1", basis="training")


def test_member_stats(deriver, closed_session):
    entries = deriver.derive_next_week_schedule(closed_session.id, policy=threshold_policy(2))
    deriver.confirm_entry(entries[1].id)

    stats = deriver.member_stats("u3")

    assert stats["vote_attendance"] == 100
    assert stats["game_attendance"] == 100
    assert stats["game_details"] == {"total": 1, "participated": 1, "missed": 0}
