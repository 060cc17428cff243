from datetime import datetime, timezone

import pytest

from entry_guard import EntryDecision, accepts_edits, evaluate_entry
from models import SessionStatus, TestSession


def _session(status, locked_by=None):
    return TestSession(
        id="a1:s1",
        assessment_id="a1",
        student_id="s1",
        started_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        duration_seconds=60,
        status=status,
        locked_by_submission_id=locked_by,
    )


@pytest.mark.parametrize("status,remaining,expected", [
    (SessionStatus.IN_PROGRESS, 30, EntryDecision.ALLOW),
    (SessionStatus.IN_PROGRESS, 0, EntryDecision.EXPIRED),
    (SessionStatus.COMPLETED, 30, EntryDecision.FINALIZING),
    (SessionStatus.COMPLETED, 0, EntryDecision.FINALIZING),
    (SessionStatus.LOCKED, 30, EntryDecision.REDIRECT_TO_RESULTS),
    (SessionStatus.LOCKED, 0, EntryDecision.REDIRECT_TO_RESULTS),
])
def test_evaluate_entry(status, remaining, expected):
    assert evaluate_entry(_session(status, locked_by="sub-1"), remaining) == expected


def test_only_live_sessions_accept_edits():
    assert accepts_edits(_session(SessionStatus.IN_PROGRESS), 1)
    assert not accepts_edits(_session(SessionStatus.IN_PROGRESS), 0)
    assert not accepts_edits(_session(SessionStatus.COMPLETED), 30)
    assert not accepts_edits(_session(SessionStatus.LOCKED, locked_by="sub-1"), 30)


def test_status_only_moves_forward():
    assert SessionStatus.IN_PROGRESS.can_advance_to(SessionStatus.COMPLETED)
    assert SessionStatus.COMPLETED.can_advance_to(SessionStatus.LOCKED)
    assert not SessionStatus.LOCKED.can_advance_to(SessionStatus.COMPLETED)
    assert not SessionStatus.COMPLETED.can_advance_to(SessionStatus.IN_PROGRESS)
    assert not SessionStatus.COMPLETED.can_advance_to(SessionStatus.COMPLETED)
