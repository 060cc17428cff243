from enum import Enum

from models import SessionStatus, TestSession


class EntryDecision(str, Enum):
    ALLOW = "allow"
    REDIRECT_TO_RESULTS = "redirect_to_results"
    FINALIZING = "finalizing"
    EXPIRED = "expired"


def evaluate_entry(session: TestSession, remaining_seconds: int) -> EntryDecision:
    """Decide whether a student may (re)open the test-taking view for a session.

    - locked: the attempt is over, show the results of locked_by_submission_id
    - completed: submission started but did not finish; no new edits
    - in_progress with no time left: auto-submit instead of editing
    """
    if session.status == SessionStatus.LOCKED:
        return EntryDecision.REDIRECT_TO_RESULTS
    if session.status == SessionStatus.COMPLETED:
        return EntryDecision.FINALIZING
    if remaining_seconds <= 0:
        return EntryDecision.EXPIRED
    return EntryDecision.ALLOW


def accepts_edits(session: TestSession, remaining_seconds: int) -> bool:
    return evaluate_entry(session, remaining_seconds) == EntryDecision.ALLOW
