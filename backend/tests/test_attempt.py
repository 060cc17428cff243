"""End-to-end runs of the test-taking flow on virtual time."""

import asyncio

import pytest

from attempt import TestAttempt
from entry_guard import EntryDecision
from error_utils import AssessmentNotFoundError, QuestionNotFoundError, SessionLockedError, SessionReadOnlyError
from models import SessionStatus


@pytest.fixture
def make_attempt(assessments, session_manager, drafts, finalizer, scheduler):
    def _make(assessment_id, student_id="student-1"):
        return TestAttempt(
            assessment_id, student_id,
            assessments=assessments,
            session_manager=session_manager,
            drafts=drafts,
            finalizer=finalizer,
            scheduler=scheduler,
            autosave_interval=5,
            poll_interval=1,
        )
    return _make


def test_timer_expiry_auto_submits_once(make_attempt, quiz, scheduler, drafts, submissions, session_store):
    q1, q2 = quiz.questions

    async def scenario():
        attempt = make_attempt(quiz.assessment.id)
        assert await attempt.open() == EntryDecision.ALLOW
        attempt.answer(q1.id, "A")
        await scheduler.advance(30)
        assert attempt.remaining_seconds == 30
        # keep ticking well past the deadline; only one submission may come of it
        await scheduler.advance(60)
        stored = await submissions.list_for_student("student-1")
        session = await session_store.get(attempt.session.id)
        return attempt, stored, session

    attempt, stored, session = asyncio.run(scenario())
    assert len(stored) == 1
    submission = stored[0]
    assert submission.mcq_score == 1
    assert submission.total_score == 50
    assert submission.is_auto_submitted is True
    assert not drafts.exists(session.id)
    assert session.status == SessionStatus.LOCKED
    assert session.locked_by_submission_id == submission.id
    assert attempt.decision == EntryDecision.REDIRECT_TO_RESULTS
    assert scheduler.pending == 0


def test_manual_submit_before_expiry(make_attempt, quiz, scheduler):
    q1, q2 = quiz.questions

    async def scenario():
        attempt = make_attempt(quiz.assessment.id)
        await attempt.open()
        attempt.answer(q1.id, "A")
        attempt.answer(q2.id, "B")
        await scheduler.advance(20)
        submission = await attempt.submit()
        await scheduler.advance(120)
        return attempt, submission

    attempt, submission = asyncio.run(scenario())
    assert submission.total_score == 100
    assert submission.is_auto_submitted is False
    assert attempt.session.status == SessionStatus.LOCKED
    assert attempt.results_submission_id == submission.id


def test_reload_restores_draft_and_keeps_deadline(make_attempt, quiz, scheduler):
    q1, _ = quiz.questions

    async def scenario():
        first = make_attempt(quiz.assessment.id)
        await first.open()
        first.answer(q1.id, "A")
        await scheduler.advance(25)
        await first.close()

        reloaded = make_attempt(quiz.assessment.id)
        decision = await reloaded.open()
        return first, reloaded, decision

    first, reloaded, decision = asyncio.run(scenario())
    assert decision == EntryDecision.ALLOW
    assert reloaded.session.id == first.session.id
    assert reloaded.session.started_at == first.session.started_at
    assert reloaded.remaining_seconds == 35
    assert reloaded.answers == {q1.id: "A"}


def test_close_cancels_pending_work(make_attempt, quiz, scheduler, drafts, submissions):
    q1, _ = quiz.questions

    async def scenario():
        attempt = make_attempt(quiz.assessment.id)
        await attempt.open()
        attempt.answer(q1.id, "A")
        await attempt.close()
        await scheduler.advance(600)
        return attempt, await submissions.list_for_student("student-1")

    attempt, stored = asyncio.run(scenario())
    assert not drafts.exists(attempt.session.id)
    assert stored == []
    with pytest.raises(SessionReadOnlyError):
        attempt.answer(q1.id, "B")


def test_expired_on_entry_auto_submits_from_draft(make_attempt, quiz, scheduler, clock, submissions):
    q1, q2 = quiz.questions

    async def scenario():
        attempt = make_attempt(quiz.assessment.id)
        await attempt.open()
        attempt.answer(q2.id, "B")
        await scheduler.advance(10)
        await attempt.close()

        clock.advance(300)
        returning = make_attempt(quiz.assessment.id)
        decision = await returning.open()
        return returning, decision

    returning, decision = asyncio.run(scenario())
    assert decision == EntryDecision.EXPIRED
    assert returning.decision == EntryDecision.REDIRECT_TO_RESULTS
    assert returning.submission is not None
    assert returning.submission.is_auto_submitted is True
    assert returning.submission.mcq_score == 1
    assert returning.session.status == SessionStatus.LOCKED


def test_locked_session_redirects_to_results(make_attempt, quiz):
    async def scenario():
        attempt = make_attempt(quiz.assessment.id)
        await attempt.open()
        submission = await attempt.submit()

        again = make_attempt(quiz.assessment.id)
        decision = await again.open()
        return submission, again, decision

    submission, again, decision = asyncio.run(scenario())
    assert decision == EntryDecision.REDIRECT_TO_RESULTS
    assert again.results_submission_id == submission.id
    with pytest.raises(SessionLockedError) as exc_info:
        again.answer("anything", "A")
    assert exc_info.value.submission_id == submission.id
    with pytest.raises(SessionLockedError):
        asyncio.run(again.submit())


def test_completed_session_is_read_only_but_can_be_resubmitted(make_attempt, quiz, session_manager, drafts):
    q1, _ = quiz.questions

    async def scenario():
        session = await session_manager.get_or_create_session(quiz.assessment.id, "student-1", 1)
        await drafts.save(session.id, {q1.id: "A"})
        # a previous submit died right after completing the session
        await session_manager.complete_test_session(session.id)

        attempt = make_attempt(quiz.assessment.id)
        decision = await attempt.open()
        with pytest.raises(SessionReadOnlyError):
            attempt.answer(q1.id, "B")
        submission = await attempt.submit()
        return decision, submission, attempt

    decision, submission, attempt = asyncio.run(scenario())
    assert decision == EntryDecision.FINALIZING
    assert submission.mcq_score == 1
    assert attempt.session.status == SessionStatus.LOCKED


def test_unknown_question_is_rejected(make_attempt, quiz):
    async def scenario():
        attempt = make_attempt(quiz.assessment.id)
        await attempt.open()
        with pytest.raises(QuestionNotFoundError):
            attempt.answer("not-in-this-test", "A")
        await attempt.close()

    asyncio.run(scenario())


def test_missing_assessment_is_fatal(make_attempt):
    with pytest.raises(AssessmentNotFoundError):
        asyncio.run(make_attempt("missing").open())


def test_two_tabs_share_one_session_and_one_submission(make_attempt, quiz, scheduler, submissions):
    q1, _ = quiz.questions

    async def scenario():
        tab_a = make_attempt(quiz.assessment.id)
        tab_b = make_attempt(quiz.assessment.id)
        await asyncio.gather(tab_a.open(), tab_b.open())
        tab_a.answer(q1.id, "A")
        await scheduler.advance(90)
        return tab_a, tab_b, await submissions.list_for_student("student-1")

    tab_a, tab_b, stored = asyncio.run(scenario())
    assert tab_a.session.id == tab_b.session.id
    assert len(stored) == 1
    assert tab_a.results_submission_id == tab_b.results_submission_id == stored[0].id


def test_submit_in_one_tab_closes_the_other(make_attempt, quiz, scheduler, drafts, session_store):
    q1, q2 = quiz.questions

    async def scenario():
        tab_a = make_attempt(quiz.assessment.id)
        tab_b = make_attempt(quiz.assessment.id)
        await tab_a.open()
        await tab_b.open()
        tab_b.answer(q1.id, "A")
        submission = await tab_b.submit()
        # tab A still shows the editor until its next save notices the lock
        tab_a.answer(q2.id, "B")
        await scheduler.advance(6)
        return tab_a, submission, await session_store.get(tab_a.session.id)

    tab_a, submission, session = asyncio.run(scenario())
    assert session.status == SessionStatus.LOCKED
    assert not drafts.exists(session.id)
    assert tab_a.decision == EntryDecision.REDIRECT_TO_RESULTS
    assert tab_a.results_submission_id == submission.id
    assert not tab_a.autosave.running
    assert scheduler.pending == 0
    with pytest.raises(SessionLockedError) as exc_info:
        tab_a.answer(q2.id, "C")
    assert exc_info.value.submission_id == submission.id
