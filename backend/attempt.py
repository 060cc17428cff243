"""
In-process driver for one student's test-taking view.

TestAttempt ties the pieces together the way the browser did: it opens the
session through the re-entry guard, restores drafts, polls the countdown,
autosaves, and fires exactly one auto-submit when time runs out.
"""

import logging
from typing import Dict, List, Optional

from autosave import AutosaveController
from constants import AUTOSAVE_INTERVAL_SECONDS, TIMER_POLL_INTERVAL_SECONDS
from entry_guard import EntryDecision, evaluate_entry
from error_utils import (
    AssessmentNotFoundError,
    QuestionNotFoundError,
    SessionLockedError,
    SessionReadOnlyError,
)
from finalizer import SubmissionFinalizer
from models import Question, Submission, TestSession
from scheduler import ScheduledTask, Scheduler
from session_manager import SessionManager
from stores import AssessmentStore, DraftAnswerStore

logger = logging.getLogger(__name__)


class TestAttempt:
    __test__ = False  # not a pytest test class

    def __init__(self, assessment_id: str, student_id: str, *,
                 assessments: AssessmentStore,
                 session_manager: SessionManager,
                 drafts: DraftAnswerStore,
                 finalizer: SubmissionFinalizer,
                 scheduler: Scheduler,
                 autosave_interval: float = AUTOSAVE_INTERVAL_SECONDS,
                 poll_interval: float = TIMER_POLL_INTERVAL_SECONDS):
        self.assessment_id = assessment_id
        self.student_id = student_id
        self.assessments = assessments
        self.session_manager = session_manager
        self.drafts = drafts
        self.finalizer = finalizer
        self.scheduler = scheduler
        self.autosave_interval = autosave_interval
        self.poll_interval = poll_interval

        self.session: Optional[TestSession] = None
        self.questions: List[Question] = []
        self.decision: Optional[EntryDecision] = None
        self.remaining_seconds = 0
        self.submission: Optional[Submission] = None
        self.last_error: Optional[Exception] = None
        self.autosave: Optional[AutosaveController] = None
        self._answers: Dict[str, str] = {}
        self._countdown: Optional[ScheduledTask] = None
        self._submitting = False

    @property
    def answers(self) -> Dict[str, str]:
        return self.autosave.answers if self.autosave else dict(self._answers)

    @property
    def results_submission_id(self) -> Optional[str]:
        if self.submission is not None:
            return self.submission.id
        return self.session.locked_by_submission_id if self.session else None

    async def open(self) -> EntryDecision:
        assessment = await self.assessments.get_assessment(self.assessment_id)
        if assessment is None:
            raise AssessmentNotFoundError(f"Assessment {self.assessment_id} not found")
        self.questions = await self.assessments.list_questions(self.assessment_id)

        self.session = await self.session_manager.get_or_create_session(
            self.assessment_id, self.student_id, assessment.duration_minutes
        )
        self.remaining_seconds = self.session_manager.calculate_remaining_time(self.session)
        self.decision = evaluate_entry(self.session, self.remaining_seconds)
        logger.info(f"Entry to session {self.session.id}: {self.decision.value}, {self.remaining_seconds}s left")

        if self.decision == EntryDecision.REDIRECT_TO_RESULTS:
            return self.decision

        self._answers = await self.drafts.load(self.session.id)

        if self.decision == EntryDecision.EXPIRED:
            await self._finalize(is_auto_submitted=True)
            return EntryDecision.EXPIRED

        if self.decision == EntryDecision.ALLOW:
            self.autosave = AutosaveController(
                self.session.id, self.drafts, self.scheduler,
                interval=self.autosave_interval, initial=self._answers,
                session_store=self.session_manager.store, on_closed=self._closed_elsewhere,
            )
            self.autosave.start()
            self._countdown = self.scheduler.every(
                self.poll_interval, self._poll, name=f"countdown:{self.session.id}"
            )
        return self.decision

    def answer(self, question_id: str, answer: str) -> None:
        """Record an answer. Synchronous; storage happens on the autosave schedule."""
        self._ensure_editable()
        if question_id not in {q.id for q in self.questions}:
            raise QuestionNotFoundError(f"Question {question_id} is not part of assessment {self.assessment_id}")
        self.autosave.set_answer(question_id, answer)

    def _ensure_editable(self) -> None:
        if self.session is None:
            raise RuntimeError("attempt has not been opened")
        if self.decision == EntryDecision.REDIRECT_TO_RESULTS:
            raise SessionLockedError(self.session.id, self.results_submission_id)
        if self.decision != EntryDecision.ALLOW or self._submitting or self.autosave is None or not self.autosave.running:
            raise SessionReadOnlyError(f"Session {self.session.id} no longer accepts answers")
        if self.session_manager.calculate_remaining_time(self.session) == 0:
            raise SessionReadOnlyError(f"Time is up for session {self.session.id}")

    async def _poll(self) -> None:
        # Always re-derived from the stored start time, never decremented
        self.remaining_seconds = self.session_manager.calculate_remaining_time(self.session)
        if self.remaining_seconds == 0 and not self._submitting:
            logger.info(f"Time expired for session {self.session.id}, auto-submitting")
            await self._finalize(is_auto_submitted=True)

    async def submit(self) -> Optional[Submission]:
        """Manual submit; also the retry path after a failed finalization."""
        if self.session is None:
            raise RuntimeError("attempt has not been opened")
        if self.decision == EntryDecision.REDIRECT_TO_RESULTS and self.submission is None:
            raise SessionLockedError(self.session.id, self.results_submission_id)
        if self.submission is not None:
            return self.submission
        return await self._finalize(is_auto_submitted=False)

    async def _finalize(self, is_auto_submitted: bool) -> Optional[Submission]:
        if self._submitting:
            logger.info(f"Submission already running for session {self.session.id}, ignoring")
            return None
        self._submitting = True
        self._cancel_countdown()
        if self.autosave is not None:
            await self.autosave.stop()
            self._answers = self.autosave.answers

        try:
            submission = await self.finalizer.submit_test(self.session, self._answers, is_auto_submitted)
        except Exception as e:
            self.last_error = e
            self._submitting = False
            logger.error(f"Submitting session {self.session.id} failed, a retry is possible: {e}")
            raise

        self.submission = submission
        self.last_error = None
        self.session = await self.session_manager.get_session(self.session.id)
        self.decision = EntryDecision.REDIRECT_TO_RESULTS
        self.remaining_seconds = self.session_manager.calculate_remaining_time(self.session)
        return submission

    def _closed_elsewhere(self, session: TestSession) -> None:
        # Another tab or the sweeper finalized the session under us
        self._cancel_countdown()
        self.session = session
        self.remaining_seconds = self.session_manager.calculate_remaining_time(session)
        self.decision = evaluate_entry(session, self.remaining_seconds)
        logger.info(f"Session {session.id} was finalized elsewhere, attempt is now {self.decision.value}")

    def _cancel_countdown(self) -> None:
        if self._countdown is not None:
            self._countdown.cancel()
            self._countdown = None

    async def close(self) -> None:
        """Tear down the view: nothing scheduled may fire afterwards."""
        self._cancel_countdown()
        if self.autosave is not None:
            await self.autosave.stop()
