"""
Turns a finished attempt into a Submission.

Steps run strictly in order and each one must be acknowledged before the
next starts:

    1. complete the session (in_progress -> completed)
    2. score objective answers
    3. persist the Submission under an id derived from the session, reusing
       one left behind by an earlier failed try or another worker
    4. lock the session to that Submission
    5. delete the draft

A failure stops the sequence and propagates; the session keeps whatever
state the last successful step produced and a retry resumes from there.
"""

import logging
from typing import Mapping, NamedTuple, Optional, Set

from datetime_utils import Clock
from error_utils import AssessmentNotFoundError, SessionConflictError, SubmissionInFlightError
from grading import percentage, score_objective, total_marks
from models import SessionStatus, Submission, TestSession
from session_manager import SessionManager
from stores import AssessmentStore, DraftAnswerStore, SubmissionStore, submission_id_for

logger = logging.getLogger(__name__)


class FinalizeResult(NamedTuple):
    submission: Submission
    already_submitted: bool


class SubmissionFinalizer:
    def __init__(self, sessions: SessionManager, assessments: AssessmentStore,
                 submissions: SubmissionStore, drafts: DraftAnswerStore, clock: Optional[Clock] = None):
        self.sessions = sessions
        self.assessments = assessments
        self.submissions = submissions
        self.drafts = drafts
        self.clock = clock or sessions.clock
        self._in_flight: Set[str] = set()

    def is_in_flight(self, session_id: str) -> bool:
        return session_id in self._in_flight

    async def submit_test(self, session: TestSession, answers: Mapping[str, str],
                          is_auto_submitted: bool = False) -> Submission:
        result = await self.finalize(session, answers, is_auto_submitted)
        return result.submission

    async def finalize(self, session: TestSession, answers: Mapping[str, str],
                       is_auto_submitted: bool = False) -> FinalizeResult:
        if session.id in self._in_flight:
            logger.info(f"Submission for session {session.id} already in flight, suppressing duplicate")
            raise SubmissionInFlightError(f"Submission for session {session.id} is already in progress")

        self._in_flight.add(session.id)
        try:
            return await self._finalize(session, dict(answers), is_auto_submitted)
        finally:
            self._in_flight.discard(session.id)

    async def _finalize(self, session: TestSession, answers: dict, is_auto_submitted: bool) -> FinalizeResult:
        current = await self.sessions.get_session(session.id)
        if current.status == SessionStatus.LOCKED:
            existing = await self._existing_submission(current)
            # A retry after a failed draft delete lands here
            await self.drafts.delete(session.id)
            logger.info(f"Session {session.id} already locked, returning submission {existing.id}")
            return FinalizeResult(existing, True)

        kind = "auto" if is_auto_submitted else "manual"
        logger.info(f"Finalizing session {session.id} ({kind} submit)")

        try:
            await self.sessions.complete_test_session(session.id)
        except Exception:
            logger.exception(f"Finalize {session.id}: completing session failed")
            raise

        try:
            assessment = await self.assessments.get_assessment(session.assessment_id)
            if assessment is None:
                raise AssessmentNotFoundError(f"Assessment {session.assessment_id} not found")
            questions = await self.assessments.list_questions(session.assessment_id)
            known_ids = {q.id for q in questions}
            raw = score_objective(questions, answers)
            total = percentage(raw, total_marks(questions))
        except Exception:
            logger.exception(f"Finalize {session.id}: scoring failed")
            raise

        try:
            submission = await self.submissions.find_by_session(session.id)
            if submission is not None:
                logger.info(f"Reusing submission {submission.id} from an earlier attempt on session {session.id}")
            else:
                submission = await self._create_submission(session, Submission(
                    id=submission_id_for(session.id),
                    assessment_id=session.assessment_id,
                    student_id=session.student_id,
                    test_session_id=session.id,
                    answers={qid: text for qid, text in answers.items() if qid in known_ids},
                    mcq_score=raw,
                    total_score=total,
                    is_auto_submitted=is_auto_submitted,
                    submitted_at=self.clock.now(),
                ))
        except Exception:
            logger.exception(f"Finalize {session.id}: persisting submission failed")
            raise

        try:
            await self.sessions.lock_test_session(session.id, submission.id)
        except Exception:
            logger.exception(f"Finalize {session.id}: locking session to submission {submission.id} failed")
            raise

        try:
            await self.drafts.delete(session.id)
        except Exception:
            logger.exception(f"Finalize {session.id}: deleting draft failed")
            raise

        logger.info(
            f"Session {session.id} finalized: submission {submission.id}, "
            f"mcq_score={submission.mcq_score}, total_score={submission.total_score}"
        )
        return FinalizeResult(submission, False)

    async def _create_submission(self, session: TestSession, submission: Submission) -> Submission:
        try:
            return await self.submissions.create(submission)
        except SessionConflictError:
            # Another worker finalized the same session between our lookup and insert
            existing = await self.submissions.get(submission.id)
            if existing is None:
                raise
            logger.info(f"Submission {existing.id} for session {session.id} was created concurrently, reusing it")
            return existing

    async def _existing_submission(self, session: TestSession) -> Submission:
        submission = None
        if session.locked_by_submission_id:
            submission = await self.submissions.get(session.locked_by_submission_id)
        if submission is None:
            submission = await self.submissions.find_by_session(session.id)
        if submission is None:
            raise SessionConflictError(f"Session {session.id} is locked but its submission is missing")
        return submission
