"""
Server-side auto-submit for abandoned attempts.

A browser that is closed before the deadline never fires its auto-submit.
The sweeper periodically finalizes in-progress sessions that have been out of
time for longer than the grace period, using whatever draft was last saved.
"""

import logging
from datetime import timedelta
from typing import Optional

from constants import AUTO_SUBMIT_GRACE_PERIOD, AUTO_SUBMIT_SWEEP_INTERVAL
from error_utils import SubmissionInFlightError
from finalizer import SubmissionFinalizer
from models import SessionStatus, TestSession
from scheduler import ScheduledTask, Scheduler
from stores import DraftAnswerStore

logger = logging.getLogger(__name__)


class AutoSubmitSweeper:
    def __init__(self, finalizer: SubmissionFinalizer, drafts: DraftAnswerStore, scheduler: Scheduler,
                 grace_period: float = AUTO_SUBMIT_GRACE_PERIOD,
                 interval: float = AUTO_SUBMIT_SWEEP_INTERVAL):
        self.finalizer = finalizer
        self.sessions = finalizer.sessions
        self.drafts = drafts
        self.scheduler = scheduler
        self.grace_period = grace_period
        self.interval = interval
        self._task: Optional[ScheduledTask] = None

    def start(self) -> None:
        if self._task is None:
            self._task = self.scheduler.every(self.interval, self.sweep, name="auto-submit-sweeper")
            logger.info(f"Auto-submit sweeper started (every {self.interval}s, grace {self.grace_period}s)")

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def _overdue_seconds(self, session: TestSession) -> float:
        deadline = session.started_at + timedelta(seconds=session.duration_seconds)
        return (self.sessions.clock.now() - deadline).total_seconds()

    async def sweep(self) -> int:
        """Finalize every abandoned expired session. Returns how many were auto-submitted."""
        now = self.sessions.clock.now()
        logger.info(f"Auto-submit sweep executed at {now.isoformat()}")

        in_progress = await self.sessions.store.list_by_status(SessionStatus.IN_PROGRESS)
        expired = [s for s in in_progress if self._overdue_seconds(s) >= self.grace_period]
        logger.info(f"Found {len(expired)} expired sessions to auto-submit")

        auto_submitted_count = 0
        for session in expired:
            try:
                answers = await self.drafts.load(session.id)
                submission = await self.finalizer.submit_test(session, answers, is_auto_submitted=True)
                auto_submitted_count += 1
                logger.info(f"Auto-submitted session {session.id} as submission {submission.id}")
            except SubmissionInFlightError:
                logger.info(f"Session {session.id} is already being submitted, skipping")
            except Exception as e:
                logger.error(f"Failed to auto-submit session {session.id}: {e}")

        await self._report_stuck_sessions()

        logger.info(f"Successfully auto-submitted {auto_submitted_count} expired sessions")
        return auto_submitted_count

    async def _report_stuck_sessions(self) -> None:
        # completed but never locked: a finalization died between steps
        completed = await self.sessions.store.list_by_status(SessionStatus.COMPLETED)
        now = self.sessions.clock.now()
        for session in completed:
            if session.completed_at is None:
                continue
            if (now - session.completed_at).total_seconds() >= self.grace_period and not self.finalizer.is_in_flight(session.id):
                logger.warning(
                    f"Session {session.id} has been completed without a submission lock since "
                    f"{session.completed_at.isoformat()}; needs manual recovery"
                )
