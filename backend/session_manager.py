"""
Test session lifecycle: find-or-create, remaining time, and the monotonic
in_progress -> completed -> locked transitions.
"""

import asyncio
import logging
import math
from contextlib import asynccontextmanager
from typing import Dict, Optional, Tuple

from datetime_utils import Clock, SystemClock
from error_utils import SessionConflictError, SessionNotFoundError
from models import SessionStatus, TestSession
from stores import SessionStore

logger = logging.getLogger(__name__)


class SessionManager:
    def __init__(self, store: SessionStore, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or SystemClock()
        self._creation_locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._lock_users: Dict[Tuple[str, str], int] = {}

    @asynccontextmanager
    async def _creation_lock(self, assessment_id: str, student_id: str):
        """Per-pair lock, forgotten again once nobody holds or waits for it."""
        key = (assessment_id, student_id)
        lock = self._creation_locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if self._lock_users[key] == 0:
                del self._lock_users[key]
                del self._creation_locks[key]

    async def get_or_create_session(self, assessment_id: str, student_id: str,
                                    duration_minutes: int) -> TestSession:
        """Return the pair's session, creating it on first access.

        An existing session is returned unchanged whatever its status; callers
        decide about re-entry with entry_guard.evaluate_entry.
        """
        if duration_minutes <= 0:
            raise ValueError("duration_minutes must be positive")

        async with self._creation_lock(assessment_id, student_id):
            existing = await self.store.find(assessment_id, student_id)
            if existing is not None:
                logger.info(f"Resuming session {existing.id} ({existing.status.value})")
                return existing
            try:
                session = await self.store.create(
                    assessment_id, student_id,
                    duration_seconds=duration_minutes * 60,
                    started_at=self.clock.now(),
                )
            except SessionConflictError:
                # Another process created it between our find and create
                session = await self.store.find(assessment_id, student_id)
                if session is None:
                    raise
                logger.info(f"Session {session.id} was created concurrently, reusing it")
                return session

        logger.info(f"Created session {session.id} with {session.duration_seconds}s for student {student_id}")
        return session

    def calculate_remaining_time(self, session: TestSession) -> int:
        """Whole seconds left on the session's deadline, never negative."""
        elapsed = (self.clock.now() - session.started_at).total_seconds()
        elapsed = max(0.0, elapsed)
        return max(0, session.duration_seconds - math.floor(elapsed))

    def is_expired(self, session: TestSession) -> bool:
        return self.calculate_remaining_time(session) == 0

    async def get_session(self, session_id: str) -> TestSession:
        session = await self.store.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return session

    async def complete_test_session(self, session_id: str) -> TestSession:
        """in_progress -> completed. A no-op on completed or locked sessions."""
        updated = await self.store.update(
            session_id,
            {"status": SessionStatus.COMPLETED, "completed_at": self.clock.now()},
            expected_status=[SessionStatus.IN_PROGRESS],
        )
        if updated is not None:
            logger.info(f"Session {session_id}: in_progress -> completed")
            return updated

        current = await self.get_session(session_id)
        logger.info(f"Session {session_id} already {current.status.value}, complete is a no-op")
        return current

    async def lock_test_session(self, session_id: str, submission_id: str) -> TestSession:
        """completed -> locked, pointing at the submission that finalized it."""
        updated = await self.store.update(
            session_id,
            {
                "status": SessionStatus.LOCKED,
                "locked_by_submission_id": submission_id,
                "locked_at": self.clock.now(),
            },
            expected_status=[SessionStatus.COMPLETED],
        )
        if updated is not None:
            logger.info(f"Session {session_id}: completed -> locked by submission {submission_id}")
            return updated

        current = await self.get_session(session_id)
        if current.status == SessionStatus.LOCKED:
            if current.locked_by_submission_id == submission_id:
                return current
            raise SessionConflictError(
                f"Session {session_id} is already locked by submission {current.locked_by_submission_id}"
            )
        raise SessionConflictError(f"Session {session_id} is still in progress and cannot be locked")
