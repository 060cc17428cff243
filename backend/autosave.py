"""
Periodic draft persistence for an active test session.

The in-memory mapping is the source of truth while the student is editing;
the draft store only ever receives full snapshots of it. Before each write the
session row is re-read, so a session finalized from another tab (or by the
sweeper) stops the controller instead of receiving a draft after its draft
was deleted.
"""

import asyncio
import logging
from typing import Callable, Dict, Mapping, Optional

from constants import AUTOSAVE_INTERVAL_SECONDS
from models import SessionStatus, TestSession
from scheduler import ScheduledTask, Scheduler
from stores import DraftAnswerStore, SessionStore

logger = logging.getLogger(__name__)


class AutosaveController:
    def __init__(self, session_id: str, draft_store: DraftAnswerStore, scheduler: Scheduler,
                 interval: float = AUTOSAVE_INTERVAL_SECONDS, initial: Optional[Mapping[str, str]] = None,
                 session_store: Optional[SessionStore] = None,
                 on_closed: Optional[Callable[[TestSession], None]] = None):
        self.session_id = session_id
        self.draft_store = draft_store
        self.scheduler = scheduler
        self.interval = interval
        self.session_store = session_store
        self.on_closed = on_closed
        self._answers: Dict[str, str] = dict(initial or {})
        # Bumped on every edit; a save records the version it wrote
        self._version = 0
        self._saved_version = 0
        self._ticker: Optional[ScheduledTask] = None
        self._first_save: Optional[ScheduledTask] = None
        self._save_lock = asyncio.Lock()
        self._stopped = False
        self.failed_saves = 0

    @property
    def answers(self) -> Dict[str, str]:
        return dict(self._answers)

    @property
    def running(self) -> bool:
        return self._ticker is not None and not self._stopped

    @property
    def dirty(self) -> bool:
        return self._version != self._saved_version

    def start(self) -> None:
        if self._stopped:
            raise RuntimeError("autosave was stopped and cannot be restarted")
        if self._ticker is None:
            self._ticker = self.scheduler.every(self.interval, self._tick, name=f"autosave:{self.session_id}")

    def set_answer(self, question_id: str, answer: str) -> None:
        """Record an answer in memory. Never waits on storage."""
        was_empty = not self._answers
        self._answers[question_id] = answer
        self._version += 1
        if was_empty and self.running and self._first_save is None:
            # Don't wait a whole interval to persist the very first answer
            self._first_save = self.scheduler.call_soon(self._tick, name=f"autosave-first:{self.session_id}")

    def clear_answer(self, question_id: str) -> None:
        if self._answers.pop(question_id, None) is None:
            return
        self._version += 1
        if not self._answers and self._first_save is not None:
            # Empty again: the next answer gets its own immediate save
            self._first_save.cancel()
            self._first_save = None

    async def _tick(self) -> None:
        if self._stopped or not self.dirty:
            return
        await self.save_now()

    async def _session_open(self) -> bool:
        if self.session_store is None:
            return True
        session = await self.session_store.get(self.session_id)
        if session is not None and session.status == SessionStatus.IN_PROGRESS:
            return True

        status = session.status.value if session is not None else "missing"
        logger.info(f"Session {self.session_id} is {status}, stopping autosave")
        self._halt()
        if session is not None and self.on_closed is not None:
            self.on_closed(session)
        return False

    async def save_now(self) -> bool:
        """Persist the current mapping wholesale. Returns False if nothing was written."""
        async with self._save_lock:
            if self._stopped:
                return False
            version = self._version
            snapshot = dict(self._answers)
            try:
                if not await self._session_open():
                    return False
                await self.draft_store.save(self.session_id, snapshot)
            except Exception as e:
                self.failed_saves += 1
                logger.warning(f"Autosave for session {self.session_id} failed, will retry on next tick: {e}")
                return False
            self._saved_version = version
            logger.debug(f"Autosaved {len(snapshot)} answers for session {self.session_id}")
            return True

    def _halt(self) -> None:
        self._stopped = True
        for handle in (self._ticker, self._first_save):
            if handle is not None:
                handle.cancel()

    async def stop(self) -> None:
        """Cancel future saves and wait for one already writing to finish."""
        self._halt()
        async with self._save_lock:
            pass
