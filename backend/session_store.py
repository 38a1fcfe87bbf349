"""
In-memory session store for interview fraud scoring.

Owns the session lifecycle and every per-session log (transcript, screen,
compile, keystroke, code samples, score history). Mutations for one session are
serialized with a per-session asyncio.Lock; different sessions never share a lock.
"""
import asyncio
import itertools
import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from code_stylometry import CodeStylometryFeatures
from config import POLICY_AUTO_CREATE, POLICY_REJECT
from keystroke_features import AnomalyVerdict, KeystrokeLog
from schemas import (
    CodeSample,
    CompileRunEvent,
    Consent,
    FraudScore,
    ScreenEvent,
    SessionData,
    SessionStatus,
    TranscriptChunk,
)

logger = logging.getLogger(__name__)


class SessionNotFoundError(LookupError):
    """Raised when an operation references an unknown session id."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class SessionStateError(ValueError):
    """Raised on a forbidden session lifecycle transition."""


@dataclass
class SessionState:
    """All mutable state belonging to one session id."""
    session: Optional[SessionData] = None
    transcripts: List[TranscriptChunk] = field(default_factory=list)
    screen_events: List[ScreenEvent] = field(default_factory=list)
    compile_events: List[CompileRunEvent] = field(default_factory=list)
    code_samples: List[CodeSample] = field(default_factory=list)
    keystrokes: KeystrokeLog = field(default_factory=KeystrokeLog)
    scores: List[FraudScore] = field(default_factory=list)
    code_features: Optional[CodeStylometryFeatures] = None
    code_verdict: AnomalyVerdict = field(default_factory=AnomalyVerdict)


class SessionStore:
    """Keyed store of SessionState with per-session locking."""

    def __init__(self):
        self._states: Dict[str, SessionState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._counter = itertools.count(1)

    def new_session_id(self) -> str:
        """Process-unique id: wall-clock ms + monotonic counter + random bits."""
        return f"session_{int(time.time() * 1000)}_{next(self._counter):06d}_{uuid.uuid4().hex[:8]}"

    @asynccontextmanager
    async def lock(self, session_id: str):
        """
        Hold the lock for one session.

        clear() drops the lock entry while holding it; a waiter that wakes up on
        a dropped lock retries with the current one.
        """
        while True:
            lock = self._locks.setdefault(session_id, asyncio.Lock())
            await lock.acquire()
            if self._locks.get(session_id) is lock:
                break
            lock.release()
        try:
            yield
        finally:
            # No lock entries for ids without state
            if session_id not in self._states and self._locks.get(session_id) is lock:
                del self._locks[session_id]
            lock.release()

    # Lifecycle

    def start(
        self,
        candidate_id: str,
        company_id: str,
        consent: Consent,
        role: Optional[str] = None
    ) -> SessionData:
        """Create a live session with empty logs."""
        session_id = self.new_session_id()
        session = SessionData(
            id=session_id,
            candidate_id=candidate_id,
            company_id=company_id,
            role=role,
            status=SessionStatus.LIVE,
            consent=consent,
            started_at=datetime.now(timezone.utc),
        )
        self._states[session_id] = SessionState(session=session)
        logger.info(f"Started session {session_id} for candidate {candidate_id}")
        return session

    def end(self, session_id: str) -> SessionData:
        """
        Transition a session to ended.

        Raises:
            SessionNotFoundError: unknown session id
            SessionStateError: session was canceled
        """
        session = self.require_session(session_id)
        if session.status == SessionStatus.ENDED:
            return session
        if session.status == SessionStatus.CANCELED:
            raise SessionStateError(f"Cannot end canceled session {session_id}")

        session.status = SessionStatus.ENDED
        session.ended_at = datetime.now(timezone.utc)
        logger.info(f"Ended session {session_id}")
        return session

    def cancel(self, session_id: str) -> SessionData:
        """
        Transition a session to canceled.

        Raises:
            SessionNotFoundError: unknown session id
            SessionStateError: session already ended
        """
        session = self.require_session(session_id)
        if session.status == SessionStatus.CANCELED:
            return session
        if session.status == SessionStatus.ENDED:
            raise SessionStateError(f"Cannot cancel ended session {session_id}")

        session.status = SessionStatus.CANCELED
        session.ended_at = datetime.now(timezone.utc)
        logger.info(f"Canceled session {session_id}")
        return session

    def clear(self, session_id: str) -> bool:
        """
        Purge all state for a session (caller holds the session lock).

        Returns:
            True if anything was removed
        """
        removed = self._states.pop(session_id, None) is not None
        self._locks.pop(session_id, None)
        if removed:
            logger.info(f"Cleared session {session_id}")
        return removed

    # Queries

    def list_sessions(self) -> List[SessionData]:
        return [s.session for s in self._states.values() if s.session is not None]

    def get_session(self, session_id: str) -> Optional[SessionData]:
        state = self._states.get(session_id)
        return state.session if state is not None else None

    def require_session(self, session_id: str) -> SessionData:
        session = self.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def get_state(self, session_id: str) -> Optional[SessionState]:
        return self._states.get(session_id)

    def materialize(self, session_id: str, policy: str = POLICY_AUTO_CREATE) -> SessionState:
        """
        Get the state for a session, creating empty logs for an unknown id.

        Args:
            session_id: Session id referenced by an ingestion call
            policy: 'auto_create' or 'reject'

        Raises:
            SessionNotFoundError: unknown id under the 'reject' policy
        """
        state = self._states.get(session_id)
        if state is not None:
            return state

        if policy == POLICY_REJECT:
            logger.warning(f"Rejected ingestion for unknown session {session_id}")
            raise SessionNotFoundError(session_id)

        logger.debug(f"Materializing logs for unknown session {session_id}")
        state = SessionState()
        self._states[session_id] = state
        return state

    def keystroke_log(self, session_id: str, create: bool = True) -> Optional[KeystrokeLog]:
        """Keystroke log for a session; None for an unknown id unless create is set."""
        if create:
            return self.materialize(session_id).keystrokes
        state = self._states.get(session_id)
        return state.keystrokes if state is not None else None
