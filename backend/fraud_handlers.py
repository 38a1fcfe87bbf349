"""
Handlers for interview session fraud detection.

This module implements the engine's operation surface:
- Session lifecycle: start, end, cancel, clear, list, get
- Ingestion: transcript chunks, screen events, compile/run events, keystrokes,
  code samples (each one appends and synchronously rescores the session)
- Queries: latest score, full report, typing profile, latest code features

A transport layer translates requests onto these coroutines.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from behavior import analyze_behavior
from code_stylometry import CodeStylometryFeatures, analyze_code, detect_code_anomalies
from config import Settings, get_settings
from keystroke_features import KeystrokeAnalyzer, TypingProfile
from schemas import (
    CodeSample,
    CompileRunEvent,
    Consent,
    FraudScore,
    IngestResponse,
    KeystrokeEvent,
    ScreenEvent,
    SessionData,
    SessionReport,
    StartSessionRequest,
    TranscriptChunk,
)
from scoring import FusionScorer, zero_score
from session_store import SessionNotFoundError, SessionState, SessionStore

logger = logging.getLogger(__name__)


class FraudDetectionHandler:
    """Handler for session lifecycle, telemetry ingestion and scoring."""

    def __init__(
        self,
        store: Optional[SessionStore] = None,
        scorer: Optional[FusionScorer] = None,
        settings: Optional[Settings] = None
    ):
        self.store = store or SessionStore()
        self.scorer = scorer or FusionScorer()
        self.settings = settings or get_settings()
        self.keystrokes = KeystrokeAnalyzer(self.store)

    # Session lifecycle

    async def start_session(
        self,
        candidate_id: str,
        company_id: str,
        consent: Any,
        role: Optional[str] = None
    ) -> str:
        """
        Start a live interview session.

        Args:
            candidate_id: Candidate identifier
            company_id: Company identifier
            consent: Consent flags (model or dict)
            role: Optional role being interviewed for

        Returns:
            New session id
        """
        request = StartSessionRequest(
            candidate_id=candidate_id,
            company_id=company_id,
            role=role,
            consent=consent if isinstance(consent, Consent) else Consent(**(consent or {})),
        )
        session = self.store.start(
            request.candidate_id,
            request.company_id,
            request.consent,
            role=request.role,
        )
        return session.id

    async def end_session(self, session_id: str) -> SessionData:
        async with self.store.lock(session_id):
            return self.store.end(session_id).model_copy()

    async def cancel_session(self, session_id: str) -> SessionData:
        async with self.store.lock(session_id):
            return self.store.cancel(session_id).model_copy()

    async def clear_session(self, session_id: str) -> bool:
        """Purge a session and every derived or raw log it owns."""
        async with self.store.lock(session_id):
            return self.store.clear(session_id)

    async def list_sessions(self) -> List[SessionData]:
        return [s.model_copy() for s in self.store.list_sessions()]

    async def get_session(self, session_id: str) -> SessionData:
        return self.store.require_session(session_id).model_copy()

    # Ingestion

    async def ingest_transcript(
        self,
        session_id: str,
        seq: int,
        text: str,
        start_ms: float,
        end_ms: float,
        speaker: Optional[str] = None
    ) -> IngestResponse:
        chunk = TranscriptChunk(
            session_id=session_id,
            seq=seq,
            text=text,
            start_ms=start_ms,
            end_ms=end_ms,
            speaker=speaker,
        )
        async with self.store.lock(session_id):
            state = self._materialize(session_id)
            state.transcripts.append(chunk)
            return self._rescore(session_id, state)

    async def ingest_screen_event(
        self,
        session_id: str,
        t: float,
        type: str,
        meta: Optional[Dict[str, Any]] = None
    ) -> IngestResponse:
        event = ScreenEvent(session_id=session_id, t=t, type=type, meta=meta)
        async with self.store.lock(session_id):
            state = self._materialize(session_id)
            state.screen_events.append(event)
            return self._rescore(session_id, state)

    async def ingest_compile_event(
        self,
        session_id: str,
        t: float,
        action: str,
        ok: Optional[bool] = None
    ) -> IngestResponse:
        event = CompileRunEvent(session_id=session_id, t=t, action=action, ok=ok)
        async with self.store.lock(session_id):
            state = self._materialize(session_id)
            state.compile_events.append(event)
            return self._rescore(session_id, state)

    async def ingest_keystroke(
        self,
        session_id: str,
        t: float,
        key: str,
        action: str
    ) -> IngestResponse:
        event = KeystrokeEvent(session_id=session_id, t=t, key=key, action=action)
        async with self.store.lock(session_id):
            state = self._materialize(session_id)
            self.keystrokes.record_keystroke(session_id, event)
            return self._rescore(session_id, state)

    async def submit_code_sample(
        self,
        session_id: str,
        code: str,
        language: Optional[str] = None
    ) -> IngestResponse:
        """
        Store a code sample and refresh the session's code verdict.

        Stylometry runs once per submission; later rescoring reuses the verdict
        of the most recent sample.
        """
        sample = CodeSample(
            session_id=session_id,
            code=code,
            language=language or self.settings.default_code_language,
            submitted_at=datetime.now(timezone.utc),
        )
        features = analyze_code(sample.code, sample.language)
        verdict = detect_code_anomalies(features)

        async with self.store.lock(session_id):
            state = self._materialize(session_id)
            state.code_samples.append(sample)
            state.code_features = features
            state.code_verdict = verdict
            return self._rescore(session_id, state)

    # Queries

    async def get_latest_score(self, session_id: str) -> FraudScore:
        """Newest score snapshot, or a zero/low default if none exists."""
        state = self.store.get_state(session_id)
        if state is not None and state.scores:
            return state.scores[-1]
        started_at = state.session.started_at if state is not None and state.session else None
        return zero_score(session_id, at=started_at)

    async def get_report(self, session_id: str) -> SessionReport:
        """
        Full audit report for a session.

        Raises:
            SessionNotFoundError: nothing is stored under this id
        """
        async with self.store.lock(session_id):
            state = self.store.get_state(session_id)
            if state is None:
                raise SessionNotFoundError(session_id)
            return SessionReport(
                session=state.session.model_copy() if state.session else None,
                scores=list(state.scores),
                transcript_chunks=list(state.transcripts),
                screen_events=list(state.screen_events),
                compile_events=list(state.compile_events),
                code_samples=list(state.code_samples),
            )

    async def get_typing_profile(self, session_id: str) -> TypingProfile:
        async with self.store.lock(session_id):
            return self.keystrokes.generate_typing_profile(session_id)

    async def get_code_features(self, session_id: str) -> Optional[CodeStylometryFeatures]:
        """Stylometry features of the most recent code sample, if any."""
        async with self.store.lock(session_id):
            state = self.store.get_state(session_id)
            return state.code_features if state is not None else None

    # Internals

    def _materialize(self, session_id: str) -> SessionState:
        return self.store.materialize(session_id, self.settings.unknown_session_policy)

    def _rescore(self, session_id: str, state: SessionState) -> IngestResponse:
        """Recompute every modality from the session's logs and append a snapshot."""
        typing = self.keystrokes.detect_typing_anomalies(session_id)
        behavior = analyze_behavior(
            state.transcripts,
            state.screen_events,
            state.compile_events,
            state.keystrokes.events,
        )
        snapshot = self.scorer.score(session_id, typing, state.code_verdict, behavior)
        state.scores.append(snapshot)
        return IngestResponse(success=True, score=snapshot)


# Global instance (lazy loaded)
_handler = None


def get_handler() -> FraudDetectionHandler:
    """Get or create the process-wide handler."""
    global _handler
    if _handler is None:
        _handler = FraudDetectionHandler()
    return _handler
