"""
Pydantic schemas for interview sessions, telemetry events, scores and reports.
"""
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SessionStatus(str, Enum):
    """Interview session lifecycle states."""
    CREATED = "created"
    LIVE = "live"
    ENDED = "ended"
    CANCELED = "canceled"


TERMINAL_STATUSES = (SessionStatus.ENDED, SessionStatus.CANCELED)


class RiskLevel(str, Enum):
    """Discretized fraud risk tier."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ScreenEventType(str, Enum):
    """Known screen/window telemetry event types."""
    TAB_BLUR = "TAB_BLUR"
    TAB_FOCUS = "TAB_FOCUS"
    PASTE = "PASTE"
    COPY = "COPY"
    URL_CHANGE = "URL_CHANGE"
    WINDOW_SWITCH = "WINDOW_SWITCH"
    APPLICATION_SWITCH = "APPLICATION_SWITCH"
    KEYSTROKE_BATCH = "KEYSTROKE_BATCH"
    MOUSE_ANOMALY = "MOUSE_ANOMALY"


class Consent(BaseModel):
    """Candidate consent flags captured at session start."""
    audio: bool = False
    video: bool = False
    screen: bool = False
    telemetry: bool = False


class SessionData(BaseModel):
    """Interview session record."""
    id: str
    candidate_id: str
    company_id: str
    role: Optional[str] = None
    status: SessionStatus = SessionStatus.CREATED
    consent: Consent
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None


class StartSessionRequest(BaseModel):
    """Payload for starting an interview session."""
    candidate_id: str = Field(..., min_length=1, max_length=255)
    company_id: str = Field(..., min_length=1, max_length=255)
    role: Optional[str] = Field(default=None, max_length=255)
    consent: Consent


class TranscriptChunk(BaseModel):
    """One transcript chunk; seq is metadata only, arrival order is kept."""
    model_config = ConfigDict(frozen=True)

    session_id: str
    seq: int
    text: str
    start_ms: float
    end_ms: float
    speaker: Optional[Literal["candidate", "interviewer"]] = None


class ScreenEvent(BaseModel):
    """Window, clipboard or input-device event."""
    model_config = ConfigDict(frozen=True)

    session_id: str
    t: float
    type: str = Field(..., min_length=1)
    meta: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v):
        if isinstance(v, ScreenEventType):
            return v.value
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("meta", mode="before")
    @classmethod
    def meta_default(cls, v):
        return {} if v is None else v


class CompileRunEvent(BaseModel):
    """Compile, run or test action from the candidate's editor."""
    model_config = ConfigDict(frozen=True)

    session_id: str
    t: float
    action: Literal["compile", "run", "test"]
    ok: Optional[bool] = None


class KeystrokeEvent(BaseModel):
    """Raw key press / release with a client timestamp in ms."""
    model_config = ConfigDict(frozen=True)

    session_id: str
    t: float
    key: str
    action: Literal["down", "up"]


class CodeSample(BaseModel):
    """Code text submitted for stylometry analysis."""
    model_config = ConfigDict(frozen=True)

    session_id: str
    code: str
    language: str
    submitted_at: datetime


class FraudReason(BaseModel):
    """Attributable reason behind a fraud score contribution."""
    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    weight: float = 0.0


class FraudScore(BaseModel):
    """Score snapshot appended after every ingestion."""
    model_config = ConfigDict(frozen=True)

    session_id: str
    score: float = Field(..., ge=0.0, le=100.0)
    level: RiskLevel
    reasons: List[FraudReason] = Field(default_factory=list)
    at: Optional[datetime] = None


class IngestResponse(BaseModel):
    """Acknowledgment returned once the resulting snapshot is stored."""
    success: bool = True
    score: FraudScore


class SessionReport(BaseModel):
    """Full audit report for one session."""
    session: Optional[SessionData] = None
    scores: List[FraudScore] = Field(default_factory=list)
    transcript_chunks: List[TranscriptChunk] = Field(default_factory=list)
    screen_events: List[ScreenEvent] = Field(default_factory=list)
    compile_events: List[CompileRunEvent] = Field(default_factory=list)
    code_samples: List[CodeSample] = Field(default_factory=list)
