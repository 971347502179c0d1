from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Dict, List, Optional, Tuple
from datetime import datetime
from enum import Enum

from services.errors import SessionStateError


class EventKind(str, Enum):
    """Kinds of integrity events a detector can report"""
    LOOKING_AWAY = "LOOKING_AWAY"
    NO_FACE = "NO_FACE"
    MULTIPLE_FACES = "MULTIPLE_FACES"
    PHONE_DETECTED = "PHONE_DETECTED"
    NOTES_DETECTED = "NOTES_DETECTED"


class Severity(str, Enum):
    WARNING = "WARNING"
    DANGER = "DANGER"


EVENT_SEVERITY: Dict[EventKind, Severity] = {
    EventKind.LOOKING_AWAY: Severity.WARNING,
    EventKind.NO_FACE: Severity.DANGER,
    EventKind.MULTIPLE_FACES: Severity.DANGER,
    EventKind.PHONE_DETECTED: Severity.DANGER,
    EventKind.NOTES_DETECTED: Severity.WARNING,
}

EVENT_MESSAGES: Dict[EventKind, str] = {
    EventKind.LOOKING_AWAY: "Candidate looking away from screen",
    EventKind.NO_FACE: "No face detected in frame",
    EventKind.MULTIPLE_FACES: "Multiple faces detected",
    EventKind.PHONE_DETECTED: "Mobile phone detected",
    EventKind.NOTES_DETECTED: "Books/notes detected",
}


class SessionState(str, Enum):
    NOT_STARTED = "NotStarted"
    ACTIVE = "Active"
    ENDED = "Ended"


class CameraStatus(str, Enum):
    INACTIVE = "Inactive"
    ACQUIRING = "Acquiring"
    ACTIVE = "Active"
    ERROR = "Error"


class CameraConstraints(BaseModel):
    """Preferred capture configuration; None means unconstrained"""
    model_config = ConfigDict(frozen=True)

    width: Optional[int] = None
    height: Optional[int] = None
    facing_mode: Optional[str] = None

    @classmethod
    def minimal(cls) -> "CameraConstraints":
        return cls()

    @property
    def is_minimal(self) -> bool:
        return self.width is None and self.height is None and self.facing_mode is None


class DetectionSignal(BaseModel):
    """Raw output of a detector feed, before the aggregator records it"""
    model_config = ConfigDict(frozen=True)

    kind: EventKind
    timestamp: Optional[datetime] = None

    @field_validator("timestamp")
    @classmethod
    def to_local_time(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Event times are compared with datetime.now(), which is naive local time
        if value is not None and value.tzinfo is not None:
            return value.astimezone().replace(tzinfo=None)
        return value


class IntegrityEvent(BaseModel):
    """Recorded integrity event; immutable once in the log"""
    model_config = ConfigDict(frozen=True)

    id: int
    kind: EventKind
    severity: Severity
    message: str
    timestamp: datetime

    @classmethod
    def create(cls, event_id: int, kind: EventKind, timestamp: datetime) -> "IntegrityEvent":
        return cls(
            id=event_id,
            kind=kind,
            severity=EVENT_SEVERITY[kind],
            message=EVENT_MESSAGES[kind],
            timestamp=timestamp,
        )

    def to_backend_payload(self) -> Dict[str, str]:
        """Body accepted by the remote session store"""
        return {
            "eventType": self.kind.value,
            "message": self.message,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
        }


class LiveDetectionStatus(BaseModel):
    """Current detection flags shown on the console"""
    face_detected: bool = True
    looking_away: bool = False
    multiple_faces: bool = False
    phone_detected: bool = False
    notes_detected: bool = False


_STATE_ORDER = [SessionState.NOT_STARTED, SessionState.ACTIVE, SessionState.ENDED]


class Session(BaseModel):
    """Session information and metadata"""
    model_config = ConfigDict(validate_assignment=True)

    session_id: str = Field(frozen=True)
    candidate_name: str = Field(min_length=1, frozen=True)
    state: SessionState = SessionState.NOT_STARTED
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_seconds: int = 0

    def advance(self, state: SessionState) -> None:
        """Move the lifecycle strictly forward by one step"""
        current = _STATE_ORDER.index(self.state)
        if _STATE_ORDER.index(state) != current + 1:
            raise SessionStateError(f"Cannot move session from {self.state.value} to {state.value}")
        self.state = state


class Report(BaseModel):
    """Complete session report"""
    model_config = ConfigDict(frozen=True)

    candidate_name: str
    session_id: str
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_seconds: int
    duration: str
    integrity_score: int
    band: str
    score_source: str = "local"  # local, backend
    event_counts: Dict[EventKind, int]
    events: Tuple[IntegrityEvent, ...] = ()


class SessionSnapshot(BaseModel):
    """Live console view of the current session"""
    session: Optional[Session] = None
    camera_status: CameraStatus
    live_status: LiveDetectionStatus
    integrity_score: int
    severity_counts: Dict[Severity, int] = {}
    total_events: int = 0
    recent_events: List[IntegrityEvent] = []
    last_error: Optional[str] = None
