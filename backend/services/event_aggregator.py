import asyncio
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple
import logging

from models.proctoring_models import (
    DetectionSignal,
    EventKind,
    IntegrityEvent,
    LiveDetectionStatus,
    Severity,
)
from services.errors import BackendUnreachable, SessionStateError
from services.gateway import BackendGateway

logger = logging.getLogger(__name__)

SEVERITY_PENALTY: Dict[Severity, int] = {
    Severity.DANGER: 10,
    Severity.WARNING: 5,
}


def compute_integrity_score(events: Iterable[IntegrityEvent]) -> int:
    """max(0, 100 - 10 per danger event - 5 per warning event)"""
    score = 100 - sum(SEVERITY_PENALTY[event.severity] for event in events)
    return max(0, score)


class EventAggregator:
    """Owns one session's append-only event log and the live detection flags

    Each kind's live flag is held for a decay window after the latest event of
    that kind. Flags are derived from per-kind timestamps on read; the asyncio
    timers only prune expired kinds and never touch the log.
    """

    def __init__(
        self,
        session_id: Optional[str] = None,
        gateway: Optional[BackendGateway] = None,
        decay_window: float = 3.0,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.session_id = session_id
        self.gateway = gateway
        self.decay_window = timedelta(seconds=decay_window)
        self.clock = clock
        self.closed = False

        self._events: List[IntegrityEvent] = []
        self._last_id = 0
        self._last_seen: Dict[EventKind, datetime] = {}
        self._decay_timers: Dict[EventKind, asyncio.TimerHandle] = {}
        self._pending_forwards: Set[asyncio.Task] = set()
        self._listeners: List[Callable[[IntegrityEvent], None]] = []

    @property
    def events(self) -> Tuple[IntegrityEvent, ...]:
        return tuple(self._events)

    def add_listener(self, listener: Callable[[IntegrityEvent], None]):
        self._listeners.append(listener)

    def ingest(self, signal: DetectionSignal) -> IntegrityEvent:
        """Record a detector signal, refresh its live flag and forward it"""
        if self.closed:
            raise SessionStateError("Event log is closed for this session")

        timestamp = signal.timestamp or self.clock()
        event = IntegrityEvent.create(self._next_id(timestamp), signal.kind, timestamp)
        self._events.append(event)

        previous = self._last_seen.get(event.kind)
        if previous is None or timestamp >= previous:
            self._last_seen[event.kind] = timestamp
            self._schedule_decay(event.kind)

        logger.info(f"🚨 {event.severity.value}: {event.message}")

        for listener in self._listeners:
            listener(event)

        self._forward(event)
        return event

    def current_score(self) -> int:
        return compute_integrity_score(self._events)

    def severity_counts(self) -> Dict[Severity, int]:
        counts = {severity: 0 for severity in Severity}
        for event in self._events:
            counts[event.severity] += 1
        return counts

    def is_flagged(self, kind: EventKind, now: Optional[datetime] = None) -> bool:
        seen = self._last_seen.get(kind)
        if seen is None:
            return False
        now = now or self.clock()
        return now < seen + self.decay_window

    def live_status(self, now: Optional[datetime] = None) -> LiveDetectionStatus:
        now = now or self.clock()
        return LiveDetectionStatus(
            face_detected=not self.is_flagged(EventKind.NO_FACE, now),
            looking_away=self.is_flagged(EventKind.LOOKING_AWAY, now),
            multiple_faces=self.is_flagged(EventKind.MULTIPLE_FACES, now),
            phone_detected=self.is_flagged(EventKind.PHONE_DETECTED, now),
            notes_detected=self.is_flagged(EventKind.NOTES_DETECTED, now),
        )

    def close(self):
        """Stop accepting events and cancel every pending decay timer"""
        self.closed = True
        for handle in self._decay_timers.values():
            handle.cancel()
        self._decay_timers.clear()

    async def drain(self, timeout: float = 2.0):
        """Wait, bounded, for in-flight forwards to the session store"""
        if self._pending_forwards:
            await asyncio.wait(set(self._pending_forwards), timeout=timeout)

    def _next_id(self, timestamp: datetime) -> int:
        # Time-based, bumped past the previous id when two events share a millisecond
        candidate = int(timestamp.timestamp() * 1000)
        self._last_id = max(candidate, self._last_id + 1)
        return self._last_id

    def _schedule_decay(self, kind: EventKind):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return

        existing = self._decay_timers.pop(kind, None)
        if existing is not None:
            existing.cancel()

        expires_at = self._last_seen[kind] + self.decay_window
        delay = max(0.0, (expires_at - self.clock()).total_seconds())
        self._decay_timers[kind] = loop.call_later(delay, self._expire, kind)

    def _expire(self, kind: EventKind):
        self._decay_timers.pop(kind, None)
        if self.closed:
            return
        self._last_seen.pop(kind, None)
        logger.debug(f"Live flag for {kind.value} cleared")

    def _forward(self, event: IntegrityEvent):
        if self.gateway is None or self.session_id is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running loop, event {event.id} kept locally only")
            return

        task = loop.create_task(self._send(event))
        self._pending_forwards.add(task)
        task.add_done_callback(self._pending_forwards.discard)

    async def _send(self, event: IntegrityEvent):
        try:
            await self.gateway.add_event(self.session_id, event)
        except BackendUnreachable as e:
            logger.warning(f"Offline mode - event {event.id} logged locally ({e})")
