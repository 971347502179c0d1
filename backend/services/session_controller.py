"""
Session Lifecycle Controller
Ties the camera, the event aggregator and the session store together:

    NotStarted -> Active -> Ended

A fresh session only comes from reset(). The session store is optional at
every step; when it cannot be reached the controller carries on offline.
"""

import asyncio
import time
from datetime import datetime
from functools import partial
from typing import Awaitable, Callable, Optional
import logging

from capture.camera import CameraAcquisition
from detection.detector_feed import DetectorFeed
from models.proctoring_models import (
    CameraStatus,
    DetectionSignal,
    IntegrityEvent,
    Report,
    Session,
    SessionSnapshot,
    SessionState,
)
from services.errors import BackendUnreachable, CameraError, InvalidInput, SessionStateError
from services.event_aggregator import EventAggregator
from services.gateway import BackendGateway
from services.report_builder import build_report
from utils.logger import ProctorLogger

logger = logging.getLogger(__name__)


def local_session_id() -> str:
    return f"session_{int(time.time() * 1000)}"


class SessionController:
    """Owns one proctoring session at a time"""

    def __init__(
        self,
        gateway: BackendGateway,
        camera: CameraAcquisition,
        feed_factory: Optional[Callable[[], DetectorFeed]] = None,
        proctor_logger: Optional[ProctorLogger] = None,
        decay_window: float = 3.0,
        tick_interval: float = 1.0,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.gateway = gateway
        self.camera = camera
        self.feed_factory = feed_factory
        self.proctor_logger = proctor_logger
        self.decay_window = decay_window
        self.tick_interval = tick_interval
        self.clock = clock

        self.session: Optional[Session] = None
        self.report: Optional[Report] = None
        self.last_error: Optional[str] = None
        self.aggregator = self._new_aggregator(None)

        self._tick_task: Optional[asyncio.Task] = None
        self._feed_task: Optional[asyncio.Task] = None
        self._transition_lock = asyncio.Lock()

    @property
    def state(self) -> SessionState:
        if self.session is None:
            return SessionState.NOT_STARTED
        return self.session.state

    async def start(self, candidate_name: str) -> Session:
        """Open a session for the candidate and bring the camera up"""
        name = (candidate_name or "").strip()
        if not name:
            raise InvalidInput("Please enter candidate name")

        async with self._transition_lock:
            if self.state != SessionState.NOT_STARTED:
                raise SessionStateError(f"Cannot start a session that is {self.state.value}")

            session_id = await self._allocate_session_id(name)
            self.session = Session(session_id=session_id, candidate_name=name)
            self.aggregator.close()
            self.aggregator = self._new_aggregator(session_id)

            await self._activate(self.camera.acquire)
            logger.info(f"🎬 Interview started with session ID: {session_id}")
            return self.session

    async def retry(self) -> Session:
        """Retry the camera, for a start that failed or a stream that died"""
        async with self._transition_lock:
            if self.state == SessionState.ACTIVE and self.camera.status == CameraStatus.ERROR:
                await self._recover_camera()
                return self.session

            if self.session is None or self.state != SessionState.NOT_STARTED:
                raise SessionStateError("There is no pending session to retry")
            await self._activate(self.camera.retry)
            logger.info(f"🎬 Interview started with session ID: {self.session.session_id}")
            return self.session

    def tick(self) -> bool:
        """Count one elapsed second; ignored unless the session is Active"""
        if self.state != SessionState.ACTIVE:
            return False
        self.session.duration_seconds += 1
        return True

    def ingest(self, signal: DetectionSignal) -> IntegrityEvent:
        if self.state != SessionState.ACTIVE:
            raise SessionStateError("Events are only accepted while a session is active")
        return self.aggregator.ingest(signal)

    async def stop(self) -> Report:
        """End the session and produce its report, online or not"""
        async with self._transition_lock:
            if self.state != SessionState.ACTIVE:
                raise SessionStateError(f"Cannot stop a session that is {self.state.value}")

            session = self.session
            await self._cancel_background()

            # The device goes first so a slow session store never keeps it held
            self.camera.release()
            self.aggregator.close()
            session.ended_at = self.clock()
            session.advance(SessionState.ENDED)

            await self.aggregator.drain()
            score, source = await self._final_score(session.session_id)

            self.report = build_report(session, self.aggregator.events, score, source)

            if self.proctor_logger is not None:
                await self.proctor_logger.end_session(session)
                await self.proctor_logger.save_report(self.report)

            logger.info(f"🏁 Session {session.session_id} ended, integrity score {score} ({self.report.band})")
            return self.report

    async def reset(self):
        """Discard the finished session and prepare a fresh one"""
        async with self._transition_lock:
            if self.state == SessionState.ACTIVE:
                raise SessionStateError("Stop the active session before resetting")

            await self._cancel_background()
            self.camera.release()
            self.aggregator.close()

            self.session = None
            self.report = None
            self.last_error = None
            self.aggregator = self._new_aggregator(None)
            logger.info("🔄 Console reset")

    async def shutdown(self):
        """Release everything on process exit"""
        await self._cancel_background()
        self.camera.release()
        self.aggregator.close()

    def snapshot(self) -> SessionSnapshot:
        events = self.aggregator.events
        return SessionSnapshot(
            session=self.session.model_copy() if self.session else None,
            camera_status=self.camera.status,
            live_status=self.aggregator.live_status(),
            integrity_score=self.aggregator.current_score(),
            severity_counts=self.aggregator.severity_counts(),
            total_events=len(events),
            recent_events=list(reversed(events[-5:])),
            last_error=self.last_error,
        )

    async def _allocate_session_id(self, candidate_name: str) -> str:
        try:
            return await self.gateway.start_session(candidate_name)
        except BackendUnreachable as e:
            session_id = local_session_id()
            logger.warning(f"⚠️ Session store unavailable ({e}), using local session {session_id}")
            return session_id

    async def _activate(self, acquire: Callable[[], Awaitable]):
        try:
            await acquire()
        except CameraError as e:
            # Session stays NotStarted; any remote session is left allocated
            self.last_error = e.remediation
            logger.error(f"❌ Unable to start interview: {e}")
            raise

        self.last_error = None
        self.session.started_at = self.clock()
        self.session.advance(SessionState.ACTIVE)

        if self.proctor_logger is not None:
            await self.proctor_logger.start_session(self.session)

        self._tick_task = asyncio.create_task(self._run_clock())
        if self.feed_factory is not None:
            self._feed_task = asyncio.create_task(self._consume(self.feed_factory()))

    async def _final_score(self, session_id: str):
        local_score = self.aggregator.current_score()

        try:
            await self.gateway.end_session(session_id)
        except BackendUnreachable as e:
            logger.warning(f"⚠️ Could not close session {session_id} remotely: {e}")

        try:
            remote = await self.gateway.get_report(session_id)
        except BackendUnreachable as e:
            logger.warning(f"⚠️ Remote report unavailable, using local event log: {e}")
            return local_score, "local"

        remote_score = remote.get("integrityScore")
        if isinstance(remote_score, (int, float)) and not isinstance(remote_score, bool) and 0 <= remote_score <= 100:
            return int(remote_score), "backend"

        logger.warning(f"⚠️ Remote report for {session_id} has no usable integrityScore, using local event log")
        return local_score, "local"

    async def _run_clock(self):
        while True:
            await asyncio.sleep(self.tick_interval)
            self._watch_camera()
            if not self.tick():
                return

    def _watch_camera(self):
        if self.state != SessionState.ACTIVE or self.camera.status != CameraStatus.ACTIVE:
            return
        if not self.camera.check_stream():
            self.last_error = self.camera.last_error.remediation
            logger.warning(f"⚠️ Camera lost during session {self.session.session_id}, waiting for retry")

    async def _recover_camera(self):
        try:
            await self.camera.retry()
        except CameraError as e:
            self.last_error = e.remediation
            logger.error(f"❌ Camera retry failed: {e}")
            raise
        self.last_error = None
        logger.info(f"📷 Camera restored for session {self.session.session_id}")

    async def _consume(self, feed: DetectorFeed):
        try:
            async for signal in feed:
                if self.state != SessionState.ACTIVE:
                    return
                self.aggregator.ingest(signal)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"❌ Detector feed stopped: {e}", exc_info=True)

    async def _cancel_background(self):
        tasks = [task for task in (self._tick_task, self._feed_task) if task is not None]
        self._tick_task = None
        self._feed_task = None

        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _new_aggregator(self, session_id: Optional[str]) -> EventAggregator:
        aggregator = EventAggregator(
            session_id=session_id,
            gateway=self.gateway,
            decay_window=self.decay_window,
            clock=self.clock,
        )
        if session_id is not None and self.proctor_logger is not None:
            aggregator.add_listener(partial(self.proctor_logger.log_event, session_id))
        return aggregator
