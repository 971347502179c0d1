import asyncio
from typing import List, Optional
import logging

from capture.devices import MediaDevices, MediaStream
from models.proctoring_models import CameraConstraints, CameraStatus
from services.errors import (
    CameraConstraintsUnsatisfiable,
    CameraError,
    CameraTimeout,
    SessionStateError,
)

logger = logging.getLogger(__name__)


class CameraAcquisition:
    """State machine owning the single local capture stream

    Inactive -> Acquiring -> Active, Acquiring/Active -> Error on failure,
    Error -> Acquiring on retry, and any state -> Inactive on release.
    Only constraint failures are retried automatically, once, with minimal
    constraints. Every other failure is terminal until retry() is called.
    """

    def __init__(
        self,
        devices: MediaDevices,
        default_constraints: Optional[CameraConstraints] = None,
        init_timeout: float = 10.0,
    ):
        self.devices = devices
        self.default_constraints = default_constraints or CameraConstraints()
        self.init_timeout = init_timeout

        self.status = CameraStatus.INACTIVE
        self.last_error: Optional[CameraError] = None
        self.attempts: List[CameraConstraints] = []

        self._stream: Optional[MediaStream] = None
        self._requested: Optional[CameraConstraints] = None
        self._generation = 0
        self._lock = asyncio.Lock()

    @property
    def stream(self) -> Optional[MediaStream]:
        return self._stream

    async def acquire(self, constraints: Optional[CameraConstraints] = None) -> CameraStatus:
        """Bind a capture stream, raising a classified CameraError on failure"""
        async with self._lock:
            # Never hold two streams: drop whatever is bound before asking again
            self.release()

            constraints = constraints or self.default_constraints
            self._requested = constraints
            self.last_error = None
            self.status = CameraStatus.ACQUIRING
            generation = self._generation

            try:
                await self._open_and_play(constraints, generation)
            except CameraConstraintsUnsatisfiable as e:
                if constraints.is_minimal:
                    self._fail(e)
                logger.warning(f"⚠️ Camera rejected {constraints.model_dump(exclude_none=True)}: {e}, "
                               f"retrying with minimal constraints")
                self._drop_stream()
                try:
                    await self._open_and_play(CameraConstraints.minimal(), generation)
                except CameraError as retry_error:
                    self._fail(retry_error)
            except CameraError as e:
                self._fail(e)
            except asyncio.CancelledError:
                self._drop_stream()
                self.status = CameraStatus.INACTIVE
                raise

            self.status = CameraStatus.ACTIVE
            logger.info("✅ Camera active")
            return self.status

    async def retry(self) -> CameraStatus:
        """Re-run acquisition with the originally requested constraints"""
        if self.status != CameraStatus.ERROR:
            raise SessionStateError(f"Camera retry is only valid from Error, not {self.status.value}")
        logger.info("🔁 Retrying camera acquisition")
        return await self.acquire(self._requested)

    def release(self):
        """Stop all tracks and go Inactive; safe to call at any time"""
        self._generation += 1
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop()
            logger.info("📷 Camera stream released")
        self.status = CameraStatus.INACTIVE

    def check_stream(self) -> bool:
        """Notice a stream that stopped delivering while Active"""
        if self.status != CameraStatus.ACTIVE:
            return False
        if self._stream is not None and self._stream.active:
            return True
        self.mark_failed(CameraError("Camera stream ended unexpectedly"))
        return False

    def mark_failed(self, error: CameraError):
        """Active -> Error when a running stream dies"""
        if self.status != CameraStatus.ACTIVE:
            return
        logger.error(f"❌ Camera stream failed: {error}")
        self._drop_stream()
        self.status = CameraStatus.ERROR
        self.last_error = error

    async def _open_and_play(self, constraints: CameraConstraints, generation: int):
        self.attempts.append(constraints)
        try:
            stream = await self.devices.open(constraints)
        except CameraError:
            raise
        except Exception as e:
            raise CameraError(f"Unexpected camera failure: {e}") from e

        if generation != self._generation:
            # Released while the device was opening
            stream.stop()
            raise CameraError("Camera acquisition was cancelled")

        self._stream = stream
        try:
            await asyncio.wait_for(stream.wait_until_playing(), timeout=self.init_timeout)
        except asyncio.TimeoutError:
            raise CameraTimeout(f"No video within {self.init_timeout:g}s of binding the stream")
        except CameraError:
            raise
        except Exception as e:
            raise CameraError(f"Camera stream failed to start: {e}") from e

    def _fail(self, error: CameraError):
        self._drop_stream()
        if self.status == CameraStatus.ACQUIRING:
            self.status = CameraStatus.ERROR
            self.last_error = error
            logger.error(f"❌ Camera acquisition failed ({error.code}): {error}")
        raise error

    def _drop_stream(self):
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop()
