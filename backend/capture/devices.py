import cv2
import numpy as np
import asyncio
import os
import sys
import threading
from typing import Optional, Protocol
import logging

from models.proctoring_models import CameraConstraints
from services.errors import (
    CameraBusy,
    CameraConstraintsUnsatisfiable,
    CameraNotFound,
    CameraPermissionDenied,
)

logger = logging.getLogger(__name__)


class MediaStream(Protocol):
    """A bound capture stream"""

    @property
    def active(self) -> bool:
        """False once the device has gone away"""

    def stop(self) -> None:
        """Stop all tracks; must be safe to call more than once"""

    async def wait_until_playing(self) -> None:
        """Return once the first frame has been delivered"""


class MediaDevices(Protocol):
    """Backend that opens capture devices"""

    async def open(self, constraints: CameraConstraints) -> MediaStream:
        """Open a device honouring constraints or raise a CameraError"""


class OpenCVStream:
    """Capture stream backed by cv2.VideoCapture

    VideoCapture must not be released while another thread is inside read(),
    so reads and the release share a lock. A read abandoned by a timeout keeps
    running in its worker thread; the release then waits for it off the loop.
    """

    def __init__(self, capture: cv2.VideoCapture, device_index: int):
        self.capture = capture
        self.device_index = device_index
        self.is_playing = False
        self._io_lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self.capture is not None and self.capture.isOpened()

    def stop(self):
        capture, self.capture = self.capture, None
        self.is_playing = False
        if capture is None:
            return

        if self._io_lock.acquire(blocking=False):
            try:
                capture.release()
            finally:
                self._io_lock.release()
            logger.info(f"📷 Released camera {self.device_index}")
        else:
            logger.warning(f"⚠️ Camera {self.device_index} read still in progress, releasing once it returns")
            threading.Thread(target=self._release_after_read, args=(capture,), daemon=True).start()

    def _release_after_read(self, capture: cv2.VideoCapture):
        with self._io_lock:
            capture.release()
        logger.info(f"📷 Released camera {self.device_index}")

    def _read(self, capture: cv2.VideoCapture):
        with self._io_lock:
            if self.capture is not capture:
                return False, None
            return capture.read()

    async def wait_until_playing(self):
        """Poll until the device hands over a first frame"""
        while True:
            frame = await self.read_frame()
            if frame is not None:
                self.is_playing = True
                return
            await asyncio.sleep(0.1)

    async def read_frame(self) -> Optional[np.ndarray]:
        capture = self.capture
        if capture is None:
            return None
        ok, frame = await asyncio.to_thread(self._read, capture)
        if not ok or frame is None or frame.size == 0:
            return None
        return frame


class OpenCVMediaDevices:
    """Opens local cameras through OpenCV"""

    def __init__(self, device_index: int = 0):
        self.device_index = device_index

    @property
    def device_path(self) -> str:
        return f"/dev/video{self.device_index}"

    async def open(self, constraints: CameraConstraints) -> OpenCVStream:
        logger.info(f"📷 Opening camera {self.device_index} with {constraints.model_dump(exclude_none=True)}")

        self._check_device_node()

        capture = await asyncio.to_thread(cv2.VideoCapture, self.device_index)
        if not capture.isOpened():
            capture.release()
            if self._uses_device_nodes() and os.path.exists(self.device_path):
                raise CameraBusy(f"Camera {self.device_index} exists but could not be opened")
            raise CameraNotFound(f"Camera {self.device_index} is not available")

        try:
            await asyncio.to_thread(self._apply_constraints, capture, constraints)
        except CameraConstraintsUnsatisfiable:
            capture.release()
            raise

        return OpenCVStream(capture, self.device_index)

    def _check_device_node(self):
        if not self._uses_device_nodes():
            return
        if not os.path.exists(self.device_path):
            raise CameraNotFound(f"{self.device_path} does not exist")
        if not os.access(self.device_path, os.R_OK | os.W_OK):
            raise CameraPermissionDenied(f"No read/write access to {self.device_path}")

    @staticmethod
    def _uses_device_nodes() -> bool:
        # Only V4L2 exposes a device node to inspect
        return sys.platform.startswith("linux")

    @staticmethod
    def _apply_constraints(capture: cv2.VideoCapture, constraints: CameraConstraints):
        if constraints.width is None and constraints.height is None:
            return

        if constraints.width is not None:
            capture.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.width)
        if constraints.height is not None:
            capture.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.height)

        actual_width = int(capture.get(cv2.CAP_PROP_FRAME_WIDTH))
        actual_height = int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT))

        if constraints.width is not None and actual_width != constraints.width:
            raise CameraConstraintsUnsatisfiable(
                f"Requested width {constraints.width}, device offers {actual_width}"
            )
        if constraints.height is not None and actual_height != constraints.height:
            raise CameraConstraintsUnsatisfiable(
                f"Requested height {constraints.height}, device offers {actual_height}"
            )
