"""
Camera Module - Webcam Stream Handler
=====================================
Captures webcam frames on a background thread so the frame loop always
gets the newest frame without waiting on the device.

Each frame carries a sequence number and a capture timestamp; the hand
tracker's VIDEO mode needs the timestamps to increase.
"""

import logging
import platform
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import cv2
import numpy as np


logger = logging.getLogger(__name__)


@dataclass
class CapturedFrame:
    """A mirrored BGR frame with its capture metadata."""
    image: np.ndarray
    index: int
    timestamp_ms: int

    @property
    def size(self):
        height, width = self.image.shape[:2]
        return width, height


def _open_capture(camera_id: int) -> cv2.VideoCapture:
    # DirectShow opens much faster than the default backend on Windows
    if platform.system() == "Windows":
        return cv2.VideoCapture(camera_id, cv2.CAP_DSHOW)
    return cv2.VideoCapture(camera_id)


class Camera:
    """
    Threaded webcam capture.

    Frames are mirrored horizontally so that landmark coordinates line up
    with what the player sees. ``error`` is set when the device cannot be
    opened or stops delivering frames.
    """

    MAX_READ_FAILURES = 100

    def __init__(
        self,
        camera_id: int = 0,
        width: int = 640,
        height: int = 480,
        fps: int = 30,
        mirror: bool = True,
        capture_factory: Callable[[int], cv2.VideoCapture] = _open_capture
    ):
        """
        Args:
            camera_id: Camera device index
            width: Requested frame width
            height: Requested frame height
            fps: Requested frame rate
            mirror: Flip frames horizontally
            capture_factory: Opens the device for an index
        """
        self.camera_id = camera_id
        self.width = width
        self.height = height
        self.fps = fps
        self.mirror = mirror
        self._capture_factory = capture_factory

        self.cap = None
        self.error: Optional[str] = None

        self._latest: Optional[CapturedFrame] = None
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._started_at = 0.0
        self._failures = 0

    @property
    def ready(self) -> bool:
        """Whether at least one frame has arrived."""
        return self._latest is not None

    def start(self) -> bool:
        """
        Open the device and start the capture thread.

        Returns:
            True if the camera opened, False otherwise (see ``error``)
        """
        self.cap = self._capture_factory(self.camera_id)
        if not self.cap.isOpened():
            self.error = f"Camera {self.camera_id} is unavailable or access was blocked"
            logger.error(self.error)
            return False

        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self.cap.set(cv2.CAP_PROP_FPS, self.fps)
        self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        # The driver may not honour the requested size
        self.width = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH)) or self.width
        self.height = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT)) or self.height
        logger.info("Camera %d opened at %dx%d", self.camera_id, self.width, self.height)

        self.error = None
        self._failures = 0
        self._started_at = time.monotonic()
        self._stop.clear()
        self._thread = threading.Thread(target=self._capture_loop, name="camera", daemon=True)
        self._thread.start()
        return True

    def _capture_loop(self):
        while not self._stop.is_set():
            if not self.grab():
                self._stop.wait(0.005)

    def grab(self) -> bool:
        """
        Read one frame from the device into the latest-frame slot.

        Returns:
            True if a frame was read
        """
        ok, image = self.cap.read()
        if not ok or image is None:
            self._failures += 1
            if self._failures == self.MAX_READ_FAILURES:
                self.error = "Camera stopped delivering frames"
                logger.error(self.error)
            return False

        self._failures = 0
        self.error = None
        if self.mirror:
            image = cv2.flip(image, 1)

        timestamp_ms = int((time.monotonic() - self._started_at) * 1000)
        with self._lock:
            index = self._latest.index + 1 if self._latest is not None else 1
            self._latest = CapturedFrame(image, index, timestamp_ms)
        return True

    def read(self) -> Optional[CapturedFrame]:
        """Newest frame (image copied), or None before the first one."""
        with self._lock:
            latest = self._latest
        if latest is None:
            return None
        return CapturedFrame(latest.image.copy(), latest.index, latest.timestamp_ms)

    def stop(self):
        """Stop capturing and release the device."""
        self._stop.set()

        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None

        if self.cap is not None:
            self.cap.release()
            self.cap = None

        logger.info("Camera stopped")

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False
