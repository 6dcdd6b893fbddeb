"""
Canvas Module - Drawing Raster and Input Handling
=================================================
Provides the transparent RGBA raster the player draws on, and the drawing
surface that turns mouse and fingertip input into strokes.

The raster is written by the input handlers and read by the classifier
thread, so every access goes through a lock.
"""

import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Optional, Tuple

import cv2
import numpy as np

from .gesture_logic import Gesture, HandState
from .landmarks import HandLandmark, LandmarkSet


logger = logging.getLogger(__name__)

Point = Tuple[float, float]


class Canvas:
    """
    Thread-safe RGBA drawing raster.

    Transparent pixels (alpha 0) are paper; anything with alpha is ink.
    """

    def __init__(
        self,
        width: int = 640,
        height: int = 480,
        color: Tuple[int, int, int] = (0, 0, 0),
        thickness: int = 10,
        eraser_size: int = 25
    ):
        """
        Args:
            width: Canvas width in pixels
            height: Canvas height in pixels
            color: Ink color (RGB)
            thickness: Stroke width
            eraser_size: Eraser radius
        """
        self.width = width
        self.height = height
        self.color = color
        self.thickness = thickness
        self.eraser_size = eraser_size

        self._raster = np.zeros((height, width, 4), dtype=np.uint8)
        self._lock = threading.Lock()
        self._version = 0

    @property
    def version(self) -> int:
        """Incremented on every mutation."""
        return self._version

    def _ink(self) -> Tuple[int, int, int, int]:
        return (*self.color, 255)

    @staticmethod
    def _pt(point: Point) -> Tuple[int, int]:
        return int(round(point[0])), int(round(point[1]))

    def draw_line(self, start: Point, end: Point):
        """Draw a round-capped segment."""
        with self._lock:
            cv2.line(self._raster, self._pt(start), self._pt(end),
                     self._ink(), self.thickness, cv2.LINE_AA)
            cv2.circle(self._raster, self._pt(end), self.thickness // 2,
                       self._ink(), -1, cv2.LINE_AA)
            self._version += 1

    def draw_dot(self, point: Point):
        """Draw a single round dab (start of a stroke)."""
        with self._lock:
            cv2.circle(self._raster, self._pt(point), max(1, self.thickness // 2),
                       self._ink(), -1, cv2.LINE_AA)
            self._version += 1

    def erase_at(self, point: Point):
        """Clear a disc of radius ``eraser_size`` around the point."""
        with self._lock:
            cv2.circle(self._raster, self._pt(point), self.eraser_size, (0, 0, 0, 0), -1)
            self._version += 1

    def clear(self):
        """Blank the whole raster."""
        with self._lock:
            self._raster[:] = 0
            self._version += 1
        logger.debug("Canvas cleared")

    def snapshot(self) -> np.ndarray:
        """Copy of the raster, safe to use from another thread."""
        with self._lock:
            return self._raster.copy()

    def has_content(self) -> bool:
        with self._lock:
            return bool(np.any(self._raster[:, :, 3]))

    def resize(self, new_width: int, new_height: int):
        """Resize the raster, scaling the existing drawing."""
        if new_width == self.width and new_height == self.height:
            return
        with self._lock:
            self._raster = cv2.resize(
                self._raster, (new_width, new_height), interpolation=cv2.INTER_NEAREST
            )
            self.width = new_width
            self.height = new_height
            self._version += 1

    def overlay_on_frame(self, frame: np.ndarray, alpha: float = 1.0) -> np.ndarray:
        """
        Blend the drawing over a BGR video frame.

        Args:
            frame: BGR frame of the canvas size
            alpha: Opacity of the ink (0-1)

        Returns:
            New frame with the drawing composited
        """
        raster = self.snapshot()
        if frame.shape[:2] != raster.shape[:2]:
            raster = cv2.resize(raster, (frame.shape[1], frame.shape[0]),
                                interpolation=cv2.INTER_NEAREST)

        ink_alpha = (raster[:, :, 3:4].astype(np.float32) / 255.0) * alpha
        ink_bgr = raster[:, :, 2::-1].astype(np.float32)

        result = frame.astype(np.float32) * (1.0 - ink_alpha) + ink_bgr * ink_alpha
        return result.astype(np.uint8)


class DrawingSurface:
    """
    Turns pointer and fingertip input into canvas strokes.

    Input points are averaged over the last few samples, tiny moves are
    skipped, and classification requests are rate-limited while the player
    is actively drawing and skipped when the canvas has not changed since
    the last one.
    """

    SMOOTHING_BUFFER_SIZE = 3
    MIN_DISTANCE = 2.0

    def __init__(
        self,
        canvas: Canvas,
        on_change: Optional[Callable[[], None]] = None,
        guess_interval: float = 0.35,
        hand_drawing: bool = True,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            canvas: Raster to draw on
            on_change: Requests a classification (usually the scheduler)
            guess_interval: Minimum seconds between requests while drawing
            hand_drawing: Whether the PointerUp gesture draws
            clock: Time source in seconds
        """
        self.canvas = canvas
        self.on_change = on_change
        self.guess_interval = guess_interval
        self.hand_drawing = hand_drawing
        self._clock = clock

        self._buffer: Deque[Point] = deque(maxlen=self.SMOOTHING_BUFFER_SIZE)
        self._prev: Optional[Point] = None
        self._last_request: Optional[float] = None
        self._requested_version: Optional[int] = None

        self.is_drawing = False
        self.is_erasing = False

    def _request(self, throttled: bool = True):
        if self.on_change is None:
            return
        # Nothing new to classify
        version = self.canvas.version
        if version == self._requested_version:
            return
        now = self._clock()
        if throttled and self._last_request is not None:
            if now - self._last_request < self.guess_interval:
                return
        self._last_request = now
        self._requested_version = version
        self.on_change()

    def _reset_stroke(self):
        self._buffer.clear()
        self._prev = None

    def _stroke_to(self, point: Point):
        self._buffer.append(point)
        xs, ys = zip(*self._buffer)
        smoothed = (sum(xs) / len(xs), sum(ys) / len(ys))

        if self._prev is None:
            self.canvas.draw_dot(smoothed)
            self._prev = smoothed
            return

        distance = np.hypot(smoothed[0] - self._prev[0], smoothed[1] - self._prev[1])
        if distance >= self.MIN_DISTANCE:
            self.canvas.draw_line(self._prev, smoothed)
            self._prev = smoothed

    # Pointer input

    def pointer_down(self, point: Point, erase: bool = False):
        if erase:
            self.is_erasing = True
            self.canvas.erase_at(point)
        else:
            self.is_drawing = True
            self._last_request = None
            self._reset_stroke()
            self._stroke_to(point)
        self._request()

    def pointer_move(self, point: Point):
        if self.is_drawing:
            self._stroke_to(point)
            self._request()
        elif self.is_erasing:
            self.canvas.erase_at(point)
            self._request()

    def pointer_up(self, erase: bool = False):
        if erase:
            self.is_erasing = False
        else:
            self.is_drawing = False
            self._reset_stroke()
        self._request(throttled=False)

    # Hand input

    def update_hand(self, published: HandState, landmarks: Optional[LandmarkSet]):
        """
        Apply the current hand state.

        Args:
            published: Committed gesture state
            landmarks: Latest smoothed landmarks (for the fingertip position)
        """
        if not published.has_landmarks or landmarks is None or published.gesture == Gesture.IDLE:
            self._reset_stroke()
            return

        if published.gesture == Gesture.POINTER_UP and self.hand_drawing:
            tip = landmarks[HandLandmark.INDEX_TIP]
            self._stroke_to((float(tip[0]), float(tip[1])))
            self._request()
        elif self.hand_drawing:
            self._reset_stroke()

    def clear(self):
        """Clear the canvas and forget the current stroke."""
        self._reset_stroke()
        self.canvas.clear()
