"""
Hand Tracking Module - MediaPipe Hand Landmark Detection
========================================================
Detects one hand per frame with the MediaPipe Hand Landmarker (Tasks API,
VIDEO mode) and returns its 21 landmarks in pixel coordinates.

Coordinates are not clamped to the frame: the validity filter needs to see
how far a detection extends past the edges.
"""

import logging
import time
import urllib.request
from pathlib import Path
from typing import Optional, Tuple

import cv2
import mediapipe as mp
import numpy as np
from mediapipe.tasks import python
from mediapipe.tasks.python import vision

from .errors import ModelLoadError
from .landmarks import HandLandmark, LandmarkSet, as_landmark_set


logger = logging.getLogger(__name__)

MODEL_URL = "https://storage.googleapis.com/mediapipe-models/hand_landmarker/hand_landmarker/float16/1/hand_landmarker.task"
DEFAULT_MODEL_PATH = Path(__file__).parent.parent / "models" / "hand_landmarker.task"

# Joint chains from the base of each finger to its tip
FINGER_CHAINS = (
    (HandLandmark.THUMB_CMC, HandLandmark.THUMB_MCP, HandLandmark.THUMB_IP, HandLandmark.THUMB_TIP),
    (HandLandmark.INDEX_MCP, HandLandmark.INDEX_PIP, HandLandmark.INDEX_DIP, HandLandmark.INDEX_TIP),
    (HandLandmark.MIDDLE_MCP, HandLandmark.MIDDLE_PIP, HandLandmark.MIDDLE_DIP, HandLandmark.MIDDLE_TIP),
    (HandLandmark.RING_MCP, HandLandmark.RING_PIP, HandLandmark.RING_DIP, HandLandmark.RING_TIP),
    (HandLandmark.PINKY_MCP, HandLandmark.PINKY_PIP, HandLandmark.PINKY_DIP, HandLandmark.PINKY_TIP),
)

HAND_CONNECTIONS = (
    [(HandLandmark.WRIST, chain[0]) for chain in FINGER_CHAINS]
    + [pair for chain in FINGER_CHAINS for pair in zip(chain, chain[1:])]
    # Knuckle line across the palm
    + list(zip([c[0] for c in FINGER_CHAINS[1:-1]], [c[0] for c in FINGER_CHAINS[2:]]))
)


def _download_model(model_path: Path) -> None:
    """Download the hand landmarker model if not present."""
    logger.info("Downloading hand landmarker model...")
    model_path.parent.mkdir(parents=True, exist_ok=True)
    urllib.request.urlretrieve(MODEL_URL, model_path)
    logger.info("Model downloaded to %s", model_path)


class HandTracker:
    """
    Single-hand landmark detector using MediaPipe Hand Landmarker.

    VIDEO running mode tracks between frames, which is cheaper than
    detecting from scratch every frame.
    """

    def __init__(
        self,
        model_path: Path = DEFAULT_MODEL_PATH,
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5
    ):
        """
        Args:
            model_path: Location of hand_landmarker.task (downloaded if missing)
            min_detection_confidence: Minimum confidence for detection
            min_tracking_confidence: Minimum confidence for tracking

        Raises:
            ModelLoadError: If the model cannot be downloaded or loaded
        """
        self._model_path = Path(model_path)

        try:
            if not self._model_path.exists():
                _download_model(self._model_path)

            base_options = python.BaseOptions(model_asset_path=str(self._model_path))
            options = vision.HandLandmarkerOptions(
                base_options=base_options,
                running_mode=vision.RunningMode.VIDEO,
                num_hands=1,
                min_hand_detection_confidence=min_detection_confidence,
                min_tracking_confidence=min_tracking_confidence,
                min_hand_presence_confidence=min_detection_confidence
            )
            self.detector = vision.HandLandmarker.create_from_options(options)
        except Exception as e:
            raise ModelLoadError(f"Failed to load hand landmarker: {e}") from e

        # Timestamps must be monotonically increasing in VIDEO mode
        self._start_time = time.monotonic()
        self._last_timestamp_ms = -1

    def detect(self, frame: np.ndarray, timestamp_ms: Optional[int] = None) -> Optional[LandmarkSet]:
        """
        Detect a hand in a BGR frame.

        Args:
            frame: BGR image
            timestamp_ms: Capture time; defaults to time since the tracker started

        Returns:
            (21, 3) pixel-space landmarks, or None if no hand was found
        """
        height, width = frame.shape[:2]

        rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb_frame)

        if timestamp_ms is None:
            timestamp_ms = int((time.monotonic() - self._start_time) * 1000)
        # Repeated frames still need a strictly increasing timestamp
        timestamp_ms = max(timestamp_ms, self._last_timestamp_ms + 1)
        self._last_timestamp_ms = timestamp_ms

        results = self.detector.detect_for_video(mp_image, timestamp_ms)
        if not results.hand_landmarks:
            return None

        hand = results.hand_landmarks[0]
        # z is relative depth on roughly the same scale as x
        return as_landmark_set([
            (lm.x * width, lm.y * height, lm.z * width) for lm in hand
        ])

    def release(self):
        """Release resources."""
        if self.detector:
            self.detector.close()
            self.detector = None


def draw_landmarks(
    frame: np.ndarray,
    landmarks: LandmarkSet,
    highlight_index: bool = False,
    landmark_color: Tuple[int, int, int] = (0, 0, 255),
    connection_color: Tuple[int, int, int] = (0, 255, 0),
    thickness: int = 2
) -> np.ndarray:
    """
    Draw hand landmarks and connections on a BGR frame (in place).

    Args:
        frame: Image to draw on
        landmarks: Landmarks to visualize
        highlight_index: Mark the index finger (drawing mode)
        landmark_color: BGR color for landmarks
        connection_color: BGR color for connections
        thickness: Line thickness

    Returns:
        The same frame
    """
    points = [(int(x), int(y)) for x, y, _ in landmarks]

    for start, end in HAND_CONNECTIONS:
        cv2.line(frame, points[start], points[end], connection_color, thickness)

    for point in points:
        cv2.circle(frame, point, 3, landmark_color, -1)

    if highlight_index:
        for idx in range(HandLandmark.INDEX_MCP, HandLandmark.INDEX_TIP + 1):
            cv2.circle(frame, points[idx], 5, (0, 255, 255), -1)

    return frame
