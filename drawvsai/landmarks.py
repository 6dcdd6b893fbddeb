"""
Landmarks Module - Landmark Validation and Stabilization
========================================================
Primitives for the 21-point hand landmark sets produced by the detector,
plus the first stages of the stabilization pipeline:

- is_valid_hand: rejects geometrically implausible detections
- LandmarkSmoother: exponential smoothing of accepted sets
- DetectionHysteresis: sticky "hand present" state
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Tuple

import numpy as np

from .config import TrackingConfig


NUM_LANDMARKS = 21

# A LandmarkSet is a (21, 3) float32 array of (x, y, z) pixel coordinates.
LandmarkSet = np.ndarray


class HandLandmark(IntEnum):
    """
    Hand landmark indices (MediaPipe topology).
    Reference: https://mediapipe.dev/images/mobile/hand_landmarks.png
    """
    WRIST = 0
    THUMB_CMC = 1
    THUMB_MCP = 2
    THUMB_IP = 3
    THUMB_TIP = 4
    INDEX_MCP = 5
    INDEX_PIP = 6
    INDEX_DIP = 7
    INDEX_TIP = 8
    MIDDLE_MCP = 9
    MIDDLE_PIP = 10
    MIDDLE_DIP = 11
    MIDDLE_TIP = 12
    RING_MCP = 13
    RING_PIP = 14
    RING_DIP = 15
    RING_TIP = 16
    PINKY_MCP = 17
    PINKY_PIP = 18
    PINKY_DIP = 19
    PINKY_TIP = 20


def as_landmark_set(points) -> LandmarkSet:
    """
    Convert a sequence of 21 (x, y, z) points to a read-only LandmarkSet.

    Raises:
        ValueError: If the input is not 21 points of 3 coordinates
    """
    arr = np.array(points, dtype=np.float32)
    if arr.shape != (NUM_LANDMARKS, 3):
        raise ValueError(f"Expected ({NUM_LANDMARKS}, 3) landmarks, got {arr.shape}")
    arr.flags.writeable = False
    return arr


def bounding_box(landmarks: LandmarkSet) -> Tuple[float, float, float, float]:
    """Axis-aligned box of all points as (min_x, min_y, max_x, max_y)."""
    xs = landmarks[:, 0]
    ys = landmarks[:, 1]
    return float(xs.min()), float(ys.min()), float(xs.max()), float(ys.max())


def is_valid_hand(
    landmarks: Optional[LandmarkSet],
    frame_width: int,
    frame_height: int,
    config: TrackingConfig = TrackingConfig()
) -> bool:
    """
    Check whether a detection is geometrically plausible.

    Only the bounding box is checked; point correspondence is trusted.

    Args:
        landmarks: Candidate landmark set (pixel coordinates)
        frame_width: Frame width in pixels
        frame_height: Frame height in pixels
        config: Thresholds

    Returns:
        True if the set should be accepted
    """
    if landmarks is None or frame_width <= 0 or frame_height <= 0:
        return False
    if np.shape(landmarks) != (NUM_LANDMARKS, 3) or not np.all(np.isfinite(landmarks)):
        return False

    min_x, min_y, max_x, max_y = bounding_box(landmarks)
    box_w = max_x - min_x
    box_h = max_y - min_y

    # Too small to be a hand
    if box_w < config.min_box_ratio * frame_width:
        return False
    if box_h < config.min_box_ratio * frame_height:
        return False

    # Implausibly large
    if box_w > config.max_box_ratio * frame_width:
        return False
    if box_h > config.max_box_ratio * frame_height:
        return False

    # Mostly off-screen
    margin_x = config.max_outside_ratio * frame_width
    margin_y = config.max_outside_ratio * frame_height
    if min_x < -margin_x or max_x > frame_width + margin_x:
        return False
    if min_y < -margin_y or max_y > frame_height + margin_y:
        return False

    return True


class LandmarkSmoother:
    """
    Exponential moving average over landmark sets.

    One instance per tracked hand. The first set after a reset passes
    through unchanged.
    """

    def __init__(self, alpha: float = 0.5):
        if not 0.0 < alpha <= 1.0:
            raise ValueError(f"alpha must be in (0, 1], got {alpha}")
        self.alpha = alpha
        self._state: Optional[np.ndarray] = None

    @property
    def state(self) -> Optional[LandmarkSet]:
        """Current smoothed set, or None after a reset."""
        if self._state is None:
            return None
        view = self._state.view()
        view.flags.writeable = False
        return view

    def update(self, landmarks: LandmarkSet) -> LandmarkSet:
        """
        Blend a new set into the running state.

        Returns:
            A read-only copy of the smoothed set
        """
        raw = np.asarray(landmarks, dtype=np.float32)
        if self._state is None:
            self._state = raw.copy()
        else:
            self._state *= (1.0 - self.alpha)
            self._state += raw * self.alpha

        result = self._state.copy()
        result.flags.writeable = False
        return result

    def reset(self):
        """Drop the running state so the next set reinitializes it."""
        self._state = None


@dataclass
class TrackingState:
    """Whether a hand is considered present, and for how many frames it has been missed."""
    is_tracking: bool = False
    frames_without_detection: int = 0


class DetectionHysteresis:
    """
    Sticky hand-presence flag.

    Becomes true on any detection; becomes false only once more than
    ``miss_budget`` consecutive frames had no detection.
    """

    def __init__(self, miss_budget: int = 5):
        self.miss_budget = miss_budget
        self._state = TrackingState()

    @property
    def state(self) -> TrackingState:
        return TrackingState(self._state.is_tracking, self._state.frames_without_detection)

    @property
    def is_tracking(self) -> bool:
        return self._state.is_tracking

    def update(self, detected: bool) -> bool:
        """
        Feed one frame's detection result.

        Returns:
            Current tracking flag
        """
        if detected:
            self._state.is_tracking = True
            self._state.frames_without_detection = 0
        else:
            self._state.frames_without_detection += 1
            if self._state.frames_without_detection > self.miss_budget:
                self._state.is_tracking = False
        return self._state.is_tracking

    def reset(self):
        self._state = TrackingState()
