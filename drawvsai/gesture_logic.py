"""
Gesture Logic Module - Landmarks to Stable Gestures
===================================================
Maps smoothed hand landmarks to discrete gestures and debounces the
resulting label stream before it reaches the drawing surface.

Per frame: validity filter -> detection hysteresis -> smoother ->
gesture classifier -> gesture hysteresis -> commit buffer.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

import numpy as np

from .config import TrackingConfig
from .landmarks import (
    DetectionHysteresis, HandLandmark, LandmarkSet, LandmarkSmoother,
    is_valid_hand
)


logger = logging.getLogger(__name__)


class Gesture(Enum):
    """Interaction modes derived from finger extension."""
    IDLE = "Idle"
    POINTER_UP = "PointerUp"                    # Index finger up - draw
    PINCH_CLOSE = "PinchClose"                  # Thumb + index tips together
    OPEN_HAND = "OpenHand"                      # All four fingers up
    MULTIPLE_FINGERS_UP = "MultipleFingersUp"


GESTURE_INFO = {
    Gesture.IDLE: 'Otherwise - idle',
    Gesture.POINTER_UP: 'Index only - draw',
    Gesture.PINCH_CLOSE: 'Thumb + index pinch',
    Gesture.OPEN_HAND: 'Open hand',
    Gesture.MULTIPLE_FINGERS_UP: 'Several fingers up',
}


# (tip, knuckle) pairs; a finger is extended when its tip is above the knuckle
FINGER_JOINTS = {
    'thumb': (HandLandmark.THUMB_TIP, HandLandmark.THUMB_MCP),
    'index': (HandLandmark.INDEX_TIP, HandLandmark.INDEX_MCP),
    'middle': (HandLandmark.MIDDLE_TIP, HandLandmark.MIDDLE_MCP),
    'ring': (HandLandmark.RING_TIP, HandLandmark.RING_MCP),
    'pinky': (HandLandmark.PINKY_TIP, HandLandmark.PINKY_MCP),
}


def finger_states(landmarks: LandmarkSet) -> Dict[str, bool]:
    """
    Determine which fingers are extended.

    Image coordinates grow downwards, so "extended" means the tip's y is
    smaller than the knuckle's y.

    Returns:
        Dict with finger names as keys and extension state as values
    """
    return {
        finger: bool(landmarks[tip][1] < landmarks[knuckle][1])
        for finger, (tip, knuckle) in FINGER_JOINTS.items()
    }


def classify_gesture(landmarks: LandmarkSet, pinch_threshold: float = 50.0) -> Gesture:
    """
    Classify a smoothed landmark set. First matching rule wins.

    Args:
        landmarks: (21, 3) pixel-space landmarks
        pinch_threshold: Max thumb-index tip distance (pixels) for a pinch

    Returns:
        The detected Gesture
    """
    states = finger_states(landmarks)
    thumb = states['thumb']
    index = states['index']
    middle = states['middle']
    ring = states['ring']
    pinky = states['pinky']

    others_down = not (middle or ring or pinky)

    # 1. Index only
    if index and not thumb and others_down:
        return Gesture.POINTER_UP

    # 2. Thumb + index: pinch if the tips touch
    if index and thumb and others_down:
        thumb_tip = landmarks[HandLandmark.THUMB_TIP][:2]
        index_tip = landmarks[HandLandmark.INDEX_TIP][:2]
        distance = float(np.linalg.norm(thumb_tip - index_tip))
        if distance < pinch_threshold:
            return Gesture.PINCH_CLOSE
        return Gesture.POINTER_UP

    # 3. All four fingers
    if index and middle and ring and pinky:
        return Gesture.OPEN_HAND

    # 4. Any other combination with more than one finger
    if sum([index, middle, ring, pinky]) > 1:
        return Gesture.MULTIPLE_FINGERS_UP

    return Gesture.IDLE


@dataclass
class GestureHysteresisState:
    current_gesture: Gesture = Gesture.IDLE
    frames_in_gesture: int = 0
    candidate: Optional[Gesture] = None


class GestureHysteresis:
    """
    Anti-flicker filter on the gesture label stream.

    The held gesture changes only after ``stay_frames`` consecutive updates
    disagree with it. By default any disagreement counts, so the value
    accepted is whatever the raw input is on the deciding update. With
    ``require_same_candidate`` the same new value must repeat instead.
    """

    def __init__(
        self,
        stay_frames: int = 3,
        require_same_candidate: bool = False,
        initial: Gesture = Gesture.IDLE
    ):
        self.stay_frames = stay_frames
        self.require_same_candidate = require_same_candidate
        self._state = GestureHysteresisState(current_gesture=initial)

    @property
    def current(self) -> Gesture:
        return self._state.current_gesture

    @property
    def state(self) -> GestureHysteresisState:
        s = self._state
        return GestureHysteresisState(s.current_gesture, s.frames_in_gesture, s.candidate)

    def update(self, gesture: Gesture) -> Gesture:
        """Feed a raw gesture and return the held one."""
        state = self._state

        if gesture == state.current_gesture:
            state.frames_in_gesture = 0
            state.candidate = None
            return state.current_gesture

        if self.require_same_candidate and gesture != state.candidate:
            state.candidate = gesture
            state.frames_in_gesture = 0

        state.frames_in_gesture += 1
        if state.frames_in_gesture >= self.stay_frames:
            logger.debug("Gesture %s -> %s", state.current_gesture.value, gesture.value)
            state.current_gesture = gesture
            state.frames_in_gesture = 0
            state.candidate = None

        return state.current_gesture

    def reset(self, gesture: Gesture = Gesture.IDLE):
        self._state = GestureHysteresisState(current_gesture=gesture)


@dataclass(frozen=True)
class HandState:
    """Published hand state consumed by rendering and the drawing surface."""
    landmarks: Optional[LandmarkSet] = None
    gesture: Gesture = Gesture.IDLE

    @property
    def has_landmarks(self) -> bool:
        return self.landmarks is not None


@dataclass
class CommitState:
    last_raw_gesture: Optional[Gesture] = None
    stable_count: int = 0
    published: HandState = field(default_factory=HandState)


class CommitBuffer:
    """
    Publishes a gesture only once it has been stable for ``threshold`` frames
    and differs materially from what was last published.
    """

    def __init__(self, threshold: int = 5):
        self.threshold = threshold
        self._state = CommitState()

    @property
    def published(self) -> HandState:
        return self._state.published

    @property
    def stable_count(self) -> int:
        return self._state.stable_count

    def update(self, gesture: Gesture, landmarks: Optional[LandmarkSet]) -> Optional[HandState]:
        """
        Feed one frame.

        Returns:
            The newly published HandState, or None if nothing was published
        """
        state = self._state

        if gesture != state.last_raw_gesture:
            state.last_raw_gesture = gesture
            state.stable_count = 1
        else:
            state.stable_count += 1

        if state.stable_count < self.threshold:
            return None

        published = state.published
        gesture_changed = gesture != published.gesture
        presence_changed = (landmarks is not None) != published.has_landmarks
        if not (gesture_changed or presence_changed):
            return None

        state.published = HandState(landmarks=landmarks, gesture=gesture)
        logger.debug(
            "Published gesture=%s hand=%s", gesture.value, landmarks is not None
        )
        return state.published

    def reset(self):
        self._state = CommitState()


@dataclass
class FrameResult:
    """
    Output of one pipeline step.

    Attributes:
        tracking: Detection hysteresis flag
        landmarks: Smoothed landmarks for this frame (held during brief misses)
        raw_gesture: Classifier output before hysteresis
        gesture: Gesture after hysteresis
        published: Current published state
        changed: Whether this frame published a new state
    """
    tracking: bool
    landmarks: Optional[LandmarkSet]
    raw_gesture: Gesture
    gesture: Gesture
    published: HandState
    changed: bool


class HandPipeline:
    """
    Landmark stabilization for one tracked session.

    Owns its filter objects; create one per session rather than sharing.
    """

    def __init__(self, config: TrackingConfig = TrackingConfig()):
        self.config = config
        self.smoother = LandmarkSmoother(config.smoothing_alpha)
        self.detection = DetectionHysteresis(config.miss_budget)
        self.hysteresis = GestureHysteresis(
            config.gesture_stay_frames,
            require_same_candidate=config.strict_gesture_hysteresis
        )
        self.commit = CommitBuffer(config.commit_threshold)
        self._last_landmarks: Optional[LandmarkSet] = None

    @property
    def published(self) -> HandState:
        return self.commit.published

    def process(
        self,
        landmarks: Optional[LandmarkSet],
        frame_width: int,
        frame_height: int
    ) -> FrameResult:
        """
        Run one frame's detection through the pipeline.

        Args:
            landmarks: Raw detector output, or None if no hand was found
            frame_width: Frame width in pixels
            frame_height: Frame height in pixels
        """
        detected = is_valid_hand(landmarks, frame_width, frame_height, self.config)
        if landmarks is not None and not detected:
            logger.debug("Rejected implausible hand geometry")

        tracking = self.detection.update(detected)

        if detected:
            smoothed = self.smoother.update(landmarks)
            self._last_landmarks = smoothed
            raw_gesture = classify_gesture(smoothed, self.config.pinch_threshold)
            gesture = self.hysteresis.update(raw_gesture)
        else:
            self.smoother.reset()
            if tracking:
                # Tolerated miss: carry the last state forward
                smoothed = self._last_landmarks
                raw_gesture = self.hysteresis.current
                gesture = raw_gesture
            else:
                self._last_landmarks = None
                smoothed = None
                raw_gesture = Gesture.IDLE
                gesture = self.hysteresis.update(raw_gesture)

        published = self.commit.update(gesture, smoothed)

        return FrameResult(
            tracking=tracking,
            landmarks=smoothed,
            raw_gesture=raw_gesture,
            gesture=gesture,
            published=self.commit.published,
            changed=published is not None
        )

    def reset(self):
        """Forget all tracking state."""
        self.smoother.reset()
        self.detection.reset()
        self.hysteresis.reset()
        self.commit.reset()
        self._last_landmarks = None
