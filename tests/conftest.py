import numpy as np
import pytest

from drawvsai.landmarks import HandLandmark, as_landmark_set
from drawvsai.sketch_classifier import SketchClassifier


FRAME_W, FRAME_H = 640, 480

KNUCKLE_Y = 300.0
TIP_UP_Y = 200.0
TIP_DOWN_Y = 350.0

_FINGERS = {
    # name: (x, mcp, pip, dip, tip)
    'index': (300.0, HandLandmark.INDEX_MCP, HandLandmark.INDEX_PIP,
              HandLandmark.INDEX_DIP, HandLandmark.INDEX_TIP),
    'middle': (320.0, HandLandmark.MIDDLE_MCP, HandLandmark.MIDDLE_PIP,
               HandLandmark.MIDDLE_DIP, HandLandmark.MIDDLE_TIP),
    'ring': (340.0, HandLandmark.RING_MCP, HandLandmark.RING_PIP,
             HandLandmark.RING_DIP, HandLandmark.RING_TIP),
    'pinky': (360.0, HandLandmark.PINKY_MCP, HandLandmark.PINKY_PIP,
              HandLandmark.PINKY_DIP, HandLandmark.PINKY_TIP),
}


def make_hand(extended=(), thumb_tip=None, offset=(0.0, 0.0)):
    """
    Build a synthetic 21-point hand in a 640x480 frame.

    Args:
        extended: Finger names whose tips sit above their knuckles
        thumb_tip: Explicit (x, y) for the thumb tip
        offset: Shift applied to every point
    """
    pts = np.zeros((21, 3), dtype=np.float32)
    pts[HandLandmark.WRIST] = (320.0, 400.0, 0.0)

    for name, (x, mcp, pip, dip, tip) in _FINGERS.items():
        tip_y = TIP_UP_Y if name in extended else TIP_DOWN_Y
        pts[mcp] = (x, KNUCKLE_Y, 0.0)
        pts[pip] = (x, (KNUCKLE_Y + tip_y) / 2, 0.0)
        pts[dip] = (x, (KNUCKLE_Y + 3 * tip_y) / 4, 0.0)
        pts[tip] = (x, tip_y, 0.0)

    thumb_up = 'thumb' in extended
    pts[HandLandmark.THUMB_CMC] = (280.0, 360.0, 0.0)
    pts[HandLandmark.THUMB_MCP] = (260.0, KNUCKLE_Y, 0.0)
    pts[HandLandmark.THUMB_IP] = (245.0, 270.0 if thumb_up else 320.0, 0.0)
    if thumb_tip is not None:
        pts[HandLandmark.THUMB_TIP] = (thumb_tip[0], thumb_tip[1], 0.0)
    else:
        pts[HandLandmark.THUMB_TIP] = (230.0, 240.0 if thumb_up else 330.0, 0.0)

    pts[:, 0] += offset[0]
    pts[:, 1] += offset[1]
    return as_landmark_set(pts)


class FakeTimer:
    """Stand-in for threading.Timer that only fires when told to."""

    def __init__(self, delay, fn):
        self.delay = delay
        self.fn = fn
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if self.started and not self.cancelled:
            self.fn()


class FakeTimers:
    """Timer factory that records every timer it creates."""

    def __init__(self):
        self.created = []

    def __call__(self, delay, fn):
        timer = FakeTimer(delay, fn)
        self.created.append(timer)
        return timer

    @property
    def last(self):
        return self.created[-1]

    def live(self):
        return [t for t in self.created if t.started and not t.cancelled]


@pytest.fixture
def timers():
    return FakeTimers()


@pytest.fixture
def pointer_hand():
    return make_hand(extended=('index',))


CATEGORIES = ("cat", "dog", "star")


class ScriptedClassifier(SketchClassifier):
    """Returns queued probability vectors; queued exceptions are raised."""

    def __init__(self, outputs=(), categories=CATEGORIES):
        super().__init__(categories)
        self.outputs = list(outputs)
        self.calls = 0

    def _infer(self, tensor):
        self.calls += 1
        out = self.outputs.pop(0)
        if isinstance(out, Exception):
            raise out
        return np.asarray(out, dtype=np.float32)


class ScriptedChoice:
    """Random source whose choice() walks through fixed words."""

    def __init__(self, *words):
        self.words = list(words)

    def choice(self, seq):
        if len(self.words) > 1:
            return self.words.pop(0)
        return self.words[0]


def vector(label, p=0.9):
    rest = (1.0 - p) / (len(CATEGORIES) - 1)
    return [p if c == label else rest for c in CATEGORIES]
