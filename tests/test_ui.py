import cv2
import numpy as np
import pytest

from drawvsai import ui
from drawvsai.camera import CapturedFrame
from drawvsai.config import AppConfig
from drawvsai.errors import ModelLoadError
from tests.conftest import FRAME_H, FRAME_W, ScriptedClassifier, make_hand


class FakeCamera:
    """Camera stand-in that hands out numbered blank frames."""

    instances = []

    def __init__(self, **kwargs):
        self.error = None
        self.index = 0
        self.advance = True
        FakeCamera.instances.append(self)

    def read(self):
        if self.advance:
            self.index += 1
        image = np.zeros((FRAME_H, FRAME_W, 3), dtype=np.uint8)
        return CapturedFrame(image, self.index, self.index * 33)


class FakeTracker:
    """Hand tracker returning queued results; queued exceptions are raised."""

    def __init__(self, results=()):
        self.results = list(results)
        self.calls = 0

    def detect(self, frame, timestamp_ms=None):
        self.calls += 1
        out = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(out, Exception):
            raise out
        return out

    def release(self):
        pass


@pytest.fixture
def shown(monkeypatch):
    frames = []
    monkeypatch.setattr(cv2, "imshow", lambda name, frame: frames.append(frame))
    monkeypatch.setattr(cv2, "waitKey", lambda delay: 255)
    return frames


@pytest.fixture
def make_app(monkeypatch):
    FakeCamera.instances = []
    monkeypatch.setattr(ui, "Camera", FakeCamera)

    def build(tracker):
        monkeypatch.setattr(ui, "HandTracker", lambda: tracker)
        app = ui.DrawVsAIApp(AppConfig(), use_mock_classifier=True)
        # Keep classification off real timer threads
        app.scheduler.close()
        return app

    return build


def test_detector_failure_keeps_rendering(make_app, shown):
    tracker = FakeTracker([RuntimeError("detector crashed")])
    app = make_app(tracker)

    for _ in range(3):
        app._step()

    assert len(shown) == 3
    assert tracker.calls == 3
    assert app.loop.error == "detector crashed"
    assert app._last_result is not None
    assert app._last_result.landmarks is None
    assert not app.pipeline.published.has_landmarks


def test_detector_failure_counts_as_miss(make_app, shown):
    hand = make_hand(extended=('index',))
    tracker = FakeTracker([hand, RuntimeError("detector crashed"), hand])
    app = make_app(tracker)

    app._step()
    app._step()

    # A single failed frame is within the miss budget
    assert app._last_result.tracking
    assert app._last_result.landmarks is not None
    assert len(shown) == 2


def test_same_frame_is_tracked_once(make_app, shown):
    tracker = FakeTracker([make_hand(extended=('index',))])
    app = make_app(tracker)
    app._step()
    FakeCamera.instances[0].advance = False

    app._step()
    app._step()

    assert tracker.calls == 1
    assert len(shown) == 3


def test_model_backend_label(make_app):
    app = make_app(FakeTracker([None]))
    assert app.model_label == "MOCK"


def test_mismatched_model_fails_before_camera_opens(monkeypatch):
    FakeCamera.instances = []
    monkeypatch.setattr(ui, "Camera", FakeCamera)
    monkeypatch.setattr(ui, "HandTracker", lambda: FakeTracker([None]))
    monkeypatch.setattr(
        ui, "create_classifier", lambda **kwargs: ScriptedClassifier([[0.5, 0.5]])
    )

    with pytest.raises(ModelLoadError):
        ui.DrawVsAIApp(AppConfig())

    assert FakeCamera.instances == []
