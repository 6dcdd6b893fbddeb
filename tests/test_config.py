from pathlib import Path

import pytest

from drawvsai.config import AppConfig, GameConfig, SketchConfig, TrackingConfig


def test_defaults():
    config = AppConfig.from_env({})

    assert config == AppConfig()
    assert config.tracking == TrackingConfig()
    assert config.game.ema_factor == 0.8
    assert config.game.restart_delay == 0.8
    assert config.sketch == SketchConfig()


def test_reads_environment():
    config = AppConfig.from_env({
        "DRAWVSAI_CAMERA": "2",
        "DRAWVSAI_MODEL_PATH": "/models/doodle.onnx",
        "DRAWVSAI_HUB_REPO": "someone/doodles",
        "DRAWVSAI_HAND_DRAWING": "no",
        "DRAWVSAI_LOG_LEVEL": "debug",
        "DRAWVSAI_EMA_FACTOR": "0.5",
        "DRAWVSAI_STREAK_TO_SCORE": "3",
        "DRAWVSAI_STRICT_HYSTERESIS": "true",
        "DRAWVSAI_DILATE_ITERATIONS": "1",
    })

    assert config.camera_id == 2
    assert config.model_path == Path("/models/doodle.onnx")
    assert config.hub_repo == "someone/doodles"
    assert not config.hand_drawing
    assert config.log_level == "DEBUG"
    assert config.game == GameConfig(ema_factor=0.5, streak_to_score=3)
    assert config.tracking.strict_gesture_hysteresis
    assert config.sketch.dilate_iterations == 1


def test_empty_values_keep_defaults():
    config = AppConfig.from_env({"DRAWVSAI_WIDTH": "", "DRAWVSAI_CAMERA": ""})
    assert config.width == 640
    assert config.camera_id == 0


def test_invalid_value_raises():
    with pytest.raises(ValueError, match="DRAWVSAI_CAMERA"):
        AppConfig.from_env({"DRAWVSAI_CAMERA": "front"})
