"""
Config Module - Tunable Parameters
==================================
All thresholds, filter constants and timer windows in one place.
Values are read from the environment (``DRAWVSAI_*``), which ``main.py``
populates from a ``.env`` file before the app starts.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class TrackingConfig:
    """Landmark stabilization pipeline settings."""
    min_box_ratio: float = 0.02       # Smaller boxes are not a real hand
    max_box_ratio: float = 0.9        # Larger boxes are implausible
    max_outside_ratio: float = 0.3    # How far the box may leave the frame
    smoothing_alpha: float = 0.5      # Weight of the new sample
    miss_budget: int = 5              # Missed frames tolerated before dropping
    pinch_threshold: float = 50.0     # Thumb-index distance in pixels
    gesture_stay_frames: int = 3
    strict_gesture_hysteresis: bool = False
    commit_threshold: int = 5         # Identical frames before publishing


@dataclass(frozen=True)
class SketchConfig:
    """Sketch preprocessing settings."""
    input_size: int = 28
    ink_alpha_threshold: int = 10
    padding: float = 1.2
    noise_threshold: float = 0.1
    contrast_gain: float = 1.5
    dilate_iterations: int = 0


@dataclass(frozen=True)
class GameConfig:
    """Round engine and classification loop settings."""
    ema_factor: float = 0.8           # Weight on history
    streak_to_score: int = 1
    min_ink_ratio: float = 0.01
    restart_delay: float = 0.8        # Seconds
    debounce_delay: float = 0.25      # Seconds
    guess_interval: float = 0.35      # Seconds between requests while drawing
    placeholder: str = "…"


@dataclass(frozen=True)
class AppConfig:
    """Top-level application settings."""
    camera_id: int = 0
    width: int = 640
    height: int = 480
    fps: int = 30
    model_path: Optional[Path] = None
    labels_path: Optional[Path] = None
    hub_repo: Optional[str] = None
    hub_filename: str = "model.onnx"
    hand_drawing: bool = True
    log_level: str = "INFO"
    tracking: TrackingConfig = field(default_factory=TrackingConfig)
    sketch: SketchConfig = field(default_factory=SketchConfig)
    game: GameConfig = field(default_factory=GameConfig)

    @classmethod
    def from_env(cls, environ=None) -> "AppConfig":
        """
        Build a config from ``DRAWVSAI_*`` environment variables.

        Unset variables keep their defaults.
        """
        env = os.environ if environ is None else environ

        def _get(name: str, cast, default):
            raw = env.get(f"DRAWVSAI_{name}")
            if raw is None or raw == "":
                return default
            try:
                return cast(raw)
            except ValueError as e:
                raise ValueError(f"Invalid value for DRAWVSAI_{name}: {raw!r}") from e

        def _path(raw: str) -> Path:
            return Path(raw).expanduser()

        def _bool(raw: str) -> bool:
            return raw.strip().lower() in ("1", "true", "yes", "on")

        base = cls()
        game = replace(
            base.game,
            ema_factor=_get("EMA_FACTOR", float, base.game.ema_factor),
            streak_to_score=_get("STREAK_TO_SCORE", int, base.game.streak_to_score),
            min_ink_ratio=_get("MIN_INK_RATIO", float, base.game.min_ink_ratio),
        )
        tracking = replace(
            base.tracking,
            strict_gesture_hysteresis=_get(
                "STRICT_HYSTERESIS", _bool, base.tracking.strict_gesture_hysteresis
            ),
        )
        sketch = replace(
            base.sketch,
            contrast_gain=_get("CONTRAST_GAIN", float, base.sketch.contrast_gain),
            dilate_iterations=_get("DILATE_ITERATIONS", int, base.sketch.dilate_iterations),
        )

        return cls(
            camera_id=_get("CAMERA", int, base.camera_id),
            width=_get("WIDTH", int, base.width),
            height=_get("HEIGHT", int, base.height),
            model_path=_get("MODEL_PATH", _path, None),
            labels_path=_get("LABELS_PATH", _path, None),
            hub_repo=_get("HUB_REPO", str, None),
            hub_filename=_get("HUB_FILENAME", str, base.hub_filename),
            hand_drawing=_get("HAND_DRAWING", _bool, base.hand_drawing),
            log_level=_get("LOG_LEVEL", str, base.log_level).upper(),
            tracking=tracking,
            sketch=sketch,
            game=game,
        )
