"""
UI Module - Draw vs AI Application
==================================
Webcam window with a drawing overlay: the player draws the target word
with the index finger or the mouse while the classifier keeps guessing.
"""

import argparse
import logging
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from .camera import Camera, CapturedFrame
from .canvas import Canvas, DrawingSurface
from .config import AppConfig
from .errors import ModelLoadError
from .frame_loop import FrameLoop
from .gesture_logic import GESTURE_INFO, FrameResult, Gesture, HandPipeline
from .hand_tracking import HandTracker, draw_landmarks
from .round_engine import ClassificationScheduler, RoundEngine
from .sketch_classifier import create_classifier
from .sketch_processor import SketchProcessor


logger = logging.getLogger(__name__)

WINDOW_NAME = "Draw vs AI"


class DrawVsAIApp:
    """
    Main application: camera, hand pipeline, drawing surface and round engine.
    """

    # UI Colors (BGR)
    UI_BG_COLOR = (30, 30, 30)
    UI_ACCENT_COLOR = (36, 191, 251)
    UI_TEXT_COLOR = (255, 255, 255)
    UI_MUTED_COLOR = (175, 163, 156)
    UI_SUCCESS_COLOR = (94, 197, 34)
    UI_ERROR_COLOR = (38, 38, 220)

    def __init__(self, config: AppConfig, use_mock_classifier: bool = False):
        """
        Args:
            config: Application settings
            use_mock_classifier: Run without a sketch model

        Raises:
            ModelLoadError: If the hand or sketch model fails to load
        """
        self.config = config

        # Load the sketch model first so a bad model fails before any device is opened
        classifier = create_classifier(
            model_path=config.model_path,
            labels_path=config.labels_path,
            hub_repo=config.hub_repo,
            hub_filename=config.hub_filename,
            use_mock=use_mock_classifier
        )
        classifier.warmup(config.sketch.input_size)
        self.model_label = classifier.backend.name

        self.camera = Camera(
            camera_id=config.camera_id,
            width=config.width,
            height=config.height,
            fps=config.fps
        )
        self.hand_tracker = HandTracker()
        self.pipeline = HandPipeline(config.tracking)

        self.canvas = Canvas(width=config.width, height=config.height)
        self.processor = SketchProcessor(config.sketch)

        self.engine = RoundEngine(
            classifier,
            processor=self.processor,
            config=config.game,
            on_correct=self.canvas.clear
        )
        self.scheduler = ClassificationScheduler(
            self.engine,
            snapshot=self.canvas.snapshot,
            delay=config.game.debounce_delay
        )
        self.surface = DrawingSurface(
            self.canvas,
            on_change=self.scheduler.request,
            guess_interval=config.game.guess_interval,
            hand_drawing=config.hand_drawing
        )

        self.loop = FrameLoop(self._step, interval=1.0 / config.fps, name="frame-loop")

        self._last_result: Optional[FrameResult] = None
        self._last_frame_index = 0
        self._status = ""
        self._save_dir = Path("output")

    # Input

    def _on_mouse(self, event, x, y, flags, param):
        point = (float(x), float(y))
        if event == cv2.EVENT_LBUTTONDOWN:
            self.surface.pointer_down(point)
        elif event == cv2.EVENT_RBUTTONDOWN:
            self.surface.pointer_down(point, erase=True)
        elif event == cv2.EVENT_MOUSEMOVE:
            self.surface.pointer_move(point)
        elif event == cv2.EVENT_LBUTTONUP:
            self.surface.pointer_up()
        elif event == cv2.EVENT_RBUTTONUP:
            self.surface.pointer_up(erase=True)

    def _handle_keyboard(self, key: int) -> bool:
        """
        Handle keyboard input.

        Returns:
            False if should quit, True otherwise
        """
        if key == ord('q') or key == 27:  # Q or Escape
            return False

        elif key == ord('c'):
            self.surface.clear()
            self.scheduler.request()
            self._status = "Canvas cleared"

        elif key == ord('n'):
            self.scheduler.cancel()
            self.surface.clear()
            self.engine.reset()
            self._status = "New round"

        elif key == ord('h'):
            self.surface.hand_drawing = not self.surface.hand_drawing
            self._status = f"Hand drawing {'on' if self.surface.hand_drawing else 'off'}"

        elif key == ord('m'):
            self._save_model_view()

        return True

    def _save_model_view(self):
        """Save what the classifier currently sees."""
        sketch = self.processor.preprocess(self.canvas.snapshot())
        self._save_dir.mkdir(exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filename = self._save_dir / f"model_view_{timestamp}.png"
        self.processor.to_image(sketch).save(filename)
        self._status = f"Saved {filename.name}"
        logger.info("Saved model view: %s", filename)

    # Frame loop

    def _step(self):
        captured = self.camera.read()
        if captured is None:
            self._show(self._waiting_screen())
            return

        # The pipeline counts frames, so each capture is processed once
        if captured.index != self._last_frame_index:
            self._last_frame_index = captured.index
            self._last_result = self._track(captured)
            self.surface.update_hand(self._last_result.published, self._last_result.landmarks)

        result = self._last_result
        display = self.canvas.overlay_on_frame(captured.image)
        if result is not None and result.landmarks is not None:
            draw_landmarks(
                display, result.landmarks,
                highlight_index=result.gesture == Gesture.POINTER_UP
            )
        self._show(self._draw_ui(display))

    def _track(self, captured: CapturedFrame) -> FrameResult:
        """
        Detect and stabilize the hand in one capture.

        A failed detection is logged, recorded as the loop error and treated
        as a frame without a hand.
        """
        width, height = captured.size
        if (width, height) != (self.canvas.width, self.canvas.height):
            self.canvas.resize(width, height)

        try:
            landmarks = self.hand_tracker.detect(captured.image, captured.timestamp_ms)
        except Exception as e:
            logger.exception("Hand detection failed")
            self.loop.error = str(e) or e.__class__.__name__
            landmarks = None

        return self.pipeline.process(landmarks, width, height)

    def _show(self, frame: np.ndarray):
        cv2.imshow(WINDOW_NAME, frame)
        key = cv2.waitKey(1) & 0xFF
        if not self._handle_keyboard(key):
            self.loop.cancel()

    def _waiting_screen(self) -> np.ndarray:
        frame = np.full((self.config.height, self.config.width, 3), self.UI_BG_COLOR, dtype=np.uint8)
        if self.camera.error:
            self._put(frame, self.camera.error, (16, self.config.height // 2), self.UI_ERROR_COLOR, 0.6, 2)
        else:
            self._put(frame, "Waiting for camera...", (16, self.config.height // 2), self.UI_MUTED_COLOR, 0.6, 2)
        return frame

    def _put(self, frame, text, pos, color, scale=0.5, thickness=1):
        cv2.putText(frame, text, pos, cv2.FONT_HERSHEY_SIMPLEX, scale, color, thickness)

    def _draw_ui(self, frame: np.ndarray) -> np.ndarray:
        """Draw status panels on the frame."""
        h, w = frame.shape[:2]
        published = self.pipeline.published

        # Status panel (top left)
        cv2.rectangle(frame, (8, 8), (260, 160), self.UI_BG_COLOR, -1)

        hand_text = "DETECTED" if published.has_landmarks else "NOT DETECTED"
        hand_color = self.UI_SUCCESS_COLOR if published.has_landmarks else self.UI_ERROR_COLOR
        self._put(frame, "HAND:", (16, 28), self.UI_TEXT_COLOR)
        self._put(frame, hand_text, (70, 28), hand_color)

        mode_color = self.UI_SUCCESS_COLOR if published.gesture == Gesture.POINTER_UP else self.UI_TEXT_COLOR
        self._put(frame, f"MODE: {published.gesture.value.upper()}", (16, 50), mode_color)

        guess = self.engine.current_guess
        placeholder = guess == self.config.game.placeholder
        guess_color = self.UI_MUTED_COLOR if placeholder else self.UI_SUCCESS_COLOR
        self._put(frame, f"Draw: {self.engine.target_word}", (16, 74), self.UI_ACCENT_COLOR, 0.6, 2)
        self._put(frame, f"Score: {self.engine.score}", (16, 98), self.UI_TEXT_COLOR, 0.6, 2)
        # Hershey fonts are ASCII only
        shown = "..." if placeholder else guess
        self._put(frame, f"AI GUESSES: {shown}", (16, 122), guess_color, 0.55, 2)
        self._put(frame, f"MODEL: {self.model_label}", (16, 146), self.UI_MUTED_COLOR, 0.4)

        if self.engine.correct_guess:
            self._put(frame, "Correct!", (w // 2 - 70, 60), self.UI_SUCCESS_COLOR, 1.2, 3)

        # Gesture legend (top right)
        legend = [
            f"Left click / {GESTURE_INFO[Gesture.POINTER_UP]}",
            "Right click - erase",
            GESTURE_INFO[Gesture.IDLE],
            "[C] Clear [N] New round",
            "[H] Hand drawing [M] Model view [Q] Quit",
        ]
        y_pos = 24
        for line in legend:
            self._put(frame, line, (w - 300, y_pos), self.UI_MUTED_COLOR, 0.4)
            y_pos += 16

        # Errors and status (bottom)
        if self.camera.error:
            self._put(frame, self.camera.error, (16, h - 64), self.UI_ERROR_COLOR, 0.55, 2)
        if self.loop.error:
            self._put(frame, "Hand tracking failed. Check the camera.", (16, h - 40),
                      self.UI_ERROR_COLOR, 0.55, 2)
        if self._status:
            self._put(frame, self._status, (16, h - 16), self.UI_ACCENT_COLOR)

        return frame

    def run(self):
        """Run the main application loop."""
        print("\n" + "=" * 60)
        print("  Draw vs AI - draw the word, let the AI guess it")
        print("=" * 60)
        print("  Index finger up / left mouse  -> Draw")
        print("  Right mouse                   -> Erase")
        print("  [C] Clear | [N] New round | [H] Toggle hand drawing")
        print("  [M] Save model view | [Q] Quit")
        print("=" * 60 + "\n")

        if not self.camera.start():
            logger.error("Failed to start camera")
            return

        cv2.namedWindow(WINDOW_NAME, cv2.WINDOW_AUTOSIZE)
        cv2.setMouseCallback(WINDOW_NAME, self._on_mouse)

        try:
            self.loop.run()
        finally:
            self.loop.cancel()
            self.scheduler.close()
            self.engine.close()
            self.camera.stop()
            self.hand_tracker.release()
            self.engine.classifier.close()
            cv2.destroyAllWindows()
            logger.info("Application closed")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Draw vs AI - draw with your finger, the AI guesses")
    parser.add_argument('--camera', type=int, help='Camera device index')
    parser.add_argument('--model', type=Path, help='ONNX sketch classifier')
    parser.add_argument('--labels', type=Path, help='JSON list of category names')
    parser.add_argument('--hub-repo', help='Hugging Face Hub repo to fetch the model from')
    parser.add_argument('--mock', action='store_true', help='Use mock classifier (no model needed)')
    parser.add_argument('--no-hand-drawing', action='store_true', help='Draw with the mouse only')
    parser.add_argument('--log-level', help='Logging level (DEBUG, INFO, ...)')
    return parser


def main(argv=None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    config = AppConfig.from_env()

    overrides = {}
    if args.camera is not None:
        overrides['camera_id'] = args.camera
    if args.model is not None:
        overrides['model_path'] = args.model
    if args.labels is not None:
        overrides['labels_path'] = args.labels
    if args.hub_repo:
        overrides['hub_repo'] = args.hub_repo
    if args.no_hand_drawing:
        overrides['hand_drawing'] = False
    if args.log_level:
        overrides['log_level'] = args.log_level.upper()
    config = replace(config, **overrides)

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="[%(levelname)s] %(message)s"
    )

    try:
        app = DrawVsAIApp(config, use_mock_classifier=args.mock)
    except ModelLoadError as e:
        logger.error("%s", e)
        logger.error("Models are required; fix the error above and restart.")
        return 1

    app.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
