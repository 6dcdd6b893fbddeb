"""
Round Engine Module - Live Guessing and Scoring
===============================================
Runs the sketch classifier on canvas snapshots, smooths its output over
time and decides when the player has won the round.

The classification loop is edge-triggered: every canvas change calls
``ClassificationScheduler.request()``, which debounces bursts of changes
and never runs two classifications at once.
"""

import logging
import random
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import numpy as np

from .config import GameConfig
from .sketch_classifier import SketchClassifier
from .sketch_processor import SketchProcessor


logger = logging.getLogger(__name__)

TimerFactory = Callable[[float, Callable[[], None]], threading.Timer]


def normalize_label(label: Optional[str]) -> str:
    """Case-fold and trim a label for comparison."""
    return (label or "").casefold().strip()


@dataclass
class RoundState:
    """State of the live round."""
    target_word: str = ""
    score: int = 0
    correct_streak: int = 0
    has_scored_this_round: bool = False
    ema_probabilities: Optional[np.ndarray] = None
    round_id: int = 0


@dataclass
class Guess:
    """
    Result of one classification tick.

    Attributes:
        label: Guessed category, or the placeholder
        probability: Smoothed probability of the guess
        margin: Smoothed probability gap to the runner-up
        ink_ratio: Ink fraction of the model input
        streak: Correctness streak after this tick
        scored: Whether this tick won the round
        top3: Raw (label, probability) pairs of this tick
    """
    label: str
    probability: float = 0.0
    margin: float = 0.0
    ink_ratio: float = 0.0
    streak: int = 0
    scored: bool = False
    top3: List = field(default_factory=list)


class RoundEngine:
    """
    Round state machine.

    A round picks a random target category; each tick classifies the
    canvas and updates the guess and the correctness streak. When the
    streak reaches ``streak_to_score`` the round is won once, the canvas
    is cleared via ``on_correct`` and a new round starts after
    ``restart_delay`` seconds.
    """

    def __init__(
        self,
        classifier: SketchClassifier,
        processor: Optional[SketchProcessor] = None,
        config: GameConfig = GameConfig(),
        on_correct: Optional[Callable[[], None]] = None,
        rng: Optional[random.Random] = None,
        timer_factory: TimerFactory = threading.Timer
    ):
        """
        Args:
            classifier: Loaded sketch classifier
            processor: Sketch preprocessor
            config: Game settings
            on_correct: Called once per won round (clears the canvas)
            rng: Random source for target selection
            timer_factory: Creates the restart timer; must return an object
                with start() and cancel()
        """
        if classifier.num_classes < 2:
            raise ValueError("Need at least two categories")

        self.classifier = classifier
        self.processor = processor or SketchProcessor()
        self.config = config
        self.on_correct = on_correct
        self._rng = rng or random.Random()
        self._timer_factory = timer_factory

        self.state = RoundState()
        self.current_guess = config.placeholder
        self.correct_guess = False

        self._restart_timer: Optional[threading.Timer] = None
        self._lock = threading.RLock()

        self.start_round()

    @property
    def categories(self):
        return self.classifier.categories

    @property
    def target_word(self) -> str:
        return self.state.target_word

    @property
    def score(self) -> int:
        return self.state.score

    def start_round(self) -> str:
        """
        Begin a new round with a random target.

        Returns:
            The new target word
        """
        with self._lock:
            self._cancel_restart()
            state = self.state
            state.round_id += 1
            state.target_word = self._rng.choice(self.categories)
            state.correct_streak = 0
            state.has_scored_this_round = False
            state.ema_probabilities = None
            self.correct_guess = False
            self.current_guess = self.config.placeholder
            logger.info("Round %d: draw '%s'", state.round_id, state.target_word)
            return state.target_word

    def reset(self) -> str:
        """Force a new round, dropping any pending restart."""
        return self.start_round()

    def tick(self, raster: np.ndarray) -> Guess:
        """
        Classify the canvas and update the round.

        Args:
            raster: RGBA snapshot of the drawing canvas

        Returns:
            Guess for this tick
        """
        with self._lock:
            try:
                return self._tick(raster)
            except Exception:
                logger.exception("Prediction failed")
                self.current_guess = self.config.placeholder
                return Guess(label=self.config.placeholder, streak=self.state.correct_streak)

    def _tick(self, raster: np.ndarray) -> Guess:
        state = self.state
        placeholder = self.config.placeholder

        sketch = self.processor.preprocess(raster)
        if sketch.ink_ratio < self.config.min_ink_ratio:
            self.current_guess = placeholder
            return Guess(label=placeholder, ink_ratio=sketch.ink_ratio, streak=state.correct_streak)

        probs = self.classifier.predict(sketch.tensor)

        ema = state.ema_probabilities
        if ema is None or ema.shape != probs.shape:
            ema = probs.astype(np.float32).copy()
        else:
            factor = self.config.ema_factor
            ema = factor * ema + (1.0 - factor) * probs
        state.ema_probabilities = ema

        order = np.argsort(ema)[::-1]
        best, second = int(order[0]), int(order[1])
        label = self.categories[best]
        probability = float(ema[best])
        margin = probability - float(ema[second])

        raw_order = np.argsort(probs)[::-1][:3]
        top3 = [(self.categories[i], float(probs[i])) for i in raw_order]

        self.current_guess = label

        if normalize_label(label) == normalize_label(state.target_word):
            state.correct_streak += 1
        else:
            state.correct_streak = 0

        guess = Guess(
            label=label,
            probability=probability,
            margin=margin,
            ink_ratio=sketch.ink_ratio,
            streak=state.correct_streak,
            top3=top3
        )

        logger.debug(
            "Prediction: top=%s prob=%.3f margin=%.3f ink=%.4f raw=%s streak=%d",
            label, probability, margin, sketch.ink_ratio,
            ", ".join(f"{l}:{p:.2f}" for l, p in top3), state.correct_streak
        )

        if not state.has_scored_this_round and state.correct_streak >= self.config.streak_to_score:
            self._win_round()
            guess.scored = True

        return guess

    def _win_round(self):
        state = self.state
        state.has_scored_this_round = True
        state.score += 1
        self.correct_guess = True
        logger.info("Correct! '%s' guessed, score %d", state.target_word, state.score)

        if self.on_correct is not None:
            self.on_correct()

        self._schedule_restart(state.round_id)

    def _schedule_restart(self, round_id: int):
        self._cancel_restart()

        def restart():
            with self._lock:
                # A forced reset may already have moved on
                if self.state.round_id != round_id:
                    return
                self._restart_timer = None
                self.start_round()

        timer = self._timer_factory(self.config.restart_delay, restart)
        timer.daemon = True
        self._restart_timer = timer
        timer.start()

    def _cancel_restart(self):
        if self._restart_timer is not None:
            self._restart_timer.cancel()
            self._restart_timer = None

    @property
    def restart_pending(self) -> bool:
        return self._restart_timer is not None

    def close(self):
        with self._lock:
            self._cancel_restart()


class ClassificationScheduler:
    """
    Debounced, non-overlapping trigger for ``RoundEngine.tick``.

    Each request replaces the pending one and waits for a quiet period.
    When the timer fires while a classification is still running, the
    attempt is dropped; the next canvas change will schedule another.
    """

    def __init__(
        self,
        engine: RoundEngine,
        snapshot: Callable[[], np.ndarray],
        delay: float = 0.25,
        timer_factory: TimerFactory = threading.Timer,
        on_result: Optional[Callable[[Guess], None]] = None
    ):
        """
        Args:
            engine: Round engine to tick
            snapshot: Returns a copy of the canvas raster
            delay: Quiet period in seconds
            timer_factory: Creates the debounce timer
            on_result: Called with every Guess
        """
        self.engine = engine
        self.snapshot = snapshot
        self.delay = delay
        self.on_result = on_result
        self._timer_factory = timer_factory

        self._lock = threading.Lock()
        self._pending: Optional[threading.Timer] = None
        self._busy = False
        self._closed = False

        self.ticks = 0
        self.dropped = 0

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def request(self):
        """Schedule a classification after the quiet period."""
        with self._lock:
            if self._closed:
                return
            if self._pending is not None:
                self._pending.cancel()
            timer = self._timer_factory(self.delay, lambda: self._fire(timer))
            timer.daemon = True
            self._pending = timer
        timer.start()

    def _fire(self, timer):
        with self._lock:
            # A newer request may already own the pending slot
            if self._pending is timer:
                self._pending = None
            if self._closed:
                return
            if self._busy:
                self.dropped += 1
                logger.debug("Classification in flight, dropping request")
                return
            self._busy = True

        try:
            guess = self.engine.tick(self.snapshot())
            self.ticks += 1
            if guess.scored:
                # The canvas was just cleared; stale requests are pointless
                self.cancel()
            if self.on_result is not None:
                self.on_result(guess)
        finally:
            with self._lock:
                self._busy = False

    def cancel(self):
        """Drop the pending request, if any."""
        with self._lock:
            if self._pending is not None:
                self._pending.cancel()
                self._pending = None

    def close(self):
        with self._lock:
            self._closed = True
        self.cancel()
