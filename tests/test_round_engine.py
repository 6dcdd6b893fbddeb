import cv2
import numpy as np
import pytest

from drawvsai.canvas import Canvas
from drawvsai.config import GameConfig
from drawvsai.round_engine import RoundEngine, normalize_label
from tests.conftest import ScriptedChoice, ScriptedClassifier, vector


@pytest.fixture
def drawing():
    raster = np.zeros((200, 200, 4), dtype=np.uint8)
    cv2.circle(raster, (100, 100), 60, (0, 0, 0, 255), 8)
    return raster


def make_engine(outputs, timers, target="star", on_correct=None, **game):
    return RoundEngine(
        ScriptedClassifier(outputs),
        config=GameConfig(**game),
        on_correct=on_correct,
        rng=ScriptedChoice(target),
        timer_factory=timers
    )


def test_normalize_label():
    assert normalize_label("  Ice Cream ") == "ice cream"
    assert normalize_label(None) == ""


def test_new_round_state(timers):
    engine = make_engine([], timers)

    assert engine.target_word == "star"
    assert engine.score == 0
    assert engine.current_guess == "…"
    assert engine.state.round_id == 1
    assert not engine.correct_guess


def test_needs_two_categories(timers):
    with pytest.raises(ValueError):
        RoundEngine(ScriptedClassifier(categories=("only",)), timer_factory=timers)


def test_scores_once_when_guess_becomes_target(drawing, timers):
    wrong = [0.4, 0.25, 0.35]
    target = [0.005, 0.005, 0.99]
    engine = make_engine([wrong, wrong, target, target, target], timers)

    guesses = [engine.tick(drawing) for _ in range(3)]

    assert [g.label for g in guesses] == ["cat", "cat", "star"]
    assert [g.scored for g in guesses] == [False, False, True]
    assert engine.score == 1
    assert engine.state.has_scored_this_round

    # Still correct, but the round was already won
    engine.tick(drawing)
    engine.tick(drawing)
    assert engine.score == 1


def test_end_to_end_win_clears_and_restarts(timers):
    canvas = Canvas(200, 200)
    canvas.draw_line((40, 40), (160, 160))
    canvas.draw_line((40, 160), (160, 40))

    clears = []

    def on_correct():
        clears.append(True)
        canvas.clear()

    engine = RoundEngine(
        ScriptedClassifier([vector("star", 0.9)]),
        on_correct=on_correct,
        rng=ScriptedChoice("star", "cat"),
        timer_factory=timers
    )

    guess = engine.tick(canvas.snapshot())

    assert guess.label == "star"
    assert guess.scored
    assert engine.score == 1
    assert engine.correct_guess
    assert clears == [True]
    assert not canvas.has_content()

    restart = timers.last
    assert restart.delay == pytest.approx(0.8)
    assert restart.daemon
    assert engine.restart_pending

    restart.fire()

    assert engine.state.round_id == 2
    assert engine.target_word == "cat"
    assert engine.state.correct_streak == 0
    assert not engine.state.has_scored_this_round
    assert engine.state.ema_probabilities is None
    assert engine.current_guess == "…"
    assert not engine.correct_guess
    assert not engine.restart_pending
    assert engine.score == 1


def test_forced_reset_cancels_restart(drawing, timers):
    engine = make_engine([vector("star")], timers)
    engine.tick(drawing)
    restart = timers.last

    engine.reset()

    assert restart.cancelled
    assert engine.state.round_id == 2
    # Even if the old timer callback still runs, it must not start another round
    restart.fn()
    assert engine.state.round_id == 2


def test_label_comparison_ignores_case_and_spaces(drawing, timers):
    engine = RoundEngine(
        ScriptedClassifier([vector("star")], categories=("Cat", "Dog", "Star ")),
        rng=ScriptedChoice("star"),
        timer_factory=timers
    )
    assert engine.tick(drawing).scored


def test_ema_seeded_then_blended(drawing, timers):
    first = [0.6, 0.3, 0.1]
    second = [0.1, 0.1, 0.8]
    engine = make_engine([first, second], timers, target="dog")

    engine.tick(drawing)
    np.testing.assert_allclose(engine.state.ema_probabilities, first, atol=1e-6)

    guess = engine.tick(drawing)
    expected = 0.8 * np.array(first) + 0.2 * np.array(second)
    np.testing.assert_allclose(engine.state.ema_probabilities, expected, atol=1e-6)
    assert guess.label == "cat"
    assert guess.probability == pytest.approx(expected[0], abs=1e-6)
    assert guess.margin == pytest.approx(expected[0] - expected[1], abs=1e-6)
    assert guess.top3[0][0] == "star"


def test_streak_requirement(drawing, timers):
    engine = make_engine([vector("star")] * 3, timers, streak_to_score=2)

    assert not engine.tick(drawing).scored
    assert engine.tick(drawing).scored
    assert engine.score == 1


def test_wrong_guess_breaks_streak(drawing, timers):
    engine = make_engine(
        [vector("star", 0.99), vector("cat", 0.99), vector("cat", 0.99)],
        timers, streak_to_score=2, ema_factor=0.0
    )
    engine.tick(drawing)
    assert engine.state.correct_streak == 1
    engine.tick(drawing)
    assert engine.state.correct_streak == 0


def test_little_ink_shows_placeholder(timers):
    engine = make_engine([vector("star")], timers)
    raster = np.zeros((200, 200, 4), dtype=np.uint8)

    guess = engine.tick(raster)

    assert guess.label == "…"
    assert engine.current_guess == "…"
    assert engine.classifier.calls == 0


def test_classifier_failure_shows_placeholder(drawing, timers):
    engine = make_engine([RuntimeError("boom"), vector("cat")], timers)

    guess = engine.tick(drawing)

    assert guess.label == "…"
    assert engine.current_guess == "…"
    assert engine.target_word == "star"
    assert engine.score == 0

    assert engine.tick(drawing).label == "cat"


def test_close_cancels_restart(drawing, timers):
    engine = make_engine([vector("star")], timers)
    engine.tick(drawing)
    engine.close()
    assert timers.last.cancelled
    assert not engine.restart_pending
