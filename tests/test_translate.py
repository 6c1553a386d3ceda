from strokelink.bridge import ControlTranslator
from strokelink.bridge.translate import (
    FINAL_DURATION_MS,
    MAX_DURATION_MS,
    MIN_DURATION_MS,
)


def test_first_move_uses_minimum_duration():
    translator = ControlTranslator()

    move = translator.translate(0.9, 0.1)

    assert move.position == 0.9
    assert move.duration_ms == MIN_DURATION_MS
    assert translator.last_position == 0.9


def test_duration_follows_displacement_and_speed():
    translator = ControlTranslator()
    translator.translate(0.5, 0.5)

    # 0.25 units at 0.5 * 5 units/s takes 100 ms.
    assert translator.translate(0.75, 0.5).duration_ms == 100


def test_duration_is_bounded():
    translator = ControlTranslator()
    translator.translate(0.0, 1.0)

    assert translator.translate(1.0, 0.05).duration_ms == MAX_DURATION_MS
    assert translator.translate(0.95, 1.0).duration_ms == MIN_DURATION_MS


def test_zero_speed_is_floored():
    slow = ControlTranslator()
    slow.translate(0.5, 0.0)
    floored = ControlTranslator()
    floored.translate(0.5, 0.05)

    assert slow.translate(0.52, 0.0) == floored.translate(0.52, 0.05)


def test_tiny_displacement_uses_minimum_duration():
    translator = ControlTranslator()
    translator.translate(0.5, 0.2)

    assert translator.translate(0.5005, 0.05).duration_ms == MIN_DURATION_MS


def test_final_frame_uses_fixed_duration():
    translator = ControlTranslator()
    translator.translate(0.2, 0.5)

    assert translator.translate(0.21, 0.05, is_final=True).duration_ms == FINAL_DURATION_MS


def test_position_is_clamped_and_reset_forgets_history():
    translator = ControlTranslator()

    assert translator.translate(1.4, 0.5).position == 1.0

    translator.reset()
    assert translator.last_position is None
    assert translator.translate(0.0, 0.05).duration_ms == MIN_DURATION_MS
