import math


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(value, high))


def score_of(is_correct: bool, elapsed_ms: float, answer_window_ms: float, max_points: int) -> int:
    """Points for one answer.

    Wrong answers score 0. Correct answers lose points linearly over the
    answer window: 0 ms elapsed earns ``max_points``, the end of the window
    (or later) earns 0. Negative elapsed time (clock skew) counts as 0 ms.
    """
    if not is_correct or max_points <= 0:
        return 0
    if answer_window_ms <= 0:
        fraction = 1.0
    else:
        fraction = clamp(float(elapsed_ms) / float(answer_window_ms))
    # Round half up, the way the browser client rounds
    return int(math.floor(max_points * (1.0 - fraction) + 0.5))


def elapsed_since(shown_at: float, now: float) -> float:
    """Milliseconds between two timestamps given in seconds."""
    return (now - shown_at) * 1000.0
