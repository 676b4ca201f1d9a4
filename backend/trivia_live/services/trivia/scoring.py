"""Point deltas for judged answers.

Pure functions: they never look at the database. Whether a judgment is
applied at all (first judgment wins) is decided by the coordinator.
"""
import math


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def effective_wager(declared_wager, current_score: int) -> int:
    """Bound a declared wager by the score held at the moment of judging.

    Negative declarations become 0 and a wager can never exceed the
    player's bankroll, so the result lies in ``[0, max(current_score, 0)]``.
    """
    score = max(int(current_score or 0), 0)
    return clamp(math.floor(declared_wager or 0), 0, score)


def judge_standard(correct: bool) -> int:
    """+1 for a correct answer, nothing otherwise."""
    return 1 if correct else 0


def judge_final(correct: bool, declared_wager, current_score: int) -> int:
    """Final Jeopardy: win or lose the clamped wager."""
    wager = effective_wager(declared_wager, current_score)
    return wager if correct else -wager


def judge_sudden_death(correct: bool) -> int:
    return judge_standard(correct)
