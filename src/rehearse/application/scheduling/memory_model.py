"""
FSRS-4.5 memory model.

Pure, stateless functions with no I/O. Inputs and outputs are plain floats
plus the rating ordinal (0=Again .. 3=Easy).

Forgetting curve:  R(t, S) = (1 + F * t / S) ^ C,  F = 19/81, C = -0.5
Interval:          I(R_d)  = S / F * (R_d ^ (1 / C) - 1)
"""

import math

from rehearse.domain.constants import FSRS_DECAY, FSRS_FACTOR
from rehearse.domain.errors import InvariantViolation
from rehearse.domain.models import Rating
from rehearse.domain.params import ParameterSet


def _grade(rating: Rating | int) -> int:
    """Map the 0-3 ordinal onto the 1-4 grade used by the FSRS formulas."""
    return int(Rating.parse(rating)) + 1


def _clamp(value: float, lo: float, hi: float) -> float:
    return min(max(value, lo), hi)


def clamp_stability(stability: float, params: ParameterSet) -> float:
    return _clamp(stability, params.min_stability, params.max_stability)


def clamp_difficulty(difficulty: float, params: ParameterSet) -> float:
    return _clamp(difficulty, params.min_difficulty, params.max_difficulty)


def retrievability(elapsed_days: float, stability: float) -> float:
    """
    Probability of recall after `elapsed_days` for a memory of `stability`.

    Monotonically decreasing in elapsed time, increasing in stability,
    and exactly 1.0 at t = 0.
    """
    if stability <= 0:
        raise InvariantViolation(
            f"retrievability needs a positive stability, got {stability}. "
            "New cards must be initialized first."
        )
    t = max(0.0, elapsed_days)
    return (1 + FSRS_FACTOR * t / stability) ** FSRS_DECAY


def initial_stability(rating: Rating | int, params: ParameterSet) -> float:
    """S0 = w[rating], clamped to the configured stability bounds."""
    return clamp_stability(params.w[_grade(rating) - 1], params)


def _raw_initial_difficulty(grade: int, params: ParameterSet) -> float:
    w = params.w
    return w[4] - (grade - 3) * w[5]


def initial_difficulty(rating: Rating | int, params: ParameterSet) -> float:
    """D0 = w4 - (g - 3) * w5, clamped to the difficulty bounds."""
    return clamp_difficulty(_raw_initial_difficulty(_grade(rating), params), params)


def next_difficulty(difficulty: float, rating: Rating | int, params: ParameterSet) -> float:
    """
    Move difficulty against the rating, then mean-revert toward D0(Easy).

    Again/Hard push difficulty up, Easy pulls it down, Good leaves it mostly
    unchanged apart from the reversion term.
    """
    w = params.w
    g = _grade(rating)
    shifted = difficulty - w[6] * (g - 3)
    reverted = w[7] * _raw_initial_difficulty(4, params) + (1 - w[7]) * shifted
    return clamp_difficulty(reverted, params)


def _recall_stability(stability: float, difficulty: float, r: float, g: int, params: ParameterSet) -> float:
    w = params.w
    hard_penalty = w[15] if g == 2 else 1.0
    easy_bonus = w[16] if g == 4 else 1.0
    growth = (
        math.exp(w[8])
        * (11 - difficulty)
        * stability ** -w[9]
        * (math.exp(w[10] * (1 - r)) - 1)
        * hard_penalty
        * easy_bonus
    )
    return stability * (1 + growth)


def _forget_stability(stability: float, difficulty: float, r: float, params: ParameterSet) -> float:
    w = params.w
    return (
        w[11]
        * difficulty ** -w[12]
        * ((stability + 1) ** w[13] - 1)
        * math.exp(w[14] * (1 - r))
    )


def next_stability(
    stability: float,
    difficulty: float,
    rating: Rating | int,
    elapsed_days: float,
    params: ParameterSet,
) -> float:
    """
    Stability after a review of a card that already has a memory state.

    Successful ratings grow stability according to how much the memory had
    decayed. Again shrinks it: the result is the smaller of the FSRS forget
    stability and `stability * lapse_multiplier`.
    """
    g = _grade(rating)
    s = clamp_stability(stability, params)
    d = clamp_difficulty(difficulty, params)
    r = retrievability(elapsed_days, s)

    if g == 1:
        new_s = min(_forget_stability(s, d, r, params), s * params.lapse_multiplier)
    else:
        new_s = _recall_stability(s, d, r, g, params)

    if not math.isfinite(new_s):
        raise InvariantViolation(f"Non-finite stability computed from S={s}, D={d}, R={r}, rating={g - 1}")
    return clamp_stability(new_s, params)


def interval_days(stability: float, desired_retention: float) -> float:
    """Unrounded, unclamped elapsed time at which R falls to desired_retention."""
    if stability <= 0:
        return 0.0
    return stability / FSRS_FACTOR * (desired_retention ** (1 / FSRS_DECAY) - 1)


def next_interval(
    stability: float,
    params: ParameterSet,
    desired_retention: float | None = None,
) -> int:
    """
    Whole days until the next review.

    Floors the inverse forgetting curve and clamps the result to
    [minimum_interval_days, maximum_interval_days]. Non-decreasing in
    stability, non-increasing in desired retention.
    """
    retention = params.desired_retention if desired_retention is None else desired_retention
    if not 0 < retention <= 1:
        raise InvariantViolation(f"desired_retention must lie in (0, 1], got {retention}")
    if stability <= 0:
        return params.minimum_interval_days

    # absorb float error so I(S) == S at the 0.9 reference retention
    days = math.floor(interval_days(stability, retention) + 1e-9)
    return int(_clamp(days, params.minimum_interval_days, params.maximum_interval_days))
