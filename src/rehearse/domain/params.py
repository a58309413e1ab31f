"""
ParameterSet: the per-user FSRS configuration.

Immutable. Replaced wholesale by the optimizer, never mutated in place.
The formula set is FSRS-4.5 (17 weights, w0..w16).
"""

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .constants import (
    DEFAULT_DESIRED_RETENTION,
    DEFAULT_EASY_INTERVAL_DAYS,
    DEFAULT_GRADUATING_INTERVAL_DAYS,
    DEFAULT_LAPSE_MULTIPLIER,
    DEFAULT_LEARNING_STEPS,
    DEFAULT_MAX_STABILITY,
    DEFAULT_MAXIMUM_INTERVAL_DAYS,
    DEFAULT_MIN_STABILITY,
    DEFAULT_MINIMUM_INTERVAL_DAYS,
    DEFAULT_RELEARNING_STEPS,
    DEFAULT_WEIGHTS,
    DIFFICULTY_CEILING,
    DIFFICULTY_FLOOR,
    FSRS_WEIGHT_COUNT,
)
from .errors import InvariantViolation

# Loose sanity range for any single weight
WEIGHT_SANITY_RANGE = (-10.0, 100.0)


class ParameterSet(BaseModel):
    """
    Weights plus scheduling bounds consumed by the memory model.

    Attributes:
        weights: w0..w16. w0-w3 initial stability per rating, w4-w5 initial
            difficulty, w6-w7 difficulty update and mean reversion, w8-w10
            recall stability, w11-w14 forget stability, w15 hard penalty,
            w16 easy bonus.
        stability_bounds: (min, max) stability in days.
        difficulty_bounds: (min, max) difficulty, inside [1, 10].
        learning_steps / relearning_steps: minute offsets.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    weights: tuple[float, ...] = DEFAULT_WEIGHTS
    stability_bounds: tuple[float, float] = (DEFAULT_MIN_STABILITY, DEFAULT_MAX_STABILITY)
    difficulty_bounds: tuple[float, float] = (DIFFICULTY_FLOOR, DIFFICULTY_CEILING)

    learning_steps: tuple[float, ...] = DEFAULT_LEARNING_STEPS
    relearning_steps: tuple[float, ...] = DEFAULT_RELEARNING_STEPS
    graduating_interval_days: int = Field(default=DEFAULT_GRADUATING_INTERVAL_DAYS, ge=1)
    easy_interval_days: int = Field(default=DEFAULT_EASY_INTERVAL_DAYS, ge=1)
    minimum_interval_days: int = Field(default=DEFAULT_MINIMUM_INTERVAL_DAYS, ge=1)
    maximum_interval_days: int = Field(default=DEFAULT_MAXIMUM_INTERVAL_DAYS, ge=1)

    desired_retention: float = Field(default=DEFAULT_DESIRED_RETENTION, gt=0.0, le=1.0)
    lapse_multiplier: float = Field(default=DEFAULT_LAPSE_MULTIPLIER, gt=0.0, le=1.0)

    @field_validator("weights", mode="before")
    @classmethod
    def coerce_weights(cls, v: Any) -> Any:
        # Accept the {"w0": ..., "w16": ...} mapping used by stored rows
        if isinstance(v, dict):
            try:
                return tuple(float(v[f"w{i}"]) for i in range(FSRS_WEIGHT_COUNT))
            except KeyError as e:
                raise ValueError(f"missing weight {e.args[0]}") from None
        return v

    @field_validator("weights")
    @classmethod
    def check_weights(cls, v: tuple[float, ...]) -> tuple[float, ...]:
        if len(v) != FSRS_WEIGHT_COUNT:
            raise ValueError(f"FSRS-4.5 requires {FSRS_WEIGHT_COUNT} weights, got {len(v)}")
        lo, hi = WEIGHT_SANITY_RANGE
        for i, w in enumerate(v):
            if not math.isfinite(w):
                raise ValueError(f"w{i} is not finite: {w}")
            if not lo <= w <= hi:
                raise ValueError(f"w{i} out of range [{lo}, {hi}]: {w}")
        return v

    @field_validator("learning_steps", "relearning_steps")
    @classmethod
    def check_steps(cls, v: tuple[float, ...]) -> tuple[float, ...]:
        if not v:
            raise ValueError("steps must be a non-empty sequence of minutes")
        if any(step <= 0 for step in v):
            raise ValueError("steps must be positive minute offsets")
        return v

    @model_validator(mode="after")
    def check_bounds(self) -> "ParameterSet":
        # Raised directly (not as ValueError) so bound failures surface as
        # InvariantViolation instead of a pydantic ValidationError.
        s_min, s_max = self.stability_bounds
        if not 0 <= s_min < s_max:
            raise InvariantViolation(f"Stability bounds must satisfy 0 <= min < max, got {self.stability_bounds}")

        d_min, d_max = self.difficulty_bounds
        if not DIFFICULTY_FLOOR <= d_min < d_max <= DIFFICULTY_CEILING:
            raise InvariantViolation(
                f"Difficulty bounds must satisfy {DIFFICULTY_FLOOR} <= min < max <= {DIFFICULTY_CEILING}, "
                f"got {self.difficulty_bounds}"
            )

        if self.minimum_interval_days > self.maximum_interval_days:
            raise InvariantViolation(
                f"minimum_interval_days ({self.minimum_interval_days}) exceeds "
                f"maximum_interval_days ({self.maximum_interval_days})"
            )

        for i in range(4):
            if self.weights[i] <= 0:
                raise InvariantViolation(f"Initial stability weight w{i} must be positive, got {self.weights[i]}")

        if not 0 <= self.weights[7] <= 1:
            raise InvariantViolation(f"Mean reversion weight w7 must lie in [0, 1], got {self.weights[7]}")

        return self

    @classmethod
    def default(cls) -> "ParameterSet":
        return cls()

    @property
    def w(self) -> tuple[float, ...]:
        return self.weights

    @property
    def min_stability(self) -> float:
        return self.stability_bounds[0]

    @property
    def max_stability(self) -> float:
        return self.stability_bounds[1]

    @property
    def min_difficulty(self) -> float:
        return self.difficulty_bounds[0]

    @property
    def max_difficulty(self) -> float:
        return self.difficulty_bounds[1]

    def with_weights(self, weights: list[float] | tuple[float, ...]) -> "ParameterSet":
        """Return a fully re-validated copy carrying new weights."""
        data = self.model_dump()
        data["weights"] = tuple(weights)
        return ParameterSet(**data)
