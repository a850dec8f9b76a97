from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np


@dataclass(frozen=True)
class NoisyValue:
    """Scalar Monte Carlo estimate with its standard error.

    A NaN error is kept as is so that ``is_finite`` can report it.
    """

    val: float
    err: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "val", float(self.val))
        object.__setattr__(self, "err", float(self.err))
        if self.err < 0:
            raise ValueError(f"Standard error must be non-negative, got {self.err}")

    def is_finite(self) -> bool:
        return bool(np.isfinite(self.val) and np.isfinite(self.err))


@dataclass(frozen=True)
class NoisyGradient:
    """Vector estimate with per-component standard errors."""

    val: np.ndarray
    err: np.ndarray

    def __post_init__(self):
        val = np.asarray(self.val, dtype=np.float64).reshape(-1)
        err = np.asarray(self.err, dtype=np.float64).reshape(-1)
        if err.shape != val.shape:
            raise ValueError(
                f"Gradient and error lengths differ: {val.shape[0]} vs {err.shape[0]}")
        if np.any(err < 0):
            raise ValueError("Standard errors must be non-negative")
        object.__setattr__(self, "val", val)
        object.__setattr__(self, "err", err)

    def __len__(self) -> int:
        return self.val.shape[0]

    def is_finite(self) -> bool:
        return bool(np.all(np.isfinite(self.val)) and np.all(np.isfinite(self.err)))

    def is_statistically_zero(self, sigma_level: float = 2.0) -> bool:
        """True when every component is within ``sigma_level`` error bars of zero."""
        return bool(np.all(np.abs(self.val) <= sigma_level * self.err))


class StepOutcome(Enum):
    IMPROVED = "improved"
    INSIGNIFICANT = "insignificant"
    WORSENED = "worsened"


def combined_error(old: NoisyValue, new: NoisyValue) -> float:
    return float(np.hypot(old.err, new.err))


def classify_step(old: NoisyValue, new: NoisyValue, sigma_level: float = 2.0) -> StepOutcome:
    """Compare two noisy evaluations of a quantity being minimised.

    A difference only counts when it exceeds ``sigma_level`` times the
    combined error of both estimates. With zero errors any strict decrease
    is an improvement.
    """
    diff = new.val - old.val
    threshold = sigma_level * combined_error(old, new)
    if diff < -threshold:
        return StepOutcome.IMPROVED
    if diff > threshold:
        return StepOutcome.WORSENED
    return StepOutcome.INSIGNIFICANT


def is_significant_improvement(old: NoisyValue, new: NoisyValue, sigma_level: float = 2.0) -> bool:
    return classify_step(old, new, sigma_level) is StepOutcome.IMPROVED
