from __future__ import annotations


class ConstructionError(ValueError):
    """Raised when a model or target function is assembled from incompatible parts."""


class NumericalFailure(FloatingPointError):
    """Raised when an evaluation produces NaN/Inf or divides by a node."""
