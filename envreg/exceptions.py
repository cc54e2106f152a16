"""Exception types raised by envelope estimators.

Precondition failures derive from ``ValueError`` so callers that guard
estimator calls with ``except ValueError`` keep working. Numerical failures
derive from ``RuntimeError``.
"""

from __future__ import annotations

__all__ = [
    "DimensionMismatch",
    "EnvelopeError",
    "InsufficientGroupSize",
    "InvalidDimension",
    "NumericalInstability",
    "OptimizerNonConvergence",
    "RankDeficientInitialization",
]


class EnvelopeError(Exception):
    """Base class for envelope estimation errors."""


class InvalidDimension(EnvelopeError, ValueError):
    """Envelope dimension outside its admissible range."""


class DimensionMismatch(EnvelopeError, ValueError):
    """Row counts of X and Y differ, or an initial basis has the wrong shape."""


class RankDeficientInitialization(EnvelopeError, ValueError):
    """Supplied initial basis does not have full column rank."""


class InsufficientGroupSize(EnvelopeError, ValueError):
    """A group has too few observations to estimate its covariance (n_i <= r)."""


class NumericalInstability(EnvelopeError, RuntimeError):
    """A singular or non-finite quantity was met during evaluation."""


class OptimizerNonConvergence(RuntimeWarning):
    """Manifold optimizer stopped at ``max_iter`` without meeting tolerances."""
