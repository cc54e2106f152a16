"""Optimization over the Grassmann manifold of u-dimensional subspaces of R^r.

The envelope objectives depend on a semi-orthogonal basis ``R`` (r x u)
only through span(R). :func:`grassmann_cg` minimizes such an objective with
a Polak-Ribiere conjugate gradient method:

- the Euclidean gradient ``dF(R)`` is projected onto the horizontal space
  ``{D : R'D = 0}``;
- steps are retracted to the manifold with a thin QR factorization;
- the previous search direction is transported by re-projection;
- step lengths come from Armijo backtracking, with a restart along the
  steepest-descent direction whenever the conjugate direction is not a
  descent direction.

Any callable with the signature of :func:`grassmann_cg` can be supplied to
the estimators instead (``EnvelopeOptions.optimizer``).
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

import numpy as np

from envreg.core import linalg as la
from envreg.exceptions import NumericalInstability, OptimizerNonConvergence

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = ["OptimizeResult", "grassmann_cg", "project_tangent", "retract"]

LOGGER = logging.getLogger(__name__)

Objective = Callable[["NDArray[np.float64]"], float]
Gradient = Callable[["NDArray[np.float64]"], "NDArray[np.float64]"]

_ARMIJO_C1 = 1e-4
_MAX_BACKTRACK = 60


@dataclass(frozen=True)
class OptimizeResult:
    """Outcome of a manifold optimization run."""

    fun: float
    x: NDArray[np.float64]
    n_iter: int
    converged: bool
    grad_norm: float


def project_tangent(R: NDArray[np.float64], G: NDArray[np.float64]) -> NDArray[np.float64]:
    """Project ``G`` onto the horizontal space at ``R``: ``(I - RR')G``."""
    return G - R @ (R.T @ G)


def retract(R: NDArray[np.float64], D: NDArray[np.float64], t: float) -> NDArray[np.float64]:
    """QR retraction of the step ``R + tD`` back to a semi-orthogonal basis."""
    return la.orthonormalize(R + t * D)


def _inner(A: NDArray[np.float64], B: NDArray[np.float64]) -> float:
    return float(np.sum(A * B))


def _evaluate(F: Objective, R: NDArray[np.float64]) -> float:
    f = float(F(R))
    if not np.isfinite(f):
        raise NumericalInstability("Objective evaluated to a non-finite value.")
    return f


def grassmann_cg(  # noqa: PLR0913
    F: Objective,
    dF: Gradient,
    init: NDArray[np.float64],
    max_iter: int = 300,
    ftol: float = 1e-10,
    gradtol: float = 1e-7,
    *,
    verbose: bool = False,
) -> OptimizeResult:
    """Minimize ``F`` over the Grassmann manifold starting from ``init``.

    Parameters
    ----------
    F, dF
        Objective and its Euclidean gradient, both evaluated at an r x u
        matrix with orthonormal columns.
    init
        r x u starting basis (orthonormalized internally).
    max_iter
        Hard cap on the number of iterations.
    ftol
        Stop when the decrease of ``F`` in one iteration is below
        ``ftol * max(1, |F|)``.
    gradtol
        Stop when the norm of the projected gradient is below ``gradtol``.
    verbose
        Log progress at INFO instead of DEBUG.

    Returns
    -------
    OptimizeResult
        Best point found. When ``max_iter`` is exhausted, or the line search
        stalls while the gradient still promises a decrease above ``ftol``,
        an :class:`~envreg.exceptions.OptimizerNonConvergence` warning is
        issued and ``converged`` is False.
    """
    level = logging.INFO if verbose else logging.DEBUG
    R = la.orthonormalize(np.asarray(init, dtype=np.float64))
    f = _evaluate(F, R)
    G = project_tangent(R, np.asarray(dF(R), dtype=np.float64))
    gnorm2 = _inner(G, G)
    D = -G
    step = 1.0 / max(1.0, np.sqrt(gnorm2))
    converged = False
    stop_reason = f"max_iter={max_iter} iterations"
    it = 0

    while it < max_iter:
        if np.sqrt(gnorm2) < gradtol:
            converged = True
            break
        it += 1
        slope = _inner(G, D)
        if slope >= 0.0:
            D = -G
            slope = -gnorm2

        t = step
        accepted = False
        for _ in range(_MAX_BACKTRACK):
            R_new = retract(R, D, t)
            f_new = float(F(R_new))
            if np.isfinite(f_new) and f_new <= f + _ARMIJO_C1 * t * slope:
                accepted = True
                break
            t *= 0.5
        if not accepted:
            # stationary only if even the first-order decrease is within ftol
            stalled = np.sqrt(gnorm2) < gradtol or -slope * step <= ftol * max(1.0, abs(f))
            LOGGER.log(level, "iter %d: line search made no progress; stopping at F=%.10g", it, f)
            converged = bool(stalled)
            stop_reason = "the line search made no progress"
            break

        G_new = project_tangent(R_new, np.asarray(dF(R_new), dtype=np.float64))
        decrease = f - f_new
        # Polak-Ribiere+ with projection transport of the old gradient/direction
        G_old_t = project_tangent(R_new, G)
        D_old_t = project_tangent(R_new, D)
        beta = max(0.0, _inner(G_new, G_new - G_old_t) / gnorm2)
        D = -G_new + beta * D_old_t

        R, f, G = R_new, f_new, G_new
        gnorm2 = _inner(G, G)
        step = min(2.0 * t, 1e3)
        LOGGER.log(level, "iter %d: F=%.10g |grad|=%.3e step=%.3e", it, f, np.sqrt(gnorm2), t)

        if decrease <= ftol * max(1.0, abs(f)):
            converged = True
            break

    if not converged and np.sqrt(gnorm2) < gradtol:
        converged = True
    if not converged:
        warnings.warn(
            f"Grassmann optimization stopped after {stop_reason} "
            f"(F={f:.10g}, |grad|={np.sqrt(gnorm2):.3e}); returning the last iterate.",
            OptimizerNonConvergence,
            stacklevel=2,
        )
    return OptimizeResult(
        fun=f,
        x=R,
        n_iter=it,
        converged=converged,
        grad_norm=float(np.sqrt(gnorm2)),
    )
