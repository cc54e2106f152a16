"""Starting values for the Grassmann optimization.

Candidate bases are built from ``u`` columns of an orthogonal matrix ``V``
(eigenvectors of a covariance-type matrix), so every candidate is already
semi-orthogonal. When ``C(r, u)`` is small every subset is scored; otherwise
a coordinate-exchange search swaps one column at a time.
"""

from __future__ import annotations

import itertools
import logging
from math import comb
from typing import TYPE_CHECKING, Callable

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = ["MAX_EXHAUSTIVE", "best_subset_exhaustive", "best_subset_exchange", "select_initial_basis"]

LOGGER = logging.getLogger(__name__)

# Largest C(r, u) scored exhaustively.
MAX_EXHAUSTIVE: int = 20

_OUTER_PASSES = 3


def best_subset_exhaustive(
    F: Callable[[NDArray[np.float64]], float],
    V: NDArray[np.float64],
    u: int,
) -> tuple[NDArray[np.float64], float]:
    """Score every u-column subset of ``V``; first minimizer wins ties."""
    r = V.shape[1]
    best_cols: tuple[int, ...] | None = None
    best_val = np.inf
    for cols in itertools.combinations(range(r), u):
        val = float(F(V[:, list(cols)]))
        if best_cols is None or val < best_val:
            best_cols, best_val = cols, val
    assert best_cols is not None
    return V[:, list(best_cols)], best_val


def best_subset_exchange(
    F: Callable[[NDArray[np.float64]], float],
    V: NDArray[np.float64],
    u: int,
) -> tuple[NDArray[np.float64], float]:
    """Coordinate-exchange search over u-column subsets of ``V``.

    The working set holds ``u`` active slots plus one buffer slot. Slot 0 is
    the probe: every column not in slots ``1..u-1`` is tried there and the
    best improving column is parked in the buffer. After each sweep the window
    rotates left by one, so the buffer becomes the last active slot. Three
    outer passes of ``u + 3`` sweeps are made.
    """
    r = V.shape[1]
    initset = np.zeros(u + 1, dtype=np.int64)
    initset[:u] = np.arange(u)
    initset[u] = 0
    best_val = float(F(V[:, initset[:u]]))

    for _ in range(_OUTER_PASSES):
        for _sweep in range(u + 3):
            for j in range(r):
                if np.any(initset[1:u] == j):
                    continue
                initset[0] = j
                val = float(F(V[:, initset[:u]]))
                if val < best_val:
                    initset[u] = j
                    best_val = val
            initset[:u] = initset[1 : u + 1].copy()
            initset[u] = initset[0]
    return V[:, initset[:u]], best_val


def select_initial_basis(
    F: Callable[[NDArray[np.float64]], float],
    V: NDArray[np.float64],
    u: int,
) -> NDArray[np.float64]:
    """Pick the starting basis among u-column subsets of ``V``."""
    r = V.shape[1]
    n_subsets = comb(r, u)
    if n_subsets <= MAX_EXHAUSTIVE:
        W, val = best_subset_exhaustive(F, V, u)
        LOGGER.debug("initial basis: exhaustive over %d subsets, F=%.10g", n_subsets, val)
    else:
        W, val = best_subset_exchange(F, V, u)
        LOGGER.debug("initial basis: coordinate exchange (C(%d,%d)=%d), F=%.10g", r, u, n_subsets, val)
    return W
