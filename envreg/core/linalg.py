"""Linear algebra routines for envelope estimation.

This module provides vectorization operators (vec, vech), the commutation,
expansion (duplication) and contraction matrices used to move derivatives
between Kronecker layouts, and symmetric-matrix helpers (inverse, square
roots, log-determinants) built on eigen-decompositions. Explicit general
matrix inversion is avoided; symmetric positive definite systems go through
``scipy.linalg.solve(..., assume_a="pos")``.

All vectorizations are column-major (Fortran order) so that the identity
``vec(A X B) = (B' kron A) vec(X)`` holds for the Kronecker helpers.
"""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING

import numpy as np
import scipy.linalg as sla

from envreg.exceptions import NumericalInstability

if TYPE_CHECKING:
    from numpy.typing import NDArray
else:
    NDArray = np.ndarray  # type: ignore[misc,assignment]

__all__ = [
    "assert_all_finite",
    "commutation_matrix",
    "contraction_matrix",
    "eigh_sym",
    "expansion_matrix",
    "inv_sym",
    "logdet_pd",
    "logdet_pos",
    "matrix_rank",
    "null_basis",
    "orthonormalize",
    "sym_inv_sqrt",
    "sym_sqrt",
    "unvec",
    "vec",
    "vech",
]


def assert_all_finite(*arrays: NDArray[np.float64] | None) -> None:
    """Raise ValueError if any input contains NaN or Inf."""
    for a in arrays:
        if a is None:
            continue
        if not np.all(np.isfinite(np.asarray(a))):
            raise ValueError(
                "Input contains NA/NaN/Inf; please drop/clean rows before fitting.",
            )


# ---------------------------------------------------------------------
# Vectorization operators
# ---------------------------------------------------------------------


def vec(A: NDArray[np.float64]) -> NDArray[np.float64]:
    """Stack the columns of ``A`` into a single vector."""
    return np.asarray(A, dtype=np.float64).reshape(-1, order="F")


def unvec(v: NDArray[np.float64], shape: tuple[int, int]) -> NDArray[np.float64]:
    """Inverse of :func:`vec` for a matrix of the given shape."""
    return np.asarray(v, dtype=np.float64).reshape(shape, order="F")


def vech(A: NDArray[np.float64]) -> NDArray[np.float64]:
    """Half-vectorization: stack the lower triangle of ``A`` column by column."""
    A = np.asarray(A, dtype=np.float64)
    r = A.shape[0]
    rows, cols = np.triu_indices(r)
    # column-major lower triangle == row-major upper triangle of A'
    return A.T[rows, cols]


@lru_cache(maxsize=64)
def _commutation_cached(m: int, n: int) -> NDArray[np.float64]:
    mn = m * n
    K = np.zeros((mn, mn), dtype=np.float64)
    pos = np.arange(mn).reshape((m, n), order="F")
    K[np.arange(mn), pos.T.reshape(-1, order="F")] = 1.0
    K.setflags(write=False)
    return K


def commutation_matrix(m: int, n: int) -> NDArray[np.float64]:
    """Commutation matrix ``K_{m,n}`` with ``K vec(A) = vec(A')`` for ``A`` m x n."""
    return _commutation_cached(int(m), int(n))


@lru_cache(maxsize=64)
def _expansion_cached(r: int) -> NDArray[np.float64]:
    D = np.zeros((r * r, r * (r + 1) // 2), dtype=np.float64)
    col = 0
    for j in range(r):
        for i in range(j, r):
            D[i + j * r, col] = 1.0
            D[j + i * r, col] = 1.0
            col += 1
    D.setflags(write=False)
    return D


def expansion_matrix(r: int) -> NDArray[np.float64]:
    """Expansion (duplication) matrix with ``vec(S) = E vech(S)`` for symmetric S."""
    return _expansion_cached(int(r))


@lru_cache(maxsize=64)
def _contraction_cached(r: int) -> NDArray[np.float64]:
    E = _expansion_cached(r)
    # Moore-Penrose inverse (E'E)^{-1} E'; E'E is diagonal with entries 1 or 2.
    C = E.T / np.sum(E, axis=0)[:, None]
    C.setflags(write=False)
    return C


def contraction_matrix(r: int) -> NDArray[np.float64]:
    """Contraction matrix with ``vech(S) = C vec(S)`` for symmetric S."""
    return _contraction_cached(int(r))


# ---------------------------------------------------------------------
# Bases
# ---------------------------------------------------------------------


def orthonormalize(R: NDArray[np.float64]) -> NDArray[np.float64]:
    """Orthonormal basis of span(R) via thin QR, signs fixed so diag(R) >= 0."""
    R = np.asarray(R, dtype=np.float64)
    if R.shape[1] == 0:
        return R.copy()
    Q, T = sla.qr(R, mode="economic")
    signs = np.sign(np.diag(T))
    signs[signs == 0] = 1.0
    return Q * signs


def null_basis(R: NDArray[np.float64]) -> NDArray[np.float64]:
    """Orthonormal basis of the orthogonal complement of span(R).

    For an r x u matrix with full column rank the result is r x (r - u).
    """
    R = np.asarray(R, dtype=np.float64)
    r, u = R.shape
    if u == 0:
        return np.eye(r)
    if u == r:
        return np.zeros((r, 0))
    return sla.null_space(R.T)


def matrix_rank(A: NDArray[np.float64]) -> int:
    """Numerical rank with the default SVD tolerance."""
    return int(np.linalg.matrix_rank(np.asarray(A, dtype=np.float64)))


# ---------------------------------------------------------------------
# Symmetric matrices
# ---------------------------------------------------------------------


def eigh_sym(S: NDArray[np.float64]) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Eigen-decomposition (ascending eigenvalues) of the symmetric part of ``S``."""
    S = np.asarray(S, dtype=np.float64)
    if S.shape[0] == 0:
        return np.zeros(0), np.zeros((0, 0))
    if not np.all(np.isfinite(S)):
        raise NumericalInstability("Non-finite entries in a covariance matrix.")
    try:
        return sla.eigh(0.5 * (S + S.T))
    except sla.LinAlgError as e:
        raise NumericalInstability("Eigen-decomposition failed.") from e


def inv_sym(S: NDArray[np.float64]) -> NDArray[np.float64]:
    """Inverse of a symmetric positive definite matrix."""
    S = np.asarray(S, dtype=np.float64)
    if S.shape[0] == 0:
        return S.copy()
    try:
        out = sla.solve(S, np.eye(S.shape[0]), assume_a="pos")
    except (sla.LinAlgError, ValueError) as e:
        raise NumericalInstability("Covariance matrix is singular or not positive definite.") from e
    return 0.5 * (out + out.T)


def sym_sqrt(S: NDArray[np.float64]) -> NDArray[np.float64]:
    """Symmetric square root of a positive semi-definite matrix."""
    w, V = eigh_sym(S)
    w = np.clip(w, 0.0, None)
    return (V * np.sqrt(w)) @ V.T


def sym_inv_sqrt(S: NDArray[np.float64]) -> NDArray[np.float64]:
    """Symmetric inverse square root of a positive definite matrix."""
    w, V = eigh_sym(S)
    if np.any(w <= 0.0):
        raise NumericalInstability("Matrix is not positive definite.")
    return (V / np.sqrt(w)) @ V.T


def logdet_pd(S: NDArray[np.float64]) -> float:
    """Log-determinant of a positive definite matrix; raises if it is not."""
    S = np.asarray(S, dtype=np.float64)
    if S.shape[0] == 0:
        return 0.0
    w = eigh_sym(S)[0]
    if np.any(w <= 0.0):
        raise NumericalInstability("Matrix is singular or not positive definite.")
    return float(np.sum(np.log(w)))


def logdet_pos(S: NDArray[np.float64]) -> float:
    """Log of the product of the positive eigenvalues of a symmetric matrix."""
    S = np.asarray(S, dtype=np.float64)
    if S.shape[0] == 0:
        return 0.0
    w = eigh_sym(S)[0]
    return float(np.sum(np.log(w[w > 0.0])))
