"""Asymptotic inference for group-mean envelope models.

Parameterization of the unconstrained model (p groups, r responses):

    theta = (mu, beta_1, ..., beta_{p-1}, vech Sigma_1, ..., vech Sigma_p)

with group means ``mu + beta_i`` and ``beta_p = -sum_{i<p} (f_i / f_p) beta_i``
where ``f_i = n_i / n``. :func:`henv_information` returns the Fisher
information of theta per observation. :func:`henv_jacobian` is the derivative
of theta with respect to the heteroscedastic envelope parameters

    phi = (mu, eta_1, ..., eta_{p-1}, vec A, vech Omega_1, ..., vech Omega_p, vech Omega0)

where ``A`` ((r-u) x u) is the local coordinate of the envelope basis
(``dGamma = Gamma0 dA``). The asymptotic covariance of theta under the
envelope model is ``H (H'JH)^{-1} H'``; all covariances are per observation
(divide by n for finite-sample standard errors).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import scipy.linalg as sla

from envreg.core import linalg as la
from envreg.exceptions import NumericalInstability

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = [
    "asymptotic_se",
    "expand_group_covariance",
    "henv_covariance",
    "henv_jacobian",
    "henv_information",
    "henv_param_count",
    "standard_covariance",
]


def henv_param_count(r: int, u: int, p: int) -> int:
    """Number of free parameters of the heteroscedastic envelope model."""
    return int(
        (r - u)
        + u * (r - u + p)
        + p * u * (u + 1) // 2
        + (r - u) * (r - u + 1) // 2,
    )


def henv_information(Sigma: NDArray[np.float64], frac_n: NDArray[np.float64]) -> NDArray[np.float64]:
    """Fisher information of ``theta`` for p groups with covariances ``Sigma[:, :, i]``.

    Mean blocks combine inverse covariances weighted by the group proportions;
    each covariance block is ``0.5 f_i E'(Sigma_i^{-1} kron Sigma_i^{-1})E``.
    Mean and covariance blocks are orthogonal.
    """
    r, _, p = Sigma.shape
    h = r * (r + 1) // 2
    f = np.asarray(frac_n, dtype=np.float64)
    E = la.expansion_matrix(r)
    inv = [la.inv_sym(Sigma[:, :, i]) for i in range(p)]

    J = np.zeros((p * r + p * h, p * r + p * h))
    J[:r, :r] = sum(f[i] * inv[i] for i in range(p))
    for i in range(p - 1):
        bi = slice(r + i * r, r + (i + 1) * r)
        cross = f[i] * (inv[i] - inv[p - 1])
        J[:r, bi] = cross
        J[bi, :r] = cross.T
        for j in range(p - 1):
            bj = slice(r + j * r, r + (j + 1) * r)
            J[bi, bj] = f[i] * f[j] / f[p - 1] * inv[p - 1]
        J[bi, bi] += f[i] * inv[i]
    for i in range(p):
        ci = slice(p * r + i * h, p * r + (i + 1) * h)
        J[ci, ci] = 0.5 * f[i] * E.T @ np.kron(inv[i], inv[i]) @ E
    return J


def henv_jacobian(  # noqa: PLR0913
    Gamma: NDArray[np.float64],
    Gamma0: NDArray[np.float64],
    eta: NDArray[np.float64],
    Omega: NDArray[np.float64],
    Omega0: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Derivative of ``theta`` with respect to the envelope parameters ``phi``.

    Parameters
    ----------
    Gamma, Gamma0 : (r, u), (r, r-u)
        Envelope basis and its orthogonal complement.
    eta : (u, p)
        Coordinates of the group effects, ``beta_i = Gamma eta_i``.
    Omega : (u, u, p)
        Material covariance of each group.
    Omega0 : (r-u, r-u)
        Shared immaterial covariance.
    """
    r, u = Gamma.shape
    p = eta.shape[1]
    h = r * (r + 1) // 2
    hu = u * (u + 1) // 2
    h0 = (r - u) * (r - u + 1) // 2
    ga = u * (r - u)
    C = la.contraction_matrix(r)

    n_rows = p * r + p * h
    n_cols = r + (p - 1) * u + ga + p * hu + h0
    H = np.zeros((n_rows, n_cols))

    col_a = r + (p - 1) * u
    col_omega = col_a + ga
    col_omega0 = col_omega + p * hu

    H[:r, :r] = np.eye(r)
    for i in range(p - 1):
        rows = slice(r + i * r, r + (i + 1) * r)
        H[rows, r + i * u : r + (i + 1) * u] = Gamma
        H[rows, col_a : col_a + ga] = np.kron(eta[:, i].reshape(1, -1), Gamma0)

    K_gamma = C @ np.kron(Gamma, Gamma) @ la.expansion_matrix(u)
    K_gamma0 = C @ np.kron(Gamma0, Gamma0) @ la.expansion_matrix(r - u)
    for i in range(p):
        rows = slice(p * r + i * h, p * r + (i + 1) * h)
        H[rows, col_a : col_a + ga] = 2.0 * C @ (
            np.kron(Gamma @ Omega[:, :, i], Gamma0) - np.kron(Gamma, Gamma0 @ Omega0)
        )
        H[rows, col_omega + i * hu : col_omega + (i + 1) * hu] = K_gamma
        H[rows, col_omega0 : col_omega0 + h0] = K_gamma0
    return H


def henv_covariance(
    H: NDArray[np.float64],
    J: NDArray[np.float64],
    r: int,
    frac_n: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Asymptotic covariance of ``(mu, vec beta)`` under the envelope model.

    Forms ``H (H'JH)^{-1} H'`` with a linear solve and expands the mean
    block with :func:`expand_group_covariance`.
    """
    M = H.T @ J @ H
    M = 0.5 * (M + M.T)
    try:
        X = sla.solve(M, H.T, assume_a="sym")
    except (sla.LinAlgError, ValueError) as e:
        raise NumericalInstability("Reparameterized information matrix is singular.") from e
    if not np.all(np.isfinite(X)):
        raise NumericalInstability("Reparameterized information matrix is singular.")
    V = H @ X
    return expand_group_covariance(0.5 * (V + V.T), r, len(frac_n), frac_n)


def standard_covariance(
    J: NDArray[np.float64],
    r: int,
    frac_n: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Asymptotic covariance of ``(mu, vec beta)`` under the unconstrained model (``J^{-1}``)."""
    return expand_group_covariance(la.inv_sym(J), r, len(frac_n), frac_n)


def expand_group_covariance(
    V: NDArray[np.float64],
    r: int,
    p: int,
    frac_n: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Covariance of ``(mu, beta_1, ..., beta_p)`` from the covariance of theta.

    ``beta_p`` is recovered through ``beta_p = T (beta_1, ..., beta_{p-1})`` with
    ``T = -[f_1/f_p I, ..., f_{p-1}/f_p I]``. Returns an r(p+1) x r(p+1) matrix.
    """
    f = np.asarray(frac_n, dtype=np.float64)
    rp = r * p
    T = -np.kron((f[: p - 1] / f[p - 1]).reshape(1, -1), np.eye(r))
    Vb = V[:rp, :rp]
    out = np.zeros((r * (p + 1), r * (p + 1)))
    out[:rp, :rp] = Vb
    # cov(beta_p, (mu, beta_1..beta_{p-1})) = T cov(beta_{1..p-1}, .)
    cross = T @ Vb[r:rp, :]
    out[rp:, :rp] = cross
    out[:rp, rp:] = cross.T
    out[rp:, rp:] = T @ Vb[r:rp, r:rp] @ T.T
    return 0.5 * (out + out.T)


def asymptotic_se(cov_matrix: NDArray[np.float64], r: int, p: int) -> NDArray[np.float64]:
    """Standard errors of ``beta`` (r x p) from the (mu, vec beta) covariance."""
    d = np.clip(np.diag(cov_matrix)[r:], 0.0, None)
    return np.sqrt(d).reshape((r, p), order="F")
