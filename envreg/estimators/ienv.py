"""Inner envelope (IENV) estimator for multivariate linear regression.

Model: ``Y = alpha + beta X + eps`` with ``eps ~ N(0, Sigma)``, ``X`` (p
continuous predictors) and ``Y`` (r responses, ``p < r``). The inner envelope
is a u-dimensional subspace span(Gamma1) contained in span(beta):

    beta = (Gamma1 eta1', Gamma0 B eta2'),
    Sigma = Gamma1 Omega1 Gamma1' + Gamma0 Omega0 Gamma0',

so part of the coefficient matrix is estimated with the efficiency of a
reduced-rank fit while the immaterial directions only enter through ``B``, a
(p - u)-dimensional subspace of span(Gamma0).
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

from envreg.core import linalg as la
from envreg.core.init_basis import select_initial_basis
from envreg.core.manifold import grassmann_cg
from envreg.core.stats import RegressionStatistics, regression_statistics
from envreg.exceptions import DimensionMismatch, NumericalInstability

from .base import (
    BaseEnvelope,
    EnvelopeOptions,
    EnvelopeResult,
    check_dimension,
    check_initial_basis,
)

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = ["IENV", "IenvObjective", "IenvResult", "get_init_ienv", "ienv"]

LOGGER = logging.getLogger(__name__)

_LOG_2PI = float(np.log(2.0 * np.pi))


def _complement_eigen(
    R0: NDArray[np.float64],
    sigRes: NDArray[np.float64],
    sigFit: NDArray[np.float64],
) -> tuple[NDArray[np.float64], NDArray[np.float64], NDArray[np.float64], NDArray[np.float64]]:
    """Eigen-structure of the fitted covariance relative to the residual one on span(R0).

    Returns ``(lam, V, A, W)`` with ``A = R0' S_res R0``, ``W = A^{-1/2}`` and
    ``(lam, V)`` the eigenpairs of ``W (R0' S_fit R0) W`` sorted by decreasing
    eigenvalue.
    """
    A = R0.T @ sigRes @ R0
    W = la.sym_inv_sqrt(A)
    lam, V = la.eigh_sym(W @ (R0.T @ sigFit @ R0) @ W)
    order = np.argsort(lam)[::-1]
    return lam[order], V[:, order], A, W


class IenvObjective:
    """Profile objective of the inner envelope.

    ``F(R) = log|R' S_res R| + log|R0' S_res R0| + sum_{i=p-u+1}^{r-u} log(1 + lam_i)``

    with ``lam_1 >= lam_2 >= ...`` the eigenvalues of
    ``A^{-1/2} (R0' S_fit R0) A^{-1/2}``, ``A = R0' S_res R0``. The sum runs
    over the eigenvalues left out of the rank ``p - u`` fit in span(R0).
    """

    def __init__(self, stats: RegressionStatistics) -> None:
        self.stats = stats
        self._sigRes_inv = la.inv_sym(stats.sigRes)

    def _window(self, u: int) -> range:
        return range(self.stats.p - u, self.stats.r - u)

    def F(self, R: NDArray[np.float64]) -> float:
        R = np.asarray(R, dtype=np.float64)
        u = R.shape[1]
        R0 = la.null_basis(R)
        sigRes = self.stats.sigRes
        lam, _, A, _ = _complement_eigen(R0, sigRes, self.stats.sigFit)
        val = la.logdet_pd(R.T @ sigRes @ R) + la.logdet_pd(A)
        val += float(np.sum(np.log1p(lam[self._window(u)])))
        return float(val)

    __call__ = F

    def dF(self, R: NDArray[np.float64]) -> NDArray[np.float64]:
        R = np.asarray(R, dtype=np.float64)
        r, u = R.shape
        R0 = la.null_basis(R)
        sigRes, sigFit = self.stats.sigRes, self.stats.sigFit

        SR = sigRes @ R
        TR = self._sigRes_inv @ R
        grad = 2.0 * SR @ la.inv_sym(R.T @ SR) + 2.0 * TR @ la.inv_sym(R.T @ TR)

        lam, V, _, W = _complement_eigen(R0, sigRes, sigFit)
        G0 = np.zeros((r, r - u))
        for i in self._window(u):
            ri = W @ V[:, i]
            G0 += 2.0 * np.outer((sigFit - lam[i] * sigRes) @ R0 @ ri, ri) / (1.0 + lam[i])
        K = la.commutation_matrix(u, r)
        grad += la.unvec(-K @ np.kron(R0, R.T) @ la.vec(G0), (r, u))
        return grad


def get_init_ienv(F: Any, u: int, stats: RegressionStatistics) -> NDArray[np.float64]:
    """Starting basis among eigenvectors of the residual covariance."""
    _, V = la.eigh_sym(stats.sigRes)
    return select_initial_basis(F, V, u)


@dataclass(frozen=True, kw_only=True, eq=False, repr=False)
class IenvResult(EnvelopeResult):
    """Fitted inner envelope model.

    Attributes
    ----------
    alpha : (r,) array
        Intercept.
    beta : (r, p) array
        Regression coefficients.
    Gamma1, Gamma0 : (r, u), (r, r-u) arrays
        Inner envelope basis and its complement.
    B : (r-u, p-u) array
        Basis of the reduced-rank part inside span(Gamma0).
    eta1 : (p, u) array
        ``Gamma1' beta`` transposed.
    eta2 : (p, p-u) array
        Coordinates of the complement part, ``beta0 = B eta2'``.
    Sigma : (r, r) array
        Error covariance.
    Omega1, Omega0 : (u, u), (r-u, r-u) arrays
        Material and immaterial covariances.
    """

    alpha: NDArray[np.float64]
    beta: NDArray[np.float64]
    Gamma1: NDArray[np.float64]
    Gamma0: NDArray[np.float64]
    B: NDArray[np.float64]
    eta1: NDArray[np.float64]
    eta2: NDArray[np.float64]
    Sigma: NDArray[np.float64]
    Omega1: NDArray[np.float64]
    Omega0: NDArray[np.float64]
    r: int
    p: int

    @property
    def n(self) -> int:
        return self.n_obs

    def predict(self, X: Any) -> NDArray[np.float64]:
        """Fitted responses ``alpha + beta x`` for each row of ``X``."""
        X = np.asarray(X, dtype=np.float64)
        if X.ndim == 1:
            X = X.reshape(-1, self.p)
        if X.shape[1] != self.p:
            raise ValueError(f"X must have {self.p} columns; got {X.shape[1]}.")
        return self.alpha[None, :] + X @ self.beta.T


def _estimate(
    stats: RegressionStatistics,
    Gamma1: NDArray[np.float64],
    objective: IenvObjective,
) -> dict[str, Any]:
    r, p, n = stats.r, stats.p, stats.n
    u = Gamma1.shape[1]
    d = p - u
    Gamma0 = la.null_basis(Gamma1)

    lam, V, A, W = _complement_eigen(Gamma0, stats.sigRes, stats.sigFit)
    A_half = la.sym_sqrt(A)
    Vd = V[:, :d]
    beta0 = A_half @ Vd @ Vd.T @ W @ Gamma0.T @ stats.betaOLS
    beta = Gamma1 @ Gamma1.T @ stats.betaOLS + Gamma0 @ beta0

    kept = np.where(np.arange(lam.size) >= d, lam, 0.0)
    Omega0 = A + A_half @ (V * kept) @ V.T @ A_half
    Omega0 = 0.5 * (Omega0 + Omega0.T)
    Omega1 = Gamma1.T @ stats.sigRes @ Gamma1
    Sigma = Gamma1 @ Omega1 @ Gamma1.T + Gamma0 @ Omega0 @ Gamma0.T
    B = la.orthonormalize(A_half @ Vd)

    return {
        "alpha": stats.mY - beta @ stats.mX,
        "beta": beta,
        "Gamma1": Gamma1,
        "Gamma0": Gamma0,
        "B": B,
        "eta1": (Gamma1.T @ beta).T,
        "eta2": (B.T @ beta0).T,
        "Sigma": 0.5 * (Sigma + Sigma.T),
        "Omega1": Omega1,
        "Omega0": Omega0,
        "loglik": -n * r / 2.0 * (1.0 + _LOG_2PI) - n / 2.0 * objective.F(Gamma1),
        "param_num": r + p * r + r * (r + 1) // 2 - u * (r - p),
    }


def fit_ienv_statistics(stats: RegressionStatistics, u: int, opts: EnvelopeOptions) -> dict[str, Any]:
    """Fit the inner envelope from precomputed regression statistics."""
    objective = IenvObjective(stats)
    if u == 0:
        out = _estimate(stats, np.zeros((stats.r, 0)), objective)
        # full-rank fit: equal to OLS up to rounding
        out["beta"] = stats.betaOLS.copy()
        out["alpha"] = stats.mY - stats.betaOLS @ stats.mX
        out["Sigma"] = stats.sigRes.copy()
        out["Omega0"] = stats.sigRes.copy()
        out["n_iter"], out["converged"] = 0, True
        return out

    init = opts.init if opts.init is not None else get_init_ienv(objective.F, u, stats)
    optimizer = opts.optimizer if opts.optimizer is not None else grassmann_cg
    res = optimizer(
        objective.F, objective.dF, init, opts.max_iter, opts.ftol, opts.gradtol,
        verbose=opts.verbose,
    )
    out = _estimate(stats, la.orthonormalize(np.asarray(res.x, dtype=np.float64)), objective)
    out["n_iter"], out["converged"] = int(res.n_iter), bool(res.converged)
    return out


class IENV(BaseEnvelope):
    """Inner envelope model for multivariate regression with ``p < r``.

    Parameters
    ----------
    X : array-like, shape (n, p)
        Continuous predictors (no constant column; the intercept is estimated
        separately).
    Y : array-like, shape (n, r)
        Responses.
    """

    _estimator_label = "IENV"

    @classmethod
    def _drop_intercept(cls) -> bool:
        return True

    def fit(self, u: int, opts: EnvelopeOptions | Mapping[str, Any] | None = None) -> IenvResult:
        """Fit with inner envelope dimension ``u`` (0 <= u <= p)."""
        opts = EnvelopeOptions.resolve(opts)
        n, r = self.Y.shape
        p = self.X.shape[1]
        if p >= r:
            raise DimensionMismatch("The inner envelope requires fewer predictors than responses (p < r).")
        u = check_dimension(u, p, label="p")
        check_initial_basis(opts.init, r, u)
        stats = regression_statistics(self.X, self.Y)
        if not np.all(np.isfinite(stats.betaOLS)):
            raise NumericalInstability("OLS coefficients are not finite.")
        LOGGER.debug("ienv: n=%d r=%d p=%d u=%d", n, r, p, u)

        out = fit_ienv_statistics(stats, u, opts)
        self._results = IenvResult(
            u=u,
            n_obs=n,
            response_names=list(self.response_names),
            model_info={"estimator": self._estimator_label, "predictors": p},
            r=r,
            p=p,
            **out,
        )
        return self._results


def ienv(X: Any, Y: Any, u: int, opts: EnvelopeOptions | Mapping[str, Any] | None = None) -> IenvResult:
    """Fit the inner envelope model; see :class:`IENV`."""
    return IENV(X, Y).fit(u, opts)
