"""Heteroscedastic envelope (HENV) estimator for comparing group means.

Model: for an observation in group ``i``

    Y = mu + beta_i + eps,   eps ~ N(0, Sigma_i),
    beta_i = Gamma eta_i,
    Sigma_i = Gamma Omega_i Gamma' + Gamma0 Omega0 Gamma0',

where ``Gamma`` (r x u) spans the envelope, a subspace carrying every group
difference in both the means and the covariances, and ``Gamma0`` spans its
orthogonal complement, where all groups share the immaterial covariance
``Omega0``. Group effects are centered: ``sum_i (n_i / n) beta_i = 0``.

The envelope is estimated by minimizing the profile objective
:class:`HenvObjective` over the Grassmann manifold; everything else follows
in closed form. Asymptotic standard errors of ``beta`` and their ratio to the
standard (u = r) model come from :mod:`envreg.core.inference`.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd

from envreg.core import inference as inf
from envreg.core import linalg as la
from envreg.core.init_basis import select_initial_basis
from envreg.core.manifold import grassmann_cg
from envreg.core.stats import GroupStatistics, group_statistics
from envreg.exceptions import NumericalInstability
from envreg.utils import helpers

from .base import (
    BaseEnvelope,
    EnvelopeOptions,
    EnvelopeResult,
    check_dimension,
    check_initial_basis,
)

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = ["HENV", "HenvObjective", "HenvResult", "get_init_henv", "henv"]

LOGGER = logging.getLogger(__name__)

_LOG_2PI = float(np.log(2.0 * np.pi))


# ---------------------------------------------------------------------
# Objective
# ---------------------------------------------------------------------
class HenvObjective:
    """Profile objective of the heteroscedastic envelope and its gradient.

    ``F(R) = sum_i n_i log|R' Sigma_i R| + n log|R0' SigmaY R0|``

    where ``Sigma_i`` are the within-group covariances, ``SigmaY`` the
    marginal covariance and ``R0`` an orthonormal complement of ``R``. Up to
    an additive constant ``F`` is minus twice the profile log-likelihood.
    """

    def __init__(self, stats: GroupStatistics) -> None:
        self.stats = stats
        self._weights = stats.ng.astype(np.float64)
        self._n = float(stats.n)

    def F(self, R: NDArray[np.float64]) -> float:
        R = np.asarray(R, dtype=np.float64)
        R0 = la.null_basis(R)
        sigRes = self.stats.sigRes
        val = 0.0
        for i in range(self.stats.p):
            val += self._weights[i] * la.logdet_pd(R.T @ sigRes[:, :, i] @ R)
        val += self._n * la.logdet_pd(R0.T @ self.stats.sigY @ R0)
        return float(val)

    __call__ = F

    def dF(self, R: NDArray[np.float64]) -> NDArray[np.float64]:
        """Euclidean gradient of :meth:`F` at a semi-orthogonal ``R``.

        The complement term is differentiated in ``R0`` and pulled back to
        ``R`` through ``vec(dR0) = -(R0' kron R) K_{r,u} vec(dR)``.
        """
        R = np.asarray(R, dtype=np.float64)
        r, u = R.shape
        R0 = la.null_basis(R)
        sigRes = self.stats.sigRes

        grad = np.zeros((r, u))
        for i in range(self.stats.p):
            SR = sigRes[:, :, i] @ R
            grad += 2.0 * self._weights[i] * SR @ la.inv_sym(R.T @ SR)

        SY0 = self.stats.sigY @ R0
        w, V = la.eigh_sym(R0.T @ SY0)
        if np.any(w <= 0.0):
            raise NumericalInstability("Complement covariance is singular.")
        G0 = 2.0 * self._n * SY0 @ ((V / w) @ V.T)
        K = la.commutation_matrix(u, r)
        grad += la.unvec(-K @ np.kron(R0, R.T) @ la.vec(G0), (r, u))
        return grad


def get_init_henv(F: Any, u: int, stats: GroupStatistics) -> NDArray[np.float64]:
    """Starting basis among eigenvectors of the pooled within-group covariance."""
    _, V = la.eigh_sym(stats.pooled_within())
    return select_initial_basis(F, V, u)


# ---------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------
@dataclass(frozen=True, kw_only=True, eq=False, repr=False)
class HenvResult(EnvelopeResult):
    """Fitted heteroscedastic envelope model.

    Group-indexed outputs are ordered like the rows of ``group_ind``.

    Attributes
    ----------
    mu : (r,) array
        Grand mean.
    mug : (r, p) array
        Fitted group means ``mu + beta_i``.
    Yfit : (n, r) array
        Fitted group mean of every observation, in input order.
    Gamma, Gamma0 : (r, u), (r, r-u) arrays
        Orthonormal envelope basis and its complement.
    beta : (r, p) array
        Group main effects.
    group_ind : (p, k) array
        Distinct group indicator rows.
    Sigma : (r, r, p) array
        Group covariance estimates.
    eta : (u, p) array
        Coordinates of ``beta`` in the envelope basis.
    Omega : (u, u, p) array
        Material covariances.
    Omega0 : (r-u, r-u) array
        Shared immaterial covariance.
    cov_matrix : array
        Asymptotic covariance of ``(mu, vec beta)`` (r(p+1) square); the
        marginal covariance of ``Y`` when ``u = 0``.
    asy_se : (r, p) array or None
        Asymptotic standard errors of ``beta`` (divide by sqrt(n) for
        finite-sample errors). None when ``u = 0``.
    ratio : (r, p) array
        Standard-model over envelope-model asymptotic standard errors.
    ng : (p,) int array
        Group sizes.
    """

    mu: NDArray[np.float64]
    mug: NDArray[np.float64]
    Yfit: NDArray[np.float64]
    Gamma: NDArray[np.float64]
    Gamma0: NDArray[np.float64]
    beta: NDArray[np.float64]
    group_ind: NDArray[np.float64]
    Sigma: NDArray[np.float64]
    eta: NDArray[np.float64]
    Omega: NDArray[np.float64]
    Omega0: NDArray[np.float64]
    cov_matrix: NDArray[np.float64]
    asy_se: NDArray[np.float64] | None
    ratio: NDArray[np.float64]
    ng: NDArray[np.int64]
    r: int
    p: int
    group_labels: list[str] | None = None
    group_names: list[str] = field(default_factory=list)

    @property
    def n(self) -> int:
        return self.n_obs

    def predict(self, groups: Any) -> NDArray[np.float64]:
        """Fitted group means (one row per entry of ``groups``).

        ``groups`` holds indicator rows like those passed to ``fit`` or, when
        the model was fitted on a label vector, the labels themselves.
        Unknown groups raise ``ValueError``.
        """
        if self.group_labels is not None:
            lookup = {name: i for i, name in enumerate(self.group_labels)}
            keys = [str(g) for g in np.atleast_1d(np.asarray(groups, dtype=object)).ravel()]
            missing = sorted({k for k in keys if k not in lookup})
            if missing:
                raise ValueError(f"Unknown groups {missing[:10]}; fitted groups are {self.group_labels}.")
            idx = np.array([lookup[k] for k in keys], dtype=np.int64)
        else:
            idx = helpers.match_groups(groups, self.group_ind)
        return self.mug[:, idx].T

    def summary_frame(self) -> pd.DataFrame:
        """Group effects with standard errors, one row per (response, group)."""
        index = pd.MultiIndex.from_product(
            [self.response_names, self.group_names], names=["response", "group"],
        )
        se = np.full_like(self.beta, np.nan) if self.asy_se is None else self.asy_se
        return pd.DataFrame(
            {
                "beta": self.beta.reshape(-1),
                "asy_se": se.reshape(-1),
                "ratio": self.ratio.reshape(-1),
            },
            index=index,
        )


# ---------------------------------------------------------------------
# Fitting
# ---------------------------------------------------------------------
def _fit_empty(stats: GroupStatistics) -> dict[str, Any]:
    r, p, n = stats.r, stats.p, stats.n
    sigY = stats.sigY
    return {
        "mu": stats.mY.copy(),
        "Gamma": np.zeros((r, 0)),
        "Gamma0": np.eye(r),
        "beta": np.zeros((r, p)),
        "Sigma": np.repeat(sigY[:, :, None], p, axis=2),
        "eta": np.zeros((0, p)),
        "Omega": np.zeros((0, 0, p)),
        "Omega0": sigY.copy(),
        "loglik": -n * r / 2.0 * (1.0 + _LOG_2PI) - n / 2.0 * stats.logDetSigY,
        "param_num": r + r * (r + 1) // 2,
        "cov_matrix": sigY.copy(),
        "asy_se": None,
        "ratio": np.ones((r, p)),
    }


def _fit_full(stats: GroupStatistics) -> dict[str, Any]:
    r, p, n = stats.r, stats.p, stats.n
    f = stats.frac_n
    beta = stats.mYg - stats.mY[:, None]
    logdets = sum(stats.ng[i] * la.logdet_pd(stats.sigRes[:, :, i]) for i in range(p))
    cov = inf.standard_covariance(inf.henv_information(stats.sigRes, f), r, f)
    return {
        "mu": stats.mY.copy(),
        "Gamma": np.eye(r),
        "Gamma0": np.zeros((r, 0)),
        "beta": beta,
        "Sigma": stats.sigRes.copy(),
        "eta": beta.copy(),
        "Omega": stats.sigRes.copy(),
        "Omega0": np.zeros((0, 0)),
        "loglik": -n * r / 2.0 * (1.0 + _LOG_2PI) - 0.5 * float(logdets),
        "param_num": inf.henv_param_count(r, r, p),
        "cov_matrix": cov,
        "asy_se": inf.asymptotic_se(cov, r, p),
        "ratio": np.ones((r, p)),
    }


def _fit_interior(stats: GroupStatistics, u: int, opts: EnvelopeOptions) -> tuple[dict[str, Any], int, bool]:
    r, p, n = stats.r, stats.p, stats.n
    f = stats.frac_n
    objective = HenvObjective(stats)

    init = opts.init if opts.init is not None else get_init_henv(objective.F, u, stats)
    optimizer = opts.optimizer if opts.optimizer is not None else grassmann_cg
    res = optimizer(
        objective.F, objective.dF, init, opts.max_iter, opts.ftol, opts.gradtol,
        verbose=opts.verbose,
    )

    Gamma = la.orthonormalize(np.asarray(res.x, dtype=np.float64))
    Gamma0 = la.null_basis(Gamma)
    l_raw = objective.F(Gamma)

    Omega0 = Gamma0.T @ stats.sigY @ Gamma0
    eta = Gamma.T @ (stats.mYg - stats.mY[:, None])
    beta = Gamma @ eta
    Omega = np.zeros((u, u, p))
    Sigma = np.zeros((r, r, p))
    immaterial = Gamma0 @ Omega0 @ Gamma0.T
    for i in range(p):
        Omega[:, :, i] = Gamma.T @ stats.sigRes[:, :, i] @ Gamma
        Sigma[:, :, i] = Gamma @ Omega[:, :, i] @ Gamma.T + immaterial

    J = inf.henv_information(Sigma, f)
    H = inf.henv_jacobian(Gamma, Gamma0, eta, Omega, Omega0)
    cov = inf.henv_covariance(H, J, r, f)
    asy_se = inf.asymptotic_se(cov, r, p)

    cov_std = inf.standard_covariance(inf.henv_information(stats.sigRes, f), r, f)
    se_std = inf.asymptotic_se(cov_std, r, p)

    out = {
        "mu": stats.mY.copy(),
        "Gamma": Gamma,
        "Gamma0": Gamma0,
        "beta": beta,
        "Sigma": Sigma,
        "eta": eta,
        "Omega": Omega,
        "Omega0": Omega0,
        "loglik": -n * r / 2.0 * (1.0 + _LOG_2PI) - 0.5 * l_raw,
        "param_num": inf.henv_param_count(r, u, p),
        "cov_matrix": cov,
        "asy_se": asy_se,
        # a single group has beta identically zero, so both errors vanish
        "ratio": np.divide(se_std, asy_se, out=np.ones_like(se_std), where=asy_se > 0.0),
    }
    return out, int(res.n_iter), bool(res.converged)


def fit_henv_statistics(stats: GroupStatistics, u: int, opts: EnvelopeOptions) -> dict[str, Any]:
    """Fit the model from precomputed group statistics (``u`` already validated)."""
    n_iter, converged = 0, True
    if u == 0:
        out = _fit_empty(stats)
    elif u == stats.r:
        out = _fit_full(stats)
    else:
        out, n_iter, converged = _fit_interior(stats, u, opts)
    out["mug"] = out["mu"][:, None] + out["beta"]
    out["Yfit"] = out["mug"][:, stats.labels].T.copy()
    out["n_iter"] = n_iter
    out["converged"] = converged
    return out


class HENV(BaseEnvelope):
    """Heteroscedastic envelope model for comparing multivariate group means.

    Parameters
    ----------
    X : array-like
        Group membership: either an n x k indicator matrix (each distinct row
        is a group) or a length-n vector of labels.
    Y : array-like, shape (n, r)
        Responses.

    Examples
    --------
    >>> res = HENV(groups, Y).fit(u=1)
    >>> res.beta, res.asy_se, res.ratio
    >>> HENV.from_formula("y1 + y2 + y3 ~ C(g)", df).fit(1).summary_frame()
    """

    _estimator_label = "HENV"

    def _coerce_predictors(self, X: Any) -> tuple[NDArray[np.float64], list[str]]:
        arr, labels = helpers.coerce_groups(X)
        self.group_labels = labels
        if isinstance(X, pd.DataFrame) and X.shape[1] == arr.shape[1]:
            return arr, [str(c) for c in X.columns]
        return arr, [f"x{j}" for j in range(arr.shape[1])]

    def fit(self, u: int, opts: EnvelopeOptions | Mapping[str, Any] | None = None) -> HenvResult:
        """Fit with envelope dimension ``u`` (0 <= u <= r).

        Raises
        ------
        InvalidDimension
            ``u`` outside ``[0, r]``.
        DimensionMismatch, RankDeficientInitialization
            Bad starting basis in ``opts``.
        InsufficientGroupSize
            A group has ``r`` or fewer observations.
        """
        opts = EnvelopeOptions.resolve(opts)
        r = self.n_responses
        u = check_dimension(u, r)
        check_initial_basis(opts.init, r, u)
        stats = group_statistics(self.X, self.Y)
        LOGGER.debug("henv: n=%d r=%d p=%d u=%d", stats.n, r, stats.p, u)

        out = fit_henv_statistics(stats, u, opts)
        self._results = HenvResult(
            u=u,
            n_obs=stats.n,
            response_names=list(self.response_names),
            model_info={"estimator": self._estimator_label, "groups": stats.p},
            group_ind=stats.group_ind,
            ng=stats.ng,
            r=r,
            p=stats.p,
            group_labels=self.group_labels,
            group_names=helpers.group_names(stats.group_ind, self.group_labels),
            **out,
        )
        return self._results


def henv(X: Any, Y: Any, u: int, opts: EnvelopeOptions | Mapping[str, Any] | None = None) -> HenvResult:
    """Fit the heteroscedastic envelope model; see :class:`HENV`."""
    return HENV(X, Y).fit(u, opts)
