"""Sufficient statistics for envelope models.

Two families are provided:

- :func:`group_statistics` for group-mean comparison models (the
  heteroscedastic envelope): per-group counts, means and within-group
  covariances, plus the pooled marginal moments.
- :func:`regression_statistics` for multivariate linear regression with
  continuous predictors (the inner envelope): marginal covariances, the OLS
  coefficient and the fitted/residual covariance split.

All covariances use divisor ``n`` (maximum likelihood scaling).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from envreg.core import linalg as la
from envreg.exceptions import DimensionMismatch, InsufficientGroupSize

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = [
    "GroupStatistics",
    "RegressionStatistics",
    "group_statistics",
    "regression_statistics",
]


@dataclass(frozen=True)
class GroupStatistics:
    """Group-wise and pooled moments of a grouped multivariate sample.

    Attributes
    ----------
    n, r, p : int
        Observations, responses and discovered groups.
    group_ind : (p, k) array
        Distinct rows of the group indicator matrix, sorted lexicographically.
        Column ``i`` of every group-indexed output refers to row ``i`` here.
    labels : (n,) int array
        Group index of every observation.
    ind : (n,) int array
        Stable permutation listing observations of group 0 first, then group 1, ...
    ng, ncum : (p,) int arrays
        Group sizes and their cumulative sums.
    mY : (r,) array
        Overall mean.
    mYg : (r, p) array
        Group means.
    sigY : (r, r) array
        Marginal sample covariance.
    sigRes : (r, r, p) array
        Within-group sample covariances.
    logDetSigY : float
        Log-determinant of ``sigY``.
    """

    n: int
    r: int
    p: int
    group_ind: NDArray[np.float64]
    labels: NDArray[np.int64]
    ind: NDArray[np.int64]
    ng: NDArray[np.int64]
    ncum: NDArray[np.int64]
    mY: NDArray[np.float64]
    mYg: NDArray[np.float64]
    sigY: NDArray[np.float64]
    sigRes: NDArray[np.float64]
    logDetSigY: float

    @property
    def frac_n(self) -> NDArray[np.float64]:
        """Group proportions ``n_i / n``."""
        return self.ng / float(self.n)

    def pooled_within(self) -> NDArray[np.float64]:
        """Weighted sum of within-group covariances ``sum_i (n_i/n) sigRes_i``."""
        return np.einsum("ijk,k->ij", self.sigRes, self.frac_n)


def _cov_ml(Z: NDArray[np.float64]) -> NDArray[np.float64]:
    Zc = Z - Z.mean(axis=0)
    return (Zc.T @ Zc) / Z.shape[0]


def group_statistics(
    X: NDArray[np.float64],
    Y: NDArray[np.float64],
    *,
    check_sizes: bool = True,
) -> GroupStatistics:
    """Compute group and pooled moments from indicator rows ``X`` and responses ``Y``.

    Groups are the distinct rows of ``X``. When ``check_sizes`` is true a
    group with at most ``r`` observations raises
    :class:`~envreg.exceptions.InsufficientGroupSize` before any covariance
    is formed.
    """
    X = np.asarray(X, dtype=np.float64)
    Y = np.asarray(Y, dtype=np.float64)
    if X.ndim == 1:
        X = X.reshape(-1, 1)
    if Y.ndim == 1:
        Y = Y.reshape(-1, 1)
    n, r = Y.shape
    if X.shape[0] != n:
        raise DimensionMismatch("The number of observations in X and Y should be equal!")
    la.assert_all_finite(X, Y)

    group_ind, labels = np.unique(X, axis=0, return_inverse=True)
    labels = np.asarray(labels, dtype=np.int64).reshape(-1)
    p = int(group_ind.shape[0])
    ng = np.bincount(labels, minlength=p).astype(np.int64)
    # the divisor-n_i covariance of n_i points has rank at most n_i - 1
    if check_sizes and int(ng.min()) <= r:
        raise InsufficientGroupSize(
            "Some groups have sample sizes not larger than the number of responses, "
            "therefore the group covariance matrix cannot be estimated.",
        )
    ind = np.argsort(labels, kind="stable").astype(np.int64)

    mY = Y.mean(axis=0)
    sigY = _cov_ml(Y)
    mYg = np.zeros((r, p))
    sigRes = np.zeros((r, r, p))
    for i in range(p):
        Yi = Y[labels == i]
        mYg[:, i] = Yi.mean(axis=0)
        sigRes[:, :, i] = _cov_ml(Yi)

    return GroupStatistics(
        n=n,
        r=r,
        p=p,
        group_ind=group_ind,
        labels=labels,
        ind=ind,
        ng=ng,
        ncum=np.cumsum(ng),
        mY=mY,
        mYg=mYg,
        sigY=sigY,
        sigRes=sigRes,
        logDetSigY=la.logdet_pos(sigY),
    )


@dataclass(frozen=True)
class RegressionStatistics:
    """Moments of a multivariate regression of ``Y`` (n x r) on ``X`` (n x p)."""

    n: int
    r: int
    p: int
    mX: NDArray[np.float64]
    mY: NDArray[np.float64]
    sigX: NDArray[np.float64]
    sigY: NDArray[np.float64]
    sigYX: NDArray[np.float64]
    betaOLS: NDArray[np.float64]
    sigFit: NDArray[np.float64]
    sigRes: NDArray[np.float64]


def regression_statistics(
    X: NDArray[np.float64],
    Y: NDArray[np.float64],
) -> RegressionStatistics:
    """Compute the OLS fit and the fitted/residual covariance decomposition."""
    X = np.asarray(X, dtype=np.float64)
    Y = np.asarray(Y, dtype=np.float64)
    if X.ndim == 1:
        X = X.reshape(-1, 1)
    if Y.ndim == 1:
        Y = Y.reshape(-1, 1)
    n, r = Y.shape
    if X.shape[0] != n:
        raise DimensionMismatch("The number of observations in X and Y should be equal!")
    la.assert_all_finite(X, Y)
    p = X.shape[1]

    mX = X.mean(axis=0)
    mY = Y.mean(axis=0)
    Xc = X - mX
    Yc = Y - mY
    sigX = (Xc.T @ Xc) / n
    sigY = (Yc.T @ Yc) / n
    sigYX = (Yc.T @ Xc) / n
    betaOLS = sigYX @ la.inv_sym(sigX)
    sigFit = betaOLS @ sigYX.T
    sigFit = 0.5 * (sigFit + sigFit.T)
    return RegressionStatistics(
        n=n,
        r=r,
        p=p,
        mX=mX,
        mY=mY,
        sigX=sigX,
        sigY=sigY,
        sigYX=sigYX,
        betaOLS=betaOLS,
        sigFit=sigFit,
        sigRes=sigY - sigFit,
    )
