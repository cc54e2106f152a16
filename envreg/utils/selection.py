"""Dimension selection for envelope models.

Information criteria and sequential likelihood-ratio tests refit the
heteroscedastic envelope for every candidate ``u``; m-fold cross validation
is available for both the heteroscedastic and the inner envelope. Folds are
contiguous blocks of rows, so shuffle the data beforehand if it is ordered.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import numpy as np
from scipy import stats

from envreg.estimators.base import EnvelopeOptions
from envreg.estimators.henv import HENV
from envreg.estimators.ienv import IENV

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = [
    "aic_henv",
    "bic_henv",
    "fold_bounds",
    "lrt_henv",
    "mfoldcv_henv",
    "mfoldcv_ienv",
]

LOGGER = logging.getLogger(__name__)

Options = EnvelopeOptions | Mapping[str, Any] | None


def _criterion_henv(X: Any, Y: Any, penalty: str, opts: Options) -> int:
    opts = EnvelopeOptions.resolve(opts).without_init()
    model = HENV(X, Y)
    r = model.n_responses
    n = model.n_obs
    k = 2.0 if penalty == "aic" else float(np.log(n))

    full = model.fit(r, opts)
    best_u = r
    best = -2.0 * full.loglik + k * full.param_num
    for u in range(r):
        res = model.fit(u, opts)
        ic = -2.0 * res.loglik + k * res.param_num
        LOGGER.debug("%s: u=%d value=%.10g", penalty, u, ic)
        if ic < best:
            best_u, best = u, ic
    return best_u


def aic_henv(X: Any, Y: Any, opts: Options = None) -> int:
    """Envelope dimension minimizing AIC ``-2 l + 2 k``."""
    return _criterion_henv(X, Y, "aic", opts)


def bic_henv(X: Any, Y: Any, opts: Options = None) -> int:
    """Envelope dimension minimizing BIC ``-2 l + log(n) k``."""
    return _criterion_henv(X, Y, "bic", opts)


def lrt_henv(X: Any, Y: Any, alpha: float = 0.05, opts: Options = None) -> int:
    """Smallest u not rejected against the full model by a likelihood-ratio test.

    For u = 0, 1, ... the statistic ``2 (l_r - l_u)`` is compared with the
    ``1 - alpha`` quantile of a chi-squared distribution with
    ``param_num(r) - param_num(u)`` degrees of freedom. Returns r when every
    smaller dimension is rejected.
    """
    if not 0.0 < float(alpha) < 1.0:
        raise ValueError("alpha should be between [0, 1]!")
    opts = EnvelopeOptions.resolve(opts).without_init()
    model = HENV(X, Y)
    r = model.n_responses
    full = model.fit(r, opts)
    for u in range(r):
        res = model.fit(u, opts)
        chisq = -2.0 * (res.loglik - full.loglik)
        df = full.param_num - res.param_num
        crit = float(stats.chi2.ppf(1.0 - alpha, df))
        LOGGER.debug("lrt: u=%d chisq=%.6g df=%d critical=%.6g", u, chisq, df, crit)
        if chisq < crit:
            return u
    return r


def fold_bounds(n: int, m: int) -> list[tuple[int, int]]:
    """Row ranges ``[start, stop)`` of m contiguous folds over n rows."""
    if int(m) < 2 or int(m) > int(n):
        raise ValueError("m should be an integer between 2 and n.")
    return [(int(np.floor(i * n / m)), int(np.ceil((i + 1) * n / m))) for i in range(m)]


def _prediction_error(resid: NDArray[np.float64]) -> float:
    return float(np.sqrt(np.sum(resid**2) / resid.shape[0]))


def _cv_select(model: HENV | IENV, dims: range, m: int, opts: Options) -> int:
    opts = EnvelopeOptions.resolve(opts).without_init()
    level = logging.INFO if opts.verbose else logging.DEBUG
    n = model.n_obs
    folds = fold_bounds(n, m)
    errors = np.zeros((m, len(dims)))
    for j, u in enumerate(dims):
        LOGGER.log(level, "cross validation: dimension %d", u)
        for i, (start, stop) in enumerate(folds):
            test = np.zeros(n, dtype=bool)
            test[start:stop] = True
            train = type(model)(model.X[~test], model.Y[~test]).fit(u, opts)
            errors[i, j] = _prediction_error(model.Y[test] - train.predict(model.X[test]))
    mean_err = errors.mean(axis=0)
    LOGGER.debug("cross validation errors: %s", np.array2string(mean_err, precision=6))
    return dims[int(np.argmin(mean_err))]


def mfoldcv_henv(X: Any, Y: Any, m: int, opts: Options = None) -> int:
    """Envelope dimension with the smallest m-fold prediction error.

    Test rows are predicted by the fitted group means of the training fit,
    so every group must be present in every training split.
    """
    model = HENV(X, Y)
    return _cv_select(model, range(model.n_responses + 1), int(m), opts)


def mfoldcv_ienv(X: Any, Y: Any, m: int, opts: Options = None) -> int:
    """Inner envelope dimension with the smallest m-fold prediction error."""
    model = IENV(X, Y)
    n, p = model.n_obs, model.X.shape[1]
    m = int(m)
    top = min(int(np.floor((m - 1) * n / m)) - 1, p)
    return _cv_select(model, range(top + 1), m, opts)
