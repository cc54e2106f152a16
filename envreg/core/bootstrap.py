"""Residual bootstrap standard errors for envelope estimators.

Each replication resamples the fitted residuals with replacement,
``Y* = Yfit + resid[idx]``, refits the model with the same dimension and
records the coefficient matrix. Standard errors are the elementwise sample
standard deviations (ddof=1) across replications.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import numpy as np

from envreg.estimators.base import BootConfig, EnvelopeOptions
from envreg.estimators.henv import HENV
from envreg.estimators.ienv import IENV

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = ["bootstrap_se", "draws_se"]

LOGGER = logging.getLogger(__name__)

_MODELS = {"henv": HENV, "ienv": IENV}


def draws_se(beta_star: NDArray[np.float64]) -> NDArray[np.float64]:
    """Standard errors from bootstrap draws stored as a (K, B) array.

    Requires at least 2 draws, rejects non-finite values and uses ddof=1.
    """
    arr = np.asarray(beta_star, dtype=np.float64)
    if arr.ndim == 1:
        arr = arr.reshape(1, -1)
    if arr.ndim != 2:
        raise ValueError("beta_star must be a 2-D array of shape (K, B).")
    _, B = arr.shape
    if B < 2:
        raise ValueError(f"bootstrap standard errors require at least 2 draws; got B={B}.")
    if not np.isfinite(arr).all():
        bad = np.argwhere(~np.isfinite(arr))
        raise ValueError(
            "Non-finite bootstrap draws detected (showing up to 10 [k,b] indices): "
            f"{bad[:10].tolist()}.",
        )
    return np.std(arr, axis=1, ddof=1).astype(np.float64)


def bootstrap_se(  # noqa: PLR0913
    X: Any,
    Y: Any,
    u: int,
    B: int | None = None,
    model_type: str = "henv",
    opts: EnvelopeOptions | Mapping[str, Any] | None = None,
    boot: BootConfig | None = None,
) -> NDArray[np.float64]:
    """Residual bootstrap standard errors of ``beta``.

    Parameters
    ----------
    X, Y
        Data as accepted by the estimator selected with ``model_type``.
    u
        Envelope dimension used for the initial fit and every refit.
    B
        Number of replications; overrides ``boot.n_boot`` when given.
    model_type
        ``"henv"`` or ``"ienv"``.
    opts
        Optimizer options; a starting basis is only used for the initial fit.
    boot
        Replication count and seed. Defaults to ``BootConfig()``.

    Returns
    -------
    ndarray
        Standard errors with the shape of the fitted ``beta``.
    """
    key = str(model_type).lower()
    if key not in _MODELS:
        raise ValueError(f"model_type must be one of {sorted(_MODELS)}; got {model_type!r}.")
    boot = boot if boot is not None else BootConfig()
    if B is not None:
        boot = BootConfig(n_boot=int(B), seed=boot.seed)
    opts = EnvelopeOptions.resolve(opts)
    level = logging.INFO if opts.verbose else logging.DEBUG

    estimator = _MODELS[key](X, Y)
    fit = estimator.fit(u, opts)
    Yfit = fit.Yfit if key == "henv" else fit.predict(estimator.X)
    resid = estimator.Y - Yfit
    n = resid.shape[0]
    refit_opts = opts.without_init()

    rng = boot.rng()
    draws = np.empty((fit.beta.size, boot.n_boot))
    for b in range(boot.n_boot):
        Y_star = Yfit + resid[rng.integers(0, n, size=n)]
        draws[:, b] = _MODELS[key](estimator.X, Y_star).fit(u, refit_opts).beta.reshape(-1)
        LOGGER.log(level, "bootstrap replicate %d/%d", b + 1, boot.n_boot)
    return draws_se(draws).reshape(fit.beta.shape)
