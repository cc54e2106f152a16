"""Base classes, option handling and result containers.

This module defines the abstract base estimator, the option data structures
resolved once per fit (``EnvelopeOptions``, ``BootConfig``) and the common
fields shared by envelope results.
"""

# envreg/estimators/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from typing import TYPE_CHECKING, Any, Callable

import numpy as np
import pandas as pd

from envreg.core import linalg as la
from envreg.exceptions import (
    DimensionMismatch,
    InvalidDimension,
    RankDeficientInitialization,
)
from envreg.utils import helpers

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = [
    "DEFAULT_BOOTSTRAP_ITERATIONS",
    "BaseEnvelope",
    "BootConfig",
    "EnvelopeOptions",
    "EnvelopeResult",
    "check_dimension",
    "check_initial_basis",
]

DEFAULT_BOOTSTRAP_ITERATIONS: int = 100

# camelCase option names accepted in mappings
_OPTION_ALIASES = {
    "maxIter": "max_iter",
    "maxiter": "max_iter",
    "max_iter": "max_iter",
    "ftol": "ftol",
    "gradtol": "gradtol",
    "verbose": "verbose",
    "init": "init",
    "initial_basis": "init",
    "initialBasis": "init",
    "optimizer": "optimizer",
}


# ---------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class EnvelopeOptions:
    """Settings for the Grassmann optimization inside an envelope fit.

    Attributes
    ----------
    max_iter : int, default 300
        Maximum number of optimizer iterations.
    ftol : float, default 1e-10
        Tolerance on the objective decrease.
    gradtol : float, default 1e-7
        Tolerance on the projected gradient norm.
    verbose : bool, default False
        Log optimizer progress at INFO level.
    init : ndarray or None
        Starting r x u basis. When None a data-driven start is computed.
    optimizer : callable or None
        Replacement for :func:`envreg.core.manifold.grassmann_cg`; it must
        accept ``(F, dF, init, max_iter, ftol, gradtol, verbose=...)`` and
        return an object with ``fun``, ``x``, ``n_iter`` and ``converged``.
    """

    max_iter: int = 300
    ftol: float = 1e-10
    gradtol: float = 1e-7
    verbose: bool = False
    init: NDArray[np.float64] | None = None
    optimizer: Callable[..., Any] | None = None

    def __post_init__(self) -> None:
        if int(self.max_iter) < 1:
            raise ValueError("max_iter must be a positive integer.")
        if not (float(self.ftol) > 0.0 and float(self.gradtol) > 0.0):
            raise ValueError("ftol and gradtol must be positive.")

    @classmethod
    def resolve(cls, opts: EnvelopeOptions | Mapping[str, Any] | None) -> EnvelopeOptions:
        """Fill defaults for a partial option set.

        Accepts ``None``, an existing :class:`EnvelopeOptions`, or a mapping
        with any subset of the fields (camelCase spellings such as ``maxIter``
        are accepted). Unknown keys raise ``ValueError``.
        """
        if opts is None:
            return cls()
        if isinstance(opts, cls):
            return opts
        if not isinstance(opts, Mapping):
            raise TypeError("opts must be None, a mapping or an EnvelopeOptions instance.")
        kwargs: dict[str, Any] = {}
        for key, value in opts.items():
            name = _OPTION_ALIASES.get(str(key))
            if name is None:
                valid = sorted(f.name for f in fields(cls))
                raise ValueError(f"Unknown option '{key}'; valid options are {valid}.")
            kwargs[name] = value
        if kwargs.get("init") is not None:
            kwargs["init"] = np.asarray(kwargs["init"], dtype=np.float64)
        return cls(**kwargs)

    def without_init(self) -> EnvelopeOptions:
        """Copy with the starting basis removed (used when refitting resamples)."""
        return replace(self, init=None)


@dataclass(frozen=True)
class BootConfig:
    """Residual bootstrap configuration.

    Reproducibility: use ``seed`` to initialize ``np.random.default_rng``.
    """

    n_boot: int = DEFAULT_BOOTSTRAP_ITERATIONS
    seed: int | None = None

    def __post_init__(self) -> None:
        if int(self.n_boot) < 2:
            raise ValueError("n_boot must be at least 2.")

    def rng(self) -> np.random.Generator:
        return np.random.default_rng(self.seed)


# ---------------------------------------------------------------------
# Precondition checks shared by estimators
# ---------------------------------------------------------------------


def check_dimension(u: float, upper: int, *, label: str = "r") -> int:
    """Truncate ``u`` to an integer and check ``0 <= u <= upper``."""
    try:
        u_int = int(np.floor(float(u)))
    except (TypeError, ValueError) as e:
        raise InvalidDimension("u should be an integer.") from e
    if u_int < 0 or u_int > int(upper):
        raise InvalidDimension(f"u should be an integer between [0, {label}]!")
    return u_int


def check_initial_basis(init: NDArray[np.float64] | None, r: int, u: int) -> None:
    """Validate the shape and rank of a caller-supplied starting basis."""
    if init is None:
        return
    init = np.asarray(init, dtype=np.float64)
    if init.ndim != 2 or init.shape != (r, u):
        raise DimensionMismatch("The size of the initial value should be r by u!")
    la.assert_all_finite(init)
    if la.matrix_rank(init) < u:
        raise RankDeficientInitialization("The initial value should be full rank!")


# ---------------------------------------------------------------------
# Results container
# ---------------------------------------------------------------------
@dataclass(frozen=True, kw_only=True, eq=False)
class EnvelopeResult:
    """Fields shared by every envelope fit.

    Attributes
    ----------
    u : int
        Envelope dimension.
    loglik : float
        Maximized log-likelihood.
    param_num : int
        Number of free parameters of the fitted model.
    n_obs : int
        Sample size.
    n_iter : int
        Optimizer iterations (0 for closed-form fits).
    converged : bool
        False when the optimizer stopped at ``max_iter``.
    response_names : list of str
        Labels of the response columns.
    model_info : dict
        Estimator label and settings.
    """

    u: int
    loglik: float
    param_num: int
    n_obs: int
    n_iter: int = 0
    converged: bool = True
    response_names: list[str] = field(default_factory=list)
    model_info: dict[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:  # pragma: no cover - convenience only
        head = ", ".join(f"{k}={v}" for k, v in self.model_info.items())
        return (
            f"{type(self).__name__}(u={self.u}, n={self.n_obs}, "
            f"loglik={self.loglik:.6g}, param_num={self.param_num}, {head})"
        )

    def aic(self) -> float:
        """Akaike information criterion ``-2 l + 2 k``."""
        return -2.0 * self.loglik + 2.0 * self.param_num

    def bic(self) -> float:
        """Bayesian information criterion ``-2 l + log(n) k``."""
        return -2.0 * self.loglik + np.log(self.n_obs) * self.param_num


# ---------------------------------------------------------------------
# Estimator base class
# ---------------------------------------------------------------------
class BaseEnvelope(ABC):
    """Abstract base class for `envreg` estimators.

    Subclasses receive validated arrays in ``self.X`` / ``self.Y`` and
    implement :meth:`fit` returning a frozen result object.
    """

    _estimator_label: str = "envelope"

    def __init__(self, X: Any, Y: Any) -> None:
        self.Y, self.response_names = helpers.coerce_responses(Y)
        self.X, self.predictor_names = self._coerce_predictors(X)
        if self.X.shape[0] != self.Y.shape[0]:
            raise DimensionMismatch("The number of observations in X and Y should be equal!")
        self._results: EnvelopeResult | None = None

    def _coerce_predictors(self, X: Any) -> tuple[NDArray[np.float64], list[str]]:
        return helpers.coerce_predictors(X)

    @classmethod
    def from_formula(cls, formula: str, data: pd.DataFrame, **kwargs: Any) -> BaseEnvelope:
        """Build the estimator from a Patsy formula such as ``"y1 + y2 ~ C(g)"``.

        Every left-hand-side term becomes one response column. Rows with
        missing values are dropped.
        """
        Y_df, X_df = helpers.patsy_design(formula, data, drop_intercept=cls._drop_intercept())
        return cls(X_df, Y_df, **kwargs)

    @classmethod
    def _drop_intercept(cls) -> bool:
        return False

    @abstractmethod
    def fit(self, u: int, opts: EnvelopeOptions | Mapping[str, Any] | None = None) -> EnvelopeResult:
        """Fit the model with envelope dimension ``u``."""
        ...

    # -- convenience accessors ----------------------------------------
    @property
    def results(self) -> EnvelopeResult:
        if self._results is None:
            msg = "Model has not been fitted yet. Call .fit() first."
            raise RuntimeError(msg)
        return self._results

    @property
    def n_obs(self) -> int:
        return int(self.Y.shape[0])

    @property
    def n_responses(self) -> int:
        return int(self.Y.shape[1])
