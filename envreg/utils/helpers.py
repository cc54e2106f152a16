"""Shared helper utilities.

Input coercion (NumPy / pandas), group-label handling and the Patsy design
builder used by the ``from_formula`` constructors.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd
import patsy

from envreg.core import linalg as la

if TYPE_CHECKING:  # pragma: no cover - import only for type checking
    from numpy.typing import NDArray

__all__ = [
    "coerce_groups",
    "coerce_predictors",
    "coerce_responses",
    "group_names",
    "match_groups",
    "patsy_design",
]


def coerce_responses(Y: Any) -> tuple[NDArray[np.float64], list[str]]:
    """Return ``Y`` as an n x r float array together with column names."""
    if isinstance(Y, pd.Series):
        names = [str(Y.name) if Y.name is not None else "y0"]
        arr = Y.to_numpy(dtype=np.float64).reshape(-1, 1)
    elif isinstance(Y, pd.DataFrame):
        names = [str(c) for c in Y.columns]
        arr = Y.to_numpy(dtype=np.float64)
    else:
        arr = np.asarray(Y, dtype=np.float64)
        if arr.ndim == 1:
            arr = arr.reshape(-1, 1)
        names = [f"y{j}" for j in range(arr.shape[1])]
    if arr.ndim != 2:
        raise ValueError("Y must be a 1-D or 2-D array.")
    la.assert_all_finite(arr)
    return np.ascontiguousarray(arr), names


def coerce_predictors(X: Any) -> tuple[NDArray[np.float64], list[str]]:
    """Return continuous predictors as an n x p float array with column names."""
    if isinstance(X, pd.Series):
        names = [str(X.name) if X.name is not None else "x0"]
        arr = X.to_numpy(dtype=np.float64).reshape(-1, 1)
    elif isinstance(X, pd.DataFrame):
        names = [str(c) for c in X.columns]
        arr = X.to_numpy(dtype=np.float64)
    else:
        arr = np.asarray(X, dtype=np.float64)
        if arr.ndim == 1:
            arr = arr.reshape(-1, 1)
        names = [f"x{j}" for j in range(arr.shape[1])]
    if arr.ndim != 2:
        raise ValueError("X must be a 1-D or 2-D array.")
    la.assert_all_finite(arr)
    return np.ascontiguousarray(arr), names


def coerce_groups(X: Any) -> tuple[NDArray[np.float64], list[str] | None]:
    """Return group indicators as an n x k float array.

    A 1-D input of arbitrary labels (strings, categories) is factorized in
    sorted order into a single code column; the sorted labels are returned so
    results can be labelled. Numeric 2-D input is used as is.
    """
    if isinstance(X, pd.DataFrame) and X.shape[1] == 1:
        X = X.iloc[:, 0]
    if isinstance(X, pd.Series) or (np.ndim(X) == 1):
        values = pd.Series(X) if not isinstance(X, pd.Series) else X
        if values.isna().any():
            raise ValueError("Group labels contain missing values.")
        codes, uniques = pd.factorize(values, sort=True)
        return codes.astype(np.float64).reshape(-1, 1), [str(v) for v in uniques]
    if isinstance(X, pd.DataFrame):
        arr = X.to_numpy(dtype=np.float64)
    else:
        arr = np.asarray(X, dtype=np.float64)
    if arr.ndim != 2:
        raise ValueError("X must be a 1-D label vector or a 2-D indicator matrix.")
    la.assert_all_finite(arr)
    return np.ascontiguousarray(arr), None


def group_names(group_ind: NDArray[np.float64], labels: list[str] | None = None) -> list[str]:
    """Names for the rows of ``group_ind``."""
    p = int(group_ind.shape[0])
    if labels is not None and len(labels) == p:
        return list(labels)
    return [f"g{i}" for i in range(p)]


def match_groups(groups: NDArray[np.float64], group_ind: NDArray[np.float64]) -> NDArray[np.int64]:
    """Index into ``group_ind`` for every row of ``groups``.

    Raises ValueError when a row matches no known group.
    """
    groups = np.asarray(groups, dtype=np.float64)
    if groups.ndim == 1:
        groups = groups.reshape(-1, group_ind.shape[1])
    if groups.shape[1] != group_ind.shape[1]:
        raise ValueError(
            f"Group indicator rows must have {group_ind.shape[1]} columns; got {groups.shape[1]}.",
        )
    hits = np.all(groups[:, None, :] == group_ind[None, :, :], axis=2)
    found = hits.any(axis=1)
    if not np.all(found):
        bad = np.flatnonzero(~found)[:10].tolist()
        raise ValueError(f"Rows {bad} do not match any group seen during fitting.")
    return np.argmax(hits, axis=1).astype(np.int64)


def patsy_design(
    formula: str,
    data: pd.DataFrame,
    *,
    drop_intercept: bool = False,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Build response and design frames from a Patsy formula.

    Every term on the left-hand side becomes one response column. Rows with
    missing values are dropped (Patsy ``NA_action="drop"``).
    """
    if "~" not in formula:
        raise ValueError("formula must contain '~' separating responses and predictors.")
    lhs, rhs = formula.split("~", 1)
    if drop_intercept:
        rhs = f"({rhs}) - 1"
    na = patsy.NAAction(on_NA="drop")
    Y_df, X_df = patsy.dmatrices(
        f"{lhs} ~ {rhs}", data, NA_action=na, return_type="dataframe",
    )
    return Y_df, X_df
