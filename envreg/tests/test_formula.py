import numpy as np
import pandas as pd
import pytest

from envreg.estimators.henv import HENV, henv
from envreg.estimators.ienv import IENV, ienv


@pytest.fixture
def grouped_frame(two_groups):
    X, Y = two_groups
    df = pd.DataFrame(Y, columns=["y1", "y2", "y3"])
    df["g"] = np.where(X == 0, "a", "b")
    return df


def test_henv_from_formula_matches_arrays(grouped_frame):
    df = grouped_frame
    res_formula = HENV.from_formula("y1 + y2 + y3 ~ C(g)", df).fit(1)
    res_array = henv(df["g"], df[["y1", "y2", "y3"]], 1)
    assert np.isclose(res_formula.loglik, res_array.loglik)
    assert np.allclose(res_formula.beta, res_array.beta)
    assert res_formula.response_names == ["y1", "y2", "y3"]


def test_henv_labels_from_series(grouped_frame):
    df = grouped_frame
    res = henv(df["g"], df[["y1", "y2", "y3"]], 1)
    assert res.group_names == ["a", "b"]
    assert np.allclose(res.predict(["b"]), res.mug[:, [1]].T)
    frame = res.summary_frame()
    assert frame.index.names == ["response", "group"]
    assert np.isclose(frame.loc[("y3", "a"), "beta"], res.beta[2, 0])


def test_formula_drops_missing_rows(grouped_frame):
    df = grouped_frame.copy()
    df.loc[0, "y1"] = np.nan
    res = HENV.from_formula("y1 + y2 + y3 ~ C(g)", df).fit(0)
    assert res.n_obs == len(df) - 1


def test_ienv_from_formula_has_no_constant_column(rng):
    n = 80
    df = pd.DataFrame({"x1": rng.standard_normal(n), "x2": rng.standard_normal(n)})
    for j in range(4):
        df[f"y{j}"] = 1.0 + (j + 1) * df["x1"] - df["x2"] + rng.standard_normal(n)
    model = IENV.from_formula("y0 + y1 + y2 + y3 ~ x1 + x2", df)
    assert model.predictor_names == ["x1", "x2"]
    res_formula = model.fit(1)
    res_array = ienv(df[["x1", "x2"]], df[["y0", "y1", "y2", "y3"]], 1)
    assert np.allclose(res_formula.beta, res_array.beta, atol=1e-6)
