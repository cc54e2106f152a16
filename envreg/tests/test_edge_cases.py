import numpy as np
import pytest

from envreg.core import linalg as la
from envreg.estimators.base import EnvelopeOptions
from envreg.estimators.henv import HENV, henv
from envreg.exceptions import (
    DimensionMismatch,
    EnvelopeError,
    InsufficientGroupSize,
    InvalidDimension,
    OptimizerNonConvergence,
    RankDeficientInitialization,
)

# ---------------------------------------------------------------------
# Preconditions
# ---------------------------------------------------------------------


def test_row_count_mismatch(rng):
    with pytest.raises(DimensionMismatch, match="number of observations"):
        HENV(np.repeat([0, 1], 10), rng.standard_normal((19, 3)))


@pytest.mark.parametrize("u", [-1, 4, "a"])
def test_invalid_dimension(two_groups, u):
    X, Y = two_groups
    with pytest.raises(InvalidDimension):
        henv(X, Y, u)


def test_initial_basis_shape(two_groups):
    X, Y = two_groups
    with pytest.raises(DimensionMismatch, match="r by u"):
        henv(X, Y, 1, {"init": np.ones((3, 2))})


def test_initial_basis_rank(two_groups):
    X, Y = two_groups
    with pytest.raises(RankDeficientInitialization, match="full rank"):
        henv(X, Y, 2, {"init": np.ones((3, 2))})


def test_small_group_fails_before_any_inversion(rng, monkeypatch):
    X = np.array([0, 0] + [1] * 10)
    Y = rng.standard_normal((12, 3))

    def forbidden(*args, **kwargs):
        raise AssertionError("matrix factorization attempted")

    monkeypatch.setattr(la, "inv_sym", forbidden)
    monkeypatch.setattr(la, "eigh_sym", forbidden)
    with pytest.raises(InsufficientGroupSize):
        henv(X, Y, 1)


@pytest.mark.parametrize("u", [0, 1, 2, 3])
def test_group_of_exactly_r_observations_rejected(rng, u):
    # three points in R^3 give a singular divisor-n_i covariance
    X = np.repeat([0, 1], [3, 20])
    Y = rng.standard_normal((23, 3))
    with pytest.raises(InsufficientGroupSize):
        henv(X, Y, u)


def test_group_of_r_plus_one_observations_fits(rng):
    X = np.repeat([0, 1], [4, 20])
    Y = rng.standard_normal((24, 3))
    res = henv(X, Y, 3)
    assert np.isfinite(res.loglik)
    assert np.all(np.isfinite(res.asy_se))


@pytest.mark.filterwarnings("error:invalid value encountered:RuntimeWarning")
def test_single_group_has_unit_ratio(rng):
    X = np.zeros(30)
    Y = rng.standard_normal((30, 3)) @ np.diag([1.0, 2.0, 5.0])
    res = henv(X, Y, 1)
    assert res.p == 1
    assert np.allclose(res.beta, 0.0)
    assert np.array_equal(res.asy_se, np.zeros((3, 1)))
    assert np.array_equal(res.ratio, np.ones((3, 1)))


def test_errors_share_a_base_class():
    for exc in (DimensionMismatch, InvalidDimension, InsufficientGroupSize, RankDeficientInitialization):
        assert issubclass(exc, EnvelopeError)
        assert issubclass(exc, ValueError)


def test_non_finite_data_rejected(two_groups):
    X, Y = two_groups
    Y = Y.copy()
    Y[0, 0] = np.nan
    with pytest.raises(ValueError, match="Input contains NA/NaN/Inf"):
        henv(X, Y, 1)


# ---------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------


def test_options_resolve_aliases():
    opts = EnvelopeOptions.resolve({"maxIter": 50, "ftol": 1e-6})
    assert opts.max_iter == 50
    assert opts.ftol == 1e-6
    assert opts.gradtol == 1e-7
    assert EnvelopeOptions.resolve(None) == EnvelopeOptions()
    assert EnvelopeOptions.resolve(opts) is opts


def test_options_reject_unknown_and_invalid_values():
    with pytest.raises(ValueError, match="Unknown option"):
        EnvelopeOptions.resolve({"tolerance": 1e-3})
    with pytest.raises(ValueError, match="max_iter"):
        EnvelopeOptions(max_iter=0)
    with pytest.raises(TypeError):
        EnvelopeOptions.resolve([("max_iter", 3)])


def test_max_iter_reached_is_flagged(two_groups):
    X, Y = two_groups
    opts = {"max_iter": 2, "ftol": 1e-300, "gradtol": 1e-300}
    with pytest.warns(OptimizerNonConvergence):
        res = henv(X, Y, 1, opts)
    assert not res.converged
    assert res.n_iter == 2
    assert np.isfinite(res.loglik)


def test_verbose_logs_iterations(two_groups, caplog):
    X, Y = two_groups
    with caplog.at_level("INFO", logger="envreg.core.manifold"):
        henv(X, Y, 1, {"verbose": True})
    assert any("iter" in rec.getMessage() for rec in caplog.records)
