import numpy as np
import pytest

from envreg.core import bootstrap as bs
from envreg.estimators.base import DEFAULT_BOOTSTRAP_ITERATIONS, BootConfig

# ---------------------------------------------------------------------
# Draw summaries
# ---------------------------------------------------------------------


def test_draws_se_matches_numpy(rng):
    draws = rng.standard_normal((3, 50))
    assert np.allclose(bs.draws_se(draws), draws.std(axis=1, ddof=1))


def test_draws_se_is_strict():
    with pytest.raises(ValueError, match="at least 2 draws"):
        bs.draws_se(np.ones((2, 1)))
    with pytest.raises(ValueError, match="Non-finite"):
        bs.draws_se(np.array([[1.0, np.nan, 2.0]]))


def test_boot_config_defaults():
    cfg = BootConfig()
    assert cfg.n_boot == DEFAULT_BOOTSTRAP_ITERATIONS
    with pytest.raises(ValueError):
        BootConfig(n_boot=1)


# ---------------------------------------------------------------------
# Residual bootstrap
# ---------------------------------------------------------------------


def test_bootstrap_se_henv_reproducible(two_groups):
    X, Y = two_groups
    boot = BootConfig(n_boot=5, seed=123)
    se1 = bs.bootstrap_se(X, Y, 1, model_type="henv", boot=boot)
    se2 = bs.bootstrap_se(X, Y, 1, model_type="henv", boot=boot)
    assert se1.shape == (3, 2)
    assert np.all(se1 >= 0)
    assert np.array_equal(se1, se2)


def test_bootstrap_se_ienv_count_override(regression_data):
    X, Y = regression_data
    se = bs.bootstrap_se(X, Y, 1, B=4, model_type="ienv", boot=BootConfig(seed=1))
    assert se.shape == (5, 2)
    assert np.all(np.isfinite(se))


def test_bootstrap_se_full_model_has_positive_spread(three_groups):
    X, Y = three_groups
    se = bs.bootstrap_se(X, Y, 4, B=10, boot=BootConfig(seed=0))
    assert np.all(se > 0)


def test_bootstrap_se_rejects_unknown_model(two_groups):
    X, Y = two_groups
    with pytest.raises(ValueError, match="model_type"):
        bs.bootstrap_se(X, Y, 1, B=3, model_type="env")
