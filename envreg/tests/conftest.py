from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest

from envreg.core import linalg as la


def pytest_configure() -> None:
    """Ensure the repository root is on sys.path.

    Running pytest from inside ``envreg/`` without an installed package
    would otherwise fail to import the top-level ``envreg`` package.
    """

    repo_root = Path(__file__).resolve().parents[2]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


# ---------------------------------------------------------------------
# Data generators
# ---------------------------------------------------------------------

GAMMA = np.ones(3) / np.sqrt(3.0)


def simulate_two_groups(
    rng: np.random.Generator,
    n_per_group: int = 20,
    shift: float = 1.5,
    sd: tuple[float, float] = (1.0, 2.0),
    sd0: float = 20.0,
) -> tuple[np.ndarray, np.ndarray]:
    """Two groups in R^3 sharing the one-dimensional envelope span(GAMMA).

    Group means differ by ``2 * shift`` along GAMMA, the material standard
    deviations differ between groups, and both groups share isotropic
    immaterial noise with standard deviation ``sd0``.
    """
    gamma0 = la.null_basis(GAMMA.reshape(-1, 1))
    X = np.repeat([0, 1], n_per_group)
    Y = np.empty((2 * n_per_group, 3))
    for i, s in enumerate(sd):
        rows = X == i
        z = rng.standard_normal(n_per_group) * s
        z0 = rng.standard_normal((n_per_group, 2)) * sd0
        mean = (shift if i == 0 else -shift) * GAMMA
        Y[rows] = mean + np.outer(z, GAMMA) + z0 @ gamma0.T
    return X, Y


def simulate_groups(
    rng: np.random.Generator,
    sizes: tuple[int, ...] = (15, 20, 25),
    r: int = 4,
) -> tuple[np.ndarray, np.ndarray]:
    """Unstructured groups with distinct means and covariances."""
    X = np.repeat(np.arange(len(sizes)), sizes)
    Y = np.empty((X.size, r))
    for i, n_i in enumerate(sizes):
        L = rng.standard_normal((r, r)) + 2.0 * np.eye(r)
        Y[X == i] = rng.standard_normal((n_i, r)) @ L.T + rng.standard_normal(r)
    return X, Y


def simulate_regression(
    rng: np.random.Generator,
    n: int = 120,
    r: int = 5,
    p: int = 2,
) -> tuple[np.ndarray, np.ndarray]:
    X = rng.standard_normal((n, p))
    beta = rng.standard_normal((r, p))
    L = rng.standard_normal((r, r)) * 0.3 + np.eye(r)
    Y = 1.0 + X @ beta.T + rng.standard_normal((n, r)) @ L.T
    return X, Y


# ---------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def two_groups(rng):
    return simulate_two_groups(rng)


@pytest.fixture
def three_groups(rng):
    return simulate_groups(rng)


@pytest.fixture
def regression_data(rng):
    return simulate_regression(rng)


@pytest.fixture
def make_two_groups():
    return simulate_two_groups


@pytest.fixture
def make_groups():
    return simulate_groups


@pytest.fixture
def gamma():
    return GAMMA.copy()
