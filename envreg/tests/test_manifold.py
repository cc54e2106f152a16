import numpy as np
import pytest

from envreg.core import linalg as la
from envreg.core.init_basis import (
    best_subset_exchange,
    best_subset_exhaustive,
    select_initial_basis,
)
from envreg.core.manifold import OptimizeResult, grassmann_cg, project_tangent, retract
from envreg.exceptions import OptimizerNonConvergence

# ---------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------


@pytest.fixture
def quadratic(rng):
    """F(R) = trace(R'AR): minimized by the eigenvectors of the u smallest eigenvalues."""
    Q = la.orthonormalize(rng.standard_normal((6, 6)))
    eigvals = np.array([0.5, 1.0, 2.0, 4.0, 7.0, 11.0])
    A = (Q * eigvals) @ Q.T

    def F(R):
        return float(np.trace(R.T @ A @ R))

    def dF(R):
        return 2.0 * A @ R

    return F, dF, A, eigvals


# ---------------------------------------------------------------------
# Manifold primitives
# ---------------------------------------------------------------------


def test_project_tangent_is_horizontal(rng):
    R = la.orthonormalize(rng.standard_normal((5, 2)))
    G = rng.standard_normal((5, 2))
    D = project_tangent(R, G)
    assert np.allclose(R.T @ D, 0.0, atol=1e-12)


def test_retract_returns_orthonormal(rng):
    R = la.orthonormalize(rng.standard_normal((5, 2)))
    D = project_tangent(R, rng.standard_normal((5, 2)))
    R_new = retract(R, D, 0.3)
    assert np.allclose(R_new.T @ R_new, np.eye(2))


# ---------------------------------------------------------------------
# Conjugate gradient
# ---------------------------------------------------------------------


def test_grassmann_cg_finds_minor_subspace(quadratic, rng):
    F, dF, _, eigvals = quadratic
    init = rng.standard_normal((6, 2))
    res = grassmann_cg(F, dF, init, max_iter=500, ftol=1e-14, gradtol=1e-9)
    assert isinstance(res, OptimizeResult)
    assert res.converged
    assert res.n_iter <= 500
    assert np.isclose(res.fun, eigvals[:2].sum(), atol=1e-6)
    assert np.allclose(res.x.T @ res.x, np.eye(2))


def test_grassmann_cg_warns_at_max_iter(quadratic, rng):
    F, dF, _, _ = quadratic
    init = rng.standard_normal((6, 2))
    with pytest.warns(OptimizerNonConvergence):
        res = grassmann_cg(F, dF, init, max_iter=2, ftol=1e-300, gradtol=1e-300)
    assert not res.converged
    assert res.n_iter == 2


def test_grassmann_cg_flags_stalled_line_search():
    init = np.eye(4)[:, :1]
    grad = np.array([[0.0], [3.0], [-2.0], [1.0]])

    def F(R):
        # any move away from the start is uphill despite the steep gradient
        return 0.0 if np.allclose(R, init, atol=0.0, rtol=0.0) else 1.0

    def dF(R):
        return grad

    with pytest.warns(OptimizerNonConvergence, match="line search"):
        res = grassmann_cg(F, dF, init, max_iter=50)
    assert not res.converged
    assert res.n_iter == 1
    assert res.grad_norm > 1.0
    assert np.array_equal(res.x, init)


def test_grassmann_cg_does_not_increase_objective(quadratic, rng):
    F, dF, _, _ = quadratic
    init = la.orthonormalize(rng.standard_normal((6, 3)))
    res = grassmann_cg(F, dF, init, max_iter=50)
    assert res.fun <= F(init) + 1e-12


# ---------------------------------------------------------------------
# Initial basis selection
# ---------------------------------------------------------------------


def test_exhaustive_first_minimum_wins():
    V = np.eye(4)
    values = {0: 3.0, 1: 1.0, 2: 1.0, 3: 2.0}

    def F(R):
        return values[int(np.argmax(R[:, 0]))]

    W, val = best_subset_exhaustive(F, V, 1)
    assert val == 1.0
    assert np.array_equal(W[:, 0], V[:, 1])


def test_exchange_recovers_additive_optimum(rng):
    d = rng.permutation(np.arange(1.0, 9.0))
    V = np.eye(8)

    def F(R):
        return float(np.trace(R.T @ np.diag(d) @ R))

    W, val = best_subset_exchange(F, V, 4)
    assert np.isclose(val, np.sort(d)[:4].sum())
    assert np.isclose(F(W), val)


def test_select_initial_basis_switches_strategy(rng):
    d = rng.permutation(np.arange(1.0, 9.0))

    def F(R):
        return float(np.trace(R.T @ np.diag(d) @ R))

    # C(8, 1) = 8 subsets: exhaustive; C(8, 4) = 70: coordinate exchange
    W1 = select_initial_basis(F, np.eye(8), 1)
    W4 = select_initial_basis(F, np.eye(8), 4)
    assert np.isclose(F(W1), d.min())
    assert np.isclose(F(W4), np.sort(d)[:4].sum())
