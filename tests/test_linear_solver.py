"""Tests for the preconditioned Krylov solver wrapper."""

import numpy as np
import pytest
from scipy.sparse import diags, kron, identity
from scipy.sparse.linalg import spsolve

from fe.linear_solvers import LinearSolverError, make_preconditioner, scipy_solver
from peclet import ConvergenceError


class TestScipySolver:
    @pytest.mark.parametrize("preconditioner", ["ssor", "jacobi", "amg", "none"])
    def test_cg_matches_direct_solve(self, laplacian_1d, preconditioner):
        b = np.linspace(1.0, 2.0, laplacian_1d.shape[0])
        x, iterations = scipy_solver(
            laplacian_1d, b, tolerance=1e-12, max_iterations=500, preconditioner=preconditioner
        )
        np.testing.assert_allclose(x, spsolve(laplacian_1d.tocsc(), b), rtol=1e-8)
        assert iterations >= 1

    def test_bicgstab_nonsymmetric(self, laplacian_1d):
        n = laplacian_1d.shape[0]
        A = (laplacian_1d + diags([-0.3 * np.ones(n - 1), 0.3 * np.ones(n - 1)], [-1, 1])).tocsr()
        b = np.ones(n)
        x, _ = scipy_solver(A, b, method="BiCGStab", tolerance=1e-12)
        np.testing.assert_allclose(A @ x, b, atol=1e-9)

    def test_exact_initial_guess_takes_zero_iterations(self, laplacian_1d):
        """Zero iterations is the steady-state signal."""
        b = np.ones(laplacian_1d.shape[0])
        exact = spsolve(laplacian_1d.tocsc(), b)
        x, iterations = scipy_solver(laplacian_1d, b, x0=exact, tolerance=1e-8)
        assert iterations == 0
        np.testing.assert_array_equal(x, exact)

    def test_zero_rhs_takes_zero_iterations(self, laplacian_1d):
        x, iterations = scipy_solver(laplacian_1d, np.zeros(laplacian_1d.shape[0]))
        assert iterations == 0
        assert not x.any()

    def test_normalized_tolerance(self, laplacian_1d):
        """Scaling b by 1e6 does not change the iteration count."""
        b = np.linspace(1.0, 2.0, laplacian_1d.shape[0])
        _, small = scipy_solver(laplacian_1d, b, tolerance=1e-8, normalize_tolerance=True)
        _, large = scipy_solver(laplacian_1d, 1e6 * b, tolerance=1e-8, normalize_tolerance=True)
        assert small == large

    def test_non_convergence_raises(self):
        n = 20
        T = diags([-np.ones(n - 1), 2.0 * np.ones(n), -np.ones(n - 1)], [-1, 0, 1])
        A = (kron(T, identity(n)) + kron(identity(n), T)).tocsr()
        with pytest.raises(LinearSolverError) as excinfo:
            scipy_solver(A, np.ones(n * n), tolerance=1e-14, max_iterations=2, preconditioner="none")
        assert excinfo.value.iterations == 2
        assert excinfo.value.residual > 1e-14

    def test_convergence_error_is_a_solver_error(self):
        """Callers catching LinearSolverError also catch the run-level error."""
        assert issubclass(ConvergenceError, LinearSolverError)
        assert issubclass(ConvergenceError, RuntimeError)

    def test_unknown_method_and_preconditioner(self, laplacian_1d):
        b = np.ones(laplacian_1d.shape[0])
        with pytest.raises(ValueError):
            scipy_solver(laplacian_1d, b, method="GMRES")
        with pytest.raises(ValueError):
            make_preconditioner(laplacian_1d, "ilu")


def test_ssor_is_symmetric(laplacian_1d):
    """SSOR applied to a symmetric matrix is a symmetric operator."""
    M = make_preconditioner(laplacian_1d, "ssor")
    n = laplacian_1d.shape[0]
    dense = np.column_stack([M.matvec(e) for e in np.eye(n)])
    np.testing.assert_allclose(dense, dense.T, atol=1e-12)
