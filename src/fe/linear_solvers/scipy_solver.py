"""Scipy-based linear solver using CG or BiCGSTAB."""

import logging

import numpy as np
import pyamg
from scipy.sparse import csr_matrix, diags, tril, triu
from scipy.sparse.linalg import LinearOperator, bicgstab, cg, spsolve_triangular

log = logging.getLogger(__name__)

KRYLOV_METHODS = {"CG": cg, "BiCGStab": bicgstab}


class LinearSolverError(RuntimeError):
    """Krylov solve did not reach the tolerance within max_iterations."""

    def __init__(self, message: str, iterations: int = 0, residual: float = float("nan")):
        super().__init__(message)
        self.iterations = iterations
        self.residual = residual


def make_preconditioner(A_csr: csr_matrix, name: str = "ssor", omega: float = 1.0):
    """Return a LinearOperator applying M^-1, or None for no preconditioning.

    Parameters
    ----------
    A_csr : csr_matrix
        System matrix; its diagonal must be nonzero.
    name : str
        "ssor", "jacobi", "amg" or "none".
    omega : float
        SSOR relaxation parameter.
    """
    if name == "none":
        return None
    if name == "amg":
        ml = pyamg.smoothed_aggregation_solver(A_csr, max_coarse=10)
        return ml.aspreconditioner()
    diagonal = A_csr.diagonal()
    if np.any(diagonal == 0.0):
        raise ValueError("Preconditioner needs a nonzero diagonal")
    n = A_csr.shape[0]

    if name == "jacobi":
        return LinearOperator((n, n), matvec=lambda r: r / diagonal, dtype=float)

    if name == "ssor":
        D = diags(diagonal / omega)
        lower = (D + tril(A_csr, k=-1)).tocsr()
        upper = (D + triu(A_csr, k=1)).tocsr()
        scale = (2.0 - omega) / omega

        def apply(r):
            y = spsolve_triangular(lower, np.ravel(r), lower=True)
            y = scale * (diagonal / omega) * y
            return spsolve_triangular(upper, y, lower=False)

        return LinearOperator((n, n), matvec=apply, dtype=float)

    raise ValueError(f"Unknown preconditioner '{name}'")


def scipy_solver(
    A_csr: csr_matrix,
    b_np: np.ndarray,
    x0=None,
    method="CG",
    tolerance=1e-8,
    max_iterations=1000,
    normalize_tolerance=False,
    preconditioner="ssor",
):
    """Solve A x = b with a preconditioned Krylov method.

    Parameters
    ----------
    A_csr : csr_matrix
        Sparse matrix in CSR format.
    b_np : np.ndarray
        Right-hand side vector.
    x0 : np.ndarray, optional
        Initial guess (default: zeros).
    method : str, optional
        "CG" or "BiCGStab" (default: "CG").
    tolerance : float, optional
        Absolute tolerance on the residual l2 norm (default: 1e-8).
    max_iterations : int, optional
        Maximum iterations (default: 1000).
    normalize_tolerance : bool, optional
        If True, the tolerance is multiplied by ||b||.
    preconditioner : str, optional
        "ssor", "jacobi", "amg" or "none" (default: "ssor").

    Returns
    -------
    x_np : np.ndarray
        Solution vector.
    iterations : int
        Iterations taken. Zero means the initial guess already met the
        tolerance.

    Raises
    ------
    LinearSolverError
        If the tolerance is not met within max_iterations.
    """
    if method not in KRYLOV_METHODS:
        raise ValueError(f"Unknown solver method '{method}'")

    A = csr_matrix(A_csr)
    b = np.asarray(b_np, dtype=float)
    x0 = np.zeros_like(b) if x0 is None else np.asarray(x0, dtype=float).copy()

    atol = tolerance
    if normalize_tolerance:
        atol *= np.linalg.norm(b)

    # Zero iterations when the initial guess is already good enough
    initial_residual = np.linalg.norm(b - A @ x0)
    if initial_residual < atol or initial_residual == 0.0:
        return x0, 0

    iterations = 0

    def count(_xk):
        nonlocal iterations
        iterations += 1

    M = make_preconditioner(A, preconditioner)
    x, info = KRYLOV_METHODS[method](
        A, b, x0=x0, rtol=0.0, atol=atol, maxiter=max_iterations, M=M, callback=count
    )

    if info != 0:
        residual = float(np.linalg.norm(b - A @ x))
        raise LinearSolverError(
            f"{method} did not converge in {max_iterations} iterations "
            f"(residual {residual:.3e}, tolerance {atol:.3e}, info={info})",
            iterations=iterations,
            residual=residual,
        )

    log.debug(f"{method} converged in {iterations} iterations")
    return x, max(iterations, 1)
