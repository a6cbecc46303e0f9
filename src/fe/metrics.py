"""Error norms against exact solutions, and formatting helpers."""

from __future__ import annotations

import numpy as np

from .assembly import cell_quadrature
from .shape_functions import shape_values


# -----------------------------------------------------------------------------
# Norms / errors
# -----------------------------------------------------------------------------


def integrate_difference(mesh_data, solution: np.ndarray, exact, norm: str = "L2",
                         n_points: int = 3) -> np.ndarray:
    """Per-cell norm of (u_h - u), using QGauss(n_points).

    Parameters
    ----------
    mesh_data : MeshData
        DoF layout.
    solution : np.ndarray
        Nodal values of u_h.
    exact : FieldFunction
        Exact solution, already set to the evaluation time.
    norm : str
        "L2" or "L1".

    Returns
    -------
    np.ndarray
        One value per cell. Combine with l2 (for L2) or l1 (for L1) norms.
    """
    x_q, JxW, xi = cell_quadrature(mesh_data, n_points)
    N = shape_values(xi)
    u_h = np.einsum("qi,ci->cq", N, solution[mesh_data.cell_dofs])
    u = np.asarray(exact.evaluate(x_q.reshape(-1, mesh_data.dim))).reshape(u_h.shape)
    diff = np.abs(u_h - u)
    if norm == "L2":
        return np.sqrt(np.sum(JxW * diff ** 2, axis=1))
    if norm == "L1":
        return np.sum(JxW * diff, axis=1)
    raise ValueError(f"Unknown norm '{norm}'")


def global_errors(mesh_data, solution: np.ndarray, exact) -> tuple[float, float]:
    """(L1, L2) errors over the whole domain."""
    l1 = float(np.sum(integrate_difference(mesh_data, solution, exact, "L1")))
    l2 = float(np.linalg.norm(integrate_difference(mesh_data, solution, exact, "L2")))
    return l1, l2


def observed_order(h: np.ndarray, errors: np.ndarray) -> float:
    """Least-squares slope of log(error) against log(h)."""
    h = np.asarray(h, dtype=float)
    errors = np.asarray(errors, dtype=float)
    mask = (h > 0) & (errors > 0)
    if mask.sum() < 2:
        return float("nan")
    slope, _ = np.polyfit(np.log(h[mask]), np.log(errors[mask]), 1)
    return float(slope)


# -----------------------------------------------------------------------------
# Formatting helpers
# -----------------------------------------------------------------------------


def format_dt_latex(dt: float | str) -> str:
    """Format a timestep value as LaTeX scientific notation."""
    if dt == "?":
        return "?"

    dt_str = f"{float(dt):.2e}"
    mantissa, exp = dt_str.split("e")
    exp_int = int(exp)
    return rf"{mantissa} \times 10^{{{exp_int}}}"
