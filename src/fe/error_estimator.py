"""Kelly gradient-jump error indicator for Q1 fields."""

import numpy as np

from .field_tools import FEField
from .shape_functions import gauss_rule


def kelly_error_estimator(mesh, mesh_data, solution: np.ndarray, n_points: int = 2) -> np.ndarray:
    """Per-cell error indicator from jumps of the normal derivative across faces.

    η_K² = Σ_F h_K/24 ∫_F [∂u/∂n]², summed over the interior faces F of K.
    Boundary faces contribute nothing.

    Parameters
    ----------
    mesh : TreeMesh
        Active mesh.
    mesh_data : MeshData
        DoF layout of `mesh`.
    solution : np.ndarray
        Nodal values, length n_dofs.
    n_points : int
        Gauss points per face direction.

    Returns
    -------
    np.ndarray
        η_K for every cell, in mesh_data.cells order.
    """
    dim = mesh_data.dim
    field = FEField(mesh, mesh_data, solution)
    eta2 = np.zeros(mesh_data.n_cells)
    diameter = np.linalg.norm(mesh_data.cell_h, axis=1)
    face_xi, face_w = gauss_rule(n_points, dim - 1)

    for axis in range(dim):
        others = [d for d in range(dim) if d != axis]
        for side in (0, 1):
            cells = np.array(
                [
                    i
                    for i, c in enumerate(mesh_data.cells)
                    if mesh.same_level_neighbor(c, axis, side) is not None
                ],
                dtype=np.int64,
            )
            if cells.size == 0:
                continue
            xi = np.empty((face_xi.shape[0], dim))
            xi[:, axis] = side
            xi[:, others] = face_xi
            n_q = xi.shape[0]

            h = mesh_data.cell_h[cells]
            x = mesh_data.cell_lower[cells][:, None, :] + xi[None, :, :] * h[:, None, :]
            x = x.reshape(-1, dim)
            own = np.repeat(cells, n_q)

            # step a small distance through the face to find the neighbor cell
            shift = np.zeros(dim)
            shift[axis] = 1.0 if side == 1 else -1.0
            outside = x + 1e-6 * shift * np.repeat(h[:, axis], n_q)[:, None]
            neighbor = field.locate_cells(outside)

            jump = field.gradient(x, own)[:, axis] - field.gradient(x, neighbor)[:, axis]
            measure = np.prod(h[:, others], axis=1) if others else np.ones(cells.size)
            integral = np.sum((jump.reshape(-1, n_q) ** 2) * face_w[None, :], axis=1) * measure
            eta2[cells] += diameter[cells] / 24.0 * integral

    return np.sqrt(eta2)
