"""Vectorized Q1 finite element assembly on axis-aligned box cells.

All cells are boxes, so the Jacobian of the reference map is the diagonal
matrix of cell sizes. Local matrices for every cell are computed in one
einsum and scattered to global sparse matrices in COO triplet format.
"""

import numpy as np
from scipy.sparse import coo_matrix

from .shape_functions import gauss_rule, shape_gradients, shape_values


def cell_quadrature(mesh_data, n_points: int = 2):
    """Physical quadrature points and JxW values for all cells.

    Returns
    -------
    x_q : np.ndarray
        Points, shape (n_cells, n_q, dim).
    JxW : np.ndarray
        Weights times cell measure, shape (n_cells, n_q).
    xi : np.ndarray
        Reference points, shape (n_q, dim).
    """
    xi, w = gauss_rule(n_points, mesh_data.dim)
    x_q = mesh_data.cell_lower[:, None, :] + xi[None, :, :] * mesh_data.cell_h[:, None, :]
    JxW = np.prod(mesh_data.cell_h, axis=1)[:, None] * w[None, :]
    return x_q, JxW, xi


def _scatter_matrix(mesh_data, local: np.ndarray):
    n_local = local.shape[1]
    rows = np.repeat(mesh_data.cell_dofs, n_local, axis=1)
    cols = np.tile(mesh_data.cell_dofs, (1, n_local))
    n = mesh_data.n_dofs
    return coo_matrix((local.ravel(), (rows.ravel(), cols.ravel())), shape=(n, n)).tocsr()


def _evaluate_at(function, x_q: np.ndarray) -> np.ndarray:
    n_cells, n_q, dim = x_q.shape
    values = np.asarray(function.evaluate(x_q.reshape(-1, dim)))
    return values.reshape((n_cells, n_q) + values.shape[1:])


def create_mass_matrix(mesh_data, n_points: int = 2):
    """M_ij = ∫ φ_i φ_j."""
    x_q, JxW, xi = cell_quadrature(mesh_data, n_points)
    N = shape_values(xi)
    local = np.einsum("cq,qi,qj->cij", JxW, N, N)
    return _scatter_matrix(mesh_data, local)


def create_convection_diffusion_matrix(mesh_data, diffusivity, velocity, n_points: int = 2):
    """(K + C)_ij = ∫ α ∇φ_i·∇φ_j + ∫ φ_i (v·∇φ_j).

    Parameters
    ----------
    mesh_data : MeshData
        DoF layout of the current mesh.
    diffusivity : FieldFunction
        Scalar diffusivity α(x).
    velocity : FieldFunction
        Convection velocity v(x) with `dim` components.
    """
    x_q, JxW, xi = cell_quadrature(mesh_data, n_points)
    N = shape_values(xi)
    G = shape_gradients(xi)
    # physical gradients, shape (n_cells, n_q, n_local, dim)
    grad = G[None, :, :, :] / mesh_data.cell_h[:, None, None, :]

    alpha = _evaluate_at(diffusivity, x_q)
    v = _evaluate_at(velocity, x_q).reshape(x_q.shape)

    stiffness = np.einsum("cq,cqid,cqjd->cij", JxW * alpha, grad, grad)
    convection = np.einsum("cq,qi,cqd,cqjd->cij", JxW, N, v, grad)
    return _scatter_matrix(mesh_data, stiffness + convection)


def create_right_hand_side(mesh_data, function, n_points: int = 2) -> np.ndarray:
    """F_i = ∫ f φ_i."""
    x_q, JxW, xi = cell_quadrature(mesh_data, n_points)
    N = shape_values(xi)
    f = _evaluate_at(function, x_q)
    local = np.einsum("cq,cq,qi->ci", JxW, f, N)
    b = np.zeros(mesh_data.n_dofs)
    np.add.at(b, mesh_data.cell_dofs, local)
    return b


def create_boundary_right_hand_side(mesh_data, function, boundary_id: int, n_points: int = 2):
    """G_i = ∫_Γ g φ_i over the faces carrying `boundary_id`."""
    dim = mesh_data.dim
    b = np.zeros(mesh_data.n_dofs)
    on_boundary = mesh_data.boundary_face_ids == boundary_id
    face_xi, face_w = gauss_rule(n_points, dim - 1)

    for axis in range(dim):
        others = [d for d in range(dim) if d != axis]
        for side in (0, 1):
            faces = np.flatnonzero(
                on_boundary
                & (mesh_data.boundary_face_axis == axis)
                & (mesh_data.boundary_face_side == side)
            )
            if faces.size == 0:
                continue
            xi = np.empty((face_xi.shape[0], dim))
            xi[:, axis] = side
            xi[:, others] = face_xi
            N = shape_values(xi)

            cells = mesh_data.boundary_face_cells[faces]
            h = mesh_data.cell_h[cells]
            x_q = mesh_data.cell_lower[cells][:, None, :] + xi[None, :, :] * h[:, None, :]
            measure = np.prod(h[:, others], axis=1) if others else np.ones(faces.size)
            JxW = measure[:, None] * face_w[None, :]

            g = _evaluate_at(function, x_q)
            local = np.einsum("fq,fq,qi->fi", JxW, g, N)
            np.add.at(b, mesh_data.cell_dofs[cells], local)
    return b


class Assembler:
    """Builds the matrices of one mesh state from the PDE coefficient functions.

    Idempotent: the same mesh data always yields the same matrices.
    """

    def __init__(self, velocity, diffusivity, source, n_points: int = 2):
        self.velocity = velocity
        self.diffusivity = diffusivity
        self.source = source
        self.n_points = n_points

    def assemble(self, mesh_data):
        """Return (mass_matrix, convection_diffusion_matrix)."""
        mass = create_mass_matrix(mesh_data, self.n_points)
        cd = create_convection_diffusion_matrix(
            mesh_data, self.diffusivity, self.velocity, self.n_points
        )
        return mass, cd

    def forcing(self, mesh_data, time: float) -> np.ndarray:
        self.source.set_time(time)
        return create_right_hand_side(mesh_data, self.source, self.n_points)

    def boundary_forcing(self, mesh_data, function, boundary_id: int, time: float) -> np.ndarray:
        function.set_time(time)
        return create_boundary_right_hand_side(mesh_data, function, boundary_id, self.n_points)
