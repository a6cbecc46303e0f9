"""Finite element fields: point evaluation, interpolation and persistence.

A field is the triple (mesh, DoF layout, solution vector). Persisted
fields are stored with pandas in HDF5 so that a later run can load them
as initial values.
"""

import logging
from pathlib import Path

import numpy as np
import pandas as pd

from meshing.mesh_data import build_mesh_data
from meshing.tree_mesh import TreeMesh

from .shape_functions import shape_gradients, shape_values

log = logging.getLogger(__name__)


class FEField:
    """Q1 field on a TreeMesh.

    Evaluation at a point uses the polynomial of the active cell containing
    it. Points outside the mesh use the cell nearest to them, so the
    field extrapolates instead of failing.
    """

    def __init__(self, mesh: TreeMesh, mesh_data, values: np.ndarray):
        if values.shape[0] != mesh_data.n_dofs:
            raise ValueError(
                f"Field has {values.shape[0]} values for {mesh_data.n_dofs} DoFs"
            )
        self.mesh = mesh
        self.mesh_data = mesh_data
        self.values = values

    @property
    def dim(self) -> int:
        return self.mesh.dim

    def bounding_box(self):
        return self.mesh.lower.copy(), self.mesh.upper.copy()

    def locate_cells(self, points: np.ndarray) -> np.ndarray:
        points = np.asarray(points, dtype=float).reshape(-1, self.dim)
        index = self.mesh_data.cell_index
        return np.array([index[self.mesh.locate(p)] for p in points], dtype=np.int64)

    def _reference_coordinates(self, points, cells):
        points = np.asarray(points, dtype=float).reshape(-1, self.dim)
        if cells is None:
            cells = self.locate_cells(points)
        md = self.mesh_data
        xi = (points - md.cell_lower[cells]) / md.cell_h[cells]
        return xi, cells

    def evaluate(self, points: np.ndarray, cells=None) -> np.ndarray:
        """Field values at points, shape (n_points,)."""
        xi, cells = self._reference_coordinates(points, cells)
        if xi.shape[0] == 0:
            return np.zeros(0)
        N = shape_values(xi)
        local = self.values[self.mesh_data.cell_dofs[cells]]
        return np.sum(N * local, axis=1)

    def gradient(self, points: np.ndarray, cells=None) -> np.ndarray:
        """Field gradients at points, shape (n_points, dim)."""
        xi, cells = self._reference_coordinates(points, cells)
        if xi.shape[0] == 0:
            return np.zeros((0, self.dim))
        G = shape_gradients(xi)
        local = self.values[self.mesh_data.cell_dofs[cells]]
        return np.einsum("pi,pid->pd", local, G) / self.mesh_data.cell_h[cells]


def interpolate(mesh_data, function) -> np.ndarray:
    """Nodal interpolation of `function` at the DoF support points."""
    return np.asarray(function.evaluate(mesh_data.support_points), dtype=float).reshape(-1)


def interpolate_boundary_values(mesh_data, function, boundary_id: int) -> dict:
    """Map DoF -> function value for the DoFs on `boundary_id`."""
    dofs = mesh_data.boundary_dofs(boundary_id)
    if dofs.size == 0:
        return {}
    values = np.asarray(function.evaluate(mesh_data.support_points[dofs]), dtype=float)
    return dict(zip(dofs.tolist(), values.reshape(-1).tolist()))


# =============================================================================
# Persistence
# =============================================================================


def save_field(path, field: FEField) -> Path:
    """Write mesh, DoF support points and solution to an HDF5 file.

    Returns the path, which serves as the handle for load_field().
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    mesh = field.mesh
    axes = "xyz"[: mesh.dim]

    cells = pd.DataFrame(
        np.array(mesh.sorted_cells(), dtype=np.int64),
        columns=["level"] + [f"i{a}" for a in axes],
    )
    geometry = pd.DataFrame(
        [
            {
                **{f"lower_{a}": mesh.lower[d] for d, a in enumerate(axes)},
                **{f"upper_{a}": mesh.upper[d] for d, a in enumerate(axes)},
                **{f"repetitions_{a}": mesh.repetitions[d] for d, a in enumerate(axes)},
                "colorize": bool(mesh.colorize),
            }
        ]
    )
    solution = pd.DataFrame(field.mesh_data.support_points, columns=list(axes))
    solution["u"] = field.values

    with pd.HDFStore(path, mode="w", complevel=5) as store:
        store["cells"] = cells
        store["geometry"] = geometry
        store["solution"] = solution
    log.info(f"Saved field with {len(field.values)} DoFs to {path}")
    return path


def load_field(path) -> FEField:
    """Rebuild the FEField written by save_field()."""
    path = Path(path)
    with pd.HDFStore(path, mode="r") as store:
        cells = store["cells"]
        geometry = store["geometry"].iloc[0]
        solution = store["solution"]

    dim = cells.shape[1] - 1
    axes = "xyz"[:dim]
    mesh = TreeMesh.from_active_cells(
        lower=[geometry[f"lower_{a}"] for a in axes],
        upper=[geometry[f"upper_{a}"] for a in axes],
        repetitions=[int(geometry[f"repetitions_{a}"]) for a in axes],
        cells=cells.to_numpy(),
        colorize=bool(geometry["colorize"]),
    )
    mesh_data = build_mesh_data(mesh)
    if mesh_data.n_dofs != len(solution):
        raise ValueError(
            f"{path} holds {len(solution)} values but its mesh has {mesh_data.n_dofs} DoFs"
        )
    log.info(f"Loaded field with {mesh_data.n_dofs} DoFs from {path}")
    return FEField(mesh, mesh_data, solution["u"].to_numpy(dtype=float))
