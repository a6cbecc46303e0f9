"""
MeshData: Degree-of-freedom layout for Q1 finite elements on a TreeMesh.

This class holds the static geometry, connectivity and boundary tagging of
the current active mesh as flat NumPy arrays, so that assembly, error
estimation and output can work without walking the tree.

Indexing Conventions:
- Cell-based arrays (cell_lower, cell_h, cell_levels, cell_dofs) use the
  row order of `cells`, which is TreeMesh.sorted_cells().
- cell_dofs[c, k] is the global DoF of local vertex k of cell c; local
  vertices are numbered lexicographically with x fastest, i.e. local
  vertex k has offset bit d equal to (k >> d) & 1 along axis d.
- DoFs are mesh vertices, numbered lexicographically by coordinate with
  x fastest. support_points[i] is the coordinate of DoF i.
- Boundary face arrays (boundary_face_*) have one entry per boundary face.

Hanging Vertices:
- hanging[i] = (a, b) when DoF i sits at the midpoint of a coarse face with
  end-point DoFs a and b.
"""

import numpy as np


class MeshData:
    def __init__(
        self,
        dim,
        cells,
        cell_lower,
        cell_h,
        cell_levels,
        cell_dofs,
        support_points,
        boundary_face_cells,
        boundary_face_axis,
        boundary_face_side,
        boundary_face_ids,
        hanging,
        boundary_ids,
    ):
        self.dim = dim

        # --- Cells ---
        self.cells = cells
        self.cell_index = {c: i for i, c in enumerate(cells)}
        self.cell_lower = cell_lower
        self.cell_h = cell_h
        self.cell_levels = cell_levels

        # --- DoFs ---
        self.cell_dofs = cell_dofs
        self.support_points = support_points

        # --- Boundary ---
        self.boundary_face_cells = boundary_face_cells
        self.boundary_face_axis = boundary_face_axis
        self.boundary_face_side = boundary_face_side
        self.boundary_face_ids = boundary_face_ids
        self.boundary_ids = boundary_ids

        # --- Constraints ---
        self.hanging = hanging

    @property
    def n_cells(self) -> int:
        return len(self.cells)

    @property
    def n_dofs(self) -> int:
        return self.support_points.shape[0]

    def face_dofs(self, face: int) -> np.ndarray:
        """DoFs on boundary face `face` (local vertices with bit axis == side)."""
        axis = self.boundary_face_axis[face]
        side = self.boundary_face_side[face]
        local = [k for k in range(2 ** self.dim) if (k >> axis) & 1 == side]
        return self.cell_dofs[self.boundary_face_cells[face], local]

    def boundary_dofs(self, boundary_id: int) -> np.ndarray:
        faces = np.flatnonzero(self.boundary_face_ids == boundary_id)
        if faces.size == 0:
            return np.zeros(0, dtype=np.int64)
        return np.unique(np.concatenate([self.face_dofs(f) for f in faces]))


def build_mesh_data(mesh) -> MeshData:
    """Number the DoFs of `mesh` and precompute the arrays used by assembly."""
    cells = mesh.sorted_cells()
    n_cells = len(cells)
    n_local = 2 ** mesh.dim

    cell_vertex_keys = [mesh.cell_vertices(c) for c in cells]
    keys = sorted({k for vs in cell_vertex_keys for k in vs}, key=lambda k: k[::-1])
    vertex_index = {k: i for i, k in enumerate(keys)}

    cell_dofs = np.empty((n_cells, n_local), dtype=np.int64)
    for c, vs in enumerate(cell_vertex_keys):
        cell_dofs[c] = [vertex_index[k] for k in vs]

    levels = np.array([c[0] for c in cells], dtype=np.int64)
    cell_h = mesh.coarse_h[None, :] / (2.0 ** levels)[:, None]
    cell_lower = mesh.lower[None, :] + np.array([c[1:] for c in cells], dtype=float) * cell_h

    faces = mesh.boundary_faces()
    index = {c: i for i, c in enumerate(cells)}
    boundary_face_cells = np.array([index[f[0]] for f in faces], dtype=np.int64)
    boundary_face_axis = np.array([f[1] for f in faces], dtype=np.int64)
    boundary_face_side = np.array([f[2] for f in faces], dtype=np.int64)
    boundary_face_ids = np.array([f[3] for f in faces], dtype=np.int64)

    hanging = {
        vertex_index[mid]: (vertex_index[a], vertex_index[b])
        for mid, (a, b) in mesh.hanging_vertices().items()
    }

    return MeshData(
        dim=mesh.dim,
        cells=cells,
        cell_lower=cell_lower,
        cell_h=cell_h,
        cell_levels=levels,
        cell_dofs=cell_dofs,
        support_points=mesh.vertex_coordinates(keys),
        boundary_face_cells=boundary_face_cells,
        boundary_face_axis=boundary_face_axis,
        boundary_face_side=boundary_face_side,
        boundary_face_ids=boundary_face_ids,
        hanging=hanging,
        boundary_ids=mesh.boundary_ids(),
    )
