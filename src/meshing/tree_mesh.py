"""
TreeMesh: locally refined axis-aligned box mesh in 1D and 2D.

The mesh is a forest of binary (1D) or quad (2D) trees rooted at the cells
of a coarse `repetitions` grid. Only the set of active (leaf) cells is
stored; parents and children are computed from the cell keys.

Indexing Conventions:
- A cell key is a tuple (level, i) in 1D or (level, i, j) in 2D, where the
  integer indices count cells of that level along each axis, starting at
  the lower corner of the domain.
- Children of (l, i, j) are (l+1, 2i+a, 2j+b) for a, b in {0, 1}.
- Vertex keys are integer tuples on the finest representable lattice
  (MAX_LEVEL), so vertices shared between levels compare equal.
- Faces are addressed as (axis, side) with side 0 at the lower coordinate.
  Boundary faces carry ID 2*axis + side when colorized, otherwise ID 0.

Refinement keeps the mesh 2:1 balanced across faces, so a face carries
at most one hanging vertex.
"""

import itertools

import numpy as np

MAX_LEVEL = 24


class TreeMesh:
    def __init__(self, lower, upper, repetitions, colorize=True):
        self.dim = len(lower)
        self.lower = np.asarray(lower, dtype=float)
        self.upper = np.asarray(upper, dtype=float)
        self.repetitions = tuple(int(r) for r in repetitions)
        self.colorize = colorize
        self.coarse_h = (self.upper - self.lower) / np.asarray(self.repetitions, dtype=float)
        self.active = {
            (0,) + idx for idx in itertools.product(*(range(r) for r in self.repetitions))
        }

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    def copy(self):
        other = TreeMesh.__new__(TreeMesh)
        other.dim = self.dim
        other.lower = self.lower.copy()
        other.upper = self.upper.copy()
        other.repetitions = self.repetitions
        other.colorize = self.colorize
        other.coarse_h = self.coarse_h.copy()
        other.active = set(self.active)
        return other

    @classmethod
    def from_active_cells(cls, lower, upper, repetitions, cells, colorize=True):
        """Rebuild a mesh from its persisted list of active cell keys."""
        mesh = cls(lower, upper, repetitions, colorize=colorize)
        mesh.active = {tuple(int(v) for v in c) for c in cells}
        return mesh

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def n_active_cells(self) -> int:
        return len(self.active)

    def sorted_cells(self):
        """Active cells in a deterministic order (by level, then indices)."""
        return sorted(self.active)

    def max_level(self) -> int:
        return max(c[0] for c in self.active)

    def boundary_ids(self):
        return list(range(2 * self.dim)) if self.colorize else [0]

    def boundary_id(self, axis: int, side: int) -> int:
        return 2 * axis + side if self.colorize else 0

    def cell_size(self, level: int) -> np.ndarray:
        return self.coarse_h / 2.0 ** level

    def cell_lower(self, cell) -> np.ndarray:
        return self.lower + np.asarray(cell[1:], dtype=float) * self.cell_size(cell[0])

    def n_cells_per_axis(self, level: int):
        return tuple(r * 2 ** level for r in self.repetitions)

    def vertex_key(self, cell, offset):
        scale = 2 ** (MAX_LEVEL - cell[0])
        return tuple((i + o) * scale for i, o in zip(cell[1:], offset))

    def cell_vertices(self, cell):
        """Vertex keys of a cell in lexicographic order (x fastest)."""
        return [
            self.vertex_key(cell, offset[::-1])
            for offset in itertools.product((0, 1), repeat=self.dim)
        ]

    def vertex_coordinates(self, keys) -> np.ndarray:
        keys = np.asarray(keys, dtype=float).reshape(-1, self.dim)
        return self.lower + keys * (self.coarse_h / 2.0 ** MAX_LEVEL)

    @staticmethod
    def parent(cell):
        return (cell[0] - 1,) + tuple(i // 2 for i in cell[1:])

    def children(self, cell):
        level = cell[0] + 1
        return [
            (level,) + tuple(2 * i + o for i, o in zip(cell[1:], offset[::-1]))
            for offset in itertools.product((0, 1), repeat=self.dim)
        ]

    def same_level_neighbor(self, cell, axis, side):
        """Key of the same-level cell across a face, or None at the boundary."""
        idx = list(cell[1:])
        idx[axis] += 1 if side == 1 else -1
        if idx[axis] < 0 or idx[axis] >= self.n_cells_per_axis(cell[0])[axis]:
            return None
        return (cell[0],) + tuple(idx)

    def active_ancestor(self, cell):
        """Active cell equal to or containing `cell`, or None if it is refined."""
        while cell[0] >= 0:
            if cell in self.active:
                return cell
            if cell[0] == 0:
                return None
            cell = self.parent(cell)
        return None

    def is_refined(self, cell) -> bool:
        return self.active_ancestor(cell) is None

    def face_children(self, cell, axis, side):
        """Children of `cell` that touch its (axis, side) face."""
        return [c for c in self.children(cell) if (c[1 + axis] - 2 * cell[1 + axis]) == side]

    def locate(self, point):
        """Active cell containing `point`; points outside are clamped onto the domain."""
        p = np.clip(np.asarray(point, dtype=float), self.lower, self.upper)
        rel = (p - self.lower) / self.coarse_h
        idx = tuple(
            int(min(max(np.floor(r), 0), n - 1)) for r, n in zip(rel, self.repetitions)
        )
        cell = (0,) + idx
        while cell not in self.active:
            if cell[0] >= MAX_LEVEL:
                raise RuntimeError(f"Point location failed for {point}")
            lo = self.cell_lower(cell)
            mid = lo + 0.5 * self.cell_size(cell[0])
            cell = (cell[0] + 1,) + tuple(
                2 * i + int(pi >= mi) for i, pi, mi in zip(cell[1:], p, mid)
            )
        return cell

    def boundary_faces(self):
        """List of (cell, axis, side, boundary_id) for all faces on the boundary."""
        faces = []
        for cell in self.sorted_cells():
            for axis in range(self.dim):
                for side in (0, 1):
                    if self.same_level_neighbor(cell, axis, side) is None:
                        faces.append((cell, axis, side, self.boundary_id(axis, side)))
        return faces

    def hanging_vertices(self):
        """Map hanging vertex key -> the two vertex keys it interpolates between.

        In 2D a vertex hangs at the midpoint of a coarse cell's face when the
        neighbor across that face is refined. 1D meshes have none.
        """
        hanging = {}
        if self.dim == 1:
            return hanging
        for cell in self.active:
            for axis in range(self.dim):
                for side in (0, 1):
                    nb = self.same_level_neighbor(cell, axis, side)
                    if nb is None or not self.is_refined(nb):
                        continue
                    other = 1 - axis
                    ends = []
                    for t in (0, 1):
                        offset = [0, 0]
                        offset[axis] = side
                        offset[other] = t
                        ends.append(self.vertex_key(cell, offset))
                    mid = tuple((a + b) // 2 for a, b in zip(*ends))
                    hanging[mid] = tuple(ends)
        return hanging

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def refine(self, cells):
        """Replace each given active cell by its children, then restore balance."""
        for cell in cells:
            if cell not in self.active:
                continue
            if cell[0] >= MAX_LEVEL:
                raise ValueError(f"Cell {cell} is at the maximum representable level")
            self.active.remove(cell)
            self.active.update(self.children(cell))
        self.balance()

    def refine_global(self, times: int = 1):
        for _ in range(times):
            self.refine(list(self.active))

    def balance(self):
        """Refine coarse cells until neighbors across faces differ by at most one level."""
        changed = True
        while changed:
            changed = False
            to_refine = set()
            for cell in self.active:
                if cell[0] < 2:
                    continue
                for axis in range(self.dim):
                    for side in (0, 1):
                        nb = self.same_level_neighbor(cell, axis, side)
                        if nb is None:
                            continue
                        owner = self.active_ancestor(nb)
                        if owner is not None and owner[0] < cell[0] - 1:
                            to_refine.add(owner)
            if to_refine:
                changed = True
                for owner in to_refine:
                    self.active.remove(owner)
                    self.active.update(self.children(owner))

    def can_coarsen(self, parent) -> bool:
        """True if all children of `parent` are active and merging keeps balance."""
        if parent[0] < 0:
            return False
        if not all(c in self.active for c in self.children(parent)):
            return False
        for axis in range(self.dim):
            for side in (0, 1):
                nb = self.same_level_neighbor(parent, axis, side)
                if nb is None or not self.is_refined(nb):
                    continue
                for child in self.face_children(nb, axis, 1 - side):
                    if child not in self.active:
                        return False
        return True

    def coarsen(self, parent) -> bool:
        if not self.can_coarsen(parent):
            return False
        for child in self.children(parent):
            self.active.remove(child)
        self.active.add(parent)
        return True
