"""Affine constraints: hanging-node condensation and Dirichlet elimination."""

import numpy as np
from scipy.sparse import csr_matrix, diags


class AffineConstraints:
    """Homogeneous linear constraints x_i = Σ_j w_ij x_j.

    Lines are added with add_line() and resolved with close(), after which
    no constraint refers to another constrained DoF.
    """

    def __init__(self, n_dofs: int):
        self.n_dofs = n_dofs
        self.lines = {}
        self.closed = False
        self._P = None

    def add_line(self, dof: int, entries) -> None:
        """Constrain `dof` to Σ weight * x[master] for (master, weight) in entries."""
        self.lines[int(dof)] = [(int(m), float(w)) for m, w in entries]
        self.closed = False

    def is_constrained(self, dof: int) -> bool:
        return dof in self.lines

    @property
    def constrained_dofs(self) -> np.ndarray:
        return np.array(sorted(self.lines), dtype=np.int64)

    def close(self) -> "AffineConstraints":
        """Resolve chains of constraints and build the distribution matrix."""
        resolved = {}

        def resolve(dof, depth=0):
            if dof in resolved:
                return resolved[dof]
            if depth > len(self.lines):
                raise ValueError(f"Cyclic constraint involving DoF {dof}")
            out = {}
            for master, weight in self.lines[dof]:
                if master in self.lines:
                    for m, w in resolve(master, depth + 1).items():
                        out[m] = out.get(m, 0.0) + weight * w
                else:
                    out[master] = out.get(master, 0.0) + weight
            resolved[dof] = out
            return out

        for dof in self.lines:
            resolve(dof)
        self.lines = {d: sorted(entries.items()) for d, entries in resolved.items()}

        # P maps unconstrained values to the full vector: x = P x
        rows, cols, vals = [], [], []
        constrained = set(self.lines)
        for i in range(self.n_dofs):
            if i not in constrained:
                rows.append(i)
                cols.append(i)
                vals.append(1.0)
        for dof, entries in self.lines.items():
            for master, weight in entries:
                rows.append(dof)
                cols.append(master)
                vals.append(weight)
        self._P = csr_matrix((vals, (rows, cols)), shape=(self.n_dofs, self.n_dofs))
        self.closed = True
        return self

    @property
    def distribution_matrix(self):
        if not self.closed:
            self.close()
        return self._P

    def condense(self, A, b):
        """Return condensed (A, b).

        Constrained rows and columns are eliminated; their diagonal is set to
        the average diagonal of the remaining rows and their RHS to zero.
        """
        if not self.lines:
            return A.tocsr(), b.copy()
        P = self.distribution_matrix
        A_c = (P.T @ A @ P).tocsr()
        b_c = P.T @ b
        constrained = self.constrained_dofs
        free = np.ones(self.n_dofs, dtype=bool)
        free[constrained] = False
        diag = A_c.diagonal()
        average = np.mean(np.abs(diag[free])) if free.any() else 1.0
        fill = np.zeros(self.n_dofs)
        fill[constrained] = average if average != 0.0 else 1.0
        A_c = (A_c + diags(fill)).tocsr()
        b_c[constrained] = 0.0
        return A_c, b_c

    def distribute(self, x: np.ndarray) -> np.ndarray:
        """Set constrained entries of `x` from their masters (in place)."""
        if self.lines:
            x[:] = self.distribution_matrix @ x
        return x


def make_hanging_node_constraints(mesh_data) -> AffineConstraints:
    """Constrain each hanging vertex to the mean of its coarse face end points."""
    constraints = AffineConstraints(mesh_data.n_dofs)
    for dof, (a, b) in mesh_data.hanging.items():
        constraints.add_line(dof, [(a, 0.5), (b, 0.5)])
    return constraints.close()


def apply_boundary_values(boundary_values: dict, A, x: np.ndarray, b: np.ndarray):
    """Eliminate Dirichlet DoFs from A x = b, keeping A symmetric if it was.

    Each prescribed row and column is zeroed except the diagonal, which keeps
    its value (or the first nonzero diagonal entry if it was zero). The RHS
    of other rows is corrected by the eliminated column.

    Returns
    -------
    A, x, b : tuple
        New matrix and updated copies of x and b.
    """
    A = A.tocsr()
    x = x.copy()
    b = b.copy()
    if not boundary_values:
        return A, x, b

    dofs = np.fromiter(boundary_values.keys(), dtype=np.int64)
    values = np.fromiter(boundary_values.values(), dtype=float)
    n = A.shape[0]

    diag = A.diagonal()
    nonzero = diag[diag != 0.0]
    first_nonzero = nonzero[0] if nonzero.size else 1.0
    d = diag[dofs].copy()
    d[d == 0.0] = first_nonzero

    column = np.zeros(n)
    column[dofs] = values
    b -= A @ column

    keep = np.ones(n)
    keep[dofs] = 0.0
    K = diags(keep)
    new_diag = np.zeros(n)
    new_diag[dofs] = d
    A = (K @ A @ K + diags(new_diag)).tocsr()
    A.eliminate_zeros()

    b[dofs] = d * values
    x[dofs] = values
    return A, x, b
