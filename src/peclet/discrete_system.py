"""The discrete system bundle owned by the time integration controller."""

import logging

import numpy as np

from fe.constraints import make_hanging_node_constraints
from fe.field_tools import FEField
from meshing.mesh_data import build_mesh_data

log = logging.getLogger(__name__)


class DiscreteSystem:
    """Mesh, DoF layout, constraints, matrices and vectors of one mesh state.

    Every array is sized by the current DoF layout. Any change to the mesh
    must be followed by setup(), which rebuilds the whole bundle.
    """

    def __init__(self, mesh, assembler):
        self.mesh = mesh
        self.assembler = assembler
        self.mesh_data = None
        self.constraints = None
        self.mass_matrix = None
        self.convection_diffusion_matrix = None
        self.system_matrix = None
        self.solution = None
        self.old_solution = None
        self.system_rhs = None
        self.setup()

    @property
    def n_dofs(self) -> int:
        return self.mesh_data.n_dofs

    @property
    def n_active_cells(self) -> int:
        return self.mesh_data.n_cells

    def setup(self, assemble: bool = True, quiet: bool = False) -> None:
        """Rebuild DoF layout, constraints and vectors; assemble matrices if asked."""
        self.mesh_data = build_mesh_data(self.mesh)
        if not quiet:
            log.info(
                f"Number of active cells: {self.n_active_cells}, "
                f"number of degrees of freedom: {self.n_dofs}"
            )
        self.constraints = make_hanging_node_constraints(self.mesh_data)
        self.solution = np.zeros(self.n_dofs)
        self.old_solution = np.zeros(self.n_dofs)
        self.system_rhs = np.zeros(self.n_dofs)
        self.system_matrix = None
        if assemble:
            self.assemble()
        else:
            self.mass_matrix = None
            self.convection_diffusion_matrix = None

    def assemble(self) -> None:
        self.mass_matrix, self.convection_diffusion_matrix = self.assembler.assemble(self.mesh_data)

    @property
    def is_assembled(self) -> bool:
        return (
            self.mass_matrix is not None
            and self.mass_matrix.shape[0] == self.n_dofs
        )

    def field(self, values=None) -> FEField:
        """FEField view of `values` (default: the current solution)."""
        return FEField(self.mesh, self.mesh_data, self.solution if values is None else values)
