"""Coarse grid generation and initial refinement routines."""

import logging

from .tree_mesh import TreeMesh

log = logging.getLogger(__name__)


def create_coarse_grid(geometry) -> TreeMesh:
    """Create the coarse box mesh described by GeometryParameters."""
    lower, upper = geometry.bounds()
    mesh = TreeMesh(lower, upper, geometry.cells_per_axis(), colorize=geometry.colorize)
    log.info(
        f"Coarse grid '{geometry.grid_name}': {lower} -> {upper}, "
        f"{mesh.n_active_cells} cells, boundary IDs {mesh.boundary_ids()}"
    )
    return mesh


def refine_mesh_near_boundaries(mesh: TreeMesh, boundary_ids, cycles: int) -> TreeMesh:
    """Refine every cell touching one of `boundary_ids`, `cycles` times."""
    boundary_ids = set(boundary_ids)
    if not boundary_ids:
        return mesh
    for _ in range(cycles):
        flagged = {cell for cell, _, _, bid in mesh.boundary_faces() if bid in boundary_ids}
        mesh.refine(flagged)
    return mesh
