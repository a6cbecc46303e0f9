"""Box meshes with local refinement and their Q1 degree-of-freedom layout."""

from .tree_mesh import TreeMesh
from .mesh_data import MeshData, build_mesh_data
from .grid_generator import create_coarse_grid, refine_mesh_near_boundaries

__all__ = [
    "TreeMesh",
    "MeshData",
    "build_mesh_data",
    "create_coarse_grid",
    "refine_mesh_near_boundaries",
]
