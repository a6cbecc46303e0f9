"""Solution output: VTK files via pyvista and a 1D solution table via pandas."""

import logging
from pathlib import Path

import numpy as np
import pandas as pd
import pyvista as pv

log = logging.getLogger(__name__)

# VTK node order for a lexicographic (x fastest) Q1 cell
VTK_NODE_ORDER = {1: [0, 1], 2: [0, 1, 3, 2]}
VTK_CELL_TYPE = {1: pv.CellType.LINE, 2: pv.CellType.QUAD}


def to_vtk(mesh_data, values: np.ndarray, name: str = "solution") -> pv.UnstructuredGrid:
    """Build a pyvista grid with the nodal field attached as point data."""
    dim = mesh_data.dim
    points = np.zeros((mesh_data.n_dofs, 3))
    points[:, :dim] = mesh_data.support_points
    conn = mesh_data.cell_dofs[:, VTK_NODE_ORDER[dim]]
    n_nodes = conn.shape[1]
    cells = np.hstack([np.full((conn.shape[0], 1), n_nodes), conn]).ravel()
    cell_types = np.full(conn.shape[0], VTK_CELL_TYPE[dim], dtype=np.uint8)
    grid = pv.UnstructuredGrid(cells, cell_types, points)
    grid.point_data[name] = values
    grid.cell_data["level"] = mesh_data.cell_levels
    return grid


class SolutionWriter:
    """Output sink invoked on output steps.

    Writes solution-<step>.vtk files, and in 1D collects (time, x, u) rows
    for a table written by finalize().
    """

    def __init__(self, directory=".", write_vtk: bool = True, write_table: bool = False,
                 table_file_name: str = "1D_solution_table.txt"):
        self.directory = Path(directory)
        self.write_vtk = write_vtk
        self.write_table = write_table
        self.table_file_name = table_file_name
        self.written = []
        self._rows = []

    def write(self, step_index: int, time: float, field) -> None:
        md = field.mesh_data
        if self.write_vtk:
            self.directory.mkdir(parents=True, exist_ok=True)
            path = self.directory / f"solution-{step_index}.vtk"
            to_vtk(md, field.values).save(path)
            self.written.append(path)
        if self.write_table and md.dim == 1:
            self._rows.append(
                pd.DataFrame(
                    {"step": step_index, "time": time, "x": md.support_points[:, 0], "u": field.values}
                )
            )

    def finalize(self):
        """Write the 1D solution table, if one was collected."""
        if not self._rows:
            return None
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / self.table_file_name
        pd.concat(self._rows, ignore_index=True).to_csv(path, sep="\t", index=False, float_format="%.14e")
        log.info(f"Wrote 1D solution table: {path}")
        return path
