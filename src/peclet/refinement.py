"""Adaptive refinement: fixed-fraction marking, capping and solution transfer."""

import logging

import numpy as np

from fe.error_estimator import kelly_error_estimator
from fe.field_tools import FEField

log = logging.getLogger(__name__)


class RefinementPolicy:
    """Selects cells to refine and coarsen, and applies the change to a DiscreteSystem.

    Parameters
    ----------
    params : AdaptiveRefinementParameters
        Fractions and caps.
    min_level : int
        Cells are never coarsened below this level.
    estimator : callable
        estimator(mesh, mesh_data, solution) -> per-cell indicator.
    """

    def __init__(self, params, min_level: int = 0, estimator=kelly_error_estimator):
        self.params = params
        self.min_level = min_level
        self.estimator = estimator

    # ------------------------------------------------------------------
    # Marking
    # ------------------------------------------------------------------

    def mark(self, mesh_data, indicators: np.ndarray):
        """Flag the top refine_fraction and bottom coarsen_fraction of cells.

        Returns
        -------
        refine : list
            Cell keys to refine, highest indicator first.
        coarsen : list
            Cell keys to coarsen.
        """
        indicators = np.asarray(indicators, dtype=float)
        n = indicators.size
        n_refine = int(self.params.refine_fraction * n)
        n_coarsen = int(self.params.coarsen_fraction * n)

        descending = np.argsort(-indicators, kind="stable")
        top = descending[:n_refine]
        refine_idx = [i for i in top if mesh_data.cell_levels[i] < self.params.max_level]

        flagged = set(top.tolist())
        ascending = descending[::-1]
        bottom = [i for i in ascending[:n_coarsen] if i not in flagged]
        coarsen_idx = [i for i in bottom if mesh_data.cell_levels[i] > self.min_level]

        cells = mesh_data.cells
        return [cells[i] for i in refine_idx], [cells[i] for i in coarsen_idx]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    @staticmethod
    def execute(mesh, refine, coarsen) -> None:
        """Refine then coarsen `mesh` in place.

        A parent is restored only when all of its children are flagged,
        still active, and merging them keeps the 2:1 balance.
        """
        mesh.refine(refine)
        flagged = set(coarsen)
        parents = {mesh.parent(c) for c in flagged if c in mesh.active and c[0] > 0}
        for parent in sorted(parents, key=lambda p: -p[0]):
            if all(child in flagged for child in mesh.children(parent)):
                mesh.coarsen(parent)

    def cap(self, mesh, refine, coarsen):
        """Thin refinement flags, lowest indicators first, until max_cells holds."""
        max_cells = self.params.max_cells
        if max_cells <= 0:
            return refine

        def projected(k):
            trial = mesh.copy()
            self.execute(trial, refine[:k], coarsen)
            return trial.n_active_cells

        if projected(len(refine)) <= max_cells:
            return refine

        lo, hi = 0, len(refine)
        while lo < hi:
            mid = (lo + hi + 1) // 2
            if projected(mid) <= max_cells:
                lo = mid
            else:
                hi = mid - 1
        log.info(f"Refinement capped at {max_cells} cells: {lo} of {len(refine)} cells refined")
        return refine[:lo]

    def apply(self, system, indicators=None, reassemble: bool = True) -> FEField:
        """Refine/coarsen system.mesh, rebuild the system and transfer the solution.

        The solution is interpolated onto the new mesh, not re-solved, and is
        copied into both solution and old_solution.

        Returns
        -------
        FEField
            The transferred solution on the new mesh.
        """
        old_field = FEField(system.mesh.copy(), system.mesh_data, system.solution.copy())
        if indicators is None:
            indicators = self.estimator(system.mesh, system.mesh_data, system.solution)

        refine, coarsen = self.mark(system.mesh_data, indicators)
        refine = self.cap(system.mesh, refine, coarsen)
        n_before = system.n_active_cells
        self.execute(system.mesh, refine, coarsen)

        system.setup(assemble=reassemble)
        values = old_field.evaluate(system.mesh_data.support_points)
        system.constraints.distribute(values)
        system.solution = values
        system.old_solution = values.copy()

        log.info(
            f"Adaptive refinement: {len(refine)} refined, {len(coarsen)} flagged for coarsening, "
            f"{n_before} -> {system.n_active_cells} cells"
        )
        return system.field()
