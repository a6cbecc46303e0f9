"""Tests for cell marking, the cell cap and solution transfer."""

import numpy as np
import pytest

from fe.assembly import Assembler
from meshing import TreeMesh, build_mesh_data
from peclet import DiscreteSystem, ParsedExpression, RefinementPolicy
from peclet.datastructures import AdaptiveRefinementParameters


def make_system(mesh):
    dim = mesh.dim
    zero = "; ".join(["0."] * dim)
    assembler = Assembler(
        velocity=ParsedExpression(zero, dim),
        diffusivity=ParsedExpression("1.", dim),
        source=ParsedExpression("0.", dim),
    )
    return DiscreteSystem(mesh, assembler)


def policy(min_level=0, **kwargs):
    defaults = dict(refine_fraction=0.25, coarsen_fraction=0.25, max_level=10, max_cells=0)
    defaults.update(kwargs)
    return RefinementPolicy(AdaptiveRefinementParameters(**defaults), min_level=min_level)


class TestMarking:
    """Tests for fixed-fraction marking."""

    def test_fractions(self, unit_interval_mesh):
        md = build_mesh_data(unit_interval_mesh)
        refine, coarsen = policy().mark(md, np.arange(8.0))
        assert refine == [(3, 7), (3, 6)]
        assert sorted(coarsen) == [(3, 0), (3, 1)]

    def test_fraction_count_is_floored(self, unit_interval_mesh):
        """0.3 of 8 cells flags 2 for refinement."""
        md = build_mesh_data(unit_interval_mesh)
        refine, coarsen = policy(refine_fraction=0.3, coarsen_fraction=0.0).mark(md, np.arange(8.0))
        assert len(refine) == 2
        assert coarsen == []

    def test_thirty_percent_each_way(self):
        """0.3 and 0.3 of 20 cells flag the top 6 and the bottom 6."""
        mesh = TreeMesh([0.0], [1.0], [5])
        mesh.refine_global(2)
        md = build_mesh_data(mesh)
        refine, coarsen = policy(refine_fraction=0.3, coarsen_fraction=0.3).mark(md, np.arange(20.0))
        assert refine == [(2, i) for i in range(19, 13, -1)]
        assert sorted(coarsen) == [(2, i) for i in range(6)]

    def test_max_level_blocks_refinement(self, unit_interval_mesh):
        md = build_mesh_data(unit_interval_mesh)
        refine, _ = policy(max_level=3).mark(md, np.arange(8.0))
        assert refine == []

    def test_min_level_blocks_coarsening(self, unit_interval_mesh):
        md = build_mesh_data(unit_interval_mesh)
        _, coarsen = policy(min_level=3).mark(md, np.arange(8.0))
        assert coarsen == []

    def test_cell_is_never_both(self, unit_interval_mesh):
        """With overlapping fractions a refined cell is not also coarsened."""
        md = build_mesh_data(unit_interval_mesh)
        refine, coarsen = policy(refine_fraction=0.75, coarsen_fraction=0.75).mark(md, np.arange(8.0))
        assert not set(refine) & set(coarsen)


class TestExecution:
    def test_refine_and_coarsen(self, unit_interval_mesh):
        """Sibling pair (3,0), (3,1) merges; (3,6), (3,7) split."""
        RefinementPolicy.execute(unit_interval_mesh, [(3, 7), (3, 6)], [(3, 0), (3, 1)])
        assert (2, 0) in unit_interval_mesh.active
        assert (4, 15) in unit_interval_mesh.active
        assert unit_interval_mesh.n_active_cells == 9

    def test_lone_sibling_is_not_coarsened(self, unit_interval_mesh):
        RefinementPolicy.execute(unit_interval_mesh, [], [(3, 1), (3, 2)])
        assert unit_interval_mesh.n_active_cells == 8

    def test_cap_limits_cells(self, unit_interval_mesh):
        """Lowest-indicator refinement flags are dropped to meet max_cells."""
        p = policy(max_cells=10)
        refine = [(3, 7), (3, 6), (3, 5), (3, 4)]
        capped = p.cap(unit_interval_mesh, refine, [])
        assert capped == [(3, 7), (3, 6)]
        assert unit_interval_mesh.n_active_cells == 8

    def test_no_cap(self, unit_interval_mesh):
        refine = [(3, 7), (3, 6), (3, 5), (3, 4)]
        assert policy(max_cells=0).cap(unit_interval_mesh, refine, []) == refine


class TestApply:
    """Tests for refinement applied to a DiscreteSystem."""

    def test_cell_count_respects_cap(self, unit_interval_mesh):
        system = make_system(unit_interval_mesh)
        policy(refine_fraction=0.5, coarsen_fraction=0.0, max_cells=10).apply(
            system, indicators=np.arange(8.0)
        )
        assert system.n_active_cells == 10
        assert system.n_dofs == 11
        assert system.is_assembled

    def test_linear_transfer_1d(self, unit_interval_mesh):
        system = make_system(unit_interval_mesh)
        system.solution = 3.0 * system.mesh_data.support_points[:, 0] - 1.0
        policy().apply(system, indicators=np.arange(8.0))
        x = system.mesh_data.support_points[:, 0]
        np.testing.assert_allclose(system.solution, 3.0 * x - 1.0)
        np.testing.assert_array_equal(system.old_solution, system.solution)
        assert system.old_solution is not system.solution

    def test_bilinear_transfer_with_hanging_nodes(self, unit_square_mesh):
        system = make_system(unit_square_mesh)
        p = system.mesh_data.support_points
        system.solution = p[:, 0] + 2.0 * p[:, 1] + p[:, 0] * p[:, 1]
        indicators = np.zeros(16)
        indicators[0] = 1.0
        field = policy(refine_fraction=0.1, coarsen_fraction=0.0).apply(system, indicators=indicators)
        assert system.n_active_cells == 19
        assert len(system.mesh_data.hanging) == 2
        p = system.mesh_data.support_points
        np.testing.assert_allclose(system.solution, p[:, 0] + 2.0 * p[:, 1] + p[:, 0] * p[:, 1])
        np.testing.assert_allclose(field.values, system.solution)

    def test_deferred_assembly(self, unit_interval_mesh):
        system = make_system(unit_interval_mesh)
        policy().apply(system, indicators=np.arange(8.0), reassemble=False)
        assert not system.is_assembled
        system.assemble()
        assert system.mass_matrix.shape == (system.n_dofs, system.n_dofs)

    def test_estimator_is_used_without_indicators(self, unit_interval_mesh):
        """|x - 1/2| refines the two cells at the kink."""
        system = make_system(unit_interval_mesh)
        system.solution = np.abs(system.mesh_data.support_points[:, 0] - 0.5)
        policy(refine_fraction=0.25, coarsen_fraction=0.0).apply(system)
        assert (4, 7) in system.mesh.active
        assert (4, 8) in system.mesh.active
