"""Tests for the time state and the theta-scheme building blocks."""

import numpy as np
import pytest
from scipy.sparse import diags

from peclet.controller import (
    TimeState,
    build_explicit_rhs,
    build_system_matrix,
    is_output_step,
    periodic_refinement_due,
    theta_weighted,
)


@pytest.fixture
def matrices():
    n = 6
    mass = diags([np.full(n - 1, 1.0), np.full(n, 4.0), np.full(n - 1, 1.0)], [-1, 0, 1]).tocsr()
    cd = diags([np.full(n - 1, -1.5), np.full(n, 2.0), np.full(n - 1, -0.5)], [-1, 0, 1]).tocsr()
    return mass, cd


class TestTimeState:
    """Tests for time = step_size * step_index."""

    def test_time_is_product_after_many_steps(self):
        """Time has no accumulated drift after 10000 steps."""
        ts = TimeState(step_size=0.1, theta=0.5)
        for _ in range(10000):
            ts.advance()
        assert ts.step_index == 10000
        assert ts.current_time == 0.1 * 10000
        assert ts.previous_time == 0.1 * 9999

    def test_reset(self):
        """Reset returns to step 0 at t = 0."""
        ts = TimeState(step_size=0.25, theta=1.0)
        ts.advance()
        ts.advance()
        ts.reset()
        assert ts.step_index == 0
        assert ts.current_time == 0.0


class TestSchedules:
    """Tests for the output and periodic refinement schedules."""

    def test_interval_one_outputs_every_step(self):
        """Interval 1 writes every step."""
        assert all(is_output_step(i, 1, final=False) for i in range(1, 50))

    def test_interval_zero_outputs_only_final_step(self):
        """Interval 0 writes exactly once in a million steps."""
        n = 10**6
        count = sum(is_output_step(i, 0, final=(i == n)) for i in range(1, n + 1))
        assert count == 1

    def test_interval_k_outputs_multiples(self):
        """Interval 3 writes steps 3, 6, 9."""
        steps = [i for i in range(1, 11) if is_output_step(i, 3, final=(i == 10))]
        assert steps == [3, 6, 9]

    def test_periodic_refinement(self):
        """Refinement fires on multiples of the interval."""
        assert [i for i in range(1, 10) if periodic_refinement_due(i, 3)] == [3, 6, 9]

    def test_interval_zero_never_refines(self):
        """Interval 0 never triggers refinement in a million steps."""
        assert not any(periodic_refinement_due(i, 0) for i in range(1, 10**6 + 1))


class TestThetaScheme:
    """Tests for system matrix and explicit right-hand side."""

    def test_explicit_matrix_is_mass_copy(self, matrices):
        """theta = 0 gives an exact copy of the mass matrix."""
        mass, cd = matrices
        A = build_system_matrix(mass, cd, theta=0.0, dt=0.1)
        assert A is not mass
        assert (A != mass).nnz == 0

    def test_implicit_matrix(self, matrices):
        """theta = 1 gives M + dt (C + K)."""
        mass, cd = matrices
        A = build_system_matrix(mass, cd, theta=1.0, dt=0.1)
        np.testing.assert_allclose(A.toarray(), (mass + 0.1 * cd).toarray())

    def test_implicit_rhs_has_no_operator_term(self, matrices):
        """theta = 1 gives exactly M u_old."""
        mass, cd = matrices
        u = np.linspace(0.0, 1.0, 6)
        np.testing.assert_array_equal(build_explicit_rhs(mass, cd, u, 1.0, 0.1), mass @ u)

    def test_crank_nicolson_rhs(self, matrices):
        """theta = 0.5 subtracts half of dt (C + K) u_old."""
        mass, cd = matrices
        u = np.linspace(0.0, 1.0, 6) ** 2
        expected = mass @ u - 0.05 * (cd @ u)
        np.testing.assert_allclose(build_explicit_rhs(mass, cd, u, 0.5, 0.1), expected)

    def test_theta_weighted_forcing(self):
        """Forcing is dt (theta f_new + (1 - theta) f_old)."""
        f_new, f_old = np.array([2.0, 4.0]), np.array([1.0, 1.0])
        np.testing.assert_allclose(theta_weighted(f_new, f_old, 0.25, 0.5), [0.625, 0.875])
