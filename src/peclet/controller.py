"""Time integration and adaptive refinement control loop.

The controller advances the solution of

    ∂u/∂t + v·∇u - ∇·(α∇u) = f

from t = 0 to end_time with the theta scheme

    (M + θΔt(C+K)) uⁿ = M uⁿ⁻¹ - (1-θ)Δt(C+K) uⁿ⁻¹ + Δt[θ fⁿ + (1-θ) fⁿ⁻¹]

plus natural boundary terms with the same weighting. Strong boundary values
are eliminated after hanging-node condensation.

Pre-refinement: while fewer than refinement.adaptive.initial_cycles cycles
have run, the mesh is refined after the first step and time stepping
restarts from t = 0 on the new mesh.
"""

import logging
import time as timer
from dataclasses import dataclass
from pathlib import Path

import mlflow
import numpy as np

from fe.assembly import Assembler
from fe.constraints import apply_boundary_values
from fe.error_estimator import kelly_error_estimator
from fe.field_tools import interpolate_boundary_values, save_field
from fe.linear_solvers.scipy_solver import LinearSolverError, scipy_solver
from fe.metrics import global_errors
from fe.output import SolutionWriter
from meshing.grid_generator import create_coarse_grid, refine_mesh_near_boundaries

from .boundary_conditions import BoundaryConditionSet
from .datastructures import Metrics, TimeSeries, VerificationRecord, VerificationTable
from .discrete_system import DiscreteSystem
from .errors import ConfigurationError, ConvergenceError
from .functions import make_parsed_function
from .initial_values import InitialValueProvider
from .refinement import RefinementPolicy

log = logging.getLogger(__name__)

EPSILON = 1e-14


# =============================================================================
# Time state and scheme helpers
# =============================================================================


@dataclass
class TimeState:
    step_size: float
    theta: float
    step_index: int = 0

    @property
    def current_time(self) -> float:
        # multiplication, not accumulation, so there is no round-off drift
        return self.step_size * self.step_index

    @property
    def previous_time(self) -> float:
        return self.step_size * (self.step_index - 1)

    def advance(self) -> None:
        self.step_index += 1

    def reset(self) -> None:
        self.step_index = 0


def is_output_step(step_index: int, interval: int, final: bool) -> bool:
    """1: every step; 0: only the final step; k > 1: every k-th step."""
    if interval == 1:
        return True
    if interval == 0:
        return final
    return step_index % interval == 0


def periodic_refinement_due(step_index: int, interval: int) -> bool:
    """True on every `interval`-th step; an interval of 0 never fires."""
    return interval > 0 and step_index > 0 and step_index % interval == 0


def build_system_matrix(mass, convection_diffusion, theta: float, dt: float):
    """A = M + θΔt(C+K)."""
    if theta == 0.0:
        return mass.copy().tocsr()
    return (mass + (theta * dt) * convection_diffusion).tocsr()


def build_explicit_rhs(mass, convection_diffusion, old_solution, theta: float, dt: float):
    """M uⁿ⁻¹ - (1-θ)Δt(C+K) uⁿ⁻¹."""
    rhs = mass @ old_solution
    if theta != 1.0:
        rhs -= (1.0 - theta) * dt * (convection_diffusion @ old_solution)
    return rhs


def theta_weighted(current, previous, theta: float, dt: float):
    return dt * theta * current + dt * (1.0 - theta) * previous


# =============================================================================
# Controller
# =============================================================================


class TimeIntegrationController:
    """Runs the theta-scheme time loop with adaptive refinement.

    Parameters
    ----------
    params : Parameters
        Validated, immutable run configuration.
    linear_solver : callable
        linear_solver(A, b, x0=..., method=..., tolerance=..., max_iterations=...,
        normalize_tolerance=..., preconditioner=...) -> (x, iterations).
    error_estimator : callable
        estimator(mesh, mesh_data, solution) -> per-cell indicator.
    output : object, optional
        Sink with write(step_index, time, field) and finalize().
    assembler : Assembler, optional
        Defaults to an Assembler built from the PDE parameters.
    """

    def __init__(self, params, linear_solver=scipy_solver, error_estimator=kelly_error_estimator,
                 output=None, assembler=None):
        params.validate()
        self.params = params
        dim = params.geometry.dim

        if assembler is None:
            velocity = make_parsed_function(params.pde.velocity, dim)
            if velocity.n_components != dim:
                raise ConfigurationError(
                    f"Velocity has {velocity.n_components} component(s); expected {dim}"
                )
            assembler = Assembler(
                velocity=velocity,
                diffusivity=make_parsed_function(params.pde.diffusivity, dim),
                source=make_parsed_function(params.pde.source, dim),
            )
        self.assembler = assembler
        self.linear_solver = linear_solver

        self.mesh = create_coarse_grid(params.geometry)
        boundary_conditions = BoundaryConditionSet(params.boundary_conditions, dim, params.materials)
        boundary_conditions.validate_against(self.mesh.boundary_ids())
        self.boundaries = boundary_conditions.resolve()

        lower, upper = params.geometry.bounds()
        self.initial_values = InitialValueProvider(params.initial_values, dim, lower, upper)

        self.exact_solution = None
        if params.verification.enabled:
            self.exact_solution = make_parsed_function(params.verification.exact_solution, dim)

        out = params.output
        self.output_directory = Path(out.directory)
        if output is None:
            output = SolutionWriter(
                directory=self.output_directory,
                write_vtk=out.write_solution_vtk,
                write_table=out.write_solution_table,
                table_file_name=out.solution_table_file_name,
            )
        self.output = output

        self.refinement = RefinementPolicy(
            params.refinement.adaptive,
            min_level=params.refinement.initial_global_cycles,
            estimator=error_estimator,
        )

        self.time_state = TimeState(
            step_size=params.time.resolved_step_size(), theta=params.time.semi_implicit_theta
        )
        self.system = None
        self.pre_refinement_cycles = 0
        self.reached_steady_state = False
        self.metrics = Metrics()
        self.time_series = TimeSeries()
        self.verification_table = VerificationTable()

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self) -> Metrics:
        """Run to end_time (or steady state) and return the run metrics."""
        wall_start = timer.time()
        refinement = self.params.refinement

        self.mesh.refine_global(refinement.initial_global_cycles)
        refine_mesh_near_boundaries(
            self.mesh, refinement.boundaries_to_refine, refinement.initial_boundary_cycles
        )
        self.system = DiscreteSystem(self.mesh, self.assembler)

        self.pre_refinement_cycles = 0
        while self._run_time_steps(
            pre_refinement_pending=self.pre_refinement_cycles < refinement.adaptive.initial_cycles
        ):
            self.refinement.apply(self.system)
            self.pre_refinement_cycles += 1
            log.info(
                f"Pre-refinement cycle {self.pre_refinement_cycles} done; restarting from t=0"
            )

        self._finish(timer.time() - wall_start)
        return self.metrics

    def _run_time_steps(self, pre_refinement_pending: bool) -> bool:
        """Step from t = 0 until the final step.

        Returns True if stepping stopped after step 1 for pre-refinement.
        """
        params = self.params
        system = self.system
        ts = self.time_state
        ts.reset()
        self.reached_steady_state = False

        system.old_solution = self.initial_values.interpolate(system.mesh_data)
        system.constraints.distribute(system.old_solution)
        system.solution = system.old_solution.copy()
        self.output.write(0, 0.0, system.field())

        final = False
        while not final:
            ts.advance()
            t = ts.current_time
            final = t > params.time.end_time - EPSILON
            output_step = is_output_step(ts.step_index, params.output.time_step_interval, final)
            if output_step:
                log.info(f"Time step {ts.step_index} at t={t:.6g}")

            iterations = self.solve_time_step()
            if output_step:
                log.info(f"     {iterations} {params.solver.method} iterations")

            if params.time.stop_when_steady and iterations == 0:
                log.info(f"Reached steady state at t = {t:.6g}")
                self.reached_steady_state = True
                final = True
                output_step = True

            self.time_series.append(
                ts.step_index, t, iterations, system.n_active_cells, system.n_dofs
            )

            if output_step:
                self.output.write(ts.step_index, t, system.field())
                if self.exact_solution is not None:
                    self._append_verification(t)
                self._log_live_metrics(iterations)

            if ts.step_index == 1 and pre_refinement_pending:
                return True
            if periodic_refinement_due(ts.step_index, params.refinement.adaptive.interval):
                self._refine_periodically()

            system.old_solution = system.solution.copy()

        return False

    def solve_time_step(self) -> int:
        """Assemble and solve one theta-scheme step; return solver iterations."""
        system = self.system
        md = system.mesh_data
        ts = self.time_state
        theta, dt = ts.theta, ts.step_size
        t, t_prev = ts.current_time, ts.previous_time

        rhs = build_explicit_rhs(
            system.mass_matrix, system.convection_diffusion_matrix, system.old_solution, theta, dt
        )
        rhs += theta_weighted(
            self.assembler.forcing(md, t), self.assembler.forcing(md, t_prev), theta, dt
        )
        for boundary in self.boundaries:
            if not boundary.is_natural:
                continue
            rhs += theta_weighted(
                self.assembler.boundary_forcing(md, boundary.function, boundary.id, t),
                self.assembler.boundary_forcing(md, boundary.function, boundary.id, t_prev),
                theta,
                dt,
            )

        A = build_system_matrix(system.mass_matrix, system.convection_diffusion_matrix, theta, dt)
        A, rhs = system.constraints.condense(A, rhs)

        boundary_values = {}
        for boundary in self.boundaries:
            if not boundary.is_strong:
                continue
            boundary.function.set_time(t)
            boundary_values.update(interpolate_boundary_values(md, boundary.function, boundary.id))

        initial_guess = system.solution.copy()
        initial_guess[system.constraints.constrained_dofs] = 0.0
        A, initial_guess, rhs = apply_boundary_values(boundary_values, A, initial_guess, rhs)
        system.system_matrix = A
        system.system_rhs = rhs

        s = self.params.solver
        try:
            solution, iterations = self.linear_solver(
                A,
                rhs,
                x0=initial_guess,
                method=s.method,
                tolerance=s.tolerance,
                max_iterations=s.max_iterations,
                normalize_tolerance=s.normalize_tolerance,
                preconditioner=s.preconditioner,
            )
        except ConvergenceError:
            raise
        except LinearSolverError as exc:
            raise ConvergenceError(
                f"Step {ts.step_index} at t={t:.6g}: {exc}",
                iterations=exc.iterations,
                residual=exc.residual,
            ) from exc
        system.constraints.distribute(solution)
        system.solution = solution
        return iterations

    def _refine_periodically(self) -> None:
        cycles = self.params.refinement.adaptive.cycles_at_interval
        if cycles == 0:
            return
        for _ in range(cycles):
            self.refinement.apply(self.system, reassemble=False)
        self.system.assemble()

    # ------------------------------------------------------------------
    # Verification, logging and results
    # ------------------------------------------------------------------

    def _append_verification(self, t: float) -> None:
        system = self.system
        self.exact_solution.set_time(t)
        l1, l2 = global_errors(system.mesh_data, system.solution, self.exact_solution)
        self.verification_table.append(
            VerificationRecord(
                time_step_size=self.time_state.step_size,
                time=t,
                cells=system.n_active_cells,
                dofs=system.n_dofs,
                L1_norm_error=l1,
                L2_norm_error=l2,
            )
        )

    def _log_live_metrics(self, iterations: int) -> None:
        if not mlflow.active_run():
            return
        live_metrics = {
            "solver_iterations": iterations,
            "n_active_cells": self.system.n_active_cells,
            "n_dofs": self.system.n_dofs,
            "time": self.time_state.current_time,
        }
        if len(self.verification_table):
            last = self.verification_table.records[-1]
            live_metrics["L1_norm_error"] = last.L1_norm_error
            live_metrics["L2_norm_error"] = last.L2_norm_error
        mlflow.log_metrics(live_metrics, step=len(self.time_series) - 1)

    def _finish(self, wall_time: float) -> None:
        out = self.params.output
        self.field_path = save_field(self.output_directory / out.field_file_name, self.system.field())

        self.verification_table_path = None
        if self.exact_solution is not None:
            self.verification_table_path = self.verification_table.write(
                self.output_directory / out.verification_table_file_name
            )
        self.output.finalize()

        self.metrics = Metrics(
            time_steps=self.time_state.step_index,
            final_time=self.time_state.current_time,
            n_active_cells=self.system.n_active_cells,
            n_dofs=self.system.n_dofs,
            total_solver_iterations=int(np.sum(self.time_series.solver_iterations)),
            pre_refinement_cycles=self.pre_refinement_cycles,
            reached_steady_state=self.reached_steady_state,
            wall_time_seconds=wall_time,
        )
        if len(self.verification_table):
            last = self.verification_table.records[-1]
            self.metrics.final_L1_error = last.L1_norm_error
            self.metrics.final_L2_error = last.L2_norm_error
        log.info(
            f"Finished at step {self.metrics.time_steps}, t={self.metrics.final_time:.6g}: "
            f"{self.metrics.n_active_cells} cells, {self.metrics.n_dofs} DoFs, "
            f"{wall_time:.2f}s"
        )
