from .scipy_solver import LinearSolverError, scipy_solver, make_preconditioner

__all__ = ["LinearSolverError", "scipy_solver", "make_preconditioner"]
