"""Exception types raised by the convection-diffusion solver.

All of these are fatal for a run. Output already written for earlier time
steps stays on disk.
"""

from fe.linear_solvers import LinearSolverError


class PecletError(Exception):
    """Base class for solver errors."""


class ConfigurationError(PecletError, ValueError):
    """Invalid or inconsistent configuration, detected before time stepping."""


class ConvergenceError(PecletError, LinearSolverError):
    """Linear solver did not reach the tolerance within max_iterations."""


class RestartMismatch(PecletError, ValueError):
    """Persisted restart field does not overlap the new domain."""
