"""Time-dependent convection-diffusion solver with adaptive refinement.

Component Hierarchy:
--------------------
TimeIntegrationController (time loop, pre-refinement replay, output)
├── BoundaryConditionSet (natural/strong boundaries, argument queue)
├── InitialValueProvider (parsed expression or restart field)
├── RefinementPolicy (fixed-fraction marking, max_cells cap, transfer)
└── DiscreteSystem (mesh, DoFs, constraints, matrices, vectors)
"""

from .errors import ConfigurationError, ConvergenceError, PecletError, RestartMismatch
from .datastructures import (
    Parameters,
    Metrics,
    TimeSeries,
    VerificationRecord,
    VerificationTable,
)
from .functions import ConstantValue, ExtrapolatedField, FieldFunction, MeltFilmFlux, ParsedExpression
from .boundary_conditions import BoundaryConditionSet, BoundaryDescriptor
from .initial_values import InitialValueProvider
from .discrete_system import DiscreteSystem
from .refinement import RefinementPolicy
from .controller import TimeIntegrationController, TimeState

__all__ = [
    # Errors
    "PecletError",
    "ConfigurationError",
    "ConvergenceError",
    "RestartMismatch",
    # Data structures
    "Parameters",
    "Metrics",
    "TimeSeries",
    "VerificationRecord",
    "VerificationTable",
    # Field functions
    "FieldFunction",
    "ConstantValue",
    "ParsedExpression",
    "MeltFilmFlux",
    "ExtrapolatedField",
    # Core components
    "BoundaryConditionSet",
    "BoundaryDescriptor",
    "InitialValueProvider",
    "DiscreteSystem",
    "RefinementPolicy",
    "TimeIntegrationController",
    "TimeState",
]
