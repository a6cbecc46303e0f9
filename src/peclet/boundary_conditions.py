"""Boundary condition resolution.

Each boundary ID gets an implementation type (natural or strong) and a
function. Function arguments come from one flat list that is consumed front
to back, in boundary-ID order, by the functions that need them:

    implementation_types:      [strong, natural, strong]
    function_names:            [constant, parsed, constant]
    function_double_arguments: [1.0, 0.0]
    -> boundary 0: constant 1.0, boundary 1: parsed, boundary 2: constant 0.0

The ordering is fragile (inserting a boundary shifts every later argument)
but it is the documented configuration format, so it is kept as is.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import List

from .errors import ConfigurationError
from .functions import ConstantValue, FieldFunction, MeltFilmFlux, make_parsed_function

log = logging.getLogger(__name__)

IMPLEMENTATION_TYPES = ("natural", "strong")

# Number of queue arguments each function name consumes
ARGUMENT_COUNTS = {"constant": 1, "parsed": 0, "melt_film": 0}


@dataclass
class BoundaryDescriptor:
    id: int
    kind: str  # "natural" or "strong"
    function: FieldFunction

    @property
    def is_natural(self) -> bool:
        return self.kind == "natural"

    @property
    def is_strong(self) -> bool:
        return self.kind == "strong"


class BoundaryConditionSet:
    """Declared boundary conditions, resolved into one descriptor per boundary ID."""

    def __init__(self, params, dim: int, materials=None):
        """
        Parameters
        ----------
        params : BoundaryConditionParameters
            Declared types, function names and the argument list.
        dim : int
            Spatial dimension, for parsed functions.
        materials : MaterialParameters, optional
            Needed only by melt_film boundaries.
        """
        self.params = params
        self.dim = dim
        self.materials = materials
        self.implementation_types = list(params.implementation_types)
        self.function_names = list(params.function_names)

        if len(self.implementation_types) != len(self.function_names):
            raise ConfigurationError(
                f"{len(self.implementation_types)} implementation types but "
                f"{len(self.function_names)} function names"
            )
        for kind in self.implementation_types:
            if kind not in IMPLEMENTATION_TYPES:
                raise ConfigurationError(f"Unknown boundary implementation type '{kind}'")
        for name in self.function_names:
            if name not in ARGUMENT_COUNTS:
                raise ConfigurationError(f"Unknown boundary function name '{name}'")

    def __len__(self):
        return len(self.implementation_types)

    def validate_against(self, boundary_ids) -> None:
        """Check that one condition is declared for every boundary ID of the mesh."""
        boundary_ids = list(boundary_ids)
        if len(self) != len(boundary_ids):
            raise ConfigurationError(
                f"{len(self)} boundary conditions declared but the mesh has "
                f"{len(boundary_ids)} boundary IDs {boundary_ids}"
            )

    def resolve(self) -> List[BoundaryDescriptor]:
        """Build a fresh descriptor (and function object) for each boundary, in ID order.

        Raises
        ------
        ConfigurationError
            If the argument list runs out.
        """
        queue = deque(self.params.function_double_arguments)
        descriptors = []
        for boundary, (kind, name) in enumerate(zip(self.implementation_types, self.function_names)):
            n_args = ARGUMENT_COUNTS[name]
            if len(queue) < n_args:
                raise ConfigurationError(
                    f"Boundary {boundary} ('{name}') needs {n_args} argument(s) but only "
                    f"{len(queue)} remain in function_double_arguments"
                )
            args = [queue.popleft() for _ in range(n_args)]
            descriptors.append(BoundaryDescriptor(boundary, kind, self._make_function(name, args)))

        if queue:
            log.warning(f"Unused boundary function arguments: {list(queue)}")
        for d in descriptors:
            log.info(f"Boundary {d.id}: {d.kind}, {d.function!r}")
        return descriptors

    def _make_function(self, name: str, args) -> FieldFunction:
        if name == "constant":
            return ConstantValue(args[0])
        if name == "parsed":
            return make_parsed_function(self.params.parsed_function, self.dim)
        if self.materials is None:
            raise ConfigurationError("melt_film boundaries need material parameters")
        return MeltFilmFlux(self.params.melt_film, self.materials.solid, self.materials.liquid)
