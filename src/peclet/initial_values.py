"""Initial values: closed-form expression or restart from a persisted field."""

import logging
from pathlib import Path

import numpy as np

from fe.field_tools import interpolate, load_field

from .errors import ConfigurationError, RestartMismatch
from .functions import ExtrapolatedField, FieldFunction, make_parsed_function

log = logging.getLogger(__name__)


class InitialValueProvider:
    """Supplies the field that initializes the previous solution at t = 0.

    Variants:
    - "parsed": a ParsedExpression evaluated at t = 0.
    - "interpolate_old_field": a field saved by an earlier run, wrapped in an
      ExtrapolatedField so that points outside the old domain still get a value.
    """

    def __init__(self, params, dim: int, lower, upper, loader=load_field):
        self.params = params
        self.dim = dim
        self.lower = np.asarray(lower, dtype=float)
        self.upper = np.asarray(upper, dtype=float)
        self.function = self._build(loader)

    def _build(self, loader) -> FieldFunction:
        name = self.params.function_name
        if name == "parsed":
            function = make_parsed_function(self.params.parsed_function, self.dim)
            function.set_time(0.0)
            return function
        if name == "interpolate_old_field":
            path = Path(self.params.restart_file)
            if not path.exists():
                raise ConfigurationError(f"Restart file {path} does not exist")
            field = loader(path)
            self._check_overlap(field)
            log.info(f"Initial values extrapolated from {path}")
            return ExtrapolatedField(field)
        raise ConfigurationError(f"Unknown initial values function '{name}'")

    def _check_overlap(self, field) -> None:
        if field.dim != self.dim:
            raise RestartMismatch(f"Restart field is {field.dim}D but the mesh is {self.dim}D")
        old_lower, old_upper = field.bounding_box()
        overlap = np.minimum(old_upper, self.upper) - np.maximum(old_lower, self.lower)
        if np.any(overlap <= 0.0):
            raise RestartMismatch(
                f"Restart domain {tuple(old_lower)} -> {tuple(old_upper)} does not overlap "
                f"{tuple(self.lower)} -> {tuple(self.upper)}"
            )

    @property
    def kind(self) -> str:
        return self.function.kind

    def evaluate(self, points) -> np.ndarray:
        return self.function.evaluate(points)

    def interpolate(self, mesh_data) -> np.ndarray:
        """Initial values at the DoFs of `mesh_data`."""
        return interpolate(mesh_data, self.function)
