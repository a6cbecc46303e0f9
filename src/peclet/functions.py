"""Field functions: the closed set of evaluable, time-aware functions.

Every variant supports evaluate(points) and set_time(t). Scalar functions
return shape (n_points,); vector functions return (n_points, n_components).
Each factory call builds a new object, so no two users share time state.
"""

import numpy as np
import sympy as sp

from .errors import ConfigurationError

COORDINATES = ("x", "y", "z")


class FieldFunction:
    """Base of all field functions."""

    kind = "base"
    n_components = 1

    def __init__(self):
        self.time = 0.0

    def set_time(self, t: float) -> None:
        self.time = float(t)

    def evaluate(self, points: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def __call__(self, points):
        return self.evaluate(points)


class ConstantValue(FieldFunction):
    kind = "constant"

    def __init__(self, value: float):
        super().__init__()
        self.value = float(value)

    def evaluate(self, points):
        points = np.atleast_2d(points)
        return np.full(points.shape[0], self.value)

    def __repr__(self):
        return f"ConstantValue({self.value})"


class ParsedExpression(FieldFunction):
    """Expression in x, y, z (the first `dim` of them) and t, parsed with sympy.

    ';' separates vector components. `constants` maps names used in the
    expression to numbers; pi and E are always available.
    """

    kind = "parsed"

    def __init__(self, expression: str, dim: int, constants=None):
        super().__init__()
        self.expression = expression
        self.dim = dim
        self.constants = dict(constants or {})

        symbols = sp.symbols(COORDINATES[:dim] + ("t",))
        names = {str(s): s for s in symbols}
        names.update({"pi": sp.pi, "E": sp.E})
        names.update({k: sp.Float(v) for k, v in self.constants.items()})

        self._components = []
        for part in expression.split(";"):
            try:
                expr = sp.sympify(part.strip(), locals=names)
            except (sp.SympifyError, SyntaxError, TypeError) as exc:
                raise ConfigurationError(f"Cannot parse expression '{part}': {exc}") from exc
            unknown = expr.free_symbols - set(symbols)
            if unknown:
                raise ConfigurationError(
                    f"Unknown symbols {sorted(map(str, unknown))} in expression '{part}'"
                )
            self._components.append(sp.lambdify(symbols, expr, "numpy"))
        self.n_components = len(self._components)

    def evaluate(self, points):
        points = np.atleast_2d(np.asarray(points, dtype=float))
        n = points.shape[0]
        args = [points[:, d] for d in range(self.dim)] + [self.time]
        columns = [np.broadcast_to(np.asarray(f(*args), dtype=float), (n,)) for f in self._components]
        if self.n_components == 1:
            return columns[0].copy()
        return np.stack(columns, axis=1)

    def __repr__(self):
        return f"ParsedExpression('{self.expression}', dim={self.dim})"


class MeltFilmFlux(FieldFunction):
    """Boundary flux of a melt film driven by a heated wall (Stefan condition).

    The heat flux k_liquid (T_wall - T_melt) / thickness through the film is
    divided by ρ c_p of the solid so that it pairs with a thermal
    diffusivity in the PDE.
    """

    kind = "melt_film"

    def __init__(self, melt_film, solid, liquid):
        super().__init__()
        self.value = (
            liquid.heat_conductivity
            * (melt_film.wall_temperature - solid.melt_temperature)
            / (melt_film.thickness * solid.density * solid.specific_heat_capacity)
        )

    def evaluate(self, points):
        points = np.atleast_2d(points)
        return np.full(points.shape[0], self.value)


class ExtrapolatedField(FieldFunction):
    """Previously persisted FE field; extrapolates outside its own domain."""

    kind = "extrapolated"

    def __init__(self, field):
        super().__init__()
        self.field = field

    def evaluate(self, points):
        return self.field.evaluate(points)


def make_parsed_function(params, dim: int) -> ParsedExpression:
    """Build a ParsedExpression from ParsedFunctionParameters."""
    return ParsedExpression(params.expression, dim, params.constants)
