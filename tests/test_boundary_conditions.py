"""Tests for boundary condition resolution from the argument queue."""

import logging

import numpy as np
import pytest

from peclet import BoundaryConditionSet, ConfigurationError
from peclet.datastructures import (
    BoundaryConditionParameters,
    MaterialParameters,
    MeltFilmParameters,
    ParsedFunctionParameters,
)


def make_set(types, names, args, dim=2, expression="x + t", materials=None):
    params = BoundaryConditionParameters(
        implementation_types=tuple(types),
        function_names=tuple(names),
        function_double_arguments=tuple(args),
        parsed_function=ParsedFunctionParameters(expression=expression),
    )
    return BoundaryConditionSet(params, dim, materials)


class TestArgumentQueue:
    """Tests for front-to-back consumption of function_double_arguments."""

    def test_arguments_consumed_in_boundary_order(self):
        """Parsed boundaries consume nothing; constants consume one each."""
        bcs = make_set(
            ["strong", "natural", "strong", "strong"],
            ["constant", "parsed", "constant", "constant"],
            [1.0, 2.0, 3.0],
        )
        descriptors = bcs.resolve()
        assert [d.id for d in descriptors] == [0, 1, 2, 3]
        assert [d.kind for d in descriptors] == ["strong", "natural", "strong", "strong"]
        assert descriptors[0].function.value == 1.0
        assert descriptors[1].function.kind == "parsed"
        assert descriptors[2].function.value == 2.0
        assert descriptors[3].function.value == 3.0

    def test_underflow_raises(self):
        """Too few arguments is a configuration error."""
        bcs = make_set(["strong", "strong"], ["constant", "constant"], [1.0], dim=1)
        with pytest.raises(ConfigurationError, match="needs 1 argument"):
            bcs.resolve()

    def test_leftover_arguments_warn(self, caplog):
        """Unused arguments are logged as a warning."""
        bcs = make_set(["strong", "strong"], ["constant", "constant"], [1.0, 2.0, 3.0], dim=1)
        with caplog.at_level(logging.WARNING):
            bcs.resolve()
        assert "Unused boundary function arguments: [3.0]" in caplog.text

    def test_count_mismatch_with_mesh(self):
        """Declaring two conditions for four boundary IDs raises."""
        bcs = make_set(["strong", "strong"], ["constant", "constant"], [0.0, 0.0])
        with pytest.raises(ConfigurationError):
            bcs.validate_against([0, 1, 2, 3])

    def test_unknown_names_raise(self):
        """Unknown implementation types and function names are rejected."""
        with pytest.raises(ConfigurationError):
            make_set(["weak", "strong"], ["constant", "constant"], [0.0, 0.0], dim=1)
        with pytest.raises(ConfigurationError):
            make_set(["strong", "strong"], ["constant", "spline"], [0.0, 0.0], dim=1)

    def test_length_mismatch_raises(self):
        """Types and names must have the same length."""
        with pytest.raises(ConfigurationError):
            make_set(["strong"], ["constant", "constant"], [0.0, 0.0], dim=1)


class TestBoundaryFunctions:
    """Tests for the function objects attached to each boundary."""

    def test_parsed_boundaries_do_not_share_state(self):
        """Setting the time on one parsed boundary leaves the other alone."""
        bcs = make_set(["strong", "strong"], ["parsed", "parsed"], [], dim=1)
        first, second = (d.function for d in bcs.resolve())
        assert first is not second
        first.set_time(5.0)
        points = np.array([[0.5]])
        assert first.evaluate(points)[0] == pytest.approx(5.5)
        assert second.evaluate(points)[0] == pytest.approx(0.5)

    def test_resolve_builds_fresh_objects(self):
        """Resolving twice never returns the same function object."""
        bcs = make_set(["strong", "strong"], ["constant", "parsed"], [1.0], dim=1)
        a, b = bcs.resolve(), bcs.resolve()
        assert all(x.function is not y.function for x, y in zip(a, b))

    def test_melt_film_flux(self):
        """Melt film consumes no argument and uses the material data."""
        materials = MaterialParameters()
        bcs = make_set(
            ["natural", "natural"], ["melt_film", "constant"], [7.0], dim=1, materials=materials
        )
        melt, constant = bcs.resolve()
        film = MeltFilmParameters()
        expected = (
            materials.liquid.heat_conductivity
            * (film.wall_temperature - materials.solid.melt_temperature)
            / (film.thickness * materials.solid.density * materials.solid.specific_heat_capacity)
        )
        assert melt.is_natural
        assert melt.function.evaluate(np.zeros((3, 1))) == pytest.approx(np.full(3, expected))
        assert constant.function.value == 7.0

    def test_melt_film_without_materials_raises(self):
        """Melt film boundaries need material parameters."""
        bcs = make_set(["natural", "natural"], ["melt_film", "constant"], [0.0], dim=1)
        with pytest.raises(ConfigurationError):
            bcs.resolve()
