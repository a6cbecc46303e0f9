"""Tests for parsed, constant and extrapolated field functions."""

import numpy as np
import pytest

from peclet import ConfigurationError, ConstantValue, ExtrapolatedField, ParsedExpression


class TestParsedExpression:
    def test_scalar_in_space_and_time(self):
        """t * x follows set_time."""
        f = ParsedExpression("t*x", dim=1)
        points = np.array([[0.5], [1.0]])
        np.testing.assert_allclose(f.evaluate(points), [0.0, 0.0])
        f.set_time(2.0)
        np.testing.assert_allclose(f.evaluate(points), [1.0, 2.0])

    def test_vector_components(self):
        """';' separates components, constants broadcast."""
        f = ParsedExpression("1; x*y", dim=2)
        assert f.n_components == 2
        values = f.evaluate(np.array([[2.0, 3.0], [1.0, 0.5]]))
        np.testing.assert_allclose(values, [[1.0, 6.0], [1.0, 0.5]])

    def test_named_constants(self):
        """Constants from the configuration are substituted."""
        f = ParsedExpression("a*x + b", dim=1, constants={"a": 3.0, "b": 1.0})
        np.testing.assert_allclose(f(np.array([[2.0]])), [7.0])

    def test_pi(self):
        f = ParsedExpression("sin(pi*x)", dim=1)
        assert f.evaluate(np.array([[0.5]]))[0] == pytest.approx(1.0)

    def test_unknown_symbol_raises(self):
        """y is not a coordinate in 1D."""
        with pytest.raises(ConfigurationError, match="Unknown symbols"):
            ParsedExpression("x*y", dim=1)

    def test_syntax_error_raises(self):
        with pytest.raises(ConfigurationError):
            ParsedExpression("x +* 2", dim=1)


class TestOtherFunctions:
    def test_constant(self):
        f = ConstantValue(2.5)
        assert f.kind == "constant"
        np.testing.assert_array_equal(f.evaluate(np.zeros((4, 2))), np.full(4, 2.5))

    def test_extrapolated_field(self, unit_interval_mesh):
        """A linear field extrapolates linearly outside its domain."""
        from fe.field_tools import FEField
        from meshing import build_mesh_data

        md = build_mesh_data(unit_interval_mesh)
        field = FEField(unit_interval_mesh, md, 2.0 * md.support_points[:, 0])
        f = ExtrapolatedField(field)
        np.testing.assert_allclose(f.evaluate(np.array([[0.3], [1.5], [-0.5]])), [0.6, 3.0, -1.0])
