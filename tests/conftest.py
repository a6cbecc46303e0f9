"""Pytest configuration and fixtures for the convection-diffusion solver tests."""

import copy
import sys
from pathlib import Path

import numpy as np
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


def _merge(base: dict, overrides: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


@pytest.fixture
def base_config(tmp_path):
    """1D heat equation on [0, 1] with a sine initial state and zero Dirichlet data."""
    return {
        "geometry": {"dim": 1, "sizes": [0.0, 1.0], "repetitions": [1]},
        "pde": {"diffusivity": {"expression": "1."}},
        "initial_values": {"parsed_function": {"expression": "sin(pi*x)"}},
        "refinement": {"initial_global_cycles": 3},
        "time": {"end_time": 0.1, "step_size": 0.01, "semi_implicit_theta": 0.5},
        "solver": {"tolerance": 1e-10},
        "output": {"directory": str(tmp_path), "write_solution_vtk": False},
    }


@pytest.fixture
def make_params(base_config):
    """Factory: Parameters from the base config with nested overrides."""
    from peclet import Parameters

    def factory(**overrides):
        return Parameters.from_config(_merge(base_config, overrides))

    return factory


class RecordingOutput:
    """Output sink that remembers every write."""

    def __init__(self):
        self.writes = []
        self.finalized = False

    def write(self, step_index, time, field):
        self.writes.append((step_index, time, field.values.copy()))

    def finalize(self):
        self.finalized = True

    @property
    def steps(self):
        return [w[0] for w in self.writes]


@pytest.fixture
def recording_output():
    return RecordingOutput()


@pytest.fixture
def unit_square_mesh():
    """Unit square refined twice (16 cells)."""
    from meshing import TreeMesh

    mesh = TreeMesh([0.0, 0.0], [1.0, 1.0], [1, 1])
    mesh.refine_global(2)
    return mesh


@pytest.fixture
def unit_interval_mesh():
    """Unit interval refined three times (8 cells)."""
    from meshing import TreeMesh

    mesh = TreeMesh([0.0], [1.0], [1])
    mesh.refine_global(3)
    return mesh


@pytest.fixture
def laplacian_1d():
    """Tridiagonal SPD matrix of size 50 (scaled 1D Laplacian)."""
    from scipy.sparse import diags

    n = 50
    return diags([-np.ones(n - 1), 2.0 * np.ones(n), -np.ones(n - 1)], [-1, 0, 1]).tocsr()
