"""Data structures for solver configuration and results.

This module defines the configuration and result data structures
for the time-dependent convection-diffusion solver.

Structure:
- Parameters: Input configuration (immutable, logged to MLflow at start)
- Metrics: Output results (logged to MLflow at end)
- TimeSeries: Per-step history (solver iterations, mesh size)
- VerificationTable: Errors against an exact solution, one row per output step
"""

from dataclasses import dataclass, field, fields, asdict, is_dataclass
from pathlib import Path
from typing import Dict, List, Tuple

import pandas as pd
from mlflow.entities import Metric

from .errors import ConfigurationError


# ========================================================
# Parameters (Input Configuration)
# ========================================================


@dataclass(frozen=True)
class ParsedFunctionParameters:
    """Expression in x, y, z (first dim of them) and t; ';' separates components."""

    expression: str = "0."
    constants: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class GeometryParameters:
    dim: int = 1
    grid_name: str = "hyper_rectangle"
    sizes: Tuple[float, ...] = (0.0, 1.0)
    repetitions: Tuple[int, ...] = (1,)
    colorize: bool = True
    # Rigid body transformation of the coarse grid: shift along x (and y),
    # then a rotation about z that the axis-aligned mesh only accepts as 0.
    transformations: Tuple[float, ...] = (0.0, 0.0, 0.0)

    def shift(self) -> Tuple[float, ...]:
        components = tuple(float(v) for v in self.transformations[: self.dim])
        return components + (0.0,) * (self.dim - len(components))

    def rotation(self) -> Tuple[float, ...]:
        return tuple(float(v) for v in self.transformations[self.dim:])

    def bounds(self) -> Tuple[Tuple[float, ...], Tuple[float, ...]]:
        """Lower and upper corners of the box domain, shifted."""
        if self.grid_name == "hyper_cube":
            lower = (float(self.sizes[0]),) * self.dim
            upper = (float(self.sizes[1]),) * self.dim
        else:
            lower = tuple(float(s) for s in self.sizes[: self.dim])
            upper = tuple(float(s) for s in self.sizes[self.dim: 2 * self.dim])
        shift = self.shift()
        lower = tuple(lo + d for lo, d in zip(lower, shift))
        upper = tuple(hi + d for hi, d in zip(upper, shift))
        return lower, upper

    def cells_per_axis(self) -> Tuple[int, ...]:
        if len(self.repetitions) == 1:
            return (int(self.repetitions[0]),) * self.dim
        return tuple(int(r) for r in self.repetitions[: self.dim])


@dataclass(frozen=True)
class PDEParameters:
    velocity: ParsedFunctionParameters = field(default_factory=ParsedFunctionParameters)
    diffusivity: ParsedFunctionParameters = field(
        default_factory=lambda: ParsedFunctionParameters(expression="1.")
    )
    source: ParsedFunctionParameters = field(default_factory=ParsedFunctionParameters)


@dataclass(frozen=True)
class MaterialProperties:
    melt_temperature: float = 0.0
    latent_heat_of_melting: float = 3.34e6
    density: float = 916.7
    specific_heat_capacity: float = 2110.0
    heat_conductivity: float = 2.14


@dataclass(frozen=True)
class MaterialParameters:
    solid: MaterialProperties = field(default_factory=MaterialProperties)
    liquid: MaterialProperties = field(
        default_factory=lambda: MaterialProperties(heat_conductivity=0.5611)
    )


@dataclass(frozen=True)
class MeltFilmParameters:
    """Melt film boundary based on the Stefan condition."""

    thickness: float = 1.0e-4
    wall_temperature: float = 10.0


@dataclass(frozen=True)
class BoundaryConditionParameters:
    """One entry per boundary ID, in ID order.

    function_double_arguments is consumed front to back while resolving
    the boundary functions.
    """

    implementation_types: Tuple[str, ...] = ("strong", "strong")
    function_names: Tuple[str, ...] = ("constant", "constant")
    function_double_arguments: Tuple[float, ...] = (0.0, 0.0)
    parsed_function: ParsedFunctionParameters = field(default_factory=ParsedFunctionParameters)
    melt_film: MeltFilmParameters = field(default_factory=MeltFilmParameters)


@dataclass(frozen=True)
class InitialValueParameters:
    function_name: str = "parsed"  # "parsed" or "interpolate_old_field"
    parsed_function: ParsedFunctionParameters = field(default_factory=ParsedFunctionParameters)
    restart_file: str = "field.h5"


@dataclass(frozen=True)
class AdaptiveRefinementParameters:
    initial_cycles: int = 0
    interval: int = 0  # 0 disables periodic refinement
    cycles_at_interval: int = 5
    max_level: int = 10
    max_cells: int = 2000
    refine_fraction: float = 0.3
    coarsen_fraction: float = 0.3


@dataclass(frozen=True)
class RefinementParameters:
    initial_global_cycles: int = 4
    initial_boundary_cycles: int = 0
    boundaries_to_refine: Tuple[int, ...] = ()
    adaptive: AdaptiveRefinementParameters = field(default_factory=AdaptiveRefinementParameters)


@dataclass(frozen=True)
class TimeParameters:
    end_time: float = 1.0
    step_size: float = 0.0  # 0 resolves to end_time / 2**global_refinement_levels
    global_refinement_levels: int = 4
    semi_implicit_theta: float = 0.5
    stop_when_steady: bool = False

    def resolved_step_size(self) -> float:
        if self.step_size < 1e-14:
            return self.end_time / 2.0 ** self.global_refinement_levels
        return self.step_size


@dataclass(frozen=True)
class SolverParameters:
    method: str = "CG"  # "CG" or "BiCGStab"
    max_iterations: int = 1000
    tolerance: float = 1e-8
    normalize_tolerance: bool = False
    preconditioner: str = "ssor"  # "ssor", "jacobi", "amg" or "none"


@dataclass(frozen=True)
class OutputParameters:
    directory: str = "."
    write_solution_vtk: bool = True
    write_solution_table: bool = False
    time_step_interval: int = 1  # 0 writes only the final step
    field_file_name: str = "field.h5"
    verification_table_file_name: str = "verification_table.txt"
    solution_table_file_name: str = "1D_solution_table.txt"


@dataclass(frozen=True)
class VerificationParameters:
    enabled: bool = False
    exact_solution: ParsedFunctionParameters = field(default_factory=ParsedFunctionParameters)


SOLVER_METHODS = ("CG", "BiCGStab")
PRECONDITIONERS = ("ssor", "jacobi", "amg", "none")
GRID_NAMES = ("hyper_rectangle", "hyper_cube")
INITIAL_VALUE_FUNCTIONS = ("parsed", "interpolate_old_field")


@dataclass(frozen=True)
class Parameters:
    """Complete run configuration, built once and passed to the controller."""

    geometry: GeometryParameters = field(default_factory=GeometryParameters)
    pde: PDEParameters = field(default_factory=PDEParameters)
    materials: MaterialParameters = field(default_factory=MaterialParameters)
    boundary_conditions: BoundaryConditionParameters = field(
        default_factory=BoundaryConditionParameters
    )
    initial_values: InitialValueParameters = field(default_factory=InitialValueParameters)
    refinement: RefinementParameters = field(default_factory=RefinementParameters)
    time: TimeParameters = field(default_factory=TimeParameters)
    solver: SolverParameters = field(default_factory=SolverParameters)
    output: OutputParameters = field(default_factory=OutputParameters)
    verification: VerificationParameters = field(default_factory=VerificationParameters)

    @classmethod
    def from_config(cls, cfg) -> "Parameters":
        """Build parameters from a Hydra/OmegaConf config or a plain dict.

        Only the sections named by the dataclass fields are read; other
        top-level keys (mlflow, experiment_name, ...) are ignored.
        """
        from omegaconf import DictConfig, OmegaConf

        if isinstance(cfg, DictConfig):
            cfg = OmegaConf.to_container(cfg, resolve=True)
        sections = {f.name for f in fields(cls)}
        return _from_dict(cls, {k: v for k, v in cfg.items() if k in sections})

    def validate(self) -> None:
        """Raise ConfigurationError for values the time loop cannot run with."""
        g, t, s = self.geometry, self.time, self.solver
        if g.dim not in (1, 2):
            raise ConfigurationError(f"Unsupported dimension {g.dim}; expected 1 or 2")
        if g.grid_name not in GRID_NAMES:
            raise ConfigurationError(f"Unknown grid_name '{g.grid_name}'")
        lower, upper = g.bounds()
        if len(lower) != g.dim or len(upper) != g.dim:
            raise ConfigurationError(f"geometry.sizes {g.sizes} do not describe a {g.dim}D box")
        if any(hi <= lo for lo, hi in zip(lower, upper)):
            raise ConfigurationError(f"Degenerate box {lower} -> {upper}")
        if any(angle != 0.0 for angle in g.rotation()):
            raise ConfigurationError(
                f"geometry.transformations {g.transformations}: only shifts are supported, "
                "the rotation component must be 0"
            )
        if any(r < 1 for r in g.cells_per_axis()):
            raise ConfigurationError(f"geometry.repetitions must be positive, got {g.repetitions}")
        if not 0.0 <= t.semi_implicit_theta <= 1.0:
            raise ConfigurationError(
                f"semi_implicit_theta must lie in [0, 1], got {t.semi_implicit_theta}"
            )
        if not t.resolved_step_size() > 0.0:
            raise ConfigurationError(
                f"Time step size resolves to {t.resolved_step_size()}; must be positive"
            )
        if s.method not in SOLVER_METHODS:
            raise ConfigurationError(f"Unknown solver method '{s.method}'")
        if s.preconditioner not in PRECONDITIONERS:
            raise ConfigurationError(f"Unknown preconditioner '{s.preconditioner}'")
        if s.tolerance <= 0.0 or s.max_iterations < 1:
            raise ConfigurationError("Solver tolerance and max_iterations must be positive")
        if self.output.time_step_interval < 0:
            raise ConfigurationError("output.time_step_interval must be >= 0")
        if self.initial_values.function_name not in INITIAL_VALUE_FUNCTIONS:
            raise ConfigurationError(
                f"Unknown initial values function '{self.initial_values.function_name}'"
            )
        a = self.refinement.adaptive
        for name in ("refine_fraction", "coarsen_fraction"):
            if not 0.0 <= getattr(a, name) <= 1.0:
                raise ConfigurationError(f"refinement.adaptive.{name} must lie in [0, 1]")
        if a.interval < 0 or a.cycles_at_interval < 0 or a.initial_cycles < 0:
            raise ConfigurationError("Refinement interval and cycle counts must be >= 0")

    def to_mlflow(self) -> Dict[str, str]:
        """Flatten to 'section.key' strings for mlflow.log_params."""
        return _flatten(asdict(self))

    def to_dataframe(self):
        return pd.DataFrame([self.to_mlflow()])


def _from_dict(cls, data):
    if data is None:
        return cls()
    known = {f.name: f for f in fields(cls)}
    unknown = set(data) - set(known)
    if unknown:
        raise ConfigurationError(f"Unknown keys for {cls.__name__}: {sorted(unknown)}")
    kwargs = {}
    for name, value in data.items():
        ftype = known[name].type
        if is_dataclass(ftype):
            kwargs[name] = _from_dict(ftype, value)
        elif isinstance(value, (list, tuple)):
            kwargs[name] = tuple(value)
        else:
            kwargs[name] = value
    return cls(**kwargs)


def _flatten(d: dict, prefix: str = "") -> Dict[str, str]:
    flat = {}
    for key, value in d.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict) and value:
            flat.update(_flatten(value, prefix=f"{name}."))
        elif isinstance(value, (list, tuple)):
            flat[name] = ", ".join(str(v) for v in value)
        else:
            flat[name] = str(value)
    return flat


# ========================================================
# Metrics (Output Results)
# ========================================================


@dataclass
class Metrics:
    """Run metrics - computed during/after the time loop."""

    time_steps: int = 0
    final_time: float = 0.0
    n_active_cells: int = 0
    n_dofs: int = 0
    total_solver_iterations: int = 0
    pre_refinement_cycles: int = 0
    reached_steady_state: bool = False
    wall_time_seconds: float = 0.0
    final_L1_error: float = float("nan")
    final_L2_error: float = float("nan")

    def to_mlflow(self) -> Dict[str, float]:
        return {k: float(v) for k, v in asdict(self).items()}

    def to_dataframe(self):
        return pd.DataFrame([asdict(self)])


# ========================================================
# Time Series (Per-Step History)
# ========================================================


@dataclass
class TimeSeries:
    """One entry per executed step, including steps later discarded by a
    pre-refinement replay."""

    step_index: List[int] = field(default_factory=list)
    time: List[float] = field(default_factory=list)
    solver_iterations: List[int] = field(default_factory=list)
    n_active_cells: List[int] = field(default_factory=list)
    n_dofs: List[int] = field(default_factory=list)

    def append(self, step_index, time, solver_iterations, n_active_cells, n_dofs):
        self.step_index.append(step_index)
        self.time.append(time)
        self.solver_iterations.append(solver_iterations)
        self.n_active_cells.append(n_active_cells)
        self.n_dofs.append(n_dofs)

    def __len__(self):
        return len(self.step_index)

    def to_dataframe(self) -> pd.DataFrame:
        """Convert to DataFrame with one row per executed step."""
        return pd.DataFrame(asdict(self))

    def to_mlflow_batch(self, timestamp: int = 0) -> List[Metric]:
        """Metrics for MlflowClient.log_batch, stepped by execution order."""
        batch = []
        for i in range(len(self)):
            for key in ("time", "solver_iterations", "n_active_cells", "n_dofs"):
                value = float(getattr(self, key)[i])
                batch.append(Metric(key=f"series/{key}", value=value, timestamp=timestamp, step=i))
        return batch


# ========================================================
# Verification (Errors Against an Exact Solution)
# ========================================================


@dataclass(frozen=True)
class VerificationRecord:
    time_step_size: float
    time: float
    cells: int
    dofs: int
    L1_norm_error: float
    L2_norm_error: float


@dataclass
class VerificationTable:
    """Append-only sequence of verification records."""

    records: List[VerificationRecord] = field(default_factory=list)

    def append(self, record: VerificationRecord) -> None:
        self.records.append(record)

    def __len__(self):
        return len(self.records)

    def to_dataframe(self) -> pd.DataFrame:
        columns = [f.name for f in fields(VerificationRecord)]
        return pd.DataFrame([asdict(r) for r in self.records], columns=columns)

    def write(self, path, precision: int = 14) -> Path:
        """Write as a whitespace-aligned text table in scientific notation."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        df = self.to_dataframe().astype(float)
        with open(path, "w") as f:
            f.write(df.to_string(index=False, float_format=lambda v: f"{v:.{precision}e}"))
            f.write("\n")
        return path
