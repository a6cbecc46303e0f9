"""
Convection-Diffusion Runner - Hydra + MLflow integration for the theta-scheme solver.

RECOMMENDED USAGE - Parameter sweeps (multirun mode):
    # Time-convergence study against an exact solution
    uv run python run_solver.py -m +experiment=time_convergence

    # Custom sweeps
    uv run python run_solver.py -m time.step_size=0.1,0.05 time.semi_implicit_theta=0.5,1.0

    Multirun mode automatically:
    - Creates parent runs for organizing results
    - Generates convergence plots at the end (verification sweeps)
    - Uploads everything to MLflow

Single runs:
    uv run python run_solver.py
    uv run python run_solver.py +experiment=adaptive_2d

MLflow modes:
    local-files  - file-based ./mlruns (default)
    coolify      - remote server (requires .env with credentials)

Setup for remote MLflow:
    cp .env.template .env
    # Edit .env with your credentials
"""

import json
import logging
import os
import sys
from pathlib import Path

import hydra
import mlflow
from dotenv import load_dotenv
from hydra.core.hydra_config import HydraConfig
from mlflow.tracking import MlflowClient
from omegaconf import DictConfig, OmegaConf

# Load .env file (for MLflow credentials)
load_dotenv()

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent / "src"))

from peclet import Parameters, TimeIntegrationController  # noqa: E402

log = logging.getLogger(__name__)


# =============================================================================
# MLflow Logging
# =============================================================================


def setup_mlflow(cfg: DictConfig) -> str:
    """Setup MLflow tracking and return experiment name."""
    tracking_uri = cfg.mlflow.get("tracking_uri", "./mlruns")
    os.environ["MLFLOW_TRACKING_URI"] = str(tracking_uri)
    mlflow.set_tracking_uri(tracking_uri)

    # Build experiment name with optional project prefix
    experiment_name = cfg.experiment_name
    project_prefix = cfg.mlflow.get("project_prefix", "")
    if project_prefix and not experiment_name.startswith("/"):
        experiment_name = f"{project_prefix}/{experiment_name}"

    try:
        mlflow.set_experiment(experiment_name)
    except mlflow.exceptions.MlflowException as exc:
        # If experiment was previously deleted, fall back to a new name
        fallback = f"{experiment_name}-restored"
        log.warning(
            "MLflow set_experiment failed for '%s' (%s); falling back to '%s'",
            experiment_name,
            exc,
            fallback,
        )
        experiment_name = fallback
        mlflow.set_experiment(experiment_name)
    return experiment_name


def log_metrics_and_timeseries(controller, run_id: str):
    """Log final metrics and the per-step history to MLflow."""
    mlflow.log_metrics(controller.metrics.to_mlflow())

    batch_metrics = controller.time_series.to_mlflow_batch()
    if batch_metrics:
        MlflowClient().log_batch(run_id=run_id, metrics=batch_metrics)


def log_outputs(controller):
    """Upload the final field, verification table and VTK files as artifacts."""
    mlflow.log_artifact(str(controller.field_path), artifact_path="fields")
    if controller.verification_table_path is not None:
        mlflow.log_artifact(str(controller.verification_table_path))
    vtk_files = getattr(controller.output, "written", [])
    for path in vtk_files:
        mlflow.log_artifact(str(path), artifact_path="vtk")
    log.info(f"Logged field file and {len(vtk_files)} VTK file(s)")


def write_verification_result(controller, output_dir: Path) -> Path:
    """Summary consumed by VerificationPlotCallback after a sweep."""
    metrics = controller.metrics
    result = {
        "time_step_size": controller.time_state.step_size,
        "theta": controller.time_state.theta,
        "cells": metrics.n_active_cells,
        "dofs": metrics.n_dofs,
        "L1_norm_error": metrics.final_L1_error,
        "L2_norm_error": metrics.final_L2_error,
        "parent_run_id": os.environ.get("MLFLOW_PARENT_RUN_ID"),
    }
    path = output_dir / "verification_result.json"
    with open(path, "w") as f:
        json.dump(result, f, indent=2)
    return path


# =============================================================================
# Main Entry Point
# =============================================================================


@hydra.main(config_path="conf", config_name="config", version_base=None)
def main(cfg: DictConfig) -> None:
    """Hydra entry point - runs the time loop with MLflow tracking."""
    params = Parameters.from_config(cfg)
    log.info(
        f"{params.geometry.dim}D run: theta={params.time.semi_implicit_theta}, "
        f"dt={params.time.resolved_step_size():.6g}, end_time={params.time.end_time}"
    )

    # Setup MLflow
    experiment_name = setup_mlflow(cfg)
    log.info(f"MLflow experiment: {experiment_name}")

    controller = TimeIntegrationController(params)
    run_name = f"theta{params.time.semi_implicit_theta}_dt{params.time.resolved_step_size():.3g}"

    # Check for parent run (from sweep callback)
    parent_run_id = os.environ.get("MLFLOW_PARENT_RUN_ID")

    run_tags = {"dim": str(params.geometry.dim)}
    nested = False
    if parent_run_id:
        run_tags["mlflow.parentRunId"] = parent_run_id
        run_tags["parent_run_id"] = parent_run_id
        run_tags["sweep"] = "child"
        nested = True

    with mlflow.start_run(run_name=run_name, tags=run_tags, nested=nested) as run:
        mlflow.log_params(params.to_mlflow())

        # Log Hydra config as artifact
        mlflow.log_dict(OmegaConf.to_container(cfg, resolve=True), "config.yaml")

        # Tag with HPC job info if available
        job_id = os.environ.get("LSB_JOBID")
        if job_id:
            mlflow.set_tag("lsf.job_id", job_id)
            mlflow.set_tag("lsf.job_name", os.environ.get("LSB_JOBNAME", ""))

        log.info("Starting time loop...")
        controller.run()

        log_metrics_and_timeseries(controller, run.info.run_id)
        log_outputs(controller)

        if params.verification.enabled:
            output_dir = Path(HydraConfig.get().runtime.output_dir)
            write_verification_result(controller, output_dir)

        log.info(
            f"Done: {controller.metrics.time_steps} steps, "
            f"steady={controller.metrics.reached_steady_state}, "
            f"time={controller.metrics.wall_time_seconds:.2f}s"
        )


if __name__ == "__main__":
    main()
