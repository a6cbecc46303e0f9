"""Hydra callback for MLflow parent run management during sweeps."""

import logging
import os
import re
from typing import Dict, Optional

from hydra.experimental.callback import Callback
from omegaconf import DictConfig, OmegaConf

log = logging.getLogger(__name__)

PLACEHOLDER = re.compile(r"\{([\w.]+)\}")


def resolve_sweep_name(sweep_name: str, config: DictConfig) -> str:
    """Replace {dotted.key} placeholders with values from the job config."""

    def value(match):
        found = OmegaConf.select(config, match.group(1))
        return match.group(0) if found is None else str(found)

    return PLACEHOLDER.sub(value, sweep_name)


class MLflowSweepCallback(Callback):
    """Creates or reuses parent MLflow runs for Hydra multiruns.

    Supports grouping by any config value:
    - If sweep_name contains {key} placeholders, one parent run is created
      per distinct value
    - Child runs are nested under their respective parent

    Example sweep_name patterns:
    - "dt-sweep"                                -> Single parent for all runs
    - "dt-sweep-theta{time.semi_implicit_theta}" -> Separate parent per theta
    """

    def __init__(self) -> None:
        self._parent_runs: Dict[str, str] = {}  # sweep_name -> run_id
        self._created_parent_runs: Dict[str, str] = {}  # parents created by this sweep
        self._current_parent_id: Optional[str] = None
        self._tracking_uri: Optional[str] = None
        self._full_experiment_name: Optional[str] = None
        self._base_sweep_name: Optional[str] = None

    def _find_existing_parent(self, experiment_name: str, sweep_name: str) -> Optional[str]:
        """Find an existing parent run with the same sweep_name."""
        import mlflow

        try:
            runs = mlflow.search_runs(
                experiment_names=[experiment_name],
                filter_string=f"tags.sweep = 'parent' AND tags.`mlflow.runName` = '{sweep_name}'",
                order_by=["start_time DESC"],
                max_results=1,
            )
        except mlflow.exceptions.MlflowException as e:
            log.warning(f"Error searching for parent run: {e}")
            return None

        if runs.empty:
            return None
        return runs.iloc[0]["run_id"]

    def _get_or_create_parent(self, sweep_name: str, config: DictConfig) -> str:
        """Get existing parent run or create a new one for this sweep_name."""
        import mlflow

        # Check our cache first
        if sweep_name in self._parent_runs:
            return self._parent_runs[sweep_name]

        # Check for existing parent in MLflow
        existing_id = self._find_existing_parent(self._full_experiment_name, sweep_name)
        if existing_id:
            self._parent_runs[sweep_name] = existing_id
            log.info(f"Reusing existing parent run '{sweep_name}': {existing_id}")
            return existing_id

        # Create new parent run
        parent_run = mlflow.start_run(run_name=sweep_name)
        parent_id = parent_run.info.run_id
        self._parent_runs[sweep_name] = parent_id
        self._created_parent_runs[sweep_name] = parent_id

        # Log config and tags to parent
        mlflow.log_dict(OmegaConf.to_container(config), "sweep_config.yaml")
        mlflow.set_tag("sweep", "parent")

        # Log HPC job info if available
        job_id = os.environ.get("LSB_JOBID")
        if job_id:
            mlflow.set_tag("lsf.job_id", job_id)
            mlflow.set_tag("lsf.job_name", os.environ.get("LSB_JOBNAME", ""))

        # End the run context (we'll reference it by ID)
        mlflow.end_run()

        log.info(f"Created parent run '{sweep_name}': {parent_id}")
        return parent_id

    def on_multirun_start(self, config: DictConfig, **kwargs) -> None:
        """Setup MLflow tracking before sweep starts."""
        import mlflow
        from dotenv import load_dotenv

        load_dotenv()

        # Setup MLflow tracking
        self._tracking_uri = config.mlflow.get("tracking_uri", "./mlruns")
        mlflow.set_tracking_uri(self._tracking_uri)

        # Build experiment name
        experiment_name = config.experiment_name
        project_prefix = config.mlflow.get("project_prefix", "")
        if project_prefix and not experiment_name.startswith("/"):
            self._full_experiment_name = f"{project_prefix}/{experiment_name}"
        else:
            self._full_experiment_name = experiment_name

        mlflow.set_experiment(self._full_experiment_name)

        # Store base sweep name (may contain {key} placeholders)
        self._base_sweep_name = config.get("sweep_name", "sweep")

        log.info(f"MLflow sweep callback initialized for experiment: {self._full_experiment_name}")

    def on_job_start(self, config: DictConfig, **kwargs) -> None:
        """Set parent run ID for each job from its resolved sweep name."""
        import mlflow

        # Ensure tracking is set up
        if self._tracking_uri:
            mlflow.set_tracking_uri(self._tracking_uri)
        if self._full_experiment_name:
            mlflow.set_experiment(self._full_experiment_name)

        sweep_name = resolve_sweep_name(self._base_sweep_name or "sweep", config)
        parent_id = self._get_or_create_parent(sweep_name, config)
        self._current_parent_id = parent_id

        # Set env var so child run can find parent
        os.environ["MLFLOW_PARENT_RUN_ID"] = parent_id

    def on_multirun_end(self, config: DictConfig, **kwargs) -> None:
        """Clean up after sweep completes and mark created parents finished."""
        from mlflow.tracking import MlflowClient

        # Clean up env var
        os.environ.pop("MLFLOW_PARENT_RUN_ID", None)

        log.info(f"Sweep completed. Created {len(self._created_parent_runs)} parent run(s).")
        for name, run_id in self._parent_runs.items():
            log.info(f"  - {name}: {run_id}")

        client = MlflowClient(tracking_uri=self._tracking_uri)
        for run_id in self._created_parent_runs.values():
            client.set_terminated(run_id)
