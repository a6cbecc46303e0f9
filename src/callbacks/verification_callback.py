"""Hydra callback for time-convergence plots after a verification sweep."""

import json
import logging
from collections import defaultdict
from pathlib import Path
from typing import Any, Optional

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import mlflow
import numpy as np
from hydra.experimental.callback import Callback
from omegaconf import DictConfig

from fe.metrics import format_dt_latex, observed_order

log = logging.getLogger(__name__)

RESULT_FILE = "verification_result.json"


def collect_results(sweep_dir: Path) -> list:
    """Load every job's verification_result.json below `sweep_dir`."""
    results = []
    for result_file in sorted(Path(sweep_dir).glob(f"*/{RESULT_FILE}")):
        with open(result_file) as f:
            results.append(json.load(f))
    return results


def plot_time_convergence(data: list, theta: float, output_dir: Path) -> Path:
    """Log-log plot of final L1/L2 errors against time step size for one theta."""
    data = sorted(data, key=lambda d: d["time_step_size"])
    dt = np.array([d["time_step_size"] for d in data])
    l2 = np.array([d["L2_norm_error"] for d in data])
    l1 = np.array([d["L1_norm_error"] for d in data])

    fig, ax = plt.subplots(figsize=(8, 6))
    ax.loglog(dt, l2, "o-", label=f"L2 error (order {observed_order(dt, l2):.2f})", markersize=8)
    ax.loglog(dt, l1, "s-", label=f"L1 error (order {observed_order(dt, l1):.2f})", markersize=8)

    ax.set_xlabel(r"$\Delta t$", fontsize=12)
    ax.set_ylabel("Error at final time", fontsize=12)
    ax.set_title(
        rf"Time convergence ($\theta={theta}$, $\Delta t_{{min}}={format_dt_latex(dt.min())}$)",
        fontsize=14,
    )
    ax.legend(fontsize=11)
    ax.grid(True, which="both", alpha=0.3)

    plt.tight_layout()
    output_file = output_dir / f"time_convergence_theta{theta}.pdf"
    plt.savefig(output_file)
    plt.close(fig)
    log.info(f"  Saved: {output_file}")
    return output_file


class VerificationPlotCallback(Callback):
    """Generate time-convergence plots after a multirun sweep completes."""

    def __init__(self, figures_dir: str = "figures") -> None:
        self.figures_dir = figures_dir

    @staticmethod
    def _find_sweep_dir(config: DictConfig) -> Optional[Path]:
        """The sweep directory of this multirun, else the most recent one."""
        sweep_dir = Path(config.hydra.sweep.dir)
        if sweep_dir.exists():
            return sweep_dir
        candidates = list(Path("multirun").glob("*/*"))
        if not candidates:
            return None
        return max(candidates, key=lambda p: p.stat().st_mtime)

    def on_multirun_end(self, config: DictConfig, **kwargs: Any) -> None:
        """Collect all results and generate one plot per theta."""
        sweep_dir = self._find_sweep_dir(config)
        if sweep_dir is None:
            log.warning("No multirun directory found")
            return
        log.info(f"Collecting results from {sweep_dir}")

        results = collect_results(sweep_dir)
        if not results:
            log.warning(f"No verification results found in {sweep_dir}")
            return

        by_theta = defaultdict(list)
        for r in results:
            by_theta[r["theta"]].append(r)

        figures_dir = Path(self.figures_dir)
        figures_dir.mkdir(parents=True, exist_ok=True)
        client = mlflow.tracking.MlflowClient()
        for theta, data in by_theta.items():
            plot_file = plot_time_convergence(data, theta, figures_dir)

            # Log the plot to the parent run the jobs were nested under
            parent_run_id = data[0].get("parent_run_id")
            if not parent_run_id:
                log.warning(f"No parent run for theta={theta}, skipping MLflow artifact logging")
                continue
            client.log_artifact(parent_run_id, str(plot_file), artifact_path="figures")
            log.info(f"Logged {plot_file.name} to MLflow parent run {parent_run_id[:8]}")
