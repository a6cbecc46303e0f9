"""Tests for the MLflow setup in the Hydra entry point."""

import os
import sys
from pathlib import Path

from omegaconf import OmegaConf

sys.path.insert(0, str(Path(__file__).parent.parent))

from run_solver import setup_mlflow  # noqa: E402


class TestSetupMlflow:
    def test_configured_uri_overrides_environment(self, tmp_path, monkeypatch):
        """The configured tracking URI wins over one left in the environment."""
        monkeypatch.setenv("MLFLOW_TRACKING_URI", "http://elsewhere:5000")
        uri = str(tmp_path / "mlruns")
        cfg = OmegaConf.create(
            {"experiment_name": "demo", "mlflow": {"mode": "files", "tracking_uri": uri, "project_prefix": ""}}
        )
        assert setup_mlflow(cfg) == "demo"
        assert os.environ["MLFLOW_TRACKING_URI"] == uri

    def test_project_prefix(self, tmp_path, monkeypatch):
        monkeypatch.delenv("MLFLOW_TRACKING_URI", raising=False)
        cfg = OmegaConf.create(
            {
                "experiment_name": "demo",
                "mlflow": {"tracking_uri": str(tmp_path / "mlruns"), "project_prefix": "course"},
            }
        )
        assert setup_mlflow(cfg) == "course/demo"
