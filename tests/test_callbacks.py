"""Tests for the Hydra sweep callbacks that do not need a running sweep."""

import json

from omegaconf import OmegaConf

from callbacks.mlflow_callback import resolve_sweep_name
from callbacks.verification_callback import collect_results, plot_time_convergence


class TestSweepName:
    def test_placeholders_are_resolved(self):
        cfg = OmegaConf.create({"time": {"semi_implicit_theta": 0.5}, "geometry": {"dim": 2}})
        name = resolve_sweep_name("dt-sweep-theta{time.semi_implicit_theta}-{geometry.dim}d", cfg)
        assert name == "dt-sweep-theta0.5-2d"

    def test_unknown_placeholder_is_kept(self):
        cfg = OmegaConf.create({"time": {}})
        assert resolve_sweep_name("sweep-{time.missing}", cfg) == "sweep-{time.missing}"


class TestVerificationPlots:
    def test_collect_and_plot(self, tmp_path):
        for i, dt in enumerate([0.04, 0.02, 0.01]):
            job_dir = tmp_path / str(i)
            job_dir.mkdir()
            result = {
                "time_step_size": dt,
                "theta": 0.5,
                "cells": 64,
                "dofs": 65,
                "L1_norm_error": dt**2,
                "L2_norm_error": 2 * dt**2,
            }
            (job_dir / "verification_result.json").write_text(json.dumps(result))

        results = collect_results(tmp_path)
        assert len(results) == 3

        figures = tmp_path / "figures"
        figures.mkdir()
        path = plot_time_convergence(results, 0.5, figures)
        assert path.exists()
        assert path.name == "time_convergence_theta0.5.pdf"
