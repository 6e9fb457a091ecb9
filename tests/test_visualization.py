"""
Test Suite for Training Curves
==============================

Tests for src/visualization/training_curves.py
"""

import json
import sys
import os

import numpy as np
import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from visualization.training_curves import (
    load_history,
    plot_training_curves,
    rolling_moving_average,
)


def fake_history(n=30):
    rng = np.random.default_rng(0)
    return {
        "episode": [i // 2 for i in range(n)],
        "agent_id": [i % 2 for i in range(n)],
        "reward": rng.normal(size=n).tolist(),
        "goal_rate": np.linspace(0, 0.5, n).tolist(),
        "critic_loss": rng.random(n).tolist(),
        "actor_loss": (-rng.random(n)).tolist(),
        "semantic_loss": [0.0] * n,
        "epsilon": np.linspace(1.0, 0.1, n).tolist(),
        "memory_size": list(range(0, 10 * n, 10)),
    }


class TestRollingAverage:
    """Tests for the moving average."""

    def test_same_length(self):
        data = np.arange(100, dtype=float)

        smoothed = rolling_moving_average(data, window=10)

        assert smoothed.shape == (100,)
        assert smoothed[-1] == pytest.approx(np.mean(data[-10:]))

    def test_expanding_start(self):
        smoothed = rolling_moving_average([2.0, 4.0, 6.0, 8.0], window=3)

        np.testing.assert_allclose(smoothed, [2.0, 3.0, 4.0, 6.0])

    def test_short_input(self):
        smoothed = rolling_moving_average([1.0, 3.0], window=50)

        np.testing.assert_allclose(smoothed, [1.0, 2.0])


class TestPlots:
    """Tests for the figure writer."""

    def test_plot_written(self, tmp_path):
        path = plot_training_curves(fake_history(), tmp_path / "plots" / "curves.png", window=5, title="run")

        assert path.exists()
        assert path.stat().st_size > 0

    def test_load_history(self, tmp_path):
        history = fake_history(4)
        (tmp_path / "history.json").write_text(json.dumps(history))

        assert load_history(tmp_path) == history
