"""
Training Curves
===============

Plots of the history written by MetricsLogger.

Panels:
    1. Episode reward per agent (raw and moving average)
    2. Goal rate over episodes
    3. Smoothed critic and actor losses
    4. Exploration rate and replay memory size
"""

import json
from pathlib import Path
from typing import Dict, List, Optional, Union

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np


def rolling_moving_average(data, window: int = 50) -> np.ndarray:
    """
    Moving average with the same length as the input.

    The first `window - 1` points use an expanding window.
    """
    data = np.asarray(data, dtype=np.float64)
    if len(data) < window:
        return np.array([np.mean(data[:i + 1]) for i in range(len(data))])

    cumsum = np.cumsum(np.insert(data, 0, 0))
    smoothed = (cumsum[window:] - cumsum[:-window]) / window
    pad = np.array([np.mean(data[:i + 1]) for i in range(window - 1)])
    return np.concatenate([pad, smoothed])


def load_history(experiment_dir: Union[str, Path]) -> Dict[str, List]:
    """Read history.json of an experiment directory."""
    with open(Path(experiment_dir) / "history.json") as f:
        return json.load(f)


def plot_training_curves(
    history: Dict[str, List],
    save_path: Union[str, Path],
    window: int = 50,
    title: Optional[str] = None
) -> Path:
    """
    Draw the four training panels and save them as an image.

    Args:
        history: MetricsLogger history (column name -> values)
        save_path: Output image path
        window: Moving average window
        title: Figure title

    Returns:
        Path of the written image
    """
    save_path = Path(save_path)
    save_path.parent.mkdir(parents=True, exist_ok=True)

    episodes = np.asarray(history.get("episode", []))
    agent_ids = np.asarray(history.get("agent_id", np.zeros(len(episodes), dtype=int)))

    fig, axes = plt.subplots(2, 2, figsize=(12, 8))
    ax_reward, ax_goal, ax_loss, ax_explore = axes.ravel()

    for agent_id in sorted(set(agent_ids.tolist())):
        mask = agent_ids == agent_id
        rewards = np.asarray(history["reward"])[mask]
        ax_reward.plot(episodes[mask], rewards, alpha=0.25)
        ax_reward.plot(episodes[mask], rolling_moving_average(rewards, window),
                       label=f"agent {agent_id}")
    ax_reward.set_xlabel("Episode")
    ax_reward.set_ylabel("Reward")
    ax_reward.set_title("Episode reward")
    if len(episodes):
        ax_reward.legend(loc="best")

    ax_goal.plot(np.asarray(history.get("goal_rate", [])) * 100.0, color="tab:green")
    ax_goal.set_xlabel("Logged episode")
    ax_goal.set_ylabel("Goals (%)")
    ax_goal.set_title("Goal rate")

    ax_loss.plot(history.get("critic_loss", []), label="critic")
    ax_loss.plot(history.get("actor_loss", []), label="actor")
    if any(history.get("semantic_loss", [])):
        ax_loss.plot(history["semantic_loss"], label="semantic")
    ax_loss.set_xlabel("Logged episode")
    ax_loss.set_title("Mean losses")
    ax_loss.legend(loc="best")

    ax_explore.plot(history.get("epsilon", []), color="tab:orange", label="epsilon")
    ax_explore.set_xlabel("Logged episode")
    ax_explore.set_ylabel("Epsilon")
    ax_memory = ax_explore.twinx()
    ax_memory.plot(history.get("memory_size", []), color="tab:purple", label="memory")
    ax_memory.set_ylabel("Replay memory size")
    ax_explore.set_title("Exploration and memory")

    if title:
        fig.suptitle(title)
    fig.tight_layout()
    fig.savefig(save_path, dpi=120)
    plt.close(fig)
    return save_path
