"""
Metrics Logger Module
=====================

Logging and metrics tracking for cohort training.

Features:
    - Rolling statistics
    - CSV logging (one row per agent episode)
    - JSON history and final statistics for plotting
"""

import csv
import json
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from environment.task import Status


@dataclass
class RollingStats:
    """Rolling statistics tracker."""

    window_size: int = 100
    _values: deque = field(default_factory=lambda: deque(maxlen=100))

    def __post_init__(self):
        self._values = deque(maxlen=self.window_size)

    def add(self, value: float):
        """Add a value."""
        self._values.append(value)

    @property
    def mean(self) -> float:
        """Get rolling mean."""
        if len(self._values) == 0:
            return 0.0
        return float(np.mean(self._values))

    @property
    def std(self) -> float:
        """Get rolling std."""
        if len(self._values) < 2:
            return 0.0
        return float(np.std(self._values))

    @property
    def min(self) -> float:
        if len(self._values) == 0:
            return 0.0
        return float(np.min(self._values))

    @property
    def max(self) -> float:
        if len(self._values) == 0:
            return 0.0
        return float(np.max(self._values))

    def __len__(self) -> int:
        return len(self._values)


class MetricsLogger:
    """
    Metrics logging shared by every agent thread of a cohort.

    Tracks:
        - Episode rewards, lengths and goal rate
        - Smoothed critic, actor and semantic losses
        - Exploration rate and replay memory size

    All methods may be called concurrently from agent threads.

    Example:
        >>> logger = MetricsLogger("outputs", "run1")
        >>> logger.log_episode(agent_id=0, reward=1.0, length=42, status=Status.GOAL)
        >>> logger.log_update(agent_id=0, critic_loss=0.5, actor_loss=-0.1)
        >>> logger.save()
    """

    FIELDS = [
        "episode",
        "agent_id",
        "reward",
        "episode_length",
        "status",
        "goal_rate",
        "critic_loss",
        "actor_loss",
        "semantic_loss",
        "epsilon",
        "memory_size",
        "time_elapsed",
    ]

    def __init__(
        self,
        output_dir: str,
        experiment_name: str = "experiment",
        window_size: int = 100
    ):
        """
        Initialize logger.

        Args:
            output_dir: Directory for log files
            experiment_name: Name of experiment
            window_size: Size of rolling statistics window
        """
        self.output_dir = Path(output_dir) / experiment_name
        self.output_dir.mkdir(parents=True, exist_ok=True)

        self.experiment_name = experiment_name
        self.window_size = window_size
        self._lock = threading.Lock()

        # Rolling statistics
        self.episode_rewards = RollingStats(window_size)
        self.episode_lengths = RollingStats(window_size)
        self.goals = RollingStats(window_size)

        self.critic_losses = RollingStats(window_size)
        self.actor_losses = RollingStats(window_size)
        self.semantic_losses = RollingStats(window_size)

        # Full history for plotting
        self.history: Dict[str, List[Any]] = {key: [] for key in self.FIELDS}

        # Counters
        self.total_steps = 0
        self.total_episodes = 0
        self.total_updates = 0
        self.start_time = time.time()

        self._csv_file = None
        self._csv_writer = None
        self._init_csv()

    def _init_csv(self):
        """Initialize CSV logging."""
        csv_path = self.output_dir / "training_log.csv"
        self._csv_file = open(csv_path, "w", newline="")
        self._csv_writer = csv.DictWriter(self._csv_file, fieldnames=self.FIELDS)
        self._csv_writer.writeheader()

    def log_update(
        self,
        agent_id: int,
        critic_loss: float,
        actor_loss: float,
        semantic_loss: Optional[float] = None
    ):
        """Record the losses of one update."""
        with self._lock:
            self.critic_losses.add(critic_loss)
            self.actor_losses.add(actor_loss)
            if semantic_loss is not None:
                self.semantic_losses.add(semantic_loss)
            self.total_updates += 1

    def log_episode(
        self,
        agent_id: int,
        reward: float,
        length: int,
        status: Status,
        epsilon: float = 0.0,
        memory_size: int = 0,
        episode: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Record a finished episode and append it to the CSV log.

        Args:
            agent_id: Agent that played the episode
            reward: Total episode reward
            length: Episode length (steps)
            status: Final game status
            epsilon: Exploration rate used
            memory_size: Replay memory size after the episode
            episode: Episode index (defaults to the running count)

        Returns:
            The logged record
        """
        with self._lock:
            self.episode_rewards.add(reward)
            self.episode_lengths.add(length)
            self.goals.add(1.0 if Status(status) == Status.GOAL else 0.0)
            self.total_steps += length
            self.total_episodes += 1

            record = {
                "episode": self.total_episodes if episode is None else episode,
                "agent_id": agent_id,
                "reward": float(reward),
                "episode_length": int(length),
                "status": Status(status).name,
                "goal_rate": self.goals.mean,
                "critic_loss": self.critic_losses.mean,
                "actor_loss": self.actor_losses.mean,
                "semantic_loss": self.semantic_losses.mean,
                "epsilon": epsilon,
                "memory_size": memory_size,
                "time_elapsed": time.time() - self.start_time,
            }
            for key, value in record.items():
                self.history[key].append(value)

            if self._csv_writer:
                self._csv_writer.writerow(record)
                self._csv_file.flush()
            return record

    def get_stats(self) -> Dict[str, float]:
        """Get current rolling statistics."""
        with self._lock:
            return {
                "reward_mean": self.episode_rewards.mean,
                "reward_std": self.episode_rewards.std,
                "episode_length_mean": self.episode_lengths.mean,
                "goal_rate": self.goals.mean,
                "critic_loss_mean": self.critic_losses.mean,
                "actor_loss_mean": self.actor_losses.mean,
                "semantic_loss_mean": self.semantic_losses.mean,
                "total_steps": self.total_steps,
                "total_episodes": self.total_episodes,
                "total_updates": self.total_updates,
                "time_elapsed": time.time() - self.start_time
            }

    def print_stats(self, prefix: str = ""):
        """Print current statistics."""
        stats = self.get_stats()
        sps = stats["total_steps"] / max(stats["time_elapsed"], 1e-6)

        print(f"{prefix}Episodes: {stats['total_episodes']} | "
              f"Steps: {stats['total_steps']:,} | "
              f"Reward: {stats['reward_mean']:.2f}+/-{stats['reward_std']:.2f} | "
              f"Goals: {stats['goal_rate'] * 100:.1f}% | "
              f"Critic: {stats['critic_loss_mean']:.4f} | "
              f"Actor: {stats['actor_loss_mean']:.4f} | "
              f"SPS: {sps:.0f}")

    def save(self):
        """Save history and final statistics."""
        with self._lock:
            history = {key: list(values) for key, values in self.history.items()}
        with open(self.output_dir / "history.json", "w") as f:
            json.dump(history, f, indent=2)

        with open(self.output_dir / "final_stats.json", "w") as f:
            json.dump(self.get_stats(), f, indent=2)

    def close(self):
        """Close file handles."""
        if self._csv_file:
            self._csv_file.close()
            self._csv_file = None
            self._csv_writer = None

    def __del__(self):
        self.close()


class EvaluationResult:
    """Container for greedy evaluation episodes."""

    def __init__(self):
        self.rewards: List[float] = []
        self.episode_lengths: List[int] = []
        self.statuses: List[Status] = []

    def add_episode(self, reward: float, length: int, status: Status):
        self.rewards.append(reward)
        self.episode_lengths.append(length)
        self.statuses.append(Status(status))

    @property
    def goals(self) -> int:
        return sum(1 for s in self.statuses if s == Status.GOAL)

    def summary(self) -> Dict[str, float]:
        """Get summary statistics."""
        if not self.rewards:
            return {"reward_mean": 0.0, "reward_std": 0.0, "episode_length_mean": 0.0,
                    "goal_rate": 0.0, "episodes": 0}
        return {
            "reward_mean": float(np.mean(self.rewards)),
            "reward_std": float(np.std(self.rewards)),
            "episode_length_mean": float(np.mean(self.episode_lengths)),
            "goal_rate": self.goals / len(self.statuses),
            "episodes": len(self.rewards)
        }
