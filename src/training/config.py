"""
Training Configuration Module
=============================

Centralized configuration for the DDPG learner, the multi-agent exchange
and the cohort training loop.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional
import json
from pathlib import Path

import torch


@dataclass
class NetworkConfig:
    """Network shapes."""

    state_size: int = 58              # Features per state snapshot
    state_input_count: int = 1        # Snapshots per state window
    num_tasks: int = 1                # Concurrently trained tasks
    comm_size: int = 0                # Message length (0 = no communication)
    num_teammates: int = 0            # Teammates whose messages are heard
    use_semantic: bool = False        # Train a semantic (message) network

    actor_hidden_dims: List[int] = field(default_factory=lambda: [1024, 512, 256, 128])
    critic_hidden_dims: List[int] = field(default_factory=lambda: [1024, 512, 256, 128])
    semantic_hidden_dims: List[int] = field(default_factory=lambda: [256, 128])

    @property
    def state_dim(self) -> int:
        return self.state_size * self.state_input_count

    @property
    def hear_dim(self) -> int:
        return self.comm_size * self.num_teammates


@dataclass
class DDPGConfig:
    """Actor-critic update hyperparameters."""

    gamma: float = 0.99               # Discount factor
    tau: float = 0.001                # Soft target update rate
    lr_actor: float = 1e-5
    lr_critic: float = 1e-3
    lr_semantic: float = 1e-4
    max_grad_norm: Optional[float] = 10.0  # None disables clipping

    memory_capacity: int = 500_000
    minibatch_size: int = 32

    target_strategy: str = "bootstrap"  # "bootstrap", "on_policy" or "mixed"
    beta: float = 0.2                 # On-policy weight for "mixed"

    randomize_comm: bool = True       # Exploration also randomizes the message
    loss_smoothing: float = 0.99      # Smoothed loss decay
    display_interval: int = 1000      # Log smoothed losses every N updates


@dataclass
class SyncConfig:
    """Multi-agent exchange settings."""

    num_agents: int = 1
    mode: str = "exact"               # "exact", "approx" or "dial"
    share_memory: bool = False        # Every agent holds agent 0's replay memory
    gather_timeout: Optional[float] = None  # Seconds; None waits forever


@dataclass
class TrainingConfig:
    """Complete training configuration."""

    network: NetworkConfig = field(default_factory=NetworkConfig)
    ddpg: DDPGConfig = field(default_factory=DDPGConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)

    # Budget
    max_episodes: int = 10_000
    max_steps: int = 500              # Step cap per episode
    updates_per_episode: int = 10
    warmup_episodes: int = 10         # Episodes collected before updating

    # Exploration
    epsilon_start: float = 1.0
    epsilon_end: float = 0.1
    explore_episodes: int = 1_000     # Linear annealing length

    # Snapshots
    snapshot_interval: int = 100      # Episodes between snapshots
    remove_old_snapshots: bool = True
    snapshot_memory: bool = True
    resume: bool = True

    # Evaluation (0 disables)
    eval_interval: int = 0            # Episodes between greedy evaluations
    eval_episodes: int = 5

    # Logging
    log_interval: int = 10
    experiment_name: str = "hfo_ddpg"
    output_dir: str = "outputs"

    seed: int = 42
    device: str = "auto"              # "auto", "cpu" or "cuda"

    def epsilon(self, episode: int) -> float:
        """Linearly annealed exploration rate."""
        if self.explore_episodes <= 0:
            return self.epsilon_end
        frac = min(1.0, episode / self.explore_episodes)
        return self.epsilon_start + frac * (self.epsilon_end - self.epsilon_start)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    def save(self, path: str):
        """Save configuration to JSON."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: str) -> "TrainingConfig":
        """Load configuration from JSON; unknown keys are ignored."""
        with open(path, "r") as f:
            data = json.load(f)

        config = cls()
        for section in ("network", "ddpg", "sync"):
            if section in data:
                sub = getattr(config, section)
                for k, v in data[section].items():
                    if hasattr(sub, k):
                        setattr(sub, k, v)

        for k, v in data.items():
            if k not in ("network", "ddpg", "sync") and hasattr(config, k):
                setattr(config, k, v)

        return config


def resolve_device(device: str = "auto") -> torch.device:
    """Map "auto" to CUDA when available."""
    if device == "auto":
        return torch.device("cuda" if torch.cuda.is_available() else "cpu")
    return torch.device(device)


# =============================================================================
# PRESETS
# =============================================================================

def get_debug_config() -> TrainingConfig:
    """Tiny networks and short runs for tests and smoke runs."""
    config = TrainingConfig()
    config.network.state_size = 8
    config.network.actor_hidden_dims = [32, 32]
    config.network.critic_hidden_dims = [32, 32]
    config.network.semantic_hidden_dims = [16]
    config.ddpg.memory_capacity = 1_000
    config.ddpg.minibatch_size = 8
    config.ddpg.lr_actor = 1e-3
    config.ddpg.display_interval = 10
    config.max_episodes = 4
    config.max_steps = 20
    config.updates_per_episode = 2
    config.warmup_episodes = 1
    config.explore_episodes = 2
    config.snapshot_interval = 2
    config.log_interval = 1
    config.device = "cpu"
    return config


def get_comm_config(num_agents: int = 2, comm_size: int = 4, mode: str = "exact") -> TrainingConfig:
    """Debug-sized cohort that talks over a learned message channel."""
    config = get_debug_config()
    config.network.comm_size = comm_size
    config.network.num_teammates = num_agents - 1
    config.sync.num_agents = num_agents
    config.sync.mode = mode
    return config
