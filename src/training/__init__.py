"""
Training Module
===============

Training infrastructure for the DDPG learning core.

Components:
    - config: Hyperparameter configuration and presets
    - metrics: Logging and metrics tracking
    - trainer: Threaded cohort training loop (import from training.trainer)

Example:
    >>> from training import get_debug_config
    >>> from training.trainer import CohortTrainer
    >>> trainer = CohortTrainer(get_debug_config(), task=my_task)
    >>> trainer.train()
"""

from .config import (
    DDPGConfig,
    NetworkConfig,
    SyncConfig,
    TrainingConfig,
    get_comm_config,
    get_debug_config,
    resolve_device,
)

from .metrics import (
    EvaluationResult,
    MetricsLogger,
    RollingStats,
)

__all__ = [
    # Config
    "DDPGConfig",
    "NetworkConfig",
    "SyncConfig",
    "TrainingConfig",
    "get_comm_config",
    "get_debug_config",
    "resolve_device",
    # Metrics
    "EvaluationResult",
    "MetricsLogger",
    "RollingStats",
]
