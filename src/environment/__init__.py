"""
Environment Module
==================

Environment-facing types for the HFO learning core.
    - action_space: Hybrid discrete + continuous actor output layout
    - task: Game status codes and the task contract
"""

from .action_space import (
    Action,
    ActionSpec,
    ActionType,
    HFO_PARAM_RANGES,
    default_action_spec,
    random_actor_output,
    softmax,
)
from .task import Status, Task, is_terminal

__all__ = [
    "Action",
    "ActionSpec",
    "ActionType",
    "HFO_PARAM_RANGES",
    "default_action_spec",
    "random_actor_output",
    "softmax",
    "Status",
    "Task",
    "is_terminal",
]
