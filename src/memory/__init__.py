"""
Memory Module
=============

Experience replay for the actor-critic learner.
    - replay_memory: Transition record and bounded FIFO buffer
    - serialization: Compressed length-delimited file format
"""

from .replay_memory import ReplayMemory, Transition, label_transitions
from .serialization import iter_transitions, read_transitions, write_transitions

__all__ = [
    "ReplayMemory",
    "Transition",
    "label_transitions",
    "iter_transitions",
    "read_transitions",
    "write_transitions",
]
