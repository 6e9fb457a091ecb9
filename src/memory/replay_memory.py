"""
Replay Memory Module
====================

Bounded FIFO experience buffer for off-policy actor-critic training.

Stores Transitions:
    (state window, task id, actor output, reward, on-policy target, next state)

The next state is None iff the transition ended the episode.

A ReplayMemory may be shared by several agents: sharing hands out another
reference to the same object, so appends and clears from any holder are
seen by all of them.
"""

import threading
from collections import deque
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np


@dataclass(frozen=True, eq=False)
class Transition:
    """One recorded environment step."""
    states: Tuple[np.ndarray, ...]
    task: int
    action: np.ndarray
    reward: float
    on_policy_target: float = 0.0
    next_state: Optional[np.ndarray] = None

    @property
    def terminal(self) -> bool:
        return self.next_state is None

    def with_target(self, target: float) -> "Transition":
        """Copy of this transition with a new on-policy target."""
        return replace(self, on_policy_target=float(target))

    def next_states(self) -> Tuple[np.ndarray, ...]:
        """
        State window seen at the next step.

        The window slides by one: the oldest snapshot drops out and the
        next state is appended.
        """
        if self.next_state is None:
            raise ValueError("Terminal transition has no next state")
        return tuple(self.states[1:]) + (self.next_state,)


def label_transitions(
    episode: Sequence[Transition],
    gamma: float
) -> List[Transition]:
    """
    Compute tabular on-policy targets for a chronologically ordered episode.

    Walking backwards, the label of a terminal (or final) transition is its
    reward; every other label is reward + gamma * label of the next step.
    No network is consulted.

    Args:
        episode: Transitions in the order they were played
        gamma: Discount factor

    Returns:
        New list of transitions carrying the computed targets
    """
    labelled: List[Transition] = [None] * len(episode)
    running = 0.0
    for i in range(len(episode) - 1, -1, -1):
        transition = episode[i]
        if transition.terminal or i == len(episode) - 1:
            running = transition.reward
        else:
            running = transition.reward + gamma * running
        labelled[i] = transition.with_target(running)
    return labelled


class ReplayMemory:
    """
    Capacity-bounded FIFO buffer of Transitions with uniform sampling.

    Attributes:
        capacity: Maximum number of transitions held

    Example:
        >>> memory = ReplayMemory(capacity=5)
        >>> memory.add_transitions(transitions)
        >>> indices = memory.sample_transitions(32, rng)
        >>> batch = memory.transitions(indices)
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._buffer: deque = deque(maxlen=capacity)
        self._lock = threading.RLock()

    def add_transition(self, transition: Transition):
        """Append one transition, evicting the oldest when full."""
        with self._lock:
            self._buffer.append(transition)

    def add_transitions(self, transitions: Iterable[Transition]):
        """Append transitions in order, evicting the oldest when full."""
        with self._lock:
            self._buffer.extend(transitions)

    def sample_transitions(self, n: int, rng: np.random.Generator) -> np.ndarray:
        """
        Draw n indices uniformly at random, with replacement.

        The memory must not be empty.
        """
        with self._lock:
            size = len(self._buffer)
        return rng.integers(0, size, size=n)

    def sample_states(self, n: int, rng: np.random.Generator) -> List[Tuple[np.ndarray, ...]]:
        """State windows of n randomly sampled transitions."""
        with self._lock:
            indices = rng.integers(0, len(self._buffer), size=n)
            return [self._buffer[i].states for i in indices]

    def transitions(self, indices: Iterable[int]) -> List[Transition]:
        """Fetch the transitions stored at `indices`."""
        with self._lock:
            return [self._buffer[int(i)] for i in indices]

    def label_transitions(self, episode: Sequence[Transition], gamma: float) -> List[Transition]:
        return label_transitions(episode, gamma)

    def clear(self):
        with self._lock:
            self._buffer.clear()

    def snapshot(self) -> List[Transition]:
        """Consistent copy of the current contents, oldest first."""
        with self._lock:
            return list(self._buffer)

    def save(self, path: Union[str, Path]) -> int:
        """Write the buffer to a compressed file; returns the record count."""
        from .serialization import write_transitions
        return write_transitions(path, self.snapshot())

    def load(self, path: Union[str, Path]) -> int:
        """Replace the contents with the records stored in `path`."""
        from .serialization import read_transitions
        transitions = read_transitions(path)
        with self._lock:
            self._buffer.clear()
            self._buffer.extend(transitions)
            return len(self._buffer)

    def __len__(self) -> int:
        return len(self._buffer)

    def __getitem__(self, index: int) -> Transition:
        with self._lock:
            return self._buffer[index]
