"""
Task Module
===========

Contract between the learning core and the team-sport environment.

A task drives one environment per agent (indexed by `tid`), exposes the
state vector after every step, and computes the task-specific reward.
Episode stepping and reward shaping live with the concrete tasks; the
learning core only consumes the (state, reward, status) triples.
"""

from abc import ABC, abstractmethod
from enum import IntEnum
from typing import Optional, Tuple

import numpy as np
from gymnasium import spaces

from .action_space import Action, ActionSpec, default_action_spec


class Status(IntEnum):
    """Game status reported after each step."""
    IN_GAME = 0
    GOAL = 1
    CAPTURED_BY_DEFENSE = 2
    OUT_OF_BOUNDS = 3
    OUT_OF_TIME = 4
    SERVER_DOWN = 5


def is_terminal(status: Status) -> bool:
    """True for every status that ends the episode."""
    return Status(status) != Status.IN_GAME


class Task(ABC):
    """
    Base class for a multi-agent task.

    Attributes:
        name: Task name, also used as a snapshot tag
        task_id: Integer fed to the networks to select the task
        num_agents: Number of learning agents taking part
        action_spec: Discrete actions and parameter ranges the task accepts
    """

    def __init__(
        self,
        name: str,
        task_id: int,
        num_agents: int = 1,
        action_spec: Optional[ActionSpec] = None
    ):
        self.name = name
        self.task_id = task_id
        self.num_agents = num_agents
        self.action_spec = action_spec or default_action_spec()
        self._status = [Status.IN_GAME] * num_agents

    @abstractmethod
    def reset(self, tid: int) -> np.ndarray:
        """Start a new episode for agent `tid` and return its first state."""

    @abstractmethod
    def act(self, tid: int, action: Action) -> np.ndarray:
        """Apply `action` for agent `tid`, advance one step, return the new state."""

    @abstractmethod
    def get_reward(self, tid: int) -> float:
        """Reward earned by agent `tid` on the last step."""

    def step(self, tid: int, action: Action) -> Tuple[np.ndarray, float, Status]:
        """
        Advance agent `tid` by one step.

        Returns:
            Tuple of (next state, reward, status)
        """
        state = self.act(tid, action)
        reward = self.get_reward(tid)
        return state, reward, self._status[tid]

    def set_status(self, tid: int, status: Status):
        self._status[tid] = Status(status)

    def get_status(self, tid: int) -> Status:
        return self._status[tid]

    @property
    def action_space(self) -> spaces.Tuple:
        """Gymnasium (Discrete choice, Box parameters) space of accepted actions."""
        return self.action_spec.get_action_space()

    def episode_over(self, tid: int) -> bool:
        return is_terminal(self._status[tid])
