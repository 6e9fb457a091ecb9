"""
Shared fixtures: a toy task and transition factories.
"""

import os
import sys

import numpy as np
import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from environment.action_space import ActionType, default_action_spec, random_actor_output
from environment.task import Status, Task
from memory.replay_memory import Transition


STATE_SIZE = 8


class LineTask(Task):
    """
    Agents walk along a line toward a goal at position 1.

    DASH moves by power / 500, every other action stands still. Reaching the
    goal scores, running out of steps ends the episode.
    """

    def __init__(self, num_agents: int = 1, episode_length: int = 12, fail_tid: int = None,
                 action_spec=None):
        super().__init__("line", task_id=0, num_agents=num_agents, action_spec=action_spec)
        self.episode_length = episode_length
        self.fail_tid = fail_tid
        self._position = [0.0] * num_agents
        self._steps = [0] * num_agents
        self._reward = [0.0] * num_agents

    def _state(self, tid: int) -> np.ndarray:
        state = np.zeros(STATE_SIZE, dtype=np.float32)
        state[0] = self._position[tid]
        state[1] = self._steps[tid] / self.episode_length
        return state

    def reset(self, tid):
        self._position[tid] = 0.0
        self._steps[tid] = 0
        self.set_status(tid, Status.IN_GAME)
        return self._state(tid)

    def act(self, tid, action):
        if tid == self.fail_tid:
            raise RuntimeError(f"agent {tid} lost its server")
        before = self._position[tid]
        if action.action == ActionType.DASH:
            self._position[tid] += action.arg1 / 500.0
        self._steps[tid] += 1
        self._reward[tid] = self._position[tid] - before

        if self._position[tid] >= 1.0:
            self.set_status(tid, Status.GOAL)
            self._reward[tid] += 1.0
        elif self._steps[tid] >= self.episode_length:
            self.set_status(tid, Status.OUT_OF_TIME)
        return self._state(tid)

    def get_reward(self, tid):
        return self._reward[tid]


@pytest.fixture
def line_task():
    return LineTask


@pytest.fixture
def make_transition():
    """Factory for transitions whose reward tags them."""
    spec = default_action_spec()
    rng = np.random.default_rng(0)

    def factory(reward=0.0, terminal=False, comm_size=0, state_size=STATE_SIZE, task=0):
        local_spec = spec if comm_size == 0 else default_action_spec(comm_size)
        state = rng.normal(size=state_size).astype(np.float32)
        next_state = None if terminal else rng.normal(size=state_size).astype(np.float32)
        return Transition(
            states=(state,),
            task=task,
            action=random_actor_output(local_spec, rng),
            reward=float(reward),
            next_state=next_state,
        )

    return factory


@pytest.fixture
def fill_memory(make_transition):
    """Add `n` random transitions to an agent's memory."""

    def fill(agent, n=20):
        comm_size = agent.spec.comm_size
        for i in range(n):
            agent.add_transition(make_transition(
                reward=float(i % 3),
                terminal=(i % 7 == 6),
                comm_size=comm_size,
                state_size=agent.network_config.state_dim,
            ))
        return agent

    return fill
