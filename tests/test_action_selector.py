"""
Test Suite for Action Selector
==============================

Tests for src/agents/action_selector.py
"""

import pytest
import numpy as np
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import torch

from agents.action_selector import ActionSelector
from agents.networks import ActorNetwork, CriticNetwork
from environment.action_space import default_action_spec, softmax

STATE_DIM = 8


def make_selector(comm_size=0, randomize_comm=True, seed=0):
    torch.manual_seed(seed)
    spec = default_action_spec(comm_size)
    actor = ActorNetwork(STATE_DIM, num_tasks=2, spec=spec, hidden_dims=[16])
    critic = CriticNetwork(STATE_DIM, num_tasks=2, action_dim=spec.output_size, hidden_dims=[16])
    return ActionSelector(
        actor, critic, spec,
        rng=np.random.default_rng(seed),
        randomize_comm=randomize_comm
    )


def states(value=0.5):
    return (np.full(STATE_DIM, value, dtype=np.float32),)


class TestGetAction:
    """Tests for greedy decoding."""

    def test_argmax(self):
        selector = make_selector()
        out = np.zeros(10, dtype=np.float32)
        out[:4] = [0.1, -0.3, 0.9, 0.2]
        out[7] = 42.0

        action = selector.get_action(out)

        assert action.action == 2
        assert action.arg1 == 42.0

    def test_ties_pick_first(self):
        selector = make_selector()
        out = np.zeros(10, dtype=np.float32)
        out[:4] = [1.0, 3.0, 3.0, 0.0]

        assert selector.get_action(out).action == 1

    def test_params_clipped_to_range(self):
        selector = make_selector()
        out = np.zeros(10, dtype=np.float32)
        out[:4] = [5.0, 0.0, 0.0, 0.0]
        out[4:6] = [250.0, -400.0]

        action = selector.get_action(out)

        assert action.action == 0
        assert (action.arg1, action.arg2) == (100.0, -180.0)
        assert out[4] == 250.0


class TestSampleAction:
    """Tests for softmax decoding."""

    def test_frequencies_follow_softmax(self):
        selector = make_selector(seed=3)
        out = np.zeros(10, dtype=np.float32)
        out[:4] = [0.5, -1.0, 1.5, 0.0]
        expected = softmax(out[:4].astype(np.float64))

        counts = np.zeros(4)
        for _ in range(20_000):
            counts[selector.sample_action(out).action] += 1

        np.testing.assert_allclose(counts / counts.sum(), expected, atol=0.02)

    def test_sampled_action_carries_its_params(self):
        selector = make_selector()
        out = np.arange(10, dtype=np.float32)
        out[:4] = [-50.0, -50.0, -50.0, 50.0]

        action = selector.sample_action(out)

        assert action.action == 3
        assert (action.arg1, action.arg2) == (8.0, 9.0)


class TestSelectAction:
    """Tests for epsilon-greedy selection."""

    def test_greedy_matches_actor(self):
        selector = make_selector()
        with torch.no_grad():
            expected = selector.actor(
                torch.full((1, STATE_DIM), 0.5), torch.tensor([1])
            )[0].numpy()

        out = selector.select_action(states(), task=1, epsilon=0.0)

        np.testing.assert_allclose(out, expected, rtol=1e-5, atol=1e-6)

    def test_greedy_params_in_range(self):
        selector = make_selector(comm_size=2)
        out = selector.select_action(states(3.0), task=0, epsilon=0.0)
        spec = selector.spec

        params = out[spec.params_slice]
        assert np.all(params >= spec.param_low) and np.all(params <= spec.param_high)
        assert np.all(np.abs(out[spec.comm_slice]) <= 1.0)

    def test_full_exploration_is_random(self):
        selector = make_selector()
        greedy = selector.select_action(states(), task=0, epsilon=0.0)
        explored = selector.select_action(states(), task=0, epsilon=1.0)

        assert not np.allclose(greedy, explored)

    def test_explore_keeps_message_when_not_randomizable(self):
        selector = make_selector(comm_size=3, randomize_comm=False)
        greedy = selector.select_action(states(), task=0, epsilon=0.0)
        explored = selector.select_action(states(), task=0, epsilon=1.0)
        comm = selector.spec.comm_slice

        np.testing.assert_allclose(explored[comm], greedy[comm])
        assert not np.allclose(explored[selector.spec.score_slice], greedy[selector.spec.score_slice])

    def test_batch_applies_epsilon_per_sample(self):
        selector = make_selector(seed=5)
        batch = [states()] * 400
        greedy = selector.select_action(states(), task=0, epsilon=0.0)

        outputs = selector.select_actions(batch, [0] * 400, epsilon=0.5)

        assert outputs.shape == (400, 10)
        n_greedy = sum(np.allclose(o, greedy, atol=1e-4) for o in outputs)
        assert 140 < n_greedy < 260

    def test_randomize_non_comm_in_place(self):
        selector = make_selector(comm_size=2)
        out = np.zeros(12, dtype=np.float32)
        out[10:] = [0.25, -0.25]

        result = selector.randomize_non_comm_actions(out)

        assert result is out
        assert out[10:].tolist() == [0.25, -0.25]


class TestEvaluateAction:
    """Tests for critic evaluation."""

    def test_returns_scalar_without_mutation(self):
        selector = make_selector()
        before = [p.clone() for p in selector.critic.parameters()]
        out = selector.get_random_actor_output()

        value = selector.evaluate_action(states(), task=0, actor_output=out)

        assert isinstance(value, float)
        for p, q in zip(before, selector.critic.parameters()):
            assert torch.equal(p, q)
        assert value == selector.evaluate_action(states(), task=0, actor_output=out)


class TestMessages:
    """Tests for message text encoding."""

    def test_say_and_hear(self):
        selector = make_selector(comm_size=3)
        out = np.zeros(13, dtype=np.float32)
        out[10:] = [0.5, -0.25, 1.0]

        text = selector.get_say_msg(out)

        assert text == "0.5000 -0.2500 1.0000"
        np.testing.assert_allclose(selector.parse_hear_msg(text), [0.5, -0.25, 1.0])

    def test_blank_message_is_silence(self):
        selector = make_selector(comm_size=2)
        np.testing.assert_array_equal(selector.parse_hear_msg("  "), [0.0, 0.0])

    def test_wrong_length_raises(self):
        selector = make_selector(comm_size=2)
        with pytest.raises(ValueError):
            selector.parse_hear_msg("0.1 0.2 0.3")

    def test_format_actor_output(self):
        selector = make_selector(comm_size=2)
        text = selector.format_actor_output(selector.get_random_actor_output())

        for name in ("DASH", "TURN", "TACKLE", "KICK", "MSG"):
            assert name in text
