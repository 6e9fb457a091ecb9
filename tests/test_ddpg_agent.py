"""
DDPG Agent Tests
================

Tests for networks, target strategies, sharing and the DDPG update.

Test Categories:
    - Networks: Shapes, bounds, target cloning, soft update
    - Targets: Bootstrap, on-policy and mixed labels
    - Update: Losses, counters, target tracking
    - Sharing: Layer tying and replay memory sharing
    - Semantic network: Supervised message regression
"""

import pytest
import numpy as np
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import torch
import torch.nn as nn


def make_agent(comm_size=0, num_teammates=0, use_semantic=False, seed=0, hidden=(32,), **ddpg):
    from agents.ddpg_agent import DDPGAgent
    from training.config import DDPGConfig, NetworkConfig

    network = NetworkConfig(
        state_size=8,
        comm_size=comm_size,
        num_teammates=num_teammates,
        use_semantic=use_semantic,
        actor_hidden_dims=list(hidden),
        critic_hidden_dims=list(hidden),
        semantic_hidden_dims=[16],
    )
    config = DDPGConfig(minibatch_size=8, memory_capacity=200, display_interval=0)
    for key, value in ddpg.items():
        setattr(config, key, value)
    return DDPGAgent(network, config, device="cpu", seed=seed)


def clone_params(module):
    return [p.detach().clone() for p in module.parameters()]


# =============================================================================
# NETWORK TESTS
# =============================================================================

class TestNetworks:
    """Test actor, critic and semantic networks."""

    def test_actor_output_shape_and_bounds(self):
        from agents.networks import ActorNetwork
        from environment.action_space import default_action_spec

        spec = default_action_spec(comm_size=3)
        actor = ActorNetwork(8, num_tasks=2, spec=spec, hidden_dims=[16])
        out = actor(torch.randn(32, 8) * 10, torch.randint(0, 2, (32,)))

        assert out.shape == (32, 13)
        params = out[:, spec.params_slice]
        assert torch.all(params >= torch.as_tensor(spec.param_low) - 1e-4)
        assert torch.all(params <= torch.as_tensor(spec.param_high) + 1e-4)
        assert torch.all(out[:, spec.comm_slice].abs() <= 1.0)

    def test_critic_hears_zeros_by_default(self):
        from agents.networks import CriticNetwork

        critic = CriticNetwork(8, num_tasks=1, action_dim=10, hear_dim=4, hidden_dims=[16])
        states = torch.randn(5, 8)
        tasks = torch.zeros(5, dtype=torch.long)
        actions = torch.randn(5, 10)

        silent = critic(states, tasks, actions)
        zeros = critic(states, tasks, actions, torch.zeros(5, 4))

        assert silent.shape == (5,)
        assert torch.allclose(silent, zeros)

    def test_targets_are_independent_clones(self):
        agent = make_agent()

        for online, target in zip(agent.actor.parameters(), agent.actor_target.parameters()):
            assert torch.equal(online, target)
            assert online.data_ptr() != target.data_ptr()
            assert not target.requires_grad

    def test_soft_update_tau_one_copies(self):
        from agents.networks import soft_update

        agent = make_agent()
        with torch.no_grad():
            for p in agent.critic.parameters():
                p.add_(1.0)
        soft_update(agent.critic, agent.critic_target, tau=1.0)

        for online, target in zip(agent.critic.parameters(), agent.critic_target.parameters()):
            assert torch.equal(online, target)

    def test_soft_update_tau_zero_keeps_target(self):
        from agents.networks import soft_update

        agent = make_agent()
        before = clone_params(agent.critic_target)
        with torch.no_grad():
            for p in agent.critic.parameters():
                p.add_(1.0)
        soft_update(agent.critic, agent.critic_target, tau=0.0)

        for old, target in zip(before, agent.critic_target.parameters()):
            assert torch.equal(old, target)

    def test_soft_update_blend(self):
        from agents.networks import soft_update

        agent = make_agent()
        with torch.no_grad():
            for p in agent.actor.parameters():
                p.mul_(2.0).add_(0.5)
        prior = clone_params(agent.actor_target)
        soft_update(agent.actor, agent.actor_target, tau=0.3)

        for online, old, target in zip(agent.actor.parameters(), prior, agent.actor_target.parameters()):
            assert torch.allclose(target, 0.3 * online + 0.7 * old, atol=1e-6)


# =============================================================================
# TARGET STRATEGY TESTS
# =============================================================================

class TestTargetStrategies:
    """Test selectable critic targets."""

    def batch(self):
        from agents.targets import TargetBatch
        return TargetBatch(
            rewards=torch.tensor([1.0, 2.0]),
            on_policy_targets=torch.tensor([5.0, 6.0]),
            nonterminal=torch.tensor([1.0, 0.0]),
        )

    def test_bootstrap_terminal_uses_reward(self):
        from agents.targets import BootstrapTargets

        targets = BootstrapTargets()(self.batch(), lambda: torch.tensor([10.0, 10.0]), 0.9)

        assert torch.allclose(targets, torch.tensor([10.0, 2.0]))

    def test_on_policy_ignores_network(self):
        from agents.targets import OnPolicyTargets

        def next_q():
            raise AssertionError("on-policy targets must not bootstrap")

        targets = OnPolicyTargets()(self.batch(), next_q, 0.9)

        assert torch.allclose(targets, torch.tensor([5.0, 6.0]))

    def test_mixed(self):
        from agents.targets import MixedTargets

        targets = MixedTargets(beta=0.5)(self.batch(), lambda: torch.tensor([10.0, 10.0]), 0.9)

        assert torch.allclose(targets, torch.tensor([7.5, 4.0]))

    def test_invalid_strategy(self):
        from agents.targets import MixedTargets, make_target_strategy

        with pytest.raises(ValueError):
            MixedTargets(beta=1.5)
        with pytest.raises(ValueError):
            make_target_strategy("td_lambda")
        assert make_target_strategy("mixed", beta=0.3).beta == 0.3


# =============================================================================
# UPDATE TESTS
# =============================================================================

class TestUpdate:
    """Test the actor-critic update."""

    def test_update_returns_losses_and_counts(self, fill_memory):
        agent = fill_memory(make_agent())

        critic_loss, actor_loss = agent.update()

        assert np.isfinite(critic_loss) and np.isfinite(actor_loss)
        assert agent.actor_iter == 1
        assert agent.critic_iter == 1
        assert agent.min_iter == agent.max_iter == 1

    def test_update_moves_online_networks(self, fill_memory):
        agent = fill_memory(make_agent())
        actor_before = clone_params(agent.actor)
        critic_before = clone_params(agent.critic)

        agent.update()

        assert any(not torch.equal(a, b) for a, b in zip(actor_before, agent.actor.parameters()))
        assert any(not torch.equal(a, b) for a, b in zip(critic_before, agent.critic.parameters()))

    def test_targets_track_by_soft_update(self, fill_memory):
        agent = fill_memory(make_agent(tau=0.1))
        prior = clone_params(agent.critic_target)

        agent.update_actor_critic(agent.sample_transitions_from_memory(8))

        tau = agent.config.tau
        for online, old, target in zip(agent.critic.parameters(), prior, agent.critic_target.parameters()):
            assert torch.allclose(target, tau * online + (1 - tau) * old, atol=1e-6)

    def test_terminal_target_is_reward(self, make_transition):
        agent = make_agent()
        batch = agent.make_batch([make_transition(reward=3.0, terminal=True)])

        targets = agent.compute_targets(batch)

        assert targets.tolist() == pytest.approx([3.0])

    def test_on_policy_strategy(self, make_transition):
        agent = make_agent(target_strategy="on_policy")
        episode = agent.label_transitions([
            make_transition(reward=1.0),
            make_transition(reward=1.0, terminal=True),
        ])

        targets = agent.compute_targets(agent.make_batch(episode))

        assert targets.tolist() == pytest.approx([1.0 + agent.config.gamma, 1.0])

    def test_smoothed_losses(self, fill_memory):
        agent = fill_memory(make_agent())

        critic_loss, actor_loss = agent.update()

        assert agent.smoothed_critic_loss == pytest.approx(0.01 * critic_loss)
        assert agent.smoothed_actor_loss == pytest.approx(0.01 * actor_loss)

    def test_benchmark(self, fill_memory):
        agent = fill_memory(make_agent())

        rate = agent.benchmark(iterations=3)

        assert rate > 0
        assert agent.critic_iter == 3

    def test_evaluate_action_is_pure(self, make_transition):
        agent = make_agent()
        t = make_transition()
        before = clone_params(agent.critic)

        agent.evaluate_action(t.states, 0, t.action)

        for a, b in zip(before, agent.critic.parameters()):
            assert torch.equal(a, b)

    def test_comm_spec_mismatch(self):
        from agents.ddpg_agent import DDPGAgent
        from environment.action_space import default_action_spec
        from training.config import NetworkConfig

        with pytest.raises(ValueError):
            DDPGAgent(NetworkConfig(comm_size=2), spec=default_action_spec(3), device="cpu")

    def test_comm_gradient_moves_message_head(self, fill_memory):
        agent = fill_memory(make_agent(comm_size=2, num_teammates=1))
        batch = agent.make_batch(agent.memory.transitions(range(4)))
        actor_out = agent.actor(batch.states, batch.tasks)
        comm_out = actor_out[:, agent.spec.comm_slice]
        score_before = agent.actor.score_head.weight.detach().clone()
        comm_before = agent.actor.comm_head.weight.detach().clone()

        agent.step_actor((actor_out * 0.0).sum(), comm_out, torch.ones_like(comm_out))

        assert torch.equal(agent.actor.score_head.weight, score_before)
        assert not torch.equal(agent.actor.comm_head.weight, comm_before)


class TestReinitialize:
    """Test the fresh start used when a snapshot cannot be restored."""

    def test_networks_use_constructor_init(self, fill_memory):
        agent = fill_memory(make_agent(comm_size=2, num_teammates=1))
        with torch.no_grad():
            for module in (agent.actor, agent.critic):
                for p in module.parameters():
                    p.fill_(5.0)

        agent.reinitialize()

        for module in (agent.actor, agent.critic):
            for layer in module.modules():
                if isinstance(layer, nn.Linear):
                    assert torch.all(layer.bias == 0)
        w = agent.actor.score_head.weight
        torch.testing.assert_close(w @ w.T, 1e-4 * torch.eye(w.shape[0]), atol=1e-6, rtol=0)
        assert agent.critic.q_head.weight.norm().item() == pytest.approx(1.0, rel=1e-4)
        for a, b in zip(agent.actor.parameters(), agent.actor_target.parameters()):
            assert torch.equal(a, b)

    def test_counters_and_losses_reset(self, fill_memory):
        agent = fill_memory(make_agent())
        agent.update()
        agent.last_snapshot_iter = 7
        memory = agent.memory

        agent.reinitialize()

        assert agent.actor_iter == agent.critic_iter == 0
        assert agent.last_snapshot_iter == 0
        assert agent.smoothed_critic_loss == 0.0
        assert agent.smoothed_actor_loss == 0.0
        assert agent.memory_size == 0
        assert len(memory) == 20


# =============================================================================
# SHARING TESTS
# =============================================================================

class TestSharing:
    """Test layer and memory sharing."""

    def test_share_replay_memory(self, make_transition):
        a, b = make_agent(), make_agent(seed=1)
        a.share_replay_memory(b)

        a.add_transition(make_transition())
        b.add_transition(make_transition())
        assert a.memory_size == b.memory_size == 2

        b.clear_replay_memory()
        assert a.memory_size == 0

    def test_share_parameters(self, fill_memory):
        from agents.sharing import layers_are_shared

        owner, other = make_agent(seed=0), make_agent(seed=1)
        owner.share_parameters(other, num_actor_layers=1, num_critic_layers=1)

        assert other.actor.trunk[0].weight is owner.actor.trunk[0].weight
        assert layers_are_shared(owner.critic.trunk[0], other.critic.trunk[0])
        assert not layers_are_shared(owner.actor.score_head, other.actor.score_head)

        optimized = {id(p) for group in other.actor_optimizer.param_groups for p in group["params"]}
        assert id(owner.actor.trunk[0].weight) in optimized

        fill_memory(other)
        before = owner.actor.trunk[0].weight.detach().clone()
        other.update()
        assert not torch.equal(before, owner.actor.trunk[0].weight)

    def test_missing_layer_raises(self):
        owner = make_agent(hidden=(32, 32))
        other = make_agent(hidden=(32,))

        with pytest.raises(KeyError):
            owner.share_parameters(other, num_actor_layers=2, num_critic_layers=0)

    def test_shape_mismatch_raises(self):
        from agents.sharing import share_layer

        with pytest.raises(ValueError):
            share_layer(nn.Linear(3, 4), nn.Linear(3, 5))


# =============================================================================
# SEMANTIC NETWORK TESTS
# =============================================================================

class TestSemanticNetwork:
    """Test the semantic message network."""

    def test_update_semantic_net(self, fill_memory):
        agent = make_agent(comm_size=2, num_teammates=1, use_semantic=True)
        teammate = fill_memory(make_agent(comm_size=2, num_teammates=1, seed=1))

        loss = agent.update_semantic_net(teammate.memory)

        assert np.isfinite(loss)
        assert agent.semantic_iter == 1
        assert agent.roles == ("actor", "critic", "semantic")

    def test_semantic_msg(self, make_transition):
        agent = make_agent(comm_size=2, num_teammates=1, use_semantic=True)
        t = make_transition(comm_size=2)

        message = agent.get_semantic_msg(t.states, 0)

        values = [float(v) for v in message.split()]
        assert len(values) == 2
        assert all(-1.0 <= v <= 1.0 for v in values)

    def test_disabled(self, make_transition):
        agent = make_agent()

        with pytest.raises(ValueError):
            agent.get_semantic_msg(make_transition().states, 0)
        with pytest.raises(ValueError):
            agent.update_semantic_net(agent.memory)
