"""
Network Module
==============

Actor, critic and semantic networks for the hybrid-action DDPG learner.

Architecture (every network):
    Input: [state window | one-hot task | role specific inputs]
    FC → ReLU → ... → FC → heads

Actor heads:
    - scores:  one linear output per discrete action
    - params:  tanh squashed into each parameter's valid range
    - message: tanh squashed into [-1, 1] (only when comm_size > 0)

Critic input adds the actor output being evaluated and, when agents talk,
the messages heard from teammates. Output: Q(s, a).

Semantic network maps (state, task) to a message vector.
"""

import copy
from typing import List, Sequence, Tuple

import numpy as np
import torch
import torch.nn as nn
import torch.nn.functional as F

from environment.action_space import ActionSpec

DEFAULT_HIDDEN_DIMS: Tuple[int, ...] = (1024, 512, 256, 128)


def build_trunk(input_dim: int, hidden_dims: Sequence[int]) -> nn.Sequential:
    """Stack of Linear → ReLU blocks."""
    layers: List[nn.Module] = []
    last = input_dim
    for hidden in hidden_dims:
        layers.append(nn.Linear(last, hidden))
        layers.append(nn.ReLU())
        last = hidden
    return nn.Sequential(*layers)


def _init_linear(module: nn.Module, gain: float = np.sqrt(2)):
    for m in module.modules():
        if isinstance(m, nn.Linear):
            nn.init.orthogonal_(m.weight, gain=gain)
            nn.init.constant_(m.bias, 0.0)


class ActorNetwork(nn.Module):
    """
    Deterministic policy μ(s, task) producing a flat ActorOutput.

    Attributes:
        state_dim: Size of the flattened state window
        num_tasks: Number of tasks (one-hot encoded)
        spec: ActorOutput layout

    Example:
        >>> actor = ActorNetwork(state_dim=58, num_tasks=2, spec=ActionSpec())
        >>> out = actor(torch.randn(32, 58), torch.zeros(32, dtype=torch.long))
        >>> out.shape
        torch.Size([32, 10])
    """

    def __init__(
        self,
        state_dim: int,
        num_tasks: int,
        spec: ActionSpec,
        hidden_dims: Sequence[int] = DEFAULT_HIDDEN_DIMS
    ):
        super().__init__()
        self.state_dim = state_dim
        self.num_tasks = num_tasks
        self.spec = spec

        self.trunk = build_trunk(state_dim + num_tasks, hidden_dims)
        last = hidden_dims[-1] if hidden_dims else state_dim + num_tasks
        self.score_head = nn.Linear(last, spec.num_actions)
        self.param_head = nn.Linear(last, spec.num_params)
        self.comm_head = nn.Linear(last, spec.comm_size) if spec.comm_size > 0 else None

        self.register_buffer("param_low", torch.as_tensor(spec.param_low))
        self.register_buffer("param_high", torch.as_tensor(spec.param_high))

        self.reset_parameters()

    def reset_parameters(self):
        """Orthogonal weights, zero biases, near-zero action heads."""
        _init_linear(self)
        nn.init.orthogonal_(self.score_head.weight, gain=0.01)
        nn.init.orthogonal_(self.param_head.weight, gain=0.01)

    def forward(self, states: torch.Tensor, tasks: torch.Tensor) -> torch.Tensor:
        """
        Args:
            states: Flattened state windows, shape (batch, state_dim)
            tasks: Task ids, shape (batch,)

        Returns:
            ActorOutput batch, shape (batch, output_size)
        """
        features = self.trunk(torch.cat([states, one_hot(tasks, self.num_tasks)], dim=-1))
        scores = self.score_head(features)
        squashed = (torch.tanh(self.param_head(features)) + 1.0) * 0.5
        params = self.param_low + squashed * (self.param_high - self.param_low)
        outputs = [scores, params]
        if self.comm_head is not None:
            outputs.append(torch.tanh(self.comm_head(features)))
        return torch.cat(outputs, dim=-1)


class CriticNetwork(nn.Module):
    """
    Action-value network Q(s, task, a[, heard messages]).

    Attributes:
        state_dim: Size of the flattened state window
        num_tasks: Number of tasks
        action_dim: ActorOutput size
        hear_dim: Size of the teammate message features (0 when silent)
    """

    def __init__(
        self,
        state_dim: int,
        num_tasks: int,
        action_dim: int,
        hear_dim: int = 0,
        hidden_dims: Sequence[int] = DEFAULT_HIDDEN_DIMS
    ):
        super().__init__()
        self.state_dim = state_dim
        self.num_tasks = num_tasks
        self.action_dim = action_dim
        self.hear_dim = hear_dim

        input_dim = state_dim + num_tasks + action_dim + hear_dim
        self.trunk = build_trunk(input_dim, hidden_dims)
        last = hidden_dims[-1] if hidden_dims else input_dim
        self.q_head = nn.Linear(last, 1)

        self.reset_parameters()

    def reset_parameters(self):
        _init_linear(self)
        nn.init.orthogonal_(self.q_head.weight, gain=1.0)

    def forward(
        self,
        states: torch.Tensor,
        tasks: torch.Tensor,
        actions: torch.Tensor,
        heard: torch.Tensor = None
    ) -> torch.Tensor:
        """
        Returns:
            Q-values, shape (batch,)
        """
        inputs = [states, one_hot(tasks, self.num_tasks), actions]
        if self.hear_dim > 0:
            if heard is None:
                heard = states.new_zeros(states.shape[0], self.hear_dim)
            inputs.append(heard)
        return self.q_head(self.trunk(torch.cat(inputs, dim=-1))).squeeze(-1)


class SemanticNetwork(nn.Module):
    """Maps (state, task) to the message a teammate would send."""

    def __init__(
        self,
        state_dim: int,
        num_tasks: int,
        message_size: int,
        hidden_dims: Sequence[int] = (256, 128)
    ):
        super().__init__()
        self.num_tasks = num_tasks
        self.message_size = message_size
        self.trunk = build_trunk(state_dim + num_tasks, hidden_dims)
        last = hidden_dims[-1] if hidden_dims else state_dim + num_tasks
        self.message_head = nn.Linear(last, message_size)
        self.reset_parameters()

    def reset_parameters(self):
        _init_linear(self)

    def forward(self, states: torch.Tensor, tasks: torch.Tensor) -> torch.Tensor:
        features = self.trunk(torch.cat([states, one_hot(tasks, self.num_tasks)], dim=-1))
        return torch.tanh(self.message_head(features))


# =============================================================================
# HELPERS
# =============================================================================

def one_hot(tasks: torch.Tensor, num_tasks: int) -> torch.Tensor:
    return F.one_hot(tasks.long(), num_classes=num_tasks).float()


def clone_net(net: nn.Module) -> nn.Module:
    """Structural copy with independent parameter storage."""
    clone = copy.deepcopy(net)
    for param in clone.parameters():
        param.requires_grad_(False)
    return clone


def soft_update(online: nn.Module, target: nn.Module, tau: float):
    """
    Blend target parameters toward the online ones.

    Implements, elementwise over every parameter:
        θ⁻ ← τ·θ + (1 − τ)·θ⁻
    """
    with torch.no_grad():
        for param, target_param in zip(online.parameters(), target.parameters()):
            target_param.data.copy_(tau * param.data + (1 - tau) * target_param.data)


def parametric_layers(net: nn.Module) -> List[Tuple[str, nn.Module]]:
    """Named sub-modules that directly own parameters, in definition order."""
    return [
        (name, module)
        for name, module in net.named_modules()
        if any(True for _ in module.parameters(recurse=False))
    ]


def states_to_array(states_batch: Sequence[Sequence[np.ndarray]]) -> np.ndarray:
    """Flatten a batch of state windows into shape (batch, window * state_size)."""
    return np.stack([
        np.concatenate([np.asarray(s, dtype=np.float32).ravel() for s in window])
        for window in states_batch
    ]).astype(np.float32)
