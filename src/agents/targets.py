"""
Critic Target Strategies
========================

Selectable ways of labelling a minibatch for the critic regression:

    bootstrap:  y = r + γ · Q'(s', μ'(s'))   (y = r when terminal)
    on_policy:  y = Monte-Carlo return stored on the transition
    mixed:      y = β · on_policy + (1 − β) · bootstrap

Q' and μ' are the target critic and target actor.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

import torch


@dataclass
class TargetBatch:
    """Per-transition quantities needed to build critic targets."""
    rewards: torch.Tensor            # (batch,)
    on_policy_targets: torch.Tensor  # (batch,)
    nonterminal: torch.Tensor        # (batch,) 1.0 where a next state exists


class TargetStrategy(ABC):
    """Computes critic targets for a minibatch."""

    name: str = ""
    uses_bootstrap: bool = True

    @abstractmethod
    def __call__(
        self,
        batch: TargetBatch,
        next_q: Callable[[], torch.Tensor],
        gamma: float
    ) -> torch.Tensor:
        """
        Args:
            batch: Rewards, stored targets and terminal mask
            next_q: Returns Q'(s', μ'(s')) per transition (0 where terminal)
            gamma: Discount factor
        """


class BootstrapTargets(TargetStrategy):
    name = "bootstrap"

    def __call__(self, batch, next_q, gamma):
        return batch.rewards + gamma * batch.nonterminal * next_q()


class OnPolicyTargets(TargetStrategy):
    name = "on_policy"
    uses_bootstrap = False

    def __call__(self, batch, next_q, gamma):
        return batch.on_policy_targets


class MixedTargets(TargetStrategy):
    """Blend of Monte-Carlo and bootstrapped targets."""

    name = "mixed"

    def __init__(self, beta: float = 0.2):
        if not 0.0 <= beta <= 1.0:
            raise ValueError(f"beta must be in [0, 1], got {beta}")
        self.beta = beta

    def __call__(self, batch, next_q, gamma):
        bootstrap = batch.rewards + gamma * batch.nonterminal * next_q()
        return self.beta * batch.on_policy_targets + (1.0 - self.beta) * bootstrap


def make_target_strategy(name: str, beta: float = 0.2) -> TargetStrategy:
    """Build a target strategy from its config name."""
    if name == BootstrapTargets.name:
        return BootstrapTargets()
    if name == OnPolicyTargets.name:
        return OnPolicyTargets()
    if name == MixedTargets.name:
        return MixedTargets(beta)
    raise ValueError(f"Unknown target strategy: {name!r}")
