"""
Agents Module
=============

Actor-critic learner for hybrid-action team-sport tasks.
    - networks: Actor, critic and semantic networks with target helpers
    - action_selector: Epsilon-greedy selection and action decoding
    - targets: Selectable critic target strategies
    - sharing: Layer tying between agents
    - ddpg_agent: Combined DDPG agent (update engine and facade)
"""

from .networks import (
    ActorNetwork,
    CriticNetwork,
    SemanticNetwork,
    clone_net,
    soft_update,
)
from .action_selector import ActionSelector
from .targets import (
    BootstrapTargets,
    MixedTargets,
    OnPolicyTargets,
    TargetBatch,
    TargetStrategy,
    make_target_strategy,
)
from .sharing import layers_are_shared, share_layer, share_network_layers
from .ddpg_agent import Batch, DDPGAgent

__all__ = [
    # Networks
    "ActorNetwork",
    "CriticNetwork",
    "SemanticNetwork",
    "clone_net",
    "soft_update",
    # Selection
    "ActionSelector",
    # Targets
    "BootstrapTargets",
    "MixedTargets",
    "OnPolicyTargets",
    "TargetBatch",
    "TargetStrategy",
    "make_target_strategy",
    # Sharing
    "layers_are_shared",
    "share_layer",
    "share_network_layers",
    # Agent
    "Batch",
    "DDPGAgent",
]
