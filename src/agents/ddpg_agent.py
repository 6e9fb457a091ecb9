"""
DDPG Agent Module
=================

Actor-critic learner for hybrid-action team-sport tasks.

Each agent owns:
    - Actor μ(s, task) and its target μ'
    - Critic Q(s, task, a[, heard messages]) and its target Q'
    - Optional semantic network mapping states to teammate messages
    - A replay memory (possibly shared with teammates)

Update (one call to update_actor_critic):
    1. Assemble the minibatch
    2. Critic targets y from the selected target strategy
    3. Critic step on MSE(Q(s, a), y)
    4. Actor step maximizing Q(s, μ(s)) (deterministic policy gradient)
    5. Soft update of both targets: θ⁻ ← τ·θ + (1 − τ)·θ⁻
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import torch
import torch.nn as nn
import torch.nn.functional as F
import torch.optim as optim
from torch.nn.utils import clip_grad_norm_

from environment.action_space import Action, ActionSpec, default_action_spec
from memory.replay_memory import ReplayMemory, Transition
from training.config import DDPGConfig, NetworkConfig, resolve_device
from .action_selector import ActionSelector
from .networks import (
    ActorNetwork,
    CriticNetwork,
    SemanticNetwork,
    clone_net,
    soft_update,
    states_to_array,
)
from .sharing import share_network_layers
from .targets import TargetBatch, make_target_strategy

log = logging.getLogger(__name__)


@dataclass
class Batch:
    """Tensors for one minibatch of transitions."""
    states: torch.Tensor             # (batch, state_dim)
    tasks: torch.Tensor              # (batch,)
    actions: torch.Tensor            # (batch, output_size)
    next_states: torch.Tensor        # (batch, state_dim), zeros where terminal
    targets: TargetBatch

    def __len__(self) -> int:
        return self.states.shape[0]


class DDPGAgent:
    """
    Deep deterministic policy gradient agent with optional messaging.

    Attributes:
        spec: ActorOutput layout
        memory: Replay memory (shared by reference after share_replay_memory)
        actor_iter, critic_iter, semantic_iter: Optimizer step counters
        tid: Thread / agent index inside the cohort
        unum: Uniform number assigned by the game server

    Example:
        >>> agent = DDPGAgent(NetworkConfig(state_size=58), DDPGConfig())
        >>> out = agent.select_action(states, task=0, epsilon=0.1)
        >>> agent.add_transition(transition)
        >>> critic_loss, actor_loss = agent.update()
    """

    def __init__(
        self,
        network: Optional[NetworkConfig] = None,
        ddpg: Optional[DDPGConfig] = None,
        spec: Optional[ActionSpec] = None,
        device: str = "auto",
        seed: Optional[int] = None,
        tid: int = 0,
        save_path: str = "outputs/agent"
    ):
        self.network_config = network or NetworkConfig()
        self.config = ddpg or DDPGConfig()
        self.spec = spec or default_action_spec(self.network_config.comm_size)
        if self.spec.comm_size != self.network_config.comm_size:
            raise ValueError(
                f"ActionSpec comm_size {self.spec.comm_size} does not match "
                f"network comm_size {self.network_config.comm_size}"
            )

        self.device = resolve_device(device)
        self.tid = tid
        self.unum = 0
        self.save_path = save_path
        self.rng = np.random.default_rng(seed)
        if seed is not None:
            torch.manual_seed(seed)

        net = self.network_config
        self.actor = ActorNetwork(
            state_dim=net.state_dim,
            num_tasks=net.num_tasks,
            spec=self.spec,
            hidden_dims=net.actor_hidden_dims
        ).to(self.device)
        self.critic = CriticNetwork(
            state_dim=net.state_dim,
            num_tasks=net.num_tasks,
            action_dim=self.spec.output_size,
            hear_dim=net.hear_dim,
            hidden_dims=net.critic_hidden_dims
        ).to(self.device)
        self.actor_target = clone_net(self.actor)
        self.critic_target = clone_net(self.critic)

        self.semantic: Optional[SemanticNetwork] = None
        if net.use_semantic and net.comm_size > 0:
            self.semantic = SemanticNetwork(
                state_dim=net.state_dim,
                num_tasks=net.num_tasks,
                message_size=net.comm_size,
                hidden_dims=net.semantic_hidden_dims
            ).to(self.device)

        self._build_optimizers()

        self.memory = ReplayMemory(self.config.memory_capacity)
        self.selector = ActionSelector(
            self.actor,
            self.critic,
            self.spec,
            rng=self.rng,
            device=self.device,
            randomize_comm=self.config.randomize_comm
        )
        self.target_strategy = make_target_strategy(
            self.config.target_strategy, self.config.beta
        )

        self.actor_iter = 0
        self.critic_iter = 0
        self.semantic_iter = 0
        self.last_snapshot_iter = 0
        self.smoothed_critic_loss = 0.0
        self.smoothed_actor_loss = 0.0
        self.smoothed_semantic_loss = 0.0

    def _build_optimizers(self):
        """(Re)create optimizers over the current parameter objects."""
        self.actor_optimizer = optim.Adam(self.actor.parameters(), lr=self.config.lr_actor)
        self.critic_optimizer = optim.Adam(self.critic.parameters(), lr=self.config.lr_critic)
        self.semantic_optimizer = None
        if self.semantic is not None:
            self.semantic_optimizer = optim.Adam(
                self.semantic.parameters(), lr=self.config.lr_semantic
            )

    # =========================================================================
    # ITERATIONS
    # =========================================================================

    @property
    def min_iter(self) -> int:
        return min(self.actor_iter, self.critic_iter)

    @property
    def max_iter(self) -> int:
        return max(self.actor_iter, self.critic_iter)

    @property
    def state_size(self) -> int:
        return self.network_config.state_size

    @property
    def roles(self) -> Tuple[str, ...]:
        """Network roles persisted in snapshots."""
        if self.semantic is not None:
            return ("actor", "critic", "semantic")
        return ("actor", "critic")

    # =========================================================================
    # ACTION SELECTION
    # =========================================================================

    def select_action(self, states: Sequence[np.ndarray], task: int, epsilon: float) -> np.ndarray:
        return self.selector.select_action(states, task, epsilon)

    def select_actions(
        self,
        states_batch: Sequence[Sequence[np.ndarray]],
        task_batch: Sequence[int],
        epsilon: float
    ) -> np.ndarray:
        return self.selector.select_actions(states_batch, task_batch, epsilon)

    def get_action(self, actor_output: np.ndarray) -> Action:
        return self.selector.get_action(actor_output)

    def sample_action(self, actor_output: np.ndarray) -> Action:
        return self.selector.sample_action(actor_output)

    def evaluate_action(
        self,
        states: Sequence[np.ndarray],
        task: int,
        actor_output: np.ndarray,
        heard: Optional[np.ndarray] = None
    ) -> float:
        return self.selector.evaluate_action(states, task, actor_output, heard)

    def get_random_actor_output(self) -> np.ndarray:
        return self.selector.get_random_actor_output()

    def get_say_msg(self, actor_output: np.ndarray) -> str:
        return self.selector.get_say_msg(actor_output)

    # =========================================================================
    # MEMORY
    # =========================================================================

    def add_transition(self, transition: Transition):
        self.memory.add_transition(transition)

    def add_transitions(self, transitions: Sequence[Transition]):
        self.memory.add_transitions(transitions)

    def label_transitions(self, episode: Sequence[Transition]) -> List[Transition]:
        """Attach discounted Monte-Carlo targets to an episode."""
        return self.memory.label_transitions(episode, self.config.gamma)

    def clear_replay_memory(self):
        self.memory.clear()

    @property
    def memory_size(self) -> int:
        return len(self.memory)

    def sample_transitions_from_memory(self, n: int) -> np.ndarray:
        return self.memory.sample_transitions(n, self.rng)

    def sample_states_from_memory(self, n: int):
        return self.memory.sample_states(n, self.rng)

    # =========================================================================
    # BATCH ASSEMBLY
    # =========================================================================

    def make_batch(self, transitions: Sequence[Transition]) -> Batch:
        """Stack transitions into tensors on the agent's device."""
        states = states_to_array([t.states for t in transitions])
        next_windows = [
            t.states if t.terminal else t.next_states() for t in transitions
        ]
        next_states = states_to_array(next_windows)
        nonterminal = np.array([0.0 if t.terminal else 1.0 for t in transitions], dtype=np.float32)
        next_states *= nonterminal[:, None]

        def to_tensor(x, dtype=torch.float32):
            return torch.as_tensor(x, dtype=dtype, device=self.device)

        return Batch(
            states=to_tensor(states),
            tasks=to_tensor([t.task for t in transitions], dtype=torch.long),
            actions=to_tensor(np.stack([t.action for t in transitions]).astype(np.float32)),
            next_states=to_tensor(next_states),
            targets=TargetBatch(
                rewards=to_tensor([t.reward for t in transitions]),
                on_policy_targets=to_tensor([t.on_policy_target for t in transitions]),
                nonterminal=to_tensor(nonterminal),
            )
        )

    # =========================================================================
    # FORWARD HELPERS
    # =========================================================================

    def critic_forward_through_actor(
        self,
        critic: nn.Module,
        actor: nn.Module,
        states: torch.Tensor,
        tasks: torch.Tensor,
        heard: Optional[torch.Tensor] = None
    ) -> torch.Tensor:
        """Q(s, μ(s)) with the given pair of networks."""
        return critic(states, tasks, actor(states, tasks), heard)

    def compute_targets(self, batch: Batch, next_heard: Optional[torch.Tensor] = None) -> torch.Tensor:
        """Critic regression targets from the configured strategy."""
        with torch.no_grad():
            def next_q() -> torch.Tensor:
                return self.critic_forward_through_actor(
                    self.critic_target,
                    self.actor_target,
                    batch.next_states,
                    batch.tasks,
                    next_heard
                )
            return self.target_strategy(batch.targets, next_q, self.config.gamma)

    def critic_loss(
        self,
        batch: Batch,
        targets: torch.Tensor,
        heard: Optional[torch.Tensor] = None
    ) -> torch.Tensor:
        q_values = self.critic(batch.states, batch.tasks, batch.actions, heard)
        return F.mse_loss(q_values, targets)

    def policy_loss(
        self,
        batch: Batch,
        actor_out: torch.Tensor,
        heard: Optional[torch.Tensor] = None,
        heard_grad: bool = False
    ) -> Tuple[torch.Tensor, Optional[torch.Tensor]]:
        """
        Deterministic policy gradient loss −mean Q(s, μ(s)).

        Args:
            batch: Minibatch
            actor_out: Online actor output on batch.states (with graph)
            heard: Teammate messages fed to the critic
            heard_grad: Also return ∂loss/∂heard

        Returns:
            Tuple of (loss, gradient w.r.t. heard or None)
        """
        if heard_grad and heard is not None:
            heard = heard.detach().requires_grad_(True)
        q_values = self.critic(batch.states, batch.tasks, actor_out, heard)
        loss = -q_values.mean()
        grad = None
        if heard_grad and heard is not None:
            (grad,) = torch.autograd.grad(loss, heard, retain_graph=True)
        return loss, grad

    # =========================================================================
    # OPTIMIZER STEPS
    # =========================================================================

    def step_critic(self, loss: torch.Tensor) -> float:
        """One optimizer step on the online critic only."""
        self.critic_optimizer.zero_grad()
        loss.backward()
        if self.config.max_grad_norm is not None:
            clip_grad_norm_(self.critic.parameters(), self.config.max_grad_norm)
        self.critic_optimizer.step()
        self.critic_iter += 1
        return loss.item()

    def step_actor(
        self,
        loss: torch.Tensor,
        comm_out: Optional[torch.Tensor] = None,
        comm_grad: Optional[torch.Tensor] = None
    ) -> float:
        """
        One optimizer step on the online actor only.

        When `comm_out`/`comm_grad` are given, the teammate gradients are
        backpropagated through the message head in the same step.
        """
        self.actor_optimizer.zero_grad()
        if comm_out is not None and comm_grad is not None:
            torch.autograd.backward([loss, comm_out], [None, comm_grad])
        else:
            loss.backward()
        if self.config.max_grad_norm is not None:
            clip_grad_norm_(self.actor.parameters(), self.config.max_grad_norm)
        self.actor_optimizer.step()
        # Actor backward also reaches the critic; keep its grads clean
        self.critic_optimizer.zero_grad()
        self.actor_iter += 1
        return loss.item()

    def soft_update_targets(self, tau: Optional[float] = None):
        tau = self.config.tau if tau is None else tau
        soft_update(self.actor, self.actor_target, tau)
        soft_update(self.critic, self.critic_target, tau)

    # =========================================================================
    # UPDATE
    # =========================================================================

    def update(self) -> Tuple[float, float]:
        """
        Sample a minibatch and run one actor-critic update.

        The memory must hold at least `minibatch_size` transitions.
        """
        indices = self.sample_transitions_from_memory(self.config.minibatch_size)
        critic_loss, actor_loss = self.update_actor_critic(indices)
        self.record_losses(critic_loss, actor_loss)
        return critic_loss, actor_loss

    def update_actor_critic(self, indices: Sequence[int]) -> Tuple[float, float]:
        """
        Run steps 1-5 of the DDPG update on the given memory indices.

        Returns:
            Tuple of (critic loss, actor loss)
        """
        batch = self.make_batch(self.memory.transitions(indices))

        targets = self.compute_targets(batch)
        critic_loss = self.step_critic(self.critic_loss(batch, targets))

        actor_out = self.actor(batch.states, batch.tasks)
        loss, _ = self.policy_loss(batch, actor_out)
        actor_loss = self.step_actor(loss)

        self.soft_update_targets()
        return critic_loss, actor_loss

    def record_losses(self, critic_loss: float, actor_loss: float):
        """Exponentially smoothed losses, logged every display_interval updates."""
        decay = self.config.loss_smoothing
        self.smoothed_critic_loss = decay * self.smoothed_critic_loss + (1 - decay) * critic_loss
        self.smoothed_actor_loss = decay * self.smoothed_actor_loss + (1 - decay) * actor_loss
        if self.config.display_interval > 0 and self.critic_iter % self.config.display_interval == 0:
            log.info(
                "[Agent %d] Critic iter %d smoothed loss %.4f, actor iter %d smoothed loss %.4f",
                self.tid, self.critic_iter, self.smoothed_critic_loss,
                self.actor_iter, self.smoothed_actor_loss
            )

    def benchmark(self, iterations: int = 1000) -> float:
        """
        Time `iterations` updates.

        Returns:
            Updates per second
        """
        start = time.perf_counter()
        for _ in range(iterations):
            self.update()
        elapsed = time.perf_counter() - start
        rate = iterations / max(elapsed, 1e-9)
        log.info("[Agent %d] %d updates in %.2fs (%.1f updates/s)", self.tid, iterations, elapsed, rate)
        return rate

    # =========================================================================
    # SEMANTIC NETWORK
    # =========================================================================

    def update_semantic_net(self, other_memory: ReplayMemory) -> float:
        """
        Train the semantic network on a teammate's memory.

        The network regresses the message the teammate emitted from the
        state the teammate was in.
        """
        if self.semantic is None:
            raise ValueError("Semantic network is disabled for this agent")
        indices = other_memory.sample_transitions(self.config.minibatch_size, self.rng)
        transitions = other_memory.transitions(indices)
        batch = self.make_batch(transitions)
        messages = batch.actions[:, self.spec.comm_slice]

        predicted = self.semantic(batch.states, batch.tasks)
        loss = F.mse_loss(predicted, messages)
        self.semantic_optimizer.zero_grad()
        loss.backward()
        self.semantic_optimizer.step()
        self.semantic_iter += 1

        value = loss.item()
        decay = self.config.loss_smoothing
        self.smoothed_semantic_loss = decay * self.smoothed_semantic_loss + (1 - decay) * value
        return value

    def get_semantic_msg(self, states: Sequence[np.ndarray], task: int) -> str:
        """Message the semantic network associates with a state."""
        if self.semantic is None:
            raise ValueError("Semantic network is disabled for this agent")
        state_tensor = torch.from_numpy(states_to_array([states])).to(self.device)
        task_tensor = torch.as_tensor([task], dtype=torch.long, device=self.device)
        with torch.no_grad():
            message = self.semantic(state_tensor, task_tensor)[0].cpu().numpy()
        return " ".join(f"{v:.4f}" for v in message)

    # =========================================================================
    # SHARING
    # =========================================================================

    def share_parameters(self, other: "DDPGAgent", num_actor_layers: int, num_critic_layers: int):
        """
        Tie the first layers of `other`'s networks to this agent's.

        This agent keeps its parameters; `other` adopts them and rebuilds its
        optimizers over the shared tensors.

        Raises:
            KeyError: If a layer cannot be matched by name
        """
        actor_layers = share_network_layers(self.actor, other.actor, num_actor_layers)
        critic_layers = share_network_layers(self.critic, other.critic, num_critic_layers)
        other._build_optimizers()
        log.info(
            "[Agent %d] Sharing actor layers %s and critic layers %s with agent %d",
            self.tid, actor_layers, critic_layers, other.tid
        )

    def share_replay_memory(self, other: "DDPGAgent"):
        """Drop `other`'s memory; both agents now hold this agent's buffer."""
        other.memory = self.memory
        log.info("[Agent %d] Sharing replay memory with agent %d", self.tid, other.tid)

    # =========================================================================
    # STATE FOR PERSISTENCE
    # =========================================================================

    def _role_modules(self, role: str):
        if role == "actor":
            return self.actor, self.actor_target, self.actor_optimizer
        if role == "critic":
            return self.critic, self.critic_target, self.critic_optimizer
        if role == "semantic" and self.semantic is not None:
            return self.semantic, None, self.semantic_optimizer
        raise ValueError(f"Unknown role: {role!r}")

    def model_state(self, role: str) -> Dict[str, Optional[dict]]:
        online, target, _ = self._role_modules(role)
        return {
            "online": online.state_dict(),
            "target": target.state_dict() if target is not None else None,
        }

    def load_model_state(self, role: str, payload: Dict[str, Optional[dict]]):
        online, target, _ = self._role_modules(role)
        online.load_state_dict(payload["online"])
        if target is not None:
            if payload.get("target") is not None:
                target.load_state_dict(payload["target"])
            else:
                target.load_state_dict(online.state_dict())

    def solver_state(self, role: str) -> dict:
        _, _, optimizer = self._role_modules(role)
        return {"optimizer": optimizer.state_dict(), "iter": getattr(self, f"{role}_iter")}

    def load_solver_state(self, role: str, payload: dict):
        _, _, optimizer = self._role_modules(role)
        optimizer.load_state_dict(payload["optimizer"])
        setattr(self, f"{role}_iter", int(payload["iter"]))

    def reinitialize(self):
        """
        Fresh networks, optimizers, counters and an empty replay memory.

        The memory is replaced rather than cleared, so a buffer shared with
        teammates keeps its contents.
        """
        for module in (self.actor, self.critic, self.semantic):
            if module is not None:
                module.reset_parameters()
        self.actor_target.load_state_dict(self.actor.state_dict())
        self.critic_target.load_state_dict(self.critic.state_dict())
        self._build_optimizers()
        self.actor_iter = self.critic_iter = self.semantic_iter = 0
        self.last_snapshot_iter = 0
        self.smoothed_critic_loss = 0.0
        self.smoothed_actor_loss = 0.0
        self.smoothed_semantic_loss = 0.0
        self.memory = ReplayMemory(self.config.memory_capacity)

    def snapshot(
        self,
        prefix: Optional[str] = None,
        remove_old: bool = False,
        snapshot_memory: bool = True
    ):
        """Write weights, solver state and (optionally) memory to disk."""
        from persistence.snapshot import snapshot
        return snapshot(self, prefix or self.save_path, remove_old, snapshot_memory)

    def restore(self, prefix: Optional[str] = None, load_solver: bool = True) -> bool:
        """Resume from the latest complete snapshot; False if training starts fresh."""
        from persistence.snapshot import restore
        return restore(self, prefix or self.save_path, load_solver)

    def set_training_mode(self, training: bool = True):
        for module in (self.actor, self.critic, self.semantic):
            if module is not None:
                module.train(training)
