"""
Sync Engine Module
==================

Multi-agent actor-critic updates through a differentiable message channel.

N agent threads, each owning one DDPGAgent, meet on a shared Exchange.
One synchronized round is two phases:

    forward:   actor output on the minibatch; publish the outgoing message
               m_i(s) and the target message m'_i(s')
    backward:  critic step hearing the teammates' messages as extra input,
               publish ∂L_i/∂m_j for every teammate j, then one actor step
               that also backpropagates Σ_j ∂L_j/∂m_i through the message head

Strategies:
    - ExactSync:  live data of the current round (agents agree on indices first)
    - ApproxSync: teammate messages and gradients of the previous round
                  (zeros on the first round); returning gradients are
                  applied to the minibatch they were computed for
    - DialSync:   replays a whole episode in order, one exchange per timestep;
                  messages heard at t were sent at t - 1, gradients are
                  accumulated and applied in one step per role

Any failure during an update aborts the exchange so that teammates raise
CohortAborted instead of blocking forever.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, Hashable, List, Optional, Sequence, Tuple, Union

import numpy as np
import torch

from agents.ddpg_agent import Batch, DDPGAgent
from memory.replay_memory import Transition
from .exchange import Exchange

log = logging.getLogger(__name__)

SAMPLE = "sample"
FORWARD = "forward"
BACKWARD = "backward"
LENGTH = "length"
APPLY = "apply"


# =============================================================================
# ENGINE
# =============================================================================

class SyncEngine:
    """
    One agent's side of the synchronized update protocol.

    Every agent of the cohort must call the same update methods in the same
    order; round numbers advance with each call.

    Attributes:
        agent: The agent being trained
        exchange: Exchange shared by the whole cohort
        agent_id: Index of this agent in the cohort
        strategy: Update strategy used by synchronized_update
        timeout: Seconds a gather may wait (None waits forever)

    Example:
        >>> exchange = Exchange(num_agents=2)
        >>> engine = SyncEngine(agent, exchange, agent_id=0, strategy="exact")
        >>> critic_loss, actor_loss = engine.synchronized_update()
    """

    def __init__(
        self,
        agent: DDPGAgent,
        exchange: Exchange,
        agent_id: int,
        strategy: Union[str, "SyncStrategy"] = "exact",
        timeout: Optional[float] = None
    ):
        if not 0 <= agent_id < exchange.num_agents:
            raise ValueError(f"agent_id {agent_id} outside cohort of {exchange.num_agents}")
        self.agent = agent
        self.exchange = exchange
        self.agent_id = agent_id
        self.strategy = make_strategy(strategy) if isinstance(strategy, str) else strategy
        self.timeout = timeout
        self.round = 0
        # Minibatches whose messages teammates may still send gradients for
        self.sent_batches: Dict[int, Batch] = {}

    @property
    def num_agents(self) -> int:
        return self.exchange.num_agents

    @property
    def comm_size(self) -> int:
        return self.agent.spec.comm_size

    @property
    def teammates(self) -> List[int]:
        return [j for j in range(self.num_agents) if j != self.agent_id]

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def synchronized_update(
        self,
        indices: Optional[Sequence[int]] = None,
        episode: Optional[Sequence[Transition]] = None
    ) -> Tuple[float, float]:
        """
        Run one round of the configured strategy.

        Args:
            indices: Memory indices of the minibatch (sampled when None)
            episode: Chronological episode, required by DIAL

        Returns:
            Tuple of (critic loss, actor loss)
        """
        return self._run(self.strategy, indices=indices, episode=episode)

    def dial_update(self, episode: Sequence[Transition]) -> Tuple[float, float]:
        """One DIAL round over `episode` regardless of the configured strategy."""
        strategy = self.strategy if isinstance(self.strategy, DialSync) else DialSync()
        return self._run(strategy, episode=episode)

    def _run(self, strategy: "SyncStrategy", **kwargs) -> Tuple[float, float]:
        log.debug("[Agent %d] %s round %d", self.agent_id, strategy.name, self.round)
        try:
            critic_loss, actor_loss = strategy.update(self, **kwargs)
        except BaseException as exc:
            self.exchange.abort(self.agent_id, self.round, strategy.name, exc)
            raise
        finally:
            self.round += 1
        self.agent.record_losses(critic_loss, actor_loss)
        return critic_loss, actor_loss

    # ------------------------------------------------------------------
    # Protocol helpers
    # ------------------------------------------------------------------

    @contextmanager
    def phase(self, phase: Hashable):
        """Abort the exchange if the enclosed phase body raises."""
        try:
            yield
        except BaseException as exc:
            self.exchange.abort(self.agent_id, self.round, phase, exc)
            raise

    def exchange_payload(self, phase: Hashable, payload, round_id: Optional[int] = None) -> List:
        """Publish own payload, then wait for the whole cohort's."""
        round_id = self.round if round_id is None else round_id
        self.exchange.publish(self.agent_id, round_id, phase, payload)
        return self.exchange.gather(self.agent_id, round_id, phase, self.timeout)

    def gather_previous(self, phase: Hashable) -> Optional[List]:
        """Payloads of the previous round, or None on the first round."""
        if self.round == 0:
            return None
        return self.exchange.gather(self.agent_id, self.round - 1, phase, self.timeout)

    def hear(self, messages: Sequence[Optional[torch.Tensor]]) -> Optional[torch.Tensor]:
        """Teammate messages concatenated in agent-id order."""
        if self.comm_size == 0 or not self.teammates:
            return None
        return torch.cat([messages[j] for j in self.teammates], dim=-1)

    def silence(self, batch_size: int) -> Optional[torch.Tensor]:
        """All-zero heard features."""
        if self.comm_size == 0 or not self.teammates:
            return None
        return torch.zeros(
            batch_size, self.comm_size * len(self.teammates), device=self.agent.device
        )

    def split_heard_grad(self, grad: Optional[torch.Tensor]) -> Dict[int, torch.Tensor]:
        """Gradient w.r.t. heard features, keyed by the teammate it belongs to."""
        if grad is None:
            return {}
        return dict(zip(self.teammates, torch.split(grad, self.comm_size, dim=-1)))

    def incoming_grad(self, payloads: Sequence[Dict[int, torch.Tensor]]) -> Optional[torch.Tensor]:
        """Sum of the gradients teammates computed for this agent's message."""
        grads = [
            payloads[j][self.agent_id]
            for j in self.teammates
            if payloads[j] and self.agent_id in payloads[j]
        ]
        if not grads:
            return None
        return torch.stack(grads).sum(dim=0)

    # ------------------------------------------------------------------
    # Shared forward / backward bodies
    # ------------------------------------------------------------------

    def forward(self, batch: Batch):
        """
        Actor pass for the forward phase.

        Returns:
            Tuple of (actor output, message slice with graph, payload)
        """
        agent = self.agent
        actor_out = agent.actor(batch.states, batch.tasks)
        if self.comm_size == 0:
            return actor_out, None, (None, None)
        comm_out = actor_out[:, agent.spec.comm_slice]
        with torch.no_grad():
            next_msg = agent.actor_target(batch.next_states, batch.tasks)[:, agent.spec.comm_slice]
        return actor_out, comm_out, (comm_out.detach(), next_msg)

    def backward(
        self,
        batch: Batch,
        actor_out: torch.Tensor,
        heard: Optional[torch.Tensor],
        next_heard: Optional[torch.Tensor]
    ):
        """
        Critic step and policy loss for the backward phase.

        Returns:
            Tuple of (critic loss, policy loss tensor, per-teammate gradients)
        """
        agent = self.agent
        targets = agent.compute_targets(batch, next_heard)
        critic_loss = agent.step_critic(agent.critic_loss(batch, targets, heard))
        policy_loss, heard_grad = agent.policy_loss(
            batch, actor_out, heard, heard_grad=heard is not None
        )
        return critic_loss, policy_loss, self.split_heard_grad(heard_grad)


# =============================================================================
# STRATEGIES
# =============================================================================

class SyncStrategy(ABC):
    """One way of running a synchronized update round."""

    name: str = ""

    @abstractmethod
    def update(
        self,
        engine: SyncEngine,
        indices: Optional[Sequence[int]] = None,
        episode: Optional[Sequence[Transition]] = None
    ) -> Tuple[float, float]:
        """Returns (critic loss, actor loss)."""


class ExactSync(SyncStrategy):
    """Blocks on live teammate data of the current round."""

    name = "exact"

    def agree_indices(self, engine: SyncEngine) -> np.ndarray:
        """
        Every agent draws the same minibatch indices.

        Indices are bounded by the smallest memory in the cohort and drawn
        from a generator seeded by the exchange seed and the round.
        """
        with engine.phase(SAMPLE):
            sizes = engine.exchange_payload(SAMPLE, len(engine.agent.memory))
            rng = np.random.default_rng([engine.exchange.seed, engine.round])
            return rng.integers(0, min(sizes), size=engine.agent.config.minibatch_size)

    def update(self, engine, indices=None, episode=None):
        agent = engine.agent
        if indices is None:
            indices = self.agree_indices(engine)

        with engine.phase(FORWARD):
            batch = agent.make_batch(agent.memory.transitions(indices))
            actor_out, comm_out, payload = engine.forward(batch)
            payloads = engine.exchange_payload(FORWARD, payload)

        with engine.phase(BACKWARD):
            heard = engine.hear([p[0] for p in payloads])
            next_heard = engine.hear([p[1] for p in payloads])
            critic_loss, policy_loss, grads = engine.backward(batch, actor_out, heard, next_heard)
            payloads = engine.exchange_payload(BACKWARD, grads)
            actor_loss = agent.step_actor(policy_loss, comm_out, engine.incoming_grad(payloads))
            agent.soft_update_targets()

        return critic_loss, actor_loss


class ApproxSync(SyncStrategy):
    """
    Uses the previous round's teammate messages and gradients.

    An agent only ever waits for data one round old, so agents running at
    uneven rates block less, at the cost of one round of staleness.

    Messages published in round r are heard by teammates in round r + 1 and
    their gradients come back in round r + 2. They are applied to the
    message head re-evaluated on the minibatch of round r, row for row.
    """

    name = "approx"
    grad_lag = 2

    def pop_sent_batch(self, engine: SyncEngine) -> Optional[Batch]:
        """Minibatch the incoming gradients refer to; older ones are dropped."""
        sent_round = engine.round - self.grad_lag
        batch = engine.sent_batches.pop(sent_round, None)
        for stale in [r for r in engine.sent_batches if r < sent_round]:
            del engine.sent_batches[stale]
        return batch

    def update(self, engine, indices=None, episode=None):
        agent = engine.agent

        with engine.phase(FORWARD):
            if indices is None:
                indices = agent.sample_transitions_from_memory(agent.config.minibatch_size)
            batch = agent.make_batch(agent.memory.transitions(indices))
            if engine.comm_size > 0:
                engine.sent_batches[engine.round] = batch
            actor_out, _, payload = engine.forward(batch)
            engine.exchange.publish(engine.agent_id, engine.round, FORWARD, payload)
            previous = engine.gather_previous(FORWARD)
            if previous is None:
                heard = next_heard = engine.silence(len(batch))
            else:
                heard = engine.hear([p[0] for p in previous])
                next_heard = engine.hear([p[1] for p in previous])

        with engine.phase(BACKWARD):
            critic_loss, policy_loss, grads = engine.backward(batch, actor_out, heard, next_heard)
            engine.exchange.publish(engine.agent_id, engine.round, BACKWARD, grads)
            previous = engine.gather_previous(BACKWARD)
            incoming = engine.incoming_grad(previous) if previous is not None else None
            sent = self.pop_sent_batch(engine)
            returned = None
            if incoming is not None and sent is not None:
                returned = agent.actor(sent.states, sent.tasks)[:, agent.spec.comm_slice]
            actor_loss = agent.step_actor(policy_loss, returned, incoming)
            agent.soft_update_targets()

        return critic_loss, actor_loss


class DialSync(SyncStrategy):
    """
    Episode-level update with credit assignment through time.

    A message sent at t is heard by teammates at t + 1, so the gradient
    teammates compute at t + 1 flows back into the sender's actor output
    at t. All per-step losses and message gradients are accumulated over the
    episode before a single optimizer step per role.
    """

    name = "dial"

    def update(self, engine, indices=None, episode=None):
        if episode is None:
            raise ValueError("DIAL updates replay a whole episode")
        agent = engine.agent

        with engine.phase(LENGTH):
            steps = min(engine.exchange_payload(LENGTH, len(episode)))
        if steps == 0:
            return 0.0, 0.0

        critic_losses: List[torch.Tensor] = []
        policy_losses: List[torch.Tensor] = []
        sent: List[torch.Tensor] = []
        received: List[torch.Tensor] = []
        heard = engine.silence(1)
        previous_comm = None

        for t in range(steps):
            with engine.phase((FORWARD, t)):
                batch = agent.make_batch([episode[t]])
                actor_out, comm_out, payload = engine.forward(batch)
                payloads = engine.exchange_payload((FORWARD, t), payload)
                # s' of step t is heard together with the messages sent at t
                next_heard = engine.hear([p[0] for p in payloads])

            with engine.phase((BACKWARD, t)):
                targets = agent.compute_targets(batch, next_heard)
                critic_losses.append(agent.critic_loss(batch, targets, heard))
                policy_loss, heard_grad = agent.policy_loss(
                    batch, actor_out, heard, heard_grad=heard is not None and t > 0
                )
                policy_losses.append(policy_loss)
                payloads = engine.exchange_payload((BACKWARD, t), engine.split_heard_grad(heard_grad))
                incoming = engine.incoming_grad(payloads)
                if previous_comm is not None and incoming is not None:
                    sent.append(previous_comm)
                    received.append(incoming)

            heard = next_heard
            previous_comm = comm_out

        with engine.phase(APPLY):
            scale = 1.0 / steps
            comm_out = torch.cat(sent) if sent else None
            comm_grad = torch.cat(received) * scale if received else None
            actor_loss = agent.step_actor(torch.stack(policy_losses).sum() * scale, comm_out, comm_grad)
            critic_loss = agent.step_critic(torch.stack(critic_losses).mean())
            agent.soft_update_targets()

        return critic_loss, actor_loss


STRATEGIES = {
    ExactSync.name: ExactSync,
    ApproxSync.name: ApproxSync,
    DialSync.name: DialSync,
}


def make_strategy(name: str) -> SyncStrategy:
    """Build a sync strategy from its config name."""
    if name not in STRATEGIES:
        raise ValueError(f"Unknown sync strategy: {name!r}; choose from {sorted(STRATEGIES)}")
    return STRATEGIES[name]()
