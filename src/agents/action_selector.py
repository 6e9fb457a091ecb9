"""
Action Selector Module
======================

Epsilon-greedy policy evaluation and hybrid action decoding.

Exploration:
    With probability epsilon an exploratory ActorOutput is drawn uniformly
    (scores in [-1, 1], parameters inside their ranges, message in [-1, 1]).
    When the message is flagged non-randomizable, exploration keeps the
    greedy message and only randomizes the rest.

Decoding:
    - get_action:    argmax over discrete scores (first occurrence on ties)
    - sample_action: draw the discrete choice from softmax(scores)
"""

from typing import List, Optional, Sequence

import numpy as np
import torch
import torch.nn as nn

from environment.action_space import Action, ActionSpec, random_actor_output, softmax
from .networks import states_to_array


class ActionSelector:
    """
    Chooses and decodes actions for one agent.

    Attributes:
        actor: Online actor network
        critic: Online critic network
        spec: ActorOutput layout
        randomize_comm: Whether exploration also randomizes the message

    Example:
        >>> selector = ActionSelector(actor, critic, spec, rng=np.random.default_rng(0))
        >>> out = selector.select_action(states, task=0, epsilon=0.1)
        >>> action = selector.get_action(out)
    """

    def __init__(
        self,
        actor: nn.Module,
        critic: nn.Module,
        spec: ActionSpec,
        rng: Optional[np.random.Generator] = None,
        device: torch.device = torch.device("cpu"),
        randomize_comm: bool = True
    ):
        self.actor = actor
        self.critic = critic
        self.spec = spec
        self.rng = rng if rng is not None else np.random.default_rng()
        self.device = device
        self.randomize_comm = randomize_comm

    # ------------------------------------------------------------------
    # Exploration
    # ------------------------------------------------------------------

    def get_random_actor_output(self) -> np.ndarray:
        return random_actor_output(self.spec, self.rng)

    def randomize_non_comm_actions(self, actor_output: np.ndarray) -> np.ndarray:
        """Randomize scores and parameters in place, keeping the message."""
        random_output = self.get_random_actor_output()
        actor_output[self.spec.score_slice] = random_output[self.spec.score_slice]
        actor_output[self.spec.params_slice] = random_output[self.spec.params_slice]
        return actor_output

    def _explore(self, greedy_output: np.ndarray) -> np.ndarray:
        if self.randomize_comm or self.spec.comm_size == 0:
            return self.get_random_actor_output()
        return self.randomize_non_comm_actions(np.array(greedy_output, copy=True))

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select_action_greedily(
        self,
        states_batch: Sequence[Sequence[np.ndarray]],
        task_batch: Sequence[int],
        actor: Optional[nn.Module] = None
    ) -> np.ndarray:
        """
        Forward a batch of state windows through the actor.

        Returns:
            ActorOutputs, shape (batch, output_size)
        """
        actor = actor if actor is not None else self.actor
        states = torch.from_numpy(states_to_array(states_batch)).to(self.device)
        tasks = torch.as_tensor(np.asarray(task_batch), dtype=torch.long, device=self.device)
        with torch.no_grad():
            outputs = actor(states, tasks)
        return outputs.cpu().numpy()

    def select_action(
        self,
        states: Sequence[np.ndarray],
        task: int,
        epsilon: float
    ) -> np.ndarray:
        """Epsilon-greedy ActorOutput for a single state window."""
        return self.select_actions([states], [task], epsilon)[0]

    def select_actions(
        self,
        states_batch: Sequence[Sequence[np.ndarray]],
        task_batch: Sequence[int],
        epsilon: float
    ) -> np.ndarray:
        """
        Epsilon-greedy ActorOutputs for a batch.

        One forward pass serves the whole batch; the epsilon coin is flipped
        independently for every sample.
        """
        outputs = self.select_action_greedily(states_batch, task_batch)
        explore = self.rng.random(len(outputs)) < epsilon
        for i in np.flatnonzero(explore):
            outputs[i] = self._explore(outputs[i])
        return outputs

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def get_action(self, actor_output: np.ndarray) -> Action:
        """Discrete choice with maximal score, plus its parameters clipped to range."""
        actor_output = self.spec.clip(actor_output)
        scores, _, _ = self.spec.split(actor_output)
        return self.spec.decode(actor_output, int(np.argmax(scores)))

    def sample_action(self, actor_output: np.ndarray) -> Action:
        """Discrete choice drawn from softmax(scores), plus its parameters clipped to range."""
        actor_output = self.spec.clip(actor_output)
        scores, _, _ = self.spec.split(actor_output)
        probs = softmax(scores.astype(np.float64))
        choice = int(self.rng.choice(self.spec.num_actions, p=probs))
        return self.spec.decode(actor_output, choice)

    def evaluate_action(
        self,
        states: Sequence[np.ndarray],
        task: int,
        actor_output: np.ndarray,
        heard: Optional[np.ndarray] = None
    ) -> float:
        """Critic estimate Q(s, task, a); no state is modified."""
        state_tensor = torch.from_numpy(states_to_array([states])).to(self.device)
        task_tensor = torch.as_tensor([task], dtype=torch.long, device=self.device)
        action_tensor = torch.as_tensor(
            np.asarray(actor_output, dtype=np.float32)[None], device=self.device
        )
        heard_tensor = None
        if heard is not None:
            heard_tensor = torch.as_tensor(
                np.asarray(heard, dtype=np.float32)[None], device=self.device
            )
        with torch.no_grad():
            q_value = self.critic(state_tensor, task_tensor, action_tensor, heard_tensor)
        return float(q_value.item())

    # ------------------------------------------------------------------
    # Messages and printing
    # ------------------------------------------------------------------

    def get_say_msg(self, actor_output: np.ndarray) -> str:
        """Encode the message segment as text for in-game speech."""
        _, _, message = self.spec.split(actor_output)
        return " ".join(f"{v:.4f}" for v in message)

    def parse_hear_msg(self, text: str) -> np.ndarray:
        """Decode a message produced by `get_say_msg`; blank → zeros."""
        if not text or not text.strip():
            return np.zeros(self.spec.comm_size, dtype=np.float32)
        values = np.array([float(v) for v in text.split()], dtype=np.float32)
        if values.shape[0] != self.spec.comm_size:
            raise ValueError(
                f"Heard message has {values.shape[0]} values, expected {self.spec.comm_size}"
            )
        return values

    def format_actor_output(self, actor_output: np.ndarray) -> str:
        """Human readable dump of scores, parameters and message."""
        actor_output = np.asarray(actor_output)
        parts: List[str] = []
        for a in range(self.spec.num_actions):
            params = actor_output[self.spec.param_slice(a)]
            args = ", ".join(f"{p:.2f}" for p in params)
            parts.append(
                f"{self.spec.action_name(a)} = {actor_output[a]:.3f} ({args})"
            )
        if self.spec.comm_size > 0:
            parts.append(f"MSG = [{self.get_say_msg(actor_output)}]")
        return " ".join(parts)
