"""
Action Space Module
===================

Layout of the hybrid discrete + continuous actor output.

ActorOutput layout (flat float vector):
    [0, num_actions)                    score per discrete action
    [num_actions, num_actions + P)      continuous parameters of every action
    [num_actions + P, ... + comm_size)  outgoing communication message

Default parameterization (Half Field Offense):
    DASH   (power in [-100, 100], direction in [-180, 180])
    TURN   (direction in [-180, 180])
    TACKLE (direction in [-180, 180])
    KICK   (power in [0, 100], direction in [-180, 180])
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional, Sequence, Tuple

import numpy as np
from gymnasium import spaces


class ActionType(IntEnum):
    """Discrete action choices understood by the HFO server."""
    DASH = 0
    TURN = 1
    TACKLE = 2
    KICK = 3


# (low, high) bounds of each parameter, per discrete action
HFO_PARAM_RANGES: Tuple[Tuple[Tuple[float, float], ...], ...] = (
    ((-100.0, 100.0), (-180.0, 180.0)),   # DASH
    ((-180.0, 180.0),),                   # TURN
    ((-180.0, 180.0),),                   # TACKLE
    ((0.0, 100.0), (-180.0, 180.0)),      # KICK
)

COMM_RANGE: Tuple[float, float] = (-1.0, 1.0)


@dataclass
class Action:
    """Decoded runtime action: discrete choice plus up to two parameters."""
    action: int
    arg1: float = 0.0
    arg2: float = 0.0


@dataclass
class ActionSpec:
    """
    Describes how an ActorOutput vector is laid out.

    Attributes:
        param_ranges: Per discrete action, the (low, high) range of each of
            its continuous parameters (at most two)
        comm_size: Length of the message segment (0 disables communication)

    Example:
        >>> spec = ActionSpec(comm_size=4)
        >>> spec.output_size
        14
        >>> spec.param_slice(ActionType.KICK)
        slice(8, 10, None)
    """

    param_ranges: Sequence[Sequence[Tuple[float, float]]] = field(
        default_factory=lambda: HFO_PARAM_RANGES
    )
    comm_size: int = 0

    def __post_init__(self):
        self.param_ranges = tuple(tuple(r) for r in self.param_ranges)
        if not self.param_ranges:
            raise ValueError("At least one discrete action is required")
        for ranges in self.param_ranges:
            if len(ranges) > 2:
                raise ValueError("A discrete action may carry at most two parameters")
        if self.comm_size < 0:
            raise ValueError(f"comm_size must be non-negative, got {self.comm_size}")

        offsets = []
        offset = self.num_actions
        for ranges in self.param_ranges:
            offsets.append(offset)
            offset += len(ranges)
        self.param_offsets: Tuple[int, ...] = tuple(offsets)

    # ------------------------------------------------------------------
    # Sizes and slices
    # ------------------------------------------------------------------

    @property
    def num_actions(self) -> int:
        return len(self.param_ranges)

    @property
    def num_params(self) -> int:
        return sum(len(r) for r in self.param_ranges)

    @property
    def output_size(self) -> int:
        return self.num_actions + self.num_params + self.comm_size

    @property
    def score_slice(self) -> slice:
        return slice(0, self.num_actions)

    @property
    def params_slice(self) -> slice:
        return slice(self.num_actions, self.num_actions + self.num_params)

    @property
    def comm_slice(self) -> slice:
        start = self.num_actions + self.num_params
        return slice(start, start + self.comm_size)

    def param_slice(self, action: int) -> slice:
        """Slice of the parameters belonging to one discrete action."""
        start = self.param_offsets[action]
        return slice(start, start + len(self.param_ranges[action]))

    # ------------------------------------------------------------------
    # Bounds
    # ------------------------------------------------------------------

    @property
    def param_low(self) -> np.ndarray:
        return np.array([lo for r in self.param_ranges for lo, _ in r], dtype=np.float32)

    @property
    def param_high(self) -> np.ndarray:
        return np.array([hi for r in self.param_ranges for _, hi in r], dtype=np.float32)

    def get_action_space(self) -> "spaces.Tuple":
        """
        Gymnasium description of the decoded action space.

        Returns:
            Tuple of (Discrete choice, Box of all parameters[, Box message])
        """
        components: List[spaces.Space] = [
            spaces.Discrete(self.num_actions),
            spaces.Box(low=self.param_low, high=self.param_high, dtype=np.float32),
        ]
        if self.comm_size > 0:
            components.append(spaces.Box(
                low=COMM_RANGE[0],
                high=COMM_RANGE[1],
                shape=(self.comm_size,),
                dtype=np.float32
            ))
        return spaces.Tuple(components)

    # ------------------------------------------------------------------
    # Helpers on flat outputs
    # ------------------------------------------------------------------

    def split(self, actor_output: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Split an ActorOutput into (scores, params, message).

        Works on single vectors and on batches (leading batch dimension).
        """
        actor_output = np.asarray(actor_output)
        return (
            actor_output[..., self.score_slice],
            actor_output[..., self.params_slice],
            actor_output[..., self.comm_slice],
        )

    def decode(self, actor_output: np.ndarray, action: int) -> Action:
        """Build an Action from the parameters stored for `action`."""
        params = np.asarray(actor_output)[self.param_slice(action)]
        args = [float(p) for p in params] + [0.0, 0.0]
        return Action(action=int(action), arg1=args[0], arg2=args[1])

    def clip(self, actor_output: np.ndarray) -> np.ndarray:
        """Clip parameters and message into their valid ranges."""
        out = np.array(actor_output, dtype=np.float32, copy=True)
        out[..., self.params_slice] = np.clip(
            out[..., self.params_slice], self.param_low, self.param_high
        )
        if self.comm_size > 0:
            out[..., self.comm_slice] = np.clip(out[..., self.comm_slice], *COMM_RANGE)
        return out

    def action_name(self, action: int) -> str:
        """Readable name of a discrete action."""
        if self.param_ranges == HFO_PARAM_RANGES:
            return ActionType(action).name
        return f"ACTION_{action}"


def default_action_spec(comm_size: int = 0) -> ActionSpec:
    """HFO parameterization with an optional message segment."""
    return ActionSpec(param_ranges=HFO_PARAM_RANGES, comm_size=comm_size)


def softmax(scores: np.ndarray, axis: int = -1) -> np.ndarray:
    """Numerically stable softmax."""
    shifted = scores - np.max(scores, axis=axis, keepdims=True)
    exp_scores = np.exp(shifted)
    return exp_scores / np.sum(exp_scores, axis=axis, keepdims=True)


def random_actor_output(
    spec: ActionSpec,
    rng: np.random.Generator,
    size: Optional[int] = None
) -> np.ndarray:
    """
    Draw a uniformly random ActorOutput.

    Scores and message are uniform in [-1, 1]; parameters are uniform
    within their valid ranges.

    Args:
        spec: Output layout
        rng: Random generator
        size: Optional batch size

    Returns:
        Array of shape (output_size,) or (size, output_size)
    """
    shape = (spec.output_size,) if size is None else (size, spec.output_size)
    out = np.empty(shape, dtype=np.float32)
    lead = () if size is None else (size,)
    out[..., spec.score_slice] = rng.uniform(-1.0, 1.0, size=lead + (spec.num_actions,))
    out[..., spec.params_slice] = rng.uniform(
        spec.param_low, spec.param_high, size=lead + (spec.num_params,)
    )
    if spec.comm_size > 0:
        out[..., spec.comm_slice] = rng.uniform(
            COMM_RANGE[0], COMM_RANGE[1], size=lead + (spec.comm_size,)
        )
    return out
