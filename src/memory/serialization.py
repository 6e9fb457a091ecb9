"""
Replay Memory Serialization
===========================

Compressed on-disk format for replay memories.

File layout (inside a gzip stream):
    MAGIC (4 bytes) | record count (uint64, little endian)
    then, per transition: payload length (uint32) | pickled record

Records hold plain numpy arrays and Python scalars only, so a file can be
read back without any of the learning-core classes loaded.
"""

import gzip
import pickle
import struct
from pathlib import Path
from typing import Iterator, List, Sequence, Union

import numpy as np

from .replay_memory import Transition

MAGIC = b"RPLM"
_COUNT = struct.Struct("<Q")
_LENGTH = struct.Struct("<I")


def _to_record(transition: Transition) -> tuple:
    next_state = None
    if transition.next_state is not None:
        next_state = np.asarray(transition.next_state, dtype=np.float32)
    return (
        tuple(np.asarray(s, dtype=np.float32) for s in transition.states),
        int(transition.task),
        np.asarray(transition.action, dtype=np.float32),
        float(transition.reward),
        float(transition.on_policy_target),
        next_state,
    )


def _from_record(record: tuple) -> Transition:
    states, task, action, reward, target, next_state = record
    return Transition(
        states=tuple(states),
        task=task,
        action=action,
        reward=reward,
        on_policy_target=target,
        next_state=next_state,
    )


def _read_exact(stream, size: int) -> bytes:
    data = stream.read(size)
    if len(data) != size:
        raise EOFError(f"Truncated replay memory: wanted {size} bytes, got {len(data)}")
    return data


def write_transitions(path: Union[str, Path], transitions: Sequence[Transition]) -> int:
    """
    Write transitions to a gzip-compressed, length-delimited file.

    Returns:
        Number of records written
    """
    with gzip.open(path, "wb") as f:
        f.write(MAGIC)
        f.write(_COUNT.pack(len(transitions)))
        for transition in transitions:
            payload = pickle.dumps(_to_record(transition), protocol=pickle.HIGHEST_PROTOCOL)
            f.write(_LENGTH.pack(len(payload)))
            f.write(payload)
    return len(transitions)


def iter_transitions(path: Union[str, Path]) -> Iterator[Transition]:
    """Stream transitions from a file written by `write_transitions`."""
    with gzip.open(path, "rb") as f:
        magic = f.read(len(MAGIC))
        if magic != MAGIC:
            raise ValueError(f"{path} is not a replay memory file")
        (count,) = _COUNT.unpack(_read_exact(f, _COUNT.size))
        for _ in range(count):
            (length,) = _LENGTH.unpack(_read_exact(f, _LENGTH.size))
            yield _from_record(pickle.loads(_read_exact(f, length)))


def read_transitions(path: Union[str, Path]) -> List[Transition]:
    """Load every transition stored in `path`."""
    return list(iter_transitions(path))
