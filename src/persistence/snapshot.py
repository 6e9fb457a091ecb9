"""
Snapshot Module
===============

Durable agent state: network weights, optimizer state and replay memory.

File naming, for a prefix such as ``outputs/run/agent0``:

    {prefix}_iter_{N}_{role}.model         online + target weights
    {prefix}_iter_{N}_{role}.solverstate   optimizer state + iteration counter
    {prefix}_iter_{N}.replaymemory         compressed transitions

Best evaluation results are tagged by a separate prefix,
``{prefix}_HiScore{score}``, which never matches the plain prefix above.

Writes go to temporary files first and are renamed into place only after
every artifact was written, so a failed snapshot leaves earlier snapshots
untouched. Old snapshots are pruned only after a successful write.
"""

import logging
import os
import pickle
import re
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import torch

log = logging.getLogger(__name__)

MODEL_EXT = "model"
SOLVER_EXT = "solverstate"
MEMORY_EXT = "replaymemory"
TMP_SUFFIX = ".tmp"

DEFAULT_ROLES: Tuple[str, ...] = ("actor", "critic")

# Errors that make a snapshot unusable rather than indicating a bug
RESTORE_ERRORS = (OSError, EOFError, ValueError, KeyError, RuntimeError, pickle.UnpicklingError)


@dataclass
class SnapshotSet:
    """Paths of one complete snapshot iteration."""
    iteration: int
    models: Dict[str, Path] = field(default_factory=dict)
    solvers: Dict[str, Path] = field(default_factory=dict)
    memory: Optional[Path] = None

    def paths(self) -> List[Path]:
        paths = list(self.models.values()) + list(self.solvers.values())
        if self.memory is not None:
            paths.append(self.memory)
        return paths


# =============================================================================
# NAMING
# =============================================================================

def model_path(prefix: str, iteration: int, role: str) -> Path:
    return Path(f"{prefix}_iter_{iteration}_{role}.{MODEL_EXT}")


def solver_path(prefix: str, iteration: int, role: str) -> Path:
    return Path(f"{prefix}_iter_{iteration}_{role}.{SOLVER_EXT}")


def memory_path(prefix: str, iteration: int) -> Path:
    return Path(f"{prefix}_iter_{iteration}.{MEMORY_EXT}")


def hi_score_prefix(prefix: str, score: int) -> str:
    """Prefix under which the snapshot scoring `score` is kept."""
    return f"{prefix}_HiScore{int(score)}"


def _split_prefix(prefix: str) -> Tuple[Path, str]:
    path = Path(prefix)
    return path.parent, path.name


def _snapshot_regexp(prefix: str) -> re.Pattern:
    _, base = _split_prefix(prefix)
    return re.compile(
        re.escape(base)
        + rf"_iter_(\d+)(?:_([A-Za-z]+))?\.({MODEL_EXT}|{SOLVER_EXT}|{MEMORY_EXT})"
    )


# =============================================================================
# FILE UTILITIES
# =============================================================================

def files_matching_regexp(directory: Path, regexp: re.Pattern) -> List[Path]:
    """Files directly inside `directory` whose whole name matches `regexp`."""
    directory = Path(directory)
    if not directory.is_dir():
        return []
    return sorted(p for p in directory.iterdir() if p.is_file() and regexp.fullmatch(p.name))


def remove_files_matching_regexp(directory: Path, regexp: re.Pattern) -> int:
    """Delete every file matched by `files_matching_regexp`; returns the count."""
    removed = 0
    for path in files_matching_regexp(directory, regexp):
        path.unlink()
        removed += 1
    return removed


def _group_by_iteration(prefix: str) -> Dict[int, List[Tuple[Optional[str], str, Path]]]:
    directory, _ = _split_prefix(prefix)
    regexp = _snapshot_regexp(prefix)
    groups: Dict[int, List[Tuple[Optional[str], str, Path]]] = defaultdict(list)
    for path in files_matching_regexp(directory, regexp):
        match = regexp.fullmatch(path.name)
        iteration, role, ext = int(match.group(1)), match.group(2), match.group(3)
        groups[iteration].append((role, ext, path))
    return groups


def remove_snapshots(prefix: str, min_iter: int) -> int:
    """
    Delete snapshot files of `prefix` with iteration strictly below `min_iter`.

    Returns:
        Number of files removed
    """
    removed = 0
    for iteration, files in _group_by_iteration(prefix).items():
        if iteration >= min_iter:
            continue
        for _, _, path in files:
            path.unlink()
            removed += 1
    if removed:
        log.info("Removed %d old snapshot files of %s below iteration %d", removed, prefix, min_iter)
    return removed


# =============================================================================
# DISCOVERY
# =============================================================================

def find_latest_snapshot(
    prefix: str,
    load_solver: bool = True,
    roles: Sequence[str] = DEFAULT_ROLES
) -> Optional[SnapshotSet]:
    """
    Highest iteration of `prefix` whose artifact set is complete.

    Weights and solver state are required for every role; the replay memory
    is required as well unless `load_solver` is False. Incomplete iterations
    are skipped.

    Returns:
        The snapshot found, or None
    """
    groups = _group_by_iteration(prefix)
    for iteration in sorted(groups, reverse=True):
        found = SnapshotSet(iteration)
        for role, ext, path in groups[iteration]:
            if ext == MODEL_EXT:
                found.models[role] = path
            elif ext == SOLVER_EXT:
                found.solvers[role] = path
            elif ext == MEMORY_EXT and role is None:
                found.memory = path

        complete = all(r in found.models and r in found.solvers for r in roles)
        if load_solver and found.memory is None:
            complete = False
        if complete:
            found.models = {r: found.models[r] for r in roles}
            found.solvers = {r: found.solvers[r] for r in roles}
            return found
        log.debug("Skipping incomplete snapshot %s iteration %d", prefix, iteration)
    return None


def find_hi_score(prefix: str) -> Optional[int]:
    """Best score recorded under ``{prefix}_HiScore{score}``, or None."""
    directory, base = _split_prefix(prefix)
    regexp = re.compile(re.escape(base) + r"_HiScore(-?\d+)(?:_.*)?")
    scores = [
        int(regexp.fullmatch(p.name).group(1))
        for p in files_matching_regexp(directory, regexp)
    ]
    return max(scores) if scores else None


# =============================================================================
# WRITE
# =============================================================================

def snapshot(
    agent,
    prefix: str,
    remove_old: bool = False,
    snapshot_memory: bool = True
) -> SnapshotSet:
    """
    Write every role's weights and solver state, plus the replay memory.

    Files are keyed by the agent's highest iteration counter. With
    `remove_old`, earlier iterations of the same prefix are deleted once the
    new files are in place.

    Args:
        agent: DDPGAgent to persist
        prefix: Path prefix of the snapshot files
        remove_old: Delete earlier snapshots of this prefix after writing
        snapshot_memory: Also write the replay memory

    Returns:
        Paths of the written snapshot
    """
    iteration = agent.max_iter
    directory, _ = _split_prefix(prefix)
    directory.mkdir(parents=True, exist_ok=True)

    written = SnapshotSet(iteration)
    artifacts: List[Tuple[Path, Callable[[str], object]]] = []
    for role in agent.roles:
        path = model_path(prefix, iteration, role)
        written.models[role] = path
        artifacts.append((path, lambda p, role=role: torch.save(agent.model_state(role), p)))

        path = solver_path(prefix, iteration, role)
        written.solvers[role] = path
        artifacts.append((path, lambda p, role=role: torch.save(agent.solver_state(role), p)))

    if snapshot_memory:
        written.memory = memory_path(prefix, iteration)
        artifacts.append((written.memory, agent.memory.save))

    temps: List[Path] = []
    try:
        for path, write in artifacts:
            tmp = path.with_name(path.name + TMP_SUFFIX)
            temps.append(tmp)
            write(str(tmp))
        for (path, _), tmp in zip(artifacts, temps):
            os.replace(tmp, path)
    except BaseException:
        for tmp in temps:
            if tmp.exists():
                tmp.unlink()
        log.error("Snapshot of %s at iteration %d failed", prefix, iteration)
        raise

    log.info("Snapshotted %s at iteration %d (%d files)", prefix, iteration, len(artifacts))
    agent.last_snapshot_iter = iteration

    if remove_old:
        remove_snapshots(prefix, iteration)
    return written


# =============================================================================
# RESTORE
# =============================================================================

def load_weights(agent, found: SnapshotSet):
    for role, path in found.models.items():
        agent.load_model_state(role, torch.load(path, map_location=agent.device))


def restore_solver(agent, found: SnapshotSet):
    for role, path in found.solvers.items():
        agent.load_solver_state(role, torch.load(path, map_location=agent.device))


def load_replay_memory(agent, path: Path) -> int:
    count = agent.memory.load(path)
    log.info("Loaded %d transitions from %s", count, path)
    return count


def restore(agent, prefix: str, load_solver: bool = True) -> bool:
    """
    Load the latest complete snapshot of `prefix` into `agent`.

    A missing, partial or unreadable snapshot is not an error: the agent is
    reset to fresh networks and an empty memory, and False is returned.

    Returns:
        True if the agent resumed from disk
    """
    found = find_latest_snapshot(prefix, load_solver=load_solver, roles=agent.roles)
    if found is None:
        log.warning("No complete snapshot found for %s; starting from scratch", prefix)
        return False

    try:
        load_weights(agent, found)
        if load_solver:
            restore_solver(agent, found)
            load_replay_memory(agent, found.memory)
    except RESTORE_ERRORS as exc:
        log.warning(
            "Unable to restore %s at iteration %d (%s); starting from scratch",
            prefix, found.iteration, exc
        )
        agent.reinitialize()
        return False

    agent.last_snapshot_iter = found.iteration
    log.info("Restored %s from iteration %d", prefix, found.iteration)
    return True
