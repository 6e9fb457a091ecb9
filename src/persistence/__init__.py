"""
Persistence Module
==================

Snapshot, pruning, discovery and restore of agent state.
"""

from .snapshot import (
    SnapshotSet,
    files_matching_regexp,
    find_hi_score,
    find_latest_snapshot,
    hi_score_prefix,
    load_replay_memory,
    load_weights,
    memory_path,
    model_path,
    remove_files_matching_regexp,
    remove_snapshots,
    restore,
    restore_solver,
    snapshot,
    solver_path,
)

__all__ = [
    "SnapshotSet",
    "files_matching_regexp",
    "find_hi_score",
    "find_latest_snapshot",
    "hi_score_prefix",
    "load_replay_memory",
    "load_weights",
    "memory_path",
    "model_path",
    "remove_files_matching_regexp",
    "remove_snapshots",
    "restore",
    "restore_solver",
    "snapshot",
    "solver_path",
]
