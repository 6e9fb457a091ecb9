"""
Sync Module
===========

Cohort-wide updates for agents coupled by a learned message channel.
    - exchange: Round-keyed future board with abort propagation
    - sync_engine: Exact, approximate and DIAL update strategies
"""

from .exchange import CohortAborted, Exchange
from .sync_engine import (
    ApproxSync,
    DialSync,
    ExactSync,
    SyncEngine,
    SyncStrategy,
    make_strategy,
)

__all__ = [
    "CohortAborted",
    "Exchange",
    "ApproxSync",
    "DialSync",
    "ExactSync",
    "SyncEngine",
    "SyncStrategy",
    "make_strategy",
]
