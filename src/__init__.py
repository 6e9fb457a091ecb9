"""
HFO Communicating DDPG
======================

Multi-agent deep deterministic policy gradient learning core for Half
Field Offense style tasks with hybrid actions and a learned message channel.

Modules:
    - environment: Hybrid action layout, status codes, task contract
    - memory: Replay memory and its on-disk format
    - agents: Actor, critic and semantic networks, DDPG agent
    - sync: Exact, approximate and DIAL multi-agent updates
    - persistence: Snapshots, discovery and restore
    - training: Configuration, metrics, cohort trainer
    - visualization: Training curves
"""

__version__ = "0.1.0"
