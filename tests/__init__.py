"""
Test Package
============

Unit and integration tests for the DDPG learning core:
    - test_action_space / test_action_selector: Actor output layout and decoding
    - test_replay_memory: Bounded memory, labelling and file format
    - test_ddpg_agent: Networks, targets, updates and sharing
    - test_sync_engine: Exchange and cohort update strategies
    - test_snapshot: Snapshot files and restore
    - test_training / test_visualization: Trainer, metrics and plots
"""
