"""
Trainer Module
==============

Cohort training loop connecting the task, the agents and logging.

One thread per agent. Every agent thread:
1. Plays an episode with an epsilon-greedy policy
2. Labels it with Monte-Carlo targets and stores it in replay memory
3. Runs a fixed number of updates (synchronized when the cohort talks)
4. Logs metrics, evaluates and snapshots periodically

Every agent runs the same number of updates per episode, so all threads
reach the exchange the same number of times.
"""

import random
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor, wait
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import torch

from agents.ddpg_agent import DDPGAgent
from environment.action_space import default_action_spec
from environment.task import Status, Task, is_terminal
from memory.replay_memory import Transition
from persistence.snapshot import find_hi_score, hi_score_prefix
from sync.exchange import CohortAborted, Exchange
from sync.sync_engine import SyncEngine
from .config import TrainingConfig
from .metrics import EvaluationResult, MetricsLogger


class CohortTrainer:
    """
    Trains N DDPG agents on one task, one thread per agent.

    Attributes:
        config: Training configuration
        task: Environment shared by the cohort, indexed by agent id
        agents: One DDPGAgent per agent id
        engines: One SyncEngine per agent (None for a single silent agent)
        logger: Metrics logger shared by all threads

    Example:
        >>> config = get_comm_config(num_agents=2)
        >>> trainer = CohortTrainer(config, task=MyTask())
        >>> trainer.train()
    """

    def __init__(
        self,
        config: TrainingConfig = None,
        task: Task = None,
        seed: int = None
    ):
        """
        Initialize trainer.

        Args:
            config: Training configuration (uses defaults if None)
            task: Task to train on
            seed: Random seed (uses config.seed if None)
        """
        if task is None:
            raise ValueError("A task is required for training")
        self.config = config or TrainingConfig()
        self.task = task
        self.seed = seed if seed is not None else self.config.seed
        self.num_agents = self.config.sync.num_agents
        if task.num_agents < self.num_agents:
            raise ValueError(
                f"Task supports {task.num_agents} agents, cohort needs {self.num_agents}"
            )
        agent_space = default_action_spec(self.config.network.comm_size).get_action_space()
        # The message box is internal to the cohort
        if agent_space.spaces[:2] != task.action_space.spaces[:2]:
            raise ValueError(
                f"Task {task.name!r} accepts {task.action_space}, agents act in {agent_space}"
            )

        self._set_seeds(self.seed)

        # Create output directory
        self.output_dir = Path(self.config.output_dir) / self.config.experiment_name
        self.output_dir.mkdir(parents=True, exist_ok=True)

        self.agents = [self._create_agent(tid) for tid in range(self.num_agents)]

        self.exchange = Exchange(self.num_agents, seed=self.seed)
        self.engines: List[Optional[SyncEngine]] = [
            self._create_engine(tid) for tid in range(self.num_agents)
        ]

        self.logger = MetricsLogger(
            output_dir=self.config.output_dir,
            experiment_name=self.config.experiment_name
        )
        self.config.save(self.output_dir / "config.json")

        self.restored = [False] * self.num_agents
        if self.config.resume:
            self.restored = [agent.restore() for agent in self.agents]
        # Shared memory starts from agent 0's restored buffer
        self._share()

    def _set_seeds(self, seed: int):
        """Set random seeds for reproducibility."""
        random.seed(seed)
        np.random.seed(seed)
        torch.manual_seed(seed)
        if torch.cuda.is_available():
            torch.cuda.manual_seed_all(seed)

    def _create_agent(self, tid: int) -> DDPGAgent:
        return DDPGAgent(
            network=self.config.network,
            ddpg=self.config.ddpg,
            device=self.config.device,
            seed=self.seed + tid,
            tid=tid,
            save_path=str(self.output_dir / f"agent{tid}")
        )

    def _create_engine(self, tid: int) -> Optional[SyncEngine]:
        if self.num_agents == 1 and self.config.sync.mode != "dial":
            return None
        return SyncEngine(
            self.agents[tid],
            self.exchange,
            agent_id=tid,
            strategy=self.config.sync.mode,
            timeout=self.config.sync.gather_timeout
        )

    def _share(self):
        """Give every agent the replay memory of agent 0."""
        if not self.config.sync.share_memory:
            return
        owner = self.agents[0]
        for other in self.agents[1:]:
            owner.share_replay_memory(other)

    # =========================================================================
    # EPISODES
    # =========================================================================

    def play_episode(self, tid: int, epsilon: float) -> Tuple[List[Transition], float, Status]:
        """
        Play one episode for agent `tid`.

        Returns:
            Tuple of (transitions, total reward, final status)
        """
        agent = self.agents[tid]
        window_size = self.config.network.state_input_count

        state = self.task.reset(tid)
        window = deque([state] * window_size, maxlen=window_size)
        transitions: List[Transition] = []
        total_reward = 0.0
        status = Status.IN_GAME

        for _ in range(self.config.max_steps):
            states = tuple(window)
            actor_output = agent.select_action(states, self.task.task_id, epsilon)
            next_state, reward, status = self.task.step(tid, agent.get_action(actor_output))
            total_reward += reward

            terminal = is_terminal(status)
            transitions.append(Transition(
                states=states,
                task=self.task.task_id,
                action=actor_output,
                reward=reward,
                next_state=None if terminal else np.asarray(next_state, dtype=np.float32)
            ))
            if terminal:
                break
            window.append(next_state)

        if not is_terminal(status):
            status = Status.OUT_OF_TIME
        return transitions, total_reward, status

    def update(self, tid: int, episode: List[Transition]) -> Tuple[float, float]:
        """One update of agent `tid`, through the exchange when the cohort talks."""
        engine = self.engines[tid]
        if engine is None:
            return self.agents[tid].update()
        if self.config.sync.mode == "dial":
            return engine.dial_update(episode)
        return engine.synchronized_update()

    def evaluate(self, tid: int = 0, n_episodes: int = 5) -> EvaluationResult:
        """
        Evaluate agent `tid` greedily.

        Args:
            tid: Agent to evaluate
            n_episodes: Number of episodes to play

        Returns:
            EvaluationResult with episode statistics
        """
        result = EvaluationResult()
        agent = self.agents[tid]
        agent.set_training_mode(False)
        for _ in range(n_episodes):
            transitions, reward, status = self.play_episode(tid, epsilon=0.0)
            result.add_episode(reward=reward, length=len(transitions), status=status)
        agent.set_training_mode(True)
        return result

    def _check_hi_score(self, tid: int, result: EvaluationResult) -> Optional[int]:
        """Snapshot agent `tid` under a hi-score prefix when it beat its best."""
        agent = self.agents[tid]
        score = int(round(result.summary()["goal_rate"] * 100))
        best = find_hi_score(agent.save_path)
        if best is not None and score <= best:
            return None
        agent.snapshot(prefix=hi_score_prefix(agent.save_path, score), snapshot_memory=False)
        print(f"  [*] Agent {tid} new hi score: {score}% goals")
        return score

    # =========================================================================
    # AGENT THREAD
    # =========================================================================

    def run_agent(self, tid: int) -> Dict[str, Any]:
        """
        Training loop of one agent thread.

        A failure anywhere in the loop aborts the exchange so that teammates
        stop instead of waiting for this agent.
        """
        try:
            return self._run_agent(tid)
        except BaseException as exc:
            self.exchange.abort(tid, -1, "episode", exc)
            raise

    def _run_agent(self, tid: int) -> Dict[str, Any]:
        config = self.config
        agent = self.agents[tid]
        teammate = self.agents[(tid + 1) % self.num_agents]

        for episode in range(config.max_episodes):
            epsilon = config.epsilon(episode)
            transitions, reward, status = self.play_episode(tid, epsilon)
            labelled = agent.label_transitions(transitions)
            agent.add_transitions(labelled)

            if episode >= config.warmup_episodes:
                for _ in range(config.updates_per_episode):
                    critic_loss, actor_loss = self.update(tid, labelled)
                    semantic_loss = None
                    if agent.semantic is not None and teammate is not agent:
                        semantic_loss = agent.update_semantic_net(teammate.memory)
                    self.logger.log_update(tid, critic_loss, actor_loss, semantic_loss)

            self.logger.log_episode(
                agent_id=tid,
                reward=reward,
                length=len(transitions),
                status=status,
                epsilon=epsilon,
                memory_size=agent.memory_size,
                episode=episode
            )

            if tid == 0 and (episode + 1) % config.log_interval == 0:
                self.logger.print_stats(prefix=f"[Episode {episode + 1}] ")

            if config.snapshot_interval > 0 and (episode + 1) % config.snapshot_interval == 0:
                agent.snapshot(
                    remove_old=config.remove_old_snapshots,
                    snapshot_memory=config.snapshot_memory
                )

            if config.eval_interval > 0 and (episode + 1) % config.eval_interval == 0:
                result = self.evaluate(tid, config.eval_episodes)
                summary = result.summary()
                print(f"  [Eval] Agent {tid} Reward: {summary['reward_mean']:.2f} | "
                      f"Goals: {summary['goal_rate'] * 100:.1f}%")
                self._check_hi_score(tid, result)

        agent.snapshot(
            remove_old=config.remove_old_snapshots,
            snapshot_memory=config.snapshot_memory
        )
        return {
            "agent_id": tid,
            "actor_iter": agent.actor_iter,
            "critic_iter": agent.critic_iter,
            "memory_size": agent.memory_size,
        }

    # =========================================================================
    # TRAIN
    # =========================================================================

    def train(self) -> Dict[str, Any]:
        """
        Run every agent thread to completion.

        Returns:
            Dictionary with final training statistics

        Raises:
            The first agent failure; teammates released by it surface as
            CohortAborted only when no other cause is known
        """
        print("=" * 70)
        print(f"Starting Training: {self.config.experiment_name}")
        print(f"  Agents: {self.num_agents} | Sync mode: {self.config.sync.mode}")
        print(f"  Episodes: {self.config.max_episodes} | Max steps: {self.config.max_steps}")
        print(f"  Comm size: {self.config.network.comm_size}")
        print(f"  Device: {self.agents[0].device}")
        if any(self.restored):
            print(f"  Resumed agents: {[i for i, r in enumerate(self.restored) if r]}")
        print("=" * 70)

        start_time = time.time()
        with ThreadPoolExecutor(max_workers=self.num_agents, thread_name_prefix="agent") as pool:
            futures = [pool.submit(self.run_agent, tid) for tid in range(self.num_agents)]
            wait(futures)

        errors = [f.exception() for f in futures if f.exception() is not None]
        if errors:
            self.logger.close()
            root_causes = [e for e in errors if not isinstance(e, CohortAborted)]
            raise (root_causes or errors)[0]

        agent_stats = [f.result() for f in futures]
        self.logger.save()

        elapsed = time.time() - start_time
        stats = self.logger.get_stats()
        final_stats = {
            "agents": agent_stats,
            "total_episodes": stats["total_episodes"],
            "total_steps": stats["total_steps"],
            "total_updates": stats["total_updates"],
            "goal_rate": stats["goal_rate"],
            "time_elapsed": elapsed,
        }

        print("=" * 70)
        print("Training Complete!")
        print(f"  Total episodes: {final_stats['total_episodes']}")
        print(f"  Total updates: {final_stats['total_updates']}")
        print(f"  Goal rate: {final_stats['goal_rate'] * 100:.1f}%")
        print(f"  Time: {elapsed / 60:.1f} minutes")
        print("=" * 70)

        self.logger.close()
        return final_stats
