"""
Exchange Module
===============

In-process rendezvous for a fixed cohort of agent threads.

Every (round, phase) pair owns one slot of N futures, one per agent.
An agent publishes its phase output into its own future and then gathers
all N futures of the slot:

    publish(i, r, phase, payload)   # write own output
    gather(i, r, phase)             # wait for every teammate, read all

Gathering returns only once every agent has published, so no reader ever
observes a half-written phase output. A slot is dropped once all N agents
have gathered it.

A failing agent calls abort(): every pending future is failed, so
teammates blocked in gather() raise CohortAborted instead of waiting
forever. An aborted exchange stays aborted.
"""

import logging
import threading
from concurrent import futures
from typing import Any, Dict, Hashable, List, Optional, Set, Tuple

log = logging.getLogger(__name__)


class CohortAborted(RuntimeError):
    """Raised in every agent once a teammate faulted inside the protocol."""


class _Slot:
    def __init__(self, num_agents: int):
        self.futures: List[futures.Future] = [futures.Future() for _ in range(num_agents)]
        self.gathered: Set[int] = set()


class Exchange:
    """
    Round-keyed future board shared by N agent threads.

    Attributes:
        num_agents: Cohort size; every slot waits for exactly this many agents
        seed: Shared seed agents use to agree on random choices

    Example:
        >>> exchange = Exchange(num_agents=2)
        >>> # in thread i
        >>> exchange.publish(i, 0, "forward", message)
        >>> messages = exchange.gather(i, 0, "forward")
    """

    def __init__(self, num_agents: int, seed: int = 0):
        if num_agents <= 0:
            raise ValueError(f"num_agents must be positive, got {num_agents}")
        self.num_agents = num_agents
        self.seed = seed
        self._lock = threading.Lock()
        self._slots: Dict[Tuple[int, Hashable], _Slot] = {}
        self._failure: Optional[BaseException] = None

    def _slot(self, round_id: int, phase: Hashable) -> _Slot:
        key = (round_id, phase)
        with self._lock:
            slot = self._slots.get(key)
            if slot is None:
                slot = _Slot(self.num_agents)
                if self._failure is not None:
                    for future in slot.futures:
                        future.set_exception(self._failure)
                self._slots[key] = slot
            return slot

    def publish(self, agent_id: int, round_id: int, phase: Hashable, payload: Any):
        """Deposit this agent's output for (round, phase)."""
        future = self._slot(round_id, phase).futures[agent_id]
        if future.done():
            # Only an abort completes a future before its owner publishes
            self._raise_aborted(round_id, phase, future.exception())
        future.set_result(payload)

    def gather(
        self,
        agent_id: int,
        round_id: int,
        phase: Hashable,
        timeout: Optional[float] = None
    ) -> List[Any]:
        """
        Wait until every agent published (round, phase) and return all payloads.

        Args:
            agent_id: Caller's index
            round_id: Protocol round
            phase: Phase key inside the round
            timeout: Seconds to wait; None waits forever

        Returns:
            Payloads indexed by agent id

        Raises:
            CohortAborted: If any agent aborted the exchange
            concurrent.futures.TimeoutError: If the timeout elapsed first
        """
        slot = self._slot(round_id, phase)
        done, pending = futures.wait(slot.futures, timeout=timeout)
        if pending:
            raise futures.TimeoutError(
                f"Agent {agent_id} timed out in round {round_id} phase {phase!r}: "
                f"{len(pending)} of {self.num_agents} agents missing"
            )

        self._mark_gathered(agent_id, round_id, phase, slot)
        payloads = []
        for future in slot.futures:
            exc = future.exception()
            if exc is not None:
                self._raise_aborted(round_id, phase, exc)
            payloads.append(future.result())
        return payloads

    def abort(self, agent_id: int, round_id: int, phase: Hashable, exc: BaseException):
        """Fail every pending slot and all slots created from now on."""
        with self._lock:
            if self._failure is None:
                self._failure = exc
                log.warning(
                    "Agent %d aborted the exchange in round %d phase %r: %r",
                    agent_id, round_id, phase, exc
                )
            slots = list(self._slots.values())
        for slot in slots:
            for future in slot.futures:
                try:
                    future.set_exception(self._failure)
                except futures.InvalidStateError:
                    pass

    @property
    def aborted(self) -> bool:
        return self._failure is not None

    @property
    def pending_slots(self) -> int:
        """Number of slots not yet gathered by every agent."""
        with self._lock:
            return len(self._slots)

    def _mark_gathered(self, agent_id: int, round_id: int, phase: Hashable, slot: _Slot):
        with self._lock:
            slot.gathered.add(agent_id)
            if len(slot.gathered) == self.num_agents:
                self._slots.pop((round_id, phase), None)

    def _raise_aborted(self, round_id: int, phase: Hashable, cause: Optional[BaseException]):
        raise CohortAborted(
            f"Cohort aborted in round {round_id} phase {phase!r}"
        ) from cause
