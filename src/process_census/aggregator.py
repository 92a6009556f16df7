"""Per-cycle aggregation of scan items.

The aggregator owns the name registry's accumulators. A cycle runs:

    begin_cycle()  -> zero global counts and every group
    accumulate()   -> once per scan item
    end_cycle()    -> frozen CycleSnapshot for the emitter

Only end_cycle() makes results visible, so a cycle that fails part-way
(abort_cycle()) never leaks a partial snapshot.
"""

import time
from dataclasses import dataclass

from process_census.classify import RunState
from process_census.registry import NameRegistry, ProcessGroupStat
from process_census.scanner import ScanItem


@dataclass
class GlobalStateCounts:
    """System-wide tally of classified items for one cycle.

    paging is None on backends that cannot observe it.
    """

    running: int = 0
    sleeping: int = 0
    zombies: int = 0
    stopped: int = 0
    paging: int | None = 0
    blocked: int = 0

    def increment(self, state: RunState) -> bool:
        """Count one item. Returns False if the state has no bucket."""
        if state is RunState.RUNNING:
            self.running += 1
        elif state is RunState.SLEEPING:
            self.sleeping += 1
        elif state is RunState.ZOMBIE:
            self.zombies += 1
        elif state is RunState.STOPPED:
            self.stopped += 1
        elif state is RunState.PAGING and self.paging is not None:
            self.paging += 1
        elif state is RunState.BLOCKED:
            self.blocked += 1
        else:
            return False
        return True

    def total(self) -> int:
        """Sum of all observable buckets."""
        return (
            self.running
            + self.sleeping
            + self.zombies
            + self.stopped
            + (self.paging or 0)
            + self.blocked
        )


@dataclass(frozen=True)
class GroupSnapshot:
    """Frozen copy of one ProcessGroupStat at the end of a cycle."""

    name: str
    process_count: int
    thread_count: int
    resident_bytes: int
    minor_faults: int
    major_faults: int
    cpu_user_us: int
    cpu_system_us: int

    @classmethod
    def of(cls, stat: ProcessGroupStat) -> "GroupSnapshot":
        return cls(
            name=str(stat.name),
            process_count=stat.process_count,
            thread_count=stat.thread_count,
            resident_bytes=stat.resident_bytes,
            minor_faults=stat.minor_faults,
            major_faults=stat.major_faults,
            cpu_user_us=stat.cpu_user_us,
            cpu_system_us=stat.cpu_system_us,
        )


@dataclass(frozen=True)
class CycleSnapshot:
    """Everything one cycle hands to the emitter.

    groups is None when the backend provides no per-process facts; the
    per-name records are then not applicable rather than zero.
    """

    timestamp: float
    states: GlobalStateCounts
    groups: tuple[GroupSnapshot, ...] | None


class Aggregator:
    """Folds scan items into global state counts and per-name groups."""

    def __init__(self, registry: NameRegistry) -> None:
        self.registry = registry
        self._counts = GlobalStateCounts()
        self._in_cycle = False
        self.classified = 0
        self.matched = 0

    @property
    def in_cycle(self) -> bool:
        """True between begin_cycle() and end_cycle()/abort_cycle()."""
        return self._in_cycle

    def begin_cycle(self) -> None:
        """Start a cycle with all counters zeroed.

        Raises:
            RuntimeError: If a cycle is already in progress.
        """
        if self._in_cycle:
            raise RuntimeError("begin_cycle() called while a cycle is in progress")
        self._in_cycle = True
        self._counts = GlobalStateCounts()
        self.classified = 0
        self.matched = 0
        for stat in self.registry:
            stat.reset()

    def accumulate(self, item: ScanItem) -> None:
        """Fold one scan item into the current cycle.

        Unclassified items are not counted globally. Items with facts are
        added to the registry entry of the same (truncated) name, if any.
        """
        if not self._in_cycle:
            raise RuntimeError("accumulate() called outside a cycle")

        if self._counts.increment(item.state):
            self.classified += 1

        if item.facts is None:
            return
        stat = self.registry.get(item.facts.name)
        if stat is not None:
            stat.add(item.facts)
            self.matched += 1

    def end_cycle(
        self,
        *,
        observes_paging: bool = True,
        provides_process_facts: bool = True,
        timestamp: float | None = None,
    ) -> CycleSnapshot:
        """Close the cycle and return its snapshot.

        Args:
            observes_paging: False reports paging as unsupported (None)
            provides_process_facts: False reports groups as not applicable
            timestamp: Snapshot time; defaults to time.time()
        """
        if not self._in_cycle:
            raise RuntimeError("end_cycle() called outside a cycle")
        self._in_cycle = False

        counts = self._counts
        if not observes_paging:
            counts.paging = None

        groups = None
        if provides_process_facts:
            groups = tuple(GroupSnapshot.of(stat) for stat in self.registry)

        return CycleSnapshot(
            timestamp=time.time() if timestamp is None else timestamp,
            states=counts,
            groups=groups,
        )

    def abort_cycle(self) -> None:
        """Close the cycle without producing a snapshot."""
        self._in_cycle = False
