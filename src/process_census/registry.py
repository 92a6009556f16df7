"""Registry of process names tracked individually.

Names are registered once from configuration and live for the rest of the
process. Every name is truncated to NAME_MAX_LEN before it is stored or
compared, so a registration and a scanned process name match exactly when
their truncated forms are equal.
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from process_census.scanner import ProcessFacts

# Matches the kernel-side 256-byte name buffer minus its terminator
NAME_MAX_LEN = 255


class BoundedName(str):
    """A string truncated to NAME_MAX_LEN characters."""

    __slots__ = ()

    def __new__(cls, value: str) -> "BoundedName":
        return super().__new__(cls, value[:NAME_MAX_LEN])


@dataclass
class ProcessGroupStat:
    """Per-cycle totals for all processes sharing one tracked name."""

    name: BoundedName
    process_count: int = 0
    thread_count: int = 0
    resident_bytes: int = 0
    minor_faults: int = 0
    major_faults: int = 0
    cpu_user_us: int = 0
    cpu_system_us: int = 0

    def reset(self) -> None:
        """Zero all accumulators. The name is kept."""
        self.process_count = 0
        self.thread_count = 0
        self.resident_bytes = 0
        self.minor_faults = 0
        self.major_faults = 0
        self.cpu_user_us = 0
        self.cpu_system_us = 0

    def add(self, facts: ProcessFacts) -> None:
        """Fold one process into the totals."""
        self.process_count += 1
        self.thread_count += facts.num_threads
        self.resident_bytes += facts.resident_bytes
        self.minor_faults += facts.minor_faults
        self.major_faults += facts.major_faults
        self.cpu_user_us += facts.cpu_user_us
        self.cpu_system_us += facts.cpu_system_us


class NameRegistry:
    """Append-only, insertion-ordered set of tracked names."""

    def __init__(self) -> None:
        self._entries: dict[BoundedName, ProcessGroupStat] = {}

    @classmethod
    def from_names(cls, names: Iterable[str]) -> "NameRegistry":
        """Build a registry with every name registered in order."""
        registry = cls()
        for name in names:
            registry.register(name)
        return registry

    def register(self, name: str) -> ProcessGroupStat:
        """Register a name, returning its entry.

        Registering a name whose truncated form is already present returns
        the existing entry and keeps its original position.
        """
        key = BoundedName(name)
        entry = self._entries.get(key)
        if entry is None:
            entry = ProcessGroupStat(name=key)
            self._entries[key] = entry
        return entry

    def get(self, name: str) -> ProcessGroupStat | None:
        """Look up the entry for a (possibly untruncated) name."""
        return self._entries.get(BoundedName(name))

    @property
    def names(self) -> list[BoundedName]:
        """Registered names in insertion order."""
        return list(self._entries)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and BoundedName(name) in self._entries

    def __iter__(self) -> Iterator[ProcessGroupStat]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)
