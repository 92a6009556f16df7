"""Platform scanner capability and the sample types every backend shares.

Two backends exist:
- procfs: parses /proc/<pid>/stat, one item per process with full facts
- mach: walks processor sets, tasks and threads, one item per thread with
  state only

Callers depend on the PlatformScanner protocol and its two capability flags,
never on which backend is behind it.
"""

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from process_census.classify import RunState

BACKENDS = ("auto", "procfs", "mach")


class ScanError(Exception):
    """The top-level process listing could not be obtained.

    Raised only when the whole cycle has to be abandoned. Problems with a
    single process or thread are logged and skipped inside the scanner.
    """


@dataclass(frozen=True)
class RawProcessSample:
    """One /proc/<pid>/stat record, in kernel units."""

    pid: int
    name: str
    state_code: str
    ppid: int  # Captured, not aggregated
    num_threads: int
    rss_pages: int
    minor_faults: int
    major_faults: int
    user_ticks: int
    system_ticks: int


@dataclass(frozen=True)
class ProcessFacts:
    """Per-process resource facts in bytes and microseconds."""

    name: str
    num_threads: int
    resident_bytes: int
    minor_faults: int
    major_faults: int
    cpu_user_us: int
    cpu_system_us: int


@dataclass(frozen=True)
class ScanItem:
    """A classified scan result.

    facts is None on backends that only observe run state.
    """

    state: RunState
    facts: ProcessFacts | None = None


class PlatformScanner(Protocol):
    """Enumerates processes (or threads) and classifies each one."""

    name: str
    observes_paging: bool
    provides_process_facts: bool

    def scan(self) -> list[ScanItem]:
        """Return one item per process or thread.

        Raises:
            ScanError: If the top-level listing cannot be obtained.
        """
        ...

    def close(self) -> None:
        """Release long-lived kernel resources held by the scanner."""
        ...


def create_scanner(backend: str = "auto", proc_root: Path = Path("/proc")) -> PlatformScanner:
    """Create the scanner for a backend name.

    Args:
        backend: "procfs", "mach", or "auto" (procfs when proc_root exists,
            mach on Darwin)
        proc_root: Process-information root for the procfs backend

    Raises:
        ValueError: If backend is not a known name.
        ScanError: If "auto" finds no usable backend.
    """
    if backend not in BACKENDS:
        raise ValueError(f"Unknown backend: {backend!r}. Valid backends: {list(BACKENDS)}")

    if backend == "auto":
        if proc_root.is_dir():
            backend = "procfs"
        elif sys.platform == "darwin":
            backend = "mach"
        else:
            raise ScanError(f"No scanner backend available (no {proc_root}, not Darwin)")

    if backend == "procfs":
        from process_census.procfs import ProcfsScanner

        return ProcfsScanner(proc_root=proc_root)

    from process_census.machscan import MachScanner

    return MachScanner()
