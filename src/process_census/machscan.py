"""Thread-state scanner for Mach kernels (macOS).

On Mach all work happens in threads, and threads live in tasks. Tasks are
assigned to processor sets, so that is where enumeration starts:

    processor sets -> privileged set handle -> tasks -> threads -> run state

Each thread is classified on its own. A task whose threads cannot be listed
is counted once as a zombie, the way top(1) treats it. This backend sees no
process names, memory or CPU time, and cannot observe paging.

Every handle obtained during a scan is released before the scan moves on to
its next sibling, and before the scan returns on any path. The handle for
our own task is never released.
"""

from collections.abc import Iterable, Iterator
from contextlib import closing, contextmanager
from typing import Protocol

import structlog

from process_census.classify import RunState, classify_thread_state
from process_census.mach import MachError, MachKernel
from process_census.scanner import ScanError, ScanItem

log = structlog.get_logger()


class KernelPorts(Protocol):
    """The subset of MachKernel the scanner depends on."""

    task_self: int

    def processor_sets(self) -> list[int]: ...

    def processor_set_priv(self, pset_name: int) -> int: ...

    def processor_set_tasks(self, pset: int) -> list[int]: ...

    def task_threads(self, task: int) -> list[int]: ...

    def thread_run_state(self, thread: int) -> int: ...

    def port_deallocate(self, port: int) -> None: ...


class MachScanner:
    """Counts thread run states across every processor set.

    Args:
        kernel: Mach call interface; defaults to the ctypes bindings.

    Raises:
        ScanError: If no Mach interface is available on this platform.
    """

    name = "mach"
    observes_paging = False
    provides_process_facts = False

    def __init__(self, kernel: KernelPorts | None = None) -> None:
        if kernel is None:
            try:
                kernel = MachKernel()
            except OSError as e:
                raise ScanError(str(e)) from e
        self.kernel = kernel
        self._pset_names: list[int] | None = None
        self.reinit()

    def reinit(self) -> None:
        """Drop the current processor set list and fetch a new one.

        Failure is logged and leaves no list; the next scan retries.
        """
        self._release_pset_names()
        try:
            self._pset_names = self.kernel.processor_sets()
        except MachError as e:
            log.error("host_processor_sets_failed", error=str(e))
            self._pset_names = None
            return
        log.debug("processor_sets_loaded", count=len(self._pset_names))

    def close(self) -> None:
        """Release the processor set list."""
        self._release_pset_names()

    def scan(self) -> list[ScanItem]:
        """Classify every thread of every task in every processor set.

        Raises:
            ScanError: If the processor set list cannot be obtained.
        """
        if self._pset_names is None:
            self.reinit()
        if self._pset_names is None:
            raise ScanError("Processor set list unavailable")

        items: list[ScanItem] = []
        for pset_name in self._pset_names:
            try:
                pset = self.kernel.processor_set_priv(pset_name)
            except MachError as e:
                log.error("host_processor_set_priv_failed", error=str(e))
                continue

            with self._held(pset, "processor_set"):
                try:
                    tasks = self.kernel.processor_set_tasks(pset)
                except MachError as e:
                    log.error("processor_set_tasks_failed", error=str(e))
                    continue

                with closing(self._each_held(tasks, "task")) as held_tasks:
                    for task in held_tasks:
                        items.extend(self._scan_task(task))

        log.debug("mach_scan_complete", items=len(items))
        return items

    def _scan_task(self, task: int) -> list[ScanItem]:
        """Classify the threads of one task."""
        try:
            threads = self.kernel.task_threads(task)
        except MachError as e:
            log.debug("task_threads_failed", task=task, error=str(e))
            return [ScanItem(state=RunState.ZOMBIE)]

        items = []
        with closing(self._each_held(threads, "thread")) as held_threads:
            for thread in held_threads:
                try:
                    run_state = self.kernel.thread_run_state(thread)
                except MachError as e:
                    log.error("thread_info_failed", task=task, thread=thread, error=str(e))
                    continue

                state = classify_thread_state(run_state)
                if state is RunState.UNCLASSIFIED:
                    log.warning("unknown_thread_state", task=task, run_state=run_state)
                    continue
                items.append(ScanItem(state=state))
        return items

    @contextmanager
    def _held(self, port: int, kind: str) -> Iterator[int]:
        """Hold a port for the duration of a block, releasing it on exit."""
        try:
            yield port
        finally:
            self._release(port, kind)

    def _each_held(self, ports: Iterable[int], kind: str) -> Iterator[int]:
        """Yield ports one at a time, each released before the next is yielded.

        Use under contextlib.closing: ports not yet reached when iteration
        stops are released on close.
        """
        remaining = list(ports)
        try:
            while remaining:
                port = remaining.pop(0)
                with self._held(port, kind):
                    yield port
        finally:
            for port in remaining:
                self._release(port, kind)

    def _release(self, port: int, kind: str) -> None:
        """Release a port unless it is our own task. Failure is logged."""
        if port == self.kernel.task_self:
            return
        try:
            self.kernel.port_deallocate(port)
        except MachError as e:
            log.error("mach_port_deallocate_failed", kind=kind, port=port, error=str(e))

    def _release_pset_names(self) -> None:
        if self._pset_names is None:
            return
        for pset_name in self._pset_names:
            self._release(pset_name, "processor_set_name")
        self._pset_names = None
