"""Cycle driver: scan, aggregate, emit.

A cycle either emits one complete snapshot or, when the scanner cannot list
processes at all, nothing. Cycles are synchronous and must not overlap;
the daemon awaits each one before scheduling the next.
"""

import time

import structlog

from process_census.aggregator import Aggregator, CycleSnapshot
from process_census.emitter import Emitter
from process_census.registry import NameRegistry
from process_census.scanner import PlatformScanner, ScanError

log = structlog.get_logger()


class Collector:
    """Runs scan cycles for one scanner, registry and emitter."""

    def __init__(
        self,
        scanner: PlatformScanner,
        registry: NameRegistry,
        emitter: Emitter | None = None,
    ) -> None:
        self.scanner = scanner
        self.registry = registry
        self.aggregator = Aggregator(registry)
        self.emitter = emitter
        self.cycle_count = 0
        self.failed_cycles = 0

    def run_cycle(self, timestamp: float | None = None) -> CycleSnapshot:
        """Run one full cycle and emit its snapshot.

        Args:
            timestamp: Snapshot time; defaults to time.time() at scan start

        Returns:
            The emitted snapshot.

        Raises:
            ScanError: If the scanner cannot list processes. Nothing is
                emitted for the cycle.
        """
        if timestamp is None:
            timestamp = time.time()
        start = time.monotonic()

        self.aggregator.begin_cycle()
        try:
            items = self.scanner.scan()
            for item in items:
                self.aggregator.accumulate(item)
            snapshot = self.aggregator.end_cycle(
                observes_paging=self.scanner.observes_paging,
                provides_process_facts=self.scanner.provides_process_facts,
                timestamp=timestamp,
            )
        except ScanError as e:
            self.failed_cycles += 1
            log.error("cycle_failed", backend=self.scanner.name, error=str(e))
            raise
        finally:
            if self.aggregator.in_cycle:
                self.aggregator.abort_cycle()
        self.cycle_count += 1

        log.debug(
            "cycle_complete",
            backend=self.scanner.name,
            items=len(items),
            classified=self.aggregator.classified,
            matched=self.aggregator.matched,
            elapsed_ms=round((time.monotonic() - start) * 1000),
        )

        if self.emitter is not None:
            self.emitter.emit(snapshot)
        return snapshot

    def close(self) -> None:
        """Release scanner resources."""
        self.scanner.close()
