"""Background daemon for process-census."""

import asyncio
import signal
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import structlog

from process_census import __version__
from process_census.collector import Collector
from process_census.config import Config
from process_census.emitter import Emitter, LogSink, MetricsSink
from process_census.registry import NameRegistry
from process_census.scanner import PlatformScanner, ScanError, create_scanner

log = structlog.get_logger()


@dataclass
class DaemonState:
    """Runtime state of the daemon."""

    running: bool = False
    cycle_count: int = 0
    failed_cycles: int = 0
    last_cycle_time: datetime | None = None

    def update_cycle(self) -> None:
        """Update state after a completed cycle."""
        self.cycle_count += 1
        self.last_cycle_time = datetime.now()


class Daemon:
    """Runs census cycles at the configured interval until shutdown."""

    def __init__(
        self,
        config: Config,
        *,
        registry: NameRegistry | None = None,
        scanner: PlatformScanner | None = None,
        sink: MetricsSink | None = None,
    ):
        self.config = config
        self.state = DaemonState()
        self.registry = registry if registry is not None else config.build_registry()

        # Raises ScanError when no backend fits this host
        if scanner is None:
            scanner = create_scanner(config.scan.backend, Path(config.scan.proc_root))
        self.scanner = scanner

        self.collector = Collector(
            scanner,
            self.registry,
            Emitter(sink if sink is not None else LogSink()),
        )
        self._shutdown_event = asyncio.Event()
        self._cycle: asyncio.Future | None = None

    async def start(self) -> None:
        """Start the daemon."""
        log.info("daemon_starting", version=__version__)
        log.info(
            "daemon_config",
            backend=self.scanner.name,
            interval=self.config.scan.interval,
            heartbeat_cycles=self.config.scan.heartbeat_cycles,
            names=list(self.registry.names),
        )

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: self._handle_signal(s))

        self.state.running = True
        log.info("daemon_started")

        await self._main_loop()

    async def stop(self) -> None:
        """Stop the daemon gracefully."""
        log.info("daemon_stopping")
        self.state.running = False
        await self._wait_for_cycle()
        self.collector.close()
        log.info(
            "daemon_stopped",
            cycles=self.state.cycle_count,
            failed=self.state.failed_cycles,
        )

    async def _wait_for_cycle(self) -> None:
        """Let a cycle still running in the executor finish.

        The scanner must not be closed while a scan holds its handles.
        """
        if self._cycle is None or self._cycle.done():
            return
        log.info("waiting_for_cycle")
        try:
            await self._cycle
        except Exception as e:
            log.info("cycle_ended_during_stop", error=str(e))

    def request_shutdown(self) -> None:
        """Ask the main loop to exit after the current cycle."""
        self._shutdown_event.set()

    def _handle_signal(self, sig: signal.Signals) -> None:
        """Handle shutdown signals."""
        log.info("signal_received", signal=sig.name)
        self._shutdown_event.set()

    async def _main_loop(self) -> None:
        """Run one cycle per interval until the shutdown event is set.

        Cycles run in the default executor and are awaited before the next
        one is scheduled, so they never overlap. A cycle whose scan fails
        emits nothing; the loop waits out the interval and tries again.
        """
        interval = self.config.scan.interval
        heartbeat_interval = self.config.scan.heartbeat_cycles
        heartbeat_count = 0
        heartbeat_failed = 0
        heartbeat_elapsed = 0.0

        loop = asyncio.get_running_loop()

        while not self._shutdown_event.is_set():
            iteration_start = loop.time()
            try:
                # Shielded so cancelling the loop leaves the cycle for stop() to await
                self._cycle = loop.run_in_executor(None, self.collector.run_cycle)
                await asyncio.shield(self._cycle)
                self.state.update_cycle()
            except asyncio.CancelledError:
                log.info("main_loop_cancelled")
                break
            except ScanError:
                # Already logged by the collector
                self.state.failed_cycles += 1
                heartbeat_failed += 1
            except Exception as e:
                log.error("cycle_crashed", error=str(e))
                self.state.failed_cycles += 1
                heartbeat_failed += 1

            elapsed = loop.time() - iteration_start
            heartbeat_count += 1
            heartbeat_elapsed += elapsed

            if heartbeat_count >= heartbeat_interval:
                log.info(
                    "daemon_heartbeat",
                    cycles=heartbeat_count,
                    failed=heartbeat_failed,
                    avg_ms=round(heartbeat_elapsed / heartbeat_count * 1000),
                    total=self.state.cycle_count,
                    tracked=len(self.registry),
                )
                heartbeat_count = 0
                heartbeat_failed = 0
                heartbeat_elapsed = 0.0

            # Sleep for remaining interval (keeps a steady cadence)
            sleep_time = interval - elapsed
            if sleep_time > 0:
                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=sleep_time)
                    break  # Shutdown requested during sleep
                except asyncio.TimeoutError:
                    pass  # Normal timeout, run the next cycle


async def run_daemon(config: Config | None = None) -> None:
    """Run the daemon until shutdown.

    Args:
        config: Optional config, loads from file if not provided
    """
    from process_census.logging import configure

    if config is None:
        config = Config.load()

    # Dual logging: console (human-readable) + file (JSON Lines)
    configure(config)

    daemon = Daemon(config)
    started = time.monotonic()

    try:
        await daemon.start()
    except Exception as e:
        log.exception("daemon_crashed", error=str(e))
        raise
    finally:
        await daemon.stop()
        log.info("daemon_uptime", seconds=round(time.monotonic() - started))
