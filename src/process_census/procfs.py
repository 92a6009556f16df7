"""Process scanner for the Linux /proc interface.

Reads /proc/<pid>/stat for every numeric entry under the process root and
counts threads from /proc/<pid>/task. A process that disappears or has a
malformed record between listing and reading is skipped; only failure to
list the root itself aborts the scan.

Field offsets follow proc(5), counting the pid as field 0.
"""

import os
from dataclasses import replace
from pathlib import Path

import structlog

from process_census.classify import RunState, classify_proc_state
from process_census.scanner import ProcessFacts, RawProcessSample, ScanError, ScanItem
from process_census.sysconf import clock_ticks_per_second, page_size
from process_census.units import pages_to_bytes, ticks_to_micros

log = structlog.get_logger()

MIN_STAT_FIELDS = 24
EXPECTED_STAT_FIELDS = 52  # Linux 5.x and later

FIELD_STATE = 2
FIELD_PPID = 3
FIELD_MINFLT = 9
FIELD_MAJFLT = 11
FIELD_UTIME = 13
FIELD_STIME = 14
FIELD_RSS = 23


def split_stat_line(line: str) -> list[str] | None:
    """Split a stat record into fields, keeping the name as one field.

    The name is the second field, wrapped in parentheses, and may itself
    contain spaces or parentheses. It runs from the first " (" after the pid
    to the last ") ".

    Returns:
        Fields with the name still parenthesised, or None if the parentheses
        are not where a stat record puts them.
    """
    line = line.rstrip("\n")
    open_idx = line.find(" (")
    close_idx = line.rfind(") ")
    if open_idx < 1 or close_idx <= open_idx or not line[:open_idx].isdigit():
        return None
    return [line[:open_idx], line[open_idx + 1 : close_idx + 1], *line[close_idx + 2 :].split()]


def parse_stat_line(line: str, num_threads: int = 0) -> RawProcessSample | None:
    """Parse one /proc/<pid>/stat record.

    Args:
        line: The single-line stat record
        num_threads: Thread count to attach to the sample

    Returns:
        RawProcessSample, or None if the record is malformed or too short.
    """
    fields = split_stat_line(line)
    if fields is None:
        log.debug("stat_name_malformed", record=line[:64])
        return None

    if len(fields) < MIN_STAT_FIELDS:
        log.debug("stat_too_short", fields=len(fields), minimum=MIN_STAT_FIELDS)
        return None
    if len(fields) != EXPECTED_STAT_FIELDS:
        log.debug("stat_field_count", fields=len(fields), expected=EXPECTED_STAT_FIELDS)

    try:
        return RawProcessSample(
            pid=int(fields[0]),
            name=fields[1][1:-1],
            state_code=fields[FIELD_STATE][:1],
            ppid=int(fields[FIELD_PPID]),
            num_threads=num_threads,
            rss_pages=int(fields[FIELD_RSS]),
            minor_faults=int(fields[FIELD_MINFLT]),
            major_faults=int(fields[FIELD_MAJFLT]),
            user_ticks=int(fields[FIELD_UTIME]),
            system_ticks=int(fields[FIELD_STIME]),
        )
    except ValueError as e:
        log.debug("stat_field_invalid", record=line[:64], error=str(e))
        return None


class ProcfsScanner:
    """Scans /proc, producing one classified item with facts per process.

    Clock rate and page size are read once at construction; pass them
    explicitly to scan a captured /proc tree from another machine.
    """

    name = "procfs"
    observes_paging = True
    provides_process_facts = True

    def __init__(
        self,
        proc_root: Path = Path("/proc"),
        clock_ticks: int | None = None,
        page_size_bytes: int | None = None,
    ) -> None:
        self.proc_root = Path(proc_root)
        self.clock_ticks = clock_ticks or clock_ticks_per_second()
        self.page_size = page_size_bytes or page_size()
        self._unknown_states: set[str] = set()
        log.debug(
            "procfs_scanner_ready",
            proc_root=str(self.proc_root),
            clock_ticks=self.clock_ticks,
            page_size=self.page_size,
        )

    def list_tasks(self, pid: int) -> list[int] | None:
        """List the thread ids of a process.

        Threads that exit while the directory is read simply drop out of the
        listing.

        Returns:
            Thread ids, or None if the task directory cannot be opened.
        """
        task_dir = self.proc_root / str(pid) / "task"
        try:
            entries = os.listdir(task_dir)
        except OSError as e:
            log.info("task_dir_unreadable", pid=pid, path=str(task_dir), error=str(e))
            return None
        tids = []
        for entry in entries:
            if entry.isdigit() and int(entry) != 0:
                tids.append(int(entry))
        return tids

    def read_process(self, pid: int) -> RawProcessSample | None:
        """Read one process's stat record and thread count.

        Returns:
            RawProcessSample, or None if the process vanished, its record is
            malformed, or its threads cannot be listed.
        """
        stat_path = self.proc_root / str(pid) / "stat"
        try:
            with open(stat_path, encoding="utf-8", errors="replace") as f:
                line = f.readline()
        except OSError as e:
            log.debug("stat_unreadable", pid=pid, error=str(e))
            return None

        sample = parse_stat_line(line)
        if sample is None:
            log.debug("process_skipped", pid=pid)
            return None

        tids = self.list_tasks(pid)
        if tids is None:
            return None
        return replace(sample, num_threads=len(tids))

    def to_facts(self, sample: RawProcessSample) -> ProcessFacts:
        """Convert a raw sample to bytes and microseconds."""
        return ProcessFacts(
            name=sample.name,
            num_threads=sample.num_threads,
            resident_bytes=pages_to_bytes(sample.rss_pages, self.page_size),
            minor_faults=sample.minor_faults,
            major_faults=sample.major_faults,
            cpu_user_us=ticks_to_micros(sample.user_ticks, self.clock_ticks),
            cpu_system_us=ticks_to_micros(sample.system_ticks, self.clock_ticks),
        )

    def scan(self) -> list[ScanItem]:
        """Scan every process under the process root.

        Raises:
            ScanError: If the process root cannot be listed.
        """
        try:
            entries = os.listdir(self.proc_root)
        except OSError as e:
            raise ScanError(f"Cannot open {self.proc_root}: {e}") from e

        items: list[ScanItem] = []
        skipped = 0
        for entry in entries:
            if not entry.isdigit():
                continue
            pid = int(entry)
            if pid < 1:
                continue

            sample = self.read_process(pid)
            if sample is None:
                skipped += 1
                continue

            state = classify_proc_state(sample.state_code)
            if state is RunState.UNCLASSIFIED:
                self._note_unknown_state(sample)
            items.append(ScanItem(state=state, facts=self.to_facts(sample)))

        log.debug("procfs_scan_complete", processes=len(items), skipped=skipped)
        return items

    def close(self) -> None:
        """Nothing to release; /proc files are closed as they are read."""

    def _note_unknown_state(self, sample: RawProcessSample) -> None:
        """Log an unrecognised state code, warning once per distinct code."""
        if sample.state_code in self._unknown_states:
            log.debug("unknown_process_state", pid=sample.pid, state=sample.state_code)
            return
        self._unknown_states.add(sample.state_code)
        log.warning(
            "unknown_process_state",
            pid=sample.pid,
            name=sample.name,
            state=sample.state_code,
        )
