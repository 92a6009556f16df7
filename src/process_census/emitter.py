"""Emission boundary: turns a cycle snapshot into metric records.

Record types, field order and rendering match what existing time-series
consumers expect:

    processes  -       <ts>:<running>:<sleeping>:<zombies>:<stopped>:<paging>:<blocked>
    ps_rss     <name>  <ts>:<resident bytes>
    ps_cputime <name>  <ts>:<user us, low 32 bits>:<system us, low 32 bits>
    ps_count   <name>  <ts>:<processes>:<threads>

paging is -1 on backends that cannot observe it. Per-name records are only
produced when the backend provides process facts.
"""

import json
from dataclasses import asdict, dataclass
from typing import ClassVar, Protocol, TextIO

import structlog

from process_census.aggregator import CycleSnapshot, GroupSnapshot
from process_census.units import wrap32

log = structlog.get_logger()

PAGING_UNSUPPORTED = -1
GLOBAL_INSTANCE = "-"


class Record:
    """Base for emitted records: a type, an instance and integer values."""

    type: ClassVar[str]
    instance: str
    timestamp: int

    @property
    def values(self) -> tuple[int, ...]:
        raise NotImplementedError

    def render(self) -> str:
        """Render as "<ts>:<v1>:<v2>..."."""
        return ":".join(str(v) for v in (self.timestamp, *self.values))

    def to_dict(self) -> dict:
        return {"type": self.type, **asdict(self)}  # type: ignore[call-overload]


@dataclass(frozen=True)
class StateRecord(Record):
    """System-wide run-state counts."""

    type: ClassVar[str] = "processes"

    timestamp: int
    running: int
    sleeping: int
    zombies: int
    stopped: int
    paging: int
    blocked: int
    instance: str = GLOBAL_INSTANCE

    @property
    def values(self) -> tuple[int, ...]:
        return (self.running, self.sleeping, self.zombies, self.stopped, self.paging, self.blocked)


@dataclass(frozen=True)
class RssRecord(Record):
    """Resident memory of one tracked name."""

    type: ClassVar[str] = "ps_rss"

    instance: str
    timestamp: int
    resident_bytes: int

    @property
    def values(self) -> tuple[int, ...]:
        return (self.resident_bytes,)


@dataclass(frozen=True)
class CpuTimeRecord(Record):
    """CPU time of one tracked name, wrapped to 32 bits."""

    type: ClassVar[str] = "ps_cputime"

    instance: str
    timestamp: int
    user_us: int
    system_us: int

    @property
    def values(self) -> tuple[int, ...]:
        return (self.user_us, self.system_us)


@dataclass(frozen=True)
class CountRecord(Record):
    """Process and thread counts of one tracked name."""

    type: ClassVar[str] = "ps_count"

    instance: str
    timestamp: int
    processes: int
    threads: int

    @property
    def values(self) -> tuple[int, ...]:
        return (self.processes, self.threads)


def group_records(group: GroupSnapshot, timestamp: int) -> list[Record]:
    """Records for one tracked name: memory, CPU time, counts."""
    return [
        RssRecord(instance=group.name, timestamp=timestamp, resident_bytes=group.resident_bytes),
        CpuTimeRecord(
            instance=group.name,
            timestamp=timestamp,
            user_us=wrap32(group.cpu_user_us),
            system_us=wrap32(group.cpu_system_us),
        ),
        CountRecord(
            instance=group.name,
            timestamp=timestamp,
            processes=group.process_count,
            threads=group.thread_count,
        ),
    ]


def build_records(snapshot: CycleSnapshot) -> list[Record]:
    """Turn a snapshot into records, global record first."""
    timestamp = int(snapshot.timestamp)
    states = snapshot.states
    records: list[Record] = [
        StateRecord(
            timestamp=timestamp,
            running=states.running,
            sleeping=states.sleeping,
            zombies=states.zombies,
            stopped=states.stopped,
            paging=PAGING_UNSUPPORTED if states.paging is None else states.paging,
            blocked=states.blocked,
        )
    ]
    for group in snapshot.groups or ():
        records.extend(group_records(group, timestamp))
    return records


# ─────────────────────────────────────────────────────────────────────────────
# Sinks
# ─────────────────────────────────────────────────────────────────────────────


class MetricsSink(Protocol):
    """Receives records, one submit() call per record."""

    def submit(self, record: Record) -> None: ...


class LogSink:
    """Writes each record as a structlog event."""

    def submit(self, record: Record) -> None:
        log.info("metric", type=record.type, instance=record.instance, values=record.render())


class StreamSink:
    """Writes "<type>/<instance> <values>" lines to a text stream."""

    def __init__(self, stream: TextIO) -> None:
        self.stream = stream

    def submit(self, record: Record) -> None:
        self.stream.write(f"{record.type}/{record.instance} {record.render()}\n")


class JsonLinesSink:
    """Writes one JSON object per record to a text stream."""

    def __init__(self, stream: TextIO) -> None:
        self.stream = stream

    def submit(self, record: Record) -> None:
        self.stream.write(json.dumps(record.to_dict()) + "\n")


class Emitter:
    """Hands each finished snapshot to a sink."""

    def __init__(self, sink: MetricsSink) -> None:
        self.sink = sink

    def emit(self, snapshot: CycleSnapshot) -> int:
        """Submit every record of a snapshot. Returns the record count."""
        records = build_records(snapshot)
        for record in records:
            self.sink.submit(record)
        log.debug("snapshot_emitted", records=len(records))
        return len(records)
