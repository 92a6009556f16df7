"""Shared test fixtures for process-census."""

from pathlib import Path

import pytest

from process_census.mach import MachError

STAT_FIELDS = 52


def make_stat_line(
    pid: int = 100,
    name: str = "worker",
    state: str = "S",
    ppid: int = 1,
    minflt: int = 0,
    majflt: int = 0,
    utime: int = 0,
    stime: int = 0,
    rss: int = 0,
    fields: int = STAT_FIELDS,
) -> str:
    """Build a /proc/<pid>/stat record with the given values and field count."""
    rest = ["0"] * (STAT_FIELDS - 3)
    rest[3 - 3] = str(ppid)
    rest[9 - 3] = str(minflt)
    rest[11 - 3] = str(majflt)
    rest[13 - 3] = str(utime)
    rest[14 - 3] = str(stime)
    rest[23 - 3] = str(rss)
    rest = rest[: max(fields - 3, 0)]
    return " ".join([str(pid), f"({name})", state, *rest]) + "\n"


class FakeProc:
    """A /proc tree under tmp_path that tests populate one process at a time."""

    def __init__(self, root: Path):
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)

    def add(
        self,
        pid: int,
        name: str = "worker",
        state: str = "S",
        threads: int = 1,
        stat: str | None = None,
        **values: int,
    ) -> Path:
        """Create /proc/<pid>/stat and /proc/<pid>/task/<tid> entries."""
        proc_dir = self.root / str(pid)
        proc_dir.mkdir()
        line = stat if stat is not None else make_stat_line(pid, name, state, **values)
        (proc_dir / "stat").write_text(line)
        task_dir = proc_dir / "task"
        task_dir.mkdir()
        for i in range(threads):
            (task_dir / str(pid + i)).mkdir()
        return proc_dir


@pytest.fixture
def fake_proc(tmp_path: Path) -> FakeProc:
    """An empty fake /proc tree with a couple of non-process entries."""
    proc = FakeProc(tmp_path / "proc")
    (proc.root / "self").mkdir()
    (proc.root / "meminfo").write_text("MemTotal: 1 kB\n")
    return proc


TASK_SELF = 7


class FakeKernel:
    """In-memory stand-in for MachKernel.

    Processor sets, tasks and threads are plain ints. Every port handed out
    is recorded in `allocated`; port_deallocate moves it to `released`.
    """

    def __init__(self, psets: dict[int, dict[int, list[int] | None]]):
        # pset name -> {task -> [thread run states] or None if task_threads fails}
        self.task_self = TASK_SELF
        self.psets = psets
        self.allocated: list[int] = []
        self.released: list[int] = []
        self.fail_processor_sets = False
        self.fail_release: set[int] = set()
        self.fail_thread_info: set[int] = set()
        self._next_port = 1000
        self._thread_states: dict[int, int] = {}
        self._task_of_port: dict[int, int] = {}

    def _port(self) -> int:
        self._next_port += 1
        self.allocated.append(self._next_port)
        return self._next_port

    def processor_sets(self) -> list[int]:
        if self.fail_processor_sets:
            raise MachError("host_processor_sets", 5)
        self.allocated.extend(self.psets)
        return list(self.psets)

    def processor_set_priv(self, pset_name: int) -> int:
        port = self._port()
        self._task_of_port[port] = pset_name
        return port

    def processor_set_tasks(self, pset: int) -> list[int]:
        tasks = []
        for task in self.psets[self._task_of_port[pset]]:
            if task == TASK_SELF:
                tasks.append(TASK_SELF)
                continue
            port = self._port()
            self._task_of_port[port] = task
            tasks.append(port)
        return tasks

    def task_threads(self, task: int) -> list[int]:
        states = self._find_states(task)
        if states is None:
            raise MachError("task_threads", 5)
        threads = []
        for state in states:
            port = self._port()
            self._thread_states[port] = state
            threads.append(port)
        return threads

    def thread_run_state(self, thread: int) -> int:
        if self._thread_states[thread] in self.fail_thread_info:
            raise MachError("thread_info", 4)
        return self._thread_states[thread]

    def port_deallocate(self, port: int) -> None:
        if port in self.fail_release:
            raise MachError("mach_port_deallocate", 15)
        self.released.append(port)

    def _find_states(self, task: int) -> list[int] | None:
        key = task if task == TASK_SELF else self._task_of_port[task]
        for tasks in self.psets.values():
            if key in tasks:
                return tasks[key]
        return None

    @property
    def leaked(self) -> set[int]:
        """Ports handed out and never released."""
        return set(self.allocated) - set(self.released)
