"""Tests for the /proc scanner."""

import shutil

import pytest
from structlog.testing import capture_logs

from process_census.classify import RunState
from process_census.procfs import (
    EXPECTED_STAT_FIELDS,
    ProcfsScanner,
    parse_stat_line,
    split_stat_line,
)
from process_census.scanner import ScanError

from tests.conftest import make_stat_line


def make_scanner(fake_proc) -> ProcfsScanner:
    return ProcfsScanner(proc_root=fake_proc.root, clock_ticks=100, page_size_bytes=4096)


class TestParseStatLine:
    """Tests for stat record parsing."""

    def test_parses_documented_fields(self):
        line = make_stat_line(
            pid=42, name="nginx", state="R", ppid=7, minflt=11, majflt=3,
            utime=250, stime=50, rss=300,
        )
        sample = parse_stat_line(line, num_threads=4)
        assert sample is not None
        assert sample.pid == 42
        assert sample.name == "nginx"
        assert sample.state_code == "R"
        assert sample.ppid == 7
        assert sample.minor_faults == 11
        assert sample.major_faults == 3
        assert sample.user_ticks == 250
        assert sample.system_ticks == 50
        assert sample.rss_pages == 300
        assert sample.num_threads == 4

    def test_name_with_spaces_and_parens(self):
        """The name runs to the last ") ", so embedded parens survive."""
        sample = parse_stat_line(make_stat_line(name="my (odd) name", rss=5))
        assert sample is not None
        assert sample.name == "my (odd) name"
        assert sample.rss_pages == 5

    def test_too_few_fields_is_skipped(self):
        assert parse_stat_line(make_stat_line(fields=10)) is None

    def test_minimum_field_count_is_accepted(self):
        """Records shorter than usual still parse when every read field exists."""
        sample = parse_stat_line(make_stat_line(rss=9, fields=24))
        assert sample is not None
        assert sample.rss_pages == 9

    def test_field_count_mismatch_is_logged(self):
        with capture_logs() as logs:
            parse_stat_line(make_stat_line(fields=EXPECTED_STAT_FIELDS - 2))
        assert any(entry["event"] == "stat_field_count" for entry in logs)

    def test_malformed_name_is_skipped(self):
        assert parse_stat_line("42 nginx S 1 2 3\n") is None
        assert split_stat_line("abc (x) S 1") is None

    def test_non_numeric_field_is_skipped(self):
        line = make_stat_line(rss=777).replace(" 777 ", " junk ")
        assert parse_stat_line(line) is None


class TestProcfsScanner:
    """Tests for scanning a fake /proc tree."""

    def test_converts_units(self, fake_proc):
        """250/50 ticks at 100 Hz and 300 pages at 4096 bytes."""
        fake_proc.add(10, name="nginx", state="R", threads=3, utime=250, stime=50, rss=300)
        items = make_scanner(fake_proc).scan()

        assert len(items) == 1
        item = items[0]
        assert item.state is RunState.RUNNING
        assert item.facts.name == "nginx"
        assert item.facts.num_threads == 3
        assert item.facts.cpu_user_us == 2_500_000
        assert item.facts.cpu_system_us == 500_000
        assert item.facts.resident_bytes == 1_228_800

    def test_one_item_per_process(self, fake_proc):
        for pid, state in [(1, "S"), (2, "R"), (3, "Z"), (4, "D"), (5, "T"), (6, "W")]:
            fake_proc.add(pid, state=state)
        states = sorted(item.state.value for item in make_scanner(fake_proc).scan())
        assert states == ["blocked", "paging", "running", "sleeping", "stopped", "zombie"]

    def test_non_process_entries_are_ignored(self, fake_proc):
        (fake_proc.root / "0").mkdir()
        fake_proc.add(7)
        items = make_scanner(fake_proc).scan()
        assert len(items) == 1

    def test_vanished_process_is_skipped(self, fake_proc):
        """A pid directory without a stat file is skipped, not fatal."""
        fake_proc.add(5)
        (fake_proc.root / "6").mkdir()
        assert len(make_scanner(fake_proc).scan()) == 1

    def test_short_record_is_skipped(self, fake_proc):
        fake_proc.add(5, stat=make_stat_line(pid=5, fields=10))
        fake_proc.add(6)
        assert len(make_scanner(fake_proc).scan()) == 1

    def test_unreadable_task_dir_skips_process(self, fake_proc):
        proc_dir = fake_proc.add(5)
        shutil.rmtree(proc_dir / "task")
        fake_proc.add(6)
        with capture_logs() as logs:
            items = make_scanner(fake_proc).scan()
        assert len(items) == 1
        assert any(entry["event"] == "task_dir_unreadable" for entry in logs)

    def test_unknown_state_is_unclassified_but_kept(self, fake_proc):
        """Unknown codes warn once per code and keep the process's facts."""
        fake_proc.add(5, name="odd", state="X", rss=1)
        fake_proc.add(6, name="odd", state="X", rss=1)
        scanner = make_scanner(fake_proc)

        with capture_logs() as logs:
            items = scanner.scan()

        assert [item.state for item in items] == [RunState.UNCLASSIFIED] * 2
        assert all(item.facts.name == "odd" for item in items)
        warnings = [
            e for e in logs
            if e["event"] == "unknown_process_state" and e["log_level"] == "warning"
        ]
        assert len(warnings) == 1
        assert warnings[0]["state"] == "X"

    def test_missing_root_raises(self, tmp_path):
        scanner = ProcfsScanner(proc_root=tmp_path / "nope", clock_ticks=100, page_size_bytes=4096)
        with pytest.raises(ScanError):
            scanner.scan()

    def test_read_process_directly(self, fake_proc):
        fake_proc.add(9, name="sshd", threads=2)
        scanner = make_scanner(fake_proc)
        sample = scanner.read_process(9)
        assert sample.name == "sshd"
        assert sample.num_threads == 2
        assert scanner.read_process(10) is None
        assert sorted(scanner.list_tasks(9)) == [9, 10]

    def test_capabilities(self, fake_proc):
        scanner = make_scanner(fake_proc)
        assert scanner.observes_paging is True
        assert scanner.provides_process_facts is True
        scanner.close()
