"""Tests for configuration system."""

from pathlib import Path

import pytest

from process_census.config import (
    Config,
    LoggingConfig,
    ProcessesConfig,
    ScanConfig,
    parse_directives,
)


def test_scan_config_defaults():
    """ScanConfig has correct defaults."""
    config = ScanConfig()
    assert config.backend == "auto"
    assert config.proc_root == "/proc"
    assert config.interval == 10.0
    assert config.heartbeat_cycles == 60


def test_processes_config_defaults():
    assert ProcessesConfig().collect_names == []


def test_logging_config_defaults():
    config = LoggingConfig()
    assert config.level == "info"
    assert config.log_max_bytes == 5 * 1024 * 1024
    assert config.log_backup_count == 3


def test_config_paths():
    """Config provides correct data paths."""
    config = Config()
    assert config.config_dir == Path.home() / ".config" / "process-census"
    assert config.config_path.name == "config.toml"
    assert config.log_path == Path.home() / ".local" / "state" / "process-census" / "census.log"


def test_missing_file_gives_defaults(tmp_path: Path):
    assert Config.load(tmp_path / "absent.toml") == Config()


def test_save_and_load_round_trip(tmp_path: Path):
    """Saved values come back from load."""
    path = tmp_path / "config.toml"
    config = Config()
    config.scan.backend = "procfs"
    config.scan.interval = 2.5
    config.processes.collect_names = ["nginx", "postgres"]
    config.logging.level = "debug"
    config.save(path)

    loaded = Config.load(path)
    assert loaded == config


def test_partial_file_uses_defaults(tmp_path: Path):
    path = tmp_path / "config.toml"
    path.write_text('[processes]\ncollect_names = ["redis"]\n')
    loaded = Config.load(path)
    assert loaded.processes.collect_names == ["redis"]
    assert loaded.scan == ScanConfig()
    assert loaded.logging == LoggingConfig()


@pytest.mark.parametrize(
    "toml",
    [
        '[scan]\nbackend = "kvm"\n',
        "[scan]\ninterval = 0\n",
        "[scan]\nheartbeat_cycles = 0\n",
        '[logging]\nlevel = "loud"\n',
        '[processes]\ncollect_names = ["ok", ""]\n',
        "[scan\nbroken",
        '[processes]\ncollect_names = "nginx"\n',
        '[scan]\ninterval = "fast"\n',
        "[scan]\ninterval = true\n",
        "[scan]\nheartbeat_cycles = 1.5\n",
        "[scan]\nbackend = 3\n",
        "[scan]\nproc_root = 7\n",
        '[logging]\nlog_max_bytes = "big"\n',
        "[logging]\nlog_max_bytes = 0\n",
        "[logging]\nlog_backup_count = -1\n",
        '[processes]\ndirectives_file = ["a"]\n',
        "scan = 5\n",
    ],
)
def test_invalid_values_raise(tmp_path: Path, toml: str):
    path = tmp_path / "config.toml"
    path.write_text(toml)
    with pytest.raises(ValueError):
        Config.load(path)


def test_integer_interval_is_accepted(tmp_path: Path):
    path = tmp_path / "config.toml"
    path.write_text("[scan]\ninterval = 5\n")
    assert Config.load(path).scan.interval == 5.0


def test_directives_file_extends_registry(tmp_path: Path):
    """Directive names register after the configured names, deduplicated."""
    directives = tmp_path / "names.conf"
    directives.write_text("# legacy\nCollectName postgres\nCollectName nginx\n")
    path = tmp_path / "config.toml"
    path.write_text(
        f'[processes]\ncollect_names = ["nginx"]\ndirectives_file = "{directives}"\n'
    )

    registry = Config.load(path).build_registry()

    assert registry.names == ["nginx", "postgres"]


def test_unreadable_directives_file_raises(tmp_path: Path):
    config = Config()
    config.processes.directives_file = str(tmp_path / "missing.conf")
    with pytest.raises(ValueError, match="Cannot read directives file"):
        config.build_registry()


def test_bad_directive_in_file_raises(tmp_path: Path):
    directives = tmp_path / "names.conf"
    directives.write_text("Interval 10\n")
    config = Config()
    config.processes.directives_file = str(directives)
    with pytest.raises(ValueError, match="unknown directive"):
        config.build_registry()


def test_build_registry_truncates_and_dedupes():
    config = Config()
    config.processes.collect_names = ["nginx", "a" * 300, "nginx", "a" * 256]
    registry = config.build_registry()
    assert registry.names == ["nginx", "a" * 255]


class TestParseDirectives:
    """Tests for legacy CollectName directive files."""

    def test_reads_names(self):
        text = """
        # tracked daemons
        CollectName nginx
        collectname "postgres"
        CollectName\tredis server
        """
        assert parse_directives(text) == ["nginx", "postgres", "redis server"]

    def test_unknown_directive_raises(self):
        with pytest.raises(ValueError, match="unknown directive"):
            parse_directives("Interval 10\n")

    def test_missing_value_raises(self):
        with pytest.raises(ValueError, match="needs a value"):
            parse_directives("CollectName\n")
