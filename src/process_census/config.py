"""Configuration system for process-census."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any

import tomlkit

from process_census.registry import NameRegistry
from process_census.scanner import BACKENDS

# Directive keys accepted by parse_directives(), lower-cased
DIRECTIVE_KEYS = {"collectname"}


@dataclass
class ScanConfig:
    """Scanner and scheduling configuration."""

    backend: str = "auto"  # auto, procfs or mach
    proc_root: str = "/proc"  # Process-information root for the procfs backend
    interval: float = 10.0  # Seconds between cycles
    heartbeat_cycles: int = 60  # Log a heartbeat every N cycles


@dataclass
class ProcessesConfig:
    """Process names tracked individually."""

    collect_names: list[str] = field(default_factory=list)
    directives_file: str = ""  # Optional file of "CollectName <name>" lines


@dataclass
class LoggingConfig:
    """Log output configuration."""

    level: str = "info"
    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


LOG_LEVELS = ("debug", "info", "warning", "error")


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """Main configuration container."""

    scan: ScanConfig = field(default_factory=ScanConfig)
    processes: ProcessesConfig = field(default_factory=ProcessesConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "process-census"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "process-census"

    @property
    def log_path(self) -> Path:
        """JSON Lines log path."""
        return self.state_dir / "census.log"

    def directive_names(self) -> list[str]:
        """Names from processes.directives_file, or [] when none is set.

        Raises:
            ValueError: If the file cannot be read or holds a bad directive.
        """
        if not self.processes.directives_file:
            return []
        path = Path(self.processes.directives_file).expanduser()
        try:
            text = path.read_text()
        except OSError as e:
            raise ValueError(f"Cannot read directives file {path}: {e}") from e
        try:
            return parse_directives(text)
        except ValueError as e:
            raise ValueError(f"{path}: {e}") from e

    def build_registry(self) -> NameRegistry:
        """Register collect names, then directive names, in order.

        Raises:
            ValueError: If the directives file is unreadable or invalid.
        """
        return NameRegistry.from_names([*self.processes.collect_names, *self.directive_names()])

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("scan", "processes", "logging"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        Raises:
            ValueError: If the file cannot be parsed or holds invalid values.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        return cls(
            scan=_load_scan_config(_section(data, "scan")),
            processes=_load_processes_config(_section(data, "processes")),
            logging=_load_logging_config(_section(data, "logging")),
        )


def _section(data: dict, name: str) -> dict:
    """Return a top-level table, {} when absent."""
    return _checked(name, "section", data.get(name, {}), dict)


def _checked(section: str, key: str, value: object, *types: type) -> Any:
    """Return value if it has one of the given TOML types, else raise ValueError.

    Booleans never pass as numbers.
    """
    if isinstance(value, bool) or not isinstance(value, types):
        expected = " or ".join(t.__name__ for t in types)
        raise ValueError(f"[{section}] {key} must be {expected}, got {value!r}")
    return value


def _load_scan_config(data: dict) -> ScanConfig:
    """Load scan config from TOML data, using dataclass defaults for missing fields."""
    defaults = ScanConfig()

    backend = _checked("scan", "backend", data.get("backend", defaults.backend), str)
    if backend not in BACKENDS:
        raise ValueError(f"Invalid backend: {backend!r}. Must be one of {list(BACKENDS)}")

    proc_root = _checked("scan", "proc_root", data.get("proc_root", defaults.proc_root), str)

    interval = _checked("scan", "interval", data.get("interval", defaults.interval), int, float)
    if interval <= 0:
        raise ValueError(f"interval must be > 0, got {interval}")

    heartbeat_cycles = _checked(
        "scan", "heartbeat_cycles", data.get("heartbeat_cycles", defaults.heartbeat_cycles), int
    )
    if heartbeat_cycles < 1:
        raise ValueError(f"heartbeat_cycles must be >= 1, got {heartbeat_cycles}")

    return ScanConfig(
        backend=str(backend),
        proc_root=str(proc_root),
        interval=float(interval),
        heartbeat_cycles=int(heartbeat_cycles),
    )


def _load_processes_config(data: dict) -> ProcessesConfig:
    """Load the tracked process names and the optional directives file."""
    names = _checked("processes", "collect_names", data.get("collect_names", []), list)
    if not all(isinstance(name, str) and name for name in names):
        raise ValueError("collect_names must be a list of non-empty strings")

    directives_file = _checked(
        "processes", "directives_file", data.get("directives_file", ""), str
    )
    return ProcessesConfig(
        collect_names=[str(name) for name in names],
        directives_file=str(directives_file),
    )


def _load_logging_config(data: dict) -> LoggingConfig:
    """Load logging config from TOML data."""
    d = LoggingConfig()
    level = _checked("logging", "level", data.get("level", d.level), str)
    if level not in LOG_LEVELS:
        raise ValueError(f"Invalid log level: {level!r}. Must be one of {list(LOG_LEVELS)}")

    max_bytes = _checked(
        "logging", "log_max_bytes", data.get("log_max_bytes", d.log_max_bytes), int
    )
    if max_bytes < 1:
        raise ValueError(f"log_max_bytes must be >= 1, got {max_bytes}")

    backup_count = _checked(
        "logging", "log_backup_count", data.get("log_backup_count", d.log_backup_count), int
    )
    if backup_count < 0:
        raise ValueError(f"log_backup_count must be >= 0, got {backup_count}")

    return LoggingConfig(
        level=str(level),
        log_max_bytes=int(max_bytes),
        log_backup_count=int(backup_count),
    )

def parse_directives(text: str) -> list[str]:
    """Read collect names from "CollectName <identifier>" directive lines.

    Keys are case-insensitive. Blank lines and lines starting with "#" are
    skipped. The identifier is the rest of the line, surrounding quotes
    removed.

    Raises:
        ValueError: On an unknown directive or a directive without a value.
    """
    names = []
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        key, _, value = line.replace("\t", " ").partition(" ")
        value = value.strip().strip('"')
        if key.lower() not in DIRECTIVE_KEYS:
            raise ValueError(f"line {lineno}: unknown directive {key!r}")
        if not value:
            raise ValueError(f"line {lineno}: {key} needs a value")
        names.append(value)
    return names
