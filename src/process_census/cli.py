"""CLI commands for process-census."""

from pathlib import Path

import click


def _load_config(ctx: click.Context):
    """Load the config selected by --config, exiting on invalid files."""
    from process_census import logging as census_log
    from process_census.config import Config

    try:
        return Config.load(ctx.obj.get("config_path"))
    except ValueError as e:
        census_log.config_invalid(str(e))
        raise SystemExit(1)


def _with_names(config, names: tuple[str, ...], directives: Path | None = None):
    """Apply command-line names and directives file over the loaded config."""
    if names:
        config.processes.collect_names = [*config.processes.collect_names, *names]
    if directives is not None:
        config.processes.directives_file = str(directives)
    return config


def _build_registry(config):
    """Build the name registry, exiting on an unreadable directives file."""
    from process_census import logging as census_log

    try:
        return config.build_registry()
    except ValueError as e:
        census_log.config_invalid(str(e))
        raise SystemExit(1)


def _name_options(func):
    """Add the -n/--name and --directives options shared by name-aware commands."""
    func = click.option(
        "--directives",
        type=click.Path(exists=True, dir_okay=False, path_type=Path),
        default=None,
        help="Read more names from a file of CollectName lines",
    )(func)
    return click.option(
        "--name", "-n", "names", multiple=True, help="Track this process name (repeatable)"
    )(func)


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: ~/.config/process-census/config.toml)",
)
@click.version_option(package_name="process-census")
@click.pass_context
def main(ctx, config_path: Path | None) -> None:
    """Count processes by run state and track named process groups."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@main.command()
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Record output format",
)
@_name_options
@click.pass_context
def once(ctx, fmt: str, names: tuple[str, ...], directives: Path | None) -> None:
    """Run a single census cycle and print its records."""
    import sys

    from process_census import logging as census_log
    from process_census.collector import Collector
    from process_census.emitter import Emitter, JsonLinesSink, StreamSink
    from process_census.scanner import ScanError, create_scanner

    config = _with_names(_load_config(ctx), names, directives)
    registry = _build_registry(config)
    census_log.configure(config, log_file=False)

    try:
        scanner = create_scanner(config.scan.backend, Path(config.scan.proc_root))
    except ScanError as e:
        census_log.backend_unavailable(str(e))
        raise SystemExit(1)

    sink = JsonLinesSink(sys.stdout) if fmt == "json" else StreamSink(sys.stdout)
    collector = Collector(scanner, registry, Emitter(sink))
    try:
        collector.run_cycle()
    except ScanError as e:
        census_log.cycle_failed(str(e))
        raise SystemExit(1)
    finally:
        collector.close()


@main.command()
@_name_options
@click.option("--interval", type=float, default=None, help="Seconds between cycles")
@click.pass_context
def run(
    ctx, names: tuple[str, ...], directives: Path | None, interval: float | None
) -> None:
    """Run the census daemon until SIGINT or SIGTERM."""
    import asyncio

    from process_census import logging as census_log
    from process_census.daemon import run_daemon
    from process_census.scanner import ScanError

    config = _with_names(_load_config(ctx), names, directives)
    if interval is not None:
        if interval <= 0:
            raise click.BadParameter("must be > 0", param_hint="--interval")
        config.scan.interval = interval

    registry = _build_registry(config)
    census_log.daemon_starting(config.scan.backend, config.scan.interval, len(registry))
    try:
        asyncio.run(run_daemon(config))
    except ScanError as e:
        census_log.backend_unavailable(str(e))
        raise SystemExit(1)
    census_log.daemon_stopped()


@main.command()
@_name_options
@click.pass_context
def names(ctx, names: tuple[str, ...], directives: Path | None) -> None:
    """List tracked process names, truncated and deduplicated."""
    config = _with_names(_load_config(ctx), names, directives)
    registry = _build_registry(config)
    if not len(registry):
        click.echo("No names configured.")
        return
    for name in registry.names:
        click.echo(name)


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("init")
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
@click.pass_context
def config_init(ctx, force: bool) -> None:
    """Write a config file with default values."""
    from process_census import logging as census_log
    from process_census.config import Config

    cfg = Config()
    path = ctx.obj.get("config_path") or cfg.config_path
    if path.exists() and not force:
        census_log.config_exists(str(path))
        return
    cfg.save(path)
    census_log.config_created(str(path))


@config.command("show")
@click.pass_context
def config_show(ctx) -> None:
    """Display current configuration."""
    cfg = _load_config(ctx)
    path = ctx.obj.get("config_path") or cfg.config_path

    click.echo(f"Config file: {path}")
    click.echo(f"Exists: {path.exists()}")
    click.echo()
    click.echo("[scan]")
    click.echo(f"  backend = {cfg.scan.backend}")
    click.echo(f"  proc_root = {cfg.scan.proc_root}")
    click.echo(f"  interval = {cfg.scan.interval}")
    click.echo(f"  heartbeat_cycles = {cfg.scan.heartbeat_cycles}")
    click.echo()
    click.echo("[processes]")
    click.echo(f"  collect_names = {cfg.processes.collect_names}")
    click.echo(f"  directives_file = {cfg.processes.directives_file!r}")
    click.echo()
    click.echo("[logging]")
    click.echo(f"  level = {cfg.logging.level}")
    click.echo(f"  log_max_bytes = {cfg.logging.log_max_bytes}")
    click.echo(f"  log_backup_count = {cfg.logging.log_backup_count}")


if __name__ == "__main__":
    main()
