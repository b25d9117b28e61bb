"""CLI commands for sysmon."""

import click

from sysmon.counters import SOURCE_KINDS
from sysmon.ranking import SortMetric

_SORT_CHOICES = [m.value for m in SortMetric]


def _load_config():
    from sysmon.config import Config

    try:
        return Config.load()
    except ValueError as e:
        raise click.ClickException(str(e)) from e


def _apply_overrides(config, interval: int | None, sort: str | None, source: str | None) -> None:
    if interval is not None:
        config.sampling.refresh_interval = interval
    if sort is not None:
        config.sampling.sort_metric = sort
    if source is not None:
        config.sampling.source = source


def _sampling_options(func):
    func = click.option(
        "--source",
        type=click.Choice(SOURCE_KINDS),
        default=None,
        help="Counter source (default from config: auto)",
    )(func)
    func = click.option(
        "--sort",
        type=click.Choice(_SORT_CHOICES),
        default=None,
        help="Rank by CPU or memory share",
    )(func)
    func = click.option(
        "--interval",
        "-i",
        type=click.IntRange(min=1),
        default=None,
        help="Seconds between samples",
    )(func)
    return func


@click.group(invoke_without_command=True)
@click.version_option(package_name="sysmon")
@click.pass_context
def main(ctx) -> None:
    """Live process activity sampler."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(top)


@main.command()
@_sampling_options
def top(interval: int | None, sort: str | None, source: str | None) -> None:
    """Launch the interactive dashboard."""
    from sysmon.app import run_app
    from sysmon.counters import create_counter_source
    from sysmon.logging import configure

    config = _load_config()
    _apply_overrides(config, interval, sort, source)
    configure(config)

    run_app(
        refresh_interval=config.sampling.refresh_interval,
        sort_metric=config.sampling.metric,
        source=create_counter_source(config.sampling.source),
        command_width=config.display.command_width,
    )


@main.command()
@_sampling_options
@click.option("--limit", "-n", default=20, type=click.IntRange(min=0), help="Rows to show (0 = all)")
def snapshot(interval: int | None, sort: str | None, source: str | None, limit: int) -> None:
    """Sample twice and print the ranked process list."""
    import time

    from sysmon.counters import PAGE_SIZE_KB, create_counter_source
    from sysmon.logging import configure
    from sysmon.monitor import Frame, SampleLoop
    from sysmon.snapshot import SnapshotBuilder

    config = _load_config()
    _apply_overrides(config, interval, sort, source)
    configure(config, console=True)

    frames: list[Frame] = []
    loop = SampleLoop(
        SnapshotBuilder(create_counter_source(config.sampling.source)),
        frames.append,
        refresh_interval=config.sampling.refresh_interval,
        sort_metric=config.sampling.metric,
    )
    loop.run_cycle()
    time.sleep(loop.state.refresh_interval)
    frame = loop.run_cycle()

    system = frame.system
    click.echo(
        f"CPUs: {system.cpu_count}  Total ticks: {system.total_active_units}  "
        f"MemTotal: {system.memory_total_kb} KB  MemAvailable: {system.memory_available_kb} KB"
    )
    click.echo(f"{'PID':>7} {'CPU%':>7} {'MEM%':>7} {'RSS(KB)':>10}  CMD")

    width = config.display.command_width
    rows = frame.processes[:limit] if limit else frame.processes
    for proc in rows:
        click.echo(
            f"{proc.pid:>7} {proc.cpu_percent:>7.2f} {proc.memory_percent:>7.2f} "
            f"{proc.resident_kb(PAGE_SIZE_KB):>10}  {proc.command_line[:width]}"
        )


@main.command("config")
def config_cmd() -> None:
    """Write the default config file if missing and print its path."""
    from sysmon.config import Config

    config = Config()
    if config.config_path.exists():
        click.echo(f"Config exists: {config.config_path}")
        return
    config.save()
    click.echo(f"Created config: {config.config_path}")
