"""Command line interface (Typer).

Commands:
- `run`: the update loop (or a single cycle with `--once`).
- `detect`: one detection pass, printed as a table.
- `check`: offline validation of settings and provider configs.
- `init`: write an example config file.
- `doctor run`: connectivity diagnostics.

Exit codes: 0 success, 1 runtime failure, 2 configuration error.
"""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from adapters.event_sinks import LoggingEventSink
from cli import doctor
from cli.logging_setup import configure_logging
from cli.ui_components import (
    build_consensus_panel,
    build_health_table,
    build_samples_table,
    print_banner,
)
from core.config import AppSettings, load_settings, write_example_config
from core.domain.errors import ConfigurationError, ConsensusFailure
from core.domain.models import ConsensusResult
from core.services.health import FanOutSink, HealthTracker
from core.services.orchestrator import CycleReport, ensure_unique_names
from core.services.registry import build_detector, build_orchestrator, build_providers

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="Keep A/AAAA records pointed at this host's public IP address.",
)
app.add_typer(doctor.app, name="doctor")

_console = Console()

_CONFIG_OPTION = typer.Option(None, "--config", "-c", help="TOML config file to use.")


def _settings_or_exit(config: Path | None) -> AppSettings:
    try:
        return load_settings(config)
    except ConfigurationError as exc:
        _console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=2) from exc


def _install_signal_handlers(shutdown: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no add_signal_handler.
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(shutdown.set))


async def _serve(settings: AppSettings, health: HealthTracker, *, once: bool) -> CycleReport | None:
    shutdown = asyncio.Event()
    _install_signal_handlers(shutdown)
    orchestrator = build_orchestrator(
        settings,
        sink=FanOutSink([LoggingEventSink(), health]),
        shutdown=shutdown,
    )
    return await orchestrator.run(once=once)


@app.command(name="run")
def run_command(
    once: bool = typer.Option(False, "--once", help="Run a single cycle and exit."),
    config: Optional[Path] = _CONFIG_OPTION,
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Skip the banner and the summary table."),
) -> None:
    """Detect the public address and keep the configured records up to date."""

    settings = _settings_or_exit(config)
    configure_logging(settings.log_level)
    if not quiet:
        print_banner(_console)

    health = HealthTracker()
    try:
        report = asyncio.run(_serve(settings, health, once=once))
    except ConfigurationError as exc:
        _console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=2) from exc

    if not quiet:
        _console.print(build_health_table(health.snapshot(), report))
    if once and report is not None and (report.failed or report.skipped):
        raise typer.Exit(code=1)


async def _detect_once(settings: AppSettings) -> tuple[ConsensusResult, bool]:
    detector = build_detector(settings)
    try:
        return await detector.detect(), True
    except ConsensusFailure as exc:
        return exc.result, False
    finally:
        await detector.aclose()


@app.command()
def detect(config: Optional[Path] = _CONFIG_OPTION) -> None:
    """Query every discovery source once and show the consensus."""

    settings = _settings_or_exit(config)
    configure_logging(settings.log_level)

    result, reached = asyncio.run(_detect_once(settings))
    _console.print(build_samples_table(result))
    _console.print(build_consensus_panel(result))
    if not reached:
        raise typer.Exit(code=1)


async def _close_all(providers: list) -> None:
    for provider in providers:
        await provider.aclose()


@app.command()
def check(config: Optional[Path] = _CONFIG_OPTION) -> None:
    """Validate settings and every provider config without contacting anyone."""

    settings = _settings_or_exit(config)
    providers = build_providers(settings)

    table = Table(title="Providers")
    table.add_column("Provider", style="cyan", no_wrap=True)
    table.add_column("Status", style="white")
    table.add_column("Targets", style="magenta")

    failed = False
    try:
        if not providers:
            _console.print("[red]Configuration error:[/red] no DNS provider is enabled")
            raise typer.Exit(code=2)
        for provider in providers:
            try:
                provider.validate_config()
            except ConfigurationError as exc:
                failed = True
                table.add_row(provider.name, "[red]INVALID[/red]", str(exc))
                continue
            targets = ", ".join(
                f"{target.fqdn} ({'/'.join(sorted(f.record_type for f in target.families))})"
                for target in provider.targets
            )
            table.add_row(provider.name, "[green]OK[/green]", targets)
        try:
            ensure_unique_names(providers)
        except ConfigurationError as exc:
            failed = True
            table.add_row(exc.provider or "-", "[red]DUPLICATE[/red]", str(exc))
    finally:
        asyncio.run(_close_all(providers))

    _console.print(table)
    if failed:
        raise typer.Exit(code=2)
    _console.print(
        f"[green]Configuration OK[/green]: {len(settings.enabled_sources())} source(s), "
        f"consensus threshold {settings.consensus_threshold}"
    )


@app.command()
def init(
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config file."),
    path: Optional[Path] = typer.Option(None, "--path", help="Where to write (default: user config dir)."),
) -> None:
    """Write an example configuration file."""

    try:
        written = write_example_config(path, force=force)
    except FileExistsError as exc:
        _console.print(f"[yellow]Config file already exists:[/yellow] {exc}. Use --force to overwrite.")
        raise typer.Exit(code=1) from exc
    _console.print(f"[green]Example config written to:[/green] {written}")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
