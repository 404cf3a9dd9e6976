"""Doctor command for environment diagnostics."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from core.config import AppSettings, load_settings, resolve_config_file
from core.domain.errors import ConfigurationError, ConsensusFailure, DyndnsError
from core.services.registry import build_detector, build_providers

app = typer.Typer(no_args_is_help=True, help="Environment diagnostics and configuration checks.")

_console = Console()


async def _check_sources(settings: AppSettings) -> list[tuple[str, str, str]]:
    detector = build_detector(settings)
    try:
        try:
            result = await detector.detect()
        except ConsensusFailure as exc:
            result = exc.result
    finally:
        await detector.aclose()

    rows: list[tuple[str, str, str]] = []
    for sample in result.samples:
        label = f"{sample.source} ({sample.family.label()})"
        if sample.ok:
            rows.append((label, "OK", f"{sample.address} in {sample.latency_seconds * 1000:.0f} ms"))
        else:
            rows.append((label, "FAIL", sample.error or "no answer"))
    return rows


async def _check_providers(settings: AppSettings) -> list[tuple[str, str, str]]:
    rows: list[tuple[str, str, str]] = []
    for provider in build_providers(settings):
        try:
            provider.validate_config()
            detail = await provider.check_access()
            rows.append((provider.name, "OK", detail))
        except ConfigurationError as exc:
            rows.append((provider.name, "CONFIG", str(exc)))
        except DyndnsError as exc:
            rows.append((provider.name, "FAIL", str(exc)))
        finally:
            await provider.aclose()
    return rows


@app.command()
def run(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="TOML config file to use."),
) -> None:
    """Run baseline diagnostics: config, discovery sources and provider access."""

    table = Table(title="dyndns-sync doctor")
    table.add_column("Check", style="bright_green", no_wrap=True)
    table.add_column("Status", style="white")
    table.add_column("Details", style="dim")

    config_path = config or resolve_config_file()
    table.add_row("Config file", "OK" if config_path.exists() else "MISSING", str(config_path))

    try:
        settings = load_settings(config)
    except ConfigurationError as exc:
        table.add_row("Settings", "FAIL", str(exc))
        _console.print(table)
        raise typer.Exit(code=2)

    table.add_row(
        "Settings",
        "OK",
        f"{len(settings.enabled_sources())} source(s), threshold {settings.consensus_threshold}, "
        f"{settings.enabled_provider_count()} provider(s)",
    )

    for row in asyncio.run(_check_sources(settings)):
        table.add_row(*row)
    for row in asyncio.run(_check_providers(settings)):
        table.add_row(*row)

    _console.print(table)
