"""UI components for the CLI (Rich).

Why separate components:
- Keeps command logic apart from visual details.
- Lets `run`, `detect` and `doctor` reuse the same tables.
"""

from __future__ import annotations

from rich.align import Align
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from core.domain.family import IpFamily
from core.domain.models import ConsensusResult
from core.services.health import HealthSnapshot
from core.services.orchestrator import CycleReport


def print_banner(console: Console) -> None:
    """Print the welcome banner (interactive commands only)."""

    title = Text("dyndns-sync", style="bold cyan")
    subtitle = Text("Public IP consensus • Cloudflare • ArvanCloud", style="dim")
    body = Align.center(Text.assemble(title, "\n", subtitle), vertical="middle")
    console.print(Panel(body, border_style="cyan", padding=(1, 4)))


def build_samples_table(result: ConsensusResult) -> Table:
    table = Table(title="Discovery sources")
    table.add_column("Source", style="cyan", no_wrap=True)
    table.add_column("Family", style="white")
    table.add_column("Address", style="magenta")
    table.add_column("Latency", style="dim", justify="right")
    table.add_column("Error", style="red")

    for sample in result.samples:
        table.add_row(
            sample.source,
            sample.family.label(),
            str(sample.address) if sample.address and sample.ok else "-",
            f"{sample.latency_seconds * 1000:.0f} ms",
            sample.error or "",
        )
    return table


def build_consensus_panel(result: ConsensusResult) -> Panel:
    body = Text()
    for family in IpFamily.all():
        address = result.for_family(family)
        votes = sum(
            1
            for sample in result.samples
            if sample.ok and sample.family is family and sample.address == address
        )
        body.append(f"{family.label()}: ", style="bold")
        if address is None:
            body.append("undetermined\n", style="yellow")
        else:
            body.append(f"{address}", style="green")
            body.append(f"  ({votes} source(s), threshold {result.threshold})\n", style="dim")
    return Panel(body, title=Text("Consensus", style="bold yellow"), border_style="yellow")


def build_health_table(snapshot: HealthSnapshot, report: CycleReport | None = None) -> Table:
    table = Table(title="Health summary")
    table.add_column("Metric", style="bright_green", no_wrap=True)
    table.add_column("Value", style="white")

    table.add_row("Status", "[green]healthy[/green]" if snapshot.healthy else "[red]unhealthy[/red]")
    table.add_row("Cycles", str(snapshot.cycles))
    table.add_row("Updates succeeded", str(snapshot.updates_succeeded))
    table.add_row("Updates failed", str(snapshot.updates_failed))
    table.add_row("Updates abandoned", str(snapshot.updates_abandoned))
    table.add_row("Retries exhausted", str(snapshot.retries_exhausted))
    table.add_row("Consensus failures", str(snapshot.consensus_failures))
    for family, address in sorted(snapshot.last_addresses.items()):
        table.add_row(f"Last {family} pushed", address)
    if snapshot.disabled_providers:
        table.add_row("Disabled providers", ", ".join(snapshot.disabled_providers))
    if report is not None and report.skipped:
        table.add_row("Last cycle", f"skipped: {report.skipped}")
    return table
