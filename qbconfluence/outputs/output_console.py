"""Console output — TTY summary with Rich tables."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.table import Table

if TYPE_CHECKING:
    from qbconfluence.model import ResourceGraph

from qbconfluence.model import Secret


def render_console(
    graph: ResourceGraph, waves: list[list[str]], console: Console | None = None
) -> None:
    """Print the declaration order, realization waves and manual follow-ups."""
    console = console or Console()

    table = Table(title="Resource Declarations")
    table.add_column("#", justify="right")
    table.add_column("Logical ID", style="bold")
    table.add_column("Type")
    table.add_column("Depends on")
    for i, resource in enumerate(graph.resources, 1):
        table.add_row(
            str(i),
            resource.logical_id,
            resource.kind.value,
            ", ".join(resource.depends_on()) or "-",
        )
    console.print(table)

    console.print("\n[bold]Realization waves:[/bold]")
    for i, wave in enumerate(waves, 1):
        console.print(f"  {i}. {', '.join(wave)}")

    for secret in graph.of_type(Secret):
        if secret.requires_manual_replacement:
            console.print(
                f"\n[yellow]Manual step:[/yellow] replace the placeholder values of "
                f"{secret.logical_id} after deployment."
            )

    console.print(
        f"\nDeclarations: {len(graph)} "
        f"(account {graph.context.account}, region {graph.context.region})"
    )
