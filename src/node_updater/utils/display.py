"""
Display utilities for presenting an observed campaign and its planned actions.
"""

from typing import Optional

from rich.console import Console
from rich.table import Table

from ..errors import MalformedInputError
from ..reconciler import ReconcilePlan, WorldState

console = Console()


def display_campaign_header(namespace: str, name: str, out: Optional[Console] = None) -> None:
    out = out or console
    out.print(f"[bold blue]Campaign {namespace}/{name}[/bold blue]")


def display_world(world: WorldState, out: Optional[Console] = None) -> None:
    """Display monitored pools and the temporary pool in a formatted table."""
    out = out or console
    table = Table(title="Agent pools")
    table.add_column("Pool", style="cyan")
    table.add_column("Mode")
    table.add_column("State", style="magenta")
    table.add_column("Scaling")
    table.add_column("Nodes", justify="right")
    table.add_column("Current image", style="yellow")
    table.add_column("Latest image", style="green")
    table.add_column("Outdated")

    for name, pool in world.pools.items():
        try:
            scaling = pool.scaling.describe()
        except MalformedInputError:
            scaling = "N/A"
        table.add_row(
            name,
            pool.mode.value,
            pool.provisioning_state.value,
            scaling,
            str(len(world.nodes.get(name, []))),
            pool.current_image or "N/A",
            pool.latest_image or "N/A",
            "[red]yes[/red]" if name in world.outdated_pools else "no",
        )

    surge_name = world.campaign.temporary_pool_name
    if world.surge is not None:
        table.add_row(
            f"{surge_name} (temporary)",
            world.surge.mode.value,
            world.surge.provisioning_state.value,
            "",
            str(len(world.surge_nodes)),
            "",
            "",
            "",
        )
    out.print(table)

    if world.surge is None:
        out.print(f"[dim]Temporary pool {surge_name} does not exist[/dim]")
    if world.record is None:
        out.print("[dim]No scaling record stored[/dim]")
    else:
        for pool_name, config in world.record.items():
            out.print(f"  • Recorded [cyan]{pool_name}[/cyan]: {config.describe()}")


def display_plan(plan: ReconcilePlan, out: Optional[Console] = None) -> None:
    """Display the planned actions in order."""
    out = out or console
    out.print(f"[bold]Outcome:[/bold] {plan.outcome.value} ({plan.reason})")
    if not plan.actions:
        out.print("[dim]No actions planned[/dim]")
        return

    table = Table(title="Planned actions")
    table.add_column("#", justify="right")
    table.add_column("Action", style="cyan")
    table.add_column("Details")
    for index, action in enumerate(plan.actions, start=1):
        table.add_row(str(index), action.kind.value, action.describe())
    out.print(table)
