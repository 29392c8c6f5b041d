"""Render the final result of a run for people and for the calling controller."""

import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from nodehog.models import ExperimentResult, Verdict


def result_table(result: ExperimentResult) -> Table:
    table = Table(title=f"Run {result.run_id}")
    table.add_column("Node")
    table.add_column("Phase")
    table.add_column("Reason")
    table.add_column("Cleaned")
    table.add_column("Node Ready")
    for detail in result.targets:
        style = "green" if detail.phase == "Succeeded" else "red"
        ready = "-" if detail.node_ready_after is None else ("yes" if detail.node_ready_after else "no")
        table.add_row(
            detail.node,
            f"[{style}]{detail.phase}[/{style}]",
            detail.exit_reason or "",
            "yes" if detail.cleaned else "no",
            ready,
        )
    return table


def render_result(result: ExperimentResult, console: Console | None = None):
    console = console or Console()
    color = "green" if result.verdict == Verdict.PASS else "red"
    summary = f"[bold {color}]{result.verdict.value}[/bold {color}] ({result.phase.value})"
    if result.reason:
        summary += f"\n{result.reason}"
    console.print(Panel(summary, title="Node CPU Hog"))
    if result.targets:
        console.print(result_table(result))
    else:
        console.print("No targets were injected.")


def write_result(result: ExperimentResult, path: str):
    with open(path, "w") as f:
        yaml.safe_dump(result.to_dict(), f, sort_keys=False)
