"""
Progress bars and summary panels for long-running commands.
"""

from contextlib import contextmanager
from typing import Iterator

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

console = Console()


@contextmanager
def track_progress(description: str, total: int | None = None) -> Iterator[tuple[Progress, int]]:
    """
    Show one progress bar while the block runs.

    Archive and restore items take minutes each, so the bar counts items
    (``3/10``) and shows elapsed time rather than a rate.

    Example:
        with track_progress("Archiving", total=len(sources)) as (progress, task):
            for source in sources:
                archive(source)
                progress.update(task, advance=1)
    """
    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    )
    with progress:
        yield progress, progress.add_task(description, total=total)


def show_summary(title: str, items: dict[str, str | int]) -> None:
    """Print ``items`` as a two-column key/value panel."""
    grid = Table.grid(padding=(0, 2))
    grid.add_column(style="cyan")
    grid.add_column()
    for key, value in items.items():
        grid.add_row(key, str(value))
    console.print(Panel(grid, title=f"[bold]{title}[/bold]", border_style="blue", expand=False))
