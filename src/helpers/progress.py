"""Shared progress bar utilities for Rich console displays."""

from __future__ import annotations

from contextlib import contextmanager

from typing import TYPE_CHECKING

from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)


if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from rich.console import Console


type StatusCallback = Callable[[str], None]
"""Receives progress strings such as "50% [250 / 420]" """


def format_status(done: float, total: float, *, scale: float = 1.0) -> str:
    """Format a progress status string.

    ``scale`` maps partial work onto the overall bar, e.g. the first half of
    a two phase load uses ``scale=0.5``.

    Args:
        done: Units of work completed
        total: Units of work expected
        scale: Fraction of the overall progress this phase represents

    Returns:
        Status text in the form "NN% [done / total]"

    Example:
        >>> format_status(250, 420, scale=1.0)
        '60% [250 / 420]'
        >>> format_status(420, 420, scale=0.5)
        '50% [210 / 420]'
    """
    if total <= 0:
        return "0% [0 / 0]"
    percent = 100 * scale * done / total
    return f"{percent:.0f}% [{scale * done:.0f} / {total:.0f}]"


def create_standard_progress(
    console: Console | None = None, *, expand: bool = False
) -> Progress:
    """Create a standard progress bar with time remaining estimation.

    Use this for processes with a known total where time estimation is valuable.

    Args:
        console: Rich console instance (optional)
        expand: Whether to expand the progress bar to full width

    Returns:
        Configured Progress instance with:
        - Spinner
        - Task description
        - Progress bar
        - M of N counter
        - Time elapsed
        - Time remaining

    Example:
        ```python
        from rich.console import Console
        from src.helpers.progress import create_standard_progress

        console = Console()
        progress = create_standard_progress(console)

        with progress:
            task_id = progress.add_task("Sampling miningTarget", total=90)
            # ... fetch samples ...
            progress.update(task_id, advance=1)
        ```
    """
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TextColumn("•"),
        TimeElapsedColumn(),
        TextColumn("•"),
        TimeRemainingColumn(),
        console=console,
        expand=expand,
    )


def create_simple_progress(
    console: Console | None = None, *, expand: bool = False
) -> Progress:
    """Create a simple progress bar without time remaining estimation.

    Use this for processes where the total is uncertain, such as a log scan
    whose head keeps moving.

    Args:
        console: Rich console instance (optional)
        expand: Whether to expand the progress bar to full width

    Returns:
        Configured Progress instance without the time remaining column
    """
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TextColumn("•"),
        TimeElapsedColumn(),
        console=console,
        expand=expand,
    )


@contextmanager
def track_progress(
    description: str,
    total: int,
    console: Console | None = None,
    *,
    show_time_remaining: bool = True,
) -> Iterator[tuple[Progress, TaskID]]:
    """Context manager for tracking progress with automatic cleanup.

    Args:
        description: Task description to display
        total: Total number of items to process
        console: Rich console instance (optional)
        show_time_remaining: Whether to show time remaining estimate

    Yields:
        Tuple of (Progress instance, TaskID) for updating progress

    Example:
        ```python
        from src.helpers.progress import track_progress

        with track_progress("Scanning mint logs", total=len(windows)) as (progress, task):
            for window in windows:
                ...
                progress.update(task, advance=1)
        ```
    """
    if show_time_remaining:
        progress = create_standard_progress(console)
    else:
        progress = create_simple_progress(console)

    with progress:
        task_id = progress.add_task(description, total=total)
        yield progress, task_id


def status_to_progress(progress: Progress, task_id: TaskID) -> StatusCallback:
    """Adapt a rich task into a status callback.

    The returned callback shows the status text as the task description.
    """

    def update(status: str) -> None:
        progress.update(task_id, description=status)

    return update


__all__ = [
    "StatusCallback",
    "TaskID",
    "create_simple_progress",
    "create_standard_progress",
    "format_status",
    "status_to_progress",
    "track_progress",
]
