"""Terminal progress rendering for harvest runs."""

from __future__ import annotations

from dataclasses import dataclass

from rich.console import Console
from rich.errors import LiveError
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from ..orchestrator import SourceReport


@dataclass
class ProgressState:
    total: int
    ok: int = 0
    failed: int = 0
    records: int = 0
    last_source: str | None = None

    @property
    def finished(self) -> int:
        return self.ok + self.failed


class SourceProgress:
    """One progress row advanced every time a source finishes its walk.

    Instances are used as the orchestrator's ``on_source_done`` callback.
    Outside a terminal the bar stays hidden and only the counters move.
    """

    def __init__(self, enabled: bool = True, console: Console | None = None, label: str = "harvest") -> None:
        self.enabled = enabled
        self.console = console or Console()
        if enabled and not self.console.is_terminal:
            self.enabled = False
        self.label = label
        self.state: ProgressState | None = None
        self._progress: Progress | None = None
        self._task_id: TaskID | None = None

    def start(self, total: int) -> None:
        self.state = ProgressState(total=total)
        if not self.enabled:
            return
        self._progress = Progress(
            SpinnerColumn(style="cyan"),
            TextColumn("[bold blue]{task.fields[label]:<14}", justify="left"),
            BarColumn(bar_width=None, complete_style="green", finished_style="green"),
            TaskProgressColumn(show_speed=False),
            TimeElapsedColumn(),
            TextColumn("[green]✓{task.fields[ok]:>3}", justify="right"),
            TextColumn("[red]✗{task.fields[failed]:>3}", justify="right"),
            TextColumn("[dim]{task.fields[last_source]}", justify="left"),
            console=self.console,
            transient=True,
            refresh_per_second=12,
            expand=True,
        )
        try:
            self._progress.start()
        except LiveError:
            # Another live display owns the console.
            self.enabled = False
            self._progress = None
            return
        self._task_id = self._progress.add_task(
            "harvest", total=total, label=self.label, ok=0, failed=0, last_source="waiting…"
        )

    def __call__(self, report: SourceReport) -> None:
        self.advance(report)

    def advance(self, report: SourceReport) -> None:
        if self.state is None:
            raise RuntimeError("SourceProgress.start must be called before advance")
        if report.ok:
            self.state.ok += 1
        else:
            self.state.failed += 1
        self.state.records += report.records_fetched
        self.state.last_source = str(report.source)
        if self._progress is not None and self._task_id is not None:
            display = self.state.last_source
            if len(display) > 40:
                display = display[:37] + "..."
            self._progress.update(
                self._task_id,
                advance=1,
                ok=self.state.ok,
                failed=self.state.failed,
                last_source=display,
            )

    def close(self) -> None:
        if self._progress is not None:
            self._progress.stop()
            self._progress = None
        self._task_id = None

    def __enter__(self) -> "SourceProgress":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def summary(self) -> dict[str, int]:
        if self.state is None:
            return {"ok": 0, "failed": 0, "records": 0}
        return {"ok": self.state.ok, "failed": self.state.failed, "records": self.state.records}


__all__ = ["ProgressState", "SourceProgress"]
