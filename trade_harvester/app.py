"""Typer CLI entrypoint for Trade-Harvester."""

from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional, Sequence

import httpx
import typer
import yaml
from rich import box
from rich.console import Console
from rich.table import Table

from .adapters import JsonPageFetcher, SourceDiscovery, merge_sources
from .config import ConfigRepository, GlobalConfig, JobConfig
from .engine import Deduplicator, key_from_fields, recency_from_field
from .engine.exporter import FileExporter
from .errors import HarvestError
from .logging_conf import (
    available_source_logs,
    configure_logging,
    run_log_path,
    source_log_path,
    tail_log,
)
from .orchestrator import FetchOrchestrator, RunReport, SourceReport
from .ui import SourceProgress

app = typer.Typer(
    help="Trade-Harvester command line tool",
    no_args_is_help=True,
    rich_markup_mode=None,
)
job_app = typer.Typer(name="job", help="Job configuration commands", no_args_is_help=True)
log_app = typer.Typer(name="log", help="Log inspection commands", no_args_is_help=True)

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    global_config: GlobalConfig
    verbose: bool = False
    transport: httpx.AsyncBaseTransport | None = None


def build_state(verbose: bool) -> AppState:
    repository = ConfigRepository()
    global_config = repository.load_global_config()
    verbose = verbose or global_config.verbose_logging
    configure_logging(verbose=verbose)
    return AppState(repository=repository, global_config=global_config, verbose=verbose)


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _load_job_or_exit(state: AppState, name: str) -> JobConfig:
    try:
        return state.repository.load_job(name)
    except HarvestError as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=1) from exc
    except ValueError as exc:
        console.print(f"Invalid job configuration {name}: {exc}", style="red")
        raise typer.Exit(code=1) from exc


def _progress_default_enabled() -> bool:
    return bool(getattr(sys.stdout, "isatty", lambda: False)())


def _render_jobs_table(jobs: Sequence[JobConfig]) -> Table:
    table = Table(title=f"Jobs · {len(jobs)} configured", box=box.SIMPLE_HEAD)
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Sources", style="magenta", justify="right")
    table.add_column("Method", style="yellow")
    table.add_column("Endpoint", overflow="fold")
    table.add_column("Output", style="green")
    for job in jobs:
        table.add_row(
            job.name,
            f"{len(job.sources)} + discovery" if job.discovery else str(len(job.sources)),
            job.endpoint.method.value,
            job.endpoint.url,
            job.output_format,
        )
    return table


def _render_sources_table(title: str, reports: Iterable[SourceReport]) -> Table:
    table = Table(title=title, box=box.SIMPLE_HEAD)
    table.add_column("Source", style="cyan", no_wrap=True)
    table.add_column("Pages", justify="right")
    table.add_column("Records", justify="right")
    table.add_column("Ended by", style="magenta")
    table.add_column("Error", style="red", overflow="fold")
    for report in reports:
        table.add_row(
            str(report.source),
            str(report.pages_fetched),
            str(report.records_fetched),
            report.terminal_reason.value,
            report.error or "",
        )
    return table


async def harvest_job(
    job: JobConfig,
    *,
    concurrency: int | None = None,
    max_pages: int | None = None,
    timeout: float | None = None,
    on_source_done=None,
    on_sources=None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> RunReport:
    """Run one job end to end over a single shared HTTP client.

    A ``discovery`` block is resolved first, through the same limiter and
    retry policy as the page walks; its ids follow the static sources.
    ``on_sources`` receives the final source list before any walk starts.
    """

    harvest = job.harvest
    deduplicator = Deduplicator(
        identity_key=key_from_fields(job.dedup.identity_fields),
        recency=recency_from_field(job.dedup.recency_field),
    )
    orchestrator = FetchOrchestrator.from_config(
        harvest, deduplicator, on_source_done=on_source_done
    )
    async with httpx.AsyncClient(
        transport=transport,
        timeout=harvest.request_timeout,
        follow_redirects=True,
    ) as client:
        sources = merge_sources(job.sources)
        if job.discovery is not None:
            discovered = await SourceDiscovery(job.discovery, client).discover(orchestrator.guard)
            sources = merge_sources(sources, discovered)
        if on_sources is not None:
            on_sources(sources)
        fetcher = JsonPageFetcher(job.endpoint, client)
        return await orchestrator.run(
            sources,
            concurrency or harvest.concurrency,
            fetcher,
            max_pages or harvest.pagination.max_pages,
            timeout=timeout if timeout is not None else harvest.run_timeout,
        )


def export_report(job: JobConfig, report: RunReport, output_dir: Path, run_tag: str | None = None) -> Path:
    with FileExporter(
        output_dir, job.name, job.output_format, run_tag=run_tag, fields=job.output_fields
    ) as exporter:
        exporter.export_many(report.records)
    return exporter.path


app.add_typer(job_app, name="job", help="List and inspect harvest jobs")
app.add_typer(log_app, name="log", help="Show log files")


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging", is_flag=True),
) -> None:
    if ctx.obj is None:
        ctx.obj = build_state(verbose)


@job_app.command("list", help="Show configured jobs.")
def job_list(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    jobs = state.repository.list_jobs()
    if not jobs:
        console.print(
            f"No jobs configured yet. Add YAML files under {state.repository.locator.jobs_dir}.",
            style="yellow",
        )
        return
    console.print(_render_jobs_table(jobs))


@job_app.command("show", help="Print a job configuration as YAML.")
def job_show(ctx: typer.Context, name: str = typer.Argument(..., help="Job name.")) -> None:
    state = _get_state(ctx)
    job = _load_job_or_exit(state, name)
    console.print(
        yaml.safe_dump(job.model_dump(mode="json"), allow_unicode=True, sort_keys=False),
        markup=False,
        highlight=False,
    )


@app.command("run", help="Harvest every source of a job and export the merged records.")
def run(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Job name."),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", min=1, help="Sources walked at once."),
    max_pages: Optional[int] = typer.Option(None, "--max-pages", min=1, help="Page cap per source."),
    timeout: Optional[float] = typer.Option(None, "--timeout", min=0.001, help="Overall run deadline in seconds."),
    quiet: bool = typer.Option(False, "--quiet", help="Only print a one-line summary.", is_flag=True),
    no_progress: bool = typer.Option(False, "--no-progress", help="Disable the progress bar.", is_flag=True),
) -> None:
    state = _get_state(ctx)
    job = _load_job_or_exit(state, name)

    progress_flag = (
        state.global_config.enable_progress_bar
        and _progress_default_enabled()
        and not (quiet or no_progress)
    )
    progress = SourceProgress(enabled=progress_flag, console=console, label=job.name)
    with progress:
        report = asyncio.run(
            harvest_job(
                job,
                concurrency=concurrency,
                max_pages=max_pages,
                timeout=timeout,
                on_source_done=progress,
                on_sources=lambda sources: progress.start(len(sources)),
                transport=state.transport,
            )
        )

    run_tag = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    output_path = export_report(job, report, state.repository.outputs_dir(), run_tag)

    ok_count = len(report.per_source) - len(report.failures)
    if quiet:
        console.print(
            f"{job.name}: {len(report.records)} records from {ok_count}/{len(report.per_source)} sources"
            f" -> {output_path}"
        )
    else:
        console.print(_render_sources_table(f"{job.name} results", report.per_source))
        console.print(
            f"Merged {len(report.records)} unique records "
            f"({report.records_fetched} fetched) in {report.elapsed:.2f}s",
            style="green",
        )
        console.print(f"Output: {output_path}", style="dim")

    if ok_count == 0:
        raise typer.Exit(code=1)


@log_app.command("list", help="List per-source log files.")
def log_list(ctx: typer.Context) -> None:
    _get_state(ctx)
    logs = list(available_source_logs())
    if not logs:
        console.print("No source logs yet.", style="dim")
        return
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("File", style="green")
    for path in logs:
        table.add_row(path.name)
    console.print(table)


@log_app.command("show", help="Show the last lines of a log file.")
def log_show(
    ctx: typer.Context,
    source: Optional[str] = typer.Option(None, "--source", help="Source name; omit for the run log."),
    tail: int = typer.Option(100, "--tail", min=1, help="Number of lines to show."),
) -> None:
    _get_state(ctx)
    path = source_log_path(source) if source else run_log_path()
    lines = tail_log(path, tail)
    if not lines:
        console.print("No log lines yet.", style="dim")
        return
    console.print(f"{path.name} · last {len(lines)} lines", style="cyan")
    console.print("".join(lines), markup=False, highlight=False)


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
