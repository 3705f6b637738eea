"""CLI entry point for the scheduling engine."""

import json
import logging
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Annotated, Callable, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import ConfigLoader, Dataset, DatasetLoader, read_json
from .daily import DailyRunState, DailyUpdateRunner
from .exceptions import SchedulingError
from .exporters import get_exporter
from .matching import OneOnOneBookingRequest, OneOnOneMatcher
from .models import SchedulingRequest
from .notifications import LoggingNotificationDispatcher
from .orchestrator import SchedulingOrchestrator
from .results import SchedulingResult
from .service import SchedulingService
from .utils import parse_datetime

app = typer.Typer(
    name="scheduling-engine",
    help="Schedule classes and match 1-on-1 sessions from a JSON dataset",
    add_completion=False,
)
console = Console()


class OutputFormat(str, Enum):
    """Output format options."""

    json = "json"
    csv = "csv"
    excel = "excel"


ConfigDirOption = Annotated[
    Optional[Path],
    typer.Option("-c", "--config-dir", help="Directory with algorithm.json, matching.json, daily-update.json"),
]
NowOption = Annotated[
    Optional[str],
    typer.Option("--now", help="Pin the current time (ISO-8601), e.g. 2025-03-03T08:00"),
]
VerboseOption = Annotated[
    bool,
    typer.Option("-v", "--verbose", help="Show detailed output"),
]


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _clock(now: str | None) -> Callable[[], datetime]:
    if now is None:
        return datetime.now
    try:
        pinned = parse_datetime(now)
    except ValueError:
        console.print(f"[bold red]Error:[/bold red] Invalid --now value: {now}")
        raise typer.Exit(1)
    return lambda: pinned


def _load(dataset_file: Path, config_dir: Path | None) -> tuple[ConfigLoader, Dataset]:
    if not dataset_file.exists():
        console.print(f"[bold red]Error:[/bold red] File not found: {dataset_file}")
        raise typer.Exit(1)
    try:
        with console.status("[bold green]Loading dataset..."):
            config = ConfigLoader(config_dir) if config_dir else ConfigLoader(dataset_file.parent)
            dataset = DatasetLoader(config.algorithm.constraints).load(dataset_file)
    except SchedulingError as e:
        console.print(f"[bold red]Error:[/bold red] {e.message}")
        raise typer.Exit(1)
    return config, dataset


def _read_request(request_file: Path) -> dict:
    if not request_file.exists():
        console.print(f"[bold red]Error:[/bold red] File not found: {request_file}")
        raise typer.Exit(1)
    try:
        data = read_json(request_file)
    except SchedulingError as e:
        console.print(f"[bold red]Error:[/bold red] {e.message}")
        raise typer.Exit(1)
    if not isinstance(data, dict):
        console.print("[bold red]Error:[/bold red] Request file must contain a JSON object")
        raise typer.Exit(1)
    return data


@app.command()
def schedule(
    dataset_file: Annotated[
        Path,
        typer.Argument(help="JSON dataset with content, progress, teachers and bookings"),
    ],
    request_file: Annotated[
        Path,
        typer.Argument(help="JSON scheduling request"),
    ],
    output: Annotated[
        Optional[Path],
        typer.Option("-o", "--output", help="Output file or directory path"),
    ] = None,
    format: Annotated[
        OutputFormat,
        typer.Option("-f", "--format", help="Output format"),
    ] = OutputFormat.json,
    config_dir: ConfigDirOption = None,
    now: NowOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Process a scheduling request against a dataset."""
    _configure_logging(verbose)
    clock = _clock(now)
    config, dataset = _load(dataset_file, config_dir)
    try:
        request = SchedulingRequest.from_dict(_read_request(request_file))
    except (SchedulingError, KeyError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] Invalid request: {e}")
        raise typer.Exit(1)

    orchestrator = SchedulingOrchestrator(
        dataset.progress,
        dataset.schedule,
        dataset.schedule,
        dataset.catalog,
        config=config.algorithm,
        notifier=LoggingNotificationDispatcher(),
        clock=clock,
    )
    service = SchedulingService(orchestrator)
    try:
        with console.status("[bold green]Scheduling..."):
            response = service.submit_scheduling_request(request)
    finally:
        service.close()

    result = response.data
    _show_result(result, verbose)

    if output:
        exporter = get_exporter(format.value)

        if format == OutputFormat.csv:
            # CSV exports to directory
            output_path = output if output.is_dir() else output.parent / output.stem
        else:
            if not output.suffix:
                output = output.with_suffix(".xlsx" if format == OutputFormat.excel else ".json")
            output_path = output

        with console.status(f"[bold green]Exporting to {format.value}..."):
            exporter.export(result, output_path)

        console.print(f"\n[bold green]✓[/bold green] Exported to: {output_path}")

    if not result.success:
        raise typer.Exit(1)


def _show_result(result: SchedulingResult, verbose: bool) -> None:
    console.print(f"\n[bold]Scheduling Results for:[/bold] {result.request_id}")

    summary = Table(title="Summary", show_header=False)
    summary.add_column("Metric", style="cyan")
    summary.add_column("Value", style="green")
    summary.add_row("Status", result.status.value)
    summary.add_row("Classes Scheduled", str(len(result.scheduled_classes)))
    summary.add_row("Students Processed", str(result.metrics.students_processed))
    summary.add_row("Success Rate", f"{result.metrics.success_rate:.0%}")
    summary.add_row("Conflicts", str(len(result.conflicts)))
    summary.add_row("Recommendations", str(len(result.recommendations)))
    summary.add_row("Processing Time", f"{result.processing_time:.3f}s")
    console.print(summary)

    if result.error:
        console.print(
            f"\n[bold red]Error ({result.error.category.value}):[/bold red] {result.error.message}"
        )

    if result.scheduled_classes:
        classes_table = Table(title="Scheduled Classes")
        classes_table.add_column("Class", style="cyan", max_width=40)
        classes_table.add_column("Teacher", style="blue")
        classes_table.add_column("Start", style="magenta")
        classes_table.add_column("Students", style="green")
        classes_table.add_column("Confidence", style="yellow")

        for scheduled in result.scheduled_classes:
            classes_table.add_row(
                scheduled.id[:40],
                scheduled.teacher_id,
                scheduled.start_time.strftime("%Y-%m-%d %H:%M"),
                ", ".join(scheduled.student_ids),
                f"{scheduled.confidence_score:.2f}",
            )

        console.print(classes_table)

    if result.conflicts:
        console.print(f"\n[bold yellow]Conflicts ({len(result.conflicts)}):[/bold yellow]")
        for conflict in result.conflicts:
            console.print(f"  [yellow]• [{conflict.severity.value}] {conflict.description}[/yellow]")

    if result.recommendations and verbose:
        console.print(f"\n[bold]Recommendations ({len(result.recommendations)}):[/bold]")
        for recommendation in result.recommendations:
            console.print(f"  • [{recommendation.type.value}] {recommendation.description}")


@app.command()
def match(
    dataset_file: Annotated[
        Path,
        typer.Argument(help="JSON dataset with teacher profiles and availability"),
    ],
    request_file: Annotated[
        Path,
        typer.Argument(help="JSON 1-on-1 booking request"),
    ],
    output: Annotated[
        Optional[Path],
        typer.Option("-o", "--output", help="Output JSON file path"),
    ] = None,
    config_dir: ConfigDirOption = None,
    now: NowOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Match a student to a teacher for a 1-on-1 session."""
    _configure_logging(verbose)
    clock = _clock(now)
    config, dataset = _load(dataset_file, config_dir)
    try:
        request = OneOnOneBookingRequest.from_dict(_read_request(request_file))
    except (SchedulingError, KeyError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] Invalid request: {e}")
        raise typer.Exit(1)

    matcher = OneOnOneMatcher(
        dataset.directory,
        dataset.schedule,
        dataset.schedule,
        dataset.progress,
        dataset.catalog,
        config=config.matching,
        constraints=config.algorithm.constraints,
        notifier=LoggingNotificationDispatcher(),
        clock=clock,
    )
    try:
        with console.status("[bold green]Matching teachers..."):
            result = matcher.book(request)
    finally:
        matcher.close()

    console.print(f"\n[bold]1-on-1 Matching for:[/bold] {request.student_id}")
    console.print(f"  Teachers evaluated: {result.metrics.teachers_evaluated}")
    console.print(f"  Slots considered: {result.metrics.time_slots_considered}")

    if result.booking:
        booking = result.booking
        console.print(
            f"\n[bold green]✓ Booked[/bold green] {booking.teacher_id} at "
            f"{booking.start_time:%Y-%m-%d %H:%M} ({booking.time_slot.duration} min)"
        )
    elif result.error:
        console.print(f"\n[bold red]Error:[/bold red] {result.error.message}")

    if result.recommendations:
        table = Table(title="Recommendations")
        table.add_column("Teacher", style="cyan")
        table.add_column("Slot", style="magenta")
        table.add_column("Score", style="green")
        table.add_column("Success", style="yellow")
        for recommendation in result.recommendations:
            table.add_row(
                recommendation.teacher_id,
                recommendation.recommended_slot.start_time.strftime("%Y-%m-%d %H:%M"),
                f"{recommendation.teacher_match.overall_score:.2f}",
                f"{recommendation.booking_success_probability:.0%}",
            )
        console.print(table)

    if output:
        output_path = output if output.suffix == ".json" else output.with_suffix(".json")
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(result.to_dict(), f, indent=2, ensure_ascii=False)
        console.print(f"\n[bold green]✓[/bold green] Exported to: {output_path}")

    if not result.success and not result.recommendations:
        raise typer.Exit(1)


@app.command("daily-update")
def daily_update(
    dataset_file: Annotated[
        Path,
        typer.Argument(help="JSON dataset to run the daily batch against"),
    ],
    output: Annotated[
        Optional[Path],
        typer.Option("-o", "--output", help="Output JSON file path for the run status"),
    ] = None,
    config_dir: ConfigDirOption = None,
    now: NowOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Run the daily data update batch once."""
    _configure_logging(verbose)
    clock = _clock(now)
    config, dataset = _load(dataset_file, config_dir)

    runner = DailyUpdateRunner(
        dataset.progress,
        dataset.schedule,
        dataset.schedule,
        dataset.catalog,
        config=config.daily_update,
        constraints=config.algorithm.constraints,
        notifier=LoggingNotificationDispatcher(),
        clock=clock,
    )
    try:
        with console.status("[bold green]Running daily update..."):
            status = runner.run()
    finally:
        runner.close()

    table = Table(title=f"Daily Update {status.id}")
    table.add_column("Component", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Records", style="magenta")
    table.add_column("Attempts", style="yellow")
    table.add_column("Error", style="red", max_width=50)
    for component in status.components:
        table.add_row(
            component.name,
            component.state.value,
            str(component.records_processed),
            str(component.attempts),
            component.error or "",
        )
    console.print(table)

    metrics = status.metrics
    console.print(f"\n[bold]Status:[/bold] {status.state.value}")
    console.print(f"  Data quality: {metrics.data_quality_score:.2f}")
    console.print(f"  System health: {metrics.system_health_score:.2f}")

    if output:
        output_path = output if output.suffix == ".json" else output.with_suffix(".json")
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(status.to_dict(), f, indent=2, ensure_ascii=False)
        console.print(f"\n[bold green]✓[/bold green] Exported to: {output_path}")

    if status.state == DailyRunState.FAILED:
        raise typer.Exit(1)


@app.command("validate-content")
def validate_content(
    dataset_file: Annotated[
        Path,
        typer.Argument(help="JSON dataset whose content catalog should be checked"),
    ],
    verbose: VerboseOption = False,
) -> None:
    """Validate the prerequisite graph of a dataset's content."""
    _configure_logging(verbose)
    if not dataset_file.exists():
        console.print(f"[bold red]Error:[/bold red] File not found: {dataset_file}")
        raise typer.Exit(1)

    try:
        with console.status("[bold green]Validating content..."):
            dataset = DatasetLoader().load(dataset_file)
    except SchedulingError as e:
        console.print("[bold red]✗ Content has issues[/bold red]")
        console.print(f"  [red]• {e.message}[/red]")
        raise typer.Exit(1)

    catalog = dataset.catalog
    console.print("[bold green]✓ Content is valid[/bold green]")

    table = Table(title="Courses")
    table.add_column("Course", style="cyan")
    table.add_column("Items", style="green")
    table.add_column("Minutes", style="magenta")
    for course_id in catalog.list_course_ids():
        contents = catalog.get_course_content(course_id)
        table.add_row(course_id, str(len(contents)), str(sum(c.estimated_duration for c in contents)))
    console.print(table)

    if verbose:
        console.print("\n[bold]Teaching order:[/bold]")
        for content_id in catalog.graph.topological_order():
            console.print(f"  {content_id}")


if __name__ == "__main__":
    app()
