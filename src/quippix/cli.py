"""QuipPix CLI - submit and track photo stylization jobs.

Commands:
    generate  Stylize one image (or a batch of up to ten)
    status    Show the status of a job
    queue     Inspect or drain the offline queue
    recovery  Inspect or clear the in-flight generation record
"""

import asyncio
import json
from pathlib import Path
from typing import Annotated, Any, Literal

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from quippix import __version__
from quippix.core.config import ClientConfig
from quippix.core.errors import (
    GenerationFailedError,
    classify,
    user_message,
)
from quippix.core.logging import configure_logging, get_logger
from quippix.core.models import (
    BatchGenerationRequest,
    BatchStatus,
    GenerationParams,
    GenerationRequest,
    JobStatus,
)
from quippix.execution import GenerationService, ManualConnectivity, RetryDecision

logger = get_logger("cli")

# Global option state, filled in by the main callback
_config_path: Path | None = None
_log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"
_log_file: Path | None = None
_log_format: Literal["json", "console", "both"] = "console"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
_LOG_FORMATS = ("json", "console", "both")

app = typer.Typer(
    name="quippix",
    help="Submit and track QuipPix generation jobs",
    add_completion=False,
)
queue_app = typer.Typer(name="queue", help="Inspect or drain the offline queue.")
recovery_app = typer.Typer(name="recovery", help="Inspect or clear the recovery record.")
app.add_typer(queue_app)
app.add_typer(recovery_app)

console = Console()


def _configure_global_logging() -> None:
    try:
        configure_logging(level=_log_level, format=_log_format, file_path=_log_file)
    except ValueError as e:
        # e.g. format="both" without a log file
        console.print(f"[red]Logging configuration error:[/red] {e}")
        raise typer.Exit(1) from None


def _load_config() -> ClientConfig:
    if _config_path is None:
        return ClientConfig().with_env_overrides()
    try:
        return ClientConfig.from_yaml(_config_path)
    except (OSError, ValidationError, ValueError) as e:
        console.print(f"[red]Error loading config:[/red] {e}")
        raise typer.Exit(1) from None


def _build_service(config: ClientConfig) -> GenerationService:
    # One-shot commands assume the backend is reachable; they never wait
    # for connectivity transitions.
    return GenerationService.from_config(config, connectivity=ManualConnectivity(True))


def _load_params(style: str, params_file: Path | None) -> GenerationParams:
    data: dict[str, Any] = {}
    if params_file is not None:
        try:
            data = json.loads(params_file.read_text())
        except (OSError, json.JSONDecodeError) as e:
            console.print(f"[red]Cannot read params file:[/red] {e}")
            raise typer.Exit(1) from None
        if not isinstance(data, dict):
            console.print("[red]Params file must contain a JSON object[/red]")
            raise typer.Exit(1)
    data["styleId"] = style
    return GenerationParams.model_validate(data)


def _report_failure(error: BaseException) -> None:
    if isinstance(error, GenerationFailedError):
        decision = error.decision
        console.print(f"[red]{decision.category.value}:[/red] {decision.message}")
        if decision.route_to_upgrade:
            console.print("[yellow]Upgrade to Pro for unlimited generations.[/yellow]")
        elif decision.exhausted:
            console.print(f"[dim]{decision.attempt_label}[/dim]")
        return
    category = classify(error)
    console.print(f"[red]{category.value}:[/red] {user_message(category, error)}")


def version_callback(value: bool) -> None:
    if value:
        console.print(f"QuipPix v{__version__}")
        raise typer.Exit()


def log_level_callback(value: str | None) -> str | None:
    """Validate and normalize the log level option."""
    if value is None:
        return None
    level = value.upper()
    if level not in _LOG_LEVELS:
        raise typer.BadParameter(f"must be one of {', '.join(_LOG_LEVELS)}")
    return level


def log_format_callback(value: str | None) -> str | None:
    """Validate and normalize the log format option."""
    if value is None:
        return None
    fmt = value.lower()
    if fmt not in _LOG_FORMATS:
        raise typer.BadParameter(f"must be one of {', '.join(_LOG_FORMATS)}")
    return fmt


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to YAML client configuration"),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-L",
            help="Logging level (DEBUG, INFO, WARNING, ERROR)",
            envvar="QUIPPIX_LOG_LEVEL",
            callback=log_level_callback,
        ),
    ] = None,
    log_file: Annotated[
        Path | None,
        typer.Option("--log-file", help="Path for log file output", envvar="QUIPPIX_LOG_FILE"),
    ] = None,
    log_format: Annotated[
        str | None,
        typer.Option(
            "--log-format",
            help="Log format: json, console, or both",
            envvar="QUIPPIX_LOG_FORMAT",
            callback=log_format_callback,
        ),
    ] = None,
) -> None:
    """QuipPix - stylize photos through the rendering backend."""
    global _config_path, _log_level, _log_file, _log_format
    _config_path = config
    if log_level:
        _log_level = log_level  # type: ignore[assignment]
    if log_format:
        _log_format = log_format  # type: ignore[assignment]
    _log_file = log_file
    _configure_global_logging()


# ---------------------------------------------------------------------------
# generate
# ---------------------------------------------------------------------------


@app.command()
def generate(
    images: list[Path] = typer.Argument(..., help="Image file(s); up to 10 form a batch"),
    style: str = typer.Option(..., "--style", "-s", help="Style id"),
    params_file: Path | None = typer.Option(
        None, "--params", "-p", help="JSON file with extra style parameters"
    ),
    no_wait: bool = typer.Option(
        False, "--no-wait", help="Submit and print the id without polling"
    ),
    queue_only: bool = typer.Option(
        False, "--queue", help="Queue for later submission instead of submitting now"
    ),
    challenge: str | None = typer.Option(None, "--challenge", help="Challenge id"),
) -> None:
    """Stylize one image, or several as a batch."""
    params = _load_params(style, params_file)
    refs = [str(p) for p in images]
    if len(refs) > 1 and queue_only:
        console.print("[red]Only single-image requests can be queued[/red]")
        raise typer.Exit(1)
    try:
        if len(refs) == 1:
            request = GenerationRequest(image_ref=refs[0], params=params)
        else:
            batch = BatchGenerationRequest(image_refs=tuple(refs), params=params)
    except ValidationError as e:
        console.print(f"[red]Invalid request:[/red] {e.errors()[0]['msg']}")
        raise typer.Exit(1) from None

    config = _load_config()
    if len(refs) == 1:
        asyncio.run(_generate_single(config, request, no_wait, queue_only, challenge))
    else:
        asyncio.run(_generate_batch(config, batch, no_wait))


async def _generate_single(
    config: ClientConfig,
    request: GenerationRequest,
    no_wait: bool,
    queue_only: bool,
    challenge: str | None,
) -> None:
    async with _build_service(config) as service:
        if queue_only:
            item_id = await service.queue_generation(request.image_ref, request.params)
            console.print(f"Queued [bold]{item_id}[/bold]")
            return

        try:
            if no_wait:
                outcome = await service.submit_or_queue(request, is_connected=True)
                console.print(f"Submitted job [bold]{outcome.id}[/bold]")
                return

            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(bar_width=30),
                TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
                TimeElapsedColumn(),
                console=console,
                transient=True,
            ) as progress:
                task_id = progress.add_task("queued", total=100)

                def on_progress(status: JobStatus) -> None:
                    progress.update(
                        task_id, completed=status.progress, description=status.state.value
                    )

                def on_retry(decision: RetryDecision) -> None:
                    progress.update(task_id, completed=0, description="retrying")
                    console.print(
                        f"[yellow]{decision.message}[/yellow] "
                        f"[dim]({decision.attempt_label})[/dim]"
                    )

                final = await service.generate_with_retries(
                    request, on_progress, challenge_id=challenge, on_retry=on_retry
                )
        except Exception as e:
            logger.debug("generate_failed", error=str(e))
            _report_failure(e)
            raise typer.Exit(1) from None

    console.print(f"[green]Done[/green] {final.result_url}")


async def _generate_batch(
    config: ClientConfig, batch: BatchGenerationRequest, no_wait: bool
) -> None:
    async with _build_service(config) as service:
        try:
            if no_wait:
                submitted = await service.client.submit_batch(batch)
                console.print(f"Submitted batch [bold]{submitted.batch_id}[/bold]")
                return

            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(bar_width=30),
                TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
                TextColumn("{task.fields[counts]}"),
                console=console,
                transient=True,
            ) as progress:
                task_id = progress.add_task("processing", total=100, counts="")

                def on_progress(status: BatchStatus) -> None:
                    progress.update(
                        task_id,
                        completed=status.overall_progress,
                        counts=f"{status.completed_jobs}/{status.total_jobs} done",
                    )

                final = await service.generate_batch(batch, on_progress)
        except Exception as e:
            _report_failure(e)
            raise typer.Exit(1) from None

    _print_batch(final)


def _print_batch(status: BatchStatus) -> None:
    table = Table(title=f"Batch {status.batch_id} ({status.state.value})")
    table.add_column("Job", style="cyan")
    table.add_column("State")
    table.add_column("Result")
    for job in status.jobs:
        table.add_row(job.job_id, job.state.value, job.result_url or job.error or "")
    console.print(table)


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


@app.command()
def status(
    job_id: str = typer.Argument(..., help="Job id to look up"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output raw JSON"),
) -> None:
    """Show the current status of a job."""
    asyncio.run(_status(_load_config(), job_id, json_output))


async def _status(config: ClientConfig, job_id: str, json_output: bool) -> None:
    async with _build_service(config) as service:
        try:
            job = await service.client.get_status(job_id)
        except Exception as e:
            _report_failure(e)
            raise typer.Exit(1) from None

    if json_output:
        console.print(json.dumps(job.to_wire(), indent=2))
        return
    table = Table(show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Job", job.job_id)
    table.add_row("State", job.state.value)
    table.add_row("Progress", f"{job.progress:g}%")
    if job.result_url:
        table.add_row("Result", job.result_url)
    if job.error:
        table.add_row("Error", f"[red]{job.error}[/red]")
    console.print(table)


# ---------------------------------------------------------------------------
# queue
# ---------------------------------------------------------------------------


@queue_app.command("list")
def queue_list() -> None:
    """List queued requests in submission order."""
    asyncio.run(_queue_list(_load_config()))


async def _queue_list(config: ClientConfig) -> None:
    async with _build_service(config) as service:
        items = await service.queue.list_items()
    if not items:
        console.print("[dim]Queue is empty[/dim]")
        return
    table = Table(title="Offline queue")
    table.add_column("#", justify="right")
    table.add_column("Id", style="cyan")
    table.add_column("Image")
    table.add_column("Style")
    table.add_column("Queued at")
    for position, item in enumerate(items, start=1):
        table.add_row(
            str(position),
            item.id,
            item.image_ref,
            item.params.style_id,
            item.created_at.isoformat(timespec="seconds"),
        )
    console.print(table)


@queue_app.command("count")
def queue_count() -> None:
    """Print the number of queued requests."""
    asyncio.run(_queue_count(_load_config()))


async def _queue_count(config: ClientConfig) -> None:
    async with _build_service(config) as service:
        count = await service.get_queue_count()
    console.print(str(count))


@queue_app.command("drain")
def queue_drain() -> None:
    """Submit queued requests now, stopping at the first failure."""
    asyncio.run(_queue_drain(_load_config()))


async def _queue_drain(config: ClientConfig) -> None:
    async with _build_service(config) as service:
        result = await service.dispatcher.drain()
    for item_id, job_id in result.submitted:
        console.print(f"[green]Submitted[/green] {item_id} -> job {job_id}")
    if result.error is not None:
        _report_failure(result.error)
        console.print(f"[yellow]{result.remaining} request(s) left in queue[/yellow]")
        raise typer.Exit(1)
    if not result.submitted:
        console.print("[dim]Queue is empty[/dim]")


# ---------------------------------------------------------------------------
# recovery
# ---------------------------------------------------------------------------


@recovery_app.command("show")
def recovery_show() -> None:
    """Show the in-flight generation record, if still fresh."""
    asyncio.run(_recovery_show(_load_config()))


async def _recovery_show(config: ClientConfig) -> None:
    async with _build_service(config) as service:
        pending = await service.get_pending_generation()
    if pending is None:
        console.print("[dim]No pending generation[/dim]")
        return
    table = Table(show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Job", pending.job_id)
    table.add_row("Image", pending.image_ref)
    table.add_row("Style", pending.params.style_id)
    if pending.challenge_id:
        table.add_row("Challenge", pending.challenge_id)
    table.add_row("Started", pending.started_at.isoformat(timespec="seconds"))
    console.print(table)


@recovery_app.command("clear")
def recovery_clear() -> None:
    """Discard the in-flight generation record."""
    asyncio.run(_recovery_clear(_load_config()))


async def _recovery_clear(config: ClientConfig) -> None:
    async with _build_service(config) as service:
        await service.clear_pending_generation()
    console.print("Cleared")


if __name__ == "__main__":
    app()
