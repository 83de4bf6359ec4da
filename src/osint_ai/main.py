"""CLI entrypoint for osint-ai."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

import rich_click as click

from osint_ai import __version__
from osint_ai.errors import OsintAiError
from osint_ai.jobs.controllers import (
    AiJobCliController,
    FindingAddCommand,
    InvestigationCliController,
    InvestigationCreateCommand,
    InvestigationDeleteCommand,
    JobEnqueueCommand,
    JobListCommand,
    JobMutateCommand,
    JobShowCommand,
    JobWorkerCommand,
    OllamaCliController,
)

click.rich_click.USE_MARKDOWN = True
INVESTIGATION_CONTROLLER = InvestigationCliController()
JOB_CONTROLLER = AiJobCliController()
OLLAMA_CONTROLLER = OllamaCliController()
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@click.group()
@click.version_option(version=__version__, prog_name="osint-ai")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    envvar="OSINT_AI_LOG_LEVEL",
    help="Logging level for queue and worker diagnostics.",
)
def osint_ai(log_level: str) -> None:
    """OSINT investigation AI job queue CLI."""

    logging.basicConfig(level=getattr(logging, log_level.upper()), format=LOG_FORMAT)


@osint_ai.group()
def investigations() -> None:
    """Investigation and finding commands."""


@investigations.command("create")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--target", required=True, help="Investigated target, for example a domain.")
@click.option(
    "--type",
    "investigation_type",
    default="comprehensive",
    show_default=True,
    help="Investigation type label.",
)
@click.option("--requested-by", default=None, help="Optional requester name.")
def investigations_create(
    db_path: Path | None,
    target: str,
    investigation_type: str,
    requested_by: str | None,
) -> None:
    """Create an investigation."""

    with _domain_errors():
        lines = INVESTIGATION_CONTROLLER.create(
            InvestigationCreateCommand(
                db_path=db_path,
                target=target,
                investigation_type=investigation_type,
                requested_by=requested_by,
            ),
        )
    _emit_lines(lines)


@investigations.command("add-finding")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--investigation-id", type=int, required=True, help="Investigation id.")
@click.option("--tool", "tool_name", required=True, help="Collection tool name.")
@click.option("--data-type", default="", help="Finding category, for example dns or email.")
@click.option("--raw-data", default="", help="Raw collected data.")
@click.option("--summary", default=None, help="Short human-readable summary.")
@click.option("--confidence", "confidence_score", default=None, help="Confidence label.")
@click.option(
    "--collected-at",
    type=click.DateTime(),
    default=None,
    help="Collection timestamp (UTC). Defaults to now.",
)
def investigations_add_finding(  # noqa: PLR0913
    db_path: Path | None,
    investigation_id: int,
    tool_name: str,
    data_type: str,
    raw_data: str,
    summary: str | None,
    confidence_score: str | None,
    collected_at: datetime | None,
) -> None:
    """Record one tool finding for an investigation."""

    with _domain_errors():
        lines = INVESTIGATION_CONTROLLER.add_finding(
            FindingAddCommand(
                db_path=db_path,
                investigation_id=investigation_id,
                tool_name=tool_name,
                data_type=data_type,
                raw_data=raw_data,
                summary=summary,
                confidence_score=confidence_score,
                collected_at=collected_at,
            ),
        )
    _emit_lines(lines)


@investigations.command("delete")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--investigation-id", type=int, required=True, help="Investigation id.")
def investigations_delete(db_path: Path | None, investigation_id: int) -> None:
    """Delete an investigation with its findings and AI jobs."""

    with _domain_errors():
        lines = INVESTIGATION_CONTROLLER.delete(
            InvestigationDeleteCommand(db_path=db_path, investigation_id=investigation_id),
        )
    _emit_lines(lines)


@osint_ai.group()
def jobs() -> None:
    """AI job queue commands."""


@jobs.command("enqueue")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--investigation-id", type=int, required=True, help="Investigation id.")
@click.option(
    "--type",
    "job_type",
    default="analysis",
    show_default=True,
    help="Job type: analysis or inference.",
)
@click.option("--model", default=None, help="Optional model override.")
@click.option(
    "--prompt",
    default=None,
    help="Optional explicit prompt. Built from findings when omitted.",
)
@click.option("--debug/--no-debug", default=False, help="Capture request diagnostics.")
def jobs_enqueue(  # noqa: PLR0913
    db_path: Path | None,
    investigation_id: int,
    job_type: str,
    model: str | None,
    prompt: str | None,
    debug: bool,
) -> None:
    """Queue an AI job for an investigation."""

    with _domain_errors():
        lines = JOB_CONTROLLER.enqueue(
            JobEnqueueCommand(
                db_path=db_path,
                investigation_id=investigation_id,
                job_type=job_type,
                model=model,
                prompt=prompt,
                debug=debug,
            ),
        )
    _emit_lines(lines)


@jobs.command("worker")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--once/--loop",
    default=False,
    show_default=True,
    help="Process at most one job, or keep polling until stopped.",
)
@click.option(
    "--max-jobs",
    type=click.IntRange(min=1),
    default=None,
    help="Optional cap for processed jobs in loop mode.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=None,
    help="Stop the loop after this many consecutive empty polls.",
)
def jobs_worker(
    db_path: Path | None,
    once: bool,
    max_jobs: int | None,
    max_idle_polls: int | None,
) -> None:
    """Run the background AI job worker."""

    with _domain_errors():
        lines = JOB_CONTROLLER.run_worker(
            JobWorkerCommand(
                db_path=db_path,
                once=once,
                max_jobs=max_jobs,
                max_idle_polls=max_idle_polls,
            ),
        )
    _emit_lines(lines)


@jobs.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice(
        ["queued", "running", "succeeded", "failed", "cancelled"],
        case_sensitive=False,
    ),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--investigation-id",
    type=int,
    default=None,
    help="Only jobs of this investigation, newest first.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max jobs to print.",
)
def jobs_list(
    db_path: Path | None,
    status: str | None,
    investigation_id: int | None,
    limit: int,
) -> None:
    """List AI jobs."""

    with _domain_errors():
        lines = JOB_CONTROLLER.list_jobs(
            JobListCommand(
                db_path=db_path,
                status=status,
                investigation_id=investigation_id,
                limit=limit,
            ),
        )
    _emit_lines(lines)


@jobs.command("show")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--job-id", type=int, required=True, help="Job id.")
@click.option("--full/--preview", "full_result", default=False, help="Print the whole result.")
def jobs_show(db_path: Path | None, job_id: int, full_result: bool) -> None:
    """Inspect one job with its event history."""

    with _domain_errors():
        lines = JOB_CONTROLLER.show(
            JobShowCommand(db_path=db_path, job_id=job_id, full_result=full_result),
        )
    _emit_lines(lines)


@jobs.command("retry")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--job-id", type=int, required=True, help="Job id.")
def jobs_retry(db_path: Path | None, job_id: int) -> None:
    """Manually re-queue a failed or cancelled job."""

    with _domain_errors():
        lines = JOB_CONTROLLER.retry(JobMutateCommand(db_path=db_path, job_id=job_id))
    _emit_lines(lines)


@jobs.command("cancel")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--job-id", type=int, required=True, help="Job id.")
def jobs_cancel(db_path: Path | None, job_id: int) -> None:
    """Cancel a queued or running job."""

    with _domain_errors():
        lines = JOB_CONTROLLER.cancel(JobMutateCommand(db_path=db_path, job_id=job_id))
    _emit_lines(lines)


@osint_ai.group()
def ollama() -> None:
    """Text-generation service commands."""


@ollama.command("health")
def ollama_health() -> None:
    """Check that the configured Ollama service answers."""

    with _domain_errors():
        result = OLLAMA_CONTROLLER.health()
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Ollama service is not available.")


@contextmanager
def _domain_errors() -> Iterator[None]:
    try:
        yield
    except (OsintAiError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    osint_ai()
