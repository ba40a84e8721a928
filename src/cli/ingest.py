# =============================================================================
# src/cli/ingest.py - Ingestion Queue CLI
# =============================================================================
#
# Operator CLI for the durable ingestion queue.  Jobs added here are stored
# in SQLite and picked up by a running `run` process (or the next one to
# start), so adding work never blocks on fetching, summarizing or chunking.
#
# Supported subcommands:
#
#   add-url          - Queue a web page
#   add-pdf          - Queue a local PDF file
#   run              - Start the dispatcher + chunking loops until Ctrl+C
#   status           - Show one job
#   stats            - Job counts per status
#   retry            - Re-queue a failed / retry_pending job now
#   cancel           - Cancel a job that is not running
#   cleanup          - Delete finished jobs older than N days
#   reset-embeddings - Send embedding_failed objects back to parsed
#
# Only `run` builds the LLM, embedding and ChromaDB clients; every other
# command touches the SQLite tables alone.
#
# Usage examples:
#   python -m src.cli.ingest add-url --url https://example.com/post
#   python -m src.cli.ingest add-pdf --file ./report.pdf --priority 5
#   python -m src.cli.ingest run
#   python -m src.cli.ingest stats
#   python -m src.cli.ingest reset-embeddings --object-id 3f2a...
# =============================================================================

"""Standalone CLI for the ingestion job queue.

Usage::

    python -m src.cli.ingest add-url --url https://example.com/post
    python -m src.cli.ingest run
    python -m src.cli.ingest stats
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from src.config.settings import Settings
from src.models.job import JobStatus, JobType
from src.utils.errors import IngestionError
from src.utils.logging import configure_logging


def _runtime(app_settings: Settings, processing: bool = False):  # noqa: ANN202
    """Build the runtime.  Deferred import keeps ``--help`` fast."""
    from src.main import build_runtime

    return build_runtime(app_settings, processing=processing)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def _handle_add_url(args: argparse.Namespace, app_settings: Settings) -> int:
    runtime = _runtime(app_settings)
    await runtime.initialize()
    data = {"url": args.url}
    if args.title:
        data["title"] = args.title
    job = await runtime.queue.add_job(
        JobType.URL, args.url, priority=args.priority, job_specific_data=data
    )
    print(f"Queued url job {job.id}")
    print(f"  Source:   {job.source_identifier}")
    print(f"  Priority: {job.priority}")
    return 0


async def _handle_add_pdf(args: argparse.Namespace, app_settings: Settings) -> int:
    path = Path(args.file).expanduser().resolve()
    if not path.is_file():
        print(f"File not found: {path}", file=sys.stderr)
        return 1

    runtime = _runtime(app_settings)
    await runtime.initialize()
    job = await runtime.queue.add_job(
        JobType.PDF,
        str(path),
        priority=args.priority,
        job_specific_data={"file_name": path.name, "file_size": path.stat().st_size},
        original_file_name=path.name,
    )
    print(f"Queued pdf job {job.id}")
    print(f"  File:     {path}")
    print(f"  Priority: {job.priority}")
    return 0


async def _handle_run(app_settings: Settings) -> int:
    from src.main import run_forever

    await run_forever(_runtime(app_settings, processing=True))
    return 0


async def _handle_status(args: argparse.Namespace, app_settings: Settings) -> int:
    runtime = _runtime(app_settings)
    await runtime.initialize()
    job = await runtime.job_store.get_by_id(args.job_id)
    if job is None:
        print(f"Job not found: {args.job_id}", file=sys.stderr)
        return 1
    print(json.dumps(job.model_dump(mode="json"), indent=2))
    return 0


async def _handle_stats(app_settings: Settings) -> int:
    runtime = _runtime(app_settings)
    await runtime.initialize()
    stats = await runtime.queue.get_stats()

    print("Job Statistics")
    print("=" * 40)
    for status in JobStatus:
        print(f"  {status.value:<18} {stats.get(status.value, 0)}")
    print(f"  {'total':<18} {sum(stats.values())}")
    return 0


async def _handle_retry(args: argparse.Namespace, app_settings: Settings) -> int:
    runtime = _runtime(app_settings)
    await runtime.initialize()
    if await runtime.queue.retry_job(args.job_id):
        print(f"Job {args.job_id} re-queued.")
        return 0
    print(f"Job {args.job_id} is not failed or retry_pending.", file=sys.stderr)
    return 1


async def _handle_cancel(args: argparse.Namespace, app_settings: Settings) -> int:
    runtime = _runtime(app_settings)
    await runtime.initialize()
    if await runtime.queue.cancel_job(args.job_id):
        print(f"Job {args.job_id} cancelled.")
        return 0
    print(f"Job {args.job_id} not found or already finished.", file=sys.stderr)
    return 1


async def _handle_cleanup(args: argparse.Namespace, app_settings: Settings) -> int:
    runtime = _runtime(app_settings)
    await runtime.initialize()
    days = args.days if args.days is not None else app_settings.job_retention_days
    removed = await runtime.maintenance.purge_old_jobs(days)
    print(f"Deleted {removed} jobs finished more than {days} days ago.")
    return 0


async def _handle_reset_embeddings(args: argparse.Namespace, app_settings: Settings) -> int:
    runtime = _runtime(app_settings)
    await runtime.initialize()
    count = await runtime.maintenance.reset_failed_embeddings(args.object_ids or None)
    print(f"Reset {count} objects to parsed.")
    return 0


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the ingestion CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m src.cli.ingest",
        description="Manage the durable ingestion job queue.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Queue commands")

    # -- add-url --
    url_parser = subparsers.add_parser("add-url", help="Queue a web page")
    url_parser.add_argument("--url", required=True, help="Page URL")
    url_parser.add_argument("--title", default=None, help="Title hint")
    url_parser.add_argument("--priority", type=int, default=0, help="Higher runs first")

    # -- add-pdf --
    pdf_parser = subparsers.add_parser("add-pdf", help="Queue a local PDF file")
    pdf_parser.add_argument("--file", required=True, help="Path to the PDF file")
    pdf_parser.add_argument("--priority", type=int, default=0, help="Higher runs first")

    # -- run --
    subparsers.add_parser("run", help="Process jobs until interrupted")

    # -- status --
    status_parser = subparsers.add_parser("status", help="Show one job")
    status_parser.add_argument("--job-id", required=True, dest="job_id")

    # -- stats --
    subparsers.add_parser("stats", help="Show job counts per status")

    # -- retry --
    retry_parser = subparsers.add_parser("retry", help="Re-queue a failed job")
    retry_parser.add_argument("--job-id", required=True, dest="job_id")

    # -- cancel --
    cancel_parser = subparsers.add_parser("cancel", help="Cancel a job that is not running")
    cancel_parser.add_argument("--job-id", required=True, dest="job_id")

    # -- cleanup --
    cleanup_parser = subparsers.add_parser("cleanup", help="Delete old finished jobs")
    cleanup_parser.add_argument(
        "--days", type=int, default=None, help="Retention window (default: JOB_RETENTION_DAYS)"
    )

    # -- reset-embeddings --
    reset_parser = subparsers.add_parser(
        "reset-embeddings", help="Send embedding_failed objects back to parsed"
    )
    reset_parser.add_argument(
        "--object-id",
        action="append",
        dest="object_ids",
        default=None,
        help="Limit to this object (repeatable); all failed objects when omitted",
    )

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def _dispatch(args: argparse.Namespace, app_settings: Settings) -> int:
    handlers = {
        "add-url": lambda: _handle_add_url(args, app_settings),
        "add-pdf": lambda: _handle_add_pdf(args, app_settings),
        "run": lambda: _handle_run(app_settings),
        "status": lambda: _handle_status(args, app_settings),
        "stats": lambda: _handle_stats(app_settings),
        "retry": lambda: _handle_retry(args, app_settings),
        "cancel": lambda: _handle_cancel(args, app_settings),
        "cleanup": lambda: _handle_cleanup(args, app_settings),
        "reset-embeddings": lambda: _handle_reset_embeddings(args, app_settings),
    }
    return asyncio.run(handlers[args.command]())


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.

    Parses the subcommand, loads Settings from the environment / .env
    file, configures logging and dispatches to the handler.  Exits with
    the handler's return code; ingestion errors exit with 1.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    app_settings = Settings()
    configure_logging(
        log_level=app_settings.log_level,
        json_output=(app_settings.app_env == "production"),
    )

    try:
        exit_code = _dispatch(args, app_settings)
    except IngestionError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        exit_code = 1
    except KeyboardInterrupt:
        exit_code = 130
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
