"""
Operator commands for the contact upload worker (``flask contacts ...``).
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask.cli import ScriptInfo

from contact_intake.errors import ContactIntakeError
from contact_intake.importer.celery_app import DEFAULT_QUEUE_NAME, get_celery_app
from contact_intake.importer.pipeline.error_report import build_error_report
from contact_intake.importer.pipeline.processor import process_upload
from contact_intake.importer.tasks import HEALTHCHECK_TASK
from contact_intake.importer.utils import resolve_upload_directory
from contact_intake.models import ContactUpload, db


@click.group(name="contacts")
def contacts_cli():
    """Contact upload management commands."""


def _resolve_celery(app) -> Optional[Celery]:
    celery_app = get_celery_app(app)
    if celery_app is None:
        raise click.ClickException(
            "Contact upload Celery app is unavailable. Ensure init_importer ran before worker commands."
        )
    return celery_app


@contacts_cli.group(name="worker")
@click.pass_context
def worker_group(ctx):
    """Manage the contact upload background worker."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not app.config.get("WORKER_ENABLED"):
        click.echo(
            "Warning: WORKER_ENABLED is false. Commands will still run, "
            "but enable the flag to surface accurate health status.",
            err=True,
        )


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=int, help="Number of worker processes/threads.")
@click.option(
    "--pool",
    type=str,
    help="Celery pool implementation (e.g., 'prefork', 'solo', 'threads').",
)
@click.option(
    "--queues",
    default=DEFAULT_QUEUE_NAME,
    show_default=True,
    help="Comma-separated queue list to consume.",
)
@click.pass_context
def worker_run(ctx, loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: str):
    """
    Start the Celery worker in the current process.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    celery_app = _resolve_celery(app)

    argv = ["worker", "--loglevel", loglevel, "-Q", queues]
    if concurrency:
        argv.extend(["--concurrency", str(concurrency)])
    if pool:
        argv.extend(["--pool", pool])

    pool_msg = f", pool: {pool}" if pool else ""
    click.echo(f"Starting contact upload worker (queues: {queues}, loglevel: {loglevel}{pool_msg})")
    try:
        celery_app.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
@click.pass_context
def worker_ping(ctx, timeout: float):
    """
    Validate worker connectivity by executing the heartbeat task.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    celery_app = _resolve_celery(app)
    task = celery_app.tasks.get(HEALTHCHECK_TASK)
    if task is None:
        raise click.ClickException(f"Heartbeat task '{HEALTHCHECK_TASK}' is not registered.")

    result = task.apply_async()
    try:
        payload = result.get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc

    click.echo(json.dumps(payload, indent=2))


@contacts_cli.command("process")
@click.argument("upload_id")
@click.option(
    "--file",
    "file_path",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    help="Path to the stored spreadsheet (defaults to the upload directory copy).",
)
@click.option("--summary-json", is_flag=True, help="Emit a machine-readable summary payload.")
@click.pass_context
def process_command(ctx, upload_id: str, file_path: Optional[Path], summary_json: bool):
    """
    Process a pending upload inline, bypassing the queue.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    with app.app_context():
        upload = db.session.get(ContactUpload, upload_id)
        if upload is None:
            raise click.ClickException(f"Upload {upload_id} not found.")
        path = file_path or resolve_upload_directory(app) / upload.filename
        try:
            summary = process_upload(upload.id, path, upload.contact_group_id)
        except Exception as exc:
            raise click.ClickException(f"Upload {upload_id} failed: {exc}") from exc

    if summary_json:
        click.echo(json.dumps(summary.to_dict(), indent=2))
        return
    click.echo(
        f"Upload {summary.upload_id} {summary.outcome}: "
        f"processed={summary.processed_records} accepted={summary.accepted_records} "
        f"rejected={summary.rejected_records} (total={summary.total_records})"
    )


@contacts_cli.command("report")
@click.argument("upload_id")
@click.option("--tenant", "tenant_id", required=True, help="Tenant that owns the upload.")
@click.option(
    "--output",
    type=click.Path(path_type=Path, dir_okay=False),
    help="Write the CSV to this path instead of stdout.",
)
@click.pass_context
def report_command(ctx, upload_id: str, tenant_id: str, output: Optional[Path]):
    """
    Render the row error report for a finished upload.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    with app.app_context():
        try:
            report = build_error_report(upload_id, tenant_id)
        except ContactIntakeError as exc:
            raise click.ClickException(exc.message) from exc

    if output is None:
        click.echo(report.content, nl=False)
        return
    output.write_text(report.content, encoding="utf-8")
    click.echo(f"Wrote {report.filename} to {output}")
