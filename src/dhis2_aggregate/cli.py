from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer

from dhis2_aggregate.config import Settings, load_settings
from dhis2_aggregate.errors import ExportValidationError, StoreError
from dhis2_aggregate.logging_utils import (
    JsonlLogger,
    configure_logging,
    default_log_path,
    new_run_context,
    run_summary_event,
)
from dhis2_aggregate.pipeline import ExportOptions, export_aggregate
from dhis2_aggregate.report import default_export_path, load_export, write_export
from dhis2_aggregate.sources import (
    CouchDbStore,
    CouchSettingsProvider,
    ExportResult,
    FileSettingsProvider,
    SettingsProvider,
    submit_data_value_set,
)

app = typer.Typer(add_completion=False, help="DHIS2 aggregate export of CHT targets")


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        exists=True,
        dir_okay=False,
        file_okay=True,
        readable=True,
        help="Path to YAML config (optional)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging to stderr"),
) -> None:
    """Load settings and store them in Typer context."""

    configure_logging(verbose)
    settings = load_settings(config)
    settings.paths.logs_dir.mkdir(parents=True, exist_ok=True)
    ctx.obj = {"settings": settings}


def _new_logger(settings: Settings):
    run_ctx = new_run_context()
    logger = JsonlLogger(default_log_path(settings.paths.logs_dir, now_utc=run_ctx.started_at_utc), run_ctx)
    return run_ctx, logger


def _submit(settings: Settings, result: ExportResult, logger: JsonlLogger) -> str:
    submitted = submit_data_value_set(result.to_payload(), cfg=settings.dhis2)
    event = {
        "event": "submit_result",
        "data_set": result.data_set,
        "period": result.period,
        "status": submitted.status,
        "message": submitted.message,
        "import_count": submitted.import_count,
        "http_status": submitted.http_status,
    }
    if submitted.error_type:
        event["error_type"] = submitted.error_type
    if submitted.error_message:
        event["error_message"] = submitted.error_message
    logger.log(event)

    typer.echo(f"submit {submitted.status}: {submitted.message}")
    return submitted.status


@app.command("export")
def export(
    ctx: typer.Context,
    data_set: Optional[str] = typer.Option(None, "--data-set", help="DHIS2 dataSet guid"),
    date_from: Optional[str] = typer.Option(
        None, "--from", help="Any date in the reporting month (YYYY-MM-DD or epoch millis)"
    ),
    org_unit: Optional[str] = typer.Option(None, "--org-unit", help="Only facilities under this org unit"),
    human_readable: bool = typer.Option(False, "--human-readable", help="Relabel codes with names and target ids"),
    settings_file: Optional[Path] = typer.Option(
        None, "--settings-file", help="Read app settings from a JSON/YAML file instead of CouchDB"
    ),
    fmt: str = typer.Option("json", "--format", help="json or csv"),
    output: Optional[Path] = typer.Option(None, "--output", help="Output path (default: exports dir)"),
    as_of: Optional[datetime] = typer.Option(
        None, "--as-of", help="Completion date (YYYY-MM-DD). Defaults to today."
    ),
    submit: bool = typer.Option(False, "--submit", help="POST the payload to DHIS2 after writing it"),
) -> None:
    """Build the dataValueSet for one dataset and month."""

    settings: Settings = ctx.obj["settings"]
    run_ctx, logger = _new_logger(settings)

    logger.log(
        {
            "event": "command_start",
            "command": "export",
            "data_set": data_set,
            "from": date_from,
            "org_unit": org_unit,
            "human_readable": human_readable,
            "format": fmt,
            "export_tz": settings.export_tz,
            "couchdb_url": settings.couchdb.url,
            "couchdb_database": settings.couchdb.database,
        }
    )

    if fmt not in ("json", "csv"):
        typer.echo(f"unsupported format: {fmt}", err=True)
        raise typer.Exit(code=2)
    if submit and (human_readable or fmt != "json"):
        typer.echo("--submit needs the machine-readable JSON payload", err=True)
        raise typer.Exit(code=2)

    store = CouchDbStore(settings.couchdb)
    settings_provider: SettingsProvider = (
        FileSettingsProvider(settings_file)
        if settings_file is not None
        else CouchSettingsProvider(store, settings.couchdb.settings_doc_id)
    )

    filters = {"dataSet": data_set, "date": {"from": date_from}, "orgUnit": org_unit}
    try:
        result = export_aggregate(
            filters,
            ExportOptions(human_readable=human_readable),
            store=store,
            settings_provider=settings_provider,
            contacts_view=settings.couchdb.contacts_view,
            tz=settings.export_tz,
            now=as_of,
            max_workers=settings.fetch_workers,
        )
    except ExportValidationError as exc:
        logger.log({"event": "export_failed", **exc.to_dict()})
        logger.log(run_summary_event(ctx=run_ctx, status="error"))
        typer.echo(json.dumps(exc.to_dict()), err=True)
        raise typer.Exit(code=2)
    except (StoreError, FileNotFoundError, ValueError) as exc:
        logger.log(
            {
                "event": "export_failed",
                "error_type": type(exc).__name__,
                "error_message": str(exc),
            }
        )
        logger.log(run_summary_event(ctx=run_ctx, status="error"))
        typer.echo(f"export failed: {type(exc).__name__}: {exc}", err=True)
        raise typer.Exit(code=1)

    logger.log(
        {
            "event": "export_built",
            "data_set": result.data_set,
            "period": result.period,
            "complete_date": result.complete_date,
            "data_values": len(result.data_values),
        }
    )

    out_path = output or default_export_path(settings.paths.exports_dir, result, fmt)
    written = write_export(result, out_path, fmt)
    logger.log(
        {
            "event": "payload_written",
            "path": str(written.path),
            "format": written.fmt,
            "data_values": written.data_values,
        }
    )
    typer.echo(str(written.path))

    status = "ok"
    if submit:
        status = _submit(settings, result, logger)

    logger.log(run_summary_event(ctx=run_ctx, status=status, data_values=len(result.data_values)))
    if status in ("error", "missing"):
        raise typer.Exit(code=3)


@app.command("submit")
def submit(
    ctx: typer.Context,
    payload: Path = typer.Option(..., "--payload", help="JSON dataValueSet written by `export`"),
) -> None:
    """POST a previously exported dataValueSet to DHIS2."""

    settings: Settings = ctx.obj["settings"]
    run_ctx, logger = _new_logger(settings)

    logger.log({"event": "command_start", "command": "submit", "payload": str(payload), "dhis2_url": settings.dhis2.url})

    try:
        result = load_export(payload)
    except (FileNotFoundError, ValueError) as exc:
        logger.log({"event": "payload_invalid", "error_type": type(exc).__name__, "error_message": str(exc)})
        logger.log(run_summary_event(ctx=run_ctx, status="error"))
        typer.echo(f"invalid payload: {exc}", err=True)
        raise typer.Exit(code=2)

    status = _submit(settings, result, logger)
    logger.log(run_summary_event(ctx=run_ctx, status=status, data_values=len(result.data_values)))
    if status in ("error", "missing"):
        raise typer.Exit(code=3)


if __name__ == "__main__":
    app()
