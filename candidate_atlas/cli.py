#!/usr/bin/env python3
"""
Command line interface for candidate spreadsheet ingestion.

Commands:
    ingest       Import one or more spreadsheets into the candidate store
    map-headers  Show the AI header mapping for a spreadsheet
    preview      Print the first rows of a spreadsheet as JSON objects
    status       Show tracked ingestion status for files
"""

import argparse
import json
import sys
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from candidate_atlas.context import IngestionContext
from candidate_atlas.core.config import Settings, settings as default_settings
from candidate_atlas.core.exceptions import CandidateAtlasError, ConfigurationError
from candidate_atlas.core.logging_config import configure_logging
from candidate_atlas.domain.imports.header_mapping import MAX_SAMPLE_ROWS, map_headers_with_ai
from candidate_atlas.domain.imports.orchestrator import OUTCOME_FAILED, OUTCOME_SKIPPED, RunSummary, discover_files
from candidate_atlas.integrations.spreadsheets import HeaderEvent, RowEvent

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_MAPPING_ERROR = 2

console = Console()
err_console = Console(stderr=True)


def _print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def _settings_for(args: argparse.Namespace, base: Settings) -> Settings:
    """Settings with any flag given on the command line applied on top."""
    overrides: Dict[str, Any] = {}
    for flag, name in (
        ("batch_size", "batch_size"),
        ("status_store", "status_store"),
        ("status_file", "status_file"),
        ("resume", "resume"),
        ("max_retries", "max_retries"),
        ("retry_base_ms", "retry_base_ms"),
        ("ai_mapping", "ai_header_mapping"),
        ("default_country_code", "default_country_code"),
    ):
        value = getattr(args, flag, None)
        if value is not None:
            overrides[name] = value
    if getattr(args, "fail_fast", False):
        overrides["fail_fast"] = True
    if not overrides:
        return base
    # model_copy skips validation; re-validate so field bounds apply to flags too.
    try:
        return Settings.model_validate({**base.model_dump(), **overrides})
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        )
        raise ConfigurationError(f"Invalid command line options: {problems}") from exc


def _print_summary(summary: RunSummary) -> None:
    table = Table(title="Ingestion Summary")
    table.add_column("File", style="cyan")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Rows", justify="right")
    table.add_column("Persisted", justify="right")
    table.add_column("Dropped", justify="right")
    table.add_column("Conflicts", justify="right")
    table.add_column("Error", style="red")

    styles = {OUTCOME_FAILED: "red", OUTCOME_SKIPPED: "yellow"}
    for outcome in summary.outcomes:
        style = styles.get(outcome.status, "green")
        table.add_row(
            outcome.file_path,
            f"[{style}]{outcome.status}[/{style}]",
            str(outcome.attempts),
            str(outcome.processed_rows),
            str(outcome.persisted),
            str(outcome.dropped_rows),
            str(outcome.conflicts),
            outcome.error or "",
        )
    console.print(table)
    console.print(
        f"[bold]{len(summary.processed)} processed, {len(summary.failed)} failed, "
        f"{len(summary.skipped)} skipped, {summary.total_persisted} candidates persisted[/bold]"
    )


def _read_samples(context: IngestionContext, file_path: str, sheet_name: Optional[str], limit: int):
    """Header of the first sheet and up to limit data rows from it."""
    header: Optional[List[str]] = None
    rows: List[RowEvent] = []
    with context.reader.open(file_path, sheet_name) as stream:
        for event in stream:
            if isinstance(event, HeaderEvent):
                if header is not None:
                    break
                header = event.header
                continue
            if len(rows) >= limit:
                break
            rows.append(event)
    return header, rows


def cmd_ingest(args: argparse.Namespace, settings: Settings) -> int:
    files = discover_files(args.file, args.dir)
    if not files:
        err_console.print("[red]No spreadsheet files given; use --file and/or --dir[/red]")
        return EXIT_FAILED

    with IngestionContext.from_settings(settings) as context:
        orchestrator = context.create_orchestrator()
        summary = orchestrator.run(files, sheet_name=args.sheet, batch_size=settings.batch_size)

    _print_summary(summary)
    return EXIT_OK if summary.ok else EXIT_FAILED


def cmd_map_headers(args: argparse.Namespace, settings: Settings) -> int:
    with IngestionContext.from_settings(settings) as context:
        header, rows = _read_samples(context, args.file, args.sheet, MAX_SAMPLE_ROWS)
        if not header:
            err_console.print(f"[red]No header row found in {args.file}[/red]")
            return EXIT_FAILED
        outcome = map_headers_with_ai(
            context.require_chat_client(),
            header,
            sample_rows=[row.record for row in rows],
        )

    _print_json(outcome.to_dict())
    return EXIT_OK if outcome.ok else EXIT_MAPPING_ERROR


def cmd_preview(args: argparse.Namespace, settings: Settings) -> int:
    with IngestionContext.from_settings(settings) as context:
        header, rows = _read_samples(context, args.file, args.sheet, args.rows)

    if header is None:
        err_console.print(f"[yellow]No header row found in {args.file}[/yellow]")
        return EXIT_OK
    _print_json({
        "sheet_name": rows[0].sheet_name if rows else None,
        "header": header,
        "rows": [{"row_number": row.row_number, "record": row.record} for row in rows],
    })
    return EXIT_OK


def cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    if settings.status_store == "none":
        err_console.print("[red]Status tracking is disabled; pass --status-store local|database[/red]")
        return EXIT_FAILED

    with IngestionContext.from_settings(settings) as context:
        tracker = context.create_tracker()
        tracker.ensure_ready()
        records = [(file_path, tracker.get_record(file_path)) for file_path in args.files]

    table = Table(title="Ingestion Status")
    table.add_column("File", style="cyan")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Rows", justify="right")
    table.add_column("Persisted", justify="right")
    table.add_column("Updated")
    table.add_column("Error", style="red")
    for file_path, record in records:
        if record is None:
            table.add_row(file_path, "[dim]untracked[/dim]", "", "", "", "", "")
            continue
        table.add_row(
            file_path,
            str(record.get("status") or ""),
            str(record.get("attempts") or 0),
            "" if record.get("processed_rows") is None else str(record["processed_rows"]),
            "" if record.get("persisted") is None else str(record["persisted"]),
            str(record.get("updated_at") or ""),
            str(record.get("error_message") or ""),
        )
    console.print(table)
    return EXIT_OK


def _add_status_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--status-store",
        choices=["none", "local", "database"],
        help="Where per-file ingestion status is kept (default: STATUS_STORE or none)",
    )
    parser.add_argument("--status-file", help="JSON status file for --status-store local")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="candidate-atlas",
        description="Candidate Atlas - ingest candidate spreadsheets into a deduplicated store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s ingest --dir ./exports --status-store local
  %(prog)s ingest --file candidates.xlsx --sheet Sheet1 --batch-size 500
  %(prog)s map-headers --file candidates.xlsx
  %(prog)s preview --file candidates.csv --rows 5
        """,
    )
    parser.add_argument("--log-level", help="Logging level (default: LOG_LEVEL or INFO)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Import spreadsheets into the candidate store")
    ingest.add_argument("--file", action="append", default=[], help="Spreadsheet to import (repeatable)")
    ingest.add_argument("--dir", help="Directory scanned recursively for .xlsx, .xlsm and .csv files")
    ingest.add_argument("--sheet", help="Only import this sheet")
    ingest.add_argument("--batch-size", type=int, help="Candidates per bulk upsert (default: 1000)")
    _add_status_options(ingest)
    ingest.add_argument(
        "--resume",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Skip files already marked processed (default: on)",
    )
    ingest.add_argument("--fail-fast", action="store_true", help="Stop at the first file that fails")
    ingest.add_argument("--max-retries", type=int, help="Retries per file after the first attempt (default: 2)")
    ingest.add_argument("--retry-base-ms", type=int, help="Base backoff between retries in ms (default: 1000)")
    ingest.add_argument("--ai-mapping", choices=["off", "auto", "always"], help="AI header mapping assist")
    ingest.add_argument("--default-country-code", help="Country code for bare 10-digit phone numbers")
    ingest.set_defaults(handler=cmd_ingest)

    map_headers = subparsers.add_parser("map-headers", help="Print the AI header mapping for a spreadsheet")
    map_headers.add_argument("--file", required=True, help="Spreadsheet to inspect")
    map_headers.add_argument("--sheet", help="Sheet to inspect (default: first sheet)")
    map_headers.set_defaults(handler=cmd_map_headers)

    preview = subparsers.add_parser("preview", help="Print the first rows of a spreadsheet")
    preview.add_argument("--file", required=True, help="Spreadsheet to inspect")
    preview.add_argument("--sheet", help="Sheet to inspect (default: first sheet)")
    preview.add_argument("--rows", type=int, default=10, help="Number of data rows (default: 10)")
    preview.set_defaults(handler=cmd_preview)

    status = subparsers.add_parser("status", help="Show ingestion status for files")
    _add_status_options(status)
    status.add_argument("files", nargs="+", help="Files to look up")
    status.set_defaults(handler=cmd_status)

    return parser


def main(argv: Optional[Sequence[str]] = None, settings: Optional[Settings] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        run_settings = _settings_for(args, settings or default_settings)
        configure_logging(args.log_level or run_settings.log_level)
    except ConfigurationError as exc:
        err_console.print(f"[red]Error: {exc}[/red]")
        return EXIT_FAILED

    try:
        return args.handler(args, run_settings)
    except CandidateAtlasError as exc:
        err_console.print(f"[red]Error: {exc}[/red]")
        return EXIT_FAILED
    except KeyboardInterrupt:
        err_console.print("\n[yellow]Interrupted.[/yellow]")
        return 130


if __name__ == "__main__":
    sys.exit(main())
