"""Command line entry point: export, import and validate.

Usage examples:

    retro-importer validate
    retro-importer export --out ./export --status-category closed
    retro-importer import --in ./export --dry-run
    retro-importer import --in ./export --concurrency 5 --strict
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Sequence

from retro_importer.core.config import settings
from retro_importer.core.exceptions import RetroImporterException
from retro_importer.core.logging import setup_logging
from retro_importer.export.exporter import Exporter, ExportOptions, parse_timestamp
from retro_importer.importer.pipeline import ImportOptions, run_import
from retro_importer.integrations.incident_io.client import IncidentIoClient
from retro_importer.mapping.context import build_mapping_context
from retro_importer.models.enums import StatusCategory

logger = logging.getLogger("retro_importer.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="retro-importer",
        description="Export and import incidents between incident.io environments",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    export = subparsers.add_parser("export", help="Export incidents from the SOURCE environment")
    export.add_argument("--out", required=True, type=Path, help="Output directory for export files")
    export.add_argument("--created-after", default=None, help="Only incidents created after this ISO 8601 date")
    export.add_argument("--created-before", default=None, help="Only incidents created before this ISO 8601 date")
    export.add_argument(
        "--status-category",
        default=None,
        choices=[item.value for item in StatusCategory],
        help="Filter by status category",
    )
    export.add_argument("--limit", type=int, default=None, help="Maximum number of incidents to export")
    export.add_argument("--debug", action="store_true", help="Enable debug logging")

    imp = subparsers.add_parser("import", help="Import incidents into the TARGET environment as retrospective incidents")
    imp.add_argument("--in", dest="input_path", required=True, type=Path, help="Export directory or JSONL file")
    imp.add_argument("--dry-run", action="store_true", help="Preview the import without making changes")
    imp.add_argument(
        "--resume",
        action="store_true",
        help="Accepted for compatibility; the state file is always honoured",
    )
    imp.add_argument("--concurrency", type=int, default=settings.IMPORT_CONCURRENCY, help="Number of workers")
    imp.add_argument("--strict", action="store_true", help="Fail an incident when severity or status cannot be mapped")
    imp.add_argument("--state-file", type=Path, default=Path("state.json"), help="Path to the dedup state file")
    imp.add_argument("--report-file", type=Path, default=Path("import-report.json"), help="Path to the report file")
    imp.add_argument(
        "--warnings-file",
        type=Path,
        default=Path("import-warnings.json"),
        help="Path to the aggregated warnings file",
    )
    imp.add_argument(
        "--skip-existing",
        action="store_true",
        help="Skip incidents that were already imported instead of updating them",
    )
    imp.add_argument(
        "--no-external-id",
        action="store_true",
        help="Do not carry the numeric incident reference over as the external id",
    )
    imp.add_argument(
        "--placeholder-slack-channel",
        action="store_true",
        help="Send a placeholder Slack channel id so the target does not create channels",
    )
    imp.add_argument("--limit", type=int, default=None, help="Maximum number of bundles to import")
    imp.add_argument(
        "--with-source-context",
        action="store_true",
        help="Build the SOURCE configuration context for better mapping (requires SOURCE_API_KEY)",
    )
    imp.add_argument("--debug", action="store_true", help="Enable debug logging")

    validate = subparsers.add_parser("validate", help="Check credentials for SOURCE and TARGET")
    scope = validate.add_mutually_exclusive_group()
    scope.add_argument("--source", action="store_true", help="Validate SOURCE only")
    scope.add_argument("--target", action="store_true", help="Validate TARGET only")
    validate.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def run_export(args: argparse.Namespace) -> int:
    options = ExportOptions(
        output_dir=args.out,
        created_after=parse_timestamp(args.created_after),
        created_before=parse_timestamp(args.created_before),
        status_category=args.status_category,
        limit=args.limit,
    )
    with IncidentIoClient.for_environment("source") as client:
        Exporter(client, progress_every=settings.PROGRESS_EVERY).export(options)
    return 0


def run_import_command(args: argparse.Namespace) -> int:
    options = ImportOptions(
        input_path=args.input_path,
        dry_run=args.dry_run,
        concurrency=max(1, args.concurrency),
        strict=args.strict,
        state_file=args.state_file,
        report_file=args.report_file,
        warnings_file=args.warnings_file,
        update_existing=not args.skip_existing,
        set_external_id=settings.SET_EXTERNAL_ID and not args.no_external_id,
        placeholder_slack_channel=args.placeholder_slack_channel,
        limit=args.limit,
    )
    source_context = None
    if args.with_source_context:
        logger.info("Building source environment context...")
        with IncidentIoClient.for_environment("source") as source_client:
            source_context = build_mapping_context(source_client)

    with IncidentIoClient.for_environment("target") as client:
        report = run_import(client, options, source_context=source_context)
    return 0 if not report.summary.failed else 2


def run_validate(args: argparse.Namespace) -> int:
    environments = ["source", "target"]
    if args.source:
        environments = ["source"]
    elif args.target:
        environments = ["target"]
    for environment in environments:
        logger.info("Validating %s environment...", environment.upper())
        with IncidentIoClient.for_environment(environment) as client:
            severities = client.list_severities()
        logger.info("%s environment: OK (found %s severities)", environment.upper(), len(severities))
    return 0


COMMANDS = {
    "export": run_export,
    "import": run_import_command,
    "validate": run_validate,
}


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(settings.LOG_LEVEL, debug=args.debug)
    try:
        return COMMANDS[args.command](args)
    except RetroImporterException as exc:
        logger.error("%s failed: %s", args.command.capitalize(), exc.message)
        logger.debug("Error details: %s", exc.to_dict())
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
