"""Concurrent import run: load bundles, fan out to workers, persist state and reports."""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from retro_importer.core.config import settings
from retro_importer.core.exceptions import MalformedRecordError
from retro_importer.core.files import iter_jsonl, write_json
from retro_importer.importer.report import (
    ImportAccumulator,
    build_report,
    build_warnings_report,
    log_summary,
)
from retro_importer.importer.schemas import ImportReport, ImportResult
from retro_importer.importer.state import DedupState
from retro_importer.importer.translator import TranslationOptions
from retro_importer.importer.upsert import TargetClient, UpsertEngine, UpsertPolicy
from retro_importer.integrations.incident_io.schemas import IncidentBundle
from retro_importer.mapping.context import ConfigurationClient, MappingContext, build_mapping_context
from retro_importer.mapping.resolvers import check_custom_field_values

logger = logging.getLogger(__name__)

BUNDLES_FILENAME = "incidents.jsonl"


@dataclass
class ImportOptions:
    input_path: Path
    dry_run: bool = False
    concurrency: int = settings.IMPORT_CONCURRENCY
    strict: bool = False
    state_file: Path = Path("state.json")
    report_file: Path = Path("import-report.json")
    warnings_file: Path = Path("import-warnings.json")
    update_existing: bool = True
    set_external_id: bool = settings.SET_EXTERNAL_ID
    placeholder_slack_channel: bool = False
    limit: int | None = None
    progress_every: int = settings.PROGRESS_EVERY

    @property
    def bundles_path(self) -> Path:
        path = Path(self.input_path)
        if path.is_dir():
            return path / BUNDLES_FILENAME
        return path


class ImportClient(ConfigurationClient, TargetClient, Protocol):
    """Everything an import run needs from the target environment."""


def load_bundles(path: str | Path, *, limit: int | None = None) -> list[IncidentBundle]:
    """Read every bundle in file order. One bad line aborts the whole run."""
    bundles: list[IncidentBundle] = []
    for line_number, value in iter_jsonl(path):
        if limit is not None and len(bundles) >= limit:
            break
        try:
            bundle = IncidentBundle.model_validate(value)
        except ValidationError as exc:
            raise MalformedRecordError(
                f"{path}:{line_number}: invalid incident bundle ({exc.error_count()} error(s))",
                line=line_number,
            ) from exc
        try:
            check_custom_field_values(bundle.incident.custom_field_values)
        except MalformedRecordError as exc:
            raise MalformedRecordError(f"{path}:{line_number}: {exc.message}", line=line_number) from exc
        bundles.append(bundle)
    return bundles


def _drain(
    work: "queue.Queue[IncidentBundle]",
    engine: UpsertEngine,
    accumulator: ImportAccumulator,
    stop: threading.Event,
) -> None:
    while not stop.is_set():
        try:
            bundle = work.get_nowait()
        except queue.Empty:
            return
        try:
            accumulator.add(engine.process(bundle))
        except MalformedRecordError:
            stop.set()
            raise
        finally:
            work.task_done()


def run_bundles(
    bundles: list[IncidentBundle],
    engine: UpsertEngine,
    *,
    concurrency: int,
    progress_every: int = 10,
) -> list[ImportResult]:
    """Process ``bundles`` on a fixed pool of workers and return results in completion order.

    A ``MalformedRecordError`` stops every worker before its next bundle and is re-raised.
    """
    work: "queue.Queue[IncidentBundle]" = queue.Queue()
    for bundle in bundles:
        work.put(bundle)
    accumulator = ImportAccumulator(len(bundles), progress_every=progress_every)
    stop = threading.Event()
    workers = max(1, min(concurrency, len(bundles) or 1))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="import-worker") as executor:
        futures = [executor.submit(_drain, work, engine, accumulator, stop) for _ in range(workers)]
        for future in futures:
            future.result()
    return accumulator.results()


def run_import(
    client: ImportClient,
    options: ImportOptions,
    *,
    source_context: MappingContext | None = None,
) -> ImportReport:
    bundles_path = options.bundles_path
    logger.info("Reading bundles from %s", bundles_path)
    bundles = load_bundles(bundles_path, limit=options.limit)
    logger.info("Found %s incident(s) to import", len(bundles))

    target_context = build_mapping_context(client)
    state = DedupState.load(options.state_file)
    engine = UpsertEngine(
        client,
        target_context,
        state,
        source=source_context,
        policy=UpsertPolicy(
            dry_run=options.dry_run,
            strict=options.strict,
            update_existing=options.update_existing,
        ),
        translation=TranslationOptions(
            set_external_id=options.set_external_id,
            placeholder_slack_channel=options.placeholder_slack_channel,
        ),
    )

    if options.dry_run:
        logger.info("[DRY RUN] No changes will be made")
    try:
        results = run_bundles(
            bundles,
            engine,
            concurrency=options.concurrency,
            progress_every=options.progress_every,
        )
    finally:
        # incidents created before an aborted run stay recorded
        if not options.dry_run:
            state.save(options.state_file)
            logger.info("State: %s", options.state_file)

    report = build_report(results, dry_run=options.dry_run)
    warnings_report = build_warnings_report(results, generated_at=report.imported_at)
    write_json(options.report_file, report.model_dump(mode="json", by_alias=True))
    write_json(options.warnings_file, warnings_report.model_dump(mode="json", by_alias=True))
    log_summary(report, warnings_report)
    logger.info("Report: %s", options.report_file)
    return report
