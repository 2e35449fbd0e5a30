"""Result collection and the report / warnings files written after a run."""

from __future__ import annotations

import datetime as dt
import logging
from collections import Counter, defaultdict
from threading import Lock
from typing import Iterable

from retro_importer.importer.schemas import ImportReport, ImportResult, ImportSummary, WarningCount, WarningsReport
from retro_importer.mapping import warnings as w
from retro_importer.models.enums import ImportStatus, WarningKind

logger = logging.getLogger(__name__)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class ImportAccumulator:
    """Append-only, lock-guarded collection of per-incident results."""

    def __init__(self, total: int, *, progress_every: int = 10) -> None:
        self.total = total
        self.progress_every = max(1, progress_every)
        self._results: list[ImportResult] = []
        self._lock = Lock()

    def add(self, result: ImportResult) -> None:
        with self._lock:
            self._results.append(result)
            processed = len(self._results)
        if processed % self.progress_every == 0 or processed == self.total:
            logger.info("Progress: %s/%s", processed, self.total)

    def results(self) -> list[ImportResult]:
        with self._lock:
            return list(self._results)

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)


def summarize(results: Iterable[ImportResult]) -> ImportSummary:
    summary = ImportSummary()
    for result in results:
        summary.total += 1
        if result.status == ImportStatus.created:
            summary.created += 1
        elif result.status == ImportStatus.updated:
            summary.updated += 1
        elif result.status == ImportStatus.skipped:
            summary.skipped += 1
        else:
            summary.failed += 1
    return summary


def build_report(results: list[ImportResult], *, dry_run: bool = False, imported_at: dt.datetime | None = None) -> ImportReport:
    return ImportReport(
        imported_at=imported_at or _utcnow(),
        dry_run=dry_run,
        summary=summarize(results),
        results=list(results),
    )


def build_warnings_report(results: Iterable[ImportResult], *, generated_at: dt.datetime | None = None) -> WarningsReport:
    counts: Counter[str] = Counter()
    for result in results:
        counts.update(result.warnings)

    by_kind = {kind.value: 0 for kind in WarningKind}
    missing: dict[str, Counter[str]] = defaultdict(Counter)
    for message, count in counts.items():
        by_kind[w.classify(message).value] += count
        parsed = w.missing_option(message)
        if parsed:
            field_name, option = parsed
            missing[field_name][option] += count

    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    missing_by_field = {
        field_name: dict(sorted(options.items(), key=lambda item: (-item[1], item[0])))
        for field_name, options in sorted(missing.items())
    }
    return WarningsReport(
        generated_at=generated_at or _utcnow(),
        total_warnings=sum(counts.values()),
        unique_warnings=len(counts),
        by_kind=by_kind,
        missing_options_by_field=missing_by_field,
        warnings=[WarningCount(message=message, count=count) for message, count in ordered],
    )


def log_summary(report: ImportReport, warnings_report: WarningsReport, *, preview: int = 5) -> None:
    summary = report.summary
    logger.info("Import complete%s", " (dry run)" if report.dry_run else "")
    logger.info("Total: %s", summary.total)
    logger.info("  Created: %s", summary.created)
    logger.info("  Updated: %s", summary.updated)
    logger.info("  Skipped: %s", summary.skipped)
    logger.info("  Failed: %s", summary.failed)
    if not warnings_report.total_warnings:
        return
    logger.warning(
        "Total warnings: %s (%s unique)",
        warnings_report.total_warnings,
        warnings_report.unique_warnings,
    )
    for item in warnings_report.warnings[:preview]:
        logger.warning("  - %s (x%s)", item.message, item.count)
