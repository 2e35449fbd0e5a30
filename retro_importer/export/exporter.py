"""Export source incidents, with their secondary records, to a JSONL bundle stream."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterator, Protocol

from pydantic import TypeAdapter, ValidationError

from retro_importer.core.exceptions import IncidentIoException, MalformedRecordError
from retro_importer.core.files import append_jsonl, clear_file, write_json

logger = logging.getLogger(__name__)

BUNDLES_FILENAME = "incidents.jsonl"
MANIFEST_FILENAME = "manifest.json"

_datetime_adapter = TypeAdapter(dt.datetime)


class SourceClient(Protocol):
    base_url: str

    def iter_incidents(self, *, status_category: str | None = None) -> Iterator[dict[str, Any]]: ...
    def list_follow_ups(self, incident_id: str) -> list[dict[str, Any]]: ...
    def list_incident_updates(self, incident_id: str) -> list[dict[str, Any]]: ...
    def list_related_incidents(self, incident_id: str) -> list[dict[str, Any]]: ...


def parse_timestamp(value: str | dt.datetime | None) -> dt.datetime | None:
    if value is None or value == "":
        return None
    try:
        parsed = _datetime_adapter.validate_python(value)
    except ValidationError as exc:
        raise MalformedRecordError(f"Invalid timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


@dataclass
class ExportOptions:
    output_dir: Path
    created_after: dt.datetime | None = None
    created_before: dt.datetime | None = None
    status_category: str | None = None
    limit: int | None = None


@dataclass
class ExportCounts:
    incidents: int = 0
    follow_ups: int = 0
    incident_updates: int = 0
    related_incidents: int = 0
    warnings: list[str] = field(default_factory=list)


class Exporter:
    def __init__(self, client: SourceClient, *, progress_every: int = 10) -> None:
        self.client = client
        self.progress_every = max(1, progress_every)

    def _in_window(self, incident: dict[str, Any], options: ExportOptions) -> bool:
        if options.created_after is None and options.created_before is None:
            return True
        created_at = parse_timestamp(incident.get("created_at"))
        if created_at is None:
            return True
        if options.created_after and created_at < options.created_after:
            return False
        if options.created_before and created_at > options.created_before:
            return False
        return True

    def _secondary(
        self,
        label: str,
        fetch: Callable[[str], list[dict[str, Any]]],
        incident: dict[str, Any],
        counts: ExportCounts,
    ) -> list[dict[str, Any]]:
        try:
            return list(fetch(str(incident.get("id") or "")))
        except IncidentIoException as exc:
            message = f"Failed to fetch {label} for incident {incident.get('reference')}: {exc.message}"
            counts.warnings.append(message)
            logger.warning(message)
            return []

    def build_bundle(self, incident: dict[str, Any], counts: ExportCounts) -> dict[str, Any]:
        bundle: dict[str, Any] = {"incident": incident}
        follow_ups = self._secondary("follow-ups", self.client.list_follow_ups, incident, counts)
        updates = self._secondary("incident updates", self.client.list_incident_updates, incident, counts)
        related = self._secondary("related incidents", self.client.list_related_incidents, incident, counts)
        if follow_ups:
            bundle["follow_ups"] = follow_ups
            counts.follow_ups += len(follow_ups)
        if updates:
            bundle["incident_updates"] = updates
            counts.incident_updates += len(updates)
        if related:
            bundle["related_incidents"] = related
            counts.related_incidents += len(related)
        return bundle

    def export(self, options: ExportOptions) -> ExportCounts:
        output_dir = Path(options.output_dir)
        output_file = output_dir / BUNDLES_FILENAME
        manifest_file = output_dir / MANIFEST_FILENAME
        logger.info("Starting export to %s", output_file)

        # Re-exporting must not append to a previous run's stream.
        clear_file(output_file)
        counts = ExportCounts()
        for incident in self.client.iter_incidents(status_category=options.status_category):
            if options.limit is not None and counts.incidents >= options.limit:
                logger.info("Reached limit of %s incidents", options.limit)
                break
            if not self._in_window(incident, options):
                continue
            logger.debug("Exporting incident %s (%s)", incident.get("reference"), incident.get("name"))
            append_jsonl(output_file, self.build_bundle(incident, counts))
            counts.incidents += 1
            if counts.incidents % self.progress_every == 0:
                logger.info("Exported %s incidents...", counts.incidents)

        write_json(
            manifest_file,
            {
                "exportedAt": dt.datetime.now(dt.timezone.utc).isoformat(),
                "filters": {
                    "createdAfter": options.created_after.isoformat() if options.created_after else None,
                    "createdBefore": options.created_before.isoformat() if options.created_before else None,
                    "statusCategory": options.status_category,
                    "limit": options.limit,
                },
                "counts": {
                    "incidents": counts.incidents,
                    "followUps": counts.follow_ups,
                    "incidentUpdates": counts.incident_updates,
                    "relatedIncidents": counts.related_incidents,
                },
                "sourceBaseUrl": self.client.base_url,
            },
        )
        logger.info(
            "Exported %s incidents (%s follow-ups, %s incident updates, %s related incidents)",
            counts.incidents,
            counts.follow_ups,
            counts.incident_updates,
            counts.related_incidents,
        )
        logger.info("Manifest: %s", manifest_file)
        return counts
