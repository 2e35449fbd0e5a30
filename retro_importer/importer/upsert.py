"""Create-or-update decision for one incident bundle.

The engine decides, per bundle, whether the target already holds the incident
(dedup state first, then an exact reference lookup) and either updates it or
creates a new retrospective incident. A create rejected because the external
id is taken falls back to the update path against the incident that owns it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from retro_importer.core.exceptions import (
    IncidentIoApiError,
    IncidentIoException,
    MalformedRecordError,
    StrictMappingError,
)
from retro_importer.importer.schemas import ImportResult
from retro_importer.importer.state import DedupState
from retro_importer.importer.translator import TranslatedIncident, TranslationOptions, translate_incident
from retro_importer.integrations.incident_io.schemas import Incident, IncidentBundle
from retro_importer.mapping import warnings as w
from retro_importer.mapping.context import MappingContext
from retro_importer.models.enums import ImportStatus

logger = logging.getLogger(__name__)

DRY_RUN_TARGET_ID = "dry-run-id"
JIRA_PROVIDER = "jira"
JIRA_RESOURCE_TYPE = "jira_issue"


class TargetClient(Protocol):
    def find_incident_by_reference(self, reference: str) -> dict[str, Any] | None: ...
    def create_incident(self, payload: dict[str, Any]) -> dict[str, Any]: ...
    def update_incident(self, incident_id: str, payload: dict[str, Any]) -> dict[str, Any]: ...
    def create_incident_attachment(self, incident_id: str, *, external_id: str, resource_type: str) -> dict[str, Any]: ...


@dataclass(frozen=True)
class UpsertPolicy:
    dry_run: bool = False
    strict: bool = False
    update_existing: bool = True


def _incident_id(payload: dict[str, Any] | None) -> str:
    return str((payload or {}).get("id") or "")


class UpsertEngine:
    def __init__(
        self,
        client: TargetClient,
        target: MappingContext,
        state: DedupState,
        *,
        source: MappingContext | None = None,
        policy: UpsertPolicy | None = None,
        translation: TranslationOptions | None = None,
    ) -> None:
        self.client = client
        self.target = target
        self.source = source
        self.state = state
        self.policy = policy or UpsertPolicy()
        self.translation = translation or TranslationOptions()

    def process(self, bundle: IncidentBundle) -> ImportResult:
        """Run one bundle to a terminal result.

        Only a malformed record escapes; it is fatal to the whole run.
        """
        incident = bundle.incident
        result = ImportResult(source_incident_id=incident.id, source_reference=incident.reference or None)
        try:
            self._process(incident, result)
        except MalformedRecordError:
            raise
        except Exception as exc:  # noqa: BLE001
            result.status = ImportStatus.failed
            result.error = str(exc) or exc.__class__.__name__
            logger.error("Failed to import %s: %s", incident.reference or incident.id, result.error)
        return result

    def find_existing(self, incident: Incident) -> str | None:
        known = self.state.get(incident.id)
        if known:
            return known
        if not incident.reference:
            return None
        found = _incident_id(self.client.find_incident_by_reference(incident.reference))
        if not found:
            return None
        logger.info("Found %s in target as %s", incident.reference, found)
        if not self.policy.dry_run:
            self.state.record(incident.id, found)
        return found

    def _check_strict(self, incident: Incident, translated: TranslatedIncident) -> None:
        if not self.policy.strict:
            return
        if not translated.severity_id:
            raise StrictMappingError("severity", reference=incident.reference)
        if not translated.status_id:
            raise StrictMappingError("status", reference=incident.reference)

    def _process(self, incident: Incident, result: ImportResult) -> None:
        existing_id = self.find_existing(incident)
        translated = translate_incident(incident, self.target, source=self.source, options=self.translation)
        result.warnings.extend(translated.warnings)

        if existing_id and not self.policy.update_existing:
            result.status = ImportStatus.skipped
            result.target_incident_id = existing_id
            result.warnings.append(w.already_imported(incident.reference or incident.id, existing_id))
            logger.info("Skipped: %s already imported as %s", incident.reference, existing_id)
            return

        self._check_strict(incident, translated)

        if self.policy.dry_run:
            if existing_id:
                result.status = ImportStatus.updated
                result.target_incident_id = existing_id
                logger.info("[DRY RUN] Would update: %s (%s warnings)", incident.reference, len(result.warnings))
            else:
                result.status = ImportStatus.created
                result.target_incident_id = DRY_RUN_TARGET_ID
                logger.info(
                    "[DRY RUN] Would create: %s - %s (%s warnings)",
                    incident.reference,
                    incident.name,
                    len(result.warnings),
                )
            return

        if existing_id:
            self._update(incident, translated, existing_id, result)
            return
        self._create(incident, translated, result)

    def _update(self, incident: Incident, translated: TranslatedIncident, target_id: str, result: ImportResult) -> None:
        updated = self.client.update_incident(target_id, translated.update_payload())
        final_id = _incident_id(updated) or target_id
        self.state.record(incident.id, final_id)
        result.status = ImportStatus.updated
        result.target_incident_id = final_id
        logger.info("Updated: %s -> %s (%s warnings)", incident.reference, final_id, len(result.warnings))

    def _create(self, incident: Incident, translated: TranslatedIncident, result: ImportResult) -> None:
        try:
            created = self.client.create_incident(translated.create_payload())
        except IncidentIoApiError as exc:
            if not exc.is_external_id_conflict:
                raise
            existing_id = _incident_id(self.client.find_incident_by_reference(incident.reference))
            if not existing_id:
                raise
            result.warnings.append(w.already_exists(incident.reference))
            logger.warning("Incident %s already exists in target as %s, updating", incident.reference, existing_id)
            self._update(incident, translated, existing_id, result)
            return

        target_id = _incident_id(created)
        if not target_id:
            raise IncidentIoException("Create incident response carried no incident id", error_code="INCIDENT_IO_ERROR")
        self.state.record(incident.id, target_id)
        result.status = ImportStatus.created
        result.target_incident_id = target_id
        logger.info(
            "Created: %s -> %s (%s warnings)",
            incident.reference,
            created.get("reference") or target_id,
            len(result.warnings),
        )
        self._attach_jira_issue(incident, target_id, result)

    def _attach_jira_issue(self, incident: Incident, target_id: str, result: ImportResult) -> None:
        reference = incident.external_issue_reference
        if reference is None or reference.provider != JIRA_PROVIDER or not reference.issue_permalink:
            return
        try:
            self.client.create_incident_attachment(
                target_id,
                external_id=reference.issue_permalink,
                resource_type=JIRA_RESOURCE_TYPE,
            )
        except IncidentIoException as exc:
            result.warnings.append(w.attachment_failed(exc.message))
            logger.warning("Jira attachment failed for %s: %s", incident.reference, exc.message)
