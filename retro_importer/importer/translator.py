"""Turn one exported incident into target-shaped create and update payloads."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from retro_importer.integrations.incident_io.schemas import Incident
from retro_importer.mapping import warnings as w
from retro_importer.mapping.context import MappingContext
from retro_importer.mapping.resolvers import (
    ResolvedCustomField,
    ResolvedRoleAssignment,
    resolve_custom_fields,
    resolve_incident_type,
    resolve_role_assignments,
    resolve_severity,
    resolve_status,
    resolve_timestamps,
)
from retro_importer.models.enums import Visibility

RETROSPECTIVE_MODE = "retrospective"
IDEMPOTENCY_PREFIX = "retro-import"
TRAILING_DIGITS_RE = re.compile(r"(\d+)$")
CHANNEL_ID_SAFE_RE = re.compile(r"[^A-Za-z0-9]+")


@dataclass(frozen=True)
class TranslationOptions:
    set_external_id: bool = True
    placeholder_slack_channel: bool = False


@dataclass
class TranslatedIncident:
    source_id: str
    reference: str
    name: str
    summary: str | None
    visibility: Visibility
    severity_id: str | None = None
    status_id: str | None = None
    incident_type_id: str | None = None
    timestamps: list[dict[str, str]] = field(default_factory=list)
    role_assignments: list[ResolvedRoleAssignment] = field(default_factory=list)
    custom_fields: list[ResolvedCustomField] = field(default_factory=list)
    retrospective_options: dict[str, Any] = field(default_factory=dict)
    idempotency_key: str = ""
    warnings: list[str] = field(default_factory=list)

    def create_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "mode": RETROSPECTIVE_MODE,
            "name": self.name,
            "visibility": self.visibility.value,
            "idempotency_key": self.idempotency_key,
            "retrospective_incident_options": dict(self.retrospective_options),
        }
        if self.summary:
            payload["summary"] = self.summary
        if self.severity_id:
            payload["severity_id"] = self.severity_id
        if self.status_id:
            payload["incident_status_id"] = self.status_id
        if self.incident_type_id:
            payload["incident_type_id"] = self.incident_type_id
        if self.timestamps:
            payload["incident_timestamp_values"] = [dict(item) for item in self.timestamps]
        if self.role_assignments:
            payload["incident_role_assignments"] = [item.to_payload() for item in self.role_assignments]
        if self.custom_fields:
            payload["custom_field_entries"] = [item.to_payload() for item in self.custom_fields]
        return payload

    def update_payload(self) -> dict[str, Any]:
        """Edit body restricted to fields the platform allows to change after creation."""
        incident: dict[str, Any] = {"name": self.name}
        if self.summary:
            incident["summary"] = self.summary
        if self.severity_id:
            incident["severity_id"] = self.severity_id
        if self.timestamps:
            incident["incident_timestamp_values"] = [dict(item) for item in self.timestamps]
        # The reporter role is immutable once an incident exists.
        assignments = [item.to_payload() for item in self.role_assignments if not item.is_reporter]
        if assignments:
            incident["incident_role_assignments"] = assignments
        if self.custom_fields:
            incident["custom_field_entries"] = [item.to_payload() for item in self.custom_fields]
        return {"incident": incident, "notify_incident_channel": False}


def external_id_from_reference(reference: str | None) -> int | None:
    match = TRAILING_DIGITS_RE.search((reference or "").strip())
    if not match:
        return None
    return int(match.group(1))


def idempotency_key_for(source_id: str) -> str:
    return f"{IDEMPOTENCY_PREFIX}:{source_id}"


def placeholder_channel_id(source_id: str) -> str:
    return f"C{CHANNEL_ID_SAFE_RE.sub('', source_id)[:10].upper()}"


def translate_incident(
    incident: Incident,
    target: MappingContext,
    *,
    source: MappingContext | None = None,
    options: TranslationOptions | None = None,
) -> TranslatedIncident:
    options = options or TranslationOptions()
    severity = resolve_severity(incident.severity, target)
    status = resolve_status(incident.status, target)
    incident_type = resolve_incident_type(incident.incident_type, target)
    timestamps = resolve_timestamps(incident.incident_timestamp_values, target, source)
    roles = resolve_role_assignments(incident.incident_role_assignments, target, source)
    custom_fields = resolve_custom_fields(incident.custom_field_values, target, source)

    warnings = [
        *severity.warnings,
        *status.warnings,
        *incident_type.warnings,
        *timestamps.warnings,
        *roles.warnings,
        *custom_fields.warnings,
    ]

    visibility = incident.visibility
    target_type = target.types.get(incident_type.value or "")
    if target_type is not None and target_type.private_incidents_only and visibility == Visibility.public:
        visibility = Visibility.private
        warnings.append(w.visibility_forced_private(target_type.name))

    retrospective_options: dict[str, Any] = {}
    if options.set_external_id:
        external_id = external_id_from_reference(incident.reference)
        if external_id is not None:
            retrospective_options["external_id"] = external_id
    if incident.postmortem_document_url:
        retrospective_options["postmortem_document_url"] = incident.postmortem_document_url
    if options.placeholder_slack_channel:
        retrospective_options["slack_channel_id"] = placeholder_channel_id(incident.id)

    return TranslatedIncident(
        source_id=incident.id,
        reference=incident.reference,
        name=incident.name,
        summary=incident.summary,
        visibility=visibility,
        severity_id=severity.value,
        status_id=status.value,
        incident_type_id=incident_type.value,
        timestamps=timestamps.value or [],
        role_assignments=roles.value or [],
        custom_fields=custom_fields.value or [],
        retrospective_options=retrospective_options,
        idempotency_key=idempotency_key_for(incident.id),
        warnings=warnings,
    )
