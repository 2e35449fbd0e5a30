"""Pydantic models for incident.io configuration entities and exported incidents."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from retro_importer.models.enums import Visibility

SELECT_FIELD_TYPES = {"single_select", "multi_select"}


class ApiModel(BaseModel):
    model_config = ConfigDict(extra="allow")


class Severity(ApiModel):
    id: str
    name: str
    rank: int = 0
    description: str | None = None


class IncidentStatus(ApiModel):
    id: str
    name: str
    category: str = ""
    rank: int = 0
    description: str | None = None


class IncidentType(ApiModel):
    id: str
    name: str
    description: str | None = None
    private_incidents_only: bool = False


class CustomFieldOption(ApiModel):
    id: str
    value: str
    sort_key: int = 0
    custom_field_id: str | None = None


class CustomField(ApiModel):
    id: str
    name: str
    field_type: str = "text"
    catalog_type_id: str | None = None
    options: list[CustomFieldOption] = Field(default_factory=list)

    @property
    def is_select(self) -> bool:
        return self.field_type in SELECT_FIELD_TYPES

    @property
    def is_catalog_backed(self) -> bool:
        return bool(self.catalog_type_id)


class IncidentTimestamp(ApiModel):
    id: str
    name: str
    rank: int = 0


class IncidentRole(ApiModel):
    id: str
    name: str
    role_type: str = "custom"
    required: bool = False


class User(ApiModel):
    id: str
    email: str | None = None
    name: str | None = None
    slack_user_id: str | None = None


class CatalogEntry(ApiModel):
    id: str
    name: str = ""
    catalog_type_id: str | None = None
    external_id: str | None = None
    aliases: list[str] = Field(default_factory=list)


class StatusRef(ApiModel):
    id: str = ""
    name: str
    category: str = ""


class SeverityRef(ApiModel):
    id: str = ""
    name: str
    rank: int = 0


class IncidentTypeRef(ApiModel):
    id: str = ""
    name: str


class Assignee(ApiModel):
    id: str = ""
    email: str | None = None
    slack_user_id: str | None = None


class TimestampValue(ApiModel):
    incident_timestamp_id: str
    incident_timestamp: IncidentTimestamp | None = None
    value: str


class RoleAssignment(ApiModel):
    incident_role_id: str
    role: IncidentRole | None = None
    assignee: Assignee | None = None


class CustomFieldValue(ApiModel):
    custom_field_id: str
    custom_field: CustomField | None = None
    values: list[Any] = Field(default_factory=list)


class ExternalIssueReference(ApiModel):
    provider: str = ""
    issue_name: str | None = None
    issue_permalink: str | None = None


def _normalize_timestamps(rows: list[Any]) -> list[dict[str, Any]]:
    normalized: list[dict[str, Any]] = []
    for row in rows:
        if not isinstance(row, dict):
            raise ValueError("incident_timestamp_values entries must be objects")
        if "incident_timestamp_id" in row:
            normalized.append(row)
            continue
        definition = row.get("incident_timestamp") or {}
        value = row.get("value")
        raw_value = value.get("value") if isinstance(value, dict) else value
        # Timestamps that were never set carry no value and are not migrated.
        if not raw_value:
            continue
        if not definition.get("id"):
            raise ValueError("incident_timestamp value without a timestamp id")
        normalized.append(
            {
                "incident_timestamp_id": definition["id"],
                "incident_timestamp": definition,
                "value": raw_value,
            }
        )
    return normalized


def _normalize_roles(rows: list[Any]) -> list[dict[str, Any]]:
    normalized: list[dict[str, Any]] = []
    for row in rows:
        if not isinstance(row, dict):
            raise ValueError("incident_role_assignments entries must be objects")
        if "incident_role_id" in row:
            normalized.append(row)
            continue
        role = row.get("role") or {}
        if not role.get("id"):
            raise ValueError("role assignment without a role id")
        normalized.append({"incident_role_id": role["id"], "role": role, "assignee": row.get("assignee")})
    return normalized


def _normalize_custom_fields(rows: list[Any]) -> list[dict[str, Any]]:
    normalized: list[dict[str, Any]] = []
    for row in rows:
        if not isinstance(row, dict):
            raise ValueError("custom field entries must be objects")
        if "custom_field_id" in row:
            normalized.append(row)
            continue
        field = row.get("custom_field") or {}
        if not field.get("id"):
            raise ValueError("custom field entry without a custom field id")
        normalized.append({"custom_field_id": field["id"], "custom_field": field, "values": row.get("values") or []})
    return normalized


class Incident(ApiModel):
    id: str
    reference: str = ""
    name: str
    summary: str | None = None
    visibility: Visibility = Visibility.public
    mode: str | None = None
    severity: SeverityRef | None = None
    status: StatusRef | None = None
    incident_type: IncidentTypeRef | None = None
    custom_field_values: list[CustomFieldValue] = Field(default_factory=list)
    incident_timestamp_values: list[TimestampValue] = Field(default_factory=list)
    incident_role_assignments: list[RoleAssignment] = Field(default_factory=list)
    postmortem_document_url: str | None = None
    external_issue_reference: ExternalIssueReference | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @model_validator(mode="before")
    @classmethod
    def normalize_api_shape(cls, data: Any) -> Any:
        """Accept both the raw v2 response shape and the already-normalized one."""
        if not isinstance(data, dict):
            return data
        payload = dict(data)
        incident_status = payload.pop("incident_status", None)
        if isinstance(incident_status, dict):
            payload["status"] = incident_status
        for key in ("severity", "status", "incident_type", "external_issue_reference"):
            if not isinstance(payload.get(key), dict):
                payload.pop(key, None)
        payload["incident_timestamp_values"] = _normalize_timestamps(payload.get("incident_timestamp_values") or [])
        payload["incident_role_assignments"] = _normalize_roles(payload.get("incident_role_assignments") or [])
        entries = payload.pop("custom_field_entries", None)
        if entries is not None and not payload.get("custom_field_values"):
            payload["custom_field_values"] = entries
        payload["custom_field_values"] = _normalize_custom_fields(payload.get("custom_field_values") or [])
        return payload


class IncidentBundle(ApiModel):
    incident: Incident
    follow_ups: list[dict[str, Any]] = Field(default_factory=list)
    incident_updates: list[dict[str, Any]] = Field(default_factory=list)
    related_incidents: list[dict[str, Any]] = Field(default_factory=list)
