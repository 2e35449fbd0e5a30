from __future__ import annotations

import copy
import itertools
import sys
from pathlib import Path
from threading import Lock
from typing import Any

import pytest


BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from retro_importer.core.exceptions import IncidentIoApiError  # noqa: E402
from retro_importer.integrations.incident_io.schemas import (  # noqa: E402
    CatalogEntry,
    CustomField,
    CustomFieldOption,
    IncidentRole,
    IncidentStatus,
    IncidentTimestamp,
    IncidentType,
    Severity,
    User,
)
from retro_importer.mapping.context import MappingContext  # noqa: E402


TARGET_CONFIG: dict[str, Any] = {
    "severities": [
        {"id": "sev-critical", "name": "Critical", "rank": 1},
        {"id": "sev-major", "name": "Major", "rank": 2},
        {"id": "sev-minor", "name": "Minor", "rank": 3},
    ],
    "statuses": [
        {"id": "st-triage", "name": "Triage", "category": "triage"},
        {"id": "st-investigating", "name": "Investigating", "category": "live"},
        {"id": "st-closed", "name": "Closed", "category": "closed"},
    ],
    "types": [
        {"id": "type-default", "name": "Default"},
        {"id": "type-security", "name": "Security", "private_incidents_only": True},
    ],
    "timestamps": [{"id": "ts-impact", "name": "Impact started"}],
    "roles": [
        {"id": "role-lead", "name": "Incident Lead", "role_type": "lead"},
        {"id": "role-reporter", "name": "Reporter", "role_type": "reporter"},
    ],
    "users": [{"id": "user-ada", "email": "ada@example.com", "slack_user_id": "U111"}],
    "custom_fields": [
        {"id": "cf-team", "name": "Team", "field_type": "single_select", "catalog_type_id": "cat-team"},
        {"id": "cf-area", "name": "Affected Area", "field_type": "multi_select"},
        {"id": "cf-notes", "name": "Notes", "field_type": "text"},
    ],
    "options": {
        "cf-area": [{"id": "opt-api", "value": "API"}, {"id": "opt-web", "value": "Web"}],
    },
    "catalog_entries": {
        "cat-team": [
            {"id": "entry-payments", "name": "Payments", "external_id": "payments", "aliases": ["billing"]},
        ],
    },
}


def build_target_context(config: dict[str, Any] | None = None) -> MappingContext:
    config = config or TARGET_CONFIG
    options = config.get("options", {})
    custom_fields = []
    for row in config["custom_fields"]:
        item = CustomField.model_validate(row)
        if item.id in options:
            item = item.model_copy(update={"options": [CustomFieldOption.model_validate(o) for o in options[item.id]]})
        custom_fields.append(item)
    return MappingContext.from_entities(
        severities=[Severity.model_validate(row) for row in config["severities"]],
        statuses=[IncidentStatus.model_validate(row) for row in config["statuses"]],
        types=[IncidentType.model_validate(row) for row in config["types"]],
        custom_fields=custom_fields,
        timestamps=[IncidentTimestamp.model_validate(row) for row in config["timestamps"]],
        roles=[IncidentRole.model_validate(row) for row in config["roles"]],
        users=[User.model_validate(row) for row in config["users"]],
        catalog_entries={
            type_id: [CatalogEntry.model_validate(row) for row in rows]
            for type_id, rows in config.get("catalog_entries", {}).items()
        },
    )


def make_incident(index: int = 1, **overrides: Any) -> dict[str, Any]:
    """An exported incident in the raw v2 response shape."""
    incident: dict[str, Any] = {
        "id": f"01SRC{index:03d}",
        "reference": f"INC-{100 + index}",
        "name": f"Checkout latency {index}",
        "summary": "Payments API answered slowly",
        "visibility": "public",
        "mode": "standard",
        "severity": {"id": "src-sev-1", "name": "Critical", "rank": 1},
        "incident_status": {"id": "src-st-closed", "name": "Closed", "category": "closed"},
        "incident_type": {"id": "src-type-default", "name": "Default"},
        "incident_timestamp_values": [
            {
                "incident_timestamp": {"id": "src-ts-impact", "name": "Impact started"},
                "value": {"value": "2026-01-02T10:00:00Z"},
            }
        ],
        "incident_role_assignments": [
            {
                "role": {"id": "src-role-lead", "name": "Incident Lead", "role_type": "lead"},
                "assignee": {"id": "src-user-ada", "email": "Ada@example.com"},
            },
            {
                "role": {"id": "src-role-reporter", "name": "Reporter", "role_type": "reporter"},
                "assignee": {"id": "src-user-ada", "email": "ada@example.com"},
            },
        ],
        "custom_field_entries": [
            {
                "custom_field": {"id": "src-cf-area", "name": "Affected Area", "field_type": "multi_select"},
                "values": [{"value_option": {"id": "src-opt-api", "value": "API"}}],
            }
        ],
        "created_at": "2026-01-02T09:55:00Z",
    }
    incident.update(overrides)
    return incident


def make_bundle(index: int = 1, **overrides: Any) -> dict[str, Any]:
    return {"incident": make_incident(index, **overrides)}


class FakeIncidentIo:
    """In-memory target environment recording every call it receives."""

    MUTATING = {"create_incident", "update_incident", "create_incident_attachment"}

    def __init__(self, config: dict[str, Any] | None = None) -> None:
        self.config = copy.deepcopy(config or TARGET_CONFIG)
        self.incidents: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, Any]] = []
        self.fail_create_names: set[str] = set()
        self.attachment_error: Exception | None = None
        self._ids = itertools.count(1)
        self._lock = Lock()

    def _record(self, name: str, argument: Any = None) -> None:
        with self._lock:
            self.calls.append((name, argument))

    def calls_to(self, name: str) -> list[Any]:
        return [argument for call, argument in self.calls if call == name]

    @property
    def mutating_calls(self) -> list[tuple[str, Any]]:
        return [call for call in self.calls if call[0] in self.MUTATING]

    def seed_incident(self, incident_id: str, reference: str, external_id: int | None = None) -> None:
        self.incidents[incident_id] = {"id": incident_id, "reference": reference, "external_id": external_id}

    # configuration listings
    def list_severities(self) -> list[dict[str, Any]]:
        return list(self.config["severities"])

    def list_incident_statuses(self) -> list[dict[str, Any]]:
        return list(self.config["statuses"])

    def list_incident_types(self) -> list[dict[str, Any]]:
        return list(self.config["types"])

    def list_incident_timestamps(self) -> list[dict[str, Any]]:
        return list(self.config["timestamps"])

    def list_incident_roles(self) -> list[dict[str, Any]]:
        return list(self.config["roles"])

    def list_users(self) -> list[dict[str, Any]]:
        return list(self.config["users"])

    def list_custom_fields(self) -> list[dict[str, Any]]:
        return list(self.config["custom_fields"])

    def list_custom_field_options(self, custom_field_id: str) -> list[dict[str, Any]]:
        self._record("list_custom_field_options", custom_field_id)
        return list(self.config.get("options", {}).get(custom_field_id, []))

    def list_catalog_entries(self, catalog_type_id: str) -> list[dict[str, Any]]:
        self._record("list_catalog_entries", catalog_type_id)
        return list(self.config.get("catalog_entries", {}).get(catalog_type_id, []))

    # incidents
    def find_incident_by_reference(self, reference: str) -> dict[str, Any] | None:
        self._record("find_incident_by_reference", reference)
        with self._lock:
            for incident in self.incidents.values():
                if incident["reference"] == reference:
                    return dict(incident)
        return None

    def create_incident(self, payload: dict[str, Any]) -> dict[str, Any]:
        self._record("create_incident", payload)
        if payload["name"] in self.fail_create_names:
            raise IncidentIoApiError(422, "Validation failed: name is not allowed", method="POST", path="/v2/incidents")
        external_id = (payload.get("retrospective_incident_options") or {}).get("external_id")
        with self._lock:
            if external_id is not None and any(
                item.get("external_id") == external_id for item in self.incidents.values()
            ):
                raise IncidentIoApiError(
                    422,
                    "An incident with this external ID already exists",
                    method="POST",
                    path="/v2/incidents",
                )
            number = next(self._ids)
            incident = {
                "id": f"01TGT{number:03d}",
                "reference": f"INC-{external_id if external_id is not None else number}",
                "external_id": external_id,
                "name": payload["name"],
            }
            self.incidents[incident["id"]] = incident
        return dict(incident)

    def update_incident(self, incident_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        self._record("update_incident", (incident_id, payload))
        with self._lock:
            if incident_id not in self.incidents:
                raise IncidentIoApiError(404, "Incident not found", method="POST", path=f"/v2/incidents/{incident_id}")
            self.incidents[incident_id]["name"] = payload["incident"]["name"]
            return dict(self.incidents[incident_id])

    def create_incident_attachment(self, incident_id: str, *, external_id: str, resource_type: str) -> dict[str, Any]:
        self._record("create_incident_attachment", (incident_id, external_id, resource_type))
        if self.attachment_error is not None:
            raise self.attachment_error
        return {"id": "attachment-1", "incident_id": incident_id}


@pytest.fixture
def target_context() -> MappingContext:
    return build_target_context()


@pytest.fixture
def fake_target() -> FakeIncidentIo:
    return FakeIncidentIo()


@pytest.fixture
def incident_factory():
    return make_incident


@pytest.fixture
def bundle_factory():
    return make_bundle
