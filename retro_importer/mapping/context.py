"""Snapshot of one environment's configuration, indexed for resolution."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol, TypeVar

from retro_importer.integrations.incident_io.schemas import (
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

logger = logging.getLogger(__name__)

CONFIG_FETCH_WORKERS = 4

T = TypeVar("T")


class ConfigurationClient(Protocol):
    def list_severities(self) -> list[dict[str, Any]]: ...
    def list_incident_statuses(self) -> list[dict[str, Any]]: ...
    def list_incident_types(self) -> list[dict[str, Any]]: ...
    def list_incident_timestamps(self) -> list[dict[str, Any]]: ...
    def list_incident_roles(self) -> list[dict[str, Any]]: ...
    def list_custom_fields(self) -> list[dict[str, Any]]: ...
    def list_custom_field_options(self, custom_field_id: str) -> list[dict[str, Any]]: ...
    def list_catalog_entries(self, catalog_type_id: str) -> list[dict[str, Any]]: ...
    def list_users(self) -> list[dict[str, Any]]: ...


def normalize_name(value: str | None) -> str:
    return (value or "").strip().lower()


def _by_id(items: Iterable[T]) -> dict[str, T]:
    return {item.id: item for item in items}  # type: ignore[attr-defined]


def _by_name(items: Iterable[T]) -> dict[str, T]:
    index: dict[str, T] = {}
    for item in items:
        key = normalize_name(item.name)  # type: ignore[attr-defined]
        if key:
            index.setdefault(key, item)
    return index


def _users_by(users: Iterable[User], attribute: str) -> dict[str, User]:
    index: dict[str, User] = {}
    for user in users:
        value = getattr(user, attribute) or ""
        key = value.strip().lower() if attribute == "email" else value.strip()
        if key:
            index.setdefault(key, user)
    return index


@dataclass(frozen=True)
class CatalogIndex:
    """Catalog entries of one type keyed by external id, name and alias."""

    catalog_type_id: str
    entries: dict[str, CatalogEntry] = field(default_factory=dict)
    by_external_id: dict[str, str] = field(default_factory=dict)
    by_name: dict[str, str] = field(default_factory=dict)
    by_alias: dict[str, str] = field(default_factory=dict)

    @classmethod
    def build(cls, catalog_type_id: str, entries: Iterable[CatalogEntry]) -> "CatalogIndex":
        index = cls(catalog_type_id=catalog_type_id)
        # Sorting first makes the smallest entry id win every key collision.
        for entry in sorted(entries, key=lambda item: item.id):
            index.entries[entry.id] = entry
            if normalize_name(entry.external_id):
                index.by_external_id.setdefault(normalize_name(entry.external_id), entry.id)
            if normalize_name(entry.name):
                index.by_name.setdefault(normalize_name(entry.name), entry.id)
            for alias in entry.aliases:
                if normalize_name(alias):
                    index.by_alias.setdefault(normalize_name(alias), entry.id)
        return index

    def lookup(
        self,
        *,
        external_id: str | None = None,
        name: str | None = None,
        aliases: Iterable[str] = (),
    ) -> str | None:
        key = normalize_name(external_id)
        if key and key in self.by_external_id:
            return self.by_external_id[key]
        for candidate in (name, *aliases):
            key = normalize_name(candidate)
            if not key:
                continue
            if key in self.by_name:
                return self.by_name[key]
            if key in self.by_alias:
                return self.by_alias[key]
        return None


@dataclass(frozen=True)
class MappingContext:
    severities: dict[str, Severity] = field(default_factory=dict)
    statuses: dict[str, IncidentStatus] = field(default_factory=dict)
    types: dict[str, IncidentType] = field(default_factory=dict)
    custom_fields: dict[str, CustomField] = field(default_factory=dict)
    timestamps: dict[str, IncidentTimestamp] = field(default_factory=dict)
    roles: dict[str, IncidentRole] = field(default_factory=dict)
    users: dict[str, User] = field(default_factory=dict)
    catalog_indexes: dict[str, CatalogIndex] = field(default_factory=dict)
    severities_by_name: dict[str, Severity] = field(default_factory=dict)
    statuses_by_name: dict[str, IncidentStatus] = field(default_factory=dict)
    types_by_name: dict[str, IncidentType] = field(default_factory=dict)
    custom_fields_by_name: dict[str, CustomField] = field(default_factory=dict)
    timestamps_by_name: dict[str, IncidentTimestamp] = field(default_factory=dict)
    roles_by_name: dict[str, IncidentRole] = field(default_factory=dict)
    users_by_email: dict[str, User] = field(default_factory=dict)
    users_by_slack_id: dict[str, User] = field(default_factory=dict)

    @classmethod
    def from_entities(
        cls,
        *,
        severities: Iterable[Severity] = (),
        statuses: Iterable[IncidentStatus] = (),
        types: Iterable[IncidentType] = (),
        custom_fields: Iterable[CustomField] = (),
        timestamps: Iterable[IncidentTimestamp] = (),
        roles: Iterable[IncidentRole] = (),
        users: Iterable[User] = (),
        catalog_entries: dict[str, list[CatalogEntry]] | None = None,
    ) -> "MappingContext":
        severities, statuses, types = list(severities), list(statuses), list(types)
        custom_fields, timestamps, roles = list(custom_fields), list(timestamps), list(roles)
        users = list(users)
        return cls(
            severities=_by_id(severities),
            statuses=_by_id(statuses),
            types=_by_id(types),
            custom_fields=_by_id(custom_fields),
            timestamps=_by_id(timestamps),
            roles=_by_id(roles),
            users=_by_id(users),
            catalog_indexes={
                type_id: CatalogIndex.build(type_id, entries) for type_id, entries in (catalog_entries or {}).items()
            },
            severities_by_name=_by_name(severities),
            statuses_by_name=_by_name(statuses),
            types_by_name=_by_name(types),
            custom_fields_by_name=_by_name(custom_fields),
            timestamps_by_name=_by_name(timestamps),
            roles_by_name=_by_name(roles),
            users_by_email=_users_by(users, "email"),
            users_by_slack_id=_users_by(users, "slack_user_id"),
        )

    @classmethod
    def empty(cls) -> "MappingContext":
        return cls()


def _needs_options(custom_field: CustomField) -> bool:
    return custom_field.is_select and not custom_field.is_catalog_backed and not custom_field.options


def build_mapping_context(client: ConfigurationClient) -> MappingContext:
    """Load every configuration entity of one environment.

    Listing failures propagate unchanged: a partial context is never returned.
    """
    logger.info("Building mapping context...")
    with ThreadPoolExecutor(max_workers=CONFIG_FETCH_WORKERS) as executor:
        futures = {
            "severities": executor.submit(client.list_severities),
            "statuses": executor.submit(client.list_incident_statuses),
            "types": executor.submit(client.list_incident_types),
            "timestamps": executor.submit(client.list_incident_timestamps),
            "roles": executor.submit(client.list_incident_roles),
            "users": executor.submit(client.list_users),
            "custom_fields": executor.submit(client.list_custom_fields),
        }
        raw = {name: future.result() for name, future in futures.items()}

        custom_fields = [CustomField.model_validate(row) for row in raw["custom_fields"]]
        option_futures = {
            item.id: executor.submit(client.list_custom_field_options, item.id)
            for item in custom_fields
            if _needs_options(item)
        }
        catalog_type_ids = sorted({item.catalog_type_id for item in custom_fields if item.catalog_type_id})
        catalog_futures = {
            type_id: executor.submit(client.list_catalog_entries, type_id) for type_id in catalog_type_ids
        }
        options = {
            field_id: [CustomFieldOption.model_validate(row) for row in future.result()]
            for field_id, future in option_futures.items()
        }
        catalog_entries = {
            type_id: [CatalogEntry.model_validate(row) for row in future.result()]
            for type_id, future in catalog_futures.items()
        }

    custom_fields = [
        item.model_copy(update={"options": options[item.id]}) if item.id in options else item
        for item in custom_fields
    ]
    context = MappingContext.from_entities(
        severities=[Severity.model_validate(row) for row in raw["severities"]],
        statuses=[IncidentStatus.model_validate(row) for row in raw["statuses"]],
        types=[IncidentType.model_validate(row) for row in raw["types"]],
        custom_fields=custom_fields,
        timestamps=[IncidentTimestamp.model_validate(row) for row in raw["timestamps"]],
        roles=[IncidentRole.model_validate(row) for row in raw["roles"]],
        users=[User.model_validate(row) for row in raw["users"]],
        catalog_entries=catalog_entries,
    )
    logger.info(
        "Loaded: %s severities, %s statuses, %s types, %s custom fields, %s timestamps, %s roles, %s users, %s catalog types",
        len(context.severities),
        len(context.statuses),
        len(context.types),
        len(context.custom_fields),
        len(context.timestamps),
        len(context.roles),
        len(context.users),
        len(context.catalog_indexes),
    )
    return context
