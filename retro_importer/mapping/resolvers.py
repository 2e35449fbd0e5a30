"""Resolve source-environment entities to their target-environment ids.

Every resolver is total: a miss yields ``ResolutionResult(value=None)`` plus a
warning, never an exception. Only structurally malformed input raises
``MalformedRecordError``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, Iterable, TypeVar

from retro_importer.core.exceptions import MalformedRecordError
from retro_importer.integrations.incident_io.schemas import (
    Assignee,
    CustomField,
    CustomFieldValue,
    IncidentStatus,
    IncidentTypeRef,
    RoleAssignment,
    SeverityRef,
    StatusRef,
    TimestampValue,
    User,
)
from retro_importer.mapping import warnings as w
from retro_importer.mapping.context import MappingContext, normalize_name
from retro_importer.models.enums import CustomFieldKind, RoleType, StatusCategory

T = TypeVar("T")

PAYLOAD_KEYS: dict[CustomFieldKind, str] = {
    CustomFieldKind.option: "value_option_id",
    CustomFieldKind.catalog: "value_catalog_entry_id",
    CustomFieldKind.text: "value_text",
    CustomFieldKind.numeric: "value_numeric",
    CustomFieldKind.link: "value_link",
    CustomFieldKind.timestamp: "value_timestamp",
}

SCALAR_VALUE_KEYS = ("value_text", "value_numeric", "value_link", "value_timestamp")


@dataclass
class ResolutionResult(Generic[T]):
    value: T | None = None
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ResolvedRoleAssignment:
    incident_role_id: str
    role_type: str
    assignee_id: str | None = None

    @property
    def is_reporter(self) -> bool:
        return self.role_type == RoleType.reporter.value

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"incident_role_id": self.incident_role_id}
        if self.assignee_id:
            payload["assignee"] = {"id": self.assignee_id}
        return payload


@dataclass(frozen=True)
class ResolvedCustomField:
    """A target custom field entry whose values share one declared kind."""

    custom_field_id: str
    kind: CustomFieldKind
    values: tuple[Any, ...]

    def to_payload(self) -> dict[str, Any]:
        key = PAYLOAD_KEYS[self.kind]
        return {"custom_field_id": self.custom_field_id, "values": [{key: value} for value in self.values]}


@dataclass(frozen=True)
class SourceChoice:
    """Identifying data of one selected source option or catalog entry."""

    label: str
    external_id: str | None = None
    aliases: tuple[str, ...] = ()


def resolve_severity(source: SeverityRef | None, target: MappingContext) -> ResolutionResult[str]:
    if source is None:
        return ResolutionResult()

    exact = target.severities_by_name.get(normalize_name(source.name))
    if exact is not None:
        return ResolutionResult(exact.id)

    if not target.severities:
        return ResolutionResult(warnings=[w.severity_unmapped(source.name)])

    # sorted() is stable and min() keeps the first minimum, so on equal
    # distance the lower rank wins.
    by_rank = sorted(target.severities.values(), key=lambda severity: severity.rank)
    closest = min(by_rank, key=lambda severity: abs(severity.rank - source.rank))
    return ResolutionResult(closest.id, [w.severity_by_rank(source.name, closest.name)])


def default_closed_status(target: MappingContext) -> IncidentStatus | None:
    statuses = list(target.statuses.values())
    for status in statuses:
        if normalize_name(status.category) == StatusCategory.closed.value:
            return status
    for status in statuses:
        if StatusCategory.closed.value in normalize_name(status.name):
            return status
    return None


def resolve_status(source: StatusRef | None, target: MappingContext) -> ResolutionResult[str]:
    if source is None:
        fallback = default_closed_status(target)
        if fallback is None:
            return ResolutionResult(warnings=[w.status_default_missing()])
        return ResolutionResult(fallback.id, [w.status_defaulted(fallback.name)])

    name = normalize_name(source.name)
    category = normalize_name(source.category)
    statuses = list(target.statuses.values())

    for status in statuses:
        if normalize_name(status.name) == name and normalize_name(status.category) == category:
            return ResolutionResult(status.id)

    for status in statuses:
        if normalize_name(status.name) == name:
            return ResolutionResult(
                status.id,
                [w.status_category_differs(source.name, source.category, status.category)],
            )

    if category:
        for status in statuses:
            if normalize_name(status.category) == category:
                return ResolutionResult(status.id, [w.status_by_category(source.name, status.name)])

    return ResolutionResult(warnings=[w.status_unmapped(source.name, source.category)])


def resolve_incident_type(source: IncidentTypeRef | None, target: MappingContext) -> ResolutionResult[str]:
    if source is None:
        return ResolutionResult()
    match = target.types_by_name.get(normalize_name(source.name))
    if match is None:
        return ResolutionResult(warnings=[w.incident_type_missing(source.name)])
    return ResolutionResult(match.id)


def resolve_user(source: Assignee | User | None, target: MappingContext) -> ResolutionResult[str]:
    if source is None:
        return ResolutionResult()

    email = (source.email or "").strip().lower()
    if email and email in target.users_by_email:
        return ResolutionResult(target.users_by_email[email].id)

    slack_user_id = (source.slack_user_id or "").strip()
    if slack_user_id and slack_user_id in target.users_by_slack_id:
        return ResolutionResult(
            target.users_by_slack_id[slack_user_id].id,
            [w.user_by_slack_id(email or source.id)],
        )

    return ResolutionResult(warnings=[w.user_missing(email or source.id)])


def resolve_timestamps(
    values: Iterable[TimestampValue],
    target: MappingContext,
    source: MappingContext | None = None,
) -> ResolutionResult[list[dict[str, str]]]:
    resolved: list[dict[str, str]] = []
    warnings: list[str] = []
    for item in values:
        definition = item.incident_timestamp
        if definition is None and source is not None:
            definition = source.timestamps.get(item.incident_timestamp_id)
        if definition is None:
            continue
        match = target.timestamps_by_name.get(normalize_name(definition.name))
        if match is None:
            warnings.append(w.timestamp_missing(definition.name))
            continue
        resolved.append({"incident_timestamp_id": match.id, "value": item.value})
    return ResolutionResult(resolved, warnings)


def resolve_role_assignments(
    assignments: Iterable[RoleAssignment],
    target: MappingContext,
    source: MappingContext | None = None,
) -> ResolutionResult[list[ResolvedRoleAssignment]]:
    resolved: list[ResolvedRoleAssignment] = []
    warnings: list[str] = []
    for assignment in assignments:
        definition = assignment.role
        if definition is None and source is not None:
            definition = source.roles.get(assignment.incident_role_id)
        if definition is None:
            warnings.append(w.role_definition_missing(assignment.incident_role_id))
            continue

        role = target.roles_by_name.get(normalize_name(definition.name))
        if role is None:
            warnings.append(w.role_missing(definition.name))
            continue

        if assignment.assignee is None:
            resolved.append(ResolvedRoleAssignment(role.id, role.role_type))
            continue

        user = resolve_user(assignment.assignee, target)
        warnings.extend(user.warnings)
        if user.value:
            resolved.append(ResolvedRoleAssignment(role.id, role.role_type, user.value))
    return ResolutionResult(resolved, warnings)


def field_kind(custom_field: CustomField) -> CustomFieldKind:
    if custom_field.is_catalog_backed:
        return CustomFieldKind.catalog
    if custom_field.is_select:
        return CustomFieldKind.option
    if custom_field.field_type == "numeric":
        return CustomFieldKind.numeric
    if custom_field.field_type == "link":
        return CustomFieldKind.link
    if custom_field.field_type in {"datetime", "timestamp"}:
        return CustomFieldKind.timestamp
    return CustomFieldKind.text


def _source_option_label(option_id: str, source_field: CustomField, source: MappingContext | None) -> str | None:
    options = list(source_field.options)
    if source is not None and source_field.id in source.custom_fields:
        options.extend(source.custom_fields[source_field.id].options)
    for option in options:
        if option.id == option_id:
            return option.value
    return None


def _source_choice(
    raw: Any,
    source_field: CustomField,
    source: MappingContext | None,
) -> ResolutionResult[SourceChoice]:
    if isinstance(raw, str):
        raw = {"value_option_id": raw}
    if not isinstance(raw, dict):
        raise MalformedRecordError(f'Unsupported value {raw!r} in custom field "{source_field.name}"')

    entry = raw.get("value_catalog_entry")
    if isinstance(entry, dict):
        return ResolutionResult(
            SourceChoice(
                label=str(entry.get("name") or ""),
                external_id=entry.get("external_id"),
                aliases=tuple(str(alias) for alias in entry.get("aliases") or []),
            )
        )

    option = raw.get("value_option")
    option_id = str(option.get("id") or "") if isinstance(option, dict) else str(raw.get("value_option_id") or "")
    label = option.get("value") if isinstance(option, dict) else None
    if not label and option_id:
        label = _source_option_label(option_id, source_field, source)
    if label:
        return ResolutionResult(SourceChoice(label=str(label)))
    if option_id:
        return ResolutionResult(warnings=[w.source_option_missing(option_id, source_field.name)])

    for key in SCALAR_VALUE_KEYS:
        if raw.get(key) not in (None, ""):
            return ResolutionResult(SourceChoice(label=str(raw[key])))
    raise MalformedRecordError(f'Unsupported value {raw!r} in custom field "{source_field.name}"')


def _scalar_value(raw: Any, source_field: CustomField, source: MappingContext | None) -> Any:
    if isinstance(raw, (str, int, float)):
        return raw
    if not isinstance(raw, dict):
        raise MalformedRecordError(f'Unsupported value {raw!r} in custom field "{source_field.name}"')
    for key in SCALAR_VALUE_KEYS:
        if raw.get(key) not in (None, ""):
            return raw[key]
    choice = _source_choice(raw, source_field, source)
    return choice.value.label if choice.value else None


def _resolve_choice(
    choice: SourceChoice,
    kind: CustomFieldKind,
    target_field: CustomField,
    target: MappingContext,
) -> str | None:
    if kind == CustomFieldKind.catalog:
        index = target.catalog_indexes.get(target_field.catalog_type_id or "")
        if index is None:
            return None
        return index.lookup(external_id=choice.external_id, name=choice.label, aliases=choice.aliases)
    label = normalize_name(choice.label)
    for option in target_field.options:
        if normalize_name(option.value) == label:
            return option.id
    return None


def resolve_custom_field(
    value: CustomFieldValue,
    target: MappingContext,
    source: MappingContext | None = None,
) -> ResolutionResult[ResolvedCustomField]:
    source_field = value.custom_field
    if source_field is None and source is not None:
        source_field = source.custom_fields.get(value.custom_field_id)
    if source_field is None:
        return ResolutionResult(warnings=[w.custom_field_definition_missing(value.custom_field_id)])

    target_field = target.custom_fields_by_name.get(normalize_name(source_field.name))
    if target_field is None:
        return ResolutionResult(warnings=[w.custom_field_missing(source_field.name.strip())])

    kind = field_kind(target_field)
    resolved: list[Any] = []
    labels: list[str] = []
    warnings: list[str] = []
    for raw in value.values:
        if kind in (CustomFieldKind.option, CustomFieldKind.catalog):
            choice = _source_choice(raw, source_field, source)
            warnings.extend(choice.warnings)
            if choice.value is None:
                continue
            target_id = _resolve_choice(choice.value, kind, target_field, target)
            if target_id is None:
                warnings.append(w.option_missing(choice.value.label, source_field.name))
            elif target_id not in resolved:
                resolved.append(target_id)
                labels.append(choice.value.label)
        else:
            scalar = _scalar_value(raw, source_field, source)
            if scalar not in (None, ""):
                resolved.append(scalar)
                labels.append(str(scalar))

    if target_field.field_type == "single_select" and len(resolved) > 1:
        warnings.append(w.single_select_truncated(source_field.name, labels[1:]))
        resolved = resolved[:1]
    if not resolved:
        return ResolutionResult(warnings=warnings)
    return ResolutionResult(ResolvedCustomField(target_field.id, kind, tuple(resolved)), warnings)


def resolve_custom_fields(
    values: Iterable[CustomFieldValue],
    target: MappingContext,
    source: MappingContext | None = None,
) -> ResolutionResult[list[ResolvedCustomField]]:
    resolved: list[ResolvedCustomField] = []
    warnings: list[str] = []
    for value in values:
        result = resolve_custom_field(value, target, source)
        warnings.extend(result.warnings)
        if result.value is not None:
            resolved.append(result.value)
    return ResolutionResult(resolved, warnings)


def check_custom_field_values(values: Iterable[CustomFieldValue]) -> None:
    """Raise ``MalformedRecordError`` for any value no resolver can interpret."""
    for value in values:
        source_field = value.custom_field
        name = source_field.name if source_field else value.custom_field_id
        accepted = (str, dict) if source_field is not None and source_field.is_select else (str, int, float, dict)
        for raw in value.values:
            if not isinstance(raw, accepted):
                raise MalformedRecordError(f'Unsupported value {raw!r} in custom field "{name}"')
