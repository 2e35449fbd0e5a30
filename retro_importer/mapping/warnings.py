"""Warning messages emitted during resolution, and their classification."""

from __future__ import annotations

import re

from retro_importer.models.enums import WarningKind

OPTION_MISSING_RE = re.compile(r'^Option "(?P<option>.*)" in field "(?P<field>.*)" not found in target$')
USER_MISSING_RE = re.compile(r"^User .* not found in target")
CUSTOM_FIELD_MISSING_RE = re.compile(r'^Custom field ".*" not found in target$')
ALREADY_IMPORTED_RE = re.compile(r"already (exists|imported)")


def severity_by_rank(source_name: str, target_name: str) -> str:
    return f'Severity "{source_name}" not found, mapped to "{target_name}" by rank'


def severity_unmapped(source_name: str) -> str:
    return f'Severity "{source_name}" could not be mapped (target has no severities)'


def status_category_differs(source_name: str, source_category: str, target_category: str) -> str:
    return (
        f'Status "{source_name}" found but category differs '
        f"(source: {source_category}, target: {target_category})"
    )


def status_by_category(source_name: str, target_name: str) -> str:
    return f'Status "{source_name}" not found, mapped to "{target_name}" by category'


def status_unmapped(source_name: str, source_category: str) -> str:
    return f'Status "{source_name}" ({source_category}) could not be mapped'


def status_defaulted(target_name: str) -> str:
    return f'Incident has no status, defaulted to closed status "{target_name}"'


def status_default_missing() -> str:
    return "Incident has no status and target has no closed status to default to"


def incident_type_missing(source_name: str) -> str:
    return f'Incident type "{source_name}" not found in target'


def timestamp_missing(source_name: str) -> str:
    return f'Timestamp "{source_name}" not found in target'


def role_definition_missing(role_id: str) -> str:
    return f"Source role {role_id} definition not found"


def role_missing(source_name: str) -> str:
    return f'Role "{source_name}" not found in target'


def user_by_slack_id(identifier: str) -> str:
    return f"User {identifier} mapped by Slack ID (email not matched)"


def user_missing(identifier: str) -> str:
    return f"User {identifier} not found in target (may need to invite them)"


def custom_field_definition_missing(field_id: str) -> str:
    return f"Source custom field {field_id} definition not found"


def custom_field_missing(field_name: str) -> str:
    return f'Custom field "{field_name}" not found in target'


def source_option_missing(option_id: str, field_name: str) -> str:
    return f'Source option {option_id} in field "{field_name}" not found'


def option_missing(option_label: str, field_name: str) -> str:
    return f'Option "{option_label}" in field "{field_name}" not found in target'


def single_select_truncated(field_name: str, dropped: list[str]) -> str:
    labels = ", ".join(f'"{label}"' for label in dropped)
    return f'Field "{field_name}" accepts one value, dropped: {labels}'


def visibility_forced_private(type_name: str) -> str:
    return f'Visibility changed to private (incident type "{type_name}" requires private)'


def already_exists(reference: str) -> str:
    return f"Incident {reference} already exists, updating instead"


def already_imported(reference: str, target_id: str) -> str:
    return f"Incident {reference} already imported as {target_id}, skipping"


def attachment_failed(reason: str) -> str:
    return f"Failed to attach Jira ticket: {reason}"


def classify(message: str) -> WarningKind:
    if OPTION_MISSING_RE.match(message):
        return WarningKind.option_missing
    if USER_MISSING_RE.match(message):
        return WarningKind.user_missing
    if CUSTOM_FIELD_MISSING_RE.match(message):
        return WarningKind.custom_field_missing
    if ALREADY_IMPORTED_RE.search(message):
        return WarningKind.already_imported
    return WarningKind.other


def missing_option(message: str) -> tuple[str, str] | None:
    """Return ``(field, option)`` for an option-missing warning."""
    match = OPTION_MISSING_RE.match(message)
    if not match:
        return None
    return match.group("field"), match.group("option")
