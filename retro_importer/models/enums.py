"""Shared enum values used by the importer and its reports."""

from __future__ import annotations

import enum


class Visibility(str, enum.Enum):
    public = "public"
    private = "private"


class StatusCategory(str, enum.Enum):
    triage = "triage"
    declined = "declined"
    merged = "merged"
    canceled = "canceled"
    live = "live"
    learning = "learning"
    closed = "closed"


class RoleType(str, enum.Enum):
    lead = "lead"
    reporter = "reporter"
    custom = "custom"


class CustomFieldKind(str, enum.Enum):
    option = "option"
    catalog = "catalog"
    text = "text"
    numeric = "numeric"
    link = "link"
    timestamp = "timestamp"


class ImportStatus(str, enum.Enum):
    created = "created"
    updated = "updated"
    skipped = "skipped"
    failed = "failed"


class WarningKind(str, enum.Enum):
    option_missing = "option_missing"
    user_missing = "user_missing"
    custom_field_missing = "custom_field_missing"
    already_imported = "already_imported"
    other = "other"
