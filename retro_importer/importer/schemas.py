"""DTOs for the import run: per-incident results, reports and the state file."""

from __future__ import annotations

import datetime as dt

from pydantic import BaseModel, ConfigDict, Field

from retro_importer.models.enums import ImportStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ImportResult(CamelModel):
    source_incident_id: str = Field(alias="sourceIncidentId")
    source_reference: str | None = Field(default=None, alias="sourceReference")
    target_incident_id: str | None = Field(default=None, alias="targetIncidentId")
    status: ImportStatus = ImportStatus.failed
    warnings: list[str] = Field(default_factory=list)
    error: str | None = None


class ImportSummary(CamelModel):
    total: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0


class ImportReport(CamelModel):
    imported_at: dt.datetime = Field(alias="importedAt")
    dry_run: bool = Field(default=False, alias="dryRun")
    summary: ImportSummary = Field(default_factory=ImportSummary)
    results: list[ImportResult] = Field(default_factory=list)


class WarningCount(CamelModel):
    message: str
    count: int


class WarningsReport(CamelModel):
    generated_at: dt.datetime = Field(alias="generatedAt")
    total_warnings: int = Field(default=0, alias="totalWarnings")
    unique_warnings: int = Field(default=0, alias="uniqueWarnings")
    by_kind: dict[str, int] = Field(default_factory=dict, alias="byKind")
    missing_options_by_field: dict[str, dict[str, int]] = Field(default_factory=dict, alias="missingOptionsByField")
    warnings: list[WarningCount] = Field(default_factory=list)


class StateFile(CamelModel):
    mapping: dict[str, str] = Field(default_factory=dict)
    last_imported_at: dt.datetime | None = Field(default=None, alias="lastImportedAt")
