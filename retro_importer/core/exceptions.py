"""Custom exceptions for importer-specific error handling."""

from __future__ import annotations

from typing import Optional, Dict, Any


class RetroImporterException(Exception):
    """Base exception for all importer errors."""

    def __init__(
        self,
        message: str,
        *,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for reports."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }


# ===== INCIDENT.IO EXCEPTIONS =====


class IncidentIoException(RetroImporterException):
    """Base exception for incident.io API errors."""


class IncidentIoConnectionError(IncidentIoException):
    """Raised when incident.io cannot be reached after all retries."""

    def __init__(self, message: str = "Failed to connect to incident.io"):
        super().__init__(message, error_code="INCIDENT_IO_CONNECTION_ERROR")


class IncidentIoApiError(IncidentIoException):
    """Raised for a non-retriable (or retry-exhausted) API response."""

    def __init__(self, status_code: int, body: str, *, method: str = "", path: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(
            f"API error ({status_code}): {body}",
            error_code="INCIDENT_IO_API_ERROR",
            details={"status_code": status_code, "method": method, "path": path},
        )

    @property
    def is_external_id_conflict(self) -> bool:
        return 400 <= self.status_code < 500 and "external id already exists" in self.body.lower()


class IncidentIoRateLimitError(IncidentIoApiError):
    """Raised when rate limiting persists beyond the retry budget."""

    def __init__(self, body: str = "rate limited", *, retry_after: Optional[float] = None, method: str = "", path: str = ""):
        super().__init__(429, body, method=method, path=path)
        self.error_code = "INCIDENT_IO_RATE_LIMIT"
        self.details["retry_after"] = retry_after


# ===== MAPPING EXCEPTIONS =====


class MappingException(RetroImporterException):
    """Base exception for entity resolution errors."""


class StrictMappingError(MappingException):
    """Raised in strict mode when a required entity could not be resolved."""

    def __init__(self, entity: str, *, reference: Optional[str] = None):
        details: Dict[str, Any] = {"entity": entity}
        if reference:
            details["reference"] = reference
        super().__init__(f"{entity.capitalize()} mapping failed", error_code="STRICT_MAPPING", details=details)


class MalformedRecordError(MappingException):
    """Raised when an exported record cannot be interpreted."""

    def __init__(self, message: str, *, line: Optional[int] = None):
        details = {"line": line} if line is not None else {}
        super().__init__(message, error_code="MALFORMED_RECORD", details=details)


# ===== CONFIGURATION / STATE EXCEPTIONS =====


class InvalidConfigurationError(RetroImporterException):
    """Raised when configuration is invalid."""

    def __init__(self, message: str, setting: Optional[str] = None):
        details = {"setting": setting} if setting else {}
        super().__init__(message, error_code="INVALID_CONFIG", details=details)


class StateFileError(RetroImporterException):
    """Raised when the dedup state file cannot be read."""

    def __init__(self, path: str, reason: str):
        super().__init__(
            f"Cannot load state file {path}: {reason}",
            error_code="STATE_FILE_ERROR",
            details={"path": path},
        )
