"""Structured diagnostics attached to resources and entities."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    """Diagnostic severity."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Diagnostic(BaseModel):
    """A partial failure recorded instead of being raised.

    Diagnostics travel with the SourceResource, FormDescriptor or
    CatalogEntity they describe so one bad unit never stops its siblings.
    """

    model_config = ConfigDict(frozen=True)

    severity: Severity = Field(Severity.WARNING)
    code: str = Field(..., description="Machine-readable code, e.g. 'missing-type'")
    message: str = Field(..., description="Human-readable reason")
    path: str | None = Field(None, description="Schema path or field the diagnostic refers to")

    def __str__(self) -> str:
        where = f" at {self.path}" if self.path else ""
        return f"{self.severity.value}: {self.message}{where}"


def warning(code: str, message: str, path: str | None = None) -> Diagnostic:
    """Shorthand for a warning diagnostic."""
    return Diagnostic(severity=Severity.WARNING, code=code, message=message, path=path)


def error(code: str, message: str, path: str | None = None) -> Diagnostic:
    """Shorthand for an error diagnostic."""
    return Diagnostic(severity=Severity.ERROR, code=code, message=message, path=path)
