"""Validation data models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    """Severity level for findings."""

    error = "error"
    warning = "warning"
    info = "info"


class FindingCategory(str, Enum):
    syntax = "syntax"
    schema = "schema"
    secret = "secret"
    performance = "performance"
    security = "security"


class Impact(str, Enum):
    high = "high"
    medium = "medium"
    low = "low"


class Span(BaseModel):
    """Source position of a node. Lines and columns are 1-based; 0 means unknown."""

    model_config = ConfigDict(frozen=True)

    line: int = 0
    column: int = 0
    end_line: int | None = None
    end_column: int | None = None


class Finding(BaseModel):
    """A single static-analysis finding."""

    model_config = ConfigDict(frozen=True)

    code: str
    severity: Severity
    message: str
    category: FindingCategory
    location: Span = Field(default_factory=Span)
    impact: Impact | None = None
    suggestion: str | None = None
    job: str | None = None
    step_index: int | None = None


class PassResult(BaseModel):
    """Outcome of one validation pass: errors block validity, warnings do not."""

    model_config = ConfigDict(frozen=True)

    is_valid: bool = True
    errors: list[Finding] = Field(default_factory=list)
    warnings: list[Finding] = Field(default_factory=list)

    @classmethod
    def from_findings(cls, findings: list[Finding]) -> PassResult:
        errors = [f for f in findings if f.severity == Severity.error]
        warnings = [f for f in findings if f.severity != Severity.error]
        return cls(is_valid=not errors, errors=errors, warnings=warnings)

    @property
    def findings(self) -> list[Finding]:
        return [*self.errors, *self.warnings]
