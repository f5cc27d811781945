"""Typed view of a GitHub Actions workflow document."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from cicheck.validator.models import Finding, Span


class WorkflowType(str, Enum):
    ci = "ci"
    cd = "cd"
    release = "release"
    security = "security"
    performance = "performance"
    maintenance = "maintenance"


class WorkflowDocument(BaseModel):
    """The analysis unit handed over by the caller."""

    model_config = ConfigDict(frozen=True)

    filename: str = "workflow.yml"
    raw_content: str
    type: WorkflowType = WorkflowType.ci
    relative_path: str = ""


# Framework names reported by README detection, mapped onto cache ecosystems
FRAMEWORK_ALIASES: dict[str, str] = {
    "node": "node",
    "nodejs": "node",
    "node.js": "node",
    "javascript": "node",
    "typescript": "node",
    "react": "node",
    "vue": "node",
    "angular": "node",
    "next.js": "node",
    "python": "python",
    "django": "python",
    "flask": "python",
    "fastapi": "python",
    "java": "java",
    "maven": "java",
    "gradle": "java",
    "spring": "java",
    "go": "go",
    "golang": "go",
    "docker": "docker",
}


class Framework(BaseModel):
    """A framework detected in the project's README."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str | None = None
    confidence: float = 1.0

    @property
    def ecosystem(self) -> str:
        key = self.name.strip().lower()
        return FRAMEWORK_ALIASES.get(key, key)


class ValidationContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    detected_frameworks: list[Framework] | None = None
    project_secrets: list[str] | None = None


class SimulationOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    available_secrets: list[str] | None = None


class TriggerSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    events: list[str] = Field(default_factory=list)
    span: Span = Field(default_factory=Span)


class StepSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int
    name: str | None = None
    id: str | None = None
    uses: str | None = None
    run: str | None = None
    shell: str | None = None
    env: dict[str, str] = Field(default_factory=dict)
    with_: dict[str, Any] = Field(default_factory=dict)
    if_: str | None = None
    span: Span = Field(default_factory=Span)
    uses_span: Span | None = None
    run_span: Span | None = None
    env_spans: dict[str, Span] = Field(default_factory=dict)
    with_spans: dict[str, Span] = Field(default_factory=dict)
    run_body_line: int = 0

    @property
    def label(self) -> str:
        if self.name:
            return self.name
        if self.uses:
            return self.uses
        if self.run:
            return self.run.strip().splitlines()[0] if self.run.strip() else f"step {self.index + 1}"
        return f"step {self.index + 1}"

    @property
    def action_name(self) -> str | None:
        """``owner/repo`` part of ``uses``, without path or ref."""
        if not self.uses or "@" not in self.uses:
            return None
        target = self.uses.split("@", 1)[0]
        parts = target.split("/")
        if len(parts) < 2:
            return None
        return f"{parts[0]}/{parts[1]}".lower()

    @property
    def action_ref(self) -> str | None:
        if not self.uses or "@" not in self.uses:
            return None
        return self.uses.split("@", 1)[1]

    def run_line(self, offset: int) -> int:
        """Source line of the ``offset``-th line of the run script."""
        if self.run_body_line:
            return self.run_body_line + offset
        if self.run_span is not None:
            return self.run_span.line + offset
        return self.span.line


class StrategySpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    matrix: dict[str, list[Any]] = Field(default_factory=dict)
    include_count: int = 0
    exclude_count: int = 0
    fail_fast: bool | None = None
    max_parallel: int | None = None
    matrix_expression: str | None = None

    @property
    def axis_product(self) -> int:
        """Product of all axis lengths, ignoring include/exclude."""
        total = 1
        for values in self.matrix.values():
            total *= len(values)
        return total

    @property
    def combinations(self) -> int:
        """Approximate number of matrix jobs GitHub would start."""
        if not self.matrix:
            return self.include_count or 1
        return max(self.axis_product - self.exclude_count, 0) + self.include_count


class JobSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    index: int
    name: str | None = None
    runs_on: str | list[str] | None = None
    needs: list[str] = Field(default_factory=list)
    steps: list[StepSpec] = Field(default_factory=list)
    has_steps_key: bool = False
    strategy: StrategySpec | None = None
    if_: str | None = None
    env: dict[str, str] = Field(default_factory=dict)
    env_spans: dict[str, Span] = Field(default_factory=dict)
    permissions: str | dict[str, str] | None = None
    permissions_span: Span | None = None
    uses: str | None = None
    with_: dict[str, Any] = Field(default_factory=dict)
    timeout_minutes: float | None = None
    span: Span = Field(default_factory=Span)
    runs_on_span: Span | None = None
    needs_span: Span | None = None
    strategy_span: Span | None = None
    matrix_span: Span | None = None

    @property
    def runner_labels(self) -> list[str]:
        if self.runs_on is None:
            return []
        if isinstance(self.runs_on, str):
            return [self.runs_on]
        return list(self.runs_on)

    @property
    def is_reusable_call(self) -> bool:
        return self.uses is not None


class ParsedStructure(BaseModel):
    """Result of a successful structural parse."""

    model_config = ConfigDict(frozen=True)

    keys: list[str] = Field(default_factory=list)
    name: str | None = None
    name_span: Span | None = None
    on: TriggerSpec | None = None
    jobs: dict[str, JobSpec] = Field(default_factory=dict)
    jobs_span: Span | None = None
    env: dict[str, str] = Field(default_factory=dict)
    env_spans: dict[str, Span] = Field(default_factory=dict)
    permissions: str | dict[str, str] | None = None
    permissions_span: Span | None = None
    shape_issues: list[Finding] = Field(default_factory=list)
    source_lines: list[str] = Field(default_factory=list)

    def iter_steps(self):
        """Yield ``(job, step)`` pairs in declaration order."""
        for job in self.jobs.values():
            for step in job.steps:
                yield job, step

    def column_of(self, line: int, text: str) -> int:
        """1-based column of ``text`` on ``line``, or 0 when not found."""
        if line < 1 or line > len(self.source_lines):
            return 0
        pos = self.source_lines[line - 1].find(text)
        return pos + 1 if pos >= 0 else 0


class ParseFailure(BaseModel):
    """Fatal parse outcome: exactly one syntax finding, no structure."""

    model_config = ConfigDict(frozen=True)

    finding: Finding
