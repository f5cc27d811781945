"""Data models for workflow execution simulation."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from cicheck.validator.models import Impact, Severity


class JobTiming(BaseModel):
    model_config = ConfigDict(frozen=True)

    job: str
    start: int
    finish: int
    duration: int
    combinations: int = 1
    batches: int = 1


class StepEstimate(BaseModel):
    model_config = ConfigDict(frozen=True)

    job: str
    step_index: int
    name: str
    start: int
    duration: int


class ResourceUsage(BaseModel):
    """Synthetic totals: cpu in cores, memory and storage in MB."""

    model_config = ConfigDict(frozen=True)

    cpu: float = 0.0
    memory: int = 0
    storage: int = 0


class SimulationIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    severity: Severity
    message: str
    impact: Impact = Impact.medium
    job: str | None = None


class SimulationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    execution_plan: list[str] = Field(default_factory=list)
    job_timings: list[JobTiming] = Field(default_factory=list)
    step_plan: list[StepEstimate] = Field(default_factory=list)
    estimated_duration: int = 0
    resource_usage: ResourceUsage = Field(default_factory=ResourceUsage)
    potential_issues: list[SimulationIssue] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
