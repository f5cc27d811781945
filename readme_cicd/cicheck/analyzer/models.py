"""Data models for the performance and security analyzers."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from cicheck.validator.models import Finding, Severity


class RecommendationCategory(str, Enum):
    caching = "caching"
    parallelization = "parallelization"
    resource = "resource"
    strategy = "strategy"


class Priority(str, Enum):
    high = "high"
    medium = "medium"
    low = "low"


PRIORITY_ORDER = {Priority.high: 0, Priority.medium: 1, Priority.low: 2}


class ImplementationType(str, Enum):
    step_addition = "step-addition"
    job_restructure = "job-restructure"
    config_change = "config-change"


class ChangeOperation(str, Enum):
    add = "add"
    modify = "modify"
    remove = "remove"


class YamlChange(BaseModel):
    """One structural edit: ``path`` is a list of mapping keys / list indexes."""

    model_config = ConfigDict(frozen=True)

    path: list[str | int]
    operation: ChangeOperation
    value: Any = None
    index: int | None = None

    @property
    def dotted(self) -> str:
        return ".".join(str(p) for p in self.path)


class Implementation(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: ImplementationType
    changes: list[YamlChange] = Field(default_factory=list)
    example: str = ""
    documentation: str = ""


class StepRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    job: str
    step_index: int | None = None
    step_name: str | None = None


class Recommendation(BaseModel):
    """An actionable improvement, distinct from a finding."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str
    category: RecommendationCategory
    priority: Priority
    estimated_time_saving: int = 0
    implementation: Implementation
    applicable_steps: list[StepRef] = Field(default_factory=list)


class CachingOpportunity(BaseModel):
    model_config = ConfigDict(frozen=True)

    job: str
    step_name: str
    step_index: int
    framework: str
    cache_type: str
    estimated_saving: int
    cache_key: str
    cache_paths: list[str] = Field(default_factory=list)


class BottleneckType(str, Enum):
    slow_step = "slow-step"
    inefficient_matrix = "inefficient-matrix"
    dependency_wait = "dependency-wait"


class Bottleneck(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: BottleneckType
    severity: Severity
    location: str
    job: str
    step_index: int | None = None
    description: str
    estimated_duration: int = 0
    suggestions: list[str] = Field(default_factory=list)


class ParallelStructure(str, Enum):
    sequential = "sequential"
    partially_parallel = "partially-parallel"
    parallel = "parallel"
    matrix = "matrix"


class ParallelizationSuggestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    current_structure: ParallelStructure
    suggested_structure: ParallelStructure
    affected_jobs: list[str]
    strategy: str
    configuration: dict[str, Any] = Field(default_factory=dict)
    example: str = ""
    estimated_reduction: int = 0


class ResourceOptimization(BaseModel):
    model_config = ConfigDict(frozen=True)

    job: str
    resource_type: str = "runner"
    current_usage: str
    recommended_usage: str
    reasoning: str
    cost_impact: str = "decrease"
    performance_impact: float = 0.0


class EstimatedImprovement(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: str
    current_time: int
    optimized_time: int
    time_saving: int
    confidence: float


class PerformanceReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    analyzed: bool = False
    score: int = 100
    findings: list[Finding] = Field(default_factory=list)
    caching_opportunities: list[CachingOpportunity] = Field(default_factory=list)
    bottlenecks: list[Bottleneck] = Field(default_factory=list)
    parallelization_suggestions: list[ParallelizationSuggestion] = Field(default_factory=list)
    resource_optimizations: list[ResourceOptimization] = Field(default_factory=list)
    recommendations: list[Recommendation] = Field(default_factory=list)
    estimated_improvements: list[EstimatedImprovement] = Field(default_factory=list)


class SecurityReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    analyzed: bool = False
    score: int = 100
    vulnerabilities: list[Finding] = Field(default_factory=list)
    recommendations: list[Recommendation] = Field(default_factory=list)
    advice: list[str] = Field(default_factory=list)


def sort_recommendations(recommendations: list[Recommendation]) -> list[Recommendation]:
    """Priority first, then larger saving, then id for a stable order."""
    return sorted(
        recommendations,
        key=lambda r: (PRIORITY_ORDER[r.priority], -r.estimated_time_saving, r.id),
    )
