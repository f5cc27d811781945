"""Cross-workflow analysis: shared caches and consolidated recommendations."""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict, Field

from cicheck.analyzer.models import RecommendationCategory
from cicheck.config import DEFAULT_CONFIG, AnalyzerConfig
from cicheck.validator.pipeline import ValidationResult, validate_workflow
from cicheck.workflow.models import ValidationContext, WorkflowDocument

logger = logging.getLogger(__name__)


class WorkflowReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    filename: str
    result: ValidationResult


class SharedCachingOpportunity(BaseModel):
    """The same dependency cache missing from several workflows."""

    model_config = ConfigDict(frozen=True)

    framework: str
    cache_type: str
    workflows: list[str]
    jobs: list[str]
    estimated_saving: int


class ConsolidatedRecommendation(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: RecommendationCategory
    title: str
    workflows: list[str]
    recommendation_ids: list[str]
    estimated_time_saving: int


class MultiWorkflowAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    results: list[WorkflowReport] = Field(default_factory=list)
    shared_caching_opportunities: list[SharedCachingOpportunity] = Field(default_factory=list)
    consolidated_recommendations: list[ConsolidatedRecommendation] = Field(default_factory=list)
    total_estimated_saving: int = 0


CATEGORY_TITLES = {
    RecommendationCategory.caching: "Standardize dependency caching across workflows",
    RecommendationCategory.parallelization: "Apply the same job layout across workflows",
    RecommendationCategory.resource: "Align runner choices across workflows",
    RecommendationCategory.strategy: "Apply shared workflow conventions",
}


def _shared_caches(reports: list[WorkflowReport]) -> list[SharedCachingOpportunity]:
    groups: dict[tuple[str, str], list[tuple[str, str, int]]] = {}
    for report in reports:
        for opp in report.result.performance_analysis.caching_opportunities:
            groups.setdefault((opp.framework, opp.cache_type), []).append(
                (report.filename, opp.job, opp.estimated_saving)
            )

    shared: list[SharedCachingOpportunity] = []
    for (framework, cache_type), entries in groups.items():
        workflows = list(dict.fromkeys(name for name, _, _ in entries))
        if len(workflows) < 2:
            continue
        shared.append(
            SharedCachingOpportunity(
                framework=framework,
                cache_type=cache_type,
                workflows=workflows,
                jobs=[f"{name}:{job}" for name, job, _ in entries],
                estimated_saving=sum(saving for _, _, saving in entries),
            )
        )
    return shared


def _consolidate(reports: list[WorkflowReport]) -> list[ConsolidatedRecommendation]:
    by_category: dict[RecommendationCategory, list[tuple[str, str, int]]] = {}
    for report in reports:
        for rec in report.result.recommendations:
            by_category.setdefault(rec.category, []).append(
                (report.filename, rec.id, rec.estimated_time_saving)
            )

    consolidated: list[ConsolidatedRecommendation] = []
    for category in RecommendationCategory:
        entries = by_category.get(category, [])
        workflows = list(dict.fromkeys(name for name, _, _ in entries))
        if len(workflows) < 2:
            continue
        consolidated.append(
            ConsolidatedRecommendation(
                category=category,
                title=CATEGORY_TITLES[category],
                workflows=workflows,
                recommendation_ids=[f"{name}:{rec_id}" for name, rec_id, _ in entries],
                estimated_time_saving=sum(saving for _, _, saving in entries),
            )
        )
    return consolidated


def analyze_workflows(
    documents: list[WorkflowDocument],
    context: ValidationContext | None = None,
    config: AnalyzerConfig | None = None,
) -> MultiWorkflowAnalysis:
    """Validate several workflows and look for improvements they share."""
    config = config or DEFAULT_CONFIG
    reports = [
        WorkflowReport(filename=doc.relative_path or doc.filename, result=validate_workflow(doc, context, config))
        for doc in documents
    ]
    total = sum(rec.estimated_time_saving for report in reports for rec in report.result.recommendations)
    analysis = MultiWorkflowAnalysis(
        results=reports,
        shared_caching_opportunities=_shared_caches(reports),
        consolidated_recommendations=_consolidate(reports),
        total_estimated_saving=total,
    )
    logger.info(
        "Analyzed %d workflow(s): %d shared cache(s), %ds total saving",
        len(reports),
        len(analysis.shared_caching_opportunities),
        total,
    )
    return analysis
