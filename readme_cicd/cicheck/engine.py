"""WorkflowAnalyzer: the analysis entry points bound to one configuration."""

from __future__ import annotations

from cicheck.analyzer.multi import MultiWorkflowAnalysis, analyze_workflows
from cicheck.config import DEFAULT_CONFIG, AnalyzerConfig
from cicheck.quickfix.batch import OptimizedWorkflow, apply_recommendations
from cicheck.simulator.engine import simulate_workflow
from cicheck.simulator.models import SimulationResult
from cicheck.validator.pipeline import ValidationResult, validate_workflow
from cicheck.workflow.models import SimulationOptions, ValidationContext, WorkflowDocument


class WorkflowAnalyzer:
    """Holds a read-only AnalyzerConfig; safe to share between threads."""

    def __init__(self, config: AnalyzerConfig | None = None) -> None:
        self.config = config or DEFAULT_CONFIG

    def validate(
        self, document: WorkflowDocument, context: ValidationContext | None = None
    ) -> ValidationResult:
        return validate_workflow(document, context, self.config)

    def simulate(
        self, document: WorkflowDocument, options: SimulationOptions | None = None
    ) -> SimulationResult:
        return simulate_workflow(document, options, self.config)

    def optimize(
        self,
        document: WorkflowDocument,
        recommendation_ids: list[str],
        context: ValidationContext | None = None,
        confirmed: set[str] | None = None,
    ) -> OptimizedWorkflow:
        return apply_recommendations(document, recommendation_ids, context, confirmed, self.config)

    def analyze_many(
        self, documents: list[WorkflowDocument], context: ValidationContext | None = None
    ) -> MultiWorkflowAnalysis:
        return analyze_workflows(documents, context, self.config)
