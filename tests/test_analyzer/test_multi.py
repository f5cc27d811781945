"""Tests for cross-workflow analysis."""

from __future__ import annotations

from cicheck.analyzer.models import RecommendationCategory
from cicheck.analyzer.multi import analyze_workflows
from cicheck.workflow.models import WorkflowDocument


def _copy(doc: WorkflowDocument, name: str) -> WorkflowDocument:
    return doc.model_copy(update={"filename": name})


class TestAnalyzeWorkflows:
    def test_shared_cache_across_workflows(self, load_workflow) -> None:
        node = load_workflow("node_ci.yml")
        analysis = analyze_workflows([_copy(node, "ci.yml"), _copy(node, "nightly.yml")])

        assert [r.filename for r in analysis.results] == ["ci.yml", "nightly.yml"]
        [shared] = analysis.shared_caching_opportunities
        assert shared.framework == "node"
        assert shared.workflows == ["ci.yml", "nightly.yml"]
        assert shared.jobs == ["ci.yml:test", "nightly.yml:test"]
        assert shared.estimated_saving == 120
        assert analysis.total_estimated_saving == 120

    def test_consolidated_recommendations(self, load_workflow) -> None:
        node = load_workflow("node_ci.yml")
        analysis = analyze_workflows([_copy(node, "a.yml"), _copy(node, "b.yml")])
        categories = [c.category for c in analysis.consolidated_recommendations]
        assert categories == [RecommendationCategory.caching, RecommendationCategory.parallelization]
        caching = analysis.consolidated_recommendations[0]
        assert caching.recommendation_ids == ["a.yml:cache-test-node", "b.yml:cache-test-node"]

    def test_single_workflow_shares_nothing(self, load_workflow) -> None:
        analysis = analyze_workflows([load_workflow("node_ci.yml"), load_workflow("calibrated.yml")])
        assert analysis.shared_caching_opportunities == []
        assert analysis.consolidated_recommendations == []

    def test_relative_path_names_the_report(self, load_workflow) -> None:
        doc = load_workflow("calibrated.yml").model_copy(update={"relative_path": ".github/workflows/ci.yml"})
        analysis = analyze_workflows([doc])
        assert analysis.results[0].filename == ".github/workflows/ci.yml"

    def test_empty(self) -> None:
        analysis = analyze_workflows([])
        assert analysis.results == []
        assert analysis.total_estimated_saving == 0
