"""Validation pipeline: orchestrates all passes over one parsed workflow."""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from cicheck.analyzer.models import PerformanceReport, Recommendation, SecurityReport, sort_recommendations
from cicheck.analyzer.performance import analyze_performance, performance_score
from cicheck.analyzer.security import analyze_security
from cicheck.config import DEFAULT_CONFIG, AnalyzerConfig
from cicheck.quickfix.classifier import QuickFix
from cicheck.quickfix.generator import build_quick_fixes
from cicheck.validator.action_refs import check_action_refs
from cicheck.validator.models import Finding, FindingCategory, PassResult, Severity
from cicheck.validator.schema import check_schema
from cicheck.validator.secrets import check_secrets
from cicheck.workflow.models import ParsedStructure, ParseFailure, ValidationContext, WorkflowDocument
from cicheck.workflow.parser import parse_workflow

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ValidationResult(BaseModel):
    """Scored report for one workflow document."""

    model_config = ConfigDict(frozen=True)

    overall_score: int
    is_valid: bool
    syntax_validation: PassResult = Field(default_factory=PassResult)
    action_validation: PassResult = Field(default_factory=PassResult)
    secret_validation: PassResult = Field(default_factory=PassResult)
    performance_analysis: PerformanceReport = Field(default_factory=PerformanceReport)
    security_analysis: SecurityReport = Field(default_factory=SecurityReport)
    recommendations: list[Recommendation] = Field(default_factory=list)
    quick_fixes: list[QuickFix] = Field(default_factory=list)

    @property
    def findings(self) -> list[Finding]:
        """Every finding and vulnerability across all passes."""
        return [
            *self.syntax_validation.findings,
            *self.action_validation.findings,
            *self.secret_validation.findings,
            *self.performance_analysis.findings,
            *self.security_analysis.vulnerabilities,
        ]


def analysis_error(category: FindingCategory, pass_name: str, exc: Exception) -> Finding:
    return Finding(
        code="analysis-error",
        severity=Severity.error,
        category=category,
        message=f"Internal error in {pass_name} analysis: {exc}",
    )


def _run_pass(
    pass_name: str,
    category: FindingCategory,
    run: Callable[[], T],
    on_error: Callable[[Finding], T],
) -> T:
    """Run one pass; an unexpected exception becomes an ``analysis-error`` finding."""
    try:
        return run()
    except Exception as e:
        logger.exception("%s analysis failed", pass_name)
        return on_error(analysis_error(category, pass_name, e))


def overall_score(result_findings: list[Finding], report: PerformanceReport, config: AnalyzerConfig) -> int:
    penalty = sum(config.severity_penalties.get(f.severity.value, 0) for f in result_findings)
    penalty += sum(config.severity_penalties.get(b.severity.value, 0) for b in report.bottlenecks)
    return max(0, 100 - penalty)


def _failed_parse(failure: ParseFailure) -> ValidationResult:
    return ValidationResult(
        overall_score=0,
        is_valid=False,
        syntax_validation=PassResult.from_findings([failure.finding]),
    )


def run_passes(
    structure: ParsedStructure,
    context: ValidationContext | None,
    config: AnalyzerConfig,
) -> ValidationResult:
    """Run every pass against an already-parsed structure and aggregate."""
    syntax = _run_pass(
        "schema",
        FindingCategory.schema,
        lambda: PassResult.from_findings(check_schema(structure)),
        lambda f: PassResult.from_findings([f]),
    )
    actions = _run_pass(
        "action reference",
        FindingCategory.schema,
        lambda: check_action_refs(structure, config),
        lambda f: PassResult.from_findings([f]),
    )
    secrets = _run_pass(
        "secret",
        FindingCategory.secret,
        lambda: check_secrets(structure, context),
        lambda f: PassResult.from_findings([f]),
    )
    performance = _run_pass(
        "performance",
        FindingCategory.performance,
        lambda: analyze_performance(structure, config, context),
        lambda f: PerformanceReport(findings=[f], score=performance_score([f], [], config)),
    )
    security = _run_pass(
        "security",
        FindingCategory.security,
        lambda: analyze_security(structure, config),
        lambda f: SecurityReport(vulnerabilities=[f]),
    )

    recommendations = sort_recommendations(
        [*performance.recommendations, *security.recommendations]
    )
    quick_fixes = _run_pass(
        "quick fix",
        FindingCategory.performance,
        lambda: build_quick_fixes(recommendations, structure),
        lambda f: [],
    )

    result = ValidationResult(
        overall_score=0,
        is_valid=False,
        syntax_validation=syntax,
        action_validation=actions,
        secret_validation=secrets,
        performance_analysis=performance,
        security_analysis=security,
        recommendations=recommendations,
        quick_fixes=quick_fixes,
    )
    findings = result.findings
    return result.model_copy(
        update={
            "overall_score": overall_score(findings, performance, config),
            "is_valid": not any(f.severity == Severity.error for f in findings),
        }
    )


def validate_workflow(
    document: WorkflowDocument,
    context: ValidationContext | None = None,
    config: AnalyzerConfig | None = None,
) -> ValidationResult:
    """Validate and score one workflow document.

    Never raises for content problems: malformed YAML yields a syntax-only
    result with score 0. Passing anything other than a WorkflowDocument is a
    call-contract violation and raises TypeError.
    """
    if not isinstance(document, WorkflowDocument):
        raise TypeError(f"document must be a WorkflowDocument, got {type(document).__name__}")
    config = config or DEFAULT_CONFIG

    parsed = parse_workflow(document.raw_content)
    if isinstance(parsed, ParseFailure):
        logger.info("Workflow %s failed to parse: %s", document.filename, parsed.finding.message)
        return _failed_parse(parsed)

    result = run_passes(parsed, context, config)
    logger.info(
        "Validated %s: score=%d valid=%s findings=%d recommendations=%d",
        document.filename,
        result.overall_score,
        result.is_valid,
        len(result.findings),
        len(result.recommendations),
    )
    return result
