"""Validation passes for workflow documents."""

from cicheck.validator.models import Finding, FindingCategory, Impact, PassResult, Severity, Span

__all__ = [
    "Finding",
    "FindingCategory",
    "Impact",
    "PassResult",
    "Severity",
    "Span",
]
