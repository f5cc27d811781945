"""Shared FastAPI dependencies."""

from __future__ import annotations

from cicheck.engine import WorkflowAnalyzer

_analyzer: WorkflowAnalyzer | None = None


def get_analyzer() -> WorkflowAnalyzer:
    """FastAPI dependency: return the shared WorkflowAnalyzer."""
    assert _analyzer is not None, "WorkflowAnalyzer not initialised"
    return _analyzer
