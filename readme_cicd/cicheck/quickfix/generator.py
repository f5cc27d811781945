"""Deterministic text edits for Quick Fix recommendations."""

from __future__ import annotations

import re

from cicheck.analyzer.models import Recommendation, YamlChange
from cicheck.analyzer.performance import cache_step_lines
from cicheck.quickfix.classifier import (
    FixClassification,
    QuickFix,
    TextEdit,
    classify,
    requires_confirmation,
)
from cicheck.workflow.models import ParsedStructure

DASH_RE = re.compile(r"^(\s*)-\s")
MATRIX_KEY_RE = re.compile(r"^(\s*)matrix:")


def _source_line(structure: ParsedStructure, line: int) -> str | None:
    if line < 1 or line > len(structure.source_lines):
        return None
    return structure.source_lines[line - 1]


def _insert(line: int, text: str) -> TextEdit:
    return TextEdit(start_line=line, start_column=1, end_line=line, end_column=1, new_text=text)


def _replace(line: int, column: int, old: str, new: str) -> TextEdit:
    return TextEdit(
        start_line=line,
        start_column=column,
        end_line=line,
        end_column=column + len(old),
        new_text=new,
    )


def fix_step_insertion(change: YamlChange, structure: ParsedStructure) -> TextEdit | None:
    """Insert a new step above the step at ``change.index``, matching its indentation."""
    job = structure.jobs.get(str(change.path[1]))
    if job is None or change.index is None or not isinstance(change.value, dict):
        return None
    target = next((s for s in job.steps if s.index == change.index), None)
    if target is None:
        return None
    text = _source_line(structure, target.span.line)
    m = DASH_RE.match(text or "")
    if m is None:
        return None
    lines = cache_step_lines(change.value, len(m.group(1)))
    return _insert(target.span.line, "\n".join(lines) + "\n")


def fix_fail_fast(change: YamlChange, structure: ParsedStructure) -> TextEdit | None:
    """Insert ``fail-fast`` directly above ``matrix:``."""
    job = structure.jobs.get(str(change.path[1]))
    if job is None or job.matrix_span is None:
        return None
    text = _source_line(structure, job.matrix_span.line)
    m = MATRIX_KEY_RE.match(text or "")
    if m is None:
        return None
    value = "true" if change.value else "false"
    return _insert(job.matrix_span.line, f"{m.group(1)}fail-fast: {value}\n")


def fix_action_ref(change: YamlChange, structure: ParsedStructure) -> TextEdit | None:
    """Swap a step's ``uses`` value in place."""
    job = structure.jobs.get(str(change.path[1]))
    if job is None:
        return None
    step = next((s for s in job.steps if s.index == change.path[3]), None)
    if step is None or step.uses is None or step.uses_span is None:
        return None
    column = structure.column_of(step.uses_span.line, step.uses)
    if not column:
        return None
    return _replace(step.uses_span.line, column, step.uses, str(change.value))


def fix_runner(change: YamlChange, structure: ParsedStructure) -> TextEdit | None:
    """Swap a single-label ``runs-on`` value in place."""
    job = structure.jobs.get(str(change.path[1]))
    if job is None or not isinstance(job.runs_on, str) or job.runs_on_span is None:
        return None
    text = _source_line(structure, job.runs_on_span.line)
    if text is None or "runs-on:" not in text:
        return None
    pos = text.find(job.runs_on, text.find("runs-on:") + len("runs-on:"))
    if pos < 0:
        return None
    return _replace(job.runs_on_span.line, pos + 1, job.runs_on, str(change.value))


def generate_edit(recommendation: Recommendation, structure: ParsedStructure) -> TextEdit | None:
    """Compute the text edit for a single-change recommendation, or None."""
    changes = recommendation.implementation.changes
    if len(changes) != 1:
        return None
    change = changes[0]
    path = change.path
    if len(path) < 2 or path[0] != "jobs":
        return None

    if len(path) == 3 and path[2] == "steps":
        return fix_step_insertion(change, structure)
    if len(path) == 4 and path[2:] == ["strategy", "fail-fast"]:
        return fix_fail_fast(change, structure)
    if len(path) == 5 and path[2] == "steps" and path[4] == "uses":
        return fix_action_ref(change, structure)
    if len(path) == 3 and path[2] == "runs-on":
        return fix_runner(change, structure)
    return None


def build_quick_fixes(recommendations: list[Recommendation], structure: ParsedStructure) -> list[QuickFix]:
    """Quick fixes for every recommendation that maps to a mechanical edit."""
    fixes: list[QuickFix] = []
    for rec in recommendations:
        if classify(rec) != FixClassification.QUICK:
            continue
        edit = generate_edit(rec, structure)
        if edit is None:
            continue
        fixes.append(
            QuickFix(
                id=f"fix-{rec.id}",
                recommendation_id=rec.id,
                title=rec.title,
                description=rec.description,
                kind=FixClassification.QUICK,
                edit=edit,
                requires_confirmation=requires_confirmation(rec),
            )
        )
    return fixes
