"""Workflow schema validation: required keys, job shape, naming rules."""

from __future__ import annotations

import re

from cicheck.validator.models import Finding, FindingCategory, Severity, Span
from cicheck.workflow.graph import dependency_graph, find_cycle
from cicheck.workflow.models import JobSpec, ParsedStructure

ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
JOB_ID_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")

KNOWN_TOP_LEVEL_KEYS = {
    "name",
    "run-name",
    "on",
    "permissions",
    "env",
    "defaults",
    "concurrency",
    "jobs",
}

KNOWN_EVENTS = {
    "branch_protection_rule",
    "check_run",
    "check_suite",
    "create",
    "delete",
    "deployment",
    "deployment_status",
    "discussion",
    "discussion_comment",
    "fork",
    "gollum",
    "issue_comment",
    "issues",
    "label",
    "merge_group",
    "milestone",
    "page_build",
    "project",
    "project_card",
    "project_column",
    "public",
    "pull_request",
    "pull_request_review",
    "pull_request_review_comment",
    "pull_request_target",
    "push",
    "registry_package",
    "release",
    "repository_dispatch",
    "schedule",
    "status",
    "watch",
    "workflow_call",
    "workflow_dispatch",
    "workflow_run",
}


def _finding(
    code: str,
    severity: Severity,
    message: str,
    span: Span | None = None,
    job: str | None = None,
    step_index: int | None = None,
    suggestion: str | None = None,
) -> Finding:
    return Finding(
        code=code,
        severity=severity,
        category=FindingCategory.schema,
        message=message,
        location=span or Span(),
        job=job,
        step_index=step_index,
        suggestion=suggestion,
    )


def check_required_keys(structure: ParsedStructure) -> list[Finding]:
    issues: list[Finding] = []

    if structure.name is None:
        issues.append(
            _finding(
                "missing-workflow-name",
                Severity.info,
                "Workflow has no name; GitHub will display the file path instead",
                Span(line=1, column=1),
            )
        )

    if structure.on is None or not structure.on.events:
        issues.append(
            _finding(
                "schema-validation-error",
                Severity.error,
                "Template must include trigger events (on:)",
                structure.on.span if structure.on else Span(line=1, column=1),
            )
        )

    if not structure.jobs and not any(i.code == "malformed-jobs" for i in structure.shape_issues):
        issues.append(
            _finding(
                "schema-validation-error",
                Severity.error,
                "Template must include jobs section",
                structure.jobs_span or Span(line=1, column=1),
            )
        )

    for key in structure.keys:
        if key not in KNOWN_TOP_LEVEL_KEYS:
            issues.append(
                _finding(
                    "unknown-top-level-key",
                    Severity.warning,
                    f"Unknown top-level key '{key}'",
                    Span(line=_key_line(structure, key), column=1),
                    suggestion="Valid keys: " + ", ".join(sorted(KNOWN_TOP_LEVEL_KEYS)),
                )
            )

    return issues


def _key_line(structure: ParsedStructure, key: str) -> int:
    """Line of a top-level key, found by scanning unindented source lines."""
    for i, line in enumerate(structure.source_lines, start=1):
        if line.startswith(f"{key}:") or line.startswith(f'"{key}":') or line.startswith(f"'{key}':"):
            return i
    return 0


def check_triggers(structure: ParsedStructure) -> list[Finding]:
    if structure.on is None:
        return []
    return [
        _finding(
            "unknown-trigger",
            Severity.warning,
            f"Unknown trigger event '{event}'",
            structure.on.span,
        )
        for event in structure.on.events
        if event not in KNOWN_EVENTS
    ]


def check_env_names(names: dict[str, object], spans: dict[str, Span], where: str, job: str | None = None) -> list[Finding]:
    return [
        _finding(
            "invalid-env-name",
            Severity.error,
            f"Invalid environment variable name '{name}' in {where}",
            spans.get(name),
            job=job,
            suggestion="Use letters, digits and underscores, not starting with a digit",
        )
        for name in names
        if not ENV_NAME_RE.match(name)
    ]


def check_job(job: JobSpec, all_jobs: set[str]) -> list[Finding]:
    issues: list[Finding] = []

    if not JOB_ID_RE.match(job.id):
        issues.append(
            _finding(
                "invalid-job-id",
                Severity.error,
                f"Job id '{job.id}' must start with a letter or '_' and contain only alphanumerics, '-' or '_'",
                job.span,
                job=job.id,
            )
        )

    if not job.is_reusable_call:
        if job.runs_on is None:
            issues.append(
                _finding(
                    "missing-runs-on",
                    Severity.error,
                    f"Job '{job.id}' is missing 'runs-on'",
                    job.span,
                    job=job.id,
                )
            )
        if not job.steps and not job.has_steps_key:
            issues.append(
                _finding(
                    "missing-steps",
                    Severity.error,
                    f"Job '{job.id}' has no steps",
                    job.span,
                    job=job.id,
                )
            )
        elif not job.steps:
            issues.append(
                _finding(
                    "missing-steps",
                    Severity.error,
                    f"Job '{job.id}' has an empty steps list",
                    job.span,
                    job=job.id,
                )
            )

    for dep in job.needs:
        if dep not in all_jobs:
            issues.append(
                _finding(
                    "unknown-job-dependency",
                    Severity.error,
                    f"Job '{job.id}' needs unknown job '{dep}'",
                    job.needs_span or job.span,
                    job=job.id,
                )
            )

    issues.extend(check_env_names(job.env, job.env_spans, f"job '{job.id}'", job.id))

    for step in job.steps:
        if step.uses is not None and step.run is not None:
            issues.append(
                _finding(
                    "invalid-step",
                    Severity.error,
                    f"Job '{job.id}' step {step.index + 1} has both 'uses' and 'run'",
                    step.span,
                    job=job.id,
                    step_index=step.index,
                )
            )
        elif step.uses is None and step.run is None:
            issues.append(
                _finding(
                    "invalid-step",
                    Severity.error,
                    f"Job '{job.id}' step {step.index + 1} must have either 'uses' or 'run'",
                    step.span,
                    job=job.id,
                    step_index=step.index,
                )
            )
        issues.extend(
            check_env_names(
                step.env,
                step.env_spans,
                f"job '{job.id}' step {step.index + 1}",
                job.id,
            )
        )

    return issues


def check_dependency_cycles(structure: ParsedStructure) -> list[Finding]:
    cycle = find_cycle(dependency_graph(structure.jobs))
    if cycle is None:
        return []
    first = structure.jobs[cycle[0]]
    return [
        _finding(
            "circular-dependency",
            Severity.error,
            f"Circular job dependency: {' -> '.join(cycle)}",
            first.needs_span or first.span,
            job=first.id,
        )
    ]


def check_schema(structure: ParsedStructure) -> list[Finding]:
    """Run all schema rules over a parsed workflow."""
    issues: list[Finding] = list(structure.shape_issues)
    issues.extend(check_required_keys(structure))
    issues.extend(check_triggers(structure))
    issues.extend(check_env_names(structure.env, structure.env_spans, "the workflow"))

    job_ids = set(structure.jobs)
    for job in structure.jobs.values():
        issues.extend(check_job(job, job_ids))

    issues.extend(check_dependency_cycles(structure))
    return issues
