"""Security rules: permissions, dangerous triggers, script injection, action trust."""

from __future__ import annotations

import logging
import re

from cicheck.analyzer.models import (
    ChangeOperation,
    Implementation,
    ImplementationType,
    Priority,
    Recommendation,
    RecommendationCategory,
    SecurityReport,
    StepRef,
    YamlChange,
)
from cicheck.config import AnalyzerConfig
from cicheck.validator.action_refs import is_outdated
from cicheck.validator.models import Finding, FindingCategory, Impact, Severity, Span
from cicheck.workflow.models import ParsedStructure

logger = logging.getLogger(__name__)

IMPACT_SEVERITY = {
    Impact.high: Severity.error,
    Impact.medium: Severity.warning,
    Impact.low: Severity.info,
}

UNTRUSTED_INPUT_RE = re.compile(r"\$\{\{[^}]*?\b(github\.event\.[A-Za-z0-9_.\[\]'\"*-]+|github\.head_ref)")
COMMIT_SHA_RE = re.compile(r"^[0-9a-f]{40}$")

PERMISSIONS_DOCS = "https://docs.github.com/en/actions/using-jobs/assigning-permissions-to-jobs"


def _vulnerability(
    code: str,
    impact: Impact,
    message: str,
    location: Span | None = None,
    suggestion: str | None = None,
    job: str | None = None,
    step_index: int | None = None,
) -> Finding:
    return Finding(
        code=code,
        severity=IMPACT_SEVERITY[impact],
        category=FindingCategory.security,
        message=message,
        location=location or Span(),
        impact=impact,
        suggestion=suggestion,
        job=job,
        step_index=step_index,
    )


def _excessive_scopes(permissions: str | dict[str, str] | None, config: AnalyzerConfig) -> list[str]:
    if permissions is None:
        return []
    if isinstance(permissions, str):
        return ["write-all"] if permissions.strip().lower() == "write-all" else []
    return [
        scope
        for scope, access in permissions.items()
        if scope in config.sensitive_permission_scopes and access.strip().lower() == "write"
    ]


def check_permissions(structure: ParsedStructure, config: AnalyzerConfig) -> list[Finding]:
    findings: list[Finding] = []

    scopes = _excessive_scopes(structure.permissions, config)
    if scopes:
        findings.append(
            _vulnerability(
                "excessive-permissions",
                Impact.high,
                f"Workflow grants broad permissions: {', '.join(scopes)}",
                structure.permissions_span,
                "Grant 'read' by default and 'write' only on the jobs that need it",
            )
        )

    for job in structure.jobs.values():
        scopes = _excessive_scopes(job.permissions, config)
        if scopes:
            findings.append(
                _vulnerability(
                    "excessive-permissions",
                    Impact.high,
                    f"Job '{job.id}' grants broad permissions: {', '.join(scopes)}",
                    job.permissions_span or job.span,
                    "Limit the job to the scopes it writes to",
                    job=job.id,
                )
            )
    return findings


def check_dangerous_triggers(structure: ParsedStructure) -> list[Finding]:
    if structure.on is None or "pull_request_target" not in structure.on.events:
        return []
    return [
        _vulnerability(
            "pull-request-target",
            Impact.medium,
            "'pull_request_target' runs with write access and secrets on code from forks",
            structure.on.span,
            "Use 'pull_request' unless the workflow needs secrets, and never check out the PR head",
        )
    ]


def check_script_injection(structure: ParsedStructure) -> list[Finding]:
    findings: list[Finding] = []
    for job, step in structure.iter_steps():
        if not step.run:
            continue
        for offset, line in enumerate(step.run.splitlines()):
            m = UNTRUSTED_INPUT_RE.search(line)
            if m is None:
                continue
            source_line = step.run_line(offset)
            findings.append(
                _vulnerability(
                    "script-injection",
                    Impact.high,
                    f"Step '{step.label}' of job '{job.id}' interpolates untrusted input "
                    f"'{m.group(1)}' into a shell script",
                    Span(line=source_line, column=structure.column_of(source_line, "${{")),
                    "Pass the value through an env variable and quote it in the script",
                    job=job.id,
                    step_index=step.index,
                )
            )
            break
    return findings


def _is_third_party(uses: str, config: AnalyzerConfig) -> bool:
    if uses.startswith("./") or uses.startswith("docker://") or "/" not in uses:
        return False
    owner = uses.split("/", 1)[0].lower()
    return owner not in config.trusted_action_owners


def check_untrusted_actions(structure: ParsedStructure, config: AnalyzerConfig) -> list[Finding]:
    findings: list[Finding] = []
    for job, step in structure.iter_steps():
        if step.uses is None or not _is_third_party(step.uses, config):
            continue
        if COMMIT_SHA_RE.match(step.action_ref or ""):
            continue
        findings.append(
            _vulnerability(
                "untrusted-action",
                Impact.medium,
                f"Third-party action '{step.uses}' is not pinned to a commit SHA",
                step.uses_span or step.span,
                "Pin third-party actions to a full-length commit SHA",
                job=job.id,
                step_index=step.index,
            )
        )
    return findings


def outdated_action_recommendations(structure: ParsedStructure, config: AnalyzerConfig) -> list[Recommendation]:
    recommendations: list[Recommendation] = []
    for job, step in structure.iter_steps():
        action = step.action_name
        if action is None or not is_outdated(action, step.action_ref, config):
            continue
        latest = config.latest_action_versions[action]
        updated = f"{step.uses.split('@', 1)[0]}@{latest}"
        recommendations.append(
            Recommendation(
                id=f"update-{job.id}-{step.index}",
                title=f"Update {action} to {latest}",
                description=f"Step '{step.label}' of job '{job.id}' uses '{step.uses}'",
                category=RecommendationCategory.strategy,
                priority=Priority.medium,
                implementation=Implementation(
                    type=ImplementationType.config_change,
                    changes=[
                        YamlChange(
                            path=["jobs", job.id, "steps", step.index, "uses"],
                            operation=ChangeOperation.modify,
                            value=updated,
                        )
                    ],
                    example=f"uses: {updated}",
                    documentation=f"https://github.com/{action}/releases",
                ),
                applicable_steps=[StepRef(job=job.id, step_index=step.index, step_name=step.label)],
            )
        )
    return recommendations


def security_advice(structure: ParsedStructure, vulnerabilities: list[Finding]) -> list[str]:
    codes = {v.code for v in vulnerabilities}
    advice: list[str] = []
    if structure.permissions is None:
        advice.append("Declare a top-level 'permissions' block so jobs start from least privilege")
    if "excessive-permissions" in codes:
        advice.append("Replace write-all with per-scope grants on the jobs that need them")
    if "pull-request-target" in codes:
        advice.append("Keep pull_request_target workflows from checking out or running fork code")
    if "script-injection" in codes:
        advice.append("Treat github.event fields as untrusted input; pass them via env")
    if "untrusted-action" in codes:
        advice.append("Pin third-party actions to commit SHAs and review updates")
    return advice


def security_score(vulnerabilities: list[Finding], config: AnalyzerConfig) -> int:
    penalty = sum(
        config.impact_penalties.get(v.impact.value, 0) for v in vulnerabilities if v.impact is not None
    )
    return max(0, 100 - penalty)


def analyze_security(structure: ParsedStructure, config: AnalyzerConfig) -> SecurityReport:
    """Run all security rules against one parsed workflow."""
    vulnerabilities = check_permissions(structure, config)
    vulnerabilities.extend(check_dangerous_triggers(structure))
    vulnerabilities.extend(check_script_injection(structure))
    vulnerabilities.extend(check_untrusted_actions(structure, config))

    logger.debug("Security: %d vulnerabilities", len(vulnerabilities))
    return SecurityReport(
        analyzed=True,
        score=security_score(vulnerabilities, config),
        vulnerabilities=vulnerabilities,
        recommendations=outdated_action_recommendations(structure, config),
        advice=security_advice(structure, vulnerabilities),
    )
