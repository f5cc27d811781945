"""Action reference validation: ``uses:`` format and pinned versions."""

from __future__ import annotations

import re

from cicheck.config import AnalyzerConfig
from cicheck.validator.models import Finding, FindingCategory, PassResult, Severity, Span
from cicheck.workflow.models import ParsedStructure

# owner/repo[/path]@ref
ACTION_REF_RE = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+(/[^@\s]+)?@[^@\s]+$")
MAJOR_TAG_RE = re.compile(r"^v(\d+)(?:\.\d+)*$")


def major_version(ref: str | None) -> int | None:
    """Major number of a ``vN``/``vN.M.P`` tag, None for branches and SHAs."""
    if not ref:
        return None
    m = MAJOR_TAG_RE.match(ref)
    return int(m.group(1)) if m else None


def is_outdated(action: str, ref: str | None, config: AnalyzerConfig) -> bool:
    latest = config.latest_action_versions.get(action)
    current = major_version(ref)
    if latest is None or current is None:
        return False
    latest_major = major_version(latest)
    return latest_major is not None and current < latest_major


def check_reference(uses: str) -> Finding | None:
    """Validate the format of one ``uses`` value. Returns None when well-formed."""
    if uses.startswith("./") or uses.startswith("docker://"):
        return None
    if ACTION_REF_RE.match(uses):
        return None

    if "/" not in uses and "@" not in uses:
        return Finding(
            code="invalid-action-reference",
            severity=Severity.warning,
            category=FindingCategory.schema,
            message=f"Action reference '{uses}' has no owner and no version",
            suggestion=f"Use the 'owner/{uses}@<version>' form",
        )
    if "@" not in uses:
        message = f"Action reference '{uses}' is not pinned to a version"
        suggestion = f"Pin a version, e.g. '{uses}@v1'"
    else:
        message = f"Malformed action reference '{uses}', expected 'owner/repo@ref'"
        suggestion = None
    return Finding(
        code="invalid-action-reference",
        severity=Severity.error,
        category=FindingCategory.schema,
        message=message,
        suggestion=suggestion,
    )


def check_action_refs(structure: ParsedStructure, config: AnalyzerConfig) -> PassResult:
    issues: list[Finding] = []

    for job in structure.jobs.values():
        if job.uses is not None:
            bad = check_reference(job.uses)
            if bad is not None:
                issues.append(bad.model_copy(update={"location": job.span, "job": job.id}))

    for job, step in structure.iter_steps():
        if step.uses is None:
            continue
        location = step.uses_span or step.span
        bad = check_reference(step.uses)
        if bad is not None:
            issues.append(
                bad.model_copy(
                    update={"location": location, "job": job.id, "step_index": step.index}
                )
            )
            continue

        action = step.action_name
        if action is not None and is_outdated(action, step.action_ref, config):
            latest = config.latest_action_versions[action]
            issues.append(
                Finding(
                    code="outdated-action-version",
                    severity=Severity.warning,
                    category=FindingCategory.schema,
                    message=f"'{step.uses}' is outdated; latest major version is {latest}",
                    location=location or Span(),
                    suggestion=f"Update to {action}@{latest}",
                    job=job.id,
                    step_index=step.index,
                )
            )

    return PassResult.from_findings(issues)
