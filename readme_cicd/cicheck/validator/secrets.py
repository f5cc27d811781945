"""Secret handling checks: hardcoded credentials, undefined and misused secrets."""

from __future__ import annotations

import re
from dataclasses import dataclass

from cicheck.validator.models import Finding, FindingCategory, PassResult, Severity, Span
from cicheck.workflow.models import ParsedStructure, StepSpec, ValidationContext

ALWAYS_DEFINED_SECRETS = {"GITHUB_TOKEN"}

EXPRESSION_RE = re.compile(r"\$\{\{(.*?)\}\}")
SECRET_REF_RE = re.compile(
    r"""secrets\.([A-Za-z_][A-Za-z0-9_]*)|secrets\[\s*['"]([A-Za-z_][A-Za-z0-9_]*)['"]\s*\]"""
)
SECRET_KEY_RE = re.compile(
    r"(?i)(password|passwd|secret|token|api[_-]?key|private[_-]?key|access[_-]?key)"
)
NOT_A_SECRET = {"true", "false", "yes", "no", "on", "off", "null", "none", "~", ""}
MIN_SECRET_LENGTH = 4
MAX_NAME_AFFIX = 64


@dataclass(frozen=True)
class SecretRule:
    """Assignment-like text that carries a credential literal."""

    name: str
    pattern: re.Pattern[str]
    description: str


def _assignment(keyword: str) -> re.Pattern[str]:
    # Anchored at token starts with bounded name parts, so long hyphenated
    # words scan in linear time.
    return re.compile(
        rf"(?i)(?<![\w-])[\w-]{{0,{MAX_NAME_AFFIX}}}?(?:{keyword})[\w-]{{0,{MAX_NAME_AFFIX}}}\s*[:=]\s*([\"']?)(?P<value>[^\"'\s]+)"
    )


SECRET_RULES: list[SecretRule] = [
    SecretRule("password", _assignment("password|passwd"), "password"),
    SecretRule("api-key", _assignment(r"api[_-]?key"), "API key"),
    SecretRule("token", _assignment("token"), "token"),
    SecretRule("secret", _assignment("secret"), "secret"),
]


def is_literal(value: str) -> bool:
    """True for a plain value that is neither an expression nor a variable."""
    value = value.strip().strip("'\"")
    if value.lower() in NOT_A_SECRET or len(value) < MIN_SECRET_LENGTH or value.isdigit():
        return False
    if "${{" in value or value.startswith("$"):
        return False
    return True


def _hardcoded(message: str, location: Span, job: str | None, step_index: int | None = None) -> Finding:
    return Finding(
        code="hardcoded-secret",
        severity=Severity.error,
        category=FindingCategory.secret,
        message=message,
        location=location,
        suggestion="Store the value as a repository secret and reference it with ${{ secrets.NAME }}",
        job=job,
        step_index=step_index,
    )


def scan_run_script(step: StepSpec, job_id: str, structure: ParsedStructure) -> list[Finding]:
    """Hardcoded credentials assigned inside a run script, one finding per line."""
    issues: list[Finding] = []
    if not step.run:
        return issues

    for offset, line in enumerate(step.run.splitlines()):
        if line.strip().startswith("#"):
            continue
        for rule in SECRET_RULES:
            m = rule.pattern.search(line)
            if m is None or not is_literal(m.group("value")):
                continue
            source_line = step.run_line(offset)
            column = structure.column_of(source_line, m.group(0))
            issues.append(
                _hardcoded(
                    f"Hardcoded {rule.description} in step '{step.label}' of job '{job_id}'",
                    Span(line=source_line, column=column),
                    job_id,
                    step.index,
                )
            )
            break
    return issues


def scan_mapping(
    values: dict[str, object],
    spans: dict[str, Span],
    where: str,
    job: str | None = None,
    step_index: int | None = None,
) -> list[Finding]:
    """``env``/``with`` keys with credential-like names holding literal values."""
    issues: list[Finding] = []
    for key, value in values.items():
        if not isinstance(value, str) or not SECRET_KEY_RE.search(key):
            continue
        if is_literal(value):
            issues.append(
                _hardcoded(
                    f"Hardcoded value for '{key}' in {where}",
                    spans.get(key, Span()),
                    job,
                    step_index,
                )
            )
    return issues


def check_hardcoded_secrets(structure: ParsedStructure) -> list[Finding]:
    issues = scan_mapping(structure.env, structure.env_spans, "the workflow env")
    for job in structure.jobs.values():
        issues.extend(scan_mapping(job.env, job.env_spans, f"job '{job.id}' env", job.id))
        for step in job.steps:
            where = f"step '{step.label}' of job '{job.id}'"
            issues.extend(scan_mapping(step.env, step.env_spans, where, job.id, step.index))
            issues.extend(scan_mapping(step.with_, step.with_spans, where, job.id, step.index))
            issues.extend(scan_run_script(step, job.id, structure))
    return issues


def referenced_secrets(source_lines: list[str]) -> list[tuple[str, int, int]]:
    """Every ``secrets.NAME`` inside a ``${{ }}`` expression.

    Returns ``(name, line, column)`` tuples with 1-based positions. Comment
    lines are skipped.
    """
    refs: list[tuple[str, int, int]] = []
    for lineno, line in enumerate(source_lines, start=1):
        if line.lstrip().startswith("#"):
            continue
        for expr in EXPRESSION_RE.finditer(line):
            for m in SECRET_REF_RE.finditer(expr.group(1)):
                name = m.group(1) or m.group(2)
                refs.append((name, lineno, expr.start(1) + m.start() + 1))
    return refs


def check_undefined_secrets(structure: ParsedStructure, project_secrets: list[str] | None) -> list[Finding]:
    if project_secrets is None:
        return []

    defined = {s.upper() for s in project_secrets} | ALWAYS_DEFINED_SECRETS
    issues: list[Finding] = []
    reported: set[str] = set()
    for name, line, column in referenced_secrets(structure.source_lines):
        key = name.upper()
        if key in defined or key in reported:
            continue
        reported.add(key)
        issues.append(
            Finding(
                code="undefined-secret",
                severity=Severity.warning,
                category=FindingCategory.secret,
                message=f"Secret '{name}' is not defined for this project",
                location=Span(line=line, column=column),
                suggestion=f"Add '{name}' under Settings > Secrets and variables > Actions",
            )
        )
    return issues


def check_secret_conditions(structure: ParsedStructure) -> list[Finding]:
    issues: list[Finding] = []

    def flag(condition: str | None, span: Span, job: str, step_index: int | None = None) -> None:
        if condition and SECRET_REF_RE.search(condition):
            issues.append(
                Finding(
                    code="secret-in-condition",
                    severity=Severity.warning,
                    category=FindingCategory.secret,
                    message="Secrets cannot be referenced directly in 'if:' conditions",
                    location=span,
                    suggestion="Map the secret to an env variable and test the variable instead",
                    job=job,
                    step_index=step_index,
                )
            )

    for job in structure.jobs.values():
        flag(job.if_, job.span, job.id)
        for step in job.steps:
            flag(step.if_, step.span, job.id, step.index)
    return issues


def check_secrets(structure: ParsedStructure, context: ValidationContext | None = None) -> PassResult:
    project_secrets = context.project_secrets if context is not None else None
    issues = check_hardcoded_secrets(structure)
    issues.extend(check_undefined_secrets(structure, project_secrets))
    issues.extend(check_secret_conditions(structure))
    return PassResult.from_findings(issues)
