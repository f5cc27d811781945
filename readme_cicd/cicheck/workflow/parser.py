"""Structural parsing of workflow YAML using ruamel.yaml.

The round-trip loader keeps line/column marks for every key, which the
validators use to place findings. Parsing never raises: malformed YAML is
reported as a single fatal ``yaml-syntax-error`` finding.
"""

from __future__ import annotations

import logging
from typing import Any

from ruamel.yaml import YAML, YAMLError
from ruamel.yaml.scalarstring import FoldedScalarString, LiteralScalarString

from cicheck.validator.models import Finding, FindingCategory, Severity, Span
from cicheck.workflow.models import (
    JobSpec,
    ParsedStructure,
    ParseFailure,
    StepSpec,
    StrategySpec,
    TriggerSpec,
)

logger = logging.getLogger(__name__)

SYNTAX_ERROR_CODE = "yaml-syntax-error"


def _fatal(message: str, line: int = 0, column: int = 0) -> ParseFailure:
    return ParseFailure(
        finding=Finding(
            code=SYNTAX_ERROR_CODE,
            severity=Severity.error,
            category=FindingCategory.syntax,
            message=message,
            location=Span(line=line, column=column),
        )
    )


def _shape_issue(code: str, message: str, span: Span | None = None, job: str | None = None) -> Finding:
    return Finding(
        code=code,
        severity=Severity.error,
        category=FindingCategory.schema,
        message=message,
        location=span or Span(),
        job=job,
    )


def _plain(obj: Any) -> Any:
    """Convert ruamel containers and scalar strings to builtin types."""
    if isinstance(obj, dict):
        return {str(k): _plain(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_plain(v) for v in obj]
    if isinstance(obj, bool) or obj is None:
        return obj
    if isinstance(obj, str):
        return str(obj)
    if isinstance(obj, (int, float)):
        return obj
    return str(obj)


def _text(value: Any) -> str:
    """Render a scalar the way it reads in YAML."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def _key_span(node: Any, key: Any) -> Span:
    try:
        line, col = node.lc.key(key)
    except (AttributeError, KeyError, TypeError):
        return Span()
    return Span(
        line=line + 1,
        column=col + 1,
        end_line=line + 1,
        end_column=col + 1 + len(str(key)),
    )


def _value_span(node: Any, key: Any) -> Span | None:
    try:
        line, col = node.lc.value(key)
    except (AttributeError, KeyError, TypeError):
        return None
    value = node[key]
    if isinstance(value, str) and "\n" not in value and not isinstance(
        value, (LiteralScalarString, FoldedScalarString)
    ):
        return Span(
            line=line + 1,
            column=col + 1,
            end_line=line + 1,
            end_column=col + 1 + len(value),
        )
    return Span(line=line + 1, column=col + 1)


def _item_span(seq: Any, index: int) -> Span:
    try:
        line, col = seq.lc.item(index)
    except (AttributeError, KeyError, IndexError, TypeError):
        return Span()
    return Span(line=line + 1, column=col + 1)


def _string_map(
    node: Any,
    owner: Any,
    key: str,
    issues: list[Finding],
    where: str,
    job: str | None = None,
) -> tuple[dict[str, str], dict[str, Span]]:
    """Read an ``env``-like mapping of names to scalar text."""
    if node is None:
        return {}, {}
    if not isinstance(node, dict):
        issues.append(
            _shape_issue(
                "malformed-env",
                f"'{key}' in {where} must be a mapping",
                _key_span(owner, key),
                job,
            )
        )
        return {}, {}
    values = {str(k): _text(v) for k, v in node.items()}
    spans = {str(k): _key_span(node, k) for k in node}
    return values, spans


def _parse_triggers(node: Any, span: Span) -> TriggerSpec:
    if isinstance(node, str):
        events = [node]
    elif isinstance(node, list):
        events = [_text(e) for e in node if e is not None]
    elif isinstance(node, dict):
        events = [str(k) for k in node]
    else:
        events = []
    return TriggerSpec(events=events, span=span)


def _parse_permissions(node: Any) -> str | dict[str, str] | None:
    if node is None:
        return None
    if isinstance(node, dict):
        return {str(k): _text(v) for k, v in node.items()}
    return _text(node)


def _parse_runs_on(node: Any) -> str | list[str] | None:
    if node is None:
        return None
    if isinstance(node, list):
        return [_text(v) for v in node]
    if isinstance(node, dict):
        # Larger runners: {group: ..., labels: ...}
        labels = node.get("labels")
        if isinstance(labels, list):
            return [_text(v) for v in labels]
        if labels is not None:
            return _text(labels)
        return _text(node.get("group", ""))
    return _text(node)


def _parse_strategy(node: Any, job_id: str, job_node: Any, issues: list[Finding]) -> StrategySpec | None:
    if node is None:
        return None
    if not isinstance(node, dict):
        issues.append(
            _shape_issue(
                "malformed-strategy",
                f"Job '{job_id}': 'strategy' must be a mapping",
                _key_span(job_node, "strategy"),
                job_id,
            )
        )
        return None

    matrix: dict[str, list[Any]] = {}
    include_count = 0
    exclude_count = 0
    matrix_expression = None
    raw_matrix = node.get("matrix")
    if isinstance(raw_matrix, dict):
        for axis, values in raw_matrix.items():
            axis = str(axis)
            if axis == "include":
                include_count = len(values) if isinstance(values, list) else 0
            elif axis == "exclude":
                exclude_count = len(values) if isinstance(values, list) else 0
            elif isinstance(values, list):
                matrix[axis] = _plain(values)
            else:
                matrix[axis] = [_plain(values)]
    elif isinstance(raw_matrix, str):
        matrix_expression = str(raw_matrix)

    fail_fast = None
    if "fail-fast" in node:
        raw = node.get("fail-fast")
        fail_fast = raw if isinstance(raw, bool) else _text(raw).strip().lower() != "false"

    max_parallel = node.get("max-parallel")
    return StrategySpec(
        matrix=matrix,
        include_count=include_count,
        exclude_count=exclude_count,
        fail_fast=fail_fast,
        max_parallel=max_parallel if isinstance(max_parallel, int) and not isinstance(max_parallel, bool) else None,
        matrix_expression=matrix_expression,
    )


def _parse_step(index: int, node: Any, seq: Any, job_id: str, issues: list[Finding]) -> StepSpec | None:
    span = _item_span(seq, index)
    if not isinstance(node, dict):
        issues.append(
            _shape_issue(
                "malformed-step",
                f"Job '{job_id}': step {index + 1} must be a mapping",
                span,
                job_id,
            )
        )
        return None

    where = f"job '{job_id}' step {index + 1}"
    env, env_spans = _string_map(node.get("env"), node, "env", issues, where, job_id)

    with_node = node.get("with")
    with_: dict[str, Any] = {}
    with_spans: dict[str, Span] = {}
    if isinstance(with_node, dict):
        with_ = {str(k): _plain(v) for k, v in with_node.items()}
        with_spans = {str(k): _key_span(with_node, k) for k in with_node}
    elif with_node is not None:
        issues.append(
            _shape_issue("malformed-with", f"'with' in {where} must be a mapping", _key_span(node, "with"), job_id)
        )

    run = node.get("run")
    run_span = _value_span(node, "run") if "run" in node else None
    run_body_line = 0
    if isinstance(run, (LiteralScalarString, FoldedScalarString)) and run_span is not None:
        run_body_line = run_span.line + 1

    uses = node.get("uses")
    return StepSpec(
        index=index,
        name=_text(node["name"]) if node.get("name") is not None else None,
        id=_text(node["id"]) if node.get("id") is not None else None,
        uses=_text(uses) if uses is not None else None,
        run=_text(run) if run is not None else None,
        shell=_text(node["shell"]) if node.get("shell") is not None else None,
        env=env,
        with_=with_,
        if_=_text(node["if"]) if node.get("if") is not None else None,
        span=span,
        uses_span=_value_span(node, "uses") if "uses" in node else None,
        run_span=run_span,
        env_spans=env_spans,
        with_spans=with_spans,
        run_body_line=run_body_line,
    )


def _parse_needs(node: Any, job_id: str, job_node: Any, issues: list[Finding]) -> list[str]:
    if node is None:
        return []
    if isinstance(node, str):
        return [node]
    if isinstance(node, list) and all(isinstance(n, str) for n in node):
        return [str(n) for n in node]
    issues.append(
        _shape_issue(
            "malformed-needs",
            f"Job '{job_id}': 'needs' must be a job id or a list of job ids",
            _key_span(job_node, "needs"),
            job_id,
        )
    )
    return [str(n) for n in node if isinstance(n, str)] if isinstance(node, list) else []


def _parse_job(job_id: str, index: int, node: Any, jobs_node: Any, issues: list[Finding]) -> JobSpec | None:
    span = _key_span(jobs_node, job_id)
    if not isinstance(node, dict):
        issues.append(
            _shape_issue("malformed-job", f"Job '{job_id}' must be a mapping", span, job_id)
        )
        return None

    steps: list[StepSpec] = []
    raw_steps = node.get("steps")
    if isinstance(raw_steps, list):
        for i, item in enumerate(raw_steps):
            step = _parse_step(i, item, raw_steps, job_id, issues)
            if step is not None:
                steps.append(step)
    elif raw_steps is not None:
        issues.append(
            _shape_issue(
                "malformed-steps",
                f"Job '{job_id}': 'steps' must be a list",
                _key_span(node, "steps"),
                job_id,
            )
        )

    env, env_spans = _string_map(node.get("env"), node, "env", issues, f"job '{job_id}'", job_id)

    strategy_node = node.get("strategy")
    matrix_span = None
    if isinstance(strategy_node, dict) and "matrix" in strategy_node:
        matrix_span = _key_span(strategy_node, "matrix")

    timeout = node.get("timeout-minutes")
    with_node = node.get("with")

    return JobSpec(
        id=job_id,
        index=index,
        name=_text(node["name"]) if node.get("name") is not None else None,
        runs_on=_parse_runs_on(node.get("runs-on")),
        needs=_parse_needs(node.get("needs"), job_id, node, issues),
        steps=steps,
        has_steps_key="steps" in node,
        strategy=_parse_strategy(strategy_node, job_id, node, issues),
        if_=_text(node["if"]) if node.get("if") is not None else None,
        env=env,
        env_spans=env_spans,
        permissions=_parse_permissions(node.get("permissions")),
        permissions_span=_key_span(node, "permissions") if "permissions" in node else None,
        uses=_text(node["uses"]) if node.get("uses") is not None else None,
        with_=_plain(with_node) if isinstance(with_node, dict) else {},
        timeout_minutes=float(timeout) if isinstance(timeout, (int, float)) and not isinstance(timeout, bool) else None,
        span=span,
        runs_on_span=_value_span(node, "runs-on") if "runs-on" in node else None,
        needs_span=_key_span(node, "needs") if "needs" in node else None,
        strategy_span=_key_span(node, "strategy") if "strategy" in node else None,
        matrix_span=matrix_span,
    )


def parse_workflow(raw_text: str) -> ParsedStructure | ParseFailure:
    """Parse workflow YAML into a typed structure.

    Returns a ParsedStructure on success, or a ParseFailure carrying one
    error-level ``yaml-syntax-error`` finding. Never raises for string input.
    """
    if not isinstance(raw_text, str):
        raise TypeError(f"raw_text must be a string, got {type(raw_text).__name__}")

    if not raw_text.strip():
        return _fatal("Empty workflow content")

    yaml = YAML()
    try:
        data = yaml.load(raw_text)
    except YAMLError as e:
        line = 0
        column = 0
        mark = getattr(e, "problem_mark", None) or getattr(e, "context_mark", None)
        if mark is not None:
            line = mark.line + 1  # 0-indexed to 1-indexed
            column = mark.column + 1
        return _fatal(f"YAML syntax error: {e}", line, column)
    except Exception as e:
        logger.warning("Unexpected YAML loader failure: %s", e)
        return _fatal(f"YAML syntax error: {e}")

    if data is None:
        return _fatal("YAML parsed to empty/null value")
    if not isinstance(data, dict):
        return _fatal(
            f"Workflow must be a mapping at the top level, got {type(data).__name__}", 1, 1
        )

    issues: list[Finding] = []
    keys: list[str] = []
    for key in data:
        # YAML 1.1 documents may turn a bare 'on' key into a boolean
        keys.append("on" if key is True else str(key))

    on_key = "on" if "on" in data else (True if True in data else None)
    trigger = None
    if on_key is not None:
        trigger = _parse_triggers(data[on_key], _key_span(data, on_key))

    jobs: dict[str, JobSpec] = {}
    raw_jobs = data.get("jobs")
    if isinstance(raw_jobs, dict):
        for index, (job_id, job_node) in enumerate(raw_jobs.items()):
            job = _parse_job(str(job_id), index, job_node, raw_jobs, issues)
            if job is not None:
                jobs[job.id] = job
    elif raw_jobs is not None:
        issues.append(
            _shape_issue("malformed-jobs", "'jobs' must be a mapping of job ids to jobs", _key_span(data, "jobs"))
        )

    env, env_spans = _string_map(data.get("env"), data, "env", issues, "the workflow")

    structure = ParsedStructure(
        keys=keys,
        name=_text(data["name"]) if data.get("name") is not None else None,
        name_span=_key_span(data, "name") if "name" in data else None,
        on=trigger,
        jobs=jobs,
        jobs_span=_key_span(data, "jobs") if "jobs" in data else None,
        env=env,
        env_spans=env_spans,
        permissions=_parse_permissions(data.get("permissions")),
        permissions_span=_key_span(data, "permissions") if "permissions" in data else None,
        shape_issues=issues,
        source_lines=raw_text.splitlines(),
    )
    logger.debug(
        "Parsed workflow: %d job(s), %d shape issue(s)", len(jobs), len(issues)
    )
    return structure
