"""Dry-run simulation: walks the job graph and estimates a run without executing it."""

from __future__ import annotations

import logging
import math

from cicheck.analyzer.cost import job_duration, script_lines, step_duration
from cicheck.config import DEFAULT_CONFIG, AnalyzerConfig
from cicheck.simulator.models import (
    JobTiming,
    ResourceUsage,
    SimulationIssue,
    SimulationResult,
    StepEstimate,
)
from cicheck.validator.models import Impact, Severity
from cicheck.validator.secrets import ALWAYS_DEFINED_SECRETS, referenced_secrets
from cicheck.workflow.graph import dependency_graph, find_cycle, topological_order, unknown_dependencies
from cicheck.workflow.models import JobSpec, ParsedStructure, ParseFailure, SimulationOptions, StepSpec, WorkflowDocument
from cicheck.workflow.parser import parse_workflow

logger = logging.getLogger(__name__)

# Shape problems that leave no coherent job graph to walk
BLOCKING_SHAPE_ISSUES = {
    "malformed-jobs",
    "malformed-job",
    "malformed-steps",
    "malformed-step",
    "malformed-needs",
}

LARGE_WORKFLOW_JOBS = 10
LONG_RUN_SECONDS = 1800


class SimulationError(Exception):
    """The workflow cannot be simulated."""


def _combinations(job: JobSpec) -> int:
    return job.strategy.combinations if job.strategy is not None else 1


def _batches(job: JobSpec) -> int:
    combos = _combinations(job)
    if job.strategy is None or not job.strategy.max_parallel:
        return 1
    return max(1, math.ceil(combos / job.strategy.max_parallel))


def _is_heavy(step: StepSpec, config: AnalyzerConfig) -> bool:
    if step.run is not None:
        return any(cmd in line for line in script_lines(step.run) for cmd in config.heavy_commands)
    return step.action_name is not None and step.action_name.startswith("docker/")


def _step_storage(step: StepSpec, config: AnalyzerConfig) -> int:
    if step.uses is not None:
        uses = step.uses.lower()
        if uses.startswith("docker://") or uses.startswith("docker/"):
            return config.storage_costs.get("docker", 0)
        for prefix, megabytes in config.storage_costs.items():
            if uses.startswith(prefix):
                return megabytes
        return 0
    if step.run is not None and any("docker" in line for line in script_lines(step.run)):
        return config.storage_costs.get("docker", 0)
    return 0


def estimate_resources(structure: ParsedStructure, config: AnalyzerConfig) -> ResourceUsage:
    cpu = 0.0
    memory = 0
    storage = 0
    for job in structure.jobs.values():
        combos = _combinations(job)
        heavy = sum(1 for step in job.steps if _is_heavy(step, config))
        steps = len(job.steps)
        cpu += (steps * config.cpu_per_step + heavy * config.cpu_per_heavy_step) * combos
        memory += (steps * config.memory_per_step + heavy * config.memory_per_heavy_step) * combos
        storage += sum(_step_storage(step, config) for step in job.steps) * combos
    return ResourceUsage(cpu=round(cpu, 1), memory=memory, storage=storage)


def missing_secret_issues(structure: ParsedStructure, available: list[str] | None) -> list[SimulationIssue]:
    if available is None:
        return []
    known = {s.upper() for s in available} | ALWAYS_DEFINED_SECRETS
    issues: list[SimulationIssue] = []
    reported: set[str] = set()
    for name, _, _ in referenced_secrets(structure.source_lines):
        key = name.upper()
        if key in known or key in reported:
            continue
        reported.add(key)
        issues.append(
            SimulationIssue(
                code="missing-secret",
                severity=Severity.error,
                message=f"Required secret '{name}' is not available",
                impact=Impact.high,
            )
        )
    return issues


def _recommendations(
    structure: ParsedStructure,
    issues: list[SimulationIssue],
    estimated: int,
) -> list[str]:
    recommendations: list[str] = []
    if issues:
        recommendations.append("Resolve identified issues before running the workflow")
    if any(i.code == "missing-secret" for i in issues):
        recommendations.append("Add the missing secrets under Settings > Secrets and variables > Actions")
    timeouts = [i.job for i in issues if i.code == "timeout-risk" and i.job]
    if timeouts:
        recommendations.append(f"Raise timeout-minutes or speed up: {', '.join(timeouts)}")
    if len(structure.jobs) > LARGE_WORKFLOW_JOBS:
        recommendations.append("Consider breaking down large workflows into smaller, focused workflows")
    if estimated > LONG_RUN_SECONDS:
        recommendations.append("Estimated run exceeds 30 minutes; cache dependencies or split long jobs")
    return recommendations


def _failure(issue: SimulationIssue, issues: list[SimulationIssue] | None = None) -> SimulationResult:
    return SimulationResult(success=False, potential_issues=[*(issues or []), issue])


def simulate_structure(
    structure: ParsedStructure,
    options: SimulationOptions | None,
    config: AnalyzerConfig,
) -> SimulationResult:
    blocking = [i for i in structure.shape_issues if i.code in BLOCKING_SHAPE_ISSUES]
    if blocking:
        raise SimulationError(blocking[0].message)

    issues = [
        SimulationIssue(
            code="unknown-dependency",
            severity=Severity.warning,
            message=f"Job '{job_id}' needs unknown job '{dep}'; the dependency is ignored",
            impact=Impact.medium,
            job=job_id,
        )
        for job_id, dep in unknown_dependencies(structure.jobs)
    ]

    graph = dependency_graph(structure.jobs)
    cycle = find_cycle(graph)
    if cycle is not None:
        return _failure(
            SimulationIssue(
                code="circular-dependency",
                severity=Severity.error,
                message=f"Circular dependency detected: {' -> '.join(cycle)}",
                impact=Impact.high,
                job=cycle[0],
            ),
            issues,
        )

    order = topological_order(graph)
    timings: dict[str, JobTiming] = {}
    step_plan: list[StepEstimate] = []

    for job_id in order:
        job = structure.jobs[job_id]
        single = job_duration(job, config)
        batches = _batches(job)
        duration = single * batches
        start = max((timings[dep].finish for dep in graph[job_id]), default=0)
        timings[job_id] = JobTiming(
            job=job_id,
            start=start,
            finish=start + duration,
            duration=duration,
            combinations=_combinations(job),
            batches=batches,
        )

        offset = start
        for step in job.steps:
            seconds = step_duration(step, config)
            step_plan.append(
                StepEstimate(job=job_id, step_index=step.index, name=step.label, start=offset, duration=seconds)
            )
            offset += seconds

        timeout_minutes = job.timeout_minutes or config.default_timeout_minutes
        if single > timeout_minutes * 60:
            issues.append(
                SimulationIssue(
                    code="timeout-risk",
                    severity=Severity.warning,
                    message=(
                        f"Job '{job_id}' is estimated at {math.ceil(single / 60)} minutes, "
                        f"over its {timeout_minutes:g} minute timeout"
                    ),
                    impact=Impact.medium,
                    job=job_id,
                )
            )

    options = options or SimulationOptions()
    issues.extend(missing_secret_issues(structure, options.available_secrets))

    estimated = max((t.finish for t in timings.values()), default=0)
    return SimulationResult(
        success=not any(i.severity == Severity.error for i in issues),
        execution_plan=order,
        job_timings=[timings[j] for j in order],
        step_plan=step_plan,
        estimated_duration=estimated,
        resource_usage=estimate_resources(structure, config),
        potential_issues=issues,
        recommendations=_recommendations(structure, issues, estimated),
    )


def simulate_workflow(
    document: WorkflowDocument,
    options: SimulationOptions | None = None,
    config: AnalyzerConfig | None = None,
) -> SimulationResult:
    """Estimate execution order, duration and resource usage for a workflow.

    Never raises for content problems; any internal failure is reported as a
    ``simulation-error`` issue with ``success=False``.
    """
    if not isinstance(document, WorkflowDocument):
        raise TypeError(f"document must be a WorkflowDocument, got {type(document).__name__}")
    config = config or DEFAULT_CONFIG

    try:
        parsed = parse_workflow(document.raw_content)
        if isinstance(parsed, ParseFailure):
            raise SimulationError(parsed.finding.message)
        result = simulate_structure(parsed, options, config)
    except Exception as e:
        if not isinstance(e, SimulationError):
            logger.exception("Simulation of %s failed", document.filename)
        return _failure(
            SimulationIssue(
                code="simulation-error",
                severity=Severity.error,
                message=f"Simulation failed: {e}",
                impact=Impact.high,
            )
        )

    logger.info(
        "Simulated %s: %d job(s), ~%ds, success=%s",
        document.filename,
        len(result.execution_plan),
        result.estimated_duration,
        result.success,
    )
    return result
