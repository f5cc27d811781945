"""Deterministic performance rules: caching, bottlenecks, parallelism, runners."""

from __future__ import annotations

import logging
import re
from typing import Any

from cicheck.analyzer.cost import detect_ecosystem, job_duration, match_command, run_cost, script_lines
from cicheck.analyzer.models import (
    Bottleneck,
    BottleneckType,
    CachingOpportunity,
    ChangeOperation,
    EstimatedImprovement,
    Implementation,
    ImplementationType,
    ParallelizationSuggestion,
    ParallelStructure,
    PerformanceReport,
    Priority,
    Recommendation,
    RecommendationCategory,
    ResourceOptimization,
    StepRef,
    YamlChange,
)
from cicheck.config import AnalyzerConfig
from cicheck.validator.models import Finding, FindingCategory, Severity
from cicheck.workflow.graph import ancestors, dependency_graph
from cicheck.workflow.models import JobSpec, ParsedStructure, StepSpec, ValidationContext

logger = logging.getLogger(__name__)

CACHE_DOCS = "https://docs.github.com/en/actions/using-workflows/caching-dependencies-to-speed-up-workflows"
JOBS_DOCS = "https://docs.github.com/en/actions/using-jobs/using-jobs-in-a-workflow"
MATRIX_DOCS = "https://docs.github.com/en/actions/using-jobs/using-a-matrix-for-your-jobs"
RUNNER_DOCS = "https://docs.github.com/en/actions/using-github-hosted-runners/about-github-hosted-runners"

TEST_STEP_RE = re.compile(r"\b(test|tests|pytest|spec|jest|vitest|mocha)\b")
OS_HINT_RE = re.compile(
    r"(?i)(msbuild|xcodebuild|xcrun|\bbrew\b|\bchoco\b|\.exe\b|pod install|\bswift\b|"
    r"\bsigntool\b|\bnotarytool\b|\bcodesign\b|\$env:|\bwinget\b)"
)
OS_SHELLS = {"powershell", "pwsh", "cmd"}
FALSY_INPUTS = {"", "false", "no", "off", "0"}


def _truthy_input(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() not in FALSY_INPUTS


def allowed_ecosystems(context: ValidationContext | None) -> set[str] | None:
    """Ecosystems named by the detected frameworks, or None to use the workflow's own."""
    if context is None or not context.detected_frameworks:
        return None
    return {f.ecosystem for f in context.detected_frameworks}


def step_ecosystems(step: StepSpec, config: AnalyzerConfig) -> list[str]:
    """Ecosystems whose dependencies this step installs, in script order."""
    found: list[str] = []
    if step.run is not None:
        for line in script_lines(step.run):
            pattern = match_command(line, config.install_commands)
            if pattern is not None:
                ecosystem = config.install_commands[pattern]
                if ecosystem not in found:
                    found.append(ecosystem)
    elif step.action_name == "docker/build-push-action":
        found.append("docker")
    return found


def job_ecosystem(job: JobSpec, config: AnalyzerConfig) -> str | None:
    """Primary ecosystem of a job: its setup action, else its first install command."""
    setup_actions = {
        strategy.setup_action: ecosystem
        for ecosystem, strategy in config.cache_strategies.items()
        if strategy.setup_action
    }
    for step in job.steps:
        if step.action_name in setup_actions:
            return setup_actions[step.action_name]
    for step in job.steps:
        ecosystem = detect_ecosystem(step.run, config)
        if ecosystem is not None:
            return ecosystem
    return None


def has_cache(job: JobSpec, ecosystem: str, config: AnalyzerConfig, before: int | None = None) -> bool:
    """Whether the job already caches this ecosystem's dependencies.

    With ``before`` set, only cache steps ahead of that step index count; a
    cache restored after the install has nothing to save.
    """
    strategy = config.cache_strategies.get(ecosystem)
    for step in job.steps:
        action = step.action_name
        if ecosystem == "docker":
            # cache-from sits on the build step itself
            if "cache-from" in step.with_ and (before is None or step.index <= before):
                return True
        if before is not None and step.index >= before:
            continue
        if ecosystem == "docker":
            if action == "actions/cache":
                path = str(step.with_.get("path", "")).lower()
                if "buildx" in path or "docker" in path:
                    return True
            continue
        if action == "actions/cache":
            return True
        if strategy is not None and strategy.setup_action and action == strategy.setup_action:
            cache_input = step.with_.get("cache")
            if ecosystem == "go":
                # setup-go caches by default since v4
                if cache_input is None or _truthy_input(cache_input):
                    return True
            elif _truthy_input(cache_input):
                return True
    return False


def cache_step(ecosystem: str, config: AnalyzerConfig) -> dict[str, Any]:
    strategy = config.cache_strategies[ecosystem]
    version = config.latest_action_versions.get("actions/cache", "v4")
    restore_prefix = strategy.key.split("${{ hashFiles", 1)[0]
    return {
        "name": f"Cache {ecosystem} dependencies",
        "uses": f"actions/cache@{version}",
        "with": {
            "path": "\n".join(strategy.paths),
            "key": strategy.key,
            "restore-keys": restore_prefix,
        },
    }


def cache_step_lines(step: dict[str, Any], indent: int) -> list[str]:
    """Render a cache step as block YAML lines starting at ``indent`` spaces."""
    pad = " " * indent
    lines = [f"{pad}- name: {step['name']}", f"{pad}  uses: {step['uses']}", f"{pad}  with:"]
    for key, value in step["with"].items():
        value = str(value)
        if "\n" in value:
            lines.append(f"{pad}    {key}: |")
            lines.extend(f"{pad}      {part}" for part in value.splitlines())
        else:
            lines.append(f"{pad}    {key}: {value}")
    return lines


def find_caching_opportunities(
    structure: ParsedStructure,
    config: AnalyzerConfig,
    context: ValidationContext | None = None,
) -> list[CachingOpportunity]:
    """One opportunity per job and ecosystem, anchored at the first install step."""
    allowed = allowed_ecosystems(context)
    opportunities: list[CachingOpportunity] = []

    for job in structure.jobs.values():
        seen: set[str] = set()
        for step in job.steps:
            for ecosystem in step_ecosystems(step, config):
                if ecosystem in seen:
                    continue
                seen.add(ecosystem)
                if allowed is not None and ecosystem not in allowed:
                    continue
                strategy = config.cache_strategies.get(ecosystem)
                if strategy is None or has_cache(job, ecosystem, config, before=step.index):
                    continue
                opportunities.append(
                    CachingOpportunity(
                        job=job.id,
                        step_name=step.label,
                        step_index=step.index,
                        framework=ecosystem,
                        cache_type=strategy.cache_type,
                        estimated_saving=strategy.estimated_saving,
                        cache_key=strategy.key,
                        cache_paths=list(strategy.paths),
                    )
                )
    return opportunities


def caching_findings(opportunities: list[CachingOpportunity], structure: ParsedStructure) -> list[Finding]:
    findings: list[Finding] = []
    for opp in opportunities:
        steps = structure.jobs[opp.job].steps
        location = next((s.span for s in steps if s.index == opp.step_index), None)
        findings.append(
            Finding(
                code="missing-cache",
                severity=Severity.warning,
                category=FindingCategory.performance,
                message=(
                    f"Job '{opp.job}' installs {opp.framework} dependencies in "
                    f"'{opp.step_name}' without caching"
                ),
                location=location or structure.jobs[opp.job].span,
                suggestion=f"Add an actions/cache step for {', '.join(opp.cache_paths)}",
                job=opp.job,
                step_index=opp.step_index,
            )
        )
    return findings


def caching_recommendation(opp: CachingOpportunity, config: AnalyzerConfig) -> Recommendation:
    step = cache_step(opp.framework, config)
    return Recommendation(
        id=f"cache-{opp.job}-{opp.framework}",
        title=f"Cache {opp.framework} dependencies in job '{opp.job}'",
        description=(
            f"Restore {', '.join(opp.cache_paths)} before '{opp.step_name}' "
            f"to skip repeated downloads"
        ),
        category=RecommendationCategory.caching,
        priority=Priority.high if opp.estimated_saving >= 90 else Priority.medium,
        estimated_time_saving=opp.estimated_saving,
        implementation=Implementation(
            type=ImplementationType.step_addition,
            changes=[
                YamlChange(
                    path=["jobs", opp.job, "steps"],
                    operation=ChangeOperation.add,
                    value=step,
                    index=opp.step_index,
                )
            ],
            example="\n".join(cache_step_lines(step, 0)),
            documentation=CACHE_DOCS,
        ),
        applicable_steps=[StepRef(job=opp.job, step_index=opp.step_index, step_name=opp.step_name)],
    )


def _slow_step_suggestions(patterns: list[str]) -> list[str]:
    suggestions: list[str] = []
    text = " ".join(patterns)
    if "install" in text or "npm ci" in text:
        suggestions.append("Add dependency caching to speed up installation")
    if "docker" in text:
        suggestions.append("Enable Docker layer caching with cache-from/cache-to")
        suggestions.append("Use multi-stage builds to reduce image size")
    if "mvn" in text or "gradle" in text or "cargo" in text:
        suggestions.append("Cache the build tool's dependency directory")
    if "test" in text:
        suggestions.append("Split tests across a matrix or run them in parallel")
    if not suggestions:
        suggestions.append("Consider optimizing this step or moving it to a parallel job")
    return suggestions


def find_slow_steps(structure: ParsedStructure, config: AnalyzerConfig) -> list[Bottleneck]:
    bottlenecks: list[Bottleneck] = []
    for job, step in structure.iter_steps():
        if step.run is None:
            continue
        seconds, patterns = run_cost(step.run, config)
        if not patterns:
            continue
        severity = Severity.warning if seconds >= config.slow_step_warning_seconds else Severity.info
        bottlenecks.append(
            Bottleneck(
                type=BottleneckType.slow_step,
                severity=severity,
                location=f"jobs.{job.id}.steps[{step.index}]",
                job=job.id,
                step_index=step.index,
                description=f"Step '{step.label}' takes approximately {round(seconds / 60, 1)} minutes",
                estimated_duration=seconds,
                suggestions=_slow_step_suggestions(patterns),
            )
        )
    return bottlenecks


def find_dependency_waits(structure: ParsedStructure, config: AnalyzerConfig) -> list[Bottleneck]:
    bottlenecks: list[Bottleneck] = []
    for job in structure.jobs.values():
        needs = list(dict.fromkeys(job.needs))
        if len(needs) <= config.dependency_wait_threshold:
            continue
        waits = [job_duration(structure.jobs[n], config) for n in needs if n in structure.jobs]
        bottlenecks.append(
            Bottleneck(
                type=BottleneckType.dependency_wait,
                severity=Severity.info,
                location=f"jobs.{job.id}.needs",
                job=job.id,
                description=f"Job '{job.id}' waits for {len(needs)} dependencies",
                estimated_duration=max(waits, default=0),
                suggestions=[
                    "Reduce the number of jobs this job needs",
                    "Move independent work into jobs that run in parallel",
                ],
            )
        )
    return bottlenecks


def find_inefficient_matrices(structure: ParsedStructure, config: AnalyzerConfig) -> list[Bottleneck]:
    bottlenecks: list[Bottleneck] = []
    for job in structure.jobs.values():
        if job.strategy is None or not job.strategy.matrix:
            continue
        product = job.strategy.axis_product
        if product <= config.matrix_combination_threshold:
            continue
        bottlenecks.append(
            Bottleneck(
                type=BottleneckType.inefficient_matrix,
                severity=Severity.warning,
                location=f"jobs.{job.id}.strategy.matrix",
                job=job.id,
                description=f"Matrix for job '{job.id}' expands to {product} combinations",
                estimated_duration=job_duration(job, config) * job.strategy.combinations,
                suggestions=[
                    "Trim axes to the versions you actually support",
                    "Use 'exclude' for combinations that add no coverage",
                    "Set 'max-parallel' to bound runner usage",
                ],
            )
        )
    return bottlenecks


def current_structure(structure: ParsedStructure) -> ParallelStructure:
    roots = [j for j in structure.jobs.values() if not j.needs]
    if len(roots) == len(structure.jobs):
        return ParallelStructure.parallel
    if len(roots) <= 1:
        return ParallelStructure.sequential
    return ParallelStructure.partially_parallel


def independent_job_group(structure: ParsedStructure) -> list[str]:
    """Largest greedy set of jobs, in declaration order, none needing another."""
    graph = dependency_graph(structure.jobs)
    upstream = {job_id: ancestors(graph, job_id) for job_id in graph}
    group: list[str] = []
    for job_id in graph:
        if all(job_id not in upstream[other] and other not in upstream[job_id] for other in group):
            group.append(job_id)
    return group


def suggest_parallel_jobs(
    structure: ParsedStructure, config: AnalyzerConfig
) -> tuple[list[ParallelizationSuggestion], list[Recommendation]]:
    group = independent_job_group(structure)
    if len(group) < 2:
        return [], []

    durations = [job_duration(structure.jobs[j], config) for j in group]
    reduction = sum(durations) - max(durations)
    example = "\n\n".join(
        f"{job_id}:\n  runs-on: ubuntu-latest\n  # no 'needs' on the other jobs of this group"
        for job_id in group
    )
    suggestion = ParallelizationSuggestion(
        current_structure=current_structure(structure),
        suggested_structure=ParallelStructure.parallel,
        affected_jobs=group,
        strategy="job-parallelization",
        configuration={"parallel_jobs": group},
        example=example,
        estimated_reduction=reduction,
    )
    recommendation = Recommendation(
        id="parallel-jobs",
        title="Run independent jobs in parallel",
        description=(
            f"Jobs {', '.join(group)} do not depend on each other; keep them free of "
            f"'needs' between them so they start together"
        ),
        category=RecommendationCategory.parallelization,
        priority=Priority.high if reduction > 300 else Priority.medium,
        estimated_time_saving=reduction,
        implementation=Implementation(
            type=ImplementationType.job_restructure,
            example=example,
            documentation=JOBS_DOCS,
        ),
        applicable_steps=[StepRef(job=j) for j in group],
    )
    return [suggestion], [recommendation]


def _axis_in_use(structure: ParsedStructure, axis: str) -> list[Any] | None:
    for job in structure.jobs.values():
        if job.strategy is not None and axis in job.strategy.matrix:
            return list(job.strategy.matrix[axis])
    return None


def suggest_matrix_builds(
    structure: ParsedStructure, config: AnalyzerConfig
) -> tuple[list[ParallelizationSuggestion], list[Recommendation]]:
    suggestions: list[ParallelizationSuggestion] = []
    recommendations: list[Recommendation] = []

    for job in structure.jobs.values():
        if job.is_reusable_call:
            continue
        if job.strategy is not None and (job.strategy.matrix or job.strategy.matrix_expression):
            continue
        if not any(step.run and TEST_STEP_RE.search(step.run) for step in job.steps):
            continue
        ecosystem = job_ecosystem(job, config)
        if ecosystem not in config.matrix_axes:
            continue

        axis, defaults = config.matrix_axes[ecosystem]
        values = _axis_in_use(structure, axis) or list(defaults)
        matrix = {axis: values}
        example = (
            f"{job.id}:\n  strategy:\n    matrix:\n      {axis}: [{', '.join(str(v) for v in values)}]"
        )
        suggestions.append(
            ParallelizationSuggestion(
                current_structure=ParallelStructure.sequential,
                suggested_structure=ParallelStructure.matrix,
                affected_jobs=[job.id],
                strategy="matrix-build",
                configuration={"matrix": matrix},
                example=example,
                estimated_reduction=0,
            )
        )
        recommendations.append(
            Recommendation(
                id=f"matrix-{job.id}",
                title=f"Test job '{job.id}' across {ecosystem} versions",
                description=f"Run '{job.id}' as a matrix over {axis} to catch version-specific failures",
                category=RecommendationCategory.parallelization,
                priority=Priority.low,
                estimated_time_saving=0,
                implementation=Implementation(
                    type=ImplementationType.job_restructure,
                    changes=[
                        YamlChange(
                            path=["jobs", job.id, "strategy"],
                            operation=ChangeOperation.add,
                            value={"matrix": matrix},
                        )
                    ],
                    example=example,
                    documentation=MATRIX_DOCS,
                ),
                applicable_steps=[StepRef(job=job.id)],
            )
        )
    return suggestions, recommendations


def fail_fast_recommendations(structure: ParsedStructure) -> list[Recommendation]:
    recommendations: list[Recommendation] = []
    for job in structure.jobs.values():
        strategy = job.strategy
        if strategy is None or not strategy.matrix or strategy.combinations <= 1:
            continue
        if strategy.fail_fast is not None:
            continue
        recommendations.append(
            Recommendation(
                id=f"fail-fast-{job.id}",
                title=f"Set fail-fast explicitly for job '{job.id}'",
                description=(
                    f"The matrix for '{job.id}' runs {strategy.combinations} combinations; "
                    f"state 'fail-fast' so cancellation behaviour is explicit"
                ),
                category=RecommendationCategory.strategy,
                priority=Priority.low,
                implementation=Implementation(
                    type=ImplementationType.config_change,
                    changes=[
                        YamlChange(
                            path=["jobs", job.id, "strategy", "fail-fast"],
                            operation=ChangeOperation.add,
                            value=True,
                        )
                    ],
                    example="strategy:\n  fail-fast: true\n  matrix: ...",
                    documentation=MATRIX_DOCS,
                ),
                applicable_steps=[StepRef(job=job.id)],
            )
        )
    return recommendations


def _needs_os(job: JobSpec) -> bool:
    """Whether the job shows signs of relying on its runner's OS."""
    labels = " ".join(job.runner_labels)
    if "${{" in labels:
        return True
    for step in job.steps:
        if step.shell and step.shell.strip().lower() in OS_SHELLS:
            return True
        if step.run and OS_HINT_RE.search(step.run):
            return True
        if step.uses and re.search(r"(?i)(windows|macos|xcode|msbuild)", step.uses):
            return True
    return False


def find_runner_optimizations(
    structure: ParsedStructure, config: AnalyzerConfig
) -> tuple[list[ResourceOptimization], list[Recommendation]]:
    optimizations: list[ResourceOptimization] = []
    recommendations: list[Recommendation] = []

    for job in structure.jobs.values():
        labels = [label.lower() for label in job.runner_labels]
        family = next(
            (os_name for os_name in config.runner_savings if any(l.startswith(os_name) for l in labels)),
            None,
        )
        if family is None or _needs_os(job):
            continue

        saving = config.runner_savings[family]
        current = ", ".join(job.runner_labels)
        reasoning = (
            f"Job '{job.id}' runs on {current} but uses nothing specific to {family}; "
            f"Linux runners start faster and cost less"
        )
        optimizations.append(
            ResourceOptimization(
                job=job.id,
                resource_type="runner",
                current_usage=current,
                recommended_usage="ubuntu-latest",
                reasoning=reasoning,
                cost_impact="decrease",
                performance_impact=round(saving / 60, 2),
            )
        )
        recommendations.append(
            Recommendation(
                id=f"runner-{job.id}",
                title=f"Run job '{job.id}' on ubuntu-latest",
                description=reasoning,
                category=RecommendationCategory.resource,
                priority=Priority.medium,
                estimated_time_saving=saving,
                implementation=Implementation(
                    type=ImplementationType.config_change,
                    changes=[
                        YamlChange(
                            path=["jobs", job.id, "runs-on"],
                            operation=ChangeOperation.modify,
                            value="ubuntu-latest",
                        )
                    ],
                    example="runs-on: ubuntu-latest",
                    documentation=RUNNER_DOCS,
                ),
                applicable_steps=[StepRef(job=job.id)],
            )
        )
    return optimizations, recommendations


def serial_duration(structure: ParsedStructure, config: AnalyzerConfig) -> int:
    """Total runner seconds if every job and matrix combination ran one after another."""
    total = 0
    for job in structure.jobs.values():
        combos = job.strategy.combinations if job.strategy is not None else 1
        total += job_duration(job, config) * combos
    return total


def estimate_improvements(
    baseline: int,
    savings: dict[str, int],
    config: AnalyzerConfig,
) -> list[EstimatedImprovement]:
    improvements: list[EstimatedImprovement] = []
    for category, saving in savings.items():
        if saving <= 0:
            continue
        saving = min(saving, baseline) if baseline else saving
        improvements.append(
            EstimatedImprovement(
                category=category,
                current_time=baseline,
                optimized_time=max(baseline - saving, 0),
                time_saving=saving,
                confidence=config.improvement_confidence.get(category, 0.5),
            )
        )
    return improvements


def performance_score(findings: list[Finding], bottlenecks: list[Bottleneck], config: AnalyzerConfig) -> int:
    penalty = sum(config.severity_penalties.get(f.severity.value, 0) for f in findings)
    penalty += sum(config.severity_penalties.get(b.severity.value, 0) for b in bottlenecks)
    return max(0, 100 - penalty)


def analyze_performance(
    structure: ParsedStructure,
    config: AnalyzerConfig,
    context: ValidationContext | None = None,
) -> PerformanceReport:
    """Run all performance rules against one parsed workflow."""
    opportunities = find_caching_opportunities(structure, config, context)
    findings = caching_findings(opportunities, structure)

    bottlenecks = find_slow_steps(structure, config)
    bottlenecks.extend(find_dependency_waits(structure, config))
    bottlenecks.extend(find_inefficient_matrices(structure, config))

    parallel, parallel_recs = suggest_parallel_jobs(structure, config)
    matrix, matrix_recs = suggest_matrix_builds(structure, config)
    optimizations, runner_recs = find_runner_optimizations(structure, config)

    recommendations = [caching_recommendation(o, config) for o in opportunities]
    recommendations.extend(parallel_recs)
    recommendations.extend(matrix_recs)
    recommendations.extend(fail_fast_recommendations(structure))
    recommendations.extend(runner_recs)

    improvements = estimate_improvements(
        serial_duration(structure, config),
        {
            "caching": sum(o.estimated_saving for o in opportunities),
            "parallelization": sum(s.estimated_reduction for s in parallel),
            "resource": sum(r.estimated_time_saving for r in runner_recs),
        },
        config,
    )

    logger.debug(
        "Performance: %d caching opportunities, %d bottlenecks, %d recommendations",
        len(opportunities),
        len(bottlenecks),
        len(recommendations),
    )
    return PerformanceReport(
        analyzed=True,
        score=performance_score(findings, bottlenecks, config),
        findings=findings,
        caching_opportunities=opportunities,
        bottlenecks=bottlenecks,
        parallelization_suggestions=[*parallel, *matrix],
        resource_optimizations=optimizations,
        recommendations=recommendations,
        estimated_improvements=improvements,
    )
