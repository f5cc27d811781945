"""Tests for the performance rules."""

from __future__ import annotations

from cicheck.analyzer.models import (
    BottleneckType,
    ChangeOperation,
    ImplementationType,
    ParallelStructure,
    Priority,
    RecommendationCategory,
)
from cicheck.analyzer.performance import (
    analyze_performance,
    cache_step,
    find_caching_opportunities,
    find_dependency_waits,
    find_inefficient_matrices,
    find_runner_optimizations,
    find_slow_steps,
    has_cache,
    independent_job_group,
    suggest_matrix_builds,
    suggest_parallel_jobs,
)
from cicheck.config import DEFAULT_CONFIG
from cicheck.validator.models import Severity
from cicheck.workflow.models import ParsedStructure, ValidationContext
from cicheck.workflow.parser import parse_workflow


def _structure(jobs: str) -> ParsedStructure:
    structure = parse_workflow("name: CI\non: push\njobs:\n" + jobs)
    assert isinstance(structure, ParsedStructure)
    return structure


def _job(job_id: str, steps: list[str], extra: str = "", runs_on: str = "ubuntu-latest") -> str:
    body = f"  {job_id}:\n    runs-on: {runs_on}\n{extra}    steps:\n"
    return body + "".join(f"      - {s}\n" for s in steps)


class TestCaching:
    def test_npm_without_cache(self, load_workflow) -> None:
        structure = parse_workflow(load_workflow("node_ci.yml").raw_content)
        opportunities = find_caching_opportunities(structure, DEFAULT_CONFIG)
        assert len(opportunities) == 1
        opp = opportunities[0]
        assert (opp.job, opp.step_index, opp.framework) == ("test", 2, "node")
        assert opp.step_name == "Install dependencies"
        assert opp.cache_paths == ["~/.npm"]

    def test_setup_action_cache_input_counts(self) -> None:
        structure = _structure(
            _job(
                "build",
                [
                    "uses: actions/setup-node@v4\n        with:\n          cache: npm",
                    "run: npm ci",
                ],
            )
        )
        assert has_cache(structure.jobs["build"], "node", DEFAULT_CONFIG)
        assert find_caching_opportunities(structure, DEFAULT_CONFIG) == []

    def test_setup_go_caches_by_default(self) -> None:
        structure = _structure(_job("build", ["uses: actions/setup-go@v5", "run: go mod download"]))
        assert has_cache(structure.jobs["build"], "go", DEFAULT_CONFIG)

        disabled = _structure(
            _job(
                "build",
                ["uses: actions/setup-go@v5\n        with:\n          cache: false", "run: go mod download"],
            )
        )
        assert not has_cache(disabled.jobs["build"], "go", DEFAULT_CONFIG)

    def test_docker_needs_layer_cache(self) -> None:
        structure = _structure(
            _job("image", ["uses: actions/cache@v4\n        with:\n          path: ~/.npm", "run: docker build ."])
        )
        opportunities = find_caching_opportunities(structure, DEFAULT_CONFIG)
        assert [o.framework for o in opportunities] == ["docker"]
        assert opportunities[0].cache_type == "docker-layers"

    def test_adding_cache_step_removes_recommendation(self) -> None:
        before = _structure(_job("build", ["uses: actions/checkout@v4", "run: npm install"]))
        recs = [r for r in analyze_performance(before, DEFAULT_CONFIG).recommendations if r.category == RecommendationCategory.caching]
        assert [r.id for r in recs] == ["cache-build-node"]

        after = _structure(
            _job(
                "build",
                [
                    "uses: actions/checkout@v4",
                    "uses: actions/cache@v4\n        with:\n          path: ~/.npm\n          key: npm",
                    "run: npm install",
                ],
            )
        )
        recs = [r for r in analyze_performance(after, DEFAULT_CONFIG).recommendations if r.category == RecommendationCategory.caching]
        assert recs == []

    def test_cache_after_install_does_not_count(self) -> None:
        structure = _structure(
            _job(
                "build",
                [
                    "uses: actions/checkout@v4",
                    "run: npm install",
                    "uses: actions/cache@v4\n        with:\n          path: ~/.npm",
                ],
            )
        )
        job = structure.jobs["build"]
        assert has_cache(job, "node", DEFAULT_CONFIG)
        assert not has_cache(job, "node", DEFAULT_CONFIG, before=1)
        opportunities = find_caching_opportunities(structure, DEFAULT_CONFIG)
        assert [(o.framework, o.step_index) for o in opportunities] == [("node", 1)]

    def test_docker_cache_from_on_build_step(self) -> None:
        structure = _structure(
            _job("image", ["uses: docker/build-push-action@v5\n        with:\n          cache-from: type=gha"])
        )
        assert find_caching_opportunities(structure, DEFAULT_CONFIG) == []

    def test_one_opportunity_per_job_and_ecosystem(self) -> None:
        structure = _structure(_job("build", ["run: npm ci", "run: npm install left-pad", "run: pip install -r r.txt"]))
        opportunities = find_caching_opportunities(structure, DEFAULT_CONFIG)
        assert [(o.framework, o.step_index) for o in opportunities] == [("node", 0), ("python", 2)]

    def test_detected_frameworks_filter(self) -> None:
        structure = _structure(_job("build", ["run: npm ci", "run: pip install -r r.txt"]))
        context = ValidationContext(detected_frameworks=[{"name": "Django"}])
        opportunities = find_caching_opportunities(structure, DEFAULT_CONFIG, context)
        assert [o.framework for o in opportunities] == ["python"]

    def test_recommendation_inserts_before_install(self, load_workflow) -> None:
        structure = parse_workflow(load_workflow("node_ci.yml").raw_content)
        report = analyze_performance(structure, DEFAULT_CONFIG)
        rec = next(r for r in report.recommendations if r.id == "cache-test-node")
        assert rec.category == RecommendationCategory.caching
        assert rec.priority == Priority.medium
        assert rec.estimated_time_saving == 60
        change = rec.implementation.changes[0]
        assert change.path == ["jobs", "test", "steps"]
        assert change.operation == ChangeOperation.add
        assert change.index == 2
        assert change.value == cache_step("node", DEFAULT_CONFIG)

    def test_cache_step_shape(self) -> None:
        step = cache_step("java", DEFAULT_CONFIG)
        assert step["uses"] == "actions/cache@v4"
        assert step["with"]["path"] == "~/.m2/repository\n~/.gradle/caches"
        assert step["with"]["restore-keys"] == "${{ runner.os }}-java-"


class TestBottlenecks:
    def test_slow_step_severity(self) -> None:
        structure = _structure(_job("build", ["run: docker build .", "run: npm ci", "run: echo done"]))
        bottlenecks = find_slow_steps(structure, DEFAULT_CONFIG)
        assert [(b.step_index, b.severity) for b in bottlenecks] == [(0, Severity.warning), (1, Severity.info)]
        assert bottlenecks[0].location == "jobs.build.steps[0]"
        assert bottlenecks[0].estimated_duration == 360
        assert bottlenecks[0].type == BottleneckType.slow_step

    def test_multi_command_script_sums(self) -> None:
        structure = _structure(_job("build", ["run: |\n          npm ci\n          npm run build"]))
        [bottleneck] = find_slow_steps(structure, DEFAULT_CONFIG)
        assert bottleneck.estimated_duration == 270
        assert bottleneck.severity == Severity.info

    def test_dependency_wait(self) -> None:
        jobs = "".join(_job(j, ["run: echo hi"]) for j in ("a", "b", "c", "d"))
        jobs += _job("final", ["run: echo hi"], extra="    needs: [a, b, c, d]\n")
        bottlenecks = find_dependency_waits(_structure(jobs), DEFAULT_CONFIG)
        assert [b.job for b in bottlenecks] == ["final"]
        assert bottlenecks[0].severity == Severity.info

    def test_three_needs_is_fine(self) -> None:
        jobs = "".join(_job(j, ["run: echo hi"]) for j in ("a", "b", "c"))
        jobs += _job("final", ["run: echo hi"], extra="    needs: [a, b, c]\n")
        assert find_dependency_waits(_structure(jobs), DEFAULT_CONFIG) == []

    def test_inefficient_matrix(self) -> None:
        extra = (
            "    strategy:\n      matrix:\n"
            "        os: [a, b, c]\n        node: [1, 2, 3]\n        arch: [x, y, z]\n"
        )
        bottlenecks = find_inefficient_matrices(_structure(_job("t", ["run: npm test"], extra)), DEFAULT_CONFIG)
        assert len(bottlenecks) == 1
        assert bottlenecks[0].type == BottleneckType.inefficient_matrix
        assert bottlenecks[0].severity == Severity.warning

    def test_twenty_combinations_is_fine(self) -> None:
        extra = "    strategy:\n      matrix:\n        a: [1, 2, 3, 4]\n        b: [1, 2, 3, 4, 5]\n"
        assert find_inefficient_matrices(_structure(_job("t", ["run: make"], extra)), DEFAULT_CONFIG) == []


class TestParallelization:
    def test_independent_group(self) -> None:
        jobs = _job("lint", ["run: npm run lint"]) + _job("build", ["run: npm run build"])
        jobs += _job("test", ["run: npm test"], extra="    needs: build\n")
        structure = _structure(jobs)
        assert independent_job_group(structure) == ["lint", "build"]

        [suggestion], [rec] = suggest_parallel_jobs(structure, DEFAULT_CONFIG)
        assert suggestion.current_structure == ParallelStructure.partially_parallel
        assert suggestion.affected_jobs == ["lint", "build"]
        assert suggestion.estimated_reduction == 30
        assert rec.id == "parallel-jobs"
        assert rec.implementation.type == ImplementationType.job_restructure
        assert rec.implementation.changes == []

    def test_chain_has_no_group(self) -> None:
        jobs = _job("a", ["run: make"]) + _job("b", ["run: make"], extra="    needs: a\n")
        assert suggest_parallel_jobs(_structure(jobs), DEFAULT_CONFIG) == ([], [])

    def test_matrix_for_test_job(self, load_workflow) -> None:
        structure = parse_workflow(load_workflow("node_ci.yml").raw_content)
        [suggestion], [rec] = suggest_matrix_builds(structure, DEFAULT_CONFIG)
        assert suggestion.configuration == {"matrix": {"node-version": ["18", "20", "22"]}}
        assert rec.id == "matrix-test"
        assert rec.priority == Priority.low
        assert rec.implementation.changes[0].path == ["jobs", "test", "strategy"]

    def test_no_matrix_when_already_matrixed(self, load_workflow) -> None:
        structure = parse_workflow(load_workflow("pipeline.yml").raw_content)
        _, recs = suggest_matrix_builds(structure, DEFAULT_CONFIG)
        assert recs == []

    def test_fail_fast_recommendation(self, load_workflow) -> None:
        structure = parse_workflow(load_workflow("pipeline.yml").raw_content)
        report = analyze_performance(structure, DEFAULT_CONFIG)
        rec = next(r for r in report.recommendations if r.id == "fail-fast-test")
        assert rec.implementation.changes[0].path == ["jobs", "test", "strategy", "fail-fast"]
        assert rec.implementation.changes[0].value is True


class TestRunners:
    def test_macos_without_os_needs(self) -> None:
        structure = _structure(_job("build", ["run: npm test"], runs_on="macos-latest"))
        [optimization], [rec] = find_runner_optimizations(structure, DEFAULT_CONFIG)
        assert optimization.recommended_usage == "ubuntu-latest"
        assert rec.id == "runner-build"
        assert rec.category == RecommendationCategory.resource
        assert rec.estimated_time_saving == 60
        assert rec.implementation.changes[0].operation == ChangeOperation.modify

    def test_os_specific_jobs_are_left_alone(self) -> None:
        jobs = _job("ios", ["run: xcodebuild -scheme App"], runs_on="macos-14")
        jobs += _job("win", ["run: Get-ChildItem\n        shell: pwsh"], runs_on="windows-latest")
        jobs += _job("matrix", ["run: make"], runs_on="${{ matrix.os }}")
        assert find_runner_optimizations(_structure(jobs), DEFAULT_CONFIG) == ([], [])


class TestReport:
    def test_score_and_improvements(self, load_workflow) -> None:
        structure = parse_workflow(load_workflow("node_ci.yml").raw_content)
        report = analyze_performance(structure, DEFAULT_CONFIG)
        assert report.analyzed
        assert report.score == 93
        [improvement] = report.estimated_improvements
        assert improvement.category == "caching"
        assert improvement.current_time == 370
        assert improvement.optimized_time == 310
        assert improvement.confidence == 0.8

    def test_clean_workflow(self, load_workflow) -> None:
        structure = parse_workflow(load_workflow("calibrated.yml").raw_content)
        report = analyze_performance(structure, DEFAULT_CONFIG)
        assert report.score == 100
        assert report.recommendations == []
        assert report.estimated_improvements == []
