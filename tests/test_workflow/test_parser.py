"""Tests for the structural workflow parser."""

from __future__ import annotations

import pytest

from cicheck.workflow.models import ParsedStructure, ParseFailure
from cicheck.workflow.parser import SYNTAX_ERROR_CODE, parse_workflow


def _parse(text: str) -> ParsedStructure:
    result = parse_workflow(text)
    assert isinstance(result, ParsedStructure), result
    return result


class TestParseFailures:
    def test_unterminated_flow_sequence(self) -> None:
        result = parse_workflow("on: [push\njobs:\n")
        assert isinstance(result, ParseFailure)
        assert result.finding.code == SYNTAX_ERROR_CODE
        assert result.finding.severity.value == "error"
        assert result.finding.location.line > 0

    def test_empty_content(self) -> None:
        result = parse_workflow("   \n")
        assert isinstance(result, ParseFailure)
        assert result.finding.location.line == 0

    def test_null_document(self) -> None:
        result = parse_workflow("# only a comment\n")
        assert isinstance(result, ParseFailure)
        assert "null" in result.finding.message

    def test_top_level_list(self) -> None:
        result = parse_workflow("- a\n- b\n")
        assert isinstance(result, ParseFailure)
        assert "mapping" in result.finding.message

    def test_non_string_raises(self) -> None:
        with pytest.raises(TypeError):
            parse_workflow(None)  # type: ignore[arg-type]


class TestTriggers:
    def test_on_stays_a_string_key(self) -> None:
        s = _parse("on: push\njobs: {}\n")
        assert s.keys == ["on", "jobs"]
        assert s.on is not None
        assert s.on.events == ["push"]
        assert s.on.span.line == 1

    def test_list_and_mapping_forms(self) -> None:
        assert _parse("on: [push, pull_request]\n").on.events == ["push", "pull_request"]
        s = _parse("on:\n  push:\n    branches: [main]\n  workflow_dispatch:\n")
        assert s.on.events == ["push", "workflow_dispatch"]


class TestJobs:
    def test_job_fields(self) -> None:
        s = _parse(
            "on: push\n"
            "jobs:\n"
            "  build:\n"
            "    runs-on: ubuntu-latest\n"
            "    timeout-minutes: 10\n"
            "    steps:\n"
            "      - uses: actions/checkout@v4\n"
            "  test:\n"
            "    needs: build\n"
            "    runs-on: [self-hosted, linux]\n"
            "    steps:\n"
            "      - run: make test\n"
        )
        assert list(s.jobs) == ["build", "test"]
        build = s.jobs["build"]
        assert build.runs_on == "ubuntu-latest"
        assert build.timeout_minutes == 10
        assert build.span.line == 3
        assert build.runs_on_span.line == 4
        test = s.jobs["test"]
        assert test.needs == ["build"]
        assert test.runner_labels == ["self-hosted", "linux"]
        assert test.index == 1

    def test_reusable_workflow_call(self) -> None:
        s = _parse(
            "on: push\n"
            "jobs:\n"
            "  call:\n"
            "    uses: octo-org/repo/.github/workflows/ci.yml@main\n"
            "    with:\n"
            "      level: 2\n"
        )
        job = s.jobs["call"]
        assert job.is_reusable_call
        assert job.with_ == {"level": 2}

    def test_strategy_counts(self) -> None:
        s = _parse(
            "on: push\n"
            "jobs:\n"
            "  test:\n"
            "    runs-on: ubuntu-latest\n"
            "    strategy:\n"
            "      fail-fast: false\n"
            "      max-parallel: 2\n"
            "      matrix:\n"
            "        os: [ubuntu-latest, windows-latest]\n"
            "        node: [18, 20, 22]\n"
            "        exclude:\n"
            "          - os: windows-latest\n"
            "            node: 18\n"
            "        include:\n"
            "          - os: macos-latest\n"
            "            node: 22\n"
            "    steps:\n"
            "      - run: npm test\n"
        )
        job = s.jobs["test"]
        assert job.strategy.axis_product == 6
        assert job.strategy.combinations == 6
        assert job.strategy.fail_fast is False
        assert job.strategy.max_parallel == 2
        assert job.matrix_span.line == 8

    def test_shape_issues_skip_bad_nodes(self) -> None:
        s = _parse(
            "on: push\n"
            "jobs:\n"
            "  broken: just a string\n"
            "  odd:\n"
            "    runs-on: ubuntu-latest\n"
            "    steps: run this\n"
            "  ok:\n"
            "    runs-on: ubuntu-latest\n"
            "    steps:\n"
            "      - 42\n"
            "      - run: echo hi\n"
        )
        codes = [i.code for i in s.shape_issues]
        assert codes == ["malformed-job", "malformed-steps", "malformed-step"]
        assert "broken" not in s.jobs
        assert [step.index for step in s.jobs["ok"].steps] == [1]

    def test_jobs_not_a_mapping(self) -> None:
        s = _parse("on: push\njobs: [a, b]\n")
        assert [i.code for i in s.shape_issues] == ["malformed-jobs"]
        assert s.jobs == {}


class TestSteps:
    def test_step_fields_and_spans(self) -> None:
        s = _parse(
            "on: push\n"
            "jobs:\n"
            "  build:\n"
            "    runs-on: ubuntu-latest\n"
            "    steps:\n"
            "      - name: Checkout\n"
            "        uses: actions/checkout@v4\n"
            "        with:\n"
            "          fetch-depth: 0\n"
            "      - name: Build\n"
            "        if: github.ref == 'refs/heads/main'\n"
            "        shell: bash\n"
            "        env:\n"
            "          CI: true\n"
            "        run: |\n"
            "          make\n"
            "          make install\n"
        )
        checkout, build = s.jobs["build"].steps
        assert checkout.uses == "actions/checkout@v4"
        assert checkout.action_name == "actions/checkout"
        assert checkout.action_ref == "v4"
        assert checkout.span.line == 6
        assert checkout.uses_span.line == 7
        assert checkout.with_ == {"fetch-depth": 0}
        assert build.env == {"CI": "true"}
        assert build.if_ == "github.ref == 'refs/heads/main'"
        assert build.run == "make\nmake install\n"
        assert build.run_span.line == 15
        assert build.run_line(1) == 17

    def test_label_falls_back_to_run(self) -> None:
        s = _parse("on: push\njobs:\n  a:\n    runs-on: x\n    steps:\n      - run: echo hi\n")
        assert s.jobs["a"].steps[0].label == "echo hi"

    def test_column_of(self) -> None:
        s = _parse("on: push\njobs:\n  a:\n    runs-on: macos-14\n")
        assert s.column_of(4, "macos-14") == 14
        assert s.column_of(4, "absent") == 0
        assert s.column_of(99, "x") == 0
