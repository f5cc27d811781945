"""Tests for action reference validation."""

from __future__ import annotations

import pytest

from cicheck.config import DEFAULT_CONFIG
from cicheck.validator.action_refs import (
    check_action_refs,
    check_reference,
    is_outdated,
    major_version,
)
from cicheck.validator.models import PassResult, Severity
from cicheck.workflow.models import ParsedStructure
from cicheck.workflow.parser import parse_workflow


def _run(steps: str) -> PassResult:
    structure = parse_workflow(
        "name: CI\non: push\njobs:\n  build:\n    runs-on: ubuntu-latest\n    steps:\n" + steps
    )
    assert isinstance(structure, ParsedStructure)
    return check_action_refs(structure, DEFAULT_CONFIG)


class TestCheckReference:
    @pytest.mark.parametrize(
        "uses",
        [
            "actions/checkout@v4",
            "actions/checkout@8ade135a41bc03ea155e62e844d188df1ea18608",
            "github/codeql-action/init@v3",
            "./.github/actions/local",
            "docker://alpine:3.19",
        ],
    )
    def test_well_formed(self, uses: str) -> None:
        assert check_reference(uses) is None

    def test_bare_name_is_warning(self) -> None:
        finding = check_reference("checkout")
        assert finding is not None
        assert finding.severity == Severity.warning

    def test_missing_ref_is_error(self) -> None:
        finding = check_reference("actions/checkout")
        assert finding is not None
        assert finding.severity == Severity.error
        assert finding.suggestion == "Pin a version, e.g. 'actions/checkout@v1'"

    def test_malformed_is_error(self) -> None:
        finding = check_reference("actions/checkout@v4@v5")
        assert finding is not None
        assert finding.severity == Severity.error
        assert "Malformed" in finding.message


class TestVersions:
    def test_major_version(self) -> None:
        assert major_version("v3") == 3
        assert major_version("v4.1.2") == 4
        assert major_version("main") is None
        assert major_version(None) is None

    def test_is_outdated(self) -> None:
        assert is_outdated("actions/checkout", "v2", DEFAULT_CONFIG)
        assert not is_outdated("actions/checkout", "v4", DEFAULT_CONFIG)
        assert not is_outdated("actions/checkout", "main", DEFAULT_CONFIG)
        assert not is_outdated("someone/unknown", "v1", DEFAULT_CONFIG)


class TestCheckActionRefs:
    def test_clean(self) -> None:
        result = _run("      - uses: actions/checkout@v4\n      - run: make\n")
        assert result.is_valid
        assert result.findings == []

    def test_unpinned_step_invalidates(self) -> None:
        result = _run("      - uses: actions/checkout\n")
        assert not result.is_valid
        error = result.errors[0]
        assert error.code == "invalid-action-reference"
        assert error.job == "build"
        assert error.step_index == 0
        assert error.location.line == 7
        assert error.location.column == 15

    def test_outdated_version_is_warning(self) -> None:
        result = _run("      - uses: actions/checkout@v3\n")
        assert result.is_valid
        assert [w.code for w in result.warnings] == ["outdated-action-version"]
        assert result.warnings[0].suggestion == "Update to actions/checkout@v4"

    def test_job_level_reusable_reference(self) -> None:
        structure = parse_workflow("name: CI\non: push\njobs:\n  call:\n    uses: shared-workflow\n")
        assert isinstance(structure, ParsedStructure)
        result = check_action_refs(structure, DEFAULT_CONFIG)
        assert [w.job for w in result.warnings] == ["call"]
