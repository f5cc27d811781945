"""Tests for secret handling checks."""

from __future__ import annotations

import time

from cicheck.validator.models import Severity
from cicheck.validator.secrets import (
    check_secrets,
    is_literal,
    referenced_secrets,
)
from cicheck.workflow.models import ParsedStructure, ValidationContext
from cicheck.workflow.parser import parse_workflow


def _structure(text: str) -> ParsedStructure:
    structure = parse_workflow(text)
    assert isinstance(structure, ParsedStructure)
    return structure


class TestIsLiteral:
    def test_literals(self) -> None:
        assert is_literal("sk_live_1234567890")
        assert is_literal("'hunter2secret'")

    def test_not_literals(self) -> None:
        assert not is_literal("${{ secrets.TOKEN }}")
        assert not is_literal("$TOKEN")
        assert not is_literal("true")
        assert not is_literal("abc")
        assert not is_literal("123456")


class TestReferencedSecrets:
    def test_dot_and_bracket_forms(self) -> None:
        lines = [
            "env:",
            "  A: ${{ secrets.FIRST }}",
            "  B: ${{ secrets['SECOND'] }}",
            "  # C: ${{ secrets.COMMENTED }}",
            "  D: secrets.OUTSIDE",
        ]
        refs = referenced_secrets(lines)
        assert [name for name, _, _ in refs] == ["FIRST", "SECOND"]
        assert refs[0][1:] == (2, 10)


class TestHardcodedSecrets:
    def test_fixture(self, load_workflow) -> None:
        structure = _structure(load_workflow("secrets.yml").raw_content)
        result = check_secrets(structure)
        hardcoded = [f for f in result.errors if f.code == "hardcoded-secret"]
        assert [f.location.line for f in hardcoded] == [7, 13]
        assert hardcoded[0].job == "deploy"
        assert hardcoded[1].step_index == 1
        assert hardcoded[1].location.column == 18
        assert not result.is_valid

    def test_expression_values_are_fine(self) -> None:
        structure = _structure(
            "name: CI\non: push\njobs:\n  a:\n    runs-on: x\n"
            "    env:\n      TOKEN: ${{ secrets.TOKEN }}\n"
            "    steps:\n      - run: echo \"token=$TOKEN\"\n"
        )
        assert check_secrets(structure).findings == []

    def test_secret_reference_replaces_literal(self) -> None:
        literal = _structure(
            "name: CI\non: push\njobs:\n  a:\n    runs-on: x\n    steps:\n"
            "      - run: echo \"password=hunter2secret\"\n"
        )
        assert [f.code for f in check_secrets(literal).errors] == ["hardcoded-secret"]

        referenced = _structure(
            "name: CI\non: push\njobs:\n  a:\n    runs-on: x\n    steps:\n"
            "      - run: echo \"password=${{ secrets.PASSWORD }}\"\n"
        )
        assert not any(f.code == "hardcoded-secret" for f in check_secrets(referenced).findings)

    def test_long_hyphenated_line_scans_quickly(self) -> None:
        structure = _structure(
            "name: CI\non: push\njobs:\n  a:\n    runs-on: x\n    steps:\n"
            f"      - run: echo {'a-' * 5000}\n"
        )
        started = time.perf_counter()
        result = check_secrets(structure)
        assert time.perf_counter() - started < 1.0
        assert result.findings == []

    def test_with_inputs_are_scanned(self) -> None:
        structure = _structure(
            "name: CI\non: push\njobs:\n  a:\n    runs-on: x\n    steps:\n"
            "      - uses: some/action@v1\n        with:\n          api-key: abcdef123456\n"
        )
        errors = check_secrets(structure).errors
        assert len(errors) == 1
        assert errors[0].location.line == 9

    def test_one_finding_per_script_line(self) -> None:
        structure = _structure(
            "name: CI\non: push\njobs:\n  a:\n    runs-on: x\n    steps:\n"
            "      - run: curl -u user:password=s3cretvalue --header token=abcd1234\n"
        )
        assert len(check_secrets(structure).errors) == 1


class TestUndefinedSecrets:
    def test_skipped_without_project_secrets(self, load_workflow) -> None:
        structure = _structure(load_workflow("secrets.yml").raw_content)
        result = check_secrets(structure, ValidationContext())
        assert not any(f.code == "undefined-secret" for f in result.findings)

    def test_reported_once_per_name(self, load_workflow) -> None:
        structure = _structure(load_workflow("secrets.yml").raw_content)
        result = check_secrets(structure, ValidationContext(project_secrets=["npm_token"]))
        undefined = [f for f in result.warnings if f.code == "undefined-secret"]
        assert [f.message for f in undefined] == [
            "Secret 'DEPLOY_TOKEN' is not defined for this project",
            "Secret 'SLACK_WEBHOOK' is not defined for this project",
        ]
        assert [f.location.line for f in undefined] == [17, 19]
        assert all(f.severity == Severity.warning for f in undefined)

    def test_github_token_always_defined(self) -> None:
        structure = _structure(
            "name: CI\non: push\njobs:\n  a:\n    runs-on: x\n    steps:\n"
            "      - run: gh release list\n        env:\n          GH_TOKEN: ${{ secrets.GITHUB_TOKEN }}\n"
            "      - run: echo ${{ secrets.MISSING }} ${{ secrets.missing }}\n"
        )
        result = check_secrets(structure, ValidationContext(project_secrets=[]))
        assert [f.code for f in result.warnings] == ["undefined-secret"]


class TestSecretConditions:
    def test_condition_flagged(self, load_workflow) -> None:
        structure = _structure(load_workflow("secrets.yml").raw_content)
        conditions = [f for f in check_secrets(structure).warnings if f.code == "secret-in-condition"]
        assert len(conditions) == 1
        assert conditions[0].step_index == 3
        assert conditions[0].location.line == 18
