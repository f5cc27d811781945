"""Tests for quick fix text edits."""

from __future__ import annotations

from cicheck.analyzer.performance import analyze_performance
from cicheck.analyzer.security import outdated_action_recommendations
from cicheck.config import DEFAULT_CONFIG
from cicheck.quickfix.classifier import TextEdit
from cicheck.quickfix.generator import build_quick_fixes, generate_edit
from cicheck.workflow.models import ParsedStructure
from cicheck.workflow.parser import parse_workflow


def _structure(text: str) -> ParsedStructure:
    structure = parse_workflow(text)
    assert isinstance(structure, ParsedStructure)
    return structure


def _apply(text: str, edit: TextEdit) -> str:
    """Apply a single-line or insertion edit to source text."""
    lines = text.splitlines(keepends=True)
    line = lines[edit.start_line - 1]
    start = edit.start_column - 1
    end = edit.end_column - 1
    lines[edit.start_line - 1] = line[:start] + edit.new_text + line[end:]
    return "".join(lines)


class TestStepInsertion:
    def test_cache_step_above_install(self, load_workflow) -> None:
        text = load_workflow("node_ci.yml").raw_content
        structure = _structure(text)
        report = analyze_performance(structure, DEFAULT_CONFIG)
        rec = next(r for r in report.recommendations if r.id == "cache-test-node")

        edit = generate_edit(rec, structure)
        assert edit is not None
        assert (edit.start_line, edit.start_column, edit.end_line, edit.end_column) == (14, 1, 14, 1)

        fixed = _apply(text, edit)
        assert "      - name: Cache node dependencies\n        uses: actions/cache@v4\n" in fixed
        assert fixed.index("Cache node dependencies") < fixed.index("Install dependencies")
        assert isinstance(parse_workflow(fixed), ParsedStructure)

    def test_multi_line_paths_become_block_scalars(self) -> None:
        text = "name: CI\non: push\njobs:\n  build:\n    runs-on: x\n    steps:\n      - run: mvn install\n"
        structure = _structure(text)
        report = analyze_performance(structure, DEFAULT_CONFIG)
        rec = next(r for r in report.recommendations if r.id == "cache-build-java")
        edit = generate_edit(rec, structure)
        assert edit is not None
        assert "          path: |\n            ~/.m2/repository\n            ~/.gradle/caches\n" in edit.new_text


class TestFailFast:
    def test_inserted_above_matrix(self, load_workflow) -> None:
        text = load_workflow("pipeline.yml").raw_content
        structure = _structure(text)
        report = analyze_performance(structure, DEFAULT_CONFIG)
        rec = next(r for r in report.recommendations if r.id == "fail-fast-test")
        edit = generate_edit(rec, structure)
        assert edit == TextEdit(start_line=15, start_column=1, end_line=15, end_column=1, new_text="      fail-fast: true\n")


class TestReplacements:
    def test_action_version(self) -> None:
        text = "name: CI\non: push\njobs:\n  a:\n    runs-on: x\n    steps:\n      - uses: actions/checkout@v3\n"
        structure = _structure(text)
        [rec] = outdated_action_recommendations(structure, DEFAULT_CONFIG)
        edit = generate_edit(rec, structure)
        assert edit is not None
        assert edit.start_line == 7
        assert edit.start_column == 15
        assert _apply(text, edit).endswith("      - uses: actions/checkout@v4\n")

    def test_runner(self) -> None:
        text = "name: CI\non: push\njobs:\n  a:\n    runs-on: macos-latest\n    steps:\n      - run: npm test\n"
        structure = _structure(text)
        report = analyze_performance(structure, DEFAULT_CONFIG)
        fixes = build_quick_fixes(report.recommendations, structure)
        fix = next(f for f in fixes if f.recommendation_id == "runner-a")
        assert fix.id == "fix-runner-a"
        assert fix.requires_confirmation
        assert "    runs-on: ubuntu-latest\n" in _apply(text, fix.edit)


class TestBuildQuickFixes:
    def test_guided_recommendations_are_skipped(self, load_workflow) -> None:
        structure = _structure(load_workflow("node_ci.yml").raw_content)
        report = analyze_performance(structure, DEFAULT_CONFIG)
        fixes = build_quick_fixes(report.recommendations, structure)
        assert [f.recommendation_id for f in fixes] == ["cache-test-node"]
        assert not fixes[0].requires_confirmation
