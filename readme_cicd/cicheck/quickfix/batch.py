"""Batch application of recommendations to a workflow document."""

from __future__ import annotations

import logging
from io import StringIO
from typing import Any, Callable

from pydantic import BaseModel, Field
from ruamel.yaml import YAML, YAMLError
from ruamel.yaml.comments import CommentedMap, CommentedSeq
from ruamel.yaml.scalarstring import LiteralScalarString

from cicheck.analyzer.models import ChangeOperation, Recommendation, YamlChange
from cicheck.config import DEFAULT_CONFIG, AnalyzerConfig
from cicheck.quickfix.classifier import requires_confirmation
from cicheck.validator.pipeline import validate_workflow
from cicheck.workflow.models import ValidationContext, WorkflowDocument

logger = logging.getLogger(__name__)


class ChangeError(Exception):
    """A recommendation's change does not fit the document."""


class FixApplicationResult(BaseModel):
    """Result of applying a single recommendation."""

    recommendation_id: str
    title: str = ""
    estimated_time_saving: int = 0
    applied: bool
    error: str = ""


class OptimizedWorkflow(BaseModel):
    """Rewritten workflow content plus before/after scores."""

    content: str
    applied: list[FixApplicationResult] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    estimated_time_saving: int = 0
    original_score: int = 0
    optimized_score: int = 0


def _to_yaml(value: Any) -> Any:
    """Convert plain values into round-trip nodes; multi-line text becomes a block scalar."""
    if isinstance(value, dict):
        node = CommentedMap()
        for k, v in value.items():
            node[k] = _to_yaml(v)
        return node
    if isinstance(value, list):
        return CommentedSeq(_to_yaml(v) for v in value)
    if isinstance(value, str) and "\n" in value:
        return LiteralScalarString(value if value.endswith("\n") else value + "\n")
    return value


def _walk(data: Any, path: list[str | int]) -> Any:
    node = data
    for segment in path:
        try:
            node = node[segment]
        except (KeyError, IndexError, TypeError) as e:
            raise ChangeError(f"Path '{'.'.join(str(p) for p in path)}' not found") from e
    return node


def resolve_change(data: Any, change: YamlChange) -> Callable[[], None]:
    """Bind a change to the nodes it touches, before any change is applied.

    Binding first keeps list indexes valid when several insertions target
    the same steps list.
    """
    if not change.path:
        raise ChangeError("Empty change path")
    value = _to_yaml(change.value)

    if change.operation == ChangeOperation.add and change.index is not None:
        target = _walk(data, change.path)
        if not isinstance(target, list):
            raise ChangeError(f"'{change.dotted}' is not a list")
        if not 0 <= change.index <= len(target):
            raise ChangeError(f"Index {change.index} out of range for '{change.dotted}'")
        anchor = target[change.index] if change.index < len(target) else None

        def insert() -> None:
            if anchor is None:
                target.append(value)
                return
            position = next(i for i, item in enumerate(target) if item is anchor)
            target.insert(position, value)

        return insert

    parent = _walk(data, change.path[:-1])
    key = change.path[-1]
    if not isinstance(parent, dict):
        raise ChangeError(f"Parent of '{change.dotted}' is not a mapping")

    if change.operation == ChangeOperation.add:

        def add() -> None:
            existing = parent.get(key)
            if isinstance(existing, dict) and isinstance(value, dict):
                existing.update(value)
            elif key in parent:
                parent[key] = value
            elif isinstance(parent, CommentedMap) and "matrix" in parent:
                # Keep scalar strategy options above the matrix block
                parent.insert(list(parent).index("matrix"), key, value)
            else:
                parent[key] = value

        return add

    if key not in parent:
        raise ChangeError(f"'{change.dotted}' not found")

    if change.operation == ChangeOperation.modify:

        def modify() -> None:
            parent[key] = value

        return modify

    def remove() -> None:
        del parent[key]

    return remove


def guess_indent(text: str) -> tuple[int, int]:
    """Mapping indent and block-sequence dash offset used by a document."""
    mapping: int | None = None
    offset: int | None = None
    parent: int | None = None
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        lead = len(line) - len(line.lstrip(" "))
        if parent is not None and lead > parent:
            if stripped.startswith("- "):
                if offset is None:
                    offset = lead - parent
            elif mapping is None:
                mapping = lead - parent
        if mapping is not None and offset is not None:
            break
        if stripped.endswith(":"):
            parent = lead + 2 if stripped.startswith("- ") else lead
        else:
            parent = None
    return mapping or 2, offset or 0


def _dump(data: Any, indent: int, dash_offset: int) -> str:
    yaml = YAML()
    yaml.preserve_quotes = True
    yaml.width = 4096
    yaml.indent(mapping=indent, sequence=dash_offset + 2, offset=dash_offset)
    buf = StringIO()
    yaml.dump(data, buf)
    return buf.getvalue()


def apply_recommendations(
    document: WorkflowDocument,
    recommendation_ids: list[str],
    context: ValidationContext | None = None,
    confirmed: set[str] | None = None,
    config: AnalyzerConfig | None = None,
) -> OptimizedWorkflow:
    """Apply the selected recommendations and re-validate the result.

    Args:
        document: Workflow to rewrite.
        recommendation_ids: Ids from a previous validation of the same content.
        context: Validation context used for both validations.
        confirmed: Ids the user explicitly confirmed for changes that need it
                   (runner changes).
        config: Analyzer configuration.
    """
    config = config or DEFAULT_CONFIG
    confirmed = confirmed or set()

    original = validate_workflow(document, context, config)
    by_id: dict[str, Recommendation] = {r.id: r for r in original.recommendations}
    warnings: list[str] = []

    selected: list[Recommendation] = []
    for rec_id in dict.fromkeys(recommendation_ids):
        rec = by_id.get(rec_id)
        if rec is None:
            warnings.append(f"Unknown recommendation id '{rec_id}'")
        else:
            selected.append(rec)

    loader = YAML()
    loader.preserve_quotes = True
    try:
        data = loader.load(document.raw_content)
    except YAMLError as e:
        warnings.append(f"Workflow could not be parsed: {e}")
        data = None
    else:
        if not isinstance(data, dict):
            warnings.append("Workflow is not a mapping; nothing was applied")
    if not isinstance(data, dict):
        return OptimizedWorkflow(
            content=document.raw_content,
            applied=[
                FixApplicationResult(recommendation_id=r.id, title=r.title, applied=False, error="Workflow could not be parsed")
                for r in selected
            ],
            warnings=warnings,
            original_score=original.overall_score,
            optimized_score=original.overall_score,
        )

    results: list[FixApplicationResult] = []
    pending: list[tuple[Recommendation, list[Callable[[], None]]]] = []
    for rec in selected:
        if requires_confirmation(rec) and rec.id not in confirmed:
            results.append(
                FixApplicationResult(
                    recommendation_id=rec.id,
                    title=rec.title,
                    applied=False,
                    error="Change not confirmed",
                )
            )
            continue
        if not rec.implementation.changes:
            results.append(
                FixApplicationResult(
                    recommendation_id=rec.id,
                    title=rec.title,
                    applied=False,
                    error="Recommendation has no automatic changes",
                )
            )
            continue
        try:
            pending.append((rec, [resolve_change(data, c) for c in rec.implementation.changes]))
        except ChangeError as e:
            logger.warning("Cannot apply %s: %s", rec.id, e)
            results.append(
                FixApplicationResult(recommendation_id=rec.id, title=rec.title, applied=False, error=str(e))
            )

    for rec, operations in pending:
        for operation in operations:
            operation()
        results.append(
            FixApplicationResult(
                recommendation_id=rec.id,
                title=rec.title,
                estimated_time_saving=rec.estimated_time_saving,
                applied=True,
            )
        )

    if not pending:
        content = document.raw_content
        optimized_score = original.overall_score
    else:
        content = _dump(data, *guess_indent(document.raw_content))
        optimized = validate_workflow(document.model_copy(update={"raw_content": content}), context, config)
        optimized_score = optimized.overall_score
        remaining = {r.id for r in optimized.recommendations}
        for rec, _ in pending:
            if rec.id in remaining:
                warnings.append(f"Recommendation '{rec.id}' is still reported after applying it")

    logger.info(
        "Applied %d of %d recommendation(s) to %s: score %d -> %d",
        len(pending),
        len(selected),
        document.filename,
        original.overall_score,
        optimized_score,
    )
    return OptimizedWorkflow(
        content=content,
        applied=results,
        warnings=warnings,
        estimated_time_saving=sum(r.estimated_time_saving for r in results if r.applied),
        original_score=original.overall_score,
        optimized_score=optimized_score,
    )
