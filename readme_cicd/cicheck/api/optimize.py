"""Optimize API endpoint: apply selected recommendations."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import Field

from cicheck.api.validate import ContextInput, WorkflowInput
from cicheck.deps import get_analyzer
from cicheck.engine import WorkflowAnalyzer
from cicheck.quickfix.batch import OptimizedWorkflow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["optimize"])


class OptimizeRequest(WorkflowInput, ContextInput):
    recommendation_ids: list[str] = Field(default_factory=list)
    confirmed: list[str] = Field(
        default_factory=list,
        description="recommendation ids the user explicitly confirmed (runner changes)",
    )


@router.post("/optimize", response_model=OptimizedWorkflow)
async def optimize(
    body: OptimizeRequest,
    analyzer: WorkflowAnalyzer = Depends(get_analyzer),
) -> OptimizedWorkflow:
    """Rewrite a workflow with the selected recommendations applied."""
    if not body.recommendation_ids:
        raise HTTPException(status_code=400, detail="recommendation_ids must not be empty")
    logger.info("Optimizing %s with %d recommendation(s)", body.filename, len(body.recommendation_ids))
    return analyzer.optimize(
        body.to_document(),
        body.recommendation_ids,
        body.to_context(),
        set(body.confirmed),
    )
