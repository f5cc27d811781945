"""Validation API endpoints: single workflow and batch."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from cicheck.analyzer.multi import MultiWorkflowAnalysis
from cicheck.deps import get_analyzer
from cicheck.engine import WorkflowAnalyzer
from cicheck.validator.pipeline import ValidationResult
from cicheck.workflow.models import Framework, ValidationContext, WorkflowDocument, WorkflowType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["validate"])


class WorkflowInput(BaseModel):
    content: str = Field(..., description="Workflow YAML text")
    filename: str = "workflow.yml"
    type: WorkflowType = WorkflowType.ci
    relative_path: str = ""

    def to_document(self) -> WorkflowDocument:
        return WorkflowDocument(
            filename=self.filename,
            raw_content=self.content,
            type=self.type,
            relative_path=self.relative_path,
        )


class ContextInput(BaseModel):
    detected_frameworks: list[Framework] | None = Field(
        None, description="Frameworks detected in the project README"
    )
    project_secrets: list[str] | None = Field(
        None, description="Secret names defined for the repository; omit to skip secret checks"
    )

    def to_context(self) -> ValidationContext:
        return ValidationContext(
            detected_frameworks=self.detected_frameworks,
            project_secrets=self.project_secrets,
        )


class ValidateRequest(WorkflowInput, ContextInput):
    pass


class BatchValidateRequest(ContextInput):
    workflows: list[WorkflowInput] = Field(default_factory=list)


@router.post("/validate", response_model=ValidationResult)
async def validate(
    body: ValidateRequest,
    analyzer: WorkflowAnalyzer = Depends(get_analyzer),
) -> ValidationResult:
    """Validate, score and analyze one workflow."""
    return analyzer.validate(body.to_document(), body.to_context())


@router.post("/validate/batch", response_model=MultiWorkflowAnalysis)
async def validate_batch(
    body: BatchValidateRequest,
    analyzer: WorkflowAnalyzer = Depends(get_analyzer),
) -> MultiWorkflowAnalysis:
    """Validate several workflows and report improvements they share."""
    if not body.workflows:
        raise HTTPException(status_code=400, detail="At least one workflow is required")
    logger.info("Batch validation of %d workflow(s)", len(body.workflows))
    return analyzer.analyze_many([w.to_document() for w in body.workflows], body.to_context())
