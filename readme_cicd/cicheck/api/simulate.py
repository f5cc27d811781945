"""Simulation API endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import Field

from cicheck.api.validate import WorkflowInput
from cicheck.deps import get_analyzer
from cicheck.engine import WorkflowAnalyzer
from cicheck.simulator.models import SimulationResult
from cicheck.workflow.models import SimulationOptions

router = APIRouter(prefix="/api", tags=["simulate"])


class SimulateRequest(WorkflowInput):
    available_secrets: list[str] | None = Field(
        None, description="Secrets the run would have; omit to skip the secret check"
    )


@router.post("/simulate", response_model=SimulationResult)
async def simulate(
    body: SimulateRequest,
    analyzer: WorkflowAnalyzer = Depends(get_analyzer),
) -> SimulationResult:
    """Dry-run a workflow: execution order, duration and resource estimates."""
    return analyzer.simulate(
        body.to_document(),
        SimulationOptions(available_secrets=body.available_secrets),
    )
