"""FastAPI application -- workflow checker entrypoint."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

import cicheck.deps as deps
from cicheck.api.optimize import router as optimize_router
from cicheck.api.simulate import router as simulate_router
from cicheck.api.validate import router as validate_router
from cicheck.config import load_config
from cicheck.engine import WorkflowAnalyzer

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: load configuration on startup, release it on shutdown."""
    log_level = logging.DEBUG if os.environ.get("CICHECK_DEV_MODE") else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    config = load_config()
    logger.info(
        "Workflow checker starting: penalties=%s, %d known actions",
        config.severity_penalties,
        len(config.latest_action_versions),
    )
    deps._analyzer = WorkflowAnalyzer(config)

    yield

    deps._analyzer = None


app = FastAPI(
    title="Workflow Checker",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(validate_router)
app.include_router(simulate_router)
app.include_router(optimize_router)


@app.get("/api/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
