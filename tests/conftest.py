"""Shared test fixtures and configuration."""

import os
import sys
from pathlib import Path

# Add readme_cicd/ to Python path so `from cicheck.xxx` imports work
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "readme_cicd"))

import pytest

from cicheck.workflow.models import WorkflowDocument

os.environ["CICHECK_DEV_MODE"] = "true"

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES_DIR


@pytest.fixture
def load_workflow(fixtures_dir: Path):
    """Return a loader for workflow fixtures as WorkflowDocuments."""

    def _load(name: str) -> WorkflowDocument:
        path = fixtures_dir / "workflows" / name
        return WorkflowDocument(filename=name, raw_content=path.read_text())

    return _load
