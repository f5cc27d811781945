"""Analyzer configuration: the fixed lookup tables behind every pass.

Defaults carry hand-picked values; only their relative ordering is meant to
be meaningful. Overrides come from a JSON options file, loaded once.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_OPTIONS_PATH = "/data/options.json"


class CacheStrategy(BaseModel):
    model_config = ConfigDict(frozen=True)

    cache_type: str = "dependencies"
    paths: list[str]
    key: str
    setup_action: str | None = None
    estimated_saving: int


class AnalyzerConfig(BaseModel):
    """Read-only tables consulted by the validators and the simulator."""

    model_config = ConfigDict(frozen=True)

    # Score penalties per finding severity
    severity_penalties: dict[str, int] = Field(
        default_factory=lambda: {"error": 15, "warning": 5, "info": 1}
    )
    # Security sub-score penalties per vulnerability impact
    impact_penalties: dict[str, int] = Field(
        default_factory=lambda: {"high": 25, "medium": 15, "low": 5}
    )

    # Command substring -> ecosystem. First match wins.
    install_commands: dict[str, str] = Field(
        default_factory=lambda: {
            "npm install": "node",
            "npm ci": "node",
            "yarn install": "node",
            "pnpm install": "node",
            "pip install": "python",
            "poetry install": "python",
            "mvn": "java",
            "gradle": "java",
            "go mod download": "go",
            "docker build": "docker",
        }
    )

    cache_strategies: dict[str, CacheStrategy] = Field(
        default_factory=lambda: {
            "node": CacheStrategy(
                paths=["~/.npm"],
                key="${{ runner.os }}-node-${{ hashFiles('**/package-lock.json') }}",
                setup_action="actions/setup-node",
                estimated_saving=60,
            ),
            "python": CacheStrategy(
                paths=["~/.cache/pip"],
                key="${{ runner.os }}-pip-${{ hashFiles('**/requirements*.txt') }}",
                setup_action="actions/setup-python",
                estimated_saving=45,
            ),
            "java": CacheStrategy(
                paths=["~/.m2/repository", "~/.gradle/caches"],
                key="${{ runner.os }}-java-${{ hashFiles('**/pom.xml', '**/*.gradle*') }}",
                setup_action="actions/setup-java",
                estimated_saving=120,
            ),
            "go": CacheStrategy(
                paths=["~/go/pkg/mod"],
                key="${{ runner.os }}-go-${{ hashFiles('**/go.sum') }}",
                setup_action="actions/setup-go",
                estimated_saving=45,
            ),
            "docker": CacheStrategy(
                cache_type="docker-layers",
                paths=["/tmp/.buildx-cache"],
                key="${{ runner.os }}-buildx-${{ hashFiles('**/Dockerfile') }}",
                estimated_saving=90,
            ),
        }
    )

    # Command substring -> estimated seconds, matched per script line with
    # the first match winning. Also the simulator's cost model for run steps.
    command_durations: dict[str, int] = Field(
        default_factory=lambda: {
            "docker build": 360,
            "docker compose build": 300,
            "docker-compose build": 300,
            "mvn install": 300,
            "mvn verify": 300,
            "mvn package": 240,
            "gradle build": 300,
            "cargo build": 240,
            "npm install": 120,
            "yarn install": 120,
            "pip install": 90,
            "npm ci": 90,
            "npm test": 240,
            "yarn test": 240,
            "npm run build": 180,
            "yarn build": 180,
            "pytest": 180,
            "go test": 150,
            "go build": 120,
            "deploy": 120,
            "publish": 120,
        }
    )
    default_run_duration: int = 30
    slow_step_warning_seconds: int = 300

    # Action prefix -> estimated seconds for ``uses`` steps. First match wins.
    action_durations: dict[str, int] = Field(
        default_factory=lambda: {
            "actions/checkout": 10,
            "actions/cache": 15,
            "actions/upload-artifact": 20,
            "actions/download-artifact": 15,
            "docker/build-push-action": 360,
            "actions/setup-": 30,
        }
    )
    default_action_duration: int = 20
    reusable_workflow_duration: int = 300
    # GitHub's job timeout when timeout-minutes is not set
    default_timeout_minutes: int = 360

    # Simulated resource model: commands that need extra cpu/memory, and
    # storage in MB per operation (action prefix or "docker")
    heavy_commands: list[str] = Field(
        default_factory=lambda: [
            "docker",
            "mvn",
            "gradle",
            "cargo build",
            "go build",
            "npm run build",
            "yarn build",
            "make",
            "cmake",
            "gcc",
            "javac",
            "tsc",
        ]
    )
    cpu_per_step: float = 0.5
    cpu_per_heavy_step: float = 1.5
    memory_per_step: int = 256
    memory_per_heavy_step: int = 1024
    storage_costs: dict[str, int] = Field(
        default_factory=lambda: {
            "actions/checkout": 100,
            "actions/upload-artifact": 200,
            "actions/download-artifact": 200,
            "actions/cache": 150,
            "docker": 500,
        }
    )

    # Well-known actions and their latest major tag
    latest_action_versions: dict[str, str] = Field(
        default_factory=lambda: {
            "actions/checkout": "v4",
            "actions/cache": "v4",
            "actions/setup-node": "v4",
            "actions/setup-python": "v5",
            "actions/setup-java": "v4",
            "actions/setup-go": "v5",
            "actions/upload-artifact": "v4",
            "actions/download-artifact": "v4",
            "docker/build-push-action": "v6",
            "docker/setup-buildx-action": "v3",
            "docker/login-action": "v3",
        }
    )
    trusted_action_owners: list[str] = Field(
        default_factory=lambda: ["actions", "github", "docker"]
    )

    sensitive_permission_scopes: list[str] = Field(
        default_factory=lambda: [
            "actions",
            "contents",
            "deployments",
            "packages",
            "security-events",
        ]
    )

    matrix_combination_threshold: int = 20
    dependency_wait_threshold: int = 3

    # Ecosystem -> (matrix axis, default versions)
    matrix_axes: dict[str, tuple[str, list[str]]] = Field(
        default_factory=lambda: {
            "node": ("node-version", ["18", "20", "22"]),
            "python": ("python-version", ["3.10", "3.11", "3.12"]),
            "java": ("java-version", ["17", "21"]),
            "go": ("go-version", ["1.21", "1.22"]),
        }
    )

    # Seconds saved by moving a job off a non-Linux runner
    runner_savings: dict[str, int] = Field(
        default_factory=lambda: {"macos": 60, "windows": 30}
    )

    improvement_confidence: dict[str, float] = Field(
        default_factory=lambda: {
            "caching": 0.8,
            "parallelization": 0.7,
            "resource": 0.6,
        }
    )


DEFAULT_CONFIG = AnalyzerConfig()


def load_config(path: str | None = None) -> AnalyzerConfig:
    """Load analyzer options from a JSON file, falling back to defaults.

    The path defaults to ``CICHECK_OPTIONS_PATH`` or /data/options.json.
    Only the keys present in the file override defaults.
    """
    opts_path = Path(path or os.environ.get("CICHECK_OPTIONS_PATH", DEFAULT_OPTIONS_PATH))
    if not opts_path.exists():
        return DEFAULT_CONFIG

    try:
        options = json.loads(opts_path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Could not read analyzer options from %s: %s", opts_path, e)
        return DEFAULT_CONFIG

    if not isinstance(options, dict):
        logger.warning("Analyzer options in %s must be a JSON object", opts_path)
        return DEFAULT_CONFIG

    try:
        config = AnalyzerConfig.model_validate(options)
    except ValidationError as e:
        logger.warning("Invalid analyzer options in %s: %s", opts_path, e)
        return DEFAULT_CONFIG

    logger.info("Loaded analyzer options from %s", opts_path)
    return config
