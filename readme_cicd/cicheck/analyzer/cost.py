"""Step and job duration estimates shared by the analyzer and the simulator."""

from __future__ import annotations

from cicheck.config import AnalyzerConfig
from cicheck.workflow.models import JobSpec, StepSpec


def script_lines(script: str | None) -> list[str]:
    """Non-empty, non-comment lines of a run script."""
    if not script:
        return []
    lines = []
    for line in script.splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith("#"):
            lines.append(stripped)
    return lines


def match_command(line: str, table: dict[str, int] | dict[str, str]) -> str | None:
    """Return the first table key contained in ``line``."""
    for pattern in table:
        if pattern in line:
            return pattern
    return None


def run_cost(script: str | None, config: AnalyzerConfig) -> tuple[int, list[str]]:
    """Estimated seconds for a run script and the command patterns it matched."""
    total = 0
    matched: list[str] = []
    for line in script_lines(script):
        pattern = match_command(line, config.command_durations)
        if pattern is not None:
            total += config.command_durations[pattern]
            matched.append(pattern)
    if not matched:
        return config.default_run_duration, []
    return total, matched


def step_duration(step: StepSpec, config: AnalyzerConfig) -> int:
    if step.run is not None:
        return run_cost(step.run, config)[0]
    if step.uses is not None:
        uses = step.uses.lower()
        for prefix, seconds in config.action_durations.items():
            if uses.startswith(prefix):
                return seconds
        return config.default_action_duration
    return 0


def job_duration(job: JobSpec, config: AnalyzerConfig) -> int:
    """Serial duration of one job run (one matrix combination)."""
    if job.is_reusable_call:
        return config.reusable_workflow_duration
    return sum(step_duration(step, config) for step in job.steps)


def detect_ecosystem(command: str | None, config: AnalyzerConfig) -> str | None:
    """Ecosystem of the first dependency-install command in a script."""
    for line in script_lines(command):
        pattern = match_command(line, config.install_commands)
        if pattern is not None:
            return config.install_commands[pattern]
    return None
