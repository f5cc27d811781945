"""Job dependency graph built from ``needs``."""

from __future__ import annotations

import heapq

from cicheck.workflow.models import JobSpec


class CircularDependencyError(ValueError):
    """Raised when the ``needs`` graph contains a cycle."""

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__(f"Circular dependency detected: {' -> '.join(cycle)}")


def dependency_graph(jobs: dict[str, JobSpec]) -> dict[str, list[str]]:
    """Map each job to the known jobs it needs. Unknown ids are dropped."""
    return {
        job_id: [dep for dep in dict.fromkeys(job.needs) if dep in jobs]
        for job_id, job in jobs.items()
    }


def unknown_dependencies(jobs: dict[str, JobSpec]) -> list[tuple[str, str]]:
    """Return ``(job, missing_dependency)`` pairs in declaration order."""
    return [
        (job_id, dep)
        for job_id, job in jobs.items()
        for dep in job.needs
        if dep not in jobs
    ]


def find_cycle(graph: dict[str, list[str]]) -> list[str] | None:
    """Return one dependency cycle as a closed path, or None.

    Iterative DFS visiting jobs in declaration order, so the reported cycle
    is deterministic.
    """
    white, grey, black = 0, 1, 2
    colour = {node: white for node in graph}

    for root in graph:
        if colour[root] != white:
            continue
        path: list[str] = [root]
        stack = [iter(graph[root])]
        colour[root] = grey
        while stack:
            child = next(stack[-1], None)
            if child is None:
                colour[path.pop()] = black
                stack.pop()
                continue
            if colour[child] == grey:
                start = path.index(child)
                return path[start:] + [child]
            if colour[child] == white:
                colour[child] = grey
                path.append(child)
                stack.append(iter(graph[child]))
    return None


def topological_order(graph: dict[str, list[str]]) -> list[str]:
    """Kahn's algorithm; ready jobs are scheduled in declaration order.

    Raises:
        CircularDependencyError if the graph has a cycle.
    """
    position = {job_id: i for i, job_id in enumerate(graph)}
    in_degree = {job_id: len(deps) for job_id, deps in graph.items()}
    dependents: dict[str, list[str]] = {job_id: [] for job_id in graph}
    for job_id, deps in graph.items():
        for dep in deps:
            dependents[dep].append(job_id)

    ready = [(position[j], j) for j, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)
    order: list[str] = []

    while ready:
        _, current = heapq.heappop(ready)
        order.append(current)
        for dependent in dependents[current]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(ready, (position[dependent], dependent))

    if len(order) != len(graph):
        cycle = find_cycle(graph) or [j for j in graph if j not in order]
        raise CircularDependencyError(cycle)

    return order


def ancestors(graph: dict[str, list[str]], job_id: str) -> set[str]:
    """All jobs ``job_id`` transitively needs."""
    seen: set[str] = set()
    pending = list(graph.get(job_id, []))
    while pending:
        dep = pending.pop()
        if dep in seen:
            continue
        seen.add(dep)
        pending.extend(graph.get(dep, []))
    return seen
