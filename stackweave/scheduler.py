"""
Dependency scheduler: layered topological ordering of a resource graph.
"""

from typing import Any, Dict, List

from .errors import CyclicDependency
from .graph import ResourceGraph

Stage = List[str]


def plan(graph: ResourceGraph) -> List[Stage]:
    """
    Compute creation stages with Kahn's algorithm.

    Every resource in a stage depends only on resources in earlier stages, so
    a stage can be provisioned concurrently. Ids inside a stage are sorted so
    the same graph always yields the same plan.

    Args:
        graph: Resource graph to order

    Returns:
        List of stages, each a sorted list of resource ids

    Raises:
        CyclicDependency: If no valid order exists; names the ids left unscheduled
    """
    remaining: Dict[str, int] = {}
    dependents: Dict[str, List[str]] = {rid: [] for rid in graph.ids}
    for rid in graph.ids:
        deps = graph.dependencies(rid)
        remaining[rid] = len(deps)
        for dep in deps:
            dependents[dep].append(rid)

    stages: List[Stage] = []
    ready = sorted(rid for rid, count in remaining.items() if count == 0)
    scheduled = 0
    while ready:
        stages.append(ready)
        scheduled += len(ready)
        next_ready = []
        for rid in ready:
            for child in dependents[rid]:
                remaining[child] -= 1
                if remaining[child] == 0:
                    next_ready.append(child)
        ready = sorted(next_ready)

    if scheduled != len(remaining):
        raise CyclicDependency(rid for rid, count in remaining.items() if count > 0)
    return stages


def teardown(graph: ResourceGraph) -> List[Stage]:
    """Deletion stages: the exact reverse of the creation stages."""
    return list(reversed(plan(graph)))


def stage_index(stages: List[Stage]) -> Dict[str, int]:
    return {rid: index for index, stage in enumerate(stages) for rid in stage}


def render_plan(graph: ResourceGraph, stages: List[Stage]) -> List[Dict[str, Any]]:
    """JSON-friendly description of a plan, used by synth."""
    rendered = []
    for index, stage in enumerate(stages, start=1):
        rendered.append({
            "stage": index,
            "resources": [
                {
                    "id": rid,
                    "type": graph.get(rid).type,
                    "depends_on": sorted(graph.dependencies(rid)),
                }
                for rid in stage
            ],
        })
    return rendered
