"""
Output projection: named values published after a successful apply.
"""

from typing import Dict, Iterable

from .errors import OutputNotReady, UnknownResource
from .graph import ResourceGraph
from .model import DeployContext, DeploymentState, Output, ResourceStatus
from .resolver import ResolutionContext, resolve


def project(graph: ResourceGraph, outputs: Iterable[Output], state: DeploymentState,
            deploy: DeployContext = None) -> Dict[str, str]:
    """
    Resolve every declared output to a string.

    Args:
        graph: Graph the outputs were declared against
        outputs: Declared outputs
        state: Deployment state after apply
        deploy: Deploy context, for completeness of the resolution context

    Returns:
        Dict mapping output name to concrete value

    Raises:
        UnknownResource: If an output's source is not in the graph
        OutputNotReady: If a source resource has not reached Created
    """
    context = ResolutionContext(state=state, deploy=deploy or DeployContext())
    projected: Dict[str, str] = {}
    for output in outputs:
        source_id = output.source.target_id
        if source_id not in graph:
            raise UnknownResource(source_id)
        status = state.status(source_id)
        if status is not ResourceStatus.CREATED:
            raise OutputNotReady(output.name, source_id, status.value)
        projected[output.name] = str(resolve(output.source, context))
    return projected
