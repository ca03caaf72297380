"""
Main orchestrator for deployment lifecycle management.

Wires the declared topology through validation, the invariant checker, the
scheduler and the reconciliation engine, persisting state and NDJSON events
under the deployment directory.
"""

import logging
import threading
from typing import Any, Dict, List, Optional

from .backend import ProvisioningBackend, get_backend
from .checker import ensure_deployable
from .config import EngineConfig
from .engine import Action, ApplyStatus, ReconciliationEngine
from .errors import DefinitionError, SecurityViolation, StackweaveError
from .events import EventTypes, emit_event, get_status_from_events, read_events
from .graph import ResourceGraph
from .ids import new_deployment_id
from .model import DeployContext, ResourceStatus
from .scheduler import plan, render_plan
from .state import (
    create_deployment_dir, deployment_exists, read_context_json, read_outputs_json,
    read_state, write_context_json, write_outputs_json, write_state,
)
from .topology import Topology, build_topology

logger = logging.getLogger(__name__)


def prepare(topology: Topology) -> Dict[str, Any]:
    """
    Validate a topology and check its security posture.

    Args:
        topology: Declared graph and outputs

    Returns:
        Dict with ``stages`` and ``warnings``

    Raises:
        DefinitionError: First structural problem found by validate()
        SecurityViolation: If any Error-severity violation exists
    """
    errors = topology.graph.validate()
    if errors:
        for error in errors[1:]:
            logger.error(str(error))
        raise errors[0]
    warnings = ensure_deployable(topology.graph)
    stages = plan(topology.graph)
    return {"stages": stages, "warnings": warnings}


def synth(environment: str = "Production", region: str = "us-east-1",
          account: str = "000000000000") -> Dict[str, Any]:
    """
    Validate, check and plan without touching a backend.

    Returns:
        Dict with ``valid``, the rendered ``plan``, ``warnings`` and, when
        invalid, ``errors`` or ``violations``
    """
    context = DeployContext(environment=environment, region=region, account=account)
    topology = build_topology(context)
    try:
        prepared = prepare(topology)
    except SecurityViolation as e:
        return {"valid": False, "violations": [v.to_dict() for v in e.violations]}
    except DefinitionError:
        return {"valid": False, "errors": [str(e) for e in topology.graph.validate()]}

    return {
        "valid": True,
        "resources": len(topology.graph),
        "plan": render_plan(topology.graph, prepared["stages"]),
        "warnings": [w.to_dict() for w in prepared["warnings"]],
        "outputs": [o.name for o in topology.outputs],
    }


def deploy(db_password: str, environment: str = "Production", region: str = "us-east-1",
           account: str = "000000000000", backend: str = "memory",
           deployment_id: Optional[str] = None, config: Optional[EngineConfig] = None,
           user_tags: Optional[Dict[str, str]] = None,
           backend_instance: Optional[ProvisioningBackend] = None,
           cancel_event: Optional[threading.Event] = None) -> Dict[str, Any]:
    """
    Deploy the stack, or reconcile an existing deployment.

    Args:
        db_password: Database admin password; never persisted
        environment: Deploy environment, e.g. Production
        region: AWS region
        account: AWS account id used in ARNs and image URIs
        backend: Backend name, ``memory`` or ``aws``
        deployment_id: Existing deployment to reconcile (generated if not provided)
        config: Engine configuration
        user_tags: Optional user-provided tags
        backend_instance: Pre-built backend, overrides ``backend``
        cancel_event: Set it to cancel the apply

    Returns:
        Deployment result dictionary

    Raises:
        DefinitionError: If the declared graph is structurally invalid
        SecurityViolation: If the security posture check blocks the apply
    """
    if not db_password:
        raise ValueError("A database password is required to deploy")
    if deployment_id is None:
        deployment_id = new_deployment_id()

    context = DeployContext(environment=environment, region=region, account=account, db_password=db_password)
    topology = build_topology(context, deployment_id, user_tags)

    create_deployment_dir(deployment_id)
    write_context_json(deployment_id, context, backend)
    emit_event(deployment_id, EventTypes.INIT, {
        "deployment_id": deployment_id,
        "environment": environment,
        "region": region,
        "backend": backend,
    })

    try:
        prepared = prepare(topology)
    except StackweaveError as e:
        emit_event(deployment_id, EventTypes.ERROR, {"reason": str(e), "hint": "Fix the declared stack and retry"})
        raise

    for warning in prepared["warnings"]:
        emit_event(deployment_id, EventTypes.SECURITY_WARNING, warning.to_dict())
    emit_event(deployment_id, EventTypes.SYNTH, {"resources": len(topology.graph)})
    emit_event(deployment_id, EventTypes.PLAN, {"stages": prepared["stages"]})

    state = read_state(deployment_id)
    engine = ReconciliationEngine(
        backend_instance or get_backend(backend, region=region),
        config=config or EngineConfig.from_env(),
        state=state,
        deploy=context,
        on_event=lambda event_type, data: emit_event(deployment_id, event_type, data),
        cancel_event=cancel_event,
    )
    try:
        result = engine.apply(topology.graph, prepared["stages"], topology.outputs)
    finally:
        write_state(deployment_id, state)

    if result.status is ApplyStatus.SUCCEEDED:
        write_outputs_json(deployment_id, result.outputs)
        emit_event(deployment_id, EventTypes.DONE, {
            "created": len(result.ids_with(Action.CREATED)),
            "updated": len(result.ids_with(Action.UPDATED)),
            "unchanged": len(result.ids_with(Action.UNCHANGED)),
        })
        status_value = "deployed"
    elif result.status is ApplyStatus.FAILED:
        emit_event(deployment_id, EventTypes.ERROR, {
            "reason": result.cause,
            "resource_id": result.failed_resource_id,
            "resource_type": result.failed_resource_type,
            "rolled_back": result.rolled_back,
        })
        status_value = "failed"
    else:
        status_value = "cancelled"

    return {
        "deployment_id": deployment_id,
        "status": status_value,
        "result": result.to_dict(),
        "warnings": [w.to_dict() for w in prepared["warnings"]],
    }


def destroy(deployment_id: str, backend_instance: Optional[ProvisioningBackend] = None,
            config: Optional[EngineConfig] = None) -> Dict[str, Any]:
    """
    Destroy a deployment.

    Args:
        deployment_id: Deployment ID
        backend_instance: Pre-built backend; defaults to the one recorded at deploy time
        config: Engine configuration

    Returns:
        Destroy result dictionary
    """
    if not deployment_exists(deployment_id):
        return {"deployment_id": deployment_id, "status": "not_found"}

    context_data = read_context_json(deployment_id)
    context = DeployContext(
        environment=context_data.get("environment", "Production"),
        region=context_data.get("region", "us-east-1"),
        account=context_data.get("account", "000000000000"),
    )
    graph: ResourceGraph = build_topology(context, deployment_id).graph
    state = read_state(deployment_id)
    engine = ReconciliationEngine(
        backend_instance or get_backend(context_data.get("backend", "memory"), region=context.region),
        config=config or EngineConfig.from_env(),
        state=state,
        deploy=context,
        on_event=lambda event_type, data: emit_event(deployment_id, event_type, data),
    )
    try:
        result = engine.destroy(graph)
    finally:
        write_state(deployment_id, state)

    if result.status is ApplyStatus.SUCCEEDED:
        write_outputs_json(deployment_id, {})
        return {"deployment_id": deployment_id, "status": "destroyed", "result": result.to_dict()}

    emit_event(deployment_id, EventTypes.ERROR, {
        "reason": f"Destroy failed: {result.cause}",
        "resource_id": result.failed_resource_id,
    })
    return {"deployment_id": deployment_id, "status": "destroy_failed", "result": result.to_dict()}


def status(deployment_id: str) -> Dict[str, Any]:
    """
    Get deployment status with a per-status resource count.

    Args:
        deployment_id: Deployment ID

    Returns:
        Status dictionary
    """
    if not deployment_exists(deployment_id):
        return {"deployment_id": deployment_id, "status": "not_found"}

    state = read_state(deployment_id)
    counts: Dict[str, int] = {}
    failed: List[Dict[str, Any]] = []
    for record in state:
        counts[record.status.value] = counts.get(record.status.value, 0) + 1
        if record.status is ResourceStatus.FAILED:
            failed.append({"resource_id": record.resource_id, "type": record.type, "error": record.error})

    result = {
        "deployment_id": deployment_id,
        "status": get_status_from_events(deployment_id),
        "context": read_context_json(deployment_id),
        "resources": counts,
    }
    if failed:
        result["failed"] = failed
    return result


def outputs(deployment_id: str) -> Optional[Dict[str, str]]:
    """
    Get deployment outputs.

    Returns:
        Outputs dictionary or None if not found
    """
    if not deployment_exists(deployment_id):
        return None
    return read_outputs_json(deployment_id)


def logs(deployment_id: str) -> List[Dict[str, Any]]:
    if not deployment_exists(deployment_id):
        return []
    return read_events(deployment_id)
