"""
Reference resolution against the engine's live deployment state.

Two tiers:
    - structural references (a target's identifier) resolve as soon as the
      backend has accepted the create call and assigned an id;
    - runtime-attribute references (DNS names, endpoints, generated ARNs)
      resolve only once the target is ready.
"""

from dataclasses import dataclass
from typing import Any, Dict

from .errors import UnresolvedReference
from .redact import REDACTED
from .model import (
    ContextRef, DeployContext, DeploymentState, Interpolation, Literal,
    Reference, Resource, ResourceStatus,
)


@dataclass
class ResolutionContext:
    state: DeploymentState
    deploy: DeployContext


def resolve(value: Any, context: ResolutionContext, redact: bool = False) -> Any:
    """
    Turn a property value into a concrete value.

    Args:
        value: Literal, Reference, Interpolation, ContextRef or plain Python value
        context: Deployment state and deploy context to resolve against
        redact: Replace sensitive literals (and interpolations containing
            them) with a placeholder, producing the log-visible image

    Returns:
        Concrete JSON-compatible value

    Raises:
        UnresolvedReference: If a target has no id yet, or is not ready for a
            runtime-attribute reference
    """
    if isinstance(value, Literal):
        if value.sensitive and redact:
            return REDACTED
        return resolve(value.value, context, redact)
    if isinstance(value, Reference):
        return _resolve_reference(value, context)
    if isinstance(value, ContextRef):
        return context.deploy.lookup(value.name)
    if isinstance(value, Interpolation):
        parts = [resolve(part, context, redact) for part in value.parts]
        if redact and REDACTED in parts:
            return REDACTED
        return "".join(str(part) for part in parts)
    if isinstance(value, dict):
        return {key: resolve(item, context, redact) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve(item, context, redact) for item in value]
    return value


def resolve_properties(resource: Resource, context: ResolutionContext, redact: bool = False) -> Dict[str, Any]:
    """Resolve a resource's full desired property bag."""
    return resolve(resource.desired_properties(), context, redact)


def _resolve_reference(reference: Reference, context: ResolutionContext) -> Any:
    record = context.state.get(reference.target_id)
    if record is None or record.physical_id is None:
        raise UnresolvedReference(reference.target_id, reference.attribute,
                                  reason="no identifier assigned yet")
    if reference.structural:
        return record.physical_id
    if record.status is not ResourceStatus.CREATED:
        raise UnresolvedReference(reference.target_id, reference.attribute,
                                  reason=f"target is {record.status.value}, not ready")
    if reference.attribute not in record.attributes:
        raise UnresolvedReference(reference.target_id, reference.attribute,
                                  reason="attribute unknown to the backend")
    return record.attributes[reference.attribute]
