"""
Exception hierarchy for graph definition, security posture and provisioning.
"""

from typing import Iterable, List, Optional


class StackweaveError(Exception):
    """Base class for every error raised by stackweave."""


class DefinitionError(StackweaveError):
    """Structural problem in a declared graph. Always fatal, never reaches a backend."""


class DuplicateId(DefinitionError):
    def __init__(self, resource_id: str):
        self.resource_id = resource_id
        super().__init__(f"Resource id already exists: {resource_id}")


class UnknownResource(DefinitionError):
    def __init__(self, resource_id: str):
        self.resource_id = resource_id
        super().__init__(f"Unknown resource: {resource_id}")


class UnresolvedReference(DefinitionError):
    """
    A reference could not be turned into a concrete value.

    Raised by ``validate()`` for dangling references and by the resolver when a
    target's identifier or attribute is not known yet.
    """

    def __init__(self, target_id: str, attribute: Optional[str] = None,
                 source_id: Optional[str] = None, reason: str = "not found in graph"):
        self.target_id = target_id
        self.attribute = attribute
        self.source_id = source_id
        target = f"{target_id}.{attribute}" if attribute else target_id
        prefix = f"{source_id} -> " if source_id else ""
        super().__init__(f"Unresolved reference {prefix}{target}: {reason}")


class CyclicDependency(DefinitionError):
    def __init__(self, resource_ids: Iterable[str]):
        self.resource_ids: List[str] = sorted(set(resource_ids))
        super().__init__(f"Cyclic dependency between: {', '.join(self.resource_ids)}")


class MalformedRule(DefinitionError):
    def __init__(self, resource_id: str, message: str):
        self.resource_id = resource_id
        super().__init__(f"Malformed security rule on {resource_id}: {message}")


class SecurityViolation(StackweaveError):
    """Raised when the invariant checker reports at least one Error-severity violation."""

    def __init__(self, violations):
        self.violations = list(violations)
        lines = [f"{v.rule} {v.resource_id}: {v.message}" for v in self.violations]
        super().__init__("Security violations block apply:\n" + "\n".join(lines))


class ProvisioningError(StackweaveError):
    """Error reported by a provisioning backend."""

    def __init__(self, message: str, resource_id: Optional[str] = None):
        self.resource_id = resource_id
        super().__init__(message)


class TransientProvisioningError(ProvisioningError):
    """Rate limiting or eventual-consistency lag. Retried with backoff."""


class PermanentProvisioningError(ProvisioningError):
    """Non-retryable backend failure. Marks the resource Failed."""


class NotSupported(ProvisioningError):
    """The backend cannot update this resource type in place."""


class OutputNotReady(StackweaveError):
    def __init__(self, output_name: str, resource_id: str, status: str):
        self.output_name = output_name
        self.resource_id = resource_id
        self.status = status
        super().__init__(
            f"Output {output_name} is not ready: source {resource_id} is {status}"
        )


class SecretPayloadError(StackweaveError):
    """Secret is missing or does not parse into a complete connection payload."""
