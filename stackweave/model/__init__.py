"""
Data model for declared infrastructure: resources, values, rules and outputs.
"""

from .values import (
    Literal, Reference, ContextRef, Interpolation,
    ref, attr, ctx, join, sensitive, iter_references, contains_sensitive,
)
from .resource import (
    ANY_CIDR, ResourceTypes, SENSITIVE_PROPERTIES, Retention, DeletionPolicy,
    SecurityRule, Resource, Output, DeployContext,
)
from .record import ResourceStatus, ResourceRecord, DeploymentState

__all__ = [
    "Literal",
    "Reference",
    "ContextRef",
    "Interpolation",
    "ref",
    "attr",
    "ctx",
    "join",
    "sensitive",
    "iter_references",
    "contains_sensitive",
    "ANY_CIDR",
    "ResourceTypes",
    "SENSITIVE_PROPERTIES",
    "Retention",
    "DeletionPolicy",
    "SecurityRule",
    "Resource",
    "Output",
    "DeployContext",
    "ResourceStatus",
    "ResourceRecord",
    "DeploymentState",
]
