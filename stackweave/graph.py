"""
Resource graph: the declared resources and the dependency edges among them.

Edges are derived from every Reference inside a resource's properties and
security rules, plus the explicit ordering dependencies declared on it. The
graph does no I/O and is never mutated by the engine.
"""

from typing import Dict, Iterator, List, Set, Tuple

from .errors import (
    CyclicDependency, DefinitionError, DuplicateId, MalformedRule,
    UnknownResource, UnresolvedReference,
)
from .model import Resource, ResourceTypes, SecurityRule


class ResourceGraph:
    """Set of resources keyed by id, with inferred and explicit dependencies."""

    def __init__(self):
        self._resources: Dict[str, Resource] = {}

    def add_resource(self, resource: Resource) -> str:
        """
        Add a resource to the graph.

        Args:
            resource: Resource to add

        Returns:
            str: The resource id

        Raises:
            DuplicateId: If a resource with the same id already exists
        """
        if resource.id in self._resources:
            raise DuplicateId(resource.id)
        self._resources[resource.id] = resource
        return resource.id

    def add_explicit_dependency(self, from_id: str, to_id: str) -> None:
        """
        Declare that ``from_id`` must be created after ``to_id``.

        Raises:
            UnknownResource: If either id is absent
        """
        for resource_id in (from_id, to_id):
            if resource_id not in self._resources:
                raise UnknownResource(resource_id)
        self._resources[from_id].explicit_dependencies.add(to_id)

    def get(self, resource_id: str) -> Resource:
        try:
            return self._resources[resource_id]
        except KeyError:
            raise UnknownResource(resource_id) from None

    def __contains__(self, resource_id: str) -> bool:
        return resource_id in self._resources

    def __iter__(self) -> Iterator[Resource]:
        return iter(self._resources.values())

    def __len__(self) -> int:
        return len(self._resources)

    @property
    def ids(self) -> List[str]:
        return sorted(self._resources)

    def dependencies(self, resource_id: str) -> Set[str]:
        """Ids the given resource depends on, restricted to ids present in the graph."""
        resource = self.get(resource_id)
        deps = {r.target_id for r in resource.references()}
        deps |= set(resource.explicit_dependencies)
        return {d for d in deps if d in self._resources}

    def dependents(self, resource_id: str) -> Set[str]:
        self.get(resource_id)
        return {r.id for r in self if resource_id in self.dependencies(r.id)}

    def edges(self) -> List[Tuple[str, str]]:
        """(dependency, dependent) pairs, sorted."""
        pairs = []
        for resource_id in self.ids:
            for dep in self.dependencies(resource_id):
                pairs.append((dep, resource_id))
        return sorted(pairs)

    def validate(self) -> List[DefinitionError]:
        """
        Collect structural errors without raising.

        Returns:
            List of dangling references, unknown explicit dependencies,
            malformed security rules and cycles. Empty when the graph is valid.
        """
        errors: List[DefinitionError] = []
        for resource in self:
            for reference in resource.references():
                if reference.target_id not in self._resources:
                    errors.append(UnresolvedReference(
                        reference.target_id, reference.attribute, source_id=resource.id
                    ))
            for dep in sorted(resource.explicit_dependencies):
                if dep not in self._resources:
                    errors.append(UnknownResource(dep))
            errors.extend(self._rule_errors(resource))
        errors.extend(self._find_cycles())
        return errors

    def _rule_errors(self, resource: Resource) -> List[MalformedRule]:
        errors = []
        if resource.rules and resource.type != ResourceTypes.SECURITY_GROUP:
            errors.append(MalformedRule(resource.id, f"rules attached to a {resource.type}"))
        for rule in resource.rules:
            message = _check_rule(rule)
            if message is None and rule.source_group is not None:
                peer = self._resources.get(rule.source_group.target_id)
                if peer is not None and peer.type != ResourceTypes.SECURITY_GROUP:
                    message = f"peer {peer.id} is a {peer.type}, not a security group"
            if message:
                errors.append(MalformedRule(resource.id, message))
        return errors

    def _find_cycles(self) -> List[CyclicDependency]:
        """Depth-first traversal with a recursion stack; one error per distinct cycle."""
        visited: Set[str] = set()
        on_stack: Set[str] = set()
        stack: List[str] = []
        seen_cycles: Set[frozenset] = set()
        cycles: List[CyclicDependency] = []

        def visit(node: str) -> None:
            visited.add(node)
            on_stack.add(node)
            stack.append(node)
            for dep in sorted(self.dependencies(node)):
                if dep in on_stack:
                    members = frozenset(stack[stack.index(dep):])
                    if members not in seen_cycles:
                        seen_cycles.add(members)
                        cycles.append(CyclicDependency(members))
                elif dep not in visited:
                    visit(dep)
            stack.pop()
            on_stack.discard(node)

        for resource_id in self.ids:
            if resource_id not in visited:
                visit(resource_id)
        return cycles


def _check_rule(rule: SecurityRule):
    if rule.direction not in ("ingress", "egress"):
        return f"unknown direction {rule.direction!r}"
    if rule.cidr is None and rule.source_group is None:
        return f"{rule.direction} rule has neither a CIDR nor a peer security group"
    if rule.cidr is not None and rule.source_group is not None:
        return f"{rule.direction} rule has both a CIDR and a peer security group"
    if (rule.from_port is None) != (rule.to_port is None):
        return "port range is half open"
    if rule.from_port is not None and rule.from_port > rule.to_port:
        return f"port range {rule.from_port}-{rule.to_port} is inverted"
    return None
