"""
Dependency Auto-Wiring Module

Responsibility:
- Derive implicit dependencies from ${{ resources.* }} references and parents
- Add them to each resource's dependency list
- Compute the leaves-first order the provisioning engine will follow
- Detect dependency cycles

This is PURE deterministic logic.
"""

import logging

from exceptions import DependencyCycleError
from expressions import references_in
from models import DeploymentDescriptor, ResourceDeclaration

logger = logging.getLogger(__name__)


def implicit_dependencies(resource: ResourceDeclaration) -> list[str]:
    """Resource ids referenced by a resource's name, location, properties or parent."""
    found = []

    if resource.parent:
        found.append(resource.parent)

    declared_values = {"name": resource.name, "location": resource.location, "properties": resource.properties}
    for _, ref in references_in(declared_values):
        if ref.is_resource and ref.target != resource.id and ref.target not in found:
            found.append(ref.target)

    return found


def auto_wire_dependencies(descriptor: DeploymentDescriptor) -> DeploymentDescriptor:
    """
    Add every implicit dependency to the declared dependency lists.

    Explicit dependencies keep their position; implicit ones are appended.
    Returns the updated descriptor.
    """
    for resource_id, resource in descriptor.resources.items():
        for dep_id in implicit_dependencies(resource):
            if dep_id in resource.dependencies:
                continue
            if dep_id not in descriptor.resources:
                # Left for the validator to report
                continue
            resource.dependencies.append(dep_id)
            logger.debug("Auto-wired dependency %s -> %s", resource_id, dep_id)

    return descriptor


def find_cycle(descriptor: DeploymentDescriptor):
    """Return one dependency cycle as a list of ids (first id repeated last), or None."""
    visiting = []
    done = set()

    def visit(resource_id):
        if resource_id in done:
            return None
        if resource_id in visiting:
            start = visiting.index(resource_id)
            return visiting[start:] + [resource_id]

        visiting.append(resource_id)
        for dep_id in descriptor.resources[resource_id].dependencies:
            if dep_id not in descriptor.resources:
                continue
            cycle = visit(dep_id)
            if cycle:
                return cycle
        visiting.pop()
        done.add(resource_id)
        return None

    for resource_id in descriptor.resources:
        cycle = visit(resource_id)
        if cycle:
            return cycle

    return None


def deployment_order(descriptor: DeploymentDescriptor) -> list[str]:
    """
    Leaves-first topological order of resource ids.

    Ties are broken by declaration order, so the order is stable across runs.
    Raises DependencyCycleError when the graph cannot be ordered.
    """
    cycle = find_cycle(descriptor)
    if cycle:
        raise DependencyCycleError(cycle)

    declared = list(descriptor.resources.keys())
    ordered = []
    placed = set()

    while len(ordered) < len(declared):
        for resource_id in declared:
            if resource_id in placed:
                continue
            deps = [d for d in descriptor.resources[resource_id].dependencies if d in descriptor.resources]
            if all(d in placed for d in deps):
                ordered.append(resource_id)
                placed.add(resource_id)
                break

    return ordered
