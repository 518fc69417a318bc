"""
YAML Renderer Module

Responsibility:
- Deterministically render a resolved DeploymentPlan as a YAML preview
- Keep the engine's apply order and the declared property order
- Keep masked secrets and deferred outputs exactly as resolved

This is PURE rendering logic.
"""

import yaml
from models import DeploymentPlan


def plan_to_dict(plan: DeploymentPlan) -> dict:
    """Plain-dict form of a plan, shared by the YAML preview and the HTTP API."""
    return {
        "deployment": {
            "resourceGroup": plan.resource_group,
            "parameters": dict(plan.parameters),
            "resources": [_render_resource(index, resource) for index, resource in enumerate(plan.resources, start=1)],
            "outputs": dict(plan.outputs)
        }
    }


def render_plan_yaml(plan: DeploymentPlan) -> str:
    """
    Render a deployment plan into a YAML preview.

    Args:
        plan: DeploymentPlan produced by the deployment engine

    Returns:
        YAML string representation of the plan
    """
    return yaml.dump(plan_to_dict(plan), sort_keys=False, default_flow_style=False, allow_unicode=True)


def _render_resource(step: int, resource) -> dict:
    """Render one planned resource."""
    resource_dict = {
        "step": step,
        "id": resource.id,
        "type": resource.type,
        "apiVersion": resource.api_version,
        "name": resource.name,
        "resourceId": resource.resource_id,
    }

    if resource.location:
        resource_dict["location"] = resource.location
    if resource.kind:
        resource_dict["kind"] = resource.kind
    if resource.tags:
        resource_dict["tags"] = dict(resource.tags)

    resource_dict["properties"] = resource.properties

    if resource.depends_on:
        resource_dict["dependsOn"] = list(resource.depends_on)

    return resource_dict
