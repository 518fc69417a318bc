"""
ARM Template Renderer Module

Responsibility:
- Deterministically render a DeploymentDescriptor as an ARM deployment template
- Translate ${{ ... }} expressions into ARM template expressions
- Emit dependsOn from the (auto-wired) dependency lists
- Render an ARM parameters file holding non-secure values only

Expression mapping:
    parameters.x                  -> parameters('x')
    number(parameters.x)          -> json(parameters('x'))
    resourceGroup.location        -> resourceGroup().location
    resources.r.name              -> <name expression of r>
    resources.r.id                -> resourceId('<type>', <names>)
    resources.r.output.attr       -> catalog template, e.g. reference(resourceId(...), '<api>').attr
    "prefix-${{ ... }}"           -> format('prefix-{0}', ...)

No inference, no mutations. This is PURE rendering logic.
"""

import json
from typing import Any

from exceptions import ExpressionError
from expressions import EXPRESSION_PATTERN, split_template
from models import DeploymentDescriptor
from resource_db import get_api_version, get_output

TEMPLATE_SCHEMA = "https://schema.management.azure.com/schemas/2019-04-01/deploymentTemplate.json#"
PARAMETERS_SCHEMA = "https://schema.management.azure.com/schemas/2019-04-01/deploymentParameters.json#"
CONTENT_VERSION = "1.0.0.0"


def render_template(descriptor: DeploymentDescriptor) -> dict:
    """
    Render a validated descriptor into an ARM deployment template.

    Args:
        descriptor: Auto-wired and validated DeploymentDescriptor

    Returns:
        Template as a JSON-serializable dict
    """
    return {
        "$schema": TEMPLATE_SCHEMA,
        "contentVersion": CONTENT_VERSION,
        "metadata": {
            "description": "Flowcy one-click deployment: Cosmos DB, Log Analytics and two Container Apps."
        },
        "parameters": _render_parameters(descriptor),
        "resources": _render_resources(descriptor),
        "outputs": _render_outputs(descriptor)
    }


def render_template_json(descriptor: DeploymentDescriptor) -> str:
    return json.dumps(render_template(descriptor), indent=2) + "\n"


def render_parameters_file(descriptor: DeploymentDescriptor, values: dict) -> dict:
    """
    Render an ARM parameters document for the given values.

    Secure parameters are left out; the caller supplies them at deployment time.
    """
    parameters = {}
    for name, param in descriptor.parameters.items():
        if param.secure or values.get(name) is None:
            continue
        parameters[name] = {"value": values[name]}

    return {
        "$schema": PARAMETERS_SCHEMA,
        "contentVersion": CONTENT_VERSION,
        "parameters": parameters
    }


def _render_parameters(descriptor: DeploymentDescriptor) -> dict:
    """Render template.parameters from parameter declarations."""
    rendered = {}

    for name, param in descriptor.parameters.items():
        param_def = {"type": param.type}

        # Only emit a default when one is declared; otherwise the parameter is required
        if param.default is not None:
            param_def["defaultValue"] = to_arm_value(param.default, descriptor)

        if param.allowed_values is not None:
            param_def["allowedValues"] = list(param.allowed_values)
        if param.min_length is not None:
            param_def["minLength"] = param.min_length
        if param.max_length is not None:
            param_def["maxLength"] = param.max_length
        if param.min_value is not None:
            param_def["minValue"] = param.min_value
        if param.max_value is not None:
            param_def["maxValue"] = param.max_value

        metadata = {}
        if param.description:
            metadata["description"] = param.description
        if param.pattern:
            metadata["namingRule"] = param.pattern
        if metadata:
            param_def["metadata"] = metadata

        rendered[name] = param_def

    return rendered


def _render_resources(descriptor: DeploymentDescriptor) -> list:
    """Render template.resources in declaration order."""
    resources = []

    for resource_id, resource in descriptor.resources.items():
        resource_dict = {
            "type": resource.type,
            "apiVersion": get_api_version(resource.type),
            "name": _render_full_name(descriptor, resource_id),
        }

        if resource.location:
            resource_dict["location"] = to_arm_value(resource.location, descriptor)
        if resource.kind:
            resource_dict["kind"] = resource.kind
        if resource.tags:
            resource_dict["tags"] = to_arm_value(resource.tags, descriptor)

        resource_dict["properties"] = to_arm_value(resource.properties, descriptor)

        if resource.dependencies:
            resource_dict["dependsOn"] = [
                f"[{arm_resource_id(descriptor, dep_id)}]" for dep_id in resource.dependencies
            ]

        resources.append(resource_dict)

    return resources


def _render_outputs(descriptor: DeploymentDescriptor) -> dict:
    outputs = {}
    for name, output in descriptor.outputs.items():
        outputs[name] = {
            "type": output.type,
            "value": to_arm_value(output.value, descriptor)
        }
    return outputs


def _name_chain(descriptor: DeploymentDescriptor, resource_id: str) -> list[str]:
    """Declared names from the top-level ancestor down to the resource."""
    chain = []
    current = descriptor.resources.get(resource_id)
    while current is not None:
        chain.insert(0, current.name)
        current = descriptor.resources.get(current.parent) if current.parent else None
    return chain


def _render_full_name(descriptor: DeploymentDescriptor, resource_id: str) -> str:
    """Child resources are named 'parent/child' in ARM."""
    chain = _name_chain(descriptor, resource_id)

    if not any(EXPRESSION_PATTERN.search(name) for name in chain):
        return _escape_literal("/".join(chain))

    if len(chain) == 1:
        return f"[{to_arm_expression(chain[0], descriptor)}]"

    placeholders = "/".join(f"{{{i}}}" for i in range(len(chain)))
    operands = ", ".join(_operand(name, descriptor) for name in chain)
    return f"[format('{placeholders}', {operands})]"


def arm_resource_id(descriptor: DeploymentDescriptor, resource_id: str) -> str:
    """resourceId('<type>', <name operands>) for a declared resource."""
    resource = descriptor.resources[resource_id]
    operands = ", ".join(_operand(name, descriptor) for name in _name_chain(descriptor, resource_id))
    return f"resourceId('{resource.type}', {operands})"


def _arm_reference(ref, descriptor: DeploymentDescriptor) -> str:
    """Translate one parsed reference into an ARM expression (no brackets)."""
    if ref.is_parameter:
        expression = f"parameters('{ref.target}')"
        if ref.function == "number":
            expression = f"json({expression})"
        return expression

    if ref.source == "resourceGroup":
        return "resourceGroup().location"

    resource = descriptor.resources.get(ref.target)
    if resource is None:
        raise ExpressionError(ref.text, f"resource '{ref.target}' is not declared")

    if ref.output:
        output = get_output(resource.type, ref.attribute)
        if output is None:
            raise ExpressionError(ref.text, f"'{resource.type}' has no output '{ref.attribute}'")
        return output["expression"].format(
            resource_id=arm_resource_id(descriptor, ref.target),
            api_version=get_api_version(resource.type)
        )

    if ref.attribute == "id":
        return arm_resource_id(descriptor, ref.target)

    return _operand(resource.name, descriptor)


def to_arm_expression(text: str, descriptor: DeploymentDescriptor) -> str:
    """Translate a string containing expressions into one ARM expression (no brackets)."""
    segments = split_template(text)

    if len(segments) == 1 and segments[0][0] == "expr":
        return _arm_reference(segments[0][1], descriptor)

    format_string = []
    arguments = []
    for kind, segment in segments:
        if kind == "literal":
            format_string.append(segment.replace("'", "''").replace("{", "{{").replace("}", "}}"))
        else:
            format_string.append(f"{{{len(arguments)}}}")
            arguments.append(_arm_reference(segment, descriptor))

    return f"format('{''.join(format_string)}', {', '.join(arguments)})"


def _operand(text: str, descriptor: DeploymentDescriptor) -> str:
    """A declared string as an ARM function argument."""
    if EXPRESSION_PATTERN.search(text):
        return to_arm_expression(text, descriptor)
    return "'" + text.replace("'", "''") + "'"


def _escape_literal(text: str) -> str:
    # A literal starting with '[' would be evaluated by the engine
    return "[" + text if text.startswith("[") else text


def to_arm_value(value: Any, descriptor: DeploymentDescriptor):
    """Recursively translate a declared value into its ARM form."""
    if isinstance(value, dict):
        return {key: to_arm_value(item, descriptor) for key, item in value.items()}
    if isinstance(value, list):
        return [to_arm_value(item, descriptor) for item in value]
    if isinstance(value, str):
        if EXPRESSION_PATTERN.search(value):
            return f"[{to_arm_expression(value, descriptor)}]"
        return _escape_literal(value)
    return value
