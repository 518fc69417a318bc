"""
Validation Engine Module

Responsibility:
- Coerce and validate deployment parameter values before anything is planned
- Enforce resource contracts (required properties, location, parent)
- Parse and validate ${{ ... }} expressions (declared parameters, resources, outputs)
- Enforce declared dependencies for every cross-resource reference
- Enforce secret plumbing: secure values only behind secret references
- Return list of ValidationFailure objects for any validation failures

This is PURE deterministic validation logic.
"""

import re
from typing import List, Optional

from contracts import get_resource_contract, is_secret_path
from dependency_resolver import find_cycle
from descriptor import CONTAINER_SIZE_PARAMETERS
from exceptions import ExpressionError
from expressions import (
    ResolutionContext,
    build_context,
    find_expressions,
    get_nested_value,
    is_whole_expression,
    parse_expression,
    resolve_value,
    walk_strings,
)
from models import DeploymentDescriptor, ValidationFailure
from resource_db import RESOURCE_TYPES, check_resource_name, get_output, get_resource_type, memory_for_cpu

PARAMETER_TYPES = ("string", "securestring", "int", "bool")
INTEGER_PATTERN = re.compile(r'^-?\d+$')
TRUE_VALUES = ("true", "yes", "1")
FALSE_VALUES = ("false", "no", "0")


# ============================================================================
# PARAMETERS
# ============================================================================

def coerce_parameter_values(descriptor: DeploymentDescriptor, raw: dict):
    """
    Convert raw values (usually CLI strings) to the declared parameter types.

    Returns (values, failures). Unknown names pass through untouched so that
    validate_parameters can report them.
    """
    values = {}
    failures = []

    for name, value in raw.items():
        param = descriptor.parameters.get(name)
        if param is None or value is None:
            values[name] = value
            continue

        if param.type == "int" and isinstance(value, str):
            if INTEGER_PATTERN.match(value.strip()):
                value = int(value.strip())
            else:
                failures.append(ValidationFailure(
                    subject=name,
                    path=f"parameters.{name}",
                    reason=f"Expected an integer for '{name}'"
                ))
                continue

        elif param.type == "bool" and isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in TRUE_VALUES:
                value = True
            elif lowered in FALSE_VALUES:
                value = False
            else:
                failures.append(ValidationFailure(
                    subject=name,
                    path=f"parameters.{name}",
                    reason=f"Expected a boolean for '{name}'",
                    options=["true", "false"]
                ))
                continue

        values[name] = value

    return values, failures


def _check_type(name: str, param, value) -> List[ValidationFailure]:
    expected = {
        "string": str,
        "securestring": str,
        "int": int,
        "bool": bool,
    }[param.type]

    # bool is a subclass of int
    wrong = not isinstance(value, expected) or (param.type == "int" and isinstance(value, bool))
    if wrong:
        return [ValidationFailure(
            subject=name,
            path=f"parameters.{name}",
            reason=f"Parameter '{name}' must be of type {param.type}"
        )]
    return []


def _check_constraints(name: str, param, value) -> List[ValidationFailure]:
    """Length, numeric bounds, allowed values and charset."""
    missing = []
    path = f"parameters.{name}"
    # Secure values never appear in reasons
    shown = "value" if param.secure else f"'{value}'"

    if isinstance(value, str):
        if param.min_length is not None and len(value) < param.min_length:
            missing.append(ValidationFailure(
                subject=name,
                path=path,
                reason=f"Parameter '{name}' must be at least {param.min_length} character(s) long"
            ))
        if param.max_length is not None and len(value) > param.max_length:
            missing.append(ValidationFailure(
                subject=name,
                path=path,
                reason=f"Parameter '{name}' must be at most {param.max_length} character(s) long"
            ))
        if param.pattern and value and not re.match(param.pattern, value):
            missing.append(ValidationFailure(
                subject=name,
                path=path,
                reason=f"Parameter '{name}' {shown} does not match the naming rule {param.pattern}"
            ))

    if isinstance(value, int) and not isinstance(value, bool):
        if param.min_value is not None and value < param.min_value:
            missing.append(ValidationFailure(
                subject=name,
                path=path,
                reason=f"Parameter '{name}' must be at least {param.min_value}"
            ))
        if param.max_value is not None and value > param.max_value:
            missing.append(ValidationFailure(
                subject=name,
                path=path,
                reason=f"Parameter '{name}' must be at most {param.max_value}"
            ))

    if param.allowed_values is not None and value not in param.allowed_values:
        missing.append(ValidationFailure(
            subject=name,
            path=path,
            reason=f"Parameter '{name}' {shown} is not an allowed value",
            options=list(param.allowed_values)
        ))

    return missing


def validate_parameters(descriptor: DeploymentDescriptor, values: dict,
                        optional: Optional[set] = None) -> List[ValidationFailure]:
    """
    Validate parameter values against their declarations.

    Names in `optional` may be absent even when required (e.g. secure values
    supplied only at deployment time). Returns a list of ValidationFailure
    objects. An empty list means the deployment may proceed.
    """
    missing = []

    # Step 1: Unknown parameters
    for name in values:
        if name not in descriptor.parameters:
            missing.append(ValidationFailure(
                subject=name,
                path=f"parameters.{name}",
                reason=f"Unknown parameter '{name}'",
                options=list(descriptor.parameters.keys())
            ))

    # Step 2: Per-parameter checks
    invalid = set()
    for name, param in descriptor.parameters.items():
        provided = values.get(name)

        if provided is None:
            if param.required and name not in (optional or ()):
                missing.append(ValidationFailure(
                    subject=name,
                    path=f"parameters.{name}",
                    reason=f"Required parameter '{name}' is missing"
                ))
                invalid.add(name)
            # Defaults are trusted; expression defaults resolve at plan time
            continue

        problems = _check_type(name, param, provided)
        if not problems:
            problems = _check_constraints(name, param, provided)

        if problems:
            invalid.add(name)
            missing.extend(problems)

    # Step 3: Cross-parameter rules
    missing.extend(_validate_container_sizes(descriptor, values, invalid))

    return missing


def _validate_container_sizes(descriptor: DeploymentDescriptor, values: dict, invalid: set) -> List[ValidationFailure]:
    """Container Apps consumption profiles pair each CPU value with one memory size."""
    missing = []
    for cpu_name, memory_name in CONTAINER_SIZE_PARAMETERS:
        if cpu_name not in descriptor.parameters or memory_name not in descriptor.parameters:
            continue
        if cpu_name in invalid or memory_name in invalid:
            continue

        cpu = values.get(cpu_name, descriptor.parameters[cpu_name].default)
        memory = values.get(memory_name, descriptor.parameters[memory_name].default)
        expected = memory_for_cpu(cpu)

        if expected and memory != expected:
            missing.append(ValidationFailure(
                subject=memory_name,
                path=f"parameters.{memory_name}",
                reason=f"Memory '{memory}' does not match {cpu} CPU for '{cpu_name}' (expected '{expected}')",
                options=[expected]
            ))

    return missing


def apply_defaults(descriptor: DeploymentDescriptor, values: dict, resource_group_location: str) -> dict:
    """
    Effective parameter values: provided values, else declared defaults.

    Expression defaults (e.g. the resource group location) are resolved here.
    """
    context = ResolutionContext(
        parameters={},
        secure=set(),
        resource_group_location=resource_group_location,
        resource_names={},
        resource_ids={}
    )

    effective = {}
    for name, param in descriptor.parameters.items():
        value = values.get(name)
        if value is None:
            value = resolve_value(param.default, context)
        effective[name] = value
    return effective


def validate_resource_names(descriptor: DeploymentDescriptor, parameters: dict,
                            resource_group_location: str = "", subscription_id: str = "",
                            resource_group: str = "") -> List[ValidationFailure]:
    """Check concrete resource names against the naming rules of their types."""
    missing = []

    try:
        context = build_context(descriptor, parameters, resource_group_location,
                                subscription_id, resource_group, mask_secrets=False)
    except ExpressionError as e:
        return [ValidationFailure(subject="descriptor", path="name", reason=str(e))]

    for resource_id, resource in descriptor.resources.items():
        reason = check_resource_name(resource.type, context.resource_names[resource_id])
        if reason:
            missing.append(ValidationFailure(
                subject=resource_id,
                path="name",
                reason=reason
            ))

    return missing


# ============================================================================
# DESCRIPTOR
# ============================================================================

def validate_descriptor(descriptor: DeploymentDescriptor) -> List[ValidationFailure]:
    """
    Validate the resource graph against contracts, references and secret plumbing.

    Returns a list of ValidationFailure objects representing validation failures.
    """
    missing_requirements = []

    # Step 1: Parameter declarations
    missing_requirements.extend(_validate_parameter_declarations(descriptor))

    for resource_id, resource in descriptor.resources.items():
        # Step 2: Resource contract validation
        missing_requirements.extend(_validate_resource_contract(resource_id, resource, descriptor))

        # Step 3: Expression and dependency validation
        missing_requirements.extend(_validate_resource_expressions(resource_id, resource, descriptor))

        # Step 4: Declared dependencies exist
        missing_requirements.extend(_validate_dependencies(resource_id, resource, descriptor))

        # Step 5: Resource-specific validation
        if resource.type == "Microsoft.App/containerApps":
            missing_requirements.extend(_validate_container_app(resource_id, resource))

    # Step 6: Graph must be orderable
    cycle = find_cycle(descriptor)
    if cycle:
        missing_requirements.append(ValidationFailure(
            subject=cycle[0],
            path="dependencies",
            reason=f"Dependency cycle detected: {' -> '.join(cycle)}"
        ))

    # Step 7: Outputs
    missing_requirements.extend(_validate_outputs(descriptor))

    return missing_requirements


def _validate_parameter_declarations(descriptor: DeploymentDescriptor) -> List[ValidationFailure]:
    missing = []

    for name, param in descriptor.parameters.items():
        if param.type not in PARAMETER_TYPES:
            missing.append(ValidationFailure(
                subject=name,
                path=f"parameters.{name}.type",
                reason=f"Unknown parameter type: {param.type}",
                options=list(PARAMETER_TYPES)
            ))

        if param.secure and param.default is not None:
            missing.append(ValidationFailure(
                subject=name,
                path=f"parameters.{name}.default",
                reason=f"Secure parameter '{name}' must not declare a default value"
            ))

        if isinstance(param.default, str):
            for expr in find_expressions(param.default):
                try:
                    ref = parse_expression(expr)
                except ExpressionError as e:
                    missing.append(ValidationFailure(
                        subject=name,
                        path=f"parameters.{name}.default",
                        reason=str(e)
                    ))
                    continue
                if ref.source != "resourceGroup":
                    missing.append(ValidationFailure(
                        subject=name,
                        path=f"parameters.{name}.default",
                        reason=f"Default of '{name}' may only reference the resource group"
                    ))

    return missing


def _validate_resource_contract(resource_id: str, resource, descriptor: DeploymentDescriptor) -> List[ValidationFailure]:
    """Validate that a resource satisfies its type contract."""
    missing = []
    contract = get_resource_contract(resource.type)

    if not contract or not get_resource_type(resource.type):
        missing.append(ValidationFailure(
            subject=resource_id,
            path="type",
            reason=f"Unknown resource type: {resource.type}",
            options=list(RESOURCE_TYPES.keys())
        ))
        return missing

    if contract["requires_location"] and not resource.location:
        missing.append(ValidationFailure(
            subject=resource_id,
            path="location",
            reason="Location is required for this resource type"
        ))

    parent_type = contract.get("requires_parent")
    if parent_type:
        parent = descriptor.resources.get(resource.parent) if resource.parent else None
        if not parent or parent.type != parent_type:
            candidates = [rid for rid, r in descriptor.resources.items() if r.type == parent_type]
            missing.append(ValidationFailure(
                subject=resource_id,
                path="parent",
                reason=f"Child resource requires a parent of type '{parent_type}'",
                options=candidates or None
            ))
    elif resource.parent:
        missing.append(ValidationFailure(
            subject=resource_id,
            path="parent",
            reason=f"Resource type '{resource.type}' cannot have a parent"
        ))

    for required_path in contract["required_properties"]:
        value = get_nested_value({"properties": resource.properties}, required_path)
        if value in (None, "", [], {}):
            missing.append(ValidationFailure(
                subject=resource_id,
                path=required_path,
                reason=f"Required property '{required_path}' is missing"
            ))

    return missing


def _validate_resource_expressions(resource_id: str, resource, descriptor: DeploymentDescriptor) -> List[ValidationFailure]:
    """Validate all expressions in a resource's name, location and properties."""
    missing = []
    declared_values = {"name": resource.name, "location": resource.location, "properties": resource.properties}

    for path, text in walk_strings(declared_values):
        for expr in find_expressions(text):
            try:
                ref = parse_expression(expr)
            except ExpressionError as e:
                missing.append(ValidationFailure(subject=resource_id, path=path, reason=str(e)))
                continue

            missing.extend(_validate_single_reference(resource_id, resource, descriptor, ref, path, text))

    return missing


def _validate_single_reference(resource_id: str, resource, descriptor: DeploymentDescriptor,
                               ref, path: str, text: str) -> List[ValidationFailure]:
    """Validate one reference found at path inside a resource."""
    missing = []
    in_secret_slot = is_secret_path(resource.type, path)

    if ref.is_parameter:
        param = descriptor.parameters.get(ref.target)
        if not param:
            missing.append(ValidationFailure(
                subject=resource_id,
                path=path,
                reason=f"Parameter '{ref.target}' is not declared",
                options=list(descriptor.parameters.keys())
            ))
            return missing

        if param.secure and not in_secret_slot:
            missing.append(ValidationFailure(
                subject=resource_id,
                path=path,
                reason=f"Secure parameter '{ref.target}' must only be passed through a secret reference"
            ))

        if ref.function == "number":
            if param.type not in ("string", "int") or not is_whole_expression(text):
                missing.append(ValidationFailure(
                    subject=resource_id,
                    path=path,
                    reason=f"number() needs a whole-value string parameter, got '{ref.target}'"
                ))

        return missing

    if ref.source == "resourceGroup":
        return missing

    # resources.<id>.*
    if ref.target == resource_id:
        missing.append(ValidationFailure(
            subject=resource_id,
            path=path,
            reason="A resource cannot reference itself"
        ))
        return missing

    target = descriptor.resources.get(ref.target)
    if not target:
        missing.append(ValidationFailure(
            subject=resource_id,
            path=path,
            reason=f"Resource '{ref.target}' does not exist in the descriptor",
            options=list(descriptor.resources.keys())
        ))
        return missing

    if ref.target not in resource.dependencies:
        missing.append(ValidationFailure(
            subject=resource_id,
            path=path,
            reason=f"Resource '{ref.target}' is referenced but not declared in dependencies"
        ))

    if ref.output:
        output = get_output(target.type, ref.attribute)
        if not output:
            meta = get_resource_type(target.type)
            available = list(meta["outputs"].keys()) if meta else []
            missing.append(ValidationFailure(
                subject=resource_id,
                path=path,
                reason=f"Output '{ref.attribute}' does not exist on '{ref.target}' ({target.type})",
                options=available or None
            ))
        elif output["sensitive"] and not in_secret_slot:
            missing.append(ValidationFailure(
                subject=resource_id,
                path=path,
                reason=f"Sensitive output '{ref.target}.{ref.attribute}' must only be passed through a secret reference"
            ))

    return missing


def _validate_dependencies(resource_id: str, resource, descriptor: DeploymentDescriptor) -> List[ValidationFailure]:
    missing = []

    for dep_id in resource.dependencies:
        if dep_id == resource_id:
            missing.append(ValidationFailure(
                subject=resource_id,
                path="dependencies",
                reason="A resource cannot depend on itself"
            ))
        elif dep_id not in descriptor.resources:
            missing.append(ValidationFailure(
                subject=resource_id,
                path="dependencies",
                reason=f"Dependency '{dep_id}' does not exist in the descriptor",
                options=list(descriptor.resources.keys())
            ))

    if resource.parent and resource.parent in descriptor.resources and resource.parent not in resource.dependencies:
        missing.append(ValidationFailure(
            subject=resource_id,
            path="dependencies",
            reason=f"Parent '{resource.parent}' is not declared in dependencies"
        ))

    return missing


def _validate_container_app(resource_id: str, resource) -> List[ValidationFailure]:
    """Every secretRef must name a secret declared on the same app."""
    missing = []

    secrets = get_nested_value({"properties": resource.properties}, "properties.configuration.secrets") or []
    secret_names = [s.get("name") for s in secrets if isinstance(s, dict)]

    containers = get_nested_value({"properties": resource.properties}, "properties.template.containers") or []
    for c_index, container in enumerate(containers):
        if not isinstance(container, dict):
            continue
        for e_index, env in enumerate(container.get("env", [])):
            path = f"properties.template.containers[{c_index}].env[{e_index}]"
            if not isinstance(env, dict) or not env.get("name"):
                missing.append(ValidationFailure(
                    subject=resource_id,
                    path=path,
                    reason="Environment variables need a name"
                ))
                continue

            has_value = "value" in env
            has_ref = "secretRef" in env
            if has_value == has_ref:
                missing.append(ValidationFailure(
                    subject=resource_id,
                    path=path,
                    reason=f"Environment variable '{env['name']}' needs exactly one of 'value' or 'secretRef'"
                ))
            elif has_ref and env["secretRef"] not in secret_names:
                missing.append(ValidationFailure(
                    subject=resource_id,
                    path=f"{path}.secretRef",
                    reason=f"Secret '{env['secretRef']}' for '{env['name']}' is not declared on this app",
                    options=secret_names or None
                ))

    return missing


def _validate_outputs(descriptor: DeploymentDescriptor) -> List[ValidationFailure]:
    """Outputs may reference resources but never secure or sensitive values."""
    missing = []

    for name, output in descriptor.outputs.items():
        path = f"outputs.{name}"
        for expr in find_expressions(output.value):
            try:
                ref = parse_expression(expr)
            except ExpressionError as e:
                missing.append(ValidationFailure(subject=name, path=path, reason=str(e)))
                continue

            if ref.is_parameter:
                param = descriptor.parameters.get(ref.target)
                if not param:
                    missing.append(ValidationFailure(
                        subject=name,
                        path=path,
                        reason=f"Parameter '{ref.target}' is not declared"
                    ))
                elif param.secure:
                    missing.append(ValidationFailure(
                        subject=name,
                        path=path,
                        reason=f"Output '{name}' must not expose secure parameter '{ref.target}'"
                    ))

            elif ref.is_resource:
                target = descriptor.resources.get(ref.target)
                if not target:
                    missing.append(ValidationFailure(
                        subject=name,
                        path=path,
                        reason=f"Resource '{ref.target}' does not exist in the descriptor"
                    ))
                elif ref.output:
                    output_meta = get_output(target.type, ref.attribute)
                    if not output_meta:
                        missing.append(ValidationFailure(
                            subject=name,
                            path=path,
                            reason=f"Output '{ref.attribute}' does not exist on '{ref.target}'"
                        ))
                    elif output_meta["sensitive"]:
                        missing.append(ValidationFailure(
                            subject=name,
                            path=path,
                            reason=f"Output '{name}' must not expose sensitive value '{ref.target}.{ref.attribute}'"
                        ))

    return missing
