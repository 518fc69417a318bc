"""
Deployment Engine Module

Responsibility:
- Implement the state machine that turns parameter values into a deployment plan
- Orchestrate: coercion → parameter validation → auto-wiring → graph validation
  → ordering → resolution
- Own the descriptor and the last plan
- Render the ARM template, the parameters file and the YAML preview
- Compare a plan with existing state (what-if) and build the cloud CLI command

State transitions:
START → PARAMETERS_VALIDATED → GRAPH_WIRED → GRAPH_VALIDATED → PLANNED
Any rejection moves the engine to REJECTED before a single resource is planned.

Provisioning itself (ordering at apply time, retries, rollback) belongs to
Azure Resource Manager and is not modelled here.
"""

import copy
import hashlib
import json
import logging
import shlex
from typing import Optional

from arm_renderer import render_parameters_file, render_template
from dependency_resolver import auto_wire_dependencies, deployment_order
from descriptor import build_flowcy_descriptor
from exceptions import DescriptorValidationError, ParameterValidationError
from expressions import MASK, build_context, references_in, resolve_value
from models import DeploymentDescriptor, DeploymentPlan, PlannedResource
from resource_db import get_api_version
from settings import DEPLOY_CONFIG
from validator import (
    apply_defaults,
    coerce_parameter_values,
    validate_descriptor,
    validate_parameters,
    validate_resource_names,
)
from yaml_renderer import render_plan_yaml

logger = logging.getLogger(__name__)

CHANGE_CREATE = "Create"
CHANGE_MODIFY = "Modify"
CHANGE_NO_CHANGE = "NoChange"
CHANGE_IGNORE = "Ignore"


class DeploymentEngine:
    """
    State machine for preparing a deployment.

    Manages the flow from raw parameter values to an ordered, resolved plan.
    """

    def __init__(self, descriptor: Optional[DeploymentDescriptor] = None,
                 subscription_id: Optional[str] = None,
                 resource_group: Optional[str] = None,
                 resource_group_location: Optional[str] = None):
        self.descriptor = copy.deepcopy(descriptor) if descriptor else build_flowcy_descriptor()
        self.subscription_id = subscription_id or DEPLOY_CONFIG["subscription_id"]
        self.resource_group = resource_group or DEPLOY_CONFIG["resource_group"]
        self.resource_group_location = resource_group_location or DEPLOY_CONFIG["resource_group_location"]

        self.state: str = "START"
        self.failures: list = []
        self.plan: Optional[DeploymentPlan] = None

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def check_parameters(self, raw_values: dict, optional: Optional[set] = None):
        """
        Coerce and validate raw values.

        Returns (effective_values, failures). Effective values include defaults.
        Names in `optional` may be missing even when required.
        """
        values, failures = coerce_parameter_values(self.descriptor, raw_values)

        # A value that failed coercion is reported once, not again as missing
        coerced_away = {f.subject for f in failures}
        failures.extend(
            f for f in validate_parameters(self.descriptor, values, optional)
            if f.subject not in coerced_away
        )

        if failures:
            return values, failures

        effective = apply_defaults(self.descriptor, values, self.resource_group_location)
        failures.extend(validate_resource_names(
            self.descriptor, effective, self.resource_group_location,
            self.subscription_id, self.resource_group
        ))
        return effective, failures

    def check_descriptor(self):
        """Auto-wire the graph and return its validation failures."""
        auto_wire_dependencies(self.descriptor)
        return validate_descriptor(self.descriptor)

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def prepare(self, raw_values: dict) -> DeploymentPlan:
        """
        Validate parameters and graph, then build the ordered plan.

        Raises ParameterValidationError before anything else happens when a
        parameter is invalid, and DescriptorValidationError when the graph is.
        Re-running with the same values yields an identical plan.
        """
        self.state = "START"
        self.plan = None
        self.failures = []

        effective, failures = self.check_parameters(raw_values)
        if failures:
            self.failures = failures
            self.state = "REJECTED"
            logger.warning("Rejected deployment parameters (%d problem(s))", len(failures))
            raise ParameterValidationError(failures)
        self.state = "PARAMETERS_VALIDATED"

        auto_wire_dependencies(self.descriptor)
        self.state = "GRAPH_WIRED"

        failures = validate_descriptor(self.descriptor)
        if failures:
            self.failures = failures
            self.state = "REJECTED"
            logger.error("Descriptor failed validation (%d problem(s))", len(failures))
            raise DescriptorValidationError(failures)
        self.state = "GRAPH_VALIDATED"

        order = deployment_order(self.descriptor)
        self.plan = self._build_plan(effective, order)
        self.state = "PLANNED"

        logger.info("Planned %d resource(s) for resource group %s: %s",
                    len(self.plan.resources), self.resource_group, " -> ".join(order))
        return self.plan

    def _build_plan(self, effective: dict, order: list[str]) -> DeploymentPlan:
        """Resolve every declaration for the effective parameter values."""
        context = build_context(
            self.descriptor, effective, self.resource_group_location,
            self.subscription_id, self.resource_group, mask_secrets=True
        )
        secure = self.descriptor.secure_parameter_names()

        plan = DeploymentPlan(
            resource_group=self.resource_group,
            parameters={name: MASK if name in secure else value for name, value in effective.items()}
        )

        for resource_id in order:
            resource = self.descriptor.resources[resource_id]
            plan.resources.append(PlannedResource(
                id=resource_id,
                type=resource.type,
                api_version=get_api_version(resource.type),
                name=context.resource_names[resource_id],
                resource_id=context.resource_ids[resource_id],
                location=resolve_value(resource.location, context) if resource.location else None,
                properties=resolve_value(resource.properties, context),
                depends_on=list(resource.dependencies),
                kind=resource.kind,
                tags=resolve_value(resource.tags, context),
                secrets_digest=_secrets_digest(resource.properties, secure, effective)
            ))

        for name, output in self.descriptor.outputs.items():
            plan.outputs[name] = resolve_value(output.value, context)

        return plan

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render_template(self) -> dict:
        """ARM template for the descriptor; independent of parameter values."""
        failures = self.check_descriptor()
        if failures:
            raise DescriptorValidationError(failures)
        return render_template(self.descriptor)

    def render_parameters_file(self, raw_values: dict) -> dict:
        """
        ARM parameters document, validated like a deployment.

        Secure values may be left out since they are never written to the file.
        """
        _, failures = self.check_parameters(raw_values, optional=self.descriptor.secure_parameter_names())
        if failures:
            logger.warning("Refused to write parameters file (%d problem(s))", len(failures))
            raise ParameterValidationError(failures)

        values, _ = coerce_parameter_values(self.descriptor, raw_values)
        return render_parameters_file(self.descriptor, values)

    def render_plan(self, raw_values: dict) -> str:
        return render_plan_yaml(self.prepare(raw_values))

    # ------------------------------------------------------------------
    # What-if and CLI
    # ------------------------------------------------------------------

    def build_cli_command(self, raw_values: dict, resource_group: Optional[str] = None,
                          template_file: Optional[str] = None, mask_secrets: bool = True) -> list[str]:
        """
        The generic cloud CLI invocation for this deployment.

        Provided values become name=value pairs in declaration order. Secure
        values are masked unless mask_secrets is False.
        """
        secure = self.descriptor.secure_parameter_names()
        command = [
            "az", "deployment", "group", "create",
            "--resource-group", resource_group or self.resource_group,
            "--template-file", template_file or DEPLOY_CONFIG["template_file"],
        ]

        names = [n for n in self.descriptor.parameters if n in raw_values]
        names += [n for n in raw_values if n not in self.descriptor.parameters]

        pairs = []
        for name in names:
            value = raw_values[name]
            if value is None:
                continue
            if name in secure and mask_secrets:
                value = MASK
            elif isinstance(value, bool):
                value = "true" if value else "false"
            pairs.append(f"{name}={value}")

        if pairs:
            command.append("--parameters")
            command.extend(pairs)
        return command

    def format_cli_command(self, raw_values: dict, **kwargs) -> str:
        return shlex.join(self.build_cli_command(raw_values, **kwargs))


def _secrets_digest(properties: dict, secure: set, effective: dict) -> Optional[str]:
    """Digest of the secure parameter values referenced in properties, or None."""
    names = sorted({
        ref.target for _, ref in references_in(properties)
        if ref.is_parameter and ref.target in secure
    })
    if not names:
        return None

    payload = json.dumps([[name, effective.get(name)] for name in names])
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def plan_state(plan: DeploymentPlan) -> dict:
    """
    Azure resource id -> state the engine would hold after applying the plan.

    Each entry keeps the masked properties and the digest of the secure
    values behind them, so a rotated token is still seen as a change.
    """
    return {
        resource.resource_id: {
            "properties": copy.deepcopy(resource.properties),
            "secretsDigest": resource.secrets_digest
        }
        for resource in plan.resources
    }


def what_if(plan: DeploymentPlan, existing: dict) -> list[dict]:
    """
    Compare a plan with existing state keyed by Azure resource id.

    Existing entries have the plan_state() shape. The same name always maps
    to the same id, so re-applying a plan updates in place and never
    duplicates. Resources only present in existing state are left alone
    (incremental mode) and reported as Ignore.
    """
    changes = []
    planned_ids = set()

    for resource in plan.resources:
        planned_ids.add(resource.resource_id)
        current = existing.get(resource.resource_id)
        if current is None:
            change_type = CHANGE_CREATE
        elif (current.get("properties") != resource.properties
              or current.get("secretsDigest") != resource.secrets_digest):
            change_type = CHANGE_MODIFY
        else:
            change_type = CHANGE_NO_CHANGE

        changes.append({
            "id": resource.id,
            "resourceId": resource.resource_id,
            "changeType": change_type
        })

    for resource_id in existing:
        if resource_id not in planned_ids:
            changes.append({
                "id": None,
                "resourceId": resource_id,
                "changeType": CHANGE_IGNORE
            })

    return changes
