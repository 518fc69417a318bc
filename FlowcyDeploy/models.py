"""
Core Domain Models Module

Responsibility:
- Define the declarative building blocks of a deployment descriptor
- Parameter: a typed, constrained deployment input
- ResourceDeclaration: one Azure resource in the graph
- Output: a value exposed after provisioning
- DeploymentDescriptor: the complete declaration handed to the engine
- ValidationFailure: a rejected parameter or declaration detail
- PlannedResource / DeploymentPlan: the resolved preview of an apply
"""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class Parameter:
    """
    A deployment input with its type, default and constraints.

    Defaults may be literals or expressions (e.g. the resource group location).
    """
    name: str
    type: str  # "string", "securestring", "int" or "bool"
    default: Any = None
    description: str = ""

    min_length: Optional[int] = None
    max_length: Optional[int] = None
    min_value: Optional[int] = None
    max_value: Optional[int] = None
    allowed_values: Optional[list] = None

    # Naming charset, checked before deployment (ARM has no equivalent)
    pattern: Optional[str] = None

    @property
    def secure(self) -> bool:
        return self.type == "securestring"

    @property
    def required(self) -> bool:
        return self.default is None


@dataclass
class SecretReference:
    """A named container app secret bound to an environment variable."""
    name: str
    env_var: str

    def as_env(self) -> dict:
        return {"name": self.env_var, "secretRef": self.name}


@dataclass
class ResourceDeclaration:
    """
    Represents a single Azure resource in the deployment graph.

    `name` and `properties` may contain ${{ ... }} expressions. The API version
    is looked up from the resource catalog by type.
    """
    id: str
    type: str
    name: str
    location: Optional[str] = None
    properties: dict = field(default_factory=dict)

    # Logical ids of resources that must exist first
    dependencies: list[str] = field(default_factory=list)

    # Logical id of the parent for child resources (e.g. a Cosmos SQL database)
    parent: Optional[str] = None

    kind: Optional[str] = None
    tags: dict = field(default_factory=dict)


@dataclass
class Output:
    """Computed value exposed after a successful deployment."""
    name: str
    type: str
    value: str
    description: str = ""


@dataclass
class DeploymentDescriptor:
    """
    The complete declaration: parameters, resources and outputs.

    Resources keep declaration order (resource id -> ResourceDeclaration).
    """
    parameters: dict[str, Parameter] = field(default_factory=dict)
    resources: dict[str, ResourceDeclaration] = field(default_factory=dict)
    outputs: dict[str, Output] = field(default_factory=dict)

    def add_parameter(self, parameter: Parameter):
        self.parameters[parameter.name] = parameter

    def add_resource(self, resource: ResourceDeclaration):
        self.resources[resource.id] = resource

    def add_output(self, output: Output):
        self.outputs[output.name] = output

    def secure_parameter_names(self) -> set[str]:
        return {name for name, param in self.parameters.items() if param.secure}


@dataclass
class ValidationFailure:
    """
    Represents a validation failure that blocks the deployment.

    `subject` is a parameter name or a resource id.
    """
    subject: str
    path: str  # Dot-path like "parameters.namePrefix" or "properties.template.containers"
    reason: str  # Human-readable explanation
    options: Optional[list] = None  # Allowed choices if applicable

    def as_dict(self) -> dict:
        data = {"subject": self.subject, "path": self.path, "reason": self.reason}
        if self.options:
            data["options"] = list(self.options)
        return data


@dataclass
class PlannedResource:
    """A resource with all expressions resolved for a concrete parameter set."""
    id: str
    type: str
    api_version: str
    name: str
    resource_id: str
    location: Optional[str]
    properties: dict
    depends_on: list[str] = field(default_factory=list)
    kind: Optional[str] = None
    tags: dict = field(default_factory=dict)

    # SHA-256 over the secure values the resource consumes; properties only hold the mask
    secrets_digest: Optional[str] = None


@dataclass
class DeploymentPlan:
    """
    Ordered preview of what the provisioning engine will apply.

    Secure values are masked and runtime outputs are deferred markers.
    """
    resource_group: str
    parameters: dict = field(default_factory=dict)
    resources: list[PlannedResource] = field(default_factory=list)
    outputs: dict = field(default_factory=dict)

    def resource(self, resource_id: str) -> Optional[PlannedResource]:
        return next((r for r in self.resources if r.id == resource_id), None)

    def order(self) -> list[str]:
        return [r.id for r in self.resources]
