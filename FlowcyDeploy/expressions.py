"""
Expression Module

Responsibility:
- Parse ${{ ... }} reference expressions embedded in declarations
- Walk nested declaration values and report every reference with its dot-path
- Resolve references against a concrete parameter set for plan previews

Supported expressions:
    ${{ parameters.<name> }}
    ${{ number(parameters.<name>) }}
    ${{ resources.<id>.name }}
    ${{ resources.<id>.id }}
    ${{ resources.<id>.output.<attribute> }}
    ${{ resourceGroup.location }}

This is PURE deterministic logic. Rendering to ARM syntax lives in arm_renderer.
"""

import re
from dataclasses import dataclass
from typing import Any, Iterator, Optional

from exceptions import ExpressionError

EXPRESSION_PATTERN = re.compile(r'\$\{\{([^{}]+?)\}\}')
FUNCTION_PATTERN = re.compile(r'^([A-Za-z]+)\((.+)\)$')
IDENTIFIER_PATTERN = re.compile(r'^[A-Za-z][A-Za-z0-9_]*$')
INTEGER_PATTERN = re.compile(r'^-?\d+$')

SUPPORTED_FUNCTIONS = {"number"}

# Replaces secure values wherever a resolved value may be shown
MASK = "*****"


@dataclass(frozen=True)
class Reference:
    """A parsed expression."""
    source: str  # "parameters", "resources" or "resourceGroup"
    target: str  # parameter name, resource id or "location"
    attribute: Optional[str] = None  # "name", "id" or a runtime output name
    output: bool = False
    function: Optional[str] = None
    text: str = ""

    @property
    def is_parameter(self) -> bool:
        return self.source == "parameters"

    @property
    def is_resource(self) -> bool:
        return self.source == "resources"


def find_expressions(text: str) -> list[str]:
    """Return the stripped bodies of every ${{ ... }} in text."""
    return [expr.strip() for expr in EXPRESSION_PATTERN.findall(str(text))]


def is_whole_expression(text: Any) -> bool:
    """True when the string is exactly one expression and nothing else."""
    return isinstance(text, str) and EXPRESSION_PATTERN.fullmatch(text.strip()) is not None


def parse_expression(expr: str) -> Reference:
    """Parse a single expression body into a Reference."""
    text = expr.strip()
    function = None

    match = FUNCTION_PATTERN.match(text)
    if match:
        function = match.group(1)
        if function not in SUPPORTED_FUNCTIONS:
            raise ExpressionError(text, f"unknown function '{function}'")
        text_inner = match.group(2).strip()
    else:
        text_inner = text

    parts = text_inner.split(".")
    source = parts[0]

    if source == "parameters":
        if len(parts) != 2 or not IDENTIFIER_PATTERN.match(parts[1]):
            raise ExpressionError(text)
        return Reference(source=source, target=parts[1], function=function, text=text)

    if function:
        # Conversions only apply to parameter values
        raise ExpressionError(text, f"'{function}' only accepts parameters")

    if source == "resourceGroup":
        if parts[1:] != ["location"]:
            raise ExpressionError(text)
        return Reference(source=source, target="location", text=text)

    if source == "resources":
        if len(parts) == 3 and parts[2] in ("name", "id"):
            return Reference(source=source, target=parts[1], attribute=parts[2], text=text)
        if len(parts) == 4 and parts[2] == "output" and parts[3]:
            return Reference(source=source, target=parts[1], attribute=parts[3], output=True, text=text)
        raise ExpressionError(text)

    raise ExpressionError(text, f"unknown source '{source}'")


def split_template(text: str) -> list[tuple[str, Any]]:
    """
    Split a string into literal and expression segments.

    Returns a list of ("literal", str) and ("expr", Reference) tuples, in order.
    """
    segments = []
    position = 0

    for match in EXPRESSION_PATTERN.finditer(text):
        if match.start() > position:
            segments.append(("literal", text[position:match.start()]))
        segments.append(("expr", parse_expression(match.group(1))))
        position = match.end()

    if position < len(text):
        segments.append(("literal", text[position:]))

    return segments


def walk_strings(value: Any, path: str = "") -> Iterator[tuple[str, str]]:
    """Yield (dot-path, string) for every string leaf in a nested value."""
    if isinstance(value, dict):
        for key, item in value.items():
            child_path = f"{path}.{key}" if path else str(key)
            yield from walk_strings(item, child_path)
    elif isinstance(value, list):
        for index, item in enumerate(value):
            yield from walk_strings(item, f"{path}[{index}]")
    elif isinstance(value, str):
        yield path, value


def references_in(value: Any, path: str = "") -> list[tuple[str, Reference]]:
    """List every (dot-path, Reference) found in a nested value."""
    found = []
    for leaf_path, text in walk_strings(value, path):
        for expr in find_expressions(text):
            found.append((leaf_path, parse_expression(expr)))
    return found


def to_number(value: Any):
    """Convert a parameter value to a JSON number ("0.5" -> 0.5, "2" -> 2)."""
    if isinstance(value, bool):
        raise ExpressionError(str(value), "booleans are not numbers")
    if isinstance(value, (int, float)):
        return value

    text = str(value).strip()
    try:
        if INTEGER_PATTERN.match(text):
            return int(text)
        return float(text)
    except ValueError:
        raise ExpressionError(text, "value is not numeric")


@dataclass
class ResolutionContext:
    """Concrete values used to resolve expressions for one deployment."""
    parameters: dict
    secure: set
    resource_group_location: str
    resource_names: dict
    resource_ids: dict
    mask_secrets: bool = True


def resolve_reference(ref: Reference, context: ResolutionContext):
    """Resolve one reference to its concrete (or deferred) value."""
    if ref.is_parameter:
        if ref.target not in context.parameters:
            raise ExpressionError(ref.text, f"parameter '{ref.target}' has no value")
        if ref.target in context.secure and context.mask_secrets:
            return MASK
        value = context.parameters[ref.target]
        if ref.function == "number":
            return to_number(value)
        return value

    if ref.source == "resourceGroup":
        return context.resource_group_location

    if ref.target not in context.resource_names:
        raise ExpressionError(ref.text, f"resource '{ref.target}' is not declared")

    if ref.output:
        # Only known after the engine has applied the resource
        return f"<{context.resource_names[ref.target]}.{ref.attribute}>"
    if ref.attribute == "id":
        return context.resource_ids[ref.target]
    return context.resource_names[ref.target]


def resolve_value(value: Any, context: ResolutionContext):
    """
    Resolve every expression in a nested value.

    A string that is exactly one expression keeps the referenced value's type;
    mixed strings are concatenated.
    """
    if isinstance(value, dict):
        return {key: resolve_value(item, context) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_value(item, context) for item in value]
    if not isinstance(value, str):
        return value

    if is_whole_expression(value):
        return resolve_reference(parse_expression(find_expressions(value)[0]), context)

    if not EXPRESSION_PATTERN.search(value):
        return value

    resolved = []
    for kind, segment in split_template(value):
        if kind == "literal":
            resolved.append(segment)
        else:
            resolved.append(str(resolve_reference(segment, context)))
    return "".join(resolved)


def get_nested_value(data: dict, path: str):
    """Helper to get nested dictionary value using dot notation."""
    keys = path.split(".")
    value = data

    for key in keys:
        if isinstance(value, dict):
            value = value.get(key)
            if value is None:
                return None
        else:
            return None

    return value


def resource_id_for(resource_type: str, name_chain: list[str], subscription_id: str, resource_group: str) -> str:
    """
    Build the Azure resource id for a resource and its parent names.

    Child types contribute one segment per level:
    Microsoft.DocumentDB/databaseAccounts/sqlDatabases + [account, db]
    -> .../providers/Microsoft.DocumentDB/databaseAccounts/account/sqlDatabases/db
    """
    namespace, *type_segments = resource_type.split("/")
    resource_id = f"/subscriptions/{subscription_id}/resourceGroups/{resource_group}/providers/{namespace}"
    for type_segment, name in zip(type_segments, name_chain):
        resource_id += f"/{type_segment}/{name}"
    return resource_id


def build_context(descriptor, parameters: dict, resource_group_location: str,
                  subscription_id: str, resource_group: str, mask_secrets: bool = True) -> ResolutionContext:
    """
    Resolve every resource name and Azure resource id for one parameter set.

    Names are resolved in declaration order; a name may reference parameters
    and the names of resources declared before it.
    """
    context = ResolutionContext(
        parameters=parameters,
        secure=descriptor.secure_parameter_names(),
        resource_group_location=resource_group_location,
        resource_names={},
        resource_ids={},
        mask_secrets=mask_secrets
    )
    name_chains = {}

    for resource_id, resource in descriptor.resources.items():
        name = str(resolve_value(resource.name, context))
        chain = list(name_chains.get(resource.parent, [])) + [name]
        name_chains[resource_id] = chain
        context.resource_names[resource_id] = name
        context.resource_ids[resource_id] = resource_id_for(resource.type, chain, subscription_id, resource_group)

    return context
