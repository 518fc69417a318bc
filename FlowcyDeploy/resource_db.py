"""
Resource Catalog Module

Responsibility:
- In-memory catalog of the Azure resource types the descriptor may declare
- API version per type
- Naming rules per type (length bounds and charset)
- Runtime outputs per type (ARM expression template, sensitivity)
- Container Apps CPU/memory combinations

This module provides lookup functions used by the validator, the ARM renderer
and the deployment engine.
"""

import re

# Output expression templates receive the rendered resourceId(...) and API version
RESOURCE_TYPES = {
    "Microsoft.OperationalInsights/workspaces": {
        "api_version": "2022-10-01",
        "naming": {
            "min_length": 4,
            "max_length": 63,
            "pattern": r"^[A-Za-z0-9][A-Za-z0-9-]*[A-Za-z0-9]$",
            "description": "alphanumerics and hyphens, starting and ending with an alphanumeric"
        },
        "outputs": {
            "customerId": {
                "expression": "reference({resource_id}, '{api_version}').customerId",
                "sensitive": False
            },
            "primarySharedKey": {
                "expression": "listKeys({resource_id}, '{api_version}').primarySharedKey",
                "sensitive": True
            }
        }
    },
    "Microsoft.App/managedEnvironments": {
        "api_version": "2023-05-01",
        "naming": {
            "min_length": 2,
            "max_length": 60,
            "pattern": r"^[a-z][a-z0-9-]*[a-z0-9]$",
            "description": "lowercase letters, numbers and hyphens, starting with a letter"
        },
        "outputs": {
            "defaultDomain": {
                "expression": "reference({resource_id}, '{api_version}').defaultDomain",
                "sensitive": False
            },
            "staticIp": {
                "expression": "reference({resource_id}, '{api_version}').staticIp",
                "sensitive": False
            }
        }
    },
    "Microsoft.DocumentDB/databaseAccounts": {
        "api_version": "2023-04-15",
        "naming": {
            "min_length": 3,
            "max_length": 44,
            "pattern": r"^[a-z0-9][a-z0-9-]*[a-z0-9]$",
            "description": "lowercase letters, numbers and hyphens"
        },
        "outputs": {
            "documentEndpoint": {
                "expression": "reference({resource_id}, '{api_version}').documentEndpoint",
                "sensitive": False
            },
            "primaryMasterKey": {
                "expression": "listKeys({resource_id}, '{api_version}').primaryMasterKey",
                "sensitive": True
            },
            "connectionString": {
                "expression": "listConnectionStrings({resource_id}, '{api_version}').connectionStrings[0].connectionString",
                "sensitive": True
            }
        }
    },
    "Microsoft.DocumentDB/databaseAccounts/sqlDatabases": {
        "api_version": "2023-04-15",
        "naming": {
            "min_length": 1,
            "max_length": 255,
            "pattern": r"^[^/\\#?]*[^/\\#? ]$",
            "description": "any characters except '/', '\\', '#', '?' and no trailing space"
        },
        "outputs": {}
    },
    "Microsoft.App/containerApps": {
        "api_version": "2023-05-01",
        "naming": {
            "min_length": 2,
            "max_length": 32,
            "pattern": r"^[a-z][a-z0-9]*(-[a-z0-9]+)*$",
            "description": "lowercase letters, numbers and single hyphens, starting with a letter"
        },
        "outputs": {
            "fqdn": {
                "expression": "reference({resource_id}, '{api_version}').configuration.ingress.fqdn",
                "sensitive": False
            },
            "latestRevisionName": {
                "expression": "reference({resource_id}, '{api_version}').latestRevisionName",
                "sensitive": False
            }
        }
    }
}

# Consumption profile: memory must be exactly twice the CPU (in Gi)
CONTAINER_CPU_VALUES = ["0.25", "0.5", "0.75", "1.0", "1.25", "1.5", "1.75", "2.0"]
CONTAINER_MEMORY_VALUES = ["0.5Gi", "1Gi", "1.5Gi", "2Gi", "2.5Gi", "3Gi", "3.5Gi", "4Gi"]


def get_resource_type(resource_type: str):
    """Retrieve catalog metadata by resource type."""
    return RESOURCE_TYPES.get(resource_type)


def get_api_version(resource_type: str):
    """Retrieve the API version declared for a resource type."""
    meta = get_resource_type(resource_type)
    return meta["api_version"] if meta else None


def get_naming_rule(resource_type: str):
    """Retrieve the naming rule for a resource type."""
    meta = get_resource_type(resource_type)
    return meta["naming"] if meta else None


def get_output(resource_type: str, attribute: str):
    """Retrieve runtime output metadata for a resource type."""
    meta = get_resource_type(resource_type)
    if not meta:
        return None
    return meta["outputs"].get(attribute)


def is_sensitive_output(resource_type: str, attribute: str) -> bool:
    output = get_output(resource_type, attribute)
    return bool(output and output["sensitive"])


def check_resource_name(resource_type: str, name: str):
    """
    Check a concrete resource name against the naming rule of its type.

    Returns a reason string when the name is invalid, otherwise None.
    """
    rule = get_naming_rule(resource_type)
    if not rule:
        return None

    if not rule["min_length"] <= len(name) <= rule["max_length"]:
        return (f"Name '{name}' must be {rule['min_length']}-{rule['max_length']} "
                f"characters (got {len(name)})")

    if not re.match(rule["pattern"], name):
        return f"Name '{name}' may only contain {rule['description']}"

    return None


def memory_for_cpu(cpu: str):
    """Return the memory size paired with a CPU value, or None if unknown."""
    if cpu not in CONTAINER_CPU_VALUES:
        return None
    return CONTAINER_MEMORY_VALUES[CONTAINER_CPU_VALUES.index(cpu)]
