"""
Settings Module

Responsibility:
- Collect environment-driven defaults for planning and rendering
- Load deployment parameter values from files and key=value pairs

Environment variables:
    FLOWCY_SUBSCRIPTION_ID   subscription used in resource id previews
    FLOWCY_RESOURCE_GROUP    target resource group
    FLOWCY_LOCATION          resource group location (default for `location`)
    FLOWCY_TEMPLATE_FILE     template file name used in CLI commands
    FLOWCY_LOG_LEVEL         DEBUG, INFO, WARNING or ERROR
    FLOWCY_API_HOST / FLOWCY_API_PORT   HTTP surface bind address
"""

import json
import os
from pathlib import Path

import yaml

from exceptions import ConfigurationError

# Deployment configuration
DEPLOY_CONFIG = {
    "subscription_id": os.getenv("FLOWCY_SUBSCRIPTION_ID", "00000000-0000-0000-0000-000000000000"),
    "resource_group": os.getenv("FLOWCY_RESOURCE_GROUP", "flowcy-rg"),
    "resource_group_location": os.getenv("FLOWCY_LOCATION", "westeurope"),
    "template_file": os.getenv("FLOWCY_TEMPLATE_FILE", "azuredeploy.json"),
    "log_level": os.getenv("FLOWCY_LOG_LEVEL", "INFO"),
}

# HTTP surface configuration
API_CONFIG = {
    "host": os.getenv("FLOWCY_API_HOST", "0.0.0.0"),
    "port": os.getenv("FLOWCY_API_PORT", "8000"),
}


def get_api_port() -> int:
    try:
        return int(API_CONFIG["port"])
    except ValueError:
        raise ConfigurationError(f"FLOWCY_API_PORT must be an integer, got '{API_CONFIG['port']}'")


def load_parameter_file(path) -> dict:
    """
    Load parameter values from a file.

    Accepts an ARM parameters document ({"parameters": {"x": {"value": ...}}})
    or a plain mapping, as JSON or YAML (by extension).
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Parameter file not found: {path}")

    try:
        with open(path) as f:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Could not parse parameter file {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"Parameter file {path} must contain a mapping")

    if isinstance(data.get("parameters"), dict):
        return _unwrap_arm_parameters(data["parameters"], path)

    return dict(data)


def _unwrap_arm_parameters(parameters: dict, path) -> dict:
    values = {}
    for name, entry in parameters.items():
        if not isinstance(entry, dict) or "value" not in entry:
            # Key Vault references are resolved by the engine, never locally
            raise ConfigurationError(f"Parameter '{name}' in {path} has no inline value")
        values[name] = entry["value"]
    return values


def parse_parameter_pairs(pairs) -> dict:
    """Parse ["name=value", ...] as passed on the command line."""
    values = {}
    for pair in pairs or []:
        if "=" not in pair:
            raise ConfigurationError(f"Expected name=value, got '{pair}'")
        name, value = pair.split("=", 1)
        name = name.strip()
        if not name:
            raise ConfigurationError(f"Missing parameter name in '{pair}'")
        values[name] = value
    return values
