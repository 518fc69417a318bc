"""
Resource Contracts Module

Responsibility:
- Define structural contracts for every resource type the descriptor declares
- Specify required properties (dot-paths) and whether a location is required
- Specify where secret material may appear (secure parameters, keys,
  connection strings)

Contracts define WHAT must exist, not what the values are.
They are used by the validator to enforce structure and secret plumbing.
"""

# Log Analytics Workspace
WORKSPACE_CONTRACT = {
    "resource_type": "Microsoft.OperationalInsights/workspaces",
    "requires_location": True,
    "required_properties": [
        "properties.sku.name",
        "properties.retentionInDays"
    ],
    "secret_paths": []
}

# Container Apps managed environment
# The workspace shared key is a write-only property of the environment
MANAGED_ENVIRONMENT_CONTRACT = {
    "resource_type": "Microsoft.App/managedEnvironments",
    "requires_location": True,
    "required_properties": [
        "properties.appLogsConfiguration.destination",
        "properties.appLogsConfiguration.logAnalyticsConfiguration.customerId",
        "properties.appLogsConfiguration.logAnalyticsConfiguration.sharedKey"
    ],
    "secret_paths": [
        "properties.appLogsConfiguration.logAnalyticsConfiguration.sharedKey"
    ]
}

# Cosmos DB account
COSMOS_ACCOUNT_CONTRACT = {
    "resource_type": "Microsoft.DocumentDB/databaseAccounts",
    "requires_location": True,
    "required_properties": [
        "properties.databaseAccountOfferType",
        "properties.locations"
    ],
    "secret_paths": []
}

# Cosmos DB SQL database (child of the account)
COSMOS_DATABASE_CONTRACT = {
    "resource_type": "Microsoft.DocumentDB/databaseAccounts/sqlDatabases",
    "requires_location": False,
    "requires_parent": "Microsoft.DocumentDB/databaseAccounts",
    "required_properties": [
        "properties.resource.id"
    ],
    "secret_paths": []
}

# Container App
# Secrets are only allowed in configuration.secrets and referenced by name from env
CONTAINER_APP_CONTRACT = {
    "resource_type": "Microsoft.App/containerApps",
    "requires_location": True,
    "required_properties": [
        "properties.managedEnvironmentId",
        "properties.template.containers"
    ],
    "secret_paths": [
        "properties.configuration.secrets"
    ]
}


# Contract lookup
RESOURCE_CONTRACTS = {
    contract["resource_type"]: contract
    for contract in (
        WORKSPACE_CONTRACT,
        MANAGED_ENVIRONMENT_CONTRACT,
        COSMOS_ACCOUNT_CONTRACT,
        COSMOS_DATABASE_CONTRACT,
        CONTAINER_APP_CONTRACT,
    )
}


def get_resource_contract(resource_type: str):
    """Retrieve resource contract by resource type."""
    return RESOURCE_CONTRACTS.get(resource_type)


def is_secret_path(resource_type: str, path: str) -> bool:
    """True when path lies under one of the contract's secret paths."""
    contract = get_resource_contract(resource_type)
    if not contract:
        return False

    for secret_path in contract["secret_paths"]:
        if path == secret_path or path.startswith(secret_path + ".") or path.startswith(secret_path + "["):
            return True
    return False
