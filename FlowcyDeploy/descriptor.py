"""
Flowcy Descriptor Module

Responsibility:
- Declare the deployment parameters with their defaults and constraints
- Declare the six Azure resources and their explicit dependencies
- Declare the environment contract handed to the Flowcy containers
- Declare the deployment outputs

Resources, leaves first:
    logAnalytics            {namePrefix}-logs
    containerAppsEnvironment {namePrefix}-env     (workspace keys)
    cosmosAccount           {namePrefix}-cosmos
    cosmosDatabase          {cosmosDatabaseId}    (account)
    webApp                  {namePrefix}-api      (environment, database)
    daemonApp               {namePrefix}-daemon   (environment, database)
"""

from models import DeploymentDescriptor, Output, Parameter, ResourceDeclaration, SecretReference
from resource_db import CONTAINER_CPU_VALUES, CONTAINER_MEMORY_VALUES

# Environment variable names the Flowcy images read
ENV_COSMOS_CONNECTION_STRING = "AZURE_COSMOS_CONNECTIONSTRING"
ENV_COSMOS_DATABASE_ID = "AZURE_COSMOS_DATABASEID"
ENV_DEVOPS_ORG_NAME = "AZURE_DEVOPS_ORGNAME"
ENV_DEVOPS_USE_PAT = "AZURE_DEVOPS_USE_PAT"
ENV_DEVOPS_USE_MANAGED_IDENTITY = "AZURE_DEVOPS_USE_MANAGED_IDENTITY"
ENV_DEVOPS_USE_SERVICE_PRINCIPAL = "AZURE_DEVOPS_USE_SERVICE_PRINCIPAL"
ENV_DEVOPS_PAT = "AZURE_DEVOPS_PAT"

CONTAINER_ENVIRONMENT_VARIABLES = [
    ENV_COSMOS_CONNECTION_STRING,
    ENV_COSMOS_DATABASE_ID,
    ENV_DEVOPS_ORG_NAME,
    ENV_DEVOPS_USE_PAT,
    ENV_DEVOPS_USE_MANAGED_IDENTITY,
    ENV_DEVOPS_USE_SERVICE_PRINCIPAL,
    ENV_DEVOPS_PAT,
]

# Secret names on each container app
COSMOS_CONNECTION_SECRET = "cosmos-connection-string"
DEVOPS_PAT_SECRET = "azure-devops-pat"

# Resource name suffixes appended to namePrefix
SUFFIXES = {
    "logAnalytics": "logs",
    "containerAppsEnvironment": "env",
    "cosmosAccount": "cosmos",
    "webApp": "api",
    "daemonApp": "daemon",
}

NAME_PREFIX_PATTERN = r"^[a-z][a-z0-9-]*[a-z0-9]$"

# Azure DevOps organizations: letters, digits and hyphens, no leading or trailing hyphen
ORG_NAME_PATTERN = r"^[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?$"

TAGS = {"application": "flowcy"}


def build_parameters() -> list[Parameter]:
    """The documented parameter table, in declaration order."""
    return [
        Parameter(
            name="location",
            type="string",
            default="${{ resourceGroup.location }}",
            description="Azure region for all resources."
        ),
        Parameter(
            name="namePrefix",
            type="string",
            default="flowcy",
            description="Prefix for every resource name.",
            min_length=3,
            max_length=25,
            pattern=NAME_PREFIX_PATTERN
        ),
        Parameter(
            name="azureDevOpsOrgName",
            type="string",
            description="Azure DevOps organization Flowcy reads from.",
            min_length=1,
            max_length=50,
            pattern=ORG_NAME_PATTERN
        ),
        Parameter(
            name="webPat",
            type="securestring",
            description="Personal access token used by the web API.",
            min_length=1
        ),
        Parameter(
            name="daemonPat",
            type="securestring",
            description="Personal access token used by the daemon.",
            min_length=1
        ),
        Parameter(
            name="cosmosDatabaseId",
            type="string",
            default="flowcy",
            description="Name of the Cosmos DB SQL database.",
            min_length=1,
            max_length=255
        ),
        Parameter(
            name="cosmosThroughput",
            type="int",
            default=400,
            description="Provisioned database throughput in RU/s.",
            min_value=400,
            max_value=10000
        ),
        Parameter(
            name="logRetentionInDays",
            type="int",
            default=30,
            description="Log Analytics retention.",
            min_value=30,
            max_value=730
        ),
        Parameter(
            name="webContainerImage",
            type="string",
            default="flowcy/flowcy-api:latest",
            description="Container image of the web API.",
            min_length=1
        ),
        Parameter(
            name="daemonContainerImage",
            type="string",
            default="flowcy/flowcy-daemon:latest",
            description="Container image of the daemon.",
            min_length=1
        ),
        Parameter(
            name="webContainerCpu",
            type="string",
            default="0.5",
            description="CPU cores for the web API container.",
            allowed_values=list(CONTAINER_CPU_VALUES)
        ),
        Parameter(
            name="webContainerMemory",
            type="string",
            default="1Gi",
            description="Memory for the web API container (twice the CPU).",
            allowed_values=list(CONTAINER_MEMORY_VALUES)
        ),
        Parameter(
            name="daemonContainerCpu",
            type="string",
            default="0.25",
            description="CPU cores for the daemon container.",
            allowed_values=list(CONTAINER_CPU_VALUES)
        ),
        Parameter(
            name="daemonContainerMemory",
            type="string",
            default="0.5Gi",
            description="Memory for the daemon container (twice the CPU).",
            allowed_values=list(CONTAINER_MEMORY_VALUES)
        ),
        Parameter(
            name="webTargetPort",
            type="int",
            default=80,
            description="Port the web API container listens on.",
            min_value=1,
            max_value=65535
        ),
    ]


# Pairs of (cpu parameter, memory parameter) that must match a consumption profile
CONTAINER_SIZE_PARAMETERS = [
    ("webContainerCpu", "webContainerMemory"),
    ("daemonContainerCpu", "daemonContainerMemory"),
]


def _prefixed(resource_id: str) -> str:
    return f"${{{{ parameters.namePrefix }}}}-{SUFFIXES[resource_id]}"


def _container_app(resource_id: str, image_param: str, cpu_param: str, memory_param: str,
                   pat_param: str, ingress: bool) -> ResourceDeclaration:
    """Declare one Flowcy container app with its secrets and environment contract."""
    env = [
        SecretReference(COSMOS_CONNECTION_SECRET, ENV_COSMOS_CONNECTION_STRING).as_env(),
        {"name": ENV_COSMOS_DATABASE_ID, "value": "${{ parameters.cosmosDatabaseId }}"},
        {"name": ENV_DEVOPS_ORG_NAME, "value": "${{ parameters.azureDevOpsOrgName }}"},
        {"name": ENV_DEVOPS_USE_PAT, "value": "true"},
        {"name": ENV_DEVOPS_USE_MANAGED_IDENTITY, "value": "false"},
        {"name": ENV_DEVOPS_USE_SERVICE_PRINCIPAL, "value": "false"},
        SecretReference(DEVOPS_PAT_SECRET, ENV_DEVOPS_PAT).as_env(),
    ]

    configuration = {
        "activeRevisionsMode": "Single",
        "secrets": [
            {
                "name": COSMOS_CONNECTION_SECRET,
                "value": "${{ resources.cosmosAccount.output.connectionString }}"
            },
            {
                "name": DEVOPS_PAT_SECRET,
                "value": f"${{{{ parameters.{pat_param} }}}}"
            }
        ]
    }
    if ingress:
        configuration["ingress"] = {
            "external": True,
            "targetPort": "${{ parameters.webTargetPort }}",
            "transport": "auto",
            "allowInsecure": False
        }

    return ResourceDeclaration(
        id=resource_id,
        type="Microsoft.App/containerApps",
        name=_prefixed(resource_id),
        location="${{ parameters.location }}",
        properties={
            "managedEnvironmentId": "${{ resources.containerAppsEnvironment.id }}",
            "configuration": configuration,
            "template": {
                "containers": [
                    {
                        "name": _prefixed(resource_id),
                        "image": f"${{{{ parameters.{image_param} }}}}",
                        "resources": {
                            "cpu": f"${{{{ number(parameters.{cpu_param}) }}}}",
                            "memory": f"${{{{ parameters.{memory_param} }}}}"
                        },
                        "env": env
                    }
                ],
                "scale": {
                    "minReplicas": 1,
                    "maxReplicas": 1
                }
            }
        },
        dependencies=["containerAppsEnvironment", "cosmosDatabase"],
        tags=dict(TAGS)
    )


def build_resources() -> list[ResourceDeclaration]:
    """The resource list, leaves first."""
    workspace = ResourceDeclaration(
        id="logAnalytics",
        type="Microsoft.OperationalInsights/workspaces",
        name=_prefixed("logAnalytics"),
        location="${{ parameters.location }}",
        properties={
            "sku": {"name": "PerGB2018"},
            "retentionInDays": "${{ parameters.logRetentionInDays }}"
        },
        tags=dict(TAGS)
    )

    environment = ResourceDeclaration(
        id="containerAppsEnvironment",
        type="Microsoft.App/managedEnvironments",
        name=_prefixed("containerAppsEnvironment"),
        location="${{ parameters.location }}",
        properties={
            "appLogsConfiguration": {
                "destination": "log-analytics",
                "logAnalyticsConfiguration": {
                    "customerId": "${{ resources.logAnalytics.output.customerId }}",
                    "sharedKey": "${{ resources.logAnalytics.output.primarySharedKey }}"
                }
            }
        },
        dependencies=["logAnalytics"],
        tags=dict(TAGS)
    )

    account = ResourceDeclaration(
        id="cosmosAccount",
        type="Microsoft.DocumentDB/databaseAccounts",
        name=_prefixed("cosmosAccount"),
        location="${{ parameters.location }}",
        kind="GlobalDocumentDB",
        properties={
            "databaseAccountOfferType": "Standard",
            "consistencyPolicy": {"defaultConsistencyLevel": "Session"},
            "locations": [
                {
                    "locationName": "${{ parameters.location }}",
                    "failoverPriority": 0,
                    "isZoneRedundant": False
                }
            ]
        },
        tags=dict(TAGS)
    )

    database = ResourceDeclaration(
        id="cosmosDatabase",
        type="Microsoft.DocumentDB/databaseAccounts/sqlDatabases",
        name="${{ parameters.cosmosDatabaseId }}",
        parent="cosmosAccount",
        properties={
            "resource": {"id": "${{ parameters.cosmosDatabaseId }}"},
            "options": {"throughput": "${{ parameters.cosmosThroughput }}"}
        },
        dependencies=["cosmosAccount"]
    )

    web = _container_app("webApp", "webContainerImage", "webContainerCpu",
                         "webContainerMemory", "webPat", ingress=True)
    daemon = _container_app("daemonApp", "daemonContainerImage", "daemonContainerCpu",
                            "daemonContainerMemory", "daemonPat", ingress=False)

    return [workspace, environment, account, database, web, daemon]


def build_outputs() -> list[Output]:
    return [
        Output(
            name="apiEndpoint",
            type="string",
            value="https://${{ resources.webApp.output.fqdn }}",
            description="Public endpoint of the Flowcy API."
        ),
        Output(
            name="daemonName",
            type="string",
            value="${{ resources.daemonApp.name }}",
            description="Name of the daemon container app."
        ),
        Output(
            name="cosmosEndpoint",
            type="string",
            value="${{ resources.cosmosAccount.output.documentEndpoint }}",
            description="Cosmos DB account endpoint."
        ),
    ]


def build_flowcy_descriptor() -> DeploymentDescriptor:
    """Build the complete Flowcy deployment descriptor."""
    descriptor = DeploymentDescriptor()

    for parameter in build_parameters():
        descriptor.add_parameter(parameter)
    for resource in build_resources():
        descriptor.add_resource(resource)
    for output in build_outputs():
        descriptor.add_output(output)

    return descriptor
