"""
Tests for ARM template rendering.
"""

import json

import pytest

from arm_renderer import (
    PARAMETERS_SCHEMA,
    TEMPLATE_SCHEMA,
    arm_resource_id,
    render_parameters_file,
    render_template,
    render_template_json,
    to_arm_expression,
    to_arm_value,
)

from conftest import DAEMON_PAT, WEB_PAT

ACCOUNT_NAME = "format('{0}-cosmos', parameters('namePrefix'))"
ENVIRONMENT_ID = "resourceId('Microsoft.App/managedEnvironments', format('{0}-env', parameters('namePrefix')))"


@pytest.fixture
def template(wired_descriptor):
    return render_template(wired_descriptor)


def resource(template, index):
    return template["resources"][index]


def web_container(template):
    return resource(template, 4)["properties"]["template"]["containers"][0]


class TestTemplateShape:
    """Top-level template structure."""

    def test_schema_and_sections(self, template):
        assert template["$schema"] == TEMPLATE_SCHEMA
        assert template["contentVersion"] == "1.0.0.0"
        assert len(template["resources"]) == 6
        assert list(template["outputs"]) == ["apiEndpoint", "daemonName", "cosmosEndpoint"]

    def test_rendering_is_deterministic(self, wired_descriptor):
        assert render_template_json(wired_descriptor) == render_template_json(wired_descriptor)

    def test_json_round_trips(self, wired_descriptor, template):
        assert json.loads(render_template_json(wired_descriptor)) == template


class TestParameters:
    """template.parameters"""

    def test_secure_parameters_have_no_default(self, template):
        assert template["parameters"]["webPat"]["type"] == "securestring"
        assert "defaultValue" not in template["parameters"]["webPat"]

    def test_location_default(self, template):
        assert template["parameters"]["location"]["defaultValue"] == "[resourceGroup().location]"

    def test_constraints(self, template):
        prefix = template["parameters"]["namePrefix"]
        assert prefix["defaultValue"] == "flowcy"
        assert prefix["minLength"] == 3
        assert prefix["maxLength"] == 25
        assert "namingRule" in prefix["metadata"]

        throughput = template["parameters"]["cosmosThroughput"]
        assert throughput["minValue"] == 400
        assert throughput["maxValue"] == 10000

    def test_allowed_values(self, template):
        assert "0.25" in template["parameters"]["daemonContainerCpu"]["allowedValues"]


class TestResources:
    """template.resources"""

    def test_names(self, template):
        assert resource(template, 0)["name"] == "[format('{0}-logs', parameters('namePrefix'))]"
        assert resource(template, 4)["name"] == "[format('{0}-api', parameters('namePrefix'))]"
        assert resource(template, 5)["name"] == "[format('{0}-daemon', parameters('namePrefix'))]"

    def test_child_name_includes_parent(self, template):
        assert resource(template, 3)["name"] == (
            f"[format('{{0}}/{{1}}', {ACCOUNT_NAME}, parameters('cosmosDatabaseId'))]"
        )

    def test_api_versions(self, template):
        assert resource(template, 2)["apiVersion"] == "2023-04-15"
        assert resource(template, 4)["apiVersion"] == "2023-05-01"

    def test_location_and_kind(self, template):
        account = resource(template, 2)
        assert account["location"] == "[parameters('location')]"
        assert account["kind"] == "GlobalDocumentDB"
        assert "location" not in resource(template, 3)

    def test_depends_on(self, template):
        depends_on = resource(template, 4)["dependsOn"]
        assert depends_on == [
            f"[{ENVIRONMENT_ID}]",
            f"[resourceId('Microsoft.DocumentDB/databaseAccounts/sqlDatabases', {ACCOUNT_NAME}, "
            f"parameters('cosmosDatabaseId'))]",
            f"[resourceId('Microsoft.DocumentDB/databaseAccounts', {ACCOUNT_NAME})]",
        ]
        assert "dependsOn" not in resource(template, 0)

    def test_managed_environment_id(self, template):
        assert resource(template, 4)["properties"]["managedEnvironmentId"] == f"[{ENVIRONMENT_ID}]"

    def test_workspace_keys(self, template):
        config = resource(template, 1)["properties"]["appLogsConfiguration"]["logAnalyticsConfiguration"]
        workspace_id = "resourceId('Microsoft.OperationalInsights/workspaces', format('{0}-logs', parameters('namePrefix')))"
        assert config["customerId"] == f"[reference({workspace_id}, '2022-10-01').customerId]"
        assert config["sharedKey"] == f"[listKeys({workspace_id}, '2022-10-01').primarySharedKey]"

    def test_connection_string_targets_declared_account(self, template):
        secrets = resource(template, 4)["properties"]["configuration"]["secrets"]
        assert secrets[0]["value"] == (
            f"[listConnectionStrings(resourceId('Microsoft.DocumentDB/databaseAccounts', {ACCOUNT_NAME}), "
            "'2023-04-15').connectionStrings[0].connectionString]"
        )
        # Same name expression as the account resource itself
        assert resource(template, 2)["name"] == f"[{ACCOUNT_NAME}]"

    def test_tokens_are_parameter_references(self, template):
        web = resource(template, 4)["properties"]["configuration"]["secrets"][1]
        daemon = resource(template, 5)["properties"]["configuration"]["secrets"][1]
        assert web == {"name": "azure-devops-pat", "value": "[parameters('webPat')]"}
        assert daemon == {"name": "azure-devops-pat", "value": "[parameters('daemonPat')]"}

    def test_cpu_is_numeric(self, template):
        assert web_container(template)["resources"] == {
            "cpu": "[json(parameters('webContainerCpu'))]",
            "memory": "[parameters('webContainerMemory')]",
        }

    def test_env_contract(self, template):
        env = {e["name"]: e for e in web_container(template)["env"]}
        assert env["AZURE_DEVOPS_PAT"] == {"name": "AZURE_DEVOPS_PAT", "secretRef": "azure-devops-pat"}
        assert env["AZURE_COSMOS_DATABASEID"]["value"] == "[parameters('cosmosDatabaseId')]"
        assert env["AZURE_DEVOPS_USE_PAT"]["value"] == "true"

    def test_literals_keep_their_type(self, template):
        ingress = resource(template, 4)["properties"]["configuration"]["ingress"]
        assert ingress["external"] is True
        assert ingress["targetPort"] == "[parameters('webTargetPort')]"


class TestOutputs:
    """template.outputs"""

    def test_api_endpoint(self, template):
        web_id = "resourceId('Microsoft.App/containerApps', format('{0}-api', parameters('namePrefix')))"
        assert template["outputs"]["apiEndpoint"] == {
            "type": "string",
            "value": f"[format('https://{{0}}', reference({web_id}, '2023-05-01').configuration.ingress.fqdn)]"
        }

    def test_daemon_name(self, template):
        assert template["outputs"]["daemonName"]["value"] == "[format('{0}-daemon', parameters('namePrefix'))]"


class TestExpressionTranslation:
    """Tests for to_arm_expression() and to_arm_value()."""

    def test_quotes_are_doubled(self, wired_descriptor):
        assert to_arm_expression("it's ${{ parameters.namePrefix }}", wired_descriptor) == (
            "format('it''s {0}', parameters('namePrefix'))"
        )

    def test_braces_are_escaped(self, wired_descriptor):
        assert to_arm_expression("{x}-${{ parameters.namePrefix }}", wired_descriptor) == (
            "format('{{x}}-{0}', parameters('namePrefix'))"
        )

    def test_leading_bracket_literal(self, wired_descriptor):
        assert to_arm_value("[not an expression]", wired_descriptor) == "[[not an expression]"

    def test_resource_name_reference(self, wired_descriptor):
        assert to_arm_value("${{ resources.webApp.name }}", wired_descriptor) == (
            "[format('{0}-api', parameters('namePrefix'))]"
        )

    def test_resource_id_of_child(self, wired_descriptor):
        assert arm_resource_id(wired_descriptor, "cosmosDatabase") == (
            f"resourceId('Microsoft.DocumentDB/databaseAccounts/sqlDatabases', {ACCOUNT_NAME}, "
            "parameters('cosmosDatabaseId'))"
        )


class TestParametersFile:
    """Tests for render_parameters_file()."""

    def test_secure_values_are_omitted(self, wired_descriptor, valid_values):
        document = render_parameters_file(wired_descriptor, {**valid_values, "namePrefix": "acme"})
        assert document["$schema"] == PARAMETERS_SCHEMA
        assert document["parameters"] == {
            "namePrefix": {"value": "acme"},
            "azureDevOpsOrgName": {"value": "contoso"},
        }
        text = json.dumps(document)
        assert WEB_PAT not in text
        assert DAEMON_PAT not in text
