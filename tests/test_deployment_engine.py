"""
Tests for the deployment engine: planning, secrets, what-if and CLI preview.
"""

import copy
import logging

import pytest

from deployment_engine import DeploymentEngine, plan_state, what_if
from descriptor import build_flowcy_descriptor
from exceptions import DescriptorValidationError, ParameterValidationError
from expressions import MASK
from yaml_renderer import render_plan_yaml

from conftest import DAEMON_PAT, LOCATION, RESOURCE_GROUP, SUBSCRIPTION_ID, WEB_PAT

EXPECTED_ORDER = [
    "logAnalytics",
    "containerAppsEnvironment",
    "cosmosAccount",
    "cosmosDatabase",
    "webApp",
    "daemonApp",
]


def container(plan, resource_id):
    return plan.resource(resource_id).properties["template"]["containers"][0]


def secrets(plan, resource_id):
    return {s["name"]: s["value"] for s in plan.resource(resource_id).properties["configuration"]["secrets"]}


class TestPrepare:
    """Tests for DeploymentEngine.prepare()."""

    def test_state_and_order(self, engine, valid_values):
        plan = engine.prepare(valid_values)
        assert engine.state == "PLANNED"
        assert engine.plan is plan
        assert plan.order() == EXPECTED_ORDER

    def test_names(self, plan):
        names = {r.id: r.name for r in plan.resources}
        assert names == {
            "logAnalytics": "flowcy-logs",
            "containerAppsEnvironment": "flowcy-env",
            "cosmosAccount": "flowcy-cosmos",
            "cosmosDatabase": "flowcy",
            "webApp": "flowcy-api",
            "daemonApp": "flowcy-daemon",
        }

    def test_name_prefix(self, engine, valid_values):
        plan = engine.prepare({**valid_values, "namePrefix": "acme"})
        assert plan.resource("webApp").name == "acme-api"
        assert plan.resource("daemonApp").name == "acme-daemon"

    def test_resource_ids(self, plan):
        prefix = f"/subscriptions/{SUBSCRIPTION_ID}/resourceGroups/{RESOURCE_GROUP}/providers"
        assert plan.resource("cosmosDatabase").resource_id == (
            f"{prefix}/Microsoft.DocumentDB/databaseAccounts/flowcy-cosmos/sqlDatabases/flowcy"
        )
        assert plan.resource("webApp").properties["managedEnvironmentId"] == (
            f"{prefix}/Microsoft.App/managedEnvironments/flowcy-env"
        )

    def test_location_defaults_to_resource_group(self, plan):
        assert plan.parameters["location"] == LOCATION
        assert plan.resource("webApp").location == LOCATION
        assert plan.resource("cosmosAccount").properties["locations"][0]["locationName"] == LOCATION
        assert plan.resource("cosmosDatabase").location is None

    def test_explicit_location(self, engine, valid_values):
        plan = engine.prepare({**valid_values, "location": "eastus"})
        assert {r.location for r in plan.resources if r.location} == {"eastus"}

    def test_cpu_is_a_number(self, plan):
        web = container(plan, "webApp")["resources"]
        daemon = container(plan, "daemonApp")["resources"]
        assert web == {"cpu": 0.5, "memory": "1Gi"}
        assert isinstance(web["cpu"], float)
        assert daemon == {"cpu": 0.25, "memory": "0.5Gi"}

    def test_integers_stay_integers(self, engine, valid_values):
        plan = engine.prepare({**valid_values, "cosmosThroughput": "800"})
        assert plan.resource("cosmosDatabase").properties["options"]["throughput"] == 800
        assert plan.resource("webApp").properties["configuration"]["ingress"]["targetPort"] == 80
        assert plan.resource("logAnalytics").properties["retentionInDays"] == 30

    def test_connection_string_bound_to_declared_account(self, engine, valid_values):
        plan = engine.prepare({**valid_values, "namePrefix": "acme"})
        assert plan.resource("cosmosAccount").name == "acme-cosmos"
        for app in ("webApp", "daemonApp"):
            assert secrets(plan, app)["cosmos-connection-string"] == "<acme-cosmos.connectionString>"

    def test_env_contract(self, plan):
        env = {e["name"]: e for e in container(plan, "daemonApp")["env"]}
        assert env["AZURE_COSMOS_DATABASEID"]["value"] == "flowcy"
        assert env["AZURE_DEVOPS_ORGNAME"]["value"] == "contoso"
        assert env["AZURE_DEVOPS_PAT"] == {"name": "AZURE_DEVOPS_PAT", "secretRef": "azure-devops-pat"}

    def test_auto_wired_dependencies(self, plan):
        assert plan.resource("webApp").depends_on == ["containerAppsEnvironment", "cosmosDatabase", "cosmosAccount"]

    def test_outputs(self, plan):
        assert plan.outputs == {
            "apiEndpoint": "https://<flowcy-api.fqdn>",
            "daemonName": "flowcy-daemon",
            "cosmosEndpoint": "<flowcy-cosmos.documentEndpoint>",
        }

    def test_idempotent(self, engine, valid_values):
        first = engine.prepare(valid_values)
        second = engine.prepare(valid_values)
        third = DeploymentEngine(
            subscription_id=SUBSCRIPTION_ID,
            resource_group=RESOURCE_GROUP,
            resource_group_location=LOCATION
        ).prepare(valid_values)
        assert first == second == third

    def test_resource_ids_are_unique(self, plan):
        ids = [r.resource_id for r in plan.resources]
        assert len(ids) == len(set(ids))

    def test_descriptor_argument_is_copied(self, valid_values):
        descriptor = build_flowcy_descriptor()
        before = copy.deepcopy(descriptor)
        DeploymentEngine(descriptor=descriptor).prepare(valid_values)
        assert descriptor == before


class TestRejection:
    """Invalid input never reaches planning."""

    def test_missing_parameters(self, engine):
        with pytest.raises(ParameterValidationError) as exc_info:
            engine.prepare({"azureDevOpsOrgName": "contoso"})

        assert {f.subject for f in exc_info.value.failures} == {"webPat", "daemonPat"}
        assert engine.state == "REJECTED"
        assert engine.plan is None

    def test_rejection_clears_previous_plan(self, engine, valid_values):
        engine.prepare(valid_values)
        with pytest.raises(ParameterValidationError):
            engine.prepare({**valid_values, "namePrefix": "X"})
        assert engine.plan is None

    def test_coercion_failure_reported_once(self, engine, valid_values):
        _, failures = engine.check_parameters({**valid_values, "cosmosThroughput": "many"})
        assert [f.subject for f in failures] == ["cosmosThroughput"]

    def test_invalid_resource_name(self, engine, valid_values):
        with pytest.raises(ParameterValidationError) as exc_info:
            engine.prepare({**valid_values, "namePrefix": "ab--cd"})
        assert {f.subject for f in exc_info.value.failures} == {"webApp", "daemonApp"}

    def test_broken_descriptor(self, valid_values):
        descriptor = build_flowcy_descriptor()
        descriptor.resources["logAnalytics"].dependencies.append("daemonApp")
        engine = DeploymentEngine(descriptor=descriptor)

        with pytest.raises(DescriptorValidationError, match="Dependency cycle detected"):
            engine.prepare(valid_values)
        assert engine.state == "REJECTED"


class TestSecrets:
    """Tokens never appear in any rendered artefact."""

    def test_plan_masks_tokens(self, plan):
        assert plan.parameters["webPat"] == MASK
        assert plan.parameters["daemonPat"] == MASK
        assert secrets(plan, "webApp")["azure-devops-pat"] == MASK

    def test_yaml_preview(self, plan):
        text = render_plan_yaml(plan)
        assert WEB_PAT not in text
        assert DAEMON_PAT not in text
        assert MASK in text

    def test_template(self, engine):
        text = str(engine.render_template())
        assert WEB_PAT not in text

    def test_logs(self, engine, valid_values, caplog):
        caplog.set_level(logging.DEBUG)
        engine.prepare(valid_values)
        assert "Planned 6 resource(s)" in caplog.text
        assert WEB_PAT not in caplog.text
        assert DAEMON_PAT not in caplog.text

    def test_rejection_message(self, engine, valid_values):
        with pytest.raises(ParameterValidationError) as exc_info:
            engine.prepare({**valid_values, "cosmosThroughput": 1})
        assert WEB_PAT not in str(exc_info.value)


class TestRendering:

    def test_render_plan(self, engine, valid_values):
        text = engine.render_plan(valid_values)
        assert text.startswith("deployment:\n")
        assert "flowcy-daemon" in text

    def test_render_parameters_file(self, engine, valid_values):
        document = engine.render_parameters_file({**valid_values, "cosmosThroughput": "1000"})
        assert document["parameters"]["cosmosThroughput"] == {"value": 1000}
        assert "webPat" not in document["parameters"]

    def test_parameters_file_is_validated(self, engine, valid_values):
        with pytest.raises(ParameterValidationError) as exc_info:
            engine.render_parameters_file({
                **valid_values, "cosmosThroughput": "5", "namePrefix": "BAD_prefix!", "bogus": "x"
            })
        assert {f.subject for f in exc_info.value.failures} == {"cosmosThroughput", "namePrefix", "bogus"}

    def test_parameters_file_without_tokens(self, engine):
        document = engine.render_parameters_file({"azureDevOpsOrgName": "contoso"})
        assert document["parameters"] == {"azureDevOpsOrgName": {"value": "contoso"}}

    def test_parameters_file_still_needs_plain_required_values(self, engine):
        with pytest.raises(ParameterValidationError) as exc_info:
            engine.render_parameters_file({})
        assert [f.subject for f in exc_info.value.failures] == ["azureDevOpsOrgName"]

    def test_render_template_wires_dependencies(self, engine):
        template = engine.render_template()
        assert len(template["resources"][5]["dependsOn"]) == 3


class TestCliCommand:
    """Tests for build_cli_command()."""

    def test_masked_by_default(self, engine, valid_values):
        assert engine.build_cli_command(valid_values) == [
            "az", "deployment", "group", "create",
            "--resource-group", RESOURCE_GROUP,
            "--template-file", "azuredeploy.json",
            "--parameters",
            "azureDevOpsOrgName=contoso",
            f"webPat={MASK}",
            f"daemonPat={MASK}",
        ]

    def test_unmasked_on_request(self, engine, valid_values):
        command = engine.build_cli_command(valid_values, mask_secrets=False)
        assert f"webPat={WEB_PAT}" in command

    def test_declaration_order_and_overrides(self, engine):
        command = engine.build_cli_command(
            {"cosmosThroughput": 800, "namePrefix": "acme"},
            resource_group="other-rg",
            template_file="main.json"
        )
        assert command[4:8] == ["--resource-group", "other-rg", "--template-file", "main.json"]
        assert command[9:] == ["namePrefix=acme", "cosmosThroughput=800"]

    def test_no_values(self, engine):
        assert "--parameters" not in engine.build_cli_command({})

    def test_formatted_command_is_shell_safe(self, engine, valid_values):
        text = engine.format_cli_command(valid_values)
        assert text.startswith("az deployment group create")
        assert WEB_PAT not in text


class TestWhatIf:
    """Tests for plan_state() and what_if()."""

    def test_everything_is_created_on_empty_group(self, plan):
        assert {c["changeType"] for c in what_if(plan, {})} == {"Create"}

    def test_reapplying_changes_nothing(self, engine, valid_values):
        state = plan_state(engine.prepare(valid_values))
        changes = what_if(engine.prepare(valid_values), state)
        assert len(changes) == 6
        assert {c["changeType"] for c in changes} == {"NoChange"}

    def test_changed_throughput_modifies_database_only(self, engine, valid_values):
        state = plan_state(engine.prepare(valid_values))
        changes = what_if(engine.prepare({**valid_values, "cosmosThroughput": 800}), state)
        modified = [c["id"] for c in changes if c["changeType"] == "Modify"]
        assert modified == ["cosmosDatabase"]

    def test_unknown_existing_resources_are_ignored(self, plan):
        state = plan_state(plan)
        state["/subscriptions/x/resourceGroups/y/providers/Microsoft.Storage/storageAccounts/z"] = {}
        changes = what_if(plan, state)
        assert changes[-1]["changeType"] == "Ignore"
        assert changes[-1]["id"] is None

    def test_rotated_token_modifies_its_app_only(self, engine, valid_values):
        state = plan_state(engine.prepare(valid_values))
        changes = what_if(engine.prepare({**valid_values, "webPat": "rotated-web-token"}), state)
        by_id = {c["id"]: c["changeType"] for c in changes}
        assert by_id.pop("webApp") == "Modify"
        assert set(by_id.values()) == {"NoChange"}
        assert len(by_id) == 5

    def test_state_never_holds_tokens(self, plan):
        text = str(plan_state(plan))
        assert WEB_PAT not in text
        assert DAEMON_PAT not in text

    def test_digest_only_on_token_consumers(self, plan):
        digests = {r.id: r.secrets_digest for r in plan.resources}
        assert digests["webApp"] and digests["daemonApp"]
        assert digests["webApp"] != digests["daemonApp"]
        assert digests["cosmosAccount"] is None
