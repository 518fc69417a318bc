"""
Tests for the command line entry point.
"""

import json
import logging

import pytest

from log_setup import LOGGER_NAME
from main import main

from conftest import WEB_PAT

VALUE_ARGS = ["azureDevOpsOrgName=contoso", f"webPat={WEB_PAT}", "daemonPat=daemon-token"]


@pytest.fixture(autouse=True)
def detach_console_handler():
    # main() attaches a handler bound to the captured stderr of one test
    root = logging.getLogger()
    previous_level = root.level
    yield
    root.setLevel(previous_level)
    for handler in list(root.handlers):
        if getattr(handler, "name", None) == LOGGER_NAME:
            root.removeHandler(handler)


class TestCommands:

    def test_parameters(self, capsys):
        assert main(["parameters"]) == 0
        out = capsys.readouterr().out
        assert "namePrefix" in out
        assert "(required)" in out

    def test_render_to_file(self, tmp_path):
        template_path = tmp_path / "azuredeploy.json"
        params_path = tmp_path / "azuredeploy.parameters.json"

        code = main(["render", "-o", str(template_path), "--parameters-out", str(params_path)] + VALUE_ARGS)
        assert code == 0

        template = json.loads(template_path.read_text())
        assert len(template["resources"]) == 6

        parameters = json.loads(params_path.read_text())["parameters"]
        assert parameters == {"azureDevOpsOrgName": {"value": "contoso"}}

    def test_validate_ok(self, capsys):
        assert main(["validate"] + VALUE_ARGS) == 0
        assert "valid" in capsys.readouterr().out

    def test_validate_rejects(self, capsys):
        assert main(["validate", "namePrefix=X"]) == 1
        out = capsys.readouterr().out
        assert "Deployment rejected" in out
        assert "azureDevOpsOrgName" in out

    def test_plan_json(self, capsys):
        assert main(["plan", "--format", "json", "--location", "eastus"] + VALUE_ARGS) == 0
        plan = json.loads(capsys.readouterr().out)
        assert plan["deployment"]["parameters"]["location"] == "eastus"
        assert plan["deployment"]["parameters"]["webPat"] == "*****"

    def test_plan_yaml(self, capsys):
        assert main(["plan"] + VALUE_ARGS) == 0
        out = capsys.readouterr().out
        assert out.startswith("deployment:")
        assert WEB_PAT not in out

    def test_plan_from_parameter_file(self, tmp_path, capsys):
        path = tmp_path / "values.json"
        path.write_text(json.dumps({"parameters": {"azureDevOpsOrgName": {"value": "contoso"}}}))

        code = main(["plan", "--format", "json", "-p", str(path), f"webPat={WEB_PAT}", "daemonPat=d"])
        assert code == 0
        assert "contoso" in capsys.readouterr().out

    def test_command_is_masked(self, capsys):
        assert main(["command", "--resource-group", "acme-rg"] + VALUE_ARGS) == 0
        out = capsys.readouterr().out
        assert out.startswith("az deployment group create --resource-group acme-rg")
        assert "*****" in out
        assert WEB_PAT not in out


class TestErrors:

    def test_render_refuses_invalid_values(self, tmp_path, capsys):
        template_path = tmp_path / "azuredeploy.json"
        params_path = tmp_path / "azuredeploy.parameters.json"

        code = main(["render", "-o", str(template_path), "--parameters-out", str(params_path),
                     "azureDevOpsOrgName=contoso", "cosmosThroughput=5"])
        assert code == 1
        assert "cosmosThroughput" in capsys.readouterr().err
        assert not template_path.exists()
        assert not params_path.exists()

    def test_plan_with_missing_values(self, capsys):
        assert main(["plan"]) == 1
        assert "Deployment parameters rejected" in capsys.readouterr().err

    def test_missing_parameter_file(self, capsys):
        assert main(["plan", "-p", "does-not-exist.json"]) == 1
        assert "Parameter file not found" in capsys.readouterr().err

    def test_malformed_pair(self, capsys):
        assert main(["validate", "namePrefix"]) == 1
        assert "Expected name=value" in capsys.readouterr().err
