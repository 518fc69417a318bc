"""
Shared test configuration and fixtures.

Source modules live flat in FlowcyDeploy/ and are put on the path by the
pytest `pythonpath` setting in pyproject.toml.
"""

import pytest

from dependency_resolver import auto_wire_dependencies
from descriptor import build_flowcy_descriptor
from deployment_engine import DeploymentEngine

WEB_PAT = "web-pat-0123456789abcdef"
DAEMON_PAT = "daemon-pat-fedcba9876543210"

SUBSCRIPTION_ID = "11111111-2222-3333-4444-555555555555"
RESOURCE_GROUP = "flowcy-test-rg"
LOCATION = "westus2"


@pytest.fixture
def valid_values():
    """The minimal parameter set: only the required values."""
    return {
        "azureDevOpsOrgName": "contoso",
        "webPat": WEB_PAT,
        "daemonPat": DAEMON_PAT,
    }


@pytest.fixture
def descriptor():
    """A fresh, un-wired Flowcy descriptor."""
    return build_flowcy_descriptor()


@pytest.fixture
def wired_descriptor():
    return auto_wire_dependencies(build_flowcy_descriptor())


@pytest.fixture
def engine():
    return DeploymentEngine(
        subscription_id=SUBSCRIPTION_ID,
        resource_group=RESOURCE_GROUP,
        resource_group_location=LOCATION
    )


@pytest.fixture
def plan(engine, valid_values):
    return engine.prepare(valid_values)
