"""
Tests for the click command line.
"""

import json

import pytest
from click.testing import CliRunner

from stackweave.cli import main
from stackweave.state import list_deployments


def _json(result):
    return json.loads(result.output.strip().splitlines()[-1])


@pytest.fixture
def runner(stackweave_home):
    return CliRunner()


class TestSynthCommand:
    def test_synth_json(self, runner):
        result = runner.invoke(main, ["--json", "synth", "--environment", "Staging"])

        assert result.exit_code == 0
        data = _json(result)
        assert data["valid"] is True
        assert data["outputs"][0] == "VPCId"

    def test_synth_human(self, runner):
        result = runner.invoke(main, ["synth"])

        assert result.exit_code == 0
        assert "stage 1:" in result.output


class TestDeployCommand:
    """Test deploy and the commands that inspect a deployment."""

    def test_deploy_lifecycle(self, runner):
        result = runner.invoke(main, ["--json", "deploy", "--db-password", "s3cret-pw", "--tag", "owner=ops"])

        assert result.exit_code == 0, result.output
        data = _json(result)
        deployment_id = data["deployment_id"]
        assert data["status"] == "deployed"
        assert data["failed_resource_id"] is None
        assert "RDSInstanceEndpoint" in data["outputs"]
        assert "s3cret-pw" not in result.output
        assert list_deployments() == [deployment_id]

        result = runner.invoke(main, ["--json", "status", deployment_id])
        assert result.exit_code == 0
        assert _json(result)["status"] == "deployed"

        result = runner.invoke(main, ["outputs", deployment_id])
        assert result.exit_code == 0
        assert "VPCId = vpc-" in result.output

        result = runner.invoke(main, ["--json", "list"])
        assert _json(result) == [deployment_id]

        result = runner.invoke(main, ["events", deployment_id])
        assert result.exit_code == 0
        assert "DONE" in result.output

        result = runner.invoke(main, ["--json", "destroy", deployment_id])
        assert result.exit_code == 0
        assert _json(result) == {"deployment_id": deployment_id, "status": "destroyed"}

    def test_password_from_environment(self, runner):
        result = runner.invoke(main, ["--json", "deploy"], env={"STACKWEAVE_DB_PASSWORD": "s3cret-pw"})

        assert result.exit_code == 0
        assert _json(result)["status"] == "deployed"

    def test_password_required(self, runner):
        result = runner.invoke(main, ["deploy"], env={"STACKWEAVE_DB_PASSWORD": None})

        assert result.exit_code == 2
        assert "--db-password" in result.output

    def test_bad_tag(self, runner):
        result = runner.invoke(main, ["--json", "deploy", "--db-password", "pw", "--tag", "oops"])

        assert result.exit_code == 2
        assert "Invalid tag format" in _json(result)["error"]

    def test_destroy_declined(self, runner):
        result = runner.invoke(main, ["destroy", "d-20260101-000000-abcd"], input="n\n")

        assert result.exit_code == 0
        assert "cancelled" in result.output


class TestMissingDeployment:
    @pytest.mark.parametrize("command", ["status", "outputs", "events"])
    def test_not_found(self, runner, command):
        result = runner.invoke(main, ["--json", command, "d-20260101-000000-zzzz"])

        assert result.exit_code == 2
        assert "not found" in _json(result)["error"]

    def test_destroy_not_found(self, runner):
        result = runner.invoke(main, ["--json", "destroy", "d-20260101-000000-zzzz"])

        assert result.exit_code == 2

    def test_malformed_id_is_not_found(self, runner):
        result = runner.invoke(main, ["--json", "status", "../../etc"])

        assert result.exit_code == 2

    def test_list_empty(self, runner):
        result = runner.invoke(main, ["list"])

        assert result.exit_code == 0
        assert "No deployments yet" in result.output
