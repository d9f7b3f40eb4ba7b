"""CLI tests using click's CliRunner.

The deployment pipeline, SSH and remote execution are patched where a
command would otherwise reach Azure or a host.
"""

import json
from unittest.mock import Mock, patch

import pytest
from click.testing import CliRunner

from stackgate import __version__
from stackgate.blueprint import INSTANCE
from stackgate.cli import main
from stackgate.convergence import ConvergenceRecord, TriggerDecision
from stackgate.deployment import ConvergenceOutcome
from stackgate.modules.prerequisites import PrerequisiteError
from stackgate.planner import ChangeAction, Plan, PlanError, ResourceChange
from stackgate.provisioner import ProvisioningError
from stackgate.remote_exec import RemoteExecError, RemoteResult
from stackgate.resources import ResourceState
from stackgate.state_store import StateRecord, StateStore
from stackgate.validation import ValidationReport


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def provisioned(desired_config):
    """State file with one instance and a convergence record."""
    instance = ResourceState(
        kind="instance",
        name="app_server",
        resource_id="/subscriptions/s/vm-1",
        attributes={"resource_group": "demo-rg"},
        outputs={"name": "demo-vm-abc123", "public_ip": "203.0.113.4"},
    )
    record = StateRecord(
        resources={INSTANCE: instance},
        convergence=ConvergenceRecord("/subscriptions/s/vm-1", "203.0.113.4", {}, "2026-01-01T00:00:00+00:00"),
    )
    StateStore(desired_config.state_dir).save(record)
    return record


def create_plan():
    return Plan([ResourceChange(INSTANCE, ChangeAction.CREATE)])


class TestMain:
    """Tests for the command group itself."""

    def test_help_lists_commands(self, runner):
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        for name in ("init", "plan", "apply", "destroy", "converge", "validate", "ssh", "output", "config"):
            assert name in result.output

    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output


class TestInit:
    def test_writes_template_and_exits_1(self, runner, tmp_path):
        path = tmp_path / "stackgate.toml"

        result = runner.invoke(main, ["init", "--config", str(path)])

        assert result.exit_code == 1
        assert path.exists()
        assert "Edit it" in result.output

    def test_validates_existing_config(self, runner, config_file, desired_config):
        result = runner.invoke(main, ["init", "--config", str(config_file)])

        assert result.exit_code == 0
        assert "Configuration is valid" in result.output
        assert desired_config.state_dir.is_dir()

    def test_invalid_config_reports_field(self, runner, config_file):
        config_file.write_text(config_file.read_text().replace('name = "demo"', 'name = "Demo!"'))

        result = runner.invoke(main, ["init", "--config", str(config_file)])

        assert result.exit_code == 1
        assert "Error: project.name" in result.output


class TestPlanAndApply:
    """Tests for plan and apply with a patched pipeline."""

    @patch("stackgate.commands.provisioning.DeploymentPipeline")
    def test_plan_detailed_exitcode(self, mock_pipeline, runner, config_file):
        mock_pipeline.return_value.plan.return_value = (create_plan(), ["instance will be created"])

        result = runner.invoke(main, ["plan", "--config", str(config_file), "--detailed-exitcode"])

        assert result.exit_code == 2
        assert "Plan: 1 to add, 0 to change, 0 to destroy." in result.output
        assert "Playbook will run: instance will be created" in result.output

    @patch("stackgate.commands.provisioning.DeploymentPipeline")
    def test_plan_no_changes(self, mock_pipeline, runner, config_file):
        mock_pipeline.return_value.plan.return_value = (Plan([]), [])

        result = runner.invoke(main, ["plan", "--config", str(config_file), "--detailed-exitcode"])

        assert result.exit_code == 0
        assert "No changes" in result.output

    @patch("stackgate.commands.provisioning.DeploymentPipeline")
    def test_apply_nothing_to_do(self, mock_pipeline, runner, config_file):
        mock_pipeline.return_value.plan.return_value = (Plan([]), [])

        result = runner.invoke(main, ["apply", "--config", str(config_file)])

        assert result.exit_code == 0
        mock_pipeline.return_value.apply.assert_not_called()

    @patch("stackgate.commands.provisioning.DeploymentPipeline")
    def test_apply_declined(self, mock_pipeline, runner, config_file):
        mock_pipeline.return_value.plan.return_value = (create_plan(), [])

        result = runner.invoke(main, ["apply", "--config", str(config_file)], input="n\n")

        assert result.exit_code == 1
        mock_pipeline.return_value.apply.assert_not_called()

    @patch("stackgate.commands.provisioning.DeploymentPipeline")
    def test_apply_auto_approve_passes_extra_vars(self, mock_pipeline, runner, config_file):
        pipeline = mock_pipeline.return_value
        pipeline.plan.return_value = (create_plan(), [])
        pipeline.apply.return_value = Mock(apply=Mock(changed=True, plan=create_plan()), convergence=None)

        result = runner.invoke(
            main,
            ["apply", "--config", str(config_file), "--auto-approve", "-e", "port=8080", "-e", "debug=true"],
        )

        assert result.exit_code == 0, result.output
        pipeline.apply.assert_called_once_with(
            converge=True, extra_vars={"port": 8080, "debug": True}, plan=pipeline.plan.return_value[0]
        )
        assert "Apply complete! Resources: 1 added" in result.output

    def test_bad_extra_var(self, runner, config_file):
        result = runner.invoke(main, ["apply", "--config", str(config_file), "-e", "novalue"])

        assert result.exit_code == 2
        assert "KEY=VALUE" in result.output

    @patch("stackgate.commands.provisioning.DeploymentPipeline")
    def test_provisioning_error_exits_1(self, mock_pipeline, runner, config_file):
        pipeline = mock_pipeline.return_value
        pipeline.plan.return_value = (create_plan(), [])
        pipeline.apply.side_effect = ProvisioningError(INSTANCE, "create", "SkuNotAvailable")

        result = runner.invoke(main, ["apply", "--config", str(config_file), "--auto-approve"])

        assert result.exit_code == 1
        assert "Error: create instance.app_server failed: SkuNotAvailable" in result.output

    @patch("stackgate.commands.provisioning.DeploymentPipeline")
    def test_replace_targets_instance(self, mock_pipeline, runner, config_file):
        pipeline = mock_pipeline.return_value
        replace = ResourceChange(INSTANCE, ChangeAction.REPLACE, forces_replacement=["requested"])
        pipeline.plan.return_value = (Plan([replace]), [])
        pipeline.apply.return_value = Mock(apply=Mock(changed=True, plan=create_plan()), convergence=None)

        result = runner.invoke(main, ["replace", "--config", str(config_file), "--auto-approve"])

        assert result.exit_code == 0, result.output
        pipeline.apply.assert_called_once_with(replace=(INSTANCE,), plan=pipeline.plan.return_value[0])

    @patch("stackgate.commands.provisioning.DeploymentPipeline")
    def test_stale_plan_exits_1(self, mock_pipeline, runner, config_file):
        pipeline = mock_pipeline.return_value
        pipeline.plan.return_value = (create_plan(), [])
        pipeline.apply.side_effect = PlanError("Plan is stale: infrastructure changed since it was shown.")

        result = runner.invoke(main, ["apply", "--config", str(config_file)], input="y\n")

        assert result.exit_code == 1
        assert "Error: Plan is stale" in result.output

    def test_missing_config(self, runner, tmp_path):
        result = runner.invoke(main, ["plan", "--config", str(tmp_path / "nope.toml")])

        assert result.exit_code == 1
        assert "Config file not found" in result.output


@patch("stackgate.commands.provisioning.wait_for_application")
@patch("stackgate.commands.provisioning.RemoteExecutor")
@patch("stackgate.commands.provisioning.DeploymentPipeline")
@patch("stackgate.commands.provisioning.PrerequisiteChecker")
class TestUp:
    """Tests for the guided up command."""

    @staticmethod
    def deployed(pipeline, record):
        pipeline.plan.return_value = (create_plan(), ["instance will be created"])
        pipeline.apply.return_value = Mock(
            apply=Mock(changed=True, plan=create_plan(), record=record), convergence=None
        )

    def test_missing_prerequisites_stop_before_config(
        self, mock_checker, mock_pipeline, mock_executor, mock_wait, runner, tmp_path
    ):
        mock_checker.require.side_effect = PrerequisiteError("Missing required tools: az")
        path = tmp_path / "stackgate.toml"

        result = runner.invoke(main, ["up", "--config", str(path)])

        assert result.exit_code == 1
        assert "Error: Missing required tools: az" in result.output
        assert not path.exists()
        mock_pipeline.assert_not_called()

    def test_writes_template_when_config_missing(
        self, mock_checker, mock_pipeline, mock_executor, mock_wait, runner, tmp_path
    ):
        path = tmp_path / "stackgate.toml"

        result = runner.invoke(main, ["up", "--config", str(path)])

        assert result.exit_code == 1
        assert path.exists()
        assert "stackgate up" in result.output
        mock_checker.require.assert_called_once_with()
        mock_pipeline.assert_not_called()

    def test_declined(self, mock_checker, mock_pipeline, mock_executor, mock_wait, runner, config_file, provisioned):
        self.deployed(mock_pipeline.return_value, provisioned)

        result = runner.invoke(main, ["up", "--config", str(config_file)], input="n\n")

        assert result.exit_code == 0
        assert "Deployment cancelled." in result.output
        mock_pipeline.return_value.apply.assert_not_called()
        mock_executor.execute_command.assert_not_called()

    def test_reports_access_and_docker(
        self, mock_checker, mock_pipeline, mock_executor, mock_wait, runner, config_file, provisioned
    ):
        pipeline = mock_pipeline.return_value
        self.deployed(pipeline, provisioned)
        mock_executor.execute_command.return_value = RemoteResult(
            "203.0.113.4", True, "Docker version 27.0.1\nDocker Compose version v2.29.0\n", "", 0
        )

        result = runner.invoke(main, ["up", "--config", str(config_file), "--yes"])

        assert result.exit_code == 0, result.output
        pipeline.apply.assert_called_once_with(plan=pipeline.plan.return_value[0])
        assert "Application URL: https://app.example.com" in result.output
        assert "azureuser@203.0.113.4" in result.output
        assert "Docker Compose version v2.29.0" in result.output
        ssh_config, command = mock_executor.execute_command.call_args[0]
        assert ssh_config.host == "203.0.113.4"
        assert command == "docker --version && docker compose version"
        mock_wait.assert_not_called()

    def test_unreachable_docker_check_only_warns(
        self, mock_checker, mock_pipeline, mock_executor, mock_wait, runner, config_file, provisioned, caplog
    ):
        self.deployed(mock_pipeline.return_value, provisioned)
        mock_executor.execute_command.side_effect = RemoteExecError("Connection refused")

        result = runner.invoke(main, ["up", "--config", str(config_file), "--yes"])

        assert result.exit_code == 0, result.output
        assert "Could not check Docker on the host: Connection refused" in caplog.text

    def test_verify_failure_only_warns(
        self, mock_checker, mock_pipeline, mock_executor, mock_wait, runner, config_file, provisioned, caplog
    ):
        self.deployed(mock_pipeline.return_value, provisioned)
        mock_executor.execute_command.return_value = RemoteResult("203.0.113.4", True, "Docker version 27.0.1\n", "", 0)
        mock_wait.return_value = False

        result = runner.invoke(main, ["up", "--config", str(config_file), "--yes", "--verify"])

        assert result.exit_code == 0, result.output
        mock_wait.assert_called_once_with("https://app.example.com")
        assert "Application is not responding yet" in caplog.text


class TestDestroy:
    def test_nothing_to_destroy(self, runner, config_file):
        result = runner.invoke(main, ["destroy", "--config", str(config_file)])

        assert result.exit_code == 0
        assert "Nothing to destroy." in result.output

    @patch("stackgate.commands.provisioning.DeploymentPipeline")
    def test_requires_typed_yes(self, mock_pipeline, runner, config_file, provisioned):
        result = runner.invoke(main, ["destroy", "--config", str(config_file)], input="y\n")

        assert result.exit_code == 0
        assert "Destroy cancelled." in result.output
        mock_pipeline.assert_not_called()

    @patch("stackgate.commands.provisioning.DeploymentPipeline")
    def test_destroys_after_confirmation(self, mock_pipeline, runner, config_file, provisioned):
        mock_pipeline.return_value.destroy.return_value = [INSTANCE]

        result = runner.invoke(main, ["destroy", "--config", str(config_file)], input="yes\n")

        assert result.exit_code == 0
        assert "1 resource(s) destroyed" in result.output
        assert mock_pipeline.call_args[1]["specs"] == []


class TestConverge:
    @patch("stackgate.commands.convergence.DeploymentPipeline")
    def test_force(self, mock_pipeline, runner, config_file):
        record = ConvergenceRecord("vm-1", "203.0.113.4")
        mock_pipeline.return_value.converge.return_value = ConvergenceOutcome(
            decision=TriggerDecision(True, ["forced"], record), probe=Mock(), playbook=Mock()
        )

        result = runner.invoke(main, ["converge", "--config", str(config_file), "--force"])

        assert result.exit_code == 0
        assert "Converged 203.0.113.4: forced" in result.output
        mock_pipeline.return_value.converge.assert_called_once_with(force=True, extra_vars={})

    @patch("stackgate.commands.convergence.DeploymentPipeline")
    def test_up_to_date(self, mock_pipeline, runner, config_file):
        mock_pipeline.return_value.converge.return_value = ConvergenceOutcome(
            decision=TriggerDecision(False, [], ConvergenceRecord("vm-1", "203.0.113.4"))
        )

        result = runner.invoke(main, ["converge", "--config", str(config_file)])

        assert "up to date" in result.output


class TestOutputAndAccess:
    """Tests for output, ssh, logs and status."""

    def test_output_json(self, runner, config_file, provisioned):
        result = runner.invoke(main, ["output", "--config", str(config_file), "--json"])

        assert result.exit_code == 0
        outputs = json.loads(result.output)
        assert outputs["instance_public_ip"] == "203.0.113.4"
        assert outputs["application_url"] == "https://app.example.com"
        assert outputs["ssh_command"].endswith("azureuser@203.0.113.4")
        assert outputs["last_converged_at"] == "2026-01-01T00:00:00+00:00"

    def test_output_without_state(self, runner, config_file):
        result = runner.invoke(main, ["output", "--config", str(config_file)])

        assert "No state" in result.output

    @patch("stackgate.commands.connectivity.SSHConnector.connect", return_value=0)
    def test_ssh_passes_remote_command(self, mock_connect, runner, config_file, provisioned):
        result = runner.invoke(main, ["ssh", "--config", str(config_file), "--", "docker", "ps"])

        assert result.exit_code == 0
        ssh_config = mock_connect.call_args[0][0]
        assert ssh_config.host == "203.0.113.4"
        assert mock_connect.call_args[1]["remote_command"] == "docker ps"

    def test_ssh_without_instance(self, runner, config_file):
        result = runner.invoke(main, ["ssh", "--config", str(config_file)])

        assert result.exit_code == 1
        assert "stackgate apply" in result.output

    @patch("stackgate.commands.connectivity.RemoteExecutor.execute_command")
    def test_logs(self, mock_exec, runner, config_file, provisioned):
        mock_exec.return_value = RemoteResult("203.0.113.4", True, "web-1 | started\n", "", 0)

        result = runner.invoke(main, ["logs", "--config", str(config_file), "-n", "10"])

        assert result.exit_code == 0
        assert "web-1 | started" in result.output
        assert mock_exec.call_args[0][1] == "cd ~/app && docker compose logs --tail=10"

    @patch("stackgate.commands.connectivity.RemoteExecutor.execute_command")
    def test_status_failure(self, mock_exec, runner, config_file, provisioned):
        mock_exec.return_value = RemoteResult("203.0.113.4", False, "", "no configuration file provided", 1)

        result = runner.invoke(main, ["status", "--config", str(config_file)])

        assert result.exit_code == 1
        assert "no configuration file provided" in result.output


class TestValidateCommand:
    @patch("stackgate.commands.validate.Validator")
    def test_exit_code_follows_report(self, mock_validator, runner, config_file, provisioned):
        report = ValidationReport()
        report.add("State", True, "1 resource(s)")
        report.add("SSH", False, "timed out")
        mock_validator.return_value.run.return_value = report

        result = runner.invoke(main, ["validate", "--config", str(config_file), "--skip-drift"])

        assert result.exit_code == 1
        assert "Passed: 1" in result.output
        assert mock_validator.call_args[1]["idempotency_check"] is None

    @patch("stackgate.commands.validate.Validator")
    def test_all_passed(self, mock_validator, runner, config_file, provisioned):
        report = ValidationReport()
        report.add("State", True)
        mock_validator.return_value.run.return_value = report

        result = runner.invoke(main, ["validate", "--config", str(config_file), "--skip-drift"])

        assert result.exit_code == 0
        assert "All checks passed!" in result.output


class TestMaintenance:
    """Tests for check-prereqs, backup, clean and config."""

    @patch("stackgate.modules.prerequisites.shutil.which", return_value=None)
    def test_check_prereqs_missing(self, _mock_which, runner, config_file):
        result = runner.invoke(main, ["check-prereqs", "--config", str(config_file)])

        assert result.exit_code == 1
        assert "Missing required tools" in result.output

    def test_backup_and_clean(self, runner, config_file, provisioned, project_dir):
        result = runner.invoke(main, ["backup", "--config", str(config_file)])
        assert result.exit_code == 0
        assert len(list((project_dir / "backups").glob("state-*.json"))) == 1

        result = runner.invoke(main, ["clean", "--config", str(config_file), "--backups"])
        assert result.exit_code == 0
        assert "Cleaned 1 file(s)." in result.output
        assert not list((project_dir / "backups").glob("state-*.json"))

    def test_config_set_and_show(self, runner, config_file):
        args = ["config", "set", "--config", str(config_file), "cloud.machine_class", "Standard_B2ms"]
        result = runner.invoke(main, args)
        assert result.exit_code == 0, result.output

        result = runner.invoke(main, ["config", "show", "--config", str(config_file)])
        assert 'machine_class = "Standard_B2ms"' in result.output

    def test_config_set_rejects_unknown_key(self, runner, config_file):
        result = runner.invoke(main, ["config", "set", "--config", str(config_file), "cloud.size", "big"])

        assert result.exit_code == 1
        assert "Error: cloud.size: unknown option" in result.output

    def test_config_set_on_broken_file(self, runner, config_file):
        config_file.write_text("[cloud\n")

        result = runner.invoke(main, ["config", "set", "--config", str(config_file), "cloud.machine_class", "x"])

        assert result.exit_code == 1
        assert "Error: Failed to parse" in result.output
