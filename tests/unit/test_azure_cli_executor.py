"""Tests for azure_cli_executor module.

Tests the run_az_command helper that wraps subprocess.run with retry logic
for Azure CLI calls, and the JSON / not-found helpers built on it.
"""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from stackgate.azure_cli_executor import is_not_found, run_az_command, run_az_json


class TestRunAzCommand:
    """Test run_az_command helper function."""

    @patch("stackgate.azure_cli_executor.subprocess.run")
    def test_success_returns_completed_process(self, mock_run: MagicMock) -> None:
        """Successful az command returns CompletedProcess."""
        mock_run.return_value = subprocess.CompletedProcess(
            args=["az", "group", "list"], returncode=0, stdout='["rg1"]', stderr=""
        )

        result = run_az_command(["az", "group", "list"])

        assert result.returncode == 0
        assert result.stdout == '["rg1"]'
        mock_run.assert_called_once()

    @patch("stackgate.azure_cli_executor.subprocess.run")
    def test_passes_default_kwargs(self, mock_run: MagicMock) -> None:
        """Verifies default capture_output, text, check, timeout are passed."""
        mock_run.return_value = subprocess.CompletedProcess(
            args=["az", "account", "show"], returncode=0, stdout="{}", stderr=""
        )

        run_az_command(["az", "account", "show"])

        _, kwargs = mock_run.call_args
        assert kwargs["capture_output"] is True
        assert kwargs["text"] is True
        assert kwargs["check"] is True
        assert kwargs["timeout"] == 60

    @patch("stackgate.azure_cli_executor.subprocess.run")
    def test_retries_on_called_process_error(self, mock_run: MagicMock) -> None:
        """Retries on CalledProcessError (transient Azure failure)."""
        mock_run.side_effect = [
            subprocess.CalledProcessError(1, "az", stderr="TooManyRequests"),
            subprocess.CompletedProcess(args=["az"], returncode=0, stdout="{}", stderr=""),
        ]

        result = run_az_command(["az", "vm", "show"])

        assert result.returncode == 0
        assert mock_run.call_count == 2

    @patch("stackgate.azure_cli_executor.subprocess.run")
    def test_raises_after_max_attempts(self, mock_run: MagicMock) -> None:
        """Raises the last error once attempts are exhausted."""
        mock_run.side_effect = subprocess.CalledProcessError(1, "az", stderr="InternalServerError")

        with pytest.raises(subprocess.CalledProcessError):
            run_az_command(["az", "vm", "show"], max_attempts=2)

        assert mock_run.call_count == 2

    @patch("stackgate.azure_cli_executor.subprocess.run")
    def test_check_false_does_not_retry(self, mock_run: MagicMock) -> None:
        """A non-zero exit with check=False is returned, not retried."""
        mock_run.return_value = subprocess.CompletedProcess(
            args=["az"], returncode=3, stdout="", stderr="ResourceNotFound"
        )

        result = run_az_command(["az", "vm", "show"], check=False)

        assert result.returncode == 3
        mock_run.assert_called_once()

    @patch("stackgate.azure_cli_executor.subprocess.run")
    def test_file_not_found_is_not_retried(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = FileNotFoundError("az")

        with pytest.raises(FileNotFoundError):
            run_az_command(["az", "version"])

        mock_run.assert_called_once()


class TestRunAzJson:
    @patch("stackgate.azure_cli_executor.subprocess.run")
    def test_adds_output_flag_and_parses(self, mock_run: MagicMock) -> None:
        mock_run.return_value = subprocess.CompletedProcess(
            args=["az"], returncode=0, stdout='{"id": "rg-id"}\n', stderr=""
        )

        assert run_az_json(["az", "group", "create", "--name", "rg"]) == {"id": "rg-id"}
        assert mock_run.call_args[0][0][-2:] == ["--output", "json"]

    @patch("stackgate.azure_cli_executor.subprocess.run")
    def test_empty_output_is_none(self, mock_run: MagicMock) -> None:
        mock_run.return_value = subprocess.CompletedProcess(args=["az"], returncode=0, stdout="", stderr="")

        assert run_az_json(["az", "tag", "update"]) is None


class TestIsNotFound:
    @pytest.mark.parametrize(
        "stderr",
        [
            "ERROR: (ResourceNotFound) The Resource 'x' was not found.",
            "(ResourceGroupNotFound) Resource group 'rg' could not be found.",
        ],
    )
    def test_not_found_messages(self, stderr: str) -> None:
        assert is_not_found(stderr)

    @pytest.mark.parametrize("stderr", ["", None, "AuthorizationFailed"])
    def test_other_messages(self, stderr) -> None:
        assert not is_not_found(stderr)
