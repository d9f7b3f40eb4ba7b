"""Unit tests for subprocess_helper.

These run real, harmless commands through the current interpreter.
"""

import sys

from stackgate.modules.subprocess_helper import SubprocessResult, safe_run


class TestSafeRun:
    """Tests for safe_run."""

    def test_captures_both_streams(self):
        result = safe_run(
            [sys.executable, "-c", "import sys; print('out'); print('err', file=sys.stderr)"],
        )

        assert result.returncode == 0
        assert result.stdout.strip() == "out"
        assert result.stderr.strip() == "err"
        assert not result.timed_out

    def test_large_output_does_not_block(self):
        result = safe_run([sys.executable, "-c", "print('x' * 1000000)"], timeout=30)

        assert result.returncode == 0
        assert len(result.stdout.strip()) == 1000000

    def test_timeout_terminates_process(self):
        result = safe_run([sys.executable, "-c", "import time; time.sleep(30)"], timeout=0.5)

        assert result.timed_out
        assert result.returncode != 0

    def test_env_is_merged(self):
        result = safe_run(
            [sys.executable, "-c", "import os; print(os.environ['STACKGATE_X'], 'PATH' in os.environ)"],
            env={"STACKGATE_X": "42"},
        )

        assert result.stdout.split() == ["42", "True"]

    def test_missing_command(self):
        result = safe_run(["stackgate-no-such-binary-xyz"])

        assert result.returncode == 127
        assert "Command not found" in result.stderr


class TestSubprocessResult:
    def test_output_and_tail(self):
        result = SubprocessResult(returncode=1, stdout="a\nb\n", stderr="c\n", timed_out=False)

        assert result.output == "a\nb\nc\n"
        assert result.tail(2) == "b\nc"
