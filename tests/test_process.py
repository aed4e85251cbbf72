"""
Tests for the process launcher.

subprocess is patched throughout; nothing is actually executed.
"""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from core.errors import ExternalToolError
from core.process import ProcessLauncher, ProcessResult


def _completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestProcessResult:
    def test_success(self):
        assert ProcessResult("imp", [], 0).success
        assert not ProcessResult("imp", [], 1).success

    def test_check_passes_on_zero(self):
        result = ProcessResult("imp", ["full=y"], 0)
        assert result.check() is result

    def test_check_passes_when_detached(self):
        ProcessResult("net", ["start", "svc"], None).check()

    def test_check_raises_with_context(self):
        result = ProcessResult("imp", ["full=y"], 3, stderr="IMP-00058: ORACLE error 1017 encountered")

        with pytest.raises(ExternalToolError) as exc_info:
            result.check()

        assert exc_info.value.exit_code == 3
        assert exc_info.value.command == "imp full=y"
        assert "IMP-00058" in exc_info.value.output
        assert "code 3" in str(exc_info.value)

    def test_to_dict_redacts(self):
        data = ProcessResult("imp", ["userid=smg/secret@db"], 0).to_dict()
        assert "secret" not in data["command"]


class TestProcessLauncher:
    @patch("core.process.subprocess.run")
    def test_run_passes_timeout_and_input(self, mock_run):
        mock_run.return_value = _completed(0, stdout="ok")
        launcher = ProcessLauncher(timeout=60)

        result = launcher.run("imp", ["full=y"], input_text="smg/pw@db\n")

        cmd = mock_run.call_args.args[0]
        kwargs = mock_run.call_args.kwargs
        assert cmd == ["imp", "full=y"]
        assert kwargs["timeout"] == 60
        assert kwargs["input"] == "smg/pw@db\n"
        assert result.exit_code == 0
        assert result.stdout == "ok"

    @patch("core.process.subprocess.run")
    def test_explicit_timeout_wins(self, mock_run):
        mock_run.return_value = _completed()
        ProcessLauncher(timeout=60).run("net", ["stop", "svc"], timeout=5)
        assert mock_run.call_args.kwargs["timeout"] == 5

    @patch("core.process.subprocess.run")
    def test_elevation_prefix(self, mock_run):
        mock_run.return_value = _completed()
        launcher = ProcessLauncher(elevation_prefix=["sudo", "-n"])

        launcher.run("net", ["stop", "svc"], elevated=True)
        assert mock_run.call_args.args[0] == ["sudo", "-n", "net", "stop", "svc"]

        launcher.run("net", ["stop", "svc"])
        assert mock_run.call_args.args[0] == ["net", "stop", "svc"]

    @patch("core.process.subprocess.run")
    def test_env_merged_with_environment(self, mock_run, monkeypatch):
        monkeypatch.setenv("EXISTING_VAR", "1")
        mock_run.return_value = _completed()

        ProcessLauncher().run("SmgUpgrade", [], env={"SMG_UPGRADE_PASSWORD": "pw"})

        env = mock_run.call_args.kwargs["env"]
        assert env["SMG_UPGRADE_PASSWORD"] == "pw"
        assert env["EXISTING_VAR"] == "1"

    @patch("core.process.subprocess.run")
    def test_non_zero_exit_returned_not_raised(self, mock_run):
        mock_run.return_value = _completed(2, stderr="boom")
        result = ProcessLauncher().run("imp", [])
        assert result.exit_code == 2
        assert result.stderr == "boom"

    @patch("core.process.subprocess.run")
    def test_timeout_raises(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd=["imp"], timeout=5)

        with pytest.raises(ExternalToolError, match="timed out after 5 seconds"):
            ProcessLauncher().run("imp", [], timeout=5)

    @patch("core.process.subprocess.run")
    def test_missing_executable_raises(self, mock_run):
        mock_run.side_effect = FileNotFoundError(2, "No such file or directory")

        with pytest.raises(ExternalToolError, match="Cannot start imp"):
            ProcessLauncher().run("imp", [])

    @patch("core.process.subprocess.Popen")
    def test_no_wait_detaches(self, mock_popen):
        mock_popen.return_value = MagicMock()

        result = ProcessLauncher().run("net", ["start", "svc"], wait=False)

        assert result.exit_code is None
        assert mock_popen.call_args.args[0] == ["net", "start", "svc"]

    def test_from_settings(self, settings):
        launcher = ProcessLauncher.from_settings(settings)
        assert launcher.timeout == settings.timeouts.process
        assert launcher.elevation_prefix == []
