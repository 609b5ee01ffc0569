import json
import logging
import subprocess

import pytest

from hub_spoke import common
from hub_spoke.common import (
    CommandError,
    PreconditionError,
    StepRunner,
    StructuredFormatter,
    confirm,
    run_cmd,
    write_status,
)


def _completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(["x"], returncode, stdout=stdout, stderr=stderr)


def test_run_cmd_returns_output(monkeypatch):
    monkeypatch.setattr(common.subprocess, "run", lambda *a, **k: _completed(stdout="ok\n"))
    result = run_cmd(["az", "version"])
    assert result.returncode == 0
    assert result.stdout == "ok\n"
    assert result.command == "az version"


def test_run_cmd_raises_on_failure(monkeypatch):
    monkeypatch.setattr(common.subprocess, "run", lambda *a, **k: _completed(3, stderr="boom"))
    with pytest.raises(CommandError) as excinfo:
        run_cmd(["az", "aks", "show"])
    assert excinfo.value.returncode == 3
    assert "boom" in str(excinfo.value)


def test_run_cmd_no_check_keeps_exit_code(monkeypatch):
    monkeypatch.setattr(common.subprocess, "run", lambda *a, **k: _completed(1))
    assert run_cmd(["kubectl", "get", "ns"], check=False).returncode == 1


def test_run_cmd_missing_tool(monkeypatch):
    def missing(*args, **kwargs):
        raise FileNotFoundError("kubelogin")

    monkeypatch.setattr(common.subprocess, "run", missing)
    with pytest.raises(PreconditionError, match="kubelogin is not installed"):
        run_cmd(["kubelogin", "--version"])


def test_run_cmd_timeout(monkeypatch):
    def slow(*args, **kwargs):
        raise subprocess.TimeoutExpired(cmd="terraform", timeout=1)

    monkeypatch.setattr(common.subprocess, "run", slow)
    with pytest.raises(CommandError) as excinfo:
        run_cmd(["terraform", "apply"], timeout=1)
    assert excinfo.value.returncode == -1


def test_command_error_truncates_stderr():
    err = CommandError("az", 1, "x" * 2000)
    assert len(str(err)) < 600


def test_ensure_command(monkeypatch):
    monkeypatch.setattr(common.shutil, "which", lambda name: None)
    with pytest.raises(PreconditionError):
        common.ensure_command("terraform")


@pytest.mark.parametrize("reply,expected", [("y", True), ("YES", True), ("n", False), ("", False)])
def test_confirm(monkeypatch, reply, expected):
    monkeypatch.setattr("builtins.input", lambda prompt: reply)
    assert confirm("Delete?") is expected


def test_confirm_assume_yes_skips_prompt(monkeypatch):
    def never(prompt):
        raise AssertionError("prompted")

    monkeypatch.setattr("builtins.input", never)
    assert confirm("Delete?", assume_yes=True) is True


def test_confirm_eof_is_no(monkeypatch):
    def eof(prompt):
        raise EOFError

    monkeypatch.setattr("builtins.input", eof)
    assert confirm("Delete?") is False


def test_step_runner_success_records_details():
    with StepRunner("credentials") as step:
        step.details["kubeconfig"] = "/tmp/kc"
    assert step.status.status == "success"
    assert step.status.details == {"kubeconfig": "/tmp/kc"}


def test_step_runner_failure_propagates():
    runner = StepRunner("deploy")
    with pytest.raises(RuntimeError):
        with runner:
            raise RuntimeError("apply failed")
    assert runner.status.status == "failed"
    assert runner.status.error == "apply failed"


def test_write_status(tmp_path):
    status_file = tmp_path / "status.json"
    with StepRunner("verify") as step:
        pass
    write_status([step.status], status_file)
    data = json.loads(status_file.read_text())
    assert data["steps"][0]["step_name"] == "verify"
    assert data["steps"][0]["status"] == "success"


def test_structured_formatter_includes_fields():
    record = logging.LogRecord("hub-spoke", logging.INFO, __file__, 1, "applied %s", ("ns",), None)
    record.fields = {"cluster": "spoke-dev"}
    entry = json.loads(StructuredFormatter().format(record))
    assert entry["message"] == "applied ns"
    assert entry["level"] == "INFO"
    assert entry["cluster"] == "spoke-dev"
