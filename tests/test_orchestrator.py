import json

import pytest

from hub_spoke import orchestrator
from hub_spoke.common import ConfigError, PreconditionError
from hub_spoke.orchestrator import run_steps


@pytest.fixture
def steps(monkeypatch):
    calls = []

    def make(name, fail=False):
        def step(cfg, state):
            calls.append(name)
            if fail:
                raise PreconditionError(f"{name} broke")
            state["details"] = {"ran": name}
        return step

    for name in ("identity", "credentials", "deploy", "verify"):
        monkeypatch.setitem(orchestrator.PIPELINE_STEPS, name, make(name))
    return calls, make, monkeypatch


def test_all_steps_succeed(cfg, steps):
    calls, _, _ = steps
    assert run_steps(cfg) is True
    assert calls == ["identity", "credentials", "deploy", "verify"]

    status = json.loads(open(cfg.status_file).read())
    assert [s["status"] for s in status["steps"]] == ["success"] * 4
    assert status["steps"][2]["details"] == {"ran": "deploy"}


def test_failure_stops_pipeline(cfg, steps):
    calls, make, monkeypatch = steps
    monkeypatch.setitem(orchestrator.PIPELINE_STEPS, "credentials", make("credentials", fail=True))
    assert run_steps(cfg) is False
    assert calls == ["identity", "credentials"]

    status = json.loads(open(cfg.status_file).read())
    assert [s["status"] for s in status["steps"]] == ["success", "failed"]
    assert status["steps"][1]["error"] == "credentials broke"


def test_selected_steps(cfg, steps):
    calls, _, _ = steps
    assert run_steps(cfg, ["verify"], state={"api_client": object()})
    assert calls == ["verify"]


def test_unknown_step(cfg, steps):
    with pytest.raises(ConfigError, match="bogus"):
        run_steps(cfg, ["deploy", "bogus"])


def test_dry_run_executes_nothing(cfg, steps):
    calls, _, _ = steps
    assert run_steps(cfg, dry_run=True)
    assert calls == []


def test_verify_needs_credentials_first(cfg):
    with pytest.raises(ConfigError):
        orchestrator.step_verify(cfg, {})
