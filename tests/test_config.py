import pytest

from hub_spoke.common import ConfigError
from hub_spoke.config import Config


def test_defaults():
    cfg = Config()
    assert cfg.hub_rg == "myorg-hub-rg"
    assert cfg.hub_identity_name == "myorg-hub-identity"
    assert cfg.auth_mode == "azurecli"
    assert cfg.hub_context == "hub-cluster"
    assert cfg.wait_timeout == 300
    assert cfg.ip_attempts == 30
    assert cfg.replicas == 3


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("SPOKE_CLUSTER_NAME", "myorg-dev-aks")
    monkeypatch.setenv("SPOKE_RG", "myorg-dev-rg")
    monkeypatch.setenv("WAIT_TIMEOUT", "60")
    cfg = Config()
    assert cfg.spoke_cluster_name == "myorg-dev-aks"
    assert cfg.spoke_rg == "myorg-dev-rg"
    assert cfg.wait_timeout == 60


def test_require_names_every_missing_variable():
    with pytest.raises(ConfigError) as excinfo:
        Config().require("spoke_cluster_name", "spoke_rg")
    assert "SPOKE_CLUSTER_NAME" in str(excinfo.value)
    assert "SPOKE_RG" in str(excinfo.value)


def test_require_passes_when_set(cfg):
    cfg.require("spoke_cluster_name", "spoke_rg")


def test_as_env_skips_empty(cfg):
    env = cfg.as_env()
    assert env["SPOKE_CLUSTER_NAME"] == "spoke-dev"
    assert env["SPOKE_RG"] == "rg-dev"
    assert "HUB_IDENTITY_CLIENT_ID" not in env


@pytest.mark.parametrize("var", ["WAIT_TIMEOUT", "EXTERNAL_IP_ATTEMPTS", "EXTERNAL_IP_INTERVAL"])
def test_non_integer_settings_are_config_errors(monkeypatch, var):
    monkeypatch.setenv(var, "5m")
    with pytest.raises(ConfigError, match=f"{var} must be an integer, got '5m'"):
        Config()
