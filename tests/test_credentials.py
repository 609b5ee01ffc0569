import pytest
import yaml
from azure.identity import AzureCliCredential, ManagedIdentityCredential

from hub_spoke import credentials
from hub_spoke.common import ConfigError, PreconditionError
from hub_spoke.credentials import (
    AuthMode,
    azure_credential,
    current_context,
    get_credentials,
    kubelogin_args,
    read_cluster_entry,
    read_user_entry,
)


@pytest.fixture
def commands(monkeypatch):
    calls = []
    monkeypatch.setattr(credentials, "ensure_command", lambda name: None)
    monkeypatch.setattr(credentials, "run_cmd", lambda cmd, **kwargs: calls.append(cmd))
    return calls


def test_admin_mode_uses_admin_and_skips_kubelogin(commands):
    get_credentials("rg-dev", "spoke-dev", AuthMode.ADMIN, "/tmp/kc")
    assert len(commands) == 1
    assert commands[0][:3] == ["az", "aks", "get-credentials"]
    assert "--admin" in commands[0]
    assert "--use-azuread" not in commands[0]


def test_azure_ad_mode_converts_kubeconfig(commands):
    get_credentials("rg-dev", "spoke-dev", AuthMode.AZURECLI, "/tmp/kc")
    assert "--use-azuread" in commands[0]
    assert commands[1] == [
        "kubelogin", "convert-kubeconfig", "-l", "azurecli", "--kubeconfig", "/tmp/kc",
    ]


def test_context_is_passed_through(commands):
    get_credentials("rg-hub", "hub", AuthMode.ADMIN, "/tmp/kc", context="hub-cluster")
    assert commands[0][-2:] == ["--context", "hub-cluster"]


def test_msi_passes_client_id():
    cmd = kubelogin_args(AuthMode.MSI, "/tmp/kc", client_id="abc")
    assert cmd[-2:] == ["--client-id", "abc"]


def test_workload_identity_requires_webhook_env():
    with pytest.raises(ConfigError, match="AZURE_FEDERATED_TOKEN_FILE"):
        kubelogin_args(AuthMode.WORKLOAD_IDENTITY, "/tmp/kc")


def test_workload_identity_with_env(monkeypatch):
    monkeypatch.setenv("AZURE_CLIENT_ID", "cid")
    monkeypatch.setenv("AZURE_TENANT_ID", "tid")
    monkeypatch.setenv("AZURE_FEDERATED_TOKEN_FILE", "/var/run/secrets/token")
    assert kubelogin_args(AuthMode.WORKLOAD_IDENTITY, "/tmp/kc")[3] == "workloadidentity"


def test_spn_requires_secret():
    with pytest.raises(ConfigError, match="AZURE_CLIENT_SECRET"):
        kubelogin_args(AuthMode.SPN, "/tmp/kc")


def test_parse_auth_mode():
    assert AuthMode.parse("MSI") is AuthMode.MSI
    with pytest.raises(ConfigError):
        AuthMode.parse("kerberos")


def test_azure_credential_mapping():
    assert isinstance(azure_credential(AuthMode.AZURECLI), AzureCliCredential)
    assert isinstance(azure_credential(AuthMode.MSI, client_id="abc"), ManagedIdentityCredential)


def _write_kubeconfig(path):
    path.write_text(yaml.safe_dump({
        "apiVersion": "v1",
        "kind": "Config",
        "current-context": "hub-cluster",
        "clusters": [
            {"name": "spoke-dev", "cluster": {
                "server": "https://spoke-dev.hcp.eastus.azmk8s.io:443",
                "certificate-authority-data": "Q0E=",
            }},
        ],
        "users": [
            {"name": "clusterAdmin_rg-dev_spoke-dev", "user": {
                "client-certificate-data": "Q0VSVA==",
                "client-key-data": "S0VZ",
            }},
        ],
        "contexts": [
            {"name": "hub-cluster", "context": {"cluster": "spoke-dev", "user": "clusterAdmin_rg-dev_spoke-dev"}},
        ],
    }))


def test_read_kubeconfig_entries(tmp_path):
    path = tmp_path / "kubeconfig"
    _write_kubeconfig(path)
    cluster = read_cluster_entry(str(path), "spoke-dev")
    user = read_user_entry(str(path), "clusterAdmin_rg-dev_spoke-dev")
    assert cluster["server"].startswith("https://spoke-dev")
    assert user["client-key-data"] == "S0VZ"
    assert read_cluster_entry(str(path), "unknown") == {}


def test_read_missing_kubeconfig(tmp_path):
    with pytest.raises(PreconditionError):
        read_cluster_entry(str(tmp_path / "nope"), "spoke-dev")


def test_current_context(tmp_path):
    path = tmp_path / "kubeconfig"
    _write_kubeconfig(path)
    assert current_context(str(path)) == "hub-cluster"
