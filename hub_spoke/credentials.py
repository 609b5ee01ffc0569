"""Cluster credential acquisition.

Turns an Azure identity into a kubeconfig context usable against a spoke
API server:

    az aks get-credentials --resource-group RG --name NAME --overwrite-existing \\
        (--admin | --use-azuread)
    kubelogin convert-kubeconfig -l <mode>

Both tools are invoked as thin CLI wrappers; token exchange itself stays
with Azure AD and kubelogin. The matching ``azure-identity`` credential
for ARM calls is built by ``azure_credential``.
"""

from __future__ import annotations

import enum
import os
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from azure.identity import (
    AzureCliCredential,
    ClientSecretCredential,
    InteractiveBrowserCredential,
    ManagedIdentityCredential,
    WorkloadIdentityCredential,
)
from kubernetes import client as k8s_client
from kubernetes import config as k8s_config

from .common import ConfigError, PreconditionError, ensure_command, log, run_cmd


class AuthMode(str, enum.Enum):
    """How the caller authenticates to the spoke API server."""

    AZURECLI = "azurecli"
    MSI = "msi"
    WORKLOAD_IDENTITY = "workloadidentity"
    SPN = "spn"
    INTERACTIVE = "interactive"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: str) -> "AuthMode":
        try:
            return cls(value.lower())
        except ValueError:
            choices = ", ".join(m.value for m in cls)
            raise ConfigError(f"Unknown auth mode '{value}'. Choose one of: {choices}") from None


# Injected into the pod by the workload identity admission webhook.
WORKLOAD_IDENTITY_ENV = ["AZURE_CLIENT_ID", "AZURE_TENANT_ID", "AZURE_FEDERATED_TOKEN_FILE"]
SERVICE_PRINCIPAL_ENV = ["AZURE_CLIENT_ID", "AZURE_CLIENT_SECRET", "AZURE_TENANT_ID"]


def _require_env(names: List[str], mode: AuthMode) -> Dict[str, str]:
    missing = [n for n in names if not os.getenv(n)]
    if missing:
        raise ConfigError(
            f"Auth mode '{mode.value}' requires environment variables: {', '.join(missing)}"
        )
    return {n: os.environ[n] for n in names}


def kubelogin_args(mode: AuthMode, kubeconfig: str, client_id: str = "") -> List[str]:
    """Build the ``kubelogin convert-kubeconfig`` command for a login mode."""
    cmd = ["kubelogin", "convert-kubeconfig", "-l", mode.value, "--kubeconfig", kubeconfig]

    if mode is AuthMode.WORKLOAD_IDENTITY:
        _require_env(WORKLOAD_IDENTITY_ENV, mode)
    elif mode is AuthMode.SPN:
        _require_env(SERVICE_PRINCIPAL_ENV, mode)
    elif mode is AuthMode.MSI and client_id:
        cmd.extend(["--client-id", client_id])

    return cmd


def get_credentials(
    resource_group: str,
    cluster_name: str,
    mode: AuthMode,
    kubeconfig: str,
    *,
    client_id: str = "",
    context: Optional[str] = None,
) -> str:
    """Write a kubeconfig entry for the cluster and convert it for ``mode``.

    Returns the kubeconfig path.
    """
    ensure_command("az")

    cmd = [
        "az", "aks", "get-credentials",
        "--resource-group", resource_group,
        "--name", cluster_name,
        "--overwrite-existing",
        "--file", kubeconfig,
    ]
    cmd.append("--admin" if mode is AuthMode.ADMIN else "--use-azuread")
    if context:
        cmd.extend(["--context", context])

    log.info("  → Getting credentials for %s (%s)", cluster_name, mode.value)
    run_cmd(cmd)

    if mode is not AuthMode.ADMIN:
        ensure_command("kubelogin")
        run_cmd(kubelogin_args(mode, kubeconfig, client_id))

    log.info("  ✓ Retrieved cluster credentials")
    return kubeconfig


def azure_credential(mode: AuthMode, client_id: str = ""):
    """The azure-identity credential matching a kubelogin login mode."""
    if mode is AuthMode.MSI:
        return ManagedIdentityCredential(client_id=client_id or None)
    if mode is AuthMode.WORKLOAD_IDENTITY:
        _require_env(WORKLOAD_IDENTITY_ENV, mode)
        return WorkloadIdentityCredential()
    if mode is AuthMode.SPN:
        env = _require_env(SERVICE_PRINCIPAL_ENV, mode)
        return ClientSecretCredential(
            tenant_id=env["AZURE_TENANT_ID"],
            client_id=env["AZURE_CLIENT_ID"],
            client_secret=env["AZURE_CLIENT_SECRET"],
        )
    if mode is AuthMode.INTERACTIVE:
        return InteractiveBrowserCredential()
    return AzureCliCredential()


# ---------------------------------------------------------------------------
# Kubeconfig parsing
# ---------------------------------------------------------------------------
def _load_kubeconfig(path: str) -> dict:
    kubeconfig = Path(path)
    if not kubeconfig.exists():
        raise PreconditionError(f"kubeconfig not found: {path}")
    with kubeconfig.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def _named_entry(entries: list, name: str, key: str) -> dict:
    for entry in entries or []:
        if entry.get("name") == name:
            return entry.get(key) or {}
    return {}


def read_cluster_entry(path: str, cluster_name: str) -> dict:
    """The ``cluster`` stanza (server, certificate-authority-data) for a name."""
    return _named_entry(_load_kubeconfig(path).get("clusters"), cluster_name, "cluster")


def read_user_entry(path: str, user_name: str) -> dict:
    """The ``user`` stanza (client-certificate-data, client-key-data, exec) for a name."""
    return _named_entry(_load_kubeconfig(path).get("users"), user_name, "user")


def current_context(path: str) -> str:
    """Name of the kubeconfig's current context, or '' when none is set."""
    try:
        _, active = k8s_config.list_kube_config_contexts(config_file=path)
    except k8s_config.ConfigException:
        return ""
    return (active or {}).get("name", "")


def check_connectivity(api_client) -> str:
    """Ask the API server for its version (``kubectl cluster-info`` equivalent)."""
    try:
        info = k8s_client.VersionApi(api_client).get_code(_request_timeout=10)
    except Exception as exc:
        raise PreconditionError(f"Failed to connect to cluster: {exc}") from exc
    log.info("  ✓ Connected to API server (%s)", info.git_version)
    return info.git_version
