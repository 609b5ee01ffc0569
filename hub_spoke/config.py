"""Runtime configuration for the hub-spoke commands.

Every field defaults from an environment variable so the commands can be
driven the same way the shell runbooks were (``export SPOKE_RG=...``),
while CLI flags override individual values.

Environment overrides:
    SPOKE_CLUSTER_NAME      — target spoke AKS cluster       (required by most commands)
    SPOKE_RG                — spoke resource group           (required by most commands)
    SPOKE_FQDN              — spoke API server FQDN          (informational)
    HUB_RG                  — hub resource group             (default: myorg-hub-rg)
    HUB_IDENTITY_NAME       — hub managed identity name      (default: myorg-hub-identity)
    HUB_IDENTITY_CLIENT_ID  — hub identity client id         (resolved from Azure when unset)
    AZURE_SUBSCRIPTION_ID   — subscription for ARM calls     (default: az account show)
    KUBECONFIG              — kubeconfig path                (default: ~/.kube/config)
    AUTH_MODE               — kubelogin login mode           (default: azurecli)
    HUB_CONTEXT             — hub cluster kube context       (default: hub-cluster)
    ARGOCD_NAMESPACE        — ArgoCD namespace on the hub    (default: argocd)
    BOOTSTRAP_REPO_URL      — repo holding spoke overlays    (default: https://github.com/srinman/aks-cicd)
    BOOTSTRAP_REVISION      — git revision for overlays      (default: main)
    TERRAFORM_DIR           — terraform root                 (default: terraform)
    NGINX_IMAGE             — demo image                     (default: nginx:1.25)
    WAIT_TIMEOUT            — rollout/delete timeout in sec  (default: 300)
    EXTERNAL_IP_ATTEMPTS    — LoadBalancer IP poll attempts  (default: 30)
    EXTERNAL_IP_INTERVAL    — seconds between IP polls       (default: 10)
    STATUS_FILE             — pipeline status JSON           (default: /tmp/hub-spoke-status.json)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict

from .common import ConfigError, log, utc_now


ENV_NAMES = {
    "spoke_cluster_name": "SPOKE_CLUSTER_NAME",
    "spoke_rg": "SPOKE_RG",
    "spoke_fqdn": "SPOKE_FQDN",
    "hub_rg": "HUB_RG",
    "hub_identity_name": "HUB_IDENTITY_NAME",
    "hub_identity_client_id": "HUB_IDENTITY_CLIENT_ID",
    "subscription_id": "AZURE_SUBSCRIPTION_ID",
    "kubeconfig": "KUBECONFIG",
    "auth_mode": "AUTH_MODE",
}

# Read as strings, converted in __post_init__
INT_ENV_NAMES = {
    "wait_timeout": "WAIT_TIMEOUT",
    "ip_attempts": "EXTERNAL_IP_ATTEMPTS",
    "ip_interval": "EXTERNAL_IP_INTERVAL",
}


@dataclass
class Config:
    """Configuration sourced from environment variables."""

    spoke_cluster_name: str = field(
        default_factory=lambda: os.getenv("SPOKE_CLUSTER_NAME", "")
    )
    spoke_rg: str = field(
        default_factory=lambda: os.getenv("SPOKE_RG", "")
    )
    spoke_fqdn: str = field(
        default_factory=lambda: os.getenv("SPOKE_FQDN", "")
    )
    hub_rg: str = field(
        default_factory=lambda: os.getenv("HUB_RG", "myorg-hub-rg")
    )
    hub_identity_name: str = field(
        default_factory=lambda: os.getenv("HUB_IDENTITY_NAME", "myorg-hub-identity")
    )
    hub_identity_client_id: str = field(
        default_factory=lambda: os.getenv("HUB_IDENTITY_CLIENT_ID", "")
    )
    subscription_id: str = field(
        default_factory=lambda: os.getenv("AZURE_SUBSCRIPTION_ID", "")
    )
    kubeconfig: str = field(
        default_factory=lambda: os.getenv(
            "KUBECONFIG", str(Path.home() / ".kube" / "config")
        )
    )
    auth_mode: str = field(
        default_factory=lambda: os.getenv("AUTH_MODE", "azurecli")
    )
    hub_context: str = field(
        default_factory=lambda: os.getenv("HUB_CONTEXT", "hub-cluster")
    )
    argocd_namespace: str = field(
        default_factory=lambda: os.getenv("ARGOCD_NAMESPACE", "argocd")
    )
    repo_url: str = field(
        default_factory=lambda: os.getenv(
            "BOOTSTRAP_REPO_URL", "https://github.com/srinman/aks-cicd"
        )
    )
    target_revision: str = field(
        default_factory=lambda: os.getenv("BOOTSTRAP_REVISION", "main")
    )
    terraform_dir: str = field(
        default_factory=lambda: os.getenv("TERRAFORM_DIR", "terraform")
    )
    image: str = field(
        default_factory=lambda: os.getenv("NGINX_IMAGE", "nginx:1.25")
    )
    wait_timeout: int = field(
        default_factory=lambda: os.getenv("WAIT_TIMEOUT", "300")
    )
    ip_attempts: int = field(
        default_factory=lambda: os.getenv("EXTERNAL_IP_ATTEMPTS", "30")
    )
    ip_interval: int = field(
        default_factory=lambda: os.getenv("EXTERNAL_IP_INTERVAL", "10")
    )
    status_file: str = field(
        default_factory=lambda: os.getenv("STATUS_FILE", "/tmp/hub-spoke-status.json")
    )

    replicas: int = 3
    bootstrap_path: str = "argo/spoke-bootstrap/overlays"
    dry_run: bool = False
    assume_yes: bool = False

    def __post_init__(self) -> None:
        for name, var in INT_ENV_NAMES.items():
            value = getattr(self, name)
            try:
                setattr(self, name, int(value))
            except (TypeError, ValueError):
                raise ConfigError(f"{var} must be an integer, got '{value}'") from None

    def require(self, *names: str) -> None:
        """Raise ConfigError listing every unset field among ``names``."""
        missing = [n for n in names if not getattr(self, n)]
        if missing:
            env_vars = ", ".join(ENV_NAMES.get(n, n) for n in missing)
            raise ConfigError(f"Required parameters not set: {env_vars}")

    def as_env(self) -> Dict[str, str]:
        """Environment for external tools run against this configuration (az, kubelogin, kubectl)."""
        env = {}
        for name, var in ENV_NAMES.items():
            value = getattr(self, name)
            if value:
                env[var] = str(value)
        return env

    def print_banner(self, title: str) -> None:
        log.info("=== %s ===", title)
        log.info("Spoke cluster:  %s", self.spoke_cluster_name or "(unset)")
        log.info("Resource group: %s", self.spoke_rg or "(unset)")
        log.info("Auth mode:      %s", self.auth_mode)
        log.info("Kubeconfig:     %s", self.kubeconfig)
        log.info("Triggered:      %s", utc_now())
        log.info("")
