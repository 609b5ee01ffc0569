"""Deploy the nginx demo workload from the hub to a spoke cluster.

Two flavours of the same flow:

* ``quick_deploy``     — resolves the hub identity and the spoke cluster in
                         Azure, fetches Azure AD credentials and applies the
                         built-in manifests.
* ``deploy_to_spoke``  — authenticates with workload identity (running inside
                         the hub) and applies either the built-in manifests or
                         the YAML files of a manifests directory.

Steps:
  1.  Resolve hub identity client id
  2.  Verify the spoke cluster exists (and report local-account state)
  3.  Acquire spoke credentials and check connectivity
  4.  Apply Namespace, Deployment (wait for availability) and Service
  5.  Wait for the LoadBalancer IP and probe the application over HTTP

Then a summary with every resource in the namespace.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import List, Optional

import requests
from kubernetes import client as k8s_client

from . import manifests
from .arm import AzureContext
from .common import PreconditionError, log
from .config import Config
from .credentials import AuthMode, check_connectivity, get_credentials
from .kube import (
    BUILTIN_KINDS,
    apply_manifest,
    kubectl_get,
    load_api_client,
    wait_for_deployment,
    wait_for_external_ip,
)


@dataclass
class DeploymentResult:
    cluster: str
    namespace: str = manifests.DEMO_NAMESPACE
    external_ip: Optional[str] = None
    reachable: bool = False


# ---------------------------------------------------------------------------
# Step 1-2: Azure lookups
# ---------------------------------------------------------------------------
def resolve_hub_client_id(cfg: Config, azure: AzureContext) -> str:
    """Hub identity client id from config, else from ``HUB_RG``/``HUB_IDENTITY_NAME``."""
    log.info("=== Step 1: Getting hub cluster identity details ===")
    if cfg.hub_identity_client_id:
        log.info("  ✓ Using HUB_IDENTITY_CLIENT_ID from environment")
        return cfg.hub_identity_client_id

    identity = azure.get_identity(cfg.hub_rg, cfg.hub_identity_name)
    if not identity.client_id:
        raise PreconditionError(
            "Could not find hub identity. Please check HUB_RG and HUB_IDENTITY_NAME"
        )
    log.info("  Hub Identity Client ID: %s", identity.client_id)
    log.info("")
    return identity.client_id


def verify_spoke_cluster(cfg: Config, azure: AzureContext):
    """Fail with a list of available clusters when the spoke is missing."""
    log.info("=== Step 2: Verifying spoke cluster exists ===")
    cluster = azure.find_cluster(cfg.spoke_rg, cfg.spoke_cluster_name)
    if cluster is None:
        log.error(
            "  ✗ Spoke cluster '%s' not found in resource group '%s'",
            cfg.spoke_cluster_name, cfg.spoke_rg,
        )
        log.info("  Available clusters in subscription:")
        for other in azure.list_clusters():
            log.info("    %-40s %s", other.name, other.resource_group)
        raise PreconditionError(
            f"Spoke cluster '{cfg.spoke_cluster_name}' not found in resource group '{cfg.spoke_rg}'"
        )

    log.info("  ✓ Spoke cluster found")
    if cluster.disable_local_accounts:
        log.info("  ✓ Local admin accounts are disabled (secure configuration)")
    else:
        log.warning("  ⚠ Local admin accounts are enabled (consider disabling for production)")
    log.info("")
    return cluster


# ---------------------------------------------------------------------------
# Step 3: Credentials
# ---------------------------------------------------------------------------
def connect_spoke(cfg: Config, mode: AuthMode) -> k8s_client.ApiClient:
    log.info("  → Connecting to spoke cluster %s...", cfg.spoke_cluster_name)
    get_credentials(
        cfg.spoke_rg,
        cfg.spoke_cluster_name,
        mode,
        cfg.kubeconfig,
        client_id=cfg.hub_identity_client_id,
    )
    api_client = load_api_client(cfg.kubeconfig)
    check_connectivity(api_client)
    log.info("")
    return api_client


# ---------------------------------------------------------------------------
# Step 4-5: Apply and verify
# ---------------------------------------------------------------------------
def probe_http(address: str, timeout: int = 10) -> bool:
    """True when ``http://<address>`` answers at all."""
    try:
        requests.get(f"http://{address}", timeout=timeout)
    except requests.RequestException:
        return False
    return True


def demo_manifests(cfg: Config, hub_client_id: str, method: str, source: str) -> List[dict]:
    return [
        manifests.demo_namespace(method),
        manifests.nginx_deployment(
            cfg.spoke_cluster_name,
            hub_client_id,
            image=cfg.image,
            replicas=cfg.replicas,
            source=source,
        ),
        manifests.nginx_service(),
    ]


def with_namespace(doc: dict, namespace: str) -> dict:
    """Copy of a namespaced built-in manifest with ``metadata.namespace`` filled in."""
    kind_info = BUILTIN_KINDS.get(doc.get("kind", ""))
    if not kind_info or not kind_info[2] or doc.get("metadata", {}).get("namespace"):
        return doc
    doc = copy.deepcopy(doc)
    doc.setdefault("metadata", {})["namespace"] = namespace
    return doc


def apply_demo_app(cfg: Config, api_client, docs: List[dict]) -> DeploymentResult:
    """Apply manifests in order, waiting for the Deployment before the Service."""
    apps_v1 = k8s_client.AppsV1Api(api_client)
    core_v1 = k8s_client.CoreV1Api(api_client)
    result = DeploymentResult(cluster=cfg.spoke_cluster_name)

    log.info("=== Step 4: Applying manifests ===")
    for doc in docs:
        doc = with_namespace(doc, result.namespace)
        apply_manifest(api_client, doc)
        if doc["kind"] == "Deployment":
            wait_for_deployment(
                apps_v1,
                doc["metadata"]["name"],
                doc["metadata"]["namespace"],
                cfg.wait_timeout,
            )
    log.info("")

    log.info("=== Step 5: Waiting for external IP assignment ===")
    result.external_ip = wait_for_external_ip(
        core_v1,
        manifests.DEMO_SERVICE,
        result.namespace,
        attempts=cfg.ip_attempts,
        interval=cfg.ip_interval,
    )
    if result.external_ip:
        log.info("  ✓ External IP assigned: %s", result.external_ip)
        log.info("  → Testing application connectivity...")
        result.reachable = probe_http(result.external_ip)
        if result.reachable:
            log.info("  ✓ Application is accessible!")
        else:
            log.warning("  ⚠ Application may still be starting up")
    else:
        log.warning("  ⚠ External IP not yet assigned (check service status)")
    log.info("")
    return result


def print_summary(cfg: Config, result: DeploymentResult) -> None:
    log.info("=== Deployment Summary ===")
    log.info("Spoke Cluster: %s", result.cluster)
    log.info("Namespace:     %s", result.namespace)
    log.info("Deployment:    %s (%d replicas)", manifests.DEMO_APP, cfg.replicas)
    log.info("Service:       %s (LoadBalancer)", manifests.DEMO_SERVICE)
    if result.external_ip:
        log.info("External IP:   %s", result.external_ip)
        log.info("🌐 Access your application at: http://%s", result.external_ip)
    log.info("")

    log.info("All resources:")
    kubectl_get(cfg.kubeconfig, "all", "-n", result.namespace)
    log.info("")
    log.info("✓ Hub-to-spoke deployment completed successfully!")
    log.info("")
    log.info("Cleanup command:")
    log.info("  kubectl delete namespace %s", result.namespace)


def _dry_run(cfg: Config, docs: List[dict]) -> DeploymentResult:
    log.info("=== DRY RUN — no changes will be made ===")
    log.info(manifests.render_yaml(docs))
    return DeploymentResult(cluster=cfg.spoke_cluster_name)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------
def quick_deploy(cfg: Config, azure: Optional[AzureContext] = None) -> DeploymentResult:
    cfg.require("spoke_cluster_name", "spoke_rg")
    cfg.print_banner("Hub-to-Spoke Quick Deployment")

    if cfg.dry_run:
        client_id = cfg.hub_identity_client_id or "<hub-identity-client-id>"
        return _dry_run(cfg, demo_manifests(cfg, client_id, "direct-kubectl", "hub-cluster-script"))

    azure = azure or AzureContext.from_config(cfg)
    hub_client_id = resolve_hub_client_id(cfg, azure)
    verify_spoke_cluster(cfg, azure)

    log.info("=== Step 3: Getting spoke cluster credentials ===")
    api_client = connect_spoke(cfg, AuthMode.parse(cfg.auth_mode))
    docs = demo_manifests(cfg, hub_client_id, "direct-kubectl", "hub-cluster-script")
    result = apply_demo_app(cfg, api_client, docs)
    print_summary(cfg, result)
    return result


def deploy_to_spoke(
    cfg: Config,
    manifests_dir: Optional[str] = None,
    mode: AuthMode = AuthMode.WORKLOAD_IDENTITY,
) -> DeploymentResult:
    cfg.require("spoke_cluster_name", "spoke_rg")
    cfg.print_banner("Hub-to-Spoke Deployment")

    if manifests_dir:
        docs = manifests.load_manifest_dir(manifests_dir)
    else:
        deployed_by = cfg.hub_identity_client_id or "workload-identity"
        docs = demo_manifests(cfg, deployed_by, "workload-identity", "hub-cluster-workload-identity")

    if cfg.dry_run:
        return _dry_run(cfg, docs)

    log.info("=== Step 1: Authenticating with %s ===", mode.value)
    api_client = connect_spoke(cfg, mode)
    result = apply_demo_app(cfg, api_client, docs)
    print_summary(cfg, result)

    log.info("")
    log.info("=== Verification Commands ===")
    log.info("  kubectl logs -n %s deployment/%s", result.namespace, manifests.DEMO_APP)
    log.info("  kubectl get service %s -n %s", manifests.DEMO_SERVICE, result.namespace)
    log.info("  curl http://%s", result.external_ip or "<external-ip>")
    return result
