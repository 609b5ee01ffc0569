"""Remove the demo workload from a spoke cluster.

Deleting the ``demo-app`` namespace removes everything deployed into it
and releases the LoadBalancer IP.
"""

from __future__ import annotations

from kubernetes import client as k8s_client

from . import manifests
from .common import confirm, log
from .config import Config
from .credentials import AuthMode
from .deploy import connect_spoke
from .kube import delete_namespace, get_external_ip, kubectl_get, namespace_exists


def cleanup(cfg: Config) -> str:
    """Delete the demo namespace.

    Returns one of ``absent``, ``cancelled``, ``deleted`` or ``terminating``.
    ``absent`` and ``cancelled`` are not failures.
    """
    cfg.require("spoke_cluster_name", "spoke_rg")
    cfg.print_banner("Hub-to-Spoke Cleanup")
    namespace = manifests.DEMO_NAMESPACE

    if cfg.dry_run:
        log.info("=== DRY RUN — would delete namespace %s on %s ===", namespace, cfg.spoke_cluster_name)
        return "cancelled"

    api_client = connect_spoke(cfg, AuthMode.parse(cfg.auth_mode))
    core_v1 = k8s_client.CoreV1Api(api_client)

    if not namespace_exists(core_v1, namespace):
        log.warning("  ⚠ %s namespace not found - nothing to clean up", namespace)
        return "absent"
    log.info("  ✓ Connected to spoke cluster")

    log.info("")
    log.info("Resources to be deleted:")
    kubectl_get(cfg.kubeconfig, "all", "-n", namespace)
    external_ip = get_external_ip(core_v1, manifests.DEMO_SERVICE, namespace)
    if external_ip:
        log.info("  External IP that will be released: %s", external_ip)
    log.info("")

    if not confirm("Are you sure you want to delete these resources?", assume_yes=cfg.assume_yes):
        log.info("Cleanup cancelled")
        return "cancelled"

    log.info("  → Deleting %s namespace and all resources...", namespace)
    outcome = delete_namespace(core_v1, namespace, timeout=cfg.wait_timeout)

    log.info("  → Verifying cleanup...")
    if outcome == "terminating":
        log.warning("  ⚠ Namespace still exists (may be terminating)")
    else:
        log.info("  ✓ Namespace successfully removed")

    log.info("")
    log.info("✓ Cleanup completed successfully!")
    log.info("All resources deployed from the hub cluster have been removed from the spoke cluster.")
    if external_ip:
        log.info("External IP %s has been released and is no longer accessible.", external_ip)
    return outcome
