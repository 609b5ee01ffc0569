"""Hub identity access to spoke clusters.

The hub's user-assigned managed identity is granted an Azure RBAC role on
each spoke cluster resource, optionally federated with a Kubernetes
service account on the hub, and spokes are hardened by turning off their
local admin accounts so only Azure AD credentials work.
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from .arm import AKS_CLUSTER_ADMIN_ROLE, AzureContext, RoleAssignmentInfo
from .common import PreconditionError, log
from .config import Config

# (resource group, cluster name)
SpokeRef = Tuple[str, str]


def parse_spoke(value: str) -> SpokeRef:
    """``RG/NAME`` → (rg, name)."""
    resource_group, sep, name = value.partition("/")
    if not sep or not resource_group or not name:
        raise PreconditionError(f"Spoke must be given as RESOURCE_GROUP/CLUSTER_NAME, got '{value}'")
    return resource_group, name


def default_spokes(cfg: Config) -> List[SpokeRef]:
    cfg.require("spoke_cluster_name", "spoke_rg")
    return [(cfg.spoke_rg, cfg.spoke_cluster_name)]


def grant_hub_access(
    cfg: Config,
    spokes: Sequence[SpokeRef],
    role: str = AKS_CLUSTER_ADMIN_ROLE,
    azure: Optional[AzureContext] = None,
) -> List[RoleAssignmentInfo]:
    log.info("=== Granting '%s' to %s ===", role, cfg.hub_identity_name)
    if cfg.dry_run:
        for rg, name in spokes:
            log.info("  [DRY-RUN] Would assign '%s' on %s/%s", role, rg, name)
        return []

    azure = azure or AzureContext.from_config(cfg)
    identity = azure.get_identity(cfg.hub_rg, cfg.hub_identity_name)
    log.info("  Hub identity principal: %s", identity.principal_id)

    assignments = []
    for rg, name in spokes:
        cluster = azure.get_cluster(rg, name)
        assignments.append(azure.ensure_role_assignment(cluster.id, identity.principal_id, role))
    return assignments


def revoke_hub_access(
    cfg: Config,
    spokes: Sequence[SpokeRef],
    role: str = AKS_CLUSTER_ADMIN_ROLE,
    azure: Optional[AzureContext] = None,
) -> int:
    log.info("=== Revoking '%s' from %s ===", role, cfg.hub_identity_name)
    if cfg.dry_run:
        for rg, name in spokes:
            log.info("  [DRY-RUN] Would remove '%s' on %s/%s", role, rg, name)
        return 0

    azure = azure or AzureContext.from_config(cfg)
    identity = azure.get_identity(cfg.hub_rg, cfg.hub_identity_name)
    removed = 0
    for rg, name in spokes:
        cluster = azure.get_cluster(rg, name)
        removed += azure.delete_role_assignments(cluster.id, identity.principal_id, role)
    return removed


def federate_service_account(
    cfg: Config,
    hub_cluster: SpokeRef,
    namespace: str,
    service_account: str,
    azure: Optional[AzureContext] = None,
) -> str:
    """Trust the hub cluster's OIDC issuer for one service account. Returns the subject."""
    subject = f"system:serviceaccount:{namespace}:{service_account}"
    credential_name = f"{hub_cluster[1]}-{namespace}-{service_account}"
    log.info("=== Federating %s with %s ===", subject, cfg.hub_identity_name)
    if cfg.dry_run:
        log.info("  [DRY-RUN] Would create federated credential %s", credential_name)
        return subject

    azure = azure or AzureContext.from_config(cfg)
    cluster = azure.get_cluster(*hub_cluster)
    if not cluster.oidc_issuer_url:
        raise PreconditionError(
            f"OIDC issuer is not enabled on {cluster.name}. "
            f"Run 'az aks update --enable-oidc-issuer --enable-workload-identity'"
        )
    azure.ensure_federated_credential(
        cfg.hub_rg, cfg.hub_identity_name, credential_name, cluster.oidc_issuer_url, subject
    )
    return subject


def harden_cluster(
    cfg: Config,
    resource_group: str,
    name: str,
    azure: Optional[AzureContext] = None,
) -> bool:
    """Disable local accounts. Returns True when the cluster ends up hardened."""
    log.info("=== Disabling local accounts on %s ===", name)
    if cfg.dry_run:
        log.info("  [DRY-RUN] Would run the equivalent of 'az aks update --disable-local-accounts'")
        return False

    azure = azure or AzureContext.from_config(cfg)
    cluster = azure.disable_local_accounts(resource_group, name)
    if not cluster.aad_enabled:
        log.warning("  ⚠ Azure AD integration is not enabled; no credentials will work")
    log.info("  → 'az aks get-credentials --admin' will now fail; use --use-azuread with kubelogin")
    return cluster.disable_local_accounts
