"""Azure Resource Manager helpers.

Typed wrappers around the Azure SDK for the lookups and mutations the
hub-spoke runbooks perform with ``az identity show``, ``az aks show``,
``az aks list``, ``az aks update --disable-local-accounts`` and
``az role assignment create/list/delete``.

The subscription comes from ``AZURE_SUBSCRIPTION_ID`` or, failing that,
from the active Azure CLI session (thin CLI wrapper, the SDK has no
notion of a "current" subscription).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import List, Optional

from azure.core.exceptions import ResourceNotFoundError
from azure.mgmt.authorization import AuthorizationManagementClient
from azure.mgmt.authorization.models import RoleAssignmentCreateParameters
from azure.mgmt.containerservice import ContainerServiceClient
from azure.mgmt.core.tools import parse_resource_id
from azure.mgmt.msi import ManagedServiceIdentityClient
from azure.mgmt.msi.models import FederatedIdentityCredential

from .common import PreconditionError, log, run_cmd
from .credentials import AuthMode, azure_credential

AKS_CLUSTER_ADMIN_ROLE = "Azure Kubernetes Service RBAC Cluster Admin"
TOKEN_EXCHANGE_AUDIENCE = "api://AzureADTokenExchange"


@dataclass
class IdentityInfo:
    """User-assigned managed identity, as returned by ``az identity show``."""
    name: str
    client_id: str
    principal_id: str
    id: str


@dataclass
class ClusterInfo:
    """The subset of an AKS managed cluster the runbooks read."""
    name: str
    resource_group: str
    id: str
    fqdn: str = ""
    disable_local_accounts: bool = False
    aad_enabled: bool = False
    azure_rbac_enabled: bool = False
    oidc_issuer_url: str = ""

    @classmethod
    def from_sdk(cls, cluster) -> "ClusterInfo":
        aad = cluster.aad_profile
        oidc = cluster.oidc_issuer_profile
        return cls(
            name=cluster.name,
            resource_group=parse_resource_id(cluster.id).get("resource_group", ""),
            id=cluster.id,
            fqdn=cluster.fqdn or "",
            disable_local_accounts=bool(cluster.disable_local_accounts),
            aad_enabled=bool(aad and aad.managed),
            azure_rbac_enabled=bool(aad and aad.enable_azure_rbac),
            oidc_issuer_url=(oidc.issuer_url or "") if oidc and oidc.enabled else "",
        )


@dataclass
class RoleAssignmentInfo:
    name: str
    scope: str
    principal_id: str
    role_definition_id: str


def current_subscription_id() -> str:
    """Subscription of the active ``az login`` session."""
    result = run_cmd(["az", "account", "show", "--query", "id", "-o", "tsv"])
    subscription = result.stdout.strip()
    if not subscription:
        raise PreconditionError("No active Azure subscription. Run 'az login' first")
    return subscription


def _guid(resource_id: str) -> str:
    return resource_id.rstrip("/").rsplit("/", 1)[-1].lower()


class AzureContext:
    """Lazily-built ARM clients sharing one credential and subscription."""

    def __init__(self, credential, subscription_id: Optional[str] = None):
        self.credential = credential
        self.subscription_id = subscription_id or current_subscription_id()
        self._aks = None
        self._msi = None
        self._auth = None

    @classmethod
    def from_config(cls, cfg) -> "AzureContext":
        mode = AuthMode.parse(cfg.auth_mode)
        credential = azure_credential(mode, client_id=cfg.hub_identity_client_id)
        return cls(credential, cfg.subscription_id or None)

    @property
    def aks(self) -> ContainerServiceClient:
        if self._aks is None:
            self._aks = ContainerServiceClient(self.credential, self.subscription_id)
        return self._aks

    @property
    def msi(self) -> ManagedServiceIdentityClient:
        if self._msi is None:
            self._msi = ManagedServiceIdentityClient(self.credential, self.subscription_id)
        return self._msi

    @property
    def authorization(self) -> AuthorizationManagementClient:
        if self._auth is None:
            self._auth = AuthorizationManagementClient(self.credential, self.subscription_id)
        return self._auth

    # ------------------------------------------------------------------ identity
    def get_identity(self, resource_group: str, name: str) -> IdentityInfo:
        try:
            identity = self.msi.user_assigned_identities.get(resource_group, name)
        except ResourceNotFoundError as exc:
            raise PreconditionError(
                f"Could not find identity '{name}' in resource group '{resource_group}'. "
                f"Please check HUB_RG and HUB_IDENTITY_NAME"
            ) from exc
        return IdentityInfo(
            name=identity.name,
            client_id=identity.client_id,
            principal_id=identity.principal_id,
            id=identity.id,
        )

    def ensure_federated_credential(
        self,
        resource_group: str,
        identity_name: str,
        name: str,
        issuer: str,
        subject: str,
    ) -> None:
        """Create or update a federated credential on a user-assigned identity."""
        self.msi.federated_identity_credentials.create_or_update(
            resource_group,
            identity_name,
            name,
            FederatedIdentityCredential(
                issuer=issuer,
                subject=subject,
                audiences=[TOKEN_EXCHANGE_AUDIENCE],
            ),
        )
        log.info("  ✓ Federated credential %s → %s", name, subject)

    # ------------------------------------------------------------------ clusters
    def find_cluster(self, resource_group: str, name: str) -> Optional[ClusterInfo]:
        try:
            cluster = self.aks.managed_clusters.get(resource_group, name)
        except ResourceNotFoundError:
            return None
        return ClusterInfo.from_sdk(cluster)

    def get_cluster(self, resource_group: str, name: str) -> ClusterInfo:
        info = self.find_cluster(resource_group, name)
        if info is None:
            raise PreconditionError(
                f"Spoke cluster '{name}' not found in resource group '{resource_group}'"
            )
        return info

    def list_clusters(self) -> List[ClusterInfo]:
        return [ClusterInfo.from_sdk(c) for c in self.aks.managed_clusters.list()]

    def disable_local_accounts(self, resource_group: str, name: str) -> ClusterInfo:
        """Turn off static admin credentials on a cluster (long-running operation)."""
        cluster = self.aks.managed_clusters.get(resource_group, name)
        if cluster.disable_local_accounts:
            log.info("  ✓ Local accounts already disabled on %s", name)
            return ClusterInfo.from_sdk(cluster)

        cluster.disable_local_accounts = True
        poller = self.aks.managed_clusters.begin_create_or_update(resource_group, name, cluster)
        updated = poller.result()
        log.info("  ✓ Local accounts disabled on %s", name)
        return ClusterInfo.from_sdk(updated)

    # ------------------------------------------------------------------ RBAC
    def role_definition_id(self, scope: str, role_name: str) -> str:
        definitions = list(
            self.authorization.role_definitions.list(scope, filter=f"roleName eq '{role_name}'")
        )
        if not definitions:
            raise PreconditionError(f"Role definition '{role_name}' not found at {scope}")
        return definitions[0].id

    def list_role_assignments(self, scope: str, principal_id: str) -> List[RoleAssignmentInfo]:
        assignments = self.authorization.role_assignments.list_for_scope(
            scope, filter=f"principalId eq '{principal_id}'"
        )
        return [
            RoleAssignmentInfo(
                name=a.name,
                scope=a.scope,
                principal_id=a.principal_id,
                role_definition_id=a.role_definition_id,
            )
            for a in assignments
        ]

    def ensure_role_assignment(
        self,
        scope: str,
        principal_id: str,
        role_name: str = AKS_CLUSTER_ADMIN_ROLE,
    ) -> RoleAssignmentInfo:
        """Assign ``role_name`` to ``principal_id`` at ``scope`` unless already granted."""
        definition_id = self.role_definition_id(scope, role_name)
        for existing in self.list_role_assignments(scope, principal_id):
            if _guid(existing.role_definition_id) == _guid(definition_id):
                log.info("  ✓ '%s' already assigned at %s", role_name, scope)
                return existing

        created = self.authorization.role_assignments.create(
            scope,
            str(uuid.uuid4()),
            RoleAssignmentCreateParameters(
                role_definition_id=definition_id,
                principal_id=principal_id,
                principal_type="ServicePrincipal",
            ),
        )
        log.info("  ✓ '%s' assigned at %s", role_name, scope)
        return RoleAssignmentInfo(
            name=created.name,
            scope=created.scope,
            principal_id=created.principal_id,
            role_definition_id=created.role_definition_id,
        )

    def delete_role_assignments(
        self,
        scope: str,
        principal_id: str,
        role_name: str = AKS_CLUSTER_ADMIN_ROLE,
    ) -> int:
        """Remove assignments of ``role_name`` made directly at ``scope``."""
        definition_id = self.role_definition_id(scope, role_name)
        removed = 0
        for existing in self.list_role_assignments(scope, principal_id):
            if _guid(existing.role_definition_id) != _guid(definition_id):
                continue
            if existing.scope.lower() != scope.lower():
                continue  # inherited from a parent scope
            self.authorization.role_assignments.delete(scope, existing.name)
            removed += 1
        log.info("  ✓ Removed %d '%s' assignment(s) at %s", removed, role_name, scope)
        return removed
