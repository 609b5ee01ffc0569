"""
Custom Checkov Rules for AKS Clusters

CKV_HUBSPOKE_AKS_1: Local admin accounts disabled
CKV_HUBSPOKE_AKS_2: Azure AD integration with Azure RBAC
CKV_HUBSPOKE_AKS_3: Hub clusters expose an OIDC issuer and workload identity
"""

from checkov.common.models.enums import CheckCategories, CheckResult
from checkov.terraform.checks.resource.base_resource_check import (
    BaseResourceCheck,
)


def _first(conf: dict, key: str, default=None):
    """Terraform attributes arrive wrapped in single-element lists."""
    value = conf.get(key, default)
    if isinstance(value, list):
        return value[0] if value else default
    return value


# =============================================================================
# CKV_HUBSPOKE_AKS_1: Local Accounts Disabled
# =============================================================================
class AksLocalAccountsDisabled(BaseResourceCheck):
    """
    Ensure AKS clusters disable local accounts.

    With local accounts enabled, ``az aks get-credentials --admin`` hands
    out a static cluster-admin certificate that bypasses Azure AD and
    cannot be revoked per user.
    """

    def __init__(self) -> None:
        name = "Ensure AKS cluster has local admin accounts disabled"
        id = "CKV_HUBSPOKE_AKS_1"
        supported_resources = ["azurerm_kubernetes_cluster"]
        categories = [CheckCategories.KUBERNETES]
        super().__init__(
            name=name,
            id=id,
            categories=categories,
            supported_resources=supported_resources,
        )

    def scan_resource_conf(self, conf) -> CheckResult:
        if _first(conf, "local_account_disabled") is True:
            return CheckResult.PASSED
        return CheckResult.FAILED


# =============================================================================
# CKV_HUBSPOKE_AKS_2: Azure AD + Azure RBAC
# =============================================================================
class AksAzureRbacEnabled(BaseResourceCheck):
    """
    Ensure AKS clusters authorize through Azure RBAC.

    The hub identity is granted access with an Azure role assignment on the
    spoke cluster resource, which only takes effect when the cluster has
    Azure AD integration with ``azure_rbac_enabled``.
    """

    def __init__(self) -> None:
        name = "Ensure AKS cluster uses Azure AD integration with Azure RBAC"
        id = "CKV_HUBSPOKE_AKS_2"
        supported_resources = ["azurerm_kubernetes_cluster"]
        categories = [CheckCategories.IAM]
        super().__init__(
            name=name,
            id=id,
            categories=categories,
            supported_resources=supported_resources,
        )

    def scan_resource_conf(self, conf) -> CheckResult:
        aad = _first(conf, "azure_active_directory_role_based_access_control")
        if not isinstance(aad, dict):
            return CheckResult.FAILED
        if _first(aad, "azure_rbac_enabled") is True:
            return CheckResult.PASSED
        return CheckResult.FAILED


# =============================================================================
# CKV_HUBSPOKE_AKS_3: Hub OIDC Issuer + Workload Identity
# =============================================================================
class AksHubWorkloadIdentity(BaseResourceCheck):
    """
    Ensure hub clusters can federate service accounts with Azure AD.

    Only applies to clusters tagged ``role = hub``; spokes are reached with
    the hub's token and do not need an issuer of their own.
    """

    def __init__(self) -> None:
        name = "Ensure hub AKS cluster enables OIDC issuer and workload identity"
        id = "CKV_HUBSPOKE_AKS_3"
        supported_resources = ["azurerm_kubernetes_cluster"]
        categories = [CheckCategories.IAM]
        super().__init__(
            name=name,
            id=id,
            categories=categories,
            supported_resources=supported_resources,
        )

    def scan_resource_conf(self, conf) -> CheckResult:
        tags = _first(conf, "tags") or {}
        if not isinstance(tags, dict) or tags.get("role") != "hub":
            return CheckResult.PASSED

        oidc = _first(conf, "oidc_issuer_enabled") is True
        workload_identity = _first(conf, "workload_identity_enabled") is True
        if oidc and workload_identity:
            return CheckResult.PASSED
        return CheckResult.FAILED


check_local_accounts = AksLocalAccountsDisabled()
check_azure_rbac = AksAzureRbacEnabled()
check_hub_workload_identity = AksHubWorkloadIdentity()
