"""
Custom Checkov Rules for Azure Role Assignments

- CKV_HUBSPOKE_RBAC_1: Role assignments are not scoped to a whole subscription
- CKV_HUBSPOKE_RBAC_2: Role assignments do not grant broad built-in roles

The hub identity only needs cluster-level access on each spoke; anything
wider turns a compromised hub into a compromised subscription.
"""

from __future__ import annotations

import re

from checkov.common.models.enums import CheckCategories, CheckResult
from checkov.terraform.checks.resource.base_resource_check import (
    BaseResourceCheck,
)

SUBSCRIPTION_SCOPE = re.compile(r"^/subscriptions/[^/]+/?$", re.IGNORECASE)
SUBSCRIPTION_REFERENCE = re.compile(r"azurerm_subscription\.[\w-]+\.id\}?$")

BROAD_ROLES = {"owner", "contributor", "user access administrator"}


def _first(conf: dict, key: str, default=None):
    value = conf.get(key, default)
    if isinstance(value, list):
        return value[0] if value else default
    return value


# =============================================================================
# CKV_HUBSPOKE_RBAC_1: No Subscription-Wide Scope
# =============================================================================
class RoleAssignmentNotSubscriptionScoped(BaseResourceCheck):
    """
    Ensure role assignments target a resource or resource group.

    Both literal ``/subscriptions/<id>`` scopes and references to
    ``data.azurerm_subscription.*.id`` fail.
    """

    def __init__(self) -> None:
        name = "Ensure role assignment is not scoped to a subscription"
        id = "CKV_HUBSPOKE_RBAC_1"
        supported_resources = ["azurerm_role_assignment"]
        categories = [CheckCategories.IAM]
        super().__init__(
            name=name,
            id=id,
            categories=categories,
            supported_resources=supported_resources,
        )

    def scan_resource_conf(self, conf: dict) -> CheckResult:
        scope = str(_first(conf, "scope", "") or "").strip()
        if not scope:
            return CheckResult.UNKNOWN
        if SUBSCRIPTION_SCOPE.match(scope) or SUBSCRIPTION_REFERENCE.search(scope):
            return CheckResult.FAILED
        return CheckResult.PASSED


# =============================================================================
# CKV_HUBSPOKE_RBAC_2: No Broad Built-in Roles
# =============================================================================
class RoleAssignmentNotBroadRole(BaseResourceCheck):
    """
    Ensure role assignments avoid Owner, Contributor and User Access
    Administrator. Use the AKS RBAC roles instead.
    """

    def __init__(self) -> None:
        name = "Ensure role assignment does not grant Owner, Contributor or User Access Administrator"
        id = "CKV_HUBSPOKE_RBAC_2"
        supported_resources = ["azurerm_role_assignment"]
        categories = [CheckCategories.IAM]
        super().__init__(
            name=name,
            id=id,
            categories=categories,
            supported_resources=supported_resources,
        )

    def scan_resource_conf(self, conf: dict) -> CheckResult:
        role = str(_first(conf, "role_definition_name", "") or "").strip().lower()
        if role in BROAD_ROLES:
            return CheckResult.FAILED
        return CheckResult.PASSED


check_scope = RoleAssignmentNotSubscriptionScoped()
check_role = RoleAssignmentNotBroadRole()
