"""
Custom Checkov Rules for Workload Identity Federation

CKV_HUBSPOKE_ID_1: Federated identity credentials trust a single
Kubernetes service account through the Azure AD token exchange audience.
"""

from __future__ import annotations

import re

from checkov.common.models.enums import CheckCategories, CheckResult
from checkov.terraform.checks.resource.base_resource_check import (
    BaseResourceCheck,
)

TOKEN_EXCHANGE_AUDIENCE = "api://AzureADTokenExchange"
SERVICE_ACCOUNT_SUBJECT = re.compile(r"^system:serviceaccount:[a-z0-9-]+:[a-z0-9.-]+$")
INTERPOLATION = re.compile(r"\$\{")


class FederatedCredentialScoped(BaseResourceCheck):
    """
    Ensure federated credentials use the token exchange audience and a
    ``system:serviceaccount:<namespace>:<name>`` subject.

    Subjects built from interpolation cannot be evaluated statically and
    are reported as UNKNOWN.
    """

    def __init__(self) -> None:
        name = "Ensure federated identity credential targets one service account"
        id = "CKV_HUBSPOKE_ID_1"
        supported_resources = ["azurerm_federated_identity_credential"]
        categories = [CheckCategories.IAM]
        super().__init__(
            name=name,
            id=id,
            categories=categories,
            supported_resources=supported_resources,
        )

    def scan_resource_conf(self, conf: dict) -> CheckResult:
        audience = conf.get("audience") or []
        # audience is a list attribute: [[...]]
        if audience and isinstance(audience[0], list):
            audience = audience[0]
        if audience != [TOKEN_EXCHANGE_AUDIENCE]:
            return CheckResult.FAILED

        subject = conf.get("subject") or [""]
        subject = subject[0] if isinstance(subject, list) else subject
        if INTERPOLATION.search(str(subject)):
            return CheckResult.UNKNOWN
        if SERVICE_ACCOUNT_SUBJECT.match(str(subject)):
            return CheckResult.PASSED
        return CheckResult.FAILED


check_federated_credential = FederatedCredentialScoped()
