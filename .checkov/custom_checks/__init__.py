"""
Custom Checkov Checks for hub-spoke

Organization-specific Checkov rules for the Terraform under terraform/,
grouped by domain:

- aks_rules.py      — 3 AKS cluster checks (AKS_1–AKS_3)
- rbac_rules.py     — 2 role assignment checks (RBAC_1, RBAC_2)
- identity_rules.py — 1 federated credential check (ID_1)

Total: 6 custom checks across 3 files.

Run with:
    checkov -d terraform --external-checks-dir .checkov/custom_checks

Each check is auto-registered by Checkov — no explicit imports needed.
"""

# Checkov auto-discovers check classes when scanning the directory
# No explicit imports needed here - each file registers its own check
