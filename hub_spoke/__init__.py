"""AKS hub-spoke cluster management with ArgoCD."""

__version__ = "0.1.0"
