"""Node provisioning helpers for AKS clusters: GPU SKUs, VM IDs, pricing, launch templates, instance types and load balancer pools."""

__version__ = "0.1.0"