"""Launch template parameters and template rendering for new VMs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Protocol

KARPENTER_MANAGED_TAG_KEY = "karpenter.azure.com/cluster"


class Bootstrapper(Protocol):
    """Something that renders the VM's user data script."""

    def script(self) -> str:
        ...


@dataclass(kw_only=True)
class StaticParameters:
    """Launch template parameters that do not depend on the instance type."""

    cluster_name: str = ""
    cluster_endpoint: str = ""
    ca_bundle: Optional[str] = None

    tenant_id: str = ""
    subscription_id: str = ""
    user_assigned_identity_id: str = ""
    location: str = ""
    resource_group: str = ""
    cluster_id: str = ""
    api_server_name: str = ""
    kubelet_client_tls_bootstrap_token: str = ""
    network_plugin: str = ""
    network_policy: str = ""
    kubernetes_version: str = ""

    tags: Dict[str, str] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass(kw_only=True)
class Parameters(StaticParameters):
    """Static parameters plus the resolved user data and image."""

    user_data: Bootstrapper
    image_id: str = ""


@dataclass(frozen=True)
class Template:
    """A rendered launch template."""

    user_data: str
    image_id: str
    tags: Dict[str, str]


def merge_tags(*args: Mapping[str, str]) -> Dict[str, str]:
    """Merge tag maps, later ones winning, with '/' in keys replaced by '_'."""
    merged: Dict[str, str] = {}
    for tags in args:
        merged.update(tags)
    return {key.replace("/", "_"): value for key, value in merged.items()}


def create_launch_template(parameters: Parameters) -> Template:
    """Render user data and tags for a launch template."""
    user_data = parameters.user_data.script()
    tags = merge_tags(parameters.tags, {KARPENTER_MANAGED_TAG_KEY: parameters.cluster_name})
    return Template(user_data=user_data, image_id=parameters.image_id, tags=tags)