"""Helpers for Azure VM resource IDs and Kubernetes provider IDs."""

import logging
import re

_log = logging.getLogger(__name__)

_VM_NAME_RE = re.compile(
    r"azure:///subscriptions/.*/resourceGroups/.*/providers/"
    r"Microsoft.Compute/virtualMachines/(?P<InstanceID>.*)"
)
_RESOURCE_GROUP_RE = re.compile(r".*/subscriptions/(?:.*)/resourceGroups/(.+)/providers/(?:.*)")

_VM_ID_FORMAT = (
    "/subscriptions/subscriptionID/resourceGroups/{}/providers/Microsoft.Compute/virtualMachines/{}"
)


class ProviderIDError(ValueError):
    """A provider ID or resource ID is not in the expected Azure format."""


def get_vm_name(provider_id: str) -> str:
    """Extract the VM name from a node's provider ID."""
    match = _VM_NAME_RE.search(provider_id)
    if match is None:
        raise ProviderIDError(f"parsing vm name {provider_id}")
    return match.group("InstanceID")


def convert_resource_group_name_to_lower(resource_id: str) -> str:
    """Return the resource ID with its resource group name lower-cased."""
    match = _RESOURCE_GROUP_RE.search(resource_id)
    if match is None:
        raise ProviderIDError(
            f"{resource_id!r} isn't in Azure resource ID format {_RESOURCE_GROUP_RE.pattern!r}"
        )
    resource_group = match.group(1)
    return resource_id.replace(resource_group, resource_group.lower(), 1)


def resource_id_to_provider_id(resource_id: str) -> str:
    """Turn an Azure resource ID into a provider ID with a lower-case resource group."""
    provider_id = f"azure://{resource_id}"
    try:
        return convert_resource_group_name_to_lower(provider_id)
    except ProviderIDError as err:
        _log.warning(
            "Failed to convert resource group name to lower case in providerID %s: %s",
            provider_id,
            err,
        )
        return provider_id


def mk_vm_id(resource_group_name: str, vm_name: str) -> str:
    """Build a VM resource ID in the given resource group."""
    return _VM_ID_FORMAT.format(resource_group_name, vm_name)