"""Listing the VM sizes offered in a region as schedulable instance types."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Protocol

from aksprovision.gpu import is_mariner_enabled_gpu_sku, is_nvidia_enabled_sku
from aksprovision.instancetype import (
    RESTRICTED_VM_SIZES,
    SKU,
    KubeletConfiguration,
    ResourceList,
    VMSize,
    compute_capacity,
    eviction_threshold,
    kube_reserved_resources,
    system_reserved_resources,
)

_log = logging.getLogger(__name__)

INSTANCE_TYPES_CACHE_TTL = 23 * 60 * 60.0

CAPACITY_TYPE_SPOT = "spot"
CAPACITY_TYPE_ON_DEMAND = "on-demand"

LABEL_INSTANCE_TYPE = "node.kubernetes.io/instance-type"
LABEL_ARCH = "kubernetes.io/arch"
LABEL_OS = "kubernetes.io/os"
LABEL_TOPOLOGY_ZONE = "topology.kubernetes.io/zone"
LABEL_TOPOLOGY_REGION = "topology.kubernetes.io/region"
LABEL_CAPACITY_TYPE = "karpenter.sh/capacity-type"

_MEBIBYTE = 1024 * 1024
_GIGABYTE = 1000 * 1000 * 1000


class _Pricing(Protocol):
    def on_demand_price(self, instance_type: str) -> Optional[float]:
        ...

    def spot_price(self, instance_type: str) -> Optional[float]:
        ...

    def liveness_probe(self) -> None:
        ...


class _UnavailableOfferings(Protocol):
    def is_unavailable(self, instance_type: str, zone: str, capacity_type: str) -> bool:
        ...


@dataclass(frozen=True)
class Offering:
    """A zone and capacity type in which an instance type can be launched."""

    zone: str
    capacity_type: str
    price: float
    available: bool


@dataclass
class InstanceType:
    """An instance type with its scheduling requirements, offerings and resources."""

    name: str
    requirements: Dict[str, FrozenSet[str]]
    offerings: List[Offering]
    capacity: ResourceList
    kube_reserved: ResourceList = field(default_factory=dict)
    system_reserved: ResourceList = field(default_factory=dict)
    eviction_threshold: ResourceList = field(default_factory=dict)

    def available_offerings(self) -> List[Offering]:
        return [offering for offering in self.offerings if offering.available]


def max_ephemeral_os_disk_size_gb(sku: Optional[SKU]) -> float:
    """Largest ephemeral OS disk in GB: the larger of cached disk and temp disk space."""
    if sku is None:
        return 0
    try:
        max_cached_disk_bytes = sku.max_cached_disk_bytes()
    except (KeyError, ValueError):
        max_cached_disk_bytes = 0
    try:
        # Named MB, but the value is in MiB.
        max_resource_volume_mib = sku.max_resource_volume_mb()
    except (KeyError, ValueError):
        max_resource_volume_mib = 0
    max_disk_bytes = float(max(max_cached_disk_bytes, max_resource_volume_mib * _MEBIBYTE))
    if max_disk_bytes == 0:
        return 0
    return max_disk_bytes / _GIGABYTE


def instance_type_zones(sku: SKU, region: str) -> FrozenSet[str]:
    """Zones of the SKU in the region, labelled as on nodes ('<region>-<zone>')."""
    return frozenset(f"{region}-{zone}" for zone in sku.availability_zones(region))


def _has_minimum_cpu(sku: SKU) -> bool:
    try:
        return sku.vcpu() >= 2
    except (KeyError, ValueError):
        return False


def _has_minimum_memory(sku: SKU) -> bool:
    try:
        return sku.memory() >= 3.5
    except (KeyError, ValueError):
        return False


def _is_unsupported_gpu(sku: SKU) -> bool:
    try:
        gpu = sku.gpu()
    except (KeyError, ValueError):
        return False
    return gpu > 0 and not (is_nvidia_enabled_sku(sku.name) or is_mariner_enabled_gpu_sku(sku.name))


def _is_confidential(sku: SKU) -> bool:
    return sku.size.startswith(("DC", "EC"))


def is_supported(sku: SKU) -> bool:
    """Whether AKS supports the SKU, judged by its properties."""
    try:
        vm_size = sku.get_vm_size()
    except ValueError:
        return False
    return (
        _has_minimum_cpu(sku)
        and _has_minimum_memory(sku)
        and sku.name not in RESTRICTED_VM_SIZES
        and not _is_unsupported_gpu(sku)
        and vm_size.cpus_constrained is None
        and not _is_confidential(sku)
    )


def _requirements(
    sku: SKU, architecture: str, offerings: List[Offering], region: str
) -> Dict[str, FrozenSet[str]]:
    available = [offering for offering in offerings if offering.available]
    return {
        LABEL_INSTANCE_TYPE: frozenset({sku.name}),
        LABEL_ARCH: frozenset({architecture}),
        LABEL_OS: frozenset({"linux"}),
        LABEL_TOPOLOGY_ZONE: frozenset(offering.zone for offering in available),
        LABEL_TOPOLOGY_REGION: frozenset({region}),
        LABEL_CAPACITY_TYPE: frozenset(offering.capacity_type for offering in available),
    }


class InstanceTypeProvider:
    """Lists instance types for a region, caching the filtered SKU list."""

    def __init__(
        self,
        region: str,
        sku_source: Callable[[str], Iterable[SKU]],
        pricing_provider: _Pricing,
        unavailable_offerings: Optional[_UnavailableOfferings] = None,
        ttl: float = INSTANCE_TYPES_CACHE_TTL,
    ):
        self._region = region
        self._sku_source = sku_source
        self._pricing = pricing_provider
        self._unavailable = unavailable_offerings
        self._ttl = ttl
        self._lock = threading.Lock()
        self._cached: Optional[Dict[str, SKU]] = None
        self._cached_at = 0.0

    def list(
        self,
        kubelet: Optional[KubeletConfiguration],
        os_disk_size_gb: int,
        vm_memory_overhead_percent: float,
    ) -> List[InstanceType]:
        """All instance types that have at least one offering in the region."""
        with self._lock:
            skus = self._get_skus()
            result = []
            for sku in skus.values():
                try:
                    sku.get_vm_size()
                except ValueError as err:
                    _log.error("parsing VM size %s, %s", sku.size, err)
                    continue
                try:
                    architecture = sku.cpu_architecture()
                except KeyError as err:
                    _log.error("parsing SKU architecture %s, %s", sku.size, err)
                    continue
                offerings = self.create_offerings(sku, instance_type_zones(sku, self._region))
                if not offerings:
                    continue
                result.append(
                    InstanceType(
                        name=sku.name,
                        requirements=_requirements(sku, architecture, offerings, self._region),
                        offerings=offerings,
                        capacity=compute_capacity(
                            sku, kubelet, os_disk_size_gb, vm_memory_overhead_percent
                        ),
                        kube_reserved=kube_reserved_resources(sku.vcpu(), sku.memory()),
                        system_reserved=system_reserved_resources(),
                        eviction_threshold=eviction_threshold(),
                    )
                )
            return result

    def _get_skus(self) -> Dict[str, SKU]:
        now = time.monotonic()
        if self._cached is not None and now - self._cached_at < self._ttl:
            return self._cached
        skus = list(self._sku_source(self._region))
        _log.debug("Discovered %d SKUs", len(skus))
        supported: Dict[str, SKU] = {}
        for sku in skus:
            try:
                sku.get_vm_size()
            except ValueError as err:
                _log.error("parsing VM size %s, %s", sku.size, err)
                continue
            if is_supported(sku):
                supported[sku.name] = sku
        _log.debug("%d SKUs remaining after filtering", len(supported))
        self._cached = supported
        self._cached_at = now
        return supported

    def _is_unavailable(self, name: str, zone: str, capacity_type: str) -> bool:
        return self._unavailable is not None and self._unavailable.is_unavailable(
            name, zone, capacity_type
        )

    def create_offerings(self, sku: SKU, zones: Iterable[str]) -> List[Offering]:
        """A spot and an on-demand offering for every zone."""
        offerings = []
        for zone in sorted(zones):
            on_demand_price = self._pricing.on_demand_price(sku.name)
            spot_price = self._pricing.spot_price(sku.name)
            available_on_demand = on_demand_price is not None and not self._is_unavailable(
                sku.name, zone, CAPACITY_TYPE_ON_DEMAND
            )
            available_spot = spot_price is not None and not self._is_unavailable(
                sku.name, zone, CAPACITY_TYPE_SPOT
            )
            offerings.append(
                Offering(zone, CAPACITY_TYPE_SPOT, spot_price or 0.0, available_spot)
            )
            offerings.append(
                Offering(zone, CAPACITY_TYPE_ON_DEMAND, on_demand_price or 0.0, available_on_demand)
            )
        return offerings

    def liveness_probe(self) -> None:
        """Check the provider's lock and the pricing provider."""
        with self._lock:
            pass
        self._pricing.liveness_probe()