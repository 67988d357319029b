"""Backend pools of the cluster's load balancers to attach new VMs to."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Protocol

_log = logging.getLogger(__name__)

SLB_NAME = "kubernetes"
SLB_NAME_IPV6 = "kubernetes-ipv6"
# Created by the cloud provider for internal LoadBalancer services; may not exist yet.
INTERNAL_SLB_NAME = "kubernetes-internal"

SLB_OUTBOUND_BACKEND_POOL_NAME = "aksOutboundBackendPool"
SLB_OUTBOUND_BACKEND_POOL_NAME_IPV6 = "aksOutboundBackendPool-ipv6"
SLB_INBOUND_BACKEND_POOL_NAME = "kubernetes"
SLB_INBOUND_BACKEND_POOL_NAME_IPV6 = "kubernetes-ipv6"

LOAD_BALANCERS_CACHE_TTL = 2 * 60 * 60.0


@dataclass
class BackendAddress:
    """An address in a backend pool; an IP address marks an IP-based pool."""

    ip_address: Optional[str] = None


@dataclass
class BackendAddressPool:
    """A load balancer backend pool; addresses is None when properties are missing."""

    id: Optional[str] = None
    name: Optional[str] = None
    addresses: Optional[List[BackendAddress]] = field(default_factory=list)


@dataclass
class LoadBalancer:
    """A load balancer; backend_address_pools is None when properties are missing."""

    name: Optional[str] = None
    id: Optional[str] = None
    backend_address_pools: Optional[List[BackendAddressPool]] = field(default_factory=list)


@dataclass
class BackendAddressPools:
    """Pool IDs to assign to a VM's primary NIC."""

    ipv4_pool_ids: List[str] = field(default_factory=list)
    ipv6_pool_ids: List[str] = field(default_factory=list)


class _LoadBalancersAPI(Protocol):
    def list_pages(self, resource_group: str) -> Iterable[Iterable[LoadBalancer]]:
        ...


def is_cluster_load_balancer(lb: LoadBalancer) -> bool:
    """Whether the load balancer is one of the cluster's well-known ones."""
    name = (lb.name or "").casefold()
    return name in (SLB_NAME.casefold(), INTERNAL_SLB_NAME.casefold())


def is_backend_address_pool_applicable(pool: BackendAddressPool) -> bool:
    """Whether VMs should join the pool: not IPv6 and not IP-based."""
    if pool.addresses is None or pool.name is None:
        return False
    name = pool.name.casefold()
    if name in (
        SLB_OUTBOUND_BACKEND_POOL_NAME_IPV6.casefold(),
        SLB_INBOUND_BACKEND_POOL_NAME_IPV6.casefold(),
    ):
        return False
    return not any(address.ip_address for address in pool.addresses)


class LoadBalancerProvider:
    """Serves cluster load balancer backend pools, cached to save Azure requests."""

    def __init__(
        self,
        api: _LoadBalancersAPI,
        resource_group: str,
        ttl: float = LOAD_BALANCERS_CACHE_TTL,
    ):
        self._api = api
        self._resource_group = resource_group
        self._ttl = ttl
        self._lock = threading.Lock()
        self._cached: Optional[List[LoadBalancer]] = None
        self._cached_at = 0.0

    def load_balancer_backend_pools(self) -> BackendAddressPools:
        """IPv4 backend pool IDs of the cluster load balancers."""
        pools = [
            pool
            for lb in self._get_load_balancers()
            for pool in (lb.backend_address_pools or [])
        ]
        ipv4 = [pool.id or "" for pool in pools if is_backend_address_pool_applicable(pool)]
        _log.debug("Returning %d IPv4 backend pools: %s", len(ipv4), ipv4)
        return BackendAddressPools(ipv4_pool_ids=ipv4)

    def flush(self) -> None:
        """Drop the cached load balancers."""
        with self._lock:
            self._cached = None

    def _get_load_balancers(self) -> List[LoadBalancer]:
        with self._lock:
            now = time.monotonic()
            if self._cached is not None and now - self._cached_at < self._ttl:
                return self._cached
            lbs = self._load_from_azure()
            self._cached = lbs
            self._cached_at = now
            return lbs

    def _load_from_azure(self) -> List[LoadBalancer]:
        _log.info("Querying load balancers in resource group %s", self._resource_group)
        lbs: List[LoadBalancer] = []
        pages = iter(self._api.list_pages(self._resource_group))
        while True:
            try:
                page = next(pages)
            except StopIteration:
                break
            except Exception as err:
                raise RuntimeError(f"failed to get next loadbalancer page: {err}") from err
            lbs.extend(page)
        result = [lb for lb in lbs if is_cluster_load_balancer(lb)]
        _log.info("Found %d load balancers of interest", len(result))
        return result