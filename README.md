# aksprovision

Building blocks for provisioning nodes in an AKS cluster. The package uses
only the standard library.

## Modules

- **`aksprovision.gpu`**: checks whether a VM size has NVIDIA driver support
  (`is_nvidia_enabled_sku`, `is_mariner_enabled_gpu_sku`) and picks the
  driver version to install (`get_gpu_driver_version`). Sizes are matched
  case-insensitively, and an optional `_Promo` suffix is ignored.
- **`aksprovision.vmid`**: reads the VM name from a node's provider ID
  (`get_vm_name`). It also lower-cases the resource group of a resource ID
  (`convert_resource_group_name_to_lower`), turns a resource ID into a provider
  ID (`resource_id_to_provider_id`) and builds VM resource IDs (`mk_vm_id`).
  A malformed ID raises `ProviderIDError`.
- **`aksprovision.pricing_client`**: a client for the Azure retail prices API.
  - `Filter` terms use `ComparisonOperator`.
  - `build_url` builds the query URL from the filters.
  - `Item` and `ProductsPricePage` are typed records, each with a `from_dict`
    constructor.
  - `PricingAPI.get_products_price_pages` follows `NextPageLink` and hands each
    page to a callback. It raises `PricingAPIError` on a non-200 status or a
    body that does not decode. By default it fetches with `urllib`; you can
    pass your own `fetch` callable instead.
- **`aksprovision.pricing`**: `PricingProvider` keeps on-demand and spot prices
  for one region.
  - It starts from the `static_prices` mapping you pass, keyed by region, and
    falls back to `eastus` when your region is missing.
  - `update_on_demand_pricing` and `update_spot_pricing` refresh the prices and
    raise `PricingUpdateError` on failure. Whenever a refresh fails, the
    previous prices stay in use.
  - `update_pricing` runs both refreshes at once and logs any error.
  - `start` runs one update straight away in a daemon thread. Periodic 12-hour
    updates begin once the start event is set, and end when the stop event is
    set.
  - `on_demand_page` and `spot_page` are the page handlers that sort the prices
    into the two sets.
- **`aksprovision.launchtemplate`**: holds the launch template parameters in
  `StaticParameters` and `Parameters`.
  - `create_launch_template` renders a `Template`. It takes the user data from
    the parameters' bootstrapper and adds the `karpenter.azure.com/cluster`
    tag.
  - `merge_tags` merges tag maps, later maps winning, and replaces `/` in keys
    with `_`.
- **`aksprovision.instancetype`**: describes SKUs and computes what they offer.
  - `SKU`, `VMSize` and `KubeletConfiguration` describe a VM size.
  - `Quantity` is an exact resource amount that prints in Kubernetes form
    (`"100m"`, `"1843Mi"`).
  - `TaxBrackets` and `kube_reserved_resources` compute the kube-reserved CPU
    and memory.
  - `compute_capacity`, `pods`, `gpu_nvidia_count`, `memory_mib` and
    `sku_version` derive what a node of a SKU offers.
- **`aksprovision.instancetypes`**: `InstanceTypeProvider` lists the
  `InstanceType`s for a region.
  - It drops SKUs that `is_supported` rejects: too small, restricted, an
    unsupported GPU, constrained CPUs, or confidential.
  - It builds a spot and an on-demand `Offering` per zone from the pricing
    provider and an optional unavailable-offerings check.
  - It caches the filtered SKU list for 23 hours.
  - `max_ephemeral_os_disk_size_gb` and `instance_type_zones` help with disk
    sizes and zone labels.
- **`aksprovision.loadbalancer`**: `LoadBalancerProvider` returns the IPv4
  backend pool IDs of the `kubernetes` and `kubernetes-internal` load
  balancers.
  - It skips IPv6 pools and IP-based pools.
  - It caches the load balancers for two hours. `flush` clears the cache.

## Examples

```python
from aksprovision.gpu import is_nvidia_enabled_sku, get_gpu_driver_version

is_nvidia_enabled_sku("Standard_NC6s_v3_Promo")   # True
get_gpu_driver_version("standard_nc8ads_a10_v4")  # "grid-510.73.08"
```

```python
from aksprovision.instancetype import kube_reserved_resources

reserved = kube_reserved_resources(2, 8.0)
str(reserved["cpu"]), str(reserved["memory"])      # ("100m", "1843Mi")
```

```python
from aksprovision.vmid import get_vm_name

get_vm_name(
    "azure:///subscriptions/sub/resourceGroups/rg/providers/"
    "Microsoft.Compute/virtualMachines/aks-node-1"
)  # "aks-node-1"
```

## What it does not do

- It ships no static price tables. You supply them as `static_prices`.
- It does not query Azure for SKUs. `InstanceTypeProvider` takes a
  `sku_source` callable.
- It does not query Azure for load balancers. `LoadBalancerProvider` takes an
  object with a `list_pages(resource_group)` method.
- It does not render node bootstrap scripts. `Parameters.user_data` is any
  object with a `script()` method.
- It has no command-line tool, no controller and no admission webhooks.

## Running the tests

```
pip install -e .[test]
pytest
```