import threading
import time
from datetime import datetime, timezone

import pytest

from aksprovision.pricing import (
    INITIAL_PRICE_UPDATE,
    PricingProvider,
    PricingUpdateError,
    on_demand_page,
    spot_page,
)
from aksprovision.pricing_client import Item, ProductsPricePage

STATIC = {"eastus": {"Standard_D1": 0.5, "Standard_D2": 0.9}, "westus2": {"Standard_D1": 0.7}}


class FakePricingAPI:
    def __init__(self, page=None, error=None):
        self.page = page
        self.error = error
        self.calls = []

    def get_products_price_pages(self, filters, page_handler):
        self.calls.append(list(filters))
        if self.error is not None:
            raise self.error
        if self.page is not None:
            page_handler(self.page)


def product_price(name, price):
    return Item(
        arm_sku_name=name,
        retail_price=price,
        product_name="Virtual Machines D Series",
        sku_name="D1",
        meter_name="D1",
    )


def spot_product_price(name, price):
    return Item(
        arm_sku_name=name,
        retail_price=price,
        product_name="Virtual Machines D Series",
        sku_name="D1 Spot",
        meter_name="D1 Spot",
    )


def test_static_on_demand_data_if_pricing_api_fails():
    api = FakePricingAPI(error=RuntimeError("failed"))
    provider = PricingProvider(api, "", STATIC)
    provider.update_pricing()
    price = provider.on_demand_price("Standard_D1")
    assert price is not None and price > 0


def test_update_on_demand_pricing_from_api():
    api = FakePricingAPI(
        page=ProductsPricePage(
            items=[product_price("Standard_D1", 1.20), product_price("Standard_D14", 1.23)]
        )
    )
    provider = PricingProvider(api, "", STATIC)
    start = datetime.now(timezone.utc)
    provider.update_on_demand_pricing()
    assert provider.on_demand_last_updated() >= start
    assert provider.on_demand_price("Standard_D1") == 1.20
    assert provider.on_demand_price("Standard_D14") == 1.23


def test_update_spot_pricing_from_api():
    api = FakePricingAPI(
        page=ProductsPricePage(
            items=[spot_product_price("Standard_D1", 1.10), spot_product_price("Standard_D14", 1.13)]
        )
    )
    provider = PricingProvider(api, "", STATIC)
    start = datetime.now(timezone.utc)
    provider.update_spot_pricing()
    assert provider.spot_last_updated() >= start
    assert provider.spot_price("Standard_D1") == 1.10
    assert provider.spot_price("Standard_D14") == 1.13


def test_update_pricing_updates_both():
    api = FakePricingAPI(
        page=ProductsPricePage(
            items=[product_price("Standard_D1", 1.20), spot_product_price("Standard_D1", 1.10)]
        )
    )
    provider = PricingProvider(api, "", STATIC)
    provider.update_pricing()
    assert provider.on_demand_price("Standard_D1") == 1.20
    assert provider.spot_price("Standard_D1") == 1.10


def test_on_demand_page_filters_items():
    prices = {}
    windows = product_price("Standard_W", 2.0)
    windows.product_name = "Virtual Machines D Series Windows"
    low = product_price("Standard_L", 3.0)
    low.meter_name = "D1 Low Priority"
    on_demand_page(prices)(
        ProductsPricePage(
            items=[product_price("Standard_D1", 1.0), spot_product_price("Standard_S", 0.2), windows, low]
        )
    )
    assert prices == {"Standard_D1": 1.0}


def test_spot_page_keeps_only_spot():
    prices = {}
    spot_page(prices)(
        ProductsPricePage(items=[product_price("Standard_D1", 1.0), spot_product_price("Standard_S", 0.2)])
    )
    assert prices == {"Standard_S": 0.2}


def test_empty_response_raises_and_keeps_prices():
    provider = PricingProvider(FakePricingAPI(page=ProductsPricePage()), "", STATIC)
    with pytest.raises(PricingUpdateError) as info:
        provider.update_on_demand_pricing()
    assert info.value.last_update_time == INITIAL_PRICE_UPDATE
    assert provider.on_demand_price("Standard_D1") == 0.5


def test_api_error_raises_update_error():
    provider = PricingProvider(FakePricingAPI(error=RuntimeError("failed")), "", STATIC)
    with pytest.raises(PricingUpdateError, match="failed"):
        provider.update_spot_pricing()
    assert provider.spot_last_updated() == INITIAL_PRICE_UPDATE


def test_spot_defaults_to_static_on_demand():
    provider = PricingProvider(FakePricingAPI(), "", STATIC)
    assert provider.spot_price("Standard_D2") == 0.9
    assert provider.spot_price("Standard_Missing") is None


def test_region_specific_static_prices():
    provider = PricingProvider(FakePricingAPI(), "westus2", STATIC)
    assert provider.on_demand_price("Standard_D1") == 0.7
    assert provider.on_demand_price("Standard_D2") is None


def test_filters_include_region():
    api = FakePricingAPI(page=ProductsPricePage(items=[product_price("Standard_D1", 1.0)]))
    PricingProvider(api, "westus2", STATIC).update_on_demand_pricing()
    rendered = [str(f) for f in api.calls[0]]
    assert "armRegionName eq 'westus2'" in rendered
    assert "serviceName eq 'Virtual Machines'" in rendered


def test_instance_types_union():
    api = FakePricingAPI(page=ProductsPricePage(items=[spot_product_price("Standard_S", 0.2)]))
    provider = PricingProvider(api, "", STATIC)
    provider.update_spot_pricing()
    assert sorted(provider.instance_types()) == ["Standard_D1", "Standard_D2", "Standard_S"]


def test_reset_restores_static_on_demand():
    api = FakePricingAPI(page=ProductsPricePage(items=[product_price("Standard_D1", 1.20)]))
    provider = PricingProvider(api, "", STATIC)
    provider.update_on_demand_pricing()
    provider.reset()
    assert provider.on_demand_price("Standard_D1") == 0.5
    assert provider.on_demand_last_updated() == INITIAL_PRICE_UPDATE


def test_start_updates_and_stops():
    api = FakePricingAPI(page=ProductsPricePage(items=[product_price("Standard_D1", 1.20)]))
    provider = PricingProvider(api, "", STATIC)
    start_event, stop_event = threading.Event(), threading.Event()
    start_event.set()
    thread = provider.start(start_event, stop_event)
    deadline = time.monotonic() + 5
    while provider.on_demand_last_updated() == INITIAL_PRICE_UPDATE and time.monotonic() < deadline:
        time.sleep(0.01)
    stop_event.set()
    thread.join(timeout=5)
    assert provider.on_demand_price("Standard_D1") == 1.20
    assert not thread.is_alive()