"""On-demand and spot VM pricing, refreshed periodically from the retail prices API."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Mapping, Optional, Protocol

from aksprovision.pricing_client import (
    ComparisonOperator,
    Filter,
    Item,
    ProductsPricePage,
)

_log = logging.getLogger(__name__)

PRICING_UPDATE_PERIOD = timedelta(hours=12)
DEFAULT_REGION = "eastus"
INITIAL_PRICE_UPDATE = datetime(1970, 1, 1, tzinfo=timezone.utc)

_START_POLL_SECONDS = 0.05

PageHandler = Callable[[ProductsPricePage], None]


class _PricingSource(Protocol):
    def get_products_price_pages(self, filters, page_handler: PageHandler) -> None:
        ...


class PricingUpdateError(Exception):
    """A price refresh failed; the previous prices remain in use."""

    def __init__(self, message: str, last_update_time: datetime):
        super().__init__(message)
        self.last_update_time = last_update_time


def _is_excluded(item: Item) -> bool:
    # Low priority VMs are a separate offering from spot and are never used.
    return item.product_name.endswith(" Windows") or item.meter_name.endswith(" Low Priority")


def on_demand_page(prices: Dict[str, float]) -> PageHandler:
    """Return a page handler that records Linux on-demand prices into `prices`."""

    def handle(page: ProductsPricePage) -> None:
        for item in page.items:
            if _is_excluded(item) or item.sku_name.endswith(" Spot"):
                continue
            prices[item.arm_sku_name] = item.retail_price

    return handle


def spot_page(prices: Dict[str, float]) -> PageHandler:
    """Return a page handler that records Linux spot prices into `prices`."""

    def handle(page: ProductsPricePage) -> None:
        for item in page.items:
            if _is_excluded(item) or not item.sku_name.endswith(" Spot"):
                continue
            prices[item.arm_sku_name] = item.retail_price

    return handle


class PricingProvider:
    """Keeps the latest known prices per instance type.

    Starts from static prices for the region (or the default region) and
    keeps whatever it had whenever a refresh fails.
    """

    def __init__(
        self,
        pricing_api: _PricingSource,
        region: str,
        static_prices: Optional[Mapping[str, Mapping[str, float]]] = None,
    ):
        self._pricing_api = pricing_api
        self._region = region
        self._static_prices = dict(static_prices or {})
        self._lock = threading.RLock()
        self._logged: Dict[str, Dict[str, float]] = {}

        static = self._static_for_region()
        self._on_demand_prices = dict(static)
        self._on_demand_update_time = INITIAL_PRICE_UPDATE
        # Spot prices default to on-demand prices until the first update.
        self._spot_prices = dict(static)
        self._spot_update_time = INITIAL_PRICE_UPDATE

    def _static_for_region(self) -> Dict[str, float]:
        if self._region in self._static_prices:
            return dict(self._static_prices[self._region])
        return dict(self._static_prices.get(DEFAULT_REGION, {}))

    def start(self, start_event: threading.Event, stop_event: threading.Event) -> threading.Thread:
        """Run the update loop in a daemon thread and return the thread.

        An update runs at once; periodic updates begin when start_event is set
        and stop once stop_event is set.
        """
        thread = threading.Thread(
            target=self._run, args=(start_event, stop_event), name="pricing", daemon=True
        )
        thread.start()
        return thread

    def _run(self, start_event: threading.Event, stop_event: threading.Event) -> None:
        self.update_pricing()
        started = time.monotonic()
        while not start_event.wait(_START_POLL_SECONDS):
            if stop_event.is_set():
                return
        if stop_event.is_set():
            return
        # If it took very long to be started, refresh before periodic polling.
        if time.monotonic() - started > PRICING_UPDATE_PERIOD.total_seconds():
            self.update_pricing()
        while not stop_event.wait(PRICING_UPDATE_PERIOD.total_seconds()):
            self.update_pricing()

    def instance_types(self) -> list:
        """Instance types with a known on-demand or spot price."""
        with self._lock:
            return list(dict.fromkeys([*self._on_demand_prices, *self._spot_prices]))

    def on_demand_last_updated(self) -> datetime:
        with self._lock:
            return self._on_demand_update_time

    def spot_last_updated(self) -> datetime:
        with self._lock:
            return self._spot_update_time

    def on_demand_price(self, instance_type: str) -> Optional[float]:
        """Last known on-demand price, or None if unknown."""
        with self._lock:
            return self._on_demand_prices.get(instance_type)

    def spot_price(self, instance_type: str) -> Optional[float]:
        """Last known spot price, or None if unknown."""
        with self._lock:
            return self._spot_prices.get(instance_type)

    def update_pricing(self) -> None:
        """Refresh on-demand and spot prices concurrently, logging any failure."""
        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = {
                "on-demand": pool.submit(self.update_on_demand_pricing),
                "spot": pool.submit(self.update_spot_pricing),
            }
        for kind, future in futures.items():
            try:
                future.result()
            except PricingUpdateError as err:
                _log.error(
                    "error updating %s pricing for region %s, %s, using existing pricing data from %s",
                    kind,
                    self._region,
                    err,
                    err.last_update_time.isoformat(),
                )

    def _filters(self) -> list:
        eq = ComparisonOperator.EQUALS
        return [
            Filter("priceType", eq, "Consumption"),
            Filter("currencyCode", eq, "USD"),
            Filter("serviceFamily", eq, "Compute"),
            Filter("serviceName", eq, "Virtual Machines"),
            Filter("armRegionName", eq, self._region),
        ]

    def _fetch(self, make_handler: Callable[[Dict[str, float]], PageHandler], last_update) -> Dict[str, float]:
        prices: Dict[str, float] = {}
        try:
            self._pricing_api.get_products_price_pages(self._filters(), make_handler(prices))
        except Exception as err:
            raise PricingUpdateError(str(err), last_update()) from err
        return prices

    def _log_if_changed(self, key: str, prices: Dict[str, float], kind: str) -> None:
        if self._logged.get(key) != prices:
            self._logged[key] = dict(prices)
            _log.info(
                "updated %s pricing for region %s (instance-type-count=%d)",
                kind,
                self._region,
                len(prices),
            )

    def update_on_demand_pricing(self) -> None:
        """Fetch on-demand prices; raise PricingUpdateError and keep old prices on failure."""
        prices = self._fetch(on_demand_page, self.on_demand_last_updated)
        with self._lock:
            if not prices:
                raise PricingUpdateError("no on-demand pricing found", self._on_demand_update_time)
            self._on_demand_prices = prices
            self._on_demand_update_time = datetime.now(timezone.utc)
            self._log_if_changed("on-demand-prices", prices, "on-demand")

    def update_spot_pricing(self) -> None:
        """Fetch spot prices; raise PricingUpdateError and keep old prices on failure."""
        prices = self._fetch(spot_page, self.spot_last_updated)
        with self._lock:
            if not prices:
                raise PricingUpdateError("no spot pricing found", self._spot_update_time)
            self._spot_prices = prices
            self._spot_update_time = datetime.now(timezone.utc)
            self._log_if_changed("spot-prices", prices, "spot")

    def liveness_probe(self) -> None:
        """Check that the price lock can be taken."""
        with self._lock:
            pass

    def reset(self) -> None:
        """Restore on-demand prices to the static data."""
        static = self._static_for_region()
        with self._lock:
            self._on_demand_prices = static
            self._on_demand_update_time = INITIAL_PRICE_UPDATE