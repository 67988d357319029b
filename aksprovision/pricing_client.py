"""Client for the Azure retail prices API."""

from __future__ import annotations

import enum
import json
import re
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

API_VERSION = "2021-10-01-preview"
PRICING_URL = "https://prices.azure.com/api/retail/prices?api-version=" + API_VERSION

Fetcher = Callable[[str], "tuple[int, bytes]"]


class ComparisonOperator(str, enum.Enum):
    """Comparison operators usable in a price query filter."""

    EQUALS = "eq"


@dataclass(frozen=True)
class Filter:
    """A basic `field op 'value'` filter term."""

    field: str
    operator: ComparisonOperator
    value: str

    def __str__(self) -> str:
        return f"{self.field} {ComparisonOperator(self.operator).value} '{self.value}'"


_FRACTION_RE = re.compile(r"\.(\d+)")


def _parse_time(value: Any) -> Optional[datetime]:
    if not value:
        return None
    text = str(value)
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    return datetime.fromisoformat(text)


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _number(value: Any) -> float:
    return 0.0 if value is None else float(value)


@dataclass(kw_only=True)
class Item:
    """One price entry returned by the retail prices API."""

    currency_code: str = ""
    tier_minimum_units: float = 0.0
    retail_price: float = 0.0
    unit_price: float = 0.0
    arm_region_name: str = ""
    location: str = ""
    effective_start_date: Optional[datetime] = None
    meter_id: str = ""
    meter_name: str = ""
    product_id: str = ""
    sku_id: str = ""
    availability_id: Any = None
    product_name: str = ""
    sku_name: str = ""
    service_name: str = ""
    service_id: str = ""
    service_family: str = ""
    unit_of_measure: str = ""
    type: str = ""
    is_primary_meter_region: bool = False
    arm_sku_name: str = ""
    effective_end_date: Optional[datetime] = None
    reservation_term: str = ""

    _FIELDS = (
        ("currencyCode", "currency_code", _text),
        ("tierMinimumUnits", "tier_minimum_units", _number),
        ("retailPrice", "retail_price", _number),
        ("unitPrice", "unit_price", _number),
        ("armRegionName", "arm_region_name", _text),
        ("location", "location", _text),
        ("effectiveStartDate", "effective_start_date", _parse_time),
        ("meterId", "meter_id", _text),
        ("meterName", "meter_name", _text),
        ("productId", "product_id", _text),
        ("skuId", "sku_id", _text),
        ("availabilityId", "availability_id", lambda v: v),
        ("productName", "product_name", _text),
        ("skuName", "sku_name", _text),
        ("serviceName", "service_name", _text),
        ("serviceId", "service_id", _text),
        ("serviceFamily", "service_family", _text),
        ("unitOfMeasure", "unit_of_measure", _text),
        ("type", "type", _text),
        ("isPrimaryMeterRegion", "is_primary_meter_region", bool),
        ("armSkuName", "arm_sku_name", _text),
        ("effectiveEndDate", "effective_end_date", _parse_time),
        ("reservationTerm", "reservation_term", _text),
    )

    @classmethod
    def from_dict(cls, data: dict) -> "Item":
        """Build an item from its JSON object."""
        kwargs = {
            attr: convert(data[key]) for key, attr, convert in cls._FIELDS if key in data
        }
        return cls(**kwargs)


@dataclass(kw_only=True)
class ProductsPricePage:
    """One page of results from the retail prices API."""

    billing_currency: str = ""
    customer_entity_id: str = ""
    customer_entity_type: str = ""
    items: list = field(default_factory=list)
    next_page_link: str = ""
    count: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "ProductsPricePage":
        """Build a page from its JSON object."""
        return cls(
            billing_currency=_text(data.get("BillingCurrency")),
            customer_entity_id=_text(data.get("CustomerEntityId")),
            customer_entity_type=_text(data.get("CustomerEntityType")),
            items=[Item.from_dict(entry) for entry in data.get("Items") or []],
            next_page_link=_text(data.get("NextPageLink")),
            count=int(data.get("Count") or 0),
        )


class PricingAPIError(Exception):
    """The prices API returned an unusable response."""


def build_url(filters: Iterable[Filter]) -> str:
    """Return the first query URL for the given filters."""
    terms = [str(f) for f in filters]
    if not terms:
        return PRICING_URL
    return PRICING_URL + "&$filter=" + urllib.parse.quote_plus(" and ".join(terms), safe="")


def _urllib_fetch(url: str, timeout: Optional[float] = None) -> "tuple[int, bytes]":
    try:
        with urllib.request.urlopen(url, timeout=timeout) as response:
            return response.status, response.read()
    except urllib.error.HTTPError as err:
        return err.code, b""


class PricingAPI:
    """Pages through the retail prices API, handing each page to a callback."""

    def __init__(self, fetch: Optional[Fetcher] = None, timeout: Optional[float] = None):
        self._fetch = fetch or (lambda url: _urllib_fetch(url, timeout))

    def get_products_price_pages(
        self,
        filters: Iterable[Filter],
        page_handler: Callable[[ProductsPricePage], None],
    ) -> None:
        """Fetch every page matching the filters and pass each to page_handler."""
        next_url = build_url(filters)
        while next_url:
            status, body = self._fetch(next_url)
            if status != 200:
                raise PricingAPIError(f"got a non-200 status code: {status}")
            try:
                data = json.loads(body)
            except ValueError as err:
                raise PricingAPIError(f"decoding price page: {err}") from err
            if not isinstance(data, dict):
                raise PricingAPIError("decoding price page: expected a JSON object")
            page = ProductsPricePage.from_dict(data)
            page_handler(page)
            next_url = page.next_page_link