"""Request, query and response shapes of the HTTP API."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable

from .models import (
    ZERO_TIME,
    OrderStatus,
    Product,
    Side,
    format_decimal,
    format_time,
)


@dataclass
class IDParams:
    """Path parameter holding a record id; products use string ids."""

    id: int | str = 0


@dataclass
class LoginReq:
    address: str = ""
    signature: str = ""


@dataclass
class CreateOrderReq:
    side: str = ""
    quantity: float = 0.0
    price: float = 0.0
    type: str = ""
    product_id: str = ""
    user_id: int = 0


@dataclass
class CreateGaslessOrderReq:
    encoded_permit: str = ""
    place_order_sig: str = ""
    product_id: str = ""
    quantity: str = ""
    price: str = ""
    order_type: str = ""
    side: str = ""
    expiration: int = 0


@dataclass
class GetOrderQuery:
    product_id: str | None = None
    limit: int = 0
    statuses: str = ""
    after_id: int = 0
    side: Side | None = None

    def status_list(self) -> list[OrderStatus | str]:
        """Split the comma-separated statuses; values not known are kept as given."""
        result: list[OrderStatus | str] = []
        for part in self.statuses.split(","):
            try:
                result.append(OrderStatus(part))
            except ValueError:
                result.append(part)
        return result


@dataclass
class CancelOrdersQuery:
    product_id: str | None = None
    side: Side | None = None


@dataclass
class FilledHistoryQuery:
    limit: int = 0


@dataclass
class SubmitOrderBody:
    id: int = 0
    side: str = ""
    quantity: float = 0.0
    price: float = 0.0
    type: str = ""
    product_id: str = ""
    is_cancel: bool = False


@dataclass
class GetTradesQuery:
    limit: int = 0


@dataclass
class GetDepthQuery:
    limit: int = 0


@dataclass
class GetCandlesQuery:
    granularity: int = 0
    limit: int = 0


@dataclass
class ProductRes:
    id: str = ""
    created_at: datetime = ZERO_TIME
    updated_at: datetime = ZERO_TIME
    base_currency: str = ""
    quote_currency: str = ""
    base_min_size: Decimal = field(default_factory=Decimal)
    base_max_size: Decimal = field(default_factory=Decimal)
    quote_min_size: Decimal = field(default_factory=Decimal)
    quote_max_size: Decimal = field(default_factory=Decimal)
    base_scale: int = 0
    quote_scale: int = 0
    quote_increment: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready response form."""
        return {
            "id": self.id,
            "createdAt": format_time(self.created_at),
            "updatedAt": format_time(self.updated_at),
            "baseCurrency": self.base_currency,
            "quoteCurrency": self.quote_currency,
            "baseMinSize": format_decimal(self.base_min_size),
            "baseMaxSize": format_decimal(self.base_max_size),
            "quoteMinSize": format_decimal(self.quote_min_size),
            "quoteMaxSize": format_decimal(self.quote_max_size),
            "baseScale": self.base_scale,
            "quoteScale": self.quote_scale,
            "quoteIncrement": self.quote_increment,
        }


def new_products_res(products: Iterable[Product]) -> list[ProductRes]:
    """Convert products into their response form, keeping order."""
    return [
        ProductRes(
            id=p.id,
            created_at=p.created_at,
            updated_at=p.updated_at,
            base_currency=p.base_currency,
            quote_currency=p.quote_currency,
            base_min_size=p.base_min_size,
            base_max_size=p.base_max_size,
            quote_min_size=p.quote_min_size,
            quote_max_size=p.quote_max_size,
            base_scale=p.base_scale,
            quote_scale=p.quote_scale,
            quote_increment=p.quote_increment,
        )
        for p in products
    ]