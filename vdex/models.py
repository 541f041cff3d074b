"""Domain types shared by the exchange: sides, order states and table rows."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

TOPIC_ORDER = "orders"
TOPIC_FILL = "fills"

ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)
ZERO_UUID = uuid.UUID(int=0)


class Side(str, Enum):
    """Which side of the book an order sits on."""

    BUY = "buy"
    SELL = "sell"

    def opposite(self) -> "Side":
        """Return the other side."""
        return Side.SELL if self is Side.BUY else Side.BUY

    def __str__(self) -> str:
        return self.value


class OrderType(str, Enum):
    LIMIT = "limit"
    MARKET = "market"

    def __str__(self) -> str:
        return self.value


class OrderStatus(str, Enum):
    NEW = "new"
    OPEN = "open"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"
    FILLED = "filled"

    def __str__(self) -> str:
        return self.value


class DoneReason(str, Enum):
    FILLED = "filled"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value


class SettlementType(str, Enum):
    TRADE = "trade"
    ORDER = "order"

    def __str__(self) -> str:
        return self.value


def side_from_string(s: str) -> Side:
    """Parse a side, raising ValueError for anything but buy or sell."""
    try:
        return Side(s)
    except ValueError:
        raise ValueError(f"invalid side: {s}") from None


def order_status_from_string(s: str) -> OrderStatus:
    """Parse an order status, raising ValueError for unknown values."""
    try:
        return OrderStatus(s)
    except ValueError:
        raise ValueError(f"invalid status: {s}") from None


def order_type_from_onchain(v: int) -> OrderType:
    """Map the contract's numeric order type: 0 is market, anything else limit."""
    return OrderType.MARKET if v == 0 else OrderType.LIMIT


@dataclass
class User:
    id: int = 0
    address: str = ""
    created_at: datetime = ZERO_TIME
    updated_at: datetime = ZERO_TIME
    public_id: uuid.UUID = ZERO_UUID


@dataclass
class Product:
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


# The product id travels under this key on the order topic; kept for wire compatibility.
_ORDER_PRODUCT_KEY = "quoteIncrement"


@dataclass
class Order:
    id: int = 0
    created_at: datetime = ZERO_TIME
    updated_at: datetime = ZERO_TIME
    product_id: str = ""
    user_id: int = 0
    size: Decimal = field(default_factory=Decimal)
    funds: Decimal = field(default_factory=Decimal)
    filled_size: Decimal = field(default_factory=Decimal)
    executed_value: Decimal = field(default_factory=Decimal)
    price: Decimal = field(default_factory=Decimal)
    fill_fees: Decimal = field(default_factory=Decimal)
    type: OrderType | None = None
    side: Side | None = None
    time_in_force: str = ""
    status: OrderStatus | None = None
    settled: bool = False
    nonce: int = 0
    expiration: int = 0
    created_tx_hash: str = ""
    public_id: uuid.UUID = ZERO_UUID
    gasless: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready form used on the order topic."""
        return {
            "id": self.id,
            "createdAt": format_time(self.created_at),
            "updatedAt": format_time(self.updated_at),
            _ORDER_PRODUCT_KEY: self.product_id,
            "userId": self.user_id,
            "size": format_decimal(self.size),
            "funds": format_decimal(self.funds),
            "filledSize": format_decimal(self.filled_size),
            "executedValue": format_decimal(self.executed_value),
            "price": format_decimal(self.price),
            "fillFees": format_decimal(self.fill_fees),
            "type": self.type.value if self.type else "",
            "side": self.side.value if self.side else "",
            "timeInForce": self.time_in_force,
            "status": self.status.value if self.status else "",
            "settled": self.settled,
            "nonce": self.nonce,
            "expiration": self.expiration,
            "createdTxHash": self.created_tx_hash,
            "publicId": str(self.public_id),
            "gasless": self.gasless,
        }


def order_from_dict(data: dict[str, Any]) -> Order:
    """Build an Order from its JSON form; missing keys take zero values."""
    side = data.get("side") or ""
    order_type = data.get("type") or ""
    status = data.get("status") or ""
    return Order(
        id=int(data.get("id", 0)),
        created_at=parse_time(data.get("createdAt")),
        updated_at=parse_time(data.get("updatedAt")),
        product_id=str(data.get(_ORDER_PRODUCT_KEY, "")),
        user_id=int(data.get("userId", 0)),
        size=parse_decimal(data.get("size")),
        funds=parse_decimal(data.get("funds")),
        filled_size=parse_decimal(data.get("filledSize")),
        executed_value=parse_decimal(data.get("executedValue")),
        price=parse_decimal(data.get("price")),
        fill_fees=parse_decimal(data.get("fillFees")),
        type=OrderType(order_type) if order_type else None,
        side=side_from_string(side) if side else None,
        time_in_force=str(data.get("timeInForce", "")),
        status=order_status_from_string(status) if status else None,
        settled=bool(data.get("settled", False)),
        nonce=int(data.get("nonce", 0)),
        expiration=int(data.get("expiration", 0)),
        created_tx_hash=str(data.get("createdTxHash", "")),
        public_id=uuid.UUID(data["publicId"]) if data.get("publicId") else ZERO_UUID,
        gasless=bool(data.get("gasless", False)),
    )


@dataclass
class WorkerConfig:
    id: int = 0
    block_number: int = 0


@dataclass
class Trade:
    id: int = 0
    created_at: datetime = ZERO_TIME
    updated_at: datetime = ZERO_TIME
    time: datetime | None = None
    product_id: str = ""
    taker_order_id: int = 0
    maker_order_id: int = 0
    price: Decimal = field(default_factory=Decimal)
    size: Decimal = field(default_factory=Decimal)
    side: Side | None = None
    log_offset: int = 0
    public_id: uuid.UUID = ZERO_UUID


@dataclass
class Tick:
    id: int = 0
    created_at: datetime = ZERO_TIME
    updated_at: datetime = ZERO_TIME
    product_id: str = ""
    granularity: int = 0
    time: int = 0
    open: Decimal = field(default_factory=Decimal)
    high: Decimal = field(default_factory=Decimal)
    low: Decimal = field(default_factory=Decimal)
    close: Decimal = field(default_factory=Decimal)
    volume: Decimal = field(default_factory=Decimal)
    log_offset: int = 0


@dataclass
class Fill:
    id: int = 0
    created_at: datetime = ZERO_TIME
    updated_at: datetime = ZERO_TIME
    user_id: int = 0
    order_id: int = 0
    product_id: str = ""
    size: Decimal = field(default_factory=Decimal)
    price: Decimal = field(default_factory=Decimal)
    funds: Decimal = field(default_factory=Decimal)
    fee: Decimal = field(default_factory=Decimal)
    settled: bool = False
    side: Side | None = None
    done_reason: DoneReason | None = None
    log_offset: int = 0
    public_id: uuid.UUID = ZERO_UUID
    liquidity: str = ""


@dataclass
class Settlement:
    id: int = 0
    created_at: datetime = ZERO_TIME
    updated_at: datetime = ZERO_TIME
    ref_id: int = 0
    type: SettlementType | None = None
    tx_hash: str = ""
    settled: bool = False
    taker_fee: Decimal = field(default_factory=Decimal)
    maker_fee: Decimal = field(default_factory=Decimal)
    time: datetime = ZERO_TIME


@dataclass
class UserSegment:
    id: int = 0
    created_at: datetime = ZERO_TIME
    updated_at: datetime = ZERO_TIME
    user_id: int = 0
    time: int = 0
    type: int = 0
    volume: Decimal = field(default_factory=Decimal)
    log_offset: int = 0


def format_decimal(value: Decimal) -> str:
    """Render a decimal in plain notation without trailing fractional zeros."""
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text in ("-0", ""):
        text = "0"
    return text


def parse_decimal(value: Any) -> Decimal:
    """Read a decimal given as a string or a number; None reads as zero."""
    if value is None or value == "":
        return Decimal(0)
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"can't convert {value!r} to decimal") from None
    if not result.is_finite():
        raise ValueError(f"can't convert {value!r} to decimal")
    return result


_TIME_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})$"
)


def format_time(value: datetime) -> str:
    """Render a timestamp in RFC 3339 with trimmed fractional seconds."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    )
    if value.microsecond:
        text += "." + f"{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset() or timedelta(0)
    if not offset:
        return text + "Z"
    sign = "+" if offset > timedelta(0) else "-"
    minutes = abs(int(offset.total_seconds())) // 60
    return text + f"{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def parse_time(value: str | None) -> datetime:
    """Read an RFC 3339 timestamp; None or empty reads as the zero time."""
    if not value:
        return ZERO_TIME
    match = _TIME_RE.match(value)
    if match is None:
        raise ValueError(f"invalid timestamp: {value!r}")
    year, month, day, hour, minute, second, frac, zone = match.groups()
    if zone == "Z":
        tz = timezone.utc
    else:
        delta = timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6]))
        tz = timezone(-delta if zone[0] == "-" else delta)
    micro = int((frac or "").ljust(6, "0")[:6])
    return datetime(
        int(year), int(month), int(day), int(hour), int(minute), int(second), micro, tzinfo=tz
    )