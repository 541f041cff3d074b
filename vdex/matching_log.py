"""Order-book log entries emitted by the matching engine and their dispatch."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol

from .models import ZERO_TIME, format_decimal, format_time, parse_decimal, parse_time


class LogType(str, Enum):
    PARTIAL = "partial"
    DONE = "done"
    OPEN = "open"
    CANCEL = "cancel"

    def __str__(self) -> str:
        return self.value


@dataclass
class LogOrder:
    """One entry of the matching log: an opened, filled or cancelled order."""

    log_type: LogType | None = None
    order_id: int = 0
    product_id: str = ""
    quantity: Decimal = field(default_factory=Decimal)
    price: Decimal = field(default_factory=Decimal)
    side: str | int = ""
    time: datetime = ZERO_TIME
    taker_order_id: int = 0
    maker_order_id: int = 0

    def to_json(self) -> str:
        """Return the compact JSON form written to the log topic."""
        payload = {
            "LogType": self.log_type.value if self.log_type else "",
            "OrderID": self.order_id,
            "ProductID": self.product_id,
            "Quantity": format_decimal(self.quantity),
            "Price": format_decimal(self.price),
            "Side": self.side,
            "Time": format_time(self.time),
            "TakerOrderID": self.taker_order_id,
            "MakerOrderID": self.maker_order_id,
        }
        return json.dumps(payload, separators=(",", ":"))


def _log_type(value: Any) -> LogType | None:
    try:
        return LogType(value)
    except ValueError:
        return None


def log_order_from_json(text: str | bytes) -> LogOrder:
    """Parse a log entry; keys match without regard to case, missing ones read as zero.

    A log type that is not known is kept as None. Malformed input raises ValueError.
    """
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("log entry must be a JSON object")
    fields = {str(key).lower(): value for key, value in data.items()}
    side = fields.get("side")
    try:
        return LogOrder(
            log_type=_log_type(fields.get("logtype") or ""),
            order_id=int(fields.get("orderid") or 0),
            product_id=str(fields.get("productid") or ""),
            quantity=parse_decimal(fields.get("quantity")),
            price=parse_decimal(fields.get("price")),
            side="" if side is None else side,
            time=parse_time(fields.get("time")),
            taker_order_id=int(fields.get("takerorderid") or 0),
            maker_order_id=int(fields.get("makerorderid") or 0),
        )
    except TypeError as exc:
        raise ValueError(str(exc)) from None


class LogObserver(Protocol):
    """Receives matching log entries as they are read."""

    def on_open_log(self, log: LogOrder, offset: int) -> None:
        """Called for an order that now rests on the book."""

    def on_done_log(self, log: LogOrder, offset: int) -> None:
        """Called for a match between a taker and a maker order."""

    def on_cancel_log(self, log: LogOrder, offset: int) -> None:
        """Called for an order removed from the book."""


def dispatch_log(observer: LogObserver, text: str | bytes, offset: int) -> LogOrder:
    """Parse one log message and hand it to the observer method for its type.

    Entries of other types are parsed but passed to no method. Returns the entry.
    """
    log = log_order_from_json(text)
    if log.log_type is LogType.OPEN:
        observer.on_open_log(log, offset)
    elif log.log_type is LogType.DONE:
        observer.on_done_log(log, offset)
    elif log.log_type is LogType.CANCEL:
        observer.on_cancel_log(log, offset)
    return log