"""Persistent storage for exchange records, backed by SQLite."""

from __future__ import annotations

import functools
import sqlite3
import typing
import uuid
from dataclasses import MISSING, Field, dataclass, fields
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Sequence, TypeVar

from .models import (
    ZERO_UUID,
    DoneReason,
    Fill,
    Order,
    OrderStatus,
    OrderType,
    Product,
    Settlement,
    SettlementType,
    Side,
    Tick,
    Trade,
    User,
    UserSegment,
    WorkerConfig,
    format_decimal,
    format_time,
    parse_time,
)

T = TypeVar("T")


class NotFoundError(LookupError):
    """No row matched the query."""


class NotInTransactionError(RuntimeError):
    """A transaction operation was called on a store that is not a transaction."""


@dataclass(frozen=True)
class _Table:
    name: str
    text_key: bool = False
    unique: tuple[str, ...] = ()
    unique_where: str = ""


_TABLES: dict[type, _Table] = {
    Product: _Table("products", text_key=True),
    User: _Table("users"),
    Order: _Table("orders", unique=("created_tx_hash",), unique_where="created_tx_hash <> ''"),
    WorkerConfig: _Table("worker_configs"),
    Trade: _Table("trades"),
    Tick: _Table("ticks", unique=("product_id", "granularity", "time")),
    Fill: _Table("fills"),
    Settlement: _Table("settlements"),
    UserSegment: _Table("user_segments", unique=("user_id", "time")),
}

_ANNOTATION_TYPES: dict[str, type] = {
    "datetime": datetime,
    "Decimal": Decimal,
    "uuid.UUID": uuid.UUID,
    "UUID": uuid.UUID,
    "bool": bool,
    "int": int,
    "float": float,
    "str": str,
    "Side": Side,
    "OrderType": OrderType,
    "OrderStatus": OrderStatus,
    "DoneReason": DoneReason,
    "SettlementType": SettlementType,
}


def _annotation_type(annotation: Any) -> Any:
    if not isinstance(annotation, str):
        return annotation
    text = annotation.strip()
    for prefix in ("Optional[", "typing.Optional["):
        if text.startswith(prefix) and text.endswith("]"):
            text = text[len(prefix):-1]
    parts = [part.strip() for part in text.split("|") if part.strip() != "None"]
    if not parts:
        return object
    return _ANNOTATION_TYPES.get(parts[0].strip("'\""), object)


@functools.lru_cache(maxsize=None)
def _hints(cls: type) -> dict[str, Any]:
    return {f.name: _annotation_type(f.type) for f in fields(cls)}


def _zero(f: Field) -> Any:
    if f.default is not MISSING:
        return f.default
    return f.default_factory()  # type: ignore[misc]


def _to_db(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return format_decimal(value)
    if isinstance(value, datetime):
        return format_time(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


def _from_db(value: Any, hint: Any) -> Any:
    args = [arg for arg in typing.get_args(hint) if arg is not type(None)]
    if args:
        hint = args[0]
    if value is None:
        return None
    if hint is datetime:
        return parse_time(value)
    if hint is Decimal:
        return Decimal(str(value))
    if hint is uuid.UUID:
        return uuid.UUID(str(value))
    if hint is bool:
        return bool(value)
    if isinstance(hint, type) and issubclass(hint, Enum):
        return hint(value) if value else None
    if hint is int:
        return int(value)
    if hint is float:
        return float(value)
    if hint is str:
        return str(value)
    return value


def _quoted(names: Iterable[str]) -> str:
    return ", ".join(f'"{name}"' for name in names)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else str(value)


def _create_schema(conn: sqlite3.Connection) -> None:
    for cls, table in _TABLES.items():
        key = "id TEXT PRIMARY KEY" if table.text_key else "id INTEGER PRIMARY KEY AUTOINCREMENT"
        columns = [key] + [f'"{f.name}"' for f in fields(cls) if f.name != "id"]
        conn.execute(f'CREATE TABLE IF NOT EXISTS "{table.name}" ({", ".join(columns)})')
        if table.unique:
            where = f" WHERE {table.unique_where}" if table.unique_where else ""
            conn.execute(
                f'CREATE UNIQUE INDEX IF NOT EXISTS "{table.name}_unique" '
                f'ON "{table.name}" ({_quoted(table.unique)}){where}'
            )


def connect(path: str | Path) -> "Store":
    """Open (creating if needed) a store at the given SQLite path."""
    conn = sqlite3.connect(str(path), isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    _create_schema(conn)
    return Store(conn)


class Store:
    """Access to products, orders, trades, fills and related records."""

    def __init__(self, conn: sqlite3.Connection, in_tx: bool = False) -> None:
        self._conn = conn
        self._in_tx = in_tx

    # ---------------------------------------------------------------- helpers

    def _row(self, cls: type[T], row: sqlite3.Row) -> T:
        hints = _hints(cls)
        return cls(**{f.name: _from_db(row[f.name], hints[f.name]) for f in fields(cls)})

    def _select(
        self,
        cls: type[T],
        where: str = "",
        params: Sequence[Any] = (),
        order_by: str = "",
        limit: int | None = None,
    ) -> list[T]:
        sql = f'SELECT * FROM "{_TABLES[cls].name}"'
        args = list(params)
        if where:
            sql += f" WHERE {where}"
        if order_by:
            sql += f" ORDER BY {order_by}"
        if limit is not None and limit > 0:
            sql += " LIMIT ?"
            args.append(int(limit))
        return [self._row(cls, row) for row in self._conn.execute(sql, args)]

    def _first(self, cls: type[T], where: str = "", params: Sequence[Any] = (), order_by: str = "") -> T:
        rows = self._select(cls, where, params, order_by, limit=1)
        if not rows:
            raise NotFoundError(f"no rows in {_TABLES[cls].name}")
        return rows[0]

    def _select_in(self, cls: type[T], ids: Sequence[Any]) -> list[T]:
        if not ids:
            return []
        marks = ", ".join("?" for _ in ids)
        return self._select(cls, f"id IN ({marks})", list(ids))

    def _columns(self, obj: Any) -> list[str]:
        table = _TABLES[type(obj)]
        return [
            f.name
            for f in fields(obj)
            if not (f.name == "id" and not table.text_key and not obj.id)
        ]

    def _fill_defaults(self, obj: Any) -> None:
        if getattr(obj, "public_id", None) == ZERO_UUID:
            obj.public_id = uuid.uuid4()

    def _insert(self, obj: Any) -> None:
        table = _TABLES[type(obj)]
        self._fill_defaults(obj)
        names = self._columns(obj)
        marks = ", ".join("?" for _ in names)
        cur = self._conn.execute(
            f'INSERT INTO "{table.name}" ({_quoted(names)}) VALUES ({marks})',
            [_to_db(getattr(obj, name)) for name in names],
        )
        if not table.text_key and not obj.id:
            obj.id = cur.lastrowid

    def _upsert(self, obj: Any, update: Sequence[str]) -> None:
        table = _TABLES[type(obj)]
        self._fill_defaults(obj)
        names = self._columns(obj)
        marks = ", ".join("?" for _ in names)
        sets = ", ".join(f'"{name}" = excluded."{name}"' for name in update)
        self._conn.execute(
            f'INSERT INTO "{table.name}" ({_quoted(names)}) VALUES ({marks}) '
            f"ON CONFLICT ({_quoted(table.unique)}) DO UPDATE SET {sets}",
            [_to_db(getattr(obj, name)) for name in names],
        )
        where = " AND ".join(f'"{name}" = ?' for name in table.unique)
        row = self._conn.execute(
            f'SELECT id FROM "{table.name}" WHERE {where}',
            [_to_db(getattr(obj, name)) for name in table.unique],
        ).fetchone()
        obj.id = row["id"]

    def _update_omit_zero(self, obj: Any) -> None:
        table = _TABLES[type(obj)]
        changes = {
            f.name: getattr(obj, f.name)
            for f in fields(obj)
            if f.name != "id" and getattr(obj, f.name) != _zero(f)
        }
        if not changes:
            return
        sets = ", ".join(f'"{name}" = ?' for name in changes)
        self._conn.execute(
            f'UPDATE "{table.name}" SET {sets} WHERE id = ?',
            [_to_db(value) for value in changes.values()] + [obj.id],
        )

    # ----------------------------------------------------------- transactions

    def begin_tx(self) -> "Store":
        """Start a transaction and return a store bound to it."""
        self._conn.execute("BEGIN IMMEDIATE")
        return Store(self._conn, in_tx=True)

    def rollback(self) -> None:
        """Discard the transaction's changes."""
        if not self._in_tx:
            raise NotInTransactionError("Store not tx type")
        self._conn.execute("ROLLBACK")
        self._in_tx = False

    def commit_tx(self) -> None:
        """Make the transaction's changes permanent."""
        if not self._in_tx:
            raise NotInTransactionError("Store not tx type")
        self._conn.execute("COMMIT")
        self._in_tx = False

    def close(self) -> None:
        """Close the underlying connection."""
        self._conn.close()

    # ---------------------------------------------------------------- product

    def add_product(self, product: Product) -> None:
        self._insert(product)

    def get_product_by_id(self, product_id: str) -> Product:
        return self._first(Product, "id = ?", [product_id])

    def get_products(self) -> list[Product]:
        return self._select(Product)

    def get_products_by_ids(self, ids: Sequence[str]) -> list[Product]:
        return self._select_in(Product, ids)

    # ------------------------------------------------------------------- tick

    def get_last_tick_by_product_id(self, product_id: str, granularity: int) -> Tick:
        return self._first(
            Tick, "product_id = ? AND granularity = ?", [product_id, granularity], '"time" DESC'
        )

    def add_ticks(self, ticks: Sequence[Tick]) -> None:
        """Insert ticks; an existing tick for the same period keeps its open price."""
        for tick in ticks:
            now = _now()
            tick.created_at = now
            tick.updated_at = now
            self._upsert(tick, ("updated_at", "close", "low", "high", "volume", "log_offset"))

    def get_ticks_by_product_id(self, product_id: str, granularity: int, limit: int) -> list[Tick]:
        return self._select(
            Tick, "product_id = ? AND granularity = ?", [product_id, granularity], '"time" DESC', limit
        )

    # ------------------------------------------------------------------ order

    def add_order(self, order: Order) -> None:
        self._insert(order)

    def add_order_on_conflict_tx_hash(self, order: Order) -> None:
        """Insert an order; if its transaction hash exists, refresh updated_at and nonce."""
        if order.created_tx_hash:
            row = self._conn.execute(
                "SELECT id, public_id FROM orders WHERE created_tx_hash = ?",
                [order.created_tx_hash],
            ).fetchone()
            if row is not None:
                self._conn.execute(
                    "UPDATE orders SET updated_at = ?, nonce = ? WHERE id = ?",
                    [_to_db(order.updated_at), order.nonce, row["id"]],
                )
                order.id = row["id"]
                order.public_id = uuid.UUID(row["public_id"])
                return
        self._insert(order)

    def update_order(self, order: Order) -> None:
        """Write the order's non-zero fields and stamp updated_at."""
        order.updated_at = _now()
        self._update_omit_zero(order)

    def update_order_fee_by_id(self, order_id: int, fee: Decimal) -> None:
        """Add fee to the order's accumulated fill fees."""
        row = self._conn.execute("SELECT fill_fees FROM orders WHERE id = ?", [order_id]).fetchone()
        if row is None:
            return
        total = _from_db(row["fill_fees"], Decimal) + Decimal(fee)
        self._conn.execute(
            "UPDATE orders SET fill_fees = ? WHERE id = ?", [format_decimal(total), order_id]
        )

    def update_order_status(
        self, order_id: int, old_status: OrderStatus, new_status: OrderStatus
    ) -> Order:
        """Move an order from old_status to new_status and return the updated row."""
        cur = self._conn.execute(
            "UPDATE orders SET status = ? WHERE id = ? AND status = ?",
            [_enum_value(new_status), order_id, _enum_value(old_status)],
        )
        if cur.rowcount == 0:
            raise NotFoundError(f"no order {order_id} with status {_enum_value(old_status)}")
        return self.get_order_by_id(order_id)

    def get_order_by_id(self, order_id: int) -> Order:
        return self._first(Order, "id = ?", [order_id])

    def get_order_by_id_for_update(self, order_id: int) -> Order:
        return self._first(Order, "id = ?", [order_id])

    def get_orders_by_user_id(
        self,
        user_id: int,
        statuses: Sequence[OrderStatus | str],
        side: Side | str | None,
        product_id: str | None,
        after_id: int,
        limit: int,
    ) -> list[Order]:
        """List a user's orders, newest first, narrowed by the given filters."""
        clauses = ["user_id = ?"]
        params: list[Any] = [user_id]
        if statuses:
            clauses.append(f"status IN ({', '.join('?' for _ in statuses)})")
            params.extend(_enum_value(status) for status in statuses)
        if product_id is not None:
            clauses.append("product_id = ?")
            params.append(product_id)
        if side is not None:
            clauses.append("side = ?")
            params.append(_enum_value(side))
        if after_id > 0:
            clauses.append("id < ?")
            params.append(after_id)
        return self._select(Order, " AND ".join(clauses), params, "id DESC", limit)

    def get_orders_by_ids(self, order_ids: Sequence[int]) -> list[Order]:
        return self._select_in(Order, order_ids)

    def update_order_fees(self, orders: Sequence[Order]) -> None:
        """Write fill_fees and updated_at of each order."""
        for order in orders:
            order.updated_at = _now()
        self._conn.executemany(
            "UPDATE orders SET fill_fees = ?, updated_at = ? WHERE id = ?",
            [(_to_db(o.fill_fees), _to_db(o.updated_at), o.id) for o in orders],
        )

    # ------------------------------------------------------------------ trade

    def get_last_trade_by_product_id(self, product_id: str) -> Trade:
        return self._first(Trade, "product_id = ?", [product_id], "id DESC")

    def add_trades(self, trades: Sequence[Trade]) -> None:
        for trade in trades:
            now = _now()
            trade.created_at = now
            trade.updated_at = now
            self._insert(trade)

    def get_trades_by_product_id(self, product_id: str, limit: int) -> list[Trade]:
        return self._select(Trade, "product_id = ?", [product_id], "id DESC", limit)

    def get_trade_by_id(self, trade_id: int) -> Trade:
        return self._first(Trade, "id = ?", [trade_id])

    def get_trade_by_id_for_update(self, trade_id: int) -> Trade:
        return self._first(Trade, "id = ?", [trade_id])

    # ------------------------------------------------------------- settlement

    def add_settlements(self, settlements: Sequence[Settlement]) -> None:
        for settlement in settlements:
            now = _now()
            settlement.created_at = now
            settlement.updated_at = now
            self._insert(settlement)

    def add_settlement(self, settlement: Settlement) -> None:
        settlement.created_at = _now()
        settlement.updated_at = _now()
        self._insert(settlement)

    def get_unsettled_settlements(self, count: int) -> list[Settlement]:
        """Return every unsettled settlement, oldest first; count is not applied."""
        return self._select(Settlement, "settled = ?", [0], "id ASC")

    def update_settlement(self, settlement: Settlement) -> None:
        self._update_omit_zero(settlement)

    # ------------------------------------------------------------------- fill

    def get_last_fill_by_product_id(self, product_id: str) -> Fill:
        return self._first(Fill, "product_id = ?", [product_id], "id DESC")

    def add_fills(self, fills: Sequence[Fill]) -> None:
        for fill in fills:
            now = _now()
            fill.created_at = now
            fill.updated_at = now
            self._insert(fill)

    def get_unsettled_fills(self, count: int) -> list[Fill]:
        """Return every unsettled fill, oldest first; count is not applied."""
        return self._select(Fill, "settled = ?", [0], "id ASC")

    def get_unsettled_fills_by_order_id(self, order_id: int) -> list[Fill]:
        return self._select(Fill, "settled = ? AND order_id = ?", [0, order_id], "id ASC")

    def update_fill(self, fill: Fill) -> None:
        self._update_omit_zero(fill)

    def get_filled_by_user_id(self, user_id: int, limit: int) -> list[Fill]:
        return self._select(
            Fill,
            "user_id = ? AND done_reason = ?",
            [user_id, DoneReason.FILLED.value],
            "id DESC",
            limit,
        )

    # ------------------------------------------------------------------- user

    def add_user(self, user: User) -> None:
        user.created_at = _now()
        user.updated_at = _now()
        self._insert(user)

    def get_user_by_id(self, user_id: int) -> User:
        return self._first(User, "id = ?", [user_id])

    def get_user_by_public_id(self, public_id: uuid.UUID) -> User:
        return self._first(User, "public_id = ?", [str(public_id)])

    def get_user_by_address(self, address: str) -> User:
        return self._first(User, "address = ?", [address])

    def get_users_by_ids(self, user_ids: Sequence[int]) -> list[User]:
        return self._select_in(User, user_ids)

    # ---------------------------------------------------------- worker config

    def add_worker_config(self, config: WorkerConfig) -> None:
        self._insert(config)

    def update_worker_config(self, config: WorkerConfig) -> None:
        self._update_omit_zero(config)

    def get_worker_config(self) -> WorkerConfig:
        return self._first(WorkerConfig)

    # ----------------------------------------------------------- user segment

    _SEGMENT_UPDATE = ("updated_at", "volume", "type", "log_offset")

    def get_last_user_segment_by_user_id_for_update(self, user_id: int) -> UserSegment:
        return self._first(UserSegment, "user_id = ?", [user_id], '"time" DESC')

    def get_last_user_segment(self) -> UserSegment:
        return self._first(UserSegment, order_by='"time" DESC')

    def get_user_segment_by_user_id_and_time(self, user_id: int, time: int) -> UserSegment:
        return self._first(UserSegment, 'user_id = ? AND "time" = ?', [user_id, time])

    def add_user_segments(self, segments: Sequence[UserSegment]) -> None:
        for segment in segments:
            now = _now()
            segment.created_at = now
            segment.updated_at = now
            self._upsert(segment, self._SEGMENT_UPDATE)

    def add_user_segment(self, segment: UserSegment) -> UserSegment:
        now = _now()
        segment.created_at = now
        segment.updated_at = now
        self._upsert(segment, self._SEGMENT_UPDATE)
        return segment