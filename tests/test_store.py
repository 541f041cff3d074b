import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from vdex.models import (
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
)
from vdex.store import NotFoundError, NotInTransactionError, connect


@pytest.fixture
def store():
    s = connect(":memory:")
    yield s
    s.close()


def _order(**kwargs):
    base = dict(
        product_id="BNB-VIC",
        user_id=2,
        side=Side.SELL,
        price=Decimal("1000"),
        size=Decimal("0.5"),
        funds=Decimal("500"),
        status=OrderStatus.NEW,
        type=OrderType.LIMIT,
        created_at=datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc),
    )
    base.update(kwargs)
    return Order(**base)


def test_product_round_trip(store):
    product = Product(id="BNB-VIC", base_currency="BNB", quote_currency="VIC",
                      base_min_size=Decimal("0.01"), base_scale=4, quote_increment=0.5)
    store.add_product(product)
    assert store.get_product_by_id("BNB-VIC") == product
    assert [p.id for p in store.get_products()] == ["BNB-VIC"]
    assert store.get_products_by_ids([]) == []
    assert [p.id for p in store.get_products_by_ids(["BNB-VIC", "X-Y"])] == ["BNB-VIC"]


def test_missing_product_raises(store):
    with pytest.raises(NotFoundError):
        store.get_product_by_id("nope")


def test_add_order_assigns_id_and_public_id(store):
    order = _order(created_tx_hash="tx-1")
    store.add_order(order)
    assert order.id > 0
    assert order.public_id != ZERO_UUID
    assert store.get_order_by_id(order.id) == order
    assert store.get_order_by_id_for_update(order.id) == order


def test_add_order_on_conflict_updates_nonce_only(store):
    first = _order(created_tx_hash="tx-dup", nonce=1)
    store.add_order_on_conflict_tx_hash(first)
    second = _order(created_tx_hash="tx-dup", nonce=7, price=Decimal("5"))
    store.add_order_on_conflict_tx_hash(second)
    assert second.id == first.id
    assert second.public_id == first.public_id
    saved = store.get_order_by_id(first.id)
    assert saved.nonce == 7
    assert saved.price == Decimal("1000")
    assert len(store.get_orders_by_user_id(2, [], None, None, 0, 0)) == 1


def test_empty_tx_hash_orders_do_not_conflict(store):
    store.add_order_on_conflict_tx_hash(_order())
    store.add_order_on_conflict_tx_hash(_order())
    assert len(store.get_orders_by_user_id(2, [], None, None, 0, 0)) == 2


def test_update_order_omits_zero_fields(store):
    order = _order(created_tx_hash="tx-2")
    store.add_order(order)
    store.update_order(Order(id=order.id, status=OrderStatus.OPEN))
    saved = store.get_order_by_id(order.id)
    assert saved.status is OrderStatus.OPEN
    assert saved.size == order.size
    assert saved.side is Side.SELL
    assert saved.updated_at > order.updated_at


def test_update_order_fee_by_id_accumulates(store):
    order = _order(created_tx_hash="tx-3")
    store.add_order(order)
    store.update_order_fee_by_id(order.id, Decimal("0.1"))
    store.update_order_fee_by_id(order.id, Decimal("0.2"))
    assert store.get_order_by_id(order.id).fill_fees == Decimal("0.1") + Decimal("0.2")


def test_update_order_status(store):
    order = _order(created_tx_hash="tx-4")
    store.add_order(order)
    updated = store.update_order_status(order.id, OrderStatus.NEW, OrderStatus.OPEN)
    assert updated.status is OrderStatus.OPEN
    assert updated.id == order.id
    with pytest.raises(NotFoundError):
        store.update_order_status(order.id, OrderStatus.NEW, OrderStatus.CANCELLED)


def test_get_orders_by_user_id_filters(store):
    orders = [
        _order(created_tx_hash="a", side=Side.BUY, status=OrderStatus.OPEN),
        _order(created_tx_hash="b", side=Side.SELL, status=OrderStatus.OPEN),
        _order(created_tx_hash="c", side=Side.SELL, status=OrderStatus.FILLED),
        _order(created_tx_hash="d", product_id="ETH-VIC", status=OrderStatus.OPEN),
        _order(created_tx_hash="e", user_id=9),
    ]
    for order in orders:
        store.add_order(order)
    ids = [o.id for o in orders]
    everything = store.get_orders_by_user_id(2, [], None, None, 0, 0)
    assert [o.id for o in everything] == sorted(ids[:4], reverse=True)
    open_sell = store.get_orders_by_user_id(2, [OrderStatus.OPEN], Side.SELL, "BNB-VIC", 0, 0)
    assert [o.id for o in open_sell] == [ids[1]]
    as_strings = store.get_orders_by_user_id(2, ["open", "filled"], None, "BNB-VIC", 0, 0)
    assert [o.id for o in as_strings] == [ids[2], ids[1], ids[0]]
    after = store.get_orders_by_user_id(2, [], None, None, ids[2], 1)
    assert [o.id for o in after] == [ids[1]]
    assert [o.id for o in store.get_orders_by_ids([ids[0], ids[4]])] == [ids[0], ids[4]]


def test_update_order_fees(store):
    order = _order(created_tx_hash="tx-5")
    store.add_order(order)
    order.fill_fees = Decimal("1.25")
    order.price = Decimal("1")
    store.update_order_fees([order])
    saved = store.get_order_by_id(order.id)
    assert saved.fill_fees == Decimal("1.25")
    assert saved.price == Decimal("1000")


def test_trades(store):
    with pytest.raises(NotFoundError):
        store.get_last_trade_by_product_id("BNB-VIC")
    when = datetime(2024, 5, 1, tzinfo=timezone.utc)
    trades = [Trade(product_id="BNB-VIC", taker_order_id=i, price=Decimal("930"),
                    size=Decimal("0.3"), side=Side.BUY, time=when) for i in range(3)]
    store.add_trades(trades)
    assert all(t.id > 0 for t in trades)
    assert store.get_last_trade_by_product_id("BNB-VIC") == trades[-1]
    assert [t.id for t in store.get_trades_by_product_id("BNB-VIC", 2)] == [trades[2].id, trades[1].id]
    assert store.get_trade_by_id(trades[0].id) == trades[0]
    assert store.get_trade_by_id_for_update(trades[1].id).time == when


def test_ticks_upsert_keeps_open(store):
    tick = Tick(product_id="BNB-VIC", granularity=60, time=120, open=Decimal("1"),
                high=Decimal("2"), low=Decimal("1"), close=Decimal("2"), volume=Decimal("3"))
    store.add_ticks([tick])
    again = Tick(product_id="BNB-VIC", granularity=60, time=120, open=Decimal("9"),
                 high=Decimal("4"), low=Decimal("1"), close=Decimal("4"), volume=Decimal("5"))
    store.add_ticks([again])
    assert again.id == tick.id
    last = store.get_last_tick_by_product_id("BNB-VIC", 60)
    assert last.open == Decimal("1")
    assert last.close == Decimal("4")
    assert last.volume == Decimal("5")
    store.add_ticks([Tick(product_id="BNB-VIC", granularity=60, time=180)])
    assert [t.time for t in store.get_ticks_by_product_id("BNB-VIC", 60, 10)] == [180, 120]
    with pytest.raises(NotFoundError):
        store.get_last_tick_by_product_id("BNB-VIC", 300)


def test_fills(store):
    fills = [
        Fill(user_id=3, order_id=10, product_id="BNB-VIC", size=Decimal("0.5"),
             done_reason=DoneReason.FILLED, side=Side.BUY),
        Fill(user_id=3, order_id=11, product_id="BNB-VIC", done_reason=DoneReason.CANCELLED),
        Fill(user_id=3, order_id=10, product_id="BNB-VIC", done_reason=DoneReason.FILLED),
    ]
    store.add_fills(fills)
    assert [f.id for f in store.get_unsettled_fills(1)] == [f.id for f in fills]
    assert [f.id for f in store.get_unsettled_fills_by_order_id(10)] == [fills[0].id, fills[2].id]
    store.update_fill(Fill(id=fills[0].id, settled=True))
    assert [f.id for f in store.get_unsettled_fills_by_order_id(10)] == [fills[2].id]
    assert store.get_last_fill_by_product_id("BNB-VIC").id == fills[2].id
    assert [f.id for f in store.get_filled_by_user_id(3, 1)] == [fills[2].id]
    kept = store.get_filled_by_user_id(3, 0)[-1]
    assert kept.settled is True
    assert kept.size == Decimal("0.5")


def test_settlements(store):
    store.add_settlements([])
    one = Settlement(ref_id=1, type=SettlementType.TRADE)
    two = Settlement(ref_id=2, type=SettlementType.ORDER)
    store.add_settlements([one])
    store.add_settlement(two)
    assert [s.ref_id for s in store.get_unsettled_settlements(10)] == [1, 2]
    store.update_settlement(Settlement(id=one.id, settled=True, tx_hash="0xabc"))
    remaining = store.get_unsettled_settlements(10)
    assert [s.id for s in remaining] == [two.id]
    assert remaining[0].type is SettlementType.ORDER


def test_users(store):
    user = User(address="0xabc")
    store.add_user(user)
    other = User(address="0xdef")
    store.add_user(other)
    assert store.get_user_by_address("0xabc") == user
    assert store.get_user_by_id(other.id) == other
    assert store.get_user_by_public_id(user.public_id) == user
    assert [u.id for u in store.get_users_by_ids([user.id, other.id])] == [user.id, other.id]
    assert store.get_users_by_ids([]) == []
    with pytest.raises(NotFoundError):
        store.get_user_by_public_id(uuid.uuid4())


def test_worker_config(store):
    with pytest.raises(NotFoundError):
        store.get_worker_config()
    config = WorkerConfig(block_number=100)
    store.add_worker_config(config)
    store.update_worker_config(WorkerConfig(id=config.id, block_number=250))
    assert store.get_worker_config() == WorkerConfig(id=config.id, block_number=250)


def test_user_segments(store):
    with pytest.raises(NotFoundError):
        store.get_last_user_segment()
    store.add_user_segments([UserSegment(user_id=1, time=10, volume=Decimal("5"))])
    seg = store.add_user_segment(UserSegment(user_id=1, time=10, volume=Decimal("7"), type=2))
    assert store.get_user_segment_by_user_id_and_time(1, 10).volume == Decimal("7")
    assert store.get_user_segment_by_user_id_and_time(1, 10).id == seg.id
    store.add_user_segment(UserSegment(user_id=1, time=20))
    assert store.get_last_user_segment_by_user_id_for_update(1).time == 20
    assert store.get_last_user_segment().time == 20


def test_transaction_commit_and_rollback(store):
    tx = store.begin_tx()
    tx.add_product(Product(id="A-B"))
    tx.rollback()
    with pytest.raises(NotFoundError):
        store.get_product_by_id("A-B")
    tx = store.begin_tx()
    tx.add_product(Product(id="C-D"))
    tx.commit_tx()
    assert store.get_product_by_id("C-D").id == "C-D"


def test_transaction_methods_need_transaction(store):
    with pytest.raises(NotInTransactionError):
        store.rollback()
    with pytest.raises(NotInTransactionError):
        store.commit_tx()


def test_file_store_persists(tmp_path):
    path = tmp_path / "vdex.db"
    first = connect(path)
    first.add_product(Product(id="BNB-VIC", quote_min_size=Decimal("1.5")))
    first.close()
    second = connect(path)
    try:
        assert second.get_product_by_id("BNB-VIC").quote_min_size == Decimal("1.5")
    finally:
        second.close()