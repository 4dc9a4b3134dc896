import pytest

from stockledger.errors import (
    InsufficientStockError,
    InvalidAmountError,
    InvalidTransferError,
    TransferFailedError,
)
from stockledger.extensions import db
from stockledger.models import Sku, StockTransaction, Transfer
from stockledger.services import stock_service, transfer_batch_service

ACTOR_ID = 1


@pytest.fixture
def sku_s2(db_session):
    sku = Sku(sku="S2", name="T-Shirt Blue L")
    db_session.add(sku)
    db_session.commit()
    return sku


def test_batch_defaults_to_pending_and_order_notes(stocked):
    sku_id, a, b = stocked
    transfers = transfer_batch_service.create_transfer_batch(
        [
            {"from_store_id": a, "to_store_id": b, "sku_id": sku_id, "quantity": 3},
            {"from_store_id": a, "to_store_id": b, "sku_id": sku_id, "quantity": 2, "notes": "Rush"},
        ],
        actor_id=ACTOR_ID,
        order_id=42,
    )

    assert [t.status for t in transfers] == ["pending", "pending"]
    assert [t.notes for t in transfers] == ["Order #42 stock reallocation", "Rush"]
    assert {t.order_id for t in transfers} == {42}
    assert stock_service.get_quantity(sku_id, a) == 10


def test_batch_executes_completed_items(stocked, sku_s2):
    sku_id, a, b = stocked
    stock_service.add_stock(sku_s2.id, b, 5, actor_id=ACTOR_ID)

    transfers = transfer_batch_service.create_transfer_batch(
        [
            {"from_store_id": a, "to_store_id": b, "sku_id": sku_id, "quantity": 4, "status": "completed"},
            {"from_store_id": b, "to_store_id": a, "sku_id": sku_s2.id, "quantity": 5, "status": "completed"},
        ],
        actor_id=ACTOR_ID,
    )

    assert [t.status for t in transfers] == ["completed", "completed"]
    assert stock_service.get_quantity(sku_id, a) == 6
    assert stock_service.get_quantity(sku_id, b) == 4
    assert stock_service.get_quantity(sku_s2.id, b) == 0
    assert stock_service.get_quantity(sku_s2.id, a) == 5
    assert db.session.query(StockTransaction).filter(StockTransaction.transfer_id.isnot(None)).count() == 4


def test_batch_aborts_when_combined_demand_exceeds_source(stocked):
    sku_id, a, b = stocked
    before = db.session.query(StockTransaction).count()

    with pytest.raises(InsufficientStockError) as excinfo:
        transfer_batch_service.create_transfer_batch(
            [
                {"from_store_id": a, "to_store_id": b, "sku_id": sku_id, "quantity": 6, "status": "completed"},
                {"from_store_id": a, "to_store_id": b, "sku_id": sku_id, "quantity": 6},
            ],
            actor_id=ACTOR_ID,
        )

    assert "S1" in str(excinfo.value)
    assert excinfo.value.requested == 6
    assert excinfo.value.available == 4
    assert db.session.query(Transfer).count() == 0
    assert db.session.query(StockTransaction).count() == before
    assert stock_service.get_quantity(sku_id, a) == 10


def test_batch_with_one_bad_item_creates_nothing(stocked):
    sku_id, a, b = stocked
    with pytest.raises(InvalidTransferError):
        transfer_batch_service.create_transfer_batch(
            [
                {"from_store_id": a, "to_store_id": b, "sku_id": sku_id, "quantity": 1},
                {"from_store_id": b, "to_store_id": b, "sku_id": sku_id, "quantity": 1},
            ],
            actor_id=ACTOR_ID,
        )
    assert db.session.query(Transfer).count() == 0


def test_batch_rejects_bad_input(stocked):
    sku_id, a, b = stocked
    with pytest.raises(InvalidTransferError):
        transfer_batch_service.create_transfer_batch([], actor_id=ACTOR_ID)
    with pytest.raises(InvalidTransferError):
        transfer_batch_service.create_transfer_batch(
            [{"from_store_id": a, "to_store_id": b, "sku_id": sku_id, "quantity": 1, "status": "in_transit"}],
            actor_id=ACTOR_ID,
        )
    with pytest.raises(InvalidTransferError):
        transfer_batch_service.create_transfer_batch(
            [{"from_store_id": a, "to_store_id": b, "quantity": 1}],
            actor_id=ACTOR_ID,
        )
    with pytest.raises(InvalidAmountError):
        transfer_batch_service.create_transfer_batch(
            [{"from_store_id": a, "to_store_id": b, "sku_id": sku_id, "quantity": 0}],
            actor_id=ACTOR_ID,
        )
    assert db.session.query(Transfer).count() == 0


def test_batch_pending_items_cannot_jointly_overdraw(stocked):
    sku_id, a, b = stocked
    with pytest.raises(InsufficientStockError) as excinfo:
        transfer_batch_service.create_transfer_batch(
            [
                {"from_store_id": a, "to_store_id": b, "sku_id": sku_id, "quantity": 6},
                {"from_store_id": a, "to_store_id": b, "sku_id": sku_id, "quantity": 6},
            ],
            actor_id=ACTOR_ID,
        )
    assert excinfo.value.available == 4
    assert db.session.query(Transfer).count() == 0


def test_batch_later_item_draws_on_earlier_completed_item(stocked):
    sku_id, a, b = stocked
    transfers = transfer_batch_service.create_transfer_batch(
        [
            {"from_store_id": a, "to_store_id": b, "sku_id": sku_id, "quantity": 4, "status": "completed"},
            {"from_store_id": b, "to_store_id": a, "sku_id": sku_id, "quantity": 3},
        ],
        actor_id=ACTOR_ID,
    )

    assert [t.status for t in transfers] == ["completed", "pending"]
    assert stock_service.get_quantity(sku_id, a) == 6
    assert stock_service.get_quantity(sku_id, b) == 4


def test_batch_rolls_back_earlier_items_when_a_later_credit_fails(stocked, monkeypatch):
    sku_id, a, b = stocked
    before = db.session.query(StockTransaction).count()

    real_add = stock_service.add_to_record
    credits = []

    def add_failing_second_credit(stock_record, amount, **kwargs):
        if kwargs.get("txn_type") == "transfer_in":
            credits.append(amount)
            if len(credits) == 2:
                raise RuntimeError("destination write failed")
        return real_add(stock_record, amount, **kwargs)

    monkeypatch.setattr(stock_service, "add_to_record", add_failing_second_credit)

    with pytest.raises(TransferFailedError):
        transfer_batch_service.create_transfer_batch(
            [
                {"from_store_id": a, "to_store_id": b, "sku_id": sku_id, "quantity": 2, "status": "completed"},
                {"from_store_id": a, "to_store_id": b, "sku_id": sku_id, "quantity": 3, "status": "completed"},
            ],
            actor_id=ACTOR_ID,
        )

    assert stock_service.get_quantity(sku_id, a) == 10
    assert stock_service.get_quantity(sku_id, b) == 0
    assert db.session.query(Transfer).count() == 0
    assert db.session.query(StockTransaction).count() == before


@pytest.mark.parametrize("items", [[1, 2], ["A->B"], [None]])
def test_batch_rejects_non_object_items(stocked, items):
    with pytest.raises(InvalidTransferError, match="must be an object"):
        transfer_batch_service.create_transfer_batch(items, actor_id=ACTOR_ID)


def test_batch_locks_every_record_once_in_store_order(stocked, sku_s2, monkeypatch):
    sku_id, a, b = stocked
    stock_service.add_stock(sku_s2.id, b, 5, actor_id=ACTOR_ID)

    real_resolve = stock_service.resolve_stock_record
    locked = []

    def recording_resolve(sku, store, **kwargs):
        if kwargs.get("lock"):
            locked.append((store, sku))
        return real_resolve(sku, store, **kwargs)

    monkeypatch.setattr(stock_service, "resolve_stock_record", recording_resolve)

    transfer_batch_service.create_transfer_batch(
        [
            {"from_store_id": b, "to_store_id": a, "sku_id": sku_s2.id, "quantity": 2, "status": "completed"},
            {"from_store_id": a, "to_store_id": b, "sku_id": sku_id, "quantity": 1, "status": "completed"},
        ],
        actor_id=ACTOR_ID,
    )

    touched = sorted({(a, sku_id), (b, sku_id), (a, sku_s2.id), (b, sku_s2.id)})
    assert locked[:len(touched)] == touched
    # per-item locks only revisit rows the batch already holds
    assert set(locked[len(touched):]) <= set(touched)
