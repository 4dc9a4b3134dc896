# Overview: Stock ledger; atomic add/reduce/set on per-(SKU, store) quantities with one audit entry each.

"""
Stock ledger.

INVARIANTS:
- quantity >= 0 after every operation. The check runs against a row locked
  with lock_for_update (version_id protects SQLite, which ignores FOR UPDATE).
- Every quantity change writes exactly one StockTransaction in the same DB
  transaction. set_stock to the current quantity writes nothing.
- Stock records are resolved explicitly: resolve_stock_record() creates a
  missing (SKU, store) row with quantity 0 and the default threshold.

The *_record helpers (add_to_record / reduce_from_record) take an already
locked StockRecord and never commit; the transfer services use them to write
transfer_out / transfer_in / transfer_cancel entries inside their own unit.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import InsufficientStockError, InvalidAmountError, NotFoundError
from ..extensions import db
from ..models import Sku, StockRecord, StockTransaction, Store
from ..models.inventory import (
    TXN_ADDITION,
    TXN_ADJUSTMENT,
    TXN_REDUCTION,
    TXN_TRANSFER_CANCEL,
    TXN_TRANSFER_IN,
    TXN_TRANSFER_OUT,
)
from . import transaction_log
from .concurrency import ConcurrentInsertError, lock_for_update, run_in_transaction


CREDIT_TYPES = (TXN_ADDITION, TXN_TRANSFER_IN, TXN_TRANSFER_CANCEL)
DEBIT_TYPES = (TXN_REDUCTION, TXN_TRANSFER_OUT)

SEVERITY_CRITICAL = "critical"
SEVERITY_LOW = "low"


def _require_int(value, *, label: str = "amount") -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmountError(f"{label} must be an integer")
    return value


def _require_positive(amount) -> int:
    amount = _require_int(amount)
    if amount <= 0:
        raise InvalidAmountError("amount must be positive")
    return amount


def _ensure_catalog(sku_id: int, store_id: int) -> None:
    if db.session.get(Sku, sku_id) is None:
        raise NotFoundError(f"SKU {sku_id} not found")
    if db.session.get(Store, store_id) is None:
        raise NotFoundError(f"Store {store_id} not found")


def resolve_stock_record(
    sku_id: int,
    store_id: int,
    *,
    lock: bool = False,
    create: bool = True,
) -> StockRecord:
    """
    Return the stock record for (sku_id, store_id), creating it if missing.

    New records start at quantity 0 with DEFAULT_LOW_STOCK_THRESHOLD.
    A concurrent creation of the same pair surfaces as ConcurrentInsertError,
    which run_with_retry retries so the winner's row is picked up.
    """
    query = db.session.query(StockRecord).filter_by(sku_id=sku_id, store_id=store_id)
    if lock:
        query = lock_for_update(query)
    stock_record = query.first()
    if stock_record is not None:
        return stock_record

    if not create:
        raise NotFoundError(f"No stock record for SKU {sku_id} at store {store_id}")

    _ensure_catalog(sku_id, store_id)
    stock_record = StockRecord(
        sku_id=sku_id,
        store_id=store_id,
        quantity=0,
        low_stock_threshold=current_app.config.get("DEFAULT_LOW_STOCK_THRESHOLD", 5),
    )
    db.session.add(stock_record)
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise ConcurrentInsertError(
            f"Stock record for SKU {sku_id} at store {store_id} created concurrently"
        ) from exc
    return stock_record


def get_stock(sku_id: int, store_id: int) -> StockRecord:
    """Existing stock record for the pair; NotFoundError if it was never referenced."""
    return resolve_stock_record(sku_id, store_id, create=False)


def get_quantity(sku_id: int, store_id: int) -> int:
    stock_record = (
        db.session.query(StockRecord).filter_by(sku_id=sku_id, store_id=store_id).first()
    )
    return stock_record.quantity if stock_record else 0


def add_to_record(
    stock_record: StockRecord,
    amount: int,
    *,
    actor_id: int,
    txn_type: str = TXN_ADDITION,
    notes: str | None = None,
    metadata: dict | None = None,
    transfer_id: int | None = None,
) -> StockTransaction:
    """Credit a locked record and log it (no commit)."""
    amount = _require_positive(amount)
    if txn_type not in CREDIT_TYPES:
        raise ValueError(f"{txn_type} is not a credit transaction type")

    before = stock_record.quantity
    stock_record.quantity = before + amount
    return transaction_log.record(
        stock_record,
        txn_type=txn_type,
        delta=amount,
        quantity_before=before,
        actor_id=actor_id,
        notes=notes,
        metadata=metadata,
        transfer_id=transfer_id,
    )


def reduce_from_record(
    stock_record: StockRecord,
    amount: int,
    *,
    actor_id: int,
    txn_type: str = TXN_REDUCTION,
    notes: str | None = None,
    metadata: dict | None = None,
    transfer_id: int | None = None,
) -> StockTransaction:
    """Debit a locked record and log it (no commit). Never applies a partial reduction."""
    amount = _require_positive(amount)
    if txn_type not in DEBIT_TYPES:
        raise ValueError(f"{txn_type} is not a debit transaction type")

    before = stock_record.quantity
    if before < amount:
        raise InsufficientStockError(
            sku_id=stock_record.sku_id,
            store_id=stock_record.store_id,
            available=before,
            requested=amount,
        )

    stock_record.quantity = before - amount
    return transaction_log.record(
        stock_record,
        txn_type=txn_type,
        delta=-amount,
        quantity_before=before,
        actor_id=actor_id,
        notes=notes,
        metadata=metadata,
        transfer_id=transfer_id,
    )


def add_stock(
    sku_id: int,
    store_id: int,
    amount: int,
    *,
    actor_id: int,
    notes: str | None = None,
    metadata: dict | None = None,
    commit: bool = True,
) -> StockRecord:
    """Increase on-hand quantity and write an addition entry."""
    _require_positive(amount)

    def _op():
        stock_record = resolve_stock_record(sku_id, store_id, lock=True)
        add_to_record(stock_record, amount, actor_id=actor_id, notes=notes, metadata=metadata)
        return stock_record

    return run_in_transaction(_op, commit=commit)


def reduce_stock(
    sku_id: int,
    store_id: int,
    amount: int,
    *,
    actor_id: int,
    notes: str | None = None,
    metadata: dict | None = None,
    commit: bool = True,
) -> StockRecord:
    """Decrease on-hand quantity; InsufficientStockError leaves quantity and log untouched."""
    _require_positive(amount)

    def _op():
        stock_record = resolve_stock_record(sku_id, store_id, lock=True)
        reduce_from_record(stock_record, amount, actor_id=actor_id, notes=notes, metadata=metadata)
        return stock_record

    return run_in_transaction(_op, commit=commit)


def set_stock(
    sku_id: int,
    store_id: int,
    amount: int,
    *,
    actor_id: int,
    notes: str | None = None,
    metadata: dict | None = None,
    commit: bool = True,
) -> StockRecord:
    """
    Set on-hand quantity to an absolute value (stock count / correction).

    Setting the current quantity is a no-op: no adjustment entry is written.
    """
    amount = _require_int(amount)
    if amount < 0:
        raise InvalidAmountError("quantity cannot be negative")

    def _op():
        stock_record = resolve_stock_record(sku_id, store_id, lock=True)
        before = stock_record.quantity
        if amount == before:
            return stock_record

        stock_record.quantity = amount
        transaction_log.record(
            stock_record,
            txn_type=TXN_ADJUSTMENT,
            delta=amount - before,
            quantity_before=before,
            actor_id=actor_id,
            notes=notes,
            metadata=metadata,
        )
        return stock_record

    return run_in_transaction(_op, commit=commit)


def update_low_stock_threshold(
    sku_id: int,
    store_id: int,
    threshold: int,
    *,
    commit: bool = True,
) -> StockRecord:
    """Change the alert threshold; not a stock movement, so nothing is logged."""
    threshold = _require_int(threshold, label="threshold")
    if threshold < 0:
        raise InvalidAmountError("threshold cannot be negative")

    def _op():
        stock_record = resolve_stock_record(sku_id, store_id, lock=True)
        stock_record.low_stock_threshold = threshold
        db.session.flush()
        return stock_record

    return run_in_transaction(_op, commit=commit)


def batch_check(sku_ids: list[int], store_id: int | None = None) -> list[StockRecord]:
    """Existing stock records for many SKUs, optionally limited to one store."""
    if not sku_ids:
        return []
    query = db.session.query(StockRecord).filter(StockRecord.sku_id.in_(list(sku_ids)))
    if store_id is not None:
        query = query.filter(StockRecord.store_id == store_id)
    return query.order_by(StockRecord.sku_id.asc(), StockRecord.store_id.asc()).all()


def list_low_stock(store_id: int | None = None, *, include_out_of_stock: bool = True) -> list[dict]:
    """
    Stock records at or below their threshold.

    Out-of-stock rows come first, then by largest shortage. Each entry is the
    record's dict plus "severity" (critical at zero, else low) and "shortage".
    """
    query = db.session.query(StockRecord).filter(
        StockRecord.quantity <= StockRecord.low_stock_threshold
    )
    if store_id is not None:
        query = query.filter(StockRecord.store_id == store_id)
    if not include_out_of_stock:
        query = query.filter(StockRecord.quantity > 0)

    rows = []
    for stock_record in query.all():
        data = stock_record.to_dict()
        data["severity"] = SEVERITY_CRITICAL if stock_record.is_out_of_stock else SEVERITY_LOW
        data["shortage"] = max(0, stock_record.low_stock_threshold - stock_record.quantity)
        rows.append(data)

    rows.sort(key=lambda r: (r["quantity"] != 0, -r["shortage"], r["store_id"], r["sku_id"]))
    return rows
