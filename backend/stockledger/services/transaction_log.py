# Overview: Read side of the stock audit trail plus the single append path used by the ledger.

"""
Stock transaction log.

INVARIANTS:
- Entries are appended only through record(), called by stock_service.
- quantity_after == quantity_before + delta for every entry.
- Entries are never deleted; the only permitted update is retag_type()
  along ALLOWED_RETAGS (enforced again by an ORM listener on the model).

Ordering: newest first (created_at DESC, id DESC).
"""

from __future__ import annotations

from datetime import date, datetime

from ..errors import ImmutableRecordError, NotFoundError
from ..extensions import db
from ..models import StockRecord, StockTransaction
from ..models.inventory import ALLOWED_RETAGS, TRANSACTION_TYPES
from ..time_utils import date_bound
from .concurrency import lock_for_update, run_in_transaction
from .pagination import paginate


def record(
    stock_record: StockRecord,
    *,
    txn_type: str,
    delta: int,
    quantity_before: int,
    actor_id: int,
    notes: str | None = None,
    metadata: dict | None = None,
    transfer_id: int | None = None,
) -> StockTransaction:
    """Append one entry for a change already applied to stock_record (no commit)."""
    if txn_type not in TRANSACTION_TYPES:
        raise ValueError(f"unknown transaction type: {txn_type}")

    meta = dict(metadata or {})
    if transfer_id is not None:
        meta["transfer_id"] = transfer_id

    txn = StockTransaction(
        stock_record_id=stock_record.id,
        actor_id=actor_id,
        type=txn_type,
        delta=delta,
        quantity_before=quantity_before,
        quantity_after=quantity_before + delta,
        notes=notes,
        meta=meta,
        transfer_id=transfer_id,
    )
    db.session.add(txn)
    db.session.flush()
    return txn


def _filtered(query, *, txn_type, start_date, end_date):
    if txn_type:
        if txn_type not in TRANSACTION_TYPES:
            raise ValueError(f"unknown transaction type: {txn_type}")
        query = query.filter(StockTransaction.type == txn_type)

    start = date_bound(start_date)
    end = date_bound(end_date, end=True)
    if start is not None:
        query = query.filter(StockTransaction.created_at >= start)
    if end is not None:
        query = query.filter(StockTransaction.created_at <= end)

    return query.order_by(StockTransaction.created_at.desc(), StockTransaction.id.desc())


def history(
    stock_record_id: int,
    *,
    txn_type: str | None = None,
    start_date: str | date | datetime | None = None,
    end_date: str | date | datetime | None = None,
    page: int = 1,
    per_page: int | None = None,
) -> dict:
    """
    Paginated transactions for one stock record, newest first.

    Returns {"transactions", "page", "per_page", "total", "pages"}.
    """
    if db.session.get(StockRecord, stock_record_id) is None:
        raise NotFoundError(f"Stock record {stock_record_id} not found")

    query = db.session.query(StockTransaction).filter(
        StockTransaction.stock_record_id == stock_record_id
    )
    query = _filtered(query, txn_type=txn_type, start_date=start_date, end_date=end_date)
    return paginate(query, key="transactions", page=page, per_page=per_page)


def sku_history(
    sku_id: int,
    *,
    store_id: int | None = None,
    txn_type: str | None = None,
    start_date: str | date | datetime | None = None,
    end_date: str | date | datetime | None = None,
    page: int = 1,
    per_page: int | None = None,
) -> dict:
    """Transactions for one SKU across every store (or one store), newest first."""
    query = (
        db.session.query(StockTransaction)
        .join(StockRecord, StockRecord.id == StockTransaction.stock_record_id)
        .filter(StockRecord.sku_id == sku_id)
    )
    if store_id is not None:
        query = query.filter(StockRecord.store_id == store_id)
    query = _filtered(query, txn_type=txn_type, start_date=start_date, end_date=end_date)
    return paginate(query, key="transactions", page=page, per_page=per_page)


def latest_for(stock_record_id: int) -> StockTransaction | None:
    return (
        db.session.query(StockTransaction)
        .filter(StockTransaction.stock_record_id == stock_record_id)
        .order_by(StockTransaction.created_at.desc(), StockTransaction.id.desc())
        .first()
    )


def transactions_for_transfer(transfer_id: int) -> list[StockTransaction]:
    return (
        db.session.query(StockTransaction)
        .filter(StockTransaction.transfer_id == transfer_id)
        .order_by(StockTransaction.id.asc())
        .all()
    )


def retag_type(transaction_id: int, new_type: str, *, commit: bool = True) -> StockTransaction:
    """
    Reclassify a written transaction.

    Only reduction -> transfer_out, addition -> transfer_in and
    addition -> transfer_cancel are accepted. Retagging to the current
    type is a no-op. Used to repair entries written by callers that did
    not know the transfer context at write time; the transfer services
    write the final type directly.
    """
    def _op():
        txn = lock_for_update(
            db.session.query(StockTransaction).filter_by(id=transaction_id)
        ).first()
        if txn is None:
            raise NotFoundError(f"Stock transaction {transaction_id} not found")

        if txn.type == new_type:
            return txn
        if (txn.type, new_type) not in ALLOWED_RETAGS:
            raise ImmutableRecordError(
                f"Stock transaction {transaction_id} cannot be retagged from {txn.type} to {new_type}"
            )

        txn.type = new_type
        db.session.flush()
        return txn

    return run_in_transaction(_op, commit=commit)


def audit_stock_record(stock_record_id: int) -> dict:
    """
    Verify the audit trail of one stock record is complete.

    Walks entries oldest first and checks each entry balances, each
    quantity_before continues the previous quantity_after (the first entry
    starts from 0), and the last quantity_after matches the current quantity.
    """
    stock_record = db.session.get(StockRecord, stock_record_id)
    if stock_record is None:
        raise NotFoundError(f"Stock record {stock_record_id} not found")

    entries = (
        db.session.query(StockTransaction)
        .filter(StockTransaction.stock_record_id == stock_record_id)
        .order_by(StockTransaction.created_at.asc(), StockTransaction.id.asc())
        .all()
    )

    problems: list[str] = []
    expected_before = 0
    for txn in entries:
        if txn.quantity_after != txn.quantity_before + txn.delta:
            problems.append(f"transaction {txn.id}: quantity_after does not equal quantity_before + delta")
        if txn.quantity_before != expected_before:
            problems.append(
                f"transaction {txn.id}: quantity_before {txn.quantity_before} "
                f"does not continue previous quantity {expected_before}"
            )
        expected_before = txn.quantity_after

    if expected_before != stock_record.quantity:
        problems.append(
            f"current quantity {stock_record.quantity} does not match ledger total {expected_before}"
        )

    return {
        "stock_record_id": stock_record_id,
        "quantity": stock_record.quantity,
        "ledger_quantity": expected_before,
        "transaction_count": len(entries),
        "ok": not problems,
        "problems": problems,
    }
