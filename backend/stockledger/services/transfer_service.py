# backend/stockledger/services/transfer_service.py
"""
Inter-store stock transfers.

LIFECYCLE:
1. pending: recorded; source availability checked, no stock moved
2. in_transit: shipped from source (transfer_out entry at the source)
3. completed: received at destination (transfer_in entry at the destination)
4. cancelled: stopped; an in_transit debit is restored (transfer_cancel entry)

Allowed moves: pending -> in_transit | completed | cancelled,
in_transit -> completed | cancelled. completed and cancelled are terminal.

ATOMICITY:
The status write and its stock mutations share one DB transaction. If any
step fails after stock has moved, the whole transaction is rolled back
(the compensating action), the failure is logged and surfaced as
TransferFailedError. If that rollback itself fails the error is raised with
requires_intervention=True and logged as critical.

Stock records are locked in ascending store_id order to avoid deadlocks
between opposite-direction transfers.
"""
from __future__ import annotations

from datetime import date, datetime

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from ..errors import (
    InsufficientStockError,
    InvalidAmountError,
    InvalidTransferError,
    InvalidTransitionError,
    NotFoundError,
    TransferFailedError,
)
from ..extensions import db
from ..models import Sku, StockRecord, Store, Transfer
from ..models.inventory import TXN_TRANSFER_CANCEL, TXN_TRANSFER_IN, TXN_TRANSFER_OUT
from ..time_utils import date_bound, utcnow
from . import stock_service
from .concurrency import RETRYABLE_ERRORS, lock_for_update, run_with_retry
from .pagination import paginate


# Transfer status constants
TRANSFER_STATUS_PENDING = "pending"
TRANSFER_STATUS_IN_TRANSIT = "in_transit"
TRANSFER_STATUS_COMPLETED = "completed"
TRANSFER_STATUS_CANCELLED = "cancelled"

TRANSFER_STATUSES = (
    TRANSFER_STATUS_PENDING,
    TRANSFER_STATUS_IN_TRANSIT,
    TRANSFER_STATUS_COMPLETED,
    TRANSFER_STATUS_CANCELLED,
)
TERMINAL_STATUSES = (TRANSFER_STATUS_COMPLETED, TRANSFER_STATUS_CANCELLED)
INITIAL_STATUSES = (TRANSFER_STATUS_PENDING, TRANSFER_STATUS_IN_TRANSIT, TRANSFER_STATUS_COMPLETED)

ALLOWED_TRANSITIONS = {
    TRANSFER_STATUS_PENDING: (
        TRANSFER_STATUS_IN_TRANSIT,
        TRANSFER_STATUS_COMPLETED,
        TRANSFER_STATUS_CANCELLED,
    ),
    TRANSFER_STATUS_IN_TRANSIT: (TRANSFER_STATUS_COMPLETED, TRANSFER_STATUS_CANCELLED),
    TRANSFER_STATUS_COMPLETED: (),
    TRANSFER_STATUS_CANCELLED: (),
}


class TransferProgress:
    """Tracks how far a transfer unit got, for failure reporting."""

    def __init__(self):
        self.transfer_ids: list[int] = []
        self.stock_moved = False

    def reset(self):
        self.transfer_ids = []
        self.stock_moved = False

    @property
    def transfer_id(self) -> int | None:
        return self.transfer_ids[-1] if self.transfer_ids else None


def _rollback_after_failure(progress: TransferProgress, exc: Exception) -> None:
    try:
        db.session.rollback()
    except SQLAlchemyError as rollback_exc:
        current_app.logger.critical(
            "Rollback failed for transfer %s after %s; stock records need manual review",
            progress.transfer_id,
            exc.__class__.__name__,
        )
        raise TransferFailedError(
            f"Transfer {progress.transfer_id} failed and its stock changes could not be undone",
            transfer_id=progress.transfer_id,
            requires_intervention=True,
        ) from rollback_exc


def execute_transfer_unit(func, *, commit: bool = True):
    """
    Run func(progress) as one transfer unit.

    Failures before any stock moved propagate unchanged. Failures after the
    first stock mutation become TransferFailedError; with commit=True the
    unit is rolled back first, with commit=False the caller must roll back.
    Lock conflicts are retried by run_with_retry.
    """
    progress = TransferProgress()

    def _op():
        progress.reset()
        try:
            result = func(progress)
            if commit:
                db.session.commit()
            return result
        except Exception as exc:
            if commit:
                _rollback_after_failure(progress, exc)
            if progress.stock_moved and not isinstance(exc, RETRYABLE_ERRORS):
                current_app.logger.warning(
                    "Transfer %s rolled back after partial stock movement: %s",
                    progress.transfer_id,
                    exc,
                )
                raise TransferFailedError(
                    f"Transfer {progress.transfer_id} failed after stock was moved: {exc}",
                    transfer_id=progress.transfer_id,
                ) from exc
            raise

    if not commit:
        return _op()
    return run_with_retry(_op)


def _append_note(existing: str | None, note: str | None) -> str | None:
    if not note:
        return existing
    if not existing:
        return note
    return f"{existing}\n{note}"


def validate_transfer_request(from_store_id, to_store_id, sku_id, quantity) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidAmountError("transfer quantity must be an integer")
    if quantity <= 0:
        raise InvalidAmountError("transfer quantity must be positive")
    if from_store_id == to_store_id:
        raise InvalidTransferError("Cannot transfer to the same store")
    if db.session.get(Store, from_store_id) is None:
        raise InvalidTransferError(f"Source store {from_store_id} not found")
    if db.session.get(Store, to_store_id) is None:
        raise InvalidTransferError(f"Destination store {to_store_id} not found")
    if db.session.get(Sku, sku_id) is None:
        raise InvalidTransferError(f"SKU {sku_id} not found")


def _lock_pair(*, sku_id: int, from_store_id: int, to_store_id: int) -> tuple[StockRecord, StockRecord]:
    """Resolve and lock source and destination records in ascending store_id order."""
    locked = {}
    for store_id in sorted((from_store_id, to_store_id)):
        locked[store_id] = stock_service.resolve_stock_record(sku_id, store_id, lock=True)
    return locked[from_store_id], locked[to_store_id]


def _lock_transfer(transfer_id: int) -> Transfer:
    transfer = lock_for_update(db.session.query(Transfer).filter_by(id=transfer_id)).first()
    if transfer is None:
        raise NotFoundError(f"Transfer {transfer_id} not found")
    return transfer


def _ship(transfer: Transfer, source: StockRecord, *, actor_id: int, progress: TransferProgress) -> None:
    stock_service.reduce_from_record(
        source,
        transfer.quantity,
        actor_id=actor_id,
        txn_type=TXN_TRANSFER_OUT,
        notes=f"Transfer #{transfer.id} to {transfer.to_store.name}",
        transfer_id=transfer.id,
    )
    progress.stock_moved = True
    transfer.shipped_at = utcnow()


def _receive(transfer: Transfer, destination: StockRecord, *, actor_id: int, progress: TransferProgress) -> None:
    stock_service.add_to_record(
        destination,
        transfer.quantity,
        actor_id=actor_id,
        txn_type=TXN_TRANSFER_IN,
        notes=f"Transfer #{transfer.id} from {transfer.from_store.name}",
        transfer_id=transfer.id,
    )
    progress.stock_moved = True
    transfer.completed_at = utcnow()


def _transition_inner(
    transfer: Transfer,
    new_status: str,
    *,
    actor_id: int,
    progress: TransferProgress,
) -> Transfer:
    """Apply pending/in_transit -> in_transit/completed (no commit)."""
    current = transfer.status
    if new_status == current:
        return transfer

    if current in TERMINAL_STATUSES:
        raise InvalidTransitionError(
            f"Transfer {transfer.id} is already {current}",
            current=current,
            requested_status=new_status,
        )
    if new_status not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Cannot move transfer {transfer.id} from {current} to {new_status}",
            current=current,
            requested_status=new_status,
        )

    source, destination = _lock_pair(
        sku_id=transfer.sku_id,
        from_store_id=transfer.from_store_id,
        to_store_id=transfer.to_store_id,
    )

    if current == TRANSFER_STATUS_PENDING:
        _ship(transfer, source, actor_id=actor_id, progress=progress)
    if new_status == TRANSFER_STATUS_COMPLETED:
        _receive(transfer, destination, actor_id=actor_id, progress=progress)

    transfer.status = new_status
    db.session.flush()
    return transfer


def _cancel_inner(
    transfer: Transfer,
    *,
    reason: str,
    actor_id: int,
    progress: TransferProgress,
) -> Transfer:
    if transfer.status in TERMINAL_STATUSES:
        raise InvalidTransitionError(
            f"Transfer {transfer.id} is already {transfer.status} and cannot be cancelled",
            current=transfer.status,
            requested_status=TRANSFER_STATUS_CANCELLED,
        )

    if transfer.status == TRANSFER_STATUS_IN_TRANSIT:
        source = stock_service.resolve_stock_record(
            transfer.sku_id, transfer.from_store_id, lock=True
        )
        stock_service.add_to_record(
            source,
            transfer.quantity,
            actor_id=actor_id,
            txn_type=TXN_TRANSFER_CANCEL,
            notes=f"Transfer #{transfer.id} cancelled: {reason}",
            metadata={"reason": reason},
            transfer_id=transfer.id,
        )
        progress.stock_moved = True

    original = transfer.notes
    transfer.notes = f"Cancelled. Reason: {reason}" + (f"\nOriginal notes: {original}" if original else "")
    transfer.status = TRANSFER_STATUS_CANCELLED
    transfer.cancelled_at = utcnow()
    db.session.flush()
    return transfer


def create_transfer_inner(
    *,
    from_store_id: int,
    to_store_id: int,
    sku_id: int,
    quantity: int,
    actor_id: int,
    status: str = TRANSFER_STATUS_COMPLETED,
    notes: str | None = None,
    order_id: int | None = None,
    progress: TransferProgress,
) -> Transfer:
    """Validate, check source stock under lock, insert pending, then apply status (no commit)."""
    if status not in INITIAL_STATUSES:
        raise InvalidTransferError(f"Transfers cannot be created as {status}")
    validate_transfer_request(from_store_id, to_store_id, sku_id, quantity)

    source, _ = _lock_pair(sku_id=sku_id, from_store_id=from_store_id, to_store_id=to_store_id)
    if source.quantity < quantity:
        raise InsufficientStockError(
            sku_id=sku_id,
            store_id=from_store_id,
            available=source.quantity,
            requested=quantity,
        )

    transfer = Transfer(
        from_store_id=from_store_id,
        to_store_id=to_store_id,
        sku_id=sku_id,
        quantity=quantity,
        status=TRANSFER_STATUS_PENDING,
        actor_id=actor_id,
        notes=notes,
        order_id=order_id,
    )
    db.session.add(transfer)
    db.session.flush()  # Get ID
    progress.transfer_ids.append(transfer.id)

    if status != TRANSFER_STATUS_PENDING:
        _transition_inner(transfer, status, actor_id=actor_id, progress=progress)
    return transfer


def create_transfer(
    from_store_id: int,
    to_store_id: int,
    sku_id: int,
    quantity: int,
    *,
    actor_id: int,
    status: str = TRANSFER_STATUS_COMPLETED,
    notes: str | None = None,
    order_id: int | None = None,
    commit: bool = True,
) -> Transfer:
    """
    Create a transfer, executing it immediately unless status is pending.

    Raises:
        InvalidTransferError: same store, unknown store/SKU, or bad status
        InvalidAmountError: quantity not a positive integer
        InsufficientStockError: source cannot cover quantity (nothing is created)
        TransferFailedError: a later step failed; everything was rolled back
    """
    def _op(progress):
        return create_transfer_inner(
            from_store_id=from_store_id,
            to_store_id=to_store_id,
            sku_id=sku_id,
            quantity=quantity,
            actor_id=actor_id,
            status=status,
            notes=notes,
            order_id=order_id,
            progress=progress,
        )

    transfer = execute_transfer_unit(_op, commit=commit)
    current_app.logger.info(
        "Transfer %s created (%s): %s x SKU %s, store %s -> %s",
        transfer.id, transfer.status, quantity, sku_id, from_store_id, to_store_id,
    )
    return transfer


def update_transfer_status(
    transfer_id: int,
    new_status: str,
    *,
    actor_id: int,
    notes: str | None = None,
    commit: bool = True,
) -> Transfer:
    """
    Move a transfer along its lifecycle.

    Same-status requests are no-ops. Moving to cancelled follows
    cancel_transfer (notes become the reason). Notes are appended.
    """
    if new_status not in TRANSFER_STATUSES:
        raise InvalidTransitionError(
            f"Unknown transfer status: {new_status}",
            requested_status=new_status,
        )
    if new_status == TRANSFER_STATUS_CANCELLED:
        return cancel_transfer(
            transfer_id,
            reason=notes or "Cancelled via status update",
            actor_id=actor_id,
            commit=commit,
        )

    def _op(progress):
        transfer = _lock_transfer(transfer_id)
        progress.transfer_ids.append(transfer.id)
        previous = transfer.status
        _transition_inner(transfer, new_status, actor_id=actor_id, progress=progress)
        if previous != transfer.status:
            transfer.notes = _append_note(transfer.notes, notes)
            db.session.flush()
        return transfer

    transfer = execute_transfer_unit(_op, commit=commit)
    current_app.logger.info("Transfer %s is now %s", transfer.id, transfer.status)
    return transfer


def cancel_transfer(
    transfer_id: int,
    *,
    reason: str,
    actor_id: int,
    commit: bool = True,
) -> Transfer:
    """
    Cancel a pending or in_transit transfer.

    An in_transit transfer has its debit restored to the source with a
    transfer_cancel entry. Notes keep the reason followed by prior notes.
    """
    if not reason or not reason.strip():
        raise InvalidTransferError("A cancellation reason is required")
    reason = reason.strip()

    def _op(progress):
        transfer = _lock_transfer(transfer_id)
        progress.transfer_ids.append(transfer.id)
        return _cancel_inner(transfer, reason=reason, actor_id=actor_id, progress=progress)

    transfer = execute_transfer_unit(_op, commit=commit)
    current_app.logger.info("Transfer %s cancelled: %s", transfer.id, reason)
    return transfer


def get_transfer(transfer_id: int, *, include_transactions: bool = False) -> Transfer:
    query = db.session.query(Transfer).filter_by(id=transfer_id)
    if include_transactions:
        query = query.options(selectinload(Transfer.transactions))
    transfer = query.first()
    if transfer is None:
        raise NotFoundError(f"Transfer {transfer_id} not found")
    return transfer


def list_transfers(
    *,
    from_store_id: int | None = None,
    to_store_id: int | None = None,
    sku_id: int | None = None,
    status: str | None = None,
    order_id: int | None = None,
    start_date: str | date | datetime | None = None,
    end_date: str | date | datetime | None = None,
    page: int = 1,
    per_page: int | None = None,
) -> dict:
    """Paginated transfers, newest first: {"transfers", "page", "per_page", "total", "pages"}."""
    query = db.session.query(Transfer)
    if from_store_id is not None:
        query = query.filter(Transfer.from_store_id == from_store_id)
    if to_store_id is not None:
        query = query.filter(Transfer.to_store_id == to_store_id)
    if sku_id is not None:
        query = query.filter(Transfer.sku_id == sku_id)
    if status:
        if status not in TRANSFER_STATUSES:
            raise ValueError(f"unknown transfer status: {status}")
        query = query.filter(Transfer.status == status)
    if order_id is not None:
        query = query.filter(Transfer.order_id == order_id)

    start = date_bound(start_date)
    end = date_bound(end_date, end=True)
    if start is not None:
        query = query.filter(Transfer.created_at >= start)
    if end is not None:
        query = query.filter(Transfer.created_at <= end)

    query = query.order_by(Transfer.created_at.desc(), Transfer.id.desc())
    return paginate(query, key="transfers", page=page, per_page=per_page)
