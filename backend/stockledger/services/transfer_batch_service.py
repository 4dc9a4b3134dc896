# Overview: All-or-nothing creation of many transfers (order-driven stock reallocation).

from __future__ import annotations

from flask import current_app

from ..errors import InsufficientStockError, InvalidTransferError
from ..extensions import db
from ..models import Sku, StockRecord, Transfer
from . import stock_service
from .transfer_service import (
    TRANSFER_STATUS_COMPLETED,
    TRANSFER_STATUS_PENDING,
    create_transfer_inner,
    execute_transfer_unit,
    validate_transfer_request,
)


BATCH_ITEM_STATUSES = (TRANSFER_STATUS_PENDING, TRANSFER_STATUS_COMPLETED)


def _normalize_item(index: int, item: dict, order_id: int | None) -> dict:
    if not isinstance(item, dict):
        raise InvalidTransferError(f"Batch item {index} must be an object")
    try:
        normalized = {
            "from_store_id": item["from_store_id"],
            "to_store_id": item["to_store_id"],
            "sku_id": item["sku_id"],
            "quantity": item["quantity"],
        }
    except KeyError as exc:
        raise InvalidTransferError(f"Batch item {index} is missing {exc.args[0]}") from exc

    status = item.get("status") or TRANSFER_STATUS_PENDING
    if status not in BATCH_ITEM_STATUSES:
        raise InvalidTransferError(f"Batch item {index} has unsupported status {status}")
    normalized["status"] = status

    notes = item.get("notes")
    if not notes and order_id is not None:
        notes = f"Order #{order_id} stock reallocation"
    normalized["notes"] = notes
    return normalized


def _lock_batch_records(items: list[dict]) -> dict[tuple[int, int], StockRecord]:
    """
    Lock every stock record the batch touches, sources and destinations alike.

    Locks are taken once, in (store_id, sku_id) order.
    """
    keys = set()
    for item in items:
        keys.add((item["from_store_id"], item["sku_id"]))
        keys.add((item["to_store_id"], item["sku_id"]))

    return {
        (store_id, sku_id): stock_service.resolve_stock_record(sku_id, store_id, lock=True)
        for store_id, sku_id in sorted(keys)
    }


def _check_available(source: StockRecord, item: dict, claimed: int) -> None:
    """
    Check an item against current stock less what earlier pending items claimed.

    Earlier completed items have already moved stock, so a later item may draw
    on quantity that an earlier item in the same batch delivered.
    """
    available = source.quantity - claimed
    if available < item["quantity"]:
        sku = db.session.get(Sku, item["sku_id"])
        raise InsufficientStockError(
            f"Insufficient stock for SKU {sku.sku} at source store {item['from_store_id']}. "
            f"On-hand: {available}, requested: {item['quantity']}",
            sku_id=item["sku_id"],
            store_id=item["from_store_id"],
            available=available,
            requested=item["quantity"],
        )


def create_transfer_batch(
    items: list[dict],
    *,
    actor_id: int,
    order_id: int | None = None,
    commit: bool = True,
) -> list[Transfer]:
    """
    Create every transfer in items, or none of them.

    Each item: from_store_id, to_store_id, sku_id, quantity, optional notes,
    optional status (pending by default, or completed to execute at once).
    Items run in order inside one unit, so a completed item can supply a
    later one. Any invalid item or shortfall aborts the whole batch.
    """
    if not items:
        raise InvalidTransferError("A transfer batch needs at least one item")

    normalized = [_normalize_item(i, item, order_id) for i, item in enumerate(items)]

    def _op(progress):
        # Validate every item before locking so malformed batches fail fast
        for item in normalized:
            validate_transfer_request(
                item["from_store_id"], item["to_store_id"], item["sku_id"], item["quantity"]
            )

        records = _lock_batch_records(normalized)

        # Pending demand already promised to earlier items, per (store, SKU)
        claimed: dict[tuple[int, int], int] = {}
        created = []
        for item in normalized:
            key = (item["from_store_id"], item["sku_id"])
            _check_available(records[key], item, claimed.get(key, 0))
            if item["status"] == TRANSFER_STATUS_PENDING:
                claimed[key] = claimed.get(key, 0) + item["quantity"]

            created.append(
                create_transfer_inner(
                    from_store_id=item["from_store_id"],
                    to_store_id=item["to_store_id"],
                    sku_id=item["sku_id"],
                    quantity=item["quantity"],
                    actor_id=actor_id,
                    status=item["status"],
                    notes=item["notes"],
                    order_id=order_id,
                    progress=progress,
                )
            )
        return created

    transfers = execute_transfer_unit(_op, commit=commit)
    current_app.logger.info(
        "Transfer batch created %s transfers%s",
        len(transfers),
        f" for order {order_id}" if order_id is not None else "",
    )
    return transfers
