# Overview: Typed errors raised by the ledger and transfer services.

from __future__ import annotations


class InventoryError(Exception):
    """Base class for every ledger/transfer failure surfaced to callers."""

    code = "inventory_error"

    def to_dict(self) -> dict:
        return {"error": self.code, "message": str(self)}


class InvalidAmountError(InventoryError, ValueError):
    """Non-positive amount, non-integer amount, or negative target quantity."""

    code = "invalid_amount"


class InsufficientStockError(InventoryError):
    code = "insufficient_stock"

    def __init__(
        self,
        message: str | None = None,
        *,
        sku_id: int | None = None,
        store_id: int | None = None,
        available: int | None = None,
        requested: int | None = None,
    ):
        self.sku_id = sku_id
        self.store_id = store_id
        self.available = available
        self.requested = requested
        if message is None:
            message = (
                f"Insufficient stock for SKU {sku_id} at store {store_id}. "
                f"On-hand: {available}, requested: {requested}"
            )
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "sku_id": self.sku_id,
            "store_id": self.store_id,
            "available": self.available,
            "requested": self.requested,
        }


class InvalidTransferError(InventoryError, ValueError):
    """Same source/destination store, unknown SKU/store, or a malformed request."""

    code = "invalid_transfer"


class InvalidTransitionError(InventoryError):
    code = "invalid_transition"

    def __init__(self, message: str, *, current: str | None = None, requested_status: str | None = None):
        self.current = current
        self.requested_status = requested_status
        super().__init__(message)

    def to_dict(self) -> dict:
        return {**super().to_dict(), "current": self.current, "requested_status": self.requested_status}


class TransferFailedError(InventoryError):
    """
    A multi-step transfer failed after its first stock mutation.

    requires_intervention is set when undoing the partial effect also failed
    and the stock records must be checked by hand.
    """

    code = "transfer_failed"

    def __init__(self, message: str, *, transfer_id: int | None = None, requires_intervention: bool = False):
        self.transfer_id = transfer_id
        self.requires_intervention = requires_intervention
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "transfer_id": self.transfer_id,
            "requires_intervention": self.requires_intervention,
        }


class NotFoundError(InventoryError, LookupError):
    code = "not_found"


class ConcurrencyConflictError(InventoryError):
    """Lock/version conflicts persisted after every retry attempt."""

    code = "concurrency_conflict"


class ImmutableRecordError(InventoryError):
    """Attempted to modify or delete an append-only ledger row."""

    code = "immutable_record"
