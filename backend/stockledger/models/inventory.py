from __future__ import annotations

from sqlalchemy import event, inspect

from ..errors import ImmutableRecordError
from ..extensions import db
from ..time_utils import to_utc_z, utcnow


TXN_ADDITION = "addition"
TXN_REDUCTION = "reduction"
TXN_ADJUSTMENT = "adjustment"
TXN_TRANSFER_IN = "transfer_in"
TXN_TRANSFER_OUT = "transfer_out"
TXN_TRANSFER_CANCEL = "transfer_cancel"

TRANSACTION_TYPES = (
    TXN_ADDITION,
    TXN_REDUCTION,
    TXN_ADJUSTMENT,
    TXN_TRANSFER_IN,
    TXN_TRANSFER_OUT,
    TXN_TRANSFER_CANCEL,
)

# The only reclassifications a written transaction may undergo.
ALLOWED_RETAGS = {
    (TXN_REDUCTION, TXN_TRANSFER_OUT),
    (TXN_ADDITION, TXN_TRANSFER_IN),
    (TXN_ADDITION, TXN_TRANSFER_CANCEL),
}


class StockRecord(db.Model):
    """
    On-hand quantity of one SKU at one store.

    INVARIANTS:
    - quantity >= 0 (check constraint + service-level guard under row lock)
    - every quantity change is paired with exactly one StockTransaction
      written in the same DB transaction

    Rows are created lazily by the ledger (quantity 0, default threshold)
    and are never deleted while transactions reference them.
    """
    __tablename__ = "stock_records"
    __table_args__ = (
        db.UniqueConstraint("sku_id", "store_id", name="uq_stock_records_sku_store"),
        db.CheckConstraint("quantity >= 0", name="ck_stock_records_quantity_non_negative"),
        db.CheckConstraint("low_stock_threshold >= 0", name="ck_stock_records_threshold_non_negative"),
        db.Index("ix_stock_records_store_quantity", "store_id", "quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku_id = db.Column(db.Integer, db.ForeignKey("skus.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=5)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    sku = db.relationship("Sku", backref=db.backref("stock_records", lazy=True))
    store = db.relationship("Store", backref=db.backref("stock_records", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.low_stock_threshold

    @property
    def is_out_of_stock(self) -> bool:
        return self.quantity == 0

    def __repr__(self) -> str:
        return (
            f"<StockRecord id={self.id} sku_id={self.sku_id} "
            f"store_id={self.store_id} quantity={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku_id": self.sku_id,
            "store_id": self.store_id,
            "quantity": self.quantity,
            "low_stock_threshold": self.low_stock_threshold,
            "is_low_stock": self.is_low_stock,
            "is_out_of_stock": self.is_out_of_stock,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockTransaction(db.Model):
    """
    Append-only audit entry for one stock mutation.

    Written only by the stock ledger. quantity_before/quantity_after snapshot
    the record around the change; transfer_id (also mirrored in metadata)
    links transfer legs and cancellations back to their Transfer.
    """
    __tablename__ = "stock_transactions"
    __table_args__ = (
        db.CheckConstraint(
            "quantity_after = quantity_before + delta",
            name="ck_stock_transactions_balanced",
        ),
        db.CheckConstraint("quantity_after >= 0", name="ck_stock_transactions_after_non_negative"),
        db.Index("ix_stock_txn_record_created", "stock_record_id", "created_at"),
        db.Index("ix_stock_txn_record_type_created", "stock_record_id", "type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    stock_record_id = db.Column(db.Integer, db.ForeignKey("stock_records.id"), nullable=False, index=True)
    actor_id = db.Column(db.Integer, nullable=False, index=True)

    type = db.Column(db.String(32), nullable=False, index=True)

    delta = db.Column(db.Integer, nullable=False)
    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    notes = db.Column(db.Text, nullable=True)
    # "metadata" is reserved on declarative classes
    meta = db.Column("metadata", db.JSON, nullable=False, default=dict)

    transfer_id = db.Column(db.Integer, db.ForeignKey("transfers.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    stock_record = db.relationship("StockRecord", backref=db.backref("transactions", lazy=True))

    def __repr__(self) -> str:
        return f"<StockTransaction id={self.id} type={self.type} delta={self.delta}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stock_record_id": self.stock_record_id,
            "actor_id": self.actor_id,
            "type": self.type,
            "delta": self.delta,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "notes": self.notes,
            "metadata": dict(self.meta or {}),
            "transfer_id": self.transfer_id,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(StockTransaction, "before_update")
def _reject_transaction_update(mapper, connection, target):
    state = inspect(target)
    for attr in mapper.column_attrs:
        history = state.attrs[attr.key].history
        if not history.has_changes():
            continue
        if attr.key != "type":
            raise ImmutableRecordError(
                f"Stock transaction {target.id} is immutable (attempted change to {attr.key})"
            )
        old = history.deleted[0] if history.deleted else None
        new = history.added[0] if history.added else None
        if (old, new) not in ALLOWED_RETAGS:
            raise ImmutableRecordError(
                f"Stock transaction {target.id} cannot be retagged from {old} to {new}"
            )


@event.listens_for(StockTransaction, "before_delete")
def _reject_transaction_delete(mapper, connection, target):
    raise ImmutableRecordError(f"Stock transaction {target.id} cannot be deleted")
