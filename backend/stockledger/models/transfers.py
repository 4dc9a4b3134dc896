from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Transfer(db.Model):
    """
    Movement of a fixed quantity of one SKU between two stores.

    LIFECYCLE:
    1. pending: recorded, no stock moved
    2. in_transit: debited at the source (transfer_out)
    3. completed: credited at the destination (transfer_in)
    4. cancelled: stopped; an in_transit debit is restored (transfer_cancel)

    completed and cancelled are terminal. A transfer may also be created
    directly in in_transit or completed, which applies the same steps.
    """
    __tablename__ = "transfers"
    __table_args__ = (
        db.CheckConstraint("from_store_id <> to_store_id", name="ck_transfers_distinct_stores"),
        db.CheckConstraint("quantity > 0", name="ck_transfers_quantity_positive"),
        db.Index("ix_transfers_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    from_store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    to_store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    sku_id = db.Column(db.Integer, db.ForeignKey("skus.id"), nullable=False, index=True)

    # Fixed at creation
    quantity = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    actor_id = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    # Back-reference to the order that triggered a reallocation (orders live elsewhere)
    order_id = db.Column(db.Integer, nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    from_store = db.relationship("Store", foreign_keys=[from_store_id])
    to_store = db.relationship("Store", foreign_keys=[to_store_id])
    sku = db.relationship("Sku")
    transactions = db.relationship(
        "StockTransaction",
        backref=db.backref("transfer", lazy=True),
        order_by="StockTransaction.id",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<Transfer id={self.id} sku_id={self.sku_id} "
            f"{self.from_store_id}->{self.to_store_id} qty={self.quantity} status={self.status}>"
        )

    def to_dict(self, include_transactions: bool = False) -> dict:
        data = {
            "id": self.id,
            "from_store_id": self.from_store_id,
            "to_store_id": self.to_store_id,
            "sku_id": self.sku_id,
            "quantity": self.quantity,
            "status": self.status,
            "actor_id": self.actor_id,
            "notes": self.notes,
            "order_id": self.order_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "shipped_at": to_utc_z(self.shipped_at) if self.shipped_at else None,
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "version_id": self.version_id,
        }
        if include_transactions:
            data["transactions"] = [txn.to_dict() for txn in self.transactions]
        return data
