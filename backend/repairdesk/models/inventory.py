from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

CATEGORY_SPAREPART = "Sparepart"
CATEGORY_ACCESSORY = "Accessory"
CATEGORY_SOFTWARE = "Software"
CATEGORY_OTHER = "Other"
CATEGORIES = (CATEGORY_SPAREPART, CATEGORY_ACCESSORY, CATEGORY_SOFTWARE, CATEGORY_OTHER)


class InventoryItem(db.Model):
    """
    Stock-keeping item sold at the counter or fitted during a repair.

    STOCK OWNERSHIP:
    `stock` is written only by services/stock_ledger.py. Item create sets the
    opening balance through the ledger; item update never touches it.

    SKU DESIGN DECISION:
    SKUs are stored trimmed and upper-cased, so uniqueness is effectively
    case-insensitive. Lookups must normalize the same way.

    Items are soft-deleted (is_active=False) because sale lines and ticket
    parts keep referencing them.
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_inventory_items_stock_non_negative"),
        db.CheckConstraint(
            "selling_price_cents >= purchase_price_cents",
            name="ck_inventory_items_selling_ge_purchase",
        ),
        db.Index("ix_inventory_items_category_active", "category", "is_active"),
        db.Index("ix_inventory_items_stock", "stock"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(50), nullable=False, unique=True, index=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    category = db.Column(db.String(16), nullable=False, default=CATEGORY_SPAREPART)
    description = db.Column(db.String(500), nullable=True)

    # Authoritative storage in cents (frontend may only format for display)
    purchase_price_cents = db.Column(db.Integer, nullable=False, default=0)
    selling_price_cents = db.Column(db.Integer, nullable=False)

    stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock_alert = db.Column(db.Integer, nullable=False, default=5)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<InventoryItem id={self.id} sku={self.sku!r} stock={self.stock}>"

    @property
    def is_low_stock(self) -> bool:
        return self.stock <= self.min_stock_alert

    @property
    def profit_margin(self) -> float:
        if not self.purchase_price_cents:
            return 0.0
        margin = (self.selling_price_cents - self.purchase_price_cents) / self.purchase_price_cents * 100
        return round(margin, 2)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "category": self.category,
            "description": self.description,
            "purchase_price_cents": self.purchase_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "stock": self.stock,
            "min_stock_alert": self.min_stock_alert,
            "is_active": self.is_active,
            "is_low_stock": self.is_low_stock,
            "profit_margin": self.profit_margin,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only record of every ledger mutation.

    INVARIANT: for any item, SUM(quantity_delta) == InventoryItem.stock.
    Rows are written in the same transaction as the stock change, so a
    rolled-back checkout leaves no movement behind.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_item_occurred", "item_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)

    # OPENING, RESTOCK, ADJUST_DEDUCT, SALE, SALE_REVERSAL, SERVICE_PART, SERVICE_PART_RETURN
    movement_type = db.Column(db.String(32), nullable=False, index=True)

    quantity_delta = db.Column(db.Integer, nullable=False)
    stock_after = db.Column(db.Integer, nullable=False)

    # Human-readable document reference (invoice or ticket number)
    reference = db.Column(db.String(64), nullable=True, index=True)
    note = db.Column(db.String(255), nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    item = db.relationship("InventoryItem", backref=db.backref("movements", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "stock_after": self.stock_after,
            "reference": self.reference,
            "note": self.note,
            "user_id": self.user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
