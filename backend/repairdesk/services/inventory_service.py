# Overview: Service-layer operations for inventory items; catalogue maintenance and manual stock adjustment.

from __future__ import annotations

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import InventoryItem, StockMovement
from ..models.inventory import CATEGORIES
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_item,
    parse_quantity,
    validate_payload,
)
from .concurrency import begin_write, run_with_retry
from .pagination import paginate
from .stock_ledger import (
    MOVEMENT_ADJUST_DEDUCT,
    MOVEMENT_OPENING,
    MOVEMENT_RESTOCK,
    ItemNotFoundError,
    credit,
    try_debit,
)

ADJUST_ADD = "add"
ADJUST_DEDUCT = "deduct"

ITEM_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku",
        "name",
        "category",
        "description",
        "purchase_price_cents",
        "selling_price_cents",
        "stock",
        "min_stock_alert",
    },
    required_on_create={"sku", "name", "category", "purchase_price_cents", "selling_price_cents"},
)

# Stock is deliberately absent: it only moves through adjust_stock()
ITEM_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku",
        "name",
        "category",
        "description",
        "purchase_price_cents",
        "selling_price_cents",
        "min_stock_alert",
    },
)


def _sku_taken(sku: str, exclude_id: int | None = None) -> bool:
    query = db.session.query(InventoryItem.id).filter(InventoryItem.sku == sku)
    if exclude_id is not None:
        query = query.filter(InventoryItem.id != exclude_id)
    return query.first() is not None


def get_item(item_id: int, *, include_inactive: bool = False) -> InventoryItem:
    item = db.session.get(InventoryItem, item_id)
    if item is None or (not item.is_active and not include_inactive):
        raise ItemNotFoundError(item_id)
    return item


def create_item(payload: dict, *, user_id: int | None = None) -> InventoryItem:
    """
    Create an item. A positive opening stock is booked through the ledger as
    an OPENING movement so the movement history always sums to stock.
    """
    patch = validate_payload(model=InventoryItem, payload=payload, policy=ITEM_CREATE_POLICY, partial=False)
    enforce_rules_item(patch)
    opening_stock = patch.pop("stock", None) or 0

    def _op():
        begin_write()
        if _sku_taken(patch["sku"]):
            raise ConflictError(f"SKU {patch['sku']} already exists")

        item = InventoryItem(stock=0, **patch)
        db.session.add(item)
        try:
            db.session.flush()
        except IntegrityError:
            raise ConflictError(f"SKU {patch['sku']} already exists")

        if opening_stock:
            credit(item.id, opening_stock, movement_type=MOVEMENT_OPENING, note="Opening stock", user_id=user_id)

        db.session.commit()
        current_app.logger.info("Item %s created with opening stock %d", item.sku, opening_stock)
        return item

    return run_with_retry(_op)


def update_item(item_id: int, payload: dict) -> InventoryItem:
    if isinstance(payload, dict) and "stock" in payload:
        raise ValidationError("stock cannot be changed here; use the stock adjustment endpoint")
    patch = validate_payload(model=InventoryItem, payload=payload, policy=ITEM_UPDATE_POLICY, partial=True)

    def _op():
        item = get_item(item_id)
        enforce_rules_item(patch, current=item)
        if "sku" in patch and _sku_taken(patch["sku"], exclude_id=item.id):
            raise ConflictError(f"SKU {patch['sku']} already exists")

        for key, value in patch.items():
            setattr(item, key, value)
        try:
            db.session.commit()
        except IntegrityError:
            raise ConflictError("SKU already exists")
        return item

    return run_with_retry(_op)


def deactivate_item(item_id: int) -> InventoryItem:
    """Soft delete. Sale lines and ticket parts keep their reference."""
    def _op():
        item = get_item(item_id)
        item.is_active = False
        db.session.commit()
        current_app.logger.info("Item %s deactivated", item.sku)
        return item

    return run_with_retry(_op)


def adjust_stock(item_id: int, quantity, adjustment_type: str, *, note: str | None = None,
                 user_id: int | None = None) -> InventoryItem:
    """
    Manual stock correction: `add` restocks, `deduct` removes units and fails
    with InsufficientStockError rather than going below zero.
    """
    quantity = parse_quantity(quantity)
    if adjustment_type not in (ADJUST_ADD, ADJUST_DEDUCT):
        raise ValidationError("type must be 'add' or 'deduct'")
    note = (str(note).strip() or None) if note is not None else None

    def _op():
        begin_write()
        if adjustment_type == ADJUST_ADD:
            credit(item_id, quantity, movement_type=MOVEMENT_RESTOCK, note=note, user_id=user_id)
        else:
            try_debit(item_id, quantity, movement_type=MOVEMENT_ADJUST_DEDUCT, note=note, user_id=user_id)
        db.session.commit()

        # Committed, so the instance reloads with the ledger's stock value
        item = get_item(item_id)
        current_app.logger.info("Stock of %s adjusted (%s %d), now %d", item.sku, adjustment_type, quantity, item.stock)
        return item

    return run_with_retry(_op)


def list_items(
    *,
    category: str | None = None,
    search: str | None = None,
    low_stock: bool = False,
    page: int | None = None,
    limit: int | None = None,
) -> dict:
    query = db.session.query(InventoryItem).filter(InventoryItem.is_active.is_(True))

    if category:
        if category not in CATEGORIES:
            raise ValidationError(f"category must be one of: {', '.join(CATEGORIES)}")
        query = query.filter(InventoryItem.category == category)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(InventoryItem.name.ilike(pattern), InventoryItem.sku.ilike(pattern)))
    if low_stock:
        query = query.filter(InventoryItem.stock <= InventoryItem.min_stock_alert)

    query = query.order_by(InventoryItem.name.asc(), InventoryItem.id.asc())
    items, pagination = paginate(query, page, limit)
    return {
        "items": [item.to_dict() for item in items],
        "pagination": pagination,
    }


def low_stock_items() -> list[InventoryItem]:
    return (
        db.session.query(InventoryItem)
        .filter(InventoryItem.is_active.is_(True), InventoryItem.stock <= InventoryItem.min_stock_alert)
        .order_by(InventoryItem.stock.asc(), InventoryItem.name.asc())
        .all()
    )


def list_movements(item_id: int, *, page: int | None = None, limit: int | None = None) -> dict:
    item = get_item(item_id, include_inactive=True)
    query = (
        db.session.query(StockMovement)
        .filter(StockMovement.item_id == item.id)
        .order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc())
    )
    movements, pagination = paginate(query, page, limit)
    return {
        "item": {"id": item.id, "sku": item.sku, "name": item.name, "stock": item.stock},
        "movements": [movement.to_dict() for movement in movements],
        "pagination": pagination,
    }
