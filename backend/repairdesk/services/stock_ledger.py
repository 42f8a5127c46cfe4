# Overview: Stock ledger; the only code path allowed to change InventoryItem.stock.

"""
Stock Ledger

Every change to an item's stock goes through debit/credit here. Each
operation is a single conditional UPDATE evaluated by the database, so
concurrent callers on the same item are serialized by the row (or SQLite
database) write lock and can never drive stock below zero:

    UPDATE inventory_items
       SET stock = stock - :qty
     WHERE id = :id AND is_active AND stock >= :qty

A row count of zero means the debit did not apply; only then is the row read
back to tell NotFound from InsufficientStock. The application never reads
stock, compares, and writes it back.

All functions work inside the caller's transaction and never commit. The
caller owns the unit of work (sale, ticket part, adjustment) and commits it
together with the stock change and its StockMovement rows.

MOVEMENT TYPES:
- OPENING: opening balance when an item is created
- RESTOCK / ADJUST_DEDUCT: manual adjustment
- SALE / SALE_REVERSAL: retail checkout and sale deletion
- SERVICE_PART / SERVICE_PART_RETURN: parts attached to / removed from tickets
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import InventoryItem, StockMovement
from ..time_utils import utcnow
from ..validation import parse_quantity

MOVEMENT_OPENING = "OPENING"
MOVEMENT_RESTOCK = "RESTOCK"
MOVEMENT_ADJUST_DEDUCT = "ADJUST_DEDUCT"
MOVEMENT_SALE = "SALE"
MOVEMENT_SALE_REVERSAL = "SALE_REVERSAL"
MOVEMENT_SERVICE_PART = "SERVICE_PART"
MOVEMENT_SERVICE_PART_RETURN = "SERVICE_PART_RETURN"


class StockError(Exception):
    """Base class for ledger failures."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ItemNotFoundError(StockError):
    """The item id does not resolve to an active inventory item."""
    def __init__(self, item_id: int):
        super().__init__(f"Item with ID {item_id} not found", details={"item_id": item_id})
        self.item_id = item_id


class InsufficientStockError(StockError):
    """
    Recoverable business condition: not enough units on hand.

    Carries the numbers the cashier needs to correct the cart.
    """
    def __init__(self, item_id: int, name: str, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for {name}. Available: {available}, Requested: {requested}",
            details={
                "item_id": item_id,
                "name": name,
                "requested": requested,
                "available": available,
                "deficit": requested - available,
            },
        )
        self.item_id = item_id
        self.name = name
        self.requested = requested
        self.available = available

    @property
    def deficit(self) -> int:
        return self.requested - self.available


@dataclass(frozen=True)
class StockLine:
    item_id: int
    quantity: int


def _current_stock(item_id: int):
    # Column query: always hits the database, never the identity map
    return (
        db.session.query(InventoryItem.stock, InventoryItem.name, InventoryItem.is_active)
        .filter(InventoryItem.id == item_id)
        .first()
    )


def _record_movement(
    *,
    item_id: int,
    movement_type: str,
    quantity_delta: int,
    stock_after: int,
    reference: str | None,
    note: str | None,
    user_id: int | None,
) -> None:
    db.session.add(StockMovement(
        item_id=item_id,
        movement_type=movement_type,
        quantity_delta=quantity_delta,
        stock_after=stock_after,
        reference=reference,
        note=note,
        user_id=user_id,
        occurred_at=utcnow(),
    ))


def try_debit(
    item_id: int,
    quantity: int,
    *,
    movement_type: str,
    reference: str | None = None,
    note: str | None = None,
    user_id: int | None = None,
) -> int:
    """
    Atomically remove `quantity` units from an item.

    Returns the new stock level. Raises ItemNotFoundError or
    InsufficientStockError without changing anything.
    """
    quantity = parse_quantity(quantity)

    stmt = (
        update(InventoryItem)
        .where(
            InventoryItem.id == item_id,
            InventoryItem.is_active.is_(True),
            InventoryItem.stock >= quantity,
        )
        .values(
            stock=InventoryItem.stock - quantity,
            version_id=InventoryItem.version_id + 1,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)

    row = _current_stock(item_id)
    if result.rowcount != 1:
        if row is None or not row.is_active:
            raise ItemNotFoundError(item_id)
        raise InsufficientStockError(item_id, row.name, quantity, row.stock)

    _record_movement(
        item_id=item_id,
        movement_type=movement_type,
        quantity_delta=-quantity,
        stock_after=row.stock,
        reference=reference,
        note=note,
        user_id=user_id,
    )
    current_app.logger.debug("Debited %d of item %d (%s), stock now %d", quantity, item_id, movement_type, row.stock)
    return row.stock


def credit(
    item_id: int,
    quantity: int,
    *,
    movement_type: str,
    reference: str | None = None,
    note: str | None = None,
    user_id: int | None = None,
) -> int:
    """
    Atomically add `quantity` units to an item.

    Stock has no upper bound. Used for restocks and for reversing an earlier
    debit. Raises ItemNotFoundError for missing or deactivated items.
    """
    quantity = parse_quantity(quantity)

    stmt = (
        update(InventoryItem)
        .where(InventoryItem.id == item_id, InventoryItem.is_active.is_(True))
        .values(
            stock=InventoryItem.stock + quantity,
            version_id=InventoryItem.version_id + 1,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise ItemNotFoundError(item_id)

    row = _current_stock(item_id)
    _record_movement(
        item_id=item_id,
        movement_type=movement_type,
        quantity_delta=quantity,
        stock_after=row.stock,
        reference=reference,
        note=note,
        user_id=user_id,
    )
    current_app.logger.debug("Credited %d to item %d (%s), stock now %d", quantity, item_id, movement_type, row.stock)
    return row.stock


def merge_lines(lines: Iterable[StockLine]) -> list[StockLine]:
    """Sum quantities of repeated item ids, keeping first-seen order."""
    totals: dict[int, int] = {}
    for line in lines:
        totals[line.item_id] = totals.get(line.item_id, 0) + line.quantity
    return [StockLine(item_id=item_id, quantity=qty) for item_id, qty in totals.items()]


def batch_try_debit(
    lines: Iterable[StockLine],
    *,
    movement_type: str,
    reference: str | None = None,
    note: str | None = None,
    user_id: int | None = None,
) -> dict[int, int]:
    """
    Debit every line or none of them.

    All conditional updates run inside a savepoint of the caller's
    transaction, in item-id order so concurrent batches take row locks in the
    same order. On the first failure only the savepoint is rolled back, which
    undoes the lines already applied, and the error is re-raised. Whatever
    the caller wrote before the batch stays pending in its transaction.

    Returns {item_id: new_stock}.
    """
    merged = merge_lines(lines)
    if not merged:
        raise StockError("No lines to debit")

    new_levels: dict[int, int] = {}
    with db.session.begin_nested():
        for line in sorted(merged, key=lambda merged_line: merged_line.item_id):
            new_levels[line.item_id] = try_debit(
                line.item_id,
                line.quantity,
                movement_type=movement_type,
                reference=reference,
                note=note,
                user_id=user_id,
            )
    return new_levels
