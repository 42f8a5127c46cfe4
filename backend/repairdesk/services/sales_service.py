# Overview: Service-layer operations for retail sales; checkout and sale deletion with stock reversal.

"""
Sales Service

Checkout is all-or-nothing: the stock debit for every line, the invoice
number and the sale document are written in one transaction. Deleting a sale
gives the stock back best-effort, line by line.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import InventoryItem, Sale, SaleLine, User
from ..models.sales import (
    PAYMENT_CARD,
    PAYMENT_CASH,
    PAYMENT_METHODS,
    PAYMENT_QRIS,
    PAYMENT_TRANSFER,
)
from ..validation import (
    ValidationError,
    parse_amount_cents,
    parse_date_filter,
    parse_id,
    parse_quantity,
)
from .concurrency import begin_write, lock_for_update, run_with_retry
from .document_service import next_invoice_number
from .pagination import paginate
from .stock_ledger import (
    MOVEMENT_SALE,
    MOVEMENT_SALE_REVERSAL,
    ItemNotFoundError,
    StockLine,
    batch_try_debit,
    credit,
)


class SaleError(Exception):
    """Raised for sale operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class PaymentError(SaleError):
    """Tendered amount does not settle the sale."""


class SaleNotFoundError(SaleError):
    def __init__(self, message: str = "Sale not found"):
        super().__init__(message)


# =============================================================================
# PAYMENT SETTLEMENT
# =============================================================================

def _settle_cash(grand_total: int, amount_paid: int | None) -> tuple[int, int]:
    if amount_paid is None:
        raise PaymentError("amount_paid_cents is required for Cash payments")
    if amount_paid < grand_total:
        raise PaymentError(
            "Insufficient payment amount",
            details={
                "grand_total_cents": grand_total,
                "amount_paid_cents": amount_paid,
                "shortfall_cents": grand_total - amount_paid,
            },
        )
    return amount_paid, amount_paid - grand_total


def _settle_exact(grand_total: int, amount_paid: int | None) -> tuple[int, int]:
    # Electronic tenders are charged the exact total and never give change
    if amount_paid is not None and amount_paid < grand_total:
        raise PaymentError(
            "Insufficient payment amount",
            details={
                "grand_total_cents": grand_total,
                "amount_paid_cents": amount_paid,
                "shortfall_cents": grand_total - amount_paid,
            },
        )
    return grand_total, 0


SETTLEMENTS = {
    PAYMENT_CASH: _settle_cash,
    PAYMENT_TRANSFER: _settle_exact,
    PAYMENT_QRIS: _settle_exact,
    PAYMENT_CARD: _settle_exact,
}


def settle_payment(payment_method: str, grand_total: int, amount_paid: int | None) -> tuple[int, int]:
    """Returns (amount_paid_cents, change_due_cents) for the given tender."""
    settle = SETTLEMENTS.get(payment_method)
    if settle is None:
        raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")
    return settle(grand_total, amount_paid)


# =============================================================================
# CHECKOUT
# =============================================================================

def _parse_cart(lines) -> list[StockLine]:
    if not isinstance(lines, list) or not lines:
        raise ValidationError("Cart cannot be empty")
    cart = []
    for index, raw in enumerate(lines, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"Line {index} must be an object")
        cart.append(StockLine(
            item_id=parse_id(raw.get("item_id"), f"lines[{index}].item_id"),
            quantity=parse_quantity(raw.get("quantity"), f"lines[{index}].quantity"),
        ))
    return cart


def checkout(
    *,
    cashier: User,
    lines,
    payment_method: str,
    amount_paid_cents=None,
    notes: str | None = None,
) -> Sale:
    """
    Create a sale and debit stock for all of its lines, atomically.

    Item names and selling prices are snapshotted onto the lines at this
    moment. Any failure (unknown item, insufficient stock, bad payment)
    leaves no sale, no consumed invoice number and no stock change.

    Raises:
        ValidationError: malformed cart or payment fields
        ItemNotFoundError: a line references a missing or inactive item
        PaymentError: tender does not cover the total
        InsufficientStockError: some line cannot be fully debited
    """
    cart = _parse_cart(lines)
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")
    amount_paid = None
    if amount_paid_cents is not None:
        amount_paid = parse_amount_cents(amount_paid_cents, "amount_paid_cents")
    if notes is not None:
        notes = str(notes).strip() or None

    cashier_id = cashier.id
    cashier_name = cashier.name
    item_ids = {line.item_id for line in cart}

    def _op():
        begin_write()

        items = {
            item.id: item
            for item in db.session.query(InventoryItem)
            .filter(InventoryItem.id.in_(item_ids), InventoryItem.is_active.is_(True))
            .all()
        }
        for line in cart:
            if line.item_id not in items:
                raise ItemNotFoundError(line.item_id)

        sale_lines = []
        grand_total = 0
        for position, line in enumerate(cart, start=1):
            item = items[line.item_id]
            line_total = item.selling_price_cents * line.quantity
            grand_total += line_total
            sale_lines.append(SaleLine(
                item_id=item.id,
                position=position,
                name=item.name,
                quantity=line.quantity,
                unit_price_cents=item.selling_price_cents,
                line_total_cents=line_total,
            ))

        paid, change = settle_payment(payment_method, grand_total, amount_paid)

        invoice_number = next_invoice_number()
        batch_try_debit(
            cart,
            movement_type=MOVEMENT_SALE,
            reference=invoice_number,
            user_id=cashier_id,
        )

        sale = Sale(
            invoice_number=invoice_number,
            cashier_id=cashier_id,
            cashier_name=cashier_name,
            grand_total_cents=grand_total,
            payment_method=payment_method,
            amount_paid_cents=paid,
            change_due_cents=change,
            notes=notes,
            lines=sale_lines,
        )
        db.session.add(sale)
        db.session.commit()

        current_app.logger.info(
            "Sale %s created by user %d: %d line(s), total %d", invoice_number, cashier_id, len(sale_lines), grand_total
        )
        return sale

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def list_sales(
    *,
    cashier_id=None,
    payment_method: str | None = None,
    start_date=None,
    end_date=None,
    page: int | None = None,
    limit: int | None = None,
) -> dict:
    query = db.session.query(Sale)

    if cashier_id is not None:
        query = query.filter(Sale.cashier_id == parse_id(cashier_id, "cashier_id"))
    if payment_method:
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")
        query = query.filter(Sale.payment_method == payment_method)

    start = parse_date_filter(start_date, "start_date")
    end = parse_date_filter(end_date, "end_date", end_of_day=True)
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at <= end)

    query = query.order_by(Sale.created_at.desc(), Sale.id.desc())
    sales, pagination = paginate(query, page, limit)
    return {
        "sales": [sale.to_dict() for sale in sales],
        "pagination": pagination,
    }


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise SaleNotFoundError()
    return sale


def get_sale_by_invoice(invoice_number: str) -> Sale:
    normalized = (invoice_number or "").strip().upper()
    sale = db.session.query(Sale).filter(func.upper(Sale.invoice_number) == normalized).first()
    if sale is None:
        raise SaleNotFoundError(f"Sale with invoice {invoice_number} not found")
    return sale


# =============================================================================
# DELETION / REVERSAL
# =============================================================================

def delete_sale(sale_id: int, *, restore_stock: bool = True, user_id: int | None = None) -> dict:
    """
    Delete a sale, giving its stock back unless restore_stock is False.

    Each line is credited independently: an item that has since been removed
    or deactivated is skipped and reported, and the remaining lines are still
    restocked. The deletion and all credits commit together.
    """
    def _op():
        begin_write()
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise SaleNotFoundError()

        invoice_number = sale.invoice_number
        restocked = []
        skipped = []

        if restore_stock:
            for line in sale.lines:
                entry = {"item_id": line.item_id, "name": line.name, "quantity": line.quantity}
                try:
                    entry["stock_after"] = credit(
                        line.item_id,
                        line.quantity,
                        movement_type=MOVEMENT_SALE_REVERSAL,
                        reference=invoice_number,
                        note=f"Sale {invoice_number} deleted",
                        user_id=user_id,
                    )
                except ItemNotFoundError:
                    current_app.logger.warning(
                        "Sale %s deleted: item %d no longer active, %d unit(s) not restocked",
                        invoice_number, line.item_id, line.quantity,
                    )
                    skipped.append(entry)
                    continue
                restocked.append(entry)

        db.session.delete(sale)
        db.session.commit()

        current_app.logger.info(
            "Sale %s deleted by user %s (restocked=%d, skipped=%d)", invoice_number, user_id, len(restocked), len(skipped)
        )
        return {
            "invoice_number": invoice_number,
            "stock_restored": restore_stock,
            "restocked": restocked,
            "skipped": skipped,
        }

    return run_with_retry(_op)
