# Overview: Service-layer operations for service tickets; lifecycle, parts usage and fees.

"""
Service Ticket Service

STATE MACHINE:
    Queue -> Diagnosing -> (Waiting_Part <-> In_Progress) -> Completed -> Picked_Up
    Cancelled is reachable from every state before Completed.

    Picked_Up and Cancelled are terminal for status changes. Completed,
    Picked_Up and Cancelled are terminal for parts and fee edits: once the
    repair is finished the bill is frozen.

PARTS:
Attaching a part debits stock through the ledger in the same transaction
that appends the part line, so a ticket never lists a part whose stock was
not taken. Removing a part credits the stock back the same way. Cancelling a
ticket does NOT return attached parts; they were consumed.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import InventoryItem, ServiceTicket, TicketPart, User
from ..models.auth import ROLE_TECHNICIAN
from ..models.tickets import (
    CUSTOMER_TYPES,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_DIAGNOSING,
    STATUS_IN_PROGRESS,
    STATUS_PICKED_UP,
    STATUS_QUEUE,
    STATUS_WAITING_PART,
    TICKET_STATUSES,
)
from ..time_utils import utcnow
from ..validation import (
    ValidationError,
    parse_amount_cents,
    parse_date_filter,
    parse_id,
    parse_quantity,
)
from .concurrency import begin_write, lock_for_update, run_with_retry
from .document_service import next_ticket_number
from .pagination import paginate
from .stock_ledger import (
    MOVEMENT_SERVICE_PART,
    MOVEMENT_SERVICE_PART_RETURN,
    ItemNotFoundError,
    credit,
    try_debit,
)


class TicketError(Exception):
    """Raised for ticket operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class TicketNotFoundError(TicketError):
    def __init__(self, message: str = "Service ticket not found"):
        super().__init__(message)


class TicketStateError(TicketError):
    """The ticket's current status does not allow the requested operation."""


ALLOWED_TRANSITIONS = {
    STATUS_QUEUE: {STATUS_DIAGNOSING, STATUS_CANCELLED},
    STATUS_DIAGNOSING: {STATUS_WAITING_PART, STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_CANCELLED},
    STATUS_WAITING_PART: {STATUS_IN_PROGRESS, STATUS_CANCELLED},
    STATUS_IN_PROGRESS: {STATUS_WAITING_PART, STATUS_COMPLETED, STATUS_CANCELLED},
    STATUS_COMPLETED: {STATUS_PICKED_UP},
    STATUS_PICKED_UP: set(),
    STATUS_CANCELLED: set(),
}

# Statuses in which the bill (parts, fee) can no longer change
BILL_FROZEN_STATUSES = {STATUS_COMPLETED, STATUS_PICKED_UP, STATUS_CANCELLED}

OPEN_STATUSES = (STATUS_QUEUE, STATUS_DIAGNOSING, STATUS_WAITING_PART, STATUS_IN_PROGRESS)

# Timestamp set on first entry into a status, never overwritten
_STATUS_STAMPS = {
    STATUS_DIAGNOSING: "diagnosed_at",
    STATUS_COMPLETED: "completed_at",
    STATUS_PICKED_UP: "picked_up_at",
}


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, set())


def _apply_status(ticket: ServiceTicket, new_status: str) -> None:
    if new_status not in TICKET_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(TICKET_STATUSES)}")
    if not can_transition(ticket.status, new_status):
        raise TicketStateError(
            f"Cannot change status from {ticket.status} to {new_status}",
            details={"current_status": ticket.status, "requested_status": new_status},
        )

    ticket.status = new_status
    stamp = _STATUS_STAMPS.get(new_status)
    if stamp and getattr(ticket, stamp) is None:
        setattr(ticket, stamp, utcnow())


def _require_bill_open(ticket: ServiceTicket, action: str) -> None:
    if ticket.status in BILL_FROZEN_STATUSES:
        raise TicketStateError(
            f"Cannot {action} on a {ticket.status} ticket",
            details={"current_status": ticket.status},
        )


def _locked_ticket(ticket_id: int) -> ServiceTicket:
    ticket = lock_for_update(db.session.query(ServiceTicket).filter_by(id=ticket_id)).first()
    if ticket is None:
        raise TicketNotFoundError()
    return ticket


def _text(payload: dict, key: str, *, required: bool, max_length: int, label: str) -> str | None:
    raw = payload.get(key)
    value = str(raw).strip() if raw is not None else ""
    if not value:
        if required:
            raise ValidationError(f"{label} is required")
        return None
    if len(value) > max_length:
        raise ValidationError(f"{label} exceeds max length {max_length}")
    return value


# =============================================================================
# CREATE / QUERY
# =============================================================================

def create_ticket(payload: dict, *, created_by: User | None = None) -> ServiceTicket:
    """
    Open a new ticket in Queue, assigned to an active technician.

    Payload shape:
        {"customer": {name, phone, type},
         "device": {type, brand?, model?, serial_number?, symptoms, accessories?},
         "technician_id": int, "service_fee_cents"?: int, "notes"?: str}
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    customer = payload.get("customer")
    device = payload.get("device")
    if not isinstance(customer, dict):
        raise ValidationError("customer is required")
    if not isinstance(device, dict):
        raise ValidationError("device is required")

    customer_type = customer.get("type")
    if customer_type not in CUSTOMER_TYPES:
        raise ValidationError(f"customer.type must be one of: {', '.join(CUSTOMER_TYPES)}")

    fields = {
        "customer_name": _text(customer, "name", required=True, max_length=100, label="customer.name"),
        "customer_phone": _text(customer, "phone", required=True, max_length=32, label="customer.phone"),
        "customer_type": customer_type,
        "device_type": _text(device, "type", required=True, max_length=64, label="device.type"),
        "device_brand": _text(device, "brand", required=False, max_length=64, label="device.brand"),
        "device_model": _text(device, "model", required=False, max_length=64, label="device.model"),
        "device_serial_number": _text(
            device, "serial_number", required=False, max_length=64, label="device.serial_number"
        ),
        "device_symptoms": _text(device, "symptoms", required=True, max_length=2000, label="device.symptoms"),
        "device_accessories": _text(
            device, "accessories", required=False, max_length=255, label="device.accessories"
        ) or "None",
        "notes": _text(payload, "notes", required=False, max_length=2000, label="notes"),
    }

    fee = payload.get("service_fee_cents")
    service_fee = 0 if fee is None else parse_amount_cents(fee, "service_fee_cents")
    technician_id = parse_id(payload.get("technician_id"), "technician_id")

    def _op():
        begin_write()
        technician = db.session.get(User, technician_id)
        if technician is None or not technician.is_active or technician.role != ROLE_TECHNICIAN:
            raise ValidationError("technician_id must refer to an active technician")

        ticket = ServiceTicket(
            ticket_number=next_ticket_number(),
            technician_id=technician.id,
            technician_name=technician.name,
            status=STATUS_QUEUE,
            service_fee_cents=service_fee,
            total_cost_cents=service_fee,
            **fields,
        )
        db.session.add(ticket)
        db.session.commit()
        current_app.logger.info(
            "Ticket %s opened by user %s for technician %d",
            ticket.ticket_number, created_by.id if created_by else None, technician.id,
        )
        return ticket

    return run_with_retry(_op)


def list_tickets(
    *,
    status: str | None = None,
    technician_id=None,
    customer_phone: str | None = None,
    start_date=None,
    end_date=None,
    page: int | None = None,
    limit: int | None = None,
) -> dict:
    query = db.session.query(ServiceTicket)

    if status:
        statuses = [s.strip() for s in status.split(",") if s.strip()]
        unknown = [s for s in statuses if s not in TICKET_STATUSES]
        if unknown:
            raise ValidationError(f"Unknown status: {', '.join(unknown)}")
        query = query.filter(ServiceTicket.status.in_(statuses))
    if technician_id is not None:
        query = query.filter(ServiceTicket.technician_id == parse_id(technician_id, "technician_id"))
    if customer_phone:
        query = query.filter(ServiceTicket.customer_phone == customer_phone.strip())

    start = parse_date_filter(start_date, "start_date")
    end = parse_date_filter(end_date, "end_date", end_of_day=True)
    if start is not None:
        query = query.filter(ServiceTicket.created_at >= start)
    if end is not None:
        query = query.filter(ServiceTicket.created_at <= end)

    query = query.order_by(ServiceTicket.created_at.desc(), ServiceTicket.id.desc())
    tickets, pagination = paginate(query, page, limit)
    return {
        "tickets": [ticket.to_dict() for ticket in tickets],
        "pagination": pagination,
    }


def get_ticket(ticket_id: int) -> ServiceTicket:
    ticket = db.session.get(ServiceTicket, ticket_id)
    if ticket is None:
        raise TicketNotFoundError()
    return ticket


def technician_workload(technician_id: int) -> dict:
    """Open tickets per status for one technician."""
    technician = db.session.get(User, technician_id)
    if technician is None or technician.role != ROLE_TECHNICIAN:
        raise ValidationError("technician_id must refer to a technician")

    rows = (
        db.session.query(ServiceTicket.status, func.count(ServiceTicket.id))
        .filter(ServiceTicket.technician_id == technician_id, ServiceTicket.status.in_(OPEN_STATUSES))
        .group_by(ServiceTicket.status)
        .all()
    )
    counts = {status: 0 for status in OPEN_STATUSES}
    counts.update({status: count for status, count in rows})
    return {
        "technician": {"id": technician.id, "name": technician.name},
        "open_tickets": counts,
        "total_open": sum(counts.values()),
    }


# =============================================================================
# LIFECYCLE
# =============================================================================

def update_status(ticket_id: int, new_status: str) -> ServiceTicket:
    """
    Move a ticket along the state machine, stamping first entry times.

    Cancelled is reachable only through cancel_ticket, which sits behind its
    own permission.
    """
    if new_status == STATUS_CANCELLED:
        raise TicketStateError(
            "Tickets are cancelled through DELETE /api/tickets/<id>, not a status change",
            details={"requested_status": new_status},
        )

    def _op():
        begin_write()
        ticket = _locked_ticket(ticket_id)
        old_status = ticket.status
        _apply_status(ticket, new_status)
        db.session.commit()
        current_app.logger.info("Ticket %s: %s -> %s", ticket.ticket_number, old_status, new_status)
        return ticket

    return run_with_retry(_op)


def cancel_ticket(ticket_id: int) -> ServiceTicket:
    """Cancel a ticket that has not been completed. Attached parts stay consumed."""
    def _op():
        begin_write()
        ticket = _locked_ticket(ticket_id)
        if ticket.status in (STATUS_COMPLETED, STATUS_PICKED_UP):
            raise TicketStateError(
                "Completed tickets cannot be cancelled",
                details={"current_status": ticket.status},
            )
        _apply_status(ticket, STATUS_CANCELLED)
        db.session.commit()
        current_app.logger.info("Ticket %s cancelled", ticket.ticket_number)
        return ticket

    return run_with_retry(_op)


# =============================================================================
# PARTS / FEES
# =============================================================================

def add_part(ticket_id: int, item_id, quantity, *, user_id: int | None = None) -> ServiceTicket:
    """
    Debit `quantity` of an item and append it to the ticket's parts.

    The part is priced at the item's current selling price; later price
    changes do not touch it. On insufficient stock the ticket is unchanged.
    """
    item_id = parse_id(item_id, "item_id")
    quantity = parse_quantity(quantity)

    def _op():
        begin_write()
        ticket = _locked_ticket(ticket_id)
        _require_bill_open(ticket, "add parts")

        item = (
            db.session.query(InventoryItem)
            .filter(InventoryItem.id == item_id, InventoryItem.is_active.is_(True))
            .first()
        )
        if item is None:
            raise ItemNotFoundError(item_id)

        try_debit(
            item.id,
            quantity,
            movement_type=MOVEMENT_SERVICE_PART,
            reference=ticket.ticket_number,
            user_id=user_id,
        )

        ticket.parts.append(TicketPart(
            item_id=item.id,
            name=item.name,
            quantity=quantity,
            price_at_time_cents=item.selling_price_cents,
            subtotal_cents=item.selling_price_cents * quantity,
            attached_by_user_id=user_id,
        ))
        ticket.recompute_total()
        ticket.updated_at = utcnow()
        db.session.commit()
        current_app.logger.info("Ticket %s: attached %d x item %d", ticket.ticket_number, quantity, item.id)
        return ticket

    return run_with_retry(_op)


def remove_part(ticket_id: int, part_id: int, *, user_id: int | None = None) -> ServiceTicket:
    """Detach a part from an open ticket and return its quantity to stock."""
    def _op():
        begin_write()
        ticket = _locked_ticket(ticket_id)
        _require_bill_open(ticket, "remove parts")

        part = next((p for p in ticket.parts if p.id == part_id), None)
        if part is None:
            raise TicketNotFoundError(f"Part {part_id} not found on ticket {ticket.ticket_number}")

        credit(
            part.item_id,
            part.quantity,
            movement_type=MOVEMENT_SERVICE_PART_RETURN,
            reference=ticket.ticket_number,
            note=f"Part removed from {ticket.ticket_number}",
            user_id=user_id,
        )

        ticket.parts.remove(part)
        ticket.recompute_total()
        ticket.updated_at = utcnow()
        db.session.commit()
        current_app.logger.info("Ticket %s: removed part %d", ticket.ticket_number, part_id)
        return ticket

    return run_with_retry(_op)


def update_service_fee(ticket_id: int, service_fee_cents) -> ServiceTicket:
    if service_fee_cents is None:
        raise ValidationError("service_fee_cents is required")
    fee = parse_amount_cents(service_fee_cents, "service_fee_cents")

    def _op():
        begin_write()
        ticket = _locked_ticket(ticket_id)
        _require_bill_open(ticket, "change the service fee")
        ticket.service_fee_cents = fee
        ticket.recompute_total()
        db.session.commit()
        return ticket

    return run_with_retry(_op)
