# Overview: Service-layer operations for document numbering; encapsulates business logic and database work.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import month_period, utcnow, year_period

DOC_TYPE_SALE = "SALE"
DOC_TYPE_TICKET = "TICKET"


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _advance(document_type: str, period: str) -> int | None:
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.period == period,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type, period=period)
        .scalar()
    )
    return current - 1


def allocate_number(*, document_type: str, period: str) -> int:
    """
    Atomically allocate the next number in (document_type, period).

    Runs inside the caller's transaction: the counter row stays locked until
    the caller commits, and a rollback returns the number. The counter row
    is the only source of truth; numbers are never derived from MAX().
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")
    if not period:
        raise DocumentSequenceError("period is required")

    number = _advance(document_type, period)
    if number is not None:
        return number

    # First document of the period: create the counter row
    try:
        with db.session.begin_nested():
            db.session.add(DocumentSequence(document_type=document_type, period=period, next_number=2))
        return 1
    except IntegrityError:
        # Another writer created the row first
        number = _advance(document_type, period)
        if number is None:
            raise DocumentSequenceError(f"Could not allocate {document_type} number for {period}")
        return number


def next_invoice_number(now: datetime | None = None) -> str:
    """Next sale invoice number, INV-YYYYMM-NNNN, restarting every month."""
    now = now or utcnow()
    period = month_period(now)
    number = allocate_number(document_type=DOC_TYPE_SALE, period=period)
    invoice_number = f"INV-{period}-{number:04d}"
    current_app.logger.debug("Allocated invoice number %s", invoice_number)
    return invoice_number


def next_ticket_number(now: datetime | None = None) -> str:
    """Next service ticket number, SRV-YYYYNNN, restarting every year."""
    now = now or utcnow()
    period = year_period(now)
    number = allocate_number(document_type=DOC_TYPE_TICKET, period=period)
    ticket_number = f"SRV-{period}{number:03d}"
    current_app.logger.debug("Allocated ticket number %s", ticket_number)
    return ticket_number
