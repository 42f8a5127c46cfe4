"""
Document numbering tests.

Verifies:
- Invoice numbers are INV-YYYYMM-NNNN and restart each month
- Ticket numbers are SRV-YYYYNNN and restart each year
- A rolled-back transaction gives its number back
"""

from datetime import datetime, timezone

import pytest

from repairdesk.extensions import db
from repairdesk.models import DocumentSequence
from repairdesk.services.document_service import (
    DocumentSequenceError,
    allocate_number,
    next_invoice_number,
    next_ticket_number,
)

OCT_2026 = datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc)
NOV_2026 = datetime(2026, 11, 1, 0, 0, tzinfo=timezone.utc)
JAN_2027 = datetime(2027, 1, 1, 0, 0, tzinfo=timezone.utc)


class TestInvoiceNumbers:

    def test_sequential_within_month(self, db_session):
        first = next_invoice_number(now=OCT_2026)
        second = next_invoice_number(now=OCT_2026)
        db.session.commit()

        assert first == "INV-202610-0001"
        assert second == "INV-202610-0002"

    def test_restarts_in_new_month(self, db_session):
        next_invoice_number(now=OCT_2026)
        next_invoice_number(now=OCT_2026)

        assert next_invoice_number(now=NOV_2026) == "INV-202611-0001"
        db.session.commit()

    def test_rollback_returns_number(self, db_session):
        assert next_invoice_number(now=OCT_2026) == "INV-202610-0001"
        db.session.commit()

        assert next_invoice_number(now=OCT_2026) == "INV-202610-0002"
        db.session.rollback()

        assert next_invoice_number(now=OCT_2026) == "INV-202610-0002"
        db.session.commit()


class TestTicketNumbers:

    def test_format_and_sequence(self, db_session):
        assert next_ticket_number(now=OCT_2026) == "SRV-2026001"
        assert next_ticket_number(now=OCT_2026) == "SRV-2026002"
        db.session.commit()

    def test_restarts_in_new_year(self, db_session):
        next_ticket_number(now=OCT_2026)

        assert next_ticket_number(now=JAN_2027) == "SRV-2027001"
        db.session.commit()

    def test_independent_of_invoice_counter(self, db_session):
        next_invoice_number(now=OCT_2026)
        next_invoice_number(now=OCT_2026)

        assert next_ticket_number(now=OCT_2026) == "SRV-2026001"
        db.session.commit()


def test_counter_row_holds_next_number(db_session):
    for _ in range(3):
        allocate_number(document_type="SALE", period="202610")
    db.session.commit()

    row = db.session.query(DocumentSequence).filter_by(document_type="SALE", period="202610").one()
    assert row.next_number == 4


@pytest.mark.parametrize("document_type,period", [("", "202610"), ("SALE", "")])
def test_allocate_requires_type_and_period(db_session, document_type, period):
    with pytest.raises(DocumentSequenceError):
        allocate_number(document_type=document_type, period=period)
