"""
Stock ledger tests.

Verifies:
- Debits never drive stock below zero and leave nothing behind on failure
- Insufficient stock errors carry requested / available / deficit
- Batch debits are all-or-nothing, with repeated items merged
- A failed batch leaves the rest of the caller's transaction intact
- Ledger writes bump the item version so stale ORM edits are refused
- Every mutation appends a movement, so movements always sum to stock
"""

import pytest
from sqlalchemy.orm.exc import StaleDataError

from repairdesk.extensions import db
from repairdesk.models import InventoryItem, StockMovement
from repairdesk.services import stock_ledger
from repairdesk.services.stock_ledger import (
    InsufficientStockError,
    ItemNotFoundError,
    StockError,
    StockLine,
)
from repairdesk.validation import ValidationError

from conftest import movement_total, stock_of


class TestTryDebit:

    def test_debit_reduces_stock_and_records_movement(self, make_item):
        item = make_item(stock=5)

        new_stock = stock_ledger.try_debit(item.id, 3, movement_type=stock_ledger.MOVEMENT_SALE, reference="INV-X")
        db.session.commit()

        assert new_stock == 2
        assert stock_of(item.id) == 2
        movement = (
            db.session.query(StockMovement)
            .filter_by(item_id=item.id, movement_type=stock_ledger.MOVEMENT_SALE)
            .one()
        )
        assert movement.quantity_delta == -3
        assert movement.stock_after == 2
        assert movement.reference == "INV-X"

    def test_debit_to_exactly_zero_is_allowed(self, make_item):
        item = make_item(stock=4)

        assert stock_ledger.try_debit(item.id, 4, movement_type=stock_ledger.MOVEMENT_SALE) == 0
        db.session.commit()
        assert stock_of(item.id) == 0

    def test_insufficient_stock_reports_shortfall_and_changes_nothing(self, make_item):
        item = make_item(stock=2)

        with pytest.raises(InsufficientStockError) as excinfo:
            stock_ledger.try_debit(item.id, 3, movement_type=stock_ledger.MOVEMENT_SALE)
        db.session.rollback()

        err = excinfo.value
        assert err.requested == 3
        assert err.available == 2
        assert err.deficit == 1
        assert err.details["deficit"] == 1
        assert err.details["name"] == item.name
        assert stock_of(item.id) == 2
        assert movement_total(item.id) == 2

    def test_unknown_item_raises_not_found(self, db_session):
        with pytest.raises(ItemNotFoundError):
            stock_ledger.try_debit(999_999, 1, movement_type=stock_ledger.MOVEMENT_SALE)
        db.session.rollback()

    def test_inactive_item_raises_not_found(self, make_item):
        item = make_item(stock=5)
        db.session.get(InventoryItem, item.id).is_active = False
        db.session.commit()

        with pytest.raises(ItemNotFoundError):
            stock_ledger.try_debit(item.id, 1, movement_type=stock_ledger.MOVEMENT_SALE)
        db.session.rollback()
        assert stock_of(item.id) == 5

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, "abc", None, True])
    def test_rejects_non_positive_or_non_integer_quantity(self, make_item, quantity):
        item = make_item(stock=5)

        with pytest.raises(ValidationError):
            stock_ledger.try_debit(item.id, quantity, movement_type=stock_ledger.MOVEMENT_SALE)
        db.session.rollback()
        assert stock_of(item.id) == 5


class TestCredit:

    def test_credit_increases_stock(self, make_item):
        item = make_item(stock=1)

        assert stock_ledger.credit(item.id, 9, movement_type=stock_ledger.MOVEMENT_RESTOCK) == 10
        db.session.commit()
        assert stock_of(item.id) == 10
        assert movement_total(item.id) == 10

    def test_credit_to_inactive_item_raises_not_found(self, make_item):
        item = make_item(stock=1)
        db.session.get(InventoryItem, item.id).is_active = False
        db.session.commit()

        with pytest.raises(ItemNotFoundError):
            stock_ledger.credit(item.id, 1, movement_type=stock_ledger.MOVEMENT_RESTOCK)
        db.session.rollback()
        assert stock_of(item.id) == 1


class TestBatchDebit:

    def test_all_lines_applied(self, make_item):
        x = make_item(stock=5)
        y = make_item(stock=5)

        levels = stock_ledger.batch_try_debit(
            [StockLine(x.id, 2), StockLine(y.id, 5)],
            movement_type=stock_ledger.MOVEMENT_SALE,
        )
        db.session.commit()

        assert levels == {x.id: 3, y.id: 0}
        assert stock_of(x.id) == 3
        assert stock_of(y.id) == 0

    def test_one_failing_line_applies_none(self, make_item):
        x = make_item(stock=10)
        y = make_item(stock=4)

        with pytest.raises(InsufficientStockError) as excinfo:
            stock_ledger.batch_try_debit(
                [StockLine(x.id, 2), StockLine(y.id, 1000)],
                movement_type=stock_ledger.MOVEMENT_SALE,
            )

        assert excinfo.value.item_id == y.id
        assert stock_of(x.id) == 10
        assert stock_of(y.id) == 4
        assert db.session.query(StockMovement).filter_by(movement_type=stock_ledger.MOVEMENT_SALE).count() == 0

    def test_repeated_item_is_checked_against_combined_quantity(self, make_item):
        x = make_item(stock=5)

        with pytest.raises(InsufficientStockError) as excinfo:
            stock_ledger.batch_try_debit(
                [StockLine(x.id, 3), StockLine(x.id, 3)],
                movement_type=stock_ledger.MOVEMENT_SALE,
            )

        assert excinfo.value.requested == 6
        assert excinfo.value.available == 5
        assert stock_of(x.id) == 5

    def test_empty_batch_is_rejected(self, db_session):
        with pytest.raises(StockError):
            stock_ledger.batch_try_debit([], movement_type=stock_ledger.MOVEMENT_SALE)

    def test_failure_keeps_earlier_work_in_transaction(self, make_item):
        restocked = make_item(stock=1)
        x = make_item(stock=10)
        y = make_item(stock=4)

        stock_ledger.credit(restocked.id, 5, movement_type=stock_ledger.MOVEMENT_RESTOCK)
        with pytest.raises(InsufficientStockError):
            stock_ledger.batch_try_debit(
                [StockLine(x.id, 2), StockLine(y.id, 5)],
                movement_type=stock_ledger.MOVEMENT_SALE,
            )
        db.session.commit()

        assert stock_of(restocked.id) == 6
        assert movement_total(restocked.id) == 6
        assert stock_of(x.id) == 10
        assert movement_total(x.id) == 10


class TestItemVersion:

    def test_every_mutation_bumps_version(self, make_item):
        item = make_item(stock=5)
        before = db.session.get(InventoryItem, item.id).version_id

        stock_ledger.try_debit(item.id, 1, movement_type=stock_ledger.MOVEMENT_SALE)
        stock_ledger.credit(item.id, 3, movement_type=stock_ledger.MOVEMENT_RESTOCK)
        db.session.commit()

        refreshed = db.session.get(InventoryItem, item.id)
        assert refreshed.version_id == before + 2
        assert refreshed.to_dict()["version_id"] == before + 2

    def test_stale_item_edit_is_refused(self, make_item):
        item = make_item(stock=5)
        loaded = db.session.get(InventoryItem, item.id)
        assert loaded.version_id is not None

        stock_ledger.try_debit(item.id, 1, movement_type=stock_ledger.MOVEMENT_SALE)
        loaded.name = "Edited from a stale copy"

        with pytest.raises(StaleDataError):
            db.session.flush()
        db.session.rollback()
        assert stock_of(item.id) == 5


def test_movements_always_sum_to_stock(make_item):
    item = make_item(stock=7)

    stock_ledger.try_debit(item.id, 2, movement_type=stock_ledger.MOVEMENT_SALE)
    stock_ledger.credit(item.id, 5, movement_type=stock_ledger.MOVEMENT_RESTOCK)
    stock_ledger.try_debit(item.id, 10, movement_type=stock_ledger.MOVEMENT_SERVICE_PART)
    db.session.commit()
    with pytest.raises(InsufficientStockError):
        stock_ledger.try_debit(item.id, 1, movement_type=stock_ledger.MOVEMENT_SALE)
    db.session.rollback()

    assert stock_of(item.id) == 0
    assert movement_total(item.id) == stock_of(item.id)
