# Overview: JSON error bodies shared by the API blueprints.

from flask import jsonify
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..services.auth_service import UserNotFoundError
from ..services.sales_service import SaleError, SaleNotFoundError
from ..services.stock_ledger import ItemNotFoundError, StockError
from ..services.ticket_service import TicketError, TicketNotFoundError
from ..validation import ConflictError, ValidationError

# Everything a route translates into a 4xx response; anything else is a 500
DOMAIN_ERRORS = (
    StockError,
    SaleError,
    TicketError,
    ValidationError,
    ConflictError,
    UserNotFoundError,
    OperationalError,
    StaleDataError,
)

_NOT_FOUND = (ItemNotFoundError, SaleNotFoundError, TicketNotFoundError, UserNotFoundError)
_CONFLICT = (ConflictError, OperationalError, StaleDataError)


def error_response(message: str, status: int, details: dict | None = None):
    body = {"error": message}
    if details:
        body["details"] = details
    return jsonify(body), status


def domain_error(exc: Exception):
    """Map a domain exception onto its HTTP status and JSON body."""
    details = getattr(exc, "details", None)
    if isinstance(exc, _NOT_FOUND):
        return error_response(str(exc), 404, details)
    if isinstance(exc, (OperationalError, StaleDataError)):
        # Still contended after retries; the client may resubmit
        return error_response("The record was changed by another request, please retry", 409)
    if isinstance(exc, _CONFLICT):
        return error_response(str(exc), 409, details)
    return error_response(str(exc), 400, details)
