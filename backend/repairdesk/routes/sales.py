# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/repairdesk/routes/sales.py
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..services import sales_service
from .responses import DOMAIN_ERRORS, domain_error, error_response

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_auth
@require_permission("CREATE_SALE")
def checkout_route():
    """
    Checkout a cart.

    Body: {"lines": [{"item_id", "quantity"}], "payment_method",
           "amount_paid_cents"?, "notes"?}

    Either every line is debited and the sale is created, or nothing
    changes. Insufficient stock answers 400 with the shortfall in `details`.
    """
    payload = request.get_json(silent=True) or {}
    try:
        sale = sales_service.checkout(
            cashier=g.current_user,
            lines=payload.get("lines"),
            payment_method=payload.get("payment_method"),
            amount_paid_cents=payload.get("amount_paid_cents"),
            notes=payload.get("notes"),
        )
    except DOMAIN_ERRORS as e:
        return domain_error(e)
    except Exception:
        current_app.logger.exception("Checkout failed")
        return error_response("Internal server error", 500)
    return jsonify({"sale": sale.to_dict()}), 201


@sales_bp.get("")
@require_auth
@require_permission("VIEW_SALES")
def list_sales_route():
    """
    Query params: cashier_id, payment_method, start_date, end_date
    (ISO-8601; a bare end date covers the whole day), page, limit.
    """
    try:
        result = sales_service.list_sales(
            cashier_id=request.args.get("cashier_id"),
            payment_method=request.args.get("payment_method"),
            start_date=request.args.get("start_date"),
            end_date=request.args.get("end_date"),
            page=request.args.get("page", type=int),
            limit=request.args.get("limit", type=int),
        )
    except DOMAIN_ERRORS as e:
        return domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return error_response("Internal server error", 500)
    return jsonify(result), 200


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_permission("VIEW_SALES")
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
    except DOMAIN_ERRORS as e:
        return domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to load sale %d", sale_id)
        return error_response("Internal server error", 500)
    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.get("/invoice/<invoice_number>")
@require_auth
@require_permission("VIEW_SALES")
def get_sale_by_invoice_route(invoice_number: str):
    try:
        sale = sales_service.get_sale_by_invoice(invoice_number)
    except DOMAIN_ERRORS as e:
        return domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to look up invoice %s", invoice_number)
        return error_response("Internal server error", 500)
    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.delete("/<int:sale_id>")
@require_auth
@require_permission("DELETE_SALE")
def delete_sale_route(sale_id: int):
    """
    Delete a sale and, unless ?restore_stock=false, return its lines to stock.

    Lines whose item was deactivated meanwhile are listed under `skipped`.
    """
    restore_stock = request.args.get("restore_stock", "true").strip().lower() != "false"
    try:
        report = sales_service.delete_sale(sale_id, restore_stock=restore_stock, user_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to delete sale %d", sale_id)
        return error_response("Internal server error", 500)
    return jsonify({"message": "Sale deleted", **report}), 200
