# Overview: Flask API routes for inventory operations; parses input and returns JSON responses.

# backend/repairdesk/routes/inventory.py
"""
Inventory item API routes.

Item create/update never write stock directly: opening stock is booked as
an OPENING movement and later changes go through PATCH /<id>/stock.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..services import inventory_service
from .responses import DOMAIN_ERRORS, domain_error, error_response

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("")
@require_auth
@require_permission("VIEW_INVENTORY")
def list_items_route():
    """
    Query params:
    - category: Sparepart | Accessory | Software | Other
    - search: substring of name or SKU
    - low_stock: "true" to list only items at or below their alert level
    - page, limit: pagination (limit clamped to 1..100)
    """
    try:
        result = inventory_service.list_items(
            category=request.args.get("category"),
            search=request.args.get("search"),
            low_stock=request.args.get("low_stock", "").lower() == "true",
            page=request.args.get("page", type=int),
            limit=request.args.get("limit", type=int),
        )
    except DOMAIN_ERRORS as e:
        return domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to list inventory items")
        return error_response("Internal server error", 500)
    return jsonify(result), 200


@inventory_bp.get("/alerts/low-stock")
@require_auth
@require_permission("VIEW_INVENTORY")
def low_stock_route():
    try:
        items = inventory_service.low_stock_items()
    except Exception:
        current_app.logger.exception("Failed to list low stock items")
        return error_response("Internal server error", 500)
    return jsonify({"items": [item.to_dict() for item in items], "count": len(items)}), 200


@inventory_bp.get("/<int:item_id>")
@require_auth
@require_permission("VIEW_INVENTORY")
def get_item_route(item_id: int):
    try:
        item = inventory_service.get_item(item_id)
    except DOMAIN_ERRORS as e:
        return domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to load inventory item %d", item_id)
        return error_response("Internal server error", 500)
    return jsonify({"item": item.to_dict()}), 200


@inventory_bp.get("/<int:item_id>/movements")
@require_auth
@require_permission("VIEW_INVENTORY")
def list_movements_route(item_id: int):
    """Stock movement history, newest first. Includes deactivated items."""
    try:
        result = inventory_service.list_movements(
            item_id,
            page=request.args.get("page", type=int),
            limit=request.args.get("limit", type=int),
        )
    except DOMAIN_ERRORS as e:
        return domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to list movements of item %d", item_id)
        return error_response("Internal server error", 500)
    return jsonify(result), 200


@inventory_bp.post("")
@require_auth
@require_permission("MANAGE_INVENTORY")
def create_item_route():
    payload = request.get_json(silent=True) or {}
    try:
        item = inventory_service.create_item(payload, user_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to create inventory item")
        return error_response("Internal server error", 500)
    return jsonify({"item": item.to_dict()}), 201


@inventory_bp.put("/<int:item_id>")
@require_auth
@require_permission("MANAGE_INVENTORY")
def update_item_route(item_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        item = inventory_service.update_item(item_id, payload)
    except DOMAIN_ERRORS as e:
        return domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to update inventory item %d", item_id)
        return error_response("Internal server error", 500)
    return jsonify({"item": item.to_dict()}), 200


@inventory_bp.patch("/<int:item_id>/stock")
@require_auth
@require_permission("ADJUST_STOCK")
def adjust_stock_route(item_id: int):
    """
    Body: {"quantity": int > 0, "type": "add" | "deduct", "note"?: str}

    A deduction larger than the stock on hand is rejected with 400 and the
    shortfall in `details`.
    """
    payload = request.get_json(silent=True) or {}
    try:
        item = inventory_service.adjust_stock(
            item_id,
            payload.get("quantity"),
            payload.get("type"),
            note=payload.get("note"),
            user_id=g.current_user.id,
        )
    except DOMAIN_ERRORS as e:
        return domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock for item %d", item_id)
        return error_response("Internal server error", 500)
    return jsonify({"item": item.to_dict()}), 200


@inventory_bp.delete("/<int:item_id>")
@require_auth
@require_permission("DELETE_ITEM")
def delete_item_route(item_id: int):
    """Soft delete: the item disappears from listings and can no longer be sold."""
    try:
        item = inventory_service.deactivate_item(item_id)
    except DOMAIN_ERRORS as e:
        return domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to deactivate inventory item %d", item_id)
        return error_response("Internal server error", 500)
    return jsonify({"item": item.to_dict(), "message": "Item deactivated"}), 200
