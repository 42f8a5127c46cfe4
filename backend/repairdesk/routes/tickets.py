# Overview: Flask API routes for service tickets; parses input and returns JSON responses.

# backend/repairdesk/routes/tickets.py
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..services import ticket_service
from .responses import DOMAIN_ERRORS, domain_error, error_response

tickets_bp = Blueprint("tickets", __name__, url_prefix="/api/tickets")


@tickets_bp.post("")
@require_auth
@require_permission("MANAGE_TICKETS")
def create_ticket_route():
    payload = request.get_json(silent=True) or {}
    try:
        ticket = ticket_service.create_ticket(payload, created_by=g.current_user)
    except DOMAIN_ERRORS as e:
        return domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to create service ticket")
        return error_response("Internal server error", 500)
    return jsonify({"ticket": ticket.to_dict()}), 201


@tickets_bp.get("")
@require_auth
@require_permission("VIEW_TICKETS")
def list_tickets_route():
    """
    Query params:
    - status: one status or a comma-separated list ("Queue,Diagnosing")
    - technician_id, customer_phone
    - start_date, end_date: ISO-8601 bounds on creation time
    - page, limit
    """
    try:
        result = ticket_service.list_tickets(
            status=request.args.get("status"),
            technician_id=request.args.get("technician_id"),
            customer_phone=request.args.get("customer_phone"),
            start_date=request.args.get("start_date"),
            end_date=request.args.get("end_date"),
            page=request.args.get("page", type=int),
            limit=request.args.get("limit", type=int),
        )
    except DOMAIN_ERRORS as e:
        return domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to list service tickets")
        return error_response("Internal server error", 500)
    return jsonify(result), 200


@tickets_bp.get("/technicians/<int:technician_id>/workload")
@require_auth
@require_permission("VIEW_TICKETS")
def technician_workload_route(technician_id: int):
    try:
        result = ticket_service.technician_workload(technician_id)
    except DOMAIN_ERRORS as e:
        return domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to load workload of technician %d", technician_id)
        return error_response("Internal server error", 500)
    return jsonify(result), 200


@tickets_bp.get("/<int:ticket_id>")
@require_auth
@require_permission("VIEW_TICKETS")
def get_ticket_route(ticket_id: int):
    try:
        ticket = ticket_service.get_ticket(ticket_id)
    except DOMAIN_ERRORS as e:
        return domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to load ticket %d", ticket_id)
        return error_response("Internal server error", 500)
    return jsonify({"ticket": ticket.to_dict()}), 200


@tickets_bp.patch("/<int:ticket_id>/status")
@require_auth
@require_permission("MANAGE_TICKETS")
def update_status_route(ticket_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        ticket = ticket_service.update_status(ticket_id, payload.get("status"))
    except DOMAIN_ERRORS as e:
        return domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to update status of ticket %d", ticket_id)
        return error_response("Internal server error", 500)
    return jsonify({"ticket": ticket.to_dict()}), 200


@tickets_bp.post("/<int:ticket_id>/parts")
@require_auth
@require_permission("MANAGE_TICKETS")
def add_part_route(ticket_id: int):
    """
    Body: {"item_id", "quantity"}

    Debits stock and appends the part priced at today's selling price.
    """
    payload = request.get_json(silent=True) or {}
    try:
        ticket = ticket_service.add_part(
            ticket_id,
            payload.get("item_id"),
            payload.get("quantity"),
            user_id=g.current_user.id,
        )
    except DOMAIN_ERRORS as e:
        return domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to attach part to ticket %d", ticket_id)
        return error_response("Internal server error", 500)
    return jsonify({"ticket": ticket.to_dict()}), 200


@tickets_bp.delete("/<int:ticket_id>/parts/<int:part_id>")
@require_auth
@require_permission("MANAGE_TICKETS")
def remove_part_route(ticket_id: int, part_id: int):
    try:
        ticket = ticket_service.remove_part(ticket_id, part_id, user_id=g.current_user.id)
    except DOMAIN_ERRORS as e:
        return domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to remove part %d from ticket %d", part_id, ticket_id)
        return error_response("Internal server error", 500)
    return jsonify({"ticket": ticket.to_dict()}), 200


@tickets_bp.patch("/<int:ticket_id>/service-fee")
@require_auth
@require_permission("MANAGE_TICKETS")
def update_service_fee_route(ticket_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        ticket = ticket_service.update_service_fee(ticket_id, payload.get("service_fee_cents"))
    except DOMAIN_ERRORS as e:
        return domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to update service fee of ticket %d", ticket_id)
        return error_response("Internal server error", 500)
    return jsonify({"ticket": ticket.to_dict()}), 200


@tickets_bp.delete("/<int:ticket_id>")
@require_auth
@require_permission("CANCEL_TICKET")
def cancel_ticket_route(ticket_id: int):
    """Tickets are cancelled, never removed. Completed tickets cannot be cancelled."""
    try:
        ticket = ticket_service.cancel_ticket(ticket_id)
    except DOMAIN_ERRORS as e:
        return domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to cancel ticket %d", ticket_id)
        return error_response("Internal server error", 500)
    return jsonify({"ticket": ticket.to_dict(), "message": "Ticket cancelled"}), 200
