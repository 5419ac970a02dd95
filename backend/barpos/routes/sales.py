# Overview: Flask API routes for checkout, sale history and tickets; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import sales_service
from ..services.cart import parse_cart
from ..services.sales_service import (
    SaleError,
    Unauthorized,
    TransactionFailed,
    TicketError,
)
from ..decorators import require_auth


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")
tickets_bp = Blueprint("tickets", __name__, url_prefix="/api/tickets")


@sales_bp.post("")
@require_auth
def create_sale_route():
    """
    Checkout: validate the cart, record the sale, lower stock, issue tickets.

    Body: {"items": [{"product_id", "quantity", "price"}], "payment_method", "discount"}

    201 {sale, tickets_generated}; 400 {error, details} when the cart is
    rejected; 401 without a session; 500 when the write phase failed.
    """
    try:
        cart = parse_cart(request.get_json(silent=True))
        result = sales_service.process_sale(cart, g.current_user.id)
        return jsonify(result.to_dict()), 201

    except Unauthorized as e:
        return jsonify({"error": str(e)}), 401
    except TransactionFailed:
        current_app.logger.exception("Sale transaction failed")
        return jsonify({"error": "Internal server error"}), 500
    except SaleError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to process sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@require_auth
def list_sales_route():
    """
    Sale history, newest first.

    Query params:
    - limit: int (default 50, max 200)
    - offset: int (default 0)
    """
    limit = request.args.get("limit", default=50, type=int)
    offset = request.args.get("offset", default=0, type=int)
    return jsonify(sales_service.list_sales(limit=limit, offset=offset)), 200


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    """Get sale with items and tickets."""
    result = sales_service.get_sale(sale_id)
    if result is None:
        return jsonify({"error": "Sale not found"}), 404
    return jsonify(result.to_dict()), 200


@sales_bp.get("/<int:sale_id>/tickets")
@require_auth
def list_sale_tickets_route(sale_id: int):
    if sales_service.get_sale(sale_id) is None:
        return jsonify({"error": "Sale not found"}), 404
    tickets = sales_service.list_tickets(sale_id)
    return jsonify({"items": [t.to_dict() for t in tickets], "count": len(tickets)}), 200


@tickets_bp.post("/<string:qr_code>/redeem")
@require_auth
def redeem_ticket_route(qr_code: str):
    """Hand out one dispense: PENDING -> REDEEMED."""
    try:
        ticket = sales_service.redeem_ticket(qr_code)
        return jsonify({"ticket": ticket.to_dict()}), 200

    except TicketError as e:
        status = 404 if e.details.get("status") is None else 409
        return jsonify({"error": str(e), "details": e.details}), status
    except Exception:
        current_app.logger.exception("Failed to redeem ticket")
        return jsonify({"error": "Internal server error"}), 500
