# Overview: Flask API routes for purchase orders; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import current_context, envelope_response, json_body, with_user
from ..services import cash_service, order_service


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.get("")
@with_user
def list_orders_route():
    """
    List orders with totals and paid amounts, newest first.

    Returns:
        {items: Order[]}
    """
    try:
        return jsonify({"items": order_service.list_orders(current_context())})
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/find")
@with_user
def find_order_route():
    """Order for ?estimate_id=&vendor= (exact match), or 404."""
    order = order_service.find_order_by_estimate_and_vendor(
        current_context(),
        request.args.get("estimate_id", ""),
        request.args.get("vendor", ""),
    )
    if order is None:
        return jsonify({"error": "Order not found"}), 404
    return jsonify(order)


@orders_bp.get("/<order_id>")
@with_user
def get_order_route(order_id):
    order = order_service.get_order(current_context(), order_id)
    if order is None:
        return jsonify({"error": "Order not found"}), 404
    return jsonify(order)


@orders_bp.get("/<order_id>/payments")
@with_user
def order_payments_route(order_id):
    return jsonify({"items": cash_service.payments_for_order(current_context(), order_id)})


@orders_bp.post("")
@with_user
def save_order_route():
    """
    Create or rewrite a manual order.

    Request body:
    {
        "header": {"id": "...", "vendor": "...", "estimate_id": "...", ...},
        "items": [{"product": "...", "qty": 2, "cost": 500}]
    }
    """
    payload = json_body()
    result = order_service.save_order(current_context(), payload, user_email=g.user_email)
    return envelope_response(result)


@orders_bp.post("/document")
@with_user
def create_order_document_route():
    """Publish a purchase order for ?vendor= from an estimate payload."""
    payload = json_body()
    vendor = request.args.get("vendor") or (payload.get("vendor", "") if isinstance(payload, dict) else "")
    result = order_service.create_order_document(current_context(), payload, vendor)
    return envelope_response(result)


@orders_bp.post("/<order_id>/document")
@with_user
def reprint_order_document_route(order_id):
    result = order_service.reprint_order_document(current_context(), order_id)
    return envelope_response(result)
