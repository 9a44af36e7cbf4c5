# Overview: Flask API routes for deposits and payments; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify

from ..decorators import current_context, envelope_response, json_body, with_user
from ..services import cash_service


cash_bp = Blueprint("cash", __name__, url_prefix="/api")


@cash_bp.get("/deposits")
@with_user
def list_deposits_route():
    try:
        return jsonify({"items": cash_service.list_deposits(current_context())})
    except Exception:
        current_app.logger.exception("Failed to list deposits")
        return jsonify({"error": "Internal server error"}), 500


@cash_bp.get("/deposits/by-estimate/<estimate_id>")
@with_user
def deposits_for_estimate_route(estimate_id):
    return jsonify({"items": cash_service.deposits_for_estimate(current_context(), estimate_id)})


@cash_bp.post("/deposits")
@with_user
def save_deposit_route():
    """
    Create or rewrite a deposit.

    Request body:
    {
        "id": "DEP-20240315-00001",  // optional
        "date": "2024/03/15", "estimate_id": "0000001-00", "client": "...",
        "type": "振込", "amount": 50000, "fee": 0, "offset": 0, "status": "確認済"
    }
    """
    result = cash_service.save_deposit(current_context(), json_body(), user_email=g.user_email)
    return envelope_response(result)


@cash_bp.get("/payments")
@with_user
def list_payments_route():
    try:
        return jsonify({"items": cash_service.list_payments(current_context())})
    except Exception:
        current_app.logger.exception("Failed to list payments")
        return jsonify({"error": "Internal server error"}), 500


@cash_bp.post("/payments")
@with_user
def save_payment_route():
    result = cash_service.save_payment(current_context(), json_body(), user_email=g.user_email)
    return envelope_response(result)
